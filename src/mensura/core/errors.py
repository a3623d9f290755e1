"""Error types raised by the Mensura core.

User-triggered errors are recovered by the session facade and shown as a
status message. ``InvalidPointCountError`` signals a contract violation
and is allowed to propagate.
"""


class MensuraError(Exception):
    """Base class for all Mensura errors."""


class DegenerateGeometryError(MensuraError):
    """A reference segment has zero length (caliper, angle, calibration)."""


class InvalidPointCountError(MensuraError):
    """A measurement was created with the wrong number of points."""


class NotCalibratedError(MensuraError):
    """The operation needs a calibrated image."""


class ImageUnavailableError(MensuraError):
    """An image file could not be found or decoded."""


class InvalidConfigurationValueError(MensuraError):
    """A configuration value was rejected; the previous value is kept."""
