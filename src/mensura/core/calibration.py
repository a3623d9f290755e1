"""Calibration management for Mensura.

An image is calibrated by a two-point calibration measurement of a
reference object of known real length. The resulting pixel size is copied
to the other images that use the same calibration source, and pushed to
them again whenever the calibration measurement is edited.
"""

import math
from enum import Enum
from typing import Iterable

from loguru import logger

from mensura.core.errors import (
    DegenerateGeometryError,
    InvalidConfigurationValueError,
    NotCalibratedError,
)
from mensura.core.model import ImageRecord, Measurement, MeasurementKind, PixelSize, recompute
from mensura.core.render import format_number


class Unit(Enum):
    """Units offered when calibrating. The value is the display label."""

    KILOMETERS = "km"
    METERS = "m"
    CENTIMETERS = "cm"
    MILLIMETERS = "mm"
    MICROMETERS = "µm"
    NANOMETERS = "nm"
    NONE = "-"
    PIXELS = "px"
    MILES = "mi"
    FEET = "ft"
    INCHES = "in"

    @property
    def label(self) -> str:
        return self.value

    @classmethod
    def parse(cls, text: "str | Unit | None") -> "Unit":
        """Look up a unit by label, enum name or common spelling."""
        if isinstance(text, Unit):
            return text
        key = (text or "").strip().rstrip(".").lower()
        if key == "":
            return cls.NONE
        key = _ALIASES.get(key, key)
        for unit in cls:
            if key in (unit.value.lower(), unit.name.lower()):
                return unit
        raise InvalidConfigurationValueError(f"Unknown unit: {text!r}")

    @property
    def is_length(self) -> bool:
        return self in _TO_METERS


_ALIASES = {
    "um": "µm",
    "μm": "µm",  # greek mu
    "micron": "µm",
    "microns": "µm",
    "none": "-",
}

# Conversion factors to meters (base unit)
_TO_METERS = {
    Unit.KILOMETERS: 1000.0,
    Unit.METERS: 1.0,
    Unit.CENTIMETERS: 0.01,
    Unit.MILLIMETERS: 0.001,
    Unit.MICROMETERS: 1e-6,
    Unit.NANOMETERS: 1e-9,
    Unit.MILES: 1609.344,
    Unit.FEET: 0.3048,
    Unit.INCHES: 0.0254,
}


def convert(value: float, from_unit: Unit, to_unit: Unit) -> float:
    """Convert a length between units."""
    if not (from_unit.is_length and to_unit.is_length):
        raise InvalidConfigurationValueError(
            f"Cannot convert from {from_unit.label} to {to_unit.label}"
        )
    return value * _TO_METERS[from_unit] / _TO_METERS[to_unit]


class CalibrationManager:
    """Maintains the calibration graph of the session's image list.

    The manager shares the session's list object; it never replaces it.
    """

    def __init__(self, images: list[ImageRecord]):
        self._images = images

    def _valid(self, index: int | None) -> bool:
        return index is not None and 0 <= index < len(self._images)

    def dependants(self, source_index: int) -> list[int]:
        """Indices of every image whose calibration comes from ``source_index``."""
        return [k for k, img in enumerate(self._images) if img.calibration_source == source_index]

    def calibrate(
        self,
        image_index: int,
        measurement: Measurement,
        real_length: float,
        unit: "Unit | str",
        selected: Iterable[int] = (),
    ) -> PixelSize:
        """Calibrate an image from a finalized calibration measurement.

        The pixel size is also given to the selected images, to the images
        already depending on this one, and to every uncalibrated image.
        """
        unit = Unit.parse(unit)
        try:
            real_length = float(real_length)
        except (TypeError, ValueError):
            raise InvalidConfigurationValueError(f"Invalid calibration length: {real_length!r}")
        if not math.isfinite(real_length) or real_length <= 0:
            raise InvalidConfigurationValueError(
                f"Calibration length must be positive, got {real_length}"
            )
        pixels = measurement.value_px
        if pixels <= 0:
            raise DegenerateGeometryError("Calibration segment has zero length")

        image = self._images[image_index]
        # an image keeps a single calibration measurement
        image.measurements = [
            m for m in image.measurements
            if m is measurement or m.kind is not MeasurementKind.CALIBRATION
        ]

        pixel_size = PixelSize(real_length / pixels, real_length, pixels)
        targets = {image_index}
        targets.update(k for k in selected if self._valid(k))
        targets.update(self.dependants(image_index))
        targets.update(k for k, img in enumerate(self._images) if not img.calibrated)

        for k in sorted(targets):
            if k != image_index:
                targets.update(self._detach_source(k, image_index))
        for k in sorted(targets):
            self._images[k].set_calibration(image_index, pixel_size, unit.label)

        logger.info(
            f"Calibrated image {image_index + 1}: {pixel_size.units_per_pixel:.6g} "
            f"{unit.label}/px applied to {len(targets)} image(s)"
        )
        return pixel_size

    def apply_to(self, source_index: int, targets: Iterable[int]) -> list[int]:
        """Copy the calibration used by ``source_index`` onto ``targets``."""
        source = self._images[source_index]
        if not source.calibrated:
            raise NotCalibratedError("The current image is not calibrated, nothing applied")

        origin = source.calibration_source
        applied = []
        for k in targets:
            if not self._valid(k):
                continue
            moved = self._detach_source(k, origin) if k != origin else []
            for t in [k, *moved]:
                self._images[t].set_calibration(origin, source.pixel_size, source.unit)
            applied.append(k)
        logger.info(f"Calibration of image {origin + 1} applied to {len(applied)} image(s)")
        return applied

    def _detach_source(self, index: int, new_source: int) -> list[int]:
        """Move an image that is about to inherit away from its own calibration.

        Images that depended on it follow it to the new source, and its
        calibration measurement no longer defines anything and is dropped.
        """
        image = self._images[index]
        if image.calibration_source != index:
            return []
        moved = [k for k in self.dependants(index) if k != index]
        for k in moved:
            self._images[k].calibration_source = new_source
        image.measurements = [
            m for m in image.measurements if m.kind is not MeasurementKind.CALIBRATION
        ]
        return moved

    def clear(self, indices: Iterable[int]) -> None:
        """Reset the listed images to uncalibrated and drop their calibrations."""
        for k in indices:
            if not self._valid(k):
                continue
            image = self._images[k]
            if image.calibration_source == k:
                self.invalidate_source(k)
            image.clear_calibration()
            image.measurements = [
                m for m in image.measurements if m.kind is not MeasurementKind.CALIBRATION
            ]

    def invalidate_source(self, source_index: int) -> list[int]:
        """Reset every image calibrated from ``source_index`` (itself included)."""
        reset = self.dependants(source_index)
        for k in reset:
            self._images[k].clear_calibration()
        if reset:
            logger.info(f"Calibration source {source_index + 1} removed, {len(reset)} image(s) reset")
        return reset

    def on_calibration_edited(self, image_index: int, measurement: Measurement) -> PixelSize:
        """Recompute the pixel size after the calibration points were moved.

        The stored real length is kept; every dependant receives the new
        pixel size, so their unit values rescale while their pixel
        coordinates stay unchanged.
        """
        image = self._images[image_index]
        if not image.calibrated:
            raise NotCalibratedError("Image is not calibrated")
        recompute(measurement, image)
        if image.calibration_source != image_index:
            return image.pixel_size

        pixels = measurement.value_px
        if pixels <= 0:
            raise DegenerateGeometryError("Calibration segment has zero length")
        length = image.pixel_size.calibrated_length
        pixel_size = PixelSize(length / pixels, length, pixels)
        for k in self.dependants(image_index):
            self._images[k].pixel_size = pixel_size
        logger.debug(f"Calibration {image_index + 1} edited: {pixel_size.units_per_pixel:.6g}/px")
        return pixel_size

    def inherit(self, new_index: int, from_index: int | None) -> None:
        """Give a newly added image the calibration of another image."""
        if not self._valid(from_index):
            return
        origin = self._images[from_index]
        if origin.calibrated:
            self._images[new_index].set_calibration(
                origin.calibration_source, origin.pixel_size, origin.unit
            )

    def remove_images(self, indices: Iterable[int]) -> list[ImageRecord]:
        """Remove images from the list and keep the calibration graph consistent.

        Images calibrated from a removed image become uncalibrated; the
        source indices of the remaining images are shifted.
        """
        removed = {k for k in indices if self._valid(k)}
        for k in removed:
            if self._images[k].calibration_source == k:
                self.invalidate_source(k)

        new_index = {}
        kept = []
        dropped = []
        for k, img in enumerate(self._images):
            if k in removed:
                dropped.append(img)
            else:
                new_index[k] = len(kept)
                kept.append(img)

        for img in kept:
            if img.calibration_source is None:
                continue
            if img.calibration_source in new_index:
                img.calibration_source = new_index[img.calibration_source]
            else:
                img.clear_calibration()

        self._images[:] = kept
        return dropped

    def calibration_text(self, image_index: int, number_format: str) -> str:
        """Short calibration description used in titles and status text."""
        image = self._images[image_index]
        if not image.calibrated:
            return "not calibrated"
        px = f"{format_number(image.pixel_size.units_per_pixel, number_format)} {image.unit}"
        if image.calibration_source == image_index:
            return f"calibrated, px = {px}"
        return f"calibration from {image.calibration_source + 1}, px = {px}"
