"""
Mensura - point-and-click measurement on raster images.

Calibrate the pixel size of an image against a reference object of known
length, then measure distances, perpendicular (caliper) distances, paths,
smoothed paths, circle radii and angles across a collection of images.
Completed measurements can be dragged, deleted or copied, and calibrations
are shared between images that reference the same source.
"""

from mensura.version import __version__, __version_display__

__all__ = ["__version__", "__version_display__"]
