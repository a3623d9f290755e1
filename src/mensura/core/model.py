"""Measurement model for Mensura.

An ``ImageRecord`` owns an ordered list of ``Measurement`` objects. A
measurement only stores its kind and its points in image-pixel space; its
pixel value is always derived from the points, and its value in real units
is derived from the owning image's pixel size on demand.
"""

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, NamedTuple, Sequence

from mensura.core import geometry
from mensura.core.errors import InvalidPointCountError
from mensura.core.geometry import Point


class MeasurementKind(Enum):
    """Measurement tools. The value is the display name."""

    CALIBRATION = "Calibration"
    DISTANCE = "Distance"
    CALIPER = "Caliper"
    POLYLINE = "Polyline"
    SPLINE = "Spline"
    CIRCLE = "Circle"
    ANGLE = "Angle"

    @classmethod
    def parse(cls, text: str) -> "MeasurementKind":
        """Look up a kind by display name or enum name, ignoring case."""
        key = str(text).strip().lower()
        for kind in cls:
            if key in (kind.value.lower(), kind.name.lower()):
                return kind
        raise ValueError(f"Unknown measurement kind: {text!r}")

    @property
    def open_ended(self) -> bool:
        """Polyline and spline take any number of points >= 2."""
        return self in (MeasurementKind.POLYLINE, MeasurementKind.SPLINE)


# Exact point count for the fixed-size kinds
_POINT_COUNT = {
    MeasurementKind.CALIBRATION: 2,
    MeasurementKind.DISTANCE: 2,
    MeasurementKind.CIRCLE: 2,
    MeasurementKind.CALIPER: 3,
    MeasurementKind.ANGLE: 3,
}

MIN_PATH_POINTS = 2


def required_points(kind: MeasurementKind, max_points: int | None = None) -> float:
    """Number of clicks that completes a measurement of ``kind``.

    Open-ended kinds return ``max_points`` or infinity when unbounded.
    """
    if kind.open_ended:
        if max_points:
            return max(int(max_points), MIN_PATH_POINTS)
        return math.inf
    return _POINT_COUNT[kind]


def validate_point_count(kind: MeasurementKind, count: int, max_points: int | None = None):
    if kind.open_ended:
        upper = required_points(kind, max_points)
        if MIN_PATH_POINTS <= count <= upper:
            return
        raise InvalidPointCountError(
            f"{kind.value} needs between {MIN_PATH_POINTS} and {upper} points, got {count}"
        )
    if count != _POINT_COUNT[kind]:
        raise InvalidPointCountError(
            f"{kind.value} needs exactly {_POINT_COUNT[kind]} points, got {count}"
        )


def measure_value(kind: MeasurementKind, points: Sequence[Point]) -> float:
    """Pixel value of a measurement: a length, a radius or an angle in radians.

    Spline length is taken on the control points, not on the smoothed
    curve, so the value does not depend on the resampling density.
    """
    if kind in (MeasurementKind.DISTANCE, MeasurementKind.CALIBRATION):
        return geometry.distance(points[0], points[1])
    if kind is MeasurementKind.CIRCLE:
        return geometry.circle_radius(points[0], points[1])
    if kind is MeasurementKind.CALIPER:
        _, signed = geometry.caliper_projection(points[0], points[1], points[2])
        return abs(signed)
    if kind is MeasurementKind.ANGLE:
        return abs(geometry.signed_angle(points[0], points[1], points[2]))
    return geometry.path_length(points)


class PixelSize(NamedTuple):
    """Calibration triple of an image."""

    units_per_pixel: float
    calibrated_length: float
    calibrated_pixels: float


@dataclass
class Measurement:
    """One geometric object on an image."""

    kind: MeasurementKind
    points: list[Point]
    value_px: float = 0.0
    intensity: list[tuple[float, ...]] | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "points": [[x, y] for x, y in self.points],
            "value_px": self.value_px,
        }


@dataclass
class ImageRecord:
    """An image in the session and the measurements placed on it."""

    filename: str
    calibration_source: int | None = None
    pixel_size: PixelSize | None = None
    unit: str | None = None
    measurements: list[Measurement] = field(default_factory=list)
    width: int | None = None
    height: int | None = None

    @property
    def calibrated(self) -> bool:
        return self.calibration_source is not None and self.pixel_size is not None

    @property
    def units_per_pixel(self) -> float:
        return self.pixel_size.units_per_pixel if self.calibrated else 1.0

    def set_calibration(self, source: int, pixel_size: PixelSize, unit: str):
        self.calibration_source = source
        self.pixel_size = PixelSize(*pixel_size)
        self.unit = unit

    def clear_calibration(self):
        self.calibration_source = None
        self.pixel_size = None
        self.unit = None

    def calibration_measurements(self) -> list[int]:
        """Indices of the calibration measurements on this image."""
        return [
            j for j, m in enumerate(self.measurements) if m.kind is MeasurementKind.CALIBRATION
        ]


def create_measurement(
    kind: MeasurementKind, points: Sequence[Point], max_points: int | None = None
) -> Measurement:
    """Build a measurement and compute its pixel value."""
    validate_point_count(kind, len(points), max_points)
    pts = [(float(x), float(y)) for x, y in points]
    return Measurement(kind=kind, points=pts, value_px=measure_value(kind, pts))


def value_in_units(measurement: Measurement, image: ImageRecord | None) -> float:
    """Measurement value in the units shown to the user.

    Angles are reported in degrees. A calibration is reported in the real
    length it defines. Lengths on an uncalibrated image stay in pixels.
    """
    if measurement.kind is MeasurementKind.ANGLE:
        return math.degrees(measurement.value_px)
    if image is None or not image.calibrated:
        return measurement.value_px
    return measurement.value_px * image.pixel_size.units_per_pixel


def display_unit(measurement: Measurement, image: ImageRecord | None) -> str:
    if measurement.kind is MeasurementKind.ANGLE:
        return "deg"
    if image is None or not image.calibrated:
        return "px"
    return image.unit or ""


def recompute(measurement: Measurement, image: ImageRecord | None) -> float:
    """Re-derive the pixel value from the points; returns the unit value."""
    measurement.value_px = measure_value(measurement.kind, measurement.points)
    return value_in_units(measurement, image)


def move_point(
    measurement: Measurement,
    index: int,
    new_position: Point,
    move_all: bool = False,
    image: ImageRecord | None = None,
) -> None:
    """Move one point, or translate the whole measurement by that point's delta."""
    if not 0 <= index < len(measurement.points):
        return
    x, y = float(new_position[0]), float(new_position[1])
    if move_all:
        dx = x - measurement.points[index][0]
        dy = y - measurement.points[index][1]
        measurement.points = [(px + dx, py + dy) for px, py in measurement.points]
    else:
        measurement.points[index] = (x, y)
    recompute(measurement, image)


def delete_measurement(image: ImageRecord, index: int) -> Measurement | None:
    """Remove a measurement from its image. Invalid indices are ignored."""
    if not 0 <= index < len(image.measurements):
        return None
    return image.measurements.pop(index)


def copy_measurement(measurement: Measurement, offset: Point = (0.0, 0.0)) -> Measurement:
    """Deep copy translated by ``offset``. Calibrations are copied as distances."""
    kind = measurement.kind
    if kind is MeasurementKind.CALIBRATION:
        kind = MeasurementKind.DISTANCE
    dx, dy = offset
    points = [(x + dx, y + dy) for x, y in measurement.points]
    return Measurement(kind=kind, points=points, value_px=measurement.value_px)
