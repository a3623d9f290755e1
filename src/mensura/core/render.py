"""Draw instructions for measurements.

The core never touches a widget. It describes what to draw for each
measurement as a ``DrawInstruction`` and hands it to a ``RenderSurface``;
the Qt canvas is one such surface, the tests use ``RecordingSurface``.
"""

import math
from dataclasses import dataclass
from typing import Callable, Protocol, Sequence

from loguru import logger

from mensura.core import geometry
from mensura.core.errors import DegenerateGeometryError
from mensura.core.geometry import Point
from mensura.core.model import (
    ImageRecord,
    Measurement,
    MeasurementKind,
    display_unit,
    measure_value,
    value_in_units,
)

# Key of the live preview drawn while a tool collects points or a copy is held
PREVIEW_KEY = ("preview", "preview")

InstructionKey = tuple


def format_number(value: float, number_format: str) -> str:
    """Format a value with a format spec such as ``.4g`` (``%.4g`` also accepted)."""
    if number_format.startswith("%"):
        return number_format % value
    return format(value, number_format)


@dataclass(frozen=True)
class DrawInstruction:
    """Everything a surface needs to draw one measurement."""

    key: InstructionKey
    kind: MeasurementKind
    points: tuple[Point, ...]
    curve: tuple[Point, ...] = ()
    label: str = ""
    label_position: Point | None = None
    label_rotation: float = 0.0
    preview: bool = False


def _label_along(p1: Point, p2: Point) -> tuple[Point, float]:
    return geometry.midpoint(p1, p2), geometry.text_angle(geometry.segment_angle(p1, p2))


def build_instruction(
    key: InstructionKey,
    kind: MeasurementKind,
    points: Sequence[Point],
    image: ImageRecord | None,
    number_format: str = ".4g",
    sample_count: int = 200,
    preview: bool = False,
) -> DrawInstruction:
    """Lay out a measurement: the extra curve it needs and where its label sits.

    Incomplete or degenerate point sets are drawn as a bare path without a
    label; that happens while points are still being collected.
    """
    pts = tuple((float(x), float(y)) for x, y in points)
    bare = DrawInstruction(key=key, kind=kind, points=pts, preview=preview)
    if len(pts) < 2 or (kind in (MeasurementKind.CALIPER, MeasurementKind.ANGLE) and len(pts) < 3):
        return bare

    try:
        measurement = Measurement(kind=kind, points=list(pts), value_px=measure_value(kind, pts))
        curve: tuple[Point, ...] = ()

        if kind is MeasurementKind.CALIBRATION:
            text = f"{format_number(measurement.value_px, number_format)} px"
        else:
            value = value_in_units(measurement, image)
            text = f"{format_number(value, number_format)} {display_unit(measurement, image)}"

        if kind in (MeasurementKind.DISTANCE, MeasurementKind.CALIBRATION, MeasurementKind.POLYLINE):
            position, rotation = _label_along(pts[0], pts[1])
        elif kind is MeasurementKind.CIRCLE:
            curve = tuple(geometry.circle_outline(pts[0], measurement.value_px, sample_count))
            position, rotation = _label_along(pts[0], pts[1])
        elif kind is MeasurementKind.CALIPER:
            foot, _ = geometry.caliper_projection(pts[0], pts[1], pts[2])
            curve = (pts[2], foot)
            position, rotation = _label_along(pts[2], foot)
        elif kind is MeasurementKind.ANGLE:
            curve = tuple(geometry.angle_arc(pts[0], pts[1], pts[2]))
            position = curve[len(curve) // 2]
            a1 = geometry.segment_angle(pts[1], curve[0])
            a2 = a1 + math.degrees(geometry.signed_angle(pts[0], pts[1], pts[2]))
            rotation = geometry.text_angle((a1 + a2) / 2.0 + 90.0)
        else:
            if len(pts) > 2:
                curve = tuple(geometry.catmull_rom_resample(pts, sample_count))
            path = curve or pts
            mid = len(path) // 2
            position, rotation = _label_along(path[mid - 1], path[mid])
    except DegenerateGeometryError:
        return bare

    return DrawInstruction(
        key=key,
        kind=kind,
        points=pts,
        curve=curve,
        label=text,
        label_position=position,
        label_rotation=rotation,
        preview=preview,
    )


class RenderSurface(Protocol):
    def draw(self, instruction: DrawInstruction) -> None: ...

    def remove(self, key: InstructionKey) -> None: ...

    def clear(self) -> None: ...


class NullSurface:
    """Surface that draws nothing."""

    def draw(self, instruction: DrawInstruction) -> None:
        pass

    def remove(self, key: InstructionKey) -> None:
        pass

    def clear(self) -> None:
        pass


class RecordingSurface:
    """Keeps the latest instruction per key and notifies a listener on change."""

    def __init__(self, on_change: Callable[[], None] | None = None):
        self.instructions: dict[InstructionKey, DrawInstruction] = {}
        self._on_change = on_change

    def _changed(self):
        if self._on_change is None:
            return
        try:
            self._on_change()
        except Exception as e:
            logger.warning(f"Render listener failed: {e}")

    def draw(self, instruction: DrawInstruction) -> None:
        self.instructions[instruction.key] = instruction
        self._changed()

    def remove(self, key: InstructionKey) -> None:
        if self.instructions.pop(key, None) is not None:
            self._changed()

    def clear(self) -> None:
        self.instructions.clear()
        self._changed()

    @property
    def preview(self) -> DrawInstruction | None:
        return self.instructions.get(PREVIEW_KEY)
