"""Interaction state machine.

Turns pointer and keyboard events into measurements. The controller is
always in exactly one ``Mode``; entering a mode replaces the transient
``ToolState`` so a half-placed measurement is discarded, never committed.

The controller works on a ``MeasurementSession`` and only talks to the
outside world through it (redraws, status text, image selection).
"""

import math
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import TYPE_CHECKING, NamedTuple, Sequence

from loguru import logger

from mensura.core import geometry
from mensura.core.calibration import Unit
from mensura.core.errors import DegenerateGeometryError, InvalidConfigurationValueError
from mensura.core.geometry import Point
from mensura.core.model import (
    ImageRecord,
    Measurement,
    MeasurementKind,
    copy_measurement,
    create_measurement,
    display_unit,
    measure_value,
    move_point,
    recompute,
    required_points,
    value_in_units,
)
from mensura.core.render import PREVIEW_KEY, build_instruction, format_number
from mensura.core.viewport import ViewLimits

if TYPE_CHECKING:
    from mensura.core.session import MeasurementSession

# Scroll zoom per wheel step
SCROLL_ZOOM_BASE = 1.02

# Keys that start a measurement tool
TOOL_KEYS = {
    "d": MeasurementKind.DISTANCE,
    "p": MeasurementKind.POLYLINE,
    "o": MeasurementKind.CIRCLE,
    "c": MeasurementKind.CALIPER,
    "s": MeasurementKind.SPLINE,
    "a": MeasurementKind.ANGLE,
}


class Mode(Enum):
    IDLE = auto()
    PROMPT = auto()
    COLLECT = auto()
    EDIT = auto()
    DELETE = auto()
    COPY = auto()


class HitTarget(NamedTuple):
    image: int
    measurement: int
    point: int


@dataclass
class ToolState:
    """Transient buffers of the active mode."""

    kind: MeasurementKind | None = None
    buffer: list[Point] = field(default_factory=list)
    target_count: float = 0
    hover: HitTarget | None = None
    drag: HitTarget | None = None
    move_all: bool = False
    snapshot: Measurement | None = None
    zoomed: bool = False
    zoom_view: ViewLimits | None = None


def hit_test(
    images: Sequence[ImageRecord],
    indices: Sequence[int],
    pointer: Point,
    tolerance: float,
) -> HitTarget | None:
    """Nearest measurement point within ``tolerance`` of the pointer.

    Exact ties keep the first point found. Image indices that no longer
    exist are skipped.
    """
    best: HitTarget | None = None
    best_distance = math.inf
    for i in indices:
        if not 0 <= i < len(images):
            continue
        for j, measurement in enumerate(images[i].measurements):
            for k, point in enumerate(measurement.points):
                d = geometry.distance(point, pointer)
                if d <= tolerance and d < best_distance:
                    best, best_distance = HitTarget(i, j, k), d
    return best


class InteractionController:
    """Dispatches input events according to the current mode."""

    def __init__(self, session: "MeasurementSession"):
        self.session = session
        self.mode = Mode.IDLE
        self.tool = ToolState()
        self.pointer: Point | None = None
        self.preview_value: float | None = None
        self.pending_calibration: tuple[float, Unit] | None = None
        self.control_held = False
        self._entry_view: ViewLimits | None = None

    # -- helpers --

    def _option(self, key: str):
        return self.session.config.get("measurement", key)

    def _max_points(self) -> int | None:
        return self._option("max_polyline_points") or None

    def _current_image(self) -> ImageRecord | None:
        index = self.session.current_index
        if index is None:
            return None
        return self.session.images[index]

    def _resolve(self, target: HitTarget | None) -> Measurement | None:
        """Measurement a hit target points at, or None if it went stale."""
        if target is None:
            return None
        images = self.session.images
        if not 0 <= target.image < len(images):
            return None
        measurements = images[target.image].measurements
        if not 0 <= target.measurement < len(measurements):
            return None
        if not 0 <= target.point < len(measurements[target.measurement].points):
            return None
        return measurements[target.measurement]

    def _format(self, measurement: Measurement, image: ImageRecord | None) -> str:
        value = value_in_units(measurement, image)
        fmt = self._option("number_format")
        return f"{format_number(value, fmt)} {display_unit(measurement, image)}"

    def _clear_preview(self):
        self.preview_value = None
        self.session.surface.remove(PREVIEW_KEY)

    def _enter(self, mode: Mode, kind: MeasurementKind | None = None):
        if self.tool.zoomed:
            self.session.viewport.restore(self.tool.zoom_view)
        self._clear_preview()
        if kind is not MeasurementKind.CALIBRATION:
            self.pending_calibration = None
        self.tool = ToolState(kind=kind, move_all=self.control_held)
        self.mode = mode

    # -- mode entry --

    def start_tool(self, kind: MeasurementKind):
        if kind is MeasurementKind.CALIBRATION and self.pending_calibration is None:
            self.open_prompt()
            return
        if self.session.current_index is None:
            self.session.set_status("No image selected")
            return
        if self.mode is not Mode.COLLECT:
            self._entry_view = self.session.viewport.snapshot()
        self._enter(Mode.COLLECT, kind)
        self.tool.target_count = required_points(kind, self._max_points())
        if math.isinf(self.tool.target_count):
            self.session.set_status(f"{kind.value}: click points, double-click to finish", log=False)
        else:
            self.session.set_status(
                f"{kind.value}: click {self.tool.target_count} points", log=False
            )

    def open_prompt(self):
        """Suspend input while the calibration length is asked for."""
        self._entry_view = self.session.viewport.snapshot()
        self._enter(Mode.PROMPT)
        self.session.set_status("Calibration: enter the real length", log=False)

    def confirm_calibration(self, length: float, unit: "Unit | str"):
        """Accept the prompt and start collecting the calibration points."""
        if self.mode is not Mode.PROMPT:
            return
        try:
            length = float(length)
        except (TypeError, ValueError):
            raise InvalidConfigurationValueError(f"Invalid calibration length: {length!r}")
        if not math.isfinite(length) or length <= 0:
            raise InvalidConfigurationValueError("Calibration length must be a positive number")
        self.pending_calibration = (length, Unit.parse(unit))
        self.start_tool(MeasurementKind.CALIBRATION)

    def start_edit(self):
        self._enter(Mode.EDIT)
        self.session.set_status("Edit: drag a point, right-drag moves the whole object", log=False)

    def start_delete(self):
        self._enter(Mode.DELETE)
        self.session.set_status("Delete: click a point of the object to delete", log=False)

    def start_copy(self):
        self._enter(Mode.COPY)
        self.session.set_status("Copy: select an object to copy", log=False)

    def reset(self):
        """Return to idle without touching the view."""
        self._enter(Mode.IDLE)
        self._entry_view = None

    def cancel(self):
        """Back to idle from anywhere, restoring the view the tool started with."""
        was = self.mode
        self._enter(Mode.IDLE)
        self.session.viewport.restore(self._entry_view)
        self._entry_view = None
        self.session.set_status("...", log=False)
        if was is not Mode.IDLE:
            logger.debug(f"Cancelled {was.name.lower()} mode")

    # -- pointer events --

    def pointer_move(self, x: float, y: float):
        self.pointer = (float(x), float(y))
        if self.mode is Mode.COLLECT:
            self._update_collect_preview()
        elif self.mode in (Mode.EDIT, Mode.DELETE, Mode.COPY):
            if self.tool.drag is not None:
                self._drag_to(self.pointer)
            elif self.mode is Mode.COPY and self.tool.snapshot is not None:
                self._update_copy_preview()
            else:
                self._update_hover()

    def _update_hover(self):
        tolerance = self.session.viewport.tolerance(self._option("hit_tolerance"))
        self.tool.hover = hit_test(
            self.session.images, self.session.visible_indices(), self.pointer, tolerance
        )

    def _update_collect_preview(self):
        if not self.tool.buffer or self.pointer is None:
            self._clear_preview()
            return
        kind = self.tool.kind
        points = self.tool.buffer + [self.pointer]
        image = self._current_image()
        self.session.surface.draw(
            build_instruction(
                PREVIEW_KEY,
                kind,
                points,
                image,
                self._option("number_format"),
                self._option("spline_points"),
                preview=True,
            )
        )
        self.preview_value = None
        if len(points) >= required_points(kind) or kind.open_ended:
            try:
                preview = Measurement(kind=kind, points=points, value_px=measure_value(kind, points))
            except DegenerateGeometryError:
                return
            self.preview_value = value_in_units(preview, image)
            self.session.set_status(f"{kind.value}: {self._format(preview, image)}", log=False)

    def _update_copy_preview(self):
        snapshot = self.tool.snapshot
        offset = (
            self.pointer[0] - snapshot.points[0][0],
            self.pointer[1] - snapshot.points[0][1],
        )
        placed = copy_measurement(snapshot, offset)
        self.session.surface.draw(
            build_instruction(
                PREVIEW_KEY,
                placed.kind,
                placed.points,
                self._current_image(),
                self._option("number_format"),
                self._option("spline_points"),
                preview=True,
            )
        )

    def _drag_to(self, position: Point):
        target = self.tool.drag
        measurement = self._resolve(target)
        if measurement is None:
            self.tool.drag = None
            return
        image = self.session.images[target.image]
        previous = list(measurement.points)
        is_source = (
            measurement.kind is MeasurementKind.CALIBRATION and image.calibration_source == target.image
        )
        try:
            move_point(measurement, target.point, position, self.tool.move_all, image)
            if is_source:
                self.session.calibration.on_calibration_edited(target.image, measurement)
        except DegenerateGeometryError as e:
            # keep the last valid shape
            measurement.points = previous
            recompute(measurement, image)
            self.session.set_status(f"{measurement.kind.value} not changed: {e}", log=False)
            return

        if is_source:
            self.session.redraw()
        else:
            self.session.draw_measurement(target.image, target.measurement)
        self.session.set_status(f"{measurement.kind.value}: {self._format(measurement, image)}", log=False)

    def primary_down(self):
        if self.pointer is None:
            return
        if self.mode is Mode.COLLECT:
            self._collect_click()
        elif self.mode is Mode.EDIT:
            if self._resolve(self.tool.hover) is not None:
                self.tool.drag = self.tool.hover
                self.tool.move_all = self.control_held
        elif self.mode is Mode.DELETE:
            target = self.tool.hover
            if self._resolve(target) is not None:
                self.tool.hover = None
                self.session.delete_measurement(target.image, target.measurement)
        elif self.mode is Mode.COPY:
            self._copy_click()

    def _collect_click(self):
        tool = self.tool
        if self._option("zoom_select") and not tool.zoomed:
            tool.zoom_view = self.session.viewport.snapshot()
            self.session.viewport.zoom_box(self.pointer, self._option("zoom_box"))
            tool.zoomed = True
            return
        tool.buffer.append(self.pointer)
        if tool.zoomed:
            self.session.viewport.restore(tool.zoom_view)
            tool.zoomed = False
            tool.zoom_view = None
        if len(tool.buffer) >= tool.target_count:
            self._commit()
        else:
            self._update_collect_preview()

    def _copy_click(self):
        tool = self.tool
        if tool.snapshot is None:
            source = self._resolve(tool.hover)
            if source is None:
                return
            tool.snapshot = copy_measurement(source)
            self.session.set_status("Copy: place the selected object", log=False)
            self._update_copy_preview()
            return

        offset = (
            self.pointer[0] - tool.snapshot.points[0][0],
            self.pointer[1] - tool.snapshot.points[0][1],
        )
        placed = copy_measurement(tool.snapshot, offset)
        tool.snapshot = None
        self._clear_preview()
        try:
            measurement = create_measurement(placed.kind, placed.points)
        except DegenerateGeometryError as e:
            self.session.set_status(f"Copy aborted: {e}")
            return
        self.session.add_measurement(self.session.current_index, measurement)
        self.session.set_status("Copy: select an object to copy", log=False)

    def alternate_down(self):
        if self.mode is Mode.COLLECT:
            if self.tool.zoomed:
                self.session.viewport.restore(self.tool.zoom_view)
                self.tool.zoomed = False
                self.tool.zoom_view = None
            if self.tool.buffer:
                self.tool.buffer.pop()
                self._update_collect_preview()
        elif self.mode is Mode.EDIT:
            if self._resolve(self.tool.hover) is not None:
                self.tool.drag = self.tool.hover
                self.tool.move_all = True
        elif self.mode is Mode.COPY:
            if self.tool.snapshot is not None:
                self.tool.snapshot = None
                self._clear_preview()
                self.session.set_status("Copy: select an object to copy", log=False)

    def primary_up(self):
        target = self.tool.drag
        if target is None:
            return
        try:
            if self.pointer is not None:
                self._drag_to(self.pointer)
        finally:
            self.tool.drag = None
            self.tool.move_all = self.control_held
            self.session.mark_changed()
        logger.debug(f"Moved measurement {target.measurement + 1} on image {target.image + 1}")

    def double_click(self):
        if self.mode is Mode.COLLECT:
            if self.tool.kind.open_ended and len(self.tool.buffer) >= 2:
                self._commit()
        elif self.mode in (Mode.EDIT, Mode.DELETE):
            if self.tool.hover is None:
                self.session.set_status(f"Exited {self.mode.name.lower()} mode", log=False)
                self._enter(Mode.IDLE)
        elif self.mode is Mode.COPY:
            self.session.set_status("Exited copy mode", log=False)
            self._enter(Mode.IDLE)

    # -- keyboard and wheel --

    def key_down(self, key: str):
        key = key.lower()
        if key == "escape":
            self.cancel()
            return
        if key == "control":
            self.control_held = True
            self.tool.move_all = True
            return
        if self.mode is Mode.PROMPT:
            return

        if key in TOOL_KEYS:
            self.start_tool(TOOL_KEYS[key])
        elif key == "space":
            self.start_copy()
        elif key == "e":
            self.start_edit()
        elif key in ("delete", "backspace"):
            self.start_delete()
        elif key == "z":
            self.toggle_zoom_select()
        elif key in ("up", "down") and self.session.current_index is not None:
            step = -1 if key == "up" else 1
            index = min(max(self.session.current_index + step, 0), len(self.session.images) - 1)
            if index != self.session.current_index:
                self.session.select_image(index)

    def key_up(self, key: str):
        if key.lower() == "control":
            self.control_held = False
            self.tool.move_all = False

    def toggle_zoom_select(self):
        enabled = not self._option("zoom_select")
        self.session.config.set("measurement", "zoom_select", enabled)
        if enabled:
            self.session.set_status("Zoom select is activated", log=False)
        else:
            if self.tool.zoomed:
                self.session.viewport.restore(self.tool.zoom_view)
                self.tool.zoomed = False
                self.tool.zoom_view = None
            self.session.set_status("Zoom select is deactivated", log=False)

    def scroll(self, amount: float, at: Point):
        self.session.viewport.zoom_about(at, SCROLL_ZOOM_BASE ** amount)

    # -- commit --

    def _commit(self):
        tool = self.tool
        kind = tool.kind
        index = self.session.current_index
        image = self.session.images[index]
        self._clear_preview()

        try:
            measurement = create_measurement(kind, tool.buffer, self._max_points())
            if kind is MeasurementKind.CALIBRATION:
                length, unit = self.pending_calibration
                image.measurements.append(measurement)
                try:
                    self.session.calibration.calibrate(
                        index, measurement, length, unit, self.session.selection
                    )
                except Exception:
                    image.measurements.remove(measurement)
                    raise
                self.session.mark_changed()
                self.session.redraw()
            else:
                self.session.add_measurement(index, measurement)
        except DegenerateGeometryError as e:
            logger.warning(f"{kind.value} aborted: {e}")
            self.session.set_status(f"{kind.value} aborted: {e}", log=False)
            self._enter(Mode.IDLE)
            return

        logger.info(
            f"{kind.value} added to image {index + 1}: {measurement.value_px:.6g} px "
            f"({len(measurement.points)} points)"
        )
        if self._option("auto_edit"):
            self.start_edit()
        elif self._option("repeat_tool") and kind is not MeasurementKind.CALIBRATION:
            self._enter(Mode.COLLECT, kind)
            self.tool.target_count = required_points(kind, self._max_points())
        else:
            self._enter(Mode.IDLE)
        self.session.set_status(f"{kind.value}: {self._format(measurement, image)}", log=False)
