"""Tests for the interaction state machine, driven through the session."""

import math

import pytest

from mensura.core.interaction import HitTarget, Mode, hit_test
from mensura.core.model import ImageRecord, MeasurementKind, create_measurement


def click(session, x, y):
    session.pointer_move(x, y)
    session.primary_down()
    session.primary_up()


def drag(session, start, end):
    session.pointer_move(*start)
    session.primary_down()
    session.pointer_move(*end)
    session.primary_up()


def place(session, kind, *points):
    session.start_tool(kind)
    for x, y in points:
        click(session, x, y)


class TestCollect:
    def test_distance(self, loaded_session, surface):
        s = loaded_session
        s.start_tool(MeasurementKind.DISTANCE)
        assert s.mode is Mode.COLLECT

        click(s, 10, 10)
        s.pointer_move(13, 14)
        assert s.controller.preview_value == pytest.approx(5.0)
        assert surface.preview is not None

        s.primary_down()
        assert s.mode is Mode.IDLE
        assert len(s.images[0].measurements) == 1
        assert s.images[0].measurements[0].value_px == pytest.approx(5.0)
        assert surface.preview is None
        assert (0, 0) in surface.instructions
        assert s.status == "Distance: 5 px"

    def test_tool_from_key(self, loaded_session):
        loaded_session.key_down("c")
        assert loaded_session.mode is Mode.COLLECT
        assert loaded_session.controller.tool.kind is MeasurementKind.CALIPER
        assert loaded_session.controller.tool.target_count == 3

    def test_tool_by_name(self, loaded_session):
        loaded_session.start_tool("spline")
        assert loaded_session.controller.tool.kind is MeasurementKind.SPLINE

    def test_unknown_tool_name_is_ignored(self, loaded_session):
        loaded_session.start_tool("ellipse")
        assert loaded_session.mode is Mode.IDLE
        assert "Unknown measurement kind" in loaded_session.status

    def test_undo_last_point(self, loaded_session):
        s = loaded_session
        place(s, MeasurementKind.ANGLE, (10, 0), (0, 0))
        s.alternate_down()
        assert s.controller.tool.buffer == [(10.0, 0.0)]
        click(s, 5, 5)
        click(s, 0, 10)
        assert s.images[0].measurements[0].points == [(10.0, 0.0), (5.0, 5.0), (0.0, 10.0)]

    def test_angle_preview_in_degrees(self, loaded_session):
        s = loaded_session
        place(s, MeasurementKind.ANGLE, (10, 0), (0, 0))
        s.pointer_move(0, 10)
        assert s.controller.preview_value == pytest.approx(90.0)

    def test_polyline_finishes_on_double_click(self, loaded_session):
        s = loaded_session
        place(s, MeasurementKind.POLYLINE, (0, 0), (3, 4), (3, 10))
        assert s.mode is Mode.COLLECT
        s.double_click()
        assert s.mode is Mode.IDLE
        assert s.images[0].measurements[0].value_px == pytest.approx(11.0)

    def test_double_click_needs_two_points(self, loaded_session):
        s = loaded_session
        place(s, MeasurementKind.SPLINE, (0, 0))
        s.double_click()
        assert s.mode is Mode.COLLECT
        assert s.images[0].measurements == []

    def test_polyline_point_limit(self, loaded_session):
        s = loaded_session
        s.config.set("measurement", "max_polyline_points", 3)
        place(s, MeasurementKind.POLYLINE, (0, 0), (1, 0), (2, 0))
        assert s.mode is Mode.IDLE
        assert len(s.images[0].measurements[0].points) == 3

    def test_escape_discards_buffer(self, loaded_session):
        s = loaded_session
        place(s, MeasurementKind.DISTANCE, (10, 10))
        s.key_down("escape")
        assert s.mode is Mode.IDLE
        assert s.controller.tool.buffer == []
        assert s.images[0].measurements == []

    def test_starting_a_tool_discards_half_placed_measurement(self, loaded_session):
        s = loaded_session
        place(s, MeasurementKind.DISTANCE, (10, 10))
        s.key_down("a")
        assert s.controller.tool.kind is MeasurementKind.ANGLE
        assert s.controller.tool.buffer == []
        assert s.images[0].measurements == []

    def test_degenerate_caliper_is_aborted(self, loaded_session):
        s = loaded_session
        place(s, MeasurementKind.CALIPER, (5, 5), (5, 5), (10, 10))
        assert s.mode is Mode.IDLE
        assert s.images[0].measurements == []
        assert "aborted" in s.status

    def test_no_image(self, session):
        session.start_tool(MeasurementKind.DISTANCE)
        assert session.mode is Mode.IDLE
        assert session.status == "No image selected"

    def test_auto_edit(self, loaded_session):
        s = loaded_session
        s.config.set("measurement", "auto_edit", True)
        place(s, MeasurementKind.DISTANCE, (0, 0), (10, 0))
        assert s.mode is Mode.EDIT

    def test_repeat_tool(self, loaded_session):
        s = loaded_session
        s.config.set("measurement", "repeat_tool", True)
        place(s, MeasurementKind.CIRCLE, (50, 50), (60, 50))
        assert s.mode is Mode.COLLECT
        assert s.controller.tool.kind is MeasurementKind.CIRCLE
        assert s.controller.tool.buffer == []
        click(s, 20, 20)
        click(s, 20, 30)
        assert len(s.images[0].measurements) == 2


class TestCalibrationFlow:
    def test_prompt_then_collect(self, loaded_session):
        s = loaded_session
        s.request_calibration()
        assert s.mode is Mode.PROMPT

        s.key_down("d")
        assert s.mode is Mode.PROMPT

        s.confirm_calibration(50, "mm")
        assert s.mode is Mode.COLLECT
        assert s.controller.tool.kind is MeasurementKind.CALIBRATION

        click(s, 0, 0)
        click(s, 100, 0)
        assert s.mode is Mode.IDLE
        assert all(img.units_per_pixel == pytest.approx(0.5) for img in s.images)
        assert s.status == "Calibration: 50 mm"
        assert s.controller.pending_calibration is None

    def test_calibration_tool_opens_prompt(self, loaded_session):
        loaded_session.start_tool(MeasurementKind.CALIBRATION)
        assert loaded_session.mode is Mode.PROMPT

    def test_invalid_length_keeps_prompt(self, loaded_session):
        s = loaded_session
        s.request_calibration()
        s.confirm_calibration(-2, "mm")
        assert s.mode is Mode.PROMPT
        assert "positive" in s.status

    def test_cancel_prompt(self, loaded_session):
        s = loaded_session
        s.request_calibration()
        s.cancel()
        assert s.mode is Mode.IDLE
        assert s.controller.pending_calibration is None

    def test_zero_length_calibration_is_aborted(self, loaded_session):
        s = loaded_session
        s.request_calibration()
        s.confirm_calibration(10, "mm")
        click(s, 5, 5)
        click(s, 5, 5)
        assert s.mode is Mode.IDLE
        assert s.images[0].measurements == []
        assert not s.images[0].calibrated

    def test_drag_calibration_rescales_other_images(self, loaded_session):
        s = loaded_session
        s.request_calibration()
        s.confirm_calibration(50, "mm")
        click(s, 0, 0)
        click(s, 100, 0)

        s.start_edit()
        drag(s, (100, 1), (150, 0))
        assert s.images[2].units_per_pixel == pytest.approx(50.0 / 150.0)

    def test_drag_calibration_to_zero_is_reverted(self, loaded_session):
        s = loaded_session
        s.request_calibration()
        s.confirm_calibration(50, "mm")
        click(s, 10, 10)
        click(s, 110, 10)

        s.start_edit()
        drag(s, (110, 10), (10, 10))
        assert s.images[0].measurements[0].points[1] == (110.0, 10.0)
        assert s.images[1].units_per_pixel == pytest.approx(0.5)


class TestEditDeleteCopy:
    @pytest.fixture
    def measured(self, loaded_session):
        place(loaded_session, MeasurementKind.DISTANCE, (10, 10), (50, 10))
        return loaded_session

    def test_drag_point(self, measured):
        s = measured
        revision = s.revision
        s.start_edit()
        drag(s, (50, 11), (60, 10))
        m = s.images[0].measurements[0]
        assert m.points == [(10.0, 10.0), (60.0, 10.0)]
        assert m.value_px == pytest.approx(50.0)
        assert s.revision > revision
        assert s.mode is Mode.EDIT

    def test_alternate_drag_moves_whole_object(self, measured):
        s = measured
        s.start_edit()
        s.pointer_move(10, 10)
        s.alternate_down()
        s.pointer_move(20, 30)
        s.primary_up()
        assert s.images[0].measurements[0].points == [(20.0, 30.0), (60.0, 30.0)]

    def test_control_drag_moves_whole_object(self, measured):
        s = measured
        s.start_edit()
        s.key_down("control")
        drag(s, (10, 10), (10, 20))
        s.key_up("control")
        assert s.images[0].measurements[0].points == [(10.0, 20.0), (50.0, 20.0)]
        assert not s.controller.tool.move_all

    def test_degenerate_caliper_drag_is_reverted(self, loaded_session):
        s = loaded_session
        place(s, MeasurementKind.CALIPER, (10, 10), (50, 10), (30, 40))
        s.start_edit()
        drag(s, (50, 10), (10, 10))
        m = s.images[0].measurements[0]
        assert m.points == [(10.0, 10.0), (50.0, 10.0), (30.0, 40.0)]
        assert m.value_px == pytest.approx(30.0)
        assert s.controller.tool.drag is None
        assert s.status.startswith("Caliper not changed")

        s.pointer_move(100, 90)
        assert m.points[1] == (50.0, 10.0)

    def test_angle_arm_onto_vertex_is_reverted(self, loaded_session):
        s = loaded_session
        place(s, MeasurementKind.ANGLE, (60, 10), (30, 10), (30, 40))
        s.start_edit()
        drag(s, (60, 10), (30, 10))
        m = s.images[0].measurements[0]
        assert m.points[0] == (60.0, 10.0)
        assert m.value_px == pytest.approx(math.pi / 2)
        assert s.controller.tool.drag is None

    def test_miss_does_not_drag(self, measured):
        s = measured
        s.start_edit()
        drag(s, (100, 80), (120, 80))
        assert s.images[0].measurements[0].points == [(10.0, 10.0), (50.0, 10.0)]

    def test_double_click_exits_edit_only_off_target(self, measured):
        s = measured
        s.start_edit()
        s.pointer_move(10, 10)
        s.double_click()
        assert s.mode is Mode.EDIT
        s.pointer_move(150, 90)
        s.double_click()
        assert s.mode is Mode.IDLE

    def test_delete(self, measured, surface):
        s = measured
        s.key_down("delete")
        assert s.mode is Mode.DELETE
        click(s, 49, 10)
        assert s.images[0].measurements == []
        assert (0, 0) not in surface.instructions
        assert s.mode is Mode.DELETE

    def test_copy(self, measured):
        s = measured
        s.key_down("space")
        assert s.mode is Mode.COPY
        click(s, 10, 10)
        s.pointer_move(100, 50)
        assert s.controller.tool.snapshot is not None
        click(s, 100, 50)

        measurements = s.images[0].measurements
        assert len(measurements) == 2
        assert measurements[1].points == [(100.0, 50.0), (140.0, 50.0)]
        assert s.controller.tool.snapshot is None
        assert s.mode is Mode.COPY

        s.double_click()
        assert s.mode is Mode.IDLE

    def test_alternate_drops_copy(self, measured, surface):
        s = measured
        s.start_copy()
        click(s, 10, 10)
        s.alternate_down()
        assert s.controller.tool.snapshot is None
        assert surface.preview is None

    def test_copied_calibration_becomes_distance(self, loaded_session):
        s = loaded_session
        s.request_calibration()
        s.confirm_calibration(5, "cm")
        click(s, 0, 0)
        click(s, 100, 0)
        s.start_copy()
        click(s, 0, 0)
        click(s, 50, 50)
        assert s.images[0].measurements[1].kind is MeasurementKind.DISTANCE
        assert s.images[0].units_per_pixel == pytest.approx(0.05)


class TestView:
    def test_zoom_select(self, loaded_session):
        s = loaded_session
        s.config.set("measurement", "zoom_select", True)
        s.start_tool(MeasurementKind.DISTANCE)
        click(s, 100, 50)
        assert s.controller.tool.buffer == []
        assert s.viewport.width == pytest.approx(250)

        click(s, 101, 51)
        assert s.controller.tool.buffer == [(101.0, 51.0)]
        assert s.viewport.snapshot() == (0.0, 200.0, 0.0, 100.0)

    def test_alternate_click_leaves_zoom(self, loaded_session):
        s = loaded_session
        s.config.set("measurement", "zoom_select", True)
        s.start_tool(MeasurementKind.DISTANCE)
        click(s, 100, 50)
        click(s, 101, 51)
        click(s, 120, 50)
        assert s.controller.tool.zoomed

        s.alternate_down()
        assert not s.controller.tool.zoomed
        assert s.viewport.snapshot() == (0.0, 200.0, 0.0, 100.0)
        assert s.controller.tool.buffer == []

    def test_toggle_zoom_select(self, loaded_session):
        s = loaded_session
        s.key_down("z")
        assert s.config.get("measurement", "zoom_select") is True
        s.key_down("z")
        assert s.config.get("measurement", "zoom_select") is False

    def test_escape_restores_view(self, loaded_session):
        s = loaded_session
        s.start_tool(MeasurementKind.DISTANCE)
        s.scroll(-20, (100, 50))
        assert s.viewport.width < 200
        s.key_down("escape")
        assert s.viewport.snapshot() == (0.0, 200.0, 0.0, 100.0)

    def test_scroll_zooms_about_point(self, loaded_session):
        s = loaded_session
        s.scroll(10, (0, 0))
        assert s.viewport.x_min == 0.0
        assert s.viewport.width == pytest.approx(200 * 1.02 ** 10)

    def test_arrow_keys_change_image(self, loaded_session):
        s = loaded_session
        s.key_down("down")
        assert s.current_index == 1
        s.key_down("up")
        s.key_down("up")
        assert s.current_index == 0


class TestHitTest:
    def _images(self):
        image = ImageRecord(filename="a.png")
        image.measurements.append(create_measurement(MeasurementKind.DISTANCE, [(0, 0), (10, 0)]))
        image.measurements.append(create_measurement(MeasurementKind.DISTANCE, [(10, 0), (20, 0)]))
        return [image]

    def test_nearest_point(self):
        assert hit_test(self._images(), [0], (19, 1), 5) == HitTarget(0, 1, 1)

    def test_tie_keeps_first(self):
        assert hit_test(self._images(), [0], (10, 2), 5) == HitTarget(0, 0, 1)

    def test_outside_tolerance(self):
        assert hit_test(self._images(), [0], (5, 5), 3) is None

    def test_boundary_is_inclusive(self):
        assert hit_test(self._images(), [0], (0, 3), 3) == HitTarget(0, 0, 0)

    def test_stale_indices_are_no_hit(self):
        assert hit_test(self._images(), [4], (0, 0), 5) is None

    def test_show_all_picks_other_images(self, loaded_session):
        s = loaded_session
        s.images[2].measurements.append(create_measurement(MeasurementKind.DISTANCE, [(80, 80), (90, 80)]))
        s.start_edit()
        s.pointer_move(80, 80)
        assert s.controller.tool.hover is None

        s.config.set("measurement", "show_all", True)
        s.pointer_move(80, 80)
        assert s.controller.tool.hover == HitTarget(2, 0, 0)
