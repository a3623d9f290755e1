"""Tests for draw instructions and render surfaces."""

import pytest

from mensura.core.model import ImageRecord, MeasurementKind, PixelSize
from mensura.core.render import (
    NullSurface,
    RecordingSurface,
    build_instruction,
    format_number,
)


@pytest.fixture
def calibrated_image():
    image = ImageRecord(filename="a.png")
    image.set_calibration(0, PixelSize(0.5, 50.0, 100.0), "mm")
    return image


class TestFormatNumber:
    def test_format_spec(self):
        assert format_number(3.14159, ".3g") == "3.14"

    def test_percent_style(self):
        assert format_number(2.5, "%.2f") == "2.50"


class TestBuildInstruction:
    def test_distance(self):
        ins = build_instruction((0, 0), MeasurementKind.DISTANCE, [(0, 0), (3, 4)], None)
        assert ins.label == "5 px"
        assert ins.label_position == (1.5, 2.0)
        assert ins.label_rotation == pytest.approx(53.1301, abs=1e-4)
        assert ins.curve == ()
        assert not ins.preview

    def test_distance_in_units(self, calibrated_image):
        ins = build_instruction((0, 0), MeasurementKind.DISTANCE, [(0, 0), (0, 5)], calibrated_image)
        assert ins.label == "2.5 mm"

    def test_calibration_label_in_pixels(self, calibrated_image):
        ins = build_instruction((0, 0), MeasurementKind.CALIBRATION, [(0, 0), (100, 0)], calibrated_image)
        assert ins.label == "100 px"

    def test_circle_outline(self):
        ins = build_instruction((0, 1), MeasurementKind.CIRCLE, [(10, 10), (10, 14)], None, sample_count=60)
        assert len(ins.curve) == 60
        assert ins.label == "4 px"

    def test_caliper_draws_perpendicular(self):
        ins = build_instruction((0, 0), MeasurementKind.CALIPER, [(0, 0), (0, 10), (5, 5)], None)
        assert ins.curve[0] == (5.0, 5.0)
        assert ins.curve[1] == pytest.approx((0.0, 5.0))
        assert ins.label_position == pytest.approx((2.5, 5.0))

    def test_angle_arc_and_label(self):
        ins = build_instruction((0, 0), MeasurementKind.ANGLE, [(1, 0), (0, 0), (0, 1)], None)
        assert ins.label == "90 deg"
        assert ins.label_position == pytest.approx((0.7071068, 0.7071068))
        assert ins.label_rotation == pytest.approx(-45.0)

    def test_spline_is_resampled(self):
        points = [(0, 0), (10, 10), (20, 0), (30, 10)]
        ins = build_instruction((0, 0), MeasurementKind.SPLINE, points, None, sample_count=50)
        assert len(ins.curve) == 50
        assert ins.label == "42.43 px"

    def test_two_point_spline_has_no_curve(self):
        ins = build_instruction((0, 0), MeasurementKind.SPLINE, [(0, 0), (10, 0)], None)
        assert ins.curve == ()
        assert ins.label_position == (5.0, 0.0)

    def test_single_point_is_bare(self):
        ins = build_instruction((0, 0), MeasurementKind.DISTANCE, [(4, 4)], None, preview=True)
        assert ins.label == ""
        assert ins.label_position is None
        assert ins.preview

    def test_degenerate_caliper_is_bare(self):
        ins = build_instruction((0, 0), MeasurementKind.CALIPER, [(1, 1), (1, 1), (3, 3)], None)
        assert ins.label == ""
        assert ins.points == ((1.0, 1.0), (1.0, 1.0), (3.0, 3.0))


class TestSurfaces:
    def test_recording_surface_keeps_latest(self):
        calls = []
        surface = RecordingSurface(on_change=lambda: calls.append(1))
        first = build_instruction((0, 0), MeasurementKind.DISTANCE, [(0, 0), (1, 0)], None)
        second = build_instruction((0, 0), MeasurementKind.DISTANCE, [(0, 0), (2, 0)], None)
        surface.draw(first)
        surface.draw(second)
        assert surface.instructions == {(0, 0): second}
        surface.remove((9, 9))
        surface.remove((0, 0))
        assert surface.instructions == {}
        assert len(calls) == 3

    def test_failing_listener_is_contained(self):
        def broken():
            raise RuntimeError("paint failed")

        surface = RecordingSurface(on_change=broken)
        surface.clear()
        assert surface.instructions == {}

    def test_null_surface(self):
        surface = NullSurface()
        surface.draw(build_instruction((0, 0), MeasurementKind.DISTANCE, [(0, 0), (1, 0)], None))
        surface.remove((0, 0))
        surface.clear()
