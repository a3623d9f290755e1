"""Tests for the measurement session and project files."""

import json

import pytest

from mensura.core.errors import NotCalibratedError
from mensura.core.model import MeasurementKind, PixelSize
from mensura.core.project import PROJECT_EXTENSION, Project, load_session, save_session
from mensura.core.session import MeasurementSession
from mensura.version import __version_display__


def click(session, x, y):
    session.pointer_move(x, y)
    session.primary_down()
    session.primary_up()


def calibrate(session, length=50, unit="mm", p1=(0, 0), p2=(100, 0)):
    session.request_calibration()
    session.confirm_calibration(length, unit)
    click(session, *p1)
    click(session, *p2)


def measure(session, kind, *points):
    session.start_tool(kind)
    for p in points:
        click(session, *p)
    if kind.open_ended:
        session.double_click()


class TestImages:
    def test_first_image_becomes_current(self, loaded_session, fake_loader):
        s = loaded_session
        assert len(s.images) == 3
        assert s.current_index == 0
        assert s.selection == [0]
        assert fake_loader.loads == ["a.png"]
        assert s.status == f"{__version_display__}: 1/3 a.png (not calibrated)"

    def test_missing_image_is_skipped(self, session, fake_loader):
        fake_loader.missing.add("gone.png")
        added = session.add_images(["a.png", "gone.png"])
        assert added == 1
        assert [img.filename for img in session.images] == ["a.png"]

    def test_new_image_inherits_calibration(self, loaded_session):
        s = loaded_session
        calibrate(s)
        s.add_images(["d.png"])
        assert s.images[3].calibration_source == 0
        assert s.images[3].units_per_pixel == pytest.approx(0.5)

    def test_unreadable_image_keeps_current(self, loaded_session, fake_loader):
        s = loaded_session
        fake_loader.missing.add("b.png")
        s.select_image(1)
        assert s.current_index == 0
        assert "b.png" in s.status

    def test_select_out_of_range(self, loaded_session):
        loaded_session.select_image(9)
        assert loaded_session.current_index == 0

    def test_remove_current(self, loaded_session):
        s = loaded_session
        s.remove_images([0])
        assert [img.filename for img in s.images] == ["b.png", "c.png"]
        assert s.current_index == 0

    def test_remove_before_current(self, loaded_session):
        s = loaded_session
        s.select_image(2)
        s.remove_images([0])
        assert s.current_index == 1
        assert s.images[s.current_index].filename == "c.png"

    def test_remove_all(self, loaded_session):
        s = loaded_session
        s.remove_images([0, 1, 2])
        assert s.images == []
        assert s.current_index is None
        assert s.current_image is None

    def test_remove_source_uncalibrates_dependants(self, loaded_session):
        s = loaded_session
        calibrate(s)
        s.remove_images([0])
        assert not any(img.calibrated for img in s.images)

    def test_selection_switches_current(self, loaded_session):
        s = loaded_session
        s.set_selection([2, 1, 7])
        assert s.selection == [1, 2]
        assert s.current_index == 1


class TestCalibrationCommands:
    def test_delete_calibration_uncalibrates_dependants(self, loaded_session):
        """Deleting the sole source's calibration resets both other images."""
        s = loaded_session
        calibrate(s)
        assert s.images[1].calibrated and s.images[2].calibrated
        s.delete_measurement(0, 0)
        for img in s.images[1:]:
            assert img.calibration_source is None
            assert img.pixel_size is None

    def test_apply_calibration(self, loaded_session):
        s = loaded_session
        calibrate(s)
        s.calibration.clear([2])
        s.set_selection([0, 2])
        s.apply_calibration()
        assert s.images[2].calibration_source == 0
        assert s.status == "Calibration applied to 1 image(s)"

    def test_apply_uncalibrated_reports_status(self, loaded_session):
        s = loaded_session
        s.set_selection([0, 1])
        s.apply_calibration()
        assert s.status == str(NotCalibratedError("The current image is not calibrated, nothing applied"))
        assert not s.images[1].calibrated

    def test_clear_calibration(self, loaded_session):
        s = loaded_session
        calibrate(s)
        s.set_selection([1])
        s.clear_calibration()
        assert s.images[0].calibrated
        assert not s.images[1].calibrated

    def test_title_shows_calibration(self, loaded_session):
        s = loaded_session
        calibrate(s)
        assert s.title().endswith("a.png (calibrated, px = 0.5 mm)")


class TestStatus:
    def test_listeners_receive_status(self, loaded_session):
        seen = []
        loaded_session.add_status_listener(seen.append)
        loaded_session.start_edit()
        assert seen == [loaded_session.status]

    def test_revision_counts_changes(self, loaded_session):
        s = loaded_session
        revision = s.revision
        measure(s, MeasurementKind.DISTANCE, (0, 0), (10, 0))
        assert s.revision > revision

    def test_reset(self, loaded_session, surface):
        s = loaded_session
        measure(s, MeasurementKind.DISTANCE, (0, 0), (10, 0))
        s.reset()
        assert s.images == []
        assert s.calibration.dependants(0) == []
        assert surface.instructions == {}


class TestExport:
    def test_measurement_table(self, loaded_session):
        s = loaded_session
        calibrate(s)
        measure(s, MeasurementKind.DISTANCE, (0, 0), (0, 30))
        s.select_image(1)
        s.calibration.clear([1])
        measure(s, MeasurementKind.ANGLE, (10, 0), (0, 0), (0, 10))

        rows = s.export_measurement_table()
        assert [(r.image, r.measurement, r.kind, r.unit, r.filename) for r in rows] == [
            (1, 1, "Calibration", "mm", "a.png"),
            (1, 2, "Distance", "mm", "a.png"),
            (2, 1, "Angle", "-", "b.png"),
        ]
        assert rows[1].value_px == pytest.approx(30.0)

    def test_full_dump(self, loaded_session):
        s = loaded_session
        measure(s, MeasurementKind.POLYLINE, (1, 1), (5, 1), (5, 9))
        dumps = s.export_full_dump()
        assert len(dumps) == 3
        first = dumps[0]
        assert first.pixel_size == PixelSize(1.0, 1.0, 1.0)
        assert first.unit == "-"
        m = first.measurements[0]
        assert m.index == 1
        assert m.kind == "Polyline"
        assert m.unit == "px"
        assert m.vertices == [(1.0, 1.0, 0.0), (5.0, 1.0, 0.0), (5.0, 9.0, 0.0)]
        assert dumps[1].measurements == []

    def test_full_dump_in_units(self, loaded_session):
        s = loaded_session
        calibrate(s, length=10, unit="cm")
        measure(s, MeasurementKind.CIRCLE, (50, 50), (50, 70))
        m = s.export_full_dump()[0].measurements[1]
        assert m.value_px == pytest.approx(20.0)
        assert m.value_unit == pytest.approx(2.0)
        assert m.unit == "cm"


class TestPortable:
    def test_round_trip(self, loaded_session, config_manager, fake_loader):
        s = loaded_session
        calibrate(s)
        measure(s, MeasurementKind.CALIPER, (0, 0), (0, 10), (5, 5))
        s.select_image(2)
        measure(s, MeasurementKind.SPLINE, (0, 0), (10, 10), (20, 0), (30, 10))

        data = s.to_portable()
        assert data[0]["calibration_source"] == 1
        assert data[0]["pixel_size"] == [0.5, 50.0, 100.0]

        restored = MeasurementSession(config_manager, loader=fake_loader)
        assert restored.from_portable(json.loads(json.dumps(data))) == 3
        for original, copy in zip(s.images, restored.images):
            assert copy.filename == original.filename
            assert copy.calibration_source == original.calibration_source
            assert copy.pixel_size == original.pixel_size
            assert [m.value_px for m in copy.measurements] == pytest.approx(
                [m.value_px for m in original.measurements]
            )
        assert restored.current_index == 0

    def test_value_unit_matches_display_value(self, loaded_session):
        s = loaded_session
        calibrate(s)
        measure(s, MeasurementKind.ANGLE, (60, 10), (30, 10), (30, 40))
        measure(s, MeasurementKind.DISTANCE, (0, 0), (0, 40))
        entries = s.to_portable()[0]["measurements"]
        assert entries[1]["kind"] == "Angle"
        assert entries[1]["value_unit"] == pytest.approx(90.0)
        assert entries[2]["value_unit"] == pytest.approx(20.0)

    def test_uncalibrated_entry(self, loaded_session):
        entry = loaded_session.to_portable()[1]
        assert entry["pixel_size"] == []
        assert entry["unit"] == ""
        assert entry["calibration_source"] == 0

    def test_missing_source_image(self, session, fake_loader):
        fake_loader.missing.add("gone.png")
        data = [
            {
                "filename": "gone.png",
                "pixel_size": [0.5, 50.0, 100.0],
                "unit": "mm",
                "calibration_source": 1,
                "measurements": [{"kind": "Calibration", "points": [[0, 0], [100, 0]]}],
            },
            {
                "filename": "b.png",
                "pixel_size": [0.5, 50.0, 100.0],
                "unit": "mm",
                "calibration_source": 1,
                "measurements": [
                    {"kind": "Distance", "points": [[0, 0], [0, 10]]},
                    {"kind": "Ellipse", "points": [[0, 0], [1, 1]]},
                    {"kind": "Angle", "points": [[0, 0], [1, 1]]},
                ],
            },
        ]
        assert session.from_portable(data) == 1
        image = session.images[0]
        assert image.filename == "b.png"
        assert not image.calibrated
        assert len(image.measurements) == 1
        assert image.measurements[0].value_px == pytest.approx(10.0)

    def test_source_without_own_calibration(self, session):
        data = [
            {"filename": "a.png", "pixel_size": [], "unit": "", "calibration_source": 0, "measurements": []},
            {
                "filename": "b.png",
                "pixel_size": [2.0, 2.0, 1.0],
                "unit": "m",
                "calibration_source": 1,
                "measurements": [],
            },
        ]
        session.from_portable(data)
        assert not session.images[1].calibrated


class TestProject:
    def test_save_and_load(self, loaded_session, config_manager, fake_loader, tmp_path):
        s = loaded_session
        calibrate(s)
        measure(s, MeasurementKind.DISTANCE, (0, 0), (0, 40))

        project = Project.new("Survey")
        path = project.save(s, tmp_path / "survey")
        assert path.suffix == PROJECT_EXTENSION
        assert project.name == "survey"
        assert project.dirty is False

        data = json.loads(path.read_text(encoding="utf-8"))
        assert data["_mensura_project"] == 1
        assert len(data["images"]) == 3

        restored = MeasurementSession(config_manager, loader=fake_loader)
        loaded = Project.load(path, restored)
        assert loaded.path == path
        assert restored.images[0].measurements[1].value_px == pytest.approx(40.0)
        assert restored.images[2].units_per_pixel == pytest.approx(0.5)

    def test_save_without_path(self, loaded_session):
        with pytest.raises(ValueError):
            Project().save(loaded_session)

    def test_unknown_version(self, session, tmp_path):
        path = tmp_path / "old.mensura"
        path.write_text(json.dumps({"images": []}), encoding="utf-8")
        with pytest.raises(ValueError):
            load_session(session, path)

    def test_version_must_be_an_integer(self, session, tmp_path):
        path = tmp_path / "odd.mensura"
        path.write_text(json.dumps({"_mensura_project": "1", "images": []}), encoding="utf-8")
        with pytest.raises(ValueError):
            load_session(session, path)

    def test_missing_images_reported(self, loaded_session, config_manager, fake_loader, tmp_path):
        path = save_session(loaded_session, tmp_path / "work.mensura")
        fake_loader.missing.add("b.png")
        restored = MeasurementSession(config_manager, loader=fake_loader)
        load_session(restored, path)
        assert len(restored.images) == 2
        assert "1 image(s) could not be found" in restored.status


class TestOptions:
    def test_accepted_value_redraws(self, loaded_session, surface):
        s = loaded_session
        measure(s, MeasurementKind.DISTANCE, (0, 0), (3, 4))
        assert surface.instructions[(0, 0)].label == "5 px"
        assert s.set_option("measurement", "number_format", ".2f") is True
        assert s.config.get("measurement", "number_format") == ".2f"
        assert surface.instructions[(0, 0)].label == "5.00 px"

    def test_rejected_value_keeps_previous(self, loaded_session):
        s = loaded_session
        assert s.set_option("measurement", "spline_points", 1) is False
        assert s.config.get("measurement", "spline_points") == 200
        assert "at least 2" in s.status

    def test_rejected_format_keeps_labels(self, loaded_session, surface):
        s = loaded_session
        measure(s, MeasurementKind.DISTANCE, (0, 0), (3, 4))
        assert s.set_option("measurement", "number_format", "") is False
        assert s.config.get("measurement", "number_format") == ".4g"
        assert surface.instructions[(0, 0)].label == "5 px"

    def test_reset_options(self, loaded_session):
        s = loaded_session
        s.set_option("measurement", "zoom_box", 400)
        s.set_option("measurement", "auto_edit", True)
        s.reset_options("measurement")
        assert s.config.get("measurement", "zoom_box") == 250
        assert s.config.get("measurement", "auto_edit") is False
        assert s.status == "Measurement settings reset to defaults"
