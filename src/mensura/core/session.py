"""Measurement session.

``MeasurementSession`` is the single entry point used by the desktop
window and by scripts. It owns the image list, the current image and the
selection, and wires the calibration manager, the interaction controller,
the viewport and the render surface together.

Every user-triggered ``MensuraError`` is recovered here: it is logged and
turned into the ``status`` text, and the session state is left unchanged.
"""

from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Iterable, NamedTuple

from loguru import logger

from mensura.config.manager import ConfigManager
from mensura.core.calibration import CalibrationManager, Unit
from mensura.core.errors import (
    DegenerateGeometryError,
    ImageUnavailableError,
    InvalidPointCountError,
    MensuraError,
)
from mensura.core.geometry import Point
from mensura.core.interaction import InteractionController, Mode
from mensura.core.model import (
    ImageRecord,
    Measurement,
    MeasurementKind,
    PixelSize,
    create_measurement,
    delete_measurement,
    display_unit,
    recompute,
    value_in_units,
)
from mensura.core.render import NullSurface, RenderSurface, build_instruction
from mensura.core.viewport import Viewport
from mensura.importers.image import ImageLoader, LoadedImage, sample_intensity
from mensura.version import __version_display__


# Settings that change how measurements are drawn
_REDRAW_OPTIONS = {"number_format", "spline_points", "show_all"}


class TableRow(NamedTuple):
    """One line of the measurement table. Indices are 1-based."""

    image: int
    measurement: int
    kind: str
    value_px: float
    unit: str
    filename: str


@dataclass
class MeasurementDump:
    index: int
    kind: str
    value_px: float
    value_unit: float
    unit: str
    vertices: list[tuple[float, ...]] = field(default_factory=list)


@dataclass
class ImageDump:
    filename: str
    pixel_size: PixelSize
    unit: str
    measurements: list[MeasurementDump] = field(default_factory=list)


class MeasurementSession:
    """Images, their measurements and the active tool."""

    def __init__(self, config: ConfigManager, loader=None, surface: RenderSurface | None = None):
        self.config = config
        self.loader = loader or ImageLoader()
        self.surface: RenderSurface = surface or NullSurface()
        self.images: list[ImageRecord] = []
        self.current_index: int | None = None
        self.current_image: LoadedImage | None = None
        self.selection: list[int] = []
        self.viewport = Viewport()
        self.calibration = CalibrationManager(self.images)
        self.controller = InteractionController(self)
        self.status = ""
        self.revision = 0
        self._status_listeners: list[Callable[[str], None]] = []

    # -- status --

    def add_status_listener(self, callback: Callable[[str], None]):
        self._status_listeners.append(callback)

    def set_status(self, text: str, log: bool = True):
        self.status = text
        if log:
            logger.info(text)
        for callback in self._status_listeners:
            try:
                callback(text)
            except Exception as e:
                logger.warning(f"Status listener failed: {e}")

    def mark_changed(self):
        """Bump the revision counter after any change worth saving."""
        self.revision += 1

    @contextmanager
    def _recover(self, action: str):
        """Turn user-facing errors into a status message."""
        try:
            yield
        except InvalidPointCountError:
            raise
        except MensuraError as e:
            logger.warning(f"{action} failed: {e}")
            self.set_status(str(e), log=False)

    @property
    def mode(self) -> Mode:
        return self.controller.mode

    def title(self) -> str:
        if self.current_index is None:
            return __version_display__
        image = self.images[self.current_index]
        text = self.calibration.calibration_text(
            self.current_index, self.config.get("measurement", "number_format")
        )
        return (
            f"{__version_display__}: {self.current_index + 1}/{len(self.images)} "
            f"{Path(image.filename).name} ({text})"
        )

    # -- drawing --

    def visible_indices(self) -> list[int]:
        """Images whose measurements are drawn and can be picked."""
        if self.current_index is None:
            return []
        if self.config.get("measurement", "show_all"):
            return list(range(len(self.images)))
        return [self.current_index]

    def draw_measurement(self, image_index: int, measurement_index: int):
        image = self.images[image_index]
        measurement = image.measurements[measurement_index]
        self.surface.draw(
            build_instruction(
                (image_index, measurement_index),
                measurement.kind,
                measurement.points,
                image,
                self.config.get("measurement", "number_format"),
                self.config.get("measurement", "spline_points"),
            )
        )

    def redraw(self):
        self.surface.clear()
        for i in self.visible_indices():
            for j in range(len(self.images[i].measurements)):
                self.draw_measurement(i, j)

    # -- images --

    def add_images(self, paths: Iterable[str | Path]) -> int:
        """Append images to the session; returns how many were added.

        New images take the calibration of the current image. The first
        image added to an empty session becomes the current one.
        """
        added = 0
        for path in paths:
            path = Path(path)
            try:
                width, height = self.loader.probe(path)
            except ImageUnavailableError as e:
                logger.warning(f"Skipping image: {e}")
                self.set_status(str(e), log=False)
                continue
            self.images.append(ImageRecord(filename=str(path), width=width, height=height))
            self.calibration.inherit(len(self.images) - 1, self.current_index)
            added += 1
            logger.info(f"Added image {len(self.images)}: {path.name} ({width}x{height})")

        if added:
            self.mark_changed()
        if added and self.current_index is None:
            self.select_image(len(self.images) - added)
        return added

    def remove_images(self, indices: Iterable[int]):
        """Remove images together with their measurements."""
        indices = sorted({i for i in indices if 0 <= i < len(self.images)})
        if not indices:
            return
        old_current = self.current_index
        self.controller.reset()
        self.calibration.remove_images(indices)
        self.mark_changed()
        self.selection = []
        self.surface.clear()
        logger.info(f"Removed {len(indices)} image(s)")

        if not self.images:
            self.current_index = None
            self.current_image = None
            self.set_status("No images loaded", log=False)
            return
        if old_current is None:
            target = 0
        elif old_current in indices:
            target = min(old_current, len(self.images) - 1)
        else:
            target = old_current - sum(1 for i in indices if i < old_current)
        self.current_index = None
        self.select_image(target)

    def select_image(self, index: int):
        """Make an image current. A decode failure leaves everything unchanged."""
        with self._recover("Select image"):
            if not 0 <= index < len(self.images):
                self.set_status(f"No image {index + 1}", log=False)
                return
            image = self.images[index]
            loaded = self.loader.load(Path(image.filename))
            self.controller.reset()
            self.current_index = index
            self.current_image = loaded
            image.width, image.height = loaded.width, loaded.height
            if index not in self.selection:
                self.selection = [index]
            self.viewport.fit(loaded.width, loaded.height)
            self.redraw()
            self.set_status(self.title(), log=False)

    def set_selection(self, indices: Iterable[int]):
        self.selection = sorted({i for i in indices if 0 <= i < len(self.images)})
        if self.selection and self.current_index not in self.selection:
            self.select_image(self.selection[0])

    # -- tools --

    def start_tool(self, kind: MeasurementKind | str):
        if not isinstance(kind, MeasurementKind):
            try:
                kind = MeasurementKind.parse(kind)
            except ValueError as e:
                self.set_status(str(e), log=False)
                return
        with self._recover("Start tool"):
            self.controller.start_tool(kind)

    def start_edit(self):
        self.controller.start_edit()

    def start_delete(self):
        self.controller.start_delete()

    def start_copy(self):
        self.controller.start_copy()

    def request_calibration(self):
        """Open the calibration prompt; the UI then asks for length and unit."""
        if self.current_index is None:
            self.set_status("No image selected", log=False)
            return
        self.controller.open_prompt()

    def confirm_calibration(self, length: float, unit: Unit | str):
        with self._recover("Calibration"):
            self.controller.confirm_calibration(length, unit)

    def cancel(self):
        self.controller.cancel()

    def apply_calibration(self):
        """Give the selected images the calibration of the current image."""
        with self._recover("Apply calibration"):
            if self.current_index is None:
                return
            targets = [i for i in self.selection if i != self.current_index]
            applied = self.calibration.apply_to(self.current_index, targets)
            self.mark_changed()
            self.redraw()
            self.set_status(f"Calibration applied to {len(applied)} image(s)")

    def clear_calibration(self):
        """Remove the calibration of the selected images."""
        with self._recover("Clear calibration"):
            targets = self.selection or ([self.current_index] if self.current_index is not None else [])
            self.calibration.clear(targets)
            self.mark_changed()
            self.redraw()
            self.set_status(f"Calibration cleared on {len(targets)} image(s)")

    # -- events --

    def pointer_move(self, x: float, y: float):
        with self._recover("Pointer move"):
            self.controller.pointer_move(x, y)

    def primary_down(self):
        with self._recover("Click"):
            self.controller.primary_down()

    def primary_up(self):
        with self._recover("Release"):
            self.controller.primary_up()

    def alternate_down(self):
        with self._recover("Alternate click"):
            self.controller.alternate_down()

    def double_click(self):
        with self._recover("Double click"):
            self.controller.double_click()

    def key_down(self, key: str):
        with self._recover("Key press"):
            self.controller.key_down(key)

    def key_up(self, key: str):
        self.controller.key_up(key)

    def scroll(self, amount: float, at: Point):
        self.controller.scroll(amount, at)

    # -- options --

    def set_option(self, group: str, key: str, value: Any) -> bool:
        """Change one setting. A rejected value keeps the old one and is reported in the status."""
        with self._recover(f"Setting {group}.{key}"):
            self.config.set(group, key, value)
            if group == "measurement" and key in _REDRAW_OPTIONS:
                self.redraw()
            return True
        return False

    def reset_options(self, group: str):
        """Restore the defaults of one settings group."""
        self.config.reset_group(group)
        if group == "measurement":
            self.redraw()
        self.set_status(f"{self.config.get_group_label(group)} settings reset to defaults")

    # -- measurements --

    def add_measurement(self, image_index: int, measurement: Measurement) -> int:
        """Append a finished measurement to an image and draw it."""
        image = self.images[image_index]
        recompute(measurement, image)
        image.measurements.append(measurement)
        index = len(image.measurements) - 1
        self.mark_changed()
        if image_index in self.visible_indices():
            self.draw_measurement(image_index, index)
        return index

    def delete_measurement(self, image_index: int, measurement_index: int) -> Measurement | None:
        """Delete one measurement. Deleting a calibration uncalibrates its dependants."""
        if not 0 <= image_index < len(self.images):
            return None
        image = self.images[image_index]
        removed = delete_measurement(image, measurement_index)
        if removed is None:
            return None
        if removed.kind is MeasurementKind.CALIBRATION and image.calibration_source == image_index:
            self.calibration.invalidate_source(image_index)
        self.mark_changed()
        logger.info(f"Deleted {removed.kind.value} {measurement_index + 1} from image {image_index + 1}")
        self.redraw()
        return removed

    # -- export --

    def export_measurement_table(self) -> list[TableRow]:
        rows = []
        for i, image in enumerate(self.images):
            unit = image.unit if image.calibrated else Unit.NONE.label
            name = Path(image.filename).name
            for j, m in enumerate(image.measurements):
                rows.append(TableRow(i + 1, j + 1, m.kind.value, m.value_px, unit, name))
        return rows

    def sample_intensities(self):
        """Store the image values under every measurement vertex."""
        for image in self.images:
            if not image.measurements:
                continue
            try:
                loaded = self.loader.load(Path(image.filename))
            except ImageUnavailableError as e:
                logger.warning(f"No intensities for {image.filename}: {e}")
                for m in image.measurements:
                    m.intensity = None
                continue
            for m in image.measurements:
                m.intensity = sample_intensity(loaded.pixels, m.points)

    def export_full_dump(self) -> list[ImageDump]:
        """Per-image pixel size and per-vertex coordinates with intensities."""
        self.sample_intensities()
        dumps = []
        for image in self.images:
            pixel_size = image.pixel_size if image.calibrated else PixelSize(1.0, 1.0, 1.0)
            unit = image.unit if image.calibrated else Unit.NONE.label
            dump = ImageDump(filename=image.filename, pixel_size=pixel_size, unit=unit)
            for j, m in enumerate(image.measurements):
                intensity = m.intensity or [() for _ in m.points]
                dump.measurements.append(
                    MeasurementDump(
                        index=j + 1,
                        kind=m.kind.value,
                        value_px=m.value_px,
                        value_unit=value_in_units(m, image),
                        unit=display_unit(m, image),
                        vertices=[(x, y, *v) for (x, y), v in zip(m.points, intensity)],
                    )
                )
            dumps.append(dump)
        return dumps

    # -- portable structure --

    def to_portable(self) -> list[dict[str, Any]]:
        """Plain data for saving. ``calibration_source`` is 1-based, 0 = none."""
        data = []
        for image in self.images:
            measurements = []
            for m in image.measurements:
                entry = m.to_dict()
                entry["value_unit"] = value_in_units(m, image)
                measurements.append(entry)
            data.append(
                {
                    "filename": image.filename,
                    "pixel_size": list(image.pixel_size) if image.calibrated else [],
                    "unit": image.unit if image.calibrated else "",
                    "calibration_source": image.calibration_source + 1 if image.calibrated else 0,
                    "measurements": measurements,
                }
            )
        return data

    def from_portable(self, data: list[dict[str, Any]]) -> int:
        """Replace the session with saved data; returns how many images loaded.

        Images whose file cannot be found are skipped, and images calibrated
        from a skipped image come back uncalibrated.
        """
        self.reset()
        index_map: dict[int, int] = {}
        sources: list[int] = []

        for position, entry in enumerate(data):
            filename = str(entry.get("filename", ""))
            try:
                width, height = self.loader.probe(Path(filename))
            except ImageUnavailableError as e:
                logger.warning(f"Skipping image {position + 1}: {e}")
                continue

            image = ImageRecord(filename=filename, width=width, height=height)
            for j, raw in enumerate(entry.get("measurements", [])):
                try:
                    kind = MeasurementKind.parse(raw["kind"])
                    image.measurements.append(create_measurement(kind, raw["points"]))
                except (KeyError, TypeError, ValueError, InvalidPointCountError, DegenerateGeometryError) as e:
                    logger.warning(f"Skipping measurement {j + 1} of {filename}: {e}")

            pixel_size = entry.get("pixel_size") or []
            source = int(entry.get("calibration_source") or 0) - 1
            if source >= 0 and len(pixel_size) == 3:
                image.pixel_size = PixelSize(*(float(v) for v in pixel_size))
                image.unit = str(entry.get("unit") or Unit.NONE.label)
            index_map[position] = len(self.images)
            sources.append(source)
            self.images.append(image)

        for image, source in zip(self.images, sources):
            if image.pixel_size is None:
                continue
            if source in index_map:
                image.calibration_source = index_map[source]
            else:
                logger.warning(f"Calibration source of {image.filename} is missing, image left uncalibrated")
                image.clear_calibration()

        # a source must calibrate itself
        for image in self.images:
            source = image.calibration_source
            if source is not None and self.images[source].calibration_source != source:
                logger.warning(f"Calibration source of {image.filename} is not calibrated, image left uncalibrated")
                image.clear_calibration()

        for image in self.images:
            for m in image.measurements:
                recompute(m, image)

        logger.info(f"Loaded {len(self.images)} of {len(data)} image(s)")
        if self.images:
            self.select_image(0)
        return len(self.images)

    def reset(self):
        """Drop all images and return to idle."""
        self.controller.reset()
        self.images.clear()
        self.current_index = None
        self.current_image = None
        self.selection = []
        self.viewport.fit(1, 1)
        self.surface.clear()
        self.set_status("...", log=False)
