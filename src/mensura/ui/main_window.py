"""Main application window for Mensura.

Image list and tool buttons on the left, the image canvas in the centre,
the session status in the status bar.
"""

from pathlib import Path

from loguru import logger
from PySide6.QtCore import Qt
from PySide6.QtGui import QAction, QKeySequence
from PySide6.QtWidgets import (
    QAbstractItemView,
    QComboBox,
    QDialog,
    QDialogButtonBox,
    QDockWidget,
    QDoubleSpinBox,
    QFileDialog,
    QFormLayout,
    QGridLayout,
    QLabel,
    QListWidget,
    QMainWindow,
    QMessageBox,
    QPushButton,
    QStatusBar,
    QVBoxLayout,
    QWidget,
)

from mensura.config.manager import ConfigManager
from mensura.core.calibration import Unit
from mensura.core.interaction import Mode
from mensura.core.model import MeasurementKind
from mensura.core.project import PROJECT_EXTENSION, Project
from mensura.core.session import MeasurementSession
from mensura.exporters.report import ExportFormat, export_report
from mensura.importers.image import SUPPORTED_EXTENSIONS
from mensura.ui.image_view import ImageView
from mensura.ui.options_dialog import OptionsDialog
from mensura.version import __version_display__

_IMAGE_FILTER = "Images (" + " ".join(f"*{ext}" for ext in sorted(SUPPORTED_EXTENSIONS)) + ");;All Files (*)"
_PROJECT_FILTER = f"Mensura Projects (*{PROJECT_EXTENSION});;All Files (*)"

# Tool buttons and their shortcut letter
_TOOLS = [
    (MeasurementKind.DISTANCE, "D"),
    (MeasurementKind.CALIPER, "C"),
    (MeasurementKind.POLYLINE, "P"),
    (MeasurementKind.SPLINE, "S"),
    (MeasurementKind.CIRCLE, "O"),
    (MeasurementKind.ANGLE, "A"),
]


class CalibrationDialog(QDialog):
    """Asks for the real length of the calibration object."""

    def __init__(self, length: float, unit: str, parent=None):
        super().__init__(parent)
        self.setWindowTitle("Calibrate")
        layout = QFormLayout(self)

        self._length = QDoubleSpinBox()
        self._length.setDecimals(6)
        self._length.setRange(1e-9, 1e12)
        self._length.setValue(length)
        layout.addRow("Length:", self._length)

        self._unit = QComboBox()
        self._unit.addItems([u.label for u in Unit])
        self._unit.setCurrentText(unit)
        layout.addRow("Unit:", self._unit)

        buttons = QDialogButtonBox(
            QDialogButtonBox.StandardButton.Ok | QDialogButtonBox.StandardButton.Cancel
        )
        buttons.accepted.connect(self.accept)
        buttons.rejected.connect(self.reject)
        layout.addRow(buttons)

    def values(self) -> tuple[float, str]:
        return self._length.value(), self._unit.currentText()


class MensuraMainWindow(QMainWindow):
    """Primary application window."""

    def __init__(self, config: ConfigManager):
        super().__init__()
        self._config = config
        self.setMinimumSize(1024, 700)

        self._view = ImageView(config)
        self._session = MeasurementSession(config, surface=self._view.surface)
        self._view.set_session(self._session)
        self._view.changed.connect(self._sync)
        self.setCentralWidget(self._view)

        self._project = Project.new()
        self._saved_revision = self._session.revision

        self._build_menu_bar()
        self._build_side_panel()
        self._build_status_bar()
        self._session.add_status_listener(self._status_label.setText)
        self._sync()

    @property
    def session(self) -> MeasurementSession:
        return self._session

    # -------------------------------------------------------------------
    # Layout
    # -------------------------------------------------------------------

    def _action(self, text: str, shortcut: str = None, callback=None, checkable: bool = False) -> QAction:
        """Helper to create a QAction."""
        action = QAction(text, self)
        if shortcut:
            action.setShortcut(QKeySequence(shortcut))
        action.setCheckable(checkable)
        if callback:
            action.triggered.connect(callback)
        return action

    def _build_menu_bar(self):
        menu_bar = self.menuBar()

        file_menu = menu_bar.addMenu("&File")
        file_menu.addAction(self._action("&New", "Ctrl+N", self._new_session))
        file_menu.addAction(self._action("&Add Images...", "Ctrl+I", self._add_images))
        file_menu.addAction(self._action("&Remove Images", callback=self._remove_images))
        file_menu.addSeparator()
        file_menu.addAction(self._action("&Open Project...", "Ctrl+O", self._open_project))
        file_menu.addAction(self._action("&Save", "Ctrl+S", self._save_project))
        file_menu.addAction(self._action("Save &As...", "Ctrl+Shift+S", self._save_project_as))
        file_menu.addSeparator()
        file_menu.addAction(self._action("Export &Text Report...", callback=lambda: self._export(ExportFormat.TXT)))
        file_menu.addAction(self._action("Export &CSV Table...", callback=lambda: self._export(ExportFormat.CSV)))
        file_menu.addSeparator()
        file_menu.addAction(self._action("E&xit", "Alt+F4", self.close))

        options = menu_bar.addMenu("&Options")
        self._option_actions = {}
        for key, text in [
            ("auto_edit", "Auto &Edit"),
            ("repeat_tool", "&Repeat Tool"),
            ("show_all", "Show &All Images"),
            ("zoom_select", "&Zoom Select"),
        ]:
            action = self._action(text, checkable=True)
            action.setChecked(bool(self._config.get("measurement", key)))
            action.toggled.connect(lambda checked, k=key: self._set_option(k, checked))
            options.addAction(action)
            self._option_actions[key] = action
        options.addSeparator()
        options.addAction(self._action("&Settings...", "Ctrl+,", self._show_options))
        self._config.add_listener(self._on_config_changed)

        help_menu = menu_bar.addMenu("&Help")
        help_menu.addAction(self._action("&About Mensura", callback=self._show_about))

    def _build_side_panel(self):
        panel = QWidget()
        layout = QVBoxLayout(panel)

        layout.addWidget(QLabel("Images"))
        self._image_list = QListWidget()
        self._image_list.setSelectionMode(QAbstractItemView.SelectionMode.ExtendedSelection)
        self._image_list.itemSelectionChanged.connect(self._on_list_selection)
        layout.addWidget(self._image_list, stretch=1)

        layout.addWidget(QLabel("Calibration"))
        cal = QGridLayout()
        cal.addWidget(self._button("Calibrate", self._calibrate), 0, 0)
        cal.addWidget(self._button("Apply", self._session.apply_calibration), 0, 1)
        cal.addWidget(self._button("Clear", self._session.clear_calibration), 0, 2)
        layout.addLayout(cal)

        layout.addWidget(QLabel("Measure"))
        tools = QGridLayout()
        for n, (kind, key) in enumerate(_TOOLS):
            button = self._button(
                f"{kind.value} ({key})", lambda checked=False, k=kind: self._session.start_tool(k)
            )
            tools.addWidget(button, n // 2, n % 2)
        layout.addLayout(tools)

        layout.addWidget(QLabel("Modify"))
        modify = QGridLayout()
        modify.addWidget(self._button("Edit (E)", self._session.start_edit), 0, 0)
        modify.addWidget(self._button("Delete (Del)", self._session.start_delete), 0, 1)
        modify.addWidget(self._button("Copy (Space)", self._session.start_copy), 1, 0)
        modify.addWidget(self._button("Cancel (Esc)", self._session.cancel), 1, 1)
        layout.addLayout(modify)

        dock = QDockWidget("Controls", self)
        dock.setWidget(panel)
        dock.setFeatures(QDockWidget.DockWidgetFeature.NoDockWidgetFeatures)
        self.addDockWidget(Qt.DockWidgetArea.LeftDockWidgetArea, dock)

    def _button(self, text: str, callback) -> QPushButton:
        button = QPushButton(text)
        button.setFocusPolicy(Qt.FocusPolicy.NoFocus)
        button.clicked.connect(lambda checked=False: (callback(), self._sync()))
        return button

    def _build_status_bar(self):
        status = QStatusBar()
        self.setStatusBar(status)
        self._status_label = QLabel("Ready")
        status.addWidget(self._status_label, stretch=1)

    # -------------------------------------------------------------------
    # Session sync
    # -------------------------------------------------------------------

    def _sync(self):
        """Bring the image list and title in line with the session."""
        session = self._session
        names = [Path(img.filename).name for img in session.images]
        current = [self._image_list.item(i).text() for i in range(self._image_list.count())]
        self._image_list.blockSignals(True)
        if names != current:
            self._image_list.clear()
            self._image_list.addItems(names)
        selected = set(session.selection)
        for i in range(self._image_list.count()):
            self._image_list.item(i).setSelected(i in selected)
        self._image_list.blockSignals(False)

        if session.revision != self._saved_revision:
            self._project.dirty = True
        dirty = " *" if self._project.dirty else ""
        self.setWindowTitle(f"{session.title()}{dirty}")
        self._view.update()

    def _on_list_selection(self):
        rows = sorted(index.row() for index in self._image_list.selectedIndexes())
        self._session.set_selection(rows)
        self._view.setFocus()
        self._sync()

    def _set_option(self, key: str, checked: bool):
        self._session.set_option("measurement", key, checked)
        self._view.update()

    def _show_options(self):
        OptionsDialog(self._session, self).exec()
        self._view.setFocus()
        self._sync()

    def _on_config_changed(self, group, key, new_value, old_value):
        action = self._option_actions.get(key) if group == "measurement" else None
        if action is not None and action.isChecked() != bool(new_value):
            action.blockSignals(True)
            action.setChecked(bool(new_value))
            action.blockSignals(False)

    # -------------------------------------------------------------------
    # Actions
    # -------------------------------------------------------------------

    def _calibrate(self):
        self._session.request_calibration()
        if self._session.mode is not Mode.PROMPT:
            return
        dialog = CalibrationDialog(
            self._config.get("measurement", "default_calibration_length"),
            self._config.get("measurement", "default_unit"),
            self,
        )
        if dialog.exec() == QDialog.DialogCode.Accepted:
            length, unit = dialog.values()
            self._session.confirm_calibration(length, unit)
            self._config.set("measurement", "default_calibration_length", length)
            self._config.set("measurement", "default_unit", unit)
        else:
            self._session.cancel()
        self._view.setFocus()

    def _new_session(self):
        if not self._confirm_discard():
            return
        self._session.reset()
        self._project = Project.new()
        self._saved_revision = self._session.revision
        logger.info("Started a new session")
        self._sync()

    def _add_images(self):
        start = self._config.get("general", "last_directory", "")
        paths, _ = QFileDialog.getOpenFileNames(self, "Add Images", start, _IMAGE_FILTER)
        if not paths:
            return
        self._config.set("general", "last_directory", str(Path(paths[0]).parent))
        self._session.add_images(paths)
        self._sync()

    def _remove_images(self):
        if not self._session.selection:
            return
        self._session.remove_images(self._session.selection)
        self._sync()

    def _confirm_discard(self) -> bool:
        """If the session has unsaved changes, ask the user. Returns True to proceed."""
        if not self._project.dirty:
            return True
        reply = QMessageBox.question(
            self,
            "Unsaved Changes",
            "The measurements have unsaved changes.\n\nDiscard changes?",
            QMessageBox.StandardButton.Save
            | QMessageBox.StandardButton.Discard
            | QMessageBox.StandardButton.Cancel,
        )
        if reply == QMessageBox.StandardButton.Save:
            self._save_project()
            return True
        return reply == QMessageBox.StandardButton.Discard

    def open_project(self, path: str | Path):
        try:
            self._project = Project.load(path, self._session)
            self._saved_revision = self._session.revision
        except (OSError, ValueError) as e:
            logger.error(f"Could not open project {path}: {e}")
            QMessageBox.critical(self, "Open Failed", f"Could not open project:\n\n{e}")
        self._sync()

    def _open_project(self):
        if not self._confirm_discard():
            return
        path, _ = QFileDialog.getOpenFileName(self, "Open Project", "", _PROJECT_FILTER)
        if path:
            self.open_project(path)

    def _save_project(self):
        if self._project.path is None:
            self._save_project_as()
            return
        self._write_project(self._project.path)

    def _save_project_as(self):
        path, _ = QFileDialog.getSaveFileName(self, "Save Project As", self._project.name, _PROJECT_FILTER)
        if path:
            self._write_project(path)

    def _write_project(self, path):
        try:
            saved = self._project.save(self._session, path)
            self._saved_revision = self._session.revision
            self._session.set_status(f"Saved: {saved.name}", log=False)
        except OSError as e:
            logger.error(f"Save failed: {e}")
            QMessageBox.critical(self, "Save Failed", f"Could not save project:\n\n{e}")
        self._sync()

    def _export(self, fmt: ExportFormat):
        path, _ = QFileDialog.getSaveFileName(
            self, "Export Measurements", self._project.name, f"{fmt.name} (*.{fmt.value})"
        )
        if not path:
            return
        try:
            written = export_report(self._session, Path(path), fmt)
            self._session.set_status(f"Exported: {written.name}", log=False)
        except OSError as e:
            logger.error(f"Export failed: {e}")
            QMessageBox.critical(self, "Export Failed", f"Could not export:\n\n{e}")

    def _show_about(self):
        QMessageBox.about(
            self,
            "About Mensura",
            f"<h2>{__version_display__}</h2>"
            "<p>Point-and-click measurements on calibrated images.</p>"
            "<p>Keys: D distance, C caliper, P polyline, S spline, O circle, A angle, "
            "E edit, Del delete, Space copy, Z zoom select, Esc cancel, "
            "Up/Down change image.</p>",
        )

    def closeEvent(self, event):
        """Save config before closing. Prompt if the session is unsaved."""
        if not self._confirm_discard():
            event.ignore()
            return
        self._config.save()
        event.accept()
