"""Options dialog for Mensura.

One tab per configuration group. Values go through the session, so a
rejected value keeps the previous setting and its reason is shown.
"""

from typing import Any

from PySide6.QtCore import Qt
from PySide6.QtGui import QColor
from PySide6.QtWidgets import (
    QCheckBox,
    QColorDialog,
    QComboBox,
    QDialog,
    QDialogButtonBox,
    QDoubleSpinBox,
    QFormLayout,
    QHBoxLayout,
    QLabel,
    QLineEdit,
    QPushButton,
    QScrollArea,
    QSpinBox,
    QTabWidget,
    QVBoxLayout,
    QWidget,
)

from mensura.config.manager import LOG_LEVELS
from mensura.core.calibration import Unit
from mensura.core.session import MeasurementSession

# Groups shown in the dialog
_GROUPS = ("measurement", "appearance", "logging")

# Keys with known options shown as combo boxes
_ENUM_OPTIONS = {
    "default_unit": [u.label for u in Unit],
    "log_level": list(LOG_LEVELS),
}

# Keys whose value lies in [0, 1]
_FRACTION_KEYS = {"hit_tolerance", "text_box_alpha"}


class OptionsDialog(QDialog):
    """Tabbed editor for the measurement, appearance and logging settings."""

    def __init__(self, session: MeasurementSession, parent=None):
        super().__init__(parent)
        self._session = session
        self._config = session.config
        self._widgets: dict[tuple[str, str], QWidget] = {}

        self.setWindowTitle("Mensura Options")
        self.setMinimumSize(480, 420)

        layout = QVBoxLayout(self)

        self._tabs = QTabWidget()
        for group in _GROUPS:
            self._tabs.addTab(self._build_group_tab(group), self._config.get_group_label(group))
        layout.addWidget(self._tabs)

        self._status_label = QLabel("")
        self._status_label.setWordWrap(True)
        layout.addWidget(self._status_label)

        buttons = QDialogButtonBox(
            QDialogButtonBox.StandardButton.Ok
            | QDialogButtonBox.StandardButton.Cancel
            | QDialogButtonBox.StandardButton.Apply
            | QDialogButtonBox.StandardButton.RestoreDefaults
        )
        buttons.accepted.connect(self._apply_and_close)
        buttons.rejected.connect(self.reject)
        buttons.button(QDialogButtonBox.StandardButton.Apply).clicked.connect(self._apply)
        buttons.button(QDialogButtonBox.StandardButton.RestoreDefaults).clicked.connect(self._restore_defaults)
        layout.addWidget(buttons)

    def _build_group_tab(self, group: str) -> QWidget:
        scroll = QScrollArea()
        scroll.setWidgetResizable(True)

        container = QWidget()
        form = QFormLayout(container)
        form.setLabelAlignment(Qt.AlignmentFlag.AlignRight)
        form.setSpacing(8)

        for key, value in self._config.get_group(group).items():
            row, widget = self._create_widget_for_value(key, value)
            form.addRow(key.replace("_", " ").capitalize() + ":", row)
            self._widgets[(group, key)] = widget

        scroll.setWidget(container)
        return scroll

    def _create_widget_for_value(self, key: str, value: Any) -> tuple[QWidget, QWidget]:
        """Input widget for one value; returns (row widget, input widget)."""
        if isinstance(value, bool):
            widget = QCheckBox()
            widget.setChecked(value)
            return widget, widget

        if isinstance(value, int):
            widget = QSpinBox()
            widget.setRange(0, 999999)
            widget.setValue(value)
            return widget, widget

        if isinstance(value, float):
            widget = QDoubleSpinBox()
            if key in _FRACTION_KEYS:
                widget.setRange(0.0, 1.0)
                widget.setSingleStep(0.01)
            else:
                widget.setRange(0.0, 999999.0)
                widget.setSingleStep(0.1)
            widget.setDecimals(3)
            widget.setValue(value)
            return widget, widget

        if key in _ENUM_OPTIONS:
            widget = QComboBox()
            widget.addItems(_ENUM_OPTIONS[key])
            widget.setCurrentText(str(value))
            return widget, widget

        line_edit = QLineEdit(str(value))
        if not key.endswith("_color"):
            return line_edit, line_edit

        container = QWidget()
        row = QHBoxLayout(container)
        row.setContentsMargins(0, 0, 0, 0)
        row.addWidget(line_edit)
        pick = QPushButton("Pick...")
        pick.setFixedWidth(70)
        pick.clicked.connect(lambda checked=False, le=line_edit: self._pick_color(le))
        row.addWidget(pick)
        return container, line_edit

    def _pick_color(self, line_edit: QLineEdit):
        color = QColorDialog.getColor(QColor(line_edit.text()), self, "Select Colour")
        if color.isValid():
            line_edit.setText(color.name())

    def _read_widget_value(self, widget: QWidget) -> Any:
        if isinstance(widget, QCheckBox):
            return widget.isChecked()
        if isinstance(widget, (QSpinBox, QDoubleSpinBox)):
            return widget.value()
        if isinstance(widget, QComboBox):
            return widget.currentText()
        if isinstance(widget, QLineEdit):
            return widget.text().strip()
        return None

    def _write_widget_value(self, widget: QWidget, value: Any):
        if isinstance(widget, QCheckBox):
            widget.setChecked(bool(value))
        elif isinstance(widget, (QSpinBox, QDoubleSpinBox)):
            widget.setValue(value)
        elif isinstance(widget, QComboBox):
            widget.setCurrentText(str(value))
        elif isinstance(widget, QLineEdit):
            widget.setText(str(value))

    def _apply(self) -> bool:
        """Push changed values to the session. Returns False if any was rejected."""
        rejected = []
        for (group, key), widget in self._widgets.items():
            value = self._read_widget_value(widget)
            if value is None or value == self._config.get(group, key):
                continue
            if not self._session.set_option(group, key, value):
                rejected.append(self._session.status)
                self._write_widget_value(widget, self._config.get(group, key))
        self._config.save()

        if rejected:
            self._status_label.setText("\n".join(rejected))
            return False
        self._status_label.setText("Options saved.")
        return True

    def _restore_defaults(self):
        group = _GROUPS[self._tabs.currentIndex()]
        self._session.reset_options(group)
        for (g, key), widget in self._widgets.items():
            if g == group:
                self._write_widget_value(widget, self._config.get(g, key))
        self._status_label.setText(self._session.status)

    def _apply_and_close(self):
        if self._apply():
            self.accept()
