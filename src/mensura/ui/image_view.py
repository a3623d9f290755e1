"""Image canvas: paints the current image and its measurements.

The widget owns the session's ``RecordingSurface``. It maps widget
coordinates to image coordinates through the session viewport and
forwards mouse, wheel and keyboard events to the session. Middle-drag
pans the view.
"""

import numpy as np
from PySide6.QtCore import QPointF, QRectF, Qt, Signal
from PySide6.QtGui import QColor, QFont, QImage, QPainter, QPainterPath, QPen, QPolygonF
from PySide6.QtWidgets import QWidget

from mensura.config.manager import ConfigManager
from mensura.core.model import MeasurementKind
from mensura.core.render import DrawInstruction, RecordingSurface
from mensura.core.session import MeasurementSession

# Qt key -> name understood by the session
_KEY_NAMES = {
    Qt.Key.Key_Escape: "escape",
    Qt.Key.Key_Space: "space",
    Qt.Key.Key_Delete: "delete",
    Qt.Key.Key_Backspace: "backspace",
    Qt.Key.Key_Up: "up",
    Qt.Key.Key_Down: "down",
    Qt.Key.Key_Control: "control",
}


def to_qimage(pixels: np.ndarray) -> QImage:
    """Wrap a grayscale or RGB array in an 8-bit QImage (copied)."""
    data = np.asarray(pixels)
    if data.dtype != np.uint8:
        data = data.astype(np.float64)
        low, high = float(data.min()), float(data.max())
        scale = 255.0 / (high - low) if high > low else 0.0
        data = ((data - low) * scale).astype(np.uint8)
    data = np.ascontiguousarray(data)
    height, width = data.shape[:2]
    if data.ndim == 2:
        image = QImage(data.data, width, height, width, QImage.Format.Format_Grayscale8)
    else:
        image = QImage(data.data, width, height, 3 * width, QImage.Format.Format_RGB888)
    return image.copy()


class ImageView(QWidget):
    """Canvas for one session."""

    changed = Signal()

    def __init__(self, config: ConfigManager, parent=None):
        super().__init__(parent)
        self._config = config
        self.surface = RecordingSurface(on_change=self.update)
        self.session: MeasurementSession | None = None
        self._qimage: QImage | None = None
        self._qimage_source = None
        self._pan_start: QPointF | None = None

        self.setMouseTracking(True)
        self.setFocusPolicy(Qt.FocusPolicy.StrongFocus)
        self.setMinimumSize(400, 300)

    def set_session(self, session: MeasurementSession):
        self.session = session

    # -- coordinates --

    def _to_image(self, pos: QPointF) -> tuple[float, float]:
        return self.session.viewport.to_image((pos.x(), pos.y()), self.width(), self.height())

    def _to_widget(self, point) -> QPointF:
        x, y = self.session.viewport.to_widget(point, self.width(), self.height())
        return QPointF(x, y)

    # -- painting --

    def _current_qimage(self) -> QImage | None:
        loaded = self.session.current_image if self.session else None
        if loaded is None:
            return None
        if self._qimage_source is not loaded:
            self._qimage = to_qimage(loaded.pixels)
            self._qimage_source = loaded
        return self._qimage

    def paintEvent(self, event):
        painter = QPainter(self)
        painter.fillRect(self.rect(), QColor(40, 40, 40))
        image = self._current_qimage()
        if image is None:
            painter.setPen(QColor(200, 200, 200))
            painter.drawText(self.rect(), Qt.AlignmentFlag.AlignCenter, "Add images to start measuring")
            painter.end()
            return

        painter.setRenderHint(QPainter.RenderHint.Antialiasing)
        vp = self.session.viewport
        top_left = self._to_widget((vp.x_min, vp.y_min))
        bottom_right = self._to_widget((vp.x_max, vp.y_max))
        painter.drawImage(
            QRectF(top_left, bottom_right),
            image,
            QRectF(vp.x_min, vp.y_min, vp.width, vp.height),
        )

        for instruction in list(self.surface.instructions.values()):
            self._draw_instruction(painter, instruction)
        painter.end()

    def _polyline(self, painter: QPainter, points):
        if len(points) >= 2:
            painter.drawPolyline(QPolygonF([self._to_widget(p) for p in points]))

    def _draw_instruction(self, painter: QPainter, ins: DrawInstruction):
        appearance = self._config.get_group("appearance")
        color = QColor(appearance["preview_color"] if ins.preview else appearance["primary_color"])
        primary = QPen(color, appearance["line_width"])
        secondary = QPen(color, appearance["secondary_line_width"], Qt.PenStyle.DashLine)

        painter.setPen(primary)
        if ins.kind is MeasurementKind.CIRCLE:
            self._polyline(painter, ins.curve)
            painter.setPen(secondary)
            self._polyline(painter, ins.points)
        elif ins.kind is MeasurementKind.CALIPER:
            self._polyline(painter, ins.points[:2])
            painter.setPen(secondary)
            self._polyline(painter, ins.curve)
        elif ins.kind is MeasurementKind.ANGLE:
            self._polyline(painter, ins.points)
            painter.setPen(secondary)
            self._polyline(painter, ins.curve)
        elif ins.kind is MeasurementKind.SPLINE and ins.curve:
            self._polyline(painter, ins.curve)
            painter.setPen(secondary)
            self._polyline(painter, ins.points)
        else:
            self._polyline(painter, ins.points)

        size = appearance["marker_size"]
        painter.setPen(QPen(QColor(appearance["secondary_color"]), 1.0))
        painter.setBrush(color)
        for p in ins.points:
            painter.drawEllipse(self._to_widget(p), size / 2, size / 2)
        painter.setBrush(Qt.BrushStyle.NoBrush)

        if ins.label and ins.label_position is not None:
            self._draw_label(painter, ins, appearance)

    def _draw_label(self, painter: QPainter, ins: DrawInstruction, appearance: dict):
        font = QFont()
        font.setPointSize(appearance["font_size"])
        painter.setFont(font)
        metrics = painter.fontMetrics()
        width = metrics.horizontalAdvance(ins.label) + 6
        height = metrics.height() + 2

        anchor = self._to_widget(ins.label_position)
        painter.save()
        painter.translate(anchor)
        painter.rotate(ins.label_rotation)
        box = QRectF(-width / 2, -height / 2, width, height)
        background = QColor(appearance["secondary_color"])
        background.setAlphaF(appearance["text_box_alpha"])
        path = QPainterPath()
        path.addRoundedRect(box, 3, 3)
        painter.fillPath(path, background)
        painter.setPen(QColor(appearance["primary_color"]))
        painter.drawText(box, Qt.AlignmentFlag.AlignCenter, ins.label)
        painter.restore()

    # -- events --

    def _after_event(self):
        self.update()
        self.changed.emit()

    def mouseMoveEvent(self, event):
        if self.session is None or self.session.current_image is None:
            return
        if self._pan_start is not None:
            x0, y0 = self._to_image(self._pan_start)
            x1, y1 = self._to_image(event.position())
            self.session.viewport.pan(x0 - x1, y0 - y1)
            self._pan_start = event.position()
            self.update()
            return
        self.session.pointer_move(*self._to_image(event.position()))
        self.update()

    def mousePressEvent(self, event):
        if self.session is None or self.session.current_image is None:
            return
        self.session.pointer_move(*self._to_image(event.position()))
        if event.button() == Qt.MouseButton.LeftButton:
            self.session.primary_down()
        elif event.button() == Qt.MouseButton.RightButton:
            self.session.alternate_down()
        elif event.button() == Qt.MouseButton.MiddleButton:
            self._pan_start = event.position()
        self._after_event()

    def mouseReleaseEvent(self, event):
        if self.session is None:
            return
        if event.button() == Qt.MouseButton.MiddleButton:
            self._pan_start = None
            return
        self.session.primary_up()
        self._after_event()

    def mouseDoubleClickEvent(self, event):
        if self.session is None or self.session.current_image is None:
            return
        self.session.double_click()
        self._after_event()

    def wheelEvent(self, event):
        if self.session is None or self.session.current_image is None:
            return
        steps = -event.angleDelta().y() / 120.0
        self.session.scroll(steps, self._to_image(event.position()))
        self.update()

    def keyPressEvent(self, event):
        if self.session is None:
            return
        name = _KEY_NAMES.get(event.key()) or event.text().lower()
        if not name:
            super().keyPressEvent(event)
            return
        self.session.key_down(name)
        self._after_event()

    def keyReleaseEvent(self, event):
        if self.session is not None and event.key() == Qt.Key.Key_Control:
            self.session.key_up("control")
