"""Visible region of the current image, in image-pixel coordinates.

The viewport drives the hit-test tolerance, the scroll-wheel zoom and the
zoom-select window. Widget coordinates are mapped through it with the
aspect ratio preserved and the visible region centred.
"""

from dataclasses import dataclass

from mensura.core.geometry import Point

MIN_EXTENT = 1e-6

ViewLimits = tuple[float, float, float, float]


@dataclass
class Viewport:
    x_min: float = 0.0
    x_max: float = 1.0
    y_min: float = 0.0
    y_max: float = 1.0

    @property
    def width(self) -> float:
        return self.x_max - self.x_min

    @property
    def height(self) -> float:
        return self.y_max - self.y_min

    def fit(self, width: float, height: float):
        """Show the whole image."""
        self.x_min, self.x_max = 0.0, float(max(width, MIN_EXTENT))
        self.y_min, self.y_max = 0.0, float(max(height, MIN_EXTENT))

    def zoom_about(self, point: Point, factor: float):
        """Scale the limits about ``point``; a factor above 1 zooms out."""
        px, py = point
        x_min = px + (self.x_min - px) * factor
        x_max = px + (self.x_max - px) * factor
        y_min = py + (self.y_min - py) * factor
        y_max = py + (self.y_max - py) * factor
        if x_max - x_min < MIN_EXTENT or y_max - y_min < MIN_EXTENT:
            return
        self.x_min, self.x_max, self.y_min, self.y_max = x_min, x_max, y_min, y_max

    def zoom_box(self, point: Point, size: float):
        """Show a ``size`` pixel window, keeping ``point`` at the same place on screen."""
        px, py = point
        fx = (px - self.x_min) / self.width
        fy = (py - self.y_min) / self.height
        self.x_min = px - fx * size
        self.x_max = self.x_min + size
        self.y_min = py - fy * size
        self.y_max = self.y_min + size

    def pan(self, dx: float, dy: float):
        """Shift the visible region by an offset in image pixels."""
        self.x_min += dx
        self.x_max += dx
        self.y_min += dy
        self.y_max += dy

    def tolerance(self, fraction: float) -> float:
        """Hit distance as a fraction of the smaller visible extent."""
        return fraction * min(self.width, self.height)

    def snapshot(self) -> ViewLimits:
        return (self.x_min, self.x_max, self.y_min, self.y_max)

    def restore(self, limits: ViewLimits | None):
        if limits is None:
            return
        self.x_min, self.x_max, self.y_min, self.y_max = limits

    # -- widget mapping --

    def _transform(self, widget_width: float, widget_height: float) -> tuple[float, float, float]:
        scale = min(widget_width / self.width, widget_height / self.height)
        offset_x = (widget_width - self.width * scale) / 2.0
        offset_y = (widget_height - self.height * scale) / 2.0
        return scale, offset_x, offset_y

    def to_image(self, pos: Point, widget_width: float, widget_height: float) -> Point:
        """Map a widget position to image coordinates."""
        scale, ox, oy = self._transform(widget_width, widget_height)
        return (self.x_min + (pos[0] - ox) / scale, self.y_min + (pos[1] - oy) / scale)

    def to_widget(self, point: Point, widget_width: float, widget_height: float) -> Point:
        """Map image coordinates to a widget position."""
        scale, ox, oy = self._transform(widget_width, widget_height)
        return (ox + (point[0] - self.x_min) * scale, oy + (point[1] - self.y_min) * scale)

    def scale(self, widget_width: float, widget_height: float) -> float:
        """Widget pixels per image pixel."""
        return self._transform(widget_width, widget_height)[0]
