"""Geometry kernel for Mensura.

Pure functions on 2-D points in image-pixel coordinates. Nothing in here
holds state; the measurement model, the render layer and the interaction
state machine all call into these.
"""

import math
from typing import Sequence

import numpy as np

from mensura.core.errors import DegenerateGeometryError

Point = tuple[float, float]

# Catmull-Rom parameter: 0.5 = centripetal, 0 = uniform, 1 = chordal
CENTRIPETAL_ALPHA = 0.5

# Samples along the arc drawn for an angle measurement
ANGLE_ARC_SAMPLES = 41


def distance(p1: Point, p2: Point) -> float:
    """Euclidean distance between two points."""
    return math.hypot(p2[0] - p1[0], p2[1] - p1[1])


def path_length(points: Sequence[Point]) -> float:
    """Sum of the segment lengths of an open polyline."""
    return sum(distance(points[k], points[k + 1]) for k in range(len(points) - 1))


def midpoint(p1: Point, p2: Point) -> Point:
    return ((p1[0] + p2[0]) / 2.0, (p1[1] + p2[1]) / 2.0)


def segment_angle(p1: Point, p2: Point) -> float:
    """Direction of the segment p1 -> p2 in degrees."""
    return math.degrees(math.atan2(p2[1] - p1[1], p2[0] - p1[0]))


def caliper_projection(p1: Point, p2: Point, p3: Point) -> tuple[Point, float]:
    """Perpendicular distance from ``p3`` to the infinite line through p1, p2.

    Returns the foot of the perpendicular and the signed distance. The sign
    tells on which side of the directed line p1 -> p2 the point lies.
    """
    (x1, y1), (x2, y2), (x3, y3) = p1, p2, p3
    norm = math.hypot(x1 - x2, y1 - y2)
    if norm == 0.0:
        raise DegenerateGeometryError("Caliper reference line has zero length")

    signed = ((x2 - x1) * (y1 - y3) - (x1 - x3) * (y2 - y1)) / norm
    ux = (x1 - x2) / norm
    uy = (y1 - y2) / norm
    foot = (x3 + signed * uy, y3 - signed * ux)
    return foot, signed


def signed_angle(p1: Point, p2: Point, p3: Point) -> float:
    """Signed angle at vertex ``p2`` from the ray to p1 to the ray to p3.

    The result is in radians, normalised into (-pi, pi].
    """
    if distance(p1, p2) == 0.0 or distance(p3, p2) == 0.0:
        raise DegenerateGeometryError("Angle arm has zero length")
    a1 = math.atan2(p1[1] - p2[1], p1[0] - p2[0])
    a2 = math.atan2(p3[1] - p2[1], p3[0] - p2[0])
    delta = a2 - a1
    if delta > math.pi:
        delta -= 2.0 * math.pi
    elif delta <= -math.pi:
        delta += 2.0 * math.pi
    return delta


def circle_radius(center: Point, edge: Point) -> float:
    """Radius of the circle centred on ``center`` passing through ``edge``."""
    return distance(center, edge)


def circle_outline(center: Point, radius: float, count: int) -> list[Point]:
    theta = np.linspace(0.0, 2.0 * np.pi, max(int(count), 2))
    xs = center[0] + radius * np.cos(theta)
    ys = center[1] + radius * np.sin(theta)
    return [(float(x), float(y)) for x, y in zip(xs, ys)]


def angle_arc(p1: Point, p2: Point, p3: Point, count: int = ANGLE_ARC_SAMPLES) -> list[Point]:
    """Arc drawn at the vertex of an angle, on the shorter of the two arms."""
    a1 = math.atan2(p1[1] - p2[1], p1[0] - p2[0])
    a2 = a1 + signed_angle(p1, p2, p3)
    radius = min(distance(p1, p2), distance(p3, p2))
    theta = np.linspace(a1, a2, count)
    xs = p2[0] + radius * np.cos(theta)
    ys = p2[1] + radius * np.sin(theta)
    return [(float(x), float(y)) for x, y in zip(xs, ys)]


def _merge_coincident(points: Sequence[Point]) -> list[Point]:
    merged: list[Point] = []
    for p in points:
        if not merged or distance(merged[-1], p) > 0.0:
            merged.append((float(p[0]), float(p[1])))
    return merged


def catmull_rom_resample(
    points: Sequence[Point], sample_count: int, alpha: float = CENTRIPETAL_ALPHA
) -> list[Point]:
    """Resample a control polygon into a smooth Catmull-Rom curve.

    Uses Barry and Goldman's pyramidal formulation. Two virtual control
    points are added, coincident with the end points but spaced in knot
    space like the first and last chord, so the curve runs from the first
    control point to the last. Fewer than four control points cannot curve
    and are returned unchanged.
    """
    if len(points) < 4:
        return [(float(x), float(y)) for x, y in points]

    pts = _merge_coincident(points)
    n = len(pts)
    if n < 4:
        return pts

    v = np.asarray(pts, dtype=np.float64)
    chords = np.hypot(np.diff(v[:, 0]), np.diff(v[:, 1]))
    chords = np.concatenate(([chords[0]], chords, [chords[-1]]))
    knots = np.concatenate(([0.0], np.cumsum(chords ** alpha)))

    samples = max(int(sample_count), 2)
    ti = np.linspace(knots[1], knots[-2], samples)

    # shape functions over the n + 2 extended control points
    phi = np.zeros((samples, n + 2))
    for i in range(n - 1):
        t1, t2, t3, t4 = knots[i:i + 4]
        mask = (ti >= t2) & (ti <= t3)
        u = ti[mask]
        zero = np.zeros_like(u)

        a1 = np.stack([(t2 - u) / (t2 - t1), (u - t1) / (t2 - t1), zero, zero], axis=1)
        a2 = np.stack([zero, (t3 - u) / (t3 - t2), (u - t2) / (t3 - t2), zero], axis=1)
        a3 = np.stack([zero, zero, (t4 - u) / (t4 - t3), (u - t3) / (t4 - t3)], axis=1)

        b1 = ((t3 - u) / (t3 - t1))[:, None] * a1 + ((u - t1) / (t3 - t1))[:, None] * a2
        b2 = ((t4 - u) / (t4 - t2))[:, None] * a2 + ((u - t2) / (t4 - t2))[:, None] * a3
        phi[mask, i:i + 4] = ((t3 - u) / (t3 - t2))[:, None] * b1 + ((u - t2) / (t3 - t2))[:, None] * b2

    # fold the virtual end points back onto the real ones
    phi[:, 1] += phi[:, 0]
    phi[:, n] += phi[:, n + 1]
    curve = phi[:, 1:n + 1] @ v
    return [(float(x), float(y)) for x, y in curve]


def text_angle(degrees: float | None) -> float:
    """Rotate a label angle into (-90, 90] so text never reads upside down."""
    if degrees is None:
        return 0.0
    try:
        value = float(degrees)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(value) or math.isinf(value):
        return 0.0
    return value - math.ceil((value - 90.0) / 180.0) * 180.0
