"""Affine transforms, rectangles and curve geometry

Everything here works in "page units" or "device pixels" depending on which
transform was applied, functions do not care as long as the caller is
consistent. Batches of points are `(N, 2)` float64 ndarrays.
"""
from __future__ import annotations

import math
import sys
from typing import Iterable, List, NamedTuple, Optional, Sequence, Tuple

import numpy as np
import numpy.typing as npt

EPSILON = sys.float_info.epsilon
FLOAT = np.float64
FNDArray = npt.NDArray[FLOAT]
Point = Tuple[float, float]


# ------------------------------------------------------------------------------
# Transform
# ------------------------------------------------------------------------------
class TransformMatrix(NamedTuple):
    """2D affine transform

    Coefficients follow OFD/PDF convention:
        x' = a * x + c * y + e
        y' = b * x + d * y + f
    `m0 @ m1` is a transform that applies `m1` first and then `m0`.
    """

    a: float = 1.0
    b: float = 0.0
    c: float = 0.0
    d: float = 1.0
    e: float = 0.0
    f: float = 0.0

    def __matmul__(self, other: TransformMatrix) -> TransformMatrix:  # type: ignore[override]
        a0, b0, c0, d0, e0, f0 = self
        a1, b1, c1, d1, e1, f1 = other
        return TransformMatrix(
            a0 * a1 + c0 * b1,
            b0 * a1 + d0 * b1,
            a0 * c1 + c0 * d1,
            b0 * c1 + d0 * d1,
            a0 * e1 + c0 * f1 + e0,
            b0 * e1 + d0 * f1 + f0,
        )

    def __call__(self, points) -> FNDArray:
        """Apply transform to a batch of points of `(..., 2)` shape"""
        points = np.asarray(points, dtype=FLOAT)
        if points.size == 0:
            return points
        return points @ self.linear.T + [self.e, self.f]

    @property
    def linear(self) -> FNDArray:
        return np.array([[self.a, self.c], [self.b, self.d]], dtype=FLOAT)

    @property
    def determinant(self) -> float:
        return self.a * self.d - self.b * self.c

    @property
    def invert(self) -> TransformMatrix:
        det = self.determinant
        if abs(det) < EPSILON:
            raise ValueError(f"transform is not invertible: {self}")
        a, b, c, d, e, f = self
        return TransformMatrix(
            d / det,
            -b / det,
            -c / det,
            a / det,
            (c * f - d * e) / det,
            (b * e - a * f) / det,
        )

    def is_finite(self) -> bool:
        return all(math.isfinite(v) for v in self)

    def translate(self, tx: float, ty: float) -> TransformMatrix:
        return self @ TransformMatrix(1.0, 0.0, 0.0, 1.0, tx, ty)

    def scale(self, sx: float, sy: Optional[float] = None) -> TransformMatrix:
        sy = sx if sy is None else sy
        return self @ TransformMatrix(sx, 0.0, 0.0, sy, 0.0, 0.0)

    def rotate(self, angle: float) -> TransformMatrix:
        cos_a = math.cos(angle)
        sin_a = math.sin(angle)
        return self @ TransformMatrix(cos_a, sin_a, -sin_a, cos_a, 0.0, 0.0)

    def expansion(self) -> float:
        """Average linear scale factor of the transform"""
        return math.sqrt(abs(self.determinant))

    def __repr__(self) -> str:
        return "TransformMatrix({})".format(", ".join(f"{v:g}" for v in self))


IDENTITY = TransformMatrix()


# ------------------------------------------------------------------------------
# Rect
# ------------------------------------------------------------------------------
class Rect(NamedTuple):
    x: float
    y: float
    width: float
    height: float

    @property
    def right(self) -> float:
        return self.x + self.width

    @property
    def bottom(self) -> float:
        return self.y + self.height

    def is_valid(self) -> bool:
        return (
            all(math.isfinite(v) for v in self) and self.width > 0 and self.height > 0
        )

    def is_empty(self) -> bool:
        return self.width <= 0 or self.height <= 0

    def corners(self) -> List[Point]:
        """Corners in drawing order, suitable as a closed polygon"""
        return [
            (self.x, self.y),
            (self.right, self.y),
            (self.right, self.bottom),
            (self.x, self.bottom),
        ]

    def intersect(self, other: Rect) -> Rect:
        """Intersection, width and height are clamped to zero if disjoint"""
        x0, y0 = max(self.x, other.x), max(self.y, other.y)
        x1, y1 = min(self.right, other.right), min(self.bottom, other.bottom)
        return Rect(x0, y0, max(0.0, x1 - x0), max(0.0, y1 - y0))

    def scale(self, factor: float) -> Rect:
        return Rect(self.x * factor, self.y * factor, self.width * factor, self.height * factor)

    @classmethod
    def from_points(cls, points) -> Optional[Rect]:
        """Bounding box of a batch of points"""
        points = np.asarray(points, dtype=FLOAT).reshape(-1, 2)
        if points.size == 0:
            return None
        min_x, min_y = points.min(axis=0)
        max_x, max_y = points.max(axis=0)
        return cls(float(min_x), float(min_y), float(max_x - min_x), float(max_y - min_y))


def polygon_area(points: Sequence[Point]) -> float:
    """Signed area of a polygon (shoelace formula)"""
    area = 0.0
    for (x0, y0), (x1, y1) in zip(points, [*points[1:], points[0]]):
        area += x0 * y1 - x1 * y0
    return area / 2.0


# ------------------------------------------------------------------------------
# Path segments
# ------------------------------------------------------------------------------
SEGMENT_MOVE = "move"
SEGMENT_LINE = "line"
SEGMENT_CUBIC = "cubic"
SEGMENT_CLOSE = "close"
SEGMENT_KINDS = (SEGMENT_MOVE, SEGMENT_LINE, SEGMENT_CUBIC, SEGMENT_CLOSE)


class PathSegment(NamedTuple):
    """Single path command

    - `move`  - `points == (p,)` starts a new subpath at `p`
    - `line`  - `points == (p,)` line from current point to `p`
    - `cubic` - `points == (c0, c1, p)` cubic bezier with controls `c0`, `c1`
    - `close` - `points == ()` line back to the subpath start
    """

    kind: str
    points: Tuple[Point, ...] = ()

    @classmethod
    def move(cls, x: float, y: float) -> PathSegment:
        return cls(SEGMENT_MOVE, ((x, y),))

    @classmethod
    def line(cls, x: float, y: float) -> PathSegment:
        return cls(SEGMENT_LINE, ((x, y),))

    @classmethod
    def cubic(cls, c0: Point, c1: Point, p: Point) -> PathSegment:
        return cls(SEGMENT_CUBIC, (tuple(c0), tuple(c1), tuple(p)))

    @classmethod
    def close(cls) -> PathSegment:
        return cls(SEGMENT_CLOSE)


def rect_segments(rect: Rect) -> Tuple[PathSegment, ...]:
    (x0, y0), *rest = rect.corners()
    return (
        PathSegment.move(x0, y0),
        *(PathSegment.line(x, y) for x, y in rest),
        PathSegment.close(),
    )


def segments_points(segments: Iterable[PathSegment]) -> FNDArray:
    """All points (including curve controls) of the segments"""
    points = [point for segment in segments for point in segment.points]
    return np.array(points, dtype=FLOAT).reshape(-1, 2)


class Polyline(NamedTuple):
    points: FNDArray
    closed: bool


def flatten_segments(
    segments: Iterable[PathSegment], transform: TransformMatrix, tolerance: float
) -> List[Polyline]:
    """Convert path segments to polylines in the transformed coordinate system

    Curves are transformed first and subdivided afterwards, so `tolerance` is
    the maximum chord error in the target coordinate system. Closed polylines
    do not repeat their first point, closing edge is implicit.
    """
    polylines: List[Polyline] = []
    points: List[FNDArray] = []
    start: Optional[Point] = None
    pos: Optional[Point] = None

    def finish(closed: bool):
        nonlocal points
        if len(points) > 1:
            polylines.append(Polyline(np.array(points, dtype=FLOAT), closed))
        points = []

    def begin(point: Point):
        nonlocal start, pos, points
        pos = start = point
        points = [transform([point])[0]]

    for kind, args in segments:
        if kind == SEGMENT_MOVE:
            finish(False)
            begin(args[0])
        elif kind == SEGMENT_LINE:
            if pos is None:
                begin((0.0, 0.0))
            pos = args[0]
            points.append(transform([pos])[0])
        elif kind == SEGMENT_CUBIC:
            if pos is None:
                begin((0.0, 0.0))
            flat = bezier3_flatten(transform([pos, *args]), tolerance)
            points.extend(flat[1:])
            pos = args[-1]
        elif kind == SEGMENT_CLOSE:
            if start is not None:
                finish(True)
                begin(start)
        else:
            raise ValueError(f"unsupported path segment: `{kind}`")
    finish(False)
    return polylines


# ------------------------------------------------------------------------------
# Bezier
# ------------------------------------------------------------------------------
BEZIER3_FLATNESS = np.array([[-2, 3, 0, -1], [-1, 0, 3, -2]], dtype=FLOAT)
BEZIER3_SPLIT = np.array(
    [
        [1, 0, 0, 0],
        [0.5, 0.5, 0, 0],
        [0.25, 0.5, 0.25, 0],
        [0.125, 0.375, 0.375, 0.125],
        [0.125, 0.375, 0.375, 0.125],
        [0, 0.25, 0.5, 0.25],
        [0, 0, 0.5, 0.5],
        [0, 0, 0, 1],
    ],
    dtype=FLOAT,
)
BEZIER2_TO_BEZIER3 = np.array(
    [[1, 0, 0], [1.0 / 3, 2.0 / 3, 0], [0, 2.0 / 3.0, 1.0 / 3], [0, 0, 1]], dtype=FLOAT
)
BEZIER3_MAX_DEPTH = 16


def bezier3_split(points: FNDArray) -> FNDArray:
    """Split bezier3 curve in two bezier3 curves at t=0.5

    Using de Castelju construction at t=0.5
    """
    return np.matmul(BEZIER3_SPLIT, points).reshape(2, 4, 2)


def bezier3_flatness(points: FNDArray) -> float:
    """Squared flatness upper bound multiplied by 16

    `f^2 <= 1/16 (max{u_x^2, v_x^2} + max{u_y^2, v_y^2})` where
        u = 3 * b1 - 2 * b0 - b3
        v = 3 * b2 - b0 - 2 * b3

    [Linear Approximation of Bezier Curve](https://hcklbrrfnn.files.wordpress.com/2012/08/bez.pdf)
    """
    uv = np.square(BEZIER3_FLATNESS @ points)
    return float(uv.max(axis=0).sum())


def bezier3_flatten(points, tolerance: float) -> FNDArray:
    """Flatten bezier3 curve into ordered polyline points (including both ends)"""
    points = np.asarray(points, dtype=FLOAT)
    limit = (tolerance**2) * 16
    output = [points[0]]
    curves = [(points, 0)]
    while curves:
        curve, depth = curves.pop()
        if depth >= BEZIER3_MAX_DEPTH or bezier3_flatness(curve) < limit:
            output.append(curve[3])
            continue
        first, second = bezier3_split(curve)
        curves.append((second, depth + 1))
        curves.append((first, depth + 1))
    return np.array(output)


def bezier2_to_bezier3(points) -> FNDArray:
    """Convert bezier2 to bezier3 curve"""
    return BEZIER2_TO_BEZIER3 @ np.asarray(points, dtype=FLOAT)


# ------------------------------------------------------------------------------
# Arc
# ------------------------------------------------------------------------------
def arc_to_bezier3(center, rx, ry, phi, eta, eta_delta) -> FNDArray:
    """Approximate arc with a sequence of cubic bezier curves

    [Drawing an elliptical arc using polylines, quadratic or cubic Bezier curves]
    (http://www.spaceroots.org/documents/ellipse/elliptical-arc.pdf)

    Arc is split in segments smaller then `pi / 4`, each approximated with
        P0 = A(eta_1)
        P1 = P0 + alpha * A'(eta_1)
        P2 = P3 - alpha * A'(eta_2)
        P3 = A(eta_2)
    where
        alpha = sin(eta_2 - eta_1) * (sqrt(4 + 3 * tan((eta_2 - eta_1) / 2) ** 2) - 1) / 3
    """
    M = np.array([[math.cos(phi), -math.sin(phi)], [math.sin(phi), math.cos(phi)]])
    arc = lambda a: M @ [rx * math.cos(a), ry * math.sin(a)] + center
    arc_d = lambda a: M @ [-rx * math.sin(a), ry * math.cos(a)]

    segment_max_angle = math.pi / 4
    segments = []
    segments_count = max(1, math.ceil(abs(eta_delta) / segment_max_angle))
    etas = np.linspace(eta, eta + eta_delta, segments_count + 1)
    for eta_1, eta_2 in zip(etas, etas[1:]):
        sq = math.sqrt(4 + 3 * math.tan((eta_2 - eta_1) / 2) ** 2)
        alpha = math.sin(eta_2 - eta_1) * (sq - 1) / 3

        p0 = arc(eta_1)
        p3 = arc(eta_2)
        p1 = p0 + alpha * arc_d(eta_1)
        p2 = p3 - alpha * arc_d(eta_2)
        segments.append([p0, p1, p2, p3])

    return np.array(segments)


def arc_endpoint_to_center(src, dst, rx, ry, x_axis_rot, large_flag, sweep_flag):
    """Convert endpoint arc parametrization to center parametrization

    Follows [Arc implementation notes](https://www.w3.org/TR/SVG/implnote.html#ArcImplementationNotes),
    `x_axis_rot` is in degrees. Returns `(center, rx, ry, phi, eta, eta_delta)`.
    """
    rx, ry = abs(rx), abs(ry)
    src, dst = np.array(src, dtype=FLOAT), np.array(dst, dtype=FLOAT)
    phi = x_axis_rot * math.pi / 180

    cos_phi, sin_phi = math.cos(phi), math.sin(phi)
    M = np.array([[cos_phi, sin_phi], [-sin_phi, cos_phi]])
    # Eq 5.1
    x1, y1 = np.matmul(M, (src - dst) / 2)
    # scale/normalize radii (Eq 6.2)
    s = (x1 / rx) ** 2 + (y1 / ry) ** 2
    if s > 1:
        s = math.sqrt(s)
        rx *= s
        ry *= s
    # Eq 5.2
    sq = math.sqrt(max(0, (rx * ry) ** 2 / ((rx * y1) ** 2 + (ry * x1) ** 2) - 1))
    if large_flag == sweep_flag:
        sq = -sq
    center = sq * np.array([rx * y1 / ry, -ry * x1 / rx])
    cx, cy = center
    # Eq 5.3 convert center to initail coordinates
    center = np.matmul(M.T, center) + (dst + src) / 2
    # Eq 5.5-6
    v0 = np.array([1, 0])
    v1 = np.array([(x1 - cx) / rx, (y1 - cy) / ry])
    v2 = np.array([(-x1 - cx) / rx, (-y1 - cy) / ry])
    eta = angle_between(v0, v1)
    eta_delta = math.fmod(angle_between(v1, v2), 2 * math.pi)
    if not sweep_flag and eta_delta > 0:
        eta_delta -= 2 * math.pi
    if sweep_flag and eta_delta < 0:
        eta_delta += 2 * math.pi

    return center, rx, ry, phi, eta, eta_delta


def arc_segments(src: Point, dst: Point, rx, ry, x_axis_rot, large_flag, sweep_flag) -> List[PathSegment]:
    """Endpoint parametrized arc as a list of cubic segments"""
    if rx == 0 or ry == 0 or np.allclose(src, dst):
        return [PathSegment.line(*dst)]
    params = arc_endpoint_to_center(src, dst, rx, ry, x_axis_rot, large_flag, sweep_flag)
    segments = []
    for _p0, c0, c1, p1 in arc_to_bezier3(*params):
        segments.append(PathSegment.cubic(_as_point(c0), _as_point(c1), _as_point(p1)))
    # land exactly on the requested end point
    kind, (c0, c1, _p1) = segments[-1]
    segments[-1] = PathSegment.cubic(c0, c1, (float(dst[0]), float(dst[1])))
    return segments


def _as_point(point) -> Point:
    return (float(point[0]), float(point[1]))


def angle_between(v0, v1) -> float:
    """Signed angle between two vectors"""
    cos = np.dot(v0, v1) / math.sqrt(np.dot(v0, v0) * np.dot(v1, v1))
    angle = math.acos(max(-1.0, min(1.0, float(cos))))
    if v0[0] * v1[1] - v0[1] * v1[0] < 0:
        angle = -angle
    return angle
