"""Rasterization primitives: coverage masks, stroking, compositing and PNG

Images are float64 ndarrays of `(height, width, channels)` shape indexed as
`image[y, x]`; a single channel image is a coverage (alpha) mask. Layers
carry an `(x, y)` offset of their top-left pixel in canvas coordinates.
Device coordinates put the centre of pixel `(x, y)` at `(x + 0.5, y + 0.5)`.
"""
from __future__ import annotations

import builtins
import io
import math
import struct
import zlib
from functools import partial
from typing import Callable, List, NamedTuple, Optional, Sequence, Tuple

import numpy as np
import numpy.typing as npt

from .geometry import EPSILON, FLOAT, FNDArray, Polyline, Rect, polygon_area
from .model import FILL_EVENODD, FILL_NONZERO, Color

Image = npt.NDArray[FLOAT]
Window = Tuple[int, int, int, int]  # x, y, width, height in whole pixels

COMPOSE_OVER = 0
COMPOSE_IN = 1


# ------------------------------------------------------------------------------
# Layer
# ------------------------------------------------------------------------------
class Layer(NamedTuple):
    image: Image
    offset: Tuple[int, int]
    pre_alpha: bool

    @property
    def x(self) -> int:
        return self.offset[0]

    @property
    def y(self) -> int:
        return self.offset[1]

    @property
    def width(self) -> int:
        return self.image.shape[1]

    @property
    def height(self) -> int:
        return self.image.shape[0]

    @property
    def channels(self) -> int:
        return self.image.shape[2]

    @property
    def window(self) -> Window:
        return (self.x, self.y, self.width, self.height)

    def convert(self, pre_alpha: bool) -> Layer:
        """Convert image if needed to specified alpha representation"""
        if self.channels == 1 or self.pre_alpha == pre_alpha:
            # single channel value assumed to be alpha
            return self
        image = self.image.copy()
        if pre_alpha:
            image = color_straight_to_pre_alpha(image)
        else:
            image = color_pre_to_straight_alpha(image)
        return Layer(image, self.offset, pre_alpha)

    def paint(self, color: Color) -> Layer:
        """Use coverage mask layer to paint solid color (premultiplied result)"""
        r, g, b, a = color
        paint = np.array([r * a, g * a, b * a, a], dtype=FLOAT)
        return Layer(self.image[..., :1] * paint, self.offset, pre_alpha=True)

    def clip(self, mask: Optional[Layer]) -> Optional[Layer]:
        """Restrict layer to coverage `mask`, `None` mask means no clipping"""
        if mask is None:
            return self
        layer = self.convert(pre_alpha=True)
        result = canvas_merge_intersect(
            [(mask.image, mask.offset), (layer.image, layer.offset)],
            blend=partial(canvas_compose, COMPOSE_IN),
        )
        if result is None:
            return None
        image, offset = result
        return Layer(image, offset, pre_alpha=True)

    def __repr__(self):
        return "Layer(x={}, y={}, w={}, h={}, pre_alpha={})".format(
            self.x, self.y, self.width, self.height, self.pre_alpha
        )


def canvas_compose(mode: int, dst: Image, src: Image) -> Image:
    """Compose two alpha premultiplied images

    https://ciechanow.ski/alpha-compositing/
    http://ssp.impulsetrain.com/porterduff.html
    """
    src_a = src[..., -1:]
    dst_a = dst[..., -1:]
    if mode == COMPOSE_OVER:
        return src + dst * (1 - src_a)
    elif mode == COMPOSE_IN:
        return src * dst_a
    raise ValueError(f"invalid compose mode: {mode}")


CANVAS_COMPOSE_OVER: Callable[[Image, Image], Image] = partial(canvas_compose, COMPOSE_OVER)


def canvas_merge_at(base: Image, overlay: Image, offset: Tuple[int, int], blend=CANVAS_COMPOSE_OVER):
    """Alpha blend `overlay` on top of `base` at `(x, y)` offset

    Updates `base` with `overlay` in place.
    """
    x, y = offset
    b_h, b_w = base.shape[:2]
    o_h, o_w = overlay.shape[:2]
    clip = lambda v, l, h: l if v < l else h if v > h else v

    b_y_low, b_y_high = clip(y, 0, b_h), clip(y + o_h, 0, b_h)
    b_x_low, b_x_high = clip(x, 0, b_w), clip(x + o_w, 0, b_w)
    effected = base[b_y_low:b_y_high, b_x_low:b_x_high]
    if effected.size == 0:
        return base

    o_y_low, o_y_high = clip(-y, 0, o_h), clip(b_h - y, 0, o_h)
    o_x_low, o_x_high = clip(-x, 0, o_w), clip(b_w - x, 0, o_w)
    overlay = overlay[o_y_low:o_y_high, o_x_low:o_x_high]
    if overlay.size == 0:
        return base

    effected[...] = blend(effected, overlay).clip(0, 1)
    return base


def canvas_merge_intersect(
    layers: List[Tuple[Image, Tuple[int, int]]],
    blend: Callable[[Image, Image], Image] = CANVAS_COMPOSE_OVER,
) -> Optional[Tuple[Image, Tuple[int, int]]]:
    """Blend multiple `layers` into single image covered by all layers"""
    if not layers:
        raise ValueError("can not blend zero layers")
    elif len(layers) == 1:
        return layers[0]

    min_x, min_y, max_x, max_y = None, None, None, None
    for image, (x, y) in layers:
        h, w = image.shape[:2]
        if min_x is None:
            min_x, min_y = x, y
            max_x, max_y = x + w, y + h
        else:
            min_x, min_y = max(min_x, x), max(min_y, y)
            max_x, max_y = min(max_x, x + w), min(max_y, y + h)

    if min_x >= max_x or min_y >= max_y:
        return None  # empty intersection

    channels = max(image.shape[2] for image, _ in layers)
    (first, (fx, fy)), *rest = layers
    output = first[min_y - fy : max_y - fy, min_x - fx : max_x - fx]
    h, w, c = output.shape
    if c != channels:
        output = np.broadcast_to(output, (h, w, channels))
    output = output.copy()
    for image, (x, y) in rest:
        output[...] = blend(output, image[min_y - y : max_y - y, min_x - x : max_x - x])

    return output, (min_x, min_y)


def color_pre_to_straight_alpha(rgba: Image) -> Image:
    """Convert from premultiplied alpha in place"""
    rgb = rgba[..., :-1]
    alpha = rgba[..., -1:]
    np.divide(rgb, alpha, out=rgb, where=alpha > 0.0001)
    np.clip(rgba, 0, 1, out=rgba)
    return rgba


def color_straight_to_pre_alpha(rgba: Image) -> Image:
    """Convert to premultiplied alpha in place"""
    rgba[..., :-1] *= rgba[..., -1:]
    return rgba


def canvas_to_png(canvas: Image, output: Optional[io.IOBase] = None) -> io.IOBase:
    """Convert straight alpha (height, width, rgba{float64}) image to PNG"""

    def png_pack(output: io.IOBase, tag: bytes, data: bytes):
        checksum = 0xFFFFFFFF & zlib.crc32(data, zlib.crc32(tag))
        output.write(struct.pack("!I", len(data)))
        output.write(tag)
        output.write(data)
        output.write(struct.pack("!I", checksum))

    height, width, _ = canvas.shape

    data = io.BytesIO()
    comp = zlib.compressobj(level=9)
    for row in np.round(canvas * 255.0).astype(np.uint8):
        data.write(comp.compress(b"\x00"))
        data.write(comp.compress(row.tobytes()))
    data.write(comp.flush())

    output = io.BytesIO() if output is None else output
    output.write(b"\x89PNG\r\n\x1a\n")
    png_pack(output, b"IHDR", struct.pack("!2I5B", width, height, 8, 6, 0, 0, 0))
    png_pack(output, b"IDAT", data.getvalue())
    png_pack(output, b"IEND", b"")

    return output


# ------------------------------------------------------------------------------
# Canvas
# ------------------------------------------------------------------------------
class RasterCanvas:
    """Page sized pixel buffer

    Pixels are stored with premultiplied alpha and composited source-over,
    `pixels()` returns straight alpha RGBA bytes for image encoders.
    """

    __slots__ = ["image"]

    def __init__(self, image: Image):
        self.image = image

    @classmethod
    def create(cls, width: int, height: int, background: Optional[Color] = None) -> RasterCanvas:
        if background is None:
            image = np.zeros((height, width, 4), dtype=FLOAT)
        else:
            r, g, b, a = background
            color = np.array([r * a, g * a, b * a, a], dtype=FLOAT)
            image = np.broadcast_to(color, (height, width, 4)).copy()
        return cls(image)

    @property
    def width(self) -> int:
        return self.image.shape[1]

    @property
    def height(self) -> int:
        return self.image.shape[0]

    @property
    def bounds(self) -> Rect:
        return Rect(0.0, 0.0, float(self.width), float(self.height))

    def composite(self, layer: Layer) -> None:
        """Composite layer over canvas content"""
        layer = layer.convert(pre_alpha=True)
        canvas_merge_at(self.image, layer.image, layer.offset)

    def straight(self) -> Image:
        return color_pre_to_straight_alpha(self.image.copy())

    def pixels(self) -> npt.NDArray[np.uint8]:
        """Straight alpha RGBA pixels as `(height, width, 4)` uint8 array"""
        return np.round(self.straight() * 255.0).astype(np.uint8)

    def pixel(self, x: int, y: int) -> Tuple[int, int, int, int]:
        r, g, b, a = self.pixels()[y, x]
        return (int(r), int(g), int(b), int(a))

    def to_png(self, output: Optional[io.IOBase] = None) -> io.IOBase:
        return canvas_to_png(self.straight(), output)

    def __eq__(self, other) -> bool:
        if not isinstance(other, RasterCanvas):
            return NotImplemented
        return self.image.shape == other.image.shape and bool(np.array_equal(self.image, other.image))

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        return f"RasterCanvas(width={self.width}, height={self.height})"


# ------------------------------------------------------------------------------
# Coverage
# ------------------------------------------------------------------------------
def line_signed_coverage(canvas: Image, line) -> Image:
    """Trace line on a canvas rendering signed coverage

    Implementation details:
    Line must be specified in the canvas coordinate system (that is one
    unit of length is equal to one pixel). Line is always traversed with
    scan line along `x` coordinates from lowest value to largest, and
    scan lines are going from lowest `y` value to larges.

    Based on https://github.com/raphlinus/font-rs/blob/master/src/raster.rs
    """
    floor, ceil = math.floor, math.ceil
    min, max = builtins.min, builtins.max
    h, w = canvas.shape
    X, Y = 0, 1
    p0, p1 = line[0], line[1]

    if p0[Y] == p1[Y]:
        return canvas  # does not introduce any signed coverage
    dir, p0, p1 = (1.0, p0, p1) if p0[Y] < p1[Y] else (-1.0, p1, p0)
    dxdy = (p1[X] - p0[X]) / (p1[Y] - p0[Y])
    # Find first point to trace. Since we are going to interate over Y's
    # we should pick min(y , p0.y) as a starting y point, and adjust x
    # accordingly
    x, y = p0[X], int(max(0, p0[Y]))
    if p0[Y] < 0:
        x -= p0[Y] * dxdy
    x_next = x
    for y in range(y, min(h, ceil(p1[Y]))):
        x = x_next
        dy = min(y + 1, p1[Y]) - max(y, p0[Y])
        d = dir * dy  # signed y difference
        # find next x position
        x_next = x + dxdy * dy
        # order (x, x_next) from smaller value x0 to bigger x1
        x0, x1 = (x, x_next) if x < x_next else (x_next, x)
        # lower bound of effected x pixels
        x0_floor = floor(x0)
        x0i = int(x0_floor)
        # upper bound of effected x pixels
        x1_ceil = ceil(x1)
        x1i = int(x1_ceil)
        if x1i <= x0i + 1:
            # only goes through one pixel
            xmf = 0.5 * (x + x_next) - x0_floor  # effective height
            if x0i >= w:
                continue
            canvas[y, x0i if x0i > 0 else 0] += d * (1 - xmf)
            xi = x0i + 1
            if xi >= w:
                continue
            canvas[y, xi if xi > 0 else 0] += d * xmf  # next pixel is fully shaded
        else:
            s = 1 / (x1 - x0)
            x0f = x0 - x0_floor  # fractional part of x0
            x1f = x1 - x1_ceil + 1.0  # fraction part of x1
            a0 = 0.5 * s * (1 - x0f) ** 2  # area of the smallest x pixel
            am = 0.5 * s * x1f**2  # area of the largest x pixel
            # first pixel
            if x0i >= w:
                continue
            canvas[y, x0i if x0i > 0 else 0] += d * a0
            if x1i == x0i + 2:
                # only two pixels are covered
                xi = x0i + 1
                if xi >= w:
                    continue
                canvas[y, xi if xi > 0 else 0] += d * (1.0 - a0 - am)
            else:
                # second pixel
                a1 = s * (1.5 - x0f)
                xi = x0i + 1
                if xi >= w:
                    continue
                canvas[y, xi if xi > 0 else 0] += d * (a1 - a0)
                # second .. last pixels
                for xi in range(x0i + 2, x1i - 1):
                    if xi >= w:
                        continue
                    canvas[y, xi if xi > 0 else 0] += d * s
                # last pixel
                a2 = a1 + (x1i - x0i - 3) * s
                xi = x1i - 1
                if xi >= w:
                    continue
                canvas[y, xi if xi > 0 else 0] += d * (1.0 - a2 - am)
            if x1i >= w:
                continue
            canvas[y, x1i if x1i > 0 else 0] += d * am
    return canvas


def line_center_crossings(delta: Image, line) -> Image:
    """Record signed crossings of a line with pixel centre rows

    A row `y` is crossed when `min(y0, y1) <= y + 0.5 < max(y0, y1)`, the
    crossing is recorded at the first column whose centre is not left of the
    crossing point. Running sum of `delta` along rows gives winding number of
    every pixel centre: left/top edges are inclusive, right/bottom exclusive.
    `delta` has one extra column to collect crossings beyond the right side.
    """
    h, w1 = delta.shape
    (x0, y0), (x1, y1) = line
    if y0 == y1:
        return delta
    dir = 1.0 if y0 < y1 else -1.0
    if y0 > y1:
        x0, y0, x1, y1 = x1, y1, x0, y0
    row_low = max(0, math.ceil(y0 - 0.5))
    row_high = min(h, math.ceil(y1 - 0.5))
    if row_low >= row_high:
        return delta
    rows = np.arange(row_low, row_high)
    xs = x0 + (rows + 0.5 - y0) * ((x1 - x0) / (y1 - y0))
    cols = np.clip(np.ceil(xs - 0.5), 0, w1 - 1).astype(int)
    np.add.at(delta, (rows, cols), dir)
    return delta


def polylines_window(polylines: Sequence[Polyline], viewport: Window) -> Optional[Window]:
    """Pixel window covering all polylines, restricted to viewport"""
    points = np.concatenate([polyline.points for polyline in polylines])
    min_x, min_y = np.floor(points.min(axis=0)).astype(int) - 1
    max_x, max_y = np.ceil(points.max(axis=0)).astype(int) + 1
    vx, vy, vw, vh = viewport
    min_x, min_y = max(vx, min_x), max(vy, min_y)
    max_x, max_y = min(vx + vw, max_x), min(vy + vh, max_y)
    if max_x <= min_x or max_y <= min_y:
        return None
    return (int(min_x), int(min_y), int(max_x - min_x), int(max_y - min_y))


def polylines_edges(polylines: Sequence[Polyline]) -> FNDArray:
    """All edges of polylines treated as closed polygons, `(N, 2, 2)` shape"""
    edges = []
    for points, _closed in polylines:
        if len(points) < 2:
            continue
        edges.append(np.stack([points, np.roll(points, -1, axis=0)], axis=1))
    if not edges:
        return np.zeros((0, 2, 2), dtype=FLOAT)
    return np.concatenate(edges)


def fill_mask(
    polylines: Sequence[Polyline],
    viewport: Window,
    fill_rule: Optional[str] = None,
    antialias: bool = False,
) -> Optional[Layer]:
    """Render polylines (implicitly closed) as a coverage mask

    Without antialiasing a pixel is covered when its centre is inside the
    shape, otherwise coverage is the exact area covered inside the pixel.
    """
    polylines = [polyline for polyline in polylines if len(polyline.points) > 1]
    if not polylines:
        return None
    window = polylines_window(polylines, viewport)
    if window is None:
        return None
    x, y, width, height = window
    edges = polylines_edges(polylines) - np.array([x, y], dtype=FLOAT)

    if antialias:
        trace = np.zeros((height, width), dtype=FLOAT)
        for edge in edges:
            line_signed_coverage(trace, edge)
        winding = np.cumsum(trace, axis=1)
        if fill_rule is None or fill_rule == FILL_NONZERO:
            mask = np.fabs(winding).clip(0, 1)
        elif fill_rule == FILL_EVENODD:
            mask = np.fabs(np.remainder(winding + 1.0, 2.0) - 1.0)
        else:
            raise ValueError(f"Invalid fill rule: {fill_rule}")
        mask[mask < 1e-6] = 0  # round down to zero very small mask values
    else:
        delta = np.zeros((height, width + 1), dtype=FLOAT)
        for edge in edges:
            line_center_crossings(delta, edge)
        winding = np.rint(np.cumsum(delta, axis=1)[:, :width])
        if fill_rule is None or fill_rule == FILL_NONZERO:
            mask = (winding != 0).astype(FLOAT)
        elif fill_rule == FILL_EVENODD:
            mask = (np.remainder(np.fabs(winding), 2.0) == 1.0).astype(FLOAT)
        else:
            raise ValueError(f"Invalid fill rule: {fill_rule}")

    if not mask.any():
        return None
    return Layer(mask[..., None], (x, y), pre_alpha=True)


# ------------------------------------------------------------------------------
# Stroke
# ------------------------------------------------------------------------------
def stroke_polygons(polyline: Polyline, width: float) -> List[FNDArray]:
    """Constant width outline of a polyline as a list of polygons

    Each segment becomes a quad and every joint is covered by a bevel
    triangle, open ends use butt caps. All polygons share orientation, so
    filling them together with nonzero rule renders their union.
    """
    dist = width / 2
    points = [polyline.points[0]]
    for point in polyline.points[1:]:
        if not np.allclose(point, points[-1], rtol=0, atol=EPSILON):
            points.append(point)
    closed = polyline.closed
    if closed and len(points) > 2 and np.allclose(points[0], points[-1], rtol=0, atol=EPSILON):
        points.pop()
    pairs = list(zip(points, points[1:]))
    if closed and len(points) > 2:
        pairs.append((points[-1], points[0]))

    polygons: List[FNDArray] = []
    normals = []
    for p0, p1 in pairs:
        seg = p1 - p0
        seg_len = math.hypot(seg[0], seg[1])
        if seg_len < EPSILON:
            continue
        norm = np.array([-seg[1], seg[0]]) * (dist / seg_len)
        polygons.append(np.array([p0 + norm, p1 + norm, p1 - norm, p0 - norm]))
        normals.append((p1, norm))
    if not polygons:
        return polygons

    orientation = math.copysign(1.0, polygon_area(polygons[0].tolist()))
    joints = list(zip(normals, normals[1:]))
    if closed and len(normals) > 2:
        joints.append((normals[-1], normals[0]))
    for (vertex, n0), (_next_end, n1) in joints:
        for side in (1.0, -1.0):
            triangle = np.array([vertex, vertex + side * n0, vertex + side * n1])
            area = polygon_area(triangle.tolist())
            if abs(area) < EPSILON:
                continue
            if math.copysign(1.0, area) != orientation:
                triangle = triangle[::-1]
            polygons.append(triangle)
    return polygons
