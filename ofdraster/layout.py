"""Transform stack: effective transforms and clip regions of page content

Page units are millimetres. The device transform maps page units to canvas
pixels:

    device = translate(-viewport) @ scale(scale_factor * dpi / 25.4) @ translate(-origin)

and every node's effective transform is `device @ ancestors... @ own`. Clip
rectangles of page blocks are mapped to device space polygons and passed down
to all descendants.
"""
from __future__ import annotations

import math
from typing import TYPE_CHECKING, List, NamedTuple, Optional, Tuple

from .errors import InvalidGeometry
from .geometry import IDENTITY, Point, Rect, TransformMatrix, segments_points
from .model import ContentNode, ImageObject, Page, PageBlock, PathObject, TextObject

if TYPE_CHECKING:
    from .render import RenderOptions

MM_PER_INCH = 25.4
DEFAULT_DPI = 96.0


class ClipRegion(NamedTuple):
    """Intersection of device space clip polygons

    `bounds` is the intersection of the polygons bounding boxes with the
    canvas, an empty region clips everything.
    """

    polygons: Tuple[Tuple[Point, ...], ...]
    bounds: Rect

    def is_empty(self) -> bool:
        return self.bounds.is_empty()

    def add(self, polygon: Tuple[Point, ...]) -> ClipRegion:
        box = Rect.from_points(polygon)
        bounds = self.bounds if box is None else self.bounds.intersect(box)
        return ClipRegion(self.polygons + (polygon,), bounds)


class Placement(NamedTuple):
    node: ContentNode
    transform: TransformMatrix
    clip: ClipRegion
    depth: int


class PageLayout(NamedTuple):
    page: Page
    scale_factor: float
    device: TransformMatrix
    width: int
    height: int
    placements: Tuple[Placement, ...]

    def leaves(self) -> List[Placement]:
        return [p for p in self.placements if not isinstance(p.node, PageBlock)]

    def bounds(self, placement: Placement) -> Optional[Rect]:
        """Device space bounding box of a node, ignoring clipping

        Paths use their control points (widened by the stroke), text uses em
        boxes of its glyphs, images their placement rectangle and blocks their
        clip rectangle.
        """
        node = placement.node
        transform = placement.transform
        if isinstance(node, PathObject):
            points = segments_points(node.segments)
            if points.size == 0:
                return None
            box = Rect.from_points(transform(points))
            if box is not None and node.stroke is not None:
                pad = node.stroke.width * transform.expansion() / 2
                box = Rect(box.x - pad, box.y - pad, box.width + 2 * pad, box.height + 2 * pad)
            return box
        elif isinstance(node, TextObject):
            corners = []
            for glyph, (x, y) in node.pen_positions():
                corners.extend([(x, y - node.size), (x + glyph.advance, y)])
            return Rect.from_points(transform(corners)) if corners else None
        elif isinstance(node, ImageObject):
            return Rect.from_points(transform(node.placement.corners()))
        elif isinstance(node, PageBlock):
            if node.clip is None:
                return None
            return Rect.from_points(transform(node.clip.corners()))
        raise TypeError(f"unknown content node: {type(node).__name__}")


def device_transform(page: Page, scale_factor: float, dpi: float, viewport: Optional[Rect] = None) -> TransformMatrix:
    scale = scale_factor * dpi / MM_PER_INCH
    device = IDENTITY
    if viewport is not None:
        device = device.translate(-viewport.x, -viewport.y)
    return device.scale(scale).translate(-page.area.x, -page.area.y)


def canvas_size(page: Page, scale_factor: float, dpi: float) -> Tuple[int, int]:
    """Canvas dimensions in pixels, page size rounded up to whole pixels"""
    scale = scale_factor * dpi / MM_PER_INCH
    # round away accumulated error before taking ceiling, so 210.0000000001 is 210
    width = int(math.ceil(round(page.area.width * scale, 6)))
    height = int(math.ceil(round(page.area.height * scale, 6)))
    return width, height


def layout_page(
    page: Page,
    scale_factor: float = 1.0,
    options: Optional[RenderOptions] = None,
    viewport: Optional[Rect] = None,
) -> PageLayout:
    """Compute effective transform and clip region of every node of the page

    Placements are listed in pre-order, which is the paint order.
    """
    dpi = DEFAULT_DPI if options is None else options.dpi
    if not page.has_valid_geometry():
        raise InvalidGeometry(f"page {page.index} has invalid geometry: {page.area}")
    if not math.isfinite(scale_factor) or scale_factor <= 0:
        raise InvalidGeometry(f"scale factor must be positive and finite: {scale_factor}")
    if not math.isfinite(dpi) or dpi <= 0:
        raise InvalidGeometry(f"dpi must be positive and finite: {dpi}")

    if viewport is None:
        width, height = canvas_size(page, scale_factor, dpi)
    else:
        if not viewport.is_valid():
            raise InvalidGeometry(f"invalid viewport: {viewport}")
        width, height = int(math.ceil(viewport.width)), int(math.ceil(viewport.height))
    if width <= 0 or height <= 0:
        raise InvalidGeometry(f"page {page.index} is empty at scale {scale_factor}")

    device = device_transform(page, scale_factor, dpi, viewport)
    root_clip = ClipRegion((), Rect(0.0, 0.0, float(width), float(height)))
    placements: List[Placement] = []

    def place(node: ContentNode, parent: TransformMatrix, clip: ClipRegion, depth: int):
        own = getattr(node, "transform", None)
        transform = parent if own is None else parent @ own
        placements.append(Placement(node, transform, clip, depth))
        if isinstance(node, PageBlock):
            if node.clip is not None:
                polygon = tuple((float(x), float(y)) for x, y in transform(node.clip.corners()))
                clip = clip.add(polygon)
            for child in node.children:
                place(child, transform, clip, depth + 1)

    place(page.content, device, root_clip, 0)
    return PageLayout(page, scale_factor, device, width, height, tuple(placements))
