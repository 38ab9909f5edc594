"""Rendering engine: paints resolved pages onto raster canvases

Nodes are painted in pre-order (painter's algorithm), every leaf goes
through the same pipeline:

    geometry -> device space polylines -> coverage mask -> paint -> clip -> composite

Problems limited to a single primitive (unsupported primitive, missing glyph,
corrupt image) skip that primitive and are reported as diagnostics, invalid
page geometry fails the whole page.
"""
from __future__ import annotations

import math
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, Iterable, List, NamedTuple, Optional, Tuple

import numpy as np

from .errors import (
    DIAG_CORRUPT_IMAGE,
    DIAG_MISSING_GLYPH,
    DIAG_UNSUPPORTED_PRIMITIVE,
    CanvasAllocationFailed,
    Diagnostic,
    ImageDecodeError,
    OfdError,
    RenderError,
)
from .fonts import FontGlyphOutlines, GlyphOutlineProvider
from .geometry import EPSILON, FLOAT, IDENTITY, Polyline, Rect, TransformMatrix, flatten_segments
from .images import SAMPLERS, SAMPLING_BILINEAR, DecodedImage, ImageDecoder, PillowImageDecoder
from .layout import DEFAULT_DPI, ClipRegion, PageLayout, Placement, layout_page
from .log import get_logger
from .model import FILL_NONZERO, FILL_RULES, Color, Document, ImageObject, PageBlock, PathObject, TextObject
from .raster import Layer, RasterCanvas, Window, color_straight_to_pre_alpha, fill_mask, stroke_polygons

LOGGER = get_logger(__name__)

DEFAULT_TOLERANCE = 0.1  # maximum chord error in pixels
DEFAULT_MAX_PIXELS = 1 << 28


class RenderOptions(NamedTuple):
    dpi: float = DEFAULT_DPI
    antialias: bool = False
    tolerance: float = DEFAULT_TOLERANCE
    image_sampling: str = SAMPLING_BILINEAR
    background: Optional[Color] = None
    max_pixels: int = DEFAULT_MAX_PIXELS


class RenderResult(NamedTuple):
    canvas: RasterCanvas
    diagnostics: Tuple[Diagnostic, ...] = ()


class PageRender(NamedTuple):
    """Outcome of one page of `render_pages`, exactly one of `result`/`error` is set"""

    index: int
    result: Optional[RenderResult]
    error: Optional[OfdError]


class RenderingEngine:
    """Renders pages of a single document

    Providers are shared and only read. Decoded images and clip masks are
    cached for the lifetime of the engine, so one engine must not be used by
    several threads at the same time.
    """

    def __init__(
        self,
        document: Document,
        glyphs: Optional[GlyphOutlineProvider] = None,
        images: Optional[ImageDecoder] = None,
        options: Optional[RenderOptions] = None,
    ):
        self.document = document
        self.glyphs = FontGlyphOutlines.from_resources(document.resources) if glyphs is None else glyphs
        self.images = PillowImageDecoder() if images is None else images
        self.options = RenderOptions() if options is None else options
        if self.options.image_sampling not in SAMPLERS:
            raise ValueError(f"unknown image sampling: {self.options.image_sampling}")
        if not self.options.tolerance > 0:
            raise ValueError(f"tolerance must be positive: {self.options.tolerance}")
        self._decoded: Dict[str, Optional[DecodedImage]] = {}
        self._clip_masks: Dict[ClipRegion, Optional[Layer]] = {}
        self._diagnostics: List[Diagnostic] = []
        self._page_index = 0

    def render(self, page_index: int, scale_factor: float = 1.0, viewport: Optional[Rect] = None) -> RenderResult:
        pages = self.document.pages
        if not 0 <= page_index < len(pages):
            raise IndexError(f"page index {page_index} out of range [0, {len(pages)})")
        page = pages[page_index]
        layout = layout_page(page, scale_factor, self.options, viewport)
        canvas = self.allocate(layout)

        self._diagnostics = []
        self._clip_masks = {}
        self._page_index = page_index
        for placement in layout.placements:
            self.paint(canvas, placement)
        LOGGER.debug(
            "page %d rendered: %dx%d, %d nodes, %d diagnostics",
            page_index,
            layout.width,
            layout.height,
            len(layout.placements),
            len(self._diagnostics),
        )
        return RenderResult(canvas, tuple(self._diagnostics))

    def allocate(self, layout: PageLayout) -> RasterCanvas:
        pixels = layout.width * layout.height
        if pixels > self.options.max_pixels:
            raise CanvasAllocationFailed(
                f"canvas {layout.width}x{layout.height} exceeds limit of {self.options.max_pixels} pixels"
            )
        try:
            return RasterCanvas.create(layout.width, layout.height, self.options.background)
        except MemoryError as error:
            raise CanvasAllocationFailed(f"failed to allocate {layout.width}x{layout.height} canvas") from error

    def report(self, code: str, message: str, object_id: Optional[str] = None) -> None:
        diag = Diagnostic(code, message, self._page_index, object_id)
        LOGGER.warning("%s", diag)
        self._diagnostics.append(diag)

    # --------------------------------------------------------------------------
    # Dispatch
    # --------------------------------------------------------------------------
    def paint(self, canvas: RasterCanvas, placement: Placement) -> None:
        node = placement.node
        if isinstance(node, PageBlock):
            return  # blocks only contribute transform and clip to descendants
        if placement.clip.is_empty():
            return
        if not placement.transform.is_finite() or abs(placement.transform.determinant) < EPSILON:
            self.report(
                DIAG_UNSUPPORTED_PRIMITIVE,
                f"degenerate transform {placement.transform!r}",
                getattr(node, "id", None),
            )
            return
        if isinstance(node, PathObject):
            self.paint_path(canvas, placement, node)
        elif isinstance(node, TextObject):
            self.paint_text(canvas, placement, node)
        elif isinstance(node, ImageObject):
            self.paint_image(canvas, placement, node)
        else:
            self.report(DIAG_UNSUPPORTED_PRIMITIVE, f"unsupported primitive: {type(node).__name__}")

    def window(self, clip: ClipRegion) -> Window:
        """Whole pixel window covering clip bounds"""
        bounds = clip.bounds
        x0, y0 = math.floor(bounds.x), math.floor(bounds.y)
        x1, y1 = math.ceil(bounds.right), math.ceil(bounds.bottom)
        return (x0, y0, x1 - x0, y1 - y0)

    def clip_mask(self, clip: ClipRegion) -> Tuple[bool, Optional[Layer]]:
        """Coverage mask of a clip region, `(False, None)` if it is empty"""
        if not clip.polygons:
            return True, None
        if clip in self._clip_masks:
            mask = self._clip_masks[clip]
            return mask is not None, mask
        window = self.window(clip)
        mask: Optional[Layer] = None
        for index, polygon in enumerate(clip.polygons):
            coverage = fill_mask(
                [Polyline(np.array(polygon, dtype=FLOAT), True)],
                window,
                FILL_NONZERO,
                self.options.antialias,
            )
            if coverage is None:
                mask = None
                break
            mask = coverage if index == 0 else coverage.clip(mask)
            if mask is None:
                break
        self._clip_masks[clip] = mask
        return mask is not None, mask

    def composite(self, canvas: RasterCanvas, placement: Placement, layer: Optional[Layer]) -> None:
        if layer is None:
            return
        visible, mask = self.clip_mask(placement.clip)
        if not visible:
            return
        layer = layer.clip(mask)
        if layer is not None:
            canvas.composite(layer)

    def fill(self, canvas: RasterCanvas, placement: Placement, polylines: List[Polyline], rule: str, color: Color):
        mask = fill_mask(polylines, self.window(placement.clip), rule, self.options.antialias)
        if mask is not None:
            self.composite(canvas, placement, mask.paint(color))

    # --------------------------------------------------------------------------
    # Primitives
    # --------------------------------------------------------------------------
    def paint_path(self, canvas: RasterCanvas, placement: Placement, path: PathObject) -> None:
        if path.fill_rule not in FILL_RULES:
            self.report(DIAG_UNSUPPORTED_PRIMITIVE, f"unsupported fill rule: {path.fill_rule}", path.id)
            return
        transform = placement.transform
        tolerance = self.options.tolerance
        try:
            if path.fill is not None:
                polylines = flatten_segments(path.segments, transform, tolerance)
                self.fill(canvas, placement, polylines, path.fill_rule, path.fill)
            if path.stroke is not None and path.stroke.width > 0:
                # outline is built in object space, so it follows non-uniform transforms
                local = flatten_segments(path.segments, IDENTITY, tolerance / transform.expansion())
                polygons = [
                    Polyline(transform(polygon), True)
                    for polyline in local
                    for polygon in stroke_polygons(polyline, path.stroke.width)
                ]
                self.fill(canvas, placement, polygons, FILL_NONZERO, path.stroke.color)
        except ValueError as error:
            self.report(DIAG_UNSUPPORTED_PRIMITIVE, f"failed to render path: {error}", path.id)

    def paint_text(self, canvas: RasterCanvas, placement: Placement, text: TextObject) -> None:
        font = self.document.resources.font(text.font)
        polylines: List[Polyline] = []
        for glyph, (x, y) in text.pen_positions():
            outline = None
            if font is not None:
                try:
                    outline = self.glyphs.outline(font, glyph.codepoint)
                except ValueError as error:
                    LOGGER.debug("broken outline for %r in `%s`: %s", glyph.codepoint, text.font, error)
            if outline is None:
                self.report(
                    DIAG_MISSING_GLYPH,
                    f"no outline for {glyph.codepoint!r} in font `{text.font}`",
                    text.id,
                )
                continue
            if outline.units_per_em <= 0:
                self.report(DIAG_MISSING_GLYPH, f"font `{text.font}` has invalid units per em", text.id)
                continue
            # font units are y-up, page units are y-down
            k = text.size / outline.units_per_em
            glyph_transform = placement.transform @ TransformMatrix(k, 0.0, 0.0, -k, x, y)
            polylines.extend(flatten_segments(outline.segments, glyph_transform, self.options.tolerance))
        if polylines:
            self.fill(canvas, placement, polylines, FILL_NONZERO, text.fill)

    def decode(self, image: ImageObject) -> Optional[DecodedImage]:
        if image.resource in self._decoded:
            return self._decoded[image.resource]
        decoded = None
        resource = self.document.resources.image(image.resource)
        if resource is None:
            self.report(DIAG_CORRUPT_IMAGE, f"image resource `{image.resource}` is not available", image.id)
        else:
            try:
                decoded = self.images.decode(resource)
                if decoded.width == 0 or decoded.height == 0:
                    raise ImageDecodeError(f"image `{image.resource}` is empty")
            except ImageDecodeError as error:
                self.report(DIAG_CORRUPT_IMAGE, str(error), image.id)
                decoded = None
        self._decoded[image.resource] = decoded
        return decoded

    def paint_image(self, canvas: RasterCanvas, placement: Placement, image: ImageObject) -> None:
        decoded = self.decode(image)
        if decoded is None:
            return
        rect = image.placement
        if not rect.is_valid():
            self.report(DIAG_UNSUPPORTED_PRIMITIVE, f"invalid image placement {rect}", image.id)
            return
        transform = placement.transform
        quad = Polyline(transform(rect.corners()), True)
        mask = fill_mask([quad], self.window(placement.clip), FILL_NONZERO, self.options.antialias)
        if mask is None:
            return

        # map device pixel centres back to image pixels
        ys, xs = np.mgrid[mask.y : mask.y + mask.height, mask.x : mask.x + mask.width]
        centers = np.stack([xs, ys], axis=-1).astype(FLOAT) + 0.5
        local = transform.invert(centers)
        u = (local[..., 0] - rect.x) * (decoded.width / rect.width)
        v = (local[..., 1] - rect.y) * (decoded.height / rect.height)

        pixels = decoded.rgba()
        if not decoded.premultiplied:
            pixels = color_straight_to_pre_alpha(pixels.copy())
        colors = SAMPLERS[self.options.image_sampling](pixels, u, v)
        self.composite(canvas, placement, Layer(colors * mask.image, mask.offset, pre_alpha=True))


# ------------------------------------------------------------------------------
# Entry points
# ------------------------------------------------------------------------------
def render(
    document: Document,
    page_index: int,
    scale_factor: float = 1.0,
    *,
    glyphs: Optional[GlyphOutlineProvider] = None,
    images: Optional[ImageDecoder] = None,
    options: Optional[RenderOptions] = None,
    viewport: Optional[Rect] = None,
) -> RenderResult:
    """Render single page of a resolved document

    Raises `InvalidGeometry` for malformed page geometry or scale, and
    `CanvasAllocationFailed` when the canvas can not be allocated.
    """
    engine = RenderingEngine(document, glyphs, images, options)
    return engine.render(page_index, scale_factor, viewport)


def render_pages(
    document: Document,
    scale_factor: float = 1.0,
    *,
    pages: Optional[Iterable[int]] = None,
    workers: Optional[int] = None,
    glyphs: Optional[GlyphOutlineProvider] = None,
    images: Optional[ImageDecoder] = None,
    options: Optional[RenderOptions] = None,
) -> List[PageRender]:
    """Render several pages concurrently, results are in requested page order

    A page that fails to render does not affect the others, its error is
    returned in the corresponding `PageRender`.
    """
    indices = list(range(len(document.pages)) if pages is None else pages)
    for index in indices:
        if not 0 <= index < len(document.pages):
            raise IndexError(f"page index {index} out of range [0, {len(document.pages)})")
    if glyphs is None:
        glyphs = FontGlyphOutlines.from_resources(document.resources)
    if images is None:
        images = PillowImageDecoder()

    def render_one(index: int) -> PageRender:
        try:
            result = render(document, index, scale_factor, glyphs=glyphs, images=images, options=options)
        except RenderError as error:
            LOGGER.error("page %d failed to render: %s", index, error)
            return PageRender(index, None, error)
        return PageRender(index, result, None)

    with ThreadPoolExecutor(max_workers=workers) as executor:
        return list(executor.map(render_one, indices))
