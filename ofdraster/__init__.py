"""Resolve and rasterize OFD (Open Form Document) pages"""
from .errors import (
    CanvasAllocationFailed,
    CyclicTemplate,
    Diagnostic,
    EmptyPageList,
    ImageDecodeError,
    InvalidGeometry,
    MalformedElement,
    MalformedReference,
    MissingResource,
    MissingSubdocument,
    OfdError,
    PackageError,
    RenderError,
    StructureError,
    UnknownTemplate,
    UnsupportedElement,
)
from .fonts import FontGlyphOutlines, GlyphOutline, GlyphOutlineProvider
from .geometry import IDENTITY, PathSegment, Rect, TransformMatrix
from .images import DecodedImage, ImageDecoder, PillowImageDecoder
from .layout import ClipRegion, PageLayout, Placement, layout_page
from .model import Color, Document, Glyph, ImageObject, Page, PageBlock, PageFailure, PathObject, Stroke, TextObject
from .package import OfdPackage
from .raster import RasterCanvas
from .render import PageRender, RenderOptions, RenderResult, RenderingEngine, render, render_pages
from .resolver import BEST_EFFORT, STRICT, ResolverPolicy, resolve
from .resources import ColorResource, FontResource, ImageResource, ResourceDeclaration, ResourceTable

__version__ = "0.1.0"
