"""Resolved document model

Everything is an immutable `NamedTuple` built from tuples, so models compare
by value and resolving the same input twice yields equal models. Content
nodes form a closed set of four types: `PageBlock`, `TextObject`,
`PathObject` and `ImageObject`.
"""
from __future__ import annotations

from typing import TYPE_CHECKING, Iterator, NamedTuple, Optional, Tuple, Union

from .errors import Diagnostic
from .geometry import PathSegment, Point, Rect, TransformMatrix

if TYPE_CHECKING:
    from .resources import ResourceTable

FILL_NONZERO = "nonzero"
FILL_EVENODD = "evenodd"
FILL_RULES = (FILL_NONZERO, FILL_EVENODD)


class Color(NamedTuple):
    """Straight (not premultiplied) RGBA color with channels in [0, 1]"""

    r: float
    g: float
    b: float
    a: float = 1.0

    @classmethod
    def from_rgb255(cls, r: int, g: int, b: int, alpha: int = 255) -> Color:
        return cls(r / 255.0, g / 255.0, b / 255.0, alpha / 255.0)

    def with_alpha(self, alpha: float) -> Color:
        return self._replace(a=self.a * alpha)


BLACK = Color(0.0, 0.0, 0.0, 1.0)
WHITE = Color(1.0, 1.0, 1.0, 1.0)


# ------------------------------------------------------------------------------
# Content
# ------------------------------------------------------------------------------
class Glyph(NamedTuple):
    """Glyph codepoint and advance to the next glyph pen position"""

    codepoint: str
    advance: float


class Stroke(NamedTuple):
    color: Color
    width: float


class TextObject(NamedTuple):
    origin: Point
    glyphs: Tuple[Glyph, ...]
    font: str
    size: float
    fill: Color = BLACK
    transform: Optional[TransformMatrix] = None
    id: Optional[str] = None

    def pen_positions(self) -> Iterator[Tuple[Glyph, Point]]:
        """Glyphs with their baseline pen positions"""
        x, y = self.origin
        for glyph in self.glyphs:
            yield glyph, (x, y)
            x += glyph.advance


class PathObject(NamedTuple):
    segments: Tuple[PathSegment, ...]
    fill_rule: str = FILL_NONZERO
    fill: Optional[Color] = None
    stroke: Optional[Stroke] = None
    transform: Optional[TransformMatrix] = None
    id: Optional[str] = None


class ImageObject(NamedTuple):
    resource: str
    placement: Rect
    transform: Optional[TransformMatrix] = None
    id: Optional[str] = None


class PageBlock(NamedTuple):
    children: Tuple[ContentNode, ...] = ()
    transform: Optional[TransformMatrix] = None
    clip: Optional[Rect] = None
    id: Optional[str] = None

    def walk(self) -> Iterator[ContentNode]:
        """Pre-order traversal (paint order), block itself goes first"""
        yield self
        for child in self.children:
            if isinstance(child, PageBlock):
                yield from child.walk()
            else:
                yield child


ContentNode = Union[PageBlock, TextObject, PathObject, ImageObject]


# ------------------------------------------------------------------------------
# Document
# ------------------------------------------------------------------------------
class Page(NamedTuple):
    index: int
    id: Optional[str]
    area: Rect
    content: PageBlock

    @property
    def width(self) -> float:
        return self.area.width

    @property
    def height(self) -> float:
        return self.area.height

    @property
    def origin(self) -> Point:
        return (self.area.x, self.area.y)

    def has_valid_geometry(self) -> bool:
        return self.area.is_valid()


class PageFailure(NamedTuple):
    """Page dropped by the best-effort resolver"""

    index: int
    page_id: Optional[str]
    code: str
    message: str


class Document(NamedTuple):
    pages: Tuple[Page, ...]
    resources: ResourceTable
    diagnostics: Tuple[Diagnostic, ...] = ()
    failures: Tuple[PageFailure, ...] = ()

    def page(self, index: int) -> Page:
        return self.pages[index]

    def __repr__(self) -> str:
        return "Document(pages={}, resources={}, diagnostics={}, failures={})".format(
            len(self.pages), len(self.resources), len(self.diagnostics), len(self.failures)
        )
