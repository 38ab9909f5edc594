"""Glyph outline providers

The engine asks a `GlyphOutlineProvider` for the outline of a codepoint in a
given font resource. Outlines are in font units with y axis pointing up.
`FontGlyphOutlines` is the default provider, it reads TrueType/OpenType
fonts (including collections and WOFF) embedded in the document, and font
files registered by the caller for fonts the document only names.
"""
from __future__ import annotations

import io
import os
import struct
import threading
from typing import Dict, List, NamedTuple, Optional, Protocol, Tuple

from fontTools.pens.basePen import BasePen
from fontTools.ttLib import TTCollection, TTFont, TTLibError

from .geometry import PathSegment
from .log import get_logger
from .resources import FontResource, ResourceTable

LOGGER = get_logger(__name__)

FONT_WEIGHT_NORMAL = 400
FONT_WEIGHT_BOLD = 700
COLLECTION_TAG = b"ttcf"
FONT_ERRORS = (TTLibError, struct.error, KeyError, IndexError, ValueError, AssertionError)


class GlyphOutline(NamedTuple):
    """Glyph fill path in font units (y axis up)"""

    segments: Tuple[PathSegment, ...]
    advance: float
    units_per_em: float


class GlyphOutlineProvider(Protocol):
    def outline(self, font: FontResource, codepoint: str) -> Optional[GlyphOutline]:
        """Outline of `codepoint` in `font`, `None` if the glyph is not available"""
        ...


class OutlinePen(BasePen):
    """Collects pen commands as path segments

    Quadratic curves are converted to cubic ones by `BasePen`, components of
    composite glyphs are drawn through `glyph_set`.
    """

    def __init__(self, glyph_set=None):
        super().__init__(glyph_set)
        self.segments: List[PathSegment] = []

    def _moveTo(self, pt):
        self.segments.append(PathSegment.move(float(pt[0]), float(pt[1])))

    def _lineTo(self, pt):
        self.segments.append(PathSegment.line(float(pt[0]), float(pt[1])))

    def _curveToOne(self, pt1, pt2, pt3):
        self.segments.append(PathSegment.cubic(*((float(x), float(y)) for x, y in (pt1, pt2, pt3))))

    def _closePath(self):
        self.segments.append(PathSegment.close())

    def _endPath(self):
        # open contours have no area
        pass


class OpenTypeFont:
    """Single face of a TrueType/OpenType font

    Outlines are extracted on first use and cached. `fontTools` decompiles
    tables lazily, so extraction is serialized with a lock.
    """

    __slots__ = ["family", "weight", "italic", "units_per_em", "_font", "_cmap", "_glyph_set", "_outlines", "_lock"]

    def __init__(self, font: TTFont):
        self._font = font
        self._cmap: Dict[int, str] = font.getBestCmap() or {}
        self._glyph_set = font.getGlyphSet()
        self._outlines: Dict[str, Optional[GlyphOutline]] = {}
        self._lock = threading.Lock()
        self.units_per_em = float(font["head"].unitsPerEm)

        name = font["name"] if "name" in font else None
        family = name.getBestFamilyName() if name is not None else None
        self.family: str = family or ""
        mac_style = font["head"].macStyle
        if "OS/2" in font:
            os2 = font["OS/2"]
            self.weight = int(os2.usWeightClass) or FONT_WEIGHT_NORMAL
            self.italic = bool(os2.fsSelection & 0x01)
        else:
            self.weight = FONT_WEIGHT_BOLD if mac_style & 0x01 else FONT_WEIGHT_NORMAL
            self.italic = bool(mac_style & 0x02)

    def glyph_name(self, codepoint: str) -> Optional[str]:
        if len(codepoint) != 1:
            return None
        return self._cmap.get(ord(codepoint))

    def outline(self, codepoint: str) -> Optional[GlyphOutline]:
        with self._lock:
            if codepoint in self._outlines:
                return self._outlines[codepoint]
            outline = None
            name = self.glyph_name(codepoint)
            if name is not None and name in self._glyph_set:
                glyph = self._glyph_set[name]
                pen = OutlinePen(self._glyph_set)
                try:
                    glyph.draw(pen)
                except FONT_ERRORS as error:
                    raise ValueError(f"failed to draw glyph `{name}` of `{self.family}`: {error}") from error
                outline = GlyphOutline(tuple(pen.segments), float(glyph.width), self.units_per_em)
            self._outlines[codepoint] = outline
            return outline

    def __repr__(self):
        return 'OpenTypeFont(family="{}", weight={}, italic={}, glyphs_count={})'.format(
            self.family, self.weight, self.italic, len(self._cmap)
        )


def fonts_from_bytes(data: bytes) -> List[OpenTypeFont]:
    """Load all faces of a font file (collections contain several)

    Raises `ValueError` if data is not a supported font.
    """
    try:
        if data[:4] == COLLECTION_TAG:
            fonts = [OpenTypeFont(font) for font in TTCollection(io.BytesIO(data)).fonts]
        else:
            fonts = [OpenTypeFont(TTFont(io.BytesIO(data)))]
    except FONT_ERRORS as error:
        raise ValueError(f"not a TrueType/OpenType font: {error}") from error
    if not fonts:
        raise ValueError("font collection is empty")
    return fonts


class FontGlyphOutlines:
    """Glyph outlines from TrueType/OpenType fonts

    Font resources with embedded data use their own font. Other resources are
    matched by family name among registered fonts (case insensitive), then
    fall back to the first font registered from a file. Fonts must be
    registered before rendering starts, after that the database is only read
    and can serve concurrent renders.
    """

    __slots__ = ["fonts", "by_resource", "fallback"]

    def __init__(self):
        self.fonts: Dict[str, List[OpenTypeFont]] = {}
        self.by_resource: Dict[str, OpenTypeFont] = {}
        self.fallback: Optional[OpenTypeFont] = None

    def register(self, font: OpenTypeFont, alias: Optional[str] = None) -> None:
        names = {font.family.lower()}
        if alias:
            names.add(alias.lower())
        for name in names:
            if name:
                self.fonts.setdefault(name, []).append(font)

    def register_file(self, path: str) -> List[OpenTypeFont]:
        """Register all faces of a font file, the first one becomes the fallback"""
        if not os.path.isfile(path):
            raise FileNotFoundError(f"failed to find font file: {path}")
        with open(path, "rb") as file:
            fonts = fonts_from_bytes(file.read())
        for font in fonts:
            LOGGER.debug("registered %r from %s", font, path)
            self.register(font)
        if self.fallback is None and fonts:
            self.fallback = fonts[0]
        return fonts

    def register_resources(self, resources: ResourceTable) -> None:
        """Register fonts embedded in document font resources"""
        for resource in resources.fonts():
            if not resource.data:
                continue
            try:
                fonts = fonts_from_bytes(resource.data)
            except ValueError as error:
                LOGGER.warning("failed to load embedded font `%s`: %s", resource.id, error)
                continue
            self.by_resource[resource.id] = fonts[0]
            self.register(fonts[0], alias=resource.name)

    @classmethod
    def from_resources(cls, resources: ResourceTable) -> FontGlyphOutlines:
        outlines = cls()
        outlines.register_resources(resources)
        return outlines

    def resolve(self, family: Optional[str], weight: int = FONT_WEIGHT_NORMAL, italic: bool = False) -> Optional[OpenTypeFont]:
        """Closest registered face of `family`, the fallback font if there is none"""
        matches = self.fonts.get(family.lower()) if family else None
        if not matches:
            return self.fallback
        return min(matches, key=lambda font: (font.italic != italic, abs(font.weight - weight)))

    def font_for(self, resource: FontResource) -> Optional[OpenTypeFont]:
        font = self.by_resource.get(resource.id)
        if font is not None:
            return font
        weight = FONT_WEIGHT_BOLD if resource.bold else FONT_WEIGHT_NORMAL
        for family in resource.families:
            if family.lower() in self.fonts:
                return self.resolve(family, weight, resource.italic)
        return self.fallback

    def outline(self, font: FontResource, codepoint: str) -> Optional[GlyphOutline]:
        face = self.font_for(font)
        if face is None:
            return None
        return face.outline(codepoint)

    def __repr__(self):
        return "FontGlyphOutlines(families={})".format(sorted(self.fonts))
