"""Resource table: fonts, images and draw parameters shared by a document

The container layer hands over a list of `ResourceDeclaration`s (identifier,
kind, attributes and an optional raw payload). `ResourceTable.build` turns
them into typed resources. The table is read-only once built, so it can be
shared by renders running on different threads.
"""
from __future__ import annotations

from types import MappingProxyType
from collections.abc import Mapping
from typing import Callable, Dict, Iterable, Iterator, List, NamedTuple, Optional, Tuple, Union

from .errors import DIAG_DUPLICATE_RESOURCE, DIAG_MALFORMED_ELEMENT, DIAG_UNSUPPORTED_ELEMENT, Diagnostic
from .errors import DuplicateResource, MalformedElement, UnsupportedElement
from .log import get_logger
from .model import Color
from .ofdxml import parse_color_value

LOGGER = get_logger(__name__)

KIND_FONT = "font"
KIND_IMAGE = "image"
KIND_COLOR = "color"
RESOURCE_KINDS = (KIND_FONT, KIND_IMAGE, KIND_COLOR)


class ResourceDeclaration(NamedTuple):
    """Raw resource declaration as found in `PublicRes.xml`/`DocumentRes.xml`

    `attrs` is a sorted tuple of `(name, value)` pairs, `payload` holds the raw
    bytes of a referenced file (font or image) when the container provides it.
    """

    id: str
    kind: str
    attrs: Tuple[Tuple[str, str], ...] = ()
    payload: Optional[bytes] = None
    location: Optional[str] = None

    def attr(self, name: str, default: Optional[str] = None) -> Optional[str]:
        for key, value in self.attrs:
            if key == name:
                return value
        return default


class FontResource(NamedTuple):
    id: str
    name: str
    family: Optional[str] = None
    bold: bool = False
    italic: bool = False
    file: Optional[str] = None
    data: Optional[bytes] = None

    @property
    def families(self) -> Tuple[str, ...]:
        """Candidate family names, most specific first"""
        names = [self.name]
        if self.family and self.family != self.name:
            names.append(self.family)
        return tuple(names)


class ImageResource(NamedTuple):
    id: str
    format: Optional[str] = None
    file: Optional[str] = None
    data: Optional[bytes] = None


class ColorResource(NamedTuple):
    """Draw parameters (OFD `DrawParam`) used as defaults by path objects"""

    id: str
    fill: Optional[Color] = None
    stroke: Optional[Color] = None
    line_width: Optional[float] = None


Resource = Union[FontResource, ImageResource, ColorResource]


class ResourceTable(Mapping):
    """Read-only identifier to resource mapping, iterates in declaration order"""

    __slots__ = ["_resources"]

    def __init__(self, resources: Iterable[Resource] = ()):
        table: Dict[str, Resource] = {}
        for resource in resources:
            if resource.id in table:
                raise DuplicateResource(resource.id)
            table[resource.id] = resource
        self._resources = MappingProxyType(table)

    def __getitem__(self, id: str) -> Resource:
        return self._resources[id]

    def __iter__(self) -> Iterator[str]:
        return iter(self._resources)

    def __len__(self) -> int:
        return len(self._resources)

    def __eq__(self, other) -> bool:
        if not isinstance(other, ResourceTable):
            return NotImplemented
        return list(self._resources.items()) == list(other._resources.items())

    def __hash__(self) -> int:
        return hash(tuple(self._resources.items()))

    def __repr__(self) -> str:
        return "ResourceTable({})".format(", ".join(self._resources))

    def font(self, id: str) -> Optional[FontResource]:
        resource = self._resources.get(id)
        return resource if isinstance(resource, FontResource) else None

    def image(self, id: str) -> Optional[ImageResource]:
        resource = self._resources.get(id)
        return resource if isinstance(resource, ImageResource) else None

    def color(self, id: str) -> Optional[ColorResource]:
        resource = self._resources.get(id)
        return resource if isinstance(resource, ColorResource) else None

    def fonts(self) -> List[FontResource]:
        return [r for r in self._resources.values() if isinstance(r, FontResource)]

    @classmethod
    def build(
        cls,
        declarations: Iterable[ResourceDeclaration],
        strict: bool = False,
        report: Optional[Callable[[Diagnostic], None]] = None,
    ) -> ResourceTable:
        """Build table from raw declarations

        In strict mode duplicate identifiers and unknown resource kinds are
        errors, otherwise they are reported and skipped (first declaration wins).
        """
        report = report or (lambda diag: None)
        resources: Dict[str, Resource] = {}
        for decl in declarations:
            if decl.id in resources:
                if strict:
                    raise DuplicateResource(decl.id)
                diag = Diagnostic(
                    DIAG_DUPLICATE_RESOURCE,
                    f"duplicate resource `{decl.id}` ignored",
                    object_id=decl.id,
                )
                LOGGER.warning("%s", diag)
                report(diag)
                continue
            builder = RESOURCE_BUILDERS.get(decl.kind)
            if builder is None:
                if strict:
                    raise UnsupportedElement(decl.kind)
                diag = Diagnostic(
                    DIAG_UNSUPPORTED_ELEMENT,
                    f"unsupported resource kind `{decl.kind}`",
                    object_id=decl.id,
                )
                LOGGER.warning("%s", diag)
                report(diag)
                continue
            try:
                resources[decl.id] = builder(decl)
            except MalformedElement as error:
                if strict:
                    raise
                diag = Diagnostic(DIAG_MALFORMED_ELEMENT, str(error), object_id=decl.id)
                LOGGER.warning("%s", diag)
                report(diag)
        return cls(resources.values())


def font_from_declaration(decl: ResourceDeclaration) -> FontResource:
    name = decl.attr("FontName") or decl.attr("FamilyName") or ""
    return FontResource(
        id=decl.id,
        name=name,
        family=decl.attr("FamilyName"),
        bold=decl.attr("Bold", "false") == "true",
        italic=decl.attr("Italic", "false") == "true",
        file=decl.location,
        data=decl.payload,
    )


def image_from_declaration(decl: ResourceDeclaration) -> ImageResource:
    return ImageResource(
        id=decl.id,
        format=decl.attr("Format"),
        file=decl.location,
        data=decl.payload,
    )


def color_from_declaration(decl: ResourceDeclaration) -> ColorResource:
    line_width = decl.attr("LineWidth")
    try:
        return ColorResource(
            id=decl.id,
            fill=parse_color_value(decl.attr("FillColor"), decl.attr("FillAlpha")),
            stroke=parse_color_value(decl.attr("StrokeColor"), decl.attr("StrokeAlpha")),
            line_width=None if line_width is None else float(line_width),
        )
    except ValueError as error:
        raise MalformedElement("DrawParam", str(error)) from error


RESOURCE_BUILDERS: Dict[str, Callable[[ResourceDeclaration], Resource]] = {
    KIND_FONT: font_from_declaration,
    KIND_IMAGE: image_from_declaration,
    KIND_COLOR: color_from_declaration,
}
