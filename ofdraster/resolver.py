"""Structure resolver: builds a `Document` from OFD sub-document trees

Input is the parsed `Document.xml` root, a mapping from document relative
path to parsed sub-document (pages and templates) and the list of resource
declarations. Templates are merged into the pages that reference them:
background templates are painted beneath the page layers, foreground ones
above. Template references are followed depth first with the chain of
templates being resolved kept on a stack, seeing an id that is already on the
stack is a cycle.

Under best-effort policy unknown elements and malformed objects are skipped
with a diagnostic and a structural error aborts only the affected page (it is
recorded as a `PageFailure`). Under strict policy the first error propagates.
"""
from __future__ import annotations

import xml.etree.ElementTree as etree
from typing import Callable, Dict, List, Mapping, NamedTuple, Optional, Sequence, Tuple

from .errors import (
    DIAG_DUPLICATE_RESOURCE,
    DIAG_INVALID_GEOMETRY,
    DIAG_MALFORMED_ELEMENT,
    DIAG_MISSING_RESOURCE,
    DIAG_UNSUPPORTED_ELEMENT,
    CyclicTemplate,
    Diagnostic,
    EmptyPageList,
    MalformedElement,
    MissingResource,
    MissingSubdocument,
    StructureError,
    UnknownTemplate,
    UnsupportedElement,
)
from .geometry import Rect, TransformMatrix
from .log import get_logger
from .model import (
    BLACK,
    FILL_EVENODD,
    FILL_NONZERO,
    Color,
    ContentNode,
    Document,
    Glyph,
    ImageObject,
    Page,
    PageBlock,
    PageFailure,
    PathObject,
    Stroke,
    TextObject,
)
from .ofdxml import (
    attr,
    child,
    children,
    find_path,
    local_name,
    parse_abbreviated_data,
    parse_bool,
    parse_box,
    parse_channel,
    parse_color,
    parse_ctm,
    parse_delta,
    parse_float,
    parse_loc,
    parse_ref,
    text_of,
)
from .resources import ColorResource, ResourceDeclaration, ResourceTable

LOGGER = get_logger(__name__)

ZORDER_BACKGROUND = "Background"
ZORDER_FOREGROUND = "Foreground"
DEFAULT_LINE_WIDTH = 0.353  # millimetres
RULE_NAMES = {"NonZero": FILL_NONZERO, "Even-Odd": FILL_EVENODD}


class ResolverPolicy(NamedTuple):
    """How the resolver reacts to unsupported or broken input

    `strict=False` (best-effort) skips what it can not interpret and records a
    diagnostic, `strict=True` raises on the first problem.
    """

    strict: bool = False


BEST_EFFORT = ResolverPolicy(strict=False)
STRICT = ResolverPolicy(strict=True)


class PageRef(NamedTuple):
    index: int
    id: Optional[str]
    loc: str


# background, layers, foreground
LayeredContent = Tuple[Tuple[ContentNode, ...], Tuple[ContentNode, ...], Tuple[ContentNode, ...]]


class TemplateDecl(NamedTuple):
    id: str
    loc: str
    zorder: str


class StructureResolver:
    __slots__ = [
        "root",
        "subdocuments",
        "declarations",
        "policy",
        "diagnostics",
        "table",
        "templates",
        "template_cache",
        "page_area",
        "page_index",
        "builders",
    ]

    def __init__(
        self,
        root: etree.Element,
        subdocuments: Mapping[str, etree.Element],
        declarations: Sequence[ResourceDeclaration],
        policy: ResolverPolicy,
    ):
        self.root = root
        self.subdocuments = subdocuments
        self.declarations = declarations
        self.policy = policy
        self.diagnostics: List[Diagnostic] = []
        self.table = ResourceTable()
        self.templates: Dict[str, TemplateDecl] = {}
        self.template_cache: Dict[str, Tuple[LayeredContent, Tuple[Diagnostic, ...]]] = {}
        self.page_area: Optional[Rect] = None
        self.page_index: Optional[int] = None
        self.builders: Dict[str, Callable[[etree.Element, Optional[ColorResource]], List[ContentNode]]] = {
            "TextObject": self.build_text,
            "PathObject": self.build_path,
            "ImageObject": self.build_image,
            "PageBlock": self.build_block,
        }

    def report(self, code: str, message: str, object_id: Optional[str] = None) -> None:
        diag = Diagnostic(code, message, self.page_index, object_id)
        LOGGER.warning("%s", diag)
        self.diagnostics.append(diag)

    def resolve(self) -> Document:
        strict = self.policy.strict
        self.table = ResourceTable.build(self.declarations, strict=strict, report=self.diagnostics.append)
        self.read_common_data()
        refs = self.page_refs()

        pages: List[Page] = []
        failures: List[PageFailure] = []
        for ref in refs:
            self.page_index = ref.index
            try:
                page = self.resolve_page(ref)
            except StructureError as error:
                if strict:
                    raise
                LOGGER.warning("page %d (%s) skipped: %s", ref.index, ref.loc, error)
                failures.append(PageFailure(ref.index, ref.id, error.code, str(error)))
                continue
            finally:
                self.page_index = None
            pages.append(page)

        LOGGER.debug(
            "resolved %d of %d pages, %d resources, %d diagnostics",
            len(pages),
            len(refs),
            len(self.table),
            len(self.diagnostics),
        )
        return Document(tuple(pages), self.table, tuple(self.diagnostics), tuple(failures))

    # --------------------------------------------------------------------------
    # Document structure
    # --------------------------------------------------------------------------
    def read_common_data(self) -> None:
        common = child(self.root, "CommonData")
        if common is None:
            return
        area = find_path(common, "PageArea", "PhysicalBox")
        if area is not None:
            try:
                self.page_area = parse_box(text_of(area))
            except ValueError as error:
                self.malformed("PageArea", str(error))

        for element in children(common, "TemplatePage"):
            id = parse_ref(attr(element, "ID"), "template id")
            decl = TemplateDecl(
                id,
                parse_loc(attr(element, "BaseLoc")),
                attr(element, "ZOrder", ZORDER_BACKGROUND),  # type: ignore[arg-type]
            )
            if id in self.templates:
                if self.policy.strict:
                    raise MalformedElement("TemplatePage", f"duplicate template id {id}")
                self.report(DIAG_DUPLICATE_RESOURCE, f"duplicate template `{id}` ignored", id)
                continue
            self.templates[id] = decl

    def page_refs(self) -> List[PageRef]:
        pages = child(self.root, "Pages")
        elements = [] if pages is None else list(children(pages, "Page"))
        if not elements:
            raise EmptyPageList()
        refs = []
        for index, element in enumerate(elements):
            id = attr(element, "ID")
            refs.append(PageRef(index, None if id is None else parse_ref(id, "page id"), attr(element, "BaseLoc") or ""))
        return refs

    def subdocument(self, loc: str) -> etree.Element:
        tree = self.subdocuments.get(parse_loc(loc))
        if tree is None:
            raise MissingSubdocument(loc)
        return tree

    def resolve_page(self, ref: PageRef) -> Page:
        tree = self.subdocument(ref.loc)
        area = self.page_area
        box = find_path(tree, "Area", "PhysicalBox")
        if box is not None:
            try:
                area = parse_box(text_of(box))
            except ValueError as error:
                self.malformed("Area", str(error))
        if area is None:
            area = Rect(0.0, 0.0, 0.0, 0.0)
            self.report(DIAG_INVALID_GEOMETRY, f"page {ref.index} does not declare its area")
        elif not area.is_valid():
            self.report(DIAG_INVALID_GEOMETRY, f"page {ref.index} has invalid area {area}")

        background, layers, foreground = self.resolve_content(tree, ())
        content = PageBlock(children=background + layers + foreground, id=ref.id)
        return Page(ref.index, ref.id, area, content)

    def resolve_content(
        self, tree: etree.Element, chain: Tuple[str, ...]
    ) -> LayeredContent:
        """Background templates, layers and foreground templates of a page or template"""
        background: List[ContentNode] = []
        foreground: List[ContentNode] = []
        for element in children(tree, "Template"):
            id = parse_ref(attr(element, "TemplateID"), "template reference")
            block = self.resolve_template(id, chain)
            zorder = attr(element, "ZOrder", self.templates[id].zorder)
            if zorder == ZORDER_FOREGROUND:
                foreground.append(block)
            else:
                background.append(block)

        layers: List[ContentNode] = []
        content = child(tree, "Content")
        if content is not None:
            for element in children(content):
                name = local_name(element.tag)
                if name != "Layer":
                    self.unsupported(name)
                    continue
                draw_param = self.draw_param(element, None)
                layers.append(
                    PageBlock(children=self.build_children(element, draw_param), id=attr(element, "ID"))
                )
        return tuple(background), tuple(layers), tuple(foreground)

    def resolve_template(self, id: str, chain: Tuple[str, ...]) -> PageBlock:
        if id in chain:
            raise CyclicTemplate(chain + (id,))
        decl = self.templates.get(id)
        if decl is None:
            raise UnknownTemplate(id)
        cached = self.template_cache.get(id)
        if cached is None:
            LOGGER.debug("resolving template %s (%s)", id, decl.loc)
            start = len(self.diagnostics)
            content = self.resolve_content(self.subdocument(decl.loc), chain + (id,))
            self.template_cache[id] = (content, tuple(self.diagnostics[start:]))
        else:
            # every page using the template gets its diagnostics
            content, diagnostics = cached
            self.diagnostics.extend(diag._replace(page=self.page_index) for diag in diagnostics)
        background, layers, foreground = content
        return PageBlock(children=background + layers + foreground, id=id)

    # --------------------------------------------------------------------------
    # Policy
    # --------------------------------------------------------------------------
    def unsupported(self, tag: str, object_id: Optional[str] = None) -> None:
        if self.policy.strict:
            raise UnsupportedElement(tag)
        self.report(DIAG_UNSUPPORTED_ELEMENT, f"unsupported element `{tag}` skipped", object_id)

    def malformed(self, tag: str, reason: str, object_id: Optional[str] = None) -> None:
        if self.policy.strict:
            raise MalformedElement(tag, reason)
        self.report(DIAG_MALFORMED_ELEMENT, f"malformed {tag} skipped: {reason}", object_id)

    def missing_resource(self, id: str, kind: str, object_id: Optional[str]) -> None:
        if self.policy.strict:
            raise MissingResource(id, kind)
        self.report(DIAG_MISSING_RESOURCE, f"{kind} resource `{id}` is not declared", object_id)

    # --------------------------------------------------------------------------
    # Content
    # --------------------------------------------------------------------------
    def build_children(self, element: etree.Element, draw_param: Optional[ColorResource]) -> Tuple[ContentNode, ...]:
        nodes: List[ContentNode] = []
        for elem in children(element):
            name = local_name(elem.tag)
            builder = self.builders.get(name)
            if builder is None:
                self.unsupported(name)
                continue
            try:
                nodes.extend(builder(elem, draw_param))
            except ValueError as error:
                self.malformed(name, str(error), attr(elem, "ID"))
        return tuple(nodes)

    def draw_param(self, element: etree.Element, inherited: Optional[ColorResource]) -> Optional[ColorResource]:
        ref = attr(element, "DrawParam")
        if ref is None:
            return inherited
        id = parse_ref(ref, "draw parameter reference")
        param = self.table.color(id)
        if param is None:
            # path keeps its own attributes
            self.report(DIAG_MISSING_RESOURCE, f"draw parameter `{id}` is not declared", attr(element, "ID"))
            return inherited
        return param

    def is_visible(self, element: etree.Element) -> bool:
        return parse_bool(attr(element, "Visible"), True)

    def object_transform(self, element: etree.Element) -> Tuple[Rect, Optional[TransformMatrix], TransformMatrix]:
        """Boundary, CTM and own transform `translate(boundary) @ CTM` of a graphic object"""
        boundary = parse_box(attr(element, "Boundary"))
        if boundary is None:
            raise ValueError("missing Boundary")
        ctm = parse_ctm(attr(element, "CTM"))
        transform = TransformMatrix().translate(boundary.x, boundary.y)
        if ctm is not None:
            transform = transform @ ctm
        return boundary, ctm, transform

    def object_color(self, element: Optional[etree.Element], default: Optional[Color], alpha: float) -> Optional[Color]:
        color = parse_color(element)
        if color is None:
            color = default
        if color is None:
            return None
        return color.with_alpha(alpha) if alpha != 1.0 else color

    def object_alpha(self, element: etree.Element) -> float:
        alpha = attr(element, "Alpha")
        return 1.0 if alpha is None else parse_channel(alpha) / 255.0

    def build_text(self, element: etree.Element, draw_param: Optional[ColorResource]) -> List[ContentNode]:
        id = attr(element, "ID")
        if not self.is_visible(element):
            return []
        _boundary, _ctm, transform = self.object_transform(element)
        font = parse_ref(attr(element, "Font"), "font reference")
        size = parse_float(attr(element, "Size"))
        if size is None or size <= 0:
            raise ValueError(f"invalid font size: {attr(element, 'Size')!r}")
        if self.table.font(font) is None:
            self.missing_resource(font, "font", id)
        draw_param = self.draw_param(element, draw_param)
        if not parse_bool(attr(element, "Fill"), True):
            return []
        fill = self.object_color(
            child(element, "FillColor"),
            draw_param.fill if draw_param is not None and draw_param.fill is not None else BLACK,
            self.object_alpha(element),
        )

        nodes: List[ContentNode] = []
        x, y = 0.0, 0.0
        for code in children(element, "TextCode"):
            x = parse_float(attr(code, "X"), x)  # type: ignore[assignment]
            y = parse_float(attr(code, "Y"), y)  # type: ignore[assignment]
            if attr(code, "DeltaY") is not None:
                # vertical glyph offsets
                self.unsupported("DeltaY", id)
            text = code.text or ""
            deltas = parse_delta(attr(code, "DeltaX"))
            glyphs = tuple(
                Glyph(char, deltas[i] if i < len(deltas) else size) for i, char in enumerate(text)
            )
            node = TextObject((x, y), glyphs, font, size, fill, transform, id)  # type: ignore[arg-type]
            nodes.append(node)
            x += sum(glyph.advance for glyph in glyphs)
        return nodes

    def build_path(self, element: etree.Element, draw_param: Optional[ColorResource]) -> List[ContentNode]:
        id = attr(element, "ID")
        if not self.is_visible(element):
            return []
        _boundary, _ctm, transform = self.object_transform(element)
        draw_param = self.draw_param(element, draw_param)
        rule_name = attr(element, "Rule", "NonZero")
        rule = RULE_NAMES.get(rule_name)  # type: ignore[arg-type]
        if rule is None:
            raise ValueError(f"unknown fill rule: {rule_name!r}")
        segments = parse_abbreviated_data(text_of(child(element, "AbbreviatedData")))
        alpha = self.object_alpha(element)

        fill = None
        if parse_bool(attr(element, "Fill"), False):
            default = draw_param.fill if draw_param is not None and draw_param.fill is not None else BLACK
            fill = self.object_color(child(element, "FillColor"), default, alpha)

        stroke = None
        if parse_bool(attr(element, "Stroke"), True):
            default = draw_param.stroke if draw_param is not None and draw_param.stroke is not None else BLACK
            color = self.object_color(child(element, "StrokeColor"), default, alpha)
            width = parse_float(attr(element, "LineWidth"))
            if width is None:
                width = draw_param.line_width if draw_param is not None and draw_param.line_width is not None else DEFAULT_LINE_WIDTH
            if width < 0:
                raise ValueError(f"negative line width: {width}")
            stroke = Stroke(color, width)  # type: ignore[arg-type]

        return [PathObject(segments, rule, fill, stroke, transform, id)]

    def build_image(self, element: etree.Element, draw_param: Optional[ColorResource]) -> List[ContentNode]:
        id = attr(element, "ID")
        if not self.is_visible(element):
            return []
        boundary, ctm, transform = self.object_transform(element)
        resource = parse_ref(attr(element, "ResourceID"), "image resource reference")
        if self.table.image(resource) is None:
            # aborts the whole page
            raise MissingResource(resource, "image")
        # with CTM the image occupies unit square of the object space
        placement = Rect(0.0, 0.0, 1.0, 1.0) if ctm is not None else Rect(0.0, 0.0, boundary.width, boundary.height)
        return [ImageObject(resource, placement, transform, id)]

    def build_block(self, element: etree.Element, draw_param: Optional[ColorResource]) -> List[ContentNode]:
        id = attr(element, "ID")
        clip = parse_box(attr(element, "Boundary"))
        transform = parse_ctm(attr(element, "CTM"))
        draw_param = self.draw_param(element, draw_param)
        return [PageBlock(self.build_children(element, draw_param), transform, clip, id)]


def resolve(
    root_tree: etree.Element,
    subdocuments: Mapping[str, etree.Element],
    resources: Sequence[ResourceDeclaration],
    policy: ResolverPolicy,
) -> Document:
    """Resolve OFD document structure into an immutable `Document`

    Raises `StructureError` subclasses: always for an empty page list and
    malformed document level declarations, and under strict policy for any
    page level problem.
    """
    if not isinstance(policy, ResolverPolicy):
        raise TypeError(f"policy must be ResolverPolicy, got {type(policy).__name__}")
    return StructureResolver(root_tree, subdocuments, resources, policy).resolve()
