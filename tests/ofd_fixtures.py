"""Builders of small OFD documents used across tests

Page areas are 10x10 mm and tests render at 25.4 dpi, so one millimetre is
exactly one pixel.
"""
from __future__ import annotations

import io
import xml.etree.ElementTree as etree
import zipfile
from typing import Dict, Iterable, Optional, Sequence, Tuple

import numpy as np
import PIL.Image
from fontTools.fontBuilder import FontBuilder
from fontTools.pens.ttGlyphPen import TTGlyphPen

from ofdraster.render import RenderOptions
from ofdraster.resolver import BEST_EFFORT, ResolverPolicy, resolve
from ofdraster.resources import KIND_COLOR, KIND_FONT, KIND_IMAGE, ResourceDeclaration

OFD_NS = "http://www.ofdspec.org/2016"
XMLNS = f'xmlns:ofd="{OFD_NS}"'
PAGE_LOC = "Pages/Page_0/Content.xml"

RED = (255, 0, 0, 255)
GREEN = (0, 255, 0, 255)
BLUE = (0, 0, 255, 255)
WHITE = (255, 255, 255, 255)
TRANSPARENT = (0, 0, 0, 0)

UNITS_PER_EM = 1000


def square_glyph(size: int):
    pen = TTGlyphPen(None)
    pen.moveTo((0, 0))
    pen.lineTo((0, size))
    pen.lineTo((size, size))
    pen.lineTo((size, 0))
    pen.closePath()
    return pen.glyph()


def arch_glyph(size: int):
    pen = TTGlyphPen(None)
    pen.moveTo((0, 0))
    pen.qCurveTo((size // 2, size), (size, 0))
    pen.closePath()
    return pen.glyph()


def build_font(family: str = "TestSans", weight: int = 400, italic: bool = False) -> bytes:
    """TrueType font with a full em square `A`, a quadratic arch `n` and a half em space"""
    builder = FontBuilder(UNITS_PER_EM, isTTF=True)
    builder.setupGlyphOrder([".notdef", "A", "n", "space"])
    builder.setupCharacterMap({ord("A"): "A", ord("n"): "n", ord(" "): "space"})
    builder.setupGlyf(
        {
            ".notdef": TTGlyphPen(None).glyph(),
            "A": square_glyph(UNITS_PER_EM),
            "n": arch_glyph(UNITS_PER_EM),
            "space": TTGlyphPen(None).glyph(),
        }
    )
    half = UNITS_PER_EM // 2
    builder.setupHorizontalMetrics(
        {".notdef": (half, 0), "A": (UNITS_PER_EM, 0), "n": (UNITS_PER_EM, 0), "space": (half, 0)}
    )
    builder.setupHorizontalHeader(ascent=UNITS_PER_EM, descent=0)
    builder.setupNameTable({"familyName": family, "styleName": "Italic" if italic else "Regular"})
    builder.setupOS2(usWeightClass=weight, fsSelection=0x01 if italic else 0x40)
    builder.setupPost()
    output = io.BytesIO()
    builder.save(output)
    return output.getvalue()


FONT = build_font()


def xml(text: str) -> etree.Element:
    return etree.fromstring(text)


def document_xml(
    pages: Sequence[str] = (PAGE_LOC,),
    templates: Iterable[Tuple[str, str, str]] = (),
    area: str = "0 0 10 10",
    public_res: Optional[str] = None,
    document_res: Optional[str] = None,
) -> str:
    common = [f"<ofd:PageArea><ofd:PhysicalBox>{area}</ofd:PhysicalBox></ofd:PageArea>"]
    if public_res is not None:
        common.append(f"<ofd:PublicRes>{public_res}</ofd:PublicRes>")
    if document_res is not None:
        common.append(f"<ofd:DocumentRes>{document_res}</ofd:DocumentRes>")
    for id, loc, zorder in templates:
        common.append(f'<ofd:TemplatePage ID="{id}" BaseLoc="{loc}" ZOrder="{zorder}"/>')
    page_list = "".join(f'<ofd:Page ID="{index + 1}" BaseLoc="{loc}"/>' for index, loc in enumerate(pages))
    return (
        f"<ofd:Document {XMLNS}>"
        f"<ofd:CommonData><ofd:MaxUnitID>100</ofd:MaxUnitID>{''.join(common)}</ofd:CommonData>"
        f"<ofd:Pages>{page_list}</ofd:Pages>"
        "</ofd:Document>"
    )


def page_xml(objects: str = "", templates: Iterable[Tuple[str, str]] = (), area: Optional[str] = None) -> str:
    parts = [f'<ofd:Template TemplateID="{id}" ZOrder="{zorder}"/>' for id, zorder in templates]
    if area is not None:
        parts.append(f"<ofd:Area><ofd:PhysicalBox>{area}</ofd:PhysicalBox></ofd:Area>")
    parts.append(f'<ofd:Content><ofd:Layer ID="L1">{objects}</ofd:Layer></ofd:Content>')
    return f"<ofd:Page {XMLNS}>{''.join(parts)}</ofd:Page>"


def rect_path(x: float, y: float, w: float, h: float, color: str = "255 0 0", id: str = "10") -> str:
    """Filled rectangle without stroke, `x y w h` in page millimetres"""
    return (
        f'<ofd:PathObject ID="{id}" Boundary="{x} {y} {w} {h}" Fill="true" Stroke="false">'
        f'<ofd:FillColor Value="{color}"/>'
        f"<ofd:AbbreviatedData>M 0 0 L {w} 0 L {w} {h} L 0 {h} C</ofd:AbbreviatedData>"
        "</ofd:PathObject>"
    )


def text_object(text: str, font: str = "F1", x: float = 1, y: float = 6, size: float = 4, delta: Optional[str] = None, id: str = "20") -> str:
    delta_attr = "" if delta is None else f' DeltaX="{delta}"'
    return (
        f'<ofd:TextObject ID="{id}" Boundary="0 0 10 10" Font="{font}" Size="{size}">'
        '<ofd:FillColor Value="0 0 255"/>'
        f'<ofd:TextCode X="{x}" Y="{y}"{delta_attr}>{text}</ofd:TextCode>'
        "</ofd:TextObject>"
    )


def image_object(resource: str, boundary: str = "2 2 4 4", ctm: Optional[str] = None, id: str = "30") -> str:
    ctm_attr = "" if ctm is None else f' CTM="{ctm}"'
    return f'<ofd:ImageObject ID="{id}" Boundary="{boundary}" ResourceID="{resource}"{ctm_attr}/>'


def font_declaration(id: str = "F1", name: str = "TestSans", payload: Optional[bytes] = FONT) -> ResourceDeclaration:
    return ResourceDeclaration(id, KIND_FONT, (("FontName", name),), payload)


def image_declaration(id: str, payload: Optional[bytes]) -> ResourceDeclaration:
    return ResourceDeclaration(id, KIND_IMAGE, (("Format", "PNG"),), payload)


def draw_param_declaration(id: str, **attrs: str) -> ResourceDeclaration:
    return ResourceDeclaration(id, KIND_COLOR, tuple(sorted(attrs.items())))


def png_bytes(rows) -> bytes:
    """Encode nested lists of RGBA tuples as PNG"""
    image = PIL.Image.fromarray(np.array(rows, dtype=np.uint8))
    output = io.BytesIO()
    image.save(output, format="PNG")
    return output.getvalue()


def single_page(
    objects: str,
    resources: Sequence[ResourceDeclaration] = (),
    policy: ResolverPolicy = BEST_EFFORT,
    area: str = "0 0 10 10",
):
    return resolve(xml(document_xml(area=area)), {PAGE_LOC: xml(page_xml(objects))}, list(resources), policy)


def options(**kwargs) -> RenderOptions:
    """Render options where one millimetre is one pixel"""
    return RenderOptions(dpi=25.4, **kwargs)


def ofd_archive(files: Dict[str, bytes]) -> bytes:
    output = io.BytesIO()
    with zipfile.ZipFile(output, "w") as archive:
        for name, data in files.items():
            archive.writestr(name, data)
    return output.getvalue()


def sample_archive(embed_font: bool = True) -> bytes:
    """Container with one page: red rectangle, image and text"""
    ofd = (
        f"<ofd:OFD {XMLNS} Version=\"1.0\"><ofd:DocBody><ofd:DocInfo><ofd:DocID>x</ofd:DocID></ofd:DocInfo>"
        "<ofd:DocRoot>Doc_0/Document.xml</ofd:DocRoot></ofd:DocBody></ofd:OFD>"
    )
    public_res = (
        f'<ofd:Res {XMLNS} BaseLoc="Res"><ofd:Fonts>'
        '<ofd:Font ID="F1" FontName="TestSans" FamilyName="TestSans">'
        f"{'<ofd:FontFile>font.ttf</ofd:FontFile>' if embed_font else ''}</ofd:Font>"
        "</ofd:Fonts><ofd:DrawParams>"
        '<ofd:DrawParam ID="D1" LineWidth="0.5"><ofd:StrokeColor Value="0 255 0"/></ofd:DrawParam>'
        "</ofd:DrawParams></ofd:Res>"
    )
    document_res = (
        f'<ofd:Res {XMLNS} BaseLoc="Res"><ofd:MultiMedias>'
        '<ofd:MultiMedia ID="M1" Type="Image" Format="PNG"><ofd:MediaFile>image.png</ofd:MediaFile></ofd:MultiMedia>'
        "</ofd:MultiMedias></ofd:Res>"
    )
    objects = rect_path(0, 0, 4, 4) + image_object("M1", "6 6 2 2") + text_object("A", x=5, y=4, size=2)
    return ofd_archive(
        {
            "OFD.xml": ofd.encode(),
            "Doc_0/Document.xml": document_xml(public_res="PublicRes.xml", document_res="DocumentRes.xml").encode(),
            "Doc_0/PublicRes.xml": public_res.encode(),
            "Doc_0/DocumentRes.xml": document_res.encode(),
            "Doc_0/Res/font.ttf": FONT,
            "Doc_0/Res/image.png": png_bytes([[GREEN, GREEN], [GREEN, GREEN]]),
            f"Doc_0/{PAGE_LOC}": page_xml(objects).encode(),
        }
    )
