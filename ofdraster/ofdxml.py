"""OFD XML helpers: element lookup and attribute value parsing

Lookups ignore namespaces (some producers omit the `ofd:` namespace), value
parsers raise `ValueError` on malformed input and leave it to the caller to
decide whether this is fatal.
"""
from __future__ import annotations

import re
import xml.etree.ElementTree as etree
from typing import Iterator, List, Optional, Tuple

from .errors import MalformedReference
from .geometry import PathSegment, Point, Rect, TransformMatrix, arc_segments, bezier2_to_bezier3
from .model import BLACK, Color

OFD_NAMESPACE = "http://www.ofdspec.org/2016"
OFD_NS = {"ofd": OFD_NAMESPACE}
FLOAT_RE = re.compile(r"[-+]?(?:(?:\d*\.\d+)|(?:\d+\.?))(?:[Ee][+-]?\d+)?$")
REF_RE = re.compile(r"[A-Za-z0-9_.:\-]+$")
HEX_CHANNEL_RE = re.compile(r"#([0-9A-Fa-f]{1,2})$")

# abbreviated path data commands and number of arguments
PATH_ARGS = {"S": 2, "M": 2, "L": 2, "Q": 4, "B": 6, "A": 7, "C": 0}


def local_name(tag: str) -> str:
    return tag.split("}")[-1]


def children(element: etree.Element, name: Optional[str] = None) -> Iterator[etree.Element]:
    """Child elements (optionally only with specified local name) in document order"""
    for child in element:
        if not isinstance(child.tag, str):
            continue  # comments and processing instructions
        if name is None or local_name(child.tag) == name:
            yield child


def child(element: etree.Element, name: str) -> Optional[etree.Element]:
    return next(children(element, name), None)


def find_path(element: etree.Element, *names: str) -> Optional[etree.Element]:
    """Follow chain of child names, for example `find_path(doc, "CommonData", "PageArea")`"""
    for name in names:
        if element is None:
            return None
        element = child(element, name)
    return element


def text_of(element: Optional[etree.Element]) -> Optional[str]:
    if element is None or element.text is None:
        return None
    text = element.text.strip()
    return text or None


def attr(element: etree.Element, name: str, default: Optional[str] = None) -> Optional[str]:
    value = element.attrib.get(name)
    if value is None:
        value = element.attrib.get(f"{{{OFD_NAMESPACE}}}{name}")
    return default if value is None else value


def parse_xml(data: bytes) -> etree.Element:
    return etree.fromstring(data)


# ------------------------------------------------------------------------------
# Values
# ------------------------------------------------------------------------------
def parse_float(text: Optional[str], default: Optional[float] = None) -> Optional[float]:
    if text is None:
        return default
    text = text.strip()
    if not FLOAT_RE.match(text):
        raise ValueError(f"invalid number: {text!r}")
    return float(text)


def parse_floats(text: Optional[str], count: Optional[int] = None) -> List[float]:
    if text is None:
        return []
    floats = [parse_float(v) for v in text.replace(",", " ").split()]
    if count is not None and len(floats) != count:
        raise ValueError(f"expected {count} numbers: {text!r}")
    return floats  # type: ignore[return-value]


def parse_bool(text: Optional[str], default: bool) -> bool:
    if text is None:
        return default
    text = text.strip().lower()
    if text in ("true", "1"):
        return True
    elif text in ("false", "0"):
        return False
    raise ValueError(f"invalid boolean: {text!r}")


def parse_box(text: Optional[str]) -> Optional[Rect]:
    """Parse `ST_Box` ("x y width height")"""
    if text is None:
        return None
    return Rect(*parse_floats(text, 4))


def parse_ctm(text: Optional[str]) -> Optional[TransformMatrix]:
    """Parse `CTM` attribute ("a b c d e f")"""
    if text is None:
        return None
    return TransformMatrix(*parse_floats(text, 6))


def parse_ref(text: Optional[str], what: str = "reference") -> str:
    """Parse `ST_RefID` like reference, raises `MalformedReference`"""
    if text is None:
        raise MalformedReference(text, what)
    ref = text.strip()
    if not REF_RE.match(ref):
        raise MalformedReference(text, what)
    return ref


def parse_loc(text: Optional[str]) -> str:
    """Parse `ST_Loc` path reference into a normalized document relative path"""
    if text is None or not text.strip() or "\x00" in text:
        raise MalformedReference(text, "location")
    parts = []
    for part in text.strip().replace("\\", "/").split("/"):
        if part in ("", "."):
            continue
        if part == "..":
            if not parts:
                raise MalformedReference(text, "location")
            parts.pop()
            continue
        parts.append(part)
    if not parts:
        raise MalformedReference(text, "location")
    return "/".join(parts)


def parse_channel(token: str) -> int:
    match = HEX_CHANNEL_RE.match(token)
    value = int(match.group(1), 16) if match else int(parse_float(token))  # type: ignore[arg-type]
    if not 0 <= value <= 255:
        raise ValueError(f"color channel out of range: {token!r}")
    return value


def parse_color_value(value: Optional[str], alpha: Optional[str] = None) -> Optional[Color]:
    """Parse color `Value` ("r g b", channels 0..255 or "#hh") and `Alpha` (0..255)"""
    if value is None:
        return None
    channels = [parse_channel(token) for token in value.split()]
    if len(channels) == 1:
        channels = channels * 3  # gray
    if len(channels) != 3:
        raise ValueError(f"unsupported color value: {value!r}")
    alpha_value = 255 if alpha is None else parse_channel(alpha)
    return Color.from_rgb255(*channels, alpha_value)


def parse_color(element: Optional[etree.Element]) -> Optional[Color]:
    """Parse `CT_Color` element (`FillColor`, `StrokeColor`), missing value is black"""
    if element is None:
        return None
    color = parse_color_value(attr(element, "Value"), attr(element, "Alpha"))
    if color is None:
        color = BLACK
        alpha = attr(element, "Alpha")
        if alpha is not None:
            color = color._replace(a=parse_channel(alpha) / 255.0)
    return color


def parse_delta(text: Optional[str]) -> List[float]:
    """Parse `DeltaX`/`DeltaY` list, `g N V` repeats value `V` N times"""
    if text is None:
        return []
    tokens = text.split()
    output: List[float] = []
    index = 0
    while index < len(tokens):
        token = tokens[index]
        if token == "g":
            if index + 2 >= len(tokens):
                raise ValueError(f"incomplete `g` repetition in: {text!r}")
            count = parse_float(tokens[index + 1])
            value = parse_float(tokens[index + 2])
            if count is None or count < 0 or count != int(count):
                raise ValueError(f"invalid repetition count in: {text!r}")
            output.extend([value] * int(count))  # type: ignore[list-item]
            index += 3
        else:
            output.append(parse_float(token))  # type: ignore[arg-type]
            index += 1
    return output


def parse_abbreviated_data(text: Optional[str]) -> Tuple[PathSegment, ...]:
    """Parse `AbbreviatedData` path description

    Commands: `S`/`M` move, `L` line, `Q` quadratic, `B` cubic bezier,
    `A` elliptical arc (rx ry angle large sweep x y) and `C` close. A command
    letter may be followed by several argument groups. Quadratic curves and
    arcs are converted to cubic segments.
    """
    if text is None:
        return ()
    tokens = text.replace(",", " ").split()
    segments: List[PathSegment] = []
    pos: Point = (0.0, 0.0)
    start: Point = pos
    index = 0
    while index < len(tokens):
        cmd = tokens[index]
        if cmd not in PATH_ARGS:
            raise ValueError(f"unsupported path command {cmd!r}")
        index += 1
        count = PATH_ARGS[cmd]
        if count == 0:
            segments.append(PathSegment.close())
            pos = start
            continue
        groups = 0
        while index < len(tokens) and tokens[index] not in PATH_ARGS:
            args = tokens[index : index + count]
            if len(args) != count:
                raise ValueError(f"command {cmd!r} expects {count} arguments")
            values = [parse_float(arg) for arg in args]
            index += count
            groups += 1
            if cmd in "SM":
                pos = start = (values[0], values[1])
                segments.append(PathSegment.move(*pos))
            elif cmd == "L":
                pos = (values[0], values[1])
                segments.append(PathSegment.line(*pos))
            elif cmd == "Q":
                _p0, c0, c1, p1 = bezier2_to_bezier3([pos, values[0:2], values[2:4]]).tolist()
                segments.append(PathSegment.cubic(tuple(c0), tuple(c1), tuple(p1)))
                pos = (values[2], values[3])
            elif cmd == "B":
                pos = (values[4], values[5])
                segments.append(PathSegment.cubic(tuple(values[0:2]), tuple(values[2:4]), pos))
            elif cmd == "A":
                rx, ry, angle, large, sweep, x, y = values
                segments.extend(arc_segments(pos, (x, y), rx, ry, angle, large > 0.5, sweep > 0.5))
                pos = (x, y)
        if groups == 0:
            raise ValueError(f"command {cmd!r} expects {count} arguments")
    return tuple(segments)

