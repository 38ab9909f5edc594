"""Errors and non-fatal diagnostics

Fatal problems are raised as exceptions derived from `OfdError`. Problems the
resolver or the rendering engine can recover from are reported as `Diagnostic`
tuples, every one of them carries a stable `code` so callers can filter them.
"""
from __future__ import annotations

from typing import NamedTuple, Optional, Sequence

# resolver diagnostics
DIAG_UNSUPPORTED_ELEMENT = "skipped-unsupported-element"
DIAG_MALFORMED_ELEMENT = "skipped-malformed-element"
DIAG_MISSING_RESOURCE = "missing-resource"
DIAG_DUPLICATE_RESOURCE = "duplicate-resource"
DIAG_INVALID_GEOMETRY = "invalid-geometry"
# render diagnostics
DIAG_UNSUPPORTED_PRIMITIVE = "skipped-unsupported-primitive"
DIAG_MISSING_GLYPH = "skipped-missing-glyph"
DIAG_CORRUPT_IMAGE = "skipped-corrupt-image"


class Diagnostic(NamedTuple):
    code: str
    message: str
    page: Optional[int] = None
    object_id: Optional[str] = None

    def __str__(self) -> str:
        where = []
        if self.page is not None:
            where.append(f"page={self.page}")
        if self.object_id is not None:
            where.append(f"object={self.object_id}")
        location = " ".join(where)
        return f"[{self.code}] {self.message}" + (f" ({location})" if location else "")


class OfdError(Exception):
    code = "ofd-error"


class PackageError(OfdError):
    """Container could not be opened or is missing mandatory entries"""

    code = "package-error"


class ImageDecodeError(OfdError):
    code = "image-decode-error"


# ------------------------------------------------------------------------------
# Structure
# ------------------------------------------------------------------------------
class StructureError(OfdError):
    code = "structure-error"


class CyclicTemplate(StructureError):
    code = "cyclic-template"

    def __init__(self, chain: Sequence[str]):
        self.chain = tuple(chain)
        super().__init__("template reference cycle: {}".format(" -> ".join(self.chain)))


class UnsupportedElement(StructureError):
    code = "unsupported-element"

    def __init__(self, tag: str):
        self.tag = tag
        super().__init__(f"unsupported element: {tag}")


class MissingResource(StructureError):
    code = "missing-resource"

    def __init__(self, id: str, expected: Optional[str] = None):
        self.id = id
        self.expected = expected
        if expected is None:
            super().__init__(f"resource is not declared: {id}")
        else:
            super().__init__(f"{expected} resource is not declared: {id}")


class MalformedReference(StructureError):
    code = "malformed-reference"

    def __init__(self, value: Optional[str], what: str = "reference"):
        self.value = value
        super().__init__(f"malformed {what}: {value!r}")


class EmptyPageList(StructureError):
    code = "empty-page-list"

    def __init__(self):
        super().__init__("document does not declare any pages")


class MissingSubdocument(StructureError):
    code = "missing-subdocument"

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"sub-document not found: {path}")


class UnknownTemplate(StructureError):
    code = "unknown-template"

    def __init__(self, id: str):
        self.id = id
        super().__init__(f"template is not declared: {id}")


class DuplicateResource(StructureError):
    code = "duplicate-resource"

    def __init__(self, id: str):
        self.id = id
        super().__init__(f"resource identifier declared more than once: {id}")


class MalformedElement(StructureError):
    code = "malformed-element"

    def __init__(self, tag: str, reason: str):
        self.tag = tag
        self.reason = reason
        super().__init__(f"malformed {tag}: {reason}")


# ------------------------------------------------------------------------------
# Render
# ------------------------------------------------------------------------------
class RenderError(OfdError):
    code = "render-error"


class InvalidGeometry(RenderError):
    code = "invalid-geometry"


class CanvasAllocationFailed(RenderError):
    code = "canvas-allocation-failed"
