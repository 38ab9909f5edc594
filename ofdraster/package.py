"""OFD container reader

An `.ofd` file is a zip archive. `OFD.xml` at the archive root points to the
document root (`DocBody/DocRoot`), which declares pages, templates and
resource files (`PublicRes`, `DocumentRes`). The reader only extracts and
parses those entries, turning them into the raw inputs of `resolve`:
the document root element, sub-documents keyed by their normalized location
and resource declarations with payloads attached.
"""
from __future__ import annotations

import posixpath
import xml.etree.ElementTree as etree
import zipfile
from typing import IO, Dict, List, NamedTuple, Optional, Union

from .errors import MalformedReference, PackageError
from .log import get_logger
from .model import Document
from .ofdxml import attr, child, children, local_name, parse_loc, parse_xml, text_of
from .resolver import ResolverPolicy, resolve
from .resources import KIND_COLOR, KIND_FONT, KIND_IMAGE, ResourceDeclaration

LOGGER = get_logger(__name__)

ENTRY_POINT = "OFD.xml"
RESOURCE_LISTS = ("PublicRes", "DocumentRes")


class OfdPackage(NamedTuple):
    """Raw inputs of a single document of an OFD container"""

    root: etree.Element
    subdocuments: Dict[str, etree.Element]
    resources: List[ResourceDeclaration]
    doc_root: str

    @classmethod
    def load(cls, file: Union[str, IO[bytes]], doc_index: int = 0) -> OfdPackage:
        """Read OFD container from a path or a binary file object"""
        try:
            with zipfile.ZipFile(file) as archive:
                return PackageReader(archive).read(doc_index)
        except zipfile.BadZipFile as error:
            raise PackageError(f"not an OFD container: {error}") from error

    def resolve(self, policy: ResolverPolicy) -> Document:
        return resolve(self.root, self.subdocuments, self.resources, policy)


class PackageReader:
    __slots__ = ["archive", "names"]

    def __init__(self, archive: zipfile.ZipFile):
        self.archive = archive
        self.names = set(archive.namelist())

    def read_bytes(self, path: str) -> Optional[bytes]:
        if path not in self.names:
            return None
        return self.archive.read(path)

    def read_xml(self, path: str) -> Optional[etree.Element]:
        data = self.read_bytes(path)
        if data is None:
            return None
        try:
            return parse_xml(data)
        except etree.ParseError as error:
            raise PackageError(f"failed to parse {path}: {error}") from error

    def read(self, doc_index: int) -> OfdPackage:
        entry = self.read_xml(ENTRY_POINT)
        if entry is None:
            raise PackageError(f"container does not have {ENTRY_POINT}")
        bodies = list(children(entry, "DocBody"))
        if not 0 <= doc_index < len(bodies):
            raise PackageError(f"container has {len(bodies)} documents, requested #{doc_index}")
        doc_root = parse_loc(text_of(child(bodies[doc_index], "DocRoot")))
        root = self.read_xml(doc_root)
        if root is None:
            raise PackageError(f"document root not found: {doc_root}")
        doc_dir = posixpath.dirname(doc_root)
        LOGGER.debug("reading document %s", doc_root)

        subdocuments: Dict[str, etree.Element] = {}
        locations: List[Optional[str]] = []
        pages = child(root, "Pages")
        if pages is not None:
            locations.extend(attr(page, "BaseLoc") for page in children(pages, "Page"))
        common = child(root, "CommonData")
        if common is not None:
            locations.extend(attr(tpl, "BaseLoc") for tpl in children(common, "TemplatePage"))
        for loc in locations:
            try:
                key = parse_loc(loc)
            except MalformedReference:
                continue  # reported by the resolver
            if key in subdocuments:
                continue
            tree = self.read_xml(self.locate(loc, doc_dir))  # type: ignore[arg-type]
            if tree is None:
                LOGGER.warning("sub-document not found in container: %s", loc)
                continue
            subdocuments[key] = tree

        resources: List[ResourceDeclaration] = []
        if common is not None:
            for name in RESOURCE_LISTS:
                for element in children(common, name):
                    if text_of(element) is None:
                        continue
                    resources.extend(self.read_resources(self.locate(text_of(element), doc_dir)))
        return OfdPackage(root, subdocuments, resources, doc_root)

    def locate(self, loc: Optional[str], base_dir: str) -> str:
        """Archive path of a location, absolute ones start at the archive root"""
        if loc is not None and loc.strip().startswith("/"):
            return parse_loc(loc)
        return parse_loc(posixpath.join(base_dir, loc or ""))

    # --------------------------------------------------------------------------
    # Resources
    # --------------------------------------------------------------------------
    def read_resources(self, path: str) -> List[ResourceDeclaration]:
        res = self.read_xml(path)
        if res is None:
            LOGGER.warning("resource file not found in container: %s", path)
            return []
        base = posixpath.dirname(path)
        base_loc = attr(res, "BaseLoc")
        if base_loc:
            base = self.locate(base_loc, base)

        declarations = []
        for group in children(res):
            for element in children(group):
                id = attr(element, "ID")
                if id is None:
                    LOGGER.warning("resource without ID in %s: %s", path, local_name(element.tag))
                    continue
                declarations.append(self.declaration(id, element, base))
        LOGGER.debug("%s: %d resources", path, len(declarations))
        return declarations

    def declaration(self, id: str, element: etree.Element, base: str) -> ResourceDeclaration:
        tag = local_name(element.tag)
        attrs = {local_name(key): value for key, value in element.attrib.items() if local_name(key) != "ID"}
        file_loc = None
        if tag == "Font":
            kind = KIND_FONT
            file_loc = text_of(child(element, "FontFile"))
        elif tag == "MultiMedia":
            media_type = attrs.get("Type", "Image")
            kind = KIND_IMAGE if media_type.lower() == "image" else media_type.lower()
            file_loc = text_of(child(element, "MediaFile"))
        elif tag == "DrawParam":
            kind = KIND_COLOR
            for color_name in ("FillColor", "StrokeColor"):
                color = child(element, color_name)
                if color is None:
                    continue
                attrs[color_name] = attr(color, "Value", "0 0 0")  # type: ignore[assignment]
                alpha = attr(color, "Alpha")
                if alpha is not None:
                    attrs[color_name.replace("Color", "Alpha")] = alpha
        else:
            kind = tag

        location, payload = None, None
        if file_loc is not None:
            try:
                location = self.locate(file_loc, base)
            except MalformedReference as error:
                LOGGER.warning("resource `%s`: %s", id, error)
            else:
                payload = self.read_bytes(location)
                if payload is None:
                    LOGGER.warning("resource `%s` file not found in container: %s", id, location)
        return ResourceDeclaration(id, kind, tuple(sorted(attrs.items())), payload, location)
