import io
import unittest

from ofdraster.errors import MissingSubdocument, PackageError
from ofdraster.package import OfdPackage
from ofdraster.render import render
from ofdraster.resolver import BEST_EFFORT, STRICT
from ofdraster.resources import KIND_COLOR, KIND_FONT, KIND_IMAGE
from tests.ofd_fixtures import BLUE, GREEN, PAGE_LOC, RED, FONT, XMLNS, ofd_archive, options, sample_archive


class PackageTests(unittest.TestCase):
    def test_load(self):
        package = OfdPackage.load(io.BytesIO(sample_archive()))
        self.assertEqual(package.doc_root, "Doc_0/Document.xml")
        self.assertEqual(list(package.subdocuments), [PAGE_LOC])
        kinds = {decl.id: decl.kind for decl in package.resources}
        self.assertEqual(kinds, {"F1": KIND_FONT, "D1": KIND_COLOR, "M1": KIND_IMAGE})

        font, draw_param, image = package.resources
        self.assertEqual(font.location, "Doc_0/Res/font.ttf")
        self.assertEqual(font.payload, FONT)
        self.assertEqual(draw_param.attr("StrokeColor"), "0 255 0")
        self.assertEqual(draw_param.attr("LineWidth"), "0.5")
        self.assertEqual(image.location, "Doc_0/Res/image.png")
        self.assertTrue(image.payload.startswith(b"\x89PNG"))

    def test_resolve_and_render(self):
        document = OfdPackage.load(io.BytesIO(sample_archive())).resolve(STRICT)
        self.assertEqual(len(document.pages), 1)
        self.assertEqual(document.diagnostics, ())
        result = render(document, 0, options=options())
        canvas = result.canvas
        self.assertEqual(result.diagnostics, ())
        self.assertEqual(canvas.pixel(1, 1), RED)
        self.assertEqual(canvas.pixel(6, 6), GREEN)
        self.assertEqual(canvas.pixel(5, 3), BLUE)
        self.assertEqual(canvas.pixel(9, 0), (0, 0, 0, 0))

    def test_not_a_container(self):
        with self.assertRaises(PackageError):
            OfdPackage.load(io.BytesIO(b"plain text"))
        with self.assertRaises(PackageError):
            OfdPackage.load(io.BytesIO(ofd_archive({"Doc_0/Document.xml": b"<x/>"})))
        with self.assertRaises(PackageError):
            OfdPackage.load(io.BytesIO(ofd_archive({"OFD.xml": b"<broken"})))

    def test_missing_page_file(self):
        archive = ofd_archive(
            {
                "OFD.xml": f"<ofd:OFD {XMLNS}><ofd:DocBody><ofd:DocRoot>/Doc_0/Document.xml</ofd:DocRoot></ofd:DocBody></ofd:OFD>".encode(),
                "Doc_0/Document.xml": (
                    f"<ofd:Document {XMLNS}><ofd:CommonData><ofd:PageArea><ofd:PhysicalBox>0 0 10 10</ofd:PhysicalBox>"
                    '</ofd:PageArea></ofd:CommonData><ofd:Pages><ofd:Page ID="1" BaseLoc="Pages/Page_0/Content.xml"/>'
                    "</ofd:Pages></ofd:Document>"
                ).encode(),
            }
        )
        package = OfdPackage.load(io.BytesIO(archive))
        self.assertEqual(package.subdocuments, {})
        self.assertEqual(package.resolve(BEST_EFFORT).failures[0].code, "missing-subdocument")
        with self.assertRaises(MissingSubdocument):
            package.resolve(STRICT)


if __name__ == "__main__":
    unittest.main()
