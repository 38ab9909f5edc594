import unittest

from ofdraster.errors import InvalidGeometry
from ofdraster.geometry import Rect
from ofdraster.layout import canvas_size, device_transform, layout_page
from ofdraster.model import Page, PageBlock, PathObject
from tests.ofd_fixtures import options, rect_path, single_page


def page_with(objects: str, area: str = "0 0 10 10") -> Page:
    return single_page(objects, area=area).page(0)


class LayoutTests(unittest.TestCase):
    def test_canvas_size(self):
        page = page_with("", area="0 0 210 297")
        self.assertEqual(canvas_size(page, 1.0, 96.0), (794, 1123))
        self.assertEqual(canvas_size(page, 1.0, 25.4), (210, 297))
        self.assertEqual(canvas_size(page, 2.0, 25.4), (420, 594))

    def test_fractional_canvas_is_rounded_up(self):
        page = page_with(rect_path(0, 0, 10.1, 10.1), area="0 0 10.1 10.1")
        self.assertEqual(canvas_size(page, 1.0, 25.4), (11, 11))
        self.assertEqual(canvas_size(page, 2.0, 25.4), (21, 21))
        # bounds still double exactly
        single = layout_page(page, 1.0, options())
        double = layout_page(page, 2.0, options())
        self.assertEqual(double.bounds(double.leaves()[0]), single.bounds(single.leaves()[0]).scale(2.0))

    def test_page_origin_is_moved_to_canvas_origin(self):
        page = page_with(rect_path(5, 5, 1, 1), area="5 5 10 10")
        layout = layout_page(page, 1.0, options())
        (path,) = layout.leaves()
        self.assertEqual((layout.width, layout.height), (10, 10))
        self.assertEqual(layout.bounds(path), Rect(0, 0, 1, 1))

    def test_scale_doubles_canvas_and_bounds(self):
        page = page_with(rect_path(1, 2, 3, 4))
        single = layout_page(page, 1.0, options())
        double = layout_page(page, 2.0, options())
        self.assertEqual((double.width, double.height), (2 * single.width, 2 * single.height))
        (leaf_1,) = single.leaves()
        (leaf_2,) = double.leaves()
        self.assertEqual(single.bounds(leaf_1), Rect(1, 2, 3, 4))
        self.assertEqual(double.bounds(leaf_2), single.bounds(leaf_1).scale(2.0))

    def test_nested_transforms_and_clip(self):
        objects = (
            '<ofd:PageBlock ID="outer" Boundary="2 2 6 6" CTM="1 0 0 1 1 0">'
            f'<ofd:PageBlock ID="inner" Boundary="0 0 3 10">{rect_path(0, 0, 4, 4)}</ofd:PageBlock>'
            "</ofd:PageBlock>"
        )
        layout = layout_page(page_with(objects), 1.0, options())
        depths = [(type(p.node).__name__, p.depth) for p in layout.placements]
        self.assertEqual(
            depths,
            [("PageBlock", 0), ("PageBlock", 1), ("PageBlock", 2), ("PageBlock", 3), ("PathObject", 4)],
        )
        path = layout.placements[-1]
        self.assertIsInstance(path.node, PathObject)
        # rectangle is shifted by the outer block CTM
        self.assertEqual(layout.bounds(path), Rect(1, 0, 4, 4))
        # clips: outer (3, 2)-(9, 8), inner (1, 0)-(4, 10)
        self.assertEqual(len(path.clip.polygons), 2)
        self.assertEqual(path.clip.bounds, Rect(3, 2, 1, 6))

    def test_block_bounds_is_its_clip(self):
        objects = f'<ofd:PageBlock ID="b" Boundary="1 1 2 2">{rect_path(0, 0, 1, 1)}</ofd:PageBlock>'
        layout = layout_page(page_with(objects), 2.0, options())
        block = next(p for p in layout.placements if p.node.id == "b")
        self.assertIsInstance(block.node, PageBlock)
        self.assertEqual(layout.bounds(block), Rect(2, 2, 4, 4))

    def test_viewport(self):
        page = page_with(rect_path(4, 4, 2, 2))
        layout = layout_page(page, 1.0, options(), viewport=Rect(3, 3, 5, 4))
        self.assertEqual((layout.width, layout.height), (5, 4))
        self.assertEqual(layout.bounds(layout.leaves()[0]), Rect(1, 1, 2, 2))
        self.assertEqual(device_transform(page, 1.0, 25.4, Rect(3, 3, 5, 4))([(4, 4)]).tolist(), [[1.0, 1.0]])

    def test_invalid_geometry(self):
        valid = page_with("")
        for page, scale in (
            (page_with("", area="0 0 0 10"), 1.0),
            (valid, 0.0),
            (valid, -1.0),
            (valid, float("nan")),
            (valid, float("inf")),
        ):
            with self.assertRaises(InvalidGeometry):
                layout_page(page, scale, options())
        with self.assertRaises(InvalidGeometry):
            layout_page(valid, 1.0, options(), viewport=Rect(0, 0, -1, 5))
        with self.assertRaises(InvalidGeometry):
            layout_page(valid, 1.0, options()._replace(dpi=0.0))


if __name__ == "__main__":
    unittest.main()
