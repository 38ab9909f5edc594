import io
import unittest

import numpy as np
import PIL.Image

from ofdraster.geometry import Polyline, polygon_area
from ofdraster.model import FILL_EVENODD, FILL_NONZERO, Color
from ofdraster.raster import (
    CANVAS_COMPOSE_OVER,
    Layer,
    RasterCanvas,
    canvas_merge_at,
    fill_mask,
    stroke_polygons,
)

VIEWPORT = (0, 0, 10, 10)


def polygon(*points, closed=True) -> Polyline:
    return Polyline(np.array(points, dtype=float), closed)


def box(x0, y0, x1, y1) -> Polyline:
    return polygon((x0, y0), (x1, y0), (x1, y1), (x0, y1))


def covered(layer):
    """Set of `(x, y)` pixels with non zero coverage"""
    if layer is None:
        return set()
    ys, xs = np.nonzero(layer.image[..., 0])
    return {(int(x) + layer.x, int(y) + layer.y) for x, y in zip(xs, ys)}


def pixels(x0, y0, x1, y1):
    return {(x, y) for x in range(x0, x1) for y in range(y0, y1)}


class FillMaskTests(unittest.TestCase):
    def test_pixel_centre_rule(self):
        mask = fill_mask([box(2.5, 1.5, 6.5, 4.5)], VIEWPORT)
        self.assertEqual(covered(mask), pixels(2, 1, 6, 4))
        self.assertTrue(np.all(np.isin(mask.image, (0.0, 1.0))))

    def test_left_top_edges_inclusive(self):
        # pixel centres at 0.5 and 2.5 lie exactly on the edges
        self.assertEqual(covered(fill_mask([box(0.5, 0.5, 2.5, 2.5)], VIEWPORT)), pixels(0, 0, 2, 2))

    def test_adjacent_shapes_do_not_overlap(self):
        left = covered(fill_mask([box(0.5, 0.0, 2.5, 3.0)], VIEWPORT))
        right = covered(fill_mask([box(2.5, 0.0, 4.5, 3.0)], VIEWPORT))
        self.assertFalse(left & right)
        self.assertEqual(left | right, pixels(0, 0, 4, 3))

    def test_orientation_does_not_matter(self):
        clockwise = box(1.2, 1.2, 5.7, 3.3)
        counter = Polyline(clockwise.points[::-1].copy(), True)
        self.assertEqual(covered(fill_mask([clockwise], VIEWPORT)), covered(fill_mask([counter], VIEWPORT)))

    def test_fill_rules(self):
        shape = [box(0, 0, 8, 8), box(2, 2, 6, 6)]
        nonzero = covered(fill_mask(shape, VIEWPORT, FILL_NONZERO))
        evenodd = covered(fill_mask(shape, VIEWPORT, FILL_EVENODD))
        self.assertEqual(nonzero, pixels(0, 0, 8, 8))
        self.assertEqual(evenodd, pixels(0, 0, 8, 8) - pixels(2, 2, 6, 6))

    def test_viewport_restricts_mask(self):
        mask = fill_mask([box(-5, -5, 20, 20)], (2, 3, 4, 5))
        self.assertEqual(mask.window, (2, 3, 4, 5))
        self.assertIsNone(fill_mask([box(20, 20, 30, 30)], VIEWPORT))
        # shape between pixel centres covers nothing
        self.assertIsNone(fill_mask([box(1.6, 1.6, 2.4, 2.4)], VIEWPORT))

    def test_antialias_coverage(self):
        mask = fill_mask([box(0, 0, 1.5, 1)], VIEWPORT, antialias=True)
        self.assertEqual(mask.offset, (0, 0))
        self.assertAlmostEqual(mask.image[0, 0, 0], 1.0)
        self.assertAlmostEqual(mask.image[0, 1, 0], 0.5)
        self.assertAlmostEqual(mask.image[0, 2, 0], 0.0)


class StrokeTests(unittest.TestCase):
    def test_segment_outline(self):
        (quad,) = stroke_polygons(polygon((0, 0), (6, 0), closed=False), 2.0)
        self.assertAlmostEqual(abs(polygon_area(quad.tolist())), 12.0)
        self.assertEqual(quad[:, 1].min(), -1.0)
        self.assertEqual(quad[:, 1].max(), 1.0)

    def test_joints_share_orientation(self):
        polygons = stroke_polygons(polygon((0, 0), (4, 0), (4, 4), closed=False), 1.0)
        self.assertEqual(len(polygons), 4)  # two segments, two bevel triangles
        signs = {np.sign(polygon_area(p.tolist())) for p in polygons}
        self.assertEqual(len(signs), 1)

    def test_closed_outline_covers_border_only(self):
        outline = [Polyline(p, True) for p in stroke_polygons(box(1, 1, 7, 7), 2.0)]
        mask = covered(fill_mask(outline, VIEWPORT))
        self.assertIn((1, 0), mask)
        self.assertIn((7, 4), mask)
        self.assertNotIn((4, 4), mask)

    def test_duplicate_points(self):
        self.assertEqual(stroke_polygons(polygon((1, 1), (1, 1), closed=False), 1.0), [])


class CanvasTests(unittest.TestCase):
    def test_compose_over(self):
        dst = np.array([[[0.0, 0.0, 1.0, 1.0]]])
        src = np.array([[[0.5, 0.0, 0.0, 0.5]]])  # red at half alpha, premultiplied
        np.testing.assert_allclose(CANVAS_COMPOSE_OVER(dst, src), [[[0.5, 0.0, 0.5, 1.0]]])

    def test_merge_clips_overlay(self):
        base = np.zeros((2, 2, 1))
        canvas_merge_at(base, np.ones((3, 3, 1)), (-1, 1))
        np.testing.assert_array_equal(base[..., 0], [[0, 0], [1, 1]])

    def test_paint_and_clip(self):
        mask = Layer(np.full((3, 3, 1), 0.5), (0, 0), pre_alpha=True)
        painted = mask.paint(Color(1.0, 0.0, 0.0, 1.0))
        np.testing.assert_allclose(painted.image[0, 0], [0.5, 0.0, 0.0, 0.5])
        clip = Layer(np.ones((2, 2, 1)), (1, 1), pre_alpha=True)
        clipped = painted.clip(clip)
        self.assertEqual(clipped.window, (1, 1, 2, 2))
        self.assertIsNone(painted.clip(Layer(np.ones((1, 1, 1)), (5, 5), pre_alpha=True)))
        self.assertIs(painted.clip(None), painted)

    def test_canvas_background_and_composite(self):
        canvas = RasterCanvas.create(4, 3, Color(1.0, 1.0, 1.0, 1.0))
        self.assertEqual((canvas.width, canvas.height), (4, 3))
        layer = fill_mask([box(1, 0, 3, 3)], (0, 0, 4, 3)).paint(Color(0.0, 0.0, 1.0, 1.0))
        canvas.composite(layer)
        self.assertEqual(canvas.pixel(0, 0), (255, 255, 255, 255))
        self.assertEqual(canvas.pixel(1, 1), (0, 0, 255, 255))
        self.assertEqual(canvas.pixels().shape, (3, 4, 4))

    def test_transparent_canvas(self):
        canvas = RasterCanvas.create(2, 2)
        self.assertEqual(canvas.pixel(1, 1), (0, 0, 0, 0))
        self.assertEqual(canvas, RasterCanvas.create(2, 2))
        self.assertNotEqual(canvas, RasterCanvas.create(2, 3))

    def test_png(self):
        canvas = RasterCanvas.create(3, 2, Color(1.0, 0.0, 0.0, 1.0))
        data = canvas.to_png().getvalue()
        self.assertTrue(data.startswith(b"\x89PNG\r\n\x1a\n"))
        with PIL.Image.open(io.BytesIO(data)) as image:
            self.assertEqual(image.size, (3, 2))
            self.assertEqual(image.mode, "RGBA")
            self.assertEqual(image.getpixel((2, 1)), (255, 0, 0, 255))


if __name__ == "__main__":
    unittest.main()
