import math
import unittest

import numpy as np

from ofdraster.geometry import (
    IDENTITY,
    PathSegment,
    Rect,
    TransformMatrix,
    arc_segments,
    bezier3_flatten,
    flatten_segments,
    polygon_area,
    rect_segments,
)


class TransformTests(unittest.TestCase):
    def test_composition_applies_right_operand_first(self):
        scale = IDENTITY.scale(2.0)
        shift = TransformMatrix(1, 0, 0, 1, 3, 4)
        points = np.array([[1.0, 1.0]])
        np.testing.assert_allclose((scale @ shift)(points), [[8.0, 10.0]])
        np.testing.assert_allclose((shift @ scale)(points), [[5.0, 6.0]])

    def test_invert_round_trip(self):
        tr = IDENTITY.translate(3, -2).rotate(0.3).scale(2, 0.5)
        points = np.array([[1.0, 2.0], [-3.0, 0.5]])
        np.testing.assert_allclose(tr.invert(tr(points)), points)

    def test_singular_transform_can_not_be_inverted(self):
        with self.assertRaises(ValueError):
            TransformMatrix(1, 0, 0, 0, 0, 0).invert

    def test_expansion(self):
        self.assertAlmostEqual(IDENTITY.scale(3).rotate(1.0).expansion(), 3.0)


class RectTests(unittest.TestCase):
    def test_validity(self):
        self.assertTrue(Rect(0, 0, 1, 1).is_valid())
        self.assertFalse(Rect(0, 0, 0, 1).is_valid())
        self.assertFalse(Rect(0, 0, -1, 1).is_valid())
        self.assertFalse(Rect(0, 0, math.inf, 1).is_valid())

    def test_intersect(self):
        self.assertEqual(Rect(0, 0, 4, 4).intersect(Rect(2, 1, 4, 2)), Rect(2, 1, 2, 2))
        self.assertTrue(Rect(0, 0, 1, 1).intersect(Rect(3, 3, 1, 1)).is_empty())

    def test_from_points(self):
        self.assertEqual(Rect.from_points([(1, 5), (3, 2)]), Rect(1, 2, 2, 3))
        self.assertIsNone(Rect.from_points([]))


class PathTests(unittest.TestCase):
    def test_rect_polyline(self):
        (polyline,) = flatten_segments(rect_segments(Rect(1, 2, 3, 4)), IDENTITY, 0.1)
        self.assertTrue(polyline.closed)
        np.testing.assert_allclose(polyline.points, [[1, 2], [4, 2], [4, 6], [1, 6]])
        self.assertAlmostEqual(abs(polygon_area(polyline.points.tolist())), 12.0)

    def test_open_subpaths(self):
        segments = [
            PathSegment.move(0, 0),
            PathSegment.line(1, 0),
            PathSegment.move(5, 5),
            PathSegment.line(6, 5),
            PathSegment.line(6, 6),
        ]
        first, second = flatten_segments(segments, IDENTITY.scale(2), 0.1)
        self.assertFalse(first.closed)
        np.testing.assert_allclose(first.points, [[0, 0], [2, 0]])
        np.testing.assert_allclose(second.points, [[10, 10], [12, 10], [12, 12]])

    def test_cubic_is_flattened_within_tolerance(self):
        curve = [(0, 0), (0, 10), (10, 10), (10, 0)]
        points = bezier3_flatten(curve, 0.01)
        np.testing.assert_allclose(points[0], [0, 0])
        np.testing.assert_allclose(points[-1], [10, 0])
        self.assertGreater(len(points), 8)
        # midpoint of the curve is (5, 7.5)
        self.assertLess(np.min(np.hypot(points[:, 0] - 5, points[:, 1] - 7.5)), 0.1)

    def test_arc_lands_on_end_point(self):
        segments = arc_segments((0.0, 0.0), (10.0, 0.0), 5, 5, 0, False, True)
        self.assertTrue(all(segment.kind == "cubic" for segment in segments))
        self.assertEqual(segments[-1].points[-1], (10.0, 0.0))
        points = flatten_segments([PathSegment.move(0, 0), *segments], IDENTITY, 0.01)[0].points
        radius = np.hypot(points[:, 0] - 5.0, points[:, 1])
        np.testing.assert_allclose(radius, 5.0, atol=0.02)

    def test_degenerate_arc_is_a_line(self):
        self.assertEqual(arc_segments((0.0, 0.0), (3.0, 4.0), 0, 5, 0, False, False), [PathSegment.line(3.0, 4.0)])


if __name__ == "__main__":
    unittest.main()
