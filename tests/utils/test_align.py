"""Unit tests for alignment of rotations and point sets.

Authors: Ayush Baid
"""

import unittest

import numpy as np
import numpy.testing as npt
from gtsam import Rot3, Similarity3

import recon_compare.utils.align as align
import recon_compare.utils.rotation as rotation_utils
import recon_compare.utils.transform as transform
from recon_compare.common.exceptions import InsufficientDataError, InvalidInputError


def rot3_compare(R: Rot3, R_: Rot3, msg=None) -> None:
    if not R.equals(R_, 1e-6):
        standardMsg = f"{R} != {R_}"
        raise AssertionError(msg or standardMsg)


class TestRotationAlignment(unittest.TestCase):
    def setUp(self):
        super().setUp()
        self.addTypeEqualityFunc(Rot3, rot3_compare)

        rng = np.random.default_rng(0)
        self.aRb = Rot3.RzRyRx(0.1, -0.3, 0.5)
        self.bRi_list = [rotation_utils.random_rotation(rng) for _ in range(6)]
        self.aRi_list = [self.aRb.compose(bRi) for bRi in self.bRi_list]

    def test_so3_from_Rot3s(self) -> None:
        self.assertEqual(align.so3_from_Rot3s(self.aRi_list, self.bRi_list), self.aRb)

    def test_align_rotations(self) -> None:
        aligned = align.align_rotations(self.aRi_list, self.bRi_list)
        self.assertEqual(len(aligned), len(self.aRi_list))
        for computed, expected in zip(aligned, self.aRi_list):
            self.assertEqual(computed, expected)

    def test_align_rotations_is_order_invariant(self) -> None:
        order = [3, 0, 5, 1, 4, 2]
        aRb = align.so3_from_Rot3s([self.aRi_list[i] for i in order], [self.bRi_list[i] for i in order])
        self.assertEqual(aRb, self.aRb)

    def test_align_rotations_identical_inputs(self) -> None:
        self.assertEqual(align.so3_from_Rot3s(self.aRi_list, self.aRi_list), Rot3())

    def test_align_rotations_with_no_rotations(self) -> None:
        with self.assertRaises(InsufficientDataError):
            align.align_rotations([], [])

    def test_align_rotations_with_mismatched_lists(self) -> None:
        with self.assertRaises(InsufficientDataError):
            align.so3_from_Rot3s(self.aRi_list, self.bRi_list[:-1])


class TestSim3Alignment(unittest.TestCase):
    def setUp(self):
        super().setUp()
        rng = np.random.default_rng(0)
        self.aSb = Similarity3(Rot3.RzRyRx(0.2, 0.4, -1.1), np.array([1.0, -2.0, 3.0]), 2.5)
        self.b_points = rng.uniform(-10, 10, size=(12, 3))
        self.a_points = transform.point_cloud_with_sim3(self.b_points, self.aSb)

    def assert_sim3_equal(self, computed: Similarity3, expected: Similarity3) -> None:
        self.assertTrue(computed.rotation().equals(expected.rotation(), 1e-6))
        npt.assert_allclose(computed.translation(), expected.translation(), atol=1e-6)
        self.assertAlmostEqual(computed.scale(), expected.scale(), places=6)

    def test_sim3_from_Point3s(self) -> None:
        self.assert_sim3_equal(align.sim3_from_Point3s(self.a_points, self.b_points), self.aSb)

    def test_sim3_from_Point3s_identity(self) -> None:
        aSb = align.sim3_from_Point3s(self.b_points, self.b_points)
        self.assert_sim3_equal(aSb, Similarity3())

    def test_sim3_from_Point3s_coplanar(self) -> None:
        """Planar configurations must still produce a proper rotation, not a reflection."""
        b_points = np.array([[0, 0, 0], [1, 0, 0], [0, 1, 0], [1, 1, 0], [2, 0.5, 0]], dtype=np.float64)
        a_points = transform.point_cloud_with_sim3(b_points, self.aSb)
        aSb = align.sim3_from_Point3s(a_points, b_points)
        self.assertAlmostEqual(np.linalg.det(aSb.rotation().matrix()), 1.0, places=9)
        self.assert_sim3_equal(aSb, self.aSb)

    def test_sim3_from_Point3s_is_order_invariant(self) -> None:
        permutation = np.random.default_rng(1).permutation(len(self.b_points))
        aSb = align.sim3_from_Point3s(self.a_points[permutation], self.b_points[permutation])
        self.assert_sim3_equal(aSb, align.sim3_from_Point3s(self.a_points, self.b_points))

    def test_sim3_from_Point3s_too_few_points(self) -> None:
        with self.assertRaises(InsufficientDataError):
            align.sim3_from_Point3s(self.a_points[:2], self.b_points[:2])
        with self.assertRaises(InsufficientDataError):
            align.sim3_from_Point3s([], [])

    def test_sim3_from_Point3s_collinear_points(self) -> None:
        b_points = np.array([[0, 0, 0], [1, 1, 1], [2, 2, 2], [5, 5, 5]], dtype=np.float64)
        with self.assertRaises(InsufficientDataError):
            align.sim3_from_Point3s(b_points, b_points)

    def test_sim3_from_Point3s_mismatched_lengths(self) -> None:
        with self.assertRaises(InvalidInputError):
            align.sim3_from_Point3s(self.a_points, self.b_points[:-1])

    def test_sim3_residuals(self) -> None:
        residuals = align.sim3_residuals(self.aSb, self.a_points, self.b_points)
        npt.assert_allclose(residuals, np.zeros(len(self.b_points)), atol=1e-9)


class TestRansacSim3Alignment(unittest.TestCase):
    def setUp(self):
        super().setUp()
        rng = np.random.default_rng(0)
        self.aSb = Similarity3(Rot3.RzRyRx(0.0, 0.0, np.pi / 2), np.array([10.0, 0.0, 0.0]), 0.5)
        self.b_points = rng.uniform(-10, 10, size=(20, 3))
        self.a_points = transform.point_cloud_with_sim3(self.b_points, self.aSb)

        self.outlier_idxs = [2, 7, 11, 15, 19]
        self.a_points[self.outlier_idxs] += rng.uniform(20, 50, size=(len(self.outlier_idxs), 3))

    def assert_recovers_transform(self, aSb: Similarity3) -> None:
        self.assertTrue(aSb.rotation().equals(self.aSb.rotation(), 1e-6))
        npt.assert_allclose(aSb.translation(), self.aSb.translation(), atol=1e-6)
        self.assertAlmostEqual(aSb.scale(), self.aSb.scale(), places=6)

    def test_ransac_rejects_outliers(self) -> None:
        aSb, inlier_mask = align.sim3_from_Point3s_ransac(
            self.a_points, self.b_points, inlier_threshold=0.1, rng=np.random.default_rng(3)
        )
        expected_mask = np.ones(len(self.b_points), dtype=bool)
        expected_mask[self.outlier_idxs] = False
        npt.assert_array_equal(inlier_mask, expected_mask)
        self.assert_recovers_transform(aSb)

    def test_ransac_is_deterministic_for_fixed_seed(self) -> None:
        aSb1, mask1 = align.sim3_from_Point3s_ransac(self.a_points, self.b_points, 0.1, rng=np.random.default_rng(7))
        aSb2, mask2 = align.sim3_from_Point3s_ransac(self.a_points, self.b_points, 0.1, rng=np.random.default_rng(7))
        npt.assert_array_equal(mask1, mask2)
        npt.assert_allclose(aSb1.matrix(), aSb2.matrix())

    def test_ransac_without_outliers_matches_least_squares(self) -> None:
        inliers = np.ones(len(self.b_points), dtype=bool)
        inliers[self.outlier_idxs] = False
        a_points, b_points = self.a_points[inliers], self.b_points[inliers]
        aSb, inlier_mask = align.sim3_from_Point3s_ransac(a_points, b_points, 0.1)
        self.assertTrue(np.all(inlier_mask))
        self.assert_recovers_transform(aSb)

    def test_ransac_invalid_threshold(self) -> None:
        for threshold in (0.0, -1.0):
            with self.assertRaises(InvalidInputError):
                align.sim3_from_Point3s_ransac(self.a_points, self.b_points, threshold)

    def test_ransac_invalid_parameters(self) -> None:
        with self.assertRaises(InvalidInputError):
            align.sim3_from_Point3s_ransac(self.a_points, self.b_points, 0.1, confidence=1.0)
        with self.assertRaises(InvalidInputError):
            align.sim3_from_Point3s_ransac(self.a_points, self.b_points, 0.1, max_iterations=0)

    def test_ransac_too_few_points(self) -> None:
        with self.assertRaises(InsufficientDataError):
            align.sim3_from_Point3s_ransac(self.a_points[:2], self.b_points[:2], 0.1)

    def test_ransac_no_consensus(self) -> None:
        """Tiny thresholds on noisy data leave fewer than 3 inliers."""
        rng = np.random.default_rng(5)
        a_points = self.b_points + rng.normal(scale=1.0, size=self.b_points.shape)
        with self.assertRaises(InsufficientDataError):
            align.sim3_from_Point3s_ransac(a_points, self.b_points, 1e-9, max_iterations=50)


class TestNumRansacIterations(unittest.TestCase):
    def test_all_inliers(self) -> None:
        self.assertEqual(align.num_ransac_iterations(1.0, 0.99), 0)

    def test_half_inliers(self) -> None:
        # log(0.01) / log(1 - 0.5^3) = 34.5
        self.assertEqual(align.num_ransac_iterations(0.5, 0.99), 35)

    def test_no_inliers(self) -> None:
        self.assertEqual(align.num_ransac_iterations(0.0, 0.99), np.inf)

    def test_tiny_inlier_ratio(self) -> None:
        """1 - ratio^3 rounds to 1.0 in double precision, but the count stays finite and huge."""
        num_iterations = align.num_ransac_iterations(1e-6, 0.99)
        self.assertTrue(np.isfinite(num_iterations))
        self.assertGreater(num_iterations, align.DEFAULT_RANSAC_MAX_ITERATIONS)

    def test_underflowing_inlier_ratio(self) -> None:
        self.assertEqual(align.num_ransac_iterations(1e-200, 0.99), np.inf)


if __name__ == "__main__":
    unittest.main()
