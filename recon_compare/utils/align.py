"""Utility functions for aligning different geometry types.

Frame "a" is always the reference and frame "b" the one being moved, so every estimator returns the transform
``aXb`` such that ``aXb * b_i ~= a_i``. Estimators are pure: they never modify their inputs.

Authors: Ayush Baid, John Lambert
"""

import math
from typing import List, Optional, Sequence, Tuple

import gtsam  # type: ignore
import numpy as np
from gtsam import Rot3, Similarity3

import recon_compare.utils.logger as logger_utils
import recon_compare.utils.transform as transform_utils
from recon_compare.common.exceptions import InsufficientDataError, InvalidInputError

logger = logger_utils.get_logger()

MIN_NUM_POINTS_FOR_SIM3: int = 3
DEFAULT_RANSAC_CONFIDENCE: float = 0.99
DEFAULT_RANSAC_MAX_ITERATIONS: int = 10000

# Relative tolerance on singular values below which a point set is considered collinear.
COLLINEARITY_TOLERANCE: float = 1e-9


def log_sim3_transform(sim3: Similarity3, label: str = "Sim(3)") -> None:
    """Log rotation, translation, and scale components of a Similarity3."""
    aRb = sim3.rotation()
    atb = sim3.translation()
    rx, ry, rz = aRb.xyz()
    logger.debug(
        "%s Rotation `aRb`: rz=%.2f deg., ry=%.2f deg., rx=%.2f deg.",
        label,
        np.degrees(rz),
        np.degrees(ry),
        np.degrees(rx),
    )
    logger.debug("%s Translation `atb`: [%.2f, %.2f, %.2f]", label, atb[0], atb[1], atb[2])
    logger.debug("%s Scale `asb`: %.4f", label, float(sim3.scale()))


def so3_from_Rot3s(aRi_list: Sequence[Rot3], bRi_list: Sequence[Rot3]) -> Rot3:
    """Estimate the rotation ``aRb`` which best aligns the rotations in frame "b" to those in frame "a".

    Every correspondence votes with its relative rotation ``aRi * bRi^-1`` and the votes are averaged with the
    Karcher (geodesic) mean, which does not depend on the order of the pairs.

    Args:
        aRi_list: Reference rotations in frame "a".
        bRi_list: Corresponding rotations in frame "b".

    Returns:
        aRb: Rotation taking frame "b" to frame "a".

    Raises:
        InsufficientDataError: If there are no correspondences or the lists have different lengths.
    """
    if len(aRi_list) != len(bRi_list):
        raise InsufficientDataError(
            f"Rotation alignment needs corresponding lists, got {len(aRi_list)} and {len(bRi_list)} rotations."
        )
    if len(aRi_list) == 0:
        raise InsufficientDataError("Rotation alignment needs at least one correspondence, got none.")

    aRb_list = [aRi.compose(bRi.inverse()) for aRi, bRi in zip(aRi_list, bRi_list)]
    return gtsam.FindKarcherMeanRot3(aRb_list)


def align_rotations(aRi_list: Sequence[Rot3], bRi_list: Sequence[Rot3]) -> List[Rot3]:
    """Aligns the list of rotations to the reference list by using Karcher mean.

    Args:
        aRi_list: Reference rotations in frame "a" which are the targets for alignment.
        bRi_list: Input rotations which need to be aligned to frame "a".

    Returns:
        aRi_list_: Transformed input rotations previously "bRi_list" but now living in frame "a".
    """
    aRb = so3_from_Rot3s(aRi_list, bRi_list)
    return transform_utils.Rot3s_with_so3(bRi_list, aRb)


def _as_point_array(points: Sequence[np.ndarray], name: str) -> np.ndarray:
    array = np.asarray(points, dtype=np.float64)
    if array.size == 0:
        return array.reshape(0, 3)
    if array.ndim != 2 or array.shape[1] != 3:
        raise InvalidInputError(f"{name} must have shape (N,3), got {array.shape}.")
    return array


def is_degenerate_point_set(points: np.ndarray) -> bool:
    """Whether (N,3) points are coincident or collinear, i.e. cannot constrain a 3D rotation."""
    if points.shape[0] < MIN_NUM_POINTS_FOR_SIM3:
        return True
    centered = points - points.mean(axis=0)
    singular_values = np.linalg.svd(centered, compute_uv=False)
    if singular_values[0] <= np.finfo(float).eps:
        return True
    return singular_values[1] <= COLLINEARITY_TOLERANCE * singular_values[0]


def align_umeyama(model: np.ndarray, data: np.ndarray) -> Tuple[float, np.ndarray, np.ndarray]:
    """Implementation of the paper: S. Umeyama, Least-Squares Estimation
    of Transformation Parameters Between Two Point Patterns,
    IEEE Trans. Pattern Anal. Mach. Intell., vol. 13, no. 4, 1991.
    model = s * R * data + t

    Args:
        model: Array of shape (N,3) representing the reference points.
        data: Array of shape (N,3) representing the points to align.

    Returns:
        s: float scalar representing scale factor
        R: rotation matrix of shape (3,3)
        t: translation vector of shape (3,)
    """
    # substract mean
    mu_M = model.mean(0)
    mu_D = data.mean(0)
    model_zerocentered = model - mu_M
    data_zerocentered = data - mu_D
    n = model.shape[0]

    # correlation
    C = 1.0 / n * np.dot(model_zerocentered.T, data_zerocentered)
    # squared l2-norm
    sigma2 = 1.0 / n * np.multiply(data_zerocentered, data_zerocentered).sum()
    U_svd, D_svd, Vt_svd = np.linalg.svd(C)
    D_svd = np.diag(D_svd)
    V_svd = Vt_svd.T

    # Flip the axis of least variance if needed so that R is a proper rotation, even for planar inputs.
    S = np.eye(3)
    if np.linalg.det(U_svd) * np.linalg.det(V_svd) < 0:
        S[2, 2] = -1

    R = U_svd @ S @ V_svd.T
    s = 1.0 / sigma2 * np.trace(D_svd @ S)
    t = mu_M - s * np.dot(R, mu_D)

    return s, R, t


def _similarity3_from_umeyama(s: float, R: np.ndarray, t: np.ndarray) -> Similarity3:
    # gtsam applies a Similarity3 as s * (R * p + t), while Umeyama returns s * R * p + t.
    return Similarity3(Rot3(R), t / s, float(s))


def sim3_from_Point3s(a_points: Sequence[np.ndarray], b_points: Sequence[np.ndarray]) -> Similarity3:
    """Estimate the least-squares Sim(3) transform ``aSb`` between corresponding 3D points.

    Minimizes sum_i || s * R * b_i + t - a_i ||^2 in closed form.

    Args:
        a_points: Reference points in frame "a", shape (N,3).
        b_points: Corresponding points in frame "b", shape (N,3).

    Returns:
        aSb: Similarity(3) object that maps points in frame "b" onto frame "a".

    Raises:
        InsufficientDataError: If there are fewer than 3 correspondences, or the points are collinear.
        InvalidInputError: If the arrays are not (N,3) or have different lengths.
    """
    a = _as_point_array(a_points, "a_points")
    b = _as_point_array(b_points, "b_points")
    if a.shape[0] != b.shape[0]:
        raise InvalidInputError(f"Point sets must correspond, got {a.shape[0]} and {b.shape[0]} points.")
    if a.shape[0] < MIN_NUM_POINTS_FOR_SIM3:
        raise InsufficientDataError(
            f"Sim(3) alignment needs at least {MIN_NUM_POINTS_FOR_SIM3} correspondences, got {a.shape[0]}."
        )
    if is_degenerate_point_set(a) or is_degenerate_point_set(b):
        raise InsufficientDataError("Sim(3) alignment needs at least 3 non-collinear correspondences.")

    aSb = _similarity3_from_umeyama(*align_umeyama(a, b))
    log_sim3_transform(aSb)
    return aSb


def sim3_residuals(aSb: Similarity3, a_points: np.ndarray, b_points: np.ndarray) -> np.ndarray:
    """Euclidean distance between each reference point and its transformed counterpart."""
    b_points_in_a = transform_utils.point_cloud_with_sim3(b_points, aSb)
    return np.linalg.norm(b_points_in_a - a_points, axis=1)


def num_ransac_iterations(inlier_ratio: float, confidence: float, sample_size: int = MIN_NUM_POINTS_FOR_SIM3) -> float:
    """Number of draws needed to pick an all-inlier minimal sample with probability `confidence`."""
    if inlier_ratio >= 1.0:
        return 0
    if inlier_ratio <= 0.0:
        return math.inf
    # log1p keeps precision when an all-inlier sample is very unlikely.
    log_p_sample_has_outlier = math.log1p(-(inlier_ratio**sample_size))
    if log_p_sample_has_outlier == 0.0:
        return math.inf
    return math.ceil(math.log(1.0 - confidence) / log_p_sample_has_outlier)


def sim3_from_Point3s_ransac(
    a_points: Sequence[np.ndarray],
    b_points: Sequence[np.ndarray],
    inlier_threshold: float,
    rng: Optional[np.random.Generator] = None,
    confidence: float = DEFAULT_RANSAC_CONFIDENCE,
    max_iterations: int = DEFAULT_RANSAC_MAX_ITERATIONS,
) -> Tuple[Similarity3, np.ndarray]:
    """Estimate Sim(3) alignment between corresponding points while rejecting outliers with RANSAC.

    Minimal samples of 3 correspondences are fit in closed form and scored by the number of correspondences whose
    residual is within `inlier_threshold`. The number of draws adapts to the best inlier ratio seen so far and never
    exceeds `max_iterations`. The hypothesis with most inliers is then refit on all of its inliers by least squares.

    Args:
        a_points: Reference points in frame "a", shape (N,3).
        b_points: Corresponding points in frame "b", shape (N,3).
        inlier_threshold: Max distance (in units of frame "a") for a correspondence to count as an inlier.
        rng: Source of randomness for sampling. Defaults to a generator seeded with 0.
        confidence: Desired probability of drawing at least one all-inlier sample.
        max_iterations: Hard cap on the number of samples drawn.

    Returns:
        aSb: Similarity(3) refit on the inliers of the best hypothesis.
        inlier_mask: Boolean array of shape (N,) marking the inliers of the refit transform's hypothesis.

    Raises:
        InvalidInputError: If the threshold or RANSAC parameters are invalid.
        InsufficientDataError: If no hypothesis is supported by at least 3 non-collinear inliers.
    """
    if inlier_threshold <= 0:
        raise InvalidInputError(f"RANSAC inlier threshold must be positive, got {inlier_threshold}.")
    if not 0 < confidence < 1:
        raise InvalidInputError(f"RANSAC confidence must be in (0, 1), got {confidence}.")
    if max_iterations < 1:
        raise InvalidInputError(f"RANSAC needs at least one iteration, got {max_iterations}.")

    a = _as_point_array(a_points, "a_points")
    b = _as_point_array(b_points, "b_points")
    if a.shape[0] != b.shape[0]:
        raise InvalidInputError(f"Point sets must correspond, got {a.shape[0]} and {b.shape[0]} points.")
    num_points = a.shape[0]
    if num_points < MIN_NUM_POINTS_FOR_SIM3:
        raise InsufficientDataError(
            f"Sim(3) alignment needs at least {MIN_NUM_POINTS_FOR_SIM3} correspondences, got {num_points}."
        )
    if rng is None:
        rng = np.random.default_rng(0)

    best_inlier_mask = np.zeros(num_points, dtype=bool)
    best_num_inliers = 0
    required_iterations: float = max_iterations
    num_iterations = 0
    while num_iterations < min(max_iterations, required_iterations):
        num_iterations += 1
        sample_idxs = rng.choice(num_points, size=MIN_NUM_POINTS_FOR_SIM3, replace=False)
        a_sample = a[sample_idxs]
        b_sample = b[sample_idxs]
        if is_degenerate_point_set(a_sample) or is_degenerate_point_set(b_sample):
            continue

        aSb_candidate = _similarity3_from_umeyama(*align_umeyama(a_sample, b_sample))
        inlier_mask = sim3_residuals(aSb_candidate, a, b) <= inlier_threshold
        num_inliers = int(inlier_mask.sum())
        if num_inliers <= best_num_inliers:
            continue

        logger.debug("Update best inlier count: %d -> %d", best_num_inliers, num_inliers)
        best_num_inliers = num_inliers
        best_inlier_mask = inlier_mask
        required_iterations = num_ransac_iterations(best_num_inliers / num_points, confidence)

    logger.info(
        "RANSAC Sim(3) alignment: %d / %d inliers after %d iterations (threshold %.4f).",
        best_num_inliers,
        num_points,
        num_iterations,
        inlier_threshold,
    )
    if best_num_inliers < MIN_NUM_POINTS_FOR_SIM3:
        raise InsufficientDataError(
            f"RANSAC found only {best_num_inliers} inliers within threshold {inlier_threshold}; "
            f"at least {MIN_NUM_POINTS_FOR_SIM3} are needed."
        )

    aSb = sim3_from_Point3s(a[best_inlier_mask], b[best_inlier_mask])
    return aSb, best_inlier_mask
