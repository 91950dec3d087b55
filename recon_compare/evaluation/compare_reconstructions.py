"""Script to compare two reconstructions of the same images.

Views are matched by name. The second reconstruction is aligned to the first, first by rotation only and then by a
similarity transform on camera positions, and the remaining per-camera errors are summarized as mean, median and
histogram.

Authors: Ayush Baid
"""

import argparse
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence, Tuple, Union

import numpy as np
from gtsam import Similarity3
from omegaconf import DictConfig

import recon_compare.utils.align as align_utils
import recon_compare.utils.configuration as config_utils
import recon_compare.utils.geometry_comparisons as comp_utils
import recon_compare.utils.io as io_utils
import recon_compare.utils.logger as logger_utils
import recon_compare.utils.rotation as rotation_utils
from recon_compare.common.exceptions import InsufficientDataError, InvalidInputError
from recon_compare.common.reconstruction import Reconstruction, find_common_views_by_name
from recon_compare.utils.histogram import Histogram, HistogramSummary, summarize_sorted_errors

logger = logger_utils.get_logger()

ROTATION_ERROR_BINS_DEG = [1, 2, 5, 10, 15, 20, 45]
POSITION_ERROR_BINS = [1, 5, 10, 50, 100, 1000]
FOCAL_LENGTH_ERROR_BINS = [0.01, 0.05, 0.2, 0.5, 1, 10, 100]
TRACK_LENGTH_BINS = [2, 3, 4, 5, 6, 7, 8, 9, 10, 15, 20, 25, 50]


@dataclass(frozen=True)
class PoseErrorReport:
    """Errors of the second reconstruction's cameras after aligning it to the first."""

    rotation_errors_deg: HistogramSummary
    position_errors: HistogramSummary
    focal_length_errors: HistogramSummary
    aSb: Similarity3
    aligned_reconstruction: Reconstruction
    inlier_mask: Optional[np.ndarray] = None


def _resolve_view_ids(
    common_view_names: Sequence[str], reconstruction1: Reconstruction, reconstruction2: Reconstruction
) -> List[Tuple[int, int]]:
    view_id_pairs = []
    for view_name in common_view_names:
        view_id1 = reconstruction1.view_id_from_name(view_name)
        view_id2 = reconstruction2.view_id_from_name(view_name)
        if view_id1 is None or view_id2 is None:
            raise InvalidInputError(f"View {view_name} is not present in both reconstructions.")
        view_id_pairs.append((view_id1, view_id2))
    return view_id_pairs


def align_angle_axis_rotations(rotations1: Sequence[np.ndarray], rotations2: Sequence[np.ndarray]) -> List[np.ndarray]:
    """Align axis-angle orientations of the second set to the first, returning the aligned copy of the second set."""
    aRi_list = rotation_utils.rot3s_from_angle_axes(rotations1)
    bRi_list = rotation_utils.rot3s_from_angle_axes(rotations2)
    return rotation_utils.angle_axes_from_rot3s(align_utils.align_rotations(aRi_list, bRi_list))


def evaluate_rotations(
    reconstruction1: Reconstruction, reconstruction2: Reconstruction, common_view_names: Sequence[str]
) -> HistogramSummary:
    """Aligns the orientations of the models (ignoring the positions) and reports the difference in orientations.

    Raises:
        InsufficientDataError: If there are no common views.
    """
    # Gather all the rotations in common with both views.
    rotations1, rotations2 = [], []
    for view_id1, view_id2 in _resolve_view_ids(common_view_names, reconstruction1, reconstruction2):
        rotations1.append(reconstruction1.get_orientation_as_angle_axis(view_id1))
        rotations2.append(reconstruction2.get_orientation_as_angle_axis(view_id2))

    aligned_rotations2 = align_angle_axis_rotations(rotations1, rotations2)

    rotation_errors_deg = np.sort(
        [np.rad2deg(comp_utils.angular_difference(r1, r2)) for r1, r2 in zip(rotations1, aligned_rotations2)]
    )
    summary = summarize_sorted_errors(rotation_errors_deg, ROTATION_ERROR_BINS_DEG)
    logger.info("Rotation difference when aligning orientations:\n%s", summary.to_string())
    return summary


def estimate_position_alignment(
    common_view_names: Sequence[str],
    reconstruction1: Reconstruction,
    reconstruction2: Reconstruction,
    robust_alignment_threshold: float = 0.0,
    rng: Optional[np.random.Generator] = None,
    ransac_confidence: float = align_utils.DEFAULT_RANSAC_CONFIDENCE,
    ransac_max_iterations: int = align_utils.DEFAULT_RANSAC_MAX_ITERATIONS,
) -> Tuple[Similarity3, Optional[np.ndarray]]:
    """Estimate the Sim(3) transform taking camera centers of the second reconstruction onto the first.

    Returns:
        aSb: The alignment transform.
        inlier_mask: Inliers among the common views for robust alignment, None otherwise.
    """
    view_id_pairs = _resolve_view_ids(common_view_names, reconstruction1, reconstruction2)
    positions1 = [reconstruction1.get_position(view_id1) for view_id1, _ in view_id_pairs]
    positions2 = [reconstruction2.get_position(view_id2) for _, view_id2 in view_id_pairs]

    if robust_alignment_threshold > 0.0:
        return align_utils.sim3_from_Point3s_ransac(
            positions1,
            positions2,
            robust_alignment_threshold,
            rng=rng,
            confidence=ransac_confidence,
            max_iterations=ransac_max_iterations,
        )
    return align_utils.sim3_from_Point3s(positions1, positions2), None


def evaluate_aligned_pose_error(
    common_view_names: Sequence[str],
    reconstruction1: Reconstruction,
    reconstruction2: Reconstruction,
    robust_alignment_threshold: float = 0.0,
    rng: Optional[np.random.Generator] = None,
    ransac_confidence: float = align_utils.DEFAULT_RANSAC_CONFIDENCE,
    ransac_max_iterations: int = align_utils.DEFAULT_RANSAC_MAX_ITERATIONS,
) -> PoseErrorReport:
    """Align the reconstructions then evaluate the pose errors.

    The second reconstruction is left untouched; its aligned copy is part of the report.

    Args:
        common_view_names: Names of views present in both reconstructions.
        reconstruction1: Reference reconstruction.
        reconstruction2: Reconstruction to align and evaluate.
        robust_alignment_threshold: If greater than 0, the inlier threshold of RANSAC alignment.
        rng: Random generator for RANSAC.
        ransac_confidence: Target probability of sampling an all-inlier set.
        ransac_max_iterations: Cap on RANSAC iterations.

    Raises:
        InsufficientDataError: If there are too few common views to align positions.
        InvalidInputError: If a reference camera has zero focal length.
    """
    aSb, inlier_mask = estimate_position_alignment(
        common_view_names,
        reconstruction1,
        reconstruction2,
        robust_alignment_threshold=robust_alignment_threshold,
        rng=rng,
        ransac_confidence=ransac_confidence,
        ransac_max_iterations=ransac_max_iterations,
    )
    aligned_reconstruction2 = reconstruction2.apply_Sim3(aSb)

    rotation_errors_deg, position_errors, focal_length_errors = [], [], []
    for view_id1, view_id2 in _resolve_view_ids(common_view_names, reconstruction1, aligned_reconstruction2):
        rotation_errors_deg.append(
            np.rad2deg(
                comp_utils.angular_difference(
                    reconstruction1.get_orientation_as_angle_axis(view_id1),
                    aligned_reconstruction2.get_orientation_as_angle_axis(view_id2),
                )
            )
        )
        position_errors.append(
            comp_utils.compute_points_distance_l2(
                reconstruction1.get_position(view_id1), aligned_reconstruction2.get_position(view_id2)
            )
        )
        focal_length1 = reconstruction1.get_focal_length(view_id1)
        if focal_length1 == 0:
            raise InvalidInputError(f"View {reconstruction1.name_from_view_id(view_id1)} has zero focal length.")
        focal_length2 = aligned_reconstruction2.get_focal_length(view_id2)
        focal_length_errors.append(abs(focal_length1 - focal_length2) / focal_length1)

    rotation_summary = summarize_sorted_errors(np.sort(rotation_errors_deg), ROTATION_ERROR_BINS_DEG)
    logger.info("Rotation difference when aligning positions:\n%s", rotation_summary.to_string())

    position_summary = summarize_sorted_errors(np.sort(position_errors), POSITION_ERROR_BINS)
    logger.info("Position difference:\n%s", position_summary.to_string())

    focal_length_summary = summarize_sorted_errors(np.sort(focal_length_errors), FOCAL_LENGTH_ERROR_BINS)
    logger.info("Focal length errors:\n%s", focal_length_summary.to_string())

    return PoseErrorReport(
        rotation_errors_deg=rotation_summary,
        position_errors=position_summary,
        focal_length_errors=focal_length_summary,
        aSb=aSb,
        aligned_reconstruction=aligned_reconstruction2,
        inlier_mask=inlier_mask,
    )


def compute_track_length_histogram(reconstruction: Reconstruction) -> Histogram:
    """Histogram of the number of views observing each track."""
    histogram = Histogram(TRACK_LENGTH_BINS)
    histogram.add_all(reconstruction.get_track_lengths())
    return histogram


def log_reconstruction_statistics(
    reconstruction1: Reconstruction, reconstruction2: Reconstruction, common_view_names: Sequence[str]
) -> None:
    """Log camera counts, 3d point counts and track lengths of both reconstructions."""
    logger.info(
        "Number of cameras:\n\tReconstruction 1: %d\n\tReconstruction 2: %d\n\tNumber of common cameras: %d",
        reconstruction1.number_views(),
        reconstruction2.number_views(),
        len(common_view_names),
    )
    logger.info(
        "Number of 3d points:\n\tReconstruction 1: %d\n\tReconstruction 2: %d",
        reconstruction1.number_tracks(),
        reconstruction2.number_tracks(),
    )
    for label, reconstruction in (("Reconstruction 1", reconstruction1), ("Reconstruction 2", reconstruction2)):
        logger.info("%s track lengths =\n%s", label, compute_track_length_histogram(reconstruction).to_string())


def compare_reconstructions(
    reconstruction1_path: Union[str, Path], reconstruction2_path: Union[str, Path], cfg: DictConfig
) -> Tuple[HistogramSummary, PoseErrorReport]:
    """Read two reconstructions and compare their cameras.

    Args:
        reconstruction1_path: Reference reconstruction.
        reconstruction2_path: Reconstruction to evaluate.
        cfg: Config with the fields of `CompareReconstructionsConfig`.

    Returns:
        Summary of rotation errors after rotation-only alignment, and the pose errors after Sim(3) alignment.

    Raises:
        FileNotFoundError, ReconstructionReadError: If a reconstruction cannot be read.
        InsufficientDataError: If a stage has too few common views, naming the failed stage.
    """
    reconstruction1 = io_utils.read_reconstruction(reconstruction1_path)
    reconstruction2 = io_utils.read_reconstruction(reconstruction2_path)

    common_view_names = find_common_views_by_name(reconstruction1, reconstruction2)
    log_reconstruction_statistics(reconstruction1, reconstruction2, common_view_names)

    # Evaluate rotation independent of positions.
    try:
        rotation_summary = evaluate_rotations(reconstruction1, reconstruction2, common_view_names)
    except InsufficientDataError as exc:
        raise InsufficientDataError(f"Rotation evaluation failed: {exc}") from exc

    # Align models and evaluate position and rotation errors.
    try:
        pose_report = evaluate_aligned_pose_error(
            common_view_names,
            reconstruction1,
            reconstruction2,
            robust_alignment_threshold=cfg.robust_alignment_threshold,
            rng=np.random.default_rng(cfg.seed),
            ransac_confidence=cfg.ransac_confidence,
            ransac_max_iterations=cfg.ransac_max_iterations,
        )
    except InsufficientDataError as exc:
        raise InsufficientDataError(f"Aligned pose evaluation failed: {exc}") from exc

    return rotation_summary, pose_report


def construct_argparser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Compare two reconstructions of the same images.")
    parser.add_argument(
        "--reconstruction1",
        required=True,
        help="Reference reconstruction: a COLMAP text model directory or a Bundler .out file.",
    )
    parser.add_argument("--reconstruction2", required=True, help="Reconstruction to compare against the reference.")
    parser.add_argument(
        "--robust_alignment_threshold",
        type=float,
        default=None,
        help="If greater than 0.0, this threshold determines inliers for RANSAC alignment of reconstructions. "
        "The inliers are then used for a least squares alignment.",
    )
    parser.add_argument("--seed", type=int, default=None, help="Seed for RANSAC sampling.")
    parser.add_argument("--config", type=str, default=None, help="Optional YAML file with comparison options.")
    parser.add_argument(
        "--log",
        type=str,
        default="INFO",
        help="Set the logging level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
    )
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = construct_argparser().parse_args(argv)
    logger_utils.set_level(args.log)

    cfg = config_utils.load_config(
        args.config,
        overrides={"robust_alignment_threshold": args.robust_alignment_threshold, "seed": args.seed},
    )
    config_utils.log_configuration_summary(cfg, logger)

    try:
        compare_reconstructions(args.reconstruction1, args.reconstruction2, cfg)
    except OSError as exc:
        logger.error("Could not read reconstruction: %s", exc)
        return 1
    except (InsufficientDataError, InvalidInputError) as exc:
        logger.error("%s", exc)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
