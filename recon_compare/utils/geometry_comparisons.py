"""Utility functions for comparing different types related to geometry.

Authors: Ayush Baid, John Lambert
"""

from typing import Optional

import numpy as np
from scipy.spatial.transform import Rotation

import recon_compare.utils.rotation as rotation_utils


def angular_difference(rotation1: np.ndarray, rotation2: np.ndarray) -> float:
    """Compute the geodesic angle between two rotations given in axis-angle form.

    Args:
        rotation1: Axis-angle 3-vector of the first rotation.
        rotation2: Axis-angle 3-vector of the second rotation.

    Returns:
        Non-negative angle of R1^T * R2, in radians.
    """
    R1 = rotation_utils.rot3_from_angle_axis(rotation1).matrix()
    R2 = rotation_utils.rot3_from_angle_axis(rotation2).matrix()
    relative_rot = R1.T @ R2
    # Rotation.as_rotvec() is stable near 0 and pi, unlike arccos of the trace.
    scaled_axis = Rotation.from_matrix(relative_rot).as_rotvec()
    return float(np.linalg.norm(scaled_axis))


def compute_points_distance_l2(wti1: Optional[np.ndarray], wti2: Optional[np.ndarray]) -> Optional[float]:
    """Computes the L2 distance between the two input 3D points.

    Assumes the points are in the same coordinate frame. Returns None if either
    point is None.

    Args:
        wti1: Point1 in world frame.
        wti2: Point2 in world frame.

    Returns:
        L2 norm of wti1 - wti2
    """
    if wti1 is None or wti2 is None:
        return None
    return float(np.linalg.norm(np.asarray(wti1) - np.asarray(wti2)))
