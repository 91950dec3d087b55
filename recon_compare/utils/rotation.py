"""Utility functions for rotations.

Orientations are exchanged as axis-angle 3-vectors: the direction is the rotation axis and the norm is the
angle in radians.

Authors: Ayush Baid
"""

from typing import List, Sequence

import numpy as np
from gtsam import Rot3

# Axis-angle vectors shorter than this are treated as the identity rotation.
ANGLE_AXIS_EPSILON = 1e-12


def rot3_from_angle_axis(angle_axis: np.ndarray) -> Rot3:
    """Convert an axis-angle 3-vector to a Rot3.

    A zero vector has no well-defined axis, so it maps to the identity.

    Args:
        angle_axis: Array of shape (3,).

    Returns:
        The rotation represented by the vector.
    """
    angle_axis = np.asarray(angle_axis, dtype=np.float64).reshape(3)
    angle = float(np.linalg.norm(angle_axis))
    if angle < ANGLE_AXIS_EPSILON:
        return Rot3()
    return Rot3.AxisAngle(angle_axis / angle, angle)


def angle_axis_from_rot3(R: Rot3) -> np.ndarray:
    """Convert a Rot3 to its axis-angle 3-vector, with angle in [0, pi]."""
    return np.asarray(Rot3.Logmap(R), dtype=np.float64)


def rot3s_from_angle_axes(angle_axes: Sequence[np.ndarray]) -> List[Rot3]:
    return [rot3_from_angle_axis(angle_axis) for angle_axis in angle_axes]


def angle_axes_from_rot3s(rotations: Sequence[Rot3]) -> List[np.ndarray]:
    return [angle_axis_from_rot3(R) for R in rotations]


def random_rotation(rng: np.random.Generator, angle_scale_factor: float = 1.0) -> Rot3:
    """Sample a random rotation by generating a sample from the 4d unit sphere."""
    q = rng.normal(size=4)
    # make unit-length quaternion
    q /= np.linalg.norm(q)
    qw, qx, qy, qz = q
    R = Rot3(qw, qx, qy, qz)
    angle_axis = angle_axis_from_rot3(R) * angle_scale_factor
    return rot3_from_angle_axis(angle_axis)
