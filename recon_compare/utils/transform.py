"""Utility functions for transporting geometry between coordinate frames.

Authors: Ayush Baid, John Lambert, Frank Dellaert
"""

from typing import Dict, List, Mapping, Sequence

import numpy as np
from gtsam import PinholeCameraCal3Bundler, Rot3, SfmTrack, Similarity3  # type: ignore


def Rot3s_with_so3(rotations_b: Sequence[Rot3], aRb: Rot3) -> List[Rot3]:
    """Transport a list of Rot3s from frame ``b`` to frame ``a`` using an SO(3) transform."""
    return [aRb.compose(rotation_b) for rotation_b in rotations_b]


def point_cloud_with_sim3(points_b: np.ndarray, aSb: Similarity3) -> np.ndarray:
    """Transport an (N,3) point cloud from frame ``b`` to frame ``a`` using a Sim(3) transform."""
    points_b = np.asarray(points_b, dtype=np.float64)
    if points_b.size == 0:
        return points_b.reshape(0, 3)
    aRb = aSb.rotation().matrix()
    return aSb.scale() * (points_b @ aRb.T + np.asarray(aSb.translation()))


def track_with_sim3(track_b: SfmTrack, aSb: Similarity3) -> SfmTrack:
    """Transport a single SfmTrack from frame ``b`` to frame ``a`` using a Sim(3) transform."""
    track_a = SfmTrack(aSb.transformFrom(track_b.point3()))
    for k in range(track_b.numberMeasurements()):
        i, uv = track_b.measurement(k)
        track_a.addMeasurement(i, uv)
    return track_a


def camera_map_with_sim3(
    cameras_b: Mapping[int, PinholeCameraCal3Bundler], aSb: Similarity3
) -> Dict[int, PinholeCameraCal3Bundler]:
    """Transport a camera dictionary from frame ``b`` to frame ``a`` using a Sim(3) transform.

    Calibrations are copied unchanged; only the poses move.
    """
    return {
        i: PinholeCameraCal3Bundler(aSb.transformFrom(camera_b.pose()), camera_b.calibration())
        for i, camera_b in cameras_b.items()
    }
