"""Class to hold the named views, cameras and tracks of a 3D reconstruction.

Views are identified by integer ids that are local to a reconstruction; two reconstructions of the same images
may number them differently, so views are matched across reconstructions by name.

Authors: Ayush Baid, John Lambert, Xiaolong Wu
"""

from typing import Dict, List, Mapping, Optional

import numpy as np
from gtsam import PinholeCameraCal3Bundler, SfmTrack, Similarity3  # type: ignore

import recon_compare.utils.logger as logger_utils
import recon_compare.utils.rotation as rotation_utils
from recon_compare.utils import transform as transform_utils

logger = logger_utils.get_logger()


class Reconstruction:
    """Cameras and tracks of a reconstruction, with a name for every view.

    Cameras are PinholeCameraCal3Bundler objects whose pose is the camera-to-world transform wTi.
    """

    def __init__(
        self,
        view_names: Optional[Mapping[int, str]] = None,
        cameras: Optional[Mapping[int, PinholeCameraCal3Bundler]] = None,
        tracks: Optional[List[SfmTrack]] = None,
    ) -> None:
        """Initializes the class.

        Args:
            view_names: Name of each view, keyed by view id.
            cameras: Camera of each view, keyed by view id. Every camera needs a name.
            tracks: SfmTracks observed by the views.
        """
        self._view_names: Dict[int, str] = {}
        self._view_ids_by_name: Dict[str, int] = {}
        self._cameras: Dict[int, PinholeCameraCal3Bundler] = {}
        self._tracks: List[SfmTrack] = []

        if view_names is not None:
            for view_id, name in view_names.items():
                self.add_view(view_id, name)
        if cameras is not None:
            for view_id, camera in cameras.items():
                self.add_camera(view_id, camera)
        if tracks is not None:
            for track in tracks:
                self.add_track(track)

    def __repr__(self) -> str:
        return (
            f"Reconstruction("
            f"num_views={len(self._view_names)}, "
            f"num_cameras={len(self._cameras)}, "
            f"num_tracks={len(self._tracks)})"
        )

    def add_view(self, view_id: int, name: str) -> None:
        """Registers a named view.

        Raises:
            ValueError: If the id or the name is already taken by a different view.
        """
        if self._view_names.get(view_id, name) != name:
            raise ValueError(f"View {view_id} is already named {self._view_names[view_id]}, not {name}.")
        if self._view_ids_by_name.get(name, view_id) != view_id:
            raise ValueError(f"View name {name} is already used by view {self._view_ids_by_name[name]}.")
        self._view_names[view_id] = name
        self._view_ids_by_name[name] = view_id

    def add_camera(self, view_id: int, camera: PinholeCameraCal3Bundler) -> None:
        """Sets the camera of an existing view."""
        if camera is None:
            raise ValueError("Camera cannot be None, should be a valid camera")
        if view_id not in self._view_names:
            raise ValueError(f"Camera added for unknown view {view_id}.")
        self._cameras[view_id] = camera

    def add_track(self, track: SfmTrack) -> bool:
        """Adds a track if all cameras exist; returns success flag."""
        for j in range(track.numberMeasurements()):
            i, _ = track.measurement(j)
            if i not in self._cameras:
                return False
        self._tracks.append(track)
        return True

    def number_views(self) -> int:
        """Returns the number of views which have an estimated camera."""
        return len(self._cameras)

    def view_ids(self) -> List[int]:
        """Returns ids of views which have an estimated camera, in ascending order."""
        return sorted(self._cameras.keys())

    def view_names(self) -> List[str]:
        """Returns names of views which have an estimated camera, in ascending view id order."""
        return [self._view_names[view_id] for view_id in self.view_ids()]

    def view_id_from_name(self, name: str) -> Optional[int]:
        """Returns the id of the view with the given name, or None."""
        return self._view_ids_by_name.get(name)

    def name_from_view_id(self, view_id: int) -> Optional[str]:
        return self._view_names.get(view_id)

    def cameras(self) -> Dict[int, PinholeCameraCal3Bundler]:
        """Returns a dictionary of all cameras indexed by their view ids."""
        return self._cameras

    def get_camera(self, view_id: int) -> Optional[PinholeCameraCal3Bundler]:
        """Returns camera for given view id, or None."""
        return self._cameras.get(view_id)

    def get_orientation_as_angle_axis(self, view_id: int) -> np.ndarray:
        """Returns the camera-to-world orientation of a view as an axis-angle 3-vector."""
        return rotation_utils.angle_axis_from_rot3(self._cameras[view_id].pose().rotation())

    def get_position(self, view_id: int) -> np.ndarray:
        """Returns the camera center of a view in world coordinates."""
        return np.asarray(self._cameras[view_id].pose().translation(), dtype=np.float64)

    def get_focal_length(self, view_id: int) -> float:
        return float(self._cameras[view_id].calibration().fx())

    def number_tracks(self) -> int:
        """Returns the number of tracks."""
        return len(self._tracks)

    def track_ids(self) -> List[int]:
        return list(range(len(self._tracks)))

    def get_track(self, track_id: int) -> SfmTrack:
        """Returns track with given id."""
        return self._tracks[track_id]

    def get_track_lengths(self) -> np.ndarray:
        """Get an array containing the lengths of all tracks.

        Returns:
            Array containing all track lengths.
        """
        if self.number_tracks() == 0:
            return np.array([], dtype=np.uint32)

        track_lengths = [track.numberMeasurements() for track in self._tracks]
        return np.array(track_lengths, dtype=np.uint32)

    def apply_Sim3(self, aSb: Similarity3) -> "Reconstruction":
        """Assume current tracks and cameras are in frame "b", then transport them to frame "a".

        Returns:
            New Reconstruction object which has been transformed from frame b to frame a.
        """
        aligned_cameras = transform_utils.camera_map_with_sim3(self._cameras, aSb)
        aligned_tracks = [transform_utils.track_with_sim3(track, aSb) for track in self._tracks]
        return Reconstruction(view_names=self._view_names, cameras=aligned_cameras, tracks=aligned_tracks)


def find_common_views_by_name(reconstruction1: Reconstruction, reconstruction2: Reconstruction) -> List[str]:
    """Find the names of views with an estimated camera in both reconstructions.

    Returns:
        Shared view names, sorted lexicographically.
    """
    names2 = set(reconstruction2.view_names())
    common_view_names = sorted(name for name in reconstruction1.view_names() if name in names2)
    logger.debug("Found %d views in common.", len(common_view_names))
    return common_view_names
