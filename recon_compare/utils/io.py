"""Functions to read reconstructions from disk.

Supported inputs:
    - A directory holding a COLMAP model, as text (`cameras.txt`, `images.txt` and optionally `points3D.txt`) or
      binary (`cameras.bin`, `images.bin`, `points3D.bin`).
    - A Bundler `.out` file, with image names read from a `list.txt` next to it when present.

Authors: Ayush Baid, John Lambert
"""

import tempfile
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

import gtsam  # type: ignore
import numpy as np
import pycolmap
from gtsam import Cal3Bundler, PinholeCameraCal3Bundler, Pose3, Rot3, SfmTrack

import recon_compare.utils.logger as logger_utils
from recon_compare.common.exceptions import ReconstructionReadError
from recon_compare.common.reconstruction import Reconstruction

logger = logger_utils.get_logger()

# COLMAP camera models whose parameters start with a single focal length, followed by (cx, cy).
SINGLE_FOCAL_MODELS = ("SIMPLE_PINHOLE", "SIMPLE_RADIAL", "RADIAL", "SIMPLE_RADIAL_FISHEYE", "RADIAL_FISHEYE")
# COLMAP camera models whose parameters start with (fx, fy, cx, cy).
DUAL_FOCAL_MODELS = ("PINHOLE", "OPENCV", "FULL_OPENCV", "OPENCV_FISHEYE", "FOV", "THIN_PRISM_FISHEYE")


def _read_data_lines(fpath: Path) -> List[str]:
    """Read a COLMAP text file, dropping the `#` comment header but keeping blank data lines."""
    with open(fpath, "r") as f:
        lines = [line.rstrip("\n") for line in f.readlines()]
    return [line for line in lines if not line.startswith("#")]


def calibration_from_colmap_camera(model: str, params: List[float]) -> Cal3Bundler:
    """Convert COLMAP camera parameters to GTSAM's Cal3Bundler.

    Tangential and higher order distortion terms are dropped; only the focal length matters for comparison.
    """
    if model in SINGLE_FOCAL_MODELS:
        f, u0, v0 = params[:3]
        k1 = params[3] if len(params) > 3 else 0.0
        k2 = params[4] if len(params) > 4 else 0.0
    elif model in DUAL_FOCAL_MODELS:
        f, _, u0, v0 = params[:4]
        k1 = params[4] if len(params) > 4 and model != "FOV" else 0.0
        k2 = params[5] if len(params) > 5 and model != "FOV" else 0.0
    else:
        raise ReconstructionReadError(f"Unsupported COLMAP camera model: {model}")
    return Cal3Bundler(f, k1, k2, u0, v0)


def read_cameras_txt(fpath: Path) -> Dict[int, Cal3Bundler]:
    """Read camera calibrations from a COLMAP-formatted cameras.txt file.

    Reference: https://colmap.github.io/format.html#cameras-txt

    Returns:
        Calibration of every camera, keyed by COLMAP camera id.
    """
    calibrations = {}
    for line in _read_data_lines(fpath):
        if not line.strip():
            continue
        cam_params = line.split()
        camera_id, model = int(cam_params[0]), cam_params[1]
        params = [float(x) for x in cam_params[4:]]
        calibrations[camera_id] = calibration_from_colmap_camera(model, params)
    return calibrations


def read_images_txt(fpath: Path) -> Tuple[Dict[int, Tuple[str, Pose3, int]], Dict[int, np.ndarray]]:
    """Read camera poses and image file names from a COLMAP-format images.txt file.

    Reference: https://colmap.github.io/format.html#images-txt
        "The coordinates of the projection/camera center are given by -R^t * T, where
        R^t is the inverse/transpose of the 3x3 rotation matrix composed from the
        quaternion and T is the translation vector."

    Returns:
        images: (name, wTi, camera id) of every image, keyed by COLMAP image id.
        keypoints: (M,2) array of 2d observations of every image, keyed by COLMAP image id.
    """
    lines = _read_data_lines(fpath)
    images = {}
    keypoints = {}
    # Two lines per image: the pose, then the (possibly empty) list of 2d points.
    for pose_line, points_line in zip(lines[0::2], lines[1::2] + [""]):
        if not pose_line.strip():
            continue
        image_id, qw, qx, qy, qz, tx, ty, tz, camera_id, img_fname = pose_line.split()[:10]
        # Colmap provides extrinsics, so must invert
        iRw = Rot3(float(qw), float(qx), float(qy), float(qz))
        wTi = Pose3(iRw, np.array([tx, ty, tz], dtype=np.float64)).inverse()
        images[int(image_id)] = (img_fname, wTi, int(camera_id))

        points_2d = points_line.split()
        keypoints[int(image_id)] = np.array(
            [[float(points_2d[k]), float(points_2d[k + 1])] for k in range(0, len(points_2d) - 2, 3)]
        ).reshape(-1, 2)
    return images, keypoints


def read_points3D_txt(fpath: Path, keypoints: Dict[int, np.ndarray]) -> List[SfmTrack]:
    """Read tracks from a COLMAP points3D.txt file.

    Reference: https://colmap.github.io/format.html#points3d-txt

    Args:
        fpath: Path to points3D.txt.
        keypoints: 2d observations of every image, as returned by `read_images_txt`.

    Returns:
        One SfmTrack per 3d point, with measurements keyed by COLMAP image id.
    """
    tracks = []
    for line in _read_data_lines(fpath):
        entries = line.split()
        if not entries:
            continue
        track = SfmTrack(np.array([float(x) for x in entries[1:4]]))
        track_elements = entries[8:]
        for k in range(0, len(track_elements) - 1, 2):
            image_id, point2d_idx = int(track_elements[k]), int(track_elements[k + 1])
            image_keypoints = keypoints.get(image_id)
            if image_keypoints is None or point2d_idx >= image_keypoints.shape[0]:
                raise ReconstructionReadError(
                    f"{fpath}: point {entries[0]} refers to unknown observation {point2d_idx} of image {image_id}."
                )
            track.addMeasurement(image_id, image_keypoints[point2d_idx])
        tracks.append(track)
    return tracks


def read_colmap_binary_model(data_dir: Path) -> Reconstruction:
    """Reads a binary COLMAP model by exporting it to text with pycolmap.

    Raises:
        ReconstructionReadError: If pycolmap cannot load the model.
    """
    try:
        colmap_reconstruction = pycolmap.Reconstruction(str(data_dir))
    except (RuntimeError, ValueError) as exc:
        raise ReconstructionReadError(f"Could not load binary COLMAP model {data_dir}: {exc}") from exc

    with tempfile.TemporaryDirectory() as text_dir:
        colmap_reconstruction.write_text(text_dir)
        return read_colmap_model(Path(text_dir))


def read_colmap_model(data_dir: Path) -> Reconstruction:
    """Reads a reconstruction stored as a COLMAP model.

    Reference: https://colmap.github.io/format.html

    Images whose camera has a zero focal length are skipped, like unregistered Bundler cameras.

    Args:
        data_dir: Directory containing `cameras.txt`, `images.txt` and optionally `points3D.txt`, or their `.bin`
            counterparts.

    Returns:
        The reconstruction, with COLMAP image ids as view ids.
    """
    if not Path(data_dir, "images.txt").exists():
        if Path(data_dir, "images.bin").exists():
            return read_colmap_binary_model(data_dir)
        raise FileNotFoundError(f"{data_dir}/images.txt does not exist.")
    calibrations = read_cameras_txt(Path(data_dir, "cameras.txt"))
    images, keypoints = read_images_txt(Path(data_dir, "images.txt"))

    reconstruction = Reconstruction()
    for image_id, (img_fname, wTi, camera_id) in images.items():
        if camera_id not in calibrations:
            raise ReconstructionReadError(f"{data_dir}: image {img_fname} refers to unknown camera {camera_id}.")
        if calibrations[camera_id].fx() == 0:
            logger.warning("Skipping image %s: camera %d has zero focal length.", img_fname, camera_id)
            continue
        reconstruction.add_view(image_id, img_fname)
        reconstruction.add_camera(image_id, PinholeCameraCal3Bundler(wTi, calibrations[camera_id]))

    points_fpath = Path(data_dir, "points3D.txt")
    if points_fpath.exists():
        for track in read_points3D_txt(points_fpath, keypoints):
            reconstruction.add_track(track)
    else:
        logger.info("%s does not exist, reading cameras only.", points_fpath)
    return reconstruction


def read_bundler_list(fpath: Path) -> List[str]:
    """Read image names from a Bundler list file (one image per line, optionally followed by EXIF focal)."""
    with open(fpath, "r") as f:
        return [line.split()[0] for line in f.readlines() if line.strip()]


def read_bundler(file_path: Path, list_path: Optional[Path] = None) -> Reconstruction:
    """Read a Bundler file.

    Unregistered cameras, which Bundler stores with a zero focal length, are skipped.

    Args:
        file_path: File path of the Bundler `.out` file.
        list_path: Optional list of image names. Defaults to `list.txt` beside the `.out` file; if neither exists,
            views are named by their index.

    Returns:
        The reconstruction, with Bundler camera indices as view ids.
    """
    if list_path is None:
        list_path = Path(file_path).with_name("list.txt")
    try:
        sfm_data = gtsam.SfmData.FromBundlerFile(str(file_path))
    except RuntimeError as exc:
        raise ReconstructionReadError(f"Could not parse Bundler file {file_path}: {exc}") from exc

    num_cameras = sfm_data.numberCameras()
    if Path(list_path).exists():
        names = read_bundler_list(Path(list_path))
        if len(names) != num_cameras:
            raise ReconstructionReadError(
                f"{list_path} names {len(names)} images, but {file_path} has {num_cameras} cameras."
            )
    else:
        names = [str(i) for i in range(num_cameras)]

    reconstruction = Reconstruction()
    for i in range(num_cameras):
        camera = sfm_data.camera(i)
        if camera.calibration().fx() == 0:
            continue
        reconstruction.add_view(i, names[i])
        reconstruction.add_camera(i, camera)
    for j in range(sfm_data.numberTracks()):
        reconstruction.add_track(sfm_data.track(j))
    return reconstruction


def read_reconstruction(path: Union[str, Path]) -> Reconstruction:
    """Read a reconstruction from a COLMAP text model directory or a Bundler `.out` file.

    Raises:
        FileNotFoundError: If the path does not exist.
        ReconstructionReadError: If the files exist but cannot be parsed.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"{path} does not exist.")

    try:
        if path.is_dir():
            reconstruction = read_colmap_model(path)
        elif path.suffix == ".out":
            reconstruction = read_bundler(path)
        else:
            raise ReconstructionReadError(f"{path}: expected a COLMAP model directory or a Bundler .out file.")
    except (ValueError, IndexError) as exc:
        raise ReconstructionReadError(f"Could not parse reconstruction {path}: {exc}") from exc

    logger.info("Read %s from %s", reconstruction, path)
    return reconstruction
