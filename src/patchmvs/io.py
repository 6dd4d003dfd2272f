"""Image-directory frame source and result persistence."""

import logging
from collections.abc import Iterator
from pathlib import Path

import cv2
import numpy as np

logger = logging.getLogger(__name__)

IMAGE_PATTERNS = ("*.png", "*.jpg", "*.jpeg", "*.tiff", "*.tif")


class ImageDirectorySet:
    """Synchronized frames read from per-camera image directories.

    All cameras must have the same number of images with matching filenames
    (sorted order).

    Args:
        image_dirs: Mapping from camera name to directory path.

    Raises:
        ValueError: If a directory is missing, empty, or the directories have
            mismatched file counts or filenames.
    """

    def __init__(self, image_dirs: dict[str, str]):
        self.image_dirs = {name: Path(path) for name, path in image_dirs.items()}
        self._index()

    def _index(self) -> None:
        self.frame_files: dict[str, list[Path]] = {}

        for cam_name, cam_dir in self.image_dirs.items():
            if not cam_dir.is_dir():
                raise ValueError(f"Camera directory does not exist: {cam_dir}")

            files = []
            for pattern in IMAGE_PATTERNS:
                files.extend(cam_dir.glob(pattern))
            if not files:
                raise ValueError(f"No images found in directory: {cam_dir}")

            self.frame_files[cam_name] = sorted(files, key=lambda p: p.name)

        names = {
            cam: [f.name for f in files] for cam, files in self.frame_files.items()
        }
        first_cam = next(iter(names))
        for cam_name, filenames in names.items():
            if filenames != names[first_cam]:
                raise ValueError(
                    f"Filenames do not match between {first_cam} and {cam_name}. "
                    "All cameras must have images with the same filenames."
                )

        self._frame_count = len(names[first_cam])
        logger.info(
            "Detected %d frames across %d cameras",
            self._frame_count,
            len(self.image_dirs),
        )

    @property
    def frame_count(self) -> int:
        """Total number of frames available."""
        return self._frame_count

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        pass

    def iterate_frames(
        self, start: int = 0, stop: int | None = None, step: int = 1
    ) -> Iterator[tuple[int, dict[str, np.ndarray]]]:
        """Iterate over frames, yielding frame index and per-camera images.

        Frames where any camera image fails to load are skipped with a warning.

        Args:
            start: First frame index to yield.
            stop: Last frame index (exclusive). None = end of sequence.
            step: Frame step interval.

        Yields:
            Tuple of (frame_idx, images) where images maps camera name to a
            BGR image (H, W, 3) uint8.
        """
        if stop is None:
            stop = self._frame_count

        for frame_idx in range(start, min(stop, self._frame_count), step):
            images = {}
            for cam_name, files in self.frame_files.items():
                img = cv2.imread(str(files[frame_idx]), cv2.IMREAD_COLOR)
                if img is None:
                    logger.warning(
                        "Failed to read image: %s (camera %s, frame %d)",
                        files[frame_idx],
                        cam_name,
                        frame_idx,
                    )
                    break
                images[cam_name] = img
            else:
                yield frame_idx, images


def save_points(points: np.ndarray, path: str | Path) -> None:
    """Save one kernel output row to an .npz file.

    Args:
        points: Output row, shape (H, W, 4): (normal x, normal y, normal z, depth).
        path: Output file path (should end with .npz).
    """
    np.savez(
        path,
        depth=np.ascontiguousarray(points[..., 3]),
        normals=np.ascontiguousarray(points[..., :3]),
    )


def load_points(path: str | Path) -> tuple[np.ndarray, np.ndarray]:
    """Load a depth map and normal map saved by ``save_points``.

    Args:
        path: Path to .npz file.

    Returns:
        depth: shape (H, W), float32.
        normals: shape (H, W, 3), float32.
    """
    data = np.load(path)
    return data["depth"], data["normals"]
