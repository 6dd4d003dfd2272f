"""Frame-geometry planning: view selection, disparity bounds, buffer sizing."""

import logging
import math

import torch

from .calibration import CameraRig
from .dense.state import AlgorithmParameters, SolverState
from .errors import ViewSelectionError

logger = logging.getLogger(__name__)


def disparity_depth_conversion(f: float, baseline: float, value: float) -> float:
    """Convert between disparity and depth.

    The relation ``disparity = f * baseline / depth`` is its own inverse, so
    the same function maps depth to disparity and disparity to depth.

    Args:
        f: Focal length (pixels).
        baseline: Camera baseline.
        value: Depth (or disparity) to convert.

    Returns:
        The corresponding disparity (or depth).
    """
    return f * baseline / value


def _angle_degrees(a: torch.Tensor, b: torch.Tensor) -> float:
    """Angle between two 3D vectors, in degrees."""
    cos = torch.dot(a, b) / (torch.linalg.norm(a) * torch.linalg.norm(b))
    return math.degrees(math.acos(max(-1.0, min(1.0, cos.item()))))


def select_views(
    rig: CameraRig,
    width: int,
    height: int,
    params: AlgorithmParameters,
) -> list[int]:
    """Select the cameras that contribute to the reference view.

    The representative scene point lies on the reference ray through the
    image center at mid-depth. A camera qualifies when the angle between its
    ray to that point and the reference ray lies in
    [params.min_angle, params.max_angle].

    Args:
        rig: Camera rig.
        width: Frame width in pixels.
        height: Frame height in pixels.
        params: Algorithm parameters (angle and depth bounds).

    Returns:
        Ascending camera indices, never including the reference camera.
    """
    ref = rig.reference_camera
    center = torch.tensor(
        [(width - 1) / 2.0, (height - 1) / 2.0, 1.0], dtype=torch.float32
    )
    ray = torch.linalg.inv(ref.K.cpu()) @ center  # z component is 1
    mid_depth = 0.5 * (params.depth_min + params.depth_max)
    point = ref.C.cpu() + mid_depth * (ref.R.cpu().T @ ray)

    ref_ray = point - ref.C.cpu()
    subset = []
    for i, cam in enumerate(rig.cameras):
        if i == rig.reference:
            continue
        angle = _angle_degrees(ref_ray, point - cam.C.cpu())
        logger.debug("Camera %d: view angle %.3f deg", i, angle)
        if params.min_angle <= angle <= params.max_angle:
            subset.append(i)

    return subset


class FrameGeometryPlanner:
    """Plans solver geometry once per distinct frame resolution.

    Args:
        state: Solver state to plan; its rig, parameters and result buffer
            are updated in place.
    """

    def __init__(self, state: SolverState):
        self.state = state
        self.planned_size: tuple[int, int] | None = None

    def plan(self, width: int, height: int) -> bool:
        """Plan view selection, disparity bounds and buffers for a resolution.

        Args:
            width: Frame width in pixels.
            height: Frame height in pixels.

        Returns:
            True if planning ran, False if this resolution was already planned.

        Raises:
            ViewSelectionError: If no camera satisfies the angle bounds.
        """
        if self.planned_size == (width, height):
            return False

        rig = self.state.rig
        params = self.state.params

        subset = select_views(rig, width, height, params)
        if not subset:
            raise ViewSelectionError(
                f"no camera lies within the view angle bounds "
                f"[{params.min_angle}, {params.max_angle}] degrees of the reference "
                f"view; reconfigure the rig"
            )

        for cam in rig.cameras:
            cam.depth_min = params.depth_min
            cam.depth_max = params.depth_max
            if cam.baseline > 0.0:
                cam.min_disparity = disparity_depth_conversion(
                    rig.f, cam.baseline, cam.depth_max
                )
                cam.max_disparity = disparity_depth_conversion(
                    rig.f, cam.baseline, cam.depth_min
                )
            else:
                cam.min_disparity = cam.max_disparity = 0.0

        # Rig-wide bounds follow the first selected view
        disparity_camera = rig.cameras[subset[0]]
        params.min_disparity = disparity_camera.min_disparity
        params.max_disparity = disparity_camera.max_disparity

        rig.view_selection_subset = subset
        rig.cols = params.cols = width
        rig.rows = params.rows = height

        lines = self.state.lines
        lines.resize(width * height)
        lines.s = width
        lines.l = width

        self.planned_size = (width, height)
        logger.info(
            "Planned %dx%d: views %s, disparity [%.3f, %.3f]",
            width,
            height,
            subset,
            params.min_disparity,
            params.max_disparity,
        )
        return True
