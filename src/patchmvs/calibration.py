"""Camera rig construction from raw projection matrices."""

import logging
from dataclasses import dataclass, field

import cv2
import numpy as np
import torch

from .errors import PreconditionViolation

logger = logging.getLogger(__name__)


@dataclass
class CameraData:
    """Per-camera geometry expressed in the reference camera frame.

    Attributes:
        P: Projection matrix K [R | t], shape (3, 4), float32.
        K: Intrinsic matrix, shape (3, 3), float32.
        R: Rotation matrix (reference frame to camera), shape (3, 3), float32.
        t: Translation vector (reference frame to camera), shape (3,), float32.
        C: Camera center in the reference frame, shape (3,), float32.
        baseline: Distance between this camera's center and the reference
            camera's center.
        depth_min: Nearest depth considered (set by the planner).
        depth_max: Farthest depth considered (set by the planner).
        min_disparity: Disparity at depth_max (set by the planner).
        max_disparity: Disparity at depth_min (set by the planner).
    """

    P: torch.Tensor  # shape (3, 4), float32
    K: torch.Tensor  # shape (3, 3), float32
    R: torch.Tensor  # shape (3, 3), float32
    t: torch.Tensor  # shape (3,), float32
    C: torch.Tensor  # shape (3,), float32
    baseline: float
    depth_min: float = 0.0
    depth_max: float = 0.0
    min_disparity: float = 0.0
    max_disparity: float = 0.0


@dataclass
class CameraRig:
    """Calibrated multi-camera rig consumed by the dense solver.

    Attributes:
        cameras: Per-camera geometry, in configuration order.
        f: Focal length of the reference camera (pixels).
        reference: Index of the reference camera.
        view_selection_subset: Ordered indices of the cameras contributing to
            the reference view (filled by the planner).
        cols: Planned frame width (0 until planned).
        rows: Planned frame height (0 until planned).
    """

    cameras: list[CameraData]
    f: float
    reference: int = 0
    view_selection_subset: list[int] = field(default_factory=list)
    cols: int = 0
    rows: int = 0

    @property
    def num_cameras(self) -> int:
        """Number of cameras in the rig."""
        return len(self.cameras)

    @property
    def reference_camera(self) -> CameraData:
        """Geometry of the reference camera."""
        return self.cameras[self.reference]

    def to(self, device: torch.device | str) -> "CameraRig":
        """Move all camera tensors to ``device`` in place.

        Args:
            device: Target device.

        Returns:
            Self for method chaining.
        """
        for cam in self.cameras:
            cam.P = cam.P.to(device)
            cam.K = cam.K.to(device)
            cam.R = cam.R.to(device)
            cam.t = cam.t.to(device)
            cam.C = cam.C.to(device)
        return self


def decompose_projection_matrix(
    P: np.ndarray,
) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Decompose a projection matrix into intrinsics, rotation and translation.

    The overall scale and sign of P are normalized so that K[2, 2] = 1, K has
    a positive diagonal and R is a proper rotation.

    Args:
        P: Projection matrix, shape (3, 4).

    Returns:
        K: Intrinsic matrix, shape (3, 3), float64.
        R: Rotation matrix (world to camera), shape (3, 3), float64.
        t: Translation vector (world to camera), shape (3,), float64.

    Raises:
        PreconditionViolation: If P is not 3x4 or its left 3x3 block is singular.
    """
    P = np.asarray(P, dtype=np.float64)
    if P.shape != (3, 4):
        raise PreconditionViolation(f"projection matrix must be 3x4, got {P.shape}")

    # A negative determinant means P was scaled by a negative factor
    if np.linalg.det(P[:, :3]) < 0:
        P = -P
    if abs(np.linalg.det(P[:, :3])) < 1e-12:
        raise PreconditionViolation("projection matrix has a singular 3x3 block")

    K, R, C_h = cv2.decomposeProjectionMatrix(P)[:3]

    # Force a positive diagonal on K; flip the matching rows of R
    signs = np.sign(np.diag(K))
    signs[signs == 0] = 1.0
    S = np.diag(signs)
    K = K @ S
    R = S @ R
    K = K / K[2, 2]

    C = (C_h[:3] / C_h[3]).reshape(3)
    t = -R @ C

    return K, R, t


def build_camera_rig(
    projection_matrices: list[np.ndarray] | list[list[float]],
    reference: int = 0,
) -> CameraRig:
    """Build the rig model from raw projection matrices.

    Every camera is re-expressed in the frame of the reference camera, so the
    reference has R = I and t = 0. Baselines are camera-center distances to
    the reference, and the shared focal length is the reference's K[0, 0].

    Args:
        projection_matrices: One 3x4 matrix (or 12 row-major entries) per camera.
        reference: Index of the reference camera.

    Returns:
        CameraRig with an empty view-selection subset.

    Raises:
        PreconditionViolation: If any matrix is malformed or ``reference`` is
            out of range.
    """
    if not 0 <= reference < len(projection_matrices):
        raise PreconditionViolation(
            f"reference camera {reference} out of range for "
            f"{len(projection_matrices)} camera(s)"
        )

    decomposed = []
    for P in projection_matrices:
        P = np.asarray(P, dtype=np.float64)
        if P.size == 12 and P.ndim == 1:
            P = P.reshape(3, 4)
        decomposed.append(decompose_projection_matrix(P))

    _, R_ref, t_ref = decomposed[reference]

    cameras = []
    for K, R, t in decomposed:
        # Compose with the inverse reference pose: X_ref = R_ref X + t_ref
        R_rel = R @ R_ref.T
        t_rel = t - R_rel @ t_ref
        C_rel = -R_rel.T @ t_rel
        P_rel = K @ np.hstack([R_rel, t_rel.reshape(3, 1)])

        cameras.append(
            CameraData(
                P=torch.from_numpy(P_rel).to(torch.float32),
                K=torch.from_numpy(K).to(torch.float32),
                R=torch.from_numpy(R_rel).to(torch.float32),
                t=torch.from_numpy(t_rel).to(torch.float32),
                C=torch.from_numpy(C_rel).to(torch.float32),
                baseline=float(np.linalg.norm(C_rel)),
            )
        )

    f = float(decomposed[reference][0][0, 0])

    logger.debug(
        "Built rig with %d cameras (f=%.3f, baselines=%s)",
        len(cameras),
        f,
        [round(cam.baseline, 6) for cam in cameras],
    )

    return CameraRig(cameras=cameras, f=f, reference=reference)
