"""Tests for camera rig construction."""

import math

import numpy as np
import pytest
import torch

from patchmvs.calibration import (
    CameraRig,
    build_camera_rig,
    decompose_projection_matrix,
)
from patchmvs.errors import PreconditionViolation


def _rotation_y(angle_deg: float) -> np.ndarray:
    a = math.radians(angle_deg)
    return np.array(
        [[math.cos(a), 0.0, math.sin(a)], [0.0, 1.0, 0.0], [-math.sin(a), 0.0, math.cos(a)]]
    )


class TestDecomposeProjectionMatrix:
    """Tests for decompose_projection_matrix()."""

    def test_recovers_known_parameters(self, make_projection):
        """Test decomposition of P = K [R | t] with a rotated camera."""
        R = _rotation_y(15.0)
        center = np.array([0.3, -0.2, 1.5])
        P = make_projection(500.0, 320.0, 240.0, R=R, center=center)

        K, R_out, t_out = decompose_projection_matrix(P)

        np.testing.assert_allclose(
            K, [[500.0, 0.0, 320.0], [0.0, 500.0, 240.0], [0.0, 0.0, 1.0]], atol=1e-6
        )
        np.testing.assert_allclose(R_out, R, atol=1e-9)
        np.testing.assert_allclose(t_out, -R @ center, atol=1e-9)

    def test_scale_and_sign_invariant(self, make_projection):
        """Test that P and -2.5 * P decompose to the same camera."""
        P = make_projection(800.0, 100.0, 50.0, R=_rotation_y(-30.0), center=(1, 2, 3))

        K_a, R_a, t_a = decompose_projection_matrix(P)
        K_b, R_b, t_b = decompose_projection_matrix(-2.5 * P)

        np.testing.assert_allclose(K_a, K_b, atol=1e-6)
        np.testing.assert_allclose(R_a, R_b, atol=1e-9)
        np.testing.assert_allclose(t_a, t_b, atol=1e-9)
        assert np.linalg.det(R_b) == pytest.approx(1.0)

    def test_wrong_shape(self):
        """Test that a 3x3 matrix is a precondition violation."""
        with pytest.raises(PreconditionViolation, match="3x4"):
            decompose_projection_matrix(np.eye(3))

    def test_singular(self):
        """Test that a singular left block is a precondition violation."""
        with pytest.raises(PreconditionViolation, match="singular"):
            decompose_projection_matrix(np.zeros((3, 4)))


class TestBuildCameraRig:
    """Tests for build_camera_rig()."""

    def test_stereo_pair(self, stereo_projections):
        """Test baseline and focal length of the 10-unit stereo pair."""
        rig = build_camera_rig(stereo_projections)

        assert isinstance(rig, CameraRig)
        assert rig.num_cameras == 2
        assert rig.reference == 0
        assert rig.f == pytest.approx(700.0)
        assert rig.cameras[0].baseline == pytest.approx(0.0, abs=1e-9)
        assert rig.cameras[1].baseline == pytest.approx(10.0)
        assert rig.view_selection_subset == []

    def test_reference_frame_normalization(self, make_projection):
        """Test that cameras are expressed in the reference camera frame."""
        R0 = _rotation_y(20.0)
        C0 = np.array([1.0, 0.5, -2.0])
        R1 = _rotation_y(35.0)
        C1 = np.array([2.0, 0.5, -2.0])
        rig = build_camera_rig(
            [
                make_projection(600.0, 320.0, 240.0, R=R0, center=C0),
                make_projection(600.0, 320.0, 240.0, R=R1, center=C1),
            ]
        )

        ref = rig.cameras[0]
        assert torch.allclose(ref.R, torch.eye(3), atol=1e-6)
        assert torch.allclose(ref.t, torch.zeros(3), atol=1e-5)
        assert torch.allclose(ref.C, torch.zeros(3), atol=1e-5)

        # Relative rotation is 15 degrees about y; baseline is |C1 - C0|
        expected_R = torch.from_numpy(_rotation_y(15.0)).float()
        assert torch.allclose(rig.cameras[1].R, expected_R, atol=1e-6)
        assert rig.cameras[1].baseline == pytest.approx(1.0)

        expected_C = torch.from_numpy(R0 @ (C1 - C0)).float()
        assert torch.allclose(rig.cameras[1].C, expected_C, atol=1e-5)

    def test_projection_consistency(self, make_projection):
        """Test that relative P maps points like the input matrices."""
        R1 = _rotation_y(-10.0)
        P0 = make_projection(500.0, 320.0, 240.0, center=(0.0, 0.0, 0.0))
        P1 = make_projection(520.0, 300.0, 250.0, R=R1, center=(0.5, 0.1, 0.0))
        rig = build_camera_rig([P0, P1])

        X = np.array([0.2, -0.1, 4.0, 1.0])
        x_orig = P1 @ X
        x_orig = x_orig[:2] / x_orig[2]

        x_rel = rig.cameras[1].P.double().numpy() @ X
        x_rel = x_rel[:2] / x_rel[2]

        np.testing.assert_allclose(x_rel, x_orig, atol=1e-3)

    def test_flat_entries_accepted(self, stereo_projections):
        """Test that 12-entry flattened matrices are reshaped."""
        flat = [P.reshape(-1).tolist() for P in stereo_projections]
        rig = build_camera_rig(flat)
        assert rig.cameras[1].baseline == pytest.approx(10.0)

    def test_non_default_reference(self, stereo_projections):
        """Test choosing camera 1 as reference."""
        rig = build_camera_rig(stereo_projections, reference=1)
        assert rig.cameras[1].baseline == pytest.approx(0.0, abs=1e-9)
        assert rig.cameras[0].baseline == pytest.approx(10.0)

    def test_reference_out_of_range(self, stereo_projections):
        """Test that an invalid reference index is rejected."""
        with pytest.raises(PreconditionViolation, match="out of range"):
            build_camera_rig(stereo_projections, reference=2)

    def test_malformed_matrix(self, stereo_projections):
        """Test that a 2x4 matrix is rejected."""
        with pytest.raises(PreconditionViolation):
            build_camera_rig([stereo_projections[0], np.zeros((2, 4))])

    def test_to_device(self, stereo_projections, device):
        """Test moving rig tensors to a device."""
        rig = build_camera_rig(stereo_projections).to(device)
        for cam in rig.cameras:
            assert cam.P.device.type == device.type
            assert cam.K.device.type == device.type
            assert cam.C.device.type == device.type
