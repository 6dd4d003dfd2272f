"""Shared pytest fixtures for patchmvs tests."""

import numpy as np
import pytest
import torch


@pytest.fixture(params=["cpu", "cuda"])
def device(request):
    """Parametrized device fixture for CPU and CUDA testing.

    Args:
        request: pytest fixture request object.

    Returns:
        torch.device: Device to use for testing.

    Raises:
        pytest.skip: If CUDA is requested but not available.
    """
    if request.param == "cuda" and not torch.cuda.is_available():
        pytest.skip("CUDA not available")
    return torch.device(request.param)


def _projection(f, cx, cy, R=None, center=(0.0, 0.0, 0.0)):
    K = np.array([[f, 0.0, cx], [0.0, f, cy], [0.0, 0.0, 1.0]])
    R = np.eye(3) if R is None else np.asarray(R, dtype=np.float64)
    t = -R @ np.asarray(center, dtype=np.float64)
    return K @ np.hstack([R, t.reshape(3, 1)])


@pytest.fixture
def make_projection():
    """Factory building P = K [R | -R C] for a pinhole camera.

    Returns:
        Callable (f, cx, cy, R=None, center=(0, 0, 0)) -> (3, 4) float64 array.
    """
    return _projection


@pytest.fixture
def stereo_projections():
    """Two cameras, focal length 700, 10-unit baseline along x."""
    return [
        _projection(700.0, 320.0, 240.0),
        _projection(700.0, 320.0, 240.0, center=(10.0, 0.0, 0.0)),
    ]


@pytest.fixture
def stereo_args(stereo_projections):
    """Kernel args for the two-camera rig with depth range [1, 100]."""
    return {
        "cameras": [
            {"name": f"cam{i}", "p": P.reshape(-1).tolist()}
            for i, P in enumerate(stereo_projections)
        ],
        "min_depth": 1.0,
        "max_depth": 100.0,
        "iterations": 2,
        "kernel_width": 3,
        "kernel_height": 3,
        "seed": 0,
    }
