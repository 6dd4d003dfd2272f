"""Patch-match multi-view stereo depth estimation for calibrated camera rigs."""

from .calibration import (
    CameraData,
    CameraRig,
    build_camera_rig,
    decompose_projection_matrix,
)
from .config import CameraArgs, KernelArgs, RunConfig, parse_kernel_args
from .dense import (
    AlgorithmParameters,
    DenseSolver,
    PatchMatchSolver,
    ResultLines,
    SolverState,
)
from .device import DeviceHandle, select_device
from .errors import KernelConfigError, PreconditionViolation, ViewSelectionError
from .io import ImageDirectorySet, load_points, save_points
from .kernel import FrameInfo, KernelConfig, PatchMatchKernel, Result
from .planning import FrameGeometryPlanner, disparity_depth_conversion, select_views
from .preprocess import decode_gray_frame
from .registry import KernelRegistry, OpSpec, register_builtin_kernels
from .runner import run_reconstruction
from .textures import TextureArray, TextureSlots

__version__ = "0.1.0"

__all__ = [
    "CameraArgs",
    "KernelArgs",
    "RunConfig",
    "parse_kernel_args",
    "CameraData",
    "CameraRig",
    "build_camera_rig",
    "decompose_projection_matrix",
    "AlgorithmParameters",
    "DenseSolver",
    "PatchMatchSolver",
    "ResultLines",
    "SolverState",
    "DeviceHandle",
    "select_device",
    "KernelConfigError",
    "PreconditionViolation",
    "ViewSelectionError",
    "FrameGeometryPlanner",
    "disparity_depth_conversion",
    "select_views",
    "decode_gray_frame",
    "TextureArray",
    "TextureSlots",
    "FrameInfo",
    "KernelConfig",
    "PatchMatchKernel",
    "Result",
    "KernelRegistry",
    "OpSpec",
    "register_builtin_kernels",
    "ImageDirectorySet",
    "load_points",
    "save_points",
    "run_reconstruction",
]
