"""Patch-match stereo kernel: validation, lazy planning and batch execution."""

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

import numpy as np
import torch

from .calibration import build_camera_rig
from .config import KernelArgs, parse_kernel_args
from .dense import (
    AlgorithmParameters,
    DenseSolver,
    PatchMatchSolver,
    ResultLines,
    SolverState,
)
from .device import DeviceHandle, select_device
from .errors import KernelConfigError, PreconditionViolation
from .planning import FrameGeometryPlanner
from .preprocess import decode_gray_frame
from .textures import TextureSlots

logger = logging.getLogger(__name__)

# Each camera contributes an image channel and a frame-metadata channel
CHANNELS_PER_CAMERA = 2

# (normal x, normal y, normal z, depth)
OUTPUT_CHANNELS = 4


@dataclass
class Result:
    """Validity status reported to the host runtime."""

    success: bool = True
    msg: str = ""


@dataclass(frozen=True)
class FrameInfo:
    """Per-frame metadata carried alongside each camera image."""

    width: int
    height: int

    @classmethod
    def from_row(cls, row: "FrameInfo | Mapping[str, int]") -> "FrameInfo":
        """Accept a FrameInfo or a mapping with width/height keys."""
        if isinstance(row, FrameInfo):
            return row
        return cls(width=int(row["width"]), height=int(row["height"]))


@dataclass
class KernelConfig:
    """Construction parameters supplied by the host runtime.

    Attributes:
        devices: Devices assigned to the kernel (the first one is used).
        args: Serialized kernel arguments (JSON bytes/str, mapping or KernelArgs).
        input_columns: Names of the input columns, alternating camera image and
            frame metadata.
    """

    devices: list[DeviceHandle] = field(default_factory=lambda: [DeviceHandle()])
    args: Any = b""
    input_columns: list[str] = field(default_factory=list)


class PatchMatchKernel:
    """Multi-view stereo kernel producing a depth/normal map per frame-set.

    Construction never raises on configuration errors: they are recorded and
    reported by ``validate()``, and the kernel stays inert. Every entry point
    re-binds the kernel's device.

    Args:
        config: Host-supplied construction parameters.
        solver: Dense solver; defaults to PatchMatchSolver.
        textures: Texture slot set; defaults to a fresh TextureSlots.
    """

    def __init__(
        self,
        config: KernelConfig,
        solver: DenseSolver | None = None,
        textures: TextureSlots | None = None,
    ):
        if not config.devices:
            raise RuntimeError("PatchMatchKernel: no device assigned")
        self.device_handle = config.devices[0]
        self.device = self.set_device()

        self.solver = solver if solver is not None else PatchMatchSolver()
        self.textures = textures if textures is not None else TextureSlots()

        self.valid = Result(success=True)
        self.args: KernelArgs | None = None
        self.state: SolverState | None = None
        self.planner: FrameGeometryPlanner | None = None
        self.num_cameras = 0

        try:
            self.args = parse_kernel_args(config.args)
        except ValueError as e:
            self._invalidate(f"PatchMatchKernel could not parse kernel args: {e}")
            return

        self.num_cameras = len(self.args.cameras)
        if self.num_cameras == 0:
            self._invalidate("PatchMatchKernel args specified no cameras")
            return

        params = AlgorithmParameters.from_args(self.args)

        expected = self.num_cameras * CHANNELS_PER_CAMERA
        observed = len(config.input_columns)
        if expected != observed:
            self._invalidate(
                f"PatchMatchKernel args specified {self.num_cameras} cameras "
                f"(expecting {expected} input columns) but received {observed} "
                f"columns as input"
            )
            return

        rig = build_camera_rig(self.args.projection_matrices)
        self.state = SolverState(
            rig=rig.to(self.device),
            params=params,
            lines=ResultLines(self.device),
        )
        self.planner = FrameGeometryPlanner(self.state)
        logger.info(
            "PatchMatchKernel ready: %d cameras on %s", self.num_cameras, self.device
        )

    def _invalidate(self, msg: str) -> None:
        self.valid = Result(success=False, msg=msg)
        logger.error(msg)

    def set_device(self) -> torch.device:
        """Bind this kernel's device for the current call."""
        return select_device(self.device_handle)

    def validate(self) -> Result:
        """Report whether the kernel is usable."""
        return Result(success=self.valid.success, msg=self.valid.msg)

    @property
    def planned_size(self) -> tuple[int, int] | None:
        """Resolution the solver state is planned for, if any."""
        return self.planner.planned_size if self.planner is not None else None

    def new_frame_info(self, width: int, height: int) -> None:
        """Plan solver geometry for a (new) frame resolution.

        Repeated calls with an already planned resolution do nothing. A rig
        whose view selection comes out empty invalidates the kernel.

        Args:
            width: Frame width in pixels.
            height: Frame height in pixels.
        """
        self.set_device()

        if not self.valid.success:
            logger.error("new_frame_info on invalid kernel: %s", self.valid.msg)
            return

        try:
            self.planner.plan(width, height)
        except KernelConfigError as e:
            self._invalidate(f"PatchMatchKernel planning failed: {e}")

    def _check_frame_info(self, frame_info: Sequence[Any]) -> tuple[int, int]:
        """Plan lazily from the batch's frame metadata."""
        info = FrameInfo.from_row(frame_info[0])
        if self.planned_size != (info.width, info.height):
            self.new_frame_info(info.width, info.height)
        return info.width, info.height

    def _new_block_buffer(self, rows: int, pixels: int) -> torch.Tensor:
        """Host output block holding ``rows`` results (pinned for CUDA)."""
        return torch.empty(
            rows,
            pixels,
            OUTPUT_CHANNELS,
            dtype=torch.float32,
            pin_memory=self.device.type == "cuda",
        )

    def execute(self, input_columns: Sequence[Sequence[Any]]) -> list[list[np.ndarray]]:
        """Process a batch of frame-sets.

        Args:
            input_columns: Aligned columns, alternating per camera between raw
                BGR frame buffers and FrameInfo rows.

        Returns:
            One output column with one (height, width, 4) float32 array per
            input row, in input order. Empty when the kernel is invalid.

        Raises:
            PreconditionViolation: If the column layout or a frame buffer does
                not match the configuration and planned resolution.
        """
        self.set_device()

        if not self.valid.success:
            logger.error("execute on invalid kernel: %s", self.valid.msg)
            return [[]]

        if len(input_columns) != self.num_cameras * CHANNELS_PER_CAMERA:
            raise PreconditionViolation(
                f"expected {self.num_cameras * CHANNELS_PER_CAMERA} input columns, "
                f"got {len(input_columns)}"
            )

        input_count = len(input_columns[0])
        if input_count == 0:
            return [[]]

        width, height = self._check_frame_info(input_columns[1])
        if not self.valid.success:
            logger.error("execute on invalid kernel: %s", self.valid.msg)
            return [[]]

        output_block = self._new_block_buffer(input_count, width * height)
        rows = []
        for i in range(input_count):
            grayscale = [
                decode_gray_frame(
                    input_columns[c * CHANNELS_PER_CAMERA][i], width, height
                )
                for c in range(self.num_cameras)
            ]

            with self.textures.bound(grayscale, self.device, (width, height)) as tex:
                self.solver.solve(self.state, tex.data)
                output_block[i].copy_(self.state.lines.norm4)

            rows.append(output_block[i].view(height, width, OUTPUT_CHANNELS).numpy())
            logger.debug("Frame %d/%d solved", i + 1, input_count)

        return [rows]
