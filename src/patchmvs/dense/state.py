"""Solver parameters and per-kernel solver state."""

from dataclasses import dataclass, field

import torch

from ..calibration import CameraRig
from ..config import KernelArgs

# View-selection angle bounds (degrees); not user-configurable
MIN_ANGLE = 1.0
MAX_ANGLE = 90.0


@dataclass
class AlgorithmParameters:
    """Parameters of the patch-match solver.

    Disparity bounds are derived by the frame-geometry planner from the depth
    bounds; the configured values are advisory only.
    """

    num_img_processed: int
    min_angle: float = MIN_ANGLE
    max_angle: float = MAX_ANGLE
    min_disparity: float = 0.0
    max_disparity: float = 256.0
    depth_min: float = 0.5
    depth_max: float = 10.0
    iterations: int = 8
    box_hsize: int = 15
    box_vsize: int = 15
    n_best: int = 2
    refinement_steps: int = 3
    seed: int | None = None
    cols: int = 0
    rows: int = 0

    @classmethod
    def from_args(cls, args: KernelArgs) -> "AlgorithmParameters":
        """Build parameters from validated kernel arguments."""
        return cls(
            num_img_processed=len(args.cameras),
            min_disparity=args.min_disparity,
            max_disparity=args.max_disparity,
            depth_min=args.min_depth,
            depth_max=args.max_depth,
            iterations=args.iterations,
            box_hsize=args.kernel_width,
            box_vsize=args.kernel_height,
            n_best=args.n_best,
            refinement_steps=args.refinement_steps,
            seed=args.seed,
        )


class ResultLines:
    """Per-pixel result buffer written by the solver.

    Attributes:
        n: Number of pixels held.
        s: Row stride (pixels).
        l: Line length (pixels).
        norm4: Per-pixel (normal x, normal y, normal z, depth), shape (n, 4).
        cost: Per-pixel matching cost, shape (n,).
    """

    def __init__(self, device: torch.device | str = "cpu"):
        self.device = torch.device(device)
        self.n = 0
        self.s = 0
        self.l = 0
        self.norm4 = torch.zeros(0, 4, dtype=torch.float32, device=self.device)
        self.cost = torch.zeros(0, dtype=torch.float32, device=self.device)

    def resize(self, n: int) -> None:
        """Reallocate the buffers to hold ``n`` pixels (no-op if unchanged)."""
        if n == self.n and self.norm4.shape[0] == n:
            return
        self.n = n
        self.norm4 = torch.zeros(n, 4, dtype=torch.float32, device=self.device)
        self.cost = torch.zeros(n, dtype=torch.float32, device=self.device)


@dataclass
class SolverState:
    """Mutable solver state owned by exactly one kernel instance."""

    rig: CameraRig
    params: AlgorithmParameters
    lines: ResultLines = field(default_factory=ResultLines)
