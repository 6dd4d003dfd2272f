"""Protocol definition for dense multi-view stereo solvers."""

from typing import Protocol, runtime_checkable

import torch

from .state import SolverState


@runtime_checkable
class DenseSolver(Protocol):
    """Protocol for dense depth/normal solvers.

    A solver consumes the calibrated rig and algorithm parameters held by a
    planned ``SolverState`` plus one frame-set of grayscale textures, and
    writes its per-pixel result into ``state.lines`` in place. Calls are
    synchronous: results are complete when ``solve`` returns.
    """

    def solve(self, state: SolverState, textures: torch.Tensor) -> None:
        """Estimate depth and normal for every pixel of the reference view.

        Args:
            state: Planned solver state. ``state.lines.norm4`` (n, 4) receives
                (normal x, normal y, normal z, depth) and ``state.lines.cost``
                (n,) the matching cost, with n = width * height.
            textures: Grayscale images of all cameras, shape (N, H, W),
                float32 in [0, 255], on the kernel device.
        """
        ...
