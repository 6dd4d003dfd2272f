"""Dense depth/normal estimation: solver state, protocol and patch match."""

from .cost import (
    INVALID_COST,
    PatchNccAccumulator,
    aggregate_best_costs,
    sample_bilinear,
)
from .patch_match import PatchMatchSolver
from .protocol import DenseSolver
from .state import (
    MAX_ANGLE,
    MIN_ANGLE,
    AlgorithmParameters,
    ResultLines,
    SolverState,
)

__all__ = [
    "INVALID_COST",
    "MAX_ANGLE",
    "MIN_ANGLE",
    "AlgorithmParameters",
    "DenseSolver",
    "PatchMatchSolver",
    "PatchNccAccumulator",
    "ResultLines",
    "SolverState",
    "aggregate_best_costs",
    "sample_bilinear",
]
