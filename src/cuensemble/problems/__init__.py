"""Problem definitions and ensemble batching."""

from cuensemble.problems.problems import (
    NOISE_TYPES,
    ODEProblem,
    SDEProblem,
    is_diagonal_noise,
    remake,
)
from cuensemble.problems.ensemble import (
    EnsembleProblem,
    ProblemBatch,
    get_device,
    maybe_prefer_blocks,
)

__all__ = [
    "NOISE_TYPES",
    "ODEProblem",
    "SDEProblem",
    "is_diagonal_noise",
    "remake",
    "EnsembleProblem",
    "ProblemBatch",
    "get_device",
    "maybe_prefer_blocks",
]
