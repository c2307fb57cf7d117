"""Batched solve entry points."""

from cuensemble.batchsolving.time_grid import TimeGrid, plan_length
from cuensemble.batchsolving.vectorized_solve import (
    vectorized_asolve,
    vectorized_solve,
)
from cuensemble.batchsolving.ensemble_solve import (
    EnsembleSolution,
    TrajectorySolution,
    solve_ensemble,
)

__all__ = [
    "TimeGrid",
    "plan_length",
    "vectorized_asolve",
    "vectorized_solve",
    "EnsembleSolution",
    "TrajectorySolution",
    "solve_ensemble",
]
