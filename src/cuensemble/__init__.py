"""
cuensemble: batched GPU integration of ODE and SDE ensembles
"""

from importlib.metadata import PackageNotFoundError, version

# Numba warns about under-occupied grids when small ensembles are launched.
# Users cannot act on it, so it is filtered at import time.
import warnings
from numba.core.errors import NumbaPerformanceWarning
warnings.filterwarnings("ignore", category=NumbaPerformanceWarning)

from cuensemble.algorithms import *     # noqa
from cuensemble.problems import *       # noqa
from cuensemble.callbacks import CallbackSet, DiscreteCallback  # noqa
from cuensemble.batchsolving import *   # noqa

__all__ = [
    "GPUTsit5",
    "GPUVern7",
    "GPUVern9",
    "GPUERK",
    "GPUEM",
    "GPUSIEA",
    "get_algorithm",
    "ODEProblem",
    "SDEProblem",
    "EnsembleProblem",
    "ProblemBatch",
    "remake",
    "DiscreteCallback",
    "CallbackSet",
    "vectorized_solve",
    "vectorized_asolve",
    "solve_ensemble",
    "EnsembleSolution",
    "TrajectorySolution",
]

try:
    __version__ = version("cuensemble")
except PackageNotFoundError:
    # Package is not installed
    __version__ = "unknown"
