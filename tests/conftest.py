import os

# Kernels run in the CUDA simulator unless a GPU run is requested explicitly.
# This must happen before numba is imported anywhere.
os.environ.setdefault("NUMBA_ENABLE_CUDASIM", "1")

from types import SimpleNamespace

import numpy as np
import pytest
from numba import cuda

from cuensemble.CUDAFactory import clear_build_cache

np.set_printoptions(linewidth=120, precision=12)


# --------------------------------------------------------------------------- #
#                             Example systems                                 #
# --------------------------------------------------------------------------- #
# Device functions are module level so every test sees the same objects, and
# kernels compiled for one test are reused by the next.

@cuda.jit(device=True, inline=True)
def decay_f(u, p, t, du):
    for i in range(u.shape[0]):
        du[i] = -p[0] * u[i]


@cuda.jit(device=True, inline=True)
def constant_f(u, p, t, du):
    for i in range(u.shape[0]):
        du[i] = p[0]


@cuda.jit(device=True, inline=True)
def time_f(u, p, t, du):
    du[0] = t


@cuda.jit(device=True, inline=True)
def oscillator_f(u, p, t, du):
    du[0] = u[1]
    du[1] = -p[0] * p[0] * u[0]


@cuda.jit(device=True, inline=True)
def blowup_f(u, p, t, du):
    du[0] = u[0] * u[0]


@cuda.jit(device=True, inline=True)
def gbm_f(u, p, t, du):
    for i in range(u.shape[0]):
        du[i] = p[0] * u[i]


@cuda.jit(device=True, inline=True)
def gbm_g(u, p, t, du):
    for i in range(u.shape[0]):
        du[i] = p[1] * u[i]


@cuda.jit(device=True, inline=True)
def zero_g(u, p, t, du):
    for i in range(u.shape[0]):
        du[i] = 0.0


@cuda.jit(device=True, inline=True)
def additive_g(u, p, t, du):
    for i in range(u.shape[0]):
        du[i] = p[1]


@cuda.jit(device=True, inline=True)
def general_zero_g(u, p, t, du):
    for i in range(du.shape[0]):
        for j in range(du.shape[1]):
            du[i, j] = 0.0


@cuda.jit(device=True, inline=True)
def general_additive_g(u, p, t, du):
    # both states share the first Wiener process
    for i in range(du.shape[0]):
        for j in range(du.shape[1]):
            du[i, j] = 0.0
        du[i, 0] = p[1]


@cuda.jit(device=True, inline=True)
def reset_condition(u, t, p):
    return u[0] < 0.5


@cuda.jit(device=True, inline=True)
def reset_affect(u, t, p):
    u[0] = 1.0


@cuda.jit(device=True, inline=True)
def kick_condition(u, t, p):
    return t == 0.5


@cuda.jit(device=True, inline=True)
def kick_affect(u, t, p):
    u[0] = u[0] + 1.0


SYSTEMS = SimpleNamespace(
    decay_f=decay_f,
    constant_f=constant_f,
    time_f=time_f,
    oscillator_f=oscillator_f,
    blowup_f=blowup_f,
    gbm_f=gbm_f,
    gbm_g=gbm_g,
    zero_g=zero_g,
    additive_g=additive_g,
    general_zero_g=general_zero_g,
    general_additive_g=general_additive_g,
    reset_condition=reset_condition,
    reset_affect=reset_affect,
    kick_condition=kick_condition,
    kick_affect=kick_affect,
)


@pytest.fixture(scope="session")
def systems():
    """Return the shared example device functions."""
    return SYSTEMS


# --------------------------------------------------------------------------- #
#                               Settings                                      #
# --------------------------------------------------------------------------- #

@pytest.fixture(scope="function")
def precision_override(request):
    return request.param if hasattr(request, "param") else None


@pytest.fixture(scope="function")
def precision(precision_override):
    """Return precision from an override, defaulting to float64.

    Usage:
    @pytest.mark.parametrize("precision_override", [np.float32],
        indirect=True)
    def test_something(precision):
        # precision will be np.float32 here
    """
    if precision_override is not None:
        return precision_override
    return np.float64


@pytest.fixture(scope="function")
def tolerance(precision):
    """Absolute and relative tolerances for comparing device results."""
    if precision == np.float32:
        return SimpleNamespace(abs=1e-5, rel=1e-4)
    return SimpleNamespace(abs=1e-10, rel=1e-8)


@pytest.fixture(scope="session", autouse=True)
def build_cache():
    """Start the session from an empty kernel cache."""
    clear_build_cache()
    yield
    clear_build_cache()
