import math

import numpy as np
import pytest
from numba import cuda

from cuensemble.kernels.step_control import (
    PIControllerSettings,
    build_error_norm,
    build_pi_controller,
)


def run_controller(controller, norms, prevs, accepted):
    norms = np.asarray(norms, dtype=np.float64)
    prevs = np.asarray(prevs, dtype=np.float64)
    accepted = np.asarray(accepted, dtype=np.int32)
    out = np.zeros_like(norms)

    @cuda.jit
    def controller_kernel(norms, prevs, accepted, out):
        i = cuda.grid(1)
        if i < out.shape[0]:
            out[i] = controller(norms[i], prevs[i], accepted[i] != 0)

    controller_kernel[1, out.shape[0]](norms, prevs, accepted, out)
    return out


def run_norm(error_norm, error, u, u_new, abstol, reltol):
    out = np.zeros(1)

    @cuda.jit
    def norm_kernel(error, u, u_new, out):
        out[0] = error_norm(error, u, u_new, abstol, reltol)

    norm_kernel[1, 1](
        np.asarray(error, dtype=np.float64),
        np.asarray(u, dtype=np.float64),
        np.asarray(u_new, dtype=np.float64),
        out,
    )
    return out[0]


def test_default_settings():
    settings = PIControllerSettings()
    assert settings.kp == 0.4
    assert settings.ki == 0.7
    assert settings.safety == 0.9
    assert (settings.min_gain, settings.max_gain) == (0.2, 10.0)


@pytest.mark.parametrize(
    "kwargs", [dict(ki=0.0), dict(safety=-1.0), dict(max_gain=0.5)]
)
def test_invalid_settings(kwargs):
    with pytest.raises(ValueError):
        PIControllerSettings(**kwargs)


def test_controller_gains():
    order = 5
    controller = build_pi_controller(
        PIControllerSettings(), order, np.float64
    )
    gains = run_controller(
        controller,
        norms=[1.0, 0.5, 1e-12, 1e6, 2.0, 0.1, math.nan],
        prevs=[1.0, 1.0, 1.0, 1.0, 1.0, 1.0, 1.0],
        accepted=[1, 1, 1, 0, 0, 0, 0],
    )
    beta1 = 0.7 / order
    np.testing.assert_allclose(gains[0], 0.9)
    np.testing.assert_allclose(gains[1], 0.9 * 0.5 ** (-beta1))
    assert gains[2] == 10.0
    assert gains[3] == pytest.approx(0.2)
    np.testing.assert_allclose(gains[4], 0.9 * 2.0 ** (-beta1))
    # a rejected step never grows
    assert gains[5] == 1.0
    assert gains[6] == pytest.approx(0.2)


def test_previous_norm_damps_growth():
    controller = build_pi_controller(PIControllerSettings(), 5, np.float64)
    gains = run_controller(
        controller, norms=[0.5, 0.5], prevs=[1.0, 0.01], accepted=[1, 1]
    )
    assert gains[1] < gains[0]


def test_error_norm_is_scaled_rms():
    error_norm = build_error_norm(2, np.float64)
    norm = run_norm(
        error_norm,
        error=[0.1, 0.2],
        u=[1.0, 2.0],
        u_new=[0.5, 1.0],
        abstol=0.0,
        reltol=0.1,
    )
    assert norm == pytest.approx(1.0)


def test_error_norm_uses_absolute_floor():
    error_norm = build_error_norm(1, np.float64)
    norm = run_norm(
        error_norm, error=[1e-6], u=[0.0], u_new=[0.0],
        abstol=1e-6, reltol=1e-3,
    )
    assert norm == pytest.approx(1.0)
