"""Shared configuration and integration loop for the ensemble kernels.

Each trajectory runs in one thread. The thread copies its initial state into
local memory, walks the :class:`~cuensemble.batchsolving.time_grid.TimeGrid`
stops, writes saved points into its column of the ``(n_saves,
n_trajectories, n_states)`` output and finally records a return code.
"""

import math
from typing import Callable, Optional

from attrs import define, field, validators
from numba import cuda, int32
import numpy as np

from cuensemble.CUDAFactory import CUDAFactoryConfig, CUDADispatcherCache
from cuensemble.cuda_simsafe import compile_kwargs
from cuensemble._utils import getype_validator
from cuensemble.kernels.step_control import (
    PIControllerSettings,
    build_error_norm,
    build_pi_controller,
)

#: Trajectory finished at ``tf``.
SUCCESS = 0
#: The adaptive controller proposed a step below ``dt_min``.
DT_LESS_THAN_MIN = 1
#: The step budget ``max_iters`` was exhausted.
MAX_ITERS = 2
#: The state stopped being finite.
NONFINITE = 3

RETCODE_NAMES = {
    SUCCESS: "Success",
    DT_LESS_THAN_MIN: "DtLessThanMin",
    MAX_ITERS: "MaxIters",
    NONFINITE: "Unstable",
}


@define
class EnsembleKernelConfig(CUDAFactoryConfig):
    """Compile settings common to every ensemble kernel.

    Attributes
    ----------
    n
        Number of states.
    f
        Drift device function ``f(u, p, t, du)``.
    condition, affect
        Optional discrete callback device functions.
    adaptive
        Whether steps are accepted through the PI controller.
    debug
        Compile with debug info and without optimisation.
    """

    n: int = field(default=1, validator=getype_validator(int, 1))
    f: Optional[Callable] = field(default=None, eq=False)
    condition: Optional[Callable] = field(default=None, eq=False)
    affect: Optional[Callable] = field(default=None, eq=False)
    adaptive: bool = field(
        default=False, validator=validators.instance_of(bool)
    )
    controller: PIControllerSettings = field(factory=PIControllerSettings)
    debug: bool = field(
        default=False, validator=validators.instance_of(bool)
    )

    @property
    def has_callback(self) -> bool:
        return self.condition is not None


@define
class EnsembleKernelCache(CUDADispatcherCache):
    """Build output of the ensemble kernel factories."""

    kernel: Callable = field()


def build_integration_loop(
    config: EnsembleKernelConfig, step_fn: Callable, order: int
) -> Callable:
    """Return the per-trajectory stepping loop as a device function.

    Parameters
    ----------
    config
        Kernel compile settings.
    step_fn
        Device function ``step(u, u_new, error, p, t, h, rng_states, idx)``
        writing the proposed state into ``u_new`` and, for adaptive kernels,
        the local error estimate into ``error``.
    order
        Order used to scale the controller gains.

    Returns
    -------
    Callable
        ``loop(u0s, p, us, ts, idx, stops, save_mask, save_start, t0, dt,
        dt_min, abstol, reltol, max_iters, rng_states) -> retcode``.
    """
    precision = config.precision
    n = config.n
    adaptive = config.adaptive
    has_callback = config.has_callback
    condition = config.condition
    affect = config.affect
    error_norm = build_error_norm(n, precision)
    controller = build_pi_controller(config.controller, order, precision)

    zero = precision(0.0)
    one = precision(1.0)
    landing_slack = precision(64.0 * np.finfo(precision).eps)
    norm_floor = precision(1e-4)
    success = int32(SUCCESS)
    dt_too_small = int32(DT_LESS_THAN_MIN)
    max_iters_hit = int32(MAX_ITERS)
    nonfinite = int32(NONFINITE)

    # no cover: start
    @cuda.jit(device=True, inline=True)
    def save_point(us, ts, save_idx, idx, u, t):
        for i in range(n):
            us[save_idx, idx, i] = u[i]
        ts[save_idx, idx] = t

    @cuda.jit(device=True, inline=True)
    def is_finite(u):
        for i in range(n):
            value = u[i]
            if math.isnan(value) or math.isinf(value):
                return False
        return True

    @cuda.jit(device=True, inline=True)
    def integration_loop(
        u0s,
        p,
        us,
        ts,
        idx,
        stops,
        save_mask,
        save_start,
        t0,
        dt,
        dt_min,
        abstol,
        reltol,
        max_iters,
        rng_states,
    ):
        u = cuda.local.array(n, precision)
        u_new = cuda.local.array(n, precision)
        error = cuda.local.array(n, precision)
        for i in range(n):
            u[i] = u0s[idx, i]
            error[i] = zero

        t = t0
        save_idx = 0
        if save_start != 0:
            save_point(us, ts, save_idx, idx, u, t)
            save_idx += 1

        status = success
        iters = 0
        norm_prev = one
        for k in range(stops.shape[0]):
            target = stops[k]
            while t < target:
                if iters >= max_iters:
                    status = max_iters_hit
                    break
                iters += 1

                h = dt
                land = False
                # absorb roundoff so a step never leaves a sliver behind
                if t + h >= target - landing_slack * max(abs(target), one):
                    h = target - t
                    land = True

                step_fn(u, u_new, error, p, t, h, rng_states, idx)

                accepted = True
                if adaptive:
                    norm = error_norm(error, u, u_new, abstol, reltol)
                    accepted = norm <= one
                    gain = controller(norm, norm_prev, accepted)
                    proposal = h * gain
                    if accepted:
                        norm_prev = max(norm, norm_floor)
                        if land:
                            dt = max(dt, proposal)
                        else:
                            dt = proposal
                    else:
                        if proposal < dt_min:
                            status = dt_too_small
                            break
                        dt = proposal

                if accepted:
                    for i in range(n):
                        u[i] = u_new[i]
                    if land:
                        t = target
                    else:
                        t = t + h
                    if has_callback:
                        if condition(u, t, p):
                            affect(u, t, p)
                    if not is_finite(u):
                        status = nonfinite
                        break

            if status != success:
                break
            if save_mask[k] != 0:
                save_point(us, ts, save_idx, idx, u, t)
                save_idx += 1

        return status

    # no cover: end
    return integration_loop


def kernel_jit_kwargs(config: EnsembleKernelConfig) -> dict:
    """Return ``cuda.jit`` options for a kernel built from ``config``."""
    kwargs = dict(compile_kwargs)
    if config.debug:
        kwargs.update(debug=True, opt=False)
    return kwargs
