"""Fixed-step stochastic ensemble kernels: Euler--Maruyama and SIEA.

Brownian increments are drawn per trajectory from xoroshiro128p streams, so
a trajectory's noise depends only on the seed and its position in the
ensemble.
"""

import math
from typing import Callable, Optional

from attrs import define, field, validators
from numba import cuda
from numba.cuda.random import (
    xoroshiro128p_normal_float32,
    xoroshiro128p_normal_float64,
)
import numpy as np

from cuensemble.CUDAFactory import CUDAFactory
from cuensemble._utils import getype_validator
from cuensemble.kernels.base_kernel import (
    EnsembleKernelCache,
    EnsembleKernelConfig,
    build_integration_loop,
    kernel_jit_kwargs,
)

SDE_METHODS = ("em", "siea")

#: Weak order of each method, used only to scale controller gains.
_METHOD_ORDER = {"em": 1, "siea": 2}

NOISE_MISMATCH_MESSAGE = (
    "The algorithm is not compatible with the chosen noise type. Please see "
    "the documentation on the solver methods"
)


@define
class SDEKernelConfig(EnsembleKernelConfig):
    """Compile settings for a stochastic kernel.

    Attributes
    ----------
    g
        Diffusion device function ``g(u, p, t, du)``.
    method
        ``"em"`` or ``"siea"``.
    noise
        ``"diagonal"`` or ``"general"``.
    n_noise
        Number of Wiener processes.
    """

    g: Optional[Callable] = field(default=None, eq=False)
    method: str = field(default="em", validator=validators.in_(SDE_METHODS))
    noise: str = field(
        default="diagonal",
        validator=validators.in_(("diagonal", "general")),
    )
    n_noise: int = field(default=1, validator=getype_validator(int, 1))

    def __attrs_post_init__(self):
        super().__attrs_post_init__()
        if self.adaptive:
            raise NotImplementedError(
                "Adaptive time-stepping is not supported yet with GPUEM."
            )
        if self.method == "siea" and self.noise != "diagonal":
            raise ValueError(NOISE_MISMATCH_MESSAGE)


def _normal_sampler(precision: type) -> Callable:
    if np.dtype(precision) == np.dtype(np.float32):
        return xoroshiro128p_normal_float32
    return xoroshiro128p_normal_float64


def build_em_step(
    f: Callable,
    g: Callable,
    n: int,
    n_noise: int,
    diagonal: bool,
    precision: type,
) -> Callable:
    """Return a device function taking one Euler--Maruyama step.

    ``u_new = u + f(u, p, t) h + g(u, p, t) dW`` with ``dW ~ N(0, h)``.
    """
    normal = _normal_sampler(precision)
    zero = precision(0.0)

    # no cover: start
    if diagonal:

        @cuda.jit(device=True, inline=True)
        def em_step(u, u_new, error, p, t, h, rng_states, idx):
            drift = cuda.local.array(n, precision)
            diffusion = cuda.local.array(n, precision)
            f(u, p, t, drift)
            g(u, p, t, diffusion)
            sqrt_h = math.sqrt(h)
            for i in range(n):
                dW = sqrt_h * normal(rng_states, idx)
                u_new[i] = u[i] + drift[i] * h + diffusion[i] * dW

    else:

        @cuda.jit(device=True, inline=True)
        def em_step(u, u_new, error, p, t, h, rng_states, idx):
            drift = cuda.local.array(n, precision)
            diffusion = cuda.local.array((n, n_noise), precision)
            dW = cuda.local.array(n_noise, precision)
            f(u, p, t, drift)
            g(u, p, t, diffusion)
            sqrt_h = math.sqrt(h)
            for j in range(n_noise):
                dW[j] = sqrt_h * normal(rng_states, idx)
            for i in range(n):
                noise_term = zero
                for j in range(n_noise):
                    noise_term += diffusion[i, j] * dW[j]
                u_new[i] = u[i] + drift[i] * h + noise_term

    # no cover: end
    return em_step


def build_siea_step(
    f: Callable, g: Callable, n: int, precision: type
) -> Callable:
    """Return a device function taking one stochastic improved Euler step.

    This is Platen's explicit weak order 2.0 scheme applied component-wise
    to diagonal noise::

        ubar = u + f h + g dW
        u+-  = u + f h +- g sqrt(h)
        u_new = u + (f(ubar) + f) h / 2
                  + (g(u+) + g(u-) + 2 g) dW / 4
                  + (g(u+) - g(u-)) (dW**2 - h) / (4 sqrt(h))

    Supporting values perturb every component at once, which is exact when
    each diffusion component depends only on its own state.
    """
    normal = _normal_sampler(precision)
    half = precision(0.5)
    quarter = precision(0.25)
    two = precision(2.0)

    # no cover: start
    @cuda.jit(device=True, inline=True)
    def siea_step(u, u_new, error, p, t, h, rng_states, idx):
        drift = cuda.local.array(n, precision)
        diffusion = cuda.local.array(n, precision)
        dW = cuda.local.array(n, precision)
        support = cuda.local.array(n, precision)
        drift_bar = cuda.local.array(n, precision)
        diffusion_plus = cuda.local.array(n, precision)
        diffusion_minus = cuda.local.array(n, precision)

        f(u, p, t, drift)
        g(u, p, t, diffusion)
        sqrt_h = math.sqrt(h)
        t_next = t + h

        for i in range(n):
            dW[i] = sqrt_h * normal(rng_states, idx)
            support[i] = u[i] + drift[i] * h + diffusion[i] * dW[i]
        f(support, p, t_next, drift_bar)

        for i in range(n):
            support[i] = u[i] + drift[i] * h + diffusion[i] * sqrt_h
        g(support, p, t_next, diffusion_plus)

        for i in range(n):
            support[i] = u[i] + drift[i] * h - diffusion[i] * sqrt_h
        g(support, p, t_next, diffusion_minus)

        for i in range(n):
            increment = dW[i]
            u_new[i] = (
                u[i]
                + half * (drift_bar[i] + drift[i]) * h
                + quarter
                * (diffusion_plus[i] + diffusion_minus[i] + two * diffusion[i])
                * increment
                + quarter
                * (diffusion_plus[i] - diffusion_minus[i])
                * (increment * increment - h)
                / sqrt_h
            )

    # no cover: end
    return siea_step


class SDEKernel(CUDAFactory):
    """Factory for batched fixed-step SDE kernels.

    Parameters
    ----------
    precision
        State and time precision.
    n
        Number of states.
    f, g
        Drift and diffusion device functions.
    method
        ``"em"`` or ``"siea"``.
    noise
        ``"diagonal"`` or ``"general"``.
    n_noise
        Number of Wiener processes.
    condition, affect
        Optional discrete callback device functions.
    debug
        Compile with debug info.

    Raises
    ------
    ValueError
        If ``method`` is ``"siea"`` and the noise is not diagonal.
    """

    def __init__(
        self,
        precision: type,
        n: int,
        f: Callable,
        g: Callable,
        method: str = "em",
        noise: str = "diagonal",
        n_noise: Optional[int] = None,
        condition: Optional[Callable] = None,
        affect: Optional[Callable] = None,
        debug: bool = False,
    ) -> None:
        super().__init__()
        if n_noise is None:
            n_noise = n
        config = SDEKernelConfig(
            precision=precision,
            n=n,
            f=f,
            g=g,
            method=method,
            noise=noise,
            n_noise=n_noise,
            condition=condition,
            affect=affect,
            debug=debug,
        )
        self.setup_compile_settings(config)

    def build(self) -> EnsembleKernelCache:
        """Compile the stochastic ensemble kernel."""
        config = self.compile_settings
        if config.method == "siea":
            step = build_siea_step(
                config.f, config.g, config.n, config.precision
            )
        else:
            step = build_em_step(
                config.f,
                config.g,
                config.n,
                config.n_noise,
                config.noise == "diagonal",
                config.precision,
            )
        loop = build_integration_loop(
            config, step, _METHOD_ORDER[config.method]
        )

        # no cover: start
        @cuda.jit(**kernel_jit_kwargs(config))
        def sde_kernel(
            u0s,
            ps,
            us,
            ts,
            stops,
            save_mask,
            save_start,
            t0,
            dt,
            dt_min,
            abstol,
            reltol,
            max_iters,
            retcodes,
            rng_states,
        ):
            idx = cuda.grid(1)
            if idx >= u0s.shape[0]:
                return
            retcodes[idx] = loop(
                u0s,
                ps[idx],
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
            )

        # no cover: end
        return EnsembleKernelCache(kernel=sde_kernel)
