"""Explicit Runge--Kutta ensemble kernels, fixed-step and adaptive."""

from typing import Callable, Optional

from attrs import define, field
from numba import cuda

from cuensemble.CUDAFactory import CUDAFactory
from cuensemble.algorithms.erk_tableaus import DEFAULT_ERK_TABLEAU, ERKTableau
from cuensemble.kernels.base_kernel import (
    EnsembleKernelCache,
    EnsembleKernelConfig,
    build_integration_loop,
    kernel_jit_kwargs,
)
from cuensemble.kernels.step_control import PIControllerSettings


@define
class ERKKernelConfig(EnsembleKernelConfig):
    """Compile settings for an explicit Runge--Kutta kernel."""

    tableau: ERKTableau = field(default=DEFAULT_ERK_TABLEAU)

    def __attrs_post_init__(self):
        super().__attrs_post_init__()
        if self.adaptive and not self.tableau.has_error_estimate:
            raise ValueError(
                "Adaptive stepping needs a tableau with an embedded error "
                "estimate."
            )


def build_erk_step(
    f: Callable, tableau: ERKTableau, n: int, precision: type
) -> Callable:
    """Return a device function taking one explicit Runge--Kutta step.

    Stage derivatives live in a local ``(stages * n)`` buffer; stage ``s``
    evaluates ``f`` at ``u + h * sum_j a[s, j] * k_j`` and time
    ``t + c[s] * h``.
    """
    stage_count = tableau.stage_count
    a = tableau.typed(tableau.flat_a, precision)
    b = tableau.typed(tableau.b, precision)
    c = tableau.typed(tableau.c, precision)
    e = tableau.typed(tableau.error_weights, precision)
    has_error = tableau.has_error_estimate
    zero = precision(0.0)
    k_size = stage_count * n

    # no cover: start
    @cuda.jit(device=True, inline=True)
    def erk_step(u, u_new, error, p, t, h, rng_states, idx):
        k = cuda.local.array(k_size, precision)
        stage_state = cuda.local.array(n, precision)

        for s in range(stage_count):
            row = s * stage_count
            for i in range(n):
                acc = zero
                for j in range(s):
                    acc += a[row + j] * k[j * n + i]
                stage_state[i] = u[i] + h * acc
            f(stage_state, p, t + c[s] * h, k[s * n:(s + 1) * n])

        for i in range(n):
            acc = zero
            err = zero
            for s in range(stage_count):
                stage_value = k[s * n + i]
                acc += b[s] * stage_value
                if has_error:
                    err += e[s] * stage_value
            u_new[i] = u[i] + h * acc
            if has_error:
                error[i] = h * err

    # no cover: end
    return erk_step


class ERKKernel(CUDAFactory):
    """Factory for batched explicit Runge--Kutta kernels.

    Parameters
    ----------
    precision
        State and time precision.
    n
        Number of states.
    f
        Drift device function.
    tableau
        Runge--Kutta tableau.
    adaptive
        Build the adaptive (PI-controlled) variant.
    condition, affect
        Optional discrete callback device functions.
    controller
        Gains for the adaptive controller.
    debug
        Compile with debug info.
    """

    def __init__(
        self,
        precision: type,
        n: int,
        f: Callable,
        tableau: ERKTableau = DEFAULT_ERK_TABLEAU,
        adaptive: bool = False,
        condition: Optional[Callable] = None,
        affect: Optional[Callable] = None,
        controller: Optional[PIControllerSettings] = None,
        debug: bool = False,
    ) -> None:
        super().__init__()
        if controller is None:
            controller = PIControllerSettings()
        config = ERKKernelConfig(
            precision=precision,
            n=n,
            f=f,
            condition=condition,
            affect=affect,
            adaptive=adaptive,
            controller=controller,
            debug=debug,
            tableau=tableau,
        )
        self.setup_compile_settings(config)

    def build(self) -> EnsembleKernelCache:
        """Compile the ERK ensemble kernel."""
        config = self.compile_settings
        step = build_erk_step(
            config.f, config.tableau, config.n, config.precision
        )
        loop = build_integration_loop(config, step, config.tableau.order)

        # no cover: start
        @cuda.jit(**kernel_jit_kwargs(config))
        def erk_kernel(
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
                0,
            )

        # no cover: end
        return EnsembleKernelCache(kernel=erk_kernel)
