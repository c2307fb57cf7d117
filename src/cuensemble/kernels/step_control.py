"""Device-side error norm and proportional-integral step controller."""

import math
from typing import Callable

import attrs
from numba import cuda

from cuensemble._utils import getype_validator, gttype_validator


@attrs.define(frozen=True)
class PIControllerSettings:
    """Gains and limits for the PI controller.

    The proportional and integral gains are divided by the algorithm order
    before use, following Hairer and Wanner's PI formulation.
    """

    kp: float = attrs.field(
        default=0.4, validator=getype_validator(float, 0.0)
    )
    ki: float = attrs.field(default=0.7, validator=gttype_validator(float, 0.0))
    safety: float = attrs.field(
        default=0.9, validator=gttype_validator(float, 0.0)
    )
    min_gain: float = attrs.field(
        default=0.2, validator=gttype_validator(float, 0.0)
    )
    max_gain: float = attrs.field(
        default=10.0, validator=gttype_validator(float, 1.0)
    )


def build_error_norm(n: int, precision: type) -> Callable:
    """Return a device function computing the scaled RMS error norm.

    The norm is ``sqrt(mean((err_i / (abstol + reltol * max(|u_i|,
    |u_new_i|)))**2))``; a step is acceptable when it is at most one.
    """
    typed_n = precision(n)
    zero = precision(0.0)

    @cuda.jit(device=True, inline=True)
    def error_norm(error, u, u_new, abstol, reltol):
        total = zero
        for i in range(n):
            scale = abstol + reltol * max(abs(u[i]), abs(u_new[i]))
            ratio = error[i] / scale
            total += ratio * ratio
        return math.sqrt(total / typed_n)

    return error_norm


def build_pi_controller(
    settings: PIControllerSettings, order: int, precision: type
) -> Callable:
    """Return a device function proposing the next step-size factor.

    Parameters
    ----------
    settings
        Controller gains and limits.
    order
        Order of the integration algorithm.
    precision
        Precision used for controller arithmetic.

    Returns
    -------
    Callable
        ``controller(norm, norm_prev, accepted) -> factor``. A ``NaN`` norm
        is treated as a rejection at the minimum gain.
    """
    beta1 = precision(settings.ki / order)
    beta2 = precision(settings.kp / order)
    safety = precision(settings.safety)
    min_gain = precision(settings.min_gain)
    max_gain = precision(settings.max_gain)
    one = precision(1.0)
    tiny = precision(1e-10)

    @cuda.jit(device=True, inline=True)
    def controller_PI(norm, norm_prev, accepted):
        if norm != norm:
            return min_gain
        norm = max(norm, tiny)
        gain = safety * norm ** (-beta1) * norm_prev ** beta2
        gain = min(max(gain, min_gain), max_gain)
        if not accepted:
            gain = min(gain, one)
        return gain

    return controller_PI
