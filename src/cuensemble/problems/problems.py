"""Problem containers describing a single ODE or SDE initial value problem.

The drift ``f`` and diffusion ``g`` are Numba CUDA device functions with the
in-place signature ``f(u, p, t, du)``. For diagonal noise ``g`` writes one
entry per state into ``du``; for general noise it writes an
``(n_states, n_noise)`` matrix.
"""

from typing import Any, Callable, Optional, Tuple

import attrs
import numpy as np

from cuensemble._utils import ALLOWED_PRECISIONS, as_precision_array
from cuensemble.cuda_simsafe import is_devfunc

NOISE_TYPES = ("diagonal", "general")


def _tspan_converter(value) -> Tuple[float, float]:
    start, end = value
    return float(start), float(end)


def _tspan_validator(instance, attribute, value) -> None:
    if not value[1] > value[0]:
        raise ValueError(
            f"tspan must satisfy tspan[1] > tspan[0], got {value}."
        )


def _device_function_validator(instance, attribute, value) -> None:
    if not is_devfunc(value):
        raise TypeError(
            f"{attribute.name} must be a CUDA device function created with "
            "numba.cuda.jit(device=True)."
        )


def _u0_converter(value) -> np.ndarray:
    array = np.asarray(value)
    if array.dtype not in ALLOWED_PRECISIONS:
        array = array.astype(np.float64)
    return np.ascontiguousarray(array.reshape(-1))


def _p_converter(value) -> np.ndarray:
    if value is None:
        value = ()
    return np.asarray(value, dtype=np.float64).reshape(-1)


class _ProblemShape:
    """Derived sizes shared by ODE and SDE problems."""

    @property
    def precision(self) -> type:
        """Return the numpy scalar type of the state."""
        return self.u0.dtype.type

    @property
    def n_states(self) -> int:
        return self.u0.shape[0]

    @property
    def n_params(self) -> int:
        return self.p.shape[0]

    @property
    def typed_p(self) -> np.ndarray:
        """Return ``p`` cast to the state precision."""
        return as_precision_array(self.p, self.precision)


@attrs.define(frozen=True, eq=False)
class ODEProblem(_ProblemShape):
    """Ordinary differential equation ``du/dt = f(u, p, t)``.

    Attributes
    ----------
    f
        Device function ``f(u, p, t, du)`` writing the derivative into
        ``du``.
    u0
        Initial state. Its dtype (float32 or float64) sets the precision of
        every kernel built for the problem; other dtypes become float64.
    tspan
        ``(t0, tf)`` with ``tf > t0``.
    p
        Parameter vector, cast to the state precision at launch.
    """

    f: Callable = attrs.field(validator=_device_function_validator)
    u0: np.ndarray = attrs.field(converter=_u0_converter)
    tspan: Tuple[float, float] = attrs.field(
        converter=_tspan_converter, validator=_tspan_validator
    )
    p: np.ndarray = attrs.field(factory=tuple, converter=_p_converter)


@attrs.define(frozen=True, eq=False)
class SDEProblem(_ProblemShape):
    """Stochastic differential equation ``du = f dt + g dW``.

    Attributes
    ----------
    f
        Device function ``f(u, p, t, du)`` writing the drift.
    g
        Device function ``g(u, p, t, du)`` writing the diffusion.
    u0, tspan, p
        As for :class:`ODEProblem`.
    noise
        ``"diagonal"`` (one independent Wiener process per state) or
        ``"general"`` (``n_noise`` processes mixed by a matrix).
    n_noise
        Number of Wiener processes. Defaults to the state size for diagonal
        noise and is required for general noise.
    seed
        Seed for the per-trajectory random streams. ``None`` draws a seed
        from numpy once per solve. Every problem in a batch or ensemble
        shares this seed; trajectories differ by their position in the
        random stream, not by their seed.
    """

    f: Callable = attrs.field(validator=_device_function_validator)
    g: Callable = attrs.field(validator=_device_function_validator)
    u0: np.ndarray = attrs.field(converter=_u0_converter)
    tspan: Tuple[float, float] = attrs.field(
        converter=_tspan_converter, validator=_tspan_validator
    )
    p: np.ndarray = attrs.field(factory=tuple, converter=_p_converter)
    noise: str = attrs.field(
        default="diagonal",
        kw_only=True,
        validator=attrs.validators.in_(NOISE_TYPES),
    )
    n_noise: Optional[int] = attrs.field(default=None, kw_only=True)
    seed: Optional[int] = attrs.field(default=None, kw_only=True)

    def __attrs_post_init__(self):
        if self.noise == "diagonal":
            if self.n_noise is not None and self.n_noise != self.n_states:
                raise ValueError(
                    "Diagonal noise requires n_noise to equal the number of "
                    f"states ({self.n_states}), got {self.n_noise}."
                )
            object.__setattr__(self, "n_noise", self.n_states)
        elif self.n_noise is None or self.n_noise < 1:
            raise ValueError(
                "General noise requires a positive n_noise giving the "
                "number of Wiener processes."
            )


def is_diagonal_noise(prob: Any) -> bool:
    """Return ``True`` when ``prob`` is an SDE with diagonal noise."""
    return isinstance(prob, SDEProblem) and prob.noise == "diagonal"


def remake(prob, **changes):
    """Return a copy of ``prob`` with the given fields replaced.

    Examples
    --------
    >>> new_prob = remake(prob, u0=[2.0], p=[0.5])  # doctest: +SKIP
    """
    if is_diagonal_noise(prob) and "u0" in changes:
        changes.setdefault("n_noise", None)
    return attrs.evolve(prob, **changes)
