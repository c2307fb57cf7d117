"""Algorithm tags selecting which ensemble kernel is launched.

A tag carries only what the kernel factories need to specialise a kernel:
the tableau for explicit Runge--Kutta methods and the supported noise
structure for stochastic methods. The tags themselves hold no device code.
"""

from typing import Dict, Union

import attrs

from cuensemble.algorithms.erk_tableaus import (
    DEFAULT_ERK_TABLEAU,
    ERK_TABLEAU_REGISTRY,
    ERKTableau,
    TSITOURAS_54_TABLEAU,
    VERNER_76_TABLEAU,
    VERNER_98_TABLEAU,
)


@attrs.define(frozen=True)
class GPUODEAlgorithm:
    """Base tag for ODE kernels."""


@attrs.define(frozen=True)
class GPUERK(GPUODEAlgorithm):
    """Explicit Runge--Kutta kernel over an arbitrary tableau."""

    tableau: ERKTableau = attrs.field(
        default=DEFAULT_ERK_TABLEAU,
        validator=attrs.validators.instance_of(ERKTableau),
    )

    @property
    def is_adaptive(self) -> bool:
        """Return ``True`` when the tableau supports step-size control."""
        return self.tableau.has_error_estimate

    @property
    def order(self) -> int:
        """Return the classical order of the tableau."""
        return self.tableau.order


@attrs.define(frozen=True)
class GPUTsit5(GPUERK):
    """Tsitouras 5(4) kernel."""

    tableau: ERKTableau = attrs.field(
        default=TSITOURAS_54_TABLEAU, init=False
    )


@attrs.define(frozen=True)
class GPUVern7(GPUERK):
    """Verner 7(6) kernel for tight tolerances."""

    tableau: ERKTableau = attrs.field(default=VERNER_76_TABLEAU, init=False)


@attrs.define(frozen=True)
class GPUVern9(GPUERK):
    """Verner 9(8) kernel."""

    tableau: ERKTableau = attrs.field(default=VERNER_98_TABLEAU, init=False)


@attrs.define(frozen=True)
class GPUSDEAlgorithm:
    """Base tag for SDE kernels."""

    is_adaptive = False
    supports_general_noise = True


@attrs.define(frozen=True)
class GPUEM(GPUSDEAlgorithm):
    """Euler--Maruyama kernel (strong order 0.5, weak order 1)."""


@attrs.define(frozen=True)
class GPUSIEA(GPUSDEAlgorithm):
    """Stochastic improved Euler kernel (weak order 2).

    Only diagonal noise is supported.
    """

    supports_general_noise = False


GPUAlgorithm = Union[GPUODEAlgorithm, GPUSDEAlgorithm]

_NAMED_ALGORITHMS: Dict[str, type] = {
    "gputsit5": GPUTsit5,
    "vern7": GPUVern7,
    "gpuvern7": GPUVern7,
    "verner-76": GPUVern7,
    "vern9": GPUVern9,
    "gpuvern9": GPUVern9,
    "verner-98": GPUVern9,
    "em": GPUEM,
    "gpuem": GPUEM,
    "euler-maruyama": GPUEM,
    "siea": GPUSIEA,
    "gpusiea": GPUSIEA,
}


def get_algorithm(algorithm: Union[str, GPUAlgorithm]) -> GPUAlgorithm:
    """Resolve ``algorithm`` to a tag instance.

    Parameters
    ----------
    algorithm
        A tag instance, or a case-insensitive name. Names from
        :data:`ERK_TABLEAU_REGISTRY` build a :class:`GPUERK` over that
        tableau; ``"tsit5"``, ``"vern7"`` and ``"vern9"`` resolve to
        :class:`GPUTsit5`, :class:`GPUVern7` and :class:`GPUVern9`.

    Raises
    ------
    KeyError
        If the name matches no algorithm.
    """
    if isinstance(algorithm, (GPUODEAlgorithm, GPUSDEAlgorithm)):
        return algorithm
    key = str(algorithm).lower()
    if key in ("tsit5", "tsitouras-54"):
        return GPUTsit5()
    if key in _NAMED_ALGORITHMS:
        return _NAMED_ALGORITHMS[key]()
    if key in ERK_TABLEAU_REGISTRY:
        return GPUERK(tableau=ERK_TABLEAU_REGISTRY[key])
    known = sorted(set(_NAMED_ALGORITHMS) | set(ERK_TABLEAU_REGISTRY))
    raise KeyError(
        f"Unknown algorithm '{algorithm}'. Expected one of: "
        f"{', '.join(known)}."
    )
