"""Discrete callbacks evaluated inside the ensemble kernels."""

from typing import Callable, Optional

import attrs

from cuensemble.cuda_simsafe import is_devfunc


def _devfunc_validator(instance, attribute, value) -> None:
    if not is_devfunc(value):
        raise TypeError(
            f"DiscreteCallback.{attribute.name} must be a CUDA device "
            "function."
        )


@attrs.define(frozen=True, eq=False)
class DiscreteCallback:
    """Modify the state after any accepted step where a condition holds.

    Attributes
    ----------
    condition
        Device function ``condition(u, t, p) -> bool``.
    affect
        Device function ``affect(u, t, p)`` that mutates ``u`` in place.

    Notes
    -----
    Steps always land on tstops, so ``condition`` can test ``t`` against a
    tstop to fire at an exact time.
    """

    condition: Callable = attrs.field(validator=_devfunc_validator)
    affect: Callable = attrs.field(validator=_devfunc_validator)


@attrs.define(frozen=True, eq=False, init=False)
class CallbackSet:
    """A collection of callbacks; kernels support at most one."""

    discrete_callbacks: tuple = attrs.field()

    def __init__(self, *callbacks):
        flat = []
        for callback in callbacks:
            if callback is None:
                continue
            if isinstance(callback, CallbackSet):
                flat.extend(callback.discrete_callbacks)
            elif isinstance(callback, DiscreteCallback):
                flat.append(callback)
            else:
                raise TypeError(
                    "CallbackSet accepts DiscreteCallback instances, got "
                    f"{type(callback).__name__}."
                )
        if len(flat) > 1:
            raise ValueError(
                "Kernels support at most one discrete callback; combine the "
                "conditions into a single callback."
            )
        self.__attrs_init__(tuple(flat))


def as_discrete_callback(callback) -> Optional[DiscreteCallback]:
    """Normalise ``callback`` to a single callback or ``None``."""
    if callback is None:
        return None
    if isinstance(callback, DiscreteCallback):
        return callback
    callbacks = CallbackSet(callback).discrete_callbacks
    return callbacks[0] if callbacks else None
