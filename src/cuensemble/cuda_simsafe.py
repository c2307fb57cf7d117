"""Helpers that behave the same on hardware and under the CUDA simulator.

Everything that needs to know whether ``NUMBA_ENABLE_CUDASIM=1`` is set
asks this module, so the rest of the package never branches on the
environment itself.
"""
from __future__ import annotations

import os
from typing import Any, Callable, Tuple

import attrs
from numba import cuda


CUDA_SIMULATION: bool = os.environ.get("NUMBA_ENABLE_CUDASIM") == "1"

#: Extra keyword arguments handed to ``cuda.jit`` for ensemble kernels.
compile_kwargs = {} if CUDA_SIMULATION else {"lineinfo": True}


@attrs.frozen
class MemoryInfo:
    """Free and total device memory in bytes."""

    free: int
    total: int


#: What the simulator reports, so batch sizing has something to divide.
SIMULATED_MEMORY = MemoryInfo(free=1024**3, total=8 * 1024**3)


def device_kind() -> str:
    """Return ``"cpu"`` under the simulator and ``"cuda"`` otherwise."""
    return "cpu" if CUDA_SIMULATION else "cuda"


def current_mem_info() -> Tuple[int, int]:
    """Return ``(free, total)`` bytes for the active device."""
    if CUDA_SIMULATION:  # pragma: no cover - simulated
        info = SIMULATED_MEMORY
    else:  # pragma: no cover - exercised in GPU environments
        free, total = cuda.current_context().get_memory_info()
        info = MemoryInfo(free=int(free), total=int(total))
    return info.free, info.total


def is_cuda_array(value: Any) -> bool:
    """Return ``True`` for device arrays, real or simulated."""
    if CUDA_SIMULATION:
        return hasattr(value, "copy_to_host")
    return cuda.is_cuda_array(value)


def is_devfunc(func: Callable[..., Any]) -> bool:
    """Test whether ``func`` was compiled with ``cuda.jit(device=True)``.

    Right-hand sides, diffusions and callback functions are checked with
    this before any kernel is built, since a plain Python function only
    fails later, deep inside compilation.

    Parameters
    ----------
    func
        Object supplied as a device function.

    Returns
    -------
    bool
        ``True`` when ``func`` carries CUDA device metadata.
    """
    if CUDA_SIMULATION:  # pragma: no cover - simulated
        return bool(getattr(func, "_device", False))
    target_options = getattr(func, "targetoptions", None)
    if isinstance(target_options, dict):
        return bool(target_options.get("device", False))
    return False


__all__ = [
    "CUDA_SIMULATION",
    "MemoryInfo",
    "SIMULATED_MEMORY",
    "compile_kwargs",
    "current_mem_info",
    "device_kind",
    "is_cuda_array",
    "is_devfunc",
]
