"""Compiled ensemble kernels and their shared stepping loop."""

from cuensemble.kernels.base_kernel import (
    DT_LESS_THAN_MIN,
    MAX_ITERS,
    NONFINITE,
    RETCODE_NAMES,
    SUCCESS,
    EnsembleKernelConfig,
)
from cuensemble.kernels.erk_kernel import ERKKernel, ERKKernelConfig
from cuensemble.kernels.sde_kernel import SDEKernel, SDEKernelConfig
from cuensemble.kernels.step_control import PIControllerSettings

__all__ = [
    "DT_LESS_THAN_MIN",
    "MAX_ITERS",
    "NONFINITE",
    "RETCODE_NAMES",
    "SUCCESS",
    "EnsembleKernelConfig",
    "ERKKernel",
    "ERKKernelConfig",
    "SDEKernel",
    "SDEKernelConfig",
    "PIControllerSettings",
]
