"""Algorithm tags and Runge--Kutta tableaus."""

from cuensemble.algorithms.algorithm_tags import (
    GPUAlgorithm,
    GPUEM,
    GPUERK,
    GPUODEAlgorithm,
    GPUSDEAlgorithm,
    GPUSIEA,
    GPUTsit5,
    GPUVern7,
    GPUVern9,
    get_algorithm,
)
from cuensemble.algorithms.erk_tableaus import (
    BOGACKI_SHAMPINE_32_TABLEAU,
    CASH_KARP_54_TABLEAU,
    CLASSICAL_RK4_TABLEAU,
    DEFAULT_ERK_TABLEAU,
    DORMAND_PRINCE_54_TABLEAU,
    ERK_TABLEAU_REGISTRY,
    ERKTableau,
    FEHLBERG_45_TABLEAU,
    HEUN_21_TABLEAU,
    RALSTON_33_TABLEAU,
    TSITOURAS_54_TABLEAU,
    VERNER_76_TABLEAU,
    VERNER_98_TABLEAU,
)

__all__ = [
    "GPUAlgorithm",
    "GPUEM",
    "GPUERK",
    "GPUODEAlgorithm",
    "GPUSDEAlgorithm",
    "GPUSIEA",
    "GPUTsit5",
    "GPUVern7",
    "GPUVern9",
    "get_algorithm",
    "BOGACKI_SHAMPINE_32_TABLEAU",
    "CASH_KARP_54_TABLEAU",
    "CLASSICAL_RK4_TABLEAU",
    "DEFAULT_ERK_TABLEAU",
    "DORMAND_PRINCE_54_TABLEAU",
    "ERK_TABLEAU_REGISTRY",
    "ERKTableau",
    "FEHLBERG_45_TABLEAU",
    "HEUN_21_TABLEAU",
    "RALSTON_33_TABLEAU",
    "TSITOURAS_54_TABLEAU",
    "VERNER_76_TABLEAU",
    "VERNER_98_TABLEAU",
]
