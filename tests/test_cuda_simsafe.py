"""Tests for cuda_simsafe module functionality."""
import os

import numpy as np
import pytest
from numba import cuda

from cuensemble import cuda_simsafe


def test_compile_kwargs_in_cudasim_mode():
    """compile_kwargs is empty in CUDASIM mode."""
    if os.environ.get("NUMBA_ENABLE_CUDASIM", "0") != "1":
        pytest.skip("Test only runs in CUDASIM mode")

    assert cuda_simsafe.CUDA_SIMULATION is True
    assert cuda_simsafe.compile_kwargs == {}
    assert cuda_simsafe.device_kind() == "cpu"


def test_compile_kwargs_without_cudasim():
    """compile_kwargs contains lineinfo when CUDASIM is disabled."""
    if os.environ.get("NUMBA_ENABLE_CUDASIM", "0") == "1":
        pytest.skip("Test only runs without CUDASIM mode")

    assert cuda_simsafe.CUDA_SIMULATION is False
    assert cuda_simsafe.compile_kwargs == {"lineinfo": True}
    assert cuda_simsafe.device_kind() == "cuda"


def test_current_mem_info_reports_free_below_total():
    free, total = cuda_simsafe.current_mem_info()
    assert 0 < free <= total
    if cuda_simsafe.CUDA_SIMULATION:
        assert free == cuda_simsafe.SIMULATED_MEMORY.free


def test_is_cuda_array():
    host = np.zeros(3)
    assert not cuda_simsafe.is_cuda_array(host)
    assert cuda_simsafe.is_cuda_array(cuda.to_device(host))


def test_is_devfunc(systems):
    assert cuda_simsafe.is_devfunc(systems.decay_f)

    def plain(u, p, t, du):
        pass

    assert not cuda_simsafe.is_devfunc(plain)

