import attrs
import numpy as np
import pytest

from cuensemble.CUDAFactory import (
    CUDADispatcherCache,
    CUDAFactory,
    CUDAFactoryConfig,
    _BUILD_CACHE,
    clear_build_cache,
)


@attrs.define
class ToyConfig(CUDAFactoryConfig):
    n: int = attrs.field(default=1)
    scale: float = attrs.field(default=1.0)
    fn: object = attrs.field(default=None, eq=False)


@attrs.define
class ToyCache(CUDADispatcherCache):
    kernel: object = attrs.field()


class ToyFactory(CUDAFactory):
    def __init__(self, fn=None, **settings):
        super().__init__()
        self.builds = 0
        self.setup_compile_settings(ToyConfig(fn=fn, **settings))

    def build(self):
        self.builds += 1
        config = self.compile_settings
        return ToyCache(kernel=(config.n, config.scale, config.fn))


@pytest.fixture(scope="function")
def factory():
    clear_build_cache()
    return ToyFactory(precision=np.float64)


def test_setup_rejects_non_attrs_settings(factory):
    with pytest.raises(TypeError, match="attrs"):
        factory.setup_compile_settings({"n": 1})


def test_kernel_builds_once(factory):
    first = factory.kernel
    second = factory.kernel
    assert first is second
    assert factory.builds == 1
    assert factory.cache_valid


def test_update_invalidates_and_rebuilds(factory):
    factory.kernel
    recognized = factory.update_compile_settings(n=3)
    assert recognized == {"n"}
    assert not factory.cache_valid
    assert factory.kernel[0] == 3
    assert factory.builds == 2


def test_update_with_same_value_keeps_cache(factory):
    factory.kernel
    factory.update_compile_settings(n=1)
    assert factory.cache_valid


def test_update_unknown_setting_raises(factory):
    with pytest.raises(KeyError, match="not a valid compile setting"):
        factory.update_compile_settings(bogus=1)
    assert factory.update_compile_settings(bogus=1, silent=True) == set()


def test_values_hash_tracks_values():
    config = ToyConfig(precision=np.float32, n=2)
    before = config.values_hash
    recognized, changed = config.update(n=4, missing=1)
    assert recognized == {"n"}
    assert changed == {"n"}
    assert config.values_hash != before
    config.update(n=2)
    assert config.values_hash == before


def test_values_tuple_skips_device_functions():
    marker = object()
    config = ToyConfig(precision=np.float64, fn=marker)
    assert marker not in config.values_tuple
    assert config.device_functions == (marker,)


def test_equal_settings_share_builds():
    clear_build_cache()
    marker = object()
    first = ToyFactory(fn=marker, precision=np.float64, n=2)
    second = ToyFactory(fn=marker, precision=np.float64, n=2)
    assert first.kernel is second.kernel
    assert first.builds == 1
    assert second.builds == 0
    assert len(_BUILD_CACHE) == 1


def test_different_functions_do_not_share_builds():
    clear_build_cache()
    first = ToyFactory(fn=object(), precision=np.float64)
    second = ToyFactory(fn=object(), precision=np.float64)
    assert first.kernel is not second.kernel
    assert second.builds == 1


def test_build_cache_drops_least_recently_used(monkeypatch):
    import cuensemble.CUDAFactory as module

    monkeypatch.setattr(module, "BUILD_CACHE_SIZE", 2)
    clear_build_cache()
    first = ToyFactory(precision=np.float64, n=1)
    second = ToyFactory(precision=np.float64, n=2)
    first.kernel
    second.kernel
    # touching the first build makes the second the oldest
    ToyFactory(precision=np.float64, n=1).kernel
    ToyFactory(precision=np.float64, n=3).kernel
    assert len(_BUILD_CACHE) == 2
    assert first.cache_key in _BUILD_CACHE
    assert second.cache_key not in _BUILD_CACHE

    rebuilt = ToyFactory(precision=np.float64, n=2)
    assert rebuilt.kernel == (2, 1.0, None)
    assert rebuilt.builds == 1
    assert len(_BUILD_CACHE) == 2


def test_missing_output_raises(factory):
    with pytest.raises(KeyError, match="not found"):
        factory.get_cached_output("nonexistent")


def test_precision_properties(factory):
    assert factory.precision is np.float64
    assert str(factory.numba_precision) == "float64"
