"""Compile-settings containers and the cached kernel factory base class.

Kernels are closures over their settings, so a kernel is only valid for the
settings it was built with. :class:`CUDAFactory` builds lazily, rebuilds
after a setting changes, and shares builds between factories with equal
settings so that solving a new batch with the same problem and algorithm
never recompiles.
"""

from collections import OrderedDict
from hashlib import sha256
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Iterator, Set, Tuple

import attrs
import numpy as np
from numba import from_dtype

from cuensemble._utils import (
    in_attr,
    is_attrs_class,
    PrecisionDType,
    precision_validator,
    precision_converter,
)


def _flatten_settings(instance) -> Iterator[Any]:
    """Yield the hashable settings of ``instance``, descending into attrs
    members. Fields marked ``eq=False`` (device functions) are skipped."""
    for fld in attrs.fields(type(instance)):
        if fld.eq is False:
            continue
        value = getattr(instance, fld.name)
        if is_attrs_class(value):
            yield from _flatten_settings(value)
        else:
            yield value


def _fingerprint(value: Any) -> str:
    if isinstance(value, np.ndarray):
        digest = sha256(value.tobytes()).hexdigest()
        return f"{value.dtype}{value.shape}:{digest}"
    if isinstance(value, type):
        return value.__qualname__
    return repr(value)


@attrs.define
class CUDAFactoryConfig:
    """Base class for the settings a kernel is compiled against.

    Subclasses add fields with ``@attrs.define``. Callables the kernel
    closes over are declared with ``eq=False``: they are kept out of the
    values hash and contribute to the cache key by identity instead.

    Change fields through :meth:`update` only; assigning directly leaves
    :attr:`values_hash` stale.
    """

    precision: PrecisionDType = attrs.field(
        validator=precision_validator, converter=precision_converter
    )
    _values_hash: str = attrs.field(
        default="", init=False, repr=False, eq=False
    )

    def __attrs_post_init__(self):
        self._rehash()

    def _rehash(self) -> None:
        joined = "|".join(_fingerprint(value) for value in self.values_tuple)
        self._values_hash = sha256(joined.encode("utf-8")).hexdigest()

    def update(self, updates: Dict[str, Any] = None, **kwargs
               ) -> Tuple[Set[str], Set[str]]:
        """Apply new values to known fields.

        Returns
        -------
        tuple[set[str], set[str]]
            The recognised names and, of those, the ones whose value
            actually changed. Unknown names are ignored here; the factory
            decides whether they are an error.
        """
        updates = dict(updates or {}, **kwargs)
        known = attrs.fields_dict(type(self))
        recognized = set()
        changed = set()
        for name, value in updates.items():
            if name not in known or name.startswith("_"):
                continue
            recognized.add(name)
            current = getattr(self, name)
            if isinstance(current, np.ndarray) or isinstance(value, np.ndarray):
                same = np.array_equal(np.asarray(current), np.asarray(value))
            else:
                same = current is value or current == value
            if not same:
                setattr(self, name, value)
                changed.add(name)
        if changed:
            self._rehash()
        return recognized, changed

    @property
    def values_tuple(self) -> Tuple:
        """Every hashable setting, with nested attrs settings flattened."""
        return tuple(_flatten_settings(self))

    @property
    def values_hash(self) -> str:
        return self._values_hash

    @property
    def numba_precision(self) -> type:
        """Return the Numba scalar type matching ``precision``."""
        return from_dtype(np.dtype(self.precision))

    @property
    def device_functions(self) -> Tuple[Callable, ...]:
        """Return the ``eq=False`` fields the build closes over."""
        return tuple(
            getattr(self, fld.name)
            for fld in attrs.fields(type(self))
            if fld.eq is False and not fld.name.startswith("_")
        )


@attrs.define
class CUDADispatcherCache:
    """Base class for what :meth:`CUDAFactory.build` returns."""


#: Most builds kept alive at once. Each entry holds compiled kernels and the
#: device functions in its key, so the oldest unused build is dropped first.
BUILD_CACHE_SIZE = 64

#: Builds shared between factories, keyed by :attr:`CUDAFactory.cache_key`,
#: in least to most recently used order.
_BUILD_CACHE: "OrderedDict[Tuple, CUDADispatcherCache]" = OrderedDict()


def clear_build_cache() -> None:
    """Forget every shared build so the next request recompiles."""
    _BUILD_CACHE.clear()


class CUDAFactory(ABC):
    """Lazily builds and caches the kernel for a settings object.

    Subclasses call :meth:`setup_compile_settings` in ``__init__`` and
    implement :meth:`build`, returning a :class:`CUDADispatcherCache` that
    holds at least a ``kernel`` attribute.
    """

    def __init__(self):
        self._compile_settings = None
        self._cache = None
        self._cache_valid = False

    @abstractmethod
    def build(self) -> CUDADispatcherCache:
        """Compile and return the outputs for the current settings."""

    def setup_compile_settings(self, compile_settings) -> None:
        """Attach the settings object the kernel is built from.

        Raises
        ------
        TypeError
            If ``compile_settings`` is not an attrs instance.
        """
        if not is_attrs_class(compile_settings):
            raise TypeError(
                "Compile settings must be an attrs class instance, got "
                f"{type(compile_settings).__name__}."
            )
        self._compile_settings = compile_settings
        self._cache_valid = False

    @property
    def compile_settings(self):
        return self._compile_settings

    @property
    def cache_valid(self) -> bool:
        """``True`` while the held build matches the settings."""
        return self._cache_valid

    @property
    def cache_key(self) -> Tuple:
        """Key under which equal factories share one build."""
        settings = self._compile_settings
        return (type(self).__qualname__, settings.values_hash,
                *settings.device_functions)

    def update_compile_settings(self, updates: Dict[str, Any] = None,
                                silent: bool = False, **kwargs) -> Set[str]:
        """Change settings, dropping the held build if anything changed.

        Raises
        ------
        ValueError
            If no settings have been attached yet.
        KeyError
            For unknown setting names, unless ``silent``.
        """
        updates = dict(updates or {}, **kwargs)
        if not updates:
            return set()
        if self._compile_settings is None:
            raise ValueError(
                "Call setup_compile_settings before updating settings."
            )
        recognized, changed = self._compile_settings.update(updates)
        unknown = sorted(set(updates) - recognized)
        if unknown and not silent:
            raise KeyError(
                f"'{', '.join(unknown)}' is not a valid compile setting for "
                f"{type(self).__name__}."
            )
        if changed:
            self._cache_valid = False
        return recognized

    def get_cached_output(self, output_name: str):
        """Return one named build output, building first if needed.

        Raises
        ------
        KeyError
            If the build has no output called ``output_name``.
        """
        if not self._cache_valid:
            key = self.cache_key
            if key in _BUILD_CACHE:
                _BUILD_CACHE.move_to_end(key)
            else:
                built = self.build()
                if not isinstance(built, CUDADispatcherCache):
                    raise TypeError(
                        f"{type(self).__name__}.build() must return a "
                        "CUDADispatcherCache."
                    )
                _BUILD_CACHE[key] = built
                while len(_BUILD_CACHE) > BUILD_CACHE_SIZE:
                    _BUILD_CACHE.popitem(last=False)
            self._cache = _BUILD_CACHE[key]
            self._cache_valid = True
        if not in_attr(output_name, self._cache):
            raise KeyError(
                f"Output '{output_name}' not found in the outputs of "
                f"{type(self).__name__}."
            )
        return getattr(self._cache, output_name)

    @property
    def kernel(self):
        """The compiled ensemble kernel."""
        return self.get_cached_output("kernel")

    @property
    def precision(self) -> type:
        return self._compile_settings.precision

    @property
    def numba_precision(self) -> type:
        return self._compile_settings.numba_precision
