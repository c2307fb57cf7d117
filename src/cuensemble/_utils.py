"""Shared validators, converters and small helpers."""

from typing import Any, Union

import numpy as np
from attrs import fields, has

PrecisionDType = Union[type[np.float32], type[np.float64]]

ALLOWED_PRECISIONS = {np.dtype(np.float32), np.dtype(np.float64)}


def precision_converter(value: Any) -> type:
    """Return the numpy scalar type corresponding to ``value``."""
    return np.dtype(value).type


def precision_validator(instance, attribute, value) -> None:
    """Ensure ``value`` is float32 or float64."""
    if np.dtype(value) not in ALLOWED_PRECISIONS:
        raise ValueError(
            f"{attribute.name} must be np.float32 or np.float64, "
            f"got {value}."
        )


def getype_validator(dtype, minimum):
    """Return an attrs validator enforcing ``value >= minimum``."""

    def _validator(instance, attribute, value):
        if not isinstance(value, dtype):
            raise TypeError(
                f"{attribute.name} must be of type {dtype.__name__}, "
                f"got {type(value).__name__}."
            )
        if value < minimum:
            raise ValueError(
                f"{attribute.name} must be >= {minimum}, got {value}."
            )

    return _validator


def gttype_validator(dtype, minimum):
    """Return an attrs validator enforcing ``value > minimum``."""

    def _validator(instance, attribute, value):
        if not isinstance(value, dtype):
            raise TypeError(
                f"{attribute.name} must be of type {dtype.__name__}, "
                f"got {type(value).__name__}."
            )
        if value <= minimum:
            raise ValueError(
                f"{attribute.name} must be > {minimum}, got {value}."
            )

    return _validator


def in_attr(name, attrs_class_instance):
    """Checks if a name is in the attributes of a class instance."""
    field_names = {field.name for field in
                   fields(attrs_class_instance.__class__)}
    return name in field_names or ("_" + name) in field_names


def is_attrs_class(putative_class_instance):
    """Checks if the given object is an attrs class instance."""
    return has(type(putative_class_instance))


def as_precision_array(values, precision, ndim=1):
    """Return ``values`` as a contiguous array of ``precision``.

    Scalars are promoted to one-element arrays so that state vectors and
    parameter vectors can be given as plain numbers.
    """
    array = np.ascontiguousarray(values, dtype=precision)
    if array.ndim == 0:
        array = array.reshape((1,) * ndim)
    return array
