import attrs
import numpy as np
import pytest

from cuensemble._utils import (
    as_precision_array,
    getype_validator,
    gttype_validator,
    in_attr,
    is_attrs_class,
    precision_converter,
    precision_validator,
)


@attrs.define
class Limits:
    precision: type = attrs.field(
        default=np.float64,
        converter=precision_converter,
        validator=precision_validator,
    )
    count: int = attrs.field(default=1, validator=getype_validator(int, 1))
    scale: float = attrs.field(
        default=1.0, validator=gttype_validator(float, 0.0)
    )
    _hidden: int = attrs.field(default=0)


@pytest.mark.parametrize(
    "value, expected",
    [
        (np.float32, np.float32),
        ("float64", np.float64),
        (np.dtype(np.float32), np.float32),
    ],
)
def test_precision_converter(value, expected):
    assert Limits(precision=value).precision is expected


def test_precision_validator_rejects_other_dtypes():
    with pytest.raises(ValueError, match="float32 or np.float64"):
        Limits(precision=np.float16)


def test_getype_validator():
    assert Limits(count=1).count == 1
    with pytest.raises(ValueError, match=">= 1"):
        Limits(count=0)
    with pytest.raises(TypeError, match="int"):
        Limits(count=1.5)


def test_gttype_validator():
    with pytest.raises(ValueError, match="> 0.0"):
        Limits(scale=0.0)
    with pytest.raises(TypeError):
        Limits(scale=1)


def test_in_attr_sees_private_fields():
    limits = Limits()
    assert in_attr("count", limits)
    assert in_attr("hidden", limits)
    assert not in_attr("missing", limits)


def test_is_attrs_class():
    assert is_attrs_class(Limits())
    assert not is_attrs_class({"count": 1})


def test_as_precision_array_promotes_scalars():
    array = as_precision_array(2.0, np.float32)
    assert array.shape == (1,)
    assert array.dtype == np.float32
    matrix = as_precision_array(3.0, np.float64, ndim=2)
    assert matrix.shape == (1, 1)
