import pytest

from cuensemble.algorithms import (
    CASH_KARP_54_TABLEAU,
    DORMAND_PRINCE_54_TABLEAU,
    GPUEM,
    GPUERK,
    GPUSIEA,
    GPUTsit5,
    GPUVern7,
    GPUVern9,
    HEUN_21_TABLEAU,
    TSITOURAS_54_TABLEAU,
    VERNER_76_TABLEAU,
    VERNER_98_TABLEAU,
    get_algorithm,
)


def test_tsit5_is_adaptive_fifth_order():
    alg = GPUTsit5()
    assert alg.tableau is TSITOURAS_54_TABLEAU
    assert alg.is_adaptive
    assert alg.order == 5


def test_tsit5_tableau_is_fixed():
    with pytest.raises(TypeError):
        GPUTsit5(tableau=HEUN_21_TABLEAU)


@pytest.mark.parametrize(
    "tag, tableau, order",
    [(GPUVern7, VERNER_76_TABLEAU, 7), (GPUVern9, VERNER_98_TABLEAU, 9)],
)
def test_verner_tags(tag, tableau, order):
    alg = tag()
    assert alg.tableau is tableau
    assert alg.is_adaptive
    assert alg.order == order
    with pytest.raises(TypeError):
        tag(tableau=HEUN_21_TABLEAU)


def test_erk_without_error_estimate_is_not_adaptive():
    alg = GPUERK(tableau=HEUN_21_TABLEAU)
    assert not alg.is_adaptive
    assert alg.order == 2


def test_erk_rejects_non_tableau():
    with pytest.raises(TypeError):
        GPUERK(tableau="dopri54")


def test_sde_tags():
    assert not GPUEM.is_adaptive
    assert GPUEM.supports_general_noise
    assert not GPUSIEA.supports_general_noise


@pytest.mark.parametrize(
    "name, expected",
    [
        ("tsit5", GPUTsit5()),
        ("Tsit5", GPUTsit5()),
        ("em", GPUEM()),
        ("euler-maruyama", GPUEM()),
        ("SIEA", GPUSIEA()),
        ("dopri54", GPUERK(tableau=DORMAND_PRINCE_54_TABLEAU)),
        ("cash-karp-54", GPUERK(tableau=CASH_KARP_54_TABLEAU)),
        ("vern7", GPUVern7()),
        ("Vern9", GPUVern9()),
        ("gpuvern7", GPUVern7()),
    ],
)
def test_get_algorithm_by_name(name, expected):
    assert get_algorithm(name) == expected


def test_get_algorithm_passes_tags_through():
    alg = GPUERK(tableau=HEUN_21_TABLEAU)
    assert get_algorithm(alg) is alg


def test_get_algorithm_unknown_name():
    with pytest.raises(KeyError, match="Unknown algorithm"):
        get_algorithm("vern9")
