"""Butcher tableaus for the explicit Runge--Kutta ensemble kernels.

Tableaus are written as their strictly lower-triangular rows with exact
fractions where the literature gives them, and expanded to square float
matrices once at import.
"""

from fractions import Fraction as F
from typing import Dict, Optional, Sequence, Tuple

import attrs

from cuensemble.algorithms.order_conditions import solve_weights


def _as_float_tuple(values) -> Tuple[float, ...]:
    return tuple(float(value) for value in values)


def _as_float_matrix(rows) -> Tuple[Tuple[float, ...], ...]:
    return tuple(_as_float_tuple(row) for row in rows)


@attrs.define(frozen=True)
class ERKTableau:
    """Coefficients of an explicit Runge--Kutta method.

    Attributes
    ----------
    a
        Square, strictly lower-triangular stage matrix.
    b
        Weights of the propagated solution.
    c
        Stage times as fractions of the step.
    order
        Order of the propagated solution.
    b_hat
        Weights of the embedded lower-order solution, or ``None`` when the
        method has no error estimate and can only be stepped at fixed
        ``dt``.
    """

    a: Tuple[Tuple[float, ...], ...] = attrs.field(converter=_as_float_matrix)
    b: Tuple[float, ...] = attrs.field(converter=_as_float_tuple)
    c: Tuple[float, ...] = attrs.field(converter=_as_float_tuple)
    order: int = attrs.field()
    b_hat: Optional[Tuple[float, ...]] = attrs.field(
        default=None, converter=attrs.converters.optional(_as_float_tuple)
    )

    def __attrs_post_init__(self):
        stages = len(self.b)
        if len(self.c) != stages or len(self.a) != stages:
            raise ValueError(
                f"a, b and c must describe the same number of stages; got "
                f"{len(self.a)}, {stages} and {len(self.c)}."
            )
        for i, row in enumerate(self.a):
            if len(row) != stages:
                raise ValueError(f"Row {i} of a has {len(row)} entries, "
                                 f"expected {stages}.")
            if any(row[i:]):
                raise ValueError(
                    f"Row {i} of a is not strictly lower triangular, so "
                    "the method would be implicit."
                )
        if self.b_hat is not None and len(self.b_hat) != stages:
            raise ValueError("b_hat must have one weight per stage.")

    @property
    def stage_count(self) -> int:
        return len(self.b)

    @property
    def has_error_estimate(self) -> bool:
        """``True`` when the tableau supports adaptive stepping."""
        return self.b_hat is not None

    @property
    def flat_a(self) -> Tuple[float, ...]:
        """Return ``a`` flattened row by row, as the kernels index it."""
        return sum(self.a, ())

    @property
    def error_weights(self) -> Tuple[float, ...]:
        """Return ``b - b_hat``; zeros when there is no embedded solution."""
        if self.b_hat is None:
            return (0.0,) * self.stage_count
        return tuple(w - w_hat for w, w_hat in zip(self.b, self.b_hat))

    def typed(self, values, numba_precision) -> Tuple:
        """Cast coefficients to ``numba_precision`` for closure capture."""
        return tuple(numba_precision(value) for value in values)


def _square(lower: Sequence[Sequence]) -> list:
    stages = len(lower) + 1
    a = [[0.0] * stages]
    for row in lower:
        a.append(list(row) + [0.0] * (stages - len(row)))
    return a


def _explicit(
    lower: Sequence[Sequence],
    b: Sequence,
    order: int,
    b_hat: Optional[Sequence] = None,
) -> ERKTableau:
    """Build a tableau from the below-diagonal part of ``a``.

    ``lower[i]`` holds the ``i + 1`` coefficients of stage ``i + 1``, counting
    stages from zero. Stage zero has none. The nodes are the row sums of
    ``a``.
    """
    a = _square(lower)
    c = [sum(row) for row in a]
    return ERKTableau(a=a, b=b, c=c, order=order, b_hat=b_hat)


# Tsitouras, Ch. "Runge-Kutta pairs of order 5(4) satisfying only the first
# column simplifying assumption." Comput. Math. Appl. 62.2 (2011).
# Coefficients as printed in the paper, so nodes are given explicitly.
_TSIT5_B = (
    0.09646076681806523, 0.01, 0.4798896504144996, 1.379008574103742,
    -3.290069515436081, 2.324710524099774, 0.0,
)
_TSIT5_ERROR = (
    -0.00178001105222577714, -0.0008164344596567469, 0.007880878010261995,
    -0.1447110071732629, 0.5823571654525552, -0.45808210592918697,
    1.0 / 66.0,
)
TSITOURAS_54_TABLEAU = ERKTableau(
    a=(
        (0.0,) * 7,
        (0.161,) + (0.0,) * 6,
        (-0.008480655492356989, 0.335480655492357) + (0.0,) * 5,
        (2.897153057105493, -6.359448489975075, 4.3622954328695815)
        + (0.0,) * 4,
        (5.325864828439257, -11.748883564062828, 7.4955393428898365,
         -0.09249506636175525) + (0.0,) * 3,
        (5.86145544294642, -12.92096931784711, 8.159367898576159,
         -0.071584973281401, -0.028269050394068383, 0.0, 0.0),
        _TSIT5_B,
    ),
    b=_TSIT5_B,
    b_hat=tuple(w - e for w, e in zip(_TSIT5_B, _TSIT5_ERROR)),
    c=(0.0, 0.161, 0.327, 0.9, 0.9800255409045097, 1.0, 1.0),
    order=5,
)

# Heun (1900): trapezoidal predictor-corrector.
HEUN_21_TABLEAU = _explicit(
    lower=[(1,)],
    b=(F(1, 2), F(1, 2)),
    order=2,
)

# Ralston, Math. Comp. 16.80 (1962): minimum error bound third-order method.
RALSTON_33_TABLEAU = _explicit(
    lower=[(F(1, 2),), (0, F(3, 4))],
    b=(F(2, 9), F(1, 3), F(4, 9)),
    order=3,
)

# Bogacki and Shampine, Appl. Math. Lett. 2.4 (1989).
BOGACKI_SHAMPINE_32_TABLEAU = _explicit(
    lower=[
        (F(1, 2),),
        (0, F(3, 4)),
        (F(2, 9), F(1, 3), F(4, 9)),
    ],
    b=(F(2, 9), F(1, 3), F(4, 9), 0),
    b_hat=(F(7, 24), F(1, 4), F(1, 3), F(1, 8)),
    order=3,
)

# Dormand and Prince, J. Comput. Appl. Math. 6.1 (1980).
_DOPRI_B = (F(35, 384), 0, F(500, 1113), F(125, 192), F(-2187, 6784),
            F(11, 84), 0)
DORMAND_PRINCE_54_TABLEAU = _explicit(
    lower=[
        (F(1, 5),),
        (F(3, 40), F(9, 40)),
        (F(44, 45), F(-56, 15), F(32, 9)),
        (F(19372, 6561), F(-25360, 2187), F(64448, 6561), F(-212, 729)),
        (F(9017, 3168), F(-355, 33), F(46732, 5247), F(49, 176),
         F(-5103, 18656)),
        _DOPRI_B[:6],
    ],
    b=_DOPRI_B,
    b_hat=(F(5179, 57600), 0, F(7571, 16695), F(393, 640),
           F(-92097, 339200), F(187, 2100), F(1, 40)),
    order=5,
)

# Kutta (1901): the classical fourth-order method.
CLASSICAL_RK4_TABLEAU = _explicit(
    lower=[(F(1, 2),), (0, F(1, 2)), (0, 0, 1)],
    b=(F(1, 6), F(1, 3), F(1, 3), F(1, 6)),
    order=4,
)

# Cash and Karp, ACM Trans. Math. Softw. 16.3 (1990).
CASH_KARP_54_TABLEAU = _explicit(
    lower=[
        (F(1, 5),),
        (F(3, 40), F(9, 40)),
        (F(3, 10), F(-9, 10), F(6, 5)),
        (F(-11, 54), F(5, 2), F(-70, 27), F(35, 27)),
        (F(1631, 55296), F(175, 512), F(575, 13824), F(44275, 110592),
         F(253, 4096)),
    ],
    b=(F(37, 378), 0, F(250, 621), F(125, 594), 0, F(512, 1771)),
    b_hat=(F(2825, 27648), 0, F(18575, 48384), F(13525, 55296),
           F(277, 14336), F(1, 4)),
    order=5,
)

# Fehlberg, NASA Technical Report 315 (1969), propagating the fifth-order
# solution.
FEHLBERG_45_TABLEAU = _explicit(
    lower=[
        (F(1, 4),),
        (F(3, 32), F(9, 32)),
        (F(1932, 2197), F(-7200, 2197), F(7296, 2197)),
        (F(439, 216), -8, F(3680, 513), F(-845, 4104)),
        (F(-8, 27), 2, F(-3544, 2565), F(1859, 4104), F(-11, 40)),
    ],
    b=(F(16, 135), 0, F(6656, 12825), F(28561, 56430), F(-9, 50),
       F(2, 55)),
    b_hat=(F(25, 216), 0, F(1408, 2565), F(2197, 4104), F(-1, 5), 0),
    order=5,
)

# Verner, "Numerically optimal Runge-Kutta pairs with interpolants."
# Numer. Algorithms 53 (2010): the "most efficient" 7(6) pair. The
# propagated solution skips stages 2, 3 and 10; the embedded one skips 2, 3,
# 8 and 9.
VERNER_76_TABLEAU = _explicit(
    lower=[
        (0.005,),
        (-1.07679012345679, 1.185679012345679),
        (0.04083333333333333, 0.0, 0.1225),
        (0.6389139236255726, 0.0, -2.455672638223657, 2.272258714598084),
        (-2.6615773750187572, 0.0, 10.804513886456137, -8.3539146573962,
         0.820487594956657),
        (6.067741434696772, 0.0, -24.711273635911088, 20.427517930788895,
         -1.9061579788166472, 1.006172249242068),
        (12.054670076253203, 0.0, -49.75478495046899, 41.142888638604674,
         -4.461760149974004, 2.042334822239175, -0.09834843665406107),
        (10.138146522881808, 0.0, -42.6411360317175, 35.76384003992257,
         -4.3480228403929075, 2.0098622683770357, 0.3487490460338272,
         -0.27143900510483127),
        (-45.030072034298676, 0.0, 187.3272437654589, -154.02882369350186,
         18.56465306347536, -7.141809679295079, 1.3088085781613787, 0.0,
         0.0),
    ],
    b=(0.04715561848627222, 0.0, 0.0, 0.25750564298434153,
       0.26216653977412624, 0.15216092656738557, 0.4939969170032485,
       -0.29430311714032503, 0.08131747232495111, 0.0),
    b_hat=(0.044608606606341174, 0.0, 0.0, 0.26716403785713727,
           0.22010183001772932, 0.2188431703143157, 0.22898717054112028,
           0.0, 0.0, 0.02029518466335628),
    order=7,
)

# Verner (2010): the "most efficient" 9(8) pair. Only the stage matrix is
# listed; the weights are the unique order 9 and order 8 solutions on the
# stages each formula uses.
_VERN9_LOWER = [
    (0.03462,),
    (-0.03893354388572875, 0.13595789452450918),
    (0.03638413148954267, 0.0, 0.10915239446862801),
    (2.0257639143939694, 0.0, -7.638023836496291, 6.173259922102322),
    (0.05112275589406061, 0.0, 0.0, 0.17708237945550218,
     0.0008027762409222536),
    (0.13160063579752163, 0.0, 0.0, -0.2957276252669636,
     0.08781378035642955, 0.6213052975225274),
    (0.07166666666666667, 0.0, 0.0, 0.0, 0.0, 0.33055335789153195,
     0.2427799754418014),
    (0.071806640625, 0.0, 0.0, 0.0, 0.0, 0.3294380283228177,
     0.1165190029271823, -0.034013671875),
    (0.04836757646340646, 0.0, 0.0, 0.0, 0.0, 0.03928989925676164,
     0.10547409458903446, -0.021438652846483126, -0.10412291746271944),
    (-0.026645614872014785, 0.0, 0.0, 0.0, 0.0, 0.03333333333333333,
     -0.1631072244872467, 0.03396081684127761, 0.1572319413814626,
     0.21522674780318796),
    (0.03689009248708622, 0.0, 0.0, 0.0, 0.0, -0.1465181576725543,
     0.2242577768172024, 0.02294405717066073, -0.0035850052905728597,
     0.08669223316444385, 0.43838406519683376),
    (-0.4866012215113341, 0.0, 0.0, 0.0, 0.0, -6.304602650282853,
     -0.2812456182894729, -2.679019236219849, 0.5188156639241577,
     1.3653531876033418, 5.8850910885039465, 2.8028087862720628),
    (0.4185367457753472, 0.0, 0.0, 0.0, 0.0, 6.724547581906459,
     -0.42544428016461133, 3.3432791530012653, 0.6170816631175374,
     -0.9299661239399329, -6.099948804751011, -3.002206187889399,
     0.2553202529443446),
    (-0.7793740861228848, 0.0, 0.0, 0.0, 0.0, -13.937342538107776,
     1.2520488533793563, -14.691500408016868, -0.494705058533141,
     2.2429749091462368, 13.367893803828643, 14.396650486650687,
     -0.79758133317768, 0.4409353709534278),
    (2.0580513374668867, 0.0, 0.0, 0.0, 0.0, 22.357937727968032,
     0.9094981099755646, 35.89110098240264, -3.442515027624454,
     -4.865481358036369, -18.909803813543427, -34.26354448030452,
     1.2647565216956427, 0.0, 0.0),
]
_VERN9_A = _square(_VERN9_LOWER)
VERNER_98_TABLEAU = _explicit(
    lower=_VERN9_LOWER,
    b=solve_weights(_VERN9_A, 9, (0, 7, 8, 9, 10, 11, 12, 13, 14)),
    b_hat=solve_weights(_VERN9_A, 8, (0, 7, 8, 9, 10, 11, 12, 13, 15)),
    order=9,
)

#: Tableau used when an algorithm does not name one.
DEFAULT_ERK_TABLEAU = TSITOURAS_54_TABLEAU

#: Names accepted by :func:`cuensemble.algorithms.get_algorithm`.
ERK_TABLEAU_REGISTRY: Dict[str, ERKTableau] = {
    "tsit5": TSITOURAS_54_TABLEAU,
    "tsitouras-54": TSITOURAS_54_TABLEAU,
    "heun-21": HEUN_21_TABLEAU,
    "ralston-33": RALSTON_33_TABLEAU,
    "bogacki-shampine-32": BOGACKI_SHAMPINE_32_TABLEAU,
    "dormand-prince-54": DORMAND_PRINCE_54_TABLEAU,
    "dopri54": DORMAND_PRINCE_54_TABLEAU,
    "classical-rk4": CLASSICAL_RK4_TABLEAU,
    "cash-karp-54": CASH_KARP_54_TABLEAU,
    "fehlberg-45": FEHLBERG_45_TABLEAU,
    "vern7": VERNER_76_TABLEAU,
    "verner-76": VERNER_76_TABLEAU,
    "vern9": VERNER_98_TABLEAU,
    "verner-98": VERNER_98_TABLEAU,
}
