from dataclasses import dataclass
from typing import Tuple


@dataclass(frozen=True)
class EmbeddedPair:
    """Butcher tableau of an explicit embedded Runge-Kutta pair.

    ``b`` are the weights of the propagated solution and ``b_err = b - b_hat``
    the weights of the local error estimate. ``error_order`` is the order of
    the lower-order member, which sets the step-size controller exponent.
    """

    name: str
    order: int
    error_order: int
    c: Tuple[float, ...]
    a: Tuple[Tuple[float, ...], ...]
    b: Tuple[float, ...]
    b_err: Tuple[float, ...]

    @property
    def stages(self) -> int:
        return len(self.c)


def _difference(b, b_hat):
    return tuple(x - y for x, y in zip(b, b_hat))


# fmt: off
BOGACKI_SHAMPINE_32 = EmbeddedPair(
    name="Bogacki-Shampine 3(2)",
    order=3,
    error_order=2,
    c=(0.0, 1/2, 3/4, 1.0),
    a=(
        (),
        (1/2,),
        (0.0, 3/4),
        (2/9, 1/3, 4/9),
    ),
    b=(2/9, 1/3, 4/9, 0.0),
    b_err=_difference((2/9, 1/3, 4/9, 0.0), (7/24, 1/4, 1/3, 1/8)),
)

FEHLBERG_45 = EmbeddedPair(
    name="Fehlberg 4(5)",
    order=4,
    error_order=4,
    c=(0.0, 1/4, 3/8, 12/13, 1.0, 1/2),
    a=(
        (),
        (1/4,),
        (3/32, 9/32),
        (1932/2197, -7200/2197, 7296/2197),
        (439/216, -8.0, 3680/513, -845/4104),
        (-8/27, 2.0, -3544/2565, 1859/4104, -11/40),
    ),
    b=(25/216, 0.0, 1408/2565, 2197/4104, -1/5, 0.0),
    b_err=_difference(
        (25/216, 0.0, 1408/2565, 2197/4104, -1/5, 0.0),
        (16/135, 0.0, 6656/12825, 28561/56430, -9/50, 2/55),
    ),
)

DORMAND_PRINCE_54 = EmbeddedPair(
    name="Dormand-Prince 5(4)",
    order=5,
    error_order=4,
    c=(0.0, 1/5, 3/10, 4/5, 8/9, 1.0, 1.0),
    a=(
        (),
        (1/5,),
        (3/40, 9/40),
        (44/45, -56/15, 32/9),
        (19372/6561, -25360/2187, 64448/6561, -212/729),
        (9017/3168, -355/33, 46732/5247, 49/176, -5103/18656),
        (35/384, 0.0, 500/1113, 125/192, -2187/6784, 11/84),
    ),
    b=(35/384, 0.0, 500/1113, 125/192, -2187/6784, 11/84, 0.0),
    b_err=_difference(
        (35/384, 0.0, 500/1113, 125/192, -2187/6784, 11/84, 0.0),
        (5179/57600, 0.0, 7571/16695, 393/640, -92097/339200, 187/2100, 1/40),
    ),
)
# fmt: on

PAIRS = {
    3: BOGACKI_SHAMPINE_32,
    4: FEHLBERG_45,
    5: DORMAND_PRINCE_54,
}
