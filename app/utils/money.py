from decimal import Decimal, InvalidOperation, localcontext
from fractions import Fraction
from typing import Tuple, Union

from app.core import config
from app.core.errors import InvalidAmount

# All ledger amounts are ints in minor units (paise). Decimals only exist at
# the boundary: to_minor() on the way in, to_major()/format_amount() on the way out.

MINOR_PER_MAJOR = 10 ** config.CURRENCY_EXPONENT


def _check(*values) -> None:
    for v in values:
        if isinstance(v, bool) or not isinstance(v, int):
            raise TypeError(f"money amounts must be int minor units, got {type(v).__name__}")


def add(a: int, b: int) -> int:
    _check(a, b)
    return a + b


def subtract(a: int, b: int) -> int:
    _check(a, b)
    return a - b


def compare(a: int, b: int) -> int:
    _check(a, b)
    return (a > b) - (a < b)


def is_zero_or_negative(a: int) -> bool:
    _check(a)
    return a <= 0


def clamp_to_non_negative(a: int) -> int:
    _check(a)
    return a if a > 0 else 0


def multiply_by_rational(amount: int, numerator: int, denominator: int) -> int:
    """
    amount * numerator / denominator, rounded ROUND_HALF_UP (ties away from zero).

    This is the only place in the ledger that rounds.

    Example:
      multiply_by_rational(1999, 18, 100) => 360   (359.82)
      multiply_by_rational(250, 1, 100)   => 3     (2.5 -> 3)
    """
    _check(amount, numerator, denominator)
    if denominator == 0:
        raise ZeroDivisionError("denominator must be non-zero")

    product = amount * numerator
    negative = (product < 0) != (denominator < 0)
    q, r = divmod(abs(product), abs(denominator))
    if 2 * r >= abs(denominator):
        q += 1
    return -q if negative else q


def rate_from_percent(percent: Union[int, str, Decimal]) -> Tuple[int, int]:
    """'18' -> (18, 100), '12.5' -> (1, 8)."""
    if isinstance(percent, float):
        raise TypeError("percent must not be a float")
    try:
        frac = Fraction(Decimal(str(percent))) / 100
    except (InvalidOperation, ValueError) as exc:
        raise InvalidAmount(f"Invalid percentage: {percent!r}") from exc
    return frac.numerator, frac.denominator


def ratio(value: Union[int, str, Decimal]) -> Tuple[int, int]:
    """Exact (numerator, denominator) for a decimal quantity such as '1.5'."""
    if isinstance(value, float):
        raise TypeError("quantity must not be a float")
    try:
        frac = Fraction(Decimal(str(value)))
    except (InvalidOperation, ValueError) as exc:
        raise InvalidAmount(f"Invalid quantity: {value!r}") from exc
    return frac.numerator, frac.denominator


# -------------------------------------------------
# Boundary conversion
# -------------------------------------------------
def to_minor(value: Union[int, str, Decimal]) -> int:
    """
    Convert a major-unit amount ("12.50", Decimal("12.5"), 12) to minor units.

    Never rounds: anything finer than one minor unit is rejected, as are
    floats, NaN and infinities.
    """
    if isinstance(value, bool) or isinstance(value, float):
        raise InvalidAmount(f"Amount must be a decimal string or Decimal, not {type(value).__name__}")
    try:
        d = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except (InvalidOperation, ValueError) as exc:
        raise InvalidAmount(f"Invalid amount: {value!r}") from exc

    if not d.is_finite():
        raise InvalidAmount(f"Amount must be finite: {value!r}")

    # enough digits that scaling is exact, whatever the input length
    with localcontext() as ctx:
        ctx.prec = max(ctx.prec, len(d.as_tuple().digits) + config.CURRENCY_EXPONENT + 2)
        scaled = d.scaleb(config.CURRENCY_EXPONENT)
    if scaled != scaled.to_integral_value():
        raise InvalidAmount(
            f"Amount {value!r} has more than {config.CURRENCY_EXPONENT} decimal places"
        )
    return int(scaled)


def to_major(minor: int) -> Decimal:
    _check(minor)
    return (Decimal(minor) / MINOR_PER_MAJOR).quantize(Decimal(1).scaleb(-config.CURRENCY_EXPONENT))


def format_amount(minor: int) -> str:
    major = to_major(minor)
    sign = "-" if major < 0 else ""
    return f"{sign}{config.CURRENCY_SYMBOL}{abs(major):,.{config.CURRENCY_EXPONENT}f}"
