"""Grain — the distributable unit of value, as exact fixed-precision integers.

A Grain value is a non-negative count of base units. One whole Grain is
10**18 base units (DECIMAL_PRECISION implied decimal places). Python ints
are arbitrary precision, so addition and subtraction never overflow and
never lose precision. No floats in finance: Cred weights may arrive as
floats, but they are converted to exact rationals before any Grain is
computed from them.

Proportional split (largest-remainder / Hamilton method):
    raw_i    = budget × w_i / Σw
    share_i  = floor(raw_i)
    leftover = budget − Σ share_i          (always < number of keys)
    leftover units go one each to the largest fractional remainders,
    ties broken by ascending key.

Invariants:
- Σ shares == budget exactly
- every share >= 0
- a strictly larger weight never yields a strictly smaller share
- equal weights differ by at most one base unit (smaller key gets it)
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from fractions import Fraction
from typing import Any, Hashable, Iterable, List, Sequence, Tuple, Union

from grainledger.errors import InvalidGrainAmount, NoEligibleRecipients

DECIMAL_PRECISION = 18

_UNITS_PER_GRAIN = 10 ** DECIMAL_PRECISION
_BASE_UNITS_PATTERN = re.compile(r"-?(0|[1-9][0-9]*)")


@dataclass(frozen=True, order=True)
class Grain:
    """A non-negative amount of Grain, in base units.

    Usage:
        Grain(5)                  # five base units
        Grain.parse("5")          # same, from the serialized form
        Grain.of("1.5")           # one and a half whole Grain
    """
    units: int

    def __post_init__(self) -> None:
        if isinstance(self.units, bool) or not isinstance(self.units, int):
            raise InvalidGrainAmount(
                f"Grain must be an integer number of base units, got {self.units!r}"
            )
        if self.units < 0:
            raise InvalidGrainAmount(f"Grain cannot be negative, got {self.units}")

    @staticmethod
    def parse(value: Union[str, int]) -> Grain:
        """Parse the base-unit integer form used in serialized records."""
        if isinstance(value, str):
            if not _BASE_UNITS_PATTERN.fullmatch(value):
                raise InvalidGrainAmount(f"Malformed Grain amount: {value!r}")
            return Grain(int(value))
        return Grain(value)

    @staticmethod
    def of(value: Union[str, int, Decimal]) -> Grain:
        """Build a Grain from a whole-Grain decimal amount, e.g. "1.5".

        Rejects floats and amounts with more than DECIMAL_PRECISION
        decimal places.
        """
        if isinstance(value, (bool, float)):
            raise InvalidGrainAmount(
                f"Grain amounts must be exact (str, int or Decimal), got {value!r}"
            )
        try:
            amount = Decimal(value) if not isinstance(value, Decimal) else value
        except (InvalidOperation, TypeError, ValueError):
            raise InvalidGrainAmount(f"Malformed Grain amount: {value!r}") from None
        if not amount.is_finite():
            raise InvalidGrainAmount(f"Grain amount must be finite, got {value!r}")

        scaled = Fraction(amount) * _UNITS_PER_GRAIN
        if scaled.denominator != 1:
            raise InvalidGrainAmount(
                f"Grain amount {value!r} has more than {DECIMAL_PRECISION} decimal places"
            )
        return Grain(scaled.numerator)

    def to_decimal(self) -> Decimal:
        """Return the amount in whole Grain, exactly."""
        return Decimal(f"{self.units}E-{DECIMAL_PRECISION}")

    def format(self, decimals: int = 0, suffix: str = "g") -> str:
        """Human-readable amount, truncated towards zero.

        Grain(1234 * 10**18 + 5 * 10**17).format(1) == "1,234.5g"
        """
        if not (0 <= decimals <= DECIMAL_PRECISION):
            raise ValueError(
                f"decimals must be in [0, {DECIMAL_PRECISION}], got {decimals}"
            )
        whole, fraction = divmod(self.units, _UNITS_PER_GRAIN)
        text = f"{whole:,}"
        if decimals:
            digits = str(fraction).rjust(DECIMAL_PRECISION, "0")[:decimals]
            text = f"{text}.{digits}"
        return f"{text}{suffix}"

    def __add__(self, other: Any) -> Grain:
        if not isinstance(other, Grain):
            return NotImplemented
        return Grain(self.units + other.units)

    def __sub__(self, other: Any) -> Grain:
        if not isinstance(other, Grain):
            return NotImplemented
        result = self.units - other.units
        if result < 0:
            raise InvalidGrainAmount(
                f"Grain subtraction would go negative: {self.units} - {other.units}"
            )
        return Grain(result)

    def __str__(self) -> str:
        return str(self.units)


ZERO = Grain(0)
ONE = Grain(_UNITS_PER_GRAIN)


def grain_sum(values: Iterable[Grain]) -> Grain:
    """Exact sum of Grain values. The empty sum is ZERO."""
    total = 0
    for value in values:
        if not isinstance(value, Grain):
            raise InvalidGrainAmount(f"Expected Grain, got {value!r}")
        total += value.units
    return Grain(total)


def to_fraction(value: Any) -> Fraction:
    """Convert a non-negative finite weight to an exact rational.

    Floats go through their shortest repr so that 0.1 becomes 1/10,
    which is what the caller meant.
    """
    if isinstance(value, bool):
        raise ValueError(f"Weight must be a number, got {value!r}")
    if isinstance(value, Fraction):
        result = value
    elif isinstance(value, int):
        result = Fraction(value)
    elif isinstance(value, float):
        if not math.isfinite(value):
            raise ValueError(f"Weight must be finite, got {value!r}")
        result = Fraction(repr(value))
    elif isinstance(value, Decimal):
        if not value.is_finite():
            raise ValueError(f"Weight must be finite, got {value!r}")
        result = Fraction(value)
    else:
        raise ValueError(f"Weight must be a number, got {value!r}")

    if result < 0:
        raise ValueError(f"Weight must be non-negative, got {value!r}")
    return result


def split_budget(
    budget: Grain,
    weighted: Sequence[Tuple[Hashable, Any]],
) -> List[Grain]:
    """Split a budget into shares proportional to the given weights.

    Args:
        budget: The Grain to split.
        weighted: Ordered (key, weight) pairs. Keys must be mutually
            comparable; they only matter for breaking remainder ties.

    Returns:
        One Grain per input pair, in input order, summing to budget.

    Raises:
        ValueError: If a weight is negative, non-finite or not a number.
        NoEligibleRecipients: If budget is positive and all weights are zero.
    """
    weights = [to_fraction(weight) for _, weight in weighted]
    if budget.units == 0:
        return [ZERO for _ in weights]

    total = sum(weights, Fraction(0))
    if total == 0:
        raise NoEligibleRecipients(
            f"Cannot split a budget of {budget.units} across "
            f"{len(weights)} recipients with no positive weight"
        )

    shares: List[int] = []
    remainders: List[Fraction] = []
    for weight in weights:
        raw = budget.units * weight / total
        floor = raw.numerator // raw.denominator
        shares.append(floor)
        remainders.append(raw - floor)

    leftover = budget.units - sum(shares)
    ranked = sorted(
        range(len(weights)),
        key=lambda i: (-remainders[i], weighted[i][0]),
    )
    for i in ranked[:leftover]:
        shares[i] += 1

    return [Grain(share) for share in shares]
