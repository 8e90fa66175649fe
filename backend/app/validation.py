from __future__ import annotations

from typing import Any


# Maximum amount: $9,999,999.99 (999,999,999 cents)
# Line gross (price x quantity) is held to the same bound so amounts fit an Integer column
MAX_AMOUNT_CENTS = 999_999_999

# 10000 bps == 100%
MAX_BPS = 10_000


class ValidationError(ValueError):
    """400-level input problem."""


def require_int(name: str, value: Any) -> int:
    """
    Strict integer check for money, quantities and basis points.

    Rejects bools, floats and numeric strings: callers convert at the edge,
    the engine never guesses.
    """
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{name} must be an integer")
    return value


def require_cents(name: str, value: Any, *, allow_negative: bool = False) -> int:
    cents = require_int(name, value)
    if not allow_negative and cents < 0:
        raise ValidationError(f"{name} must be >= 0")
    if abs(cents) > MAX_AMOUNT_CENTS:
        raise ValidationError(f"{name} cannot exceed {MAX_AMOUNT_CENTS} (${MAX_AMOUNT_CENTS / 100:,.2f})")
    return cents


def optional_cents(name: str, value: Any) -> int | None:
    if value is None:
        return None
    return require_cents(name, value)


def require_bps(name: str, value: Any) -> int:
    bps = require_int(name, value)
    if bps < 0 or bps > MAX_BPS:
        raise ValidationError(f"{name} must be between 0 and {MAX_BPS} basis points")
    return bps


def optional_bps(name: str, value: Any) -> int | None:
    if value is None:
        return None
    return require_bps(name, value)


def require_quantity(name: str, value: Any) -> int:
    qty = require_int(name, value)
    if qty <= 0:
        raise ValidationError(f"{name} must be > 0")
    return qty


def require_choice(name: str, value: Any, choices: set[str]) -> str:
    if value not in choices:
        raise ValidationError(f"Invalid {name}: {value!r}. Must be one of {sorted(choices)}")
    return value
