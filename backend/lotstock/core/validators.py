"""Reusable parameter validators."""

from decimal import Decimal, InvalidOperation
from typing import Annotated, Any

from fastapi import Path

from lotstock.core.exceptions import InvalidArgument

# Positive integer ID validator for path parameters
PositiveIntId = Annotated[int, Path(gt=0, description="Resource ID (must be positive)")]

COST_QUANTUM = Decimal("0.01")


def require_int(value: Any, field: str) -> int:
    """Coerce an integer argument, rejecting bools, floats with fractions and junk."""
    if value is None or isinstance(value, bool):
        raise InvalidArgument(f"{field} must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, (float, Decimal)):
        try:
            whole = int(value)
        except (ValueError, OverflowError):
            raise InvalidArgument(f"{field} must be an integer")
        if value != whole:
            raise InvalidArgument(f"{field} must be an integer")
        return whole
    try:
        return int(str(value).strip())
    except ValueError:
        raise InvalidArgument(f"{field} must be an integer")


def require_positive_int(value: Any, field: str) -> int:
    number = require_int(value, field)
    if number <= 0:
        raise InvalidArgument(f"{field} must be greater than 0")
    return number


def require_cost(value: Any, field: str = "unit_cost") -> Decimal:
    """Coerce a non-negative decimal cost."""
    if value is None or isinstance(value, bool):
        raise InvalidArgument(f"{field} is required")
    try:
        cost = Decimal(str(value))
    except InvalidOperation:
        raise InvalidArgument(f"{field} must be a decimal number")
    if not cost.is_finite():
        raise InvalidArgument(f"{field} must be a finite number")
    if cost < 0:
        raise InvalidArgument(f"{field} must be greater than or equal to 0")
    # Costs are stored as NUMERIC(12, 2)
    try:
        exact = cost == cost.quantize(COST_QUANTUM)
    except InvalidOperation:
        raise InvalidArgument(f"{field} is too large")
    if not exact:
        raise InvalidArgument(f"{field} must have at most 2 decimal places")
    return cost
