"""Inventory domain errors.

Services raise these; ``lotstock.main`` maps them onto HTTP responses.
"""

from typing import Any, Dict, Optional


class InventoryError(Exception):
    """Base class for errors raised by the inventory core."""

    code = "inventory_error"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {"detail": self.message, "code": self.code}


class InvalidArgument(InventoryError):
    """Malformed or out-of-range input. The caller must fix the request."""

    code = "invalid_argument"


class InsufficientStock(InventoryError):
    """An issue asked for more than the open lots of the variant hold."""

    code = "insufficient_stock"

    def __init__(self, variant_id: int, available: int, requested: int):
        self.variant_id = variant_id
        self.available = available
        self.requested = requested
        super().__init__(
            f"Insufficient stock for variant {variant_id}: "
            f"requested {requested}, available {available}"
        )

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update(
            variant_id=self.variant_id,
            available=self.available,
            requested=self.requested,
        )
        return data


class InsufficientLotQuantity(InventoryError):
    """A lot no longer holds the quantity an issue transaction targeted.

    Raised when a concurrent writer consumed the lot between read and
    decrement. The allocation engine retries on it; callers never see it.
    """

    code = "insufficient_lot_quantity"

    def __init__(self, lot_id: int, requested: int, remaining: Optional[int]):
        self.lot_id = lot_id
        self.requested = requested
        self.remaining = remaining
        super().__init__(
            f"Lot {lot_id} cannot give {requested}: remaining {remaining}"
        )


class StorageUnavailable(InventoryError):
    """The store failed or kept conflicting. Always safe to retry."""

    code = "storage_unavailable"
