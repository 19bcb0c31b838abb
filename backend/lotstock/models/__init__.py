"""SQLAlchemy models."""

from lotstock.models.catalog import Product, ProductVariant
from lotstock.models.lot import Lot, LotState
from lotstock.models.move import Move, MoveType, ReasonCode

__all__ = [
    "Product",
    "ProductVariant",
    "Lot",
    "LotState",
    "Move",
    "MoveType",
    "ReasonCode",
]
