"""Move Ledger - the append-only record of every stock quantity change.

The ledger checks shape only (types, signs, lot presence). Business rules such
as "SALE needs an order line reference" belong to the allocation engine.
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, List, Optional

from sqlalchemy import Select, or_, select
from sqlalchemy.orm import Session

from lotstock.core.clock import Clock, to_utc, utc_now
from lotstock.core.config import settings
from lotstock.core.exceptions import InvalidArgument
from lotstock.core.validators import require_int
from lotstock.models.catalog import Product, ProductVariant
from lotstock.models.move import Move, MoveType, ReasonCode

logger = logging.getLogger(__name__)


def parse_move_type(value: Any) -> MoveType:
    if isinstance(value, MoveType):
        return value
    try:
        return MoveType(str(value).strip().upper())
    except ValueError:
        raise InvalidArgument(f"move_type must be one of {[t.value for t in MoveType]}")


def parse_reason_code(value: Any) -> ReasonCode:
    if isinstance(value, ReasonCode):
        return value
    try:
        return ReasonCode(str(value).strip().upper())
    except ValueError:
        raise InvalidArgument(f"reason_code must be one of {[r.value for r in ReasonCode]}")


def clamp_moves_limit(limit: Optional[int]) -> int:
    if limit is None:
        return settings.moves_default_limit
    limit = require_int(limit, "limit")
    if limit <= 0:
        raise InvalidArgument("limit must be greater than 0")
    return min(limit, settings.moves_max_limit)


def apply_move_filters(
    stmt: Select,
    variant_id: Optional[int] = None,
    move_type: Optional[Any] = None,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    free_text: Optional[str] = None,
) -> Select:
    """Add ledger filters to a select over ``Move``.

    ``date_from`` is inclusive and ``date_to`` exclusive. ``free_text``
    matches product name or SKU, so the statement must already be outer
    joined to ProductVariant and Product when it is used.
    """
    if variant_id is not None:
        stmt = stmt.where(Move.variant_id == variant_id)
    if move_type is not None:
        stmt = stmt.where(Move.move_type == parse_move_type(move_type).value)
    if date_from is not None:
        stmt = stmt.where(Move.created_at >= to_utc(date_from))
    if date_to is not None:
        stmt = stmt.where(Move.created_at < to_utc(date_to))
    if free_text and free_text.strip():
        pattern = f"%{free_text.strip()}%"
        stmt = stmt.where(or_(Product.name.ilike(pattern), ProductVariant.sku.ilike(pattern)))
    return stmt


def join_catalog(stmt: Select) -> Select:
    return stmt.outerjoin(ProductVariant, ProductVariant.id == Move.variant_id).outerjoin(
        Product, Product.id == ProductVariant.product_id
    )


class MoveLedger:
    """Appends and lists stock moves."""

    def __init__(self, db: Session, clock: Clock = utc_now):
        self.db = db
        self.clock = clock

    def append_move(
        self,
        variant_id: int,
        lot_id: Optional[int],
        move_type: Any,
        change_qty: int,
        unit_cost: Optional[Decimal] = None,
        reason_code: Optional[Any] = None,
        ref_order_detail_id: Optional[int] = None,
        note: Optional[str] = None,
        created_by: Optional[str] = None,
    ) -> Move:
        """Append one move and flush it so its id and timestamp are known."""
        move_type = parse_move_type(move_type)
        change_qty = require_int(change_qty, "change_qty")
        if change_qty == 0:
            raise InvalidArgument("change_qty must not be 0")
        if move_type in (MoveType.IN, MoveType.OUT) and lot_id is None:
            raise InvalidArgument(f"{move_type.value} moves must reference a lot")
        if move_type == MoveType.IN and change_qty < 0:
            raise InvalidArgument("IN moves must have a positive change_qty")
        if move_type == MoveType.OUT and change_qty > 0:
            raise InvalidArgument("OUT moves must have a negative change_qty")

        move = Move(
            variant_id=variant_id,
            lot_id=lot_id,
            move_type=move_type.value,
            change_qty=change_qty,
            unit_cost=unit_cost,
            reason_code=parse_reason_code(reason_code).value if reason_code is not None else None,
            ref_order_detail_id=ref_order_detail_id,
            note=note,
            created_by=created_by or "system",
            created_at=to_utc(self.clock()),
        )
        self.db.add(move)
        self.db.flush()
        return move

    def list_moves(
        self,
        variant_id: Optional[int] = None,
        move_type: Optional[Any] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        free_text: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[Move]:
        """Moves matching the filters, newest first."""
        stmt = select(Move)
        if free_text and free_text.strip():
            stmt = join_catalog(stmt)
        stmt = apply_move_filters(stmt, variant_id, move_type, date_from, date_to, free_text)
        stmt = stmt.order_by(Move.created_at.desc(), Move.id.desc()).limit(clamp_moves_limit(limit))
        return list(self.db.scalars(stmt))

    def moves_for_lot(self, lot_id: int) -> List[Move]:
        return list(
            self.db.scalars(select(Move).where(Move.lot_id == lot_id).order_by(Move.id))
        )
