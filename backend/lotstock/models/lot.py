"""Lot model: one cost-bearing receipt batch of a variant."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from sqlalchemy import CheckConstraint, DateTime, Index, Integer, Numeric, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from lotstock.db.base import Base


class LotState(str, Enum):
    """Lot lifecycle. OPEN -> DEPLETED only, driven by issue allocations."""

    OPEN = "OPEN"
    DEPLETED = "DEPLETED"


class Lot(Base):
    """A receipt batch.

    ``qty_received`` and ``unit_cost`` never change after insert.
    ``qty_remaining`` only goes down, and depleted lots are kept for audit.
    """

    __tablename__ = "inventory_lots"
    __table_args__ = (
        CheckConstraint("qty_received > 0", name="ck_lot_qty_received_positive"),
        CheckConstraint(
            "qty_remaining >= 0 AND qty_remaining <= qty_received",
            name="ck_lot_qty_remaining_range",
        ),
        CheckConstraint("unit_cost >= 0", name="ck_lot_unit_cost_non_negative"),
        # FIFO scan: open lots of a variant by (received_at, id)
        Index("ix_lot_variant_fifo", "variant_id", "received_at", "id"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    # Value reference into the catalog; unknown variants are allowed
    variant_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    qty_received: Mapped[int] = mapped_column(Integer, nullable=False)
    qty_remaining: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_cost: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    received_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    note: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    moves: Mapped[List["Move"]] = relationship("Move", back_populates="lot", order_by="Move.id")

    @property
    def state(self) -> LotState:
        return LotState.OPEN if self.qty_remaining > 0 else LotState.DEPLETED

    @property
    def qty_consumed(self) -> int:
        return self.qty_received - self.qty_remaining


# Forward references
from lotstock.models.move import Move
