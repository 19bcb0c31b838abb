"""Move model: append-only ledger of every stock quantity change."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Index, Integer, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from lotstock.db.base import Base


class MoveType(str, Enum):
    """Kinds of ledger entries."""

    IN = "IN"  # Lot receipt
    OUT = "OUT"  # FIFO issue from a lot
    ADJ = "ADJ"  # Lot-less manual correction


class ReasonCode(str, Enum):
    """Why stock left. Required on OUT moves."""

    SALE = "SALE"
    DIE_OFF = "DIE_OFF"
    DAMAGE = "DAMAGE"
    WASTE = "WASTE"
    LOST = "LOST"
    THEFT = "THEFT"
    SAMPLE = "SAMPLE"
    INTERNAL_USE = "INTERNAL_USE"
    TRANSFER = "TRANSFER"


class Move(Base):
    """An immutable stock movement. Rows are inserted, never updated or deleted."""

    __tablename__ = "inventory_moves"
    __table_args__ = (
        CheckConstraint("change_qty <> 0", name="ck_move_change_qty_non_zero"),
        CheckConstraint("move_type IN ('IN', 'OUT', 'ADJ')", name="ck_move_type"),
        Index("ix_move_variant_created", "variant_id", "created_at"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    variant_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    lot_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("inventory_lots.id", ondelete="RESTRICT"), nullable=True, index=True
    )
    move_type: Mapped[str] = mapped_column(String(3), nullable=False)
    change_qty: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_cost: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    reason_code: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    ref_order_detail_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True, index=True)
    note: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    created_by: Mapped[str] = mapped_column(String(100), nullable=False, default="system")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)

    lot: Mapped[Optional["Lot"]] = relationship("Lot", back_populates="moves")


# Forward references
from lotstock.models.lot import Lot
