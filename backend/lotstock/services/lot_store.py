"""Lot Store - owns lot records and the only writer of ``qty_remaining``.

FIFO contract
-------------
``list_open_lots`` returns a variant's lots with ``qty_remaining > 0`` sorted
by ``FIFO_ORDER``: ``received_at`` ascending, then ``lot_id`` ascending to
break ties between lots received at the same instant. The allocation engine
consumes lots in exactly this order; do not change it.
"""

import logging
from datetime import datetime
from typing import Any, List, Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from lotstock.core.clock import Clock, to_utc, utc_now
from lotstock.core.exceptions import InsufficientLotQuantity, InvalidArgument
from lotstock.core.validators import require_cost, require_int, require_positive_int
from lotstock.models.lot import Lot

logger = logging.getLogger(__name__)

FIFO_ORDER = (Lot.received_at.asc(), Lot.id.asc())


class LotStore:
    """Creates lots, lists them in FIFO order and decrements them."""

    def __init__(self, db: Session, clock: Clock = utc_now):
        self.db = db
        self.clock = clock

    def create_lot(
        self,
        variant_id: Any,
        qty_received: Any,
        unit_cost: Any,
        received_at: Optional[datetime] = None,
        note: Optional[str] = None,
    ) -> Lot:
        """Insert a receipt batch with ``qty_remaining == qty_received``.

        The lot is flushed, not committed: the caller's unit of work decides.
        """
        variant_id = require_int(variant_id, "variant_id")
        qty = require_positive_int(qty_received, "qty")
        cost = require_cost(unit_cost)
        if received_at is not None and not isinstance(received_at, datetime):
            raise InvalidArgument("received_at must be a datetime")

        lot = Lot(
            variant_id=variant_id,
            qty_received=qty,
            qty_remaining=qty,
            unit_cost=cost,
            received_at=to_utc(received_at or self.clock()),
            note=note,
        )
        self.db.add(lot)
        self.db.flush()
        return lot

    def get_lot(self, lot_id: int) -> Optional[Lot]:
        return self.db.get(Lot, lot_id)

    def list_open_lots(self, variant_id: int, for_update: bool = False) -> List[Lot]:
        """Open lots of a variant in FIFO order.

        ``for_update`` takes row locks on the returned lots (where the
        database supports it) for the rest of the transaction.
        """
        stmt = (
            select(Lot)
            .where(Lot.variant_id == variant_id, Lot.qty_remaining > 0)
            .order_by(*FIFO_ORDER)
        )
        if for_update:
            stmt = stmt.with_for_update()
        return list(self.db.scalars(stmt))

    def list_lots(self, variant_id: int, include_depleted: bool = True) -> List[Lot]:
        """All lots of a variant in FIFO order, depleted ones included by default."""
        stmt = select(Lot).where(Lot.variant_id == variant_id)
        if not include_depleted:
            stmt = stmt.where(Lot.qty_remaining > 0)
        return list(self.db.scalars(stmt.order_by(*FIFO_ORDER)))

    def decrement_remaining(self, lot_id: int, qty: int) -> Lot:
        """Atomically take ``qty`` from a lot.

        The UPDATE only matches while the lot still holds ``qty``, so a
        concurrent consumer that got there first makes it match nothing and
        InsufficientLotQuantity is raised instead of driving the lot negative.
        """
        qty = require_positive_int(qty, "qty")
        result = self.db.execute(
            update(Lot)
            .where(Lot.id == lot_id, Lot.qty_remaining >= qty)
            .values(qty_remaining=Lot.qty_remaining - qty)
            .execution_options(synchronize_session=False)
        )
        lot = self.db.get(Lot, lot_id)
        if lot is not None:
            self.db.refresh(lot)

        if result.rowcount != 1:
            remaining = lot.qty_remaining if lot is not None else None
            logger.warning(
                f"Lot {lot_id} conflict: wanted {qty}, remaining {remaining}"
            )
            raise InsufficientLotQuantity(lot_id, qty, remaining)
        return lot
