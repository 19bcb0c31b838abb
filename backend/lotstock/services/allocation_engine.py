"""Allocation Engine - receipts, FIFO issues and manual adjustments.

Every public operation runs as one unit of work over the lot store and the
move ledger: either all of its lot mutations and moves commit, or none do.

Issue flow:
1. Validate the request (qty > 0, known reason code, SALE needs an order line)
2. Read the variant's open lots in FIFO order, row-locked
3. Refuse with InsufficientStock if they hold less than requested
4. Walk the lots oldest first; for each lot take min(remaining, still needed),
   decrement it and append an OUT move at that lot's own unit cost
5. Commit and return the per-lot allocations

If a decrement finds the lot already consumed by a concurrent issue, the whole
transaction is rolled back and replayed from step 2, up to
``settings.issue_max_attempts`` times.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, List, Optional, Sequence, TypeVar

from sqlalchemy.orm import Session

from lotstock.core.clock import Clock, utc_now
from lotstock.core.config import settings
from lotstock.core.exceptions import (
    InsufficientLotQuantity,
    InsufficientStock,
    InvalidArgument,
    StorageUnavailable,
)
from lotstock.core.validators import require_int, require_positive_int
from lotstock.db.session import unit_of_work
from lotstock.models.lot import Lot
from lotstock.models.move import Move, MoveType, ReasonCode
from lotstock.services.lot_store import LotStore
from lotstock.services.move_ledger import MoveLedger, parse_reason_code
from lotstock.services.stock_query_service import StockQueryService

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class Allocation:
    """How much of one lot an issue consumed, and at what cost."""

    lot_id: int
    allocated_qty: int
    unit_cost: Decimal
    move_id: int
    move_at: datetime


@dataclass(frozen=True)
class IssueResult:
    variant_id: int
    requested: int
    reason_code: str
    allocations: List[Allocation] = field(default_factory=list)

    @property
    def total_allocated(self) -> int:
        return sum(a.allocated_qty for a in self.allocations)

    @property
    def total_cost(self) -> Decimal:
        """FIFO cost of the issued quantity."""
        return sum((a.unit_cost * a.allocated_qty for a in self.allocations), Decimal("0"))


@dataclass(frozen=True)
class ReceiveResult:
    lot: Lot
    move: Move


@dataclass(frozen=True)
class IssueLine:
    """One line of a multi-line issue (e.g. a sale order)."""

    variant_id: int
    qty: int
    reason_code: Any = ReasonCode.SALE
    ref_order_detail_id: Optional[int] = None
    note: Optional[str] = None


@dataclass(frozen=True)
class SetStockResult:
    variant_id: int
    stock: int
    move: Optional[Move] = None


class AllocationEngine:
    """Transactional FIFO inventory operations for one database session."""

    def __init__(
        self,
        db: Session,
        clock: Clock = utc_now,
        max_attempts: Optional[int] = None,
    ):
        self.db = db
        self.clock = clock
        self.max_attempts = max_attempts or settings.issue_max_attempts
        self.lots = LotStore(db, clock)
        self.ledger = MoveLedger(db, clock)
        self.stock = StockQueryService(db)

    # ===== RECEIVE =====

    def receive(
        self,
        variant_id: Any,
        qty: Any,
        unit_cost: Any,
        received_at: Optional[datetime] = None,
        note: Optional[str] = None,
        created_by: Optional[str] = None,
    ) -> ReceiveResult:
        """Record a receipt: a new lot plus its IN move, committed together."""
        with unit_of_work(self.db):
            lot = self.lots.create_lot(variant_id, qty, unit_cost, received_at, note)
            move = self.ledger.append_move(
                variant_id=lot.variant_id,
                lot_id=lot.id,
                move_type=MoveType.IN,
                change_qty=lot.qty_received,
                unit_cost=lot.unit_cost,
                note=note,
                created_by=created_by,
            )
            known_variant = self.stock.catalog.get_variant(lot.variant_id) is not None
        logger.info(
            f"Received lot {lot.id}: variant {lot.variant_id} qty {lot.qty_received} @ {lot.unit_cost}"
        )
        if not known_variant:
            logger.warning(f"Variant {lot.variant_id} is not in the catalog; lot {lot.id} kept anyway")
        return ReceiveResult(lot=lot, move=move)

    # ===== ISSUE (FIFO) =====

    def issue(
        self,
        variant_id: Any,
        qty: Any,
        reason_code: Any,
        ref_order_detail_id: Optional[Any] = None,
        note: Optional[str] = None,
        created_by: Optional[str] = None,
    ) -> IssueResult:
        """Issue ``qty`` units of a variant, consuming the oldest lots first.

        Raises InvalidArgument for bad input and InsufficientStock (with
        ``available`` and ``requested``) when open lots hold too little. On
        any failure nothing is persisted.
        """
        line = self._validate_line(
            IssueLine(
                variant_id=variant_id,
                qty=qty,
                reason_code=reason_code,
                ref_order_detail_id=ref_order_detail_id,
                note=note,
            )
        )
        result = self._with_retry(lambda: self._allocate(line, created_by))
        logger.info(
            f"Issued variant {result.variant_id} qty {result.total_allocated} "
            f"({result.reason_code}) from {len(result.allocations)} lot(s), cost {result.total_cost}"
        )
        return result

    def issue_many(
        self,
        lines: Sequence[IssueLine],
        created_by: Optional[str] = None,
    ) -> List[IssueResult]:
        """Issue several lines in one transaction; one failing line aborts all."""
        if not lines:
            raise InvalidArgument("at least one line is required")
        validated = [self._validate_line(line) for line in lines]

        def allocate_all() -> List[IssueResult]:
            return [self._allocate(line, created_by) for line in validated]

        results = self._with_retry(allocate_all)
        logger.info(
            f"Issued {len(results)} line(s), {sum(r.total_allocated for r in results)} unit(s) in total"
        )
        return results

    def _validate_line(self, line: IssueLine) -> IssueLine:
        variant_id = require_int(line.variant_id, "variant_id")
        qty = require_positive_int(line.qty, "qty")
        if line.reason_code is None:
            raise InvalidArgument("reason_code is required")
        reason = parse_reason_code(line.reason_code)
        ref = line.ref_order_detail_id
        if ref is not None:
            ref = require_int(ref, "ref_order_detail_id")
        if reason == ReasonCode.SALE and ref is None:
            raise InvalidArgument("ref_order_detail_id is required when reason_code is SALE")
        return IssueLine(
            variant_id=variant_id,
            qty=qty,
            reason_code=reason,
            ref_order_detail_id=ref,
            note=line.note,
        )

    def _allocate(self, line: IssueLine, created_by: Optional[str]) -> IssueResult:
        open_lots = self.lots.list_open_lots(line.variant_id, for_update=True)
        available = sum(lot.qty_remaining for lot in open_lots)
        if available < line.qty:
            logger.warning(
                f"Insufficient stock for variant {line.variant_id}: "
                f"requested {line.qty}, available {available}"
            )
            raise InsufficientStock(line.variant_id, available, line.qty)

        remaining_to_allocate = line.qty
        allocations: List[Allocation] = []
        for lot in open_lots:
            if remaining_to_allocate == 0:
                break
            take = min(lot.qty_remaining, remaining_to_allocate)
            if take <= 0:
                continue

            lot = self.lots.decrement_remaining(lot.id, take)
            move = self.ledger.append_move(
                variant_id=line.variant_id,
                lot_id=lot.id,
                move_type=MoveType.OUT,
                change_qty=-take,
                unit_cost=lot.unit_cost,
                reason_code=line.reason_code,
                ref_order_detail_id=line.ref_order_detail_id,
                note=line.note,
                created_by=created_by,
            )
            allocations.append(
                Allocation(
                    lot_id=lot.id,
                    allocated_qty=take,
                    unit_cost=lot.unit_cost,
                    move_id=move.id,
                    move_at=move.created_at,
                )
            )
            remaining_to_allocate -= take

        if remaining_to_allocate > 0:
            raise InsufficientStock(line.variant_id, line.qty - remaining_to_allocate, line.qty)

        return IssueResult(
            variant_id=line.variant_id,
            requested=line.qty,
            reason_code=line.reason_code.value,
            allocations=allocations,
        )

    def _with_retry(self, operation: Callable[[], T]) -> T:
        for attempt in range(1, self.max_attempts + 1):
            try:
                with unit_of_work(self.db):
                    return operation()
            except InsufficientLotQuantity as exc:
                logger.warning(
                    f"Lot conflict on attempt {attempt}/{self.max_attempts}: {exc.message}"
                )
                if attempt == self.max_attempts:
                    raise StorageUnavailable(
                        "Stock changed concurrently too many times, retry the request"
                    ) from exc
        raise StorageUnavailable("Issue was not attempted")

    # ===== ADJUST =====

    def adjust(
        self,
        variant_id: Any,
        delta: Any,
        note: Optional[str] = None,
        created_by: Optional[str] = None,
    ) -> Move:
        """Append a lot-less ADJ move. Lots are not touched."""
        variant_id = require_int(variant_id, "variant_id")
        delta = require_int(delta, "delta")
        if delta == 0:
            raise InvalidArgument("delta must be a non-zero integer")

        with unit_of_work(self.db):
            move = self.ledger.append_move(
                variant_id=variant_id,
                lot_id=None,
                move_type=MoveType.ADJ,
                change_qty=delta,
                note=note,
                created_by=created_by,
            )
        logger.info(f"Adjusted variant {variant_id} by {delta:+d} (move {move.id})")
        return move

    def set_stock(
        self,
        variant_id: Any,
        target: Any,
        note: Optional[str] = "set stock",
        created_by: Optional[str] = None,
    ) -> SetStockResult:
        """Bring a variant's stock to ``target`` with one ADJ move of the difference."""
        variant_id = require_int(variant_id, "variant_id")
        target = require_int(target, "stock")
        if target < 0:
            raise InvalidArgument("stock must be an integer >= 0")

        with unit_of_work(self.db):
            delta = target - self.stock.get_stock(variant_id)
            move = None
            if delta != 0:
                move = self.ledger.append_move(
                    variant_id=variant_id,
                    lot_id=None,
                    move_type=MoveType.ADJ,
                    change_qty=delta,
                    note=note,
                    created_by=created_by,
                )
        if move is not None:
            logger.info(f"Set variant {variant_id} stock to {target} ({delta:+d}, move {move.id})")
        return SetStockResult(variant_id=variant_id, stock=target, move=move)
