"""Inventory routes - FIFO lots, the stock ledger and stock figures.

Write flows:
- Receive: one new lot plus its IN move
- Issue: FIFO walk over the variant's open lots, one OUT move per lot touched
- Sale: several issue lines for an order, all-or-nothing
- Adjust / set stock: one lot-less ADJ move

Domain errors raised by the services are mapped to HTTP responses by the
handlers registered in ``lotstock.main``.
"""

import logging
from datetime import datetime
from typing import List, Literal, Optional

from fastapi import APIRouter, Query, Request, status

from lotstock.core.rate_limit import limiter
from lotstock.core.rbac import RequireStaff
from lotstock.core.validators import PositiveIntId
from lotstock.db.session import DbSession
from lotstock.models.move import ReasonCode
from lotstock.schemas.inventory import (
    AdjustRequest,
    AdjustResponse,
    InventoryPage,
    IssueRequest,
    IssueResponse,
    LotAuditEntry,
    LotResponse,
    MoveListEntry,
    ProductStockResponse,
    ReceiveRequest,
    ReceiveResponse,
    SaleRequest,
    SaleResponse,
    SearchItem,
    SetStockRequest,
    SetStockResponse,
    VariantStockResponse,
)
from lotstock.services.allocation_engine import AllocationEngine, IssueLine
from lotstock.services.stock_query_service import StockQueryService

logger = logging.getLogger(__name__)

router = APIRouter()


# ==================== LISTINGS ====================

@router.get("/", response_model=InventoryPage)
@limiter.limit("60/minute")
def list_inventory(
    request: Request,
    db: DbSession,
    current_user: RequireStaff,
    scope: Literal["variant", "product"] = "variant",
    search: Optional[str] = None,
    order: Optional[str] = None,
    limit: int = Query(50, ge=1),
    offset: int = Query(0, ge=0),
):
    """Paged stock listing per variant (default) or per product."""
    return StockQueryService(db).list_inventory(
        scope=scope, search=search, order=order, limit=limit, offset=offset
    )


@router.get("/search/items", response_model=List[SearchItem])
@limiter.limit("120/minute")
def search_items(
    request: Request,
    db: DbSession,
    current_user: RequireStaff,
    q: Optional[str] = None,
    mode: Literal["in", "out"] = "in",
    limit: int = Query(20, ge=1),
):
    """Variant picker for the receive ("in") and issue ("out") forms."""
    return StockQueryService(db).search_items(q, mode=mode, limit=limit)


@router.get("/moves", response_model=List[MoveListEntry])
@limiter.limit("60/minute")
def list_moves(
    request: Request,
    db: DbSession,
    current_user: RequireStaff,
    variant_id: Optional[int] = None,
    move_type: Optional[Literal["IN", "OUT", "ADJ"]] = Query(None, alias="type"),
    date_from: Optional[datetime] = Query(None, alias="from"),
    date_to: Optional[datetime] = Query(None, alias="to"),
    q: Optional[str] = None,
    limit: Optional[int] = Query(None, ge=1),
):
    """Stock ledger, newest first. ``from`` is inclusive, ``to`` exclusive."""
    return StockQueryService(db).list_moves(
        variant_id=variant_id,
        move_type=move_type,
        date_from=date_from,
        date_to=date_to,
        free_text=q,
        limit=limit,
    )


@router.get("/stock/variants/{variant_id}", response_model=VariantStockResponse)
@limiter.limit("120/minute")
def get_variant_stock(
    request: Request,
    variant_id: PositiveIntId,
    db: DbSession,
    current_user: RequireStaff,
):
    """Current stock of one variant."""
    return {"variant_id": variant_id, "stock": StockQueryService(db).get_stock(variant_id)}


@router.get("/stock/products/{product_id}", response_model=ProductStockResponse)
@limiter.limit("120/minute")
def get_product_stock(
    request: Request,
    product_id: PositiveIntId,
    db: DbSession,
    current_user: RequireStaff,
):
    """Current stock of a product, summed over its variants."""
    return {
        "product_id": product_id,
        "stock": StockQueryService(db).get_stock_by_product(product_id),
    }


@router.get("/lots", response_model=List[LotResponse])
@limiter.limit("60/minute")
def list_lots(
    request: Request,
    db: DbSession,
    current_user: RequireStaff,
    variant_id: int = Query(..., gt=0),
    include_depleted: bool = True,
):
    """Lots of a variant in FIFO order."""
    lots = StockQueryService(db).list_lots(variant_id, include_depleted=include_depleted)
    return [_lot_payload(lot) for lot in lots]


@router.get("/lots/audit", response_model=List[LotAuditEntry])
@limiter.limit("30/minute")
def audit_lots(
    request: Request,
    db: DbSession,
    current_user: RequireStaff,
    variant_id: int = Query(..., gt=0),
):
    """Check each lot's consumed quantity against its OUT moves."""
    return StockQueryService(db).lot_audit(variant_id)


# ==================== WRITES ====================

@router.post("/receive", response_model=ReceiveResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit("30/minute")
def receive_stock(
    request: Request,
    body: ReceiveRequest,
    db: DbSession,
    current_user: RequireStaff,
):
    """Receive a batch of stock as a new lot."""
    result = AllocationEngine(db).receive(
        variant_id=body.variant_id,
        qty=body.qty,
        unit_cost=body.unit_cost,
        received_at=body.received_at,
        note=body.note,
        created_by=current_user.actor,
    )
    return {"lot": _lot_payload(result.lot), "move": result.move}


@router.post("/issue", response_model=IssueResponse)
@limiter.limit("60/minute")
def issue_stock(
    request: Request,
    body: IssueRequest,
    db: DbSession,
    current_user: RequireStaff,
):
    """Issue stock from the oldest open lots first.

    Responds 409 with ``available`` and ``requested`` when the open lots
    hold too little; nothing is written in that case.
    """
    result = AllocationEngine(db).issue(
        variant_id=body.variant_id,
        qty=body.qty,
        reason_code=body.reason_code,
        ref_order_detail_id=body.ref_order_detail_id,
        note=body.note,
        created_by=current_user.actor,
    )
    return _issue_payload(result)


@router.post("/sale", response_model=SaleResponse)
@limiter.limit("60/minute")
def record_sale(
    request: Request,
    body: SaleRequest,
    db: DbSession,
    current_user: RequireStaff,
):
    """Issue every line of a sale order in one transaction."""
    lines = [
        IssueLine(
            variant_id=item.variant_id,
            qty=item.qty,
            reason_code=ReasonCode.SALE,
            ref_order_detail_id=item.ref_order_detail_id,
            note=item.note or body.note,
        )
        for item in body.items
    ]
    results = AllocationEngine(db).issue_many(lines, created_by=current_user.actor)
    return {"order_id": body.order_id, "results": [_issue_payload(r) for r in results]}


@router.post("/adjust", response_model=AdjustResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit("30/minute")
def adjust_stock(
    request: Request,
    body: AdjustRequest,
    db: DbSession,
    current_user: RequireStaff,
):
    """Record a manual stock correction. Lots are not touched."""
    engine = AllocationEngine(db)
    move = engine.adjust(
        variant_id=body.variant_id,
        delta=body.delta,
        note=body.note,
        created_by=current_user.actor,
    )
    return {"move": move, "stock": engine.stock.get_stock(body.variant_id)}


@router.put("/variants/{variant_id}/stock", response_model=SetStockResponse)
@limiter.limit("30/minute")
def set_variant_stock(
    request: Request,
    variant_id: PositiveIntId,
    body: SetStockRequest,
    db: DbSession,
    current_user: RequireStaff,
):
    """Set a variant's stock to an absolute count via one ADJ move."""
    result = AllocationEngine(db).set_stock(
        variant_id=variant_id,
        target=body.stock,
        note=body.note,
        created_by=current_user.actor,
    )
    return {"variant_id": result.variant_id, "stock": result.stock, "move": result.move}


def _lot_payload(lot) -> dict:
    return {
        "id": lot.id,
        "variant_id": lot.variant_id,
        "qty_received": lot.qty_received,
        "qty_remaining": lot.qty_remaining,
        "unit_cost": lot.unit_cost,
        "received_at": lot.received_at,
        "note": lot.note,
        "state": lot.state.value,
    }


def _issue_payload(result) -> dict:
    return {
        "variant_id": result.variant_id,
        "requested": result.requested,
        "reason_code": result.reason_code,
        "total_allocated": result.total_allocated,
        "total_cost": result.total_cost,
        "allocations": result.allocations,
    }
