"""Inventory schemas."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field

from lotstock.models.move import ReasonCode


class LotResponse(BaseModel):
    """Lot response schema."""

    id: int
    variant_id: int
    qty_received: int
    qty_remaining: int
    unit_cost: Decimal
    received_at: datetime
    note: Optional[str] = None
    state: str

    model_config = {"from_attributes": True}


class MoveResponse(BaseModel):
    """Stock move response schema."""

    id: int
    variant_id: int
    lot_id: Optional[int] = None
    move_type: str
    change_qty: int
    unit_cost: Optional[Decimal] = None
    reason_code: Optional[str] = None
    ref_order_detail_id: Optional[int] = None
    note: Optional[str] = None
    created_by: str
    created_at: datetime

    model_config = {"from_attributes": True}


class MoveListEntry(BaseModel):
    """Ledger row with catalog display fields."""

    move_id: int
    variant_id: int
    product_id: Optional[int] = None
    product_name: Optional[str] = None
    sku: Optional[str] = None
    lot_id: Optional[int] = None
    move_type: str
    change_qty: int
    unit_cost: Optional[Decimal] = None
    reason_code: Optional[str] = None
    ref_order_detail_id: Optional[int] = None
    note: Optional[str] = None
    created_by: str
    created_at: datetime


class ReceiveRequest(BaseModel):
    """Stock receipt: creates one lot."""

    variant_id: int
    qty: int = Field(gt=0)
    unit_cost: Decimal = Field(ge=0)
    received_at: Optional[datetime] = None
    note: Optional[str] = Field(default=None, max_length=500)


class ReceiveResponse(BaseModel):
    lot: LotResponse
    move: MoveResponse


class IssueRequest(BaseModel):
    """FIFO issue of one variant."""

    variant_id: int
    qty: int = Field(gt=0)
    reason_code: ReasonCode
    ref_order_detail_id: Optional[int] = None
    note: Optional[str] = Field(default=None, max_length=500)


class AllocationResponse(BaseModel):
    lot_id: int
    allocated_qty: int
    unit_cost: Decimal
    move_id: int
    move_at: datetime

    model_config = {"from_attributes": True}


class IssueResponse(BaseModel):
    variant_id: int
    requested: int
    reason_code: str
    total_allocated: int
    total_cost: Decimal
    allocations: List[AllocationResponse]

    model_config = {"from_attributes": True}


class SaleItem(BaseModel):
    variant_id: int
    qty: int = Field(gt=0)
    ref_order_detail_id: int
    note: Optional[str] = Field(default=None, max_length=500)


class SaleRequest(BaseModel):
    """Issue every line of an order in one transaction."""

    order_id: Optional[int] = None
    items: List[SaleItem] = Field(min_length=1)
    note: Optional[str] = Field(default=None, max_length=500)


class SaleResponse(BaseModel):
    order_id: Optional[int] = None
    results: List[IssueResponse]


class AdjustRequest(BaseModel):
    """Lot-less stock correction."""

    variant_id: int
    delta: int
    note: Optional[str] = Field(default=None, max_length=500)


class AdjustResponse(BaseModel):
    move: MoveResponse
    stock: int


class SetStockRequest(BaseModel):
    stock: int = Field(ge=0)
    note: Optional[str] = Field(default="set stock", max_length=500)


class SetStockResponse(BaseModel):
    variant_id: int
    stock: int
    move: Optional[MoveResponse] = None


class VariantStockResponse(BaseModel):
    variant_id: int
    stock: int


class ProductStockResponse(BaseModel):
    product_id: int
    stock: int


class SearchItem(BaseModel):
    kind: str
    product_id: int
    product_name: str
    variant_id: Optional[int] = None
    sku: Optional[str] = None
    stock_qty: int
    selling_price: Optional[Decimal] = None
    avg_cost: Optional[Decimal] = None
    label: str


class LotAuditEntry(BaseModel):
    lot_id: int
    variant_id: int
    state: str
    qty_received: int
    qty_remaining: int
    qty_consumed: int
    qty_issued_by_moves: int
    balanced: bool


class InventoryItem(BaseModel):
    """One listing row. Product scope leaves the variant fields empty."""

    product_id: int
    product_name: str
    variant_id: Optional[int] = None
    sku: Optional[str] = None
    stock: int
    selling_price: Optional[Decimal] = None
    avg_cost: Optional[Decimal] = None


class InventoryPage(BaseModel):
    items: List[InventoryItem]
    total: int
    skip: int
    limit: int
    has_more: bool
