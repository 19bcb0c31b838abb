# Services module

from lotstock.services.catalog import CatalogLookup
from lotstock.services.lot_store import FIFO_ORDER, LotStore
from lotstock.services.move_ledger import MoveLedger
from lotstock.services.stock_query_service import StockQueryService
from lotstock.services.allocation_engine import (
    Allocation,
    AllocationEngine,
    IssueLine,
    IssueResult,
    ReceiveResult,
    SetStockResult,
)

__all__ = [
    "CatalogLookup",
    "FIFO_ORDER",
    "LotStore",
    "MoveLedger",
    "StockQueryService",
    "Allocation",
    "AllocationEngine",
    "IssueLine",
    "IssueResult",
    "ReceiveResult",
    "SetStockResult",
]
