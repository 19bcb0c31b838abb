"""Stock Query Service - read-only stock figures, listings and search.

Current stock is never stored. For a variant it is always

    sum(qty_remaining of its lots) + sum(change_qty of its ADJ moves)

so lot-less adjustments are folded in without touching any lot.
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import and_, func, or_, select
from sqlalchemy.orm import Session

from lotstock.core.config import settings
from lotstock.core.exceptions import InvalidArgument
from lotstock.core.validators import require_int
from lotstock.models.catalog import Product, ProductVariant
from lotstock.models.lot import Lot
from lotstock.models.move import Move, MoveType
from lotstock.services.catalog import CatalogLookup
from lotstock.services.lot_store import LotStore
from lotstock.services.move_ledger import apply_move_filters, clamp_moves_limit, join_catalog

logger = logging.getLogger(__name__)

INVENTORY_ORDERS = ("low_stock_first", "newest", "name_asc", "name_desc")
ORDER_ALIASES = {"low_stock": "low_stock_first"}
SEARCH_MODES = ("in", "out")

CENT = Decimal("0.01")


def normalize_order(order: Optional[str]) -> str:
    if not order:
        return "newest"
    key = str(order).strip().lower()
    key = ORDER_ALIASES.get(key, key)
    if key not in INVENTORY_ORDERS:
        raise InvalidArgument(f"order must be one of {list(INVENTORY_ORDERS)}")
    return key


def _variant_stock_expr():
    """Correlated stock of ``ProductVariant`` rows."""
    lot_stock = (
        select(func.coalesce(func.sum(Lot.qty_remaining), 0))
        .where(Lot.variant_id == ProductVariant.id)
        .correlate(ProductVariant)
        .scalar_subquery()
    )
    adj_stock = (
        select(func.coalesce(func.sum(Move.change_qty), 0))
        .where(Move.variant_id == ProductVariant.id, Move.move_type == MoveType.ADJ.value)
        .correlate(ProductVariant)
        .scalar_subquery()
    )
    return lot_stock + adj_stock


def _product_stock_expr():
    """Correlated stock of ``Product`` rows, summed over their variants."""
    lot_stock = (
        select(func.coalesce(func.sum(Lot.qty_remaining), 0))
        .select_from(Lot)
        .join(ProductVariant, ProductVariant.id == Lot.variant_id)
        .where(ProductVariant.product_id == Product.id)
        .correlate(Product)
        .scalar_subquery()
    )
    adj_stock = (
        select(func.coalesce(func.sum(Move.change_qty), 0))
        .select_from(Move)
        .join(ProductVariant, ProductVariant.id == Move.variant_id)
        .where(ProductVariant.product_id == Product.id, Move.move_type == MoveType.ADJ.value)
        .correlate(Product)
        .scalar_subquery()
    )
    return lot_stock + adj_stock


def _money(value: Optional[Decimal]) -> Optional[Decimal]:
    return value.quantize(CENT) if value is not None else None


class StockQueryService:
    """Derived stock figures over lots and moves. Never writes."""

    def __init__(self, db: Session):
        self.db = db
        self.catalog = CatalogLookup(db)
        self.lots = LotStore(db)

    # ===== STOCK FIGURES =====

    def get_stock(self, variant_id: int) -> int:
        """Current stock of a variant; 0 for variants never seen."""
        return self._stock_for_variants([variant_id])

    def get_stock_by_product(self, product_id: int) -> int:
        """Sum of get_stock over the product's variants in the catalog."""
        return self._stock_for_variants(self.catalog.variant_ids_for_product(product_id))

    def _stock_for_variants(self, variant_ids: List[int]) -> int:
        if not variant_ids:
            return 0
        lot_total = self.db.scalar(
            select(func.coalesce(func.sum(Lot.qty_remaining), 0)).where(
                Lot.variant_id.in_(variant_ids)
            )
        )
        adj_total = self.db.scalar(
            select(func.coalesce(func.sum(Move.change_qty), 0)).where(
                Move.variant_id.in_(variant_ids), Move.move_type == MoveType.ADJ.value
            )
        )
        return int(lot_total or 0) + int(adj_total or 0)

    def stock_valuation(self, variant_ids: Iterable[int]) -> Dict[int, Dict[str, Any]]:
        """Open-lot quantity, FIFO value and weighted average cost per variant.

        Variants without open lots are reported with zero quantity and
        ``avg_cost`` None.
        """
        ids = sorted(set(variant_ids))
        result: Dict[int, Dict[str, Any]] = {
            vid: {"qty": 0, "value": Decimal("0.00"), "avg_cost": None} for vid in ids
        }
        if not ids:
            return result

        rows = self.db.execute(
            select(
                Lot.variant_id,
                func.sum(Lot.qty_remaining),
                func.sum(Lot.qty_remaining * Lot.unit_cost),
            )
            .where(Lot.variant_id.in_(ids), Lot.qty_remaining > 0)
            .group_by(Lot.variant_id)
        ).all()
        for variant_id, qty, value in rows:
            qty = int(qty or 0)
            value = Decimal(str(value or 0))
            result[variant_id] = {
                "qty": qty,
                "value": _money(value),
                "avg_cost": _money(value / qty) if qty else None,
            }
        return result

    # ===== LISTINGS =====

    def list_inventory(
        self,
        scope: str = "variant",
        search: Optional[str] = None,
        order: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Dict[str, Any]:
        """Paged stock listing per variant or per product.

        ``search`` matches product name, description or SKU (variant scope)
        and product name or description (product scope).
        """
        order = normalize_order(order)
        limit = require_int(limit, "limit")
        offset = require_int(offset, "offset")
        if limit <= 0:
            raise InvalidArgument("limit must be greater than 0")
        if offset < 0:
            raise InvalidArgument("offset must be greater than or equal to 0")
        limit = min(limit, settings.inventory_max_limit)

        if scope == "variant":
            items, total = self._list_variants(search, order, limit, offset)
        elif scope == "product":
            items, total = self._list_products(search, order, limit, offset)
        else:
            raise InvalidArgument("scope must be 'variant' or 'product'")

        return {
            "items": items,
            "total": total,
            "skip": offset,
            "limit": limit,
            "has_more": offset + len(items) < total,
        }

    def _list_variants(self, search, order, limit, offset):
        stock = _variant_stock_expr().label("stock")
        conditions = []
        if search and search.strip():
            pattern = f"%{search.strip()}%"
            conditions.append(
                or_(
                    Product.name.ilike(pattern),
                    Product.description.ilike(pattern),
                    ProductVariant.sku.ilike(pattern),
                )
            )

        order_by = {
            "low_stock_first": (stock.asc(), ProductVariant.id.asc()),
            "newest": (ProductVariant.id.desc(),),
            "name_asc": (Product.name.asc(), ProductVariant.id.asc()),
            "name_desc": (Product.name.desc(), ProductVariant.id.asc()),
        }[order]

        base = (
            select(
                ProductVariant.id,
                ProductVariant.product_id,
                ProductVariant.sku,
                Product.name,
                func.coalesce(ProductVariant.selling_price, Product.selling_price),
                stock,
            )
            .join(Product, Product.id == ProductVariant.product_id)
            .where(*conditions)
        )
        total = self.db.scalar(
            select(func.count())
            .select_from(ProductVariant)
            .join(Product, Product.id == ProductVariant.product_id)
            .where(*conditions)
        )
        rows = self.db.execute(base.order_by(*order_by).limit(limit).offset(offset)).all()

        valuation = self.stock_valuation(row[0] for row in rows)
        items = [
            {
                "variant_id": variant_id,
                "product_id": product_id,
                "sku": sku,
                "product_name": name,
                "stock": int(stock_qty or 0),
                "selling_price": _money(price),
                "avg_cost": valuation[variant_id]["avg_cost"],
            }
            for variant_id, product_id, sku, name, price, stock_qty in rows
        ]
        return items, int(total or 0)

    def _list_products(self, search, order, limit, offset):
        stock = _product_stock_expr().label("stock")
        conditions = []
        if search and search.strip():
            pattern = f"%{search.strip()}%"
            conditions.append(or_(Product.name.ilike(pattern), Product.description.ilike(pattern)))

        order_by = {
            "low_stock_first": (stock.asc(), Product.id.desc()),
            "newest": (Product.id.desc(),),
            "name_asc": (Product.name.asc(), Product.id.desc()),
            "name_desc": (Product.name.desc(), Product.id.desc()),
        }[order]

        total = self.db.scalar(select(func.count()).select_from(Product).where(*conditions))
        rows = self.db.execute(
            select(Product.id, Product.name, Product.selling_price, stock)
            .where(*conditions)
            .order_by(*order_by)
            .limit(limit)
            .offset(offset)
        ).all()
        items = [
            {
                "product_id": product_id,
                "product_name": name,
                "selling_price": _money(price),
                "stock": int(stock_qty or 0),
            }
            for product_id, name, price, stock_qty in rows
        ]
        return items, int(total or 0)

    def list_moves(
        self,
        variant_id: Optional[int] = None,
        move_type: Optional[Any] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        free_text: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """Ledger rows, newest first, with product name and SKU attached."""
        stmt = join_catalog(
            select(Move, ProductVariant.product_id, Product.name, ProductVariant.sku).select_from(Move)
        )
        stmt = apply_move_filters(stmt, variant_id, move_type, date_from, date_to, free_text)
        stmt = stmt.order_by(Move.created_at.desc(), Move.id.desc()).limit(clamp_moves_limit(limit))
        return [
            {
                "move_id": move.id,
                "variant_id": move.variant_id,
                "product_id": product_id,
                "product_name": name,
                "sku": sku,
                "lot_id": move.lot_id,
                "move_type": move.move_type,
                "change_qty": move.change_qty,
                "unit_cost": move.unit_cost,
                "reason_code": move.reason_code,
                "ref_order_detail_id": move.ref_order_detail_id,
                "note": move.note,
                "created_by": move.created_by,
                "created_at": move.created_at,
            }
            for move, product_id, name, sku in self.db.execute(stmt).all()
        ]

    def list_lots(self, variant_id: int, include_depleted: bool = True) -> List[Lot]:
        return self.lots.list_lots(variant_id, include_depleted=include_depleted)

    # ===== SEARCH =====

    def search_items(self, q: Optional[str], mode: str = "in", limit: int = 20) -> List[Dict[str, Any]]:
        """Variant picker search for receive (mode "in") and issue (mode "out") forms.

        Mode "out" only returns variants with stock. Mode "in" also lists
        products that have no variant yet, after the variants.
        """
        text = (q or "").strip()
        if not text:
            return []
        mode = (mode or "in").strip().lower()
        if mode not in SEARCH_MODES:
            raise InvalidArgument("mode must be 'in' or 'out'")
        limit = require_int(limit, "limit")
        if limit <= 0:
            raise InvalidArgument("limit must be greater than 0")
        limit = min(limit, settings.search_max_limit)

        pattern = f"%{text}%"
        stock = _variant_stock_expr()
        matches = or_(
            Product.name.ilike(pattern),
            ProductVariant.sku.ilike(pattern),
            func.coalesce(Product.description, "").ilike(pattern),
        )
        conditions = [Product.is_archived.is_(False), ProductVariant.is_active.is_(True), matches]
        if mode == "out":
            conditions.append(stock > 0)

        rows = self.db.execute(
            select(
                ProductVariant.id,
                ProductVariant.sku,
                Product.id,
                Product.name,
                func.coalesce(ProductVariant.selling_price, Product.selling_price),
                stock.label("stock"),
            )
            .join(Product, Product.id == ProductVariant.product_id)
            .where(and_(*conditions))
            .order_by(Product.id.desc(), ProductVariant.id.desc())
            .limit(limit)
        ).all()
        valuation = self.stock_valuation(row[0] for row in rows)
        items: List[Dict[str, Any]] = [
            {
                "kind": "variant",
                "product_id": product_id,
                "product_name": name,
                "variant_id": variant_id,
                "sku": sku,
                "stock_qty": int(stock_qty or 0),
                "selling_price": _money(price),
                "avg_cost": valuation[variant_id]["avg_cost"],
                "label": f"{name} ({sku})" if sku else name,
            }
            for variant_id, sku, product_id, name, price, stock_qty in rows
        ]

        if mode == "in":
            products = self.db.execute(
                select(Product.id, Product.name)
                .outerjoin(ProductVariant, ProductVariant.product_id == Product.id)
                .where(
                    Product.is_archived.is_(False),
                    ProductVariant.id.is_(None),
                    or_(Product.name.ilike(pattern), func.coalesce(Product.description, "").ilike(pattern)),
                )
                .order_by(Product.id.desc())
                .limit(limit)
            ).all()
            items.extend(
                {
                    "kind": "product",
                    "product_id": product_id,
                    "product_name": name,
                    "variant_id": None,
                    "sku": None,
                    "stock_qty": 0,
                    "selling_price": None,
                    "avg_cost": None,
                    "label": f"{name} (no SKU yet)",
                }
                for product_id, name in products
            )
        return items[:limit]

    # ===== AUDIT =====

    def lot_audit(self, variant_id: int) -> List[Dict[str, Any]]:
        """Check each lot of a variant against its OUT moves.

        A lot is balanced when ``qty_received - qty_remaining`` equals the
        quantity its OUT moves removed.
        """
        out_by_lot = dict(
            self.db.execute(
                select(Move.lot_id, func.coalesce(func.sum(Move.change_qty), 0))
                .where(
                    Move.variant_id == variant_id,
                    Move.move_type == MoveType.OUT.value,
                    Move.lot_id.is_not(None),
                )
                .group_by(Move.lot_id)
            ).all()
        )
        report = []
        for lot in self.lots.list_lots(variant_id):
            issued = -int(out_by_lot.get(lot.id, 0))
            balanced = lot.qty_consumed == issued
            if not balanced:
                logger.error(
                    f"Lot {lot.id} out of balance: consumed {lot.qty_consumed}, OUT moves {issued}"
                )
            report.append(
                {
                    "lot_id": lot.id,
                    "variant_id": lot.variant_id,
                    "state": lot.state.value,
                    "qty_received": lot.qty_received,
                    "qty_remaining": lot.qty_remaining,
                    "qty_consumed": lot.qty_consumed,
                    "qty_issued_by_moves": issued,
                    "balanced": balanced,
                }
            )
        return report
