"""Catalog lookup used for display enrichment and product membership.

Stock arithmetic never depends on this: a variant missing from the catalog
still has lots and moves, it just has no name or SKU to show.
"""

from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from lotstock.models.catalog import ProductVariant


class CatalogLookup:
    """Read-only view over the storefront catalog tables."""

    def __init__(self, db: Session):
        self.db = db

    def get_variant(self, variant_id: int) -> Optional[ProductVariant]:
        return self.db.get(ProductVariant, variant_id)

    def variant_ids_for_product(self, product_id: int) -> List[int]:
        return list(
            self.db.scalars(
                select(ProductVariant.id)
                .where(ProductVariant.product_id == product_id)
                .order_by(ProductVariant.id)
            )
        )

