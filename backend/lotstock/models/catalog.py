"""Catalog models: Product and ProductVariant.

These tables belong to the storefront catalog. The inventory core only reads
them to attach product names and SKUs to stock rows and to resolve which
variants make up a product.
"""

from __future__ import annotations

from decimal import Decimal
from typing import List, Optional

from sqlalchemy import Boolean, ForeignKey, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from lotstock.db.base import Base, TimestampMixin


class Product(Base, TimestampMixin):
    """A catalog product."""

    __tablename__ = "products"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    selling_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    is_archived: Mapped[bool] = mapped_column(Boolean, default=False, server_default="0", nullable=False)

    variants: Mapped[List["ProductVariant"]] = relationship(
        "ProductVariant", back_populates="product", order_by="ProductVariant.id"
    )


class ProductVariant(Base, TimestampMixin):
    """A sellable SKU of a product."""

    __tablename__ = "product_variants"

    id: Mapped[int] = mapped_column(primary_key=True)
    product_id: Mapped[int] = mapped_column(
        ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True
    )
    sku: Mapped[Optional[str]] = mapped_column(String(100), unique=True, nullable=True)
    selling_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, server_default="1", nullable=False)

    product: Mapped["Product"] = relationship("Product", back_populates="variants")
