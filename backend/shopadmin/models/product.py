from __future__ import annotations
from datetime import datetime
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy import Integer, String, Boolean, ForeignKey, DateTime, CheckConstraint
from typing import Optional

from shopadmin.utils.clock import utcnow
from .authz import Base


class Category(Base):
    __tablename__ = 'categories'
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(128), unique=True, nullable=False)
    created_by: Mapped[Optional[int]] = mapped_column(ForeignKey('users.id', ondelete='SET NULL'), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


class Product(Base):
    __tablename__ = 'products'
    # Why a product is inactive; only out_of_stock is lifted automatically by a restock
    INACTIVE_OUT_OF_STOCK = 'out_of_stock'
    INACTIVE_MANUAL_HOLD = 'manual_hold'
    INACTIVE_REASONS = (INACTIVE_OUT_OF_STOCK, INACTIVE_MANUAL_HOLD)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    brand: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    category_id: Mapped[Optional[int]] = mapped_column(ForeignKey('categories.id', ondelete='SET NULL'), nullable=True)
    created_by: Mapped[int] = mapped_column(ForeignKey('users.id'), nullable=False, index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    inactive_reason: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    variants = relationship('ProductVariant', back_populates='product', cascade='all, delete-orphan',
                            order_by='ProductVariant.id')
    category = relationship('Category')

    @property
    def total_stock(self) -> int:
        return sum(v.stock for v in self.variants)

    def variant_by_sku(self, sku: str) -> Optional['ProductVariant']:
        for v in self.variants:
            if v.sku == sku:
                return v
        return None


class ProductVariant(Base):
    __tablename__ = 'product_variants'
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    product_id: Mapped[int] = mapped_column(ForeignKey('products.id', ondelete='CASCADE'), nullable=False, index=True)
    color: Mapped[str] = mapped_column(String(32), nullable=False, default='')
    size: Mapped[str] = mapped_column(String(16), nullable=False, default='')
    price_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    stock: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    sku: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)

    product = relationship('Product', back_populates='variants')

    __table_args__ = (CheckConstraint('stock >= 0', name='ck_variant_stock_non_negative'),)

    @property
    def label(self) -> str:
        parts = [p for p in (self.color, self.size) if p]
        return ' - '.join(parts) or self.sku
