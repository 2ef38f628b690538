from __future__ import annotations
from datetime import datetime
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import Integer, String, Text, Boolean, JSON, ForeignKey, DateTime, Index
from typing import Optional, Dict, Any

from shopadmin.utils.clock import utcnow
from .authz import Base


class Notification(Base):
    __tablename__ = 'notifications'
    TYPE_NEW_ORDER = 'new_order'
    TYPE_ORDER_CANCELLED = 'order_cancelled'
    TYPE_RETURN_REQUESTED = 'return_requested'
    TYPE_ORDER_DELIVERED = 'order_delivered'
    TYPE_RETURN_PICKED = 'return_picked'
    TYPE_LOW_STOCK = 'low_stock'
    TYPE_OUT_OF_STOCK = 'out_of_stock'
    ALL_TYPES = (
        TYPE_NEW_ORDER,
        TYPE_ORDER_CANCELLED,
        TYPE_RETURN_REQUESTED,
        TYPE_ORDER_DELIVERED,
        TYPE_RETURN_PICKED,
        TYPE_LOW_STOCK,
        TYPE_OUT_OF_STOCK,
    )
    STOCK_TYPES = (TYPE_LOW_STOCK, TYPE_OUT_OF_STOCK)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    type: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    data: Mapped[Dict[str, Any]] = mapped_column(JSON, default=dict)
    is_read: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
    # NULL target means a global notification
    target_user_id: Mapped[Optional[int]] = mapped_column(ForeignKey('users.id', ondelete='CASCADE'), nullable=True, index=True)
    is_seller_specific: Mapped[bool] = mapped_column(Boolean, default=False)
    product_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    variant_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True)

    __table_args__ = (Index('ix_notification_dedup', 'type', 'product_id', 'variant_id', 'created_at'),)
