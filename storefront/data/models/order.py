from datetime import datetime, timezone
import uuid

from sqlalchemy import Column, String, DateTime, Numeric, Index
from sqlalchemy.orm import relationship

from storefront.data.database import Base
from storefront.domain.order_status import OrderStatus


def _utcnow():
    return datetime.now(timezone.utc)


class OrderModel(Base):
    __tablename__ = "orders"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    # null -> zamowienie goscia
    user_id = Column(String, nullable=True, index=True)

    total_amount = Column(Numeric(10, 2), nullable=False)
    currency = Column(String(3), nullable=False)
    status = Column(String(20), nullable=False, default=OrderStatus.PENDING_PAYMENT.value)

    payment_gateway = Column(String(20), nullable=False)
    payment_intent_id = Column(String, nullable=False)

    # audyt capture, z tego odtwarzamy wynik przy powtornym capture
    capture_transaction_id = Column(String, nullable=True)
    capture_status = Column(String, nullable=True)
    capture_reason = Column(String, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    items = relationship(
        "OrderItemModel",
        back_populates="order",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    __table_args__ = (
        Index("ix_orders_gateway_intent", "payment_gateway", "payment_intent_id", unique=True),
    )
