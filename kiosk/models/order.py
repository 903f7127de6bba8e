import sqlalchemy as sa
from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, Numeric, String, func

from kiosk.core.database import Base


class KioskOrder(Base):
    __tablename__ = "kiosk_orders"
    __table_args__ = (Index("ix_kiosk_orders_restaurant", "restaurant_id"),)

    id = Column(Integer, primary_key=True)
    restaurant_id = Column(Integer, ForeignKey("restaurants.id"), nullable=False)

    # count+1 no momento da confirmação; não é uma sequência reservada
    order_number = Column(Integer, nullable=False)
    order_type = Column(String(16), nullable=False)  # dine-in / takeaway
    table_id = Column(String, nullable=True)
    payment_method = Column(String(16), nullable=False)  # cash / card
    payment_intent_id = Column(String(36), unique=True, nullable=True)

    items_json = Column(sa.JSON(), nullable=False)
    currency = Column(String(3), nullable=False)
    subtotal = Column(Numeric(10, 2), nullable=False)
    tax = Column(Numeric(10, 2), nullable=False)
    total = Column(Numeric(10, 2), nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
