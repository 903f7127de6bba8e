from uuid import uuid4

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, Integer, Numeric, String, func
from sqlalchemy.orm import relationship

from kiosk.core.database import Base


class MenuItem(Base):
    __tablename__ = "menu_items"
    __table_args__ = (Index("ix_menu_items_restaurant", "restaurant_id"),)

    id = Column(String(36), primary_key=True, default=lambda: str(uuid4()))
    restaurant_id = Column(Integer, ForeignKey("restaurants.id"), nullable=False)
    name = Column(String, nullable=False)
    price = Column(Numeric(10, 2), nullable=False)
    tax_rate = Column(Numeric(5, 2), nullable=True)
    active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    option_groups = relationship(
        "OptionGroup",
        order_by="OptionGroup.order_index",
        cascade="all, delete-orphan",
    )
    topping_groups = relationship(
        "ToppingGroup",
        order_by="ToppingGroup.order_index",
        cascade="all, delete-orphan",
    )
