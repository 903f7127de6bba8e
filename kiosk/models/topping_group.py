from uuid import uuid4

import sqlalchemy as sa
from sqlalchemy import Boolean, Column, ForeignKey, Integer, Numeric, String
from sqlalchemy.orm import relationship

from kiosk.core.database import Base


class ToppingGroup(Base):
    __tablename__ = "topping_groups"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid4()))
    menu_item_id = Column(String(36), ForeignKey("menu_items.id"), index=True, nullable=False)
    name = Column(String, nullable=False)
    required = Column(Boolean, default=False, nullable=False)
    min_selections = Column(Integer, default=0, nullable=False)
    max_selections = Column(Integer, default=0, nullable=False)  # 0 = sem limite
    allow_multiple_same_topping = Column(Boolean, default=False, nullable=False)
    # Listas paralelas: ["option", "topping"] / [id, id]
    show_if_selection_type = Column(sa.JSON(), nullable=True)
    show_if_selection_id = Column(sa.JSON(), nullable=True)
    order_index = Column(Integer, default=0, nullable=False)

    toppings = relationship(
        "Topping",
        order_by="Topping.order_index",
        cascade="all, delete-orphan",
    )


class Topping(Base):
    __tablename__ = "toppings"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid4()))
    group_id = Column(String(36), ForeignKey("topping_groups.id"), index=True, nullable=False)
    name = Column(String(255), nullable=False)
    price = Column(Numeric(10, 2), default=0, nullable=False)
    tax_rate = Column(Numeric(5, 2), nullable=True)
    order_index = Column(Integer, default=0, nullable=False)
