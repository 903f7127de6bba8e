from uuid import uuid4

from sqlalchemy import Boolean, Column, ForeignKey, Integer, Numeric, String
from sqlalchemy.orm import relationship

from kiosk.core.database import Base


class OptionGroup(Base):
    __tablename__ = "option_groups"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid4()))
    menu_item_id = Column(String(36), ForeignKey("menu_items.id"), index=True, nullable=False)
    name = Column(String, nullable=False)
    required = Column(Boolean, default=False, nullable=False)
    multiple = Column(Boolean, default=False, nullable=False)
    order_index = Column(Integer, default=0, nullable=False)

    choices = relationship(
        "OptionChoice",
        order_by="OptionChoice.order_index",
        cascade="all, delete-orphan",
    )


class OptionChoice(Base):
    __tablename__ = "option_choices"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid4()))
    group_id = Column(String(36), ForeignKey("option_groups.id"), index=True, nullable=False)
    name = Column(String(255), nullable=False)
    price = Column(Numeric(10, 2), nullable=True)
    order_index = Column(Integer, default=0, nullable=False)
