import sqlalchemy as sa
from sqlalchemy import Boolean, Column, DateTime, Integer, Numeric, String, func

from kiosk.core.database import Base


class Restaurant(Base):
    __tablename__ = "restaurants"

    id = Column(Integer, primary_key=True)
    name = Column(String, nullable=False)
    location = Column(String, nullable=True)
    currency = Column(String(3), default="EUR", nullable=False)
    default_tax_rate = Column(Numeric(5, 2), nullable=True)

    # Mesa obrigatória em pedidos "dine-in" só quando habilitado
    table_selection_enabled = Column(Boolean, default=False, nullable=False)

    # Impressão
    configured_printers = Column(sa.JSON(), default=list, nullable=False)
    browser_printing_enabled = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
