from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint, func

from kiosk.core.database import Base


class RestaurantApiKey(Base):
    __tablename__ = "restaurant_api_keys"
    __table_args__ = (UniqueConstraint("restaurant_id", "provider", "key_name", name="uq_restaurant_api_key"),)

    id = Column(Integer, primary_key=True)
    restaurant_id = Column(Integer, ForeignKey("restaurants.id"), index=True, nullable=False)
    provider = Column(String(50), nullable=False)
    key_name = Column(String(50), default="primary", nullable=False)
    api_key = Column(Text, nullable=False)
    active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
