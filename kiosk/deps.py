# kiosk/deps.py
from __future__ import annotations

from decimal import Decimal
from typing import Optional

from fastapi import Depends, HTTPException, Request
from sqlalchemy.orm import Session

from kiosk.core.database import SessionLocal, get_db
from kiosk.models.restaurant import Restaurant
from kiosk.services.card_checkout import CardCheckoutRegistry, card_checkouts
from kiosk.services.cart import CartSession, CartSessionStore, cart_sessions
from kiosk.services.catalog import ItemDetailsLoaderRegistry, get_restaurant, item_loaders
from kiosk.services.payments import PaymentIntentStore, SqlPaymentIntentStore
from kiosk.services.printing import PrintDispatcher
from kiosk.services.secrets import default_secret_store

_dispatcher: Optional[PrintDispatcher] = None


def get_session_factory():
    return SessionLocal


def get_print_dispatcher() -> PrintDispatcher:
    """Dispatcher único do processo; guarda quais pedidos já saíram na impressora local."""
    global _dispatcher
    if _dispatcher is None:
        _dispatcher = PrintDispatcher(default_secret_store(SessionLocal))
    return _dispatcher


def get_payment_store(session_factory=Depends(get_session_factory)) -> PaymentIntentStore:
    return SqlPaymentIntentStore(session_factory)


def get_cart_sessions() -> CartSessionStore:
    return cart_sessions


def get_card_checkouts() -> CardCheckoutRegistry:
    return card_checkouts


def get_item_loaders() -> ItemDetailsLoaderRegistry:
    return item_loaders


def get_device_class(request: Request) -> Optional[str]:
    value = request.headers.get("X-Device-Class")
    return value.strip().lower() if value else None


def require_restaurant(restaurant_id: int, db: Session = Depends(get_db)) -> Restaurant:
    restaurant = get_restaurant(db, restaurant_id)
    if not restaurant:
        raise HTTPException(status_code=404, detail="Restaurante não encontrado")
    return restaurant


def require_cart_session(
    restaurant_id: int,
    session_id: str,
    sessions: CartSessionStore = Depends(get_cart_sessions),
) -> CartSession:
    session = sessions.get(session_id)
    if not session or session.restaurant_id != restaurant_id:
        raise HTTPException(status_code=404, detail="Carrinho não encontrado")
    return session


def restaurant_tax_rate(restaurant: Restaurant) -> Optional[Decimal]:
    if restaurant.default_tax_rate is None:
        return None
    return Decimal(str(restaurant.default_tax_rate))
