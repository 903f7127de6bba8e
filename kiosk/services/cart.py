from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from decimal import Decimal
from threading import Lock
from typing import Callable, Optional
from uuid import uuid4

from kiosk.schemas.catalog import CatalogItem
from kiosk.services.pricing import line_total, price_components
from kiosk.services.selection import SelectionModel
from kiosk.services.validation import ensure_valid, prune_hidden

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CartLine:
    line_id: str
    item: CatalogItem
    selection: SelectionModel
    quantity: int
    unit_price: Decimal
    tax_components: tuple[tuple[Decimal, Decimal], ...]
    special_instructions: str = ""

    @property
    def line_total(self) -> Decimal:
        return line_total(self)


def build_cart_line(
    item: CatalogItem,
    selection: SelectionModel,
    *,
    quantity: int = 1,
    special_instructions: str = "",
    default_tax_rate: Optional[Decimal] = None,
) -> CartLine:
    """Valida, congela a seleção e guarda o preço unitário do momento da adição."""
    if quantity < 1:
        raise ValueError("Quantity must be at least 1")
    ensure_valid(item, selection)
    frozen = prune_hidden(item, selection)
    components = price_components(item, frozen, default_tax_rate)
    return CartLine(
        line_id=uuid4().hex,
        item=item,
        selection=frozen,
        quantity=quantity,
        unit_price=sum(components.values(), Decimal("0")),
        tax_components=tuple(sorted(components.items())),
        special_instructions=(special_instructions or "").strip(),
    )


@dataclass(frozen=True)
class Cart:
    lines: tuple[CartLine, ...] = ()
    version: int = 0

    def _next(self, lines: tuple[CartLine, ...]) -> "Cart":
        return Cart(lines=lines, version=self.version + 1)

    def add(self, line: CartLine) -> "Cart":
        return self._next(self.lines + (line,))

    def update_quantity(self, line_id: str, quantity: int) -> "Cart":
        self._require(line_id)
        if quantity <= 0:
            return self.remove(line_id)
        return self._next(
            tuple(replace(line, quantity=quantity) if line.line_id == line_id else line for line in self.lines)
        )

    def remove(self, line_id: str) -> "Cart":
        self._require(line_id)
        return self._next(tuple(line for line in self.lines if line.line_id != line_id))

    def clear(self) -> "Cart":
        return self._next(())

    @property
    def is_empty(self) -> bool:
        return not self.lines

    @property
    def item_count(self) -> int:
        return sum(line.quantity for line in self.lines)

    def _require(self, line_id: str) -> None:
        if not any(line.line_id == line_id for line in self.lines):
            raise KeyError(line_id)


@dataclass(frozen=True)
class CartSession:
    session_id: str
    restaurant_id: int
    cart: Cart


class CartSessionStore:
    """Carrinhos por terminal; cada mutação troca a versão inteira sob lock."""

    def __init__(self) -> None:
        self._sessions: dict[str, CartSession] = {}
        self._lock = Lock()

    def create(self, restaurant_id: int) -> CartSession:
        session = CartSession(session_id=uuid4().hex, restaurant_id=restaurant_id, cart=Cart())
        with self._lock:
            self._sessions[session.session_id] = session
        logger.info("Cart session opened session_id=%s restaurant_id=%s", session.session_id, restaurant_id)
        return session

    def get(self, session_id: str) -> Optional[CartSession]:
        with self._lock:
            return self._sessions.get(session_id)

    def apply(self, session_id: str, mutation: Callable[[Cart], Cart]) -> CartSession:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                raise KeyError(session_id)
            updated = replace(session, cart=mutation(session.cart))
            self._sessions[session_id] = updated
            return updated

    def discard(self, session_id: str) -> None:
        with self._lock:
            self._sessions.pop(session_id, None)


cart_sessions = CartSessionStore()
