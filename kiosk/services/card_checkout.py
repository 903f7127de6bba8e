from __future__ import annotations

import asyncio
import logging
from decimal import Decimal
from threading import Lock
from typing import Optional

from kiosk.core.errors import PaymentError
from kiosk.services.cart import Cart, CartSessionStore, cart_sessions
from kiosk.services.catalog import get_restaurant
from kiosk.services.orders import CARD, configured_printer_ids, confirm_order, dispatch_receipt
from kiosk.services.payment_poller import PaymentPoller, PollerState
from kiosk.services.payments import PaymentIntentRecord, PaymentIntentStore
from kiosk.services.printing import PrintDispatcher
from kiosk.services.receipt import RenderContext

logger = logging.getLogger(__name__)


class CardCheckout:
    """Pagamento com cartão de um carrinho; na aprovação segue o mesmo caminho do dinheiro."""

    def __init__(
        self,
        *,
        session_id: str,
        restaurant_id: int,
        cart: Cart,
        context: RenderContext,
        order_type: str,
        table_id: Optional[str],
        store: PaymentIntentStore,
        session_factory,
        dispatcher: PrintDispatcher,
        device_class: Optional[str] = None,
        sessions: CartSessionStore = cart_sessions,
        **poller_options,
    ) -> None:
        self.session_id = session_id
        self.restaurant_id = restaurant_id
        self._cart = cart
        self._context = context
        self._order_type = order_type
        self._table_id = table_id
        self._session_factory = session_factory
        self._dispatcher = dispatcher
        self._device_class = device_class
        self._sessions = sessions
        self._print_task: Optional[asyncio.Task] = None

        self.order_number: Optional[int] = None
        self.error: Optional[str] = None
        self.poller = PaymentPoller(
            store,
            restaurant_id=restaurant_id,
            currency=context.currency,
            on_approved=self._confirm,
            on_declined=self._declined,
            **poller_options,
        )

    def _confirm_sync(self, record: PaymentIntentRecord):
        db = self._session_factory()
        try:
            restaurant = get_restaurant(db, self.restaurant_id)
            if not restaurant:
                raise ValueError("Restaurante não encontrado")
            confirmed = confirm_order(
                db,
                restaurant,
                self._cart,
                self._context,
                order_type=self._order_type,
                payment_method=CARD,
                table_id=self._table_id,
                payment_intent_id=record.id,
            )
            return (
                confirmed.order.order_number,
                confirmed.document,
                confirmed.created,
                configured_printer_ids(restaurant),
                bool(restaurant.browser_printing_enabled),
            )
        finally:
            db.close()

    async def _confirm(self, record: PaymentIntentRecord) -> None:
        order_number, document, created, printers, local_enabled = await asyncio.to_thread(self._confirm_sync, record)
        self.order_number = order_number
        try:
            self._sessions.apply(self.session_id, lambda cart: cart.clear())
        except KeyError:
            logger.info("Cart session already closed session_id=%s", self.session_id)
        if created:
            self._print_task = asyncio.create_task(
                dispatch_receipt(
                    self._dispatcher,
                    restaurant_id=self.restaurant_id,
                    order_number=order_number,
                    document=document,
                    printer_ids=printers,
                    local_enabled=local_enabled,
                    device_class=self._device_class,
                )
            )

    def _declined(self, error: PaymentError) -> None:
        self.error = error.message

    async def start(self, amount: Decimal) -> PaymentIntentRecord:
        self.error = None
        return await self.poller.start(amount)

    async def cancel(self) -> None:
        await self.poller.cancel()

    def status(self) -> dict:
        last_error = self.poller.last_error
        return {
            "state": self.poller.state.value,
            "payment_intent_id": self.poller.intent_id,
            "order_number": self.order_number,
            "error": self.error or (last_error.message if last_error else None),
            "error_kind": last_error.kind if last_error else None,
            "approved": self.poller.state == PollerState.APPROVED,
        }


class CardCheckoutRegistry:
    """Uma tentativa de pagamento ativa por sessão de carrinho."""

    def __init__(self) -> None:
        self._checkouts: dict[str, CardCheckout] = {}
        self._lock = Lock()

    async def start(self, checkout: CardCheckout, amount: Decimal) -> PaymentIntentRecord:
        with self._lock:
            previous = self._checkouts.get(checkout.session_id)
            self._checkouts[checkout.session_id] = checkout
        if previous is not None:
            await previous.cancel()
        return await checkout.start(amount)

    def get(self, session_id: str) -> Optional[CardCheckout]:
        with self._lock:
            return self._checkouts.get(session_id)

    async def cancel(self, session_id: str) -> Optional[CardCheckout]:
        with self._lock:
            checkout = self._checkouts.get(session_id)
        if checkout is not None:
            await checkout.cancel()
        return checkout


card_checkouts = CardCheckoutRegistry()
