from __future__ import annotations

import asyncio
import inspect
import logging
import time
from enum import Enum
from typing import Any, Callable, Optional

from kiosk.core.config import PAYMENT_POLL_INTERVAL_SECONDS, PAYMENT_POLL_TIMEOUT_SECONDS
from kiosk.core.errors import PaymentConfirmationError, PaymentDeclined, PaymentError, PaymentTimedOut
from kiosk.services.event_bus import (
    PAYMENT_CONFIRMATION_FAILED,
    PAYMENT_DECLINED,
    PAYMENT_TIMED_OUT,
    EventBus,
    event_bus,
)
from kiosk.services.payments import APPROVED, CANCELLED, DECLINED, PaymentIntentRecord, PaymentIntentStore

logger = logging.getLogger(__name__)


class PollerState(str, Enum):
    IDLE = "idle"
    PENDING = "pending"
    APPROVED = "approved"


async def _invoke(callback: Optional[Callable[[Any], Any]], argument: Any) -> None:
    if callback is None:
        return
    result = callback(argument)
    if inspect.isawaitable(result):
        await result


class PaymentPoller:
    """
    Máquina de estados do pagamento com cartão de um terminal.

    idle -> pending ao criar o intent; pending -> approved chama on_approved
    uma única vez por intent. Recusa, cancelamento e timeout voltam para idle
    e chamam on_declined com o PaymentError correspondente. Cada tentativa tem
    uma task própria, cancelada em cancel() ou numa nova start().
    """

    def __init__(
        self,
        store: PaymentIntentStore,
        *,
        restaurant_id: int,
        currency: str,
        on_approved: Callable[[PaymentIntentRecord], Any],
        on_declined: Optional[Callable[[PaymentError], Any]] = None,
        interval: float = PAYMENT_POLL_INTERVAL_SECONDS,
        max_duration: float = PAYMENT_POLL_TIMEOUT_SECONDS,
        bus: EventBus = event_bus,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._store = store
        self._restaurant_id = restaurant_id
        self._currency = currency
        self._on_approved = on_approved
        self._on_declined = on_declined
        self._interval = interval
        self._max_duration = max_duration
        self._bus = bus
        self._clock = clock

        self.state = PollerState.IDLE
        self.intent_id: Optional[str] = None
        self.last_error: Optional[PaymentError] = None
        self._task: Optional[asyncio.Task] = None
        self._confirmed: set[str] = set()

    async def start(self, amount) -> PaymentIntentRecord:
        await self.cancel()
        record = await self._store.create(self._restaurant_id, amount, self._currency)
        self.intent_id = record.id
        self.last_error = None
        self.state = PollerState.PENDING
        logger.info("Payment polling started", extra={"payment_intent_id": record.id})
        self._task = asyncio.create_task(self._run(record.id))
        return record

    async def wait(self) -> None:
        if self._task is not None:
            await asyncio.shield(self._task)

    async def cancel(self) -> None:
        task, self._task = self._task, None
        if task is not None and not task.done():
            if self.state == PollerState.APPROVED:
                # Confirmação já começou: termina antes de liberar o poller
                await asyncio.shield(task)
            else:
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        if self.state == PollerState.PENDING and self.intent_id:
            try:
                await self._store.cancel(self.intent_id)
            except Exception:
                logger.exception("Could not cancel payment intent", extra={"payment_intent_id": self.intent_id})
            logger.info("Payment polling cancelled", extra={"payment_intent_id": self.intent_id})
        if self.state != PollerState.APPROVED:
            self.state = PollerState.IDLE

    async def _run(self, intent_id: str) -> None:
        deadline = self._clock() + self._max_duration
        while True:
            try:
                record = await self._store.get(intent_id)
            except Exception as exc:
                logger.warning("Payment status read failed: %s", exc, extra={"payment_intent_id": intent_id})
                record = None

            if record is not None and await self.observe(record):
                return
            if self._clock() >= deadline:
                await self._time_out(intent_id)
                return
            await asyncio.sleep(self._interval)

    async def observe(self, record: PaymentIntentRecord) -> bool:
        """Aplica uma leitura do intent; True quando a tentativa terminou."""
        if record.id != self.intent_id:
            return False

        if record.status == APPROVED:
            if record.id in self._confirmed:
                return True
            self._confirmed.add(record.id)
            self.state = PollerState.APPROVED
            logger.info("Payment approved", extra={"payment_intent_id": record.id})
            try:
                await _invoke(self._on_approved, record)
            except Exception:
                logger.exception("Order confirmation failed after approval", extra={"payment_intent_id": record.id})
                self.last_error = PaymentConfirmationError()
                self._bus.emit(
                    PAYMENT_CONFIRMATION_FAILED,
                    {
                        "restaurant_id": self._restaurant_id,
                        "payment_intent_id": record.id,
                        "amount": str(record.amount),
                        "message": self.last_error.message,
                    },
                )
            return True

        if record.status in (DECLINED, CANCELLED):
            if self.state != PollerState.PENDING:
                return True
            reason = record.pos_response or ("Pagamento cancelado" if record.status == CANCELLED else None)
            await self._fail(PaymentDeclined(reason), PAYMENT_DECLINED, record.id)
            return True

        return False

    async def _time_out(self, intent_id: str) -> None:
        logger.warning("Payment polling timed out", extra={"payment_intent_id": intent_id})
        try:
            await self._store.cancel(intent_id)
        except Exception:
            logger.exception("Could not cancel payment intent", extra={"payment_intent_id": intent_id})
        await self._fail(PaymentTimedOut(), PAYMENT_TIMED_OUT, intent_id)

    async def _fail(self, error: PaymentError, event_name: str, intent_id: str) -> None:
        self.state = PollerState.IDLE
        self.last_error = error
        self._bus.emit(
            event_name,
            {"restaurant_id": self._restaurant_id, "payment_intent_id": intent_id, "message": error.message},
        )
        try:
            await _invoke(self._on_declined, error)
        except Exception:
            logger.exception("Payment failure callback raised", extra={"payment_intent_id": intent_id})
