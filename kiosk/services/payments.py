from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Protocol

import httpx
from sqlalchemy.orm import Session

from kiosk.core.errors import PaymentCredentialError, PaymentError, PaymentNetworkError
from kiosk.models.order import KioskOrder
from kiosk.models.payment_intent import PaymentIntent

logger = logging.getLogger(__name__)

PENDING = "pending"
APPROVED = "approved"
DECLINED = "declined"
CANCELLED = "cancelled"

ALLOWED_PAYMENT_STATUSES = {PENDING, APPROVED, DECLINED, CANCELLED}
TERMINAL_STATUSES = {APPROVED, DECLINED, CANCELLED}


@dataclass(frozen=True)
class PaymentIntentRecord:
    id: str
    restaurant_id: int
    amount: Decimal
    currency: str
    status: str
    pos_response: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


def intent_to_record(intent: PaymentIntent) -> PaymentIntentRecord:
    return PaymentIntentRecord(
        id=str(intent.id),
        restaurant_id=int(intent.restaurant_id),
        amount=Decimal(str(intent.amount)),
        currency=intent.currency,
        status=intent.status,
        pos_response=intent.pos_response,
    )


def create_payment_intent(db: Session, *, restaurant_id: int, amount: Decimal, currency: str) -> PaymentIntent:
    if amount is None or Decimal(amount) <= 0:
        raise ValueError("Valor do pagamento inválido")
    intent = PaymentIntent(
        restaurant_id=restaurant_id,
        amount=Decimal(amount),
        currency=(currency or "").strip().upper(),
        status=PENDING,
    )
    db.add(intent)
    db.flush()
    logger.info("Payment intent created amount=%s", amount, extra={"payment_intent_id": intent.id})
    return intent


def get_payment_intent(db: Session, intent_id: str) -> Optional[PaymentIntent]:
    return db.query(PaymentIntent).filter(PaymentIntent.id == intent_id).first()


def update_payment_status(
    db: Session,
    intent: PaymentIntent,
    status: str,
    pos_response: Optional[str] = None,
) -> PaymentIntent:
    new_status = (status or "").strip().lower()
    if new_status not in ALLOWED_PAYMENT_STATUSES:
        raise ValueError("Status inválido")
    if intent.status == new_status:
        return intent
    if intent.status in TERMINAL_STATUSES:
        raise ValueError("Pagamento já finalizado")

    intent.status = new_status
    if pos_response is not None:
        intent.pos_response = pos_response
    db.flush()
    logger.info("Payment intent status=%s", new_status, extra={"payment_intent_id": intent.id})
    return intent


def count_orders(db: Session, restaurant_id: int) -> int:
    return db.query(KioskOrder).filter(KioskOrder.restaurant_id == restaurant_id).count()


class PaymentIntentStore(Protocol):
    async def create(self, restaurant_id: int, amount: Decimal, currency: str) -> PaymentIntentRecord: ...

    async def get(self, intent_id: str) -> PaymentIntentRecord: ...

    async def cancel(self, intent_id: str) -> None: ...


class SqlPaymentIntentStore:
    def __init__(self, session_factory) -> None:
        self._session_factory = session_factory

    def _create(self, restaurant_id: int, amount: Decimal, currency: str) -> PaymentIntentRecord:
        db: Session = self._session_factory()
        try:
            intent = create_payment_intent(db, restaurant_id=restaurant_id, amount=amount, currency=currency)
            db.commit()
            db.refresh(intent)
            return intent_to_record(intent)
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def _get(self, intent_id: str) -> PaymentIntentRecord:
        db: Session = self._session_factory()
        try:
            intent = get_payment_intent(db, intent_id)
            if not intent:
                raise PaymentError(f"Pagamento {intent_id} não encontrado")
            return intent_to_record(intent)
        finally:
            db.close()

    def _cancel(self, intent_id: str) -> None:
        db: Session = self._session_factory()
        try:
            intent = get_payment_intent(db, intent_id)
            if intent and intent.status == PENDING:
                update_payment_status(db, intent, CANCELLED)
                db.commit()
        finally:
            db.close()

    async def create(self, restaurant_id: int, amount: Decimal, currency: str) -> PaymentIntentRecord:
        return await asyncio.to_thread(self._create, restaurant_id, amount, currency)

    async def get(self, intent_id: str) -> PaymentIntentRecord:
        return await asyncio.to_thread(self._get, intent_id)

    async def cancel(self, intent_id: str) -> None:
        await asyncio.to_thread(self._cancel, intent_id)


class HttpPaymentIntentStore:
    """Cliente das rotas de payment intent para terminais que não falam com o banco."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport

    async def _request(self, method: str, path: str, **kwargs) -> dict:
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.request(method, f"{self._base_url}{path}", **kwargs)
        except httpx.HTTPError as exc:
            raise PaymentNetworkError() from exc

        if response.status_code in (401, 403):
            raise PaymentCredentialError()
        if response.status_code >= 400:
            raise PaymentNetworkError(f"Erro {response.status_code} ao consultar pagamento")
        return response.json()

    @staticmethod
    def _record(data: dict) -> PaymentIntentRecord:
        return PaymentIntentRecord(
            id=str(data["id"]),
            restaurant_id=int(data["restaurant_id"]),
            amount=Decimal(str(data["amount"])),
            currency=data["currency"],
            status=data["status"],
            pos_response=data.get("pos_response"),
        )

    async def create(self, restaurant_id: int, amount: Decimal, currency: str) -> PaymentIntentRecord:
        data = await self._request(
            "POST",
            f"/api/kiosk/{restaurant_id}/payment-intents",
            json={"amount": str(amount), "currency": currency},
        )
        return self._record(data)

    async def get(self, intent_id: str) -> PaymentIntentRecord:
        return self._record(await self._request("GET", f"/api/payment-intents/{intent_id}"))

    async def cancel(self, intent_id: str) -> None:
        await self._request("POST", f"/api/payment-intents/{intent_id}/status", json={"status": CANCELLED})
