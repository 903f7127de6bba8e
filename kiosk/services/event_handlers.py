from __future__ import annotations

import logging
from collections import deque
from datetime import datetime, timezone
from threading import Lock

from kiosk.services.event_bus import (
    ORDER_CONFIRMED,
    PAYMENT_CONFIRMATION_FAILED,
    PAYMENT_DECLINED,
    PAYMENT_TIMED_OUT,
    PRINT_DISPATCH_COMPLETED,
    PRINT_LOCAL_FAILED,
    event_bus,
)

logger = logging.getLogger(__name__)

MAX_NOTIFICATIONS = 50

_notifications: dict[int, deque] = {}
_lock = Lock()


def record_notification(restaurant_id: int, level: str, message: str, **details) -> dict:
    notification = {
        "level": level,
        "message": message,
        "details": details,
        "created_at": datetime.now(timezone.utc).isoformat(),
    }
    with _lock:
        _notifications.setdefault(int(restaurant_id), deque(maxlen=MAX_NOTIFICATIONS)).append(notification)
    return notification


def recent_notifications(restaurant_id: int) -> list[dict]:
    with _lock:
        return list(_notifications.get(int(restaurant_id), ()))


def clear_notifications(restaurant_id: int | None = None) -> None:
    with _lock:
        if restaurant_id is None:
            _notifications.clear()
        else:
            _notifications.pop(int(restaurant_id), None)


def handle_order_confirmed(payload: dict) -> None:
    logger.info(
        "Order confirmed restaurant_id=%s order_number=%s total=%s method=%s",
        payload["restaurant_id"],
        payload["order_number"],
        payload.get("total"),
        payload.get("payment_method"),
    )


def handle_print_dispatch_completed(payload: dict) -> None:
    failures = payload.get("failure_count", 0)
    successes = payload.get("success_count", 0)
    if not failures:
        if successes:
            record_notification(
                payload["restaurant_id"],
                "success",
                f"Pedido #{payload['order_number']} enviado para {successes} impressora(s)",
                order_number=payload["order_number"],
            )
        return

    failed = [r for r in payload.get("results", []) if not r.get("ok")]
    logger.warning(
        "Print dispatch finished with failures order_number=%s success=%s failure=%s",
        payload["order_number"],
        successes,
        failures,
    )
    record_notification(
        payload["restaurant_id"],
        "error",
        f"Falha ao imprimir o pedido #{payload['order_number']} em {failures} de {successes + failures} impressora(s)",
        order_number=payload["order_number"],
        failures=[{"printer_id": r.get("printer_id"), "kind": r.get("kind"), "reason": r.get("reason")} for r in failed],
    )


def handle_print_local_failed(payload: dict) -> None:
    record_notification(
        payload["restaurant_id"],
        "warning",
        f"Impressão local do pedido #{payload['order_number']} falhou",
        order_number=payload["order_number"],
        reason=payload.get("reason"),
    )


def handle_payment_declined(payload: dict) -> None:
    record_notification(
        payload["restaurant_id"],
        "error",
        payload.get("message") or "Pagamento recusado",
        payment_intent_id=payload.get("payment_intent_id"),
    )


def handle_payment_timed_out(payload: dict) -> None:
    record_notification(
        payload["restaurant_id"],
        "warning",
        payload.get("message") or "Tempo de pagamento esgotado",
        payment_intent_id=payload.get("payment_intent_id"),
    )


def handle_payment_confirmation_failed(payload: dict) -> None:
    record_notification(
        payload["restaurant_id"],
        "error",
        payload.get("message") or "Pagamento aprovado, mas o pedido não foi registrado",
        payment_intent_id=payload.get("payment_intent_id"),
        amount=payload.get("amount"),
    )


event_bus.subscribe(ORDER_CONFIRMED, handle_order_confirmed)
event_bus.subscribe(PRINT_DISPATCH_COMPLETED, handle_print_dispatch_completed)
event_bus.subscribe(PRINT_LOCAL_FAILED, handle_print_local_failed)
event_bus.subscribe(PAYMENT_DECLINED, handle_payment_declined)
event_bus.subscribe(PAYMENT_TIMED_OUT, handle_payment_timed_out)
event_bus.subscribe(PAYMENT_CONFIRMATION_FAILED, handle_payment_confirmation_failed)
