from kiosk.services.event_bus import EventBus
from kiosk.services.event_handlers import (
    MAX_NOTIFICATIONS,
    clear_notifications,
    handle_payment_confirmation_failed,
    handle_payment_declined,
    handle_print_dispatch_completed,
    recent_notifications,
    record_notification,
)


def setup_function():
    clear_notifications()


def test_partial_print_failure_is_surfaced_to_staff():
    handle_print_dispatch_completed(
        {
            "restaurant_id": 1,
            "order_number": 12,
            "success_count": 2,
            "failure_count": 1,
            "results": [
                {"printer_id": "1", "ok": True},
                {"printer_id": "2", "ok": False, "kind": "rejected", "reason": "offline"},
                {"printer_id": "3", "ok": True},
            ],
        }
    )

    [notification] = recent_notifications(1)
    assert notification["level"] == "error"
    assert "#12" in notification["message"]
    assert "1 de 3" in notification["message"]
    assert notification["details"]["failures"] == [{"printer_id": "2", "kind": "rejected", "reason": "offline"}]


def test_dispatch_without_printers_records_nothing():
    handle_print_dispatch_completed({"restaurant_id": 1, "order_number": 1, "success_count": 0, "failure_count": 0})

    assert recent_notifications(1) == []


def test_payment_decline_message_is_kept():
    handle_payment_declined({"restaurant_id": 2, "payment_intent_id": "pi-1", "message": "Cartão sem saldo"})

    assert recent_notifications(2)[0]["message"] == "Cartão sem saldo"
    assert recent_notifications(1) == []


def test_notifications_are_capped_per_restaurant():
    for index in range(MAX_NOTIFICATIONS + 5):
        record_notification(3, "info", f"n{index}")

    notifications = recent_notifications(3)
    assert len(notifications) == MAX_NOTIFICATIONS
    assert notifications[0]["message"] == "n5"


def test_failing_handler_does_not_stop_the_others():
    bus = EventBus()
    received = []

    def broken(payload):
        raise RuntimeError("boom")

    bus.subscribe("order.confirmed", broken)
    bus.subscribe("order.confirmed", received.append)
    bus.emit("order.confirmed", {"order_number": 1})
    bus.unsubscribe("order.confirmed", received.append)
    bus.emit("order.confirmed", {"order_number": 2})

    assert received == [{"order_number": 1}]


def test_confirmation_failure_after_payment_is_an_error_notification():
    handle_payment_confirmation_failed(
        {
            "restaurant_id": 4,
            "payment_intent_id": "pi-7",
            "amount": "12.00",
            "message": "Pagamento aprovado, mas o pedido não foi registrado",
        }
    )

    [notification] = recent_notifications(4)
    assert notification["level"] == "error"
    assert notification["details"] == {"payment_intent_id": "pi-7", "amount": "12.00"}
