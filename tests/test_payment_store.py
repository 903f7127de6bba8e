import asyncio
import json
from decimal import Decimal

import httpx
import pytest

from kiosk.core.errors import PaymentCredentialError, PaymentNetworkError
from kiosk.services.payments import HttpPaymentIntentStore

INTENT = {
    "id": "pi-9",
    "restaurant_id": 1,
    "amount": "12.00",
    "currency": "EUR",
    "status": "pending",
    "pos_response": None,
}


def _store(handler):
    return HttpPaymentIntentStore("https://kiosk.test", transport=httpx.MockTransport(handler))


def test_http_store_uses_payment_intent_routes():
    seen = []

    def handler(request):
        seen.append(request)
        if request.url.path.endswith("/status"):
            return httpx.Response(200, json={**INTENT, "status": "cancelled"})
        return httpx.Response(200, json=INTENT)

    store = _store(handler)

    async def scenario():
        created = await store.create(1, Decimal("12.00"), "EUR")
        read = await store.get("pi-9")
        await store.cancel("pi-9")
        return created, read

    created, read = asyncio.run(scenario())

    assert created.id == "pi-9"
    assert created.amount == Decimal("12.00")
    assert read.status == "pending"
    assert [(r.method, r.url.path) for r in seen] == [
        ("POST", "/api/kiosk/1/payment-intents"),
        ("GET", "/api/payment-intents/pi-9"),
        ("POST", "/api/payment-intents/pi-9/status"),
    ]
    assert json.loads(seen[0].content) == {"amount": "12.00", "currency": "EUR"}
    assert json.loads(seen[2].content) == {"status": "cancelled"}


def test_http_store_distinguishes_credential_and_network_failures():
    def offline(request):
        raise httpx.ConnectError("unreachable", request=request)

    with pytest.raises(PaymentCredentialError):
        asyncio.run(_store(lambda request: httpx.Response(401)).get("pi-9"))
    with pytest.raises(PaymentNetworkError):
        asyncio.run(_store(offline).get("pi-9"))
    with pytest.raises(PaymentNetworkError):
        asyncio.run(_store(lambda request: httpx.Response(500)).get("pi-9"))
