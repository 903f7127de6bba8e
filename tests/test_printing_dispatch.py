import asyncio
import base64
import json
import os
from datetime import datetime

import httpx

from kiosk.services.cart import build_cart_line
from kiosk.services.event_bus import PRINT_DISPATCH_COMPLETED, PRINT_LOCAL_FAILED, EventBus
from kiosk.services.pricing import cart_totals
from kiosk.services.printing import LocalSpooler, PrintDispatcher, PrintRelayClient
from kiosk.services.receipt import RenderContext, build_receipt_document, encode_receipt, to_structured
from kiosk.services.secrets import SecretRetrievalError
from kiosk.services.selection import SelectionModel
from tests.fixtures_data import burger_item


class FakeSecretStore:
    def __init__(self, api_key="secret-key", error=None):
        self.api_key = api_key
        self.error = error
        self.calls = []

    async def retrieve_api_key(self, restaurant_id, provider):
        self.calls.append((restaurant_id, provider))
        if self.error:
            raise self.error
        return self.api_key


def _document():
    line = build_cart_line(burger_item(), SelectionModel(options={"size": ("regular",)}))
    context = RenderContext(restaurant_name="Kiosk Café", currency="USD", timestamp=datetime(2024, 5, 17, 9, 0))
    return build_receipt_document(context, [line], cart_totals([line], strict=True), order_number=42, order_type="takeaway")


def _dispatcher(handler, *, secrets=None, spooler=None, bus=None):
    relay = PrintRelayClient("https://relay.test", transport=httpx.MockTransport(handler))
    return PrintDispatcher(
        secrets or FakeSecretStore(),
        relay=relay,
        spooler=spooler or LocalSpooler(enabled=False),
        bus=bus or EventBus(),
    )


def test_each_printer_gets_its_own_job_and_failures_are_isolated():
    requests = []

    def handler(request):
        requests.append(request)
        body = json.loads(request.content)
        if body["printer"] == 102:
            return httpx.Response(500, text="printer offline")
        return httpx.Response(201, json=9000 + body["printer"])

    stream = encode_receipt(_document())
    dispatcher = _dispatcher(handler)

    report = asyncio.run(
        dispatcher.dispatch(restaurant_id=1, order_number=42, stream=stream, printer_ids=["101", "102", "103"])
    )

    assert (report.success_count, report.failure_count) == (2, 1)
    failed = [r for r in report.results if not r.ok]
    assert failed[0].printer_id == "102"
    assert failed[0].kind == "rejected"
    assert failed[0].status_code == 500
    assert {r.job_id for r in report.results if r.ok} == {"9101", "9103"}
    assert report.local is None

    assert len(requests) == 3
    first = requests[0]
    assert str(first.url) == "https://relay.test/printjobs"
    expected_auth = "Basic " + base64.b64encode(b"secret-key:").decode("ascii")
    assert first.headers["authorization"] == expected_auth
    body = json.loads(first.content)
    assert body["contentType"] == "raw_base64"
    assert "42" in body["title"]
    assert base64.b64decode(body["content"]).decode("utf-8") == stream
    assert "secret-key" not in first.content.decode("utf-8")


def test_missing_credential_fails_every_printer_without_calling_relay():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(201, json=1)

    secrets = FakeSecretStore(error=SecretRetrievalError(SecretRetrievalError.NOT_CONFIGURED, "no key"))
    dispatcher = _dispatcher(handler, secrets=secrets)

    report = asyncio.run(dispatcher.dispatch(restaurant_id=1, order_number=1, stream="x", printer_ids=["1", "2"]))

    assert calls == []
    assert report.failure_count == 2
    assert {r.kind for r in report.results} == {"credential"}


def test_unreachable_relay_is_reported_as_transport_failure():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    report = asyncio.run(
        _dispatcher(handler).dispatch(restaurant_id=1, order_number=3, stream="x", printer_ids=["7"])
    )

    assert report.results[0].ok is False
    assert report.results[0].kind == "transport"


def test_no_printers_configured_skips_relay_and_credentials():
    secrets = FakeSecretStore()

    report = asyncio.run(
        _dispatcher(lambda request: httpx.Response(201), secrets=secrets).dispatch(
            restaurant_id=1, order_number=4, stream="x", printer_ids=[]
        )
    )

    assert (report.success_count, report.failure_count) == (0, 0)
    assert secrets.calls == []


def test_dispatch_result_is_published_on_the_bus():
    bus = EventBus()
    events = []
    bus.subscribe(PRINT_DISPATCH_COMPLETED, events.append)

    asyncio.run(
        _dispatcher(lambda request: httpx.Response(201, json=5), bus=bus).dispatch(
            restaurant_id=9, order_number=8, stream="x", printer_ids=["1"]
        )
    )

    assert events[0]["restaurant_id"] == 9
    assert events[0]["order_number"] == 8
    assert events[0]["success_count"] == 1


def test_local_spooler_prints_once_per_order(tmp_path):
    document = _document()
    tree = to_structured(document)
    spooler = LocalSpooler(enabled=True, command="", settle_seconds=0, tickets_dir=str(tmp_path))
    dispatcher = _dispatcher(lambda request: httpx.Response(201), spooler=spooler)

    async def _twice():
        first = await dispatcher.dispatch(restaurant_id=1, order_number=42, stream="x", structured=tree)
        second = await dispatcher.dispatch(restaurant_id=1, order_number=42, stream="x", structured=tree)
        return first, second

    first, second = asyncio.run(_twice())

    assert first.local.ok is True
    assert os.path.exists(first.local.job_id)
    assert first.local.job_id.endswith("order_42_restaurant_1.pdf")
    assert second.local is None


def test_local_spooler_skips_tablets(tmp_path):
    spooler = LocalSpooler(enabled=True, settle_seconds=0, tickets_dir=str(tmp_path))
    dispatcher = _dispatcher(lambda request: httpx.Response(201), spooler=spooler)

    report = asyncio.run(
        dispatcher.dispatch(
            restaurant_id=1,
            order_number=5,
            stream="x",
            structured=to_structured(_document()),
            device_class="tablet",
        )
    )

    assert report.local is None
    assert not any(tmp_path.iterdir())


def test_failed_local_command_emits_local_failure(tmp_path):
    bus = EventBus()
    failures = []
    bus.subscribe(PRINT_LOCAL_FAILED, failures.append)
    spooler = LocalSpooler(enabled=True, command="false", settle_seconds=0, tickets_dir=str(tmp_path))
    dispatcher = _dispatcher(lambda request: httpx.Response(201), spooler=spooler, bus=bus)

    report = asyncio.run(
        dispatcher.dispatch(restaurant_id=1, order_number=6, stream="x", structured=to_structured(_document()))
    )

    assert report.local.ok is False
    assert report.local.kind == "local"
    assert failures[0]["order_number"] == 6


def test_credential_lookup_crash_still_reports_every_printer():
    bus = EventBus()
    events = []
    bus.subscribe(PRINT_DISPATCH_COMPLETED, events.append)
    secrets = FakeSecretStore(error=RuntimeError("database is locked"))
    dispatcher = _dispatcher(lambda request: httpx.Response(201, json=1), secrets=secrets, bus=bus)

    report = asyncio.run(dispatcher.dispatch(restaurant_id=1, order_number=10, stream="x", printer_ids=["1", "2"]))

    assert report.failure_count == 2
    assert {r.kind for r in report.results} == {"credential"}
    assert events[0]["failure_count"] == 2


def test_local_print_memory_forgets_oldest_orders(tmp_path):
    spooler = LocalSpooler(enabled=True, command="", settle_seconds=0, tickets_dir=str(tmp_path))
    dispatcher = PrintDispatcher(
        FakeSecretStore(),
        relay=PrintRelayClient("https://relay.test", transport=httpx.MockTransport(lambda request: httpx.Response(201))),
        spooler=spooler,
        bus=EventBus(),
        spool_memory=2,
    )
    tree = to_structured(_document())

    async def _print(order_number):
        report = await dispatcher.dispatch(restaurant_id=1, order_number=order_number, stream="x", structured=tree)
        return report.local

    async def scenario():
        for order_number in (1, 2, 3):
            await _print(order_number)
        return await _print(1), await _print(3)

    reprinted, repeated = asyncio.run(scenario())

    assert reprinted is not None and reprinted.ok is True
    assert repeated is None
    assert len(dispatcher._spooled) == 2
