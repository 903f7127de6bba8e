import asyncio
from datetime import datetime
from decimal import Decimal

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import kiosk.models  # noqa: F401
from kiosk.core.database import Base
from kiosk.models.order import KioskOrder
from kiosk.services.card_checkout import CardCheckout, CardCheckoutRegistry
from kiosk.services.cart import CartSessionStore, build_cart_line
from kiosk.services.catalog import get_restaurant, load_catalog_item
from kiosk.services.event_bus import EventBus
from kiosk.services.payments import (
    APPROVED,
    SqlPaymentIntentStore,
    get_payment_intent,
    update_payment_status,
)
from kiosk.services.receipt import preview_context
from kiosk.services.selection import SelectionModel
from tests.fixtures_data import seed_restaurant_with_burger


class RecordingDispatcher:
    def __init__(self):
        self.calls = []

    async def dispatch(self, **kwargs):
        self.calls.append(kwargs)


def _setup():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    db = factory()
    seed_restaurant_with_burger(db)

    item = load_catalog_item(db, restaurant_id=1, item_id="burger")
    sessions = CartSessionStore()
    session = sessions.create(1)
    line = build_cart_line(item, SelectionModel(options={"size": ("regular",)}, toppings={"extras": ("bacon",)}))
    session = sessions.apply(session.session_id, lambda cart: cart.add(line))
    context = preview_context(get_restaurant(db, 1), timestamp=datetime(2024, 5, 17, 12, 0))
    db.close()
    return factory, sessions, session, context


def _checkout(factory, sessions, session, context, dispatcher, **options):
    return CardCheckout(
        session_id=session.session_id,
        restaurant_id=1,
        cart=session.cart,
        context=context,
        order_type="takeaway",
        table_id=None,
        store=SqlPaymentIntentStore(factory),
        session_factory=factory,
        dispatcher=dispatcher,
        sessions=sessions,
        interval=0.01,
        bus=EventBus(),
        **options,
    )


def _set_status(factory, intent_id, status):
    db = factory()
    update_payment_status(db, get_payment_intent(db, intent_id), status)
    db.commit()
    db.close()


def test_approved_card_payment_confirms_order_and_prints():
    factory, sessions, session, context = _setup()
    dispatcher = RecordingDispatcher()
    checkout = _checkout(factory, sessions, session, context, dispatcher)

    async def scenario():
        record = await checkout.start(Decimal("12.00"))
        _set_status(factory, record.id, APPROVED)
        await checkout.poller.wait()
        await checkout._print_task
        return record

    record = asyncio.run(scenario())

    status = checkout.status()
    assert status["approved"] is True
    assert status["order_number"] == 1
    assert status["payment_intent_id"] == record.id
    assert sessions.get(session.session_id).cart.is_empty
    assert dispatcher.calls[0]["order_number"] == 1

    db = factory()
    order = db.query(KioskOrder).one()
    assert order.payment_intent_id == record.id
    assert order.payment_method == "card"


def test_declined_card_payment_keeps_the_cart():
    factory, sessions, session, context = _setup()
    dispatcher = RecordingDispatcher()
    checkout = _checkout(factory, sessions, session, context, dispatcher)

    async def scenario():
        record = await checkout.start(Decimal("12.00"))
        _set_status(factory, record.id, "declined")
        await checkout.poller.wait()

    asyncio.run(scenario())

    status = checkout.status()
    assert status["state"] == "idle"
    assert status["error"] == "Pagamento recusado"
    assert status["error_kind"] == "declined"
    assert not sessions.get(session.session_id).cart.is_empty
    assert dispatcher.calls == []
    assert factory().query(KioskOrder).count() == 0


def test_new_attempt_cancels_the_previous_one():
    factory, sessions, session, context = _setup()
    registry = CardCheckoutRegistry()
    first = _checkout(factory, sessions, session, context, RecordingDispatcher())
    second = _checkout(factory, sessions, session, context, RecordingDispatcher())

    async def scenario():
        first_record = await registry.start(first, Decimal("12.00"))
        second_record = await registry.start(second, Decimal("12.00"))
        await registry.cancel(session.session_id)
        return first_record, second_record

    first_record, second_record = asyncio.run(scenario())

    db = factory()
    assert get_payment_intent(db, first_record.id).status == "cancelled"
    assert get_payment_intent(db, second_record.id).status == "cancelled"
    assert registry.get(session.session_id) is second
    assert first.status()["state"] == "idle"
