from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException
from fastapi.responses import PlainTextResponse
from sqlalchemy.orm import Session

from kiosk.core.database import get_db
from kiosk.core.errors import ItemFetchSuperseded, PricingInconsistency, SelectionValidationError
from kiosk.deps import (
    get_card_checkouts,
    get_cart_sessions,
    get_device_class,
    get_item_loaders,
    get_payment_store,
    get_print_dispatcher,
    get_session_factory,
    require_cart_session,
    require_restaurant,
    restaurant_tax_rate,
)
from kiosk.models.order import KioskOrder
from kiosk.models.restaurant import Restaurant
from kiosk.schemas.catalog import CatalogItem
from kiosk.schemas.kiosk import CardPaymentRequest, CartLineCreate, CartLineUpdate, CheckoutRequest, PriceRequest, SelectionPayload
from kiosk.services.card_checkout import CardCheckout, CardCheckoutRegistry
from kiosk.services.cart import CartLine, CartSession, CartSessionStore, build_cart_line
from kiosk.services.catalog import ItemDetailsLoaderRegistry, load_catalog_item, sql_item_fetcher
from kiosk.services.event_handlers import recent_notifications
from kiosk.services.orders import (
    CARD,
    configured_printer_ids,
    confirm_order,
    dispatch_receipt,
    order_to_dict,
    receipt_for_order,
    tax_breakdown_rows,
    validate_checkout,
)
from kiosk.services.payments import PaymentIntentStore
from kiosk.services.pricing import cart_totals, price_components
from kiosk.services.printing import PrintDispatcher
from kiosk.services.receipt import build_receipt_document, encode_receipt, preview_context, rate_text, to_structured
from kiosk.services.validation import compute_visibility, first_unsatisfied_group, prune_hidden, validate_selection

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/kiosk", tags=["kiosk"])


def _selection_error(exc: SelectionValidationError) -> HTTPException:
    return HTTPException(
        status_code=422,
        detail={
            "message": "Seleção inválida",
            "reason": str(exc),
            "unsatisfied_option_group_ids": exc.option_group_ids,
            "unsatisfied_topping_group_ids": exc.topping_group_ids,
            "integrity_errors": exc.integrity_errors,
        },
    )


def _ensure_item(db: Session, restaurant_id: int, item_id: str) -> CatalogItem:
    item = load_catalog_item(db, restaurant_id=restaurant_id, item_id=item_id)
    if not item:
        raise HTTPException(status_code=404, detail="Item não encontrado")
    return item


def _line_to_dict(line: CartLine) -> dict:
    return {
        "line_id": line.line_id,
        "item_id": line.item.id,
        "name": line.item.name,
        "quantity": line.quantity,
        "unit_price": str(line.unit_price),
        "line_total": str(line.line_total),
        "special_instructions": line.special_instructions,
        "selection": line.selection.model_dump(mode="json"),
    }


def _cart_to_dict(session: CartSession) -> dict:
    cart = session.cart
    try:
        totals = cart_totals(cart.lines)
    except PricingInconsistency as exc:
        logger.error("Cart totals inconsistent session_id=%s: %s", session.session_id, exc)
        raise HTTPException(status_code=500, detail="Inconsistência nos totais do carrinho") from exc
    return {
        "session_id": session.session_id,
        "restaurant_id": session.restaurant_id,
        "version": cart.version,
        "item_count": cart.item_count,
        "lines": [_line_to_dict(line) for line in cart.lines],
        "subtotal": str(totals.subtotal),
        "tax": str(totals.tax),
        "total": str(totals.total),
        "tax_breakdown": tax_breakdown_rows(totals),
    }


# =========================
# Catálogo / seleção
# =========================

@router.get("/{restaurant_id}/items/{item_id}")
def get_item(restaurant_id: int, item_id: str, db: Session = Depends(get_db)):
    return _ensure_item(db, restaurant_id, item_id).model_dump(mode="json")


@router.post("/{restaurant_id}/items/{item_id}/validate")
def validate_item_selection(
    restaurant_id: int,
    item_id: str,
    payload: SelectionPayload,
    db: Session = Depends(get_db),
):
    item = _ensure_item(db, restaurant_id, item_id)
    selection = payload.to_model()
    result = validate_selection(item, selection)
    first = first_unsatisfied_group(item, result)
    return {
        "satisfied": result.satisfied,
        "unsatisfied_option_group_ids": result.unsatisfied_option_group_ids,
        "unsatisfied_topping_group_ids": result.unsatisfied_topping_group_ids,
        "integrity_errors": result.integrity_errors,
        "first_unsatisfied": {"kind": first.kind, "id": first.id} if first else None,
        "visibility": compute_visibility(item, selection),
    }


@router.post("/{restaurant_id}/items/{item_id}/price")
def price_item(
    restaurant_id: int,
    item_id: str,
    payload: PriceRequest,
    restaurant: Restaurant = Depends(require_restaurant),
    db: Session = Depends(get_db),
):
    item = _ensure_item(db, restaurant_id, item_id)
    requested = payload.selection.to_model()
    result = validate_selection(item, requested)
    if result.integrity_errors:
        raise HTTPException(
            status_code=422,
            detail={"message": "Seleção inválida", "integrity_errors": result.integrity_errors},
        )
    selection = prune_hidden(item, requested)
    components = price_components(item, selection, restaurant_tax_rate(restaurant))
    unit = sum(components.values())
    return {
        "unit_price": str(unit),
        "quantity": payload.quantity,
        "line_total": str(unit * payload.quantity),
        "components": [{"rate": rate_text(rate), "amount": str(amount)} for rate, amount in sorted(components.items())],
    }


# =========================
# Carrinho
# =========================

@router.post("/{restaurant_id}/carts")
def open_cart(
    restaurant: Restaurant = Depends(require_restaurant),
    sessions: CartSessionStore = Depends(get_cart_sessions),
):
    return _cart_to_dict(sessions.create(restaurant.id))


@router.get("/{restaurant_id}/carts/{session_id}")
def get_cart(session: CartSession = Depends(require_cart_session)):
    return _cart_to_dict(session)


@router.post("/{restaurant_id}/carts/{session_id}/lines")
def add_cart_line(
    payload: CartLineCreate,
    session: CartSession = Depends(require_cart_session),
    restaurant: Restaurant = Depends(require_restaurant),
    sessions: CartSessionStore = Depends(get_cart_sessions),
    db: Session = Depends(get_db),
):
    item = _ensure_item(db, restaurant.id, payload.item_id)
    try:
        line = build_cart_line(
            item,
            payload.selection.to_model(),
            quantity=payload.quantity,
            special_instructions=payload.special_instructions,
            default_tax_rate=restaurant_tax_rate(restaurant),
        )
    except SelectionValidationError as exc:
        raise _selection_error(exc) from exc
    return _cart_to_dict(sessions.apply(session.session_id, lambda cart: cart.add(line)))


@router.patch("/{restaurant_id}/carts/{session_id}/lines/{line_id}")
def update_cart_line(
    line_id: str,
    payload: CartLineUpdate,
    session: CartSession = Depends(require_cart_session),
    sessions: CartSessionStore = Depends(get_cart_sessions),
):
    try:
        updated = sessions.apply(session.session_id, lambda cart: cart.update_quantity(line_id, payload.quantity))
    except KeyError as exc:
        raise HTTPException(status_code=404, detail="Item do carrinho não encontrado") from exc
    return _cart_to_dict(updated)


@router.delete("/{restaurant_id}/carts/{session_id}/lines/{line_id}")
def remove_cart_line(
    line_id: str,
    session: CartSession = Depends(require_cart_session),
    sessions: CartSessionStore = Depends(get_cart_sessions),
):
    try:
        updated = sessions.apply(session.session_id, lambda cart: cart.remove(line_id))
    except KeyError as exc:
        raise HTTPException(status_code=404, detail="Item do carrinho não encontrado") from exc
    return _cart_to_dict(updated)


@router.delete("/{restaurant_id}/carts/{session_id}/lines")
def clear_cart(
    session: CartSession = Depends(require_cart_session),
    sessions: CartSessionStore = Depends(get_cart_sessions),
):
    return _cart_to_dict(sessions.apply(session.session_id, lambda cart: cart.clear()))


@router.get("/{restaurant_id}/carts/{session_id}/receipt-preview")
def preview_receipt(
    format: str = "structured",
    session: CartSession = Depends(require_cart_session),
    restaurant: Restaurant = Depends(require_restaurant),
):
    if session.cart.is_empty:
        raise HTTPException(status_code=400, detail="Carrinho vazio")
    try:
        totals = cart_totals(session.cart.lines)
    except PricingInconsistency as exc:
        raise HTTPException(status_code=500, detail="Inconsistência nos totais do carrinho") from exc
    document = build_receipt_document(preview_context(restaurant), session.cart.lines, totals)
    if format == "escpos":
        return PlainTextResponse(encode_receipt(document))
    return to_structured(document)


@router.get("/{restaurant_id}/carts/{session_id}/items/{item_id}")
async def open_item_dialog(
    item_id: str,
    session: CartSession = Depends(require_cart_session),
    loaders: ItemDetailsLoaderRegistry = Depends(get_item_loaders),
    session_factory=Depends(get_session_factory),
):
    loader = loaders.get(session.session_id, sql_item_fetcher(session_factory, session.restaurant_id))
    try:
        item = await loader.load(item_id)
    except ItemFetchSuperseded as exc:
        raise HTTPException(status_code=409, detail="Item substituído por outra abertura") from exc
    if not item:
        raise HTTPException(status_code=404, detail="Item não encontrado")
    return item.model_dump(mode="json")


@router.delete("/{restaurant_id}/carts/{session_id}/dialog")
def close_item_dialog(
    session: CartSession = Depends(require_cart_session),
    loaders: ItemDetailsLoaderRegistry = Depends(get_item_loaders),
):
    return {"closed": loaders.close(session.session_id)}


# =========================
# Checkout
# =========================

@router.post("/{restaurant_id}/carts/{session_id}/checkout")
def checkout(
    payload: CheckoutRequest,
    background_tasks: BackgroundTasks,
    session: CartSession = Depends(require_cart_session),
    restaurant: Restaurant = Depends(require_restaurant),
    sessions: CartSessionStore = Depends(get_cart_sessions),
    dispatcher: PrintDispatcher = Depends(get_print_dispatcher),
    device_class: Optional[str] = Depends(get_device_class),
    db: Session = Depends(get_db),
):
    try:
        confirmed = confirm_order(
            db,
            restaurant,
            session.cart,
            preview_context(restaurant),
            order_type=payload.order_type,
            payment_method=payload.payment_method,
            table_id=payload.table_id,
            payment_intent_id=payload.payment_intent_id,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except PricingInconsistency as exc:
        raise HTTPException(status_code=500, detail="Inconsistência nos totais do carrinho") from exc

    sessions.apply(session.session_id, lambda cart: cart.clear())
    if confirmed.created:
        background_tasks.add_task(
            dispatch_receipt,
            dispatcher,
            restaurant_id=restaurant.id,
            order_number=confirmed.order.order_number,
            document=confirmed.document,
            printer_ids=configured_printer_ids(restaurant),
            local_enabled=bool(restaurant.browser_printing_enabled),
            device_class=device_class,
        )
    return {
        "order": order_to_dict(confirmed.order),
        "created": confirmed.created,
        "receipt": to_structured(confirmed.document),
    }


@router.post("/{restaurant_id}/carts/{session_id}/card-payment")
async def start_card_payment(
    payload: CardPaymentRequest,
    session: CartSession = Depends(require_cart_session),
    restaurant: Restaurant = Depends(require_restaurant),
    store: PaymentIntentStore = Depends(get_payment_store),
    checkouts: CardCheckoutRegistry = Depends(get_card_checkouts),
    dispatcher: PrintDispatcher = Depends(get_print_dispatcher),
    session_factory=Depends(get_session_factory),
    device_class: Optional[str] = Depends(get_device_class),
):
    order_type = (payload.order_type or "").strip().lower()
    try:
        validate_checkout(
            restaurant,
            session.cart,
            order_type=order_type,
            table_id=payload.table_id,
            payment_method=CARD,
            payment_intent_id="pending",
        )
        totals = cart_totals(session.cart.lines)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except PricingInconsistency as exc:
        raise HTTPException(status_code=500, detail="Inconsistência nos totais do carrinho") from exc

    card_checkout = CardCheckout(
        session_id=session.session_id,
        restaurant_id=restaurant.id,
        cart=session.cart,
        context=preview_context(restaurant),
        order_type=order_type,
        table_id=payload.table_id,
        store=store,
        session_factory=session_factory,
        dispatcher=dispatcher,
        device_class=device_class,
    )
    record = await checkouts.start(card_checkout, totals.total)
    return {"payment_intent_id": record.id, "amount": str(record.amount), **card_checkout.status()}


@router.get("/{restaurant_id}/carts/{session_id}/card-payment")
def card_payment_status(
    session: CartSession = Depends(require_cart_session),
    checkouts: CardCheckoutRegistry = Depends(get_card_checkouts),
):
    card_checkout = checkouts.get(session.session_id)
    if not card_checkout:
        raise HTTPException(status_code=404, detail="Pagamento não encontrado")
    return card_checkout.status()


@router.delete("/{restaurant_id}/carts/{session_id}/card-payment")
async def cancel_card_payment(
    session: CartSession = Depends(require_cart_session),
    checkouts: CardCheckoutRegistry = Depends(get_card_checkouts),
):
    card_checkout = await checkouts.cancel(session.session_id)
    if not card_checkout:
        raise HTTPException(status_code=404, detail="Pagamento não encontrado")
    return card_checkout.status()


# =========================
# Pedidos / notificações
# =========================

@router.get("/{restaurant_id}/orders/{order_number}/receipt")
def get_order_receipt(
    order_number: int,
    format: str = "structured",
    restaurant: Restaurant = Depends(require_restaurant),
    db: Session = Depends(get_db),
):
    order = (
        db.query(KioskOrder)
        .filter(KioskOrder.restaurant_id == restaurant.id, KioskOrder.order_number == order_number)
        .order_by(KioskOrder.id.desc())
        .first()
    )
    if not order:
        raise HTTPException(status_code=404, detail="Pedido não encontrado")
    document = receipt_for_order(order, preview_context(restaurant, timestamp=order.created_at))
    if format == "escpos":
        return PlainTextResponse(encode_receipt(document))
    return to_structured(document)


@router.get("/{restaurant_id}/notifications")
def list_notifications(restaurant: Restaurant = Depends(require_restaurant)):
    return recent_notifications(restaurant.id)
