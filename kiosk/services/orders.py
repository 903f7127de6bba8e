from __future__ import annotations

import logging
import time
from dataclasses import asdict, dataclass
from decimal import Decimal
from typing import Iterable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from kiosk.core.config import DEFAULT_CURRENCY
from kiosk.models.order import KioskOrder
from kiosk.models.restaurant import Restaurant
from kiosk.services.cart import Cart
from kiosk.services.event_bus import ORDER_CONFIRMED, event_bus
from kiosk.services.payments import APPROVED, count_orders, get_payment_intent
from kiosk.services.pricing import CartTotals, cart_totals
from kiosk.services.printing import PrintDispatcher, PrintDispatchReport
from kiosk.services.receipt import (
    ReceiptDocument,
    ReceiptLine,
    ReceiptModifier,
    ReceiptTopping,
    ReceiptToppingGroup,
    RenderContext,
    build_receipt_document,
    encode_receipt,
    rate_text,
    to_structured,
)

logger = logging.getLogger(__name__)

DINE_IN = "dine-in"
TAKEAWAY = "takeaway"
ORDER_TYPES = {DINE_IN, TAKEAWAY}

CASH = "cash"
CARD = "card"
PAYMENT_METHODS = {CASH, CARD}


@dataclass(frozen=True)
class ConfirmedOrder:
    order: KioskOrder
    document: ReceiptDocument
    created: bool = True


def _fallback_order_number() -> int:
    # HHMMSS do momento; só quando a contagem falha
    return int(time.strftime("%H%M%S"))


def next_order_number(db: Session, restaurant_id: int) -> int:
    """count + 1; dois terminais confirmando ao mesmo tempo podem repetir o número."""
    try:
        return count_orders(db, restaurant_id) + 1
    except SQLAlchemyError:
        logger.exception("Order count failed; using time-based order number")
        db.rollback()
        return _fallback_order_number()


def _items_snapshot(cart: Cart, document: ReceiptDocument) -> list[dict]:
    items = []
    for line, printed in zip(cart.lines, document.lines):
        items.append(
            {
                "line_id": line.line_id,
                "item_id": line.item.id,
                "name": line.item.name,
                "quantity": line.quantity,
                "unit_price": str(line.unit_price),
                "line_total": str(line.line_total),
                "tax_components": [[str(rate), str(amount)] for rate, amount in line.tax_components],
                "selection": line.selection.model_dump(mode="json"),
                "special_instructions": line.special_instructions,
                "receipt": asdict(printed),
            }
        )
    return items


def validate_checkout(
    restaurant: Restaurant,
    cart: Cart,
    *,
    order_type: str,
    table_id: Optional[str],
    payment_method: str,
    payment_intent_id: Optional[str],
) -> None:
    if cart.is_empty:
        raise ValueError("Carrinho vazio")
    if order_type not in ORDER_TYPES:
        raise ValueError("Tipo de pedido inválido")
    if payment_method not in PAYMENT_METHODS:
        raise ValueError("Forma de pagamento inválida")
    if order_type == DINE_IN and restaurant.table_selection_enabled and not (table_id or "").strip():
        raise ValueError("Mesa obrigatória para consumo no local")
    if payment_method == CARD and not payment_intent_id:
        raise ValueError("Pagamento com cartão sem intent")


def confirm_order(
    db: Session,
    restaurant: Restaurant,
    cart: Cart,
    context: RenderContext,
    *,
    order_type: str,
    payment_method: str,
    table_id: Optional[str] = None,
    payment_intent_id: Optional[str] = None,
    strict: Optional[bool] = None,
) -> ConfirmedOrder:
    """
    Confirma o carrinho como pedido: número, totais congelados e recibo.

    Com payment_intent_id a operação é idempotente: um segundo aviso de
    aprovação devolve o pedido já gravado. A impressão não acontece aqui;
    quem chama agenda dispatch_receipt depois de responder.
    """
    order_type = (order_type or "").strip().lower()
    payment_method = (payment_method or "").strip().lower()
    validate_checkout(
        restaurant,
        cart,
        order_type=order_type,
        table_id=table_id,
        payment_method=payment_method,
        payment_intent_id=payment_intent_id,
    )

    if payment_intent_id:
        existing = db.query(KioskOrder).filter(KioskOrder.payment_intent_id == payment_intent_id).first()
        if existing:
            logger.info("Order already confirmed for intent", extra={"payment_intent_id": payment_intent_id})
            return ConfirmedOrder(order=existing, document=receipt_for_order(existing, context), created=False)
        intent = get_payment_intent(db, payment_intent_id)
        if not intent or intent.restaurant_id != restaurant.id or intent.status != APPROVED:
            raise ValueError("Pagamento não aprovado")

    totals = cart_totals(cart.lines, strict=strict)
    order_number = next_order_number(db, restaurant.id)
    table = ((table_id or "").strip() or None) if order_type == DINE_IN else None
    document = build_receipt_document(
        context,
        cart.lines,
        totals,
        order_number=order_number,
        order_type=order_type,
        table_id=table,
    )

    order = KioskOrder(
        restaurant_id=restaurant.id,
        order_number=order_number,
        order_type=order_type,
        table_id=table,
        payment_method=payment_method,
        payment_intent_id=payment_intent_id,
        items_json=_items_snapshot(cart, document),
        currency=(restaurant.currency or DEFAULT_CURRENCY).upper(),
        subtotal=totals.subtotal,
        tax=totals.tax,
        total=totals.total,
    )
    db.add(order)
    try:
        db.commit()
        db.refresh(order)
    except Exception:
        db.rollback()
        raise

    logger.info("Order confirmed total=%s", totals.total, extra={"order_number": order_number})
    event_bus.emit(
        ORDER_CONFIRMED,
        {
            "restaurant_id": restaurant.id,
            "order_id": order.id,
            "order_number": order_number,
            "total": str(totals.total),
            "payment_method": payment_method,
            "payment_intent_id": payment_intent_id,
        },
    )
    return ConfirmedOrder(order=order, document=document)


def _receipt_line_from_dict(data: dict) -> ReceiptLine:
    return ReceiptLine(
        label=data["label"],
        quantity=int(data["quantity"]),
        unit_price_text=data["unit_price_text"],
        line_total_text=data["line_total_text"],
        modifiers=tuple(ReceiptModifier(**m) for m in data.get("modifiers", [])),
        grouped_toppings=tuple(
            ReceiptToppingGroup(
                category_label=g["category_label"],
                toppings=tuple(ReceiptTopping(**t) for t in g.get("toppings", [])),
            )
            for g in data.get("grouped_toppings", [])
        ),
        special_instructions=data.get("special_instructions", ""),
    )


def _order_totals(order: KioskOrder) -> CartTotals:
    subtotal = Decimal(str(order.subtotal))
    tax = Decimal(str(order.tax))
    total = Decimal(str(order.total))
    return CartTotals(subtotal=subtotal, tax=tax, total=total, lines_total=total)


def receipt_for_order(order: KioskOrder, context: RenderContext) -> ReceiptDocument:
    """Recibo de um pedido gravado, a partir do snapshot das linhas."""
    lines = tuple(_receipt_line_from_dict(entry["receipt"]) for entry in (order.items_json or []) if entry.get("receipt"))
    totals = _order_totals(order)
    return ReceiptDocument(
        context=context,
        lines=lines,
        subtotal_text=context.price(totals.subtotal),
        tax_text=context.price(totals.tax),
        total_text=context.price(totals.total),
        order_number=order.order_number,
        order_type=order.order_type,
        table_id=order.table_id,
    )


def order_to_dict(order: KioskOrder) -> dict:
    return {
        "id": order.id,
        "restaurant_id": order.restaurant_id,
        "order_number": order.order_number,
        "order_type": order.order_type,
        "table_id": order.table_id,
        "payment_method": order.payment_method,
        "payment_intent_id": order.payment_intent_id,
        "currency": order.currency,
        "subtotal": str(order.subtotal),
        "tax": str(order.tax),
        "total": str(order.total),
        "items": order.items_json or [],
        "created_at": order.created_at,
    }


def configured_printer_ids(restaurant: Restaurant) -> list[str]:
    return [str(p) for p in (restaurant.configured_printers or []) if str(p).strip()]


async def dispatch_receipt(
    dispatcher: PrintDispatcher,
    *,
    restaurant_id: int,
    order_number: int,
    document: ReceiptDocument,
    printer_ids: Iterable[str],
    local_enabled: bool = True,
    device_class: Optional[str] = None,
) -> Optional[PrintDispatchReport]:
    """Roda depois da confirmação; nenhuma falha de impressão volta para quem confirmou."""
    try:
        return await dispatcher.dispatch(
            restaurant_id=restaurant_id,
            order_number=order_number,
            stream=encode_receipt(document),
            printer_ids=printer_ids,
            structured=to_structured(document) if local_enabled else None,
            device_class=device_class,
        )
    except Exception:
        logger.exception("Print dispatch crashed", extra={"order_number": order_number})
        return None


def tax_breakdown_rows(totals: CartTotals) -> list[dict]:
    return [
        {"rate": rate_text(b.rate), "inclusive": str(b.inclusive), "exclusive": str(b.exclusive), "tax": str(b.tax)}
        for b in totals.buckets
    ]
