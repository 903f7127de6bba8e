from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Iterable, Optional

from kiosk.core.config import DEFAULT_CURRENCY, RECEIPT_DIVIDER_WIDTH
from kiosk.services import escpos
from kiosk.services.cart import CartLine
from kiosk.services.pricing import CartTotals, money, resolve_tax_rate
from kiosk.services.selection import selected_toppings

CURRENCY_SYMBOLS = {
    "EUR": "€",
    "USD": "$",
    "GBP": "£",
    "TRY": "₺",
    "JPY": "¥",
    "CAD": "$",
    "AUD": "$",
    "CHF": "Fr.",
    "CNY": "¥",
    "RUB": "₽",
}


def currency_symbol(code: Optional[str]) -> str:
    normalized = (code or DEFAULT_CURRENCY).strip().upper()
    return CURRENCY_SYMBOLS.get(normalized, normalized)


def rate_text(rate: Decimal) -> str:
    return f"{Decimal(rate).normalize():f}"


@dataclass(frozen=True)
class ReceiptLabels:
    order: str = "ORDER"
    takeaway: str = "TAKEAWAY"
    dine_in: str = "DINE-IN"
    table: str = "TABLE"
    subtotal: str = "Subtotal"
    tax: str = "Tax"
    total: str = "TOTAL"
    note: str = "Note"
    thank_you: str = "Thank you for your visit!"
    see_you: str = "See you soon!"


@dataclass(frozen=True)
class RenderContext:
    """Dados somente leitura compartilhados pelas duas saídas do recibo."""

    restaurant_name: str
    currency: str = DEFAULT_CURRENCY
    location: str = ""
    timestamp: datetime = field(default_factory=datetime.now)
    labels: ReceiptLabels = field(default_factory=ReceiptLabels)
    divider_width: int = RECEIPT_DIVIDER_WIDTH
    default_tax_rate: Optional[Decimal] = None

    @property
    def symbol(self) -> str:
        return currency_symbol(self.currency)

    def price(self, amount: Decimal) -> str:
        return f"{money(amount):.2f} {self.symbol}"


@dataclass(frozen=True)
class ReceiptModifier:
    label: str
    price_text: str = ""


@dataclass(frozen=True)
class ReceiptTopping:
    label: str
    price_text: str = ""
    tax_note: str = ""


@dataclass(frozen=True)
class ReceiptToppingGroup:
    category_label: str
    toppings: tuple[ReceiptTopping, ...] = ()


@dataclass(frozen=True)
class ReceiptLine:
    label: str
    quantity: int
    unit_price_text: str
    line_total_text: str
    modifiers: tuple[ReceiptModifier, ...] = ()
    grouped_toppings: tuple[ReceiptToppingGroup, ...] = ()
    special_instructions: str = ""


@dataclass(frozen=True)
class ReceiptDocument:
    context: RenderContext
    lines: tuple[ReceiptLine, ...]
    subtotal_text: str
    tax_text: str
    total_text: str
    tax_breakdown: tuple[tuple[str, str], ...] = ()
    order_number: Optional[int] = None
    order_type: Optional[str] = None
    table_id: Optional[str] = None


def receipt_line(line: CartLine, context: RenderContext) -> ReceiptLine:
    item = line.item
    selection = line.selection
    item_rate = resolve_tax_rate(item.tax_rate, context.default_tax_rate)

    modifiers = []
    for group in item.option_groups:
        for choice_id in selection.chosen_choice_ids(group.id):
            choice = group.choice(choice_id)
            if choice is None:
                continue
            modifiers.append(
                ReceiptModifier(
                    label=f"{group.name}: {choice.name}",
                    price_text=context.price(choice.price_delta) if choice.price_delta > 0 else "",
                )
            )

    grouped = []
    for group in item.topping_groups:
        toppings = []
        for topping, quantity in selected_toppings(group, selection):
            rate = resolve_tax_rate(topping.tax_rate, item_rate)
            toppings.append(
                ReceiptTopping(
                    label=f"{quantity}x {topping.name}" if quantity > 1 else topping.name,
                    price_text=context.price(topping.price * quantity) if topping.price > 0 else "",
                    tax_note=f"{context.labels.tax} {rate_text(rate)}%" if rate != item_rate else "",
                )
            )
        if toppings:
            grouped.append(ReceiptToppingGroup(category_label=group.name, toppings=tuple(toppings)))

    return ReceiptLine(
        label=item.name,
        quantity=line.quantity,
        unit_price_text=context.price(line.unit_price),
        line_total_text=context.price(line.line_total),
        modifiers=tuple(modifiers),
        grouped_toppings=tuple(grouped),
        special_instructions=line.special_instructions,
    )


def build_receipt_document(
    context: RenderContext,
    lines: Iterable[CartLine],
    totals: CartTotals,
    *,
    order_number: Optional[int] = None,
    order_type: Optional[str] = None,
    table_id: Optional[str] = None,
) -> ReceiptDocument:
    return ReceiptDocument(
        context=context,
        lines=tuple(receipt_line(line, context) for line in lines),
        subtotal_text=context.price(totals.subtotal),
        tax_text=context.price(totals.tax),
        total_text=context.price(totals.total),
        tax_breakdown=tuple((rate_text(b.rate), context.price(b.tax)) for b in totals.buckets),
        order_number=order_number,
        order_type=order_type,
        table_id=table_id,
    )


def _order_type_text(document: ReceiptDocument) -> str:
    labels = document.context.labels
    if document.order_type == "takeaway":
        return labels.takeaway
    if document.order_type == "dine-in" and document.table_id:
        return f"{labels.dine_in} - {labels.table}: {document.table_id}"
    if document.order_type == "dine-in":
        return labels.dine_in
    return ""


def _columns(left: str, right: str, width: int) -> str:
    if not right:
        return left
    spaces = max(1, width - len(left) - len(right))
    return left + " " * spaces + right


def _header(document: ReceiptDocument) -> list[str]:
    context = document.context
    header = [context.restaurant_name or "Restaurant"]
    if context.location:
        header.append(context.location)
    header.append(context.timestamp.strftime("%d/%m/%Y %H:%M"))
    return header


def _totals(document: ReceiptDocument) -> list[str]:
    labels = document.context.labels
    rows = [f"{labels.subtotal}: {document.subtotal_text}", f"{labels.tax}: {document.tax_text}"]
    if len(document.tax_breakdown) > 1:
        rows.extend(f"{labels.tax} {rate}%: {amount}" for rate, amount in document.tax_breakdown)
    return rows


def _line_rows(line: ReceiptLine, width: int, labels: ReceiptLabels) -> list[tuple[str, str]]:
    """Linhas de texto de um item, com a fonte de cada uma."""
    rows = [("bold", _columns(f"{line.quantity}x {line.label}", line.line_total_text, width))]
    if line.quantity > 1:
        rows.append(("normal", f"  @ {line.unit_price_text}"))
    for modifier in line.modifiers:
        rows.append(("normal", _columns(f"  + {modifier.label}", modifier.price_text, width)))
    for group in line.grouped_toppings:
        rows.append(("normal", f"  {group.category_label}:"))
        for topping in group.toppings:
            label = f"    + {topping.label}"
            if topping.tax_note:
                label = f"{label} ({topping.tax_note})"
            rows.append(("normal", _columns(label, topping.price_text, width)))
    if line.special_instructions:
        rows.append(("small", f"  {labels.note}: {line.special_instructions}"))
    return rows


def to_structured(document: ReceiptDocument) -> dict[str, Any]:
    """Árvore para a pré-visualização em tela, o spooler local e o JSON da API."""
    context = document.context
    labels = context.labels
    return {
        "header": {
            "lines": _header(document),
            "order": f"{labels.order} #{document.order_number}" if document.order_number is not None else None,
            "order_type": _order_type_text(document) or None,
        },
        "currency": context.currency,
        "currency_symbol": context.symbol,
        "lines": [
            {**asdict(line), "rows": [row for _, row in _line_rows(line, context.divider_width, labels)]}
            for line in document.lines
        ],
        "totals": {
            "subtotal": document.subtotal_text,
            "tax": document.tax_text,
            "total": document.total_text,
            "rows": _totals(document),
            "total_row": f"{labels.total}: {document.total_text}",
            "tax_breakdown": [{"rate": rate, "tax": amount} for rate, amount in document.tax_breakdown],
        },
        "footer": [labels.thank_you, labels.see_you],
        "divider_width": context.divider_width,
    }


def to_command_stream(document: ReceiptDocument) -> list[escpos.Directive]:
    context = document.context
    labels = context.labels
    width = context.divider_width
    header = _header(document)

    stream = [escpos.align("center"), escpos.font("large_bold"), escpos.text(header[0]), escpos.font("normal")]
    stream.extend(escpos.text(row) for row in header[1:])
    if document.order_number is not None:
        stream += [escpos.font("large"), escpos.text(f"{labels.order} #{document.order_number}"), escpos.feed()]
    order_type = _order_type_text(document)
    if order_type:
        stream += [escpos.font("bold"), escpos.text(order_type)]
    stream += [escpos.align("left"), escpos.font("normal"), escpos.divider(width)]

    for line in document.lines:
        for style, row in _line_rows(line, width, labels):
            stream += [escpos.font(style), escpos.text(row)]

    stream += [escpos.font("normal"), escpos.divider(width), escpos.align("right")]
    stream.extend(escpos.text(row) for row in _totals(document))
    stream += [
        escpos.divider(width),
        escpos.font("large_bold"),
        escpos.text(f"{labels.total}: {document.total_text}"),
        escpos.feed(),
        escpos.align("center"),
        escpos.font("normal"),
        escpos.text(labels.thank_you),
        escpos.text(labels.see_you),
        escpos.feed(2),
        escpos.align("left"),
        escpos.feed(5),
        escpos.cut(),
    ]
    return stream


def encode_receipt(document: ReceiptDocument) -> str:
    return escpos.encode(to_command_stream(document))


def structured_text_rows(tree: dict[str, Any], width: Optional[int] = None) -> list[str]:
    """Achata a árvore em linhas simples (usado pelo ticket PDF)."""
    width = width or tree.get("divider_width") or RECEIPT_DIVIDER_WIDTH
    header = tree["header"]
    rows: list[str] = list(header["lines"])
    for key in ("order", "order_type"):
        if header.get(key):
            rows.append(header[key])
    rows.append("-" * width)
    for line in tree["lines"]:
        rows.extend(line["rows"])
    rows.append("-" * width)
    rows.extend(tree["totals"]["rows"])
    rows.append(tree["totals"]["total_row"])
    rows.extend(tree["footer"])
    return rows


def preview_context(restaurant, *, labels: Optional[ReceiptLabels] = None, timestamp: Optional[datetime] = None) -> RenderContext:
    default_rate = getattr(restaurant, "default_tax_rate", None)
    return RenderContext(
        restaurant_name=getattr(restaurant, "name", "") or "Restaurant",
        location=getattr(restaurant, "location", "") or "",
        currency=getattr(restaurant, "currency", None) or DEFAULT_CURRENCY,
        timestamp=timestamp or datetime.now(),
        labels=labels or ReceiptLabels(),
        default_tax_rate=Decimal(str(default_rate)) if default_rate is not None else None,
    )
