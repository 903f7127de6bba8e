from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Optional, Protocol

from kiosk.core.config import DEFAULT_TAX_RATE, IS_DEV
from kiosk.core.errors import PricingInconsistency
from kiosk.schemas.catalog import CatalogItem
from kiosk.services.selection import SelectionModel, selected_toppings

logger = logging.getLogger(__name__)

MINOR_UNIT = Decimal("0.01")
_ZERO = Decimal("0")
_HUNDRED = Decimal("100")


def money(value: Decimal) -> Decimal:
    return Decimal(value).quantize(MINOR_UNIT, rounding=ROUND_HALF_UP)


def resolve_tax_rate(rate: Optional[Decimal], fallback: Optional[Decimal] = None) -> Decimal:
    if rate is not None:
        return Decimal(rate)
    if fallback is not None:
        return Decimal(fallback)
    return DEFAULT_TAX_RATE


def price_components(
    item: CatalogItem,
    selection: SelectionModel,
    default_tax_rate: Optional[Decimal] = None,
) -> dict[Decimal, Decimal]:
    """
    Preço unitário (com imposto) separado por alíquota.

    Preço base e deltas de opções usam a alíquota do item; cada topping usa a
    sua própria alíquota, ou a do item quando não tiver.
    """
    item_rate = resolve_tax_rate(item.tax_rate, default_tax_rate)
    components: dict[Decimal, Decimal] = {item_rate: Decimal(item.price)}

    for group in item.option_groups:
        for choice_id in selection.chosen_choice_ids(group.id):
            choice = group.choice(choice_id)
            if choice is not None:
                components[item_rate] += choice.price_delta

    for group in item.topping_groups:
        for topping, quantity in selected_toppings(group, selection):
            rate = resolve_tax_rate(topping.tax_rate, item_rate)
            components[rate] = components.get(rate, _ZERO) + topping.price * quantity

    return components


def unit_price(
    item: CatalogItem,
    selection: SelectionModel,
    default_tax_rate: Optional[Decimal] = None,
) -> Decimal:
    return sum(price_components(item, selection, default_tax_rate).values(), _ZERO)


class PricedLine(Protocol):
    quantity: int
    unit_price: Decimal
    tax_components: tuple[tuple[Decimal, Decimal], ...]


def line_total(line: PricedLine) -> Decimal:
    if line.quantity <= 0:
        raise ValueError("Line quantity must be at least 1")
    return line.unit_price * line.quantity


@dataclass(frozen=True)
class TaxBucket:
    rate: Decimal
    inclusive: Decimal
    exclusive: Decimal
    tax: Decimal


@dataclass(frozen=True)
class CartTotals:
    subtotal: Decimal
    tax: Decimal
    total: Decimal
    lines_total: Decimal
    buckets: tuple[TaxBucket, ...] = ()


def _guard(value: Decimal, what: str, *, strict: bool) -> Decimal:
    if value >= 0:
        return value
    if strict:
        raise PricingInconsistency(f"Negative {what}: {value}")
    logger.error("Pricing inconsistency: negative %s=%s clamped to 0", what, value)
    return _ZERO


def cart_totals(lines: Iterable[PricedLine], *, strict: Optional[bool] = None) -> CartTotals:
    """Subtotal/imposto reconstruídos por linha e por alíquota a partir de preços com imposto."""
    strict = IS_DEV if strict is None else strict
    inclusive_by_rate: dict[Decimal, Decimal] = {}
    exclusive_by_rate: dict[Decimal, Decimal] = {}
    lines_total = _ZERO
    line_count = 0

    for line in lines:
        line_count += 1
        lines_total += _guard(line_total(line), "line total", strict=strict)
        for rate, amount in line.tax_components:
            inclusive = _guard(amount * line.quantity, "component price", strict=strict)
            exclusive = inclusive / (1 + rate / _HUNDRED)
            inclusive_by_rate[rate] = inclusive_by_rate.get(rate, _ZERO) + inclusive
            exclusive_by_rate[rate] = exclusive_by_rate.get(rate, _ZERO) + exclusive

    buckets = tuple(
        TaxBucket(
            rate=rate,
            inclusive=money(inclusive_by_rate[rate]),
            exclusive=money(exclusive_by_rate[rate]),
            tax=money(inclusive_by_rate[rate] - exclusive_by_rate[rate]),
        )
        for rate in sorted(inclusive_by_rate)
    )
    subtotal = money(sum(exclusive_by_rate.values(), _ZERO))
    tax = money(sum((inclusive_by_rate[r] - exclusive_by_rate[r] for r in inclusive_by_rate), _ZERO))
    total = subtotal + tax
    lines_total = money(lines_total)

    tolerance = MINOR_UNIT * max(line_count, 1)
    if abs(total - lines_total) > tolerance:
        message = f"Totals diverge from line prices: total={total} lines={lines_total}"
        if strict:
            raise PricingInconsistency(message)
        logger.error(message)

    return CartTotals(subtotal=subtotal, tax=tax, total=total, lines_total=lines_total, buckets=buckets)
