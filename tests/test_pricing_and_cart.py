from decimal import Decimal
from types import SimpleNamespace

import pytest

from kiosk.core.errors import PricingInconsistency, SelectionValidationError
from kiosk.services.cart import Cart, CartSessionStore, build_cart_line
from kiosk.services.pricing import cart_totals, line_total, money, price_components, unit_price
from kiosk.services.selection import SelectionModel
from tests.fixtures_data import burger_item, multi_topping_item

BACON_REGULAR = SelectionModel(options={"size": ("regular",)}, toppings={"extras": ("bacon",)})


def test_unit_price_adds_option_deltas_and_toppings():
    item = burger_item()
    selection = SelectionModel(
        options={"size": ("large",), "sides": ("fries", "salad")},
        toppings={"extras": ("bacon", "cheese"), "sauce": ("ketchup",)},
    )

    assert unit_price(item, selection) == Decimal("17.50")


def test_topping_quantities_multiply_price():
    item = multi_topping_item()
    selection = SelectionModel(
        toppings={"dips": ("bbq", "ranch"), "spice": ("chili",)},
        topping_quantities={"dips": {"bbq": 2, "ranch": 0}, "spice": {"chili": 3}},
    )

    assert unit_price(item, selection) == Decimal("7.60")


def test_cart_totals_split_tax_per_rate():
    line = build_cart_line(burger_item(), BACON_REGULAR)

    totals = cart_totals([line], strict=True)

    assert line.unit_price == Decimal("12.00")
    assert totals.subtotal == Decimal("10.76")
    assert totals.tax == Decimal("1.24")
    assert totals.total == Decimal("12.00")
    assert [(b.rate, b.tax) for b in totals.buckets] == [(Decimal("10"), Decimal("0.91")), (Decimal("20"), Decimal("0.33"))]


def test_changing_a_tax_rate_moves_tax_not_total():
    original = cart_totals([build_cart_line(burger_item(), BACON_REGULAR)], strict=True)
    same_rate = cart_totals([build_cart_line(burger_item(bacon_tax_rate="10"), BACON_REGULAR)], strict=True)

    assert same_rate.total == original.total == Decimal("12.00")
    assert same_rate.subtotal == Decimal("10.91")
    assert same_rate.tax == Decimal("1.09")


def test_missing_tax_rates_fall_back_to_restaurant_default():
    item = burger_item(item_tax_rate=None, bacon_tax_rate=None)

    components = price_components(item, BACON_REGULAR, Decimal("5.5"))

    assert components == {Decimal("5.5"): Decimal("12.00")}


def test_line_total_multiplies_quantity_and_rejects_non_positive():
    line = build_cart_line(burger_item(), BACON_REGULAR, quantity=3)

    assert line.line_total == Decimal("36.00")
    assert cart_totals([line], strict=True).total == Decimal("36.00")
    with pytest.raises(ValueError):
        line_total(SimpleNamespace(quantity=0, unit_price=Decimal("1.00"), tax_components=()))


def test_negative_amounts_raise_in_strict_mode_and_clamp_otherwise():
    bad = SimpleNamespace(quantity=1, unit_price=Decimal("-1.00"), tax_components=((Decimal("10"), Decimal("-1.00")),))

    with pytest.raises(PricingInconsistency):
        cart_totals([bad], strict=True)
    totals = cart_totals([bad], strict=False)
    assert totals.total == Decimal("0.00")


def test_money_rounds_half_up():
    assert money(Decimal("0.125")) == Decimal("0.13")
    assert money(Decimal("10.7575")) == Decimal("10.76")


def test_build_cart_line_validates_and_freezes_selection():
    item = burger_item()

    with pytest.raises(SelectionValidationError):
        build_cart_line(item, SelectionModel())
    with pytest.raises(ValueError):
        build_cart_line(item, BACON_REGULAR, quantity=0)

    hidden_sauce = SelectionModel(options={"size": ("regular",)}, toppings={"sauce": ("mayo",)})
    line = build_cart_line(item, hidden_sauce, special_instructions="  sem cebola ")
    assert "sauce" not in line.selection.toppings
    assert line.unit_price == Decimal("10.00")
    assert line.special_instructions == "sem cebola"


def test_cart_line_keeps_price_from_add_time():
    line = build_cart_line(burger_item(), BACON_REGULAR)
    repriced = burger_item().model_copy(update={"price": Decimal("99.00")})

    assert unit_price(repriced, line.selection) == Decimal("101.00")
    assert line.unit_price == Decimal("12.00")


def test_cart_mutations_produce_new_versions():
    line = build_cart_line(burger_item(), BACON_REGULAR)
    empty = Cart()

    one = empty.add(line)
    two = one.update_quantity(line.line_id, 2)
    removed = two.update_quantity(line.line_id, 0)

    assert empty.lines == ()
    assert (one.version, two.version, removed.version) == (1, 2, 3)
    assert two.item_count == 2
    assert removed.is_empty
    assert one.clear().version == 2
    with pytest.raises(KeyError):
        one.remove("missing")


def test_cart_session_store_swaps_versions_atomically():
    store = CartSessionStore()
    session = store.create(restaurant_id=1)
    line = build_cart_line(burger_item(), BACON_REGULAR)

    updated = store.apply(session.session_id, lambda cart: cart.add(line))

    assert store.get(session.session_id).cart is updated.cart
    assert updated.cart.version == 1
    assert session.cart.version == 0
    with pytest.raises(KeyError):
        store.apply("missing", lambda cart: cart.clear())
    store.discard(session.session_id)
    assert store.get(session.session_id) is None
