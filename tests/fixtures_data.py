"""Catálogo reutilizável para os cenários de teste do kiosk."""

from decimal import Decimal

from kiosk.schemas.catalog import (
    CatalogChoice,
    CatalogItem,
    CatalogOptionGroup,
    CatalogTopping,
    CatalogToppingGroup,
    VisibilityCondition,
)


def burger_item(item_tax_rate="10", bacon_tax_rate="20") -> CatalogItem:
    """10.00 a 10%; bacon 2.00 com alíquota própria; molho só aparece com tamanho grande."""
    return CatalogItem(
        id="burger",
        name="Burger",
        price=Decimal("10.00"),
        tax_rate=Decimal(item_tax_rate) if item_tax_rate is not None else None,
        option_groups=(
            CatalogOptionGroup(
                id="size",
                name="Size",
                required=True,
                choices=(
                    CatalogChoice(id="regular", name="Regular"),
                    CatalogChoice(id="large", name="Large", price_delta=Decimal("1.50")),
                ),
            ),
            CatalogOptionGroup(
                id="sides",
                name="Sides",
                multiple=True,
                choices=(
                    CatalogChoice(id="fries", name="Fries", price_delta=Decimal("2.00")),
                    CatalogChoice(id="salad", name="Salad", price_delta=Decimal("1.00")),
                ),
            ),
        ),
        topping_groups=(
            CatalogToppingGroup(
                id="extras",
                name="Extras",
                max_selections=2,
                toppings=(
                    CatalogTopping(
                        id="bacon",
                        name="Bacon",
                        price=Decimal("2.00"),
                        tax_rate=Decimal(bacon_tax_rate) if bacon_tax_rate is not None else None,
                    ),
                    CatalogTopping(id="cheese", name="Cheese", price=Decimal("1.00")),
                    CatalogTopping(id="onion", name="Onion", price=Decimal("0.50")),
                ),
            ),
            CatalogToppingGroup(
                id="sauce",
                name="Sauce",
                required=True,
                max_selections=1,
                visibility=(VisibilityCondition(kind="option", ref_id="large"),),
                toppings=(
                    CatalogTopping(id="ketchup", name="Ketchup"),
                    CatalogTopping(id="mayo", name="Mayo"),
                ),
            ),
        ),
    )


def multi_topping_item() -> CatalogItem:
    return CatalogItem(
        id="wings",
        name="Wings",
        price=Decimal("6.00"),
        tax_rate=Decimal("10"),
        topping_groups=(
            CatalogToppingGroup(
                id="dips",
                name="Dips",
                required=True,
                min_selections=2,
                allow_multiple_same_topping=True,
                toppings=(
                    CatalogTopping(id="bbq", name="BBQ", price=Decimal("0.50")),
                    CatalogTopping(id="ranch", name="Ranch", price=Decimal("0.50")),
                ),
            ),
            CatalogToppingGroup(
                id="spice",
                name="Spice",
                max_selections=3,
                allow_multiple_same_topping=True,
                toppings=(CatalogTopping(id="chili", name="Chili", price=Decimal("0.20")),),
            ),
        ),
    )


def cyclic_item() -> CatalogItem:
    """Dois grupos obrigatórios que dependem um do outro para aparecer."""
    return CatalogItem(
        id="loop",
        name="Loop",
        price=Decimal("5.00"),
        topping_groups=(
            CatalogToppingGroup(
                id="first",
                name="First",
                required=True,
                visibility=(VisibilityCondition(kind="topping", ref_id="t2"),),
                toppings=(CatalogTopping(id="t1", name="T1"),),
            ),
            CatalogToppingGroup(
                id="second",
                name="Second",
                required=True,
                visibility=(VisibilityCondition(kind="topping", ref_id="t1"),),
                toppings=(CatalogTopping(id="t2", name="T2"),),
            ),
            CatalogToppingGroup(
                id="third",
                name="Third",
                required=True,
                visibility=(VisibilityCondition(kind="topping", ref_id="t1"),),
                toppings=(CatalogTopping(id="t3", name="T3"),),
            ),
        ),
    )


RESTAURANT_ROW = {
    "id": 1,
    "name": "Kiosk Café",
    "location": "Rua Principal, 100",
    "currency": "EUR",
    "default_tax_rate": Decimal("10"),
    "table_selection_enabled": True,
    "configured_printers": [],
    "browser_printing_enabled": False,
}


def seed_restaurant_with_burger(db) -> None:
    """Grava o restaurante e o mesmo burger de burger_item() nas tabelas do cardápio."""
    from kiosk.models.menu_item import MenuItem
    from kiosk.models.option_group import OptionChoice, OptionGroup
    from kiosk.models.restaurant import Restaurant
    from kiosk.models.topping_group import Topping, ToppingGroup

    db.add(Restaurant(**RESTAURANT_ROW))
    item = MenuItem(id="burger", restaurant_id=1, name="Burger", price=Decimal("10.00"), tax_rate=Decimal("10"))
    item.option_groups = [
        OptionGroup(
            id="size",
            name="Size",
            required=True,
            order_index=0,
            choices=[
                OptionChoice(id="regular", name="Regular", order_index=0),
                OptionChoice(id="large", name="Large", price=Decimal("1.50"), order_index=1),
            ],
        ),
        OptionGroup(
            id="sides",
            name="Sides",
            multiple=True,
            order_index=1,
            choices=[
                OptionChoice(id="fries", name="Fries", price=Decimal("2.00"), order_index=0),
                OptionChoice(id="salad", name="Salad", price=Decimal("1.00"), order_index=1),
            ],
        ),
    ]
    item.topping_groups = [
        ToppingGroup(
            id="extras",
            name="Extras",
            max_selections=2,
            order_index=0,
            toppings=[
                Topping(id="bacon", name="Bacon", price=Decimal("2.00"), tax_rate=Decimal("20"), order_index=0),
                Topping(id="cheese", name="Cheese", price=Decimal("1.00"), order_index=1),
                Topping(id="onion", name="Onion", price=Decimal("0.50"), order_index=2),
            ],
        ),
        ToppingGroup(
            id="sauce",
            name="Sauce",
            required=True,
            max_selections=1,
            show_if_selection_type=["option"],
            show_if_selection_id=["large"],
            order_index=1,
            toppings=[
                Topping(id="ketchup", name="Ketchup", order_index=0),
                Topping(id="mayo", name="Mayo", order_index=1),
            ],
        ),
    ]
    db.add(item)
    db.commit()
