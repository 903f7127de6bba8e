from __future__ import annotations

from typing import Iterator

from pydantic import BaseModel, ConfigDict, Field

from kiosk.core.errors import SelectionValidationError
from kiosk.schemas.catalog import CatalogItem, CatalogTopping, CatalogToppingGroup


class SelectionModel(BaseModel):
    """Escolhas do cliente para uma linha do carrinho; cada mutação devolve uma nova instância."""

    model_config = ConfigDict(frozen=True)

    options: dict[str, tuple[str, ...]] = Field(default_factory=dict)
    toppings: dict[str, tuple[str, ...]] = Field(default_factory=dict)
    topping_quantities: dict[str, dict[str, int]] = Field(default_factory=dict)

    def chosen_choice_ids(self, group_id: str) -> tuple[str, ...]:
        return self.options.get(group_id, ())

    def chosen_topping_ids(self, group_id: str) -> tuple[str, ...]:
        return self.toppings.get(group_id, ())


def topping_quantity(group: CatalogToppingGroup, selection: SelectionModel, topping_id: str) -> int:
    chosen = topping_id in selection.chosen_topping_ids(group.id)
    if not group.allow_multiple_same_topping:
        return 1 if chosen else 0
    quantities = selection.topping_quantities.get(group.id, {})
    if topping_id in quantities:
        return int(quantities[topping_id])
    return 1 if chosen else 0


def selected_toppings(
    group: CatalogToppingGroup, selection: SelectionModel
) -> Iterator[tuple[CatalogTopping, int]]:
    """Toppings escolhidos na ordem do catálogo; quantidade 0 equivale a ausente."""
    for topping in group.toppings:
        quantity = topping_quantity(group, selection, topping.id)
        if quantity > 0:
            yield topping, quantity


def effective_count(group: CatalogToppingGroup, selection: SelectionModel) -> int:
    if group.allow_multiple_same_topping:
        return sum(quantity for _, quantity in selected_toppings(group, selection))
    return len(set(selection.chosen_topping_ids(group.id)))


def _with(selection: SelectionModel, **changes) -> SelectionModel:
    return selection.model_copy(update=changes)


def select_choice(item: CatalogItem, selection: SelectionModel, group_id: str, choice_id: str) -> SelectionModel:
    group = item.option_group(group_id)
    if group is None or group.choice(choice_id) is None:
        raise SelectionValidationError(f"Unknown option choice {group_id}/{choice_id}")

    current = selection.chosen_choice_ids(group_id)
    if group.multiple:
        if choice_id in current:
            chosen = tuple(cid for cid in current if cid != choice_id)
        else:
            chosen = current + (choice_id,)
    else:
        chosen = (choice_id,)

    options = dict(selection.options)
    options[group_id] = chosen
    return _with(selection, options=options)


def toggle_topping(item: CatalogItem, selection: SelectionModel, group_id: str, topping_id: str) -> SelectionModel:
    group = item.topping_group(group_id)
    if group is None or group.topping(topping_id) is None:
        raise SelectionValidationError(f"Unknown topping {group_id}/{topping_id}")

    current = selection.chosen_topping_ids(group_id)
    quantities = {gid: dict(q) for gid, q in selection.topping_quantities.items()}
    if topping_quantity(group, selection, topping_id) > 0:
        chosen = tuple(tid for tid in current if tid != topping_id)
        quantities.get(group_id, {}).pop(topping_id, None)
    elif group.max_selections == 1:
        chosen = (topping_id,)
        quantities.pop(group_id, None)
    else:
        if group.max_selections > 0 and effective_count(group, selection) >= group.max_selections:
            raise SelectionValidationError(
                f"Maximum of {group.max_selections} selections reached",
                topping_group_ids=[group_id],
            )
        chosen = tuple(tid for tid in current if tid != topping_id) + (topping_id,)
        if group.allow_multiple_same_topping:
            quantities.setdefault(group_id, {})[topping_id] = 1

    toppings = dict(selection.toppings)
    toppings[group_id] = chosen
    return _with(selection, toppings=toppings, topping_quantities=quantities)


def set_topping_quantity(
    item: CatalogItem,
    selection: SelectionModel,
    group_id: str,
    topping_id: str,
    quantity: int,
) -> SelectionModel:
    group = item.topping_group(group_id)
    if group is None or group.topping(topping_id) is None:
        raise SelectionValidationError(f"Unknown topping {group_id}/{topping_id}")
    if not group.allow_multiple_same_topping:
        raise SelectionValidationError(f"Topping group {group_id} does not accept quantities")
    if quantity < 0:
        raise SelectionValidationError("Topping quantity must be non-negative")

    others = effective_count(group, selection) - topping_quantity(group, selection, topping_id)
    if group.max_selections > 0 and others + quantity > group.max_selections:
        raise SelectionValidationError(
            f"Maximum of {group.max_selections} selections reached",
            topping_group_ids=[group_id],
        )

    current = tuple(tid for tid in selection.chosen_topping_ids(group_id) if tid != topping_id)
    quantities = {gid: dict(q) for gid, q in selection.topping_quantities.items()}
    group_quantities = quantities.setdefault(group_id, {})
    if quantity == 0:
        group_quantities.pop(topping_id, None)
    else:
        group_quantities[topping_id] = quantity
        current = current + (topping_id,)

    toppings = dict(selection.toppings)
    toppings[group_id] = current
    return _with(selection, toppings=toppings, topping_quantities=quantities)


def without_groups(selection: SelectionModel, topping_group_ids: set[str]) -> SelectionModel:
    if not topping_group_ids:
        return selection
    return _with(
        selection,
        toppings={gid: ids for gid, ids in selection.toppings.items() if gid not in topping_group_ids},
        topping_quantities={
            gid: dict(q) for gid, q in selection.topping_quantities.items() if gid not in topping_group_ids
        },
    )
