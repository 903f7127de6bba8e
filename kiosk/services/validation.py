from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional

from kiosk.core.errors import SelectionValidationError
from kiosk.schemas.catalog import CatalogItem, CatalogToppingGroup
from kiosk.services.selection import SelectionModel, effective_count, topping_quantity, without_groups

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ValidationResult:
    satisfied: bool
    unsatisfied_option_group_ids: list[str] = field(default_factory=list)
    unsatisfied_topping_group_ids: list[str] = field(default_factory=list)
    integrity_errors: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class GroupRef:
    kind: str  # "option" | "topping"
    id: str


def _dependencies(item: CatalogItem, group: CatalogToppingGroup) -> set[str]:
    deps: set[str] = set()
    for condition in group.visibility:
        if condition.kind != "topping":
            continue
        owner = item.topping_owner(condition.ref_id)
        if owner is not None:
            deps.add(owner.id)
    return deps


def cyclic_topping_groups(item: CatalogItem) -> set[str]:
    """Grupos que participam de um ciclo de visibilidade (Tarjan)."""
    graph = {group.id: _dependencies(item, group) for group in item.topping_groups}
    index: dict[str, int] = {}
    lowlink: dict[str, int] = {}
    stack: list[str] = []
    on_stack: set[str] = set()
    cyclic: set[str] = set()
    counter = 0

    def strongconnect(node: str) -> None:
        nonlocal counter
        index[node] = lowlink[node] = counter
        counter += 1
        stack.append(node)
        on_stack.add(node)
        for dep in graph[node]:
            if dep not in index:
                strongconnect(dep)
                lowlink[node] = min(lowlink[node], lowlink[dep])
            elif dep in on_stack:
                lowlink[node] = min(lowlink[node], index[dep])
        if lowlink[node] == index[node]:
            component = []
            while True:
                member = stack.pop()
                on_stack.discard(member)
                component.append(member)
                if member == node:
                    break
            if len(component) > 1 or node in graph[node]:
                cyclic.update(component)

    for node in graph:
        if node not in index:
            strongconnect(node)
    return cyclic


def compute_visibility(item: CatalogItem, selection: SelectionModel) -> dict[str, bool]:
    """
    Visibilidade de cada grupo de toppings contra a seleção completa.

    Um grupo sem condição é sempre visível. Com condição, basta uma referência
    satisfeita: grupo de opção com alguma escolha, escolha específica
    selecionada, ou topping selecionado em um grupo que esteja visível.
    Grupos em ciclo ficam sempre ocultos.
    """
    cyclic = cyclic_topping_groups(item)
    if cyclic:
        logger.warning("Cyclic visibility dependency item_id=%s groups=%s", item.id, sorted(cyclic))
    visible: dict[str, bool] = {group_id: False for group_id in cyclic}

    def option_condition_met(ref_id: str) -> bool:
        group = item.option_group(ref_id)
        if group is not None:
            return bool(selection.chosen_choice_ids(group.id))
        return any(ref_id in selection.chosen_choice_ids(g.id) for g in item.option_groups)

    def topping_condition_met(ref_id: str) -> bool:
        owner = item.topping_owner(ref_id)
        if owner is None or not is_visible(owner):
            return False
        return topping_quantity(owner, selection, ref_id) > 0

    def is_visible(group: CatalogToppingGroup) -> bool:
        if group.id in visible:
            return visible[group.id]
        if not group.visibility:
            result = True
        else:
            result = any(
                option_condition_met(c.ref_id) if c.kind == "option" else topping_condition_met(c.ref_id)
                for c in group.visibility
            )
        visible[group.id] = result
        return result

    for group in item.topping_groups:
        is_visible(group)
    return visible


def prune_hidden(item: CatalogItem, selection: SelectionModel) -> SelectionModel:
    visibility = compute_visibility(item, selection)
    hidden = {group_id for group_id, shown in visibility.items() if not shown}
    return without_groups(selection, hidden)


def _integrity_errors(item: CatalogItem, selection: SelectionModel) -> list[str]:
    errors: list[str] = []
    for group_id, choice_ids in selection.options.items():
        group = item.option_group(group_id)
        if group is None:
            errors.append(f"unknown option group {group_id}")
            continue
        for choice_id in choice_ids:
            if group.choice(choice_id) is None:
                errors.append(f"unknown choice {choice_id} in option group {group_id}")
        if len(set(choice_ids)) < len(choice_ids):
            errors.append(f"duplicate choice in option group {group_id}")
        if not group.multiple and len(choice_ids) > 1:
            errors.append(f"option group {group_id} accepts a single choice")

    for group_id, topping_ids in selection.toppings.items():
        group = item.topping_group(group_id)
        if group is None:
            errors.append(f"unknown topping group {group_id}")
            continue
        for topping_id in topping_ids:
            if group.topping(topping_id) is None:
                errors.append(f"unknown topping {topping_id} in topping group {group_id}")
        if len(set(topping_ids)) < len(topping_ids):
            errors.append(f"duplicate topping in topping group {group_id}")

    for group_id, quantities in selection.topping_quantities.items():
        group = item.topping_group(group_id)
        if group is None:
            errors.append(f"unknown topping group {group_id}")
            continue
        for topping_id, quantity in quantities.items():
            if group.topping(topping_id) is None:
                errors.append(f"unknown topping {topping_id} in topping group {group_id}")
            if int(quantity) < 0:
                errors.append(f"negative quantity for topping {topping_id}")
    return errors


def validate_selection(item: CatalogItem, selection: SelectionModel) -> ValidationResult:
    integrity = _integrity_errors(item, selection)

    unsatisfied_options = [
        group.id for group in item.option_groups if group.required and not selection.chosen_choice_ids(group.id)
    ]

    visibility = compute_visibility(item, selection)
    unsatisfied_toppings: list[str] = []
    for group in item.topping_groups:
        if not visibility.get(group.id, True):
            continue
        count = effective_count(group, selection)
        if group.required and count < group.min_required:
            unsatisfied_toppings.append(group.id)
        elif group.max_selections > 0 and count > group.max_selections:
            unsatisfied_toppings.append(group.id)

    return ValidationResult(
        satisfied=not (integrity or unsatisfied_options or unsatisfied_toppings),
        unsatisfied_option_group_ids=unsatisfied_options,
        unsatisfied_topping_group_ids=unsatisfied_toppings,
        integrity_errors=integrity,
    )


def first_unsatisfied_group(item: CatalogItem, result: ValidationResult) -> Optional[GroupRef]:
    for group in item.option_groups:
        if group.id in result.unsatisfied_option_group_ids:
            return GroupRef(kind="option", id=group.id)
    for group in item.topping_groups:
        if group.id in result.unsatisfied_topping_group_ids:
            return GroupRef(kind="topping", id=group.id)
    return None


def ensure_valid(item: CatalogItem, selection: SelectionModel) -> ValidationResult:
    result = validate_selection(item, selection)
    if not result.satisfied:
        raise SelectionValidationError(
            "Selection does not satisfy the item constraints",
            option_group_ids=result.unsatisfied_option_group_ids,
            topping_group_ids=result.unsatisfied_topping_group_ids,
            integrity_errors=result.integrity_errors,
        )
    return result
