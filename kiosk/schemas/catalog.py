from __future__ import annotations

from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


class VisibilityCondition(_Frozen):
    kind: Literal["option", "topping"]
    ref_id: str


class CatalogChoice(_Frozen):
    id: str
    name: str
    price_delta: Decimal = Field(default=Decimal("0"), ge=0)


class CatalogOptionGroup(_Frozen):
    id: str
    name: str
    required: bool = False
    multiple: bool = False
    choices: tuple[CatalogChoice, ...] = ()

    def choice(self, choice_id: str) -> Optional[CatalogChoice]:
        for choice in self.choices:
            if choice.id == choice_id:
                return choice
        return None


class CatalogTopping(_Frozen):
    id: str
    name: str
    price: Decimal = Field(default=Decimal("0"), ge=0)
    tax_rate: Optional[Decimal] = Field(default=None, ge=0)


class CatalogToppingGroup(_Frozen):
    id: str
    name: str
    required: bool = False
    min_selections: int = Field(default=0, ge=0)
    max_selections: int = Field(default=0, ge=0)
    allow_multiple_same_topping: bool = False
    visibility: tuple[VisibilityCondition, ...] = ()
    toppings: tuple[CatalogTopping, ...] = ()

    def topping(self, topping_id: str) -> Optional[CatalogTopping]:
        for topping in self.toppings:
            if topping.id == topping_id:
                return topping
        return None

    @property
    def min_required(self) -> int:
        return self.min_selections if self.min_selections > 0 else 1


class CatalogItem(_Frozen):
    id: str
    name: str
    price: Decimal = Field(ge=0)
    tax_rate: Optional[Decimal] = Field(default=None, ge=0)
    option_groups: tuple[CatalogOptionGroup, ...] = ()
    topping_groups: tuple[CatalogToppingGroup, ...] = ()

    def option_group(self, group_id: str) -> Optional[CatalogOptionGroup]:
        for group in self.option_groups:
            if group.id == group_id:
                return group
        return None

    def topping_group(self, group_id: str) -> Optional[CatalogToppingGroup]:
        for group in self.topping_groups:
            if group.id == group_id:
                return group
        return None

    def topping_owner(self, topping_id: str) -> Optional[CatalogToppingGroup]:
        for group in self.topping_groups:
            if group.topping(topping_id) is not None:
                return group
        return None
