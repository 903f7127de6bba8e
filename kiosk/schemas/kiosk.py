from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field

from kiosk.services.selection import SelectionModel


class SelectionPayload(BaseModel):
    options: dict[str, list[str]] = Field(default_factory=dict)
    toppings: dict[str, list[str]] = Field(default_factory=dict)
    topping_quantities: dict[str, dict[str, int]] = Field(default_factory=dict)

    def to_model(self) -> SelectionModel:
        return SelectionModel(
            options={gid: tuple(ids) for gid, ids in self.options.items()},
            toppings={gid: tuple(ids) for gid, ids in self.toppings.items()},
            topping_quantities={gid: dict(q) for gid, q in self.topping_quantities.items()},
        )


class PriceRequest(BaseModel):
    selection: SelectionPayload = Field(default_factory=SelectionPayload)
    quantity: int = Field(1, ge=1)


class CartLineCreate(BaseModel):
    item_id: str
    selection: SelectionPayload = Field(default_factory=SelectionPayload)
    quantity: int = Field(1, ge=1)
    special_instructions: str = ""


class CartLineUpdate(BaseModel):
    # 0 ou negativo remove a linha
    quantity: int


class CheckoutRequest(BaseModel):
    order_type: str
    table_id: Optional[str] = None
    payment_method: str = "cash"
    payment_intent_id: Optional[str] = None


class CardPaymentRequest(BaseModel):
    order_type: str
    table_id: Optional[str] = None
