from __future__ import annotations

import asyncio
import logging
from decimal import Decimal
from threading import Lock
from typing import Awaitable, Callable, Optional

from sqlalchemy.orm import Session

from kiosk.core.errors import ItemFetchSuperseded
from kiosk.models.menu_item import MenuItem
from kiosk.models.restaurant import Restaurant
from kiosk.schemas.catalog import (
    CatalogChoice,
    CatalogItem,
    CatalogOptionGroup,
    CatalogTopping,
    CatalogToppingGroup,
    VisibilityCondition,
)

logger = logging.getLogger(__name__)


def _decimal_or_none(value) -> Optional[Decimal]:
    if value is None:
        return None
    return Decimal(str(value))


def _visibility_from_columns(types, ids) -> tuple[VisibilityCondition, ...]:
    if not types or not ids:
        return ()
    conditions = []
    for kind, ref_id in zip(types, ids):
        kind = str(kind or "").strip().lower()
        if kind not in {"option", "topping"} or not ref_id:
            logger.warning("Ignoring malformed visibility condition kind=%s ref_id=%s", kind, ref_id)
            continue
        conditions.append(VisibilityCondition(kind=kind, ref_id=str(ref_id)))
    return tuple(conditions)


def catalog_item_from_model(item: MenuItem) -> CatalogItem:
    option_groups = []
    for group in item.option_groups or []:
        option_groups.append(
            CatalogOptionGroup(
                id=str(group.id),
                name=group.name,
                required=bool(group.required),
                multiple=bool(group.multiple),
                choices=tuple(
                    CatalogChoice(
                        id=str(choice.id),
                        name=choice.name,
                        price_delta=Decimal(str(choice.price or 0)),
                    )
                    for choice in (group.choices or [])
                ),
            )
        )

    topping_groups = []
    for group in item.topping_groups or []:
        topping_groups.append(
            CatalogToppingGroup(
                id=str(group.id),
                name=group.name,
                required=bool(group.required),
                min_selections=int(group.min_selections or 0),
                max_selections=int(group.max_selections or 0),
                allow_multiple_same_topping=bool(group.allow_multiple_same_topping),
                visibility=_visibility_from_columns(group.show_if_selection_type, group.show_if_selection_id),
                toppings=tuple(
                    CatalogTopping(
                        id=str(topping.id),
                        name=topping.name,
                        price=Decimal(str(topping.price or 0)),
                        tax_rate=_decimal_or_none(topping.tax_rate),
                    )
                    for topping in (group.toppings or [])
                ),
            )
        )

    return CatalogItem(
        id=str(item.id),
        name=item.name,
        price=Decimal(str(item.price or 0)),
        tax_rate=_decimal_or_none(item.tax_rate),
        option_groups=tuple(option_groups),
        topping_groups=tuple(topping_groups),
    )


def get_restaurant(db: Session, restaurant_id: int) -> Optional[Restaurant]:
    return db.query(Restaurant).filter(Restaurant.id == restaurant_id).first()


def load_catalog_item(db: Session, *, restaurant_id: int, item_id: str) -> Optional[CatalogItem]:
    item = (
        db.query(MenuItem)
        .filter(
            MenuItem.id == item_id,
            MenuItem.restaurant_id == restaurant_id,
            MenuItem.active.is_(True),
        )
        .first()
    )
    if not item:
        return None
    return catalog_item_from_model(item)


class ItemDetailsLoader:
    """
    Busca os detalhes do item ao abrir o diálogo de customização.

    Só o resultado da abertura mais recente é entregue. Uma busca superada
    (diálogo fechado ou reaberto para outro item) levanta ItemFetchSuperseded
    em load() e resolve para None em open().
    """

    def __init__(self, fetch: Callable[[str], Awaitable[Optional[CatalogItem]]]) -> None:
        self._fetch = fetch
        self._generation = 0

    async def load(self, item_id: str) -> Optional[CatalogItem]:
        self._generation += 1
        generation = self._generation
        item = await self._fetch(item_id)
        if generation != self._generation:
            logger.debug("Discarding superseded item details item_id=%s", item_id)
            raise ItemFetchSuperseded(item_id)
        return item

    async def open(self, item_id: str) -> Optional[CatalogItem]:
        try:
            return await self.load(item_id)
        except ItemFetchSuperseded:
            return None

    def close(self) -> None:
        self._generation += 1


def sql_item_fetcher(session_factory, restaurant_id: int) -> Callable[[str], Awaitable[Optional[CatalogItem]]]:
    def _load(item_id: str) -> Optional[CatalogItem]:
        db = session_factory()
        try:
            return load_catalog_item(db, restaurant_id=restaurant_id, item_id=item_id)
        finally:
            db.close()

    async def fetch(item_id: str) -> Optional[CatalogItem]:
        return await asyncio.to_thread(_load, item_id)

    return fetch


class ItemDetailsLoaderRegistry:
    """Um loader por carrinho: cada terminal tem o seu diálogo de customização."""

    def __init__(self) -> None:
        self._loaders: dict[str, ItemDetailsLoader] = {}
        self._lock = Lock()

    def get(self, session_id: str, fetch: Callable[[str], Awaitable[Optional[CatalogItem]]]) -> ItemDetailsLoader:
        with self._lock:
            loader = self._loaders.get(session_id)
            if loader is None:
                loader = ItemDetailsLoader(fetch)
                self._loaders[session_id] = loader
            return loader

    def close(self, session_id: str) -> bool:
        with self._lock:
            loader = self._loaders.get(session_id)
        if loader is None:
            return False
        loader.close()
        return True

    def discard(self, session_id: str) -> None:
        with self._lock:
            loader = self._loaders.pop(session_id, None)
        if loader is not None:
            loader.close()


item_loaders = ItemDetailsLoaderRegistry()
