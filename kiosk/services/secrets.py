from __future__ import annotations

import asyncio
import logging
from typing import Optional, Protocol

import httpx
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from kiosk.core.config import SECRETS_API_TIMEOUT_SECONDS, SECRETS_API_TOKEN, SECRETS_API_URL
from kiosk.models.api_key import RestaurantApiKey

logger = logging.getLogger(__name__)


class SecretRetrievalError(RuntimeError):
    NOT_CONFIGURED = "not_configured"
    AUTH = "auth"
    NETWORK = "network"

    def __init__(self, kind: str, message: str) -> None:
        super().__init__(message)
        self.kind = kind


class SecretStore(Protocol):
    async def retrieve_api_key(self, restaurant_id: int, provider: str) -> str: ...


class DatabaseSecretStore:
    """Lê a chave ativa em restaurant_api_keys."""

    def __init__(self, session_factory) -> None:
        self._session_factory = session_factory

    def _lookup(self, restaurant_id: int, provider: str) -> Optional[str]:
        db: Session = self._session_factory()
        try:
            row = (
                db.query(RestaurantApiKey)
                .filter(
                    RestaurantApiKey.restaurant_id == restaurant_id,
                    RestaurantApiKey.provider == provider,
                    RestaurantApiKey.active.is_(True),
                )
                .order_by(RestaurantApiKey.id.desc())
                .first()
            )
            return row.api_key if row else None
        finally:
            db.close()

    async def retrieve_api_key(self, restaurant_id: int, provider: str) -> str:
        try:
            api_key = await asyncio.to_thread(self._lookup, restaurant_id, provider)
        except SQLAlchemyError as exc:
            logger.warning("Secret lookup failed restaurant_id=%s provider=%s error=%s", restaurant_id, provider, exc)
            raise SecretRetrievalError(SecretRetrievalError.NETWORK, f"Secret database unavailable: {exc}") from exc
        if not api_key:
            raise SecretRetrievalError(
                SecretRetrievalError.NOT_CONFIGURED,
                f"No {provider} API key configured for restaurant {restaurant_id}",
            )
        return api_key


class RemoteSecretStore:
    def __init__(
        self,
        base_url: str = SECRETS_API_URL,
        token: str = SECRETS_API_TOKEN,
        *,
        timeout: float = SECRETS_API_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._token = token
        self._timeout = timeout
        self._transport = transport

    async def retrieve_api_key(self, restaurant_id: int, provider: str) -> str:
        url = f"{self._base_url}/restaurants/{restaurant_id}/api-keys/{provider}"
        headers = {"Authorization": f"Bearer {self._token}"} if self._token else {}
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.get(url, headers=headers)
        except httpx.HTTPError as exc:
            logger.warning("Secret retrieval failed restaurant_id=%s provider=%s error=%s", restaurant_id, provider, exc)
            raise SecretRetrievalError(SecretRetrievalError.NETWORK, f"Secret service unreachable: {exc}") from exc

        if response.status_code in (401, 403):
            raise SecretRetrievalError(SecretRetrievalError.AUTH, "Secret service rejected the credentials")
        if response.status_code == 404:
            raise SecretRetrievalError(
                SecretRetrievalError.NOT_CONFIGURED,
                f"No {provider} API key configured for restaurant {restaurant_id}",
            )
        if response.status_code >= 400:
            raise SecretRetrievalError(
                SecretRetrievalError.NETWORK,
                f"Secret service error {response.status_code}: {response.text}",
            )

        try:
            body = response.json()
        except ValueError as exc:
            raise SecretRetrievalError(SecretRetrievalError.NETWORK, "Invalid secret service response") from exc
        if body is not None and not isinstance(body, dict):
            raise SecretRetrievalError(SecretRetrievalError.NETWORK, "Invalid secret service response")
        api_key = (body or {}).get("api_key")
        if not api_key:
            raise SecretRetrievalError(
                SecretRetrievalError.NOT_CONFIGURED,
                f"No {provider} API key configured for restaurant {restaurant_id}",
            )
        return api_key


def default_secret_store(session_factory) -> SecretStore:
    if SECRETS_API_URL:
        return RemoteSecretStore()
    return DatabaseSecretStore(session_factory)
