"""Feishu API client handle and the bounded per-account client cache."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

import httpx

from livecard.core.errors import ConfigurationError
from livecard.feishu.domains import resolve_api_base
from livecard.feishu.tokens import Credentials, TokenCache

logger = logging.getLogger(__name__)

CLIENT_CACHE_MAX_SIZE = 50


def response_body(r: httpx.Response) -> dict[str, Any]:
    """JSON body of a Feishu response; non-JSON bodies become an error envelope."""
    try:
        data = r.json()
    except ValueError:
        return {"code": -1, "msg": f"HTTP {r.status_code}: {r.text[:200]}"}
    return data if isinstance(data, dict) else {"code": -1, "msg": f"HTTP {r.status_code}"}


class _MessageResource:
    def __init__(self, client: FeishuClient) -> None:
        self._client = client

    async def create(self, *, params: dict[str, Any], data: dict[str, Any]) -> dict[str, Any]:
        """POST /im/v1/messages. Returns the raw envelope {code, msg, data}."""
        r = await self._client.request("POST", "/im/v1/messages", params=params, json=data)
        return response_body(r)


class _ImResource:
    def __init__(self, client: FeishuClient) -> None:
        self.message = _MessageResource(client)


class FeishuClient:
    """Authenticated HTTP access to one app on one deployment."""

    def __init__(
        self,
        app_id: str,
        app_secret: str,
        domain: Optional[str] = None,
        *,
        tokens: TokenCache,
        http: httpx.AsyncClient | None = None,
        timeout: float = 10.0,
    ) -> None:
        self.credentials = Credentials(app_id=app_id, app_secret=app_secret, domain=domain)
        self.api_base = resolve_api_base(domain)
        self._tokens = tokens
        self._http = http
        self._timeout = timeout
        self.im = _ImResource(self)

    async def request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: dict[str, Any] | None = None,
    ) -> httpx.Response:
        token = await self._tokens.get_token(self.credentials)
        headers = {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json; charset=utf-8",
        }
        url = f"{self.api_base}{path}"
        if self._http is not None:
            return await self._http.request(
                method, url, json=json, params=params, headers=headers, timeout=self._timeout
            )
        async with httpx.AsyncClient() as client:
            return await client.request(
                method, url, json=json, params=params, headers=headers, timeout=self._timeout
            )


@dataclass
class ClientConfig:
    app_id: str
    app_secret: str
    domain: Optional[str] = None


@dataclass
class ClientCacheEntry:
    account_id: str
    client: FeishuClient
    config: ClientConfig
    last_access: float


class ClientCache:
    """account_id -> FeishuClient, at most `max_size` entries, least recently used evicted."""

    def __init__(
        self,
        tokens: TokenCache,
        *,
        max_size: int = CLIENT_CACHE_MAX_SIZE,
        clock: Callable[[], float] = time.monotonic,
        http: httpx.AsyncClient | None = None,
        timeout: float = 10.0,
    ) -> None:
        self._tokens = tokens
        self._max_size = max_size
        self._clock = clock
        self._http = http
        self._timeout = timeout
        self._entries: dict[str, ClientCacheEntry] = {}

    def get_or_create(
        self,
        account_id: str = "default",
        app_id: str | None = None,
        app_secret: str | None = None,
        domain: str | None = None,
    ) -> FeishuClient:
        if not app_id or not app_secret:
            raise ConfigurationError(f'Feishu credentials not configured for account "{account_id}"')

        config = ClientConfig(app_id=app_id, app_secret=app_secret, domain=domain)
        cached = self._entries.get(account_id)
        if cached and cached.config == config:
            cached.last_access = self._clock()
            return cached.client

        if cached:
            # Credentials changed for this account: replace in place, no eviction needed
            del self._entries[account_id]
            logger.info("client credentials changed", extra={"account_id": account_id})
        self._evict_oldest_if_full()

        client = FeishuClient(
            app_id,
            app_secret,
            domain,
            tokens=self._tokens,
            http=self._http,
            timeout=self._timeout,
        )
        self._entries[account_id] = ClientCacheEntry(
            account_id=account_id, client=client, config=config, last_access=self._clock()
        )
        return client

    def _evict_oldest_if_full(self) -> None:
        if len(self._entries) < self._max_size:
            return
        oldest = min(self._entries.values(), key=lambda e: e.last_access)
        del self._entries[oldest.account_id]
        logger.debug("client evicted", extra={"account_id": oldest.account_id})

    def get(self, account_id: str) -> FeishuClient | None:
        cached = self._entries.get(account_id)
        if cached is None:
            return None
        cached.last_access = self._clock()
        return cached.client

    def evict(self, account_id: str) -> None:
        self._entries.pop(account_id, None)

    def clear(self) -> None:
        self._entries.clear()

    def size(self) -> int:
        return len(self._entries)
