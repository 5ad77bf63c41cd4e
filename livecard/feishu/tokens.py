"""Tenant access token cache, keyed by domain and app id.

Tokens are refreshed when missing or within REFRESH_MARGIN of expiry. Expired
entries are swept at most once per SWEEP_INTERVAL, on the next lookup, so the
cache stays bounded in multi-tenant use without a background task.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

import httpx

from livecard.core.errors import AuthError
from livecard.feishu.domains import DEFAULT_DOMAIN, resolve_api_base

logger = logging.getLogger(__name__)

REFRESH_MARGIN = 60.0
SWEEP_INTERVAL = 5 * 60.0
DEFAULT_TOKEN_TTL = 7200
TOKEN_PATH = "/auth/v3/tenant_access_token/internal"


@dataclass(frozen=True)
class Credentials:
    app_id: str
    app_secret: str
    domain: Optional[str] = None

    @property
    def cache_key(self) -> str:
        return f"{self.domain or DEFAULT_DOMAIN}|{self.app_id}"


@dataclass
class CredentialEntry:
    account_key: str
    token: str
    expires_at: float


class TokenCache:
    """In-memory token cache. One instance per process context."""

    def __init__(
        self,
        http: httpx.AsyncClient | None = None,
        *,
        clock: Callable[[], float] = time.time,
        timeout: float = 10.0,
    ) -> None:
        self._http = http
        self._clock = clock
        self._timeout = timeout
        self._entries: dict[str, CredentialEntry] = {}
        self._last_sweep = clock()

    def __len__(self) -> int:
        return len(self._entries)

    def _sweep(self) -> None:
        now = self._clock()
        if now - self._last_sweep < SWEEP_INTERVAL:
            return
        self._last_sweep = now
        expired = [k for k, e in self._entries.items() if e.expires_at < now]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.debug("token cache swept", extra={"removed": len(expired)})

    async def get_token(self, creds: Credentials) -> str:
        self._sweep()
        key = creds.cache_key
        cached = self._entries.get(key)
        if cached and cached.expires_at > self._clock() + REFRESH_MARGIN:
            return cached.token

        data = await self._exchange(creds)
        token = data.get("tenant_access_token")
        if data.get("code") != 0 or not token:
            raise AuthError(f"Token error: {data.get('msg', 'no token in response')}")
        ttl = data.get("expire")
        if ttl is None:
            ttl = DEFAULT_TOKEN_TTL
        self._entries[key] = CredentialEntry(
            account_key=key, token=token, expires_at=self._clock() + ttl
        )
        logger.info("tenant access token refreshed", extra={"app_id": creds.app_id, "ttl": ttl})
        return token

    async def _exchange(self, creds: Credentials) -> dict:
        url = f"{resolve_api_base(creds.domain)}{TOKEN_PATH}"
        body = {"app_id": creds.app_id, "app_secret": creds.app_secret}
        if self._http is not None:
            r = await self._http.post(url, json=body, timeout=self._timeout)
        else:
            async with httpx.AsyncClient() as client:
                r = await client.post(url, json=body, timeout=self._timeout)
        try:
            return r.json()
        except ValueError as e:
            raise AuthError(f"Token error: HTTP {r.status_code}, non-JSON response") from e

    def invalidate(self, creds: Credentials) -> None:
        self._entries.pop(creds.cache_key, None)

    def clear(self) -> None:
        self._entries.clear()
