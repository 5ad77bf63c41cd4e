"""Process-scoped owner of the token cache and client cache.

Sessions never touch module globals; whoever opens sessions holds a
FeishuContext, so tests and multi-tenant hosts can run isolated instances.
"""

from __future__ import annotations

import logging
from typing import Callable, Optional

import httpx

from livecard.config.loader import Config, FeishuAccountSettings
from livecard.core.errors import ConfigurationError
from livecard.feishu.client import ClientCache, FeishuClient
from livecard.feishu.streaming_card import DEFAULT_UPDATE_THROTTLE_MS, StreamingSession
from livecard.feishu.tokens import TokenCache

logger = logging.getLogger(__name__)


class FeishuContext:
    def __init__(
        self,
        accounts: list[FeishuAccountSettings] | None = None,
        *,
        update_throttle_ms: int = DEFAULT_UPDATE_THROTTLE_MS,
        http: httpx.AsyncClient | None = None,
        timeout: float = 10.0,
    ) -> None:
        self.accounts: dict[str, FeishuAccountSettings] = {
            a.account_id: a for a in (accounts or [])
        }
        self.update_throttle_ms = update_throttle_ms
        self.tokens = TokenCache(http, timeout=timeout)
        self.clients = ClientCache(self.tokens, http=http, timeout=timeout)

    @classmethod
    def from_config(cls, config: Config, http: httpx.AsyncClient | None = None) -> "FeishuContext":
        return cls(
            config.feishu.resolved_accounts(),
            update_throttle_ms=config.streaming.update_throttle_ms,
            http=http,
            timeout=config.feishu.http_timeout,
        )

    def get_client(self, account_id: str = "default") -> FeishuClient:
        account = self.accounts.get(account_id)
        if account is None:
            raise ConfigurationError(f'Feishu credentials not configured for account "{account_id}"')
        return self.clients.get_or_create(
            account_id, account.app_id, account.app_secret, account.domain
        )

    def open_session(
        self,
        account_id: str = "default",
        *,
        log: Optional[Callable[[str], None]] = None,
        error: Optional[Callable[[str], None]] = None,
    ) -> StreamingSession:
        """New, unstarted session on the account's cached client."""
        return StreamingSession(
            self.get_client(account_id),
            log=log,
            error=error,
            update_throttle_ms=self.update_throttle_ms,
        )
