"""Pytest fixtures: env isolation and an in-process fake of the Feishu open API."""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from typing import Any

import httpx
import pytest


@pytest.fixture(autouse=True)
def env_cleanup(monkeypatch):
    """Avoid picking up real credentials in tests."""
    for name in (
        "FEISHU_APP_ID",
        "FEISHU_APP_SECRET",
        "FEISHU_DOMAIN",
        "LIVECARD_ENV_PREFIX",
        "STREAMING_UPDATE_THROTTLE_MS",
        "LOG_LEVEL",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("REDIS_URL", "redis://localhost:6379/1")
    yield


@dataclass
class Call:
    method: str
    path: str
    body: Any
    params: dict[str, str]
    headers: httpx.Headers


class FakeFeishu:
    """Records every request; answers token, card, message, content and settings calls."""

    def __init__(self) -> None:
        self.calls: list[Call] = []
        self.tokens_issued = 0
        self.token_response: dict | None = None
        self.token_expire = 7200
        self.create_card_response: dict | None = None
        self.send_message_response: dict | None = None
        self.content_status = 200
        self.content_code = 0
        self.settings_status = 200
        self.content_delays: list[float] = []
        self.content_gate: asyncio.Event | None = None

    async def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path.removeprefix("/open-apis")
        body = json.loads(request.content) if request.content else None
        self.calls.append(
            Call(request.method, path, body, dict(request.url.params), request.headers)
        )
        if path == "/auth/v3/tenant_access_token/internal":
            if self.token_response is not None:
                return httpx.Response(200, json=self.token_response)
            self.tokens_issued += 1
            return httpx.Response(
                200,
                json={
                    "code": 0,
                    "msg": "ok",
                    "tenant_access_token": f"t-{self.tokens_issued}",
                    "expire": self.token_expire,
                },
            )
        if request.method == "POST" and path == "/cardkit/v1/cards":
            return httpx.Response(
                200,
                json=self.create_card_response or {"code": 0, "msg": "ok", "data": {"card_id": "card_1"}},
            )
        if request.method == "POST" and path == "/im/v1/messages":
            return httpx.Response(
                200,
                json=self.send_message_response or {"code": 0, "msg": "ok", "data": {"message_id": "om_1"}},
            )
        if request.method == "PUT" and path.endswith("/elements/content/content"):
            if self.content_gate is not None:
                await self.content_gate.wait()
                self.content_gate = None
            if self.content_delays:
                await asyncio.sleep(self.content_delays.pop(0))
            if self.content_status != 200:
                return httpx.Response(self.content_status, json={"code": 500, "msg": "server error"})
            return httpx.Response(200, json={"code": self.content_code, "msg": "ok"})
        if request.method == "PATCH" and path.endswith("/settings"):
            return httpx.Response(self.settings_status, json={"code": 0, "msg": "ok"})
        return httpx.Response(404, json={"code": 404, "msg": "not found"})

    def by_method(self, method: str) -> list[Call]:
        return [c for c in self.calls if c.method == method]

    def content_texts(self) -> list[str]:
        return [c.body["content"] for c in self.by_method("PUT")]

    def card_calls(self) -> list[Call]:
        """Everything except token exchange."""
        return [c for c in self.calls if not c.path.startswith("/auth/")]


@pytest.fixture
def fake_feishu() -> FakeFeishu:
    return FakeFeishu()


@pytest.fixture
def http(fake_feishu: FakeFeishu) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(fake_feishu.handler))


class Ticker:
    """Clock that moves forward one second on every read."""

    def __init__(self, start: float = 1000.0, step: float = 1.0) -> None:
        self.now = start
        self.step = step

    def __call__(self) -> float:
        value = self.now
        self.now += self.step
        return value


class ManualClock:
    def __init__(self, now: float = 0.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds
