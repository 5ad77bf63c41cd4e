"""Streaming card session: one CardKit card rendered in place while text is generated.

Lifecycle is UNSTARTED -> ACTIVE -> CLOSED. Updates are throttled (only the
latest text inside a throttle window survives) and every card mutation runs
through a chain of tasks, each awaiting the previous one, so the card sees
mutations in the order update() accepted them. Failures after start() are
counted and reported, never raised; MAX_ERRORS of them close the session.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

import httpx

from livecard.core.errors import RemoteAPIError, TransientDeliveryError
from livecard.core.events import ReceiveIdType
from livecard.feishu.client import FeishuClient, response_body

logger = logging.getLogger(__name__)

DEFAULT_UPDATE_THROTTLE_MS = 100
MAX_ERRORS = 5
SUMMARY_MAX_LENGTH = 50
PLACEHOLDER_TEXT = "⏳ Thinking..."
GENERATING_SUMMARY = "[Generating...]"
CONTENT_ELEMENT_ID = "content"


def truncate_summary(text: str, max_length: int = SUMMARY_MAX_LENGTH) -> str:
    if not text:
        return ""
    clean = text.replace("\n", " ").strip()
    if len(clean) <= max_length:
        return clean
    return clean[: max_length - 3] + "..."


def build_streaming_card() -> dict:
    return {
        "schema": "2.0",
        "config": {
            "streaming_mode": True,
            "summary": {"content": GENERATING_SUMMARY},
            "streaming_config": {
                "print_frequency_ms": {"default": 50},
                "print_step": {"default": 2},
            },
        },
        "body": {
            "elements": [
                {"tag": "markdown", "content": PLACEHOLDER_TEXT, "element_id": CONTENT_ELEMENT_ID}
            ]
        },
    }


def _raise_for_failure(r: httpx.Response) -> None:
    if r.status_code >= 400:
        msg = response_body(r).get("msg") or r.reason_phrase
        raise TransientDeliveryError(f"HTTP {r.status_code}: {msg}")
    body = response_body(r)
    if body.get("code", 0) != 0:
        raise TransientDeliveryError(f"code {body.get('code')}: {body.get('msg', '')}")


@dataclass
class CardState:
    card_id: str
    message_id: str
    sequence: int = 1
    current_text: str = ""


class StreamingSession:
    """One live card bound to one recipient."""

    def __init__(
        self,
        client: FeishuClient,
        *,
        log: Optional[Callable[[str], None]] = None,
        error: Optional[Callable[[str], None]] = None,
        update_throttle_ms: int = DEFAULT_UPDATE_THROTTLE_MS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._client = client
        self._log = log
        self._error = error
        self._throttle_ms = update_throttle_ms
        self._clock = clock
        self._state: CardState | None = None
        self._queue: asyncio.Future | None = None
        self._closed = False
        self._last_update: float | None = None
        self._pending_text: str | None = None
        self._latest_text = ""
        self._error_count = 0

    @property
    def card_id(self) -> str | None:
        return self._state.card_id if self._state else None

    @property
    def message_id(self) -> str | None:
        return self._state.message_id if self._state else None

    @property
    def sequence(self) -> int:
        return self._state.sequence if self._state else 0

    @property
    def error_count(self) -> int:
        return self._error_count

    def is_active(self) -> bool:
        return self._state is not None and not self._closed

    def get_error_count(self) -> int:
        return self._error_count

    def _info(self, message: str) -> None:
        logger.info(message)
        if self._log:
            self._log(message)

    async def start(self, receive_id: str, receive_id_type: ReceiveIdType = "chat_id") -> None:
        """Create the card and send it. Errors propagate; the session stays unstarted."""
        if self._state is not None:
            return

        r = await self._client.request(
            "POST",
            "/cardkit/v1/cards",
            json={
                "type": "card_json",
                "data": json.dumps(build_streaming_card(), ensure_ascii=False),
            },
        )
        created = response_body(r)
        card_id = (created.get("data") or {}).get("card_id")
        if created.get("code") != 0 or not card_id:
            raise RemoteAPIError(
                f"Create card failed: {created.get('msg')}",
                code=created.get("code"),
                msg=created.get("msg", ""),
            )

        sent = await self._client.im.message.create(
            params={"receive_id_type": receive_id_type},
            data={
                "receive_id": receive_id,
                "msg_type": "interactive",
                "content": json.dumps({"type": "card", "data": {"card_id": card_id}}),
            },
        )
        message_id = (sent.get("data") or {}).get("message_id")
        if sent.get("code") != 0 or not message_id:
            raise RemoteAPIError(
                f"Send card failed: {sent.get('msg')}",
                code=sent.get("code"),
                msg=sent.get("msg", ""),
            )

        self._state = CardState(card_id=card_id, message_id=message_id)
        self._info(f"Started streaming: cardId={card_id}, messageId={message_id}")

    def _handle_error(self, context: str, err: Exception) -> None:
        self._error_count += 1
        message = f"StreamingCard {context}: {err}"
        logger.warning(message, extra={"card_id": self.card_id, "error_count": self._error_count})
        if self._log:
            self._log(message)
        if self._error:
            self._error(message)
        if self._error_count >= MAX_ERRORS and not self._closed:
            self._closed = True
            message = f"StreamingCard: Too many errors ({self._error_count}), closing session"
            logger.error(message, extra={"card_id": self.card_id})
            if self._error:
                self._error(message)

    async def _send_content(self, text: str, context: str) -> None:
        state = self._state
        state.current_text = text
        state.sequence += 1
        seq = state.sequence
        try:
            r = await self._client.request(
                "PUT",
                f"/cardkit/v1/cards/{state.card_id}/elements/{CONTENT_ELEMENT_ID}/content",
                json={"content": text, "sequence": seq, "uuid": f"s_{state.card_id}_{seq}"},
            )
            _raise_for_failure(r)
        except Exception as e:
            self._handle_error(context, e)

    async def _send_settings(self, text: str) -> None:
        state = self._state
        state.sequence += 1
        seq = state.sequence
        settings = {"config": {"streaming_mode": False, "summary": {"content": truncate_summary(text)}}}
        try:
            r = await self._client.request(
                "PATCH",
                f"/cardkit/v1/cards/{state.card_id}/settings",
                json={
                    "settings": json.dumps(settings, ensure_ascii=False),
                    "sequence": seq,
                    "uuid": f"c_{state.card_id}_{seq}",
                },
            )
            _raise_for_failure(r)
        except Exception as e:
            self._handle_error("close settings", e)

    async def _run_after(self, previous: asyncio.Future | None, text: str) -> None:
        if previous is not None:
            # Waits without re-raising whatever ended the previous unit
            await asyncio.wait([previous])
        # Skipped, not interrupted, once closed
        if self._state is None or self._closed:
            return
        await self._send_content(text, "update")

    async def update(self, text: str) -> None:
        if self._state is None or self._closed:
            return
        now = self._clock()
        if self._last_update is not None and (now - self._last_update) * 1000 < self._throttle_ms:
            self._pending_text = text
            return
        self._pending_text = None
        self._last_update = now
        self._latest_text = text

        self._queue = asyncio.ensure_future(self._run_after(self._queue, text))
        await asyncio.shield(self._queue)

    async def close(self, final_text: str | None = None) -> None:
        """Flush the final text and turn streaming mode off. Never raises.

        Without final_text the card ends on the pending throttled text, else on
        the latest text update() accepted. That can be newer than current_text
        when a queued update was skipped because close() had already begun.
        """
        if self._state is None or self._closed:
            return
        self._closed = True
        if self._queue is not None:
            await asyncio.wait([self._queue])

        state = self._state
        if final_text is not None:
            text = final_text
        elif self._pending_text is not None:
            text = self._pending_text
        else:
            text = self._latest_text

        if text and text != state.current_text:
            await self._send_content(text, "close update")
        await self._send_settings(text)
        self._info(f"Closed streaming: cardId={state.card_id}")
