"""Feishu channel: turn streamed reply tokens from the Event Bus into live cards."""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Optional

from livecard.config import get_config
from livecard.core.bus import EventBus
from livecard.core.events import ChannelKind, OutgoingReply, StreamToken
from livecard.core.logging_config import setup_logging
from livecard.feishu.context import FeishuContext
from livecard.feishu.streaming_card import StreamingSession

logger = logging.getLogger(__name__)

CONFIG_RETRY_INTERVAL = 60


@dataclass
class _LiveStream:
    session: StreamingSession
    text: str = ""
    # (text, final) pairs consumed in order by the stream's driver task
    inbox: asyncio.Queue = field(default_factory=asyncio.Queue)
    driver: Optional[asyncio.Task] = None
    failed: bool = False


class FeishuStreamRouter:
    """One StreamingSession per task_id, each driven by its own task.

    Handlers only enqueue, so a slow card on one conversation never holds up
    another; each driver feeds its session strictly in arrival order.
    """

    def __init__(self, context: FeishuContext) -> None:
        self._context = context
        self._streams: dict[str, _LiveStream] = {}
        self._drivers: set[asyncio.Task] = set()

    def is_streaming(self, task_id: str) -> bool:
        return task_id in self._streams

    def _open(self, payload: StreamToken) -> _LiveStream:
        session = self._context.open_session(payload.account_id)
        stream = _LiveStream(session=session)
        stream.driver = asyncio.create_task(
            self._drive(payload.task_id, stream, payload.chat_id, payload.receive_id_type)
        )
        self._drivers.add(stream.driver)
        stream.driver.add_done_callback(self._drivers.discard)
        self._streams[payload.task_id] = stream
        return stream

    async def _drive(
        self, task_id: str, stream: _LiveStream, receive_id: str, receive_id_type: str
    ) -> None:
        try:
            await stream.session.start(receive_id, receive_id_type)
        except Exception as e:
            # Tokens for this task are dropped; a final reply goes out as plain text
            stream.failed = True
            logger.exception("live card start failed: %s", e, extra={"task_id": task_id})
            return
        while True:
            text, final = await stream.inbox.get()
            if final:
                await stream.session.close(text)
                return
            await stream.session.update(text)

    async def on_stream(self, payload: StreamToken) -> None:
        if payload.channel != ChannelKind.FEISHU:
            return
        stream = self._streams.get(payload.task_id)
        if stream is None:
            try:
                stream = self._open(payload)
            except Exception as e:
                logger.exception("cannot open live card: %s", e, extra={"task_id": payload.task_id})
                return
        if stream.failed:
            if payload.done:
                self._streams.pop(payload.task_id, None)
            return
        stream.text += payload.token or ""
        if payload.done:
            self._streams.pop(payload.task_id, None)
            stream.inbox.put_nowait((stream.text, True))
        elif payload.token:
            stream.inbox.put_nowait((stream.text, False))

    async def on_outgoing(self, payload: OutgoingReply) -> None:
        if payload.channel != ChannelKind.FEISHU:
            return
        stream = self._streams.pop(payload.task_id, None)
        if stream is not None and not stream.failed:
            stream.inbox.put_nowait(((payload.text or "").strip() or stream.text, True))
            return
        await self.send_text(payload)

    async def send_text(self, payload: OutgoingReply) -> None:
        """Plain text message for replies that were never streamed."""
        try:
            client = self._context.get_client(payload.account_id)
            res = await client.im.message.create(
                params={"receive_id_type": payload.receive_id_type},
                data={
                    "receive_id": payload.chat_id,
                    "msg_type": "text",
                    "content": json.dumps({"text": payload.text or "(empty)"}, ensure_ascii=False),
                },
            )
            if res.get("code") != 0:
                logger.warning("send text message: %s", res.get("msg"), extra={"task_id": payload.task_id})
        except Exception as e:
            logger.exception("send text message failed: %s", e)

    async def join(self) -> None:
        """Wait for every driver that is currently running."""
        if self._drivers:
            await asyncio.gather(*list(self._drivers), return_exceptions=True)

    async def shutdown(self) -> None:
        """Close every open card with the text received so far."""
        streams, self._streams = self._streams, {}
        for stream in streams.values():
            stream.inbox.put_nowait((stream.text, True))
        await self.join()


async def run_feishu_adapter() -> None:
    config = get_config()
    setup_logging(config.logging.level, use_json=config.logging.json_format)
    if not config.feishu.enabled:
        logger.info("Feishu channel disabled (feishu.enabled=false)")
        return
    while not config.feishu.resolved_accounts():
        logger.warning(
            "FEISHU_APP_ID / FEISHU_APP_SECRET not set and no accounts configured (retry in %ss)",
            CONFIG_RETRY_INTERVAL,
        )
        await asyncio.sleep(CONFIG_RETRY_INTERVAL)
        config = get_config()

    context = FeishuContext.from_config(config)
    router = FeishuStreamRouter(context)
    bus = EventBus(config.redis.url)
    await bus.connect()
    bus.subscribe_stream(router.on_stream)
    bus.subscribe_outgoing(router.on_outgoing)
    try:
        await bus.run_listener()
    finally:
        await router.shutdown()
        await bus.disconnect()


def main() -> None:
    asyncio.run(run_feishu_adapter())


if __name__ == "__main__":
    main()
