"""Feishu/Lark surface: token cache, client cache, streaming card sessions."""

from livecard.feishu.client import ClientCache, FeishuClient
from livecard.feishu.context import FeishuContext
from livecard.feishu.streaming_card import StreamingSession
from livecard.feishu.tokens import Credentials, TokenCache

__all__ = [
    "ClientCache",
    "Credentials",
    "FeishuClient",
    "FeishuContext",
    "StreamingSession",
    "TokenCache",
]
