"""Event payloads for the Event Bus. All events are Pydantic models."""

from __future__ import annotations

from enum import Enum
from typing import Literal

from pydantic import BaseModel, Field


class ChannelKind(str, Enum):
    """Delivery surfaces. Adapters ignore events addressed to other channels."""

    FEISHU = "feishu"
    WEB = "web"


ReceiveIdType = Literal["open_id", "user_id", "union_id", "email", "chat_id"]


class StreamToken(BaseModel):
    """Single token of a streaming reply."""

    task_id: str
    chat_id: str = Field(description="Recipient id, interpreted per receive_id_type")
    receive_id_type: ReceiveIdType = "chat_id"
    account_id: str = Field(default="default", description="Feishu app account to send with")
    token: str = ""
    done: bool = False
    channel: ChannelKind = Field(default=ChannelKind.FEISHU, description="Target channel for routing")


class OutgoingReply(BaseModel):
    """Complete reply. Closes the task's live card when one is streaming."""

    task_id: str
    chat_id: str
    receive_id_type: ReceiveIdType = "chat_id"
    account_id: str = "default"
    text: str = ""
    done: bool = Field(default=True, description="True when reply is complete (streaming)")
    channel: ChannelKind = Field(default=ChannelKind.FEISHU, description="Target channel for routing")
