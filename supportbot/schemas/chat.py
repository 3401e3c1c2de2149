"""
schemas/chat.py
---------------
Inbound chat payload. The widget posts camelCase (botId); both spellings
are accepted.
"""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from supportbot.core.config import settings


class ChatMessage(BaseModel):
    role: Literal["user", "assistant"]
    content: str = Field(..., max_length=settings.CHAT_MAX_MESSAGE_CHARS)


class ChatRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    bot_id: str = Field(..., alias="botId", min_length=1, max_length=64)
    messages: list[ChatMessage] = Field(
        ..., min_length=1, max_length=settings.CHAT_MAX_MESSAGES
    )
