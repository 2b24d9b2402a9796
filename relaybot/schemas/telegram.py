"""
The subset of the Telegram Bot API update payload the bot reads.
Unknown fields are ignored so new API additions never break webhook parsing.
"""

from __future__ import annotations
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field


class _TelegramModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class TelegramUser(_TelegramModel):
    id: int
    is_bot: bool = False
    first_name: str = ""
    username: Optional[str] = None
    language_code: Optional[str] = None


class TelegramChat(_TelegramModel):
    id: int
    type: str = "private"
    title: Optional[str] = None
    username: Optional[str] = None

    @property
    def is_group(self) -> bool:
        return self.type in {"group", "supergroup"}


class TelegramEntity(_TelegramModel):
    offset: int
    length: int
    type: str


class TelegramDocument(_TelegramModel):
    file_id: str
    file_name: str = ""
    mime_type: Optional[str] = None
    file_size: Optional[int] = None


class TelegramMessage(_TelegramModel):
    message_id: int
    from_user: Optional[TelegramUser] = Field(default=None, alias="from")
    chat: TelegramChat
    date: int = 0
    text: str = ""
    caption: str = ""
    entities: List[TelegramEntity] = Field(default_factory=list)
    caption_entities: List[TelegramEntity] = Field(default_factory=list)
    document: Optional[TelegramDocument] = None
    reply_to_message: Optional[TelegramMessage] = None


class TelegramUpdate(_TelegramModel):
    update_id: int
    message: Optional[TelegramMessage] = None
    edited_message: Optional[TelegramMessage] = None
    channel_post: Optional[TelegramMessage] = None

    @property
    def effective_message(self) -> Optional[TelegramMessage]:
        return self.message or self.edited_message


TelegramMessage.model_rebuild()
