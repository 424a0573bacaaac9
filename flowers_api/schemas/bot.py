import re
from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, field_validator

TELEGRAM_TOKEN_RE = re.compile(r"^\d+:[A-Za-z0-9_-]{20,}$")


class BotSessionInfo(BaseModel):
    tenant_id: UUID
    token: str  # masked
    bot_username: Optional[str] = None
    state: str
    started_at: Optional[datetime] = None


class BotListResponse(BaseModel):
    count: int
    bots: list[BotSessionInfo]


class ReconcileResponse(BaseModel):
    skipped: bool
    opened: int
    closed: int
    failed: int


class TelegramTokenUpdate(BaseModel):
    telegram_token: Optional[str] = None

    @field_validator("telegram_token", mode="before")
    @classmethod
    def normalize_token(cls, value: object) -> Optional[str]:
        if value is None:
            return None
        if not isinstance(value, str):
            raise ValueError("telegram_token must be a string")
        value = value.strip()
        if not value:
            return None
        if not TELEGRAM_TOKEN_RE.match(value):
            raise ValueError("telegram_token is not a valid bot token")
        return value


class TelegramTokenResponse(BaseModel):
    success: bool
    tenant_id: UUID
    bot_enabled: bool
