import asyncio
from typing import Optional
from unittest.mock import Mock
from uuid import uuid4

import pytest

from flowers_api.services.bot_registry import SessionRegistry
from flowers_api.services.bot_session import BotSession
from flowers_api.services.credential_store import TenantCredential
from flowers_api.services.errors import BotConnectionError, DeliveryError


class FakeTelegramService:
    """In-memory stand-in for TelegramService. get_updates blocks until cancelled."""

    def __init__(self, token: str, *, reject: bool = False, failing_photos: Optional[set] = None):
        self.token = token
        self.reject = reject
        self.failing_photos = failing_photos or set()
        self.fail_messages = False
        self.sent: list[tuple] = []
        self.closed = False

    async def get_me(self) -> dict:
        if self.reject:
            raise BotConnectionError("getMe rejected (401): Unauthorized", token_rejected=True)
        return {"id": 1, "is_bot": True, "username": f"shop_{self.token}_bot"}

    async def get_updates(self, offset=None) -> list:
        await asyncio.Event().wait()
        return []

    async def send_message(self, chat_id, text, reply_markup=None, parse_mode=None) -> dict:
        if self.fail_messages:
            raise DeliveryError("sendMessage", "Bad Request: chat not found")
        self.sent.append(("message", chat_id, text, reply_markup))
        return {"message_id": len(self.sent)}

    async def send_photo(self, chat_id, photo, caption=None) -> dict:
        if photo in self.failing_photos:
            raise DeliveryError("sendPhoto", "Bad Request: wrong file identifier")
        self.sent.append(("photo", chat_id, photo, caption))
        return {"message_id": len(self.sent)}

    async def aclose(self) -> None:
        self.closed = True


class FakeCredentialStore:
    def __init__(self, *tenants: tuple):
        self.tenants = [TenantCredential(tenant_id=t, credential=c) for t, c in tenants]
        self.upserts: list[tuple] = []

    def set(self, *tenants: tuple) -> None:
        self.tenants = [TenantCredential(tenant_id=t, credential=c) for t, c in tenants]

    def list_active(self) -> list[TenantCredential]:
        return list(self.tenants)

    def upsert(self, tenant_id, credential) -> None:
        self.upserts.append((tenant_id, credential))


class SessionFactory:
    """Opens real BotSessions on top of FakeTelegramService, recording every open."""

    def __init__(self, store=None, handler=None):
        self.store = store
        self.handler = handler or Mock()
        self.rejected: set[str] = set()
        self.services: dict[str, FakeTelegramService] = {}
        self.opened: list[str] = []
        self.gate: Optional[asyncio.Event] = None

    def _service(self, token: str) -> FakeTelegramService:
        service = FakeTelegramService(token, reject=token in self.rejected)
        self.services[token] = service
        return service

    async def __call__(self, credential, tenant_id) -> BotSession:
        self.opened.append(credential)
        if self.gate is not None:
            await self.gate.wait()
        return await BotSession.open(
            credential,
            tenant_id,
            handler=self.handler,
            store=self.store,
            service_factory=self._service,
        )


@pytest.fixture
def tenant_ids():
    return {"t1": uuid4(), "t2": uuid4(), "t3": uuid4()}


@pytest.fixture
def registry():
    return SessionRegistry()


@pytest.fixture
def db_session():
    """Mock database session."""
    return Mock()


def make_update(update_id: int = 1, chat_id: int = 555, **message_fields) -> dict:
    """Raw getUpdates item with a private-chat message."""
    return {
        "update_id": update_id,
        "message": {
            "message_id": update_id,
            "date": 1740000000,
            "chat": {"id": chat_id, "type": "private"},
            "from": {"id": chat_id, "is_bot": False, "first_name": "Dilnoza"},
            **message_fields,
        },
    }
