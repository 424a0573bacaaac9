import asyncio
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Optional
from uuid import UUID

import httpx
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError

from flowers_api.logging_config import LoggerAdapter, get_logger
from flowers_api.schemas.telegram import TelegramUpdate
from flowers_api.services.errors import BotConnectionError, DeliveryError
from flowers_api.services.telegram_service import TelegramService, mask_token

logger = get_logger("bot_session")

POLL_RETRY_DELAY_SECONDS = 3.0


class SessionState(str, Enum):
    RUNNING = "running"
    STOPPED = "stopped"


EventHandler = Callable[["BotSession", TelegramUpdate], Awaitable[None]]


class BotSession:
    """One running vendor bot.

    A poll task long-polls getUpdates and puts every update on ``events``;
    a dispatch task drains ``events`` into the handler. Tests can put
    updates on ``events`` directly.
    """

    def __init__(
        self,
        credential: str,
        tenant_id: UUID,
        service: TelegramService,
        handler: EventHandler,
        *,
        bot_username: Optional[str] = None,
    ):
        self.credential = credential
        self.tenant_id = tenant_id
        self.service = service
        self.handler = handler
        self.bot_username = bot_username
        self.events: asyncio.Queue[TelegramUpdate] = asyncio.Queue()
        self.state = SessionState.STOPPED
        self.started_at: Optional[datetime] = None
        self._offset: Optional[int] = None
        self._poll_task: Optional[asyncio.Task] = None
        self._dispatch_task: Optional[asyncio.Task] = None
        self._closed = False
        self.log_context = {"tenant_id": str(tenant_id), "token": mask_token(credential)}
        self.logger = LoggerAdapter(logger, self.log_context)

    @classmethod
    async def open(
        cls,
        credential: str,
        tenant_id: UUID,
        *,
        handler: EventHandler,
        store: Any = None,
        service_factory: Callable[[str], TelegramService] = TelegramService,
    ) -> "BotSession":
        """Validate the token and start polling. Raises BotConnectionError."""
        service = service_factory(credential)
        try:
            me = await service.get_me()
        except BaseException:
            # Includes cancellation by the reconciler while the token check is in flight
            await service.aclose()
            raise

        session = cls(credential, tenant_id, service, handler, bot_username=me.get("username"))
        session.start()
        session.logger.info("Bot started", context={"bot_username": session.bot_username})

        if store is not None:
            try:
                store.upsert(tenant_id, credential)
            except SQLAlchemyError as e:
                session.logger.error("Failed to record bot token", context={"error": str(e)})

        return session

    @property
    def is_running(self) -> bool:
        return self.state == SessionState.RUNNING

    def start(self) -> None:
        if self._closed or self.is_running:
            return
        self.state = SessionState.RUNNING
        self.started_at = datetime.now(timezone.utc)
        self._poll_task = asyncio.create_task(self._poll_loop())
        self._dispatch_task = asyncio.create_task(self._dispatch_loop())

    async def _poll_loop(self) -> None:
        while True:
            try:
                updates = await self.service.get_updates(offset=self._offset)
            except (httpx.HTTPError, DeliveryError) as e:
                self.logger.warning("getUpdates failed, retrying", context={"error": str(e)})
                await asyncio.sleep(POLL_RETRY_DELAY_SECONDS)
                continue
            except Exception as e:
                self.logger.error(f"Unexpected getUpdates error: {e}", exc_info=True)
                await asyncio.sleep(POLL_RETRY_DELAY_SECONDS)
                continue

            if not isinstance(updates, list):
                self.logger.warning("getUpdates returned a non-list result", context={"result_type": type(updates).__name__})
                await asyncio.sleep(POLL_RETRY_DELAY_SECONDS)
                continue

            for raw in updates:
                if not isinstance(raw, dict):
                    self.logger.warning("Skipping non-object update", context={"item_type": type(raw).__name__})
                    continue
                update_id = raw.get("update_id")
                if isinstance(update_id, int):
                    self._offset = update_id + 1
                try:
                    update = TelegramUpdate(**raw)
                except (ValidationError, TypeError) as e:
                    self.logger.warning(
                        "Skipping unparseable update",
                        context={"update_id": update_id, "error": str(e)},
                    )
                    continue
                self.events.put_nowait(update)

    async def _dispatch_loop(self) -> None:
        while True:
            update = await self.events.get()
            try:
                await self.handler(self, update)
            except Exception as e:
                self.logger.error(
                    f"Inbound update handling failed: {e}",
                    context={"update_id": update.update_id},
                    exc_info=True,
                )
            finally:
                self.events.task_done()

    async def send_message(self, chat_id: int | str, text: str, reply_markup: Optional[dict] = None) -> dict:
        return await self.service.send_message(chat_id, text, reply_markup=reply_markup)

    async def send_photo(self, chat_id: int | str, photo: str, caption: Optional[str] = None) -> dict:
        return await self.service.send_photo(chat_id, photo, caption=caption)

    async def close(self) -> None:
        """Stop polling and release the HTTP client. Safe to call twice."""
        if self._closed:
            return
        self._closed = True
        self.state = SessionState.STOPPED

        tasks = [task for task in (self._poll_task, self._dispatch_task) if task is not None]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._poll_task = None
        self._dispatch_task = None

        await self.service.aclose()
        self.logger.info("Bot stopped")
