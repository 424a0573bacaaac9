"""Keeps one running bot per vendor token.

Every run diffs the tokens stored for client tenants against the live
sessions in the registry: missing bots are opened, bots whose token left
the store are closed. Runs never overlap; a run requested while another
is in progress is skipped, not queued.
"""

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, Optional
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError

from flowers_api.config import settings
from flowers_api.logging_config import get_logger
from flowers_api.services.bot_registry import SessionRegistry
from flowers_api.services.bot_session import BotSession
from flowers_api.services.credential_store import CredentialStore
from flowers_api.services.errors import BotConnectionError, DuplicateSessionError
from flowers_api.services.telegram_service import mask_token

logger = get_logger("bot_reconciler")

SessionOpener = Callable[[str, UUID], Awaitable[BotSession]]


class ReconcilerPhase(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    DIFFING = "diffing"
    APPLYING = "applying"


@dataclass
class ReconcileResult:
    skipped: bool = False
    opened: list[str] = field(default_factory=list)
    closed: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)

    def summary(self) -> dict:
        return {
            "skipped": self.skipped,
            "opened": len(self.opened),
            "closed": len(self.closed),
            "failed": len(self.failed),
        }


class BotReconciler:
    def __init__(
        self,
        registry: SessionRegistry,
        store: CredentialStore,
        open_session: SessionOpener,
        *,
        interval: Optional[float] = None,
    ):
        self.registry = registry
        self.store = store
        self.open_session = open_session
        self.interval = interval if interval is not None else settings.bot_sync_interval_seconds
        self.phase = ReconcilerPhase.IDLE
        self._run_lock = asyncio.Lock()
        self._loop_task: Optional[asyncio.Task] = None
        self._ticks: set[asyncio.Task] = set()

    @property
    def is_running(self) -> bool:
        return self._run_lock.locked()

    async def reconcile(self) -> ReconcileResult:
        """One pass. Returns immediately with skipped=True if a pass is in progress."""
        if self._run_lock.locked():
            logger.info("Bot reconciliation already in progress, skipping")
            return ReconcileResult(skipped=True)

        async with self._run_lock:
            try:
                return await self._reconcile()
            finally:
                self.phase = ReconcilerPhase.IDLE

    async def _reconcile(self) -> ReconcileResult:
        result = ReconcileResult()

        self.phase = ReconcilerPhase.LOADING
        try:
            tenants = self.store.list_active()
        except SQLAlchemyError as e:
            logger.error("Failed to load bot tokens", extra={"context": {"error": str(e)}})
            return result

        self.phase = ReconcilerPhase.DIFFING
        desired: dict[str, UUID] = {}
        for tenant in tenants:
            owner = desired.setdefault(tenant.credential, tenant.tenant_id)
            if owner != tenant.tenant_id:
                logger.warning(
                    "Bot token shared by several tenants, keeping the first",
                    extra={
                        "context": {
                            "token": mask_token(tenant.credential),
                            "tenant_id": str(owner),
                            "ignored_tenant_id": str(tenant.tenant_id),
                        }
                    },
                )

        live = self.registry.list_credentials()
        to_open = [(credential, tenant_id) for credential, tenant_id in desired.items() if credential not in live]
        to_close = live - set(desired)

        self.phase = ReconcilerPhase.APPLYING
        started = await asyncio.gather(*(self._start(credential, tenant_id) for credential, tenant_id in to_open))
        for (credential, _), ok in zip(to_open, started):
            (result.opened if ok else result.failed).append(credential)

        for credential in to_close:
            if await self._stop(credential):
                result.closed.append(credential)

        if result.opened or result.closed or result.failed:
            logger.info("Bot reconciliation applied", extra={"context": result.summary()})
        return result

    async def _start(self, credential: str, tenant_id: UUID) -> bool:
        context = {"tenant_id": str(tenant_id), "token": mask_token(credential)}
        try:
            session = await self.open_session(credential, tenant_id)
        except BotConnectionError as e:
            # Retried on the next run while the token stays in the store
            logger.warning(f"Bot could not be started: {e}", extra={"context": context})
            return False
        except Exception as e:
            logger.error(f"Unexpected error starting bot: {e}", extra={"context": context}, exc_info=True)
            return False

        try:
            self.registry.insert(credential, session)
        except DuplicateSessionError:
            logger.error("Bot already registered for token, closing the new one", extra={"context": context})
            await session.close()
            return False
        return True

    async def _stop(self, credential: str) -> bool:
        session = self.registry.remove(credential)
        if session is None:
            return False
        try:
            await session.close()
        except Exception as e:
            logger.error(
                f"Error while closing bot: {e}",
                extra={"context": session.log_context},
                exc_info=True,
            )
        logger.info("Bot removed from registry", extra={"context": session.log_context})
        return True

    def start(self) -> None:
        """Schedule a reconciliation every ``interval`` seconds."""
        if self._loop_task is None or self._loop_task.done():
            self._loop_task = asyncio.create_task(self._run_periodically())
            logger.info("Bot reconciler started", extra={"context": {"interval_seconds": self.interval}})

    async def _run_periodically(self) -> None:
        while True:
            try:
                await asyncio.sleep(self.interval)
            except asyncio.CancelledError:
                break
            # Ticks are not awaited here: a slow pass makes the next ticks skip
            tick = asyncio.create_task(self._tick())
            self._ticks.add(tick)
            tick.add_done_callback(self._ticks.discard)

    async def _tick(self) -> None:
        try:
            await self.reconcile()
        except Exception as e:
            logger.error(
                "Bot reconciliation failed",
                extra={"context": {"error": str(e)}},
                exc_info=True,
            )

    async def stop(self) -> None:
        tasks = [task for task in (self._loop_task, *self._ticks) if task is not None]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._loop_task = None
        self._ticks.clear()

    async def shutdown(self) -> None:
        """Stop the schedule and close every live bot."""
        await self.stop()
        for credential in self.registry.list_credentials():
            await self._stop(credential)
