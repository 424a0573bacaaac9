import os
from functools import partial

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from flowers_api.config import settings
from flowers_api.database import SessionLocal
from flowers_api.logging_config import get_logger, setup_logging
from flowers_api.routers import admin
from flowers_api.services.bot_handler import BotEventHandler
from flowers_api.services.bot_reconciler import BotReconciler
from flowers_api.services.bot_registry import SessionRegistry
from flowers_api.services.bot_session import BotSession
from flowers_api.services.credential_store import CredentialStore

setup_logging(settings.log_level)

app = FastAPI(
    title="Flowers API",
    description="Vendor Telegram bots for the flowers catalog",
    version="0.1.0",
)

cors_env = os.environ.get("CORS_ALLOW_ORIGINS", "*")
cors_origins = [origin.strip() for origin in cors_env.split(",") if origin.strip()]
if not cors_origins:
    cors_origins = ["*"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(admin.router)

bot_logger = get_logger("bot_sync")

credential_store = CredentialStore(SessionLocal)
bot_registry = SessionRegistry()
bot_reconciler = BotReconciler(
    bot_registry,
    credential_store,
    partial(BotSession.open, handler=BotEventHandler(), store=credential_store),
    interval=settings.bot_sync_interval_seconds,
)

app.state.credential_store = credential_store
app.state.bot_registry = bot_registry
app.state.bot_reconciler = bot_reconciler


def _is_env_enabled(value: str | None, default: bool = True) -> bool:
    if value is None:
        return default
    return value.strip().lower() not in {"0", "false", "no", "off"}


def _is_bot_sync_enabled() -> bool:
    if os.environ.get("PYTEST_CURRENT_TEST"):
        return False
    return _is_env_enabled(os.environ.get("BOT_SYNC_ENABLED"), default=True)


@app.on_event("startup")
async def start_bot_sync() -> None:
    if not _is_bot_sync_enabled():
        return
    # Bots for every stored token are up before the first periodic tick
    result = await bot_reconciler.reconcile()
    bot_logger.info("Initial bot sync finished", extra={"context": result.summary()})
    bot_reconciler.start()


@app.on_event("shutdown")
async def stop_bot_sync() -> None:
    await bot_reconciler.shutdown()


@app.get("/health")
async def health():
    return {"status": "ok", "bots": len(bot_registry)}
