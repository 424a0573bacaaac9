from flowers_api.services.errors import (
    BotConnectionError,
    BotError,
    DeliveryError,
    DuplicateSessionError,
    PayloadParseError,
)
from flowers_api.services.telegram_service import TelegramService, mask_token
from flowers_api.services.credential_store import CredentialStore, TenantCredential, TenantNotFoundError
from flowers_api.services.bot_registry import SessionRegistry
from flowers_api.services.bot_handler import BotEventHandler, format_price, parse_inbound_event
from flowers_api.services.bot_session import BotSession, SessionState
from flowers_api.services.bot_reconciler import BotReconciler, ReconcilerPhase, ReconcileResult
