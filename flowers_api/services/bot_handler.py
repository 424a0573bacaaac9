"""Replies of a vendor bot to its customers.

A Telegram update is first parsed into one of three events:

- ``StartCommand``: the customer sent /start; greet and ask for a phone number.
- ``ContactShared``: the customer shared their contact; open the vendor's
  order web app.
- ``OrderSubmitted``: the web app sent the order back; confirm it with one
  photo per ordered item.

Anything else is ignored. Sends are fire-and-forget: a failed send is logged
and the next one is still attempted.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import TYPE_CHECKING, Awaitable, Optional, Union

from pydantic import ValidationError

from flowers_api.config import settings
from flowers_api.logging_config import get_logger
from flowers_api.schemas.order import OrderPayload
from flowers_api.schemas.telegram import TelegramUpdate
from flowers_api.services.errors import DeliveryError, PayloadParseError
from flowers_api.services.telegram_service import build_contact_request_keyboard, build_web_app_keyboard

if TYPE_CHECKING:
    from flowers_api.services.bot_session import BotSession

logger = get_logger("bot_handler")

WELCOME_TEXT = "Flowers platformasiga xush kelibsiz."
CONTACT_PROMPT_TEXT = "Buket zakat qilishdan oldin telefon raqamingizni jo‘nating:"
CONTACT_BUTTON_TEXT = "📲 Kontaktni jo'natish"
CONTACT_ACCEPTED_TEXT = (
    "✅ Raqamingiz qabul qilindi: {phone}. "
    "Buketlarni ko'rish knopkasini bosib buket va gullarni ko'rishingiz mumkin"
)
ORDERS_BUTTON_TEXT = "Buketlarni ko'rish"
ORDER_ACCEPTED_TEXT = "Zakazingiz qabul qilindi, siz zakaz bergan buketlar ro'yxati:"
CURRENCY_SUFFIX = "so'm"

START_COMMAND = "/start"


@dataclass(frozen=True)
class StartCommand:
    chat_id: int


@dataclass(frozen=True)
class ContactShared:
    chat_id: int
    phone: str


@dataclass(frozen=True)
class OrderSubmitted:
    chat_id: int
    order: OrderPayload


InboundEvent = Union[StartCommand, ContactShared, OrderSubmitted]


def format_price(price: float | int | str | Decimal) -> str:
    """15000 -> "15 000 so'm"."""
    amount = int(Decimal(str(price)).quantize(Decimal(1), rounding=ROUND_HALF_UP))
    grouped = f"{amount:,}".replace(",", " ")
    return f"{grouped} {CURRENCY_SUFFIX}"


def parse_order_payload(raw: str) -> OrderPayload:
    try:
        data = json.loads(raw)
    except ValueError as e:
        raise PayloadParseError(f"Order payload is not JSON: {e}") from e

    if not isinstance(data, dict):
        raise PayloadParseError(f"Order payload must be an object, got {type(data).__name__}")

    try:
        return OrderPayload.model_validate(data)
    except ValidationError as e:
        raise PayloadParseError(f"Invalid order payload: {e.error_count()} error(s)") from e


def is_start_command(text: Optional[str]) -> bool:
    if not text:
        return False
    command = text.split(maxsplit=1)[0].split("@", 1)[0]
    return command == START_COMMAND


def parse_inbound_event(update: TelegramUpdate) -> Optional[InboundEvent]:
    """Classify an update. Raises PayloadParseError for a malformed order."""
    message = update.message
    if message is None:
        return None

    chat_id = message.chat.id
    if message.web_app_data is not None:
        return OrderSubmitted(chat_id=chat_id, order=parse_order_payload(message.web_app_data.data))
    if message.contact is not None:
        return ContactShared(chat_id=chat_id, phone=message.contact.phone_number)
    if is_start_command(message.text):
        return StartCommand(chat_id=chat_id)
    return None


def resolve_image_ref(image: str, media_base_url: Optional[str]) -> str:
    """Absolute URLs pass through; relative paths are served from media_base_url."""
    if image.startswith("http://") or image.startswith("https://"):
        return image
    if media_base_url:
        return f"{media_base_url.rstrip('/')}/{image.lstrip('/')}"
    return image


class BotEventHandler:
    def __init__(self, orders_web_app_url: Optional[str] = None, media_base_url: Optional[str] = None):
        self.orders_web_app_url = (orders_web_app_url or settings.orders_web_app_url).rstrip("/")
        self.media_base_url = media_base_url if media_base_url is not None else settings.media_base_url

    def orders_url(self, tenant_id) -> str:
        return f"{self.orders_web_app_url}/orders/{tenant_id}"

    async def __call__(self, session: BotSession, update: TelegramUpdate) -> None:
        try:
            event = parse_inbound_event(update)
        except PayloadParseError as e:
            logger.error(
                f"Dropping order payload: {e}",
                extra={
                    "context": {
                        **session.log_context,
                        "chat_id": update.message.chat.id if update.message else None,
                        "update_id": update.update_id,
                    }
                },
            )
            return

        if event is None:
            return
        if isinstance(event, StartCommand):
            await self.on_start(session, event)
        elif isinstance(event, ContactShared):
            await self.on_contact(session, event)
        elif isinstance(event, OrderSubmitted):
            await self.on_order(session, event)

    async def on_start(self, session: BotSession, event: StartCommand) -> None:
        await self._deliver(session, "welcome", event.chat_id, session.send_message(event.chat_id, WELCOME_TEXT))
        await self._deliver(
            session,
            "contact_prompt",
            event.chat_id,
            session.send_message(
                event.chat_id,
                CONTACT_PROMPT_TEXT,
                reply_markup=build_contact_request_keyboard(CONTACT_BUTTON_TEXT),
            ),
        )

    async def on_contact(self, session: BotSession, event: ContactShared) -> None:
        # The phone number is only echoed back, not stored
        await self._deliver(
            session,
            "contact_accepted",
            event.chat_id,
            session.send_message(
                event.chat_id,
                CONTACT_ACCEPTED_TEXT.format(phone=event.phone),
                reply_markup=build_web_app_keyboard(ORDERS_BUTTON_TEXT, self.orders_url(session.tenant_id)),
            ),
        )

    async def on_order(self, session: BotSession, event: OrderSubmitted) -> None:
        items = event.order.items
        logger.info(
            "Order received",
            extra={"context": {**session.log_context, "chat_id": event.chat_id, "items": len(items)}},
        )
        await self._deliver(
            session, "order_accepted", event.chat_id, session.send_message(event.chat_id, ORDER_ACCEPTED_TEXT)
        )
        for item in items:
            await self._deliver(
                session,
                "order_item",
                event.chat_id,
                session.send_photo(
                    event.chat_id,
                    resolve_image_ref(item.image, self.media_base_url),
                    caption=format_price(item.price),
                ),
            )

    async def _deliver(self, session: BotSession, action: str, chat_id: int, send: Awaitable) -> bool:
        try:
            await send
            return True
        except DeliveryError as e:
            logger.warning(
                f"Telegram send failed: {e}",
                extra={"context": {**session.log_context, "action": action, "chat_id": chat_id}},
            )
            return False
