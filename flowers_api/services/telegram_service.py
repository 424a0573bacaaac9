from typing import Any, Optional

import httpx

from flowers_api.config import settings
from flowers_api.logging_config import get_logger
from flowers_api.services.errors import BotConnectionError, DeliveryError

logger = get_logger("telegram_service")

# Telegram answers 401 for a revoked token and 404 for a malformed one
REJECTED_TOKEN_CODES = {401, 404}


def mask_token(token: Optional[str]) -> str:
    """Bot id plus the last 4 characters, e.g. 123456:***wxyz."""
    if not token:
        return ""
    bot_id, _, secret = token.partition(":")
    if not secret:
        return "***"
    return f"{bot_id}:***{secret[-4:]}"


class TelegramService:
    """Async client for one bot token on the Telegram Bot API."""

    def __init__(
        self,
        bot_token: str,
        *,
        api_base_url: Optional[str] = None,
        poll_timeout: Optional[int] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.bot_token = bot_token
        base = (api_base_url or settings.telegram_api_base_url).rstrip("/")
        self.base_url = f"{base}/bot{bot_token}"
        self.poll_timeout = poll_timeout if poll_timeout is not None else settings.telegram_poll_timeout_seconds
        # Read timeout must outlive a long-poll
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(30.0, read=self.poll_timeout + 10.0))

    async def _make_request(self, method: str, data: Optional[dict] = None) -> dict:
        """POST a Bot API method. Raises httpx.HTTPError on transport failure."""
        url = f"{self.base_url}/{method}"
        response = await self._client.post(url, json=data or {})
        try:
            return response.json()
        except ValueError:
            return {"ok": False, "error_code": response.status_code, "description": response.text[:200]}

    async def _send(self, method: str, data: dict) -> dict:
        try:
            result = await self._make_request(method, data)
        except httpx.HTTPError as e:
            raise DeliveryError(method, str(e) or e.__class__.__name__) from e
        if not result.get("ok"):
            raise DeliveryError(method, result.get("description") or "unknown error")
        return result["result"]

    async def get_me(self) -> dict:
        """Validate the token. Raises BotConnectionError when Telegram refuses it."""
        try:
            result = await self._make_request("getMe")
        except httpx.HTTPError as e:
            raise BotConnectionError(f"Telegram unreachable: {e}") from e

        if not result.get("ok"):
            code = result.get("error_code")
            raise BotConnectionError(
                f"getMe rejected ({code}): {result.get('description')}",
                token_rejected=code in REJECTED_TOKEN_CODES,
            )
        return result["result"]

    async def get_updates(self, offset: Optional[int] = None) -> list[dict[str, Any]]:
        """Long-poll for new messages. Raises httpx.HTTPError or DeliveryError."""
        data: dict[str, Any] = {"timeout": self.poll_timeout, "allowed_updates": ["message"]}
        if offset is not None:
            data["offset"] = offset
        return await self._send("getUpdates", data)

    async def send_message(
        self,
        chat_id: int | str,
        text: str,
        reply_markup: Optional[dict] = None,
        parse_mode: Optional[str] = None,
    ) -> dict:
        """Send message to Telegram chat."""
        data: dict[str, Any] = {
            "chat_id": chat_id,
            "text": text,
        }
        if reply_markup:
            data["reply_markup"] = reply_markup
        if parse_mode:
            data["parse_mode"] = parse_mode

        return await self._send("sendMessage", data)

    async def send_photo(
        self,
        chat_id: int | str,
        photo: str,
        caption: Optional[str] = None,
    ) -> dict:
        """Send photo by URL or file_id."""
        data: dict[str, Any] = {"chat_id": chat_id, "photo": photo}
        if caption:
            data["caption"] = caption

        return await self._send("sendPhoto", data)

    async def aclose(self) -> None:
        await self._client.aclose()


def build_contact_request_keyboard(button_text: str) -> dict:
    """Reply keyboard with a single share-contact button."""
    return {
        "keyboard": [[{"text": button_text, "request_contact": True}]],
        "one_time_keyboard": True,
        "resize_keyboard": True,
    }


def build_web_app_keyboard(button_text: str, url: str) -> dict:
    """Reply keyboard opening the shop web app; its sendData comes back as web_app_data."""
    return {
        "keyboard": [[{"text": button_text, "web_app": {"url": url}}]],
        "resize_keyboard": True,
    }
