class BotError(Exception):
    """Base class for bot session failures."""


class BotConnectionError(BotError):
    """Token rejected by Telegram, or Telegram unreachable, while opening a bot."""

    def __init__(self, message: str, *, token_rejected: bool = False):
        self.token_rejected = token_rejected
        super().__init__(message)


class DeliveryError(BotError):
    """A single outbound send failed on an open bot."""

    def __init__(self, method: str, message: str):
        self.method = method
        super().__init__(f"{method} failed: {message}")


class DuplicateSessionError(BotError):
    def __init__(self, token: str):
        self.token = token
        super().__init__("A bot session is already registered for this token")


class PayloadParseError(BotError):
    """Malformed order payload from the web app."""
