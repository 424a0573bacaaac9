from __future__ import annotations

import threading
from typing import TYPE_CHECKING, Optional

from flowers_api.services.errors import DuplicateSessionError

if TYPE_CHECKING:
    from flowers_api.services.bot_session import BotSession


class SessionRegistry:
    """Live bot sessions keyed by token.

    Owned by the host process and passed to whoever needs it. Every
    operation holds one lock: admin routes read it from the threadpool
    while the event loop mutates it.
    """

    def __init__(self) -> None:
        self._sessions: dict[str, BotSession] = {}
        self._lock = threading.Lock()

    def lookup(self, credential: str) -> Optional[BotSession]:
        with self._lock:
            return self._sessions.get(credential)

    def insert(self, credential: str, session: BotSession) -> None:
        with self._lock:
            if credential in self._sessions:
                raise DuplicateSessionError(credential)
            self._sessions[credential] = session

    def remove(self, credential: str) -> Optional[BotSession]:
        with self._lock:
            return self._sessions.pop(credential, None)

    def list_credentials(self) -> set[str]:
        with self._lock:
            return set(self._sessions)

    def sessions(self) -> list[BotSession]:
        with self._lock:
            return list(self._sessions.values())

    def __contains__(self, credential: object) -> bool:
        with self._lock:
            return credential in self._sessions

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)
