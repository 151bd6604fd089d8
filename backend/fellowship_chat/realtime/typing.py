"""Typing indicators with automatic expiry.

An entry exists per (room, user) while that user is composing. Each
start() re-arms a quiescence timer; when it fires without a renewed start()
or an explicit stop(), the entry is removed and the expiry callback runs
exactly once, inline with the timer. Explicit stops cancel the timer, so an
expiry can never race a fresh keystroke.
"""
import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)

DEFAULT_QUIESCENCE_SECONDS = 3.0

ExpiryCallback = Callable[[str, str], None]

_Key = Tuple[str, str]


@dataclass
class TypingEntry:
    """A user currently composing in a room."""
    room_id: str
    user_id: str
    display_name: str
    started_at: float


class TypingTracker:
    """Per-room set of users currently typing.

    Args:
        quiescence_seconds: Silence after which an entry expires.
        on_expired: Called with (room_id, user_id) from the expiring timer.
    """

    def __init__(
        self,
        quiescence_seconds: float = DEFAULT_QUIESCENCE_SECONDS,
        on_expired: Optional[ExpiryCallback] = None,
    ) -> None:
        self.quiescence_seconds = quiescence_seconds
        self._on_expired = on_expired
        self._entries: Dict[_Key, TypingEntry] = {}
        self._timers: Dict[_Key, asyncio.TimerHandle] = {}

    def set_expiry_callback(self, callback: Optional[ExpiryCallback]) -> None:
        self._on_expired = callback

    def start(self, room_id: str, user_id: str, display_name: str) -> bool:
        """Mark a user as typing and (re)arm the expiry timer.

        Must be called from a running event loop.

        Returns:
            True if the user was not already typing in the room, i.e. the
            caller should announce it.
        """
        key = (room_id, user_id)
        is_new = key not in self._entries
        if is_new:
            self._entries[key] = TypingEntry(room_id, user_id, display_name, time.time())
        else:
            self._entries[key].display_name = display_name

        self._cancel_timer(key)
        loop = asyncio.get_running_loop()
        self._timers[key] = loop.call_later(self.quiescence_seconds, self._expire, key)
        return is_new

    def stop(self, room_id: str, user_id: str) -> bool:
        """Remove a typing entry now.

        Returns:
            True if the user was typing, i.e. the caller should announce the stop.
        """
        key = (room_id, user_id)
        self._cancel_timer(key)
        return self._entries.pop(key, None) is not None

    def clear_user(self, user_id: str) -> List[str]:
        """Stop every entry for a user (disconnect). Returns the affected rooms."""
        rooms = [room for (room, uid) in list(self._entries) if uid == user_id]
        for room_id in rooms:
            self.stop(room_id, user_id)
        return rooms

    def is_typing(self, room_id: str, user_id: str) -> bool:
        return (room_id, user_id) in self._entries

    def typing_in(self, room_id: str) -> List[TypingEntry]:
        return [e for (room, _), e in self._entries.items() if room == room_id]

    def _cancel_timer(self, key: _Key) -> None:
        timer = self._timers.pop(key, None)
        if timer is not None:
            timer.cancel()

    def _expire(self, key: _Key) -> None:
        self._timers.pop(key, None)
        entry = self._entries.pop(key, None)
        if entry is None:
            return
        logger.debug("[Typing] %s stopped typing in %s (expired)", entry.user_id, entry.room_id)
        if self._on_expired is not None:
            self._on_expired(entry.room_id, entry.user_id)

    def close(self) -> None:
        """Cancel every timer (server shutdown)."""
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()
        self._entries.clear()
