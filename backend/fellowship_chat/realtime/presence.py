"""In-memory presence registry: who is connected right now.

One entry per identity. A second connection from the same identity replaces
the connection handle (last connect wins); the older connection's disconnect
then leaves the newer entry alone.
"""
import logging
import threading
import time
from dataclasses import dataclass, replace
from typing import Dict, Iterator, Optional, Tuple

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PresenceEntry:
    """A connected identity.

    Attributes:
        user_id: Identity of the connected user.
        display_name: Name shown in online lists.
        connection_id: Handle of the session that currently owns the entry.
        last_activity_at: Unix timestamp (seconds) of the last activity signal.
    """
    user_id: str
    display_name: str
    connection_id: str
    last_activity_at: float

    @property
    def last_activity_ms(self) -> int:
        return int(self.last_activity_at * 1000)

    def to_wire(self) -> dict:
        return {
            "userId": self.user_id,
            "userName": self.display_name,
            "lastActivity": self.last_activity_ms,
        }


class PresenceSnapshot:
    """Point-in-time copy of the registry.

    Iterating it never observes later mutations and can be repeated.
    """

    def __init__(self, entries: Tuple[PresenceEntry, ...]) -> None:
        self._entries = entries

    def __iter__(self) -> Iterator[PresenceEntry]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def user_ids(self) -> Tuple[str, ...]:
        return tuple(e.user_id for e in self._entries)

    def to_wire(self) -> list:
        return [e.to_wire() for e in self._entries]


class PresenceRegistry:
    """Process-wide map of connected identities.

    Every operation is a short critical section with no I/O, so calls from
    concurrent connect/disconnect handlers see a consistent map.
    """

    def __init__(self) -> None:
        self._entries: Dict[str, PresenceEntry] = {}
        self._lock = threading.Lock()

    def register(self, user_id: str, display_name: str, connection_id: str) -> Optional[PresenceEntry]:
        """Insert or overwrite the entry for ``user_id``.

        Returns:
            The entry that was replaced, if any.
        """
        entry = PresenceEntry(
            user_id=user_id,
            display_name=display_name,
            connection_id=connection_id,
            last_activity_at=time.time(),
        )
        with self._lock:
            previous = self._entries.get(user_id)
            self._entries[user_id] = entry
        if previous is not None and previous.connection_id != connection_id:
            logger.info(
                "[Presence] %s reconnected; connection %s replaces %s",
                user_id, connection_id, previous.connection_id,
            )
        return previous

    def unregister(self, user_id: str, connection_id: Optional[str] = None) -> bool:
        """Remove the entry for ``user_id``.

        Args:
            user_id: Identity to remove.
            connection_id: When given, only remove the entry if this
                connection still owns it.

        Returns:
            True if an entry was removed.
        """
        with self._lock:
            entry = self._entries.get(user_id)
            if entry is None:
                return False
            if connection_id is not None and entry.connection_id != connection_id:
                return False
            del self._entries[user_id]
            return True

    def touch(self, user_id: str) -> Optional[PresenceEntry]:
        """Refresh last activity; returns the updated entry or None if offline."""
        with self._lock:
            entry = self._entries.get(user_id)
            if entry is None:
                return None
            entry = replace(entry, last_activity_at=time.time())
            self._entries[user_id] = entry
            return entry

    def lookup(self, user_id: str) -> Optional[PresenceEntry]:
        with self._lock:
            return self._entries.get(user_id)

    def list(self) -> PresenceSnapshot:
        """Snapshot of every entry, safe to iterate while the registry changes."""
        with self._lock:
            return PresenceSnapshot(tuple(self._entries.values()))

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __contains__(self, user_id: object) -> bool:
        with self._lock:
            return user_id in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
