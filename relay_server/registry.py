# relay_server/registry.py

import asyncio
import logging
from typing import TYPE_CHECKING, Callable, Dict, List, Optional, Union

from .channel import OutboundChannel
from .models import Contact

if TYPE_CHECKING:
    from .db_async import Database

logger = logging.getLogger(__name__)

Payload = Union[str, Callable[[str], str]]


class UserRegistry:
    """
    Maps each online username to the outbound channel of its session.

    Only gates live delivery. The contact list shown to users is read from
    the store's online flags (see ``snapshot``).
    """

    def __init__(self, db: "Database"):
        self.db = db
        self._online_users: Dict[str, OutboundChannel] = {}
        self._lock = asyncio.Lock()
        self._presence_locks: Dict[str, asyncio.Lock] = {}

    def presence_lock(self, username: str) -> asyncio.Lock:
        """
        Serializes the online-flag write and the registry change of one user.

        A login holds it around marking the user online and registering; a
        logout holds it around unregistering and marking the user offline.
        """
        return self._presence_locks.setdefault(username, asyncio.Lock())

    async def register(self, username: str, channel: OutboundChannel) -> None:
        """Registers a user as online. A second login replaces the first entry."""
        async with self._lock:
            if username in self._online_users:
                logger.warning("User '%s' is already registered. Overwriting session.", username)
            self._online_users[username] = channel
        logger.info("User '%s' registered.", username)

    async def unregister(self, username: str, channel: Optional[OutboundChannel] = None) -> bool:
        """
        Removes a user from the registry.

        With ``channel`` given, the entry is only removed while it still points
        at that channel, so a replaced session cannot evict its successor.
        Returns True if an entry was removed.
        """
        async with self._lock:
            current = self._online_users.get(username)
            if current is None or (channel is not None and current is not channel):
                return False
            del self._online_users[username]
        logger.info("User '%s' unregistered.", username)
        return True

    async def lookup(self, username: str) -> Optional[OutboundChannel]:
        async with self._lock:
            return self._online_users.get(username)

    async def online_usernames(self) -> List[str]:
        async with self._lock:
            return sorted(self._online_users)

    async def broadcast(self, payload: Payload) -> int:
        """
        Sends a frame to every registered channel.

        ``payload`` is either the line itself or a callable building the line
        for a given username. Returns how many channels accepted the frame.
        """
        async with self._lock:
            targets = list(self._online_users.items())

        delivered = 0
        for username, channel in targets:
            try:
                line = payload(username) if callable(payload) else payload
                if channel.send(line):
                    delivered += 1
            except Exception:
                logger.exception("Broadcast to '%s' failed.", username)
        return delivered

    async def snapshot(self, excluding: Optional[str] = None) -> List[Contact]:
        """Contact list with the durable online flags, minus ``excluding``."""
        return await self.db.contacts(excluding)
