# relay_server/router.py

import logging
from typing import TYPE_CHECKING, Optional

from . import protocol
from .errors import StoreError
from .models import StoredMessage

if TYPE_CHECKING:
    from .db_async import Database
    from .registry import UserRegistry

logger = logging.getLogger(__name__)


class Router:
    """
    Handles routing messages between clients.
    """
    def __init__(self, registry: "UserRegistry", db: "Database"):
        self.registry = registry
        self.db = db

    async def route_private(self, sender: str, recipient: str, text: str) -> Optional[StoredMessage]:
        """
        Persists a direct message, then forwards it if the recipient is online.

        Messages to oneself are dropped and None is returned. Store errors
        propagate to the caller and nothing is delivered.
        """
        if sender == recipient:
            logger.debug("Dropping self-addressed message from '%s'.", sender)
            return None

        stored = await self.db.append_message(sender, recipient, text)

        recipient_channel = await self.registry.lookup(recipient)
        if recipient_channel:
            logger.debug("Routing message from %s to online user %s", sender, recipient)
            recipient_channel.send(protocol.private_msg_frame(sender, text))
        else:
            # Only reachable through a later history request.
            logger.debug("Recipient %s is offline. Message stored.", recipient)
        return stored

    async def contact_list(self, username: str) -> str:
        contacts = await self.registry.snapshot(excluding=username)
        return protocol.contacts_frame(contacts)

    async def history(self, username: str, other: str) -> str:
        messages = await self.db.history(username, other)
        return protocol.history_frame(messages)

    async def broadcast_presence(self) -> int:
        """
        Sends every online user the current contact list, without themselves.
        Returns the number of channels reached.
        """
        try:
            everyone = await self.registry.snapshot()
        except StoreError as e:
            logger.error("Error broadcasting online users: %s", e)
            return 0

        def render(username: str) -> str:
            return protocol.online_update_frame(c for c in everyone if c.username != username)

        return await self.registry.broadcast(render)
