# relay_server/connection.py

import asyncio
import logging
from typing import TYPE_CHECKING, Optional

from . import protocol
from .channel import OutboundChannel
from .errors import StoreError
from .models import SessionState

if TYPE_CHECKING:
    from .app import Server

logger = logging.getLogger(__name__)


class ClientSession:
    """
    Server-side state for one client connection.

    The first frame must be LOGIN or REGISTER. Once authenticated the session
    serves PRIVATE, GET_CONTACTS and GET_HISTORY until the peer goes away.
    """

    def __init__(self, server: "Server", reader: asyncio.StreamReader, writer: asyncio.StreamWriter):
        self.server = server
        self.reader = reader
        self.writer = writer

        self.username: Optional[str] = None
        self.state = SessionState.UNAUTHENTICATED
        # True once this session put itself in the presence registry (LOGIN only).
        self.registered = False

        self.addr = writer.get_extra_info('peername')
        self.channel = OutboundChannel(writer, maxsize=server.config.OUTBOX_SIZE, name=str(self.addr))

    @property
    def is_authenticated(self) -> bool:
        return self.state is SessionState.AUTHENTICATED

    def send(self, line: str) -> bool:
        return self.channel.send(line)

    async def _read_line(self) -> Optional[str]:
        """Next frame without its terminator, or None once the peer has closed."""
        timeout = self.server.config.IDLE_TIMEOUT
        if timeout:
            raw = await asyncio.wait_for(self.reader.readline(), timeout)
        else:
            raw = await self.reader.readline()
        if not raw:
            return None
        return protocol.clean_line(raw)

    async def handle_connection(self):
        """Manages the full lifecycle: authentication, command loop, cleanup."""
        logger.info("Connection from %r", self.addr)
        self.channel.start()
        try:
            await self._authenticate()
            if self.is_authenticated:
                await self._command_loop()
        except asyncio.TimeoutError:
            logger.info("Session %r idle for too long. Closing.", self.addr)
        except (ConnectionError, OSError, UnicodeDecodeError, ValueError) as e:
            # ValueError covers lines longer than the stream reader limit.
            logger.info("%s error: %s", self.username or repr(self.addr), e)
        except Exception:
            logger.exception("Unexpected error in session %r", self.addr)
        finally:
            await self._terminate()

    async def _authenticate(self):
        line = await self._read_line()
        if line is None:
            return

        request = protocol.parse_auth_request(line)
        if request is None:
            logger.info("Invalid first frame from %r. Closing connection.", self.addr)
            return

        if request.action == protocol.LOGIN:
            await self._perform_login(request.username, request.password)
        else:
            await self._perform_register(request.username, request.password)

    async def _perform_login(self, username: str, password: str):
        if not await self.server.authenticator.login(username, password):
            self.send(protocol.AUTH_FAILED)
            return

        registry = self.server.registry
        async with registry.presence_lock(username):
            try:
                await self.server.db.set_online(username, True)
            except StoreError as e:
                logger.error("Error updating status of %s: %s", username, e)
                self.send(protocol.AUTH_FAILED)
                return

            self.username = username
            self.state = SessionState.AUTHENTICATED
            # AUTH_SUCCESS is queued before the channel becomes reachable by others.
            self.send(protocol.AUTH_SUCCESS)
            await registry.register(username, self.channel)
            self.registered = True

        await self.server.router.broadcast_presence()
        logger.info("%s logged in successfully", username)

    async def _perform_register(self, username: str, password: str):
        if not await self.server.authenticator.register(username, password):
            self.send(protocol.REGISTER_FAILED)
            return

        # Registration authenticates the session but does not mark it online.
        self.username = username
        self.state = SessionState.AUTHENTICATED
        self.send(protocol.REGISTER_SUCCESS)

    async def _command_loop(self):
        while True:
            line = await self._read_line()
            if line is None:
                break

            command = protocol.parse_command(line)
            if command is None:
                continue

            try:
                await self._process_command(command)
            except StoreError as e:
                logger.error("Error handling message from %s: %s", self.username, e)

    async def _process_command(self, command: protocol.Command):
        router = self.server.router
        if isinstance(command, protocol.SendPrivate):
            await router.route_private(self.username, command.recipient, command.text)
        elif isinstance(command, protocol.GetContacts):
            self.send(await router.contact_list(self.username))
        elif isinstance(command, protocol.GetHistory):
            self.send(await router.history(self.username, command.other))

    async def _terminate(self):
        self.state = SessionState.TERMINATED

        if self.registered:
            registry = self.server.registry
            async with registry.presence_lock(self.username):
                # A newer login for the same user may own the entry by now.
                removed = await registry.unregister(self.username, self.channel)
                if removed:
                    try:
                        await self.server.db.set_online(self.username, False)
                    except StoreError as e:
                        logger.error("Error updating status of %s: %s", self.username, e)
            if removed:
                await self.server.router.broadcast_presence()

        await self.channel.close()
        self.writer.close()
        try:
            await self.writer.wait_closed()
        except (ConnectionError, OSError) as e:
            logger.debug("Error closing socket for %r: %s", self.addr, e)

        if self.username:
            logger.info("%s disconnected", self.username)
        else:
            logger.info("Connection to %r closed.", self.addr)
