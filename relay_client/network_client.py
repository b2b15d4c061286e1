# relay_client/network_client.py

import asyncio
import logging
from typing import List, Optional

from relay_server import protocol
from relay_server.config import settings
from relay_server.models import Contact, StoredMessage
from relay_server.protocol import ServerFrame

DEFAULT_HOST = settings.SERVER_HOST
DEFAULT_PORT = settings.SERVER_PORT

logger = logging.getLogger(__name__)


class NetworkClient:
    """
    Asynchronous client for the relay's line protocol.

    A background task decodes every server line into a ServerFrame and puts
    it on ``inbox``; callers either consume frames directly with ``recv`` or
    wait for a given kind with ``expect``. Frames skipped by ``expect`` are
    kept in ``skipped`` in arrival order.
    """

    def __init__(self, host: str = DEFAULT_HOST, port: int = DEFAULT_PORT, limit: int = settings.MAX_LINE_BYTES):
        self.host = host
        self.port = port
        self.limit = limit
        self.inbox: "asyncio.Queue[Optional[ServerFrame]]" = asyncio.Queue()
        self.skipped: List[ServerFrame] = []
        self.username: Optional[str] = None
        self._reader: Optional[asyncio.StreamReader] = None
        self._writer: Optional[asyncio.StreamWriter] = None
        self._recv_task: Optional[asyncio.Task] = None
        self._closed = asyncio.Event()

    @property
    def closed(self) -> bool:
        """True once the server side has closed the stream."""
        return self._closed.is_set()

    async def connect(self):
        self._reader, self._writer = await asyncio.open_connection(self.host, self.port, limit=self.limit)
        self._recv_task = asyncio.get_running_loop().create_task(self._recv_loop())
        return self

    async def __aenter__(self):
        return await self.connect()

    async def __aexit__(self, *exc):
        await self.close()

    async def _recv_loop(self):
        try:
            while True:
                line = await self._reader.readline()
                if not line:
                    return
                try:
                    frame = protocol.parse_server_frame(protocol.clean_line(line))
                except UnicodeDecodeError:
                    logger.warning("Undecodable line from server: %r", line)
                    continue
                await self.inbox.put(frame)
        except (ConnectionError, OSError, ValueError) as e:
            # ValueError: a line longer than the reader limit.
            logger.info("recv loop error: %s", e)
        finally:
            self._closed.set()
            self.inbox.put_nowait(None)

    async def send_line(self, line: str):
        if self._writer is None:
            raise ConnectionError("not connected")
        self._writer.write((line + "\n").encode("utf-8"))
        await self._writer.drain()

    async def recv(self, timeout: Optional[float] = 5.0) -> Optional[ServerFrame]:
        """Next frame from the server, or None once the connection is closed."""
        frame = await asyncio.wait_for(self.inbox.get(), timeout)
        if frame is None:
            # Keep the end marker visible to later callers.
            self.inbox.put_nowait(None)
        return frame

    async def expect(self, kind: str, timeout: Optional[float] = 5.0) -> ServerFrame:
        """
        Waits for the next frame of ``kind``.
        Raises ConnectionError if the server closes the connection first.
        """
        async def _wait():
            while True:
                frame = await self.recv(timeout=None)
                if frame is None:
                    raise ConnectionError(f"connection closed while waiting for {kind}")
                if frame.kind == kind:
                    return frame
                self.skipped.append(frame)

        return await asyncio.wait_for(_wait(), timeout)

    async def wait_closed(self, timeout: Optional[float] = 5.0) -> bool:
        """Waits for the server to close the connection."""
        try:
            await asyncio.wait_for(self._closed.wait(), timeout)
        except asyncio.TimeoutError:
            return False
        return True

    # --- Protocol commands ---

    async def _authenticate(self, action: str, username: str, password: str) -> ServerFrame:
        await self.send_line(protocol.auth_frame(action, username, password))
        frame = await self.recv()
        if frame is None:
            raise ConnectionError("connection closed during authentication")
        return frame

    async def login(self, username: str, password: str) -> bool:
        frame = await self._authenticate(protocol.LOGIN, username, password)
        if frame.kind == protocol.AUTH_SUCCESS:
            self.username = username
            return True
        return False

    async def register(self, username: str, password: str) -> bool:
        frame = await self._authenticate(protocol.REGISTER, username, password)
        if frame.kind == protocol.REGISTER_SUCCESS:
            self.username = username
            return True
        return False

    async def send_private(self, recipient: str, text: str):
        await self.send_line(protocol.private_frame(recipient, text))

    async def get_contacts(self, timeout: Optional[float] = 5.0) -> List[Contact]:
        await self.send_line(protocol.GET_CONTACTS)
        frame = await self.expect(protocol.CONTACTS, timeout)
        return frame.data

    async def get_history(self, other: str, timeout: Optional[float] = 5.0) -> List[StoredMessage]:
        await self.send_line(protocol.history_request_frame(other))
        frame = await self.expect(protocol.HISTORY, timeout)
        return frame.data

    async def close(self):
        if self._writer is not None:
            self._writer.close()
            try:
                await self._writer.wait_closed()
            except (ConnectionError, OSError):
                pass
            self._writer = None
        if self._recv_task is not None:
            self._recv_task.cancel()
            await asyncio.gather(self._recv_task, return_exceptions=True)
            self._recv_task = None
