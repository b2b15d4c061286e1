import asyncio
from contextlib import asynccontextmanager

from relay_client import NetworkClient
from relay_server import protocol
from relay_server.app import Server
from relay_server.db_async import Database


@asynccontextmanager
async def open_db(path, scheme=None):
    db = Database(path, scheme)
    await db.connect()
    try:
        yield db
    finally:
        await db.close()


@asynccontextmanager
async def running_server(config, db=None):
    server = Server(config, db)
    await server.start()
    try:
        yield server
    finally:
        await server.stop()


async def connect(server: Server) -> NetworkClient:
    return await NetworkClient("127.0.0.1", server.bound_port).connect()


async def signup(server: Server, username: str, password: str) -> None:
    """Register an account over the wire and hang up."""
    client = await connect(server)
    try:
        assert await client.register(username, password)
    finally:
        await client.close()


async def login(server: Server, username: str, password: str) -> NetworkClient:
    client = await connect(server)
    assert await client.login(username, password)
    return client


async def wait_until(predicate, timeout: float = 2.0, interval: float = 0.01):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(interval)


async def wait_for_presence(client: NetworkClient, username: str, online: bool, timeout: float = 2.0):
    """Consume ONLINE_UPDATE frames until one shows ``username`` in the given state."""
    async def _wait():
        while True:
            frame = await client.expect(protocol.ONLINE_UPDATE, timeout=None)
            states = {c.username: c.online for c in frame.data}
            if states.get(username) == online:
                return frame

    return await asyncio.wait_for(_wait(), timeout)


class FakeChannel:
    """Stands in for an OutboundChannel; records what it is sent."""

    def __init__(self, fail: bool = False):
        self.lines = []
        self.fail = fail

    def send(self, line: str) -> bool:
        if self.fail:
            raise ConnectionResetError("peer gone")
        self.lines.append(line)
        return True
