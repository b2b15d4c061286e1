# relay_server/app.py

import asyncio
import logging
import sys
from typing import Optional, Set

from .auth import Authenticator, get_scheme
from .config import Settings, settings
from .connection import ClientSession
from .db_async import Database
from .errors import StoreError
from .log import setup_logging
from .registry import UserRegistry
from .router import Router

logger = logging.getLogger(__name__)


class Server:
    """
    The relay server.
    Owns the shared components and accepts client connections.

    At most ``MAX_SESSIONS`` sessions run at once. Further connections are
    accepted but wait, in arrival order, until a running session ends; they
    are never refused.
    """
    def __init__(self, config: Settings = settings, db: Optional[Database] = None):
        self.config = config
        self.host = config.SERVER_HOST
        self.port = config.SERVER_PORT

        # Initialize our core components
        self.db = db or Database(config.DATABASE_PATH, get_scheme(config.PASSWORD_SCHEME))
        self.registry = UserRegistry(self.db)
        self.authenticator = Authenticator(self.db)
        self.router = Router(self.registry, self.db)

        self._slots = asyncio.Semaphore(config.MAX_SESSIONS)
        self._tasks: Set[asyncio.Task] = set()
        self.active = 0
        self.waiting = 0

        self._server: Optional[asyncio.AbstractServer] = None

    @property
    def bound_port(self) -> Optional[int]:
        """Port actually listened on (useful when configured with port 0)."""
        if not self._server or not self._server.sockets:
            return None
        return self._server.sockets[0].getsockname()[1]

    async def handle_client(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter):
        """
        Executed for each new client connection.
        Waits for a free session slot, then runs a ClientSession to completion.
        """
        task = asyncio.current_task()
        self._tasks.add(task)
        try:
            self.waiting += 1
            try:
                if self._slots.locked():
                    logger.info("Session limit reached; %r is queued.", writer.get_extra_info('peername'))
                await self._slots.acquire()
            except asyncio.CancelledError:
                writer.close()
                raise
            finally:
                self.waiting -= 1

            self.active += 1
            try:
                session = ClientSession(self, reader, writer)
                await session.handle_connection()
            finally:
                self.active -= 1
                self._slots.release()
        except asyncio.CancelledError:
            # Raised by stop(); the stream server callback would log it as an error.
            logger.debug("Connection task for %r cancelled.", writer.get_extra_info('peername'))
        finally:
            self._tasks.discard(task)

    async def start(self):
        """
        Connects the store and binds the listening socket.
        A bind failure is fatal and re-raised.
        """
        await self.db.connect()
        await self.db.reset_presence()

        try:
            self._server = await asyncio.start_server(
                self.handle_client, self.host, self.port, limit=self.config.MAX_LINE_BYTES
            )
        except OSError as e:
            logger.critical("Server exception: cannot listen on %s:%s: %s", self.host, self.port, e)
            await self.db.close()
            raise

        addrs = ', '.join(str(sock.getsockname()) for sock in self._server.sockets)
        logger.info("Serving on %s (max %d sessions)", addrs, self.config.MAX_SESSIONS)

    async def serve_forever(self):
        if self._server is None:
            await self.start()
        async with self._server:
            await self._server.serve_forever()

    async def stop(self):
        """
        Stops accepting, ends every session and closes the database connection.
        """
        logger.info("Shutting down server...")
        if self._server:
            self._server.close()

        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        if self._server:
            await self._server.wait_closed()
            self._server = None

        await self.db.close()
        logger.info("Server shut down gracefully.")


async def main(config: Settings = settings):
    server = Server(config)
    try:
        await server.start()
        await server.serve_forever()
    finally:
        await server.stop()


def run():
    """Console entry point."""
    setup_logging(settings.LOG_LEVEL, settings.LOG_FILE)
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Keyboard interrupt received.")
    except (OSError, StoreError) as e:
        logger.critical("Server stopped: %s", e)
        sys.exit(1)


if __name__ == "__main__":
    run()
