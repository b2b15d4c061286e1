# relay_server/db_async.py

import asyncio
import logging
from pathlib import Path
from typing import List, Optional, Union

import aiosqlite

from .auth import CredentialScheme, PlainTextScheme
from .errors import StoreError, UnknownAccountError
from .models import Account, Contact, CreateResult, StoredMessage, VerifyResult

logger = logging.getLogger(__name__)


class Database:
    """
    Asynchronous wrapper for the SQLite message store.
    Holds the accounts table and the append-only message log.

    A single connection is shared by every session; writes are serialized by
    an internal lock and committed one operation at a time.
    """

    def __init__(self, db_path: Union[Path, str], scheme: Optional[CredentialScheme] = None):
        self.db_path = db_path
        self.scheme = scheme or PlainTextScheme()
        self._conn: Optional[aiosqlite.Connection] = None
        self._write_lock = asyncio.Lock()

    async def connect(self):
        # Establish a connection to the SQLite database.
        try:
            self._conn = await aiosqlite.connect(self.db_path)
            # Enable row factory to get results as dictionaries
            self._conn.row_factory = aiosqlite.Row
            await self._conn.execute("PRAGMA foreign_keys = ON")
            await self._initialize_schema()
            logger.info("Database connection to %s successful.", self.db_path)
        except aiosqlite.Error as e:
            logger.critical("Error connecting to database %s: %s", self.db_path, e)
            raise StoreError(f"cannot open database: {e}") from e

    async def close(self):
        # Gracefully close the database connection.
        if self._conn:
            await self._conn.close()
            self._conn = None
            logger.info("Database connection closed.")

    async def _initialize_schema(self):
        # Create the necessary tables if they don't already exist.
        await self._conn.execute("""
            CREATE TABLE IF NOT EXISTS users (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                username TEXT UNIQUE NOT NULL,
                password TEXT NOT NULL,
                online BOOLEAN NOT NULL DEFAULT 0
            )
        """)

        # Timestamps carry milliseconds so history within one second keeps its order.
        await self._conn.execute("""
            CREATE TABLE IF NOT EXISTS messages (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                sender_id INTEGER NOT NULL,
                receiver_id INTEGER NOT NULL,
                message TEXT NOT NULL,
                timestamp TEXT NOT NULL DEFAULT (strftime('%Y-%m-%d %H:%M:%f', 'now')),
                FOREIGN KEY (sender_id) REFERENCES users (id),
                FOREIGN KEY (receiver_id) REFERENCES users (id)
            )
        """)

        await self._conn.commit()

    def _require_conn(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise StoreError("database is not connected")
        return self._conn

    # --- Accounts ---

    async def create_account(self, username: str, password: str) -> CreateResult:
        """
        Adds a new account.
        Never raises: a taken username is DUPLICATE, any other error FAILURE.
        """
        try:
            conn = self._require_conn()
            stored = self.scheme.hash(password)
            async with self._write_lock:
                try:
                    await conn.execute(
                        "INSERT INTO users (username, password) VALUES (?, ?)",
                        (username, stored)
                    )
                    await conn.commit()
                except aiosqlite.Error:
                    await conn.rollback()
                    raise
        except aiosqlite.IntegrityError:
            # Raised when the username is not unique.
            logger.debug("User '%s' already exists.", username)
            return CreateResult.DUPLICATE
        except (aiosqlite.Error, StoreError) as e:
            logger.error("Could not create account '%s': %s", username, e)
            return CreateResult.FAILURE
        return CreateResult.SUCCESS

    async def get_account(self, username: str) -> Optional[Account]:
        row = await self._fetchone(
            "SELECT username, password, online FROM users WHERE username = ?",
            (username,)
        )
        if row is None:
            return None
        return Account(row["username"], row["password"], bool(row["online"]))

    async def verify_credentials(self, username: str, password: str) -> VerifyResult:
        row = await self._fetchone(
            "SELECT password FROM users WHERE username = ?",
            (username,)
        )
        if row is None:
            return VerifyResult.NOT_FOUND
        if self.scheme.check(password, row["password"]):
            return VerifyResult.MATCH
        return VerifyResult.MISMATCH

    async def set_online(self, username: str, online: bool) -> None:
        await self._write(
            "UPDATE users SET online = ? WHERE username = ?",
            (1 if online else 0, username)
        )

    async def reset_presence(self) -> None:
        """Marks every account offline. No session survives a restart."""
        await self._write("UPDATE users SET online = 0 WHERE online != 0", ())

    async def contacts(self, excluding: Optional[str] = None) -> List[Contact]:
        """All accounts except ``excluding``, with their stored online flag."""
        if excluding is None:
            rows = await self._fetchall("SELECT username, online FROM users ORDER BY username", ())
        else:
            rows = await self._fetchall(
                "SELECT username, online FROM users WHERE username != ? ORDER BY username",
                (excluding,)
            )
        return [Contact(row["username"], bool(row["online"])) for row in rows]

    # --- Messages ---

    async def append_message(self, sender: str, receiver: str, content: str) -> StoredMessage:
        """
        Appends a message to the log. The store assigns the timestamp.
        Raises UnknownAccountError if either party has no account.
        """
        conn = self._require_conn()
        async with self._write_lock:
            try:
                ids = {}
                for name in (sender, receiver):
                    cursor = await conn.execute("SELECT id FROM users WHERE username = ?", (name,))
                    row = await cursor.fetchone()
                    if row is None:
                        raise UnknownAccountError(f"no account named {name!r}")
                    ids[name] = row["id"]

                cursor = await conn.execute(
                    "INSERT INTO messages (sender_id, receiver_id, message) VALUES (?, ?, ?)",
                    (ids[sender], ids[receiver], content)
                )
                message_id = cursor.lastrowid
                cursor = await conn.execute("SELECT timestamp FROM messages WHERE id = ?", (message_id,))
                row = await cursor.fetchone()
                await conn.commit()
            except aiosqlite.Error as e:
                await conn.rollback()
                raise StoreError(f"could not store message: {e}") from e

        logger.debug("Stored message %s from %s to %s", message_id, sender, receiver)
        return StoredMessage(sender, receiver, content, row["timestamp"])

    async def history(self, user_a: str, user_b: str) -> List[StoredMessage]:
        """Every message between the two users, oldest first."""
        rows = await self._fetchall("""
            SELECT u1.username AS sender, u2.username AS receiver, m.message, m.timestamp
            FROM messages m
            JOIN users u1 ON m.sender_id = u1.id
            JOIN users u2 ON m.receiver_id = u2.id
            WHERE (u1.username = ? AND u2.username = ?)
               OR (u1.username = ? AND u2.username = ?)
            ORDER BY m.timestamp, m.id
        """, (user_a, user_b, user_b, user_a))
        return [
            StoredMessage(row["sender"], row["receiver"], row["message"], row["timestamp"])
            for row in rows
        ]

    # --- Helpers ---

    async def _fetchone(self, sql: str, params: tuple) -> Optional[aiosqlite.Row]:
        conn = self._require_conn()
        try:
            cursor = await conn.execute(sql, params)
            return await cursor.fetchone()
        except aiosqlite.Error as e:
            raise StoreError(str(e)) from e

    async def _fetchall(self, sql: str, params: tuple) -> List[aiosqlite.Row]:
        conn = self._require_conn()
        try:
            cursor = await conn.execute(sql, params)
            return list(await cursor.fetchall())
        except aiosqlite.Error as e:
            raise StoreError(str(e)) from e

    async def _write(self, sql: str, params: tuple) -> None:
        conn = self._require_conn()
        async with self._write_lock:
            try:
                await conn.execute(sql, params)
                await conn.commit()
            except aiosqlite.Error as e:
                await conn.rollback()
                raise StoreError(str(e)) from e
