# relay_server/models.py

from dataclasses import dataclass
from enum import Enum


class CreateResult(Enum):
    """Outcome of an account registration."""
    SUCCESS = "success"
    DUPLICATE = "duplicate"
    FAILURE = "failure"


class VerifyResult(Enum):
    """Outcome of a credential check."""
    MATCH = "match"
    MISMATCH = "mismatch"
    NOT_FOUND = "not_found"


class SessionState(Enum):
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATED = "authenticated"
    TERMINATED = "terminated"


@dataclass(frozen=True)
class Account:
    """
    A registered user.

    Attributes:
        username (str): Unique account name
        password (str): Stored credential, as written by the active scheme
        online (bool): Durable online flag
    """
    username: str
    password: str
    online: bool = False


@dataclass(frozen=True)
class StoredMessage:
    """
    One entry of the append-only message log.

    The timestamp is assigned by the store when the row is inserted,
    formatted as ``YYYY-MM-DD HH:MM:SS.SSS`` (UTC).
    """
    sender: str
    receiver: str
    content: str
    timestamp: str


@dataclass(frozen=True)
class Contact:
    """A username with its durable online flag, as listed to other users."""
    username: str
    online: bool
