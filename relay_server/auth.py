# relay_server/auth.py

import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

import bcrypt

from .errors import StoreError
from .models import CreateResult, VerifyResult

if TYPE_CHECKING:
    from .db_async import Database

logger = logging.getLogger(__name__)


def hash_password(password: str) -> str:
    """
    Hashes a password using bcrypt.
    Returns the hashed password as a UTF-8 string suitable for storing in the DB.
    """
    password_bytes = password.encode('utf-8')
    salt = bcrypt.gensalt()
    hashed_bytes = bcrypt.hashpw(password_bytes, salt)
    return hashed_bytes.decode('utf-8')


def check_password(password: str, hashed_password: str) -> bool:
    """
    Checks if a plain-text password matches a stored hash.
    A stored value that is not a bcrypt hash never matches.
    """
    password_bytes = password.encode('utf-8')
    hashed_password_bytes = hashed_password.encode('utf-8')
    try:
        return bcrypt.checkpw(password_bytes, hashed_password_bytes)
    except ValueError:
        return False


class CredentialScheme(ABC):
    """
    How a password is turned into its stored form and checked against it.
    The store is the only caller; sessions never compare credentials.
    """
    name = "base"

    @abstractmethod
    def hash(self, password: str) -> str:
        raise NotImplementedError

    @abstractmethod
    def check(self, password: str, stored: str) -> bool:
        raise NotImplementedError


class PlainTextScheme(CredentialScheme):
    """Stores the password as given and compares it verbatim. Not secure."""
    name = "plain"

    def hash(self, password: str) -> str:
        return password

    def check(self, password: str, stored: str) -> bool:
        return password == stored


class BcryptScheme(CredentialScheme):
    name = "bcrypt"

    def hash(self, password: str) -> str:
        return hash_password(password)

    def check(self, password: str, stored: str) -> bool:
        return check_password(password, stored)


_SCHEMES = {
    PlainTextScheme.name: PlainTextScheme,
    BcryptScheme.name: BcryptScheme,
}


def get_scheme(name: str) -> CredentialScheme:
    """Instantiate the credential scheme registered under ``name``."""
    try:
        return _SCHEMES[name]()
    except KeyError:
        raise ValueError(f"Unknown password scheme: {name!r}") from None


class Authenticator:
    """
    Handles LOGIN and REGISTER requests against the message store.

    Any storage failure is reported as a failed attempt, so callers only ever
    see success or failure.
    """
    def __init__(self, db: "Database"):
        # Dependency injection of the Database instance
        self.db = db

    async def login(self, username: str, password: str) -> bool:
        """
        Returns True when ``username`` exists and ``password`` matches the
        stored credential.
        """
        try:
            result = await self.db.verify_credentials(username, password)
        except StoreError as e:
            logger.error("Authentication error for '%s': %s", username, e)
            return False

        if result is VerifyResult.MATCH:
            logger.info("Authentication successful for user '%s'.", username)
            return True
        if result is VerifyResult.NOT_FOUND:
            logger.info("Authentication failed: user '%s' not found.", username)
        else:
            logger.info("Authentication failed: invalid password for user '%s'.", username)
        return False

    async def register(self, username: str, password: str) -> bool:
        """Creates the account; False on duplicate username or store failure."""
        result = await self.db.create_account(username, password)
        if result is CreateResult.SUCCESS:
            logger.info("User '%s' registered successfully.", username)
            return True
        if result is CreateResult.DUPLICATE:
            logger.info("Registration failed: user '%s' already exists.", username)
        else:
            logger.error("Registration error for user '%s'.", username)
        return False
