# relay_server/errors.py


class StoreError(Exception):
    """Raised when the message store cannot complete an operation."""


class UnknownAccountError(StoreError):
    """A message referenced a username that has no account."""
