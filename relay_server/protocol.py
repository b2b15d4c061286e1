# relay_server/protocol.py
"""
Line protocol spoken between relay clients and the server.

Every frame is one UTF-8 line terminated by ``\\n``. Fields are separated by
``:``; list payloads (contacts, history) are ``;``-terminated entries.
Field values must not contain the delimiters, except for the last field of
LOGIN/REGISTER/PRIVATE frames which may contain ``:``.
"""

from dataclasses import dataclass
from typing import Iterable, List, Optional, Union

from .models import Contact, StoredMessage

FIELD_SEP = ":"
ENTRY_SEP = ";"
PAIR_SEP = ","

# Client -> server
LOGIN = "LOGIN"
REGISTER = "REGISTER"
PRIVATE = "PRIVATE"
GET_CONTACTS = "GET_CONTACTS"
GET_HISTORY = "GET_HISTORY"

# Server -> client
AUTH_SUCCESS = "AUTH_SUCCESS"
AUTH_FAILED = "AUTH_FAILED"
REGISTER_SUCCESS = "REGISTER_SUCCESS"
REGISTER_FAILED = "REGISTER_FAILED"
CONTACTS = "CONTACTS"
ONLINE_UPDATE = "ONLINE_UPDATE"
PRIVATE_MSG = "PRIVATE_MSG"
HISTORY = "HISTORY"


@dataclass(frozen=True)
class AuthRequest:
    action: str  # LOGIN or REGISTER
    username: str
    password: str


@dataclass(frozen=True)
class SendPrivate:
    recipient: str
    text: str


@dataclass(frozen=True)
class GetContacts:
    pass


@dataclass(frozen=True)
class GetHistory:
    other: str


Command = Union[SendPrivate, GetContacts, GetHistory]


@dataclass(frozen=True)
class ServerFrame:
    """A decoded server line. ``data`` depends on ``kind``."""
    kind: str
    data: object = None


@dataclass(frozen=True)
class IncomingMessage:
    sender: str
    text: str


def clean_line(raw: Union[bytes, str]) -> str:
    """Decode a received line and strip its terminator."""
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8")
    return raw.rstrip("\r\n")


# --- Client frame parsing (server side) ---

def parse_auth_request(line: str) -> Optional[AuthRequest]:
    """
    Parse the first frame of a connection.
    Returns None for anything that is not a well-formed LOGIN/REGISTER frame.
    """
    parts = line.split(FIELD_SEP, 2)
    if len(parts) != 3:
        return None
    action, username, password = parts
    if action not in (LOGIN, REGISTER) or not username:
        return None
    return AuthRequest(action, username, password)


def parse_command(line: str) -> Optional[Command]:
    """
    Parse a post-authentication frame.
    Unknown or malformed frames yield None and are meant to be ignored.
    """
    if line == GET_CONTACTS:
        return GetContacts()

    if line.startswith(PRIVATE + FIELD_SEP):
        parts = line.split(FIELD_SEP, 2)
        if len(parts) != 3 or not parts[1]:
            return None
        return SendPrivate(recipient=parts[1], text=parts[2])

    if line.startswith(GET_HISTORY + FIELD_SEP):
        other = line.split(FIELD_SEP)[1]
        if not other:
            return None
        return GetHistory(other=other)

    return None


# --- Server frame formatting ---

def format_contacts(contacts: Iterable[Contact]) -> str:
    return "".join(
        f"{c.username}{PAIR_SEP}{1 if c.online else 0}{ENTRY_SEP}" for c in contacts
    )


def contacts_frame(contacts: Iterable[Contact]) -> str:
    return CONTACTS + FIELD_SEP + format_contacts(contacts)


def online_update_frame(contacts: Iterable[Contact]) -> str:
    return ONLINE_UPDATE + FIELD_SEP + format_contacts(contacts)


def private_msg_frame(sender: str, text: str) -> str:
    return FIELD_SEP.join((PRIVATE_MSG, sender, text))


def history_frame(messages: Iterable[StoredMessage]) -> str:
    body = "".join(
        FIELD_SEP.join((m.sender, m.receiver, m.content, m.timestamp)) + ENTRY_SEP
        for m in messages
    )
    return HISTORY + FIELD_SEP + body


# --- Client frame formatting ---

def auth_frame(action: str, username: str, password: str) -> str:
    return FIELD_SEP.join((action, username, password))


def private_frame(recipient: str, text: str) -> str:
    return FIELD_SEP.join((PRIVATE, recipient, text))


def history_request_frame(other: str) -> str:
    return GET_HISTORY + FIELD_SEP + other


# --- Server frame parsing (client side) ---

def parse_contacts(body: str) -> List[Contact]:
    contacts = []
    for entry in body.split(ENTRY_SEP):
        if not entry:
            continue
        name, _, flag = entry.partition(PAIR_SEP)
        contacts.append(Contact(username=name, online=flag == "1"))
    return contacts


def parse_history(body: str) -> List[StoredMessage]:
    messages = []
    for entry in body.split(ENTRY_SEP):
        parts = entry.split(FIELD_SEP, 2)
        if len(parts) != 3:
            continue
        sender, receiver, rest = parts
        # The timestamp itself holds two colons (HH:MM:SS).
        tail = rest.rsplit(FIELD_SEP, 3)
        if len(tail) != 4:
            continue
        messages.append(StoredMessage(
            sender=sender,
            receiver=receiver,
            content=tail[0],
            timestamp=FIELD_SEP.join(tail[1:]),
        ))
    return messages


def parse_server_frame(line: str) -> ServerFrame:
    if line in (AUTH_SUCCESS, AUTH_FAILED, REGISTER_SUCCESS, REGISTER_FAILED):
        return ServerFrame(line)

    kind, sep, body = line.partition(FIELD_SEP)
    if not sep:
        return ServerFrame(kind)
    if kind in (CONTACTS, ONLINE_UPDATE):
        return ServerFrame(kind, parse_contacts(body))
    if kind == HISTORY:
        return ServerFrame(kind, parse_history(body))
    if kind == PRIVATE_MSG:
        sender, _, text = body.partition(FIELD_SEP)
        return ServerFrame(kind, IncomingMessage(sender, text))
    return ServerFrame(kind, body)
