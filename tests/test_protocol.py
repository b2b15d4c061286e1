from relay_server import protocol
from relay_server.models import Contact, StoredMessage


def test_parse_auth_request_login_and_register():
    assert protocol.parse_auth_request("LOGIN:alice:secret") == protocol.AuthRequest("LOGIN", "alice", "secret")
    assert protocol.parse_auth_request("REGISTER:bob:pw") == protocol.AuthRequest("REGISTER", "bob", "pw")


def test_parse_auth_request_password_keeps_colons():
    request = protocol.parse_auth_request("LOGIN:alice:a:b:c")
    assert request.password == "a:b:c"


def test_parse_auth_request_rejects_malformed_frames():
    for line in ("", "LOGIN", "LOGIN:alice", "HELLO:alice:pw", "LOGIN::pw", "GET_CONTACTS"):
        assert protocol.parse_auth_request(line) is None, line


def test_parse_command_private_message_text_may_contain_colons():
    command = protocol.parse_command("PRIVATE:bob:meet at 10:30")
    assert command == protocol.SendPrivate(recipient="bob", text="meet at 10:30")


def test_parse_command_recognized_frames():
    assert protocol.parse_command("GET_CONTACTS") == protocol.GetContacts()
    assert protocol.parse_command("GET_HISTORY:bob") == protocol.GetHistory(other="bob")


def test_parse_command_ignores_unknown_and_malformed_frames():
    for line in ("", "HELLO", "PRIVATE:bob", "PRIVATE::hi", "GET_HISTORY:", "GET_CONTACTS:x", "get_contacts"):
        assert protocol.parse_command(line) is None, line


def test_clean_line_strips_terminators():
    assert protocol.clean_line(b"GET_CONTACTS\r\n") == "GET_CONTACTS"
    assert protocol.clean_line("LOGIN:a:b\n") == "LOGIN:a:b"


def test_contacts_frame_terminates_every_entry():
    frame = protocol.contacts_frame([Contact("bob", True), Contact("carol", False)])
    assert frame == "CONTACTS:bob,1;carol,0;"
    assert protocol.contacts_frame([]) == "CONTACTS:"


def test_online_update_uses_contacts_format():
    assert protocol.online_update_frame([Contact("bob", False)]) == "ONLINE_UPDATE:bob,0;"


def test_private_msg_frame():
    assert protocol.private_msg_frame("alice", "hi: there") == "PRIVATE_MSG:alice:hi: there"


def test_history_frame_and_client_parsing():
    messages = [
        StoredMessage("alice", "bob", "hi", "2024-05-01 10:00:00.000"),
        StoredMessage("bob", "alice", "see you at 5:30", "2024-05-01 10:00:01.250"),
    ]
    frame = protocol.history_frame(messages)
    assert frame == (
        "HISTORY:alice:bob:hi:2024-05-01 10:00:00.000;"
        "bob:alice:see you at 5:30:2024-05-01 10:00:01.250;"
    )

    decoded = protocol.parse_server_frame(frame)
    assert decoded.kind == protocol.HISTORY
    assert decoded.data == messages


def test_parse_server_frame_kinds():
    assert protocol.parse_server_frame("AUTH_FAILED").kind == protocol.AUTH_FAILED

    contacts = protocol.parse_server_frame("ONLINE_UPDATE:bob,1;carol,0;")
    assert contacts.kind == protocol.ONLINE_UPDATE
    assert contacts.data == [Contact("bob", True), Contact("carol", False)]

    incoming = protocol.parse_server_frame("PRIVATE_MSG:alice:a:b")
    assert incoming.data == protocol.IncomingMessage("alice", "a:b")

    assert protocol.parse_server_frame("HISTORY:").data == []
