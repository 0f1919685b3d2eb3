"""Unit tests for the POP3 session state machine, driven line by line."""

from unittest.mock import Mock, call

import pytest

from mixproxy.errors import RepositoryError
from mixproxy.pop3.session import Pop3Session, SessionState
from mixproxy.repository import AssembledMessage, MessageRepository

USERNAME = "proxyuser"
PASSWORD = "12345"


@pytest.fixture
def repository(two_messages):
    repo = Mock(spec=MessageRepository)
    repo.list_assembled_messages.return_value = two_messages
    return repo


@pytest.fixture
def session(repository):
    return Pop3Session(USERNAME, PASSWORD, repository, peer="test")


def send(session, line):
    return session.handle_line(line.encode("ascii") + b"\r\n")


def login(session):
    assert send(session, f"USER {USERNAME}").startswith(b"+OK")
    assert send(session, f"PASS {PASSWORD}").startswith(b"+OK")


class TestAuthorization:
    """USER/PASS transitions."""

    def test_greeting(self, session):
        assert session.greeting().startswith(b"+OK")
        assert session.greeting().endswith(b"\r\n")

    def test_successful_login(self, session, repository):
        assert session.state is SessionState.UNAUTHENTICATED
        send(session, f"USER {USERNAME}")
        assert session.state is SessionState.AUTHENTICATING
        reply = send(session, f"PASS {PASSWORD}")
        assert reply == b"+OK maildrop has 2 messages (12 octets)\r\n"
        assert session.state is SessionState.TRANSACTION
        repository.list_assembled_messages.assert_called_once_with()

    def test_wrong_password_returns_to_unauthenticated(self, session, repository):
        send(session, f"USER {USERNAME}")
        reply = send(session, "PASS wrong")
        assert reply.startswith(b"-ERR")
        assert session.state is SessionState.UNAUTHENTICATED
        for command in ("STAT", "LIST", "RETR 1", "UIDL", "DELE 1"):
            assert send(session, command).startswith(b"-ERR")
        repository.list_assembled_messages.assert_not_called()

    def test_retry_after_failure(self, session):
        send(session, f"USER {USERNAME}")
        send(session, "PASS wrong")
        login(session)
        assert session.state is SessionState.TRANSACTION

    def test_wrong_username(self, session):
        send(session, "USER mallory")
        assert send(session, f"PASS {PASSWORD}").startswith(b"-ERR")
        assert session.state is SessionState.UNAUTHENTICATED

    def test_password_may_contain_spaces(self, repository):
        session = Pop3Session(USERNAME, "correct horse battery", repository)
        send(session, f"USER {USERNAME}")
        assert send(session, "PASS correct horse battery").startswith(b"+OK")

    def test_pass_before_user(self, session):
        assert send(session, f"PASS {PASSWORD}").startswith(b"-ERR")
        assert session.state is SessionState.UNAUTHENTICATED

    def test_user_twice_is_out_of_order(self, session):
        send(session, f"USER {USERNAME}")
        assert send(session, "USER other").startswith(b"-ERR")
        assert session.state is SessionState.AUTHENTICATING

    def test_user_without_name(self, session):
        assert send(session, "USER").startswith(b"-ERR")
        assert session.state is SessionState.UNAUTHENTICATED

    def test_repository_failure_at_login(self, session, repository):
        repository.list_assembled_messages.side_effect = RepositoryError("db locked")
        send(session, f"USER {USERNAME}")
        assert send(session, f"PASS {PASSWORD}").startswith(b"-ERR")
        assert session.state is SessionState.UNAUTHENTICATED

    def test_quit_before_login_never_touches_repository(self, session, repository):
        assert send(session, "QUIT").startswith(b"+OK")
        assert session.state is SessionState.CLOSED
        repository.list_assembled_messages.assert_not_called()
        repository.delete_assembled_message.assert_not_called()


class TestCommandParsing:
    """Unknown, malformed and case-mismatched commands."""

    @pytest.mark.parametrize("line", ["", "HELO", "stat", "user proxyuser", "RETR"])
    def test_errors_leave_state_unchanged(self, session, line):
        assert send(session, line).startswith(b"-ERR")
        assert session.state is SessionState.UNAUTHENTICATED

    def test_non_ascii_line(self, session):
        assert session.handle_line("USER pröxy\r\n".encode("utf-8")).startswith(b"-ERR")

    def test_commands_after_close_rejected(self, session):
        login(session)
        send(session, "QUIT")
        assert send(session, "STAT").startswith(b"-ERR")


class TestTransaction:
    """STAT/LIST/UIDL/RETR/DELE against the snapshot."""

    def test_stat(self, session):
        login(session)
        assert send(session, "STAT") == b"+OK 2 12\r\n"

    def test_list(self, session):
        login(session)
        assert send(session, "LIST") == b"+OK 2 messages (12 octets)\r\n1 7\r\n2 5\r\n.\r\n"
        assert send(session, "LIST 2") == b"+OK 2 5\r\n"

    def test_uidl(self, session):
        login(session)
        assert send(session, "UIDL") == b"+OK\r\n1 1\r\n2 2\r\n.\r\n"
        assert send(session, "UIDL 1") == b"+OK 1 1\r\n"

    def test_retr_returns_exact_body(self, session):
        login(session)
        assert send(session, "RETR 1") == b"+OK 7 octets\r\nhello\r\n.\r\n"

    def test_retr_stuffs_leading_dots(self, repository):
        repository.list_assembled_messages.return_value = [AssembledMessage("d", b"x\r\n.y\r\n")]
        session = Pop3Session(USERNAME, PASSWORD, repository)
        login(session)
        assert send(session, "RETR 1") == b"+OK 7 octets\r\nx\r\n..y\r\n.\r\n"

    @pytest.mark.parametrize("command", ["RETR 3", "RETR 0", "LIST 9", "UIDL 3", "DELE 3", "RETR x", "RETR 1 2"])
    def test_bad_message_numbers(self, session, command):
        login(session)
        assert send(session, command).startswith(b"-ERR")
        assert session.state is SessionState.TRANSACTION

    def test_dele_hides_message_until_quit(self, session, repository):
        login(session)
        assert send(session, "DELE 1") == b"+OK message 1 deleted\r\n"
        assert send(session, "STAT") == b"+OK 1 5\r\n"
        assert send(session, "LIST") == b"+OK 1 messages (5 octets)\r\n2 5\r\n.\r\n"
        assert send(session, "UIDL") == b"+OK\r\n2 2\r\n.\r\n"
        for command in ("RETR 1", "LIST 1", "UIDL 1", "DELE 1"):
            assert send(session, command).startswith(b"-ERR")
        repository.delete_assembled_message.assert_not_called()

    def test_snapshot_not_requeried(self, session, repository, two_messages):
        login(session)
        repository.list_assembled_messages.return_value = []
        assert send(session, "STAT") == b"+OK 2 12\r\n"
        assert send(session, "RETR 2").startswith(b"+OK 5 octets")
        repository.list_assembled_messages.assert_called_once_with()

    def test_noop_and_rset(self, session, repository):
        login(session)
        assert send(session, "NOOP") == b"+OK\r\n"
        send(session, "DELE 2")
        assert send(session, "RSET") == b"+OK maildrop has 2 messages (12 octets)\r\n"
        send(session, "QUIT")
        repository.delete_assembled_message.assert_not_called()


class TestUpdate:
    """QUIT commits marks; anything else aborts."""

    def test_quit_without_dele_deletes_nothing(self, session, repository):
        login(session)
        assert send(session, "QUIT").startswith(b"+OK")
        assert session.state is SessionState.CLOSED
        repository.delete_assembled_message.assert_not_called()

    def test_dele_then_quit_deletes_only_that_message(self, session, repository):
        login(session)
        send(session, "DELE 1")
        send(session, "QUIT")
        repository.delete_assembled_message.assert_called_once_with("1")

    def test_commit_in_message_order(self, repository):
        repository.list_assembled_messages.return_value = [
            AssembledMessage(f"uuid-{i}", b"m\r\n") for i in range(1, 4)
        ]
        session = Pop3Session(USERNAME, PASSWORD, repository)
        login(session)
        send(session, "DELE 3")
        send(session, "DELE 1")
        send(session, "QUIT")
        assert repository.delete_assembled_message.call_args_list == [call("uuid-1"), call("uuid-3")]

    def test_commit_failure_still_closes_without_retry(self, session, repository):
        repository.delete_assembled_message.side_effect = [RepositoryError("gone"), None]
        login(session)
        send(session, "DELE 1")
        send(session, "DELE 2")
        reply = send(session, "QUIT")
        assert reply.startswith(b"-ERR")
        assert session.state is SessionState.CLOSED
        assert repository.delete_assembled_message.call_args_list == [call("1"), call("2")]

    def test_abort_discards_marks(self, session, repository):
        login(session)
        send(session, "DELE 1")
        session.abort()
        assert session.state is SessionState.CLOSED
        repository.delete_assembled_message.assert_not_called()
