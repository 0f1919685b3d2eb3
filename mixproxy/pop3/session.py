"""
POP3 session state machine.

One ``Pop3Session`` serves one connection. It authenticates the single
configured user, takes a snapshot of the repository at login and answers
every later command from that snapshot. DELE only marks; the repository is
touched again only when QUIT commits the marks.
"""
from __future__ import annotations

import logging
import socket
from enum import Enum
from typing import Callable, Dict, FrozenSet, List, Optional, Tuple

from mixproxy.errors import AuthenticationFailure, ProtocolError, ProxyError, RepositoryError
from mixproxy.pop3.mailbox import CRLF, TERMINATOR, MailboxSnapshot, multiline_payload
from mixproxy.repository import MessageRepository

logger = logging.getLogger(__name__)

MAX_LINE = 512


class SessionState(Enum):
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATING = "authenticating"
    TRANSACTION = "transaction"
    CLOSED = "closed"


_PRE_AUTH = frozenset({SessionState.UNAUTHENTICATED, SessionState.AUTHENTICATING})
_TRANSACTION = frozenset({SessionState.TRANSACTION})
_OPEN = _PRE_AUTH | _TRANSACTION


def ok(text: str = "") -> bytes:
    return (f"+OK {text}" if text else "+OK").encode("ascii", errors="replace") + CRLF


def err(text: str) -> bytes:
    return f"-ERR {text}".encode("ascii", errors="replace") + CRLF


class Pop3Session:

    def __init__(self, username: str, password: str, repository: MessageRepository, peer=None):
        self._username = username
        self._password = password
        self.repository = repository
        self.peer = peer
        self.state = SessionState.UNAUTHENTICATED
        self.snapshot: Optional[MailboxSnapshot] = None
        self._candidate: Optional[str] = None

        self._commands: Dict[str, Tuple[Callable[[str], bytes], FrozenSet[SessionState]]] = {
            "USER": (self._cmd_user, frozenset({SessionState.UNAUTHENTICATED})),
            "PASS": (self._cmd_pass, frozenset({SessionState.AUTHENTICATING})),
            "STAT": (self._cmd_stat, _TRANSACTION),
            "LIST": (self._cmd_list, _TRANSACTION),
            "UIDL": (self._cmd_uidl, _TRANSACTION),
            "RETR": (self._cmd_retr, _TRANSACTION),
            "DELE": (self._cmd_dele, _TRANSACTION),
            "NOOP": (self._cmd_noop, _TRANSACTION),
            "RSET": (self._cmd_rset, _TRANSACTION),
            "QUIT": (self._cmd_quit, _OPEN),
        }

    @property
    def closed(self) -> bool:
        return self.state is SessionState.CLOSED

    def greeting(self) -> bytes:
        return ok("mixproxy POP3 server ready")

    # ===== Dispatch =====

    def handle_line(self, raw: bytes) -> bytes:
        """Process one request line (with or without CRLF) and return the full reply."""
        try:
            line = raw.rstrip(b"\r\n").decode("ascii")
        except UnicodeDecodeError:
            return err("command line must be ASCII")

        keyword, _, rest = line.partition(" ")
        logger.debug("%s C: %s", self.peer, keyword)
        try:
            return self._dispatch(keyword, rest)
        except ProxyError as e:
            return err(str(e))

    def _dispatch(self, keyword: str, rest: str) -> bytes:
        if self.closed:
            raise ProtocolError("session closed")
        if not keyword:
            raise ProtocolError("empty command")
        entry = self._commands.get(keyword)
        if entry is None:
            raise ProtocolError(f"unknown command {keyword[:16]!r}")
        handler, states = entry
        if self.state not in states:
            if self.state in _PRE_AUTH and states == _TRANSACTION:
                raise ProtocolError("authenticate first (USER/PASS)")
            raise ProtocolError(f"{keyword} not allowed in {self.state.value} state")
        return handler(rest)

    # ===== AUTHORIZATION =====

    def _cmd_user(self, rest: str) -> bytes:
        args = rest.split()
        if len(args) != 1:
            raise ProtocolError("syntax: USER <name>")
        self._candidate = args[0]
        self.state = SessionState.AUTHENTICATING
        return ok("send PASS")

    def _cmd_pass(self, rest: str) -> bytes:
        if not rest:
            raise ProtocolError("syntax: PASS <secret>")
        candidate, self._candidate = self._candidate, None
        if candidate != self._username or rest != self._password:
            self.state = SessionState.UNAUTHENTICATED
            logger.warning("Authentication failed for %r from %s", candidate, self.peer)
            raise AuthenticationFailure("invalid username or password")

        try:
            messages = self.repository.list_assembled_messages()
        except Exception:
            self.state = SessionState.UNAUTHENTICATED
            logger.exception("Could not read the maildrop for %s", self.peer)
            raise RepositoryError("unable to open maildrop") from None

        self.snapshot = MailboxSnapshot(messages)
        self.state = SessionState.TRANSACTION
        count, octets = self.snapshot.stat()
        logger.info("%s logged in, %d messages (%d octets)", self.peer, count, octets)
        return ok(f"maildrop has {count} messages ({octets} octets)")

    # ===== TRANSACTION =====

    def _cmd_stat(self, rest: str) -> bytes:
        if rest.strip():
            raise ProtocolError("STAT takes no arguments")
        count, octets = self.snapshot.stat()
        return ok(f"{count} {octets}")

    def _cmd_list(self, rest: str) -> bytes:
        args = rest.split()
        if len(args) > 1:
            raise ProtocolError("syntax: LIST [msg]")
        if args:
            number, message = self.snapshot.get_arg(args[0])
            return ok(f"{number} {message.size}")
        count, octets = self.snapshot.stat()
        lines = [f"{number} {message.size}" for number, message in self.snapshot.live()]
        return self._multiline(f"{count} messages ({octets} octets)", lines)

    def _cmd_uidl(self, rest: str) -> bytes:
        args = rest.split()
        if len(args) > 1:
            raise ProtocolError("syntax: UIDL [msg]")
        if args:
            number, message = self.snapshot.get_arg(args[0])
            return ok(f"{number} {message.uuid}")
        lines = [f"{number} {message.uuid}" for number, message in self.snapshot.live()]
        return self._multiline("", lines)

    def _cmd_retr(self, rest: str) -> bytes:
        args = rest.split()
        if len(args) != 1:
            raise ProtocolError("syntax: RETR <msg>")
        _, message = self.snapshot.get_arg(args[0])
        return ok(f"{message.size} octets") + multiline_payload(message.message_body)

    def _cmd_dele(self, rest: str) -> bytes:
        args = rest.split()
        if len(args) != 1:
            raise ProtocolError("syntax: DELE <msg>")
        number, _ = self.snapshot.get_arg(args[0])
        self.snapshot.mark_deleted(number)
        return ok(f"message {number} deleted")

    def _cmd_noop(self, rest: str) -> bytes:
        return ok()

    def _cmd_rset(self, rest: str) -> bytes:
        self.snapshot.reset()
        count, octets = self.snapshot.stat()
        return ok(f"maildrop has {count} messages ({octets} octets)")

    # ===== UPDATE =====

    def _cmd_quit(self, rest: str) -> bytes:
        if self.state is not SessionState.TRANSACTION:
            self.state = SessionState.CLOSED
            return ok("bye")

        failures = self._commit()
        self.state = SessionState.CLOSED
        if failures:
            return err(f"{failures} messages could not be removed")
        return ok("mixproxy POP3 server signing off")

    def _commit(self) -> int:
        """Delete every marked message in message order. No retries; returns the failure count."""
        failures = 0
        for number, message in self.snapshot.marked_for_deletion():
            try:
                self.repository.delete_assembled_message(message.uuid)
            except Exception:
                failures += 1
                logger.exception("Failed to delete message %d (%s) on QUIT", number, message.uuid)
            else:
                logger.info("Deleted message %d (%s)", number, message.uuid)
        return failures

    def abort(self):
        """Close without committing, as on disconnect, timeout or server shutdown."""
        if self.closed:
            return
        pending = len(self.snapshot.marked_for_deletion()) if self.snapshot else 0
        if pending:
            logger.warning("%s left without QUIT, discarding %d pending deletions", self.peer, pending)
        self.state = SessionState.CLOSED

    # ===== IO =====

    @staticmethod
    def _multiline(status: str, lines: List[str]) -> bytes:
        body = "".join(line + "\r\n" for line in lines).encode("ascii", errors="replace")
        return ok(status) + body + TERMINATOR

    def serve(self, conn: socket.socket):
        """Run the command loop on a connected socket until QUIT, EOF or idle timeout."""
        rfile = conn.makefile("rb")
        try:
            conn.sendall(self.greeting())
            while not self.closed:
                try:
                    raw = rfile.readline(MAX_LINE + 1)
                except socket.timeout:
                    logger.info("%s idle too long, closing", self.peer)
                    conn.sendall(err("autologout, idle timer expired"))
                    break
                if not raw:
                    break
                if len(raw) > MAX_LINE and not raw.endswith(b"\n"):
                    self._discard_rest_of_line(rfile)
                    conn.sendall(err("command line too long"))
                    continue
                conn.sendall(self.handle_line(raw))
        finally:
            rfile.close()
            self.abort()

    @staticmethod
    def _discard_rest_of_line(rfile):
        while True:
            chunk = rfile.readline(MAX_LINE + 1)
            if not chunk or chunk.endswith(b"\n"):
                return
