"""
SMTP ingress for outgoing mail.

Just enough of SMTP for a mail client to hand over a message: every command
gets a positive reply, DATA collects the body, and the body goes to
``on_message`` for the mix-network side to pick up. No relaying happens here.
"""
from __future__ import annotations

import logging
import socket
from typing import Callable, Optional

from mixproxy.config import DEFAULT_HOST, DEFAULT_IDLE_TIMEOUT
from mixproxy.pop3.mailbox import CRLF, dot_unstuff
from mixproxy.server import ThreadedServer

logger = logging.getLogger(__name__)

MAX_LINE = 1000          # RFC 5321 text line limit incl. CRLF


class SmtpServer(ThreadedServer):
    name = "smtp"

    def __init__(
        self,
        port: int,
        host: str = DEFAULT_HOST,
        on_message: Optional[Callable[[bytes], None]] = None,
        idle_timeout: Optional[float] = DEFAULT_IDLE_TIMEOUT,
    ):
        super().__init__(host, port, idle_timeout)
        self.on_message = on_message

    def handle_client(self, conn: socket.socket, addr):
        rfile = conn.makefile("rb")
        try:
            self._send(conn, "220 Hello there")
            while True:
                raw = rfile.readline(MAX_LINE + 1)
                if not raw:
                    break
                command = raw.rstrip(b"\r\n").decode("ascii", errors="replace")
                logger.debug("%s:%d C: %s", addr[0], addr[1], command)

                reply = self.respond_to_command(command)
                if reply.startswith("354"):
                    self._send(conn, reply)
                    body = self._read_data(rfile)
                    if body is None:
                        break
                    self._deliver(body)
                    reply = "250 ok"
                self._send(conn, reply)
                if reply.startswith("221"):
                    break
        except socket.timeout:
            logger.info("%s:%d idle too long, closing", addr[0], addr[1])
        finally:
            rfile.close()

    @staticmethod
    def respond_to_command(command: str) -> str:
        keyword = command.split(" ")[0].upper()
        if keyword in ("EHLO", "HELO"):
            return "250 No extensions here"
        if keyword == "DATA":
            return "354 End data with <CR><LF>.<CR><LF>"
        if keyword == "QUIT":
            return "221 Bye"
        return "250 ok"

    @staticmethod
    def _read_data(rfile) -> Optional[bytes]:
        """Read lines up to the lone '.' and undo dot-stuffing. None if the client vanished."""
        lines = []
        # an overlong line arrives in several chunks; only a chunk that
        # begins a line can be the terminator
        at_line_start = True
        while True:
            chunk = rfile.readline(MAX_LINE + 1)
            if not chunk:
                return None
            if at_line_start and chunk in (b"." + CRLF, b".\n"):
                break
            lines.append(chunk)
            at_line_start = chunk.endswith(b"\n")
        return dot_unstuff(b"".join(lines))

    def _deliver(self, body: bytes):
        logger.info("Accepted message of %d bytes", len(body))
        if self.on_message is not None:
            self.on_message(body)

    @staticmethod
    def _send(conn: socket.socket, reply: str):
        conn.sendall(reply.encode("ascii") + CRLF)
