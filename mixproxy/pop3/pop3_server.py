"""POP3 front end: hands every accepted connection to its own Pop3Session."""
from __future__ import annotations

from typing import Optional

from mixproxy.config import DEFAULT_HOST, DEFAULT_IDLE_TIMEOUT
from mixproxy.pop3.session import Pop3Session
from mixproxy.repository import MessageRepository
from mixproxy.server import ThreadedServer


class Pop3Server(ThreadedServer):
    """
    Serves the single configured user's maildrop out of ``repository``.

    Sessions share only the credentials and the repository handle; each one
    takes its own snapshot at login.
    """

    name = "pop3"

    def __init__(
        self,
        port: int,
        username: str,
        password: str,
        repository: MessageRepository,
        host: str = DEFAULT_HOST,
        idle_timeout: Optional[float] = DEFAULT_IDLE_TIMEOUT,
    ):
        super().__init__(host, port, idle_timeout)
        self.username = username
        self.password = password
        self.repository = repository

    def handle_client(self, conn, addr):
        session = Pop3Session(self.username, self.password, self.repository, peer=f"{addr[0]}:{addr[1]}")
        session.serve(conn)
