"""
Threaded TCP acceptor shared by the POP3 and SMTP front ends.

One daemon thread runs the accept loop; every accepted connection gets its
own daemon thread. ``stop()`` closes the listening socket and then shuts down
every open connection, so sessions still in progress end as if the client had
disconnected.
"""
from __future__ import annotations

import logging
import socket
import threading
from abc import ABC, abstractmethod
from typing import Optional, Set, Tuple

from mixproxy.errors import BindError, ServerStateError

logger = logging.getLogger(__name__)

ACCEPT_POLL_SECONDS = 0.2
BACKLOG = 16


class ThreadedServer(ABC):
    name = "server"

    def __init__(self, host: str, port: int, idle_timeout: Optional[float] = None):
        self.host = host
        self.port = port
        self.idle_timeout = idle_timeout
        self._sock: Optional[socket.socket] = None
        self._accept_thread: Optional[threading.Thread] = None
        self._stopping = threading.Event()
        self._lock = threading.Lock()
        self._connections: Set[socket.socket] = set()
        self._workers: Set[threading.Thread] = set()
        self._started = False
        self._bound: Optional[Tuple[str, int]] = None

    @property
    def address(self) -> Tuple[str, int]:
        return self._bound or (self.host, self.port)

    @property
    def running(self) -> bool:
        return self._accept_thread is not None and self._accept_thread.is_alive()

    @property
    def active_connections(self) -> int:
        with self._lock:
            return len(self._connections)

    def start(self):
        """Bind and start accepting in the background. Bind failures raise ``BindError`` here."""
        if self._started:
            raise ServerStateError(f"{self.name} already started")

        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            sock.bind((self.host, self.port))
            sock.listen(BACKLOG)
        except OSError as e:
            sock.close()
            raise BindError(f"{self.name} cannot listen on {self.host}:{self.port}: {e}") from e
        sock.settimeout(ACCEPT_POLL_SECONDS)

        self._sock = sock
        self._bound = sock.getsockname()[:2]
        self._started = True
        self._accept_thread = threading.Thread(
            target=self._accept_loop, name=f"{self.name}-accept", daemon=True
        )
        self._accept_thread.start()
        host, port = self.address
        logger.info("%s listening on %s:%d", self.name, host, port)

    def stop(self, timeout: float = 5.0):
        """Stop accepting, release the socket and force-close in-flight sessions. Idempotent."""
        if not self._started or self._stopping.is_set():
            return
        self._stopping.set()
        if self._accept_thread is not None:
            self._accept_thread.join(timeout)

        with self._lock:
            connections = list(self._connections)
            workers = list(self._workers)
        for conn in connections:
            try:
                conn.shutdown(socket.SHUT_RDWR)
            except OSError:
                pass  # already gone
        for worker in workers:
            worker.join(timeout)
        logger.info("%s stopped", self.name)

    def _accept_loop(self):
        try:
            while not self._stopping.is_set():
                try:
                    conn, addr = self._sock.accept()
                except socket.timeout:
                    continue
                except OSError as e:
                    if not self._stopping.is_set():
                        logger.error("%s accept failed: %s", self.name, e)
                    break
                self._spawn(conn, addr)
        finally:
            self._sock.close()

    def _spawn(self, conn: socket.socket, addr):
        conn.settimeout(self.idle_timeout)
        worker = threading.Thread(
            target=self._run_connection, args=(conn, addr), name=f"{self.name}-{addr[1]}", daemon=True
        )
        with self._lock:
            self._connections.add(conn)
            self._workers.add(worker)
        worker.start()

    def _run_connection(self, conn: socket.socket, addr):
        logger.info("[+] Connection from %s:%d", addr[0], addr[1])
        try:
            self.handle_client(conn, addr)
        except OSError as e:
            logger.warning("I/O error with %s:%d: %s", addr[0], addr[1], e)
        except Exception:
            logger.exception("Session with %s:%d failed", addr[0], addr[1])
        finally:
            try:
                conn.close()
            finally:
                with self._lock:
                    self._connections.discard(conn)
                    self._workers.discard(threading.current_thread())
            logger.info("[-] Connection closed for %s:%d", addr[0], addr[1])

    @abstractmethod
    def handle_client(self, conn: socket.socket, addr):
        """Serve one accepted connection. The caller closes ``conn`` afterwards."""
