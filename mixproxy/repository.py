"""
Message store contract consumed by the POP3 front end.

The proxy never owns storage. Messages are reassembled from mix-network
packets elsewhere and handed over through a ``MessageRepository``. Two small
adapters live here: an in-memory one and a directory of ``.eml`` files.
"""
from __future__ import annotations

import logging
import os
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Sequence

from mixproxy.crypto.end_to_end import decode_public_key
from mixproxy.errors import RepositoryError

logger = logging.getLogger(__name__)

EML_SUFFIX = ".eml"


@dataclass(frozen=True)
class AssembledMessage:
    uuid: str
    message_body: bytes

    @property
    def size(self) -> int:
        return len(self.message_body)


@dataclass(frozen=True)
class MixNode:
    """A mix node as published in the directory: its port and base64 DER public key."""
    port: int
    encoded_public_key: str

    def public_key(self):
        return decode_public_key(self.encoded_public_key)


class MessageRepository(ABC):

    @abstractmethod
    def list_assembled_messages(self) -> Sequence[AssembledMessage]:
        """Return every assembled message, in delivery order."""

    @abstractmethod
    def delete_assembled_message(self, uuid: str) -> None:
        """Remove one message by uuid."""


class InMemoryMessageRepository(MessageRepository):

    def __init__(self, messages: Iterable[AssembledMessage] = ()):
        self._lock = threading.Lock()
        self._messages: List[AssembledMessage] = list(messages)

    def add(self, message: AssembledMessage):
        with self._lock:
            self._messages.append(message)

    def list_assembled_messages(self) -> List[AssembledMessage]:
        with self._lock:
            return list(self._messages)

    def delete_assembled_message(self, uuid: str) -> None:
        with self._lock:
            remaining = [m for m in self._messages if m.uuid != uuid]
            if len(remaining) == len(self._messages):
                raise RepositoryError(f"no message with uuid {uuid}")
            self._messages = remaining


class DirectoryMessageRepository(MessageRepository):
    """One ``<uuid>.eml`` file per message, ordered by file name."""

    def __init__(self, root):
        self.root = Path(root)

    def list_assembled_messages(self) -> List[AssembledMessage]:
        if not self.root.is_dir():
            raise RepositoryError(f"mailbox directory {self.root} does not exist")
        messages = []
        for path in sorted(p for p in self.root.glob("*" + EML_SUFFIX) if p.is_file()):
            try:
                body = path.read_bytes()
            except FileNotFoundError:
                # removed by a concurrent session between glob and read
                continue
            except OSError as e:
                raise RepositoryError(f"cannot read {path.name}: {e}") from e
            messages.append(AssembledMessage(uuid=path.stem, message_body=body))
        return messages

    def delete_assembled_message(self, uuid: str) -> None:
        if os.sep in uuid or (os.altsep and os.altsep in uuid) or uuid in ("", ".", ".."):
            raise RepositoryError(f"invalid message uuid {uuid!r}")
        path = self.root / (uuid + EML_SUFFIX)
        try:
            path.unlink()
        except OSError as e:
            raise RepositoryError(f"cannot delete {path.name}: {e}") from e
        logger.debug("Removed %s", path)
