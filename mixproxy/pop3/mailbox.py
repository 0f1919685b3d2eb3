"""Frozen, numbered view of the maildrop a POP3 session works against."""
from __future__ import annotations

import re
from typing import Iterable, List, Set, Tuple

from mixproxy.errors import NotFoundError, ProtocolError
from mixproxy.repository import AssembledMessage

CRLF = b"\r\n"
TERMINATOR = b"." + CRLF

_LEADING_DOT = re.compile(rb"(^|\n)\.")
_STUFFED_DOT = re.compile(rb"(^|\n)\.\.")


def dot_stuff(body: bytes) -> bytes:
    """Prefix every line that starts with '.' with a second '.'."""
    return _LEADING_DOT.sub(rb"\1..", body)


def dot_unstuff(data: bytes) -> bytes:
    return _STUFFED_DOT.sub(rb"\1.", data)


def multiline_payload(body: bytes) -> bytes:
    """
    Byte-stuff a body for transmission and append the terminating dot line.

    A body already ending in a line break (CRLF or bare LF) goes out unchanged
    apart from stuffing; otherwise one CRLF is added so the terminator sits on
    its own line.
    """
    stuffed = dot_stuff(body)
    if stuffed and not stuffed.endswith(b"\n"):
        stuffed += CRLF
    return stuffed + TERMINATOR


class MailboxSnapshot:
    """
    Messages numbered 1..N at login. Numbers never shift: a message marked
    deleted keeps its slot but can no longer be listed or retrieved.
    """

    def __init__(self, messages: Iterable[AssembledMessage]):
        self._messages: Tuple[AssembledMessage, ...] = tuple(messages)
        self._deleted: Set[int] = set()

    def __len__(self):
        return len(self._messages)

    def get(self, number: int) -> AssembledMessage:
        if not 1 <= number <= len(self._messages):
            raise NotFoundError(f"no such message, only {len(self._messages)} messages in maildrop")
        if number in self._deleted:
            raise NotFoundError(f"message {number} already deleted")
        return self._messages[number - 1]

    def get_arg(self, arg: str) -> Tuple[int, AssembledMessage]:
        number = parse_message_number(arg)
        return number, self.get(number)

    def mark_deleted(self, number: int):
        self.get(number)
        self._deleted.add(number)

    def reset(self):
        self._deleted.clear()

    def live(self) -> List[Tuple[int, AssembledMessage]]:
        return [(i, m) for i, m in enumerate(self._messages, start=1) if i not in self._deleted]

    def stat(self) -> Tuple[int, int]:
        live = self.live()
        return len(live), sum(m.size for _, m in live)

    def marked_for_deletion(self) -> List[Tuple[int, AssembledMessage]]:
        return [(i, self._messages[i - 1]) for i in sorted(self._deleted)]


def parse_message_number(arg: str) -> int:
    if not arg.isdigit() or not arg.isascii():
        raise ProtocolError(f"invalid message number {arg!r}")
    return int(arg)
