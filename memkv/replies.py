"""Replies in the serialization protocol spoken to clients, and command errors."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

CRLF = b"\r\n"

CmdLine = List[bytes]

_WRONG_TYPE_MESSAGE = "WRONGTYPE Operation against a key holding the wrong kind of value"


def _encode(text: str) -> bytes:
    return text.encode("utf-8", "surrogateescape")


def _bulk(arg: Optional[bytes]) -> bytes:
    if arg is None:
        return b"$-1" + CRLF
    return b"$" + str(len(arg)).encode() + CRLF + bytes(arg) + CRLF


class Reply(ABC):
    """A value that can be sent back to a client."""

    @abstractmethod
    def to_bytes(self) -> bytes:
        """Serialize the reply to its wire form."""


@dataclass
class IntReply(Reply):
    """An integer reply."""

    code: int

    def to_bytes(self) -> bytes:
        return b":" + str(self.code).encode() + CRLF


@dataclass
class BulkReply(Reply):
    """A single binary-safe string."""

    arg: bytes

    def to_bytes(self) -> bytes:
        return _bulk(self.arg)


@dataclass
class NullBulkReply(Reply):
    """The absent string."""

    def to_bytes(self) -> bytes:
        return _bulk(None)


@dataclass
class MultiBulkReply(Reply):
    """An array of strings; ``None`` elements are sent as null strings."""

    args: List[Optional[bytes]]

    def to_bytes(self) -> bytes:
        parts = [b"*" + str(len(self.args)).encode() + CRLF]
        parts.extend(_bulk(arg) for arg in self.args)
        return b"".join(parts)


@dataclass
class EmptyMultiBulkReply(MultiBulkReply):
    """An array without elements."""

    args: List[Optional[bytes]] = field(default_factory=list)

    def to_bytes(self) -> bytes:
        return b"*0" + CRLF


@dataclass
class MultiRawReply(Reply):
    """An array whose elements are arbitrary replies."""

    replies: Sequence[Reply]

    def to_bytes(self) -> bytes:
        parts = [b"*" + str(len(self.replies)).encode() + CRLF]
        parts.extend(reply.to_bytes() for reply in self.replies)
        return b"".join(parts)


@dataclass
class StatusReply(Reply):
    """A simple status string."""

    status: str

    def to_bytes(self) -> bytes:
        return b"+" + _encode(self.status) + CRLF


@dataclass
class OkReply(StatusReply):
    """The ``OK`` status."""

    status: str = "OK"

    def to_bytes(self) -> bytes:
        return b"+" + _encode(self.status) + CRLF


@dataclass
class ErrorReply(Reply):
    """An error message."""

    message: str

    def to_bytes(self) -> bytes:
        return b"-" + _encode(self.message) + CRLF


class CommandError(Exception):
    """Raised by a command when it has to answer with an error."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_reply(self) -> ErrorReply:
        return ErrorReply(self.message)


class WrongTypeError(CommandError):
    """The key holds a value of another type than the command works on."""

    def __init__(self, message: str = _WRONG_TYPE_MESSAGE) -> None:
        super().__init__(message)


def arg_num_error(name: str) -> CommandError:
    """Error for a command called with the wrong number of arguments."""
    return CommandError(f"ERR wrong number of arguments for '{name}' command")


def syntax_error() -> CommandError:
    """Error for a malformed command line."""
    return CommandError("ERR syntax error")