"""Command table: registration, arity checks and key extraction."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from memkv.replies import BulkReply, IntReply, MultiBulkReply, MultiRawReply, Reply

KeyLists = Tuple[List[str], List[str]]


class Flag(enum.IntFlag):
    """Command flags."""

    WRITE = 0
    READ_ONLY = 1
    SPECIAL = 2


@dataclass
class CommandExtra:
    """Descriptive data reported by the COMMAND command."""

    signs: List[str]
    first_key: int
    last_key: int
    key_step: int


@dataclass
class Command:
    """A registered command.

    ``arity`` is the exact length of the command line including the name,
    or, when negative, its minimum length negated.
    """

    name: str
    executor: Optional[Callable[[Any, List[bytes]], Reply]] = None
    prepare: Optional[Callable[[List[bytes]], KeyLists]] = None
    undo: Optional[Callable[[Any, List[bytes]], List[List[bytes]]]] = None
    arity: int = 0
    flags: Flag = Flag.WRITE
    extra: Optional[CommandExtra] = field(default=None)

    def attach_extra(self, signs: Sequence[str], first_key: int, last_key: int, key_step: int) -> "Command":
        self.extra = CommandExtra(list(signs), first_key, last_key, key_step)
        return self

    def to_desc_reply(self) -> Reply:
        replies: List[Reply] = [BulkReply(self.name.encode()), IntReply(self.arity)]
        if self.extra is not None:
            replies.extend(
                [
                    MultiBulkReply([sign.encode() for sign in self.extra.signs]),
                    IntReply(self.extra.first_key),
                    IntReply(self.extra.last_key),
                    IntReply(self.extra.key_step),
                ]
            )
        return MultiRawReply(replies)


_COMMANDS: Dict[str, Command] = {}


def _key(arg: bytes) -> str:
    return arg.decode("utf-8", "surrogateescape")


def register_command(name, executor, prepare, undo, arity, flags) -> Command:
    """Register a normal command that reads or writes a limited set of keys."""
    name = name.lower()
    command = Command(name, executor, prepare, undo, arity, Flag(flags))
    _COMMANDS[name] = command
    return command


def register_special_command(name, arity, flags) -> Command:
    """Register a command handled by the server itself."""
    name = name.lower()
    command = Command(name, arity=arity, flags=Flag(flags) | Flag.SPECIAL)
    _COMMANDS[name] = command
    return command


def get_command(name: str) -> Optional[Command]:
    return _COMMANDS.get(name.lower())


def is_read_only_command(name: str) -> bool:
    command = get_command(name)
    return command is not None and bool(command.flags & Flag.READ_ONLY)


def validate_arity(arity: int, cmd_line: Sequence[bytes]) -> bool:
    count = len(cmd_line)
    if arity >= 0:
        return count == arity
    return count >= -arity


def write_first_key(args: Sequence[bytes]) -> KeyLists:
    return [_key(args[0])], []


def read_first_key(args: Sequence[bytes]) -> KeyLists:
    return [], [_key(args[0])]


def write_all_keys(args: Sequence[bytes]) -> KeyLists:
    return [_key(arg) for arg in args], []


def read_all_keys(args: Sequence[bytes]) -> KeyLists:
    return [], [_key(arg) for arg in args]


def no_prepare(args: Sequence[bytes]) -> KeyLists:
    return [], []