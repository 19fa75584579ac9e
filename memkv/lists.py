"""List commands: ordered sequences of values stored under a key."""

from __future__ import annotations

import re
from collections import deque
from itertools import islice
from typing import Deque, List, Optional, Tuple

from memkv.db import DB
from memkv.replies import (
    BulkReply,
    CmdLine,
    CommandError,
    EmptyMultiBulkReply,
    IntReply,
    MultiBulkReply,
    NullBulkReply,
    OkReply,
    Reply,
    WrongTypeError,
    syntax_error,
)
from memkv.router import Flag, read_first_key, register_command, write_first_key

_WRITE = "write"
_READONLY = "readonly"
_DENY_OOM = "denyoom"
_FAST = "fast"

_INT_PATTERN = re.compile(r"[+-]?[0-9]+")
_INT64_MIN = -(1 << 63)
_INT64_MAX = (1 << 63) - 1

_NOT_INTEGER = "ERR value is not an integer or out of range"

ListValue = Deque[bytes]


def _text(arg: bytes) -> str:
    return arg.decode("utf-8", "surrogateescape")


def _raw(text: str) -> bytes:
    return text.encode("utf-8", "surrogateescape")


def _parse_int(raw: bytes) -> Optional[int]:
    text = _text(raw)
    if not _INT_PATTERN.fullmatch(text):
        return None
    value = int(text)
    if value < _INT64_MIN or value > _INT64_MAX:
        return None
    return value


def _require_int(raw: bytes) -> int:
    value = _parse_int(raw)
    if value is None:
        raise CommandError(_NOT_INTEGER)
    return value


def _normalize_index(index: int, size: int) -> Optional[int]:
    """Turn a possibly negative index into a position, or None if out of range."""
    if index < -size:
        return None
    if index < 0:
        return size + index
    if index >= size:
        return None
    return index


def get_as_list(db: DB, key: str) -> Optional[ListValue]:
    """Return the list at ``key``, None if absent; raise if it is another type."""
    entity = db.get_entity(key)
    if entity is None:
        return None
    if not isinstance(entity, deque):
        raise WrongTypeError()
    return entity


def get_or_init_list(db: DB, key: str) -> Tuple[ListValue, bool]:
    """Return the list at ``key``, creating it if absent, and whether it was created."""
    values = get_as_list(db, key)
    if values is not None:
        return values, False
    values = deque()
    db.put_entity(key, values)
    return values, True


def rollback_first_key(db: DB, args: List[bytes]) -> List[CmdLine]:
    """Command lines restoring the list at the first key to its current state."""
    key = args[0]
    try:
        values = get_as_list(db, _text(key))
    except CommandError:
        return []
    if values is None:
        return [[b"DEL", key]]
    expiration = db.get_expiration(_text(key))
    if expiration is None:
        ttl_line: CmdLine = [b"PERSIST", key]
    else:
        ttl_line = [b"PEXPIREAT", key, str(int(expiration * 1000)).encode()]
    return [[b"DEL", key], [b"RPUSH", key, *values], ttl_line]


def exec_lindex(db: DB, args: List[bytes]) -> Reply:
    index = _require_int(args[1])
    values = get_as_list(db, _text(args[0]))
    if values is None:
        return NullBulkReply()
    position = _normalize_index(index, len(values))
    if position is None:
        return NullBulkReply()
    return BulkReply(values[position])


def exec_llen(db: DB, args: List[bytes]) -> Reply:
    values = get_as_list(db, _text(args[0]))
    return IntReply(0 if values is None else len(values))


def exec_lpop(db: DB, args: List[bytes]) -> Reply:
    key = _text(args[0])
    values = get_as_list(db, key)
    if values is None:
        return NullBulkReply()
    value = values.popleft()
    if not values:
        db.remove(key)
    db.add_aof([b"lpop", *args])
    return BulkReply(value)


def undo_lpop(db: DB, args: List[bytes]) -> List[CmdLine]:
    try:
        values = get_as_list(db, _text(args[0]))
    except CommandError:
        return []
    if not values:
        return []
    return [[b"LPUSH", args[0], values[0]]]


def exec_lpush(db: DB, args: List[bytes]) -> Reply:
    values, _ = get_or_init_list(db, _text(args[0]))
    values.extendleft(args[1:])
    db.add_aof([b"lpush", *args])
    return IntReply(len(values))


def undo_lpush(db: DB, args: List[bytes]) -> List[CmdLine]:
    return [[b"LPOP", args[0]] for _ in args[1:]]


def exec_lpushx(db: DB, args: List[bytes]) -> Reply:
    values = get_as_list(db, _text(args[0]))
    if values is None:
        return IntReply(0)
    values.extendleft(args[1:])
    db.add_aof([b"lpushx", *args])
    return IntReply(len(values))


def exec_lrange(db: DB, args: List[bytes]) -> Reply:
    start = _require_int(args[1])
    stop = _require_int(args[2])
    values = get_as_list(db, _text(args[0]))
    if values is None:
        return EmptyMultiBulkReply()
    size = len(values)
    if start < -size:
        start = 0
    elif start < 0:
        start += size
    elif start >= size:
        return EmptyMultiBulkReply()
    if stop < -size:
        stop = 0
    elif stop < 0:
        stop = size + stop + 1
    elif stop < size:
        stop += 1
    else:
        stop = size
    stop = max(stop, start)
    return MultiBulkReply(list(islice(values, start, stop)))


def _remove_matching(items: List[bytes], target: bytes, limit: Optional[int]) -> Tuple[List[bytes], int]:
    kept: List[bytes] = []
    removed = 0
    for item in items:
        if item == target and (limit is None or removed < limit):
            removed += 1
        else:
            kept.append(item)
    return kept, removed


def exec_lrem(db: DB, args: List[bytes]) -> Reply:
    key = _text(args[0])
    count = _require_int(args[1])
    target = args[2]
    values = get_as_list(db, key)
    if values is None:
        return IntReply(0)
    items = list(values)
    if count == 0:
        kept, removed = _remove_matching(items, target, None)
    elif count > 0:
        kept, removed = _remove_matching(items, target, count)
    else:
        kept, removed = _remove_matching(items[::-1], target, -count)
        kept.reverse()
    values.clear()
    values.extend(kept)
    if not values:
        db.remove(key)
    if removed > 0:
        db.add_aof([b"lrem", *args])
    return IntReply(removed)


def exec_lset(db: DB, args: List[bytes]) -> Reply:
    index = _require_int(args[1])
    values = get_as_list(db, _text(args[0]))
    if values is None:
        raise CommandError("ERR no such key")
    position = _normalize_index(index, len(values))
    if position is None:
        raise CommandError("ERR index out of range")
    values[position] = args[2]
    db.add_aof([b"lset", *args])
    return OkReply()


def undo_lset(db: DB, args: List[bytes]) -> List[CmdLine]:
    index = _parse_int(args[1])
    if index is None:
        return []
    try:
        values = get_as_list(db, _text(args[0]))
    except CommandError:
        return []
    if values is None:
        return []
    position = _normalize_index(index, len(values))
    if position is None:
        return []
    return [[b"LSET", args[0], args[1], values[position]]]


def exec_rpop(db: DB, args: List[bytes]) -> Reply:
    key = _text(args[0])
    values = get_as_list(db, key)
    if values is None:
        return NullBulkReply()
    value = values.pop()
    if not values:
        db.remove(key)
    db.add_aof([b"rpop", *args])
    return BulkReply(value)


def undo_rpop(db: DB, args: List[bytes]) -> List[CmdLine]:
    try:
        values = get_as_list(db, _text(args[0]))
    except CommandError:
        return []
    if not values:
        return []
    return [[b"RPUSH", args[0], values[-1]]]


def prepare_rpoplpush(args: List[bytes]) -> Tuple[List[str], List[str]]:
    return [_text(args[0]), _text(args[1])], []


def exec_rpoplpush(db: DB, args: List[bytes]) -> Reply:
    source_key = _text(args[0])
    source = get_as_list(db, source_key)
    if source is None:
        return NullBulkReply()
    destination, _ = get_or_init_list(db, _text(args[1]))
    value = source.pop()
    destination.appendleft(value)
    if not source:
        db.remove(source_key)
    db.add_aof([b"rpoplpush", *args])
    return BulkReply(value)


def undo_rpoplpush(db: DB, args: List[bytes]) -> List[CmdLine]:
    try:
        values = get_as_list(db, _text(args[0]))
    except CommandError:
        return []
    if not values:
        return []
    return [[b"RPUSH", args[0], values[-1]], [b"LPOP", args[1]]]


def exec_rpush(db: DB, args: List[bytes]) -> Reply:
    values, _ = get_or_init_list(db, _text(args[0]))
    values.extend(args[1:])
    db.add_aof([b"rpush", *args])
    return IntReply(len(values))


def undo_rpush(db: DB, args: List[bytes]) -> List[CmdLine]:
    return [[b"RPOP", args[0]] for _ in args[1:]]


def exec_rpushx(db: DB, args: List[bytes]) -> Reply:
    if len(args) < 2:
        raise CommandError("ERR wrong number of arguments for 'rpush' command")
    values = get_as_list(db, _text(args[0]))
    if values is None:
        return IntReply(0)
    values.extend(args[1:])
    db.add_aof([b"rpushx", *args])
    return IntReply(len(values))


def exec_ltrim(db: DB, args: List[bytes]) -> Reply:
    if len(args) != 3:
        raise CommandError(f"ERR wrong number of arguments (given {len(args)}, expected 3)")
    start = _require_int(args[1])
    end = _require_int(args[2])
    values = get_as_list(db, _text(args[0]))
    if values is None:
        return OkReply()
    length = len(values)
    if start < 0:
        start += length
    if end < 0:
        end += length
    for _ in range(start):
        if not values:
            break
        values.popleft()
    for _ in range(length - end - 1):
        if not values:
            break
        values.pop()
    db.add_aof([b"ltrim", *args])
    return OkReply()


def exec_linsert(db: DB, args: List[bytes]) -> Reply:
    if len(args) != 4:
        raise CommandError("ERR wrong number of arguments for 'linsert' command")
    values = get_as_list(db, _text(args[0]))
    if values is None:
        return IntReply(0)
    direction = _text(args[1]).lower()
    if direction not in ("before", "after"):
        raise syntax_error()
    pivot = args[2]
    index = next((i for i, item in enumerate(values) if item == pivot), -1)
    if index == -1:
        return IntReply(-1)
    values.insert(index if direction == "before" else index + 1, args[3])
    db.add_aof([b"linsert", *args])
    return IntReply(len(values))


def _register() -> None:
    write_fast = [_WRITE, _DENY_OOM, _FAST]
    register_command("LPush", exec_lpush, write_first_key, undo_lpush, -3, Flag.WRITE).attach_extra(
        write_fast, 1, 1, 1
    )
    register_command("LPushX", exec_lpushx, write_first_key, undo_lpush, -3, Flag.WRITE).attach_extra(
        write_fast, 1, 1, 1
    )
    register_command("RPush", exec_rpush, write_first_key, undo_rpush, -3, Flag.WRITE).attach_extra(
        write_fast, 1, 1, 1
    )
    register_command("RPushX", exec_rpushx, write_first_key, undo_rpush, -3, Flag.WRITE).attach_extra(
        write_fast, 1, 1, 1
    )
    register_command("LPop", exec_lpop, write_first_key, undo_lpop, 2, Flag.WRITE).attach_extra(
        [_WRITE, _FAST], 1, 1, 1
    )
    register_command("RPop", exec_rpop, write_first_key, undo_rpop, 2, Flag.WRITE).attach_extra(
        [_WRITE, _FAST], 1, 1, 1
    )
    register_command("RPopLPush", exec_rpoplpush, prepare_rpoplpush, undo_rpoplpush, 3, Flag.WRITE).attach_extra(
        [_WRITE, _DENY_OOM], 1, 1, 1
    )
    register_command("LRem", exec_lrem, write_first_key, rollback_first_key, 4, Flag.WRITE).attach_extra(
        [_WRITE], 1, 1, 1
    )
    register_command("LLen", exec_llen, read_first_key, None, 2, Flag.READ_ONLY).attach_extra(
        [_READONLY, _FAST], 1, 1, 1
    )
    register_command("LIndex", exec_lindex, read_first_key, None, 3, Flag.READ_ONLY).attach_extra(
        [_READONLY], 1, 1, 1
    )
    register_command("LSet", exec_lset, write_first_key, undo_lset, 4, Flag.WRITE).attach_extra(
        [_WRITE, _DENY_OOM], 1, 1, 1
    )
    register_command("LRange", exec_lrange, read_first_key, None, 4, Flag.READ_ONLY).attach_extra(
        [_READONLY], 1, 1, 1
    )
    register_command("LTrim", exec_ltrim, write_first_key, rollback_first_key, 4, Flag.WRITE).attach_extra(
        [_WRITE], 1, 1, 1
    )
    register_command("LInsert", exec_linsert, write_first_key, rollback_first_key, 5, Flag.WRITE).attach_extra(
        [_WRITE, _DENY_OOM], 1, 1, 1
    )


_register()