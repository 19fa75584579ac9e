"""Hash commands: field/value maps stored under a key."""

from __future__ import annotations

import math
import random
import re
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

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
    arg_num_error,
    syntax_error,
)
from memkv.router import Flag, read_first_key, register_command, write_first_key

_WRITE = "write"
_READONLY = "readonly"
_DENY_OOM = "denyoom"
_FAST = "fast"
_RANDOM = "random"
_SORT_FOR_SCRIPT = "sort_for_script"

_INT_PATTERN = re.compile(r"[+-]?[0-9]+")
_INT64_MIN = -(1 << 63)
_INT64_MAX = (1 << 63) - 1

_NOT_INTEGER = "ERR value is not an integer or out of range"
_NOT_FLOAT = "ERR value is not a valid float"


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


def _wrap_int64(value: int) -> int:
    return ((value - _INT64_MIN) % (1 << 64)) + _INT64_MIN


def _parse_float(raw: bytes) -> Optional[float]:
    text = _text(raw)
    if not text or text != text.strip() or "_" in text:
        return None
    try:
        return float(text)
    except ValueError:
        return None


def _format_float(value: float) -> str:
    """Shortest decimal form without an exponent."""
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "+Inf" if value > 0 else "-Inf"
    text = format(Decimal(repr(value)), "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    if text in ("-0", ""):
        text = "0" if text == "" else "-0"
    return text


def get_as_dict(db: DB, key: str) -> Optional[Dict[str, bytes]]:
    """Return the hash at ``key``, None if absent; raise if it is another type."""
    entity = db.get_entity(key)
    if entity is None:
        return None
    if not isinstance(entity, dict):
        raise WrongTypeError()
    return entity


def get_or_init_dict(db: DB, key: str) -> Tuple[Dict[str, bytes], bool]:
    """Return the hash at ``key``, creating it if absent, and whether it was created."""
    hash_map = get_as_dict(db, key)
    if hash_map is not None:
        return hash_map, False
    hash_map = {}
    db.put_entity(key, hash_map)
    return hash_map, True


def rollback_hash_fields(db: DB, key: str, *fields: str) -> List[CmdLine]:
    """Command lines restoring the given fields to their current state."""
    try:
        hash_map = get_as_dict(db, key)
    except CommandError:
        return []
    if hash_map is None:
        return [[b"DEL", _raw(key)]]
    undo: List[CmdLine] = []
    for name in fields:
        value = hash_map.get(name)
        if value is None:
            undo.append([b"HDEL", _raw(key), _raw(name)])
        else:
            undo.append([b"HSET", _raw(key), _raw(name), value])
    return undo


def exec_hset(db: DB, args: List[bytes]) -> Reply:
    key, name, value = _text(args[0]), _text(args[1]), args[2]
    hash_map, _ = get_or_init_dict(db, key)
    inserted = int(name not in hash_map)
    hash_map[name] = value
    db.add_aof([b"hset", *args])
    return IntReply(inserted)


def undo_hset(db: DB, args: List[bytes]) -> List[CmdLine]:
    return rollback_hash_fields(db, _text(args[0]), _text(args[1]))


def exec_hsetnx(db: DB, args: List[bytes]) -> Reply:
    key, name, value = _text(args[0]), _text(args[1]), args[2]
    hash_map, _ = get_or_init_dict(db, key)
    if name in hash_map:
        return IntReply(0)
    hash_map[name] = value
    db.add_aof([b"hsetnx", *args])
    return IntReply(1)


def exec_hget(db: DB, args: List[bytes]) -> Reply:
    hash_map = get_as_dict(db, _text(args[0]))
    if hash_map is None:
        return NullBulkReply()
    value = hash_map.get(_text(args[1]))
    if value is None:
        return NullBulkReply()
    return BulkReply(value)


def exec_hexists(db: DB, args: List[bytes]) -> Reply:
    hash_map = get_as_dict(db, _text(args[0]))
    if hash_map is None:
        return IntReply(0)
    return IntReply(int(_text(args[1]) in hash_map))


def exec_hdel(db: DB, args: List[bytes]) -> Reply:
    key = _text(args[0])
    hash_map = get_as_dict(db, key)
    if hash_map is None:
        return IntReply(0)
    deleted = 0
    for arg in args[1:]:
        if hash_map.pop(_text(arg), None) is not None:
            deleted += 1
    if not hash_map:
        db.remove(key)
    if deleted > 0:
        db.add_aof([b"hdel", *args])
    return IntReply(deleted)


def undo_hdel(db: DB, args: List[bytes]) -> List[CmdLine]:
    return rollback_hash_fields(db, _text(args[0]), *(_text(arg) for arg in args[1:]))


def exec_hlen(db: DB, args: List[bytes]) -> Reply:
    hash_map = get_as_dict(db, _text(args[0]))
    return IntReply(0 if hash_map is None else len(hash_map))


def exec_hstrlen(db: DB, args: List[bytes]) -> Reply:
    hash_map = get_as_dict(db, _text(args[0]))
    if hash_map is None:
        return IntReply(0)
    value = hash_map.get(_text(args[1]))
    return IntReply(0 if value is None else len(value))


def exec_hmset(db: DB, args: List[bytes]) -> Reply:
    if len(args) % 2 != 1:
        raise syntax_error()
    key = _text(args[0])
    pairs = [(_text(args[i]), args[i + 1]) for i in range(1, len(args), 2)]
    hash_map, _ = get_or_init_dict(db, key)
    hash_map.update(pairs)
    db.add_aof([b"hmset", *args])
    return OkReply()


def undo_hmset(db: DB, args: List[bytes]) -> List[CmdLine]:
    fields = [_text(args[i]) for i in range(1, len(args) - 1, 2)]
    return rollback_hash_fields(db, _text(args[0]), *fields)


def exec_hmget(db: DB, args: List[bytes]) -> Reply:
    fields = [_text(arg) for arg in args[1:]]
    hash_map = get_as_dict(db, _text(args[0]))
    if hash_map is None:
        return MultiBulkReply([None] * len(fields))
    return MultiBulkReply([hash_map.get(name) for name in fields])


def exec_hkeys(db: DB, args: List[bytes]) -> Reply:
    hash_map = get_as_dict(db, _text(args[0]))
    if hash_map is None:
        return EmptyMultiBulkReply()
    return MultiBulkReply([_raw(name) for name in hash_map])


def exec_hvals(db: DB, args: List[bytes]) -> Reply:
    hash_map = get_as_dict(db, _text(args[0]))
    if hash_map is None:
        return EmptyMultiBulkReply()
    return MultiBulkReply(list(hash_map.values()))


def exec_hgetall(db: DB, args: List[bytes]) -> Reply:
    hash_map = get_as_dict(db, _text(args[0]))
    if hash_map is None:
        return EmptyMultiBulkReply()
    result: List[Optional[bytes]] = []
    for name, value in hash_map.items():
        result.extend((_raw(name), value))
    return MultiBulkReply(result)


def exec_hincrby(db: DB, args: List[bytes]) -> Reply:
    key, name = _text(args[0]), _text(args[1])
    delta = _parse_int(args[2])
    if delta is None:
        raise CommandError(_NOT_INTEGER)
    hash_map, _ = get_or_init_dict(db, key)
    current = hash_map.get(name)
    if current is None:
        hash_map[name] = args[2]
        db.add_aof([b"hincrby", *args])
        return BulkReply(args[2])
    value = _parse_int(current)
    if value is None:
        raise CommandError("ERR hash value is not an integer")
    result = str(_wrap_int64(value + delta)).encode()
    hash_map[name] = result
    db.add_aof([b"hincrby", *args])
    return BulkReply(result)


def undo_hincr(db: DB, args: List[bytes]) -> List[CmdLine]:
    return rollback_hash_fields(db, _text(args[0]), _text(args[1]))


def exec_hincrbyfloat(db: DB, args: List[bytes]) -> Reply:
    key, name = _text(args[0]), _text(args[1])
    delta = _parse_float(args[2])
    if delta is None:
        raise CommandError(_NOT_FLOAT)
    hash_map, _ = get_or_init_dict(db, key)
    current = hash_map.get(name)
    if current is None:
        hash_map[name] = args[2]
        return BulkReply(args[2])
    value = _parse_float(current)
    if value is None:
        raise CommandError("ERR hash value is not a float")
    result = _format_float(value + delta).encode()
    hash_map[name] = result
    db.add_aof([b"hincrbyfloat", *args])
    return BulkReply(result)


def exec_hrandfield(db: DB, args: List[bytes]) -> Reply:
    if len(args) > 3:
        raise arg_num_error("hrandfield")
    with_values = False
    if len(args) == 3:
        if _text(args[2]).lower() != "withvalues":
            raise syntax_error()
        with_values = True
    count = 1
    if len(args) >= 2:
        parsed = _parse_int(args[1])
        if parsed is None:
            raise CommandError(_NOT_INTEGER)
        count = parsed
    hash_map = get_as_dict(db, _text(args[0]))
    if hash_map is None or count == 0 or not hash_map:
        return EmptyMultiBulkReply()
    names = list(hash_map)
    if count > 0:
        chosen = random.sample(names, min(count, len(names)))
    else:
        chosen = random.choices(names, k=-count)
    if not with_values:
        return MultiBulkReply([_raw(name) for name in chosen])
    result: List[Optional[bytes]] = []
    for name in chosen:
        result.extend((_raw(name), hash_map[name]))
    return MultiBulkReply(result)


def _register() -> None:
    write_fast = [_WRITE, _DENY_OOM, _FAST]
    read_fast = [_READONLY, _FAST]
    register_command("HSet", exec_hset, write_first_key, undo_hset, 4, Flag.WRITE).attach_extra(write_fast, 1, 1, 1)
    register_command("HSetNX", exec_hsetnx, write_first_key, undo_hset, 4, Flag.WRITE).attach_extra(
        write_fast, 1, 1, 1
    )
    register_command("HGet", exec_hget, read_first_key, None, -3, Flag.READ_ONLY).attach_extra(read_fast, 1, 1, 1)
    register_command("HExists", exec_hexists, read_first_key, None, 3, Flag.READ_ONLY).attach_extra(
        read_fast, 1, 1, 1
    )
    register_command("HDel", exec_hdel, write_first_key, undo_hdel, -3, Flag.WRITE).attach_extra(
        [_WRITE, _FAST], 1, 1, 1
    )
    register_command("HLen", exec_hlen, read_first_key, None, 2, Flag.READ_ONLY).attach_extra(read_fast, 1, 1, 1)
    register_command("HStrlen", exec_hstrlen, read_first_key, None, 3, Flag.READ_ONLY).attach_extra(
        read_fast, 1, 1, 1
    )
    register_command("HMSet", exec_hmset, write_first_key, undo_hmset, -4, Flag.WRITE).attach_extra(
        write_fast, 1, 1, 1
    )
    register_command("HMGet", exec_hmget, read_first_key, None, -3, Flag.READ_ONLY).attach_extra(read_fast, 1, 1, 1)
    register_command("HKeys", exec_hkeys, read_first_key, None, 2, Flag.READ_ONLY).attach_extra(
        [_READONLY, _SORT_FOR_SCRIPT], 1, 1, 1
    )
    register_command("HVals", exec_hvals, read_first_key, None, 2, Flag.READ_ONLY).attach_extra(
        [_READONLY, _SORT_FOR_SCRIPT], 1, 1, 1
    )
    register_command("HGetAll", exec_hgetall, read_first_key, None, 2, Flag.READ_ONLY).attach_extra(
        [_READONLY, _RANDOM], 1, 1, 1
    )
    register_command("HIncrBy", exec_hincrby, write_first_key, undo_hincr, 4, Flag.WRITE).attach_extra(
        write_fast, 1, 1, 1
    )
    register_command("HIncrByFloat", exec_hincrbyfloat, write_first_key, undo_hincr, 4, Flag.WRITE).attach_extra(
        write_fast, 1, 1, 1
    )
    register_command("HRandField", exec_hrandfield, read_first_key, None, -2, Flag.READ_ONLY).attach_extra(
        [_RANDOM, _READONLY], 1, 1, 1
    )


_register()