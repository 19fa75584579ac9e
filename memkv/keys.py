"""Key-space commands: deletion, existence, types, renaming and expiration."""

from __future__ import annotations

import math
import re
import time
from collections import deque
from typing import Any, List, Optional, Pattern, Tuple

from memkv.db import DB
from memkv.replies import (
    CmdLine,
    CommandError,
    ErrorReply,
    IntReply,
    MultiBulkReply,
    OkReply,
    Reply,
    StatusReply,
)
from memkv.router import (
    Flag,
    no_prepare,
    read_all_keys,
    read_first_key,
    register_command,
    write_all_keys,
    write_first_key,
)

_WRITE = "write"
_READONLY = "readonly"
_FAST = "fast"
_RANDOM = "random"
_SORT_FOR_SCRIPT = "sort_for_script"

_INT_PATTERN = re.compile(r"[+-]?[0-9]+")
_INT64_MIN = -(1 << 63)
_INT64_MAX = (1 << 63) - 1

_NOT_INTEGER = "ERR value is not an integer or out of range"


def _text(arg: bytes) -> str:
    return arg.decode("utf-8", "surrogateescape")


def _raw(text: str) -> bytes:
    return text.encode("utf-8", "surrogateescape")


def _require_int(raw: bytes) -> int:
    text = _text(raw)
    if not _INT_PATTERN.fullmatch(text):
        raise CommandError(_NOT_INTEGER)
    value = int(text)
    if value < _INT64_MIN or value > _INT64_MAX:
        raise CommandError(_NOT_INTEGER)
    return value


def _unix_millis(expire_at: float) -> int:
    return math.floor(expire_at * 1000)


def _expire_cmd(key: str, expire_at: float) -> CmdLine:
    return [b"PEXPIREAT", _raw(key), str(_unix_millis(expire_at)).encode()]


def _ttl_cmd(db: DB, key: str) -> CmdLine:
    expiration = db.get_expiration(key)
    if expiration is None:
        return [b"PERSIST", _raw(key)]
    return _expire_cmd(key, expiration)


def _compile_pattern(pattern: str) -> Pattern[str]:
    """Turn a glob pattern (``*``, ``?``, ``[...]``, ``[^...]``, ``\\``) into a regex."""
    parts: List[str] = []
    chars = iter(pattern)
    for ch in chars:
        if ch == "*":
            parts.append(".*")
        elif ch == "?":
            parts.append(".")
        elif ch == "\\":
            escaped = next(chars, None)
            if escaped is None:
                raise ValueError("dangling escape")
            parts.append(re.escape(escaped))
        elif ch == "[":
            body: List[str] = []
            for member in chars:
                if member == "]":
                    break
                body.append(member)
            else:
                raise ValueError("unclosed character class")
            negate = bool(body) and body[0] == "^"
            if negate:
                body = body[1:]
            if not body:
                raise ValueError("empty character class")
            members = "".join("-" if c == "-" else re.escape(c) for c in body)
            parts.append(f"[{'^' if negate else ''}{members}]")
        else:
            parts.append(re.escape(ch))
    try:
        return re.compile("".join(parts), re.DOTALL)
    except re.error as error:
        raise ValueError(str(error)) from error


def entity_to_cmd(key: str, entity: Any) -> Optional[CmdLine]:
    """A command line that recreates ``entity`` under ``key``, or None if unknown."""
    raw_key = _raw(key)
    if isinstance(entity, (bytes, bytearray)):
        return [b"SET", raw_key, bytes(entity)]
    if isinstance(entity, deque):
        return [b"RPUSH", raw_key, *entity]
    if isinstance(entity, dict):
        line: CmdLine = [b"HMSET", raw_key]
        for name, value in entity.items():
            line.extend((_raw(name), value))
        return line
    if isinstance(entity, (set, frozenset)):
        return [b"SADD", raw_key, *(_raw(member) for member in entity)]
    return None


def rollback_given_keys(db: DB, *keys: str) -> List[CmdLine]:
    """Command lines restoring the given keys, with their expirations, to their current state."""
    undo: List[CmdLine] = []
    for key in keys:
        entity = db.get_entity(key)
        if entity is None:
            undo.append([b"DEL", _raw(key)])
            continue
        undo.append([b"DEL", _raw(key)])
        restore = entity_to_cmd(key, entity)
        if restore is not None:
            undo.append(restore)
        undo.append(_ttl_cmd(db, key))
    return undo


def exec_del(db: DB, args: List[bytes]) -> Reply:
    deleted = db.removes(*(_text(arg) for arg in args))
    if deleted > 0:
        db.add_aof([b"del", *args])
    return IntReply(deleted)


def undo_del(db: DB, args: List[bytes]) -> List[CmdLine]:
    return rollback_given_keys(db, *(_text(arg) for arg in args))


def exec_exists(db: DB, args: List[bytes]) -> Reply:
    return IntReply(sum(1 for arg in args if db.get_entity(_text(arg)) is not None))


def exec_flushdb(db: DB, args: List[bytes]) -> Reply:
    db.flush()
    db.add_aof([b"flushdb", *args])
    return OkReply()


def exec_type(db: DB, args: List[bytes]) -> Reply:
    entity = db.get_entity(_text(args[0]))
    if entity is None:
        return StatusReply("none")
    if isinstance(entity, (bytes, bytearray)):
        return StatusReply("string")
    if isinstance(entity, deque):
        return StatusReply("list")
    if isinstance(entity, dict):
        return StatusReply("hash")
    if isinstance(entity, (set, frozenset)):
        return StatusReply("set")
    return ErrorReply("Err unknown")


def prepare_rename(args: List[bytes]) -> Tuple[List[str], List[str]]:
    return [_text(args[1])], [_text(args[0])]


def exec_rename(db: DB, args: List[bytes]) -> Reply:
    if len(args) != 2:
        raise CommandError("ERR wrong number of arguments for 'rename' command")
    src, dest = _text(args[0]), _text(args[1])
    entity = db.get_entity(src)
    if entity is None:
        raise CommandError("no such key")
    expiration = db.get_expiration(src)
    db.put_entity(dest, entity)
    db.remove(src)
    if expiration is not None:
        db.persist(src)
        db.persist(dest)
        db.expire(dest, expiration)
    db.add_aof([b"rename", *args])
    return OkReply()


def undo_rename(db: DB, args: List[bytes]) -> List[CmdLine]:
    return rollback_given_keys(db, _text(args[0]), _text(args[1]))


def exec_renamenx(db: DB, args: List[bytes]) -> Reply:
    src, dest = _text(args[0]), _text(args[1])
    if db.get_entity(dest) is not None:
        return IntReply(0)
    entity = db.get_entity(src)
    if entity is None:
        raise CommandError("no such key")
    expiration = db.get_expiration(src)
    db.removes(src, dest)
    db.put_entity(dest, entity)
    if expiration is not None:
        db.persist(src)
        db.persist(dest)
        db.expire(dest, expiration)
    db.add_aof([b"renamenx", *args])
    return IntReply(1)


def _set_expiration(db: DB, key: str, expire_at: float) -> Reply:
    if db.get_entity(key) is None:
        return IntReply(0)
    db.expire(key, expire_at)
    db.add_aof(_expire_cmd(key, expire_at))
    return IntReply(1)


def exec_expire(db: DB, args: List[bytes]) -> Reply:
    seconds = _require_int(args[1])
    key = _text(args[0])
    if db.get_entity(key) is None:
        return IntReply(0)
    return _set_expiration(db, key, time.time() + seconds)


def exec_expireat(db: DB, args: List[bytes]) -> Reply:
    timestamp = _require_int(args[1])
    return _set_expiration(db, _text(args[0]), float(timestamp))


def exec_pexpire(db: DB, args: List[bytes]) -> Reply:
    millis = _require_int(args[1])
    key = _text(args[0])
    if db.get_entity(key) is None:
        return IntReply(0)
    return _set_expiration(db, key, time.time() + millis / 1000)


def exec_pexpireat(db: DB, args: List[bytes]) -> Reply:
    millis = _require_int(args[1])
    return _set_expiration(db, _text(args[0]), millis / 1000)


def _expiration_or_code(db: DB, key: str) -> Tuple[Optional[float], int]:
    if db.get_entity(key) is None:
        return None, -2
    expiration = db.get_expiration(key)
    if expiration is None:
        return None, -1
    return expiration, 0


def exec_expiretime(db: DB, args: List[bytes]) -> Reply:
    expiration, code = _expiration_or_code(db, _text(args[0]))
    if expiration is None:
        return IntReply(code)
    return IntReply(math.floor(expiration))


def exec_pexpiretime(db: DB, args: List[bytes]) -> Reply:
    expiration, code = _expiration_or_code(db, _text(args[0]))
    if expiration is None:
        return IntReply(code)
    return IntReply(_unix_millis(expiration))


def exec_ttl(db: DB, args: List[bytes]) -> Reply:
    expiration, code = _expiration_or_code(db, _text(args[0]))
    if expiration is None:
        return IntReply(code)
    return IntReply(int(expiration - time.time()))


def exec_pttl(db: DB, args: List[bytes]) -> Reply:
    expiration, code = _expiration_or_code(db, _text(args[0]))
    if expiration is None:
        return IntReply(code)
    return IntReply(int((expiration - time.time()) * 1000))


def exec_persist(db: DB, args: List[bytes]) -> Reply:
    key = _text(args[0])
    if db.get_entity(key) is None or db.get_expiration(key) is None:
        return IntReply(0)
    db.persist(key)
    db.add_aof([b"persist", *args])
    return IntReply(1)


def undo_expire(db: DB, args: List[bytes]) -> List[CmdLine]:
    return [_ttl_cmd(db, _text(args[0]))]


def exec_keys(db: DB, args: List[bytes]) -> Reply:
    try:
        pattern = _compile_pattern(_text(args[0]))
    except ValueError:
        raise CommandError("ERR illegal wildcard") from None
    result: List[Optional[bytes]] = [
        _raw(key)
        for key, _, _ in db.items()
        if pattern.fullmatch(key) and not db.is_expired(key)
    ]
    return MultiBulkReply(result)


def _register() -> None:
    write_fast = [_WRITE, _FAST]
    register_command("Del", exec_del, write_all_keys, undo_del, -2, Flag.WRITE).attach_extra([_WRITE], 1, -1, 1)
    register_command("Expire", exec_expire, write_first_key, undo_expire, 3, Flag.WRITE).attach_extra(
        write_fast, 1, 1, 1
    )
    register_command("ExpireAt", exec_expireat, write_first_key, undo_expire, 3, Flag.WRITE).attach_extra(
        write_fast, 1, 1, 1
    )
    register_command("ExpireTime", exec_expiretime, read_first_key, None, 2, Flag.READ_ONLY).attach_extra(
        write_fast, 1, 1, 1
    )
    register_command("PExpire", exec_pexpire, write_first_key, undo_expire, 3, Flag.WRITE).attach_extra(
        write_fast, 1, 1, 1
    )
    register_command("PExpireAt", exec_pexpireat, write_first_key, undo_expire, 3, Flag.WRITE).attach_extra(
        write_fast, 1, 1, 1
    )
    register_command("PExpireTime", exec_pexpiretime, read_first_key, None, 2, Flag.READ_ONLY).attach_extra(
        write_fast, 1, 1, 1
    )
    register_command("TTL", exec_ttl, read_first_key, None, 2, Flag.READ_ONLY).attach_extra(
        [_READONLY, _RANDOM, _FAST], 1, 1, 1
    )
    register_command("PTTL", exec_pttl, read_first_key, None, 2, Flag.READ_ONLY).attach_extra(
        [_READONLY, _RANDOM, _FAST], 1, 1, 1
    )
    register_command("Persist", exec_persist, write_first_key, undo_expire, 2, Flag.WRITE).attach_extra(
        write_fast, 1, 1, 1
    )
    register_command("Exists", exec_exists, read_all_keys, None, -2, Flag.READ_ONLY).attach_extra(
        [_READONLY, _FAST], 1, 1, 1
    )
    register_command("Type", exec_type, read_first_key, None, 2, Flag.READ_ONLY).attach_extra(
        [_READONLY, _FAST], 1, 1, 1
    )
    register_command("Rename", exec_rename, prepare_rename, undo_rename, 3, Flag.READ_ONLY).attach_extra(
        [_WRITE], 1, 1, 1
    )
    register_command("RenameNx", exec_renamenx, prepare_rename, undo_rename, 3, Flag.READ_ONLY).attach_extra(
        write_fast, 1, 1, 1
    )
    register_command("Keys", exec_keys, no_prepare, None, 2, Flag.READ_ONLY).attach_extra(
        [_READONLY, _SORT_FOR_SCRIPT], 1, 1, 1
    )


_register()