"""A single keyspace: data, expirations, versions and key locks.

Normal commands are looked up in the command table, checked for arity,
have the keys they touch locked, and run with the keyspace and their
arguments. A command reports failure by raising ``CommandError``.
"""

from __future__ import annotations

import contextlib
import logging
import threading
import time
import zlib
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Tuple

from memkv.replies import CmdLine, CommandError, ErrorReply, Reply, arg_num_error
from memkv.router import Command, get_command, validate_arity

logger = logging.getLogger(__name__)

_LOCK_STRIPES = 1 << 10
_VERSION_MASK = 0xFFFFFFFF

KeyEventCallback = Callable[[int, str, Any], None]


def _discard(cmd_line: CmdLine) -> None:
    return None


class DB:
    """An in-memory keyspace holding entities by key."""

    def __init__(self, index: int = 0) -> None:
        self.index = index
        self._data: Dict[str, Any] = {}
        self._ttl: Dict[str, float] = {}
        self._versions: Dict[str, int] = {}
        self._timers: Dict[str, threading.Timer] = {}
        self._mutex = threading.RLock()
        self._stripes = [threading.RLock() for _ in range(_LOCK_STRIPES)]
        self.add_aof: Callable[[CmdLine], None] = _discard
        self.insert_callback: Optional[KeyEventCallback] = None
        self.delete_callback: Optional[KeyEventCallback] = None

    # ---- command execution ----

    @staticmethod
    def _lookup(cmd_line: CmdLine) -> Tuple[str, Optional[Command], Optional[Reply]]:
        name = cmd_line[0].decode("utf-8", "surrogateescape").lower()
        command = get_command(name)
        if command is None or command.executor is None:
            return name, None, ErrorReply(f"ERR unknown command '{name}'")
        if not validate_arity(command.arity, cmd_line):
            return name, None, arg_num_error(name).to_reply()
        return name, command, None

    def _run(self, command: Command, args: List[bytes]) -> Reply:
        try:
            return command.executor(self, args)
        except CommandError as error:
            return error.to_reply()

    def exec(self, cmd_line: CmdLine) -> Reply:
        """Run a normal command, locking the keys it touches."""
        _, command, error = self._lookup(cmd_line)
        if command is None:
            return error
        args = list(cmd_line[1:])
        write_keys, read_keys = command.prepare(args) if command.prepare else ([], [])
        self._add_version(*write_keys)
        with self.locked(write_keys, read_keys):
            return self._run(command, args)

    def exec_with_lock(self, cmd_line: CmdLine) -> Reply:
        """Run a normal command; the caller holds the key locks."""
        _, command, error = self._lookup(cmd_line)
        if command is None:
            return error
        return self._run(command, list(cmd_line[1:]))

    # ---- locks ----

    def _stripe(self, key: str) -> int:
        return zlib.crc32(key.encode("utf-8", "surrogateescape")) % _LOCK_STRIPES

    @contextlib.contextmanager
    def locked(self, write_keys: Iterable[str], read_keys: Optional[Iterable[str]] = None) -> Iterator[None]:
        """Hold the locks guarding the given keys, acquired in a fixed order."""
        indices = sorted({self._stripe(key) for key in (*write_keys, *(read_keys or ()))})
        with contextlib.ExitStack() as stack:
            for index in indices:
                stack.enter_context(self._stripes[index])
            yield

    # ---- data access ----

    def get_entity(self, key: str) -> Any:
        """Return the entity at ``key``, or None if absent or expired."""
        with self._mutex:
            entity = self._data.get(key)
            if entity is None or self.is_expired(key):
                return None
            return entity

    def put_entity(self, key: str, entity: Any) -> int:
        """Store an entity; return 1 if the key is new, else 0."""
        with self._mutex:
            inserted = int(key not in self._data)
            self._data[key] = entity
        callback = self.insert_callback
        if inserted and callback is not None:
            callback(self.index, key, entity)
        return inserted

    def put_if_exists(self, key: str, entity: Any) -> int:
        """Replace an existing entity; return 1 if replaced, else 0."""
        with self._mutex:
            if key not in self._data:
                return 0
            self._data[key] = entity
            return 1

    def put_if_absent(self, key: str, entity: Any) -> int:
        """Store an entity only if the key is absent; return 1 if stored."""
        with self._mutex:
            if key in self._data:
                return 0
            self._data[key] = entity
        callback = self.insert_callback
        if callback is not None:
            callback(self.index, key, entity)
        return 1

    def remove(self, key: str) -> None:
        """Delete a key together with its expiration."""
        with self._mutex:
            entity = self._data.pop(key, None)
            self._ttl.pop(key, None)
            self._cancel_timer(key)
        callback = self.delete_callback
        if callback is not None:
            callback(self.index, key, entity)

    def removes(self, *keys: str) -> int:
        """Delete the given keys; return how many existed."""
        deleted = 0
        for key in keys:
            with self._mutex:
                exists = key in self._data
            if exists:
                self.remove(key)
                deleted += 1
        return deleted

    def flush(self) -> None:
        """Drop all keys and expirations."""
        with self._mutex:
            self._data.clear()
            self._ttl.clear()
            for timer in self._timers.values():
                timer.cancel()
            self._timers.clear()

    # ---- expiration ----

    def _cancel_timer(self, key: str) -> None:
        timer = self._timers.pop(key, None)
        if timer is not None:
            timer.cancel()

    def _expire_task(self, key: str) -> None:
        with self.locked([key]):
            logger.info("expire %s", key)
            with self._mutex:
                deadline = self._ttl.get(key)
                if deadline is None:
                    return
                if time.time() > deadline:
                    self.remove(key)

    def expire(self, key: str, expire_at: float) -> None:
        """Make ``key`` expire at the given Unix time in seconds."""
        with self._mutex:
            self._ttl[key] = expire_at
            self._cancel_timer(key)
            timer = threading.Timer(max(0.0, expire_at - time.time()), self._expire_task, args=(key,))
            timer.daemon = True
            self._timers[key] = timer
            timer.start()

    def persist(self, key: str) -> None:
        """Remove the expiration of ``key``."""
        with self._mutex:
            self._ttl.pop(key, None)
            self._cancel_timer(key)

    def is_expired(self, key: str) -> bool:
        """Tell whether ``key`` has expired, deleting it if so."""
        with self._mutex:
            deadline = self._ttl.get(key)
            if deadline is None:
                return False
            expired = time.time() > deadline
            if expired:
                self.remove(key)
            return expired

    def get_expiration(self, key: str) -> Optional[float]:
        """Return the Unix time at which ``key`` expires, or None."""
        with self._mutex:
            return self._ttl.get(key)

    # ---- versions ----

    def _add_version(self, *keys: str) -> None:
        with self._mutex:
            for key in keys:
                self._versions[key] = (self.get_version(key) + 1) & _VERSION_MASK

    def get_version(self, key: str) -> int:
        with self._mutex:
            return self._versions.get(key, 0)

    # ---- traversal ----

    def items(self) -> Iterator[Tuple[str, Any, Optional[float]]]:
        """Yield ``(key, entity, expiration)`` for every stored key."""
        with self._mutex:
            snapshot = list(self._data.items())
        for key, entity in snapshot:
            yield key, entity, self.get_expiration(key)

    def key_count(self) -> int:
        with self._mutex:
            return len(self._data)

    def ttl_count(self) -> int:
        with self._mutex:
            return len(self._ttl)