"""A multi-database server that routes command lines to its keyspaces."""

from __future__ import annotations

import copy
import logging
import random
import re
import threading
import time
from dataclasses import dataclass
from typing import Any, Iterator, List, Optional, Tuple

from memkv import hashes, keys, lists  # noqa: F401  (registers the commands)
from memkv.db import DB, KeyEventCallback
from memkv.replies import (
    CmdLine,
    CommandError,
    ErrorReply,
    IntReply,
    OkReply,
    Reply,
    arg_num_error,
    syntax_error,
)
from memkv.router import validate_arity

logger = logging.getLogger(__name__)

DEFAULT_DATABASES = 16

_INT_PATTERN = re.compile(r"[+-]?[0-9]+")
_OUT_OF_RANGE = "ERR DB index is out of range"


def _text(arg: bytes) -> str:
    return arg.decode("utf-8", "surrogateescape")


def _parse_index(raw: bytes) -> Optional[int]:
    text = _text(raw)
    if not _INT_PATTERN.fullmatch(text):
        return None
    return int(text)


@dataclass
class Connection:
    """Client state the server needs: the selected database and transaction mode."""

    db_index: int = 0
    in_multi: bool = False

    def select_db(self, index: int) -> None:
        self.db_index = index


class Server:
    """A set of numbered keyspaces sharing one command interface."""

    def __init__(self, databases: int = DEFAULT_DATABASES) -> None:
        if databases <= 0:
            databases = DEFAULT_DATABASES
        self._dbs: List[DB] = [DB(index) for index in range(databases)]
        self._swap_lock = threading.Lock()
        self.insert_callback: Optional[KeyEventCallback] = None
        self.delete_callback: Optional[KeyEventCallback] = None

    @property
    def database_count(self) -> int:
        return len(self._dbs)

    # ---- command execution ----

    def exec(self, conn: Optional[Connection], cmd_line: CmdLine) -> Reply:
        """Run a command line on behalf of ``conn`` and return the reply."""
        if conn is None:
            conn = Connection()
        try:
            return self._dispatch(conn, cmd_line)
        except CommandError as error:
            return error.to_reply()
        except Exception:
            logger.warning("error occurs while executing command", exc_info=True)
            return ErrorReply("Err unknown")

    def _dispatch(self, conn: Connection, cmd_line: CmdLine) -> Reply:
        name = _text(cmd_line[0]).lower()
        if name == "flushall":
            return self.flush_all()
        if name == "flushdb":
            if not validate_arity(1, cmd_line):
                raise arg_num_error(name)
            if conn.in_multi:
                raise CommandError("ERR command 'FlushDB' cannot be used in MULTI")
            return self.flush_db(conn.db_index)
        if name == "select":
            if conn.in_multi:
                raise CommandError("cannot select database within multi")
            if len(cmd_line) != 2:
                raise arg_num_error("select")
            return exec_select(conn, self, list(cmd_line[1:]))
        if name == "copy":
            if len(cmd_line) < 3:
                raise arg_num_error("copy")
            return exec_copy(self, conn, list(cmd_line[1:]))
        return self.select_db(conn.db_index).exec(cmd_line)

    def exec_with_lock(self, conn: Connection, cmd_line: CmdLine) -> Reply:
        """Run a normal command; the caller already holds the key locks."""
        try:
            db = self.select_db(conn.db_index)
        except CommandError as error:
            return error.to_reply()
        return db.exec_with_lock(cmd_line)

    # ---- databases ----

    def select_db(self, index: int) -> DB:
        """Return the database with the given index."""
        if index < 0 or index >= len(self._dbs):
            raise CommandError(_OUT_OF_RANGE)
        return self._dbs[index]

    def load_db(self, index: int, db: DB) -> Reply:
        """Replace a database, keeping the old one's append hook."""
        old = self.select_db(index)
        db.index = index
        db.add_aof = old.add_aof
        with self._swap_lock:
            self._dbs[index] = db
        return OkReply()

    def flush_db(self, index: int) -> Reply:
        """Replace the database at ``index`` with an empty one."""
        self.select_db(index)
        return self.load_db(index, DB(index))

    def flush_all(self) -> Reply:
        """Empty every database."""
        for index in range(len(self._dbs)):
            self.flush_db(index)
        return OkReply()

    # ---- data access ----

    def get_entity(self, index: int, key: str) -> Any:
        return self.select_db(index).get_entity(key)

    def get_expiration(self, index: int, key: str) -> Optional[float]:
        return self.select_db(index).get_expiration(key)

    def items(self, index: int) -> Iterator[Tuple[str, Any, Optional[float]]]:
        return self.select_db(index).items()

    def get_db_size(self, index: int) -> Tuple[int, int]:
        """Return the number of keys and the number of keys with an expiration."""
        db = self.select_db(index)
        return db.key_count(), db.ttl_count()

    def get_avg_ttl(self, index: int, random_key_count: int) -> int:
        """Average remaining lifetime, in microseconds, over randomly drawn keys."""
        db = self.select_db(index)
        names = [key for key, _, _ in db.items()]
        if not names or random_key_count <= 0:
            return 0
        sample = random.choices(names, k=random_key_count)
        total = 0
        for key in sample:
            now = time.time()
            expiration = db.get_expiration(key)
            if expiration is None:
                continue
            remaining = int((expiration - now) * 1_000_000)
            if remaining > 0:
                total += remaining
        return total // len(sample)

    # ---- hooks ----

    def set_key_inserted_callback(self, callback: Optional[KeyEventCallback]) -> None:
        self.insert_callback = callback
        for db in self._dbs:
            db.insert_callback = callback

    def set_key_deleted_callback(self, callback: Optional[KeyEventCallback]) -> None:
        self.delete_callback = callback
        for db in self._dbs:
            db.delete_callback = callback


def exec_select(conn: Connection, server: Server, args: List[bytes]) -> Reply:
    """SELECT index: switch the connection to another database."""
    index = _parse_index(args[0])
    if index is None:
        raise CommandError("ERR invalid DB index")
    if index < 0 or index >= server.database_count:
        raise CommandError(_OUT_OF_RANGE)
    conn.select_db(index)
    return OkReply()


def exec_copy(server: Server, conn: Connection, args: List[bytes]) -> Reply:
    """COPY source destination [DB destination-db] [REPLACE]."""
    db = server.select_db(conn.db_index)
    dest_index = conn.db_index
    replace = False
    src_key, dest_key = _text(args[0]), _text(args[1])

    options = iter(args[2:])
    for raw in options:
        option = _text(raw).lower()
        if option == "db":
            value = next(options, None)
            if value is None:
                raise syntax_error()
            index = _parse_index(value)
            if index is None:
                raise syntax_error()
            if index < 0 or index >= server.database_count:
                raise CommandError(_OUT_OF_RANGE)
            dest_index = index
        elif option == "replace":
            replace = True
        else:
            raise syntax_error()

    if src_key == dest_key and dest_index == conn.db_index:
        raise CommandError("ERR source and destination objects are the same")

    entity = db.get_entity(src_key)
    if entity is None:
        return IntReply(0)

    dest_db = server.select_db(dest_index)
    if dest_db.get_entity(dest_key) is not None and not replace:
        return IntReply(0)

    dest_db.put_entity(dest_key, copy.deepcopy(entity))
    expiration = db.get_expiration(src_key)
    if expiration is not None:
        dest_db.expire(dest_key, expiration)
    db.add_aof([b"copy", *args])
    return IntReply(1)