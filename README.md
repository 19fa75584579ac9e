# memkv

An in-memory key-value database engine with a Redis-compatible command
language. It holds lists and hashes under string keys, supports key expiry
and several numbered databases, and answers every command with a reply
object that serializes to the RESP wire format.

## Installation

```
pip install .
```

To run the test suite:

```
pip install .[test]
pytest
```

## Usage

A `Server` (in `memkv.server`) holds a set of numbered databases, 16 by
default. Commands are passed as a list of byte strings, together with a
`Connection` that remembers which database is selected.

```python
from memkv.server import Connection, Server

server = Server(16)
conn = Connection()

server.exec(conn, [b"rpush", b"fruits", b"apple", b"pear"])
reply = server.exec(conn, [b"lrange", b"fruits", b"0", b"-1"])
print(reply.to_bytes())   # b"*2\r\n$5\r\napple\r\n$4\r\npear\r\n"

server.exec(conn, [b"hset", b"user", b"name", b"alice"])
server.exec(conn, [b"expire", b"user", b"60"])
print(server.exec(conn, [b"ttl", b"user"]).to_bytes())

server.exec(conn, [b"select", b"1"])
```

Every call returns a reply object from `memkv.replies` (`IntReply`,
`BulkReply`, `NullBulkReply`, `MultiBulkReply`, `EmptyMultiBulkReply`,
`StatusReply`, `OkReply`, `ErrorReply`); `to_bytes()` gives its wire
encoding. Errors such as an unknown command, a wrong argument count or a
value of the wrong type come back as an `ErrorReply` rather than being
raised.

A single database can also be driven directly. Commands are entered in the
command table when the modules defining them are imported; `memkv.server`
imports all of them.

```python
import memkv.lists  # registers the list commands
from memkv.db import DB

db = DB(0)
db.exec([b"lpush", b"queue", b"job"])
```

`DB` also offers direct access to its data: `get_entity`, `put_entity`,
`put_if_absent`, `put_if_exists`, `remove`, `removes`, `expire` (a Unix time
in seconds), `persist`, `get_expiration` and `items()`, which yields
`(key, entity, expiration)` for every key. Lists are stored as
`collections.deque` of bytes and hashes as `dict` of bytes.

### Supported commands

- Keys: `DEL`, `EXISTS`, `TYPE`, `RENAME`, `RENAMENX`, `EXPIRE`, `EXPIREAT`,
  `EXPIRETIME`, `PEXPIRE`, `PEXPIREAT`, `PEXPIRETIME`, `TTL`, `PTTL`,
  `PERSIST`, `KEYS`
- Lists: `LPUSH`, `LPUSHX`, `RPUSH`, `RPUSHX`, `LPOP`, `RPOP`, `RPOPLPUSH`,
  `LREM`, `LLEN`, `LINDEX`, `LSET`, `LRANGE`, `LTRIM`, `LINSERT`
- Hashes: `HSET`, `HSETNX`, `HGET`, `HEXISTS`, `HDEL`, `HLEN`, `HSTRLEN`,
  `HMSET`, `HMGET`, `HKEYS`, `HVALS`, `HGETALL`, `HINCRBY`, `HINCRBYFLOAT`,
  `HRANDFIELD`
- Handled by `Server`: `SELECT`, `COPY` (with `DB` and `REPLACE`), `FLUSHDB`,
  `FLUSHALL`

### Undo logs and hooks

Write commands carry an undo function. `memkv.router.get_command(name).undo`
returns, for a given database and argument list, the command lines that
restore the affected keys to their state before the command runs.

Each `DB` has an `add_aof` callable that receives the command line of every
successful write; by default it discards them. `Server.set_key_inserted_callback`
and `Server.set_key_deleted_callback` install functions called with
`(db_index, key, entity)` when keys are added or removed.

## What it does not do

memkv is an engine to be embedded, not a stand-alone server. It has no
network listener, no persistence to disk, no string, set or sorted-set
commands, no transactions (`MULTI`/`EXEC`/`WATCH`), no authentication, no
publish/subscribe and no replication. `PING`, `INFO` and `COMMAND` are not
answered.