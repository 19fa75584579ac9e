import pytest

from memkv import hashes
from memkv.db import DB
from memkv.replies import (
    BulkReply,
    CommandError,
    EmptyMultiBulkReply,
    ErrorReply,
    IntReply,
    MultiBulkReply,
    NullBulkReply,
    OkReply,
    WrongTypeError,
)


@pytest.fixture
def db():
    return DB(0)


def run(db, *parts):
    return db.exec([p.encode() for p in parts])


def line(*parts):
    return [p.encode() for p in parts]


def test_hset_hget_hexists_hstrlen_hlen(db):
    values = {str(i): f"value-{i}" for i in range(100)}
    for field, value in values.items():
        assert run(db, "hset", "key", field, value) == IntReply(1)
    for field, value in values.items():
        assert run(db, "hget", "key", field).to_bytes() == BulkReply(value.encode()).to_bytes()
        assert run(db, "hexists", "key", field) == IntReply(1)
        assert run(db, "hstrlen", "key", field) == IntReply(len(value))
    assert run(db, "hlen", "key") == IntReply(100)


def test_hset_existing_field_returns_zero(db):
    run(db, "hset", "key", "f", "a")
    assert run(db, "hset", "key", "f", "b") == IntReply(0)
    assert run(db, "hget", "key", "f") == BulkReply(b"b")


def test_missing_key_and_field(db):
    assert isinstance(run(db, "hget", "nokey", "f"), NullBulkReply)
    assert run(db, "hexists", "nokey", "f") == IntReply(0)
    assert run(db, "hstrlen", "nokey", "f") == IntReply(0)
    assert run(db, "hlen", "nokey") == IntReply(0)
    run(db, "hset", "key", "f", "v")
    assert isinstance(run(db, "hget", "key", "other"), NullBulkReply)
    assert run(db, "hexists", "key", "other") == IntReply(0)


def test_hdel(db):
    fields = [str(i) for i in range(100)]
    for field in fields:
        run(db, "hset", "key", field, "v" + field)
    assert run(db, "hdel", "key", *fields) == IntReply(100)
    assert run(db, "hlen", "key") == IntReply(0)
    assert db.get_entity("key") is None


def test_hmset_hmget(db):
    fields = [f"field{i}" for i in range(100)]
    values = [f"value{i}" for i in range(100)]
    args = ["key"]
    for f, v in zip(fields, values):
        args += [f, v]
    assert isinstance(run(db, "hmset", *args), OkReply)
    actual = run(db, "hmget", "key", *fields)
    assert actual.to_bytes() == MultiBulkReply([v.encode() for v in values]).to_bytes()


def test_hmset_odd_pairs_is_syntax_error(db):
    with pytest.raises(CommandError, match="ERR syntax error"):
        hashes.exec_hmset(db, line("key", "a", "1", "b"))


def test_hmget_missing_key_gives_nulls(db):
    assert run(db, "hmget", "nokey", "a", "b").to_bytes() == b"*2\r\n$-1\r\n$-1\r\n"


def test_hgetall_hkeys_hvals_hrandfield(db):
    size = 100
    value_map = {f"field{i}": f"value{i}" for i in range(size)}
    for field, value in value_map.items():
        hashes.exec_hset(db, line("key", field, value))

    result = run(db, "hgetall", "key")
    assert len(result.args) == 2 * size
    pairs = dict(zip(result.args[0::2], result.args[1::2]))
    assert {k.decode(): v.decode() for k, v in pairs.items()} == value_map

    result = run(db, "hkeys", "key")
    assert sorted(a.decode() for a in result.args) == sorted(value_map)

    result = run(db, "hvals", "key")
    assert sorted(a.decode() for a in result.args) == sorted(value_map.values())

    assert run(db, "hrandfield", "key", "0").to_bytes() == b"*0\r\n"

    result = run(db, "hrandfield", "key", str(size + 100))
    assert len(result.args) == size
    assert len(set(result.args)) == size

    result = run(db, "hrandfield", "key", str(size + 100), "withvalues")
    assert len(result.args) == 2 * size

    result = run(db, "hrandfield", "key", str(-size - 10))
    assert len(result.args) == size + 10

    result = run(db, "hrandfield", "key", str(-size - 10), "withvalues")
    assert len(result.args) == 2 * (size + 10)
    for k, v in zip(result.args[0::2], result.args[1::2]):
        assert value_map[k.decode()] == v.decode()


def test_collections_of_missing_key_are_empty(db):
    for name in ("hkeys", "hvals", "hgetall"):
        assert run(db, name, "nokey").to_bytes() == b"*0\r\n"
    assert isinstance(run(db, "hrandfield", "nokey"), EmptyMultiBulkReply)


def test_hrandfield_errors(db):
    run(db, "hset", "key", "f", "v")
    assert run(db, "hrandfield", "key", "1", "bogus") == ErrorReply("ERR syntax error")
    assert run(db, "hrandfield", "key", "x") == ErrorReply("ERR value is not an integer or out of range")
    assert run(db, "hrandfield", "key", "1", "withvalues", "x") == ErrorReply(
        "ERR wrong number of arguments for 'hrandfield' command"
    )
    assert run(db, "hrandfield", "key") == MultiBulkReply([b"f"])


def test_hincrby_and_hincrbyfloat(db):
    assert run(db, "hincrby", "key", "a", "1") == BulkReply(b"1")
    assert run(db, "hincrby", "key", "a", "1") == BulkReply(b"2")
    result = run(db, "hincrbyfloat", "key", "b", "1.2")
    assert abs(float(result.arg) - 1.2) < 1e-4
    result = run(db, "hincrbyfloat", "key", "b", "1.2")
    assert abs(float(result.arg) - 2.4) < 1e-4
    assert result.arg == b"2.4"


def test_hincrbyfloat_formats_without_exponent(db):
    run(db, "hset", "key", "f", "1.5")
    assert run(db, "hincrbyfloat", "key", "f", "1.5") == BulkReply(b"3")
    run(db, "hset", "key", "g", "1e20")
    assert run(db, "hincrbyfloat", "key", "g", "0") == BulkReply(b"100000000000000000000")


def test_hincr_errors(db):
    assert run(db, "hincrby", "key", "a", "x") == ErrorReply("ERR value is not an integer or out of range")
    assert run(db, "hincrbyfloat", "key", "a", "x") == ErrorReply("ERR value is not a valid float")
    run(db, "hset", "key", "s", "abc")
    assert run(db, "hincrby", "key", "s", "1") == ErrorReply("ERR hash value is not an integer")
    assert run(db, "hincrbyfloat", "key", "s", "1") == ErrorReply("ERR hash value is not a float")


def test_hsetnx(db):
    assert run(db, "hsetnx", "key", "field", "first") == IntReply(1)
    assert run(db, "hsetnx", "key", "field", "second") == IntReply(0)
    assert run(db, "hget", "key", "field") == BulkReply(b"first")


def test_wrong_type(db):
    db.put_entity("key", b"plain string")
    with pytest.raises(WrongTypeError):
        hashes.exec_hget(db, line("key", "f"))
    reply = run(db, "hset", "key", "f", "v")
    assert reply.message.startswith("WRONGTYPE")


def test_aof_records_writes(db):
    logged = []
    db.add_aof = logged.append
    run(db, "hset", "key", "f", "v")
    run(db, "hsetnx", "key", "f", "w")
    run(db, "hdel", "key", "missing")
    assert logged == [line("hset", "key", "f", "v")]


def test_undo_hdel(db):
    run(db, "hset", "key", "field", "value")
    cmd = line("hdel", "key", "field")
    undo = hashes.undo_hdel(db, cmd[1:])
    db.exec(cmd)
    for undo_line in undo:
        db.exec(undo_line)
    assert run(db, "hget", "key", "field") == BulkReply(b"value")


def test_undo_hset(db):
    run(db, "hset", "key", "field", "value")
    cmd = line("hset", "key", "field", "value2")
    undo = hashes.undo_hset(db, cmd[1:])
    db.exec(cmd)
    for undo_line in undo:
        db.exec(undo_line)
    assert run(db, "hget", "key", "field") == BulkReply(b"value")


def test_undo_hmset(db):
    run(db, "hmset", "key", "f1", "value", "f2", "value")
    cmd = line("hmset", "key", "f1", "value2", "f2", "value2")
    undo = hashes.undo_hmset(db, cmd[1:])
    db.exec(cmd)
    for undo_line in undo:
        db.exec(undo_line)
    assert run(db, "hget", "key", "f1") == BulkReply(b"value")
    assert run(db, "hget", "key", "f2") == BulkReply(b"value")


def test_undo_hincr(db):
    run(db, "hset", "key", "field", "1")
    cmd = line("hinctby", "key", "field", "2")
    undo = hashes.undo_hincr(db, cmd[1:])
    db.exec(cmd)
    for undo_line in undo:
        db.exec(undo_line)
    assert run(db, "hget", "key", "field") == BulkReply(b"1")


def test_rollback_hash_fields_lines(db):
    assert hashes.rollback_hash_fields(db, "nokey", "f") == [line("DEL", "nokey")]
    run(db, "hset", "key", "a", "1")
    assert hashes.rollback_hash_fields(db, "key", "a", "b") == [
        line("HSET", "key", "a", "1"),
        line("HDEL", "key", "b"),
    ]


def test_get_or_init_dict(db):
    created, inited = hashes.get_or_init_dict(db, "key")
    assert inited is True and created == {}
    again, inited = hashes.get_or_init_dict(db, "key")
    assert inited is False and again is created
    assert hashes.get_as_dict(db, "other") is None


def test_unknown_and_arity(db):
    assert run(db, "hset", "key", "f") == ErrorReply("ERR wrong number of arguments for 'hset' command")
    assert run(db, "hlen") == ErrorReply("ERR wrong number of arguments for 'hlen' command")