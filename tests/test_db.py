import threading
import time

from memkv.db import DB
from memkv.replies import BulkReply, ErrorReply, NullBulkReply, OkReply, arg_num_error, syntax_error
from memkv.router import Flag, no_prepare, read_first_key, register_command, write_first_key


def _set(db, args):
    db.put_entity(args[0].decode(), args[1])
    return OkReply()


def _get(db, args):
    value = db.get_entity(args[0].decode())
    return NullBulkReply() if value is None else BulkReply(value)


def _fail(db, args):
    raise syntax_error()


register_command("DBTestSet", _set, write_first_key, None, 3, Flag.WRITE)
register_command("DBTestGet", _get, read_first_key, None, 2, Flag.READ_ONLY)
register_command("DBTestFail", _fail, no_prepare, None, -1, Flag.WRITE)


def test_exec_set_then_get():
    db = DB(0)
    assert isinstance(db.exec([b"DBTESTSET", b"k", b"v"]), OkReply)
    assert db.exec([b"dbtestget", b"k"]) == BulkReply(b"v")
    assert db.exec([b"dbtestget", b"missing"]) == NullBulkReply()


def test_exec_unknown_command():
    reply = DB(0).exec([b"NoSuchCmd", b"x"])
    assert reply == ErrorReply("ERR unknown command '" + "nosuchcmd" + "'")


def test_exec_wrong_arity():
    reply = DB(0).exec([b"dbtestset", b"k"])
    assert reply == arg_num_error("dbtestset").to_reply()


def test_exec_command_error_becomes_reply():
    assert DB(0).exec([b"dbtestfail"]) == syntax_error().to_reply()


def test_write_commands_bump_version():
    db = DB(0)
    before = db.get_version("k")
    db.exec([b"dbtestset", b"k", b"v"])
    after = db.get_version("k")
    assert after == before + 1
    db.exec([b"dbtestget", b"k"])
    assert db.get_version("k") == after


def test_exec_with_lock_runs_without_version():
    db = DB(0)
    assert isinstance(db.exec_with_lock([b"dbtestset", b"k", b"v"]), OkReply)
    assert db.get_entity("k") == b"v"
    assert db.get_version("k") == db.get_version("never-touched")


def test_put_variants_and_insert_callback():
    db = DB(3)
    inserted = []
    db.insert_callback = lambda index, key, entity: inserted.append((index, key, entity))
    assert db.put_if_exists("k", b"x") == 0
    assert db.get_entity("k") is None
    assert db.put_entity("k", b"v") == 1
    assert db.put_entity("k", b"w") == 0
    assert db.put_if_absent("k", b"z") == 0
    assert db.put_if_exists("k", b"y") == 1
    assert db.get_entity("k") == b"y"
    assert inserted == [(3, "k", b"v")]


def test_remove_calls_delete_callback():
    db = DB(0)
    deleted = []
    db.delete_callback = lambda index, key, entity: deleted.append((key, entity))
    db.put_entity("k", b"v")
    db.remove("k")
    db.remove("gone")
    assert deleted == [("k", b"v"), ("gone", None)]
    assert db.get_entity("k") is None


def test_removes_counts_existing_keys():
    db = DB(0)
    db.put_entity("a", b"1")
    db.put_entity("b", b"2")
    assert db.removes("a", "b", "c") == 2
    assert db.key_count() == 0


def test_expire_in_past_hides_key():
    db = DB(0)
    db.put_entity("k", b"v")
    db.expire("k", time.time() - 10)
    assert db.get_entity("k") is None
    assert db.key_count() == 0
    assert db.get_expiration("k") is None


def test_expire_and_persist():
    db = DB(0)
    db.put_entity("k", b"v")
    deadline = time.time() + 1000
    db.expire("k", deadline)
    assert db.get_expiration("k") == deadline
    assert db.ttl_count() == db.key_count()
    assert db.is_expired("k") is False
    db.persist("k")
    assert db.get_expiration("k") is None
    assert db.get_entity("k") == b"v"


def test_background_expiration_removes_key():
    db = DB(0)
    db.put_entity("k", b"v")
    db.expire("k", time.time() + 0.05)
    for _ in range(100):
        if db.key_count() == 0:
            break
        time.sleep(0.02)
    assert db.key_count() == 0
    assert db.ttl_count() == 0


def test_items_reports_expirations():
    db = DB(0)
    db.put_entity("a", b"1")
    db.put_entity("b", b"2")
    deadline = time.time() + 1000
    db.expire("b", deadline)
    assert {key: (entity, exp) for key, entity, exp in db.items()} == {
        "a": (b"1", None),
        "b": (b"2", deadline),
    }


def test_flush_empties_db():
    db = DB(0)
    db.put_entity("a", b"1")
    db.expire("a", time.time() + 1000)
    db.flush()
    assert db.key_count() == 0
    assert db.ttl_count() == 0
    assert list(db.items()) == []


def test_locked_blocks_other_threads():
    db = DB(0)
    db.put_entity("k", b"before")
    acquired = threading.Event()

    def worker():
        with db.locked(["k"], []):
            acquired.set()
            db.put_entity("k", b"worker")

    with db.locked(["k"], ["other"]):
        thread = threading.Thread(target=worker)
        thread.start()
        assert not acquired.wait(0.1)
        assert db.get_entity("k") == b"before"
    thread.join(2)
    assert acquired.is_set()
    assert db.get_entity("k") == b"worker"