import pytest

from memkv.replies import (
    BulkReply,
    CommandError,
    EmptyMultiBulkReply,
    ErrorReply,
    IntReply,
    MultiBulkReply,
    MultiRawReply,
    NullBulkReply,
    OkReply,
    StatusReply,
    WrongTypeError,
    arg_num_error,
    syntax_error,
)


def _parse(data):
    """Parse one value from wire bytes; return (value, rest)."""
    head, _, rest = data.partition(b"\r\n")
    kind, body = head[:1], head[1:]
    if kind == b"+":
        return ("status", body.decode()), rest
    if kind == b"-":
        return ("error", body.decode()), rest
    if kind == b":":
        return int(body), rest
    if kind == b"$":
        size = int(body)
        if size < 0:
            return None, rest
        assert rest[size:size + 2] == b"\r\n"
        return rest[:size], rest[size + 2:]
    if kind == b"*":
        items = []
        for _ in range(int(body)):
            item, rest = _parse(rest)
            items.append(item)
        return items, rest
    raise ValueError(data)


def _decode(reply):
    value, rest = _parse(reply.to_bytes())
    assert rest == b""
    return value


def test_geo_position_wire_format():
    reply = MultiRawReply(
        [MultiBulkReply([b"13.361386698670685", b"38.11555536696687"]), EmptyMultiBulkReply()]
    )
    expected = b"*2\r\n*2\r\n$18\r\n13.361386698670685\r\n$17\r\n38.11555536696687\r\n*0\r\n"
    assert reply.to_bytes() == expected


def test_empty_multi_bulk():
    assert EmptyMultiBulkReply().to_bytes() == b"*0\r\n"
    assert EmptyMultiBulkReply().args == []


@pytest.mark.parametrize("code", [0, 7, -2, 2**40])
def test_int_round_trip(code):
    assert _decode(IntReply(code)) == code


@pytest.mark.parametrize("payload", [b"", b"value", b"with\r\nbreak", bytes(range(256))])
def test_bulk_round_trip(payload):
    assert _decode(BulkReply(payload)) == payload


def test_null_bulk_decodes_to_none():
    assert _decode(NullBulkReply()) is None


def test_multi_bulk_round_trip_with_nulls():
    args = [b"a", None, b"", b"ccc"]
    assert _decode(MultiBulkReply(args)) == args


def test_multi_raw_round_trip():
    reply = MultiRawReply([IntReply(5), BulkReply(b"x"), NullBulkReply(), MultiBulkReply([b"y"])])
    assert _decode(reply) == [5, b"x", None, [b"y"]]


def test_status_and_ok():
    assert _decode(StatusReply("string")) == ("status", "string")
    assert OkReply().to_bytes() == StatusReply("OK").to_bytes()
    assert OkReply().status == "OK"


def test_error_reply_round_trip():
    assert _decode(ErrorReply("ERR index out of range")) == ("error", "ERR index out of range")


def test_command_error_to_reply():
    error = CommandError("ERR value is not an integer or out of range")
    assert error.to_reply() == ErrorReply("ERR value is not an integer or out of range")
    assert str(error) == error.message


def test_wrong_type_error_is_command_error():
    error = WrongTypeError()
    assert isinstance(error, CommandError)
    assert error.to_reply().to_bytes().startswith(b"-WRONGTYPE")


def test_arg_num_error_message():
    assert arg_num_error("linsert").message == "ERR wrong number of arguments for 'linsert' command"


def test_syntax_error_message():
    assert syntax_error().to_reply() == ErrorReply("ERR syntax error")