import asyncio

import pytest

from emberkv.errors import (
    InvalidCrLfTerminatorError,
    ProtocolError,
    UnknownTypeSpecifierError,
)
from emberkv.resp import (
    Array,
    BulkString,
    Null,
    NullArray,
    NullString,
    SimpleError,
    SimpleString,
    encode,
    item_to_resp,
    parse,
    write,
)
from emberkv.stream import Item, ItemId


def _reader(data: bytes) -> asyncio.StreamReader:
    reader = asyncio.StreamReader()
    reader.feed_data(data)
    reader.feed_eof()
    return reader


class _BufferWriter:
    def __init__(self) -> None:
        self.buffer = bytearray()

    def write(self, data: bytes) -> None:
        self.buffer.extend(data)

    async def drain(self) -> None:
        pass


async def _written(value) -> bytes:
    writer = _BufferWriter()
    await write(writer, value)
    return bytes(writer.buffer)


@pytest.mark.asyncio
async def test_parse_simple_string():
    parsed = await parse(_reader(b"+This is a test string\r\n"))
    assert parsed == SimpleString("This is a test string")


@pytest.mark.asyncio
async def test_write_simple_string():
    assert await _written(SimpleString("Test string")) == b"+Test string\r\n"


@pytest.mark.asyncio
async def test_parse_bulk_string():
    assert await parse(_reader(b"$8\r\ntest foo\r\n")) == BulkString("test foo")


@pytest.mark.asyncio
async def test_write_bulk_string():
    assert await _written(BulkString("Test string")) == b"$11\r\nTest string\r\n"


@pytest.mark.asyncio
async def test_parse_null_string():
    assert await parse(_reader(b"$-1\r\n")) == NullString()


@pytest.mark.asyncio
async def test_write_null_string():
    assert await _written(NullString()) == b"$-1\r\n"


@pytest.mark.asyncio
async def test_parse_array():
    parsed = await parse(_reader(b"*3\r\n+OK1\r\n+OK2\r\n+OK3\r\n"))
    assert parsed == Array(
        [SimpleString("OK1"), SimpleString("OK2"), SimpleString("OK3")]
    )


@pytest.mark.asyncio
async def test_write_array():
    value = Array([SimpleString("Test1"), BulkString("Test2\n")])
    assert await _written(value) == b"*2\r\n+Test1\r\n$6\r\nTest2\n\r\n"


@pytest.mark.asyncio
async def test_parse_null_array():
    assert await parse(_reader(b"*-1\r\n")) == NullArray()


@pytest.mark.asyncio
async def test_write_null_array():
    assert await _written(NullArray()) == b"*-1\r\n"


@pytest.mark.asyncio
async def test_parse_null():
    assert await parse(_reader(b"_\r\n")) == Null()


@pytest.mark.asyncio
async def test_write_null():
    assert await _written(Null()) == b"_\r\n"


def test_encode_simple_error():
    assert encode(SimpleError("ERR", "boom")) == b"-ERR boom\r\n"


def test_encode_bulk_string_counts_bytes():
    data = encode(BulkString("é"))
    assert data.startswith(b"$2\r\n")


@pytest.mark.asyncio
async def test_round_trip_nested():
    value = Array(
        [
            BulkString("SET"),
            Array([SimpleString("a"), NullString(), NullArray(), Null()]),
            BulkString(""),
        ]
    )
    assert await parse(_reader(encode(value))) == value


@pytest.mark.asyncio
async def test_parse_consumes_exactly_one_value():
    reader = _reader(b"+first\r\n+second\r\n")
    assert await parse(reader) == SimpleString("first")
    assert await parse(reader) == SimpleString("second")


@pytest.mark.asyncio
async def test_unknown_type_specifier():
    with pytest.raises(UnknownTypeSpecifierError) as info:
        await parse(_reader(b"?x\r\n"))
    assert info.value.specifier == ord("?")


@pytest.mark.asyncio
async def test_bad_terminator_in_line():
    with pytest.raises(InvalidCrLfTerminatorError) as info:
        await parse(_reader(b"+abc\rx"))
    assert (info.value.first, info.value.second) == (ord("\r"), ord("x"))


@pytest.mark.asyncio
async def test_bad_terminator_after_bulk():
    with pytest.raises(InvalidCrLfTerminatorError):
        await parse(_reader(b"$3\r\nabcXY"))


@pytest.mark.asyncio
async def test_bad_length():
    with pytest.raises(ProtocolError):
        await parse(_reader(b"$abc\r\n"))


@pytest.mark.asyncio
async def test_invalid_utf8():
    with pytest.raises(ProtocolError):
        await parse(_reader(b"$1\r\n\xff\r\n"))


@pytest.mark.asyncio
async def test_truncated_input():
    with pytest.raises(asyncio.IncompleteReadError):
        await parse(_reader(b"*2\r\n+OK\r\n"))


def test_item_to_resp():
    item = Item(ItemId(5, 1), {"temperature": "36"})
    assert item_to_resp(item) == Array(
        [
            BulkString("5-1"),
            Array([BulkString("temperature"), BulkString("36")]),
        ]
    )