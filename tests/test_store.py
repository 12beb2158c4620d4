import asyncio

import pytest

from emberkv import resp
from emberkv.errors import ContextError, ExpectedOtherTypeError, IdNotGreaterError
from emberkv.resp import SimpleString
from emberkv.store import DataStore, Info, Role, value_kind
from emberkv.stream import ItemId, ProvidedItemId, Stream

FAR_FUTURE_MS = 2**62

SIMPLE_RDB = bytes(
    [
        82, 69, 68, 73, 83, 48, 48, 48, 51, 250, 9, 114, 101, 100, 105, 115, 45, 118, 101, 114,
        5, 55, 46, 50, 46, 48, 250, 10, 114, 101, 100, 105, 115, 45, 98, 105, 116, 115, 192,
        64, 254, 0, 251, 1, 0, 0, 5, 97, 112, 112, 108, 101, 5, 103, 114, 97, 112, 101, 255,
        19, 92, 244, 85, 210, 137, 13, 126, 10,
    ]
)


def _expiry_rdb() -> bytes:
    return (
        b"REDIS0011"
        + b"\xfe\x00\xfb\x03\x02"
        + b"\xfc" + FAR_FUTURE_MS.to_bytes(8, "little") + b"\x00\x04kept\x05value"
        + b"\xfc" + (1000).to_bytes(8, "little") + b"\x00\x04gone\x05value"
        + b"\x00\x03num\xc0\x2a"
        + b"\xff" + bytes(8)
    )


def test_role_display_and_kind():
    assert str(Role()) == "master"
    assert Role().is_master()
    replica = Role("localhost:6379")
    assert str(replica) == "slave"
    assert not replica.is_master()


def test_info_replication_id_str():
    info = Info(Role(), replication_id=bytes(range(20)))
    assert info.replication_id_str() == "000102030405060708090a0b0c0d0e0f10111213"
    assert info.replication_offset == 0


def test_generated_info_has_twenty_byte_id():
    info = DataStore().info()
    assert len(info.replication_id) == 20
    assert info.replication_id_str() == info.replication_id.hex()
    assert str(info.role) == "master"


def test_value_kind():
    assert value_kind("hello") == "string"
    assert value_kind(Stream("s")) == "stream"


def test_set_and_get():
    store = DataStore()
    assert store.set("k", "v") is None
    assert store.get("k") == "v"
    assert store.set("k", "w") == "v"
    assert store.get("k") == "w"
    assert store.get("missing") is None


def test_expired_value_is_hidden():
    store = DataStore()
    store.set("k", "v", expires_at=0)
    assert store.get("k") is None
    assert store.set("k", "new") is None
    store.set("later", "x", expires_at=FAR_FUTURE_MS)
    assert store.get("later") == "x"


def test_keys_lists_stored_keys():
    store = DataStore()
    store.set("a", "1")
    store.set("b", "2")
    assert sorted(store.keys()) == ["a", "b"]


def test_get_config():
    store = DataStore({"dir": "/tmp"})
    assert store.get_config("dir") == "/tmp"
    assert store.get_config("dbfilename") is None


def test_insert_stream_item_creates_stream():
    store = DataStore()
    item_id = store.insert_stream_item("s", ProvidedItemId.parse("1-1"), {"a": "b"})
    assert item_id == ItemId(1, 1)
    stream = store.get("s")
    assert value_kind(stream) == "stream"
    assert [item.id for item in stream.range(None, None)] == [ItemId(1, 1)]
    with pytest.raises(IdNotGreaterError):
        store.insert_stream_item("s", ProvidedItemId.parse("1-1"), {})


def test_insert_stream_item_on_string_fails():
    store = DataStore()
    store.set("k", "v")
    with pytest.raises(ExpectedOtherTypeError):
        store.insert_stream_item("k", ProvidedItemId.parse("1-1"), {})
    with pytest.raises(ExpectedOtherTypeError):
        store.notify_on_stream_insert("k", asyncio.Queue(1))


def test_notify_on_stream_insert_delivers_item():
    store = DataStore()
    queue = asyncio.Queue(1)
    store.notify_on_stream_insert("s", queue)
    item_id = store.insert_stream_item("s", ProvidedItemId.parse("5-0"), {"f": "v"})
    assert queue.get_nowait() == ("s", item_id, {"f": "v"})


@pytest.mark.asyncio
async def test_load_from_rdb(tmp_path):
    (tmp_path / "dump.rdb").write_bytes(SIMPLE_RDB)
    store = DataStore({"dir": str(tmp_path), "dbfilename": "dump.rdb"})
    await store.init()
    assert store.get("apple") == "grape"
    assert store.keys() == ["apple"]


@pytest.mark.asyncio
async def test_load_from_rdb_with_expiry(tmp_path):
    (tmp_path / "dump.rdb").write_bytes(_expiry_rdb())
    store = DataStore({"dir": str(tmp_path), "dbfilename": "dump.rdb"})
    await store.load_from_rdb()
    assert sorted(store.keys()) == ["kept", "num"]
    assert store.get("kept") == "value"
    assert store.get("num") == "42"
    assert store.get("gone") is None


@pytest.mark.asyncio
async def test_load_without_config_loads_nothing():
    store = DataStore({"dir": "/nonexistent"})
    await store.init()
    assert store.keys() == []


@pytest.mark.asyncio
async def test_load_missing_file_raises_context(tmp_path):
    store = DataStore({"dir": str(tmp_path), "dbfilename": "absent.rdb"})
    with pytest.raises(ContextError) as info:
        await store.load_from_rdb()
    assert info.value.is_fatal()
    assert isinstance(info.value.cause, OSError)


@pytest.mark.asyncio
async def test_replica_init_performs_handshake():
    received = []
    replies = {
        "PING": SimpleString("PONG"),
        "REPLCONF": SimpleString("OK"),
        "PSYNC": SimpleString("FULLRESYNC abc 0"),
    }

    async def handle(reader, writer):
        try:
            while True:
                command = await resp.parse(reader)
                words = [part.value for part in command.items]
                received.append(words)
                await resp.write(writer, replies[words[0].upper()])
        except asyncio.IncompleteReadError:
            pass
        finally:
            writer.close()

    server = await asyncio.start_server(handle, "127.0.0.1", 0)
    port = server.sockets[0].getsockname()[1]
    try:
        store = DataStore({"port": "6380"}, Role(f"127.0.0.1:{port}"))
        connection = await store.init()
        assert connection.replication_id == "abc"
        assert connection.replication_offset == 0
        assert received == [
            ["PING"],
            ["REPLCONF", "listening-port", "6380"],
            ["REPLCONF", "capa", "psync2"],
            ["PSYNC", "?", "-1"],
        ]
        connection.writer.close()
    finally:
        server.close()
        await server.wait_closed()