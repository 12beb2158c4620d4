"""The shared key space, server information and start-up loading."""

from __future__ import annotations

import dataclasses
import logging
import re
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional, Union

from .errors import ExpectedOtherTypeError, ProtocolError, with_context
from .rdb import parse_database
from .replication import MasterConnection
from .stream import InsertListener, ItemId, ProvidedItemId, Stream

log = logging.getLogger(__name__)

Value = Union[str, Stream]

_DEFAULT_PORT = "6379"
_PORT = re.compile(r"\+?[0-9]+")
_U16_MAX = 0xFFFF


def _now_ms() -> int:
    return time.time_ns() // 1_000_000


def value_kind(value: Value) -> str:
    """Name of the type of a stored value, as reported by TYPE."""
    if isinstance(value, Stream):
        return "stream"
    if isinstance(value, str):
        return "string"
    raise TypeError(f"not a stored value: {value!r}")


@dataclass(frozen=True)
class Role:
    """Replication role: a master, or a replica of `master_address`."""

    master_address: Optional[str] = None

    def is_master(self) -> bool:
        return self.master_address is None

    def __str__(self) -> str:
        return "master" if self.is_master() else "slave"


def _generate_replication_id(now_ns: int) -> bytes:
    raw = (now_ns % 2**128).to_bytes(16, "little")
    replication_id = bytearray(20)
    for start in range(len(raw) - 3):
        window = raw[start:start + 4]
        for offset in (start, start + 4):
            current = replication_id[offset:offset + 4]
            replication_id[offset:offset + 4] = bytes(
                (a + b) & 0xFF for a, b in zip(current, window)
            )
    return bytes(replication_id)


@dataclass
class Info:
    """Replication information reported by INFO."""

    role: Role
    replication_id: bytes = field(
        default_factory=lambda: _generate_replication_id(time.time_ns())
    )
    replication_offset: int = 0

    def replication_id_str(self) -> str:
        return self.replication_id.hex()


@dataclass
class _Entry:
    value: Value
    expires_at: Optional[int] = None

    def is_live(self, now_ms: int) -> bool:
        return self.expires_at is None or self.expires_at > now_ms


def _parse_port(text: str) -> int:
    if _PORT.fullmatch(text) is None or int(text) > _U16_MAX:
        raise ProtocolError("Parse error (int)")
    return int(text)


class DataStore:
    """Keys with optional expiry times (milliseconds since the Unix epoch)."""

    def __init__(
        self, config: Optional[Mapping[str, str]] = None, role: Optional[Role] = None
    ) -> None:
        self._data: dict[str, _Entry] = {}
        self._config: dict[str, str] = dict(config or {})
        self._info = Info(role or Role())

    def info(self) -> Info:
        return dataclasses.replace(self._info)

    async def init(self) -> Optional[MasterConnection]:
        """Load the snapshot as a master, or handshake with the master as a replica."""
        role = self._info.role
        if role.is_master():
            await self.load_from_rdb()
            return None
        return await self.connect_to_master(role.master_address)

    async def connect_to_master(self, master: str) -> MasterConnection:
        """Connect to `master` (`host:port`) and run the replication handshake."""
        port = _parse_port(self._config.get("port", _DEFAULT_PORT))
        connection = await MasterConnection.connect(master, port)
        await connection.init()
        return connection

    async def load_from_rdb(self) -> None:
        """Load keys from the RDB file named by the `dir` and `dbfilename` config."""
        log.info("Trying to read data from persistent store")
        directory = self._config.get("dir")
        filename = self._config.get("dbfilename")
        if directory is None or filename is None:
            if directory is not None:
                log.info("Not loading database, `dbfilename` not provided")
            elif filename is not None:
                log.info("Not loading database, `dir` not provided")
            else:
                log.info("Not loading database, `dir` and `dbfilename` not provided")
            return

        path = Path(directory) / filename
        try:
            data = path.read_bytes()
        except OSError as err:
            raise with_context(err, f"File path {str(path)!r}") from err

        database = parse_database(data)
        for key, value in database.keys.items():
            self._data[key] = _Entry(str(value))
        now = _now_ms()
        for key, (value, expires_at) in database.expiring.items():
            if expires_at < now:
                continue
            self._data[key] = _Entry(str(value), expires_at)

    def set(self, key: str, value: Value, expires_at: Optional[int] = None) -> Optional[Value]:
        """Store `value`; return the previous value if it had not expired."""
        now = _now_ms()
        previous = self._data.get(key)
        self._data[key] = _Entry(value, expires_at)
        if previous is not None and previous.is_live(now):
            return previous.value
        return None

    def get(self, key: str) -> Optional[Value]:
        """Return the value of `key`, or None if it is absent or expired."""
        entry = self._data.get(key)
        if entry is None or not entry.is_live(_now_ms()):
            return None
        return entry.value

    def _stream(self, key: str) -> Stream:
        entry = self._data.setdefault(key, _Entry(Stream(key)))
        if not isinstance(entry.value, Stream):
            raise ExpectedOtherTypeError("stream")
        return entry.value

    def insert_stream_item(
        self,
        key: str,
        provided: Union[ProvidedItemId, ItemId],
        data: Mapping[str, str],
    ) -> ItemId:
        """Append to the stream at `key`, creating it if needed."""
        return self._stream(key).insert(provided, data)

    def notify_on_stream_insert(self, key: str, listener: InsertListener) -> None:
        """Have `listener` receive the next item added to the stream at `key`."""
        self._stream(key).notify_on_insert(listener)

    def keys(self) -> list[str]:
        return list(self._data)

    def get_config(self, key: str) -> Optional[str]:
        return self._config.get(key)