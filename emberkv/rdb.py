"""Reader for RDB snapshot files."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Optional, Union

from .errors import (
    ProtocolError,
    RdbParseError,
    ServerError,
    UnimplementedError,
    UnsupportedRdbVersionError,
    with_context,
)

log = logging.getLogger(__name__)

RdbValue = Union[str, int]

_MAGIC = b"REDIS"
_SUPPORTED_VERSIONS = (3, 11)
_VERSION = re.compile(r"\+?[0-9]+")
_CHECKSUM_SIZE = 8

_OP_EOF = 0xFF
_OP_SELECT_DB = 0xFE
_OP_EXPIRE_TIME = 0xFD
_OP_EXPIRE_TIME_MS = 0xFC
_OP_RESIZE_DB = 0xFB
_OP_AUX = 0xFA
_TYPE_STRING = 0x00
_ENC_INT8 = 0xC0


@dataclass
class Database:
    """Contents of an RDB file.

    Expiry times in `expiring` are milliseconds since the Unix epoch.
    """

    aux: dict[str, str] = field(default_factory=dict)
    keys: dict[str, RdbValue] = field(default_factory=dict)
    expiring: dict[str, tuple[RdbValue, int]] = field(default_factory=dict)


@dataclass(frozen=True)
class _SelectDb:
    index: int


@dataclass(frozen=True)
class _ResizeDb:
    hash_table_size: int
    expire_table_size: int


@dataclass(frozen=True)
class _Aux:
    key: str
    value: str


@dataclass(frozen=True)
class _Entry:
    key: str
    value: RdbValue
    expires_at_ms: Optional[int] = None


_Section = Union[_SelectDb, _ResizeDb, _Aux, _Entry]


class _Cursor:
    """Sequential reader over a byte string."""

    def __init__(self, data: bytes) -> None:
        self._data = bytes(data)
        self._pos = 0

    @property
    def remaining(self) -> int:
        return len(self._data) - self._pos

    def peek(self) -> Optional[int]:
        return self._data[self._pos] if self._pos < len(self._data) else None

    def take(self, count: int, what: str) -> bytes:
        end = self._pos + count
        if end > len(self._data):
            raise RdbParseError(
                f"unexpected end of input while reading {what} at offset {self._pos}"
            )
        chunk = self._data[self._pos:end]
        self._pos = end
        return chunk

    def byte(self, what: str) -> int:
        return self.take(1, what)[0]


def _read_length(cursor: _Cursor) -> int:
    first = cursor.byte("length")
    kind = first >> 6
    if kind == 0:
        return first & 0x3F
    if kind == 1:
        return ((first & 0x3F) << 8) | cursor.byte("length")
    if kind == 2:
        return int.from_bytes(cursor.take(4, "length"), "little")
    raise RdbParseError(f"byte 0x{first:02x} does not encode a length")


def _read_string(cursor: _Cursor) -> RdbValue:
    first = cursor.peek()
    if first is None:
        raise RdbParseError("unexpected end of input while reading string")
    if first >> 6 == 3:
        if first != _ENC_INT8:
            raise RdbParseError(f"unsupported string encoding 0x{first:02x}")
        cursor.take(1, "string encoding")
        return int.from_bytes(cursor.take(1, "integer"), "little", signed=True)
    length = _read_length(cursor)
    raw = cursor.take(length, "string")
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError as err:
        raise RdbParseError("string is not valid UTF-8") from err


def _read_key(cursor: _Cursor) -> str:
    value = _read_string(cursor)
    return str(value) if isinstance(value, int) else value


def _read_key_value(cursor: _Cursor) -> tuple[str, RdbValue]:
    value_type = cursor.byte("value type")
    if value_type != _TYPE_STRING:
        raise RdbParseError(f"unsupported value type {value_type}")
    key = _read_key(cursor)
    return key, _read_string(cursor)


def _read_section(cursor: _Cursor) -> _Section:
    opcode = cursor.peek()
    if opcode == _TYPE_STRING:
        key, value = _read_key_value(cursor)
        return _Entry(key, value)
    opcode = cursor.byte("section opcode")
    if opcode == _OP_SELECT_DB:
        return _SelectDb(_read_length(cursor))
    if opcode == _OP_EXPIRE_TIME:
        seconds = int.from_bytes(cursor.take(4, "expire time"), "little")
        key, value = _read_key_value(cursor)
        return _Entry(key, value, seconds * 1000)
    if opcode == _OP_EXPIRE_TIME_MS:
        millis = int.from_bytes(cursor.take(8, "expire time"), "little")
        key, value = _read_key_value(cursor)
        return _Entry(key, value, millis)
    if opcode == _OP_RESIZE_DB:
        hash_size = _read_length(cursor)
        return _ResizeDb(hash_size, _read_length(cursor))
    if opcode == _OP_AUX:
        key = _read_key(cursor)
        return _Aux(key, _read_key(cursor))
    if opcode == _OP_EOF:
        raise RdbParseError("incomplete end-of-file section")
    raise RdbParseError(f"unknown section opcode 0x{opcode:02x}")


def _at_end_marker(cursor: _Cursor) -> bool:
    return cursor.peek() == _OP_EOF and cursor.remaining >= 1 + _CHECKSUM_SIZE


def _read_version(cursor: _Cursor) -> int:
    raw = cursor.take(4, "version")
    try:
        text = raw.decode("utf-8")
    except UnicodeDecodeError as err:
        raise ProtocolError("Invalid UTF-8 sequence") from err
    if _VERSION.fullmatch(text) is None:
        raise ProtocolError("Parse error (int)")
    return int(text)


def _parse_sections(data: bytes) -> list[_Section]:
    cursor = _Cursor(data)
    if cursor.take(len(_MAGIC), "magic string") != _MAGIC:
        raise RdbParseError("missing REDIS magic string")
    version = _read_version(cursor)
    if version not in _SUPPORTED_VERSIONS:
        raise UnsupportedRdbVersionError(version)
    log.debug("RDB version: %d", version)

    sections: list[_Section] = []
    while not _at_end_marker(cursor):
        sections.append(_read_section(cursor))
    cursor.take(1 + _CHECKSUM_SIZE, "end-of-file section")
    return sections


def parse_database(data: bytes) -> Database:
    """Parse the bytes of an RDB file into a Database."""
    try:
        sections = _parse_sections(data)
    except ServerError as err:
        raise with_context(err, "Parsing RDB file") from err
    log.debug("Parsed sections: %r", sections)

    database = Database()
    seen_db = False
    for section in sections:
        if isinstance(section, _SelectDb):
            if seen_db:
                raise with_context(
                    UnimplementedError(), "Multiple databases are not supported"
                )
            seen_db = True
        elif isinstance(section, _Entry):
            if section.expires_at_ms is None:
                database.keys[section.key] = section.value
            else:
                database.expiring[section.key] = (section.value, section.expires_at_ms)
        elif isinstance(section, _Aux):
            database.aux[section.key] = section.value
    return database