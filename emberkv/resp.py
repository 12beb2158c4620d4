"""Values of the RESP wire protocol, with an async parser and an encoder."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Protocol, Union

from .errors import (
    InvalidCrLfTerminatorError,
    ProtocolError,
    UnknownTypeSpecifierError,
)
from .stream import Item

log = logging.getLogger(__name__)

_INTEGER = re.compile(rb"[+-]?[0-9]+")
_CRLF = b"\r\n"


@dataclass(frozen=True)
class SimpleError:
    kind: str
    message: str


@dataclass(frozen=True)
class SimpleString:
    value: str


@dataclass(frozen=True)
class BulkString:
    value: str


@dataclass(frozen=True)
class NullString:
    pass


@dataclass
class Array:
    items: list = field(default_factory=list)


@dataclass(frozen=True)
class NullArray:
    pass


@dataclass(frozen=True)
class Null:
    pass


RespValue = Union[SimpleError, SimpleString, BulkString, NullString, Array, NullArray, Null]


class Reader(Protocol):
    async def readexactly(self, n: int) -> bytes: ...


class Writer(Protocol):
    def write(self, data: bytes) -> object: ...

    async def drain(self) -> None: ...


def _decode(data: bytes) -> str:
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError as err:
        raise ProtocolError("Invalid UTF-8 sequence") from err


async def _read_until_crlf(reader: Reader) -> bytes:
    buffer = bytearray()
    while True:
        byte = (await reader.readexactly(1))[0]
        if byte != ord("\r"):
            buffer.append(byte)
            continue
        following = (await reader.readexactly(1))[0]
        if following != ord("\n"):
            raise InvalidCrLfTerminatorError(ord("\r"), following)
        return bytes(buffer)


async def _expect_crlf(reader: Reader) -> None:
    terminator = await reader.readexactly(2)
    if terminator != _CRLF:
        raise InvalidCrLfTerminatorError(terminator[0], terminator[1])


async def _read_integer(reader: Reader) -> int:
    text = await _read_until_crlf(reader)
    if _INTEGER.fullmatch(text) is None:
        raise ProtocolError("Parse error (int)")
    return int(text)


async def parse(reader: Reader) -> RespValue:
    """Read one RESP value from `reader`.

    Running out of input raises asyncio.IncompleteReadError.
    """
    specifier = (await reader.readexactly(1))[0]
    if specifier == ord("+"):
        return SimpleString(_decode(await _read_until_crlf(reader)))
    if specifier == ord("$"):
        length = await _read_integer(reader)
        if length < 0:
            return NullString()
        data = await reader.readexactly(length)
        await _expect_crlf(reader)
        return BulkString(_decode(data))
    if specifier == ord("*"):
        length = await _read_integer(reader)
        if length < 0:
            return NullArray()
        return Array([await parse(reader) for _ in range(length)])
    if specifier == ord("_"):
        await _expect_crlf(reader)
        return Null()
    raise UnknownTypeSpecifierError(specifier)


def encode(value: RespValue) -> bytes:
    """Serialise a RESP value to its wire form."""
    if isinstance(value, SimpleError):
        return b"-" + f"{value.kind} {value.message}".encode() + _CRLF
    if isinstance(value, SimpleString):
        return b"+" + value.value.encode() + _CRLF
    if isinstance(value, BulkString):
        data = value.value.encode()
        return b"$" + str(len(data)).encode() + _CRLF + data + _CRLF
    if isinstance(value, Array):
        header = b"*" + str(len(value.items)).encode() + _CRLF
        return header + b"".join(encode(item) for item in value.items)
    if isinstance(value, NullString):
        return b"$-1\r\n"
    if isinstance(value, NullArray):
        return b"*-1\r\n"
    if isinstance(value, Null):
        return b"_\r\n"
    raise TypeError(f"not a RESP value: {value!r}")


async def write(writer: Writer, value: RespValue) -> None:
    """Encode `value` onto `writer` and flush it."""
    log.debug("writing response: %r", value)
    writer.write(encode(value))
    await writer.drain()


def item_to_resp(item: Item) -> Array:
    """Represent a stream item as `[id, [field, value, ...]]`."""
    fields = [
        BulkString(part)
        for key, value in item.elements.items()
        for part in (key, value)
    ]
    return Array([BulkString(str(item.id)), Array(fields)])