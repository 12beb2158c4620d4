"""Handling of the commands sent over one client connection."""

from __future__ import annotations

import asyncio
import logging
import re
import time
from typing import Any, Awaitable, Callable, Iterator, Optional, Sequence

from .errors import (
    ExpectedOtherTypeError,
    MissingArgumentError,
    ProtocolError,
    ServerError,
    UnexpectedArgumentError,
    UnexpectedCommandTypeError,
    UnimplementedCommandError,
    UnimplementedError,
    with_context,
)
from .resp import (
    Array,
    BulkString,
    NullString,
    Reader,
    RespValue,
    SimpleError,
    SimpleString,
    Writer,
    item_to_resp,
    parse,
    write,
)
from .store import DataStore, value_kind
from .stream import Item, ItemId, ProvidedItemId, Stream

log = logging.getLogger(__name__)

_U64_MAX = 2**64 - 1
_NUMBER = re.compile(r"\+?[0-9]+")

Handler = Callable[[Iterator[str]], Awaitable[RespValue]]


def _now_ms() -> int:
    return time.time_ns() // 1_000_000


def _parse_u64(text: str) -> Optional[int]:
    if _NUMBER.fullmatch(text) is None or int(text) > _U64_MAX:
        return None
    return int(text)


def _require(args: Iterator[str], command: str, argument: str) -> str:
    try:
        return next(args)
    except StopIteration:
        raise MissingArgumentError(command, argument) from None


def _parse_read_start(text: str, now_ms: int) -> ItemId:
    if text == "$":
        return ItemId(now_ms, 0)
    return ItemId.parse(text)


class Client:
    """Serves the commands of one connected client against a shared store."""

    def __init__(self, reader: Reader, writer: Writer, addr: Any, store: DataStore) -> None:
        self.reader = reader
        self.writer = writer
        self.addr = addr
        self.store = store
        self._handlers: dict[str, Handler] = {
            "ping": self._handle_ping,
            "echo": self._handle_echo,
            "get": self._handle_get,
            "type": self._handle_type,
            "set": self._handle_set,
            "xadd": self._handle_xadd,
            "xrange": self._handle_xrange,
            "xread": self._handle_xread,
            "keys": self._handle_keys,
            "config": self._handle_config,
            "info": self._handle_info,
            "replconf": self._handle_replconf,
            "psync": self._handle_psync,
        }

    async def run(self) -> None:
        """Serve commands until the connection fails or a fatal error occurs."""
        log.info("Client %s connected", self.addr)
        try:
            await self._serve()
        except Exception as err:  # the connection ends; report why
            wrapped = with_context(err, f"Client {self.addr}")
            log.error("[ERROR] %s", wrapped.with_trace())

    async def _serve(self) -> None:
        while True:
            try:
                args = await self.read_command()
            except Exception as err:
                raise with_context(err, "Reading command") from err
            log.debug("Received CMD: %r", args)
            command = args[0].upper() if args else ""
            try:
                await self.run_command(args)
            except ServerError as err:
                if err.is_fatal():
                    raise
                await write(
                    self.writer, SimpleError(err.kind, err.redis_error_message(command))
                )

    async def read_command(self) -> list[str]:
        """Read one command from the connection as a list of strings."""
        try:
            parsed = await parse(self.reader)
        except (ServerError, asyncio.IncompleteReadError, OSError) as err:
            raise with_context(err, "Parsing command") from err
        if not isinstance(parsed, Array):
            raise UnexpectedCommandTypeError(parsed)
        args = []
        for part in parsed.items:
            if not isinstance(part, (BulkString, SimpleString)):
                raise with_context(
                    UnexpectedCommandTypeError(part), "Unwrapping parsed command"
                )
            args.append(part.value)
        return args

    async def run_command(self, args: Sequence[str]) -> RespValue:
        """Execute a command, write its reply and return that reply."""
        reply = await self._dispatch(list(args))
        await write(self.writer, reply)
        return reply

    async def _dispatch(self, args: list[str]) -> RespValue:
        if not args:
            raise UnimplementedError()
        name = args[0].lower()
        handler = self._handlers.get(name)
        if handler is None:
            raise UnimplementedCommandError(name)
        return await handler(iter(args[1:]))

    async def _handle_ping(self, args: Iterator[str]) -> RespValue:
        argument = next(args, None)
        return SimpleString("PONG") if argument is None else BulkString(argument)

    async def _handle_echo(self, args: Iterator[str]) -> RespValue:
        return BulkString(next(args, ""))

    async def _handle_get(self, args: Iterator[str]) -> RespValue:
        key = _require(args, "get", "key")
        value = self.store.get(key)
        if value is None:
            return NullString()
        if isinstance(value, str):
            return BulkString(value)
        raise UnimplementedError()

    async def _handle_type(self, args: Iterator[str]) -> RespValue:
        key = _require(args, "get", "key")
        value = self.store.get(key)
        return SimpleString("none" if value is None else value_kind(value))

    async def _handle_set(self, args: Iterator[str]) -> RespValue:
        key = _require(args, "set", "key")
        value = _require(args, "set", "value")
        option = next(args, None)
        amount_text = next(args, None)
        amount = None if amount_text is None else _parse_u64(amount_text)
        expires_at = None
        if option is not None and option.lower() == "px" and amount is not None:
            expires_at = _now_ms() + amount
        self.store.set(key, value, expires_at)
        return SimpleString("OK")

    async def _handle_xadd(self, args: Iterator[str]) -> RespValue:
        key = _require(args, "xadd", "key")
        id_text = _require(args, "xadd", "id")
        items: dict[str, str] = {}
        for field_name in args:
            items[field_name] = _require(args, "xadd", "value")
        item_id = self.store.insert_stream_item(key, ProvidedItemId.parse(id_text), items)
        return BulkString(str(item_id))

    def _range(
        self,
        key: str,
        start: Optional[ItemId],
        end: Optional[ItemId],
        start_exclusive: bool = False,
    ) -> RespValue:
        value = self.store.get(key)
        if value is None:
            return NullString()
        if not isinstance(value, Stream):
            raise ExpectedOtherTypeError("stream")
        return Array(
            [item_to_resp(item) for item in value.range(start, end, start_exclusive)]
        )

    async def _handle_xrange(self, args: Iterator[str]) -> RespValue:
        key = _require(args, "xrange", "key")
        start_text = _require(args, "xrange", "start")
        end_text = _require(args, "xrange", "end")
        start = None if start_text == "-" else ItemId.parse(start_text)
        end = None if end_text == "+" else ItemId.parse(end_text)
        return self._range(key, start, end)

    async def _handle_xread(self, args: Iterator[str]) -> RespValue:
        now = _now_ms()
        streams: list[tuple[str, ItemId]] = []
        block: Optional[int] = None

        for arg in args:
            option = arg.upper()
            if option == "STREAMS":
                rest = list(args)
                if len(rest) % 2:
                    raise MissingArgumentError("xread", "item_id")
                half = len(rest) // 2
                streams = [
                    (key, _parse_read_start(start, now))
                    for key, start in zip(rest[:half], rest[half:])
                ]
                break
            if option == "BLOCK":
                duration = _parse_u64(_require(args, "xread", "block duration"))
                if duration is None:
                    raise ProtocolError("Parse error (int)")
                block = duration
            else:
                raise UnexpectedArgumentError(arg)

        found: list[RespValue] = []
        for key, start in streams:
            values = self._range(key, start, None, start_exclusive=True)
            if isinstance(values, Array) and not values.items:
                continue
            found.append(Array([BulkString(key), values]))

        if not found and block is not None:
            queue: asyncio.Queue = asyncio.Queue(maxsize=1)
            for key, _ in streams:
                self.store.notify_on_stream_insert(key, queue)
            try:
                if block > 0:
                    key, item_id, data = await asyncio.wait_for(queue.get(), block / 1000)
                else:
                    key, item_id, data = await queue.get()
            except asyncio.TimeoutError:
                pass
            else:
                found.append(
                    Array([BulkString(key), Array([item_to_resp(Item(item_id, data))])])
                )

        return Array(found) if found else NullString()

    async def _handle_keys(self, args: Iterator[str]) -> RespValue:
        pattern = _require(args, "keys", "key")
        if pattern != "*":
            raise with_context(UnimplementedError(), "Only `KEYS *` is implemented")
        return Array([BulkString(key) for key in self.store.keys()])

    async def _handle_config(self, args: Iterator[str]) -> RespValue:
        subcommand = next(args, None)
        if subcommand is None:
            raise UnimplementedError()
        subcommand = subcommand.lower()
        if subcommand != "get":
            raise UnimplementedCommandError(f"CONFIG {subcommand}")
        key = _require(args, "config get", "key").lower()
        value = self.store.get_config(key)
        if value is None:
            return NullString()
        return Array([BulkString(key), BulkString(value)])

    async def _handle_info(self, args: Iterator[str]) -> RespValue:
        info = self.store.info()
        return BulkString(
            f"role:{info.role}\r\n"
            f"master_replid:{info.replication_id_str()}\r\n"
            f"master_repl_offset:{info.replication_offset}"
        )

    async def _handle_replconf(self, args: Iterator[str]) -> RespValue:
        key = _require(args, "replconf", "key")
        value = _require(args, "replconf", "value")
        log.info("REPLCONF %s %s", key, value)
        return SimpleString("OK")

    async def _handle_psync(self, args: Iterator[str]) -> RespValue:
        replication_id = _require(args, "psync", "id")
        offset = _require(args, "psync", "offset")
        log.info("PSYNC %s %s", replication_id, offset)
        return SimpleString(f"FULLRESYNC {self.store.info().replication_id_str()} 0")