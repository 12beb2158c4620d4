"""The replica side of the handshake with a master server."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from .errors import (
    InvalidPsyncReplyError,
    ProtocolError,
    UnexpectedReplyError,
    with_context,
)
from .resp import Array, BulkString, RespValue, SimpleString, Reader, Writer, parse, write

log = logging.getLogger(__name__)


class MasterConnection:
    """A connection from this replica to its master."""

    def __init__(self, reader: Reader, writer: Writer, listening_port: int) -> None:
        self.reader = reader
        self.writer = writer
        self.listening_port = listening_port
        self.replication_id: Optional[str] = None
        self.replication_offset = -1

    @classmethod
    async def connect(cls, address: str, listening_port: int) -> "MasterConnection":
        """Open a connection to a master given as `host:port`."""
        host, _, port = address.rpartition(":")
        reader, writer = await asyncio.open_connection(host, int(port))
        return cls(reader, writer, listening_port)

    async def init(self) -> None:
        """Perform the handshake: PING, two REPLCONFs and PSYNC."""
        await self._send_initial_ping()
        await self._send_replconf("listening-port", self.listening_port)
        await self._send_replconf("capa", "psync2")
        await self._send_psync()

    async def execute_command(self, command: RespValue) -> RespValue:
        """Send `command` and return the master's reply."""
        await write(self.writer, command)
        reply = await parse(self.reader)
        log.debug("Received reply: %r", reply)
        return reply

    async def _send_initial_ping(self) -> None:
        log.info("Sending initial ping to master")
        reply = await self.execute_command(Array([BulkString("PING")]))
        if reply != SimpleString("PONG"):
            raise UnexpectedReplyError(reply, "PONG")

    async def _send_replconf(self, key: object, value: object) -> None:
        reply = await self.execute_command(
            Array([BulkString("REPLCONF"), BulkString(str(key)), BulkString(str(value))])
        )
        if reply != SimpleString("OK"):
            raise UnexpectedReplyError(reply, "OK")

    async def _send_psync(self) -> None:
        reply = await self.execute_command(
            Array(
                [
                    BulkString("PSYNC"),
                    BulkString(self.replication_id or "?"),
                    BulkString(str(self.replication_offset)),
                ]
            )
        )
        if not (isinstance(reply, SimpleString) and reply.value.startswith("FULLRESYNC")):
            raise UnexpectedReplyError(reply, "FULLRESYNC")
        parts = reply.value.split()[1:]
        if len(parts) < 2:
            raise InvalidPsyncReplyError(reply.value)
        replication_id, offset_text = parts[0], parts[1]
        self.replication_id = replication_id
        try:
            self.replication_offset = int(offset_text)
        except ValueError:
            raise with_context(
                ProtocolError("Parse error (int)"), "Parsing PSYNC replication offset"
            ) from None