"""Command-line entry point: option parsing and the listening server."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import sys
from typing import Mapping, Optional, Sequence

from .client import Client
from .store import DataStore, Role

log = logging.getLogger(__name__)

DEFAULT_PORT = "6379"
HOST = "127.0.0.1"


def parse_args(argv: Sequence[str]) -> dict[str, str]:
    """Turn `--key value` pairs into a configuration mapping.

    Raises ValueError for malformed options.
    """
    config: dict[str, str] = {}
    args = iter(argv)
    for option in args:
        if not option.startswith("--"):
            raise ValueError(f"Invalid config option {option}")
        key = option[2:].strip()
        value = next(args, None)
        if key == "replicaof":
            if value is None:
                raise ValueError(f"option '{key}' requires argument")
            host, separator, port = value.partition(" ")
            if not separator:
                raise ValueError("replicaof requires argument in format 'host port'")
            config[key] = f"{host}:{port}"
        else:
            if value is None:
                raise ValueError(f"option '{key}' requires a value")
            config[key] = value.strip()
    config.setdefault("port", DEFAULT_PORT)
    return config


async def serve(config: Mapping[str, str]) -> asyncio.base_events.Server:
    """Start listening, initialise the store and return the running server."""
    config = dict(config)
    port = config.setdefault("port", DEFAULT_PORT)
    replica_of = config.get("replicaof")
    role = Role(replica_of)
    store = DataStore(config, role)

    async def handle(reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        addr = writer.get_extra_info("peername")
        try:
            await Client(reader, writer, addr, store).run()
        finally:
            writer.close()
            with contextlib.suppress(Exception):
                await writer.wait_closed()

    server = await asyncio.start_server(handle, HOST, int(port))
    log.info("Listening on %s:%s", HOST, port)

    try:
        await store.init()
    except Exception as err:
        trace = err.with_trace() if hasattr(err, "with_trace") else str(err)
        log.error("Initialization failed: %s", trace)
    return server


async def _run(config: Mapping[str, str]) -> None:
    server = await serve(config)
    async with server:
        await server.serve_forever()


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run the server from command-line options; return the exit status."""
    logging.basicConfig(level=logging.INFO, format="%(message)s", stream=sys.stderr)
    args = sys.argv[1:] if argv is None else list(argv)
    try:
        config = parse_args(args)
    except ValueError as err:
        print(f"Argument parsing failed: {err}", file=sys.stderr)
        return 1
    try:
        asyncio.run(_run(config))
    except KeyboardInterrupt:
        return 0
    except OSError as err:
        print(f"Server failed: {err}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())