# emberkv

emberkv is a small asyncio key-value server that speaks the RESP wire
protocol. It keeps its data in memory. It can load string keys from an RDB
snapshot at start-up.

## Commands

- `PING [message]`: replies `PONG`, or echoes the message.
- `ECHO message`
- `SET key value [PX milliseconds]`: `PX` sets an expiry time. If the amount
  is not a whole number it is ignored and the key does not expire.
- `GET key`: the string value, or a null reply when the key is absent or has
  expired.
- `TYPE key`: `string`, `stream` or `none`.
- `KEYS *`: every stored key. Only the `*` pattern is accepted.
- `XADD key id field value [field value ...]`: the id may be explicit
  (`<ms>-<seq>`), `<ms>-*` (next sequence number) or `*` (current time).
  Ids must increase, and `0-0` is rejected.
- `XRANGE key start end`: `-` and `+` stand for the open ends.
- `XREAD [BLOCK ms] STREAMS key [key ...] id [id ...]`: returns items after
  the given ids. `$` stands for the current time. `BLOCK 0` waits until an
  item arrives.
- `CONFIG GET name`: the value of a start-up option. The name is matched in
  lower case.
- `INFO`: `role`, `master_replid` and `master_repl_offset`.
- `REPLCONF key value` replies `OK`. `PSYNC id offset` replies
  `FULLRESYNC <replication id> 0`.

## Installation

```
pip install .
```

## Running

```
emberkv
```

This listens on `127.0.0.1:6379` and logs to standard error. Options are
given as `--name value` pairs:

```
emberkv --port 6380 --dir /var/lib/emberkv --dbfilename dump.rdb
```

- `--port`: the TCP port to listen on. The default is `6379`.
- `--dir` and `--dbfilename`: the directory and file name of an RDB snapshot
  (version 3 or 11) to load at start-up. Both must be given. Keys whose expiry
  has already passed are skipped.
- `--replicaof "host port"`: start as a replica. The server connects to that
  master and performs the `PING` / `REPLCONF` / `PSYNC` handshake.

Any other `--name value` pair is stored too and can be read back with
`CONFIG GET`. `--replicaof` is stored as `host:port`. If start-up loading or
the handshake fails, the error is logged and the server keeps running.

## Using it as a library

```python
import asyncio
from emberkv.server import parse_args, serve

async def run():
    server = await serve(parse_args(["--port", "6380"]))
    async with server:
        await server.serve_forever()

asyncio.run(run())
```

The building blocks can also be used on their own:

- `emberkv.resp`: RESP value types (`SimpleString`, `BulkString`, `Array`,
  ...) with `parse`, `encode` and `write`
- `emberkv.stream`: `ItemId`, `ProvidedItemId` and the ordered `Stream`
- `emberkv.rdb`: `parse_database`, which turns RDB snapshot bytes into a `Database`
- `emberkv.store`: the `DataStore` key space
- `emberkv.replication`: `MasterConnection` for the replica handshake
- `emberkv.client`: `Client`, which serves one connection

## Errors

When a command fails, the client gets a RESP error and the connection stays
open, for example
`-ERR The ID specified in XADD is equal or smaller than the target stream top item`.
Some errors close the connection instead: input that cannot be parsed as a
command, a lost connection, and errors raised with added context, such as
`KEYS` with a pattern other than `*`.

## What it does not do

- Nothing is ever written to disk. Snapshots are only read at start-up.
- As a replica, the server stops after the handshake. It does not receive the
  master's snapshot or any later writes.
- As a master, it replies to `REPLCONF` and `PSYNC` but sends no data to replicas.
- Snapshots may hold only string values and a single database. Strings may be
  length-prefixed or 8-bit integers.

## Tests

```
pip install ".[test]"
pytest
```