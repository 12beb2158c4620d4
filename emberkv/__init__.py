"""An asyncio key-value server speaking the RESP protocol, with streams and RDB loading."""

__version__ = "0.1.0"
__all__ = ["errors", "stream", "resp", "replication", "rdb", "store", "client", "server"]