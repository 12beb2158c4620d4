"""Append-only streams of field/value items keyed by ordered ids."""

from __future__ import annotations

import asyncio
import bisect
import contextlib
import enum
import re
import time
from dataclasses import dataclass
from typing import Iterator, Mapping, Optional, Union

from .errors import IdNotGreaterError, IdTooLowError, ItemIdParseError

_U64_MAX = 2**64 - 1
_NUMBER = re.compile(r"\+?[0-9]+")


def _parse_u64(text: str) -> int:
    if _NUMBER.fullmatch(text) is None or int(text) > _U64_MAX:
        raise ItemIdParseError(f"'{text} is not a valid number for item id")
    return int(text)


def _split_id(text: str) -> tuple[str, str]:
    parts = text.split("-")
    if len(parts) < 2:
        raise ItemIdParseError("The item id is missing the '-' separator")
    if len(parts) > 2:
        raise ItemIdParseError(
            "The item id has too many '-' separators - only one is allowed"
        )
    return parts[0], parts[1]


@dataclass(frozen=True, order=True)
class ItemId:
    """A stream item id: a millisecond timestamp and a sequence number."""

    timestamp: int
    sequence: int

    @classmethod
    def parse(cls, text: str) -> "ItemId":
        """Parse an id of the form `<timestamp>-<sequence>`."""
        timestamp, sequence = _split_id(text)
        return cls(_parse_u64(timestamp), _parse_u64(sequence))

    def next(self) -> "ItemId":
        return ItemId(self.timestamp, self.sequence + 1)

    def __str__(self) -> str:
        return f"{self.timestamp}-{self.sequence}"


class IdKind(enum.Enum):
    AUTO_GENERATED = "auto_generated"
    AUTO_SEQUENCE = "auto_sequence"
    EXPLICIT = "explicit"


@dataclass(frozen=True)
class ProvidedItemId:
    """The id a client supplied for a new item, possibly partly automatic."""

    kind: IdKind
    timestamp: Optional[int] = None
    item_id: Optional[ItemId] = None

    @classmethod
    def parse(cls, text: str) -> "ProvidedItemId":
        """Parse `*`, `<timestamp>-*` or `<timestamp>-<sequence>`."""
        if text == "*":
            return cls(IdKind.AUTO_GENERATED)
        timestamp_text, sequence_text = _split_id(text)
        timestamp = _parse_u64(timestamp_text)
        if sequence_text == "*":
            return cls(IdKind.AUTO_SEQUENCE, timestamp=timestamp)
        return cls(IdKind.EXPLICIT, item_id=ItemId(timestamp, _parse_u64(sequence_text)))


@dataclass(frozen=True)
class Item:
    id: ItemId
    elements: Mapping[str, str]


InsertListener = asyncio.Queue


class Stream:
    """An ordered collection of items with one-shot insert listeners."""

    def __init__(self, name: str) -> None:
        self.name = name
        self._items: dict[ItemId, dict[str, str]] = {}
        self._ids: list[ItemId] = []
        self._listeners: list[InsertListener] = []

    def __len__(self) -> int:
        return len(self._ids)

    def last_id(self) -> Optional[ItemId]:
        return self._ids[-1] if self._ids else None

    def _resolve(self, provided: ProvidedItemId) -> ItemId:
        last = self.last_id()
        if provided.kind is IdKind.AUTO_GENERATED:
            now_ms = time.time_ns() // 1_000_000
            if last is not None and last.timestamp >= now_ms:
                return last.next()
            return ItemId(now_ms, 0)
        if provided.kind is IdKind.AUTO_SEQUENCE:
            timestamp = provided.timestamp
            if last is None:
                return ItemId(timestamp, 1 if timestamp == 0 else 0)
            if last.timestamp > timestamp:
                raise IdNotGreaterError(last)
            if last.timestamp == timestamp:
                return last.next()
            return ItemId(timestamp, 0)
        item_id = provided.item_id
        if item_id == ItemId(0, 0):
            raise IdTooLowError()
        if last is not None and last >= item_id:
            raise IdNotGreaterError(last)
        return item_id

    def insert(
        self, provided: Union[ProvidedItemId, ItemId], data: Mapping[str, str]
    ) -> ItemId:
        """Add an item and return its id; wakes and clears all listeners."""
        if isinstance(provided, ItemId):
            provided = ProvidedItemId(IdKind.EXPLICIT, item_id=provided)
        item_id = self._resolve(provided)
        self._items[item_id] = dict(data)
        self._ids.append(item_id)
        listeners, self._listeners = self._listeners, []
        for listener in listeners:
            with contextlib.suppress(asyncio.QueueFull):
                listener.put_nowait((self.name, item_id, dict(data)))
        return item_id

    def range(
        self,
        start: Optional[ItemId],
        end: Optional[ItemId],
        start_exclusive: bool = False,
    ) -> Iterator[Item]:
        """Yield items between `start` and `end` inclusive; None means unbounded."""
        if start is None:
            low = 0
        elif start_exclusive:
            low = bisect.bisect_right(self._ids, start)
        else:
            low = bisect.bisect_left(self._ids, start)
        high = len(self._ids) if end is None else bisect.bisect_right(self._ids, end)
        for item_id in self._ids[low:high]:
            yield Item(item_id, self._items[item_id])

    def notify_on_insert(self, listener: InsertListener) -> None:
        """Register a queue that receives the next inserted item."""
        self._listeners.append(listener)