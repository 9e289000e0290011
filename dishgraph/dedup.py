"""Key-based deduplication primitives shared by the pipeline.

All functions keep the first occurrence of a key and preserve input order
unless stated otherwise. Keys are produced by a caller-supplied function so
the same helpers cover mentions, resolution inputs and raw source items.
"""

import re
from datetime import datetime
from typing import AsyncIterable, AsyncIterator, Callable, Hashable, Iterable, Iterator, TypeVar

T = TypeVar("T")

_REDDIT_PREFIX = re.compile(r"^t[0-9]_")


def remove_duplicates_by_key(items: Iterable[T], key_fn: Callable[[T], Hashable]) -> list[T]:
    """Keep the first item seen for each key, in input order."""
    seen: dict[Hashable, T] = {}
    for item in items:
        key = key_fn(item)
        if key not in seen:
            seen[key] = item
    return list(seen.values())


def find_duplicates(items: Iterable[T], key_fn: Callable[[T], Hashable]) -> list[T]:
    """Return the second occurrence of every key that appears more than once.

    Each duplicated key is reported once, by its 2nd occurrence, in the order
    those occurrences appear.
    """
    counts: dict[Hashable, int] = {}
    duplicates: list[T] = []
    for item in items:
        key = key_fn(item)
        count = counts.get(key, 0)
        counts[key] = count + 1
        if count == 1:
            duplicates.append(item)
    return duplicates


def merge_duplicates(
    items: Iterable[T],
    key_fn: Callable[[T], Hashable],
    merge_fn: Callable[[T, T], T],
) -> list[T]:
    """Fold items sharing a key with ``merge_fn(existing, duplicate)``.

    The merged value takes the position of the key's first occurrence.
    """
    merged: dict[Hashable, T] = {}
    for item in items:
        key = key_fn(item)
        if key in merged:
            merged[key] = merge_fn(merged[key], item)
        else:
            merged[key] = item
    return list(merged.values())


def _as_seconds(value: datetime | float | int) -> float:
    if isinstance(value, datetime):
        return value.timestamp()
    return float(value)


def deduplicate_with_time_window(
    items: Iterable[T],
    key_fn: Callable[[T], Hashable],
    timestamp_fn: Callable[[T], datetime | float | int],
    window_seconds: float,
) -> list[T]:
    """Drop repeats of a key that fall within ``window_seconds`` of the last kept one.

    Items are sorted by timestamp first, so the result is in time order. A
    repeat arriving more than ``window_seconds`` after the last kept item with
    the same key is kept and starts a new window.

    Args:
        items: Items to filter.
        key_fn: Returns the dedup key for an item.
        timestamp_fn: Returns a datetime or epoch seconds for an item.
        window_seconds: Length of the suppression window.

    Returns:
        Items in ascending timestamp order with in-window repeats removed.
    """
    ordered = sorted(items, key=lambda item: _as_seconds(timestamp_fn(item)))
    result: list[T] = []
    last_kept: dict[Hashable, float] = {}
    for item in ordered:
        key = key_fn(item)
        timestamp = _as_seconds(timestamp_fn(item))
        previous = last_kept.get(key)
        if previous is None or timestamp - previous > window_seconds:
            result.append(item)
            last_kept[key] = timestamp
    return result


class DeduplicationContext:
    """Remembers keys across calls until ``clear()`` is called.

    Example:
        ```python
        context = DeduplicationContext()
        first = context.filter(batch_one, lambda m: m.source_key)
        second = context.filter(batch_two, lambda m: m.source_key)  # skips keys from batch_one
        ```
    """

    def __init__(self) -> None:
        self._seen: set[Hashable] = set()

    def is_duplicate(self, key: Hashable) -> bool:
        return key in self._seen

    def mark_seen(self, key: Hashable) -> None:
        self._seen.add(key)

    def filter(self, items: Iterable[T], key_fn: Callable[[T], Hashable]) -> list[T]:
        """Return items whose key has not been seen, marking them as seen."""
        unique: list[T] = []
        for item in items:
            key = key_fn(item)
            if key not in self._seen:
                self._seen.add(key)
                unique.append(item)
        return unique

    def clear(self) -> None:
        self._seen.clear()

    def get_stats(self) -> dict[str, int]:
        return {"total_seen": len(self._seen)}


def deduplicate_batches(
    batches: Iterable[Iterable[T]],
    key_fn: Callable[[T], Hashable],
) -> Iterator[list[T]]:
    """Yield the newly seen items of each batch, skipping batches with none.

    Batches are pulled one at a time; the seen set only grows as batches are
    consumed.
    """
    context = DeduplicationContext()
    for batch in batches:
        unique = context.filter(batch, key_fn)
        if unique:
            yield unique


async def adeduplicate_batches(
    batches: AsyncIterable[Iterable[T]] | Iterable[Iterable[T]],
    key_fn: Callable[[T], Hashable],
) -> AsyncIterator[list[T]]:
    """Async counterpart of ``deduplicate_batches`` accepting sync or async sources."""
    context = DeduplicationContext()
    if hasattr(batches, "__aiter__"):
        async for batch in batches:  # type: ignore[union-attr]
            unique = context.filter(batch, key_fn)
            if unique:
                yield unique
    else:
        for batch in batches:
            unique = context.filter(batch, key_fn)
            if unique:
                yield unique


def reddit_content_key(item_type: str, item_id: str) -> str:
    """Key mixed posts and comments as ``"{type}:{id}"``."""
    return f"{item_type}:{item_id}"


def strip_reddit_prefix(item_id: str) -> str:
    """Remove Reddit fullname prefixes such as ``t1_`` and ``t3_``."""
    return _REDDIT_PREFIX.sub("", item_id)
