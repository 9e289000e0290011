"""Tests for the key-based deduplication primitives."""

from datetime import datetime, timedelta, timezone

from dishgraph.dedup import (
    DeduplicationContext,
    adeduplicate_batches,
    deduplicate_batches,
    deduplicate_with_time_window,
    find_duplicates,
    merge_duplicates,
    reddit_content_key,
    remove_duplicates_by_key,
    strip_reddit_prefix,
)


def _key(item: dict) -> str:
    return item["id"]


class TestKeyedDedup:
    """First-seen dedup, duplicate detection and merging."""

    def test_remove_duplicates_keeps_first_in_order(self) -> None:
        items = [{"id": "b", "v": 1}, {"id": "a", "v": 2}, {"id": "b", "v": 3}]

        result = remove_duplicates_by_key(items, _key)

        assert result == [{"id": "b", "v": 1}, {"id": "a", "v": 2}]

    def test_find_duplicates_reports_second_occurrence_once(self) -> None:
        items = [{"id": "a", "v": 1}, {"id": "a", "v": 2}, {"id": "a", "v": 3}, {"id": "b", "v": 4}]

        assert find_duplicates(items, _key) == [{"id": "a", "v": 2}]

    def test_merge_duplicates_uses_reducer(self) -> None:
        items = [{"id": "a", "v": 1}, {"id": "b", "v": 5}, {"id": "a", "v": 2}]

        result = merge_duplicates(items, _key, lambda x, y: {"id": x["id"], "v": x["v"] + y["v"]})

        assert result == [{"id": "a", "v": 3}, {"id": "b", "v": 5}]


class TestTimeWindowDedup:
    """Time-windowed dedup sorts by timestamp and suppresses in-window repeats."""

    def test_drops_repeats_inside_window(self) -> None:
        base = datetime(2024, 1, 1, tzinfo=timezone.utc)
        items = [
            {"id": "a", "t": base + timedelta(seconds=30)},
            {"id": "a", "t": base},
            {"id": "a", "t": base + timedelta(seconds=120)},
            {"id": "b", "t": base + timedelta(seconds=10)},
        ]

        result = deduplicate_with_time_window(items, _key, lambda i: i["t"], window_seconds=60)

        assert [(i["id"], i["t"] - base) for i in result] == [
            ("a", timedelta(0)),
            ("b", timedelta(seconds=10)),
            ("a", timedelta(seconds=120)),
        ]

    def test_accepts_numeric_timestamps(self) -> None:
        items = [{"id": "a", "t": 0}, {"id": "a", "t": 5}, {"id": "a", "t": 11}]

        result = deduplicate_with_time_window(items, _key, lambda i: i["t"], window_seconds=10)

        assert [i["t"] for i in result] == [0, 11]


class TestDeduplicationContext:
    """The context remembers keys across calls until cleared."""

    def test_seen_set_persists_across_calls(self) -> None:
        context = DeduplicationContext()

        first = context.filter([{"id": "a"}, {"id": "b"}], _key)
        second = context.filter([{"id": "b"}, {"id": "c"}], _key)

        assert [i["id"] for i in first] == ["a", "b"]
        assert [i["id"] for i in second] == ["c"]
        assert context.get_stats() == {"total_seen": 3}

    def test_clear_forgets_keys(self) -> None:
        context = DeduplicationContext()
        context.mark_seen("a")
        assert context.is_duplicate("a")

        context.clear()

        assert not context.is_duplicate("a")


class TestStreamingDedup:
    """Streaming dedup yields only newly seen items per batch."""

    def test_sync_batches(self) -> None:
        batches = [[{"id": "a"}, {"id": "b"}], [{"id": "a"}], [{"id": "b"}, {"id": "c"}]]

        result = list(deduplicate_batches(batches, _key))

        assert [[i["id"] for i in batch] for batch in result] == [["a", "b"], ["c"]]

    def test_batches_are_pulled_lazily(self) -> None:
        pulled: list[int] = []

        def source():
            for index, batch in enumerate([[{"id": "a"}], [{"id": "b"}]]):
                pulled.append(index)
                yield batch

        stream = deduplicate_batches(source(), _key)
        next(stream)

        assert pulled == [0]

    async def test_async_batches(self) -> None:
        async def source():
            yield [{"id": "a"}]
            yield [{"id": "a"}, {"id": "b"}]

        result = [batch async for batch in adeduplicate_batches(source(), _key)]

        assert [[i["id"] for i in batch] for batch in result] == [["a"], ["b"]]

    async def test_async_accepts_sync_source(self) -> None:
        result = [batch async for batch in adeduplicate_batches([[{"id": "x"}], [{"id": "x"}]], _key)]

        assert len(result) == 1


class TestRedditHelpers:
    def test_content_key(self) -> None:
        assert reddit_content_key("comment", "abc") == "comment:abc"

    def test_strip_prefix(self) -> None:
        assert strip_reddit_prefix("t1_abc") == "abc"
        assert strip_reddit_prefix("t3_xyz") == "xyz"
        assert strip_reddit_prefix("abc") == "abc"
