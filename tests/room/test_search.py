"""Tests for search result aggregation."""

import asyncio

import pytest

from turntable_client.connect.dispatcher import EventDispatcher
from turntable_client.connect.types import BroadcastEvent
from turntable_client.exceptions import SearchTimeoutError
from turntable_client.room.models import SongResult
from turntable_client.room.search import PollingWaiter, SearchResultAggregator


@pytest.fixture
def aggregator() -> SearchResultAggregator:
    return SearchResultAggregator(PollingWaiter(poll_interval=0.01))


def _doc(song_id: str, artist: str = "Artist", title: str = "Title") -> dict:
    return {
        "_id": song_id,
        "source": "yt",
        "sourceid": f"src-{song_id}",
        "metadata": {"artist": artist, "song": title, "length": 200},
    }


class TestRecordPage:
    """Tests for page storage."""

    def test_absent_before_any_page(self, aggregator: SearchResultAggregator) -> None:
        """Test unknown queries report no results."""
        assert aggregator.get_pages("foo") is None

    def test_first_page(self, aggregator: SearchResultAggregator) -> None:
        """Test a recorded page is returned."""
        assert aggregator.record_page("foo", 1, ["a"]) is True
        assert aggregator.get_pages("foo") == [["a"]]

    def test_slot_is_write_once(self, aggregator: SearchResultAggregator) -> None:
        """Test a later payload for the same page is discarded."""
        aggregator.record_page("q", 1, ["a"])
        assert aggregator.record_page("q", 1, ["b"]) is False

        assert aggregator.get_pages("q") == [["a"]]

    def test_holes_filtered(self, aggregator: SearchResultAggregator) -> None:
        """Test pages arriving out of order are returned densely."""
        aggregator.record_page("foo", 2, ["x"])
        assert aggregator.get_pages("foo") == [["x"]]

        aggregator.record_page("foo", 1, ["w"])
        assert aggregator.get_pages("foo") == [["w"], ["x"]]

    def test_sparse_pages(self, aggregator: SearchResultAggregator) -> None:
        """Test gaps in the middle are skipped."""
        aggregator.record_page("q", 1, ["a"])
        aggregator.record_page("q", 4, ["d"])
        assert aggregator.get_pages("q") == [["a"], ["d"]]

    def test_empty_page_counts(self, aggregator: SearchResultAggregator) -> None:
        """Test an empty result page still marks the query as answered."""
        aggregator.record_page("nothing", 1, [])
        assert aggregator.get_pages("nothing") == [[]]

    def test_queries_independent(self, aggregator: SearchResultAggregator) -> None:
        """Test pages are stored per query."""
        aggregator.record_page("a", 1, ["1"])
        assert aggregator.get_pages("b") is None

    def test_page_zero_rejected(self, aggregator: SearchResultAggregator) -> None:
        """Test page numbers are 1-based."""
        with pytest.raises(ValueError):
            aggregator.record_page("q", 0, [])
        assert aggregator.get_pages("q") is None

    def test_large_page_number(self, aggregator: SearchResultAggregator) -> None:
        """Test a huge page number stores one slot, not a padded run."""
        aggregator.handle_search_complete(
            {"query": "q", "page": 20_000_000, "docs": [_doc("far")]}
        )
        aggregator.record_page("q", 3, ["third"])

        assert len(aggregator._index["q"]) == 2
        pages = aggregator.get_pages("q")
        assert pages is not None
        assert pages[0] == ["third"]
        assert pages[1][0].id == "far"

    def test_results_copied(self, aggregator: SearchResultAggregator) -> None:
        """Test later mutation of the caller's list does not leak in."""
        results = ["a"]
        aggregator.record_page("q", 1, results)
        results.append("b")
        assert aggregator.get_pages("q") == [["a"]]


class TestSearchComplete:
    """Tests for search_complete broadcasts."""

    def test_docs_converted(self, aggregator: SearchResultAggregator) -> None:
        """Test docs become SongResult objects."""
        aggregator.handle_search_complete(
            {"command": "search_complete", "query": "foo", "page": 1, "docs": [_doc("s1", "A", "T")]}
        )

        pages = aggregator.get_pages("foo")
        assert pages is not None
        song = pages[0][0]
        assert isinstance(song, SongResult)
        assert song.id == "s1"
        assert song.source == "yt"
        assert song.source_id == "src-s1"
        assert song.artist == "A"
        assert song.title == "T"
        assert song.length == 200

    def test_malformed_ignored(self, aggregator: SearchResultAggregator) -> None:
        """Test messages missing query or page are dropped."""
        aggregator.handle_search_complete({"command": "search_complete", "docs": []})
        aggregator.handle_search_complete({"query": "q", "page": "1", "docs": []})
        aggregator.handle_search_complete({"query": "q", "page": 0, "docs": []})
        assert aggregator.get_pages("q") is None

    def test_registered_with_dispatcher(self, aggregator: SearchResultAggregator) -> None:
        """Test pages arrive through the dispatcher."""
        dispatcher = EventDispatcher()
        aggregator.register(dispatcher)

        dispatcher.dispatch(
            BroadcastEvent("search_complete", {"query": "q", "page": 1, "docs": [_doc("s1")]})
        )

        pages = aggregator.get_pages("q")
        assert pages is not None and pages[0][0].id == "s1"


class TestWaitForPages:
    """Tests for the bounded wait."""

    @pytest.mark.asyncio
    async def test_times_out(self, aggregator: SearchResultAggregator) -> None:
        """Test the wait fails when nothing arrives."""
        with pytest.raises(SearchTimeoutError) as exc_info:
            await aggregator.wait_for_pages("q", timeout=0.05)
        assert exc_info.value.query == "q"

    @pytest.mark.asyncio
    async def test_returns_immediately_when_present(
        self, aggregator: SearchResultAggregator
    ) -> None:
        """Test already-recorded pages are returned without waiting."""
        aggregator.record_page("q", 1, ["a"])
        assert await aggregator.wait_for_pages("q", timeout=0.05) == [["a"]]

    @pytest.mark.asyncio
    async def test_resolves_on_first_page(self, aggregator: SearchResultAggregator) -> None:
        """Test the wait returns once any page lands, not when the search ends."""

        async def deliver() -> None:
            await asyncio.sleep(0.02)
            aggregator.record_page("q", 2, ["second"])

        asyncio.create_task(deliver())
        pages = await aggregator.wait_for_pages("q", timeout=1.0)

        assert pages == [["second"]]

    @pytest.mark.asyncio
    async def test_timeout_keeps_late_pages(self, aggregator: SearchResultAggregator) -> None:
        """Test a timed-out wait does not discard pages recorded afterwards."""
        with pytest.raises(SearchTimeoutError):
            await aggregator.wait_for_pages("q", timeout=0.02)

        aggregator.record_page("q", 1, ["late"])
        assert aggregator.get_pages("q") == [["late"]]

    @pytest.mark.asyncio
    async def test_concurrent_waiters_share_results(
        self, aggregator: SearchResultAggregator
    ) -> None:
        """Test two waiters on one query see the same pages."""
        first = asyncio.create_task(aggregator.wait_for_pages("q", timeout=1.0))
        second = asyncio.create_task(aggregator.wait_for_pages("q", timeout=1.0))
        await asyncio.sleep(0.01)
        aggregator.record_page("q", 1, ["a"])

        assert await first == await second == [["a"]]

    @pytest.mark.asyncio
    async def test_explicit_poll_interval(self) -> None:
        """Test a per-call poll interval overrides the waiter default."""
        aggregator = SearchResultAggregator(PollingWaiter(poll_interval=10.0))

        async def deliver() -> None:
            await asyncio.sleep(0.02)
            aggregator.record_page("q", 1, ["a"])

        asyncio.create_task(deliver())
        pages = await asyncio.wait_for(aggregator.wait_for_pages("q", 5.0, 0.01), timeout=1.0)

        assert pages == [["a"]]

    @pytest.mark.asyncio
    async def test_explicit_poll_interval_times_out(
        self, aggregator: SearchResultAggregator
    ) -> None:
        """Test a 50ms wait polling every 10ms fails when nothing arrives."""
        with pytest.raises(SearchTimeoutError):
            await aggregator.wait_for_pages("q", timeout=0.05, poll_interval=0.01)
