import asyncio
from contextlib import asynccontextmanager
from datetime import timedelta

import pytest

from shortener.errors import (
    Expired,
    InvalidShortcode,
    InvalidUrl,
    InvalidValidity,
    NotFound,
    ShortcodeConflict,
    StorageError,
)
from shortener.services.shortening import MAX_VALIDITY_MINUTES, ShorteningService
from shortener.storage.memory import MemoryStore
from shortener.utils import LOCAL_PRIVATE, UNKNOWN_LOCATION


class FailingStore(MemoryStore):
    """Memory store whose reads or writes can be switched to fail."""

    def __init__(self, fail_reads: bool = False, fail_writes: bool = True):
        super().__init__()
        self.fail_reads = fail_reads
        self.fail_writes = fail_writes

    @asynccontextmanager
    async def transaction(self):
        if self.fail_writes:
            raise StorageError("disk I/O error")
        async with super().transaction() as uow:
            yield uow

    @asynccontextmanager
    async def snapshot(self):
        if self.fail_reads:
            raise StorageError("disk I/O error")
        async with super().snapshot() as uow:
            yield uow


class TestShorten:
    @pytest.mark.asyncio
    async def test_shorten_then_resolve_returns_exact_url(self, service):
        url = "https://example.com/some/Path?utm_source=a&x=1"
        result = await service.shorten(url)

        assert await service.resolve(result.shortcode) == url

    @pytest.mark.asyncio
    async def test_default_validity_and_short_link(self, service, clock):
        result = await service.shorten("https://example.com")

        assert len(result.shortcode) == 8
        assert result.short_link == f"http://sho.rt/{result.shortcode}"
        assert result.expiry_at == clock.now + timedelta(minutes=30)

    @pytest.mark.asyncio
    async def test_custom_shortcode_is_used(self, service):
        result = await service.shorten("https://example.com", validity_minutes=60, custom_code="launch_2025")

        assert result.shortcode == "launch_2025"
        assert result.short_link == "http://sho.rt/launch_2025"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("url", ["not a url", "ftp://example.com", "example.com", "", None])
    async def test_invalid_url_writes_nothing(self, service, url):
        with pytest.raises(InvalidUrl):
            await service.shorten(url)
        assert await service.list_all() == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("validity", [0, -5, MAX_VALIDITY_MINUTES + 1, "10", 1.5, True])
    async def test_invalid_validity(self, service, validity):
        with pytest.raises(InvalidValidity):
            await service.shorten("https://example.com", validity_minutes=validity)

    @pytest.mark.asyncio
    async def test_validity_bounds_are_inclusive(self, service, clock):
        short = await service.shorten("https://example.com", validity_minutes=1)
        long = await service.shorten("https://example.com", validity_minutes=MAX_VALIDITY_MINUTES)

        assert short.expiry_at == clock.now + timedelta(minutes=1)
        assert long.expiry_at == clock.now + timedelta(minutes=MAX_VALIDITY_MINUTES)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("code", ["ab", "", "has space", "x" * 21, "semi;colon"])
    async def test_invalid_shortcode(self, service, code):
        with pytest.raises(InvalidShortcode):
            await service.shorten("https://example.com", custom_code=code)

    @pytest.mark.asyncio
    async def test_conflict_leaves_existing_mapping_unchanged(self, service, sink):
        await service.shorten("https://first.example.com", custom_code="promo")

        with pytest.raises(ShortcodeConflict):
            await service.shorten("https://second.example.com", custom_code="promo")

        assert await service.resolve("promo") == "https://first.example.com"
        assert "warning" in sink.levels()

    @pytest.mark.asyncio
    async def test_concurrent_custom_code_only_one_wins(self, service):
        results = await asyncio.gather(
            *(service.shorten(f"https://site{i}.example.com", custom_code="race") for i in range(5)),
            return_exceptions=True,
        )

        wins = [r for r in results if not isinstance(r, Exception)]
        conflicts = [r for r in results if isinstance(r, ShortcodeConflict)]
        assert len(wins) == 1
        assert len(conflicts) == 4

    @pytest.mark.asyncio
    async def test_same_url_twice_gives_distinct_codes(self, service):
        first = await service.shorten("https://example.com")
        second = await service.shorten("https://example.com")

        assert first.shortcode != second.shortcode
        assert await service.resolve(first.shortcode) == "https://example.com"
        assert await service.resolve(second.shortcode) == "https://example.com"

    @pytest.mark.asyncio
    async def test_generated_code_is_redrawn_on_collision(self, memory_store, clock, sink):
        draws = iter(["taken123", "taken123", "fresh456"])
        service = ShorteningService(
            memory_store, "http://sho.rt", sink=sink, clock=clock, code_generator=lambda n: next(draws)
        )
        await service.shorten("https://a.example.com", custom_code="taken123")

        result = await service.shorten("https://b.example.com")

        assert result.shortcode == "fresh456"

    @pytest.mark.asyncio
    async def test_storage_failure_is_surfaced_and_logged(self, clock, sink):
        async with FailingStore() as store:
            service = ShorteningService(store, "http://sho.rt", sink=sink, clock=clock)
            with pytest.raises(StorageError):
                await service.shorten("https://example.com", custom_code="broken")

        assert sink.levels()[-1] == "error"


class TestResolve:
    @pytest.mark.asyncio
    async def test_storage_failure_is_surfaced_and_nothing_counted(self, clock, sink):
        async with FailingStore(fail_writes=False) as store:
            service = ShorteningService(store, "http://sho.rt", sink=sink, clock=clock)
            await service.shorten("https://example.com", custom_code="flaky")

            store.fail_writes = True
            with pytest.raises(StorageError):
                await service.resolve("flaky")
            assert sink.levels()[-1] == "error"

            store.fail_writes = False
            assert (await service.stats("flaky")).total_clicks == 0

    @pytest.mark.asyncio
    async def test_unknown_code(self, service):
        with pytest.raises(NotFound):
            await service.resolve("missing")

    @pytest.mark.asyncio
    async def test_records_click_with_metadata(self, service):
        result = await service.shorten("https://example.com", custom_code="meta")

        await service.resolve("meta", referrer="https://news.example.org", user_agent="curl/8.0", ip="127.0.0.1")
        await service.resolve("meta", ip="8.8.8.8")

        stats = await service.stats("meta")
        assert stats.total_clicks == 2
        latest, first = stats.click_history
        assert first.referrer == "https://news.example.org"
        assert first.user_agent == "curl/8.0"
        assert first.location == LOCAL_PRIVATE
        assert latest.referrer is None
        assert latest.location == UNKNOWN_LOCATION

    @pytest.mark.asyncio
    async def test_expired_after_validity_window(self, service, clock):
        await service.shorten("https://example.com", validity_minutes=1, custom_code="brief")

        clock.advance(minutes=1)
        assert await service.resolve("brief") == "https://example.com"

        clock.advance(seconds=1)
        with pytest.raises(Expired):
            await service.resolve("brief")
        with pytest.raises(Expired):
            await service.stats("brief")

        listed = await service.list_all()
        assert [(s.shortcode, s.is_expired) for s in listed] == [("brief", True)]

    @pytest.mark.asyncio
    async def test_expired_resolve_records_nothing(self, service, clock, memory_store):
        await service.shorten("https://example.com", validity_minutes=1, custom_code="gone")
        clock.advance(minutes=2)

        with pytest.raises(Expired):
            await service.resolve("gone")

        async with memory_store.snapshot() as uow:
            assert (await uow.registry.get("gone")).click_count == 0
            assert await uow.ledger.history("gone") == []

    @pytest.mark.asyncio
    async def test_concurrent_resolves_lose_no_updates(self, service, memory_store):
        await service.shorten("https://example.com", custom_code="hot")

        await asyncio.gather(*(service.resolve("hot", ip="10.0.0.1") for _ in range(50)))

        stats = await service.stats("hot")
        assert stats.total_clicks == 50
        async with memory_store.snapshot() as uow:
            assert len(await uow.ledger.history("hot")) == 50


class TestStatsAndListing:
    @pytest.mark.asyncio
    async def test_read_failures_are_surfaced_and_logged(self, clock, sink):
        async with FailingStore(fail_writes=False) as store:
            service = ShorteningService(store, "http://sho.rt", sink=sink, clock=clock)
            await service.shorten("https://example.com", custom_code="dark")

            store.fail_reads = True
            with pytest.raises(StorageError):
                await service.stats("dark")
            assert sink.records[-1][:2] == ("error", "urlshortener")

            with pytest.raises(StorageError):
                await service.list_all()
            assert sink.records[-1][:2] == ("error", "api")

    @pytest.mark.asyncio
    async def test_stats_is_read_only(self, service):
        await service.shorten("https://example.com", custom_code="peek")
        await service.resolve("peek")

        for _ in range(3):
            stats = await service.stats("peek")

        assert stats.total_clicks == 1
        assert len(stats.click_history) == 1

    @pytest.mark.asyncio
    async def test_history_is_newest_first(self, service, clock):
        await service.shorten("https://example.com", custom_code="order")
        await service.resolve("order", user_agent="first")
        clock.advance(seconds=5)
        await service.resolve("order", user_agent="second")

        history = (await service.stats("order")).click_history
        assert [e.user_agent for e in history] == ["second", "first"]

    @pytest.mark.asyncio
    async def test_total_clicks_matches_ledger(self, service, memory_store):
        await service.shorten("https://example.com", custom_code="count")
        for _ in range(7):
            await service.resolve("count")

        stats = await service.stats("count")
        async with memory_store.snapshot() as uow:
            history = await uow.ledger.history("count")
        assert stats.total_clicks == len(history) == 7

    @pytest.mark.asyncio
    async def test_list_all_newest_first_with_expiry_flag(self, service, clock):
        await service.shorten("https://old.example.com", validity_minutes=1, custom_code="older")
        clock.advance(minutes=5)
        await service.shorten("https://new.example.com", custom_code="newer")

        listed = await service.list_all()

        assert [s.shortcode for s in listed] == ["newer", "older"]
        assert [s.is_expired for s in listed] == [False, True]
        assert listed[0].short_link == "http://sho.rt/newer"
        assert listed[0].total_clicks == 0

    @pytest.mark.asyncio
    async def test_not_found_is_logged_as_warning(self, service, sink):
        with pytest.raises(NotFound):
            await service.stats("nothing")
        assert sink.records[-1][0] == "warning"
        assert "nothing" in sink.records[-1][2]
