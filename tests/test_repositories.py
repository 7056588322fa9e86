"""
Integration tests for the feed and entry repositories.
"""
import pytest
import pytest_asyncio

from src.dendrites.feed_parser import ParsedItem
from src.synaptic_vesicle.repositories import (
    DESCRIPTION_MAX_LENGTH, EntryRepository, FeedRepository, RepositoryFactory, chunked, now_ms,
)


def make_items(count, prefix="item", day=1):
    return [
        ParsedItem(
            title=f"Title {i}",
            description=f"Description {i}",
            link=f"https://example.com/{prefix}/{i}",
            guid=f"{prefix}-{i}",
            pub_date=f"2024-01-{day:02d}T00:{i // 60:02d}:{i % 60:02d}.000Z",
        )
        for i in range(count)
    ]



def spy_on_batches(db, monkeypatch):
    """Record the operations of every batch transaction while still running it."""
    batches = []
    original = db.execute_batch_transaction

    async def recording(operations):
        batches.append(list(operations))
        return await original(operations)

    monkeypatch.setattr(db, "execute_batch_transaction", recording)
    return batches

@pytest.fixture
def repositories(db):
    return RepositoryFactory(db)


@pytest.mark.integration
class TestFeedRepository:

    @pytest.mark.asyncio
    async def test_get_or_create_is_stable(self, repositories):
        feeds = repositories.feeds
        first = await feeds.get_or_create("https://example.com/feed", "Example")
        second = await feeds.get_or_create("https://example.com/feed", "Renamed")

        assert first == second
        feed = await feeds.get_by_url("https://example.com/feed")
        assert feed["title"] == "Example"

    @pytest.mark.asyncio
    async def test_create_stamps_last_fetched(self, repositories):
        before = now_ms()
        await repositories.feeds.create("https://example.com/feed", "Example")

        last_fetched = await repositories.feeds.get_last_fetched("https://example.com/feed")
        assert before <= last_fetched <= now_ms()

    @pytest.mark.asyncio
    async def test_unknown_feed(self, repositories):
        assert await repositories.feeds.get_by_url("https://nowhere.example.com") is None
        assert await repositories.feeds.get_last_fetched("https://nowhere.example.com") is None

    @pytest.mark.asyncio
    async def test_get_or_create_recovers_from_concurrent_insert(self, db, monkeypatch):
        feeds = FeedRepository(db)
        feed_id = await feeds.create("https://example.com/feed", "Example")
        original = feeds.get_by_url
        calls = []

        async def missed_first_lookup(feed_url):
            calls.append(feed_url)
            if len(calls) == 1:
                return None
            return await original(feed_url)

        monkeypatch.setattr(feeds, "get_by_url", missed_first_lookup)
        assert await feeds.get_or_create("https://example.com/feed", "Example") == feed_id
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_touch_sets_last_fetched(self, repositories):
        feeds = repositories.feeds
        feed_id = await feeds.create("https://example.com/feed", "Example")

        await feeds.touch(feed_id, fetched_at=1234)

        assert await feeds.get_last_fetched("https://example.com/feed") == 1234

    @pytest.mark.asyncio
    async def test_find_by_titles(self, repositories):
        feeds = repositories.feeds
        await feeds.create("https://a.example.com", "A")
        await feeds.create("https://b.example.com", "B")
        await feeds.create("https://c.example.com", "C")

        found = await feeds.find_by_titles(["A", "C", "missing"])

        assert sorted(feed["title"] for feed in found) == ["A", "C"]
        assert await feeds.find_by_titles([]) == []


@pytest.mark.integration
class TestEntryRepository:

    @pytest.mark.asyncio
    async def test_store_and_read_back_newest_first(self, repositories):
        feed_id = await repositories.feeds.create("https://example.com/feed", "Example")
        items = make_items(5)

        inserted = await repositories.entries.store_entries(feed_id, items)
        rows = await repositories.entries.list_for_feed(feed_id)

        assert inserted == 5
        assert [row["guid"] for row in rows] == [f"item-{i}" for i in reversed(range(5))]
        assert rows[0]["feed_title"] == "Example"
        assert rows[0]["feed_url"] == "https://example.com/feed"

    @pytest.mark.asyncio
    async def test_existing_guids_are_never_overwritten(self, repositories):
        feed_id = await repositories.feeds.create("https://example.com/feed", "Example")
        await repositories.entries.store_entries(feed_id, make_items(3))

        changed = make_items(5)
        changed[0].title = "Edited upstream"
        inserted = await repositories.entries.store_entries(feed_id, changed)

        rows = await repositories.entries.list_for_feed(feed_id)
        assert inserted == 2
        assert len(rows) == 5
        assert {row["title"] for row in rows if row["guid"] == "item-0"} == {"Title 0"}

    @pytest.mark.asyncio
    async def test_duplicate_guids_within_batch(self, repositories):
        feed_id = await repositories.feeds.create("https://example.com/feed", "Example")
        items = make_items(2) + make_items(2)

        assert await repositories.entries.store_entries(feed_id, items) == 2

    @pytest.mark.asyncio
    async def test_same_guid_in_two_feeds(self, repositories):
        first = await repositories.feeds.create("https://a.example.com", "A")
        second = await repositories.feeds.create("https://b.example.com", "B")

        assert await repositories.entries.store_entries(first, make_items(2)) == 2
        assert await repositories.entries.store_entries(second, make_items(2)) == 2

    @pytest.mark.asyncio
    async def test_large_batches_are_chunked_in_one_transaction(self, db, repositories, monkeypatch):
        feed_id = await repositories.feeds.create("https://example.com/feed", "Example")
        items = make_items(250)

        batches = spy_on_batches(db, monkeypatch)
        inserted = await repositories.entries.store_entries(feed_id, items)

        assert inserted == 250
        assert len(batches) == 1
        operations = batches[0]
        # Three inserts plus the feed timestamp update
        assert len(operations) == 4
        assert len(await repositories.entries.list_for_feed(feed_id)) == 250

    @pytest.mark.asyncio
    async def test_store_updates_last_fetched(self, repositories):
        feeds = repositories.feeds
        feed_id = await feeds.create("https://example.com/feed", "Example")
        await feeds.touch(feed_id, fetched_at=0)

        await repositories.entries.store_entries(feed_id, make_items(1))

        assert await feeds.get_last_fetched("https://example.com/feed") > 0

    @pytest.mark.asyncio
    async def test_nothing_new_only_touches_feed(self, db, repositories, monkeypatch):
        feeds = repositories.feeds
        feed_id = await feeds.create("https://example.com/feed", "Example")
        await repositories.entries.store_entries(feed_id, make_items(2))
        await feeds.touch(feed_id, fetched_at=0)

        batches = spy_on_batches(db, monkeypatch)
        inserted = await repositories.entries.store_entries(feed_id, make_items(2))

        assert inserted == 0
        assert batches == []
        assert await feeds.get_last_fetched("https://example.com/feed") > 0

    @pytest.mark.asyncio
    async def test_failed_batch_leaves_feed_untouched(self, db, repositories):
        feeds = repositories.feeds
        feed_id = await feeds.create("https://example.com/feed", "Example")
        await feeds.touch(feed_id, fetched_at=0)
        items = make_items(3)
        items[2].title = None

        with pytest.raises(Exception):
            await repositories.entries.store_entries(feed_id, items)

        assert await repositories.entries.list_for_feed(feed_id) == []
        assert await feeds.get_last_fetched("https://example.com/feed") == 0

    @pytest.mark.asyncio
    async def test_description_truncated_and_date_normalized(self, repositories):
        feed_id = await repositories.feeds.create("https://example.com/feed", "Example")
        item = ParsedItem(
            title="Long",
            description="x" * 500,
            link="",
            guid="long",
            pub_date="Mon, 01 Jan 2024 12:00:00 GMT",
        )

        await repositories.entries.store_entries(feed_id, [item])
        row = (await repositories.entries.list_for_feed(feed_id))[0]

        assert len(row["description"]) == DESCRIPTION_MAX_LENGTH
        assert row["pub_date"] == "2024-01-01T12:00:00.000Z"
        assert row["image"] is None

    @pytest.mark.asyncio
    async def test_empty_batch(self, repositories):
        feed_id = await repositories.feeds.create("https://example.com/feed", "Example")
        assert await repositories.entries.store_entries(feed_id, []) == 0


@pytest.mark.integration
class TestMergedPagination:

    @pytest_asyncio.fixture
    async def two_feeds(self, repositories):
        a = await repositories.feeds.create("https://a.example.com", "A")
        b = await repositories.feeds.create("https://b.example.com", "B")
        c = await repositories.feeds.create("https://c.example.com", "C")
        await repositories.entries.store_entries(a, make_items(3, prefix="a", day=1))
        await repositories.entries.store_entries(b, make_items(3, prefix="b", day=2))
        await repositories.entries.store_entries(c, make_items(3, prefix="c", day=3))
        return repositories.entries

    @pytest.mark.asyncio
    async def test_pages_merge_feeds_newest_first(self, two_feeds):
        first = await two_feeds.paginate_by_feed_titles(["A", "B"], limit=4, offset=0)
        second = await two_feeds.paginate_by_feed_titles(["A", "B"], limit=4, offset=4)

        assert [row["guid"] for row in first] == ["b-2", "b-1", "b-0", "a-2"]
        assert [row["guid"] for row in second] == ["a-1", "a-0"]
        assert first[0]["feed_title"] == "B"

    @pytest.mark.asyncio
    async def test_count(self, two_feeds):
        assert await two_feeds.count_by_feed_titles(["A", "B"]) == 6
        assert await two_feeds.count_by_feed_titles(["C"]) == 3
        assert await two_feeds.count_by_feed_titles([]) == 0

    @pytest.mark.asyncio
    async def test_no_titles(self, two_feeds):
        assert await two_feeds.paginate_by_feed_titles([], limit=10, offset=0) == []


class TestHelpers:

    def test_chunked(self):
        assert [len(chunk) for chunk in chunked(list(range(250)))] == [100, 100, 50]
        assert chunked([]) == []

    def test_factory_shares_database(self):
        factory = RepositoryFactory(db=object())
        assert isinstance(factory.feeds, FeedRepository)
        assert isinstance(factory.entries, EntryRepository)
        assert factory.entries.db is factory.db
