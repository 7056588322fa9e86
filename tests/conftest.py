"""
Shared fixtures: sample feeds, a temporary SQLite store and a fake feed server.
"""
import asyncio
from typing import Dict, List, Optional, Tuple

import httpx
import pytest
import pytest_asyncio

from src.dendrites.feed_fetcher import FeedFetcher
from src.shared.config import DatabaseSettings, FetcherSettings
from src.synaptic_vesicle.database import DatabaseManager


RSS_FEED = """<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0" xmlns:itunes="http://www.itunes.com/dtds/podcast-1.0.dtd">
    <channel>
        <title>Test Feed</title>
        <link>https://example.com</link>
        <description>A test RSS feed</description>
        <image>
            <url>https://example.com/channel.png</url>
        </image>
        <item>
            <title>Article Three</title>
            <link>https://example.com/3</link>
            <guid>guid-3</guid>
            <description>Third article</description>
            <pubDate>Wed, 03 Jan 2024 12:00:00 GMT</pubDate>
        </item>
        <item>
            <title>Article Five</title>
            <link>https://example.com/5</link>
            <guid>guid-5</guid>
            <description>Fifth article</description>
            <pubDate>Fri, 05 Jan 2024 12:00:00 GMT</pubDate>
        </item>
        <item>
            <title>Article One</title>
            <link>https://example.com/1</link>
            <guid>guid-1</guid>
            <description>First article</description>
            <pubDate>Mon, 01 Jan 2024 12:00:00 GMT</pubDate>
        </item>
        <item>
            <title>Article Four</title>
            <link>https://example.com/4</link>
            <guid>guid-4</guid>
            <description>Fourth article</description>
            <pubDate>Thu, 04 Jan 2024 12:00:00 GMT</pubDate>
        </item>
        <item>
            <title>Article Two</title>
            <link>https://example.com/2</link>
            <guid>guid-2</guid>
            <description>Second article</description>
            <pubDate>Tue, 02 Jan 2024 12:00:00 GMT</pubDate>
        </item>
    </channel>
</rss>"""

RSS_FEED_GUIDS_NEWEST_FIRST = ["guid-5", "guid-4", "guid-3", "guid-2", "guid-1"]

ATOM_FEED = """<?xml version="1.0" encoding="UTF-8"?>
<feed xmlns="http://www.w3.org/2005/Atom">
    <title>Atom Test Feed</title>
    <subtitle>An Atom feed</subtitle>
    <link rel="self" href="https://example.com/feed.atom"/>
    <link rel="alternate" href="https://example.com/"/>
    <id>urn:uuid:feed</id>
    <updated>2024-01-02T00:00:00Z</updated>
    <entry>
        <title>Atom Entry One</title>
        <link rel="alternate" href="https://example.com/atom/1"/>
        <id>urn:uuid:entry-1</id>
        <published>2024-01-01T10:00:00Z</published>
        <summary>First atom entry</summary>
    </entry>
    <entry>
        <title>Atom Entry Two</title>
        <link rel="enclosure" href="https://example.com/atom/2.mp3"/>
        <link href="https://example.com/atom/2"/>
        <id>urn:uuid:entry-2</id>
        <updated>2024-01-02T10:00:00</updated>
        <content type="html">&lt;p&gt;Body &lt;img src="https://example.com/atom2.jpg"&gt;&lt;/p&gt;</content>
    </entry>
</feed>"""

RDF_FEED = """<?xml version="1.0" encoding="UTF-8"?>
<rdf:RDF xmlns:rdf="http://www.w3.org/1999/02/22-rdf-syntax-ns#"
         xmlns="http://purl.org/rss/1.0/"
         xmlns:dc="http://purl.org/dc/elements/1.1/">
    <channel rdf:about="https://example.com/rdf">
        <title>RDF Feed</title>
        <link>https://example.com/rdf</link>
        <description>An RSS 1.0 feed</description>
    </channel>
    <item rdf:about="https://example.com/rdf/1">
        <title>RDF Item</title>
        <link>https://example.com/rdf/1</link>
        <dc:date>2024-01-01</dc:date>
    </item>
</rdf:RDF>"""

UNSUPPORTED_FEED = """<?xml version="1.0" encoding="UTF-8"?>
<html><body><p>This is not a feed at all, just an HTML page.</p></body></html>"""


def rss_document(items_xml: str, channel_extra: str = "") -> str:
    """Wrap item markup in a minimal RSS 2.0 document with the common namespaces."""
    return f"""<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0"
     xmlns:itunes="http://www.itunes.com/dtds/podcast-1.0.dtd"
     xmlns:media="http://search.yahoo.com/mrss/"
     xmlns:content="http://purl.org/rss/1.0/modules/content/"
     xmlns:dc="http://purl.org/dc/elements/1.1/">
    <channel>
        <title>Generated Feed</title>
        <link>https://example.com</link>
        <description>Generated for tests</description>
        {channel_extra}
        {items_xml}
    </channel>
</rss>"""


class FakeFeedServer:
    """
    httpx MockTransport handler serving canned feed bodies.

    Records every requested URL; an optional delay keeps a fetch in flight
    long enough for concurrent callers to collide.
    """

    def __init__(self):
        self.routes: Dict[str, Tuple[int, str]] = {}
        self.requests: List[httpx.Request] = []
        self.delay: float = 0.0
        self.error: Optional[Exception] = None

    def serve(self, url: str, body: str, status_code: int = 200) -> None:
        self.routes[url] = (status_code, body)

    def fetch_count(self, url: Optional[str] = None) -> int:
        if url is None:
            return len(self.requests)
        return sum(1 for request in self.requests if str(request.url) == url)

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        status_code, body = self.routes.get(str(request.url), (404, "Not Found"))
        return httpx.Response(status_code, text=body)


@pytest.fixture
def feed_server():
    return FakeFeedServer()


@pytest_asyncio.fixture
async def fetcher(feed_server):
    client = httpx.AsyncClient(transport=httpx.MockTransport(feed_server))
    feed_fetcher = FeedFetcher(FetcherSettings(), client=client)
    yield feed_fetcher
    await client.aclose()


@pytest_asyncio.fixture
async def db(tmp_path):
    """DatabaseManager over a temporary SQLite file with every table created."""
    settings = DatabaseSettings(database_url=f"sqlite+aiosqlite:///{tmp_path / 'feeds.db'}")
    manager = DatabaseManager(settings)
    await manager.initialize()
    await manager.create_all()
    yield manager
    await manager.close()
