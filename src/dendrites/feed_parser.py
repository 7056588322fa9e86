"""
Dendrites - RSS/Atom Feed Parser
Layer 0: Sensory Input

This module parses RSS 2.0, RSS 1.0 and Atom feeds into a normalized
ParsedFeed. Malformed input never escapes parse_or_fallback: it becomes a
synthetic one-item fallback feed describing the error.
"""
import random
import re
import time
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

import structlog

from .dates import normalize_date, utc_now_iso
from .image_extractor import (
    CHANNEL_IMAGE_HINT,
    CHANNEL_NODE_HINT,
    FLAT_PODCAST_IMAGE_HINT,
    ImageExtractor,
    channel_image_url,
)
from .xml_node import RSS_1_0_NAMESPACE, XmlNode, from_element, namespace_of

logger = structlog.get_logger(__name__)


class FeedType(str, Enum):
    """Supported feed types."""
    RSS_2_0 = "rss_2.0"
    RSS_1_0 = "rss_1.0"
    ATOM_1_0 = "atom_1.0"
    UNKNOWN = "unknown"


class FeedParsingError(Exception):
    """Raised when feed parsing fails."""
    pass


@dataclass
class ParsedItem:
    """A single feed item/entry, ready for persistence."""
    title: str
    description: str
    link: str
    guid: str
    pub_date: str
    image: Optional[str] = None
    feed_url: str = ""

    def is_valid(self) -> bool:
        return bool(self.guid and self.title)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            'title': self.title,
            'description': self.description,
            'link': self.link,
            'guid': self.guid,
            'pub_date': self.pub_date,
            'image': self.image,
            'feed_url': self.feed_url,
        }


@dataclass
class ParsedFeed:
    """A parsed feed with channel information and items in source order."""
    title: str
    description: str
    link: str
    items: List[ParsedItem] = field(default_factory=list)
    feed_type: FeedType = FeedType.UNKNOWN
    # Synthetic feeds built from a failure are never persisted
    is_fallback: bool = False

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            'title': self.title,
            'description': self.description,
            'link': self.link,
            'feed_type': self.feed_type.value,
            'is_fallback': self.is_fallback,
            'items': [item.to_dict() for item in self.items],
            'item_count': len(self.items),
        }


def _epoch_ms() -> int:
    return int(time.time() * 1000)


def create_fallback_feed(url: str, error: Any) -> ParsedFeed:
    """
    Build the one-item feed served when a feed cannot be fetched or parsed.

    Args:
        url: Feed URL that failed
        error: The exception or message describing the failure

    Returns:
        ParsedFeed flagged is_fallback with exactly one error item
    """
    message = str(error) if error else "Unknown error"
    return ParsedFeed(
        title=f"Error fetching feed from {url}",
        description="There was an error fetching this feed",
        link=url,
        items=[
            ParsedItem(
                title="Error fetching feed",
                description=f"There was an error fetching the feed from {url}: {message}",
                link=url,
                guid=f"error-{_epoch_ms()}",
                pub_date=utc_now_iso(),
                image=None,
                feed_url=url,
            )
        ],
        is_fallback=True,
    )


def get_text(node: Optional[XmlNode]) -> str:
    """Text of a node, or '' when the node is absent."""
    if node is None:
        return ""
    return node.text


def get_link(node: XmlNode) -> str:
    """
    Resolve the link of a channel or item.

    RSS carries a plain <link> text; Atom carries one or more <link href>
    elements. A text link wins, then an href with no rel or rel="alternate",
    then the first href.
    """
    links = node.all('link')
    for link in links:
        if link.text:
            return link.text

    for link in links:
        rel = link.attrs.get('rel')
        href = link.attr('href')
        if href and (not rel or rel == 'alternate'):
            return href

    for link in links:
        href = link.attr('href')
        if href:
            return href

    return ""


class LibsynImageRecovery:
    """
    Recovers per-episode artwork from Libsyn-hosted feeds.

    Libsyn writes item artwork in a form the generic extraction can miss, so
    the raw XML is scanned for an itunes:image href followed by the item guid.
    """

    HOST_MARKER = 'libsyn.com'
    ITEM_IMAGE_PATTERN = re.compile(
        r'<item>[\s\S]*?<itunes:image href="([^"]+)"[\s\S]*?<guid[^>]*>(?:<!\[CDATA\[)?([^<\]]+)(?:\]\]>)?</guid>',
        re.IGNORECASE,
    )

    def __init__(self):
        self.logger = logger.bind(component="libsyn_image_recovery")

    def matches(self, url: str) -> bool:
        return self.HOST_MARKER in (url or '')

    def recover(self, xml_content: str) -> Dict[str, str]:
        """Map of item guid -> image URL found in the raw XML."""
        images = {}
        for match in self.ITEM_IMAGE_PATTERN.finditer(xml_content):
            image_url, guid = match.group(1), match.group(2).strip()
            if image_url and guid:
                images[guid] = image_url
                self.logger.debug("Found item-level iTunes image", guid=guid, image=image_url)
        return images


class FeedParser:
    """
    RSS/Atom feed parser with per-item isolation.

    Features:
    - RSS 2.0, RSS 1.0 (RDF) and Atom 1.0 detection
    - Text-or-attribute fallback for channel and item fields
    - Channel image fallback and priority-ordered item image extraction
    - Placeholder items for entries that fail to process
    - Optional host-specific image recovery hooks
    """

    def __init__(self, image_extractor: Optional[ImageExtractor] = None, recovery_hooks: Optional[List] = None):
        self.logger = logger.bind(component="feed_parser")
        self.image_extractor = image_extractor or ImageExtractor()
        self.recovery_hooks = recovery_hooks if recovery_hooks is not None else [LibsynImageRecovery()]

    def parse_or_fallback(self, xml_content: str, feed_url: str = "") -> ParsedFeed:
        """Parse a feed, converting any failure into a fallback feed."""
        try:
            return self.parse_feed(xml_content, feed_url)
        except Exception as e:
            self.logger.error("XML parsing error", feed_url=feed_url, error=str(e))
            self.logger.debug("Start of rejected XML", feed_url=feed_url, xml=(xml_content or "")[:500].replace("\n", " "))
            return create_fallback_feed(feed_url, e)

    def parse_feed(self, xml_content: str, feed_url: str = "") -> ParsedFeed:
        """
        Parse RSS/Atom feed from XML content.

        Args:
            xml_content: Raw XML content of the feed
            feed_url: URL of the feed

        Returns:
            ParsedFeed with channel information and valid items

        Raises:
            FeedParsingError: If the XML is invalid or the format is not recognized
        """
        xml_content = self._clean_xml(xml_content or "")

        try:
            root = ET.fromstring(xml_content)
        except ET.ParseError as e:
            raise FeedParsingError(f"Invalid XML: {str(e)}")

        feed_type = self._detect_feed_type(root)
        if feed_type == FeedType.UNKNOWN:
            self.logger.warning("Unrecognized feed format", feed_url=feed_url, root=root.tag)
            raise FeedParsingError("Unsupported feed format")

        self.logger.debug("Feed type detected", feed_type=feed_type.value, feed_url=feed_url)

        default_namespace = RSS_1_0_NAMESPACE if feed_type == FeedType.RSS_1_0 else namespace_of(root.tag)
        document = from_element(root, default_namespace)
        if feed_type == FeedType.RSS_2_0:
            channel = document.first('channel')
            item_nodes = channel.all('item')
        elif feed_type == FeedType.RSS_1_0:
            channel = document.first('channel') or XmlNode(name='channel')
            item_nodes = document.all('item')
        else:
            channel = document
            item_nodes = document.all('entry')

        recovered_images: Dict[str, str] = {}
        for hook in self.recovery_hooks:
            if not hook.matches(feed_url):
                continue
            try:
                recovered_images.update(hook.recover(xml_content))
            except Exception as e:
                self.logger.warning("Image recovery hook failed", hook=type(hook).__name__, error=str(e), feed_url=feed_url)

        channel_image = self._channel_image(channel)

        feed = ParsedFeed(
            title=get_text(channel.first('title')),
            description=get_text(channel.first('description')) or get_text(channel.first('subtitle')),
            link=get_link(channel),
            feed_type=feed_type,
        )

        items = []
        for index, item_node in enumerate(item_nodes):
            try:
                item = self._parse_item(item_node, channel, channel_image, recovered_images, feed_url)
            except Exception as e:
                self.logger.warning("Failed to process feed item", index=index, error=str(e), feed_url=feed_url)
                item = self._placeholder_item(channel_image, feed_url)
            items.append(item)

        for item in items:
            if not item.is_valid():
                self.logger.warning("Filtered out invalid item", guid=item.guid, title=item.title, feed_url=feed_url)
        feed.items = [item for item in items if item.is_valid()]

        self.logger.info("Parsed feed", feed_url=feed_url, feed_type=feed_type.value, items=len(feed.items))
        return feed

    def _clean_xml(self, xml_content: str) -> str:
        """Clean and prepare XML content for parsing."""
        # Remove BOM if present
        if xml_content.startswith('\ufeff'):
            xml_content = xml_content[1:]

        xml_content = xml_content.strip()

        # Fix common XML issues
        xml_content = xml_content.replace('&nbsp;', ' ')
        xml_content = xml_content.replace('&amp;amp;', '&amp;')

        return xml_content

    def _detect_feed_type(self, root: ET.Element) -> FeedType:
        """Detect the type of feed from the root element."""
        tag = root.tag.lower()
        local = tag.rpartition('}')[2]

        if local == 'rss':
            if root.find('channel') is not None:
                return FeedType.RSS_2_0
            return FeedType.UNKNOWN

        if local == 'rdf' and (
            root.find(f'{{{RSS_1_0_NAMESPACE}}}item') is not None
            or root.find(f'{{{RSS_1_0_NAMESPACE}}}channel') is not None
        ):
            return FeedType.RSS_1_0

        if local == 'feed':
            return FeedType.ATOM_1_0

        return FeedType.UNKNOWN

    def _channel_image(self, channel: XmlNode) -> Optional[str]:
        try:
            image = channel_image_url(channel)
        except Exception as e:
            self.logger.debug("Channel image lookup failed", error=str(e))
            return None
        if image:
            self.logger.debug("Found channel image", image=image)
        return image

    def _parse_item(
        self,
        item: XmlNode,
        channel: XmlNode,
        channel_image: Optional[str],
        recovered_images: Dict[str, str],
        feed_url: str,
    ) -> ParsedItem:
        guid = get_text(item.first('guid')) or get_text(item.first('id')) or get_link(item)

        if channel_image:
            item.hints[CHANNEL_IMAGE_HINT] = channel_image
        item.hints[CHANNEL_NODE_HINT] = channel

        if guid in recovered_images and not item.has('itunes:image'):
            item.hints[FLAT_PODCAST_IMAGE_HINT] = recovered_images[guid]
            self.logger.debug("Added recovered item image", guid=guid, image=recovered_images[guid])

        description = (
            get_text(item.first('description'))
            or get_text(item.first('summary'))
            or get_text(item.first('content'))
        )

        raw_date = (
            get_text(item.first('pubDate'))
            or get_text(item.first('published'))
            or get_text(item.first('updated'))
            or get_text(item.first('dc:date'))
            or utc_now_iso()
        )

        image = self.image_extractor.extract(item) or channel_image

        return ParsedItem(
            title=get_text(item.first('title')),
            description=description,
            link=get_link(item),
            guid=guid,
            pub_date=normalize_date(raw_date),
            image=image,
            feed_url=feed_url,
        )

    def _placeholder_item(self, channel_image: Optional[str], feed_url: str) -> ParsedItem:
        return ParsedItem(
            title='Error processing item',
            description='',
            link='',
            guid=f"error-{_epoch_ms()}-{random.random()}",
            pub_date=utc_now_iso(),
            image=channel_image,
            feed_url=feed_url,
        )
