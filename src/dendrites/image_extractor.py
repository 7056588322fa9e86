"""
Dendrites - Item Image Extractor
Layer 0: Sensory Input

Finds artwork for a feed item. Podcasts, news sites and newsletters each put
images somewhere different, so candidates are checked in a fixed priority
order and the first usable URL wins. A missing image is a normal outcome.
"""
import re
from typing import Callable, List, Optional

import structlog

from .xml_node import XmlNode

logger = structlog.get_logger(__name__)

ABSOLUTE_URL_PATTERN = re.compile(r'^https?://', re.IGNORECASE)
AUDIO_EXTENSION_PATTERN = re.compile(r'\.(mp3|m4a|wav|ogg|flac)($|\?)', re.IGNORECASE)
IMAGE_EXTENSION_PATTERN = re.compile(r'\.(jpg|jpeg|png|gif|webp|svg)($|\?)', re.IGNORECASE)
IMAGE_PATH_PATTERN = re.compile(r'/(image|img|photo|thumbnail|cover|banner|logo)s?/', re.IGNORECASE)
CDN_IMAGE_PATTERN = re.compile(r'cdn(-cgi)?/image', re.IGNORECASE)

INLINE_IMAGE_PATTERNS = [
    re.compile(r'<img[^>]+src=["\']([^"\']+)["\']', re.IGNORECASE),
    re.compile(r'<img[^>]+src=([^"\' >][^ >]*)', re.IGNORECASE),
    re.compile(r'src=["\']([^"\']+\.(?:jpg|jpeg|png|gif|webp))["\']', re.IGNORECASE),
]

CONTENT_FIELDS = ('content', 'description', 'summary', 'content:encoded')

# Hint keys the parser may attach to an item node
FLAT_PODCAST_IMAGE_HINT = 'itunes:image:href'
CHANNEL_IMAGE_HINT = 'channel_image'
CHANNEL_NODE_HINT = 'channel'


def is_audio_url(url: str) -> bool:
    return bool(AUDIO_EXTENSION_PATTERN.search(url))


def looks_like_image_url(url: str) -> bool:
    """Whether a URL without a declared type plausibly points at an image."""
    return bool(
        IMAGE_EXTENSION_PATTERN.search(url)
        or IMAGE_PATH_PATTERN.search(url)
        or CDN_IMAGE_PATTERN.search(url)
    )


def podcast_image_href(image: XmlNode) -> Optional[str]:
    """
    Read an itunes:image element in any of the shapes publishers use.

    Checks the href attribute, the prefixed itunes:href attribute, a nested
    <url> or <href> child, then the element text when it is an absolute URL.
    """
    href = image.attr('href')
    if href:
        return href

    href = image.attr('itunes:href')
    if href:
        return href

    url = image.child_text('url')
    if url:
        return url

    href = image.child_text('href')
    if href:
        return href

    if image.text and ABSOLUTE_URL_PATTERN.match(image.text):
        return image.text

    return None


def channel_image_url(channel: XmlNode) -> Optional[str]:
    """Channel-level artwork: itunes:image first, then the RSS <image><url>."""
    podcast_image = channel.first('itunes:image')
    if podcast_image is not None:
        href = podcast_image.attr('href') or podcast_image.attr('itunes:href')
        if href:
            return href

    image = channel.first('image')
    if image is not None:
        url = image.child_text('url')
        if url:
            return url

    return None


class ImageExtractor:
    """Priority-ordered image lookup for a single feed item."""

    def __init__(self):
        self.logger = logger.bind(component="image_extractor")
        self.steps: List[Callable[[XmlNode], Optional[str]]] = [
            self._from_podcast_image,
            self._from_flat_podcast_image,
            self._from_media_content,
            self._from_media_thumbnail,
            self._from_enclosure,
            self._from_inline_content,
            self._from_channel_image_hint,
            self._from_channel_node,
        ]

    def extract(self, item: XmlNode) -> Optional[str]:
        """
        Return the best image URL for an item, or None.

        Each lookup runs on its own; a failure in one moves on to the next.
        """
        for step in self.steps:
            try:
                url = step(item)
            except Exception as e:
                self.logger.warning("Image lookup step failed", step=step.__name__, error=str(e))
                continue
            if url:
                return url
        return None

    def _from_podcast_image(self, item: XmlNode) -> Optional[str]:
        image = item.first('itunes:image')
        if image is None:
            return None
        url = podcast_image_href(image)
        if url:
            self.logger.debug("Using itunes:image", url=url)
        return url

    def _from_flat_podcast_image(self, item: XmlNode) -> Optional[str]:
        value = item.hints.get(FLAT_PODCAST_IMAGE_HINT)
        if isinstance(value, str) and value:
            return value
        return None

    def _media_nodes(self, item: XmlNode, name: str) -> List[XmlNode]:
        nodes = item.all(name)
        for group in item.all('media:group'):
            nodes.extend(group.all(name))
        return nodes

    def _from_media_content(self, item: XmlNode) -> Optional[str]:
        for media in self._media_nodes(item, 'media:content'):
            medium = media.attr('medium') or ''
            media_type = media.attr('type') or ''
            if medium == 'image' or media_type.startswith('image/'):
                url = media.attr('url')
                if url:
                    return url
        return None

    def _from_media_thumbnail(self, item: XmlNode) -> Optional[str]:
        for thumbnail in self._media_nodes(item, 'media:thumbnail'):
            url = thumbnail.attr('url')
            if url:
                return url
        return None

    def _from_enclosure(self, item: XmlNode) -> Optional[str]:
        candidates = []
        for enclosure in item.all('enclosure'):
            enclosure_type = enclosure.attr('type') or ''
            url = enclosure.attr('url') or enclosure.child_text('url')
            if not url:
                continue
            if enclosure_type.startswith('audio/') or is_audio_url(url):
                continue
            candidates.append((enclosure_type, url))

        for enclosure_type, url in candidates:
            if enclosure_type.startswith('image/'):
                return url

        for _, url in candidates:
            if looks_like_image_url(url):
                return url

        return None

    def _from_inline_content(self, item: XmlNode) -> Optional[str]:
        for field_name in CONTENT_FIELDS:
            for node in item.all(field_name):
                content = node.markup()
                if not content:
                    continue
                for pattern in INLINE_IMAGE_PATTERNS:
                    match = pattern.search(content)
                    if match and not match.group(1).startswith('data:'):
                        return match.group(1)
        return None

    def _from_channel_image_hint(self, item: XmlNode) -> Optional[str]:
        value = item.hints.get(CHANNEL_IMAGE_HINT)
        if isinstance(value, str) and value:
            return value
        return None

    def _from_channel_node(self, item: XmlNode) -> Optional[str]:
        channel = item.hints.get(CHANNEL_NODE_HINT)
        if not isinstance(channel, XmlNode):
            return None

        image = channel.first('image')
        if image is not None and image.child_text('url'):
            return image.child_text('url')

        podcast_image = channel.first('itunes:image')
        if podcast_image is not None:
            return podcast_image.attr('href') or podcast_image.attr('itunes:href')

        return None


def extract_image(item: XmlNode) -> Optional[str]:
    """Convenience wrapper around a shared ImageExtractor."""
    return _default_extractor.extract(item)


_default_extractor = ImageExtractor()
