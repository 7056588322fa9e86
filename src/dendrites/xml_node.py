"""
Dendrites - Feed XML Node Model
Layer 0: Sensory Input

Feeds arrive as loosely structured XML. ElementTree elements are converted
into XmlNode values with prefixed names ('itunes:image', 'media:content') so
extraction code can ask explicit questions: does this node carry an
attribute, a text value, or a list of children with a given name.
"""
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

ATOM_NAMESPACE = "http://www.w3.org/2005/Atom"
RSS_1_0_NAMESPACE = "http://purl.org/rss/1.0/"

# Namespace URI -> prefix used in node names
NAMESPACE_PREFIXES = {
    "http://www.itunes.com/dtds/podcast-1.0.dtd": "itunes",
    "http://www.itunes.com/DTDs/Podcast-1.0.dtd": "itunes",
    "http://search.yahoo.com/mrss/": "media",
    "http://search.yahoo.com/mrss": "media",
    "http://purl.org/rss/1.0/modules/content/": "content",
    "http://purl.org/dc/elements/1.1/": "dc",
    "http://www.w3.org/1999/02/22-rdf-syntax-ns#": "rdf",
    "http://www.google.com/schemas/play-podcasts/1.0": "googleplay",
    ATOM_NAMESPACE: "atom",
}


@dataclass
class XmlNode:
    """
    One element of a parsed feed document.

    A node always exposes three shapes: its own text, its attributes and its
    children. Children with the same name are kept in document order, so a
    single <enclosure> and several <enclosure> elements read the same way.
    """
    name: str
    text: str = ""
    attrs: Dict[str, str] = field(default_factory=dict)
    children: List["XmlNode"] = field(default_factory=list)
    # Values attached by the parser while processing (channel image, recovered artwork)
    hints: Dict[str, Any] = field(default_factory=dict)
    element: Optional[ET.Element] = field(default=None, repr=False, compare=False)

    def all(self, name: str) -> List["XmlNode"]:
        """All children with the given name, in document order."""
        return [child for child in self.children if child.name == name]

    def first(self, name: str) -> Optional["XmlNode"]:
        """First child with the given name."""
        for child in self.children:
            if child.name == name:
                return child
        return None

    def has(self, name: str) -> bool:
        return self.first(name) is not None

    def child_text(self, name: str) -> str:
        """Text of the first child with the given name, or ''."""
        child = self.first(name)
        return child.text if child is not None else ""

    def attr(self, name: str) -> Optional[str]:
        value = self.attrs.get(name)
        if value is None:
            return None
        value = value.strip()
        return value or None

    def markup(self) -> str:
        """
        Text plus serialized child markup.

        Atom xhtml content and inline HTML arrive as child elements rather
        than escaped text; image scanning needs both forms.
        """
        if self.element is None or len(self.element) == 0:
            return self.text
        parts = [self.element.text or ""]
        for child in self.element:
            parts.append(ET.tostring(child, encoding="unicode"))
        return "".join(parts).strip()

    def add_child(self, child: "XmlNode") -> None:
        self.children.append(child)


def qualified_name(tag: str, default_namespace: str = "") -> str:
    """
    Turn an ElementTree tag into a prefixed name.

    '{http://www.itunes.com/dtds/podcast-1.0.dtd}image' -> 'itunes:image'.
    Elements in the document's default namespace keep their local name.
    """
    if not tag.startswith("{"):
        return tag
    namespace, _, local = tag[1:].partition("}")
    if namespace == default_namespace:
        return local
    prefix = NAMESPACE_PREFIXES.get(namespace)
    if prefix is None:
        return tag
    return f"{prefix}:{local}"


def namespace_of(tag: str) -> str:
    if tag.startswith("{"):
        return tag[1:].partition("}")[0]
    return ""


def from_element(element: ET.Element, default_namespace: str = "") -> XmlNode:
    """Convert an ElementTree element (and its subtree) into an XmlNode."""
    node = XmlNode(
        name=qualified_name(element.tag, default_namespace),
        text=(element.text or "").strip(),
        attrs={
            qualified_name(key, default_namespace): value
            for key, value in element.attrib.items()
        },
        element=element,
    )
    for child in element:
        if not isinstance(child.tag, str):
            # Comments and processing instructions
            continue
        node.add_child(from_element(child, default_namespace))
    return node
