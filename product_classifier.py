"""
product_classifier.py — decides whether a label set looks like something you
can buy, and builds shopping references.

This is a keyword heuristic, not a model: the vocabulary is plain
configuration (config.PRODUCT_KEYWORDS) and the answer only depends on the
labels and the vocabulary, never on their order.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional
from urllib.parse import quote, urlsplit

DEFAULT_PRODUCT_KEYWORDS: tuple[str, ...] = (
    # Furniture
    "furniture", "chair", "table", "desk", "sofa", "couch", "bed", "cabinet", "shelf",
    "stool", "lamp",
    # Electronics
    "electronics", "phone", "iphone", "smartphone", "laptop", "computer", "tablet", "ipad",
    "monitor", "keyboard", "mouse", "headphone", "speaker", "camera", "television", "tv",
    # Beverages & containers
    "bottle", "can", "cup", "mug", "glass", "container", "jar", "thermos",
    # Clothing & accessories
    "shoe", "sneaker", "boot", "shirt", "jacket", "watch", "bag", "backpack",
    # Books & media
    "book", "magazine", "notebook", "album",
    # Tools & appliances
    "tool", "hammer", "drill", "appliance", "microwave", "refrigerator",
    # Toys & games
    "toy", "game", "puzzle", "doll", "ball",
    # Generic product nouns
    "product", "merchandise", "item", "device", "gadget", "instrument",
)

SHOPPING_SEARCH_URL = "https://www.google.com/search?tbm=shop&q={query}"
GOOGLE_SHOPPING = "Google Shopping"


class Marketplace(str, Enum):
    """Known storefronts, matched by substring on the URL host (first match wins)."""
    AMAZON     = "Amazon"
    EBAY       = "eBay"
    WALMART    = "Walmart"
    TARGET     = "Target"
    BESTBUY    = "BestBuy"
    ETSY       = "Etsy"
    ALIEXPRESS = "AliExpress"
    WEB        = "Web"


_HOST_MARKERS: tuple[tuple[str, Marketplace], ...] = (
    ("amazon",     Marketplace.AMAZON),
    ("ebay",       Marketplace.EBAY),
    ("walmart",    Marketplace.WALMART),
    ("target",     Marketplace.TARGET),
    ("bestbuy",    Marketplace.BESTBUY),
    ("etsy",       Marketplace.ETSY),
    ("aliexpress", Marketplace.ALIEXPRESS),
)


@dataclass(frozen=True)
class ShoppingReference:
    title: str
    url: str
    source: str


def _host(url: str) -> str:
    text = (url or "").strip()
    if "//" not in text:
        text = "//" + text      # bare "amazon.com/dp/…" still has a host
    try:
        return (urlsplit(text).hostname or "").lower()
    except ValueError:
        return ""


def marketplace_for(url: str) -> Marketplace:
    host = _host(url)
    for marker, marketplace in _HOST_MARKERS:
        if marker in host:
            return marketplace
    return Marketplace.WEB


def classify(labels: Iterable[str], keywords: Optional[Iterable[str]] = None) -> bool:
    """True when any label contains any keyword (case-insensitive)."""
    vocabulary = [k.lower() for k in (DEFAULT_PRODUCT_KEYWORDS if keywords is None else keywords) if k]
    return any(
        keyword in label.lower()
        for label in labels
        for keyword in vocabulary
    )


def build_shopping_reference(label: str) -> ShoppingReference:
    """Generic marketplace search for a label, used when no real page matched."""
    return ShoppingReference(
        title=f"Search {label} on Google Shopping",
        url=SHOPPING_SEARCH_URL.format(query=quote(label, safe="")),
        source=GOOGLE_SHOPPING,
    )


def reference_from_match(title: str, url: str) -> ShoppingReference:
    """Turn a web page that shows the same image into a shopping link."""
    return ShoppingReference(title=title, url=url, source=marketplace_for(url).value)
