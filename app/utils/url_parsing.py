"""
URL parsing utilities for attributing AI redirects to storefront content.
"""
import re
from urllib.parse import urlparse
from typing import List, Optional, Tuple

# Singular and plural path prefixes fold to one content type
CONTENT_TYPE_ALIASES = {
    "product": "products",
    "products": "products",
    "collection": "collections",
    "collections": "collections",
    "blog": "blogs",
    "blogs": "blogs",
    "page": "pages",
    "pages": "pages",
}

# Absolute URLs, or bare storefront paths, embedded in free text
URL_PATTERN = re.compile(
    r"https?://[^\s)\"'<>]+|(?:/(?:pages|products|blogs|collections)/[^\s)\"'<>]+)"
)

_SCHEME = re.compile(r"^[a-zA-Z][a-zA-Z0-9+.\-]*://")


def normalize_url(url: Optional[str]) -> str:
    """
    Reduce a redirect destination to a comparable path.

    'https://shop.com/products/red-shoe/' -> '/products/red-shoe'
    'products/red-shoe.'                  -> '/products/red-shoe'

    Normalizing an already normalized path returns it unchanged.
    """
    path = (url or "").strip()
    if _SCHEME.match(path):
        try:
            path = urlparse(path).path
        except ValueError:
            pass
    path = path.rstrip("/.")
    return "/" + path.lstrip("/")


def _clean_handle(segment: str) -> str:
    return segment.lower().rstrip("/.")


def path_segments(url: Optional[str]) -> List[str]:
    return [part for part in normalize_url(url).split("/") if part]


def classify_redirect_path(url: Optional[str]) -> Optional[Tuple[str, str]]:
    """
    Bucket a redirect into (content_type, handle).

    Blog posts live at /blogs/{blog}/{post}, so blogs use the last segment;
    every other type uses the second. Returns None for paths that are not
    storefront content.
    """
    parts = path_segments(url)
    if len(parts) < 2:
        return None

    content_type = CONTENT_TYPE_ALIASES.get(parts[0].lower())
    if content_type is None:
        return None

    segment = parts[-1] if content_type == "blogs" else parts[1]
    handle = _clean_handle(segment)
    if not handle:
        return None
    return content_type, handle


def extract_handle(url: Optional[str], content_type: str) -> Optional[str]:
    """Handle of `url` when it points at `content_type` content, else None."""
    parts = path_segments(url)
    if len(parts) < 2:
        return None
    if CONTENT_TYPE_ALIASES.get(parts[0].lower()) != content_type:
        return None
    return _clean_handle(parts[1]) or None


def extract_product_handle(url: Optional[str]) -> Optional[str]:
    return extract_handle(url, "products")


def find_first_url(text: Optional[str]) -> Optional[str]:
    """First URL-looking token in free text."""
    if not text:
        return None
    match = URL_PATTERN.search(text)
    return match.group(0) if match else None
