"""
Redirect Attribution

Counts where the assistant sent shoppers. Two different counters are kept:

- Frequency maps (per normalized URL and per content handle) count every
  redirect the assistant issued.
- The redirect total counts *threads*: a conversation that redirects five
  times still adds one, the first time a redirect is seen.
"""
from typing import Dict, Iterable, Optional, Set

from app.utils.url_parsing import classify_redirect_path, normalize_url

CONTENT_BUCKETS = ("products", "collections", "blogs", "pages")


def _increment(counter: Dict[str, int], key: str) -> None:
    counter[key] = counter.get(key, 0) + 1


def _ranked(counter: Dict[str, int]) -> Dict[str, int]:
    return dict(sorted(counter.items(), key=lambda item: (-item[1], item[0])))


class RedirectTally:
    """Redirect accumulator for one aggregation scope."""

    def __init__(self):
        self.total_redirects = 0
        self.url_counts: Dict[str, int] = {}
        self.handle_counts: Dict[str, Dict[str, int]] = {bucket: {} for bucket in CONTENT_BUCKETS}
        self._threads_counted: Set[str] = set()

    def record_url(self, url: str) -> str:
        """Count one redirect in the frequency maps; returns the normalized path."""
        normalized = normalize_url(url)
        _increment(self.url_counts, normalized)
        bucket = classify_redirect_path(normalized)
        if bucket is not None:
            content_type, handle = bucket
            _increment(self.handle_counts[content_type], handle)
        return normalized

    def record_thread(self, thread_id: str, urls: Iterable[str]) -> int:
        """
        Record every redirect one thread produced. The redirect total grows by
        at most one per thread; returns how much it grew.
        """
        seen_any = False
        for url in urls:
            self.record_url(url)
            seen_any = True
        if seen_any and thread_id not in self._threads_counted:
            self._threads_counted.add(thread_id)
            self.total_redirects += 1
            return 1
        return 0

    def count_for(self, url: str, website_type: Optional[str] = None) -> int:
        """
        Redirect count for a content URL from the website's catalog listing.
        Shopify pages are listed by bare slug but redirected to under /pages/.
        """
        normalized = url.rstrip("/")
        if website_type == "Shopify":
            if not normalized.startswith(("/pages/", "/products/", "/blogs/")):
                normalized = "/pages/" + normalized.lstrip("/")
            normalized = normalized.rstrip(".")
        return self.url_counts.get(normalized, 0)

    def handle_count(self, content_type: str, handle: str) -> int:
        return self.handle_counts.get(content_type, {}).get((handle or "").lower(), 0)

    def to_dict(self) -> Dict[str, Dict[str, int]]:
        return {
            "productRedirects": _ranked(self.handle_counts["products"]),
            "collectionRedirects": _ranked(self.handle_counts["collections"]),
            "blogRedirects": _ranked(self.handle_counts["blogs"]),
            "pageRedirects": _ranked(self.handle_counts["pages"]),
            "urlRedirectCounts": _ranked(self.url_counts),
        }
