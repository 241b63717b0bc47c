"""
Purchase Attribution

Maps purchase / add-to-cart events detected in assistant messages onto
catalog prices to estimate the revenue the assistant influenced.

Key precedence for an event: product handle -> product id -> product name
-> raw URL -> "unknown". Each thread contributes a *set* of keys, so the same
product pushed twice in one conversation is only counted once for revenue.

Price resolution order for a key:
1. Path-like keys resolve through their /products/{handle} segment
2. Handle table (lowercased)
3. Product id table
4. Title table (lowercased, whitespace collapsed)
Keys that match nothing are reported and skipped.
"""
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Mapping, Optional, Set, Tuple

from app.utils.helpers import isoformat_or_none, round_half_up, safe_divide
from app.utils.logger import log
from app.utils.url_parsing import extract_product_handle

UNKNOWN_PURCHASE_KEY = "unknown"


@dataclass
class PurchaseEvent:
    """One purchase signal with whatever identifiers could be extracted"""
    thread_id: str
    message_id: Optional[str] = None
    created_at: Optional[datetime] = None
    url: Optional[str] = None
    handle: Optional[str] = None
    product_id: Optional[str] = None
    product_name: Optional[str] = None

    @property
    def key(self) -> str:
        return str(
            self.handle
            or self.product_id
            or self.product_name
            or self.url
            or UNKNOWN_PURCHASE_KEY
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "threadId": self.thread_id,
            "messageId": self.message_id,
            "createdAt": isoformat_or_none(self.created_at),
            "url": self.url,
            "handle": self.handle,
            "productId": self.product_id,
            "productName": self.product_name,
        }


def build_purchase_event(
    thread_id: str,
    message_id: Optional[str],
    created_at: Optional[datetime],
    url: Any = None,
    product_id: Any = None,
    product_name: Any = None,
) -> PurchaseEvent:
    """Normalize raw identifiers (any JSON scalar) into a PurchaseEvent."""
    url = _as_text(url)
    return PurchaseEvent(
        thread_id=thread_id,
        message_id=message_id,
        created_at=created_at,
        url=url,
        handle=extract_product_handle(url) if url else None,
        product_id=_as_text(product_id),
        product_name=_as_text(product_name),
    )


def _as_text(value: Any) -> Optional[str]:
    if value is None or isinstance(value, (dict, list, bool)):
        return None
    text = str(value).strip()
    return text or None


class PurchaseLedger:
    """Accumulates purchase events for one aggregation scope."""

    def __init__(self):
        self.keys_by_thread: "OrderedDict[str, Set[str]]" = OrderedDict()
        self.events: List[PurchaseEvent] = []

    def record(self, event: PurchaseEvent) -> str:
        key = event.key
        self.keys_by_thread.setdefault(event.thread_id, set()).add(key)
        self.events.append(event)
        return key

    def extend(self, events: Iterable[PurchaseEvent]) -> None:
        for event in events:
            self.record(event)

    @property
    def thread_count(self) -> int:
        return len(self.keys_by_thread)

    @property
    def event_count(self) -> int:
        return len(self.events)


@dataclass
class CatalogItem:
    id: str
    handle: Optional[str] = None
    title: Optional[str] = None
    price: float = 0.0


def normalize_title(title: str) -> str:
    return " ".join(str(title).lower().split())


def best_variant_price(prices: Iterable[Any]) -> Optional[float]:
    """
    Price for a product from its variants: the first numeric price,
    upgraded to the first non-zero one if the first seen is zero.
    """
    best: Optional[float] = None
    for raw in prices:
        if raw is None or isinstance(raw, bool):
            continue
        if isinstance(raw, (int, float, Decimal)):
            candidate = float(raw)
        else:
            continue
        if best is None:
            best = candidate
        elif best == 0 and candidate > 0:
            best = candidate
    return best


class PriceLookup:
    """Price tables built once per scope from the website's catalog."""

    def __init__(self):
        self.by_handle: Dict[str, float] = {}
        self.by_id: Dict[str, float] = {}
        self.by_title: Dict[str, float] = {}

    @classmethod
    def from_catalog(cls, items: Iterable[CatalogItem]) -> "PriceLookup":
        lookup = cls()
        for item in items:
            price = max(float(item.price or 0), 0.0)
            if item.handle:
                lookup.by_handle[item.handle.lower()] = price
            lookup.by_id[str(item.id)] = price
            if item.title:
                lookup.by_title[normalize_title(item.title)] = price
        return lookup

    def resolve(self, key: str) -> Optional[float]:
        key = key or ""
        if not key:
            return None

        handle = extract_product_handle(key) if "/" in key else key
        if handle and handle.lower() in self.by_handle:
            return self.by_handle[handle.lower()]
        if key in self.by_id:
            return self.by_id[key]
        return self.by_title.get(normalize_title(key))

    def sizes(self) -> Dict[str, int]:
        return {
            "handleToPrice": len(self.by_handle),
            "idToPrice": len(self.by_id),
            "titleToPrice": len(self.by_title),
        }


@dataclass
class RevenueSummary:
    amount: float = 0.0
    currency: str = "USD"
    threads: int = 0
    percent_of_total_threads: int = 0
    aov: float = 0.0
    matched: List[Tuple[str, float]] = field(default_factory=list)
    unmatched: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "amount": self.amount,
            "currency": self.currency,
            "breakdown": {
                "threads": self.threads,
                "percent_of_total_threads": self.percent_of_total_threads,
                "aov": self.aov,
            },
        }


def compute_revenue(
    ledger: PurchaseLedger,
    lookup: PriceLookup,
    total_threads: int,
    currency: str = "USD",
) -> RevenueSummary:
    """Roll a scope's purchase ledger into a revenue estimate."""
    summary = RevenueSummary(currency=currency)
    total_amount = 0.0

    for keys in ledger.keys_by_thread.values():
        for key in sorted(keys):
            price = lookup.resolve(key)
            if price is None:
                summary.unmatched.append(key)
                continue
            summary.matched.append((key, price))
            total_amount += price

    threads = ledger.thread_count
    summary.amount = round_half_up(total_amount, 2)
    summary.threads = threads
    summary.percent_of_total_threads = int(round_half_up(safe_divide(threads, total_threads) * 100))
    summary.aov = round_half_up(safe_divide(total_amount, threads), 2)

    if ledger.event_count:
        log.debug(
            f"Revenue: {ledger.event_count} purchase events, lookups {lookup.sizes()}, "
            f"matched {summary.matched[:10]}, unmatched {summary.unmatched[:10]}"
        )
    return summary


def catalog_from_rows(
    products: Iterable[Mapping[str, Any]],
    variants: Iterable[Mapping[str, Any]],
) -> List[CatalogItem]:
    """Build catalog items from product rows and their variant price rows."""
    prices_by_product: Dict[str, List[Any]] = {}
    for variant in variants:
        prices_by_product.setdefault(str(variant.get("product_id")), []).append(variant.get("price"))

    items = []
    for product in products:
        product_id = str(product.get("id"))
        price = best_variant_price(prices_by_product.get(product_id, []))
        items.append(CatalogItem(
            id=product_id,
            handle=product.get("handle"),
            title=product.get("title"),
            price=price if price is not None else 0.0,
        ))
    return items
