"""
Conversation Aggregator

Folds normalized threads into the statistics shown on the dashboard:
chat counts by channel, action tallies, redirect maps, drill-down action
lists and a revenue estimate. Scopes are whatever thread list the caller
passes in (one website, one day, a rolling window).
"""
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional

from app.services.action_classifier import Action, ActionCategory, classify_message
from app.services.conversation_normalizer import Message, Thread
from app.services.purchase_attribution import (
    CatalogItem,
    PriceLookup,
    PurchaseLedger,
    RevenueSummary,
    compute_revenue,
)
from app.services.redirect_attribution import RedirectTally
from app.utils.helpers import day_bounds, utc_now

DRILL_DOWN_CATEGORIES = (ActionCategory.CART, ActionCategory.MOVEMENT, ActionCategory.ORDERS)


@dataclass
class ConversationStats:
    total_threads: int = 0
    total_messages: int = 0
    total_voice_chats: int = 0
    total_text_chats: int = 0
    total_ai_redirects: int = 0
    total_ai_scrolls: int = 0
    total_ai_purchases: int = 0
    total_ai_clicks: int = 0
    assistant_messages: int = 0
    redirects: RedirectTally = field(default_factory=RedirectTally)
    purchases: PurchaseLedger = field(default_factory=PurchaseLedger)
    actions: Dict[str, List[Action]] = field(
        default_factory=lambda: {category.value: [] for category in DRILL_DOWN_CATEGORIES}
    )
    revenue: RevenueSummary = field(default_factory=RevenueSummary)

    def global_stats(self) -> Dict[str, int]:
        return {
            "totalAiRedirects": self.total_ai_redirects,
            "totalVoiceChats": self.total_voice_chats,
            "totalTextChats": self.total_text_chats,
            "totalAiScrolls": self.total_ai_scrolls,
            "totalAiPurchases": self.total_ai_purchases,
            "totalAiClicks": self.total_ai_clicks,
        }

    def action_breakdown(self) -> Dict[str, List[Dict[str, Any]]]:
        return {
            category: [action.to_dict() for action in actions]
            for category, actions in self.actions.items()
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalThreads": self.total_threads,
            "totalMessages": self.total_messages,
            "globalStats": self.global_stats(),
            "redirects": self.redirects.to_dict(),
            "actions": self.action_breakdown(),
            "revenue": self.revenue.to_dict(),
            "purchases": [event.to_dict() for event in self.purchases.events],
        }


def aggregate_threads(
    threads: Iterable[Thread],
    catalog: Optional[Iterable[CatalogItem]] = None,
    currency: str = "USD",
    price_lookup: Optional[PriceLookup] = None,
) -> ConversationStats:
    """Aggregate one scope of threads."""
    stats = ConversationStats()
    threads = list(threads)

    for thread in threads:
        stats.total_threads += 1
        stats.total_messages += thread.message_count
        # Mixed voice/text threads count toward both totals
        if thread.has_voice_message:
            stats.total_voice_chats += 1
        if thread.has_text_message:
            stats.total_text_chats += 1

        thread_urls: List[str] = []
        for message in thread.messages:
            if not message.is_assistant:
                continue
            stats.assistant_messages += 1
            result = classify_message(message, thread.id)
            stats.total_ai_scrolls += result.scrolls
            stats.total_ai_clicks += result.clicks
            stats.purchases.extend(result.purchases)
            thread_urls.extend(result.redirect_urls)
            for action in result.actions:
                if action.category.value in stats.actions:
                    stats.actions[action.category.value].append(action)

        stats.total_ai_redirects += stats.redirects.record_thread(thread.id, thread_urls)

    stats.total_ai_purchases = stats.purchases.event_count

    for category, actions in stats.actions.items():
        stats.actions[category] = sorted(actions, key=lambda a: a.created_at or datetime.min)

    if price_lookup is None:
        price_lookup = PriceLookup.from_catalog(catalog or [])
    stats.revenue = compute_revenue(stats.purchases, price_lookup, stats.total_threads, currency)
    return stats


def slice_threads(
    threads: Iterable[Thread],
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> List[Thread]:
    """Restrict threads to messages in [start, end); emptied threads are dropped."""
    sliced = []
    for thread in threads:
        messages = [
            m for m in thread.messages
            if (start is None or m.created_at >= start) and (end is None or m.created_at < end)
        ]
        if messages:
            sliced.append(thread.with_messages(messages))
    return sliced


def _group_by_day(threads: Iterable[Thread]) -> Dict[date, List[Thread]]:
    """Split every thread into per-day threads by message timestamp."""
    by_day: Dict[date, List[Thread]] = {}
    for thread in threads:
        per_day: "OrderedDict[date, List[Message]]" = OrderedDict()
        for message in thread.messages:
            per_day.setdefault(message.created_at.date(), []).append(message)
        for day, messages in per_day.items():
            by_day.setdefault(day, []).append(thread.with_messages(messages))
    return by_day


def build_daily_series(
    threads: Iterable[Thread],
    days: int,
    today: Optional[date] = None,
    catalog: Optional[Iterable[CatalogItem]] = None,
    currency: str = "USD",
) -> List[Dict[str, Any]]:
    """
    Chart series with one bucket per UTC calendar day, oldest first.

    Each bucket is aggregated independently from the messages sent that day,
    so a conversation spanning midnight contributes to both days.
    """
    today = today or utc_now().date()
    lookup = PriceLookup.from_catalog(catalog or [])
    by_day = _group_by_day(threads)

    series = []
    for offset in range(max(days, 0) - 1, -1, -1):
        day = today - timedelta(days=offset)
        day_stats = aggregate_threads(by_day.get(day, []), currency=currency, price_lookup=lookup)
        start, _ = day_bounds(day)
        series.append({
            "date": start.isoformat(),
            "threads": day_stats.total_threads,
            "chats": day_stats.assistant_messages,
            "voiceChats": day_stats.total_voice_chats,
            "textChats": day_stats.total_text_chats,
            "redirects": day_stats.total_ai_redirects,
            "scrolls": day_stats.total_ai_scrolls,
            "purchases": day_stats.total_ai_purchases,
            "clicks": day_stats.total_ai_clicks,
            "revenue": day_stats.revenue.amount,
        })
    return series
