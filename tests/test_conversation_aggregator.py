"""
Tests for scope aggregation: channel counts, action tallies, redirect
dedup, revenue and the daily chart series.

These are unit tests that do NOT require a database.
"""
from datetime import datetime, timedelta

from app.services.conversation_aggregator import (
    aggregate_threads,
    build_daily_series,
    slice_threads,
)
from app.services.conversation_normalizer import SourceKind
from app.services.purchase_attribution import CatalogItem

T0 = datetime(2026, 3, 2, 12, 0, 0)

REDIRECT_RED_SHOE = (
    '```json\n{"action":"redirect","action_context":{"url":"https://shop.com/products/red-shoe/"}}\n```'
)


# ────────────────────────────────────────────
# SCENARIOS
# ────────────────────────────────────────────


class TestScenarios:

    def test_fenced_json_redirect(self, make_message, make_thread):
        thread = make_thread([
            make_message(role="user", content="show me red shoes", type="text"),
            make_message(content=REDIRECT_RED_SHOE, minutes=1),
        ])
        stats = aggregate_threads([thread])

        assert stats.total_text_chats == 1
        assert stats.total_ai_redirects == 1
        assert stats.redirects.to_dict()["productRedirects"] == {"red-shoe": 1}

    def test_structured_add_to_cart_revenue(self, make_message, make_thread):
        thread = make_thread([
            make_message(role="user", content="add the blue hat", type="text"),
            make_message(action="add_to_cart", action_type='{"product_name":"Blue Hat"}', minutes=1),
        ])
        stats = aggregate_threads([thread], catalog=[CatalogItem(id="p1", title="Blue Hat", price=25)])

        assert stats.total_ai_purchases == 1
        assert stats.revenue.amount == 25
        assert stats.revenue.threads == 1
        assert stats.revenue.aov == 25
        assert len(stats.actions["cart"]) == 1

    def test_voice_scroll(self, make_message, make_thread):
        thread = make_thread(
            [
                make_message(role="user", content="where is shipping info", type="voice"),
                make_message(action="scroll", minutes=1),
            ],
            kind=SourceKind.VOICE_CONVERSATION,
        )
        stats = aggregate_threads([thread])

        assert stats.total_voice_chats == 1
        assert stats.total_ai_scrolls == 1
        assert stats.total_ai_clicks == 0

    def test_plain_prose_changes_nothing(self, make_message, make_thread):
        thread = make_thread([make_message(content="We ship worldwide within 5 days.")])
        stats = aggregate_threads([thread])
        global_stats = stats.global_stats()

        assert global_stats == {
            "totalAiRedirects": 0,
            "totalVoiceChats": 0,
            "totalTextChats": 0,
            "totalAiScrolls": 0,
            "totalAiPurchases": 0,
            "totalAiClicks": 0,
        }
        assert all(actions == [] for actions in stats.actions.values())

    def test_two_redirects_in_one_thread_count_once(self, make_message, make_thread):
        thread = make_thread([
            make_message(content='{"action":"redirect","action_context":{"url":"/products/red-shoe"}}'),
            make_message(content='{"action":"redirect","action_context":{"url":"/collections/hats"}}', minutes=1),
        ])
        stats = aggregate_threads([thread])
        redirects = stats.redirects.to_dict()

        assert stats.total_ai_redirects == 1
        assert redirects["urlRedirectCounts"] == {"/collections/hats": 1, "/products/red-shoe": 1}
        assert redirects["productRedirects"] == {"red-shoe": 1}
        assert redirects["collectionRedirects"] == {"hats": 1}


# ────────────────────────────────────────────
# PROPERTIES
# ────────────────────────────────────────────


class TestAggregateProperties:

    def _threads(self, make_message, make_thread):
        return [
            make_thread([
                make_message(role="user", type="text"),
                make_message(content=REDIRECT_RED_SHOE, minutes=1),
                make_message(action="add_to_cart", action_type='{"url":"/products/red-shoe"}', minutes=2),
            ], thread_id="t1"),
            make_thread([
                make_message(role="user", type="voice"),
                make_message(page_url="/pages/faq", minutes=1),
                make_message(page_url="/pages/faq", minutes=2),
            ], thread_id="t2", kind=SourceKind.AI_THREAD),
        ]

    def test_idempotent(self, make_message, make_thread):
        threads = self._threads(make_message, make_thread)
        catalog = [CatalogItem(id="p1", handle="red-shoe", price=40)]
        assert aggregate_threads(threads, catalog).to_dict() == aggregate_threads(threads, catalog).to_dict()

    def test_redirect_total_counts_threads(self, make_message, make_thread):
        stats = aggregate_threads(self._threads(make_message, make_thread))
        assert stats.total_ai_redirects == 2
        assert stats.redirects.url_counts["/pages/faq"] == 2
        assert stats.redirects.handle_count("pages", "FAQ") == 2

    def test_same_thread_twice_in_scope_counts_once(self, make_message, make_thread):
        thread = make_thread([make_message(page_url="/pages/faq")])
        stats = aggregate_threads([thread, thread])
        assert stats.total_ai_redirects == 1
        assert stats.redirects.url_counts["/pages/faq"] == 2

    def test_revenue_never_negative(self, make_message, make_thread):
        threads = self._threads(make_message, make_thread)
        stats = aggregate_threads(threads, [CatalogItem(id="p1", handle="red-shoe", price=-10)])
        assert stats.revenue.amount >= 0
        assert stats.revenue.aov >= 0

    def test_empty_scope(self):
        stats = aggregate_threads([])
        assert stats.total_threads == 0
        assert stats.revenue.amount == 0
        assert stats.revenue.aov == 0
        assert stats.revenue.threads == 0

    def test_mixed_channel_thread_counts_for_both(self, make_message, make_thread):
        thread = make_thread([
            make_message(role="user", type="text"),
            make_message(role="user", type="voice", minutes=1),
        ])
        stats = aggregate_threads([thread])
        assert stats.total_text_chats == 1
        assert stats.total_voice_chats == 1

    def test_every_action_lands_in_one_category(self, make_message, make_thread):
        thread = make_thread([
            make_message(action="add_to_cart", action_type='{"product_name":"Blue Hat"}'),
            make_message(action="true", action_type="highlight", minutes=1),
            make_message(action="cancel_order", minutes=2),
            make_message(content='{"action":"get_cart"}', minutes=3),
        ])
        breakdown = aggregate_threads([thread]).action_breakdown()

        assert [a["kind"] for a in breakdown["cart"]] == ["add_to_cart", "get_cart"]
        assert [a["kind"] for a in breakdown["movement"]] == ["highlight"]
        assert [a["kind"] for a in breakdown["orders"]] == ["cancel_order"]

    def test_drill_down_sorted_by_time(self, make_message, make_thread):
        late = make_thread([make_message(action="get_cart", minutes=10)], thread_id="late")
        early = make_thread([make_message(action="delete_from_cart", minutes=1)], thread_id="early")
        breakdown = aggregate_threads([late, early]).action_breakdown()
        assert [a["threadId"] for a in breakdown["cart"]] == ["early", "late"]

    def test_every_add_to_cart_counts_as_purchase(self, make_message, make_thread):
        thread = make_thread([
            make_message(action="add_to_cart", action_type='{"product_name":"Blue Hat"}'),
            make_message(action="add_to_cart", action_type='{"product_name":"Blue Hat"}', minutes=1),
        ])
        stats = aggregate_threads([thread], [CatalogItem(id="p1", title="Blue Hat", price=25)])
        assert stats.total_ai_purchases == 2
        # Same product twice in one thread is priced once
        assert stats.revenue.amount == 25


# ────────────────────────────────────────────
# TIME SLICING
# ────────────────────────────────────────────


class TestSliceThreads:

    def test_keeps_messages_in_half_open_window(self, make_message, make_thread):
        thread = make_thread([
            make_message(role="user", type="text"),
            make_message(minutes=30),
            make_message(minutes=60),
        ])
        sliced = slice_threads([thread], T0 + timedelta(minutes=30), T0 + timedelta(minutes=60))
        assert len(sliced) == 1
        assert sliced[0].message_count == 1
        # Original untouched
        assert thread.message_count == 3

    def test_emptied_threads_dropped(self, make_message, make_thread):
        thread = make_thread([make_message()])
        assert slice_threads([thread], start=T0 + timedelta(days=1)) == []


class TestDailySeries:

    def test_one_bucket_per_day_oldest_first(self, make_message, make_thread):
        series = build_daily_series([], days=3, today=T0.date())
        assert [bucket["date"] for bucket in series] == [
            "2026-02-28T00:00:00",
            "2026-03-01T00:00:00",
            "2026-03-02T00:00:00",
        ]
        assert all(bucket["threads"] == 0 and bucket["revenue"] == 0 for bucket in series)

    def test_thread_spanning_midnight_counts_on_both_days(self, make_message, make_thread):
        evening = datetime(2026, 3, 1, 23, 50)
        thread = make_thread([
            make_message(role="user", type="text", at=evening),
            make_message(page_url="/pages/faq", at=evening, minutes=5),
            make_message(action="scroll", at=evening, minutes=20),
        ])
        series = build_daily_series([thread], days=2, today=T0.date())
        yesterday, today = series

        assert yesterday["threads"] == 1
        assert yesterday["textChats"] == 1
        assert yesterday["redirects"] == 1
        assert yesterday["chats"] == 1
        assert today["threads"] == 1
        assert today["textChats"] == 0
        assert today["scrolls"] == 1

    def test_daily_revenue_uses_catalog(self, make_message, make_thread):
        thread = make_thread([
            make_message(action="add_to_cart", action_type='{"product_name":"Blue Hat"}'),
        ])
        series = build_daily_series(
            [thread], days=1, today=T0.date(), catalog=[CatalogItem(id="p1", title="Blue Hat", price=25)]
        )
        assert series[0]["purchases"] == 1
        assert series[0]["revenue"] == 25

    def test_zero_days(self):
        assert build_daily_series([], days=0) == []
