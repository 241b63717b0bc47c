"""
Conversation Analytics Service

Entry points used by the dashboard and the refresh jobs:

- get_website_stats: lifetime (or windowed) stats for one website
- get_dashboard: totals, per-website rows and a daily chart for a user
- get_action_breakdown: cart / movement / orders drill-down lists
- get_content_redirects: redirect counts for a website's content listing
- build_overview / get_overview / refresh_overview: AI overview with the
  engine's revenue estimate, cached on the website row
- build_history_report / refresh_history / get_ai_history: AI history report
"""
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from sqlalchemy.orm import Session

from app.config import get_settings
from app.models.website import Website
from app.services.action_classifier import try_parse_json
from app.services.conversation_aggregator import (
    ConversationStats,
    aggregate_threads,
    build_daily_series,
)
from app.services.conversation_data_service import ConversationDataService
from app.services.conversation_normalizer import Thread, sort_by_recent_activity
from app.services.llm_service import LLMService
from app.utils.helpers import (
    calculate_date_range,
    dumps_compact,
    isoformat_or_none,
    round_half_up,
    safe_divide,
    utc_now,
)
from app.utils.logger import log

settings = get_settings()

OVERVIEW_INSTRUCTIONS = """Analyze the provided AI chat threads and produce a single JSON object with:
period_label (string), total_message_threads (number),
total_revenue_increase {amount, currency, breakdown {threads, percent_of_total_threads, aov}},
problem_resolution_rate {percent, resolved_threads, total_threads},
avg_messages_per_thread (number),
most_common_questions [{category, threads, description}],
recent_questions_by_topic [{topic, items [{question, status, note}]}].
Classify a thread as resolved when the user's issue was answered or the task completed.
Return only JSON."""

HISTORY_INSTRUCTIONS = """Review the provided AI chat threads and produce a single JSON object with:
ai_usage_analysis (two paragraphs),
chat_review {good_count, needs_work_count, good_definition, needs_work_definition, good_thread_ids, needs_work_thread_ids},
whats_working [string], pain_points [{title, description}], quick_wins [string],
kpi_snapshot {total_threads, helpful_percent, needs_work_percent, avg_user_messages_when_good, avg_user_messages_when_bad}.
Use thread ids exactly as given. Return only JSON."""

HISTORY_PENDING_MESSAGE = (
    "AI history analysis is being generated in the background. "
    "Please check back in a few minutes."
)


class WebsiteNotFoundError(Exception):
    """Raised when a website id does not exist"""


class ProblemResolutionRate(BaseModel):
    percent: float = 0
    resolved_threads: int = 0
    total_threads: int = 0


class AIOverviewReport(BaseModel):
    """AI overview as stored in Website.cached_overview"""
    model_config = ConfigDict(extra="allow")

    period_label: str = "Based on the last 4 weeks"
    total_message_threads: int = 0
    total_revenue_increase: Dict[str, Any] = Field(default_factory=dict)
    problem_resolution_rate: ProblemResolutionRate = Field(default_factory=ProblemResolutionRate)
    avg_messages_per_thread: float = 0
    most_common_questions: List[Dict[str, Any]] = Field(default_factory=list)
    recent_questions_by_topic: List[Dict[str, Any]] = Field(default_factory=list)


class AIHistoryReport(BaseModel):
    """AI history report as stored in Website.cached_analysis"""
    model_config = ConfigDict(extra="allow")

    ai_usage_analysis: str = ""
    chat_review: Dict[str, Any] = Field(default_factory=dict)
    whats_working: List[str] = Field(default_factory=list)
    pain_points: List[Dict[str, Any]] = Field(default_factory=list)
    quick_wins: List[str] = Field(default_factory=list)
    kpi_snapshot: Dict[str, Any] = Field(default_factory=dict)


def needs_refresh(generated_at: Optional[datetime], now: Optional[datetime] = None) -> bool:
    """A cached report is stale when missing or older than cache_max_age_hours."""
    if generated_at is None:
        return True
    now = now or utc_now()
    return generated_at < now - timedelta(hours=settings.cache_max_age_hours)


def _period_label(days: int) -> str:
    if days % 7 == 0:
        weeks = days // 7
        return f"Based on the last {weeks} week{'s' if weeks != 1 else ''}"
    return f"Based on the last {days} days"


def _add_series(total: List[Dict[str, Any]], series: List[Dict[str, Any]]) -> None:
    """Add one website's daily buckets into the combined chart, day by day."""
    for bucket, day in zip(total, series):
        for key, value in day.items():
            if key == "date":
                continue
            bucket[key] = bucket[key] + value
        bucket["revenue"] = round_half_up(bucket["revenue"], 2)


class ConversationAnalyticsService:
    """Runs the analytics engine over a website's stored conversations"""

    def __init__(self, db: Session, llm: Optional[LLMService] = None):
        self.db = db
        self.data = ConversationDataService(db)
        self._llm = llm

    @property
    def llm(self) -> LLMService:
        if self._llm is None:
            self._llm = LLMService()
        return self._llm

    def _require_website(self, website_id: str) -> Website:
        website = self.data.get_website(website_id)
        if website is None:
            raise WebsiteNotFoundError(f"Website not found: {website_id}")
        return website

    def _window_start(self, days: Optional[int], now: Optional[datetime] = None) -> Optional[datetime]:
        if not days:
            return None
        start, _ = calculate_date_range(days, now)
        return start

    def _aggregate(self, website_id: str, threads: List[Thread]) -> ConversationStats:
        catalog = self.data.fetch_catalog(website_id)
        return aggregate_threads(threads, catalog=catalog, currency=settings.currency)

    # ────────────────────────────────────────────
    # DASHBOARD STATS
    # ────────────────────────────────────────────

    def get_website_stats(self, website_id: str, days: Optional[int] = None) -> Dict[str, Any]:
        """Stats for one website over all time, or the last `days` days."""
        website = self._require_website(website_id)
        try:
            threads = self.data.load_threads(website_id, self._window_start(days))
            stats = self._aggregate(website_id, threads)
        except Exception as e:
            log.error(f"Error computing stats for website {website_id}: {str(e)}")
            raise

        global_stats = stats.global_stats()
        monthly_queries = website.monthly_queries or 0
        return {
            "websiteId": website.id,
            "globalStats": global_stats,
            "stats": {
                "aiRedirects": stats.total_ai_redirects,
                "totalRedirects": stats.total_ai_redirects,
                "aiScrolls": stats.total_ai_scrolls,
                "aiPurchases": stats.total_ai_purchases,
                "aiClicks": stats.total_ai_clicks,
                "redirectRate": safe_divide(stats.total_ai_redirects, monthly_queries) * 100,
                "totalVoiceChats": stats.total_voice_chats,
                "totalTextChats": stats.total_text_chats,
            },
            "totalThreads": stats.total_threads,
            "redirects": stats.redirects.to_dict(),
            "revenue": stats.revenue.to_dict(),
        }

    def get_action_breakdown(self, website_id: str, days: Optional[int] = None) -> Dict[str, Any]:
        """Individual cart, movement and order actions, oldest first."""
        self._require_website(website_id)
        threads = self.data.load_threads(website_id, self._window_start(days))
        stats = self._aggregate(website_id, threads)
        breakdown = stats.action_breakdown()
        return {
            "websiteId": website_id,
            "counts": {category: len(actions) for category, actions in breakdown.items()},
            "actions": breakdown,
        }

    def get_content_redirects(
        self,
        website_id: str,
        urls: List[str],
        days: Optional[int] = None,
    ) -> Dict[str, int]:
        """
        Redirect counts for the website's content listing (pages, products,
        posts). Shopify pages are listed by bare slug and resolved under /pages/.
        """
        website = self._require_website(website_id)
        threads = self.data.load_threads(website_id, self._window_start(days))
        stats = aggregate_threads(threads, currency=settings.currency)
        return {url: stats.redirects.count_for(url, website.type) for url in urls}

    def get_dashboard(self, user_id: str, days: Optional[int] = None, today=None) -> Dict[str, Any]:
        """Totals, per-website rows and a daily chart across a user's websites."""
        days = days or settings.dashboard_default_days
        today = today or utc_now().date()
        since = datetime.combine(today - timedelta(days=days - 1), datetime.min.time())

        websites = (
            self.db.query(Website)
            .filter(Website.user_id == user_id)
            .order_by(Website.created_at.asc())
            .all()
        )

        totals = {
            "totalChats": 0,
            "totalThreads": 0,
            "totalMessages": 0,
            "voiceChats": 0,
            "textChats": 0,
            "aiRedirects": 0,
            "aiScrolls": 0,
            "aiPurchases": 0,
            "aiClicks": 0,
            "activeSites": sum(1 for w in websites if w.active),
        }
        rows = []
        chart = build_daily_series([], days, today=today, currency=settings.currency)

        for website in websites:
            threads = self.data.load_threads(website.id, since)
            catalog = self.data.fetch_catalog(website.id)
            stats = aggregate_threads(threads, catalog=catalog, currency=settings.currency)
            # Each website prices its own purchases
            _add_series(chart, build_daily_series(
                threads, days, today=today, catalog=catalog, currency=settings.currency
            ))

            totals["totalChats"] += stats.assistant_messages
            totals["totalThreads"] += stats.total_threads
            totals["totalMessages"] += stats.total_messages
            totals["voiceChats"] += stats.total_voice_chats
            totals["textChats"] += stats.total_text_chats
            totals["aiRedirects"] += stats.total_ai_redirects
            totals["aiScrolls"] += stats.total_ai_scrolls
            totals["aiPurchases"] += stats.total_ai_purchases
            totals["aiClicks"] += stats.total_ai_clicks

            rows.append({
                "id": website.id,
                "domain": website.url,
                "platform": (website.type or "").lower(),
                "monthlyChats": stats.assistant_messages,
                "aiRedirects": stats.total_ai_redirects,
                "aiScrolls": stats.total_ai_scrolls,
                "aiPurchases": stats.total_ai_purchases,
                "aiClicks": stats.total_ai_clicks,
                "revenue": stats.revenue.to_dict(),
                "status": "active" if website.active else "inactive",
                "createdAt": isoformat_or_none(website.created_at),
            })

        return {
            "stats": totals,
            "chartData": chart,
            "websites": rows,
        }

    # ────────────────────────────────────────────
    # AI OVERVIEW
    # ────────────────────────────────────────────

    def build_overview(self, website_id: str, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        AI overview for the overview window. Revenue and the thread count are
        always the engine's own figures; if the model fails a minimal overview
        carrying them is returned instead.
        """
        self._require_website(website_id)
        days = settings.overview_window_days
        threads = self.data.load_threads(website_id, self._window_start(days, now))
        stats = self._aggregate(website_id, threads)

        report = self.llm.generate_json_report(
            OVERVIEW_INSTRUCTIONS, [t.to_dict() for t in threads], days
        )
        return self._merge_overview(report, stats, days)

    def _merge_overview(self, report: Optional[Dict[str, Any]], stats: ConversationStats, days: int) -> Dict[str, Any]:
        overview = None
        if report is not None:
            try:
                overview = AIOverviewReport.model_validate(report)
            except ValidationError as e:
                log.warning(f"Discarding malformed AI overview: {e.error_count()} errors")

        if overview is None:
            overview = AIOverviewReport(
                period_label=_period_label(days),
                problem_resolution_rate=ProblemResolutionRate(total_threads=stats.total_threads),
            )

        overview.total_revenue_increase = stats.revenue.to_dict()
        overview.total_message_threads = stats.total_threads
        return overview.model_dump()

    def refresh_overview(self, website_id: str, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Rebuild the overview and store it on the website row."""
        now = now or utc_now()
        website = self._require_website(website_id)
        overview = self.build_overview(website_id, now)
        try:
            website.cached_overview = dumps_compact(overview)
            website.last_generated_overview = now
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            log.error(f"Error caching overview for website {website_id}: {str(e)}")
            raise
        log.info(f"Refreshed AI overview for website {website_id}")
        return overview

    def get_overview(self, website_id: str, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Cached overview while fresh, otherwise a refreshed one."""
        website = self._require_website(website_id)
        if website.cached_overview and not needs_refresh(website.last_generated_overview, now):
            cached = try_parse_json(website.cached_overview)
            if isinstance(cached, dict):
                return cached
        return self.refresh_overview(website_id, now)

    # ────────────────────────────────────────────
    # AI HISTORY
    # ────────────────────────────────────────────

    def build_history_report(self, website_id: str, now: Optional[datetime] = None) -> Optional[Dict[str, Any]]:
        """History report from the model, or None when it cannot be produced."""
        self._require_website(website_id)
        days = settings.history_window_days
        threads = self.data.load_threads(website_id, self._window_start(days, now))

        report = self.llm.generate_json_report(
            HISTORY_INSTRUCTIONS, [t.to_dict() for t in threads], days
        )
        if report is None:
            return None
        try:
            history = AIHistoryReport.model_validate(report)
        except ValidationError as e:
            log.warning(f"Discarding malformed AI history report: {e.error_count()} errors")
            return None

        history.kpi_snapshot["total_threads"] = len(threads)
        return history.model_dump()

    def refresh_history(self, website_id: str, now: Optional[datetime] = None) -> Optional[Dict[str, Any]]:
        """Regenerate the history report; an existing cache is kept on failure."""
        now = now or utc_now()
        website = self._require_website(website_id)
        report = self.build_history_report(website_id, now)
        if report is None:
            log.warning(f"No AI history report generated for website {website_id}")
            return None
        try:
            website.cached_analysis = dumps_compact(report)
            website.last_ai_generated_history = now
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            log.error(f"Error caching AI history for website {website_id}: {str(e)}")
            raise
        log.info(f"Refreshed AI history for website {website_id}")
        return report

    def get_ai_history(self, website_id: str, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Cached history report plus the window's threads, most recent first."""
        now = now or utc_now()
        website = self._require_website(website_id)
        window_start = now - timedelta(days=settings.history_window_days)

        response = {
            "success": True,
            "windowStart": window_start.isoformat(),
            "windowEnd": now.isoformat(),
            "lastAnalysedAt": isoformat_or_none(website.last_ai_generated_history),
            "needsRefresh": needs_refresh(website.last_ai_generated_history, now),
        }

        if not website.cached_analysis:
            log.info(f"No cached analysis available for website: {website_id}")
            pending = {"error": "Analysis not available", "message": HISTORY_PENDING_MESSAGE}
            response.update({"threadCount": 0, "threads": [], "report": pending, "analysis": pending})
            return response

        threads = sort_by_recent_activity(self.data.load_threads(website_id, window_start))
        report = try_parse_json(website.cached_analysis)
        if report is None:
            # Older rows hold plain-text analysis
            report = website.cached_analysis

        response.update({
            "threadCount": len(threads),
            "threads": [t.to_dict() for t in threads],
            "report": report,
            "analysis": report,
        })
        return response

    def websites_due_for_refresh(self, report: str, now: Optional[datetime] = None) -> List[str]:
        """Ids of active websites whose cached `report` (overview|history) is stale."""
        column = {
            "overview": Website.last_generated_overview,
            "history": Website.last_ai_generated_history,
        }[report]
        rows = self.db.query(Website.id, column).filter(Website.active.is_(True)).all()
        return [row[0] for row in rows if needs_refresh(row[1], now)]
