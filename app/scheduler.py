"""
Scheduler for background AI report refreshes

Uses APScheduler to regenerate cached AI overviews and AI history reports
for active websites whose cache has gone stale.
"""
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from datetime import datetime
import asyncio
from typing import Optional

from sqlalchemy.orm import Session

from app.models.base import get_db
from app.services.conversation_analytics_service import ConversationAnalyticsService
from app.services.llm_service import LLMService
from app.config import get_settings
from app.utils.logger import log

settings = get_settings()
scheduler = AsyncIOScheduler(timezone="UTC")


def refresh_stale_websites(
    db: Session,
    report: str,
    now: Optional[datetime] = None,
    llm: Optional[LLMService] = None,
) -> dict:
    """
    Refresh one kind of cached report ("overview" or "history") for every
    active website that needs it. A failing website is logged and skipped.
    """
    service = ConversationAnalyticsService(db, llm=llm)
    refresh = service.refresh_overview if report == "overview" else service.refresh_history

    website_ids = service.websites_due_for_refresh(report, now)
    refreshed, failed = [], []

    for website_id in website_ids:
        try:
            refresh(website_id, now)
            refreshed.append(website_id)
        except Exception as e:
            log.error(f"Error refreshing {report} for website {website_id}: {str(e)}")
            failed.append(website_id)

    log.info(
        f"{report.capitalize()} refresh: {len(refreshed)} refreshed, "
        f"{len(failed)} failed, {len(website_ids)} due"
    )
    return {"due": len(website_ids), "refreshed": refreshed, "failed": failed}


# Job Functions

async def refresh_ai_content():
    """Regenerate stale AI overviews"""
    try:
        log.info("Starting AI overview refresh...")
        db = next(get_db())
        try:
            refresh_stale_websites(db, "overview")
        finally:
            db.close()
    except Exception as e:
        log.error(f"AI overview refresh error: {str(e)}")


async def refresh_ai_history():
    """Regenerate stale AI history reports"""
    try:
        log.info("Starting AI history refresh...")
        db = next(get_db())
        try:
            refresh_stale_websites(db, "history")
        finally:
            db.close()
    except Exception as e:
        log.error(f"AI history refresh error: {str(e)}")


JOB_FUNCTIONS = {
    'refresh_ai_content': refresh_ai_content,
    'refresh_ai_history': refresh_ai_history,
}


# Schedule Configuration

def setup_scheduler():
    """
    Register the refresh jobs. Cron expressions are UTC and come from
    settings (refresh_overview_schedule / refresh_history_schedule).
    """
    scheduler.add_job(
        refresh_ai_content,
        trigger=CronTrigger.from_crontab(settings.refresh_overview_schedule, timezone="UTC"),
        id='refresh_ai_content',
        name='AI Overview Refresh',
        replace_existing=True,
        max_instances=1
    )

    scheduler.add_job(
        refresh_ai_history,
        trigger=CronTrigger.from_crontab(settings.refresh_history_schedule, timezone="UTC"),
        id='refresh_ai_history',
        name='AI History Refresh',
        replace_existing=True,
        max_instances=1
    )

    log.info(f"Scheduled {len(scheduler.get_jobs())} refresh jobs")


def start_scheduler():
    """Start the scheduler (must be called with an event loop running)"""
    if not settings.enable_scheduler:
        log.info("Scheduler disabled by configuration")
        return
    setup_scheduler()
    scheduler.start()
    log.info("Scheduler started")


def stop_scheduler():
    """Stop the scheduler"""
    if scheduler.running:
        scheduler.shutdown()
        log.info("Scheduler stopped")


def run_job_now(job_name: str) -> dict:
    """Run one refresh job immediately, outside the schedule."""
    if job_name not in JOB_FUNCTIONS:
        return {
            'success': False,
            'error': f'Unknown job: {job_name}. Valid options: {", ".join(JOB_FUNCTIONS.keys())}'
        }

    try:
        log.info(f"Manually triggering {job_name}...")
        asyncio.run(JOB_FUNCTIONS[job_name]())
        return {
            'success': True,
            'message': f'{job_name} completed'
        }
    except Exception as e:
        log.error(f"Error triggering {job_name}: {str(e)}")
        return {
            'success': False,
            'error': str(e)
        }


async def _serve():
    start_scheduler()
    try:
        await asyncio.Event().wait()
    finally:
        stop_scheduler()


if __name__ == "__main__":
    import sys

    if len(sys.argv) < 2:
        print("Usage: python -m app.scheduler <command> [job_name]")
        print("\nCommands:")
        print("  start          Start the scheduler")
        print("  run <job>      Manually run a job")
        print("\nJobs:")
        print("  " + ", ".join(JOB_FUNCTIONS.keys()))
        sys.exit(1)

    command = sys.argv[1]

    if command == "start":
        print("Starting scheduler...")
        try:
            asyncio.run(_serve())
        except (KeyboardInterrupt, SystemExit):
            print("\nShutting down scheduler...")

    elif command == "run":
        if len(sys.argv) < 3:
            print("Error: Please specify a job name")
            sys.exit(1)

        result = run_job_now(sys.argv[2])

        if result['success']:
            print(f"✓ {result['message']}")
        else:
            print(f"✗ Error: {result['error']}")
            sys.exit(1)

    else:
        print(f"Unknown command: {command}")
        sys.exit(1)
