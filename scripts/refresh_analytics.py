#!/usr/bin/env python3
"""
Refresh cached AI reports and print conversation stats

Usage:
    python scripts/refresh_analytics.py                       # refresh all stale websites
    python scripts/refresh_analytics.py --job overview        # overviews only
    python scripts/refresh_analytics.py --website-id <id>     # one website, regardless of cache age
    python scripts/refresh_analytics.py --website-id <id> --stats [--days 30]
"""
import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import argparse
import json

from app.models.base import SessionLocal, init_db
from app.scheduler import refresh_stale_websites
from app.services.conversation_analytics_service import (
    ConversationAnalyticsService,
    WebsiteNotFoundError,
)
from app.utils.logger import log


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Refresh Voicero conversation analytics")
    parser.add_argument("--website-id", help="Only process this website")
    parser.add_argument(
        "--job",
        choices=["overview", "history", "all"],
        default="all",
        help="Which cached report to refresh",
    )
    parser.add_argument("--stats", action="store_true", help="Print website stats as JSON and exit")
    parser.add_argument("--days", type=int, default=None, help="Stats window in days (default: all time)")
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)
    init_db()
    db = SessionLocal()
    jobs = ["overview", "history"] if args.job == "all" else [args.job]

    try:
        if args.website_id:
            service = ConversationAnalyticsService(db)
            if args.stats:
                print(json.dumps(service.get_website_stats(args.website_id, args.days), indent=2, default=str))
                return 0
            for job in jobs:
                if job == "overview":
                    service.refresh_overview(args.website_id)
                else:
                    service.refresh_history(args.website_id)
            print(f"Refreshed {', '.join(jobs)} for website {args.website_id}")
            return 0

        if args.stats:
            print("Error: --stats requires --website-id")
            return 1

        for job in jobs:
            summary = refresh_stale_websites(db, job)
            print(f"{job}: {len(summary['refreshed'])} refreshed, {len(summary['failed'])} failed")
        return 0

    except WebsiteNotFoundError as e:
        print(f"Error: {e}")
        return 1
    except Exception as e:
        log.error(f"Analytics refresh failed: {str(e)}")
        return 1
    finally:
        db.close()


if __name__ == "__main__":
    sys.exit(main())
