"""Run the weekly market radar report once.

Usage:
  uv run -- python scripts/run_weekly_report.py --date 2025-01-13 --dry-run
  uv run -- python scripts/run_weekly_report.py --provider news_search

Reads configuration from .env via pydantic settings. Requires OPENAI_API_KEY
(and SEARCHAPI_API_KEY for the news_search provider). Writes out/report.json;
without --dry-run also writes the outbox file and updates the seen-history.
"""

from __future__ import annotations

import argparse
import sys
from typing import List

from analysis.services.schema_repair import ReportRepairError
from ingestion.connectors.base import ConnectorError
from ingestion.settings import get_settings
from ingestion.utils.logging import configure_logging
from llm.client.openai_client import LLMError
from publish.runner import resolve_report_date, run_weekly_report


def main(argv: List[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Weekly market radar report")
    parser.add_argument("--date", default=None, help="Report date YYYY-MM-DD (default: today in the configured timezone)")
    parser.add_argument("--config", default=None, help="Research config JSON path (default: RESEARCH_CONFIG_PATH)")
    parser.add_argument("--dry-run", action="store_true", help="Write report.json only; no send, no history update")
    parser.add_argument(
        "--provider",
        choices=["grounded_search", "news_search"],
        default=None,
        help="Evidence provider override (default: EVIDENCE_PROVIDER)",
    )
    args = parser.parse_args(argv)

    try:
        settings = get_settings()
        configure_logging(settings.structlog_level, json_enabled=settings.log_json)
        result = run_weekly_report(
            resolve_report_date(settings, args.date) if args.date else None,
            settings=settings,
            config_path=args.config,
            provider_name=args.provider,
            dry_run=args.dry_run,
        )
    except (RuntimeError, ConnectorError, LLMError, ReportRepairError, OSError) as exc:
        print(f"FATAL: {exc}", file=sys.stderr)
        return 1

    status = "dry-run" if not result.sent else "sent"
    print(f"Report ({status}): {result.report_path}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
