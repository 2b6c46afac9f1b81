# src/pipelines/summary.py
"""
Daily and monthly feedback summaries.

NPS figures are computed in-process over a half-open window; the language
model only contributes themes and the narrative. Every persisted summary
record describes exactly one window: a calendar day (UTC) for daily records,
a calendar month for monthly ones.
"""

from typing import List, Optional, Union
from datetime import date, datetime, timedelta, timezone
import calendar
import logging
import argparse

import numpy as np

from src.config.settings import Settings
from src.config.logging_config import configure_logging
from src.data_access.postgres_client import PostgresClient
from src.agents.extractor import ThemeExtractor
from src.analysis.aggregates import compute_aggregate_stats, day_window, filter_window, month_window
from src.analysis.normalizer import free_text
from src.analysis.sampler import sample
from src.errors import PersistenceError, UpstreamServiceError
from src.models.schemas import (
    AggregateStats,
    AnalysisContext,
    AnalysisRun,
    DailySummary,
    FeedbackRecord,
    MonthlySummary,
    NarrativeAnalysis,
    TimeWindow,
)

logger = logging.getLogger(__name__)

NO_FEEDBACK_DAILY = "No feedback received for this period."
NO_FEEDBACK_MONTHLY = "No feedback received this month."
NARRATIVE_UNAVAILABLE = "Narrative analysis unavailable: analysis service unavailable."
MAX_RANGE_DAYS = 30


def no_text_summary(stats: AggregateStats) -> str:
    return f"NPS Average: {stats.nps_average:.1f}. No text feedback received for analysis."


def feedback_line(record: FeedbackRecord) -> str:
    text = free_text(record)
    if record.nps_score is None:
        return f"Feedback: {text}"
    return f"Feedback (NPS Score {record.nps_score}): {text}"


class SummaryPipeline:
    """Builds and stores daily/monthly summaries for a company."""

    def __init__(self, config: Settings, store: Optional[PostgresClient] = None,
                 extractor: Optional[ThemeExtractor] = None,
                 rng: Optional[np.random.Generator] = None):
        self.config = config
        self.store = store or PostgresClient(config)
        self.extractor = extractor or ThemeExtractor(config)
        self.rng = rng
        self.corpus_cap = config.max_feedback_to_process

    def summarize(
        self,
        records: List[FeedbackRecord],
        window: TimeWindow,
        kind: str = "daily",
        context: Optional[AnalysisContext] = None,
    ) -> Union[DailySummary, MonthlySummary]:
        """
        Summarize the records that fall inside `window`.

        Args:
            records: Candidate records; anything outside [start, end) is ignored
            window: Half-open time window
            kind: "daily" or "monthly"
            context: Optional campaign/company framing for the narrative request

        Returns:
            DailySummary or MonthlySummary. Numeric fields always come from
            compute_aggregate_stats; only themes and narrative come from the service.
        """
        if kind not in ("daily", "monthly"):
            raise ValueError(f"Unsupported summary kind '{kind}'. Supported: ['daily', 'monthly']")

        in_window = sorted(filter_window(records, window), key=lambda r: r.created_at)
        stats = compute_aggregate_stats(in_window)

        if not in_window:
            logger.info(f"No feedback in window {window.start.isoformat()} - {window.end.isoformat()}")
            sentinel = NO_FEEDBACK_MONTHLY if kind == "monthly" else NO_FEEDBACK_DAILY
            return self._build(kind, window, stats, NarrativeAnalysis(summary=sentinel))

        lines = [feedback_line(r) for r in in_window if free_text(r)]

        if not lines:
            logger.info(f"{len(in_window)} records in window, none with text; skipping narrative request")
            return self._build(kind, window, stats, NarrativeAnalysis(summary=no_text_summary(stats)))

        lines = sample(lines, self.corpus_cap, rng=self.rng)

        try:
            narrative = self.extractor.summarize_narrative(lines, period=kind, context=context)
        except UpstreamServiceError as e:
            logger.warning(
                f"Narrative request failed for {kind} summary, keeping NPS figures only: {e}",
                extra={"flow": f"{kind}_summary", "reason": str(e)},
            )
            narrative = NarrativeAnalysis(summary=NARRATIVE_UNAVAILABLE)

        return self._build(kind, window, stats, narrative)

    @staticmethod
    def _build(kind: str, window: TimeWindow, stats: AggregateStats,
               narrative: NarrativeAnalysis) -> Union[DailySummary, MonthlySummary]:
        fields = dict(
            nps_average=stats.nps_average,
            nps_score=stats.nps_score,
            promoter_pct=stats.promoter_pct,
            detractor_pct=stats.detractor_pct,
            nps_trend=stats.nps_trend,
            total_responses=stats.response_count,
            positive_themes=narrative.positive_themes,
            negative_themes=narrative.negative_themes,
            summary=narrative.summary,
        )
        if kind == "monthly":
            return MonthlySummary(year_month=window.start.strftime("%Y-%m"), **fields)
        return DailySummary(day=window.start.date(), **fields)

    def run_daily(self, company_id: str, day: Optional[date] = None) -> AnalysisRun[DailySummary]:
        """Summarize one UTC calendar day and overwrite that day's record."""
        day = day or datetime.now(timezone.utc).date()
        window = day_window(day)

        logger.info(f"Starting daily summary for company {company_id}, date {day.isoformat()}")
        records = self.store.get_feedback(company_id, start=window.start, end=window.end)
        summary = self.summarize(records, window, kind="daily")

        run = AnalysisRun[DailySummary](result=summary)
        try:
            self.store.upsert_daily_summary(company_id, summary)
            run.persisted = True
        except PersistenceError as e:
            logger.error(f"Daily summary for {company_id} on {day.isoformat()} computed but not saved: {e}")
            run.persistence_error = str(e)
        return run

    def run_monthly(self, company_id: str, year_month: Optional[str] = None) -> AnalysisRun[MonthlySummary]:
        """Summarize one calendar month ("YYYY-MM") and overwrite that month's record."""
        year_month = year_month or datetime.now(timezone.utc).strftime("%Y-%m")
        window = month_window(year_month)

        logger.info(f"Starting monthly summary for company {company_id}, month {year_month}")
        records = self.store.get_feedback(company_id, start=window.start, end=window.end)
        summary = self.summarize(records, window, kind="monthly")

        run = AnalysisRun[MonthlySummary](result=summary)
        try:
            self.store.upsert_monthly_summary(company_id, summary)
            run.persisted = True
        except PersistenceError as e:
            logger.error(f"Monthly summary for {company_id} ({year_month}) computed but not saved: {e}")
            run.persistence_error = str(e)
        return run

    def run_range(self, company_id: str, days: int = 1, today: Optional[date] = None) -> dict:
        """
        Summarize today and the preceding days, plus the month when today is its last day.

        Args:
            company_id: Company to analyze
            days: Number of days including today (capped at 30)
            today: Reference date, UTC today by default

        Returns:
            Dictionary with per-day results and the optional monthly summary
        """
        today = today or datetime.now(timezone.utc).date()
        days = max(1, min(days, MAX_RANGE_DAYS))

        results = []
        for offset in range(days):
            day = today - timedelta(days=offset)
            run = self.run_daily(company_id, day)
            results.append({
                "date": day.isoformat(),
                "nps_average": run.result.nps_average,
                "persisted": run.persisted,
            })

        monthly = None
        if today.day == calendar.monthrange(today.year, today.month)[1]:
            logger.info("Last day of the month, running monthly summary")
            monthly = self.run_monthly(company_id, today.strftime("%Y-%m"))

        return {
            "days_analyzed": days,
            "results": results,
            "monthly": monthly,
        }

    def refresh_nps(self, company_ids: Optional[List[str]] = None, day: Optional[date] = None) -> List[dict]:
        """
        Scheduled refresh of the numeric fields of each company's daily record.

        Uses the same single-day window as run_daily so the NPS figures and the
        themes on one record always describe the same feedback. Failures are
        collected per company.
        """
        day = day or datetime.now(timezone.utc).date()
        window = day_window(day)
        company_ids = company_ids if company_ids is not None else self.store.get_active_company_ids()

        results = []
        for company_id in company_ids:
            try:
                records = filter_window(
                    self.store.get_feedback(company_id, start=window.start, end=window.end),
                    window,
                )
                stats = compute_aggregate_stats(records)
                self.store.update_daily_nps(company_id, day, stats)
                results.append({"company_id": company_id, "success": True, "nps_average": stats.nps_average})
            except PersistenceError as e:
                logger.error(f"Error refreshing NPS for company {company_id}: {e}")
                results.append({"company_id": company_id, "success": False, "error": str(e)})

        return results

    def close(self) -> None:
        self.store.close()


def main():
    """Main entry point for running summaries from the command line."""
    parser = argparse.ArgumentParser(description="Generate daily and monthly feedback summaries.")
    parser.add_argument("--company-id", type=str, help="Company to summarize.")
    parser.add_argument("--date", type=str, help="Reference date (YYYY-MM-DD), UTC today by default.")
    parser.add_argument("--days", type=int, default=1, help="Number of days to summarize, including the reference date (max 30).")
    parser.add_argument("--monthly", type=str, nargs="?", const="", default=None, help="Summarize a month (YYYY-MM), current month if no value.")
    parser.add_argument("--refresh-nps", action="store_true", help="Refresh NPS figures for all active companies.")

    args = parser.parse_args()

    if not args.refresh_nps and not args.company_id:
        parser.error("--company-id is required unless --refresh-nps is given")

    reference = None
    if args.date:
        try:
            reference = datetime.strptime(args.date, "%Y-%m-%d").date()
        except ValueError:
            parser.error(f"Invalid date format: {args.date}. Use YYYY-MM-DD")

    config = Settings()
    configure_logging(config.log_level)

    pipeline = SummaryPipeline(config)
    try:
        if args.refresh_nps:
            company_ids = [args.company_id] if args.company_id else None
            results = pipeline.refresh_nps(company_ids, day=reference)
            print("\n" + "=" * 60)
            print("NPS REFRESH RESULTS")
            print("=" * 60)
            for result in results:
                status = f"{result['nps_average']:.1f}" if result["success"] else f"FAILED ({result['error']})"
                print(f"{result['company_id']}: {status}")
            print("=" * 60)
            return

        if args.monthly is not None:
            run = pipeline.run_monthly(args.company_id, args.monthly or None)
            print(run.result.model_dump_json(indent=2, by_alias=True))
            if run.persistence_error:
                print(f"Result computed but not saved: {run.persistence_error}")
            return

        stats = pipeline.run_range(args.company_id, days=args.days, today=reference)
        print("\n" + "=" * 60)
        print("SUMMARY PIPELINE RESULTS")
        print("=" * 60)
        print(f"Days analyzed: {stats['days_analyzed']}")
        for result in stats["results"]:
            saved = "saved" if result["persisted"] else "NOT saved"
            print(f"{result['date']}: NPS average {result['nps_average']:.1f} ({saved})")
        if stats["monthly"] is not None:
            print(f"Monthly summary: {stats['monthly'].result.year_month}")
        print("=" * 60)
    finally:
        pipeline.close()


if __name__ == "__main__":
    main()
