# src/analysis/aggregates.py
"""
Deterministic NPS aggregates and the time windows they are computed over.

Nothing here talks to the language model; summary pipelines merge these
figures into their results after the narrative call.
"""

from typing import Iterable, List
from datetime import date, datetime, time, timedelta, timezone

import pandas as pd

from src.models.schemas import AggregateStats, FeedbackRecord, NpsStats, NpsTrendPoint, TimeWindow

PROMOTER_MIN = 9
DETRACTOR_MAX = 6


def day_window(day: date) -> TimeWindow:
    """[day 00:00 UTC, next day 00:00 UTC)"""
    start = datetime.combine(day, time.min, tzinfo=timezone.utc)
    return TimeWindow(start=start, end=start + timedelta(days=1))


def month_window(year_month: str) -> TimeWindow:
    """[first of month, first of next month) for a "YYYY-MM" key."""
    first = datetime.strptime(year_month, "%Y-%m").replace(tzinfo=timezone.utc)
    if first.month == 12:
        next_first = first.replace(year=first.year + 1, month=1)
    else:
        next_first = first.replace(month=first.month + 1)
    return TimeWindow(start=first, end=next_first)


def filter_window(records: Iterable[FeedbackRecord], window: TimeWindow) -> List[FeedbackRecord]:
    return [r for r in records if window.contains(r.created_at)]


def _scores_frame(records: List[FeedbackRecord]) -> pd.DataFrame:
    rows = [
        {"day": r.created_at.date(), "score": r.nps_score}
        for r in records
        if r.nps_score is not None
    ]
    return pd.DataFrame(rows, columns=["day", "score"])


def _pct(part: int, total: int) -> float:
    if total == 0:
        return 0.0
    return part * 100 / total


def compute_aggregate_stats(records: List[FeedbackRecord]) -> AggregateStats:
    """
    Compute NPS figures over the given records.

    Records without a score count towards `response_count` only; averages and
    percentages are taken over scored records. The trend has one point per
    calendar day (UTC) with at least one scored record, ascending by day.
    """
    df = _scores_frame(records)
    scored = len(df)

    if scored == 0:
        return AggregateStats(response_count=len(records))

    promoters = int((df["score"] >= PROMOTER_MIN).sum())
    detractors = int((df["score"] <= DETRACTOR_MAX).sum())
    passives = scored - promoters - detractors

    promoter_pct = _pct(promoters, scored)
    detractor_pct = _pct(detractors, scored)

    daily = df.groupby("day")["score"].mean().sort_index()
    trend = [NpsTrendPoint(day=day, average=float(avg)) for day, avg in daily.items()]

    return AggregateStats(
        nps_average=float(df["score"].sum()) / scored,
        promoter_pct=promoter_pct,
        detractor_pct=detractor_pct,
        passive_pct=_pct(passives, scored),
        nps_score=promoter_pct - detractor_pct,
        response_count=len(records),
        scored_count=scored,
        nps_trend=trend,
    )


def compute_nps_stats(records: List[FeedbackRecord]) -> NpsStats:
    """NPS breakdown for a campaign report, rounded to one decimal place."""
    stats = compute_aggregate_stats(records)
    if stats.scored_count == 0:
        return NpsStats()

    df = _scores_frame(records)
    promoters = int((df["score"] >= PROMOTER_MIN).sum())
    detractors = int((df["score"] <= DETRACTOR_MAX).sum())

    return NpsStats(
        average=round(stats.nps_average, 1),
        promoter_percentage=round(stats.promoter_pct, 1),
        detractor_percentage=round(stats.detractor_pct, 1),
        passive_percentage=round(stats.passive_pct, 1),
        promoters=promoters,
        detractors=detractors,
        passives=stats.scored_count - promoters - detractors,
        total=stats.scored_count,
    )
