"""Unit tests for NPS aggregates and time windows."""
import pytest
from datetime import date, datetime, timedelta, timezone

from src.analysis.aggregates import (
    compute_aggregate_stats,
    compute_nps_stats,
    day_window,
    filter_window,
    month_window,
)
from src.models.schemas import FeedbackRecord


def make_record(record_id, score, created_at=None, text=None):
    return FeedbackRecord(
        id=record_id,
        created_at=created_at or datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc),
        nps_score=score,
        root_text=text,
    )


@pytest.fixture
def five_scores():
    """Scores 9, 9, 10, 5, 7: three promoters, one detractor, one passive."""
    return [make_record(f"fb{i}", s) for i, s in enumerate([9, 9, 10, 5, 7])]


class TestComputeAggregateStats:
    """Test deterministic NPS figures."""

    def test_promoter_detractor_split(self, five_scores):
        stats = compute_aggregate_stats(five_scores)

        assert stats.nps_average == 8.0
        assert stats.promoter_pct == 60.0
        assert stats.detractor_pct == 20.0
        assert stats.passive_pct == 20.0
        assert stats.nps_score == 40.0
        assert stats.response_count == 5
        assert stats.scored_count == 5

    def test_empty_input(self):
        stats = compute_aggregate_stats([])

        assert stats.nps_average == 0.0
        assert stats.promoter_pct == 0.0
        assert stats.nps_trend == []
        assert stats.response_count == 0

    def test_unscored_records_count_as_responses_only(self):
        records = [make_record("a", 10), make_record("b", None, text="no score"), make_record("c", 6)]

        stats = compute_aggregate_stats(records)

        assert stats.response_count == 3
        assert stats.scored_count == 2
        assert stats.nps_average == 8.0
        assert stats.promoter_pct == 50.0
        assert stats.detractor_pct == 50.0

    def test_only_unscored_records(self):
        stats = compute_aggregate_stats([make_record("a", None, text="hi")])

        assert stats.response_count == 1
        assert stats.nps_average == 0.0

    def test_boundaries_seven_and_eight_are_passive(self):
        stats = compute_aggregate_stats([make_record("a", 7), make_record("b", 8)])

        assert stats.passive_pct == 100.0
        assert stats.promoter_pct == 0.0
        assert stats.detractor_pct == 0.0

    def test_trend_one_point_per_day_ascending(self):
        base = datetime(2024, 3, 1, 8, 0, tzinfo=timezone.utc)
        records = [
            make_record("a", 10, base + timedelta(days=1)),
            make_record("b", 6, base),
            make_record("c", 8, base + timedelta(hours=3)),
        ]

        stats = compute_aggregate_stats(records)

        assert [p.day for p in stats.nps_trend] == [date(2024, 3, 1), date(2024, 3, 2)]
        assert [p.average for p in stats.nps_trend] == [7.0, 10.0]

    def test_percentages_sum_to_hundred(self):
        records = [make_record(str(i), s) for i, s in enumerate([0, 3, 7, 8, 9, 10, 10])]

        stats = compute_aggregate_stats(records)

        assert stats.promoter_pct + stats.detractor_pct + stats.passive_pct == pytest.approx(100.0)


class TestComputeNpsStats:
    """Test the rounded campaign NPS breakdown."""

    def test_rounded_breakdown(self):
        records = [make_record(str(i), s) for i, s in enumerate([10, 9, 3])]

        nps = compute_nps_stats(records)

        assert nps.average == 7.3
        assert nps.promoter_percentage == 66.7
        assert nps.detractor_percentage == 33.3
        assert nps.passive_percentage == 0.0
        assert (nps.promoters, nps.detractors, nps.passives, nps.total) == (2, 1, 0, 3)

    def test_no_scores(self):
        nps = compute_nps_stats([make_record("a", None, text="hi")])

        assert nps.average is None
        assert nps.total == 0


class TestWindows:
    """Test half-open day and month windows."""

    def test_day_window(self):
        window = day_window(date(2024, 3, 1))

        assert window.start == datetime(2024, 3, 1, tzinfo=timezone.utc)
        assert window.end == datetime(2024, 3, 2, tzinfo=timezone.utc)

    def test_filter_window_is_half_open(self):
        window = day_window(date(2024, 3, 1))
        records = [
            make_record("start", 9, datetime(2024, 3, 1, 0, 0, tzinfo=timezone.utc)),
            make_record("late", 9, datetime(2024, 3, 1, 23, 59, 59, tzinfo=timezone.utc)),
            make_record("next", 9, datetime(2024, 3, 2, 0, 0, tzinfo=timezone.utc)),
            make_record("before", 9, datetime(2024, 2, 29, 23, 59, 59, tzinfo=timezone.utc)),
        ]

        assert [r.id for r in filter_window(records, window)] == ["start", "late"]

    def test_month_window(self):
        window = month_window("2024-02")

        assert window.start == datetime(2024, 2, 1, tzinfo=timezone.utc)
        assert window.end == datetime(2024, 3, 1, tzinfo=timezone.utc)

    def test_december_rolls_over(self):
        window = month_window("2023-12")

        assert window.end == datetime(2024, 1, 1, tzinfo=timezone.utc)

    def test_invalid_month_key(self):
        with pytest.raises(ValueError):
            month_window("2024/02")
