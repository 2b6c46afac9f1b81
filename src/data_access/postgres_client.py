# src/data_access/postgres_client.py
"""
PostgreSQL client for feedback submissions, campaigns and analysis results.

Every analysis result is written as a whole and overwrites the previous one
for the same key (campaign field, company+date, company+month).
"""

import json
import logging
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional

import psycopg2
from psycopg2.extras import Json, RealDictCursor

from src.config.settings import Settings
from src.errors import PersistenceError, RecordNotFoundError
from src.models.schemas import (
    AggregateStats,
    Campaign,
    DailySummary,
    FeedbackRecord,
    MonthlySummary,
    QuestionResponse,
)

logger = logging.getLogger(__name__)

CAMPAIGN_RESULT_FIELDS = ("topic_analysis", "cluster_analysis", "theme_analysis", "summary")

NPS_ONLY_SUMMARY = "NPS data only. Run analysis for theme details."


def _json_value(value: Any) -> Any:
    """jsonb columns arrive decoded; text columns holding JSON do not."""
    if isinstance(value, str):
        try:
            return json.loads(value)
        except json.JSONDecodeError:
            return value
    return value


def _response_value(value: Any) -> Any:
    """Structured answers are stored as JSON text; free text is kept as-is."""
    if isinstance(value, str) and not value.strip().startswith(("[", "{")):
        return value
    decoded = _json_value(value)
    if isinstance(decoded, dict):
        return value if isinstance(value, str) else json.dumps(value)
    if isinstance(decoded, list):
        return [str(v) for v in decoded]
    return decoded


class PostgresClient:
    """PostgreSQL client for the feedback store."""

    def __init__(self, config: Settings):
        self.config = config
        self.conn = None

    def connect(self) -> None:
        """Establish database connection."""
        try:
            self.conn = psycopg2.connect(
                host=self.config.postgres_host,
                port=self.config.postgres_port,
                database=self.config.postgres_database,
                user=self.config.postgres_username,
                password=self.config.postgres_password,
                sslmode=self.config.postgres_sslmode
            )
        except psycopg2.Error as e:
            raise PersistenceError(f"could not connect to feedback store: {e}") from e

    def close(self) -> None:
        """Close database connection."""
        if self.conn:
            self.conn.close()
            self.conn = None

    def _ensure_connection(self) -> None:
        # psycopg2 sets `closed` non-zero once the server drops the link
        if self.conn is not None and self.conn.closed:
            logger.warning("Feedback store connection was closed, reconnecting")
            self.conn = None
        if self.conn is None:
            self.connect()

    def _rollback(self) -> None:
        if self.conn.closed:
            self.conn = None
            return
        try:
            self.conn.rollback()
        except psycopg2.Error as e:
            logger.warning(f"Rollback failed, discarding connection: {e}")
            self.conn = None

    def _fetch(self, query: str, params: Any = None) -> List[Dict[str, Any]]:
        self._ensure_connection()
        try:
            with self.conn.cursor(cursor_factory=RealDictCursor) as cursor:
                cursor.execute(query, params)
                return [dict(row) for row in cursor.fetchall()]
        except psycopg2.Error as e:
            self._rollback()
            raise PersistenceError(f"query failed: {e}") from e

    def _write(self, query: str, params: Any = None) -> None:
        self._ensure_connection()
        try:
            with self.conn.cursor() as cursor:
                cursor.execute(query, params)
            self.conn.commit()
        except psycopg2.Error as e:
            self._rollback()
            raise PersistenceError(str(e)) from e

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_campaign(self, campaign_id: str, company_id: str) -> Campaign:
        rows = self._fetch(
            """
            SELECT id, name, company_id, language, questions
            FROM feedback_campaigns
            WHERE id = %s AND company_id = %s
            """,
            (campaign_id, company_id),
        )
        if not rows:
            raise RecordNotFoundError("campaign", campaign_id)

        row = rows[0]
        questions = _json_value(row.get("questions")) or []
        return Campaign(
            id=str(row["id"]),
            name=row["name"],
            company_id=str(row["company_id"]),
            language=row.get("language"),
            questions=[
                {"id": str(q["id"]), "text": q.get("text", ""), "type": q.get("type")}
                for q in questions
                if isinstance(q, dict) and q.get("id") is not None
            ],
        )

    def get_company_name(self, company_id: str) -> str:
        rows = self._fetch("SELECT name FROM companies WHERE id = %s", (company_id,))
        if not rows:
            raise RecordNotFoundError("company", company_id)
        return rows[0]["name"]

    def get_active_company_ids(self) -> List[str]:
        rows = self._fetch("SELECT id FROM companies WHERE active = TRUE ORDER BY id")
        return [str(row["id"]) for row in rows]

    def get_feedback(
        self,
        company_id: str,
        campaign_id: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        feedback_ids: Optional[List[str]] = None,
        limit: Optional[int] = None,
    ) -> List[FeedbackRecord]:
        """
        Fetch feedback submissions with their question responses, newest first.

        Args:
            company_id: Owning company
            campaign_id: Restrict to one campaign
            start: Include rows created at or after this moment
            end: Include rows created strictly before this moment
            feedback_ids: Restrict to these submission ids
            limit: Keep only the most recent `limit` rows

        Returns:
            List of FeedbackRecord
        """
        query = """
            SELECT fs.id, fs.created_at, fs.nps_score, fs.transcription,
                   fs.campaign_id, fs.company_id,
                   COALESCE(
                       json_agg(
                           json_build_object(
                               'question_id', qr.question_id,
                               'response_value', qr.response_value,
                               'transcription', qr.transcription
                           ) ORDER BY qr.id
                       ) FILTER (WHERE qr.id IS NOT NULL),
                       '[]'
                   ) AS question_responses
            FROM feedback_submissions fs
            LEFT JOIN question_responses qr ON qr.feedback_submission_id = fs.id
            WHERE fs.company_id = %s
        """
        params: List[Any] = [company_id]

        if campaign_id:
            query += " AND fs.campaign_id = %s"
            params.append(campaign_id)

        if start:
            query += " AND fs.created_at >= %s"
            params.append(start)

        if end:
            query += " AND fs.created_at < %s"
            params.append(end)

        if feedback_ids:
            query += " AND fs.id = ANY(%s)"
            params.append(list(feedback_ids))

        query += " GROUP BY fs.id ORDER BY fs.created_at DESC"

        if limit:
            query += " LIMIT %s"
            params.append(limit)

        rows = self._fetch(query, params)
        logger.info(f"Fetched {len(rows)} feedback submissions for company {company_id}")

        return [self._to_record(row) for row in rows]

    @staticmethod
    def _to_record(row: Dict[str, Any]) -> FeedbackRecord:
        responses = []
        for response in _json_value(row.get("question_responses")) or []:
            if not isinstance(response, dict) or response.get("question_id") is None:
                continue
            responses.append(QuestionResponse(
                question_id=str(response["question_id"]),
                value=_response_value(response.get("response_value")),
                voice_transcription=response.get("transcription"),
            ))

        return FeedbackRecord(
            id=str(row["id"]),
            created_at=row["created_at"],
            nps_score=row.get("nps_score"),
            root_text=row.get("transcription"),
            question_responses=responses,
            campaign_id=str(row["campaign_id"]) if row.get("campaign_id") is not None else None,
            company_id=str(row["company_id"]) if row.get("company_id") is not None else None,
        )

    def get_campaign_result(self, campaign_id: str, company_id: str, field: str) -> Optional[Any]:
        if field not in CAMPAIGN_RESULT_FIELDS:
            raise ValueError(f"Unknown campaign result field '{field}'. Supported: {list(CAMPAIGN_RESULT_FIELDS)}")

        rows = self._fetch(
            f"SELECT {field} FROM feedback_campaigns WHERE id = %s AND company_id = %s",
            (campaign_id, company_id),
        )
        if not rows:
            raise RecordNotFoundError("campaign", campaign_id)
        return _json_value(rows[0][field])

    # ------------------------------------------------------------------
    # Writes (whole-result overwrite, last writer wins)
    # ------------------------------------------------------------------

    def save_campaign_result(self, campaign_id: str, field: str, payload: Any) -> None:
        """
        Overwrite one analysis column on a campaign.

        Args:
            campaign_id: Campaign to update
            field: One of CAMPAIGN_RESULT_FIELDS
            payload: JSON-serializable result (plain text for "summary")
        """
        if field not in CAMPAIGN_RESULT_FIELDS:
            raise ValueError(f"Unknown campaign result field '{field}'. Supported: {list(CAMPAIGN_RESULT_FIELDS)}")

        value = payload if field == "summary" else Json(payload)
        self._write(
            f"""
            UPDATE feedback_campaigns
            SET {field} = %s, last_analyzed = %s
            WHERE id = %s
            """,
            (value, datetime.now(timezone.utc), campaign_id),
        )
        logger.info(f"Saved {field} for campaign {campaign_id}")

    def upsert_daily_summary(self, company_id: str, summary: DailySummary) -> None:
        self._write(
            """
            INSERT INTO daily_summaries
                (company_id, date, nps_average, nps_score, promoter_pct, detractor_pct,
                 nps_trend, total_responses, positive_themes, negative_themes, summary)
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            ON CONFLICT (company_id, date) DO UPDATE
            SET nps_average = EXCLUDED.nps_average,
                nps_score = EXCLUDED.nps_score,
                promoter_pct = EXCLUDED.promoter_pct,
                detractor_pct = EXCLUDED.detractor_pct,
                nps_trend = EXCLUDED.nps_trend,
                total_responses = EXCLUDED.total_responses,
                positive_themes = EXCLUDED.positive_themes,
                negative_themes = EXCLUDED.negative_themes,
                summary = EXCLUDED.summary
            """,
            (
                company_id, summary.day, summary.nps_average, summary.nps_score,
                summary.promoter_pct, summary.detractor_pct,
                Json([p.model_dump(mode="json") for p in summary.nps_trend]),
                summary.total_responses,
                Json(summary.positive_themes), Json(summary.negative_themes),
                summary.summary,
            ),
        )

    def update_daily_nps(self, company_id: str, day: date, stats: AggregateStats) -> None:
        """Refresh only the numeric fields of a daily record, creating a placeholder if missing."""
        self._write(
            """
            INSERT INTO daily_summaries
                (company_id, date, nps_average, nps_score, promoter_pct, detractor_pct,
                 nps_trend, total_responses, positive_themes, negative_themes, summary)
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, '[]', '[]', %s)
            ON CONFLICT (company_id, date) DO UPDATE
            SET nps_average = EXCLUDED.nps_average,
                nps_score = EXCLUDED.nps_score,
                promoter_pct = EXCLUDED.promoter_pct,
                detractor_pct = EXCLUDED.detractor_pct,
                nps_trend = EXCLUDED.nps_trend,
                total_responses = EXCLUDED.total_responses
            """,
            (
                company_id, day, stats.nps_average, stats.nps_score,
                stats.promoter_pct, stats.detractor_pct,
                Json([p.model_dump(mode="json") for p in stats.nps_trend]),
                stats.response_count, NPS_ONLY_SUMMARY,
            ),
        )

    def upsert_monthly_summary(self, company_id: str, summary: MonthlySummary) -> None:
        self._write(
            """
            INSERT INTO monthly_summaries
                (company_id, year_month, nps_average, nps_score, promoter_pct, detractor_pct,
                 nps_trend, total_responses, positive_themes, negative_themes, summary)
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            ON CONFLICT (company_id, year_month) DO UPDATE
            SET nps_average = EXCLUDED.nps_average,
                nps_score = EXCLUDED.nps_score,
                promoter_pct = EXCLUDED.promoter_pct,
                detractor_pct = EXCLUDED.detractor_pct,
                nps_trend = EXCLUDED.nps_trend,
                total_responses = EXCLUDED.total_responses,
                positive_themes = EXCLUDED.positive_themes,
                negative_themes = EXCLUDED.negative_themes,
                summary = EXCLUDED.summary
            """,
            (
                company_id, summary.year_month, summary.nps_average, summary.nps_score,
                summary.promoter_pct, summary.detractor_pct,
                Json([p.model_dump(mode="json") for p in summary.nps_trend]),
                summary.total_responses,
                Json(summary.positive_themes), Json(summary.negative_themes),
                summary.summary,
            ),
        )
