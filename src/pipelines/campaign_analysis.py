# src/pipelines/campaign_analysis.py
"""
On-demand analysis of one campaign's feedback: topics, clusters, themes and a
narrative summary. Each run makes at most one call to the language model and
overwrites the matching result column on the campaign.
"""

from typing import Any, List, Optional
import logging
import argparse

import numpy as np

from src.config.settings import Settings
from src.config.logging_config import configure_logging
from src.data_access.postgres_client import PostgresClient
from src.agents.extractor import ThemeExtractor
from src.analysis.aggregates import compute_nps_stats
from src.analysis.normalizer import normalize, normalize_all
from src.analysis.sampler import sample
from src.errors import FeedbackInsightsError, PersistenceError
from src.models.schemas import (
    AnalysisContext,
    AnalysisRun,
    Campaign,
    ClusterResult,
    FeedbackRecord,
    NormalizedFeedbackItem,
    ThemeAnalysisResult,
    TopicAnalysisReport,
)

logger = logging.getLogger(__name__)

NO_CAMPAIGN_FEEDBACK = "No feedback available for this campaign."
NO_CAMPAIGN_TEXT = "No text feedback available for analysis."

FLOWS = ("topics", "clusters", "themes", "summary")


class CampaignAnalysisPipeline:
    """
    Runs the campaign-level analysis flows against the feedback store.

    Collaborators are built from config unless injected.
    """

    def __init__(self, config: Settings, store: Optional[PostgresClient] = None,
                 extractor: Optional[ThemeExtractor] = None,
                 rng: Optional[np.random.Generator] = None):
        self.config = config
        self.store = store or PostgresClient(config)
        self.extractor = extractor or ThemeExtractor(config)
        self.rng = rng
        self.sample_cap = config.sample_cap
        self.max_feedback = config.max_feedback_to_process

    def _load(self, campaign_id: str, company_id: str,
              feedback_ids: Optional[List[str]] = None, all_rows: bool = False):
        campaign = self.store.get_campaign(campaign_id, company_id)
        context = AnalysisContext(
            campaign_name=campaign.name,
            company_name=self.store.get_company_name(company_id),
            language=campaign.language,
        )
        records = self.store.get_feedback(
            company_id,
            campaign_id=campaign_id,
            feedback_ids=feedback_ids,
            limit=None if all_rows else self.max_feedback,
        )
        return campaign, context, records

    def _corpus(self, campaign: Campaign, records: List[FeedbackRecord]) -> List[NormalizedFeedbackItem]:
        corpus = normalize_all(records, question_labels=campaign.question_labels())
        logger.info(f"Normalized {len(corpus)} of {len(records)} feedback records")
        return sample(corpus, self.sample_cap, rng=self.rng)

    def _persist(self, run: AnalysisRun, campaign_id: str, field: str, payload: Any) -> AnalysisRun:
        try:
            self.store.save_campaign_result(campaign_id, field, payload)
            run.persisted = True
        except PersistenceError as e:
            logger.error(f"{field} for campaign {campaign_id} computed but not saved: {e}")
            run.persistence_error = str(e)
        return run

    def analyze_topics(self, campaign_id: str, company_id: str,
                       feedback_ids: Optional[List[str]] = None) -> AnalysisRun[TopicAnalysisReport]:
        """
        Extract topics, key phrases and feature sentiment for a campaign.

        Args:
            campaign_id: Campaign to analyze
            company_id: Owning company
            feedback_ids: Restrict the analysis to these submissions

        Returns:
            AnalysisRun wrapping the TopicAnalysisReport (NPS figures are computed
            over every fetched record, not only the sampled ones)

        Raises:
            InsufficientDataError: Too few usable records; nothing is written
            UpstreamServiceError: The service call failed; nothing is written
        """
        logger.info(f"Starting topic analysis for campaign {campaign_id}")
        campaign, context, records = self._load(campaign_id, company_id, feedback_ids)
        corpus = self._corpus(campaign, records)

        topics = self.extractor.extract_topics(corpus, context)

        report = TopicAnalysisReport(
            topics=topics,
            feedback_count=len(records),
            analyzed_count=len(corpus),
            nps=compute_nps_stats(records),
        )
        run = AnalysisRun[TopicAnalysisReport](result=report)
        return self._persist(run, campaign_id, "topic_analysis", report.model_dump(mode="json", by_alias=True))

    def cluster_feedback(self, campaign_id: str, company_id: str,
                         feedback_ids: Optional[List[str]] = None) -> AnalysisRun[ClusterResult]:
        """Group a campaign's feedback under extracted themes."""
        logger.info(f"Starting cluster analysis for campaign {campaign_id}")
        campaign, context, records = self._load(campaign_id, company_id, feedback_ids)
        corpus = self._corpus(campaign, records)

        result = self.extractor.create_cluster_map(corpus, context)

        run = AnalysisRun[ClusterResult](result=result)
        return self._persist(run, campaign_id, "cluster_analysis", result.model_dump(mode="json", by_alias=True))

    def analyze_themes(self, campaign_id: str, company_id: str) -> AnalysisRun[ThemeAnalysisResult]:
        """Dynamic category/theme breakdown with actionable insights."""
        logger.info(f"Starting theme analysis for campaign {campaign_id}")
        campaign, context, records = self._load(campaign_id, company_id, all_rows=True)
        corpus = self._corpus(campaign, records)

        result = self.extractor.analyze_themes(corpus, context)

        run = AnalysisRun[ThemeAnalysisResult](result=result)
        return self._persist(run, campaign_id, "theme_analysis", result.model_dump(mode="json", by_alias=True))

    def summarize_campaign(self, campaign_id: str, company_id: str) -> AnalysisRun[str]:
        """
        Freeform summary paragraph for a campaign.

        Campaigns without feedback, or without any written/spoken content, get a
        fixed message and no service call.
        """
        logger.info(f"Starting narrative summary for campaign {campaign_id}")
        campaign, context, records = self._load(campaign_id, company_id)

        if not records:
            summary = NO_CAMPAIGN_FEEDBACK
        else:
            labels = campaign.question_labels()
            lines = []
            for record in records:
                item = normalize(record, question_labels=labels, include_score=False)
                if item is None:
                    continue
                if record.nps_score is None:
                    lines.append(f"Feedback: {item.text}")
                else:
                    lines.append(f"Feedback (NPS Score {record.nps_score}): {item.text}")

            if not lines:
                summary = NO_CAMPAIGN_TEXT
            else:
                lines = sample(lines, self.sample_cap, rng=self.rng)
                summary = self.extractor.summarize_campaign(lines, context)

        run = AnalysisRun[str](result=summary)
        return self._persist(run, campaign_id, "summary", summary)

    def get_saved_analysis(self, campaign_id: str, company_id: str) -> Optional[TopicAnalysisReport]:
        """Previously stored topic analysis, or None when the campaign has not been analyzed."""
        stored = self.store.get_campaign_result(campaign_id, company_id, "topic_analysis")
        if not stored:
            return None
        return TopicAnalysisReport.model_validate(stored)

    def save_analysis(self, campaign_id: str, company_id: str,
                      report: TopicAnalysisReport) -> AnalysisRun[TopicAnalysisReport]:
        """Store an already computed topic analysis for a campaign."""
        # Confirms the campaign belongs to the company before overwriting.
        self.store.get_campaign(campaign_id, company_id)
        run = AnalysisRun[TopicAnalysisReport](result=report)
        return self._persist(run, campaign_id, "topic_analysis", report.model_dump(mode="json", by_alias=True))

    def run(self, campaign_id: str, company_id: str, flow: str = "topics") -> AnalysisRun:
        if flow not in FLOWS:
            raise ValueError(f"Unsupported flow '{flow}'. Supported: {list(FLOWS)}")
        if flow == "topics":
            return self.analyze_topics(campaign_id, company_id)
        if flow == "clusters":
            return self.cluster_feedback(campaign_id, company_id)
        if flow == "themes":
            return self.analyze_themes(campaign_id, company_id)
        return self.summarize_campaign(campaign_id, company_id)

    def close(self) -> None:
        self.store.close()


def main():
    """Main entry point for running a campaign analysis from the command line."""
    parser = argparse.ArgumentParser(description="Analyze one campaign's feedback.")
    parser.add_argument("--campaign-id", type=str, required=True, help="Campaign to analyze.")
    parser.add_argument("--company-id", type=str, required=True, help="Company owning the campaign.")
    parser.add_argument("--flow", type=str, default="topics", choices=FLOWS, help="Analysis to run.")

    args = parser.parse_args()

    config = Settings()
    configure_logging(config.log_level)

    pipeline = CampaignAnalysisPipeline(config)
    try:
        run = pipeline.run(args.campaign_id, args.company_id, flow=args.flow)
    except FeedbackInsightsError as e:
        logger.error(f"Campaign analysis failed: {e}")
        raise SystemExit(1)
    finally:
        pipeline.close()

    print("\n" + "=" * 60)
    print(f"CAMPAIGN ANALYSIS RESULTS ({args.flow})")
    print("=" * 60)
    if isinstance(run.result, str):
        print(run.result)
    else:
        print(run.result.model_dump_json(indent=2, by_alias=True))
    if run.persistence_error:
        print(f"Result computed but not saved: {run.persistence_error}")
    print("=" * 60)


if __name__ == "__main__":
    main()
