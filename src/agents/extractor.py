# src/agents/extractor.py
"""
Theme/topic extraction against the text-understanding service.

One request per analysis run. Structured flows (topics, clusters, themes)
need a minimum corpus and let upstream failures propagate; malformed output
never does, it is replaced by the flow's degraded result and logged.
"""

from typing import List, Optional, Union
from enum import Enum
import json
import logging

from src.agents.llm_agent import ChatAgent
from src.agents import parsing
from src.config.settings import Settings
from src.errors import ExtractionParseError, InsufficientDataError
from src.models.schemas import (
    AnalysisContext,
    ClusterResult,
    NarrativeAnalysis,
    NormalizedFeedbackItem,
    ThemeAnalysisResult,
    TopicResult,
)

logger = logging.getLogger(__name__)

LANGUAGE_NAMES = {
    "en": "English",
    "de": "German",
    "fr": "French",
    "es": "Spanish",
    "it": "Italian",
    "nl": "Dutch",
}

NO_FABRICATION = (
    "Every count must be the number of feedback entries above that actually mention the item. "
    "Never estimate or invent counts, and only include items that appear in the feedback."
)


class AnalysisContract(str, Enum):
    """Structured output shapes the extractor can request."""
    TOPICS = "topics"
    CLUSTERS = "clusters"
    THEMES = "themes"


def language_name(code: Optional[str]) -> str:
    if not code:
        return "English"
    return LANGUAGE_NAMES.get(code.lower(), code)


def _framing(context: AnalysisContext) -> str:
    return (
        f"You are analyzing customer feedback for {context.company_name}'s campaign "
        f"\"{context.campaign_name}\". The feedback is primarily in {language_name(context.language)}."
    )


class ThemeExtractor:
    """Builds extraction requests, calls the service once, and validates the reply."""

    def __init__(self, config: Settings, agent: Optional[ChatAgent] = None,
                 summary_agent: Optional[ChatAgent] = None):
        self.config = config
        self.agent = agent or ChatAgent(config)
        self.summary_agent = summary_agent or ChatAgent(config, model=config.openai_summary_model)
        self.min_corpus = config.min_feedback_for_analysis

    # ------------------------------------------------------------------
    # Structured flows
    # ------------------------------------------------------------------

    def extract(
        self,
        corpus: List[NormalizedFeedbackItem],
        contract: AnalysisContract,
        context: AnalysisContext,
    ) -> Union[TopicResult, ClusterResult, ThemeAnalysisResult]:
        """
        Run one structured extraction.

        Args:
            corpus: Normalized feedback (already sampled)
            contract: Output shape to request
            context: Campaign/company/language framing

        Returns:
            The typed result for the contract, or its degraded default when the
            reply cannot be parsed

        Raises:
            InsufficientDataError: Fewer than the minimum items; no request is made
            UpstreamServiceError: The service call itself failed
        """
        contract = AnalysisContract(contract)
        if contract is AnalysisContract.TOPICS:
            return self.extract_topics(corpus, context)
        if contract is AnalysisContract.CLUSTERS:
            return self.create_cluster_map(corpus, context)
        return self.analyze_themes(corpus, context)

    def _require_corpus(self, corpus: List[NormalizedFeedbackItem], flow: str) -> None:
        if len(corpus) < self.min_corpus:
            logger.info(f"Skipping {flow} extraction: {len(corpus)} items, need {self.min_corpus}")
            raise InsufficientDataError(len(corpus), self.min_corpus)

    def extract_topics(self, corpus: List[NormalizedFeedbackItem], context: AnalysisContext) -> TopicResult:
        """Topics, key phrases and feature mentions with sentiment."""
        self._require_corpus(corpus, "topics")

        system = f"""{_framing(context)}

            Analyze this customer feedback to extract:
            1. Main topics discussed
            2. Key phrases used by customers
            3. Specific product or service features mentioned and their associated sentiment

            Return ONLY a valid JSON object with:
            - "topics": array of main topic names
            - "keyPhrases": array of representative customer phrases
            - "featureMentions": array of objects {{"feature": string, "sentiment": one of "positive", "negative", "neutral", "mixed", "count": integer, "examples": array of direct customer quotes}}

            {NO_FABRICATION}"""

        payload = "\n\n".join(item.text for item in corpus)

        logger.info(f"Extracting topics from {len(corpus)} feedback entries")
        response = self.agent.chat_with_system(system, payload, json_mode=True, temperature=0.1)

        try:
            result = parsing.parse_topic_result(response)
        except ExtractionParseError as e:
            self._log_fallback("topics", response, e.reason)
            return TopicResult()

        logger.info(f"Extracted {len(result.topics)} topics, {len(result.feature_mentions)} feature mentions")
        return result

    def create_cluster_map(self, corpus: List[NormalizedFeedbackItem], context: AnalysisContext) -> ClusterResult:
        """Group feedback entries under 3-8 themes."""
        self._require_corpus(corpus, "clusters")

        system = f"""{_framing(context)}

          Your task is to:
          1. Identify 3-8 key themes or topics in these feedback entries
          2. Assign each feedback to its most relevant theme
          3. Create a short summary of what each theme represents

          The feedback entries are given as a JSON array; refer to them by their zero-based index.

          Format your answer as a JSON object with:
          {{
            "themes": ["Theme 1", "Theme 2", ...],
            "assignments": {{"0": "Theme 1", "1": "Theme 2", ...}},
            "themeSummaries": {{"Theme 1": "Summary of theme 1", ...}}
          }}

          Be specific with theme names and focus on actual product features, issues, or customer experiences.
          Every assignment must use a theme name exactly as listed in "themes"."""

        payload = json.dumps([item.text for item in corpus], ensure_ascii=False)

        logger.info(f"Creating cluster map for {len(corpus)} feedback entries")
        response = self.agent.chat_with_system(system, payload, json_mode=True, temperature=0.3)

        try:
            result = parsing.parse_cluster_result(response, corpus)
        except ExtractionParseError as e:
            self._log_fallback("clusters", response, e.reason)
            return ClusterResult(summary="Error creating clusters")

        logger.info(f"Created {len(result.themes)} feedback clusters")
        return result

    def analyze_themes(self, corpus: List[NormalizedFeedbackItem], context: AnalysisContext) -> ThemeAnalysisResult:
        """Dynamic categories, theme frequencies and actionable insights."""
        self._require_corpus(corpus, "themes")

        system = f"""
{_framing(context)}

Your task is to:
1. First, identify 3-6 main categories that best represent the topics in the feedback
2. Then extract the specific themes within each category
3. Calculate accurate frequencies and provide examples

There are {len(corpus)} feedback items in total.

Provide your analysis as a JSON object with this structure:
{{
  "mainThemes": [
    {{
      "theme": "Clear theme name",
      "count": number of feedback items mentioning this theme,
      "percentage": count / totalFeedbackCount * 100,
      "examples": ["brief quote 1", "brief quote 2"],
      "category": "Name of the category this theme belongs to"
    }}
  ],
  "categories": {{
    "Category Name": {{"count": number, "percentage": count / totalFeedbackCount * 100}}
  }},
  "totalFeedbackCount": total number of feedback items,
  "actionableInsights": ["Actionable insight 1", "Actionable insight 2"]
}}

Important guidelines:
1. Dynamically create categories based on the actual feedback content - do NOT use predefined categories
2. {NO_FABRICATION}
3. Limit to the top 5-8 most significant themes
4. For examples, use short direct quotes from the actual feedback
5. Provide 3-5 specific actionable insights based on the feedback
6. Format the response ONLY as a valid JSON object
"""

        payload = "\n\n".join(f"Feedback ID: {item.id}\n{item.text}" for item in corpus)

        logger.info(f"Analyzing themes for {len(corpus)} feedback entries")
        response = self.agent.chat_with_system(system, payload, json_mode=True, temperature=0.3)

        try:
            result = parsing.parse_theme_analysis(response, len(corpus), context.language)
        except ExtractionParseError as e:
            self._log_fallback("themes", response, e.reason)
            return ThemeAnalysisResult(
                total_feedback_count=len(corpus),
                actionable_insights=["Error analyzing feedback themes."],
                language=context.language,
            )

        return result

    # ------------------------------------------------------------------
    # Narrative flows
    # ------------------------------------------------------------------

    def summarize_narrative(self, feedback_lines: List[str], period: str = "daily",
                            context: Optional[AnalysisContext] = None) -> NarrativeAnalysis:
        """
        Positive/negative themes plus a narrative summary for a daily or monthly window.

        No minimum corpus size. Unparseable replies become the summary text.

        Raises:
            UpstreamServiceError: The service call itself failed
        """
        framing = _framing(context) if context else "You are analyzing customer feedback."

        if period == "monthly":
            task = """Analyze this month's feedback and provide:
            - Major positive themes with frequency (e.g., "Easy to clean (mentioned by ~40% of respondents)")
            - Major negative themes with frequency
            - A comprehensive monthly summary with key insights"""
        else:
            task = """Analyze the feedback and provide:
            1. A list of positive themes
            2. A list of negative themes
            3. A 2-3 paragraph summary of insights"""

        system = (
            f"{framing} {task}\n\n"
            "Respond in this exact JSON format: "
            '{"positiveThemes": ["theme1", "theme2"], "negativeThemes": ["theme1", "theme2"], '
            '"summary": "overall summary"}'
        )
        payload = (
            "Analyze these customer feedback entries and identify key themes and patterns. "
            "Here are the feedbacks:\n\n" + "\n\n".join(feedback_lines)
        )

        logger.info(f"Requesting {period} narrative for {len(feedback_lines)} feedback entries")
        response = self.summary_agent.chat_with_system(system, payload, json_mode=True)

        try:
            return parsing.parse_narrative(response)
        except ExtractionParseError as e:
            self._log_fallback(f"{period}_summary", response, e.reason)
            return parsing.raw_summary_fallback(response)

    def summarize_campaign(self, feedback_lines: List[str], context: AnalysisContext) -> str:
        """Freeform paragraph summarizing a campaign's feedback."""
        system = (
            f"{_framing(context)} Create a concise paragraph (150-200 words) summarizing the main "
            "reasons behind the customers' feedback, common patterns, and actionable insights for "
            "the company. Focus on specific, data-driven findings, not general advice."
        )

        logger.info(f"Requesting campaign summary for {len(feedback_lines)} feedback entries")
        response = self.summary_agent.chat_with_system(system, "\n\n".join(feedback_lines))
        return response.strip() or "Unable to generate summary."

    def _log_fallback(self, flow: str, response: Optional[str], reason: str) -> None:
        response_length = len(response or "")
        logger.warning(
            f"extraction_fallback flow={flow} response_length={response_length} reason={reason}",
            extra={"flow": flow, "response_length": response_length, "reason": reason},
        )
