# src/agents/parsing.py
"""
Parsers that turn raw model output into typed analysis results.

Each parser either returns the flow's typed result or raises
ExtractionParseError; the extractor converts that error into the flow's
degraded default, so nothing outside src.agents ever sees it.
"""

from typing import Any, Dict, List, Optional
import json
import math
import re

from src.errors import ExtractionParseError
from src.models.schemas import (
    CategoryBreakdown,
    ClusterResult,
    FeatureMention,
    NarrativeAnalysis,
    NormalizedFeedbackItem,
    Sentiment,
    ThemeAnalysisResult,
    ThemeCount,
    TopicResult,
)

_CODE_FENCE = re.compile(r'```(?:json)?\s*|\s*```')
_SENTIMENTS = {s.value for s in Sentiment}


def parse_json_object(response: str) -> Dict[str, Any]:
    """Parse a model reply as a JSON object, tolerating code fences and surrounding prose."""
    if not response or not response.strip():
        raise ExtractionParseError("empty response")

    # Strategy 1: Direct JSON parsing with markdown code blocks removed
    cleaned = _CODE_FENCE.sub('', response).strip()
    try:
        data = json.loads(cleaned)
        if isinstance(data, dict):
            return data
        raise ExtractionParseError(f"expected JSON object, got {type(data).__name__}")
    except json.JSONDecodeError:
        pass

    # Strategy 2: Extract the outermost object from text
    match = re.search(r'\{.*\}', cleaned, re.DOTALL)
    if match:
        try:
            data = json.loads(match.group(0))
            if isinstance(data, dict):
                return data
        except json.JSONDecodeError:
            pass

    raise ExtractionParseError("response is not valid JSON")


def normalize_sentiment(value: Any) -> Sentiment:
    """Map a model-provided sentiment onto the allowed set; anything else is neutral."""
    if isinstance(value, str):
        cleaned = value.strip().lower()
        if cleaned in _SENTIMENTS:
            return Sentiment(cleaned)
    return Sentiment.NEUTRAL


def _first(data: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in data:
            return data[key]
    return None


def _str_list(value: Any) -> List[str]:
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, list):
        return []
    return [str(v).strip() for v in value if v is not None and str(v).strip()]


def _count(value: Any) -> int:
    try:
        return max(0, int(round(float(value))))
    except (TypeError, ValueError, OverflowError):
        return 0


def _percentage(value: Any) -> float:
    if isinstance(value, str):
        value = value.strip().rstrip('%')
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    return number if math.isfinite(number) else 0.0


def parse_topic_result(response: str) -> TopicResult:
    data = parse_json_object(response)

    topics = _first(data, "topics")
    phrases = _first(data, "keyPhrases", "key_phrases")
    mentions = _first(data, "featureMentions", "feature_mentions")
    if topics is None and phrases is None and mentions is None:
        raise ExtractionParseError("no topic fields in response")

    feature_mentions = []
    for mention in mentions if isinstance(mentions, list) else []:
        if not isinstance(mention, dict):
            continue
        feature = str(mention.get("feature") or "").strip()
        if not feature:
            continue
        feature_mentions.append(FeatureMention(
            feature=feature,
            sentiment=normalize_sentiment(mention.get("sentiment")),
            count=_count(mention.get("count")),
            examples=_str_list(mention.get("examples")),
        ))

    return TopicResult(
        topics=_str_list(topics),
        key_phrases=_str_list(phrases),
        feature_mentions=feature_mentions,
    )


def _assignment_pairs(assignments: Any):
    if isinstance(assignments, dict):
        return assignments.items()
    if isinstance(assignments, list):
        return enumerate(assignments)
    return []


def parse_cluster_result(response: str, corpus: List[NormalizedFeedbackItem]) -> ClusterResult:
    """
    Map index-based theme assignments back onto the supplied corpus.

    Out-of-range indices and themes not declared in "themes" are ignored.
    """
    data = parse_json_object(response)

    themes = data.get("themes")
    if not isinstance(themes, list):
        raise ExtractionParseError("missing themes list")
    themes = list(dict.fromkeys(_str_list(themes)))

    clusters: Dict[str, List[NormalizedFeedbackItem]] = {theme: [] for theme in themes}

    for index, theme in _assignment_pairs(data.get("assignments")):
        try:
            index = int(index)
        except (TypeError, ValueError):
            continue
        theme = str(theme).strip() if theme is not None else ""
        if 0 <= index < len(corpus) and theme in clusters:
            clusters[theme].append(corpus[index])

    summaries = _first(data, "themeSummaries", "theme_summaries")
    summary = "Feedback Themes:\n\n"
    if isinstance(summaries, dict):
        for theme, description in summaries.items():
            count = len(clusters.get(theme, []))
            summary += f"- {theme} ({count} items): {description}\n"

    return ClusterResult(themes=themes, clusters=clusters, summary=summary)


def parse_theme_analysis(response: str, corpus_size: int, language: str) -> ThemeAnalysisResult:
    """Percentages and counts are kept as the model computed them."""
    data = parse_json_object(response)

    main_themes = _first(data, "mainThemes", "main_themes")
    categories = data.get("categories")
    if main_themes is None and categories is None:
        raise ExtractionParseError("no theme fields in response")

    themes = []
    for entry in main_themes if isinstance(main_themes, list) else []:
        if not isinstance(entry, dict):
            continue
        name = str(entry.get("theme") or "").strip()
        if not name:
            continue
        themes.append(ThemeCount(
            theme=name,
            count=_count(entry.get("count")),
            percentage=_percentage(entry.get("percentage")),
            examples=_str_list(entry.get("examples")),
            category=str(entry.get("category") or "Other").strip(),
        ))

    breakdown = {}
    for name, values in (categories.items() if isinstance(categories, dict) else []):
        if not isinstance(values, dict):
            continue
        breakdown[str(name)] = CategoryBreakdown(
            count=_count(values.get("count")),
            percentage=_percentage(values.get("percentage")),
        )

    total = _first(data, "totalFeedbackCount", "total_feedback_count")

    return ThemeAnalysisResult(
        main_themes=themes,
        categories=breakdown,
        total_feedback_count=_count(total) if total is not None else corpus_size,
        actionable_insights=_str_list(_first(data, "actionableInsights", "actionable_insights")),
        language=language,
    )


def _theme_labels(value: Any) -> List[str]:
    """Themes may come back as strings or as {"theme", "frequency"} objects."""
    if not isinstance(value, list):
        return _str_list(value)
    labels = []
    for entry in value:
        if isinstance(entry, dict):
            name = str(entry.get("theme") or entry.get("name") or "").strip()
            if not name:
                continue
            frequency = entry.get("frequency")
            labels.append(f"{name} ({frequency})" if frequency else name)
        elif entry is not None and str(entry).strip():
            labels.append(str(entry).strip())
    return labels


def parse_narrative(response: str) -> NarrativeAnalysis:
    data = parse_json_object(response)

    positive = _first(data, "positiveThemes", "positive_themes")
    negative = _first(data, "negativeThemes", "negative_themes")
    summary = data.get("summary")
    if positive is None and negative is None and summary is None:
        raise ExtractionParseError("no summary fields in response")

    if isinstance(summary, list):
        summary = "\n".join(str(s) for s in summary)

    return NarrativeAnalysis(
        positive_themes=_theme_labels(positive),
        negative_themes=_theme_labels(negative),
        summary=str(summary).strip() if summary is not None else "",
    )


def raw_summary_fallback(response: Optional[str]) -> NarrativeAnalysis:
    """Degraded narrative: the raw reply becomes the summary text."""
    text = (response or "").strip()
    return NarrativeAnalysis(summary=text or "No analysis available")
