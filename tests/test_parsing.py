"""Unit tests for model-response parsers."""
import json
import pytest

from src.agents.parsing import (
    normalize_sentiment,
    parse_cluster_result,
    parse_json_object,
    parse_narrative,
    parse_theme_analysis,
    parse_topic_result,
    raw_summary_fallback,
)
from src.errors import ExtractionParseError
from src.models.schemas import NormalizedFeedbackItem, Sentiment


@pytest.fixture
def corpus():
    return [
        NormalizedFeedbackItem(id="fb001", text="Delivery was late"),
        NormalizedFeedbackItem(id="fb002", text="Courier lost my parcel"),
        NormalizedFeedbackItem(id="fb003", text="Love the new app"),
    ]


class TestParseJsonObject:
    """Test JSON extraction from model replies."""

    def test_plain_json(self):
        assert parse_json_object('{"a": 1}') == {"a": 1}

    def test_code_fence(self):
        assert parse_json_object('```json\n{"a": 1}\n```') == {"a": 1}

    def test_surrounding_prose(self):
        assert parse_json_object('Here you go: {"a": {"b": 2}} Hope it helps.') == {"a": {"b": 2}}

    @pytest.mark.parametrize("response", ["", "   ", "not json at all", "[1, 2, 3]", "{broken"])
    def test_unparseable(self, response):
        with pytest.raises(ExtractionParseError):
            parse_json_object(response)


class TestNormalizeSentiment:
    """Test sentiment normalization."""

    @pytest.mark.parametrize("value,expected", [
        ("positive", Sentiment.POSITIVE),
        (" Negative ", Sentiment.NEGATIVE),
        ("mixed", Sentiment.MIXED),
        ("neutral/mixed", Sentiment.NEUTRAL),
        ("great", Sentiment.NEUTRAL),
        (None, Sentiment.NEUTRAL),
        (3, Sentiment.NEUTRAL),
    ])
    def test_values(self, value, expected):
        assert normalize_sentiment(value) == expected


class TestParseTopicResult:
    """Test topic parsing."""

    def test_valid_response(self):
        response = json.dumps({
            "topics": ["Delivery", "App"],
            "keyPhrases": ["late delivery"],
            "featureMentions": [
                {"feature": "Delivery", "sentiment": "negative", "count": 2, "examples": ["Delivery was late"]},
                {"feature": "App", "sentiment": "neutral/mixed", "count": "1", "examples": "Love the new app"},
            ],
        })

        result = parse_topic_result(response)

        assert result.topics == ["Delivery", "App"]
        assert result.key_phrases == ["late delivery"]
        assert result.feature_mentions[0].sentiment == "negative"
        assert result.feature_mentions[1].sentiment == "neutral"
        assert result.feature_mentions[1].count == 1
        assert result.feature_mentions[1].examples == ["Love the new app"]

    def test_malformed_mentions_dropped_individually(self):
        response = json.dumps({
            "topics": ["Delivery"],
            "featureMentions": ["not an object", {"sentiment": "positive"}, {"feature": "Price", "count": -4}],
        })

        result = parse_topic_result(response)

        assert [m.feature for m in result.feature_mentions] == ["Price"]
        assert result.feature_mentions[0].count == 0

    def test_non_finite_count_is_zero(self):
        response = '{"topics": ["a"], "featureMentions": [{"feature": "x", "sentiment": "positive", "count": 1e999}, {"feature": "y", "count": "Infinity"}]}'

        result = parse_topic_result(response)

        assert [m.count for m in result.feature_mentions] == [0, 0]

    def test_snake_case_keys_accepted(self):
        result = parse_topic_result('{"topics": [], "key_phrases": ["quick"]}')
        assert result.key_phrases == ["quick"]

    def test_no_topic_fields(self):
        with pytest.raises(ExtractionParseError):
            parse_topic_result('{"answer": "nothing"}')


class TestParseClusterResult:
    """Test cluster map parsing."""

    def test_assignments_mapped_to_corpus(self, corpus):
        response = json.dumps({
            "themes": ["Shipping", "App"],
            "assignments": {"0": "Shipping", "1": "Shipping", "2": "App"},
            "themeSummaries": {"Shipping": "Late or lost parcels", "App": "App praise"},
        })

        result = parse_cluster_result(response, corpus)

        assert result.themes == ["Shipping", "App"]
        assert [i.id for i in result.clusters["Shipping"]] == ["fb001", "fb002"]
        assert [i.id for i in result.clusters["App"]] == ["fb003"]
        assert result.summary == (
            "Feedback Themes:\n\n"
            "- Shipping (2 items): Late or lost parcels\n"
            "- App (1 items): App praise\n"
        )

    def test_out_of_range_and_unknown_themes_ignored(self, corpus):
        response = json.dumps({
            "themes": ["Shipping"],
            "assignments": {"0": "Shipping", "7": "Shipping", "1": "Pricing", "x": "Shipping"},
        })

        result = parse_cluster_result(response, corpus)

        assert [i.id for i in result.clusters["Shipping"]] == ["fb001"]
        assert "Pricing" not in result.clusters

    def test_list_assignments(self, corpus):
        response = json.dumps({"themes": ["A", "B"], "assignments": ["A", "B", "A"]})

        result = parse_cluster_result(response, corpus)

        assert [i.id for i in result.clusters["A"]] == ["fb001", "fb003"]

    def test_missing_themes(self, corpus):
        with pytest.raises(ExtractionParseError):
            parse_cluster_result('{"assignments": {}}', corpus)


class TestParseThemeAnalysis:
    """Test theme analysis parsing."""

    def test_valid_response(self):
        response = json.dumps({
            "mainThemes": [
                {"theme": "Slow delivery", "count": 2, "percentage": "66.7%", "examples": ["late"], "category": "Shipping"},
                {"theme": "", "count": 1},
            ],
            "categories": {"Shipping": {"count": 2, "percentage": 66.7}},
            "totalFeedbackCount": 3,
            "actionableInsights": ["Review courier contracts"],
        })

        result = parse_theme_analysis(response, corpus_size=3, language="de")

        assert len(result.main_themes) == 1
        assert result.main_themes[0].percentage == 66.7
        assert result.categories["Shipping"].count == 2
        assert result.total_feedback_count == 3
        assert result.actionable_insights == ["Review courier contracts"]
        assert result.language == "de"

    def test_missing_total_uses_corpus_size(self):
        result = parse_theme_analysis('{"mainThemes": []}', corpus_size=12, language="en")
        assert result.total_feedback_count == 12

    def test_non_finite_counts_and_percentages_are_zero(self):
        response = (
            '{"mainThemes": [{"theme": "Price", "count": 1e999, "percentage": "1e999%"}],'
            ' "categories": {"Other": {"count": NaN, "percentage": -Infinity}}, "totalFeedbackCount": Infinity}'
        )

        result = parse_theme_analysis(response, corpus_size=3, language="en")

        assert result.main_themes[0].count == 0
        assert result.main_themes[0].percentage == 0.0
        assert result.categories["Other"].count == 0
        assert result.categories["Other"].percentage == 0.0
        assert result.total_feedback_count == 0

    def test_category_defaults_to_other(self):
        result = parse_theme_analysis('{"mainThemes": [{"theme": "Price", "count": 1}]}', 3, "en")
        assert result.main_themes[0].category == "Other"

    def test_no_theme_fields(self):
        with pytest.raises(ExtractionParseError):
            parse_theme_analysis('{"summary": "x"}', 3, "en")


class TestParseNarrative:
    """Test narrative parsing."""

    def test_valid_response(self):
        result = parse_narrative(json.dumps({
            "positiveThemes": ["Friendly staff"],
            "negativeThemes": [{"theme": "Wait times", "frequency": "~30%"}],
            "summary": "Mostly positive.",
        }))

        assert result.positive_themes == ["Friendly staff"]
        assert result.negative_themes == ["Wait times (~30%)"]
        assert result.summary == "Mostly positive."

    def test_no_summary_fields(self):
        with pytest.raises(ExtractionParseError):
            parse_narrative('{"other": 1}')

    def test_raw_fallback(self):
        assert raw_summary_fallback("  plain prose reply ").summary == "plain prose reply"
        assert raw_summary_fallback("").summary == "No analysis available"
        assert raw_summary_fallback(None).positive_themes == []
