from pydantic import BaseModel, Field, ConfigDict, field_validator, model_validator
from pydantic.alias_generators import to_camel
from datetime import datetime, date, timezone
from typing import Optional, List, Dict, Union, Literal, Generic, TypeVar
from enum import Enum


def _as_utc(value: datetime) -> datetime:
    """Naive timestamps from the store are UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class Sentiment(str, Enum):
    POSITIVE = "positive"
    NEGATIVE = "negative"
    NEUTRAL = "neutral"
    MIXED = "mixed"


# ---------------------------------------------------------------------------
# Inputs read from the feedback store
# ---------------------------------------------------------------------------

class QuestionResponse(BaseModel):
    """Answer to one campaign question, typed and/or spoken."""
    model_config = ConfigDict(frozen=True)

    question_id: str
    value: Optional[Union[bool, int, float, str, List[str]]] = None
    voice_transcription: Optional[str] = None


class FeedbackRecord(BaseModel):
    """One customer submission."""
    model_config = ConfigDict(frozen=True)

    id: str
    created_at: datetime
    nps_score: Optional[int] = Field(default=None, ge=0, le=10)
    root_text: Optional[str] = None
    question_responses: List[QuestionResponse] = Field(default_factory=list)
    campaign_id: Optional[str] = None
    company_id: Optional[str] = None

    @field_validator("created_at")
    @classmethod
    def created_at_utc(cls, value: datetime) -> datetime:
        return _as_utc(value)


class CampaignQuestion(BaseModel):
    id: str
    text: str
    type: Optional[str] = None


class Campaign(BaseModel):
    """Campaign fields the analysis core reads."""
    id: str
    name: str
    company_id: Optional[str] = None
    language: str = "en"
    questions: List[CampaignQuestion] = Field(default_factory=list)

    @field_validator("language", mode="before")
    @classmethod
    def default_language(cls, value):
        return value or "en"

    def question_labels(self) -> Dict[str, str]:
        return {q.id: q.text for q in self.questions}


class TimeWindow(BaseModel):
    """Half-open time range: start inclusive, end exclusive."""
    start: datetime
    end: datetime

    @field_validator("start", "end")
    @classmethod
    def bound_utc(cls, value: datetime) -> datetime:
        return _as_utc(value)

    @model_validator(mode="after")
    def check_order(self):
        if self.end <= self.start:
            raise ValueError("window end must be after start")
        return self

    def contains(self, moment: datetime) -> bool:
        return self.start <= _as_utc(moment) < self.end


class NormalizedFeedbackItem(BaseModel):
    """Flattened text of one submission, ready for extraction."""
    id: str
    text: str


class AnalysisContext(BaseModel):
    campaign_name: str
    company_name: str
    language: str = "en"


# ---------------------------------------------------------------------------
# Analysis results (persisted with camelCase keys)
# ---------------------------------------------------------------------------

class ResultModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, use_enum_values=True)


class FeatureMention(ResultModel):
    feature: str
    sentiment: Sentiment = Sentiment.NEUTRAL
    count: int = Field(default=0, ge=0)
    examples: List[str] = Field(default_factory=list)


class TopicResult(ResultModel):
    """Topics, key phrases and per-feature sentiment for a corpus."""
    kind: Literal["topics"] = "topics"
    topics: List[str] = Field(default_factory=list)
    key_phrases: List[str] = Field(default_factory=list)
    feature_mentions: List[FeatureMention] = Field(default_factory=list)


class ClusterResult(ResultModel):
    """Feedback grouped under extracted themes."""
    kind: Literal["clusters"] = "clusters"
    themes: List[str] = Field(default_factory=list)
    clusters: Dict[str, List[NormalizedFeedbackItem]] = Field(default_factory=dict)
    summary: str = ""


class ThemeCount(ResultModel):
    theme: str
    count: int = Field(default=0, ge=0)
    percentage: float = 0.0
    examples: List[str] = Field(default_factory=list)
    category: str = "Other"


class CategoryBreakdown(ResultModel):
    count: int = Field(default=0, ge=0)
    percentage: float = 0.0


class ThemeAnalysisResult(ResultModel):
    """Dynamic categories, themes within them, and actionable insights."""
    kind: Literal["themes"] = "themes"
    main_themes: List[ThemeCount] = Field(default_factory=list)
    categories: Dict[str, CategoryBreakdown] = Field(default_factory=dict)
    total_feedback_count: int = 0
    actionable_insights: List[str] = Field(default_factory=list)
    language: str = "en"


class NarrativeAnalysis(ResultModel):
    """Narrative part of a daily or monthly summary."""
    positive_themes: List[str] = Field(default_factory=list)
    negative_themes: List[str] = Field(default_factory=list)
    summary: str = ""


class NpsTrendPoint(ResultModel):
    day: date
    average: float


class AggregateStats(ResultModel):
    """Deterministic NPS figures, never taken from the language model."""
    nps_average: float = 0.0
    promoter_pct: float = 0.0
    detractor_pct: float = 0.0
    passive_pct: float = 0.0
    nps_score: float = 0.0
    response_count: int = 0
    scored_count: int = 0
    nps_trend: List[NpsTrendPoint] = Field(default_factory=list)


class DailySummary(ResultModel):
    kind: Literal["daily"] = "daily"
    day: date
    nps_average: float = 0.0
    nps_score: float = 0.0
    promoter_pct: float = 0.0
    detractor_pct: float = 0.0
    nps_trend: List[NpsTrendPoint] = Field(default_factory=list)
    total_responses: int = 0
    positive_themes: List[str] = Field(default_factory=list)
    negative_themes: List[str] = Field(default_factory=list)
    summary: str = ""


class MonthlySummary(ResultModel):
    kind: Literal["monthly"] = "monthly"
    year_month: str = Field(..., pattern=r"^\d{4}-\d{2}$")
    nps_average: float = 0.0
    nps_score: float = 0.0
    promoter_pct: float = 0.0
    detractor_pct: float = 0.0
    nps_trend: List[NpsTrendPoint] = Field(default_factory=list)
    total_responses: int = 0
    positive_themes: List[str] = Field(default_factory=list)
    negative_themes: List[str] = Field(default_factory=list)
    summary: str = ""


AnalysisResult = Union[TopicResult, ClusterResult, ThemeAnalysisResult, DailySummary, MonthlySummary]


class NpsStats(ResultModel):
    """NPS breakdown attached to a campaign topic analysis, rounded to one decimal."""
    average: Optional[float] = None
    promoter_percentage: float = 0.0
    detractor_percentage: float = 0.0
    passive_percentage: float = 0.0
    promoters: int = 0
    detractors: int = 0
    passives: int = 0
    total: int = 0


class TopicAnalysisReport(ResultModel):
    topics: TopicResult
    feedback_count: int
    analyzed_count: int
    nps: NpsStats


ResultT = TypeVar("ResultT")


class AnalysisRun(BaseModel, Generic[ResultT]):
    """Outcome of one pipeline run: the result plus whether it was written back."""
    result: ResultT
    persisted: bool = False
    persistence_error: Optional[str] = None
