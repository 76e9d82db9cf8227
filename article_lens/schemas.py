"""Data types shared across the analysis and scoring services."""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Literal

SegmentType = Literal["text", "code", "quote", "heading"]
Sentiment = Literal["positive", "neutral", "negative"]
PreferredDepth = Literal["deep", "medium", "light"]
PreferredLength = Literal["short", "medium", "long"]
RecommendedAction = Literal["read_now", "read_later", "archive", "skip"]

SENTIMENTS: tuple[str, ...] = ("positive", "neutral", "negative")

# Bounds on a one-line summary, asked of the summary model and checked by quick_check
ONE_LINE_MIN_CHARS = 10
ONE_LINE_MAX_CHARS = 160


@dataclass(frozen=True)
class RawArticle:
    """Article text and metadata handed over by the feed-ingestion side."""

    content: str
    title: str
    author: str | None = None
    article_id: str | None = None


# ---------------------------------------------------------------------------
# Segmentation
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Segment:
    """A contiguous chunk of an article, the unit of parallel analysis."""

    id: int
    content: str
    start_index: int
    end_index: int
    type: SegmentType
    blocks: tuple[str, ...] = ()
    overlap_blocks: int = 0  # leading blocks repeated from the previous segment


@dataclass
class SegmentAnalysis:
    """Model output for one segment."""

    segment_id: int
    key_points: list[str] = field(default_factory=list)
    technical_details: list[str] | None = None
    sentiment: Sentiment = "neutral"
    importance: float = 0.5  # 0-1
    entities: list[str] | None = None


# ---------------------------------------------------------------------------
# Article analysis
# ---------------------------------------------------------------------------


@dataclass
class MainPoint:
    point: str
    explanation: str = ""
    importance: float = 0.5  # 0-1


@dataclass
class KeyQuote:
    quote: str
    significance: str = ""


@dataclass
class ScoreDimensions:
    """Objective content scores, each 1-10."""

    depth: float
    quality: float
    practicality: float
    novelty: float


@dataclass
class ArticleAnalysisResult:
    """Structured analysis of one article."""

    one_line_summary: str
    summary: str
    main_points: list[MainPoint]
    domain: str
    subcategory: str
    tags: list[str]
    ai_score: float  # 1-10
    score_dimensions: ScoreDimensions
    analysis_model: str = ""
    processing_time_ms: int = 0
    reflection_rounds: int = 0
    key_quotes: list[KeyQuote] | None = None
    language: str | None = None

    def to_dict(self) -> dict:
        """Plain-dict form for the persistence collaborator."""
        return asdict(self)


@dataclass
class ReflectionScores:
    comprehensiveness: float
    accuracy: float
    depth: float
    consistency: float
    objectivity: float


@dataclass
class ReflectionResult:
    """Critique of an analysis produced by one reflection round."""

    quality: float  # 0-10
    issues: list[str] = field(default_factory=list)
    suggestions: list[str] = field(default_factory=list)
    needs_refinement: bool = False
    scores: ReflectionScores | None = None


# ---------------------------------------------------------------------------
# Personalization
# ---------------------------------------------------------------------------


@dataclass
class ReadingSessionRecord:
    """One reading session as supplied by the behaviour-tracking side."""

    user_id: str
    entry_id: str
    dwell_time: float  # seconds
    scroll_depth: float  # 0-1
    is_completed: bool = False
    is_starred: bool = False
    rating: int | None = None  # 1-5
    tags: list[str] = field(default_factory=list)
    category: str | None = None
    word_count: int | None = None
    started_at: datetime | None = None


@dataclass
class UserPreferenceProfile:
    """Learned interests and reading habits for one user."""

    user_id: str
    topic_weights: dict[str, float] = field(default_factory=dict)  # tag -> 0-1
    preferred_depth: PreferredDepth = "medium"
    preferred_length: PreferredLength = "medium"
    excluded_tags: list[str] = field(default_factory=list)
    avg_dwell_time: float = 0.0
    completion_rate: float = 0.0  # 0-1
    diversity_score: float = 0.0  # 0-1
    updated_at: datetime = field(default_factory=datetime.now)


@dataclass
class PersonalDimensions:
    """Per-user scores, each 1-10."""

    depth: float
    quality: float
    practicality: float
    novelty: float
    relevance: float


@dataclass
class BoostFactors:
    depth_boost: float
    practicality_boost: float
    novelty_factor: float
    relevance_score: float
    topic_boost: float


@dataclass
class PersonalizedScore:
    """An article's score relative to one user."""

    overall: float
    dimensions: PersonalDimensions
    reasons: list[str]
    recommended_action: RecommendedAction
    confidence: float  # 0-1
    boost_factors: BoostFactors | None = None
