"""Pydantic schemas for grammar suggestions and the remote analysis boundary."""

from typing import Any, Literal
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from proofmark.core.logging import get_logger

logger = get_logger(__name__)

SuggestionType = Literal["grammar", "spelling", "punctuation", "style", "passive"]
SuggestionCategory = Literal["correctness", "clarity", "engagement", "delivery"]
Severity = Literal["low", "medium", "high"]
Priority = Literal["fast", "balanced", "quality"]
UserTier = Literal["free", "premium"]

# Default category per suggestion type when the analyzer does not supply one
TYPE_CATEGORIES: dict[str, str] = {
    "spelling": "correctness",
    "grammar": "correctness",
    "punctuation": "correctness",
    "style": "clarity",
    "passive": "clarity",
}

# Types whose marks cover the whole sentence
SENTENCE_LEVEL_TYPES = frozenset({"passive", "style"})


def new_suggestion_id() -> str:
    """Generate a fresh suggestion id."""
    return uuid4().hex[:12]


class TextRange(BaseModel):
    """Half-open code-unit range of one text snapshot."""

    model_config = ConfigDict(frozen=True)

    start: int = Field(..., ge=0, description="Start offset (inclusive)")
    end: int = Field(..., ge=0, description="End offset (exclusive)")

    @model_validator(mode="after")
    def _check_order(self) -> "TextRange":
        if self.start >= self.end:
            raise ValueError(f"range start ({self.start}) must be before end ({self.end})")
        return self

    @property
    def length(self) -> int:
        return self.end - self.start

    def overlaps(self, other: "TextRange") -> bool:
        return self.start < other.end and other.start < self.end

    def shifted(self, delta: int) -> "TextRange":
        return TextRange(start=self.start + delta, end=self.end + delta)


class Suggestion(BaseModel):
    """A single finding produced by an analyzer."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(default_factory=new_suggestion_id, description="Stable suggestion id")
    range: TextRange
    type: SuggestionType
    category: SuggestionCategory | None = Field(
        default=None, description="UI category; derived from type when omitted"
    )
    original: str = Field(..., min_length=1, description="Flagged text at range")
    proposed: str = Field(default="", description="Replacement text (may be empty)")
    explanation: str = Field(default="", description="Why the change helps")
    confidence: float = Field(..., ge=0.0, le=1.0, description="Confidence 0..1")
    severity: Severity = Field(default="medium")
    can_regenerate: bool = Field(default=False, alias="canRegenerate")

    @model_validator(mode="after")
    def _fill_category(self) -> "Suggestion":
        if self.category is None:
            self.category = TYPE_CATEGORIES[self.type]
        return self

    def matches(self, text: str) -> bool:
        """Whether ``text`` still holds ``original`` at this suggestion's range."""
        return text[self.range.start : self.range.end] == self.original


class EditorSuggestion(Suggestion):
    """Suggestion plus UI lifecycle flags, owned by the reconciler."""

    is_visible: bool = Field(default=True, alias="isVisible")
    is_hovered: bool = Field(default=False, alias="isHovered")
    is_dismissed: bool = Field(default=False, alias="isDismissed")

    @classmethod
    def from_suggestion(cls, suggestion: Suggestion) -> "EditorSuggestion":
        if isinstance(suggestion, EditorSuggestion):
            return suggestion.model_copy()
        return cls.model_validate(suggestion.model_dump())


class CheckOptions(BaseModel):
    """Options controlling a grammar check."""

    model_config = ConfigDict(frozen=True)

    language: str = "en"
    include_spelling: bool = True
    include_grammar: bool = True
    include_style: bool = True
    priority: Priority = "balanced"
    user_tier: UserTier = "premium"

    def cache_flags(self) -> dict[str, Any]:
        """Option flags that change analysis output (cache key material)."""
        return {
            "language": self.language,
            "include_spelling": self.include_spelling,
            "include_grammar": self.include_grammar,
            "include_style": self.include_style,
        }

    def hybrid_cache_flags(self) -> dict[str, Any]:
        """Cache key material for hybrid checks, where priority and tier pick the route."""
        return {**self.cache_flags(), "priority": self.priority, "user_tier": self.user_tier}


class ProcessingDecision(BaseModel):
    """Output of the decision engine."""

    model_config = ConfigDict(frozen=True)

    use_local_only: bool
    reason: str
    estimated_cost: float
    estimated_latency_ms: int


class CheckResult(BaseModel):
    """Result of one hybrid grammar check."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    text: str
    suggestions: list[Suggestion] = Field(default_factory=list)
    processing_mode: Literal["local", "hybrid"] = "local"
    processing_time_ms: float = 0.0
    decision: ProcessingDecision | None = None
    cached: bool = False
    remote_error: Exception | None = Field(default=None, exclude=True)


# =============================================================================
# Remote analysis wire format (camelCase on the wire)
# =============================================================================


class GrammarCheckRequest(BaseModel):
    """Request body of POST /grammar/check."""

    model_config = ConfigDict(populate_by_name=True)

    text: str = Field(..., min_length=1, max_length=10_000)
    language: str = Field(default="en")
    include_spelling: bool = Field(default=True, alias="includeSpelling")
    include_grammar: bool = Field(default=True, alias="includeGrammar")
    include_style: bool = Field(default=False, alias="includeStyle")
    stream: bool = Field(default=False)

    def to_options(self) -> CheckOptions:
        return CheckOptions(
            language=self.language,
            include_spelling=self.include_spelling,
            include_grammar=self.include_grammar,
            include_style=self.include_style,
        )


class WireSuggestion(BaseModel):
    """Suggestion as exchanged with the remote service."""

    model_config = ConfigDict(populate_by_name=True)

    id: str | None = None
    range: TextRange
    type: SuggestionType
    category: SuggestionCategory | None = None
    original: str
    proposed: str
    explanation: str
    confidence: float = Field(..., ge=0.0, le=1.0)
    severity: Severity | None = None
    can_regenerate: bool | None = Field(default=None, alias="canRegenerate")


class GrammarCheckResponse(BaseModel):
    """``data`` payload of a successful grammar check."""

    model_config = ConfigDict(populate_by_name=True)

    suggestions: list[WireSuggestion] = Field(default_factory=list)
    processed_text: str = Field(..., alias="processedText")
    cached: bool = False
    processing_time_ms: float = Field(default=0.0, alias="processingTimeMs")


class RefineRequest(BaseModel):
    """Request body of POST /grammar/refine."""

    model_config = ConfigDict(populate_by_name=True)

    text: str = Field(..., min_length=1, max_length=10_000)
    suggestion: WireSuggestion


class RefineResponse(BaseModel):
    """``data`` payload of a refinement; ``suggestion`` is null when nothing better exists."""

    suggestion: WireSuggestion | None = None


def to_wire(suggestion: Suggestion) -> dict[str, Any]:
    """Serialize a suggestion for the remote boundary."""
    return WireSuggestion(
        id=suggestion.id,
        range=suggestion.range,
        type=suggestion.type,
        category=suggestion.category,
        original=suggestion.original,
        proposed=suggestion.proposed,
        explanation=suggestion.explanation,
        confidence=suggestion.confidence,
        severity=suggestion.severity,
        can_regenerate=suggestion.can_regenerate,
    ).model_dump(mode="json", by_alias=True, exclude_none=True)


def parse_suggestions(raw_items: Any, text: str | None = None) -> list[Suggestion]:
    """
    Validate analyzer output and convert it to internal suggestions.

    Malformed entries (missing fields, inverted or out-of-bounds ranges,
    unknown types, confidence outside 0..1) are dropped with a warning
    instead of failing the whole batch.

    Args:
        raw_items: Decoded JSON array from an analyzer
        text: Source text, used for the out-of-bounds check when given

    Returns:
        List of validated suggestions
    """
    if not isinstance(raw_items, list):
        logger.warning(f"Analyzer returned non-list suggestions: {type(raw_items).__name__}")
        return []

    validated: list[Suggestion] = []
    for index, item in enumerate(raw_items):
        try:
            wire = WireSuggestion.model_validate(item)
        except ValidationError as e:
            logger.warning(f"Malformed suggestion at index {index} skipped: {e.error_count()} errors")
            continue

        if text is not None and wire.range.end > len(text):
            logger.warning(
                f"Out-of-bounds suggestion at index {index} skipped: "
                f"end={wire.range.end} text_length={len(text)}"
            )
            continue

        data = wire.model_dump(exclude_none=True)
        if not data.get("id"):
            data["id"] = new_suggestion_id()
        if "can_regenerate" not in data:
            data["can_regenerate"] = wire.type in ("spelling", "passive", "style")
        try:
            validated.append(Suggestion.model_validate(data))
        except ValidationError as e:
            logger.warning(f"Suggestion at index {index} failed conversion: {e.error_count()} errors")

    return validated
