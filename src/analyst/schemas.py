"""
Pydantic schemas for story generation with Instructor.

These schemas enforce structured JSON output from the LLM. Validators here
only coerce obviously malformed values; length caps and the fallback
narrative live in generator.py.
"""

import logging
import math
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from ..archivist.models import StoryType

logger = logging.getLogger(__name__)


class KeyMetrics(BaseModel):
    """Numeric facts pulled out of the evidence (None when not stated)."""
    funding: Optional[float] = Field(
        default=None,
        description="Total funding raised in USD (e.g., 2000000 for $2M)"
    )
    user_growth: Optional[float] = Field(
        default=None,
        description="User growth as a percentage or absolute user count"
    )
    revenue: Optional[float] = Field(
        default=None,
        description="Annual revenue in USD"
    )

    @field_validator("funding", "user_growth", "revenue", mode="before")
    @classmethod
    def coerce_number(cls, v):
        """Non-numeric, zero, NaN or infinite values become None."""
        if v is None or isinstance(v, bool):
            return None
        try:
            number = float(v)
        except (TypeError, ValueError):
            return None
        if not math.isfinite(number) or number == 0:
            return None
        return number


class StoryAnalysis(BaseModel):
    """Structured analysis of one startup's evidence.

    Mirrors the narrative the pipeline stores: whether the evidence shows a
    success story, how confident the model is, and the prose for publication.
    """
    is_success_story: bool = Field(
        description="True only if the evidence shows concrete success: funding, growth, launches, revenue"
    )
    confidence: float = Field(
        description="Confidence between 0 and 1 that this is a genuine success story"
    )
    title: str = Field(
        default="",
        description="Headline for the story, under 100 characters"
    )
    summary: str = Field(
        default="",
        description="Summary of the story, 100-200 words"
    )
    content: str = Field(
        default="",
        description="Full article body, 500-1500 words, grounded only in the supplied data"
    )
    tags: List[str] = Field(
        default_factory=list,
        description="5-8 tags covering industry, stage, achievement type and tech stack"
    )
    story_type: StoryType = Field(
        default=StoryType.SUCCESS,
        description="One of: success, funding, milestone, pivot"
    )
    key_metrics: KeyMetrics = Field(default_factory=KeyMetrics)

    @field_validator("confidence", mode="before")
    @classmethod
    def coerce_confidence(cls, v):
        """Clamp to [0, 1]; unparseable or non-finite values become 0."""
        try:
            value = float(v)
        except (TypeError, ValueError):
            return 0.0
        if not math.isfinite(value):
            return 0.0
        return min(max(value, 0.0), 1.0)

    @field_validator("story_type", mode="before")
    @classmethod
    def coerce_story_type(cls, v):
        """Unknown story types default to success."""
        if isinstance(v, StoryType):
            return v
        try:
            return StoryType(str(v).strip().lower())
        except ValueError:
            logger.debug(f"Unknown story type {v!r}, defaulting to success")
            return StoryType.SUCCESS

    @field_validator("tags", mode="before")
    @classmethod
    def coerce_tags(cls, v):
        if not isinstance(v, list):
            return []
        return [str(t).strip() for t in v if t and str(t).strip()]

    @field_validator("title", "summary", "content", mode="before")
    @classmethod
    def coerce_text(cls, v):
        return "" if v is None else str(v)


class SuccessSignal(BaseModel):
    """One success signal found in a batch of evidence."""
    type: str = Field(description="funding, growth, traction, recognition or expansion")
    confidence: float = Field(ge=0.0, le=1.0)
    description: str


class SignalReport(BaseModel):
    signals: List[SuccessSignal] = Field(default_factory=list)
    overall_score: float = Field(default=0.0, ge=0.0, le=1.0)
