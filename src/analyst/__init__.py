from .schemas import (
    KeyMetrics,
    SignalReport,
    StoryAnalysis,
    StoryType,
)
from .generator import (
    AnthropicTextService,
    ContentGenerator,
    GenerationFailure,
    Narrative,
    StructuredGenerator,
    TextGenerationService,
    detect_success_signals,
    extract_key_metrics,
    fallback_narrative,
    merge_key_metrics,
    narrative_or_fallback,
)

__all__ = [
    "KeyMetrics",
    "SignalReport",
    "StoryAnalysis",
    "StoryType",
    "AnthropicTextService",
    "ContentGenerator",
    "GenerationFailure",
    "Narrative",
    "StructuredGenerator",
    "TextGenerationService",
    "detect_success_signals",
    "extract_key_metrics",
    "fallback_narrative",
    "merge_key_metrics",
    "narrative_or_fallback",
]
