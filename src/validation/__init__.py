"""Cross-referencing validation of startup claims."""

from .validator import (
    APPROVED,
    NEEDS_REVIEW,
    REJECTED,
    DataValidator,
    DefaultProbes,
    ValidationProbes,
    ValidationResult,
    ValidatorConfig,
    data_quality_report,
    validate_data_consistency,
)

__all__ = [
    "APPROVED",
    "NEEDS_REVIEW",
    "REJECTED",
    "DataValidator",
    "DefaultProbes",
    "ValidationProbes",
    "ValidationResult",
    "ValidatorConfig",
    "data_quality_report",
    "validate_data_consistency",
]
