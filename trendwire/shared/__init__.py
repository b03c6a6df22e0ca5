"""
Trendwire Shared Utilities

This package contains shared infrastructure:
- Error taxonomy for the pipeline
- Per-source crawl throttle
- Health tracking for external services
- HTTP session management with connection pooling
- LLM output recovery and per-role validation
"""

from .resilience import (
    # Exceptions
    PipelineError,
    ConfigurationError,
    UpstreamError,
    StageFailure,

    # Throttle
    SourceThrottle,
    get_throttle,

    # Decorators
    tracked_call,

    # HTTP Session
    create_http_session,
    get_http_session,

    # Health Tracking
    ServiceHealth,
    get_health_tracker,
    get_all_health_status,

    # Utilities
    collect_with_partial_failure,
    reset_all,
    get_system_status,
)

from .validation import (
    ValidationSeverity,
    ValidationIssue,
    ValidationResult,
    ClassificationOutput,
    TrendSummaryOutput,
    StrategyOutput,
    ExtractionOutput,
    CLASSIFICATION_TYPES,
    COMPARABLE_TYPES,
    extract_json_from_text,
    sanitize_for_json,
    quarantine,
    is_quarantined,
    validate_structured_output,
    parse_structured_output,
)

__all__ = [
    "PipelineError",
    "ConfigurationError",
    "UpstreamError",
    "StageFailure",
    "SourceThrottle",
    "get_throttle",
    "tracked_call",
    "create_http_session",
    "get_http_session",
    "ServiceHealth",
    "get_health_tracker",
    "get_all_health_status",
    "collect_with_partial_failure",
    "reset_all",
    "get_system_status",
    "ValidationSeverity",
    "ValidationIssue",
    "ValidationResult",
    "ClassificationOutput",
    "TrendSummaryOutput",
    "StrategyOutput",
    "ExtractionOutput",
    "CLASSIFICATION_TYPES",
    "COMPARABLE_TYPES",
    "extract_json_from_text",
    "sanitize_for_json",
    "quarantine",
    "is_quarantined",
    "validate_structured_output",
    "parse_structured_output",
]
