"""
TRENDWIRE OUTPUT VALIDATION MODULE
JSON recovery from LLM text, per-role output schemas, and quarantine of invalid payloads

Each structured LLM output is tagged with its role (classify, trend, strategy,
extract). Payloads that do not match the role's schema are stored quarantined
and never treated as valid downstream.
"""

import re
import json
import math
import logging
from datetime import datetime
from typing import Dict, Any, Optional, List, Type
from dataclasses import dataclass, field
from enum import Enum

from pydantic import BaseModel, Field, ValidationError, field_validator

logger = logging.getLogger(__name__)


# =============================================================================
# VALIDATION RESULT TYPES
# =============================================================================

class ValidationSeverity(Enum):
    """Severity levels for validation issues"""
    WARNING = "warning"     # Usable but flagged
    ERROR = "error"         # Invalid, must not be used


@dataclass
class ValidationIssue:
    field: str
    message: str
    severity: ValidationSeverity
    actual_value: Any = None

    def to_dict(self) -> dict:
        return {
            "field": self.field,
            "message": self.message,
            "severity": self.severity.value,
            "actual_value": str(self.actual_value)[:100] if self.actual_value is not None else None,
        }


@dataclass
class ValidationResult:
    """Result of a validation operation"""
    valid: bool
    role: str = ""
    issues: List[ValidationIssue] = field(default_factory=list)
    data: Any = None  # the validated (normalized) payload, or the quarantine envelope

    def add_issue(self, field: str, message: str, severity: ValidationSeverity, actual_value: Any = None):
        self.issues.append(ValidationIssue(field, message, severity, actual_value))
        if severity == ValidationSeverity.ERROR:
            self.valid = False

    @property
    def has_errors(self) -> bool:
        return any(i.severity == ValidationSeverity.ERROR for i in self.issues)

    @property
    def error_messages(self) -> List[str]:
        return [f"{i.field}: {i.message}" for i in self.issues if i.severity == ValidationSeverity.ERROR]

    def to_dict(self) -> dict:
        return {
            "valid": self.valid,
            "role": self.role,
            "issues": [i.to_dict() for i in self.issues],
        }

    def log_issues(self, prefix: str = ""):
        for issue in self.issues:
            msg = f"{prefix}[{issue.field}] {issue.message}"
            if issue.severity == ValidationSeverity.WARNING:
                logger.warning(msg)
            else:
                logger.error(msg)


# =============================================================================
# JSON RECOVERY
# =============================================================================

def extract_json_from_text(text: str) -> Optional[Dict[str, Any]]:
    """
    Recover the first JSON object from an LLM response.

    Handles:
    - Clean JSON
    - JSON wrapped in markdown code fences
    - JSON with leading/trailing prose
    - Trailing commas
    """
    if not text:
        return None

    try:
        parsed = json.loads(text.strip())
        if isinstance(parsed, dict):
            return parsed
    except json.JSONDecodeError:
        pass

    patterns = [
        r'```json\s*([\s\S]*?)\s*```',
        r'```\s*([\s\S]*?)\s*```',
        r'\{[\s\S]*\}',
    ]

    for pattern in patterns:
        for match in re.findall(pattern, text):
            cleaned = match.strip()
            cleaned = re.sub(r',\s*}', '}', cleaned)
            cleaned = re.sub(r',\s*]', ']', cleaned)
            try:
                parsed = json.loads(cleaned)
            except json.JSONDecodeError:
                continue
            if isinstance(parsed, dict):
                return parsed

    # brace matching from the first '{'
    start_idx = text.find('{')
    if start_idx != -1:
        depth = 0
        for i, char in enumerate(text[start_idx:], start_idx):
            if char == '{':
                depth += 1
            elif char == '}':
                depth -= 1
                if depth == 0:
                    try:
                        parsed = json.loads(text[start_idx:i + 1])
                        return parsed if isinstance(parsed, dict) else None
                    except json.JSONDecodeError:
                        break

    return None


def sanitize_for_json(data: Any) -> Any:
    """Make a payload safe for a JSON column (NaN/inf → None, datetimes → ISO)"""
    if isinstance(data, float):
        return None if math.isnan(data) or math.isinf(data) else data
    if isinstance(data, datetime):
        return data.isoformat()
    if isinstance(data, dict):
        return {str(k): sanitize_for_json(v) for k, v in data.items()}
    if isinstance(data, (list, tuple)):
        return [sanitize_for_json(v) for v in data]
    return data


# =============================================================================
# ROLE SCHEMAS
# =============================================================================

CLASSIFICATION_TYPES = ("product", "spec", "price", "regulation", "case_study", "recruitment")

# classification types that trigger a competitor comparison
COMPARABLE_TYPES = ("product", "spec")


class ClassificationOutput(BaseModel):
    type: str
    company: str = ""
    product: Optional[str] = None
    price_band: Optional[str] = None
    specs: List[str] = Field(default_factory=list)
    topic_tags: List[str] = Field(default_factory=list)

    @field_validator("type")
    @classmethod
    def normalize_type(cls, v: str) -> str:
        v = (v or "").strip().lower().replace(" ", "_")
        if v not in CLASSIFICATION_TYPES:
            raise ValueError(f"type must be one of {', '.join(CLASSIFICATION_TYPES)}")
        return v

    @field_validator("company", mode="before")
    @classmethod
    def company_to_str(cls, v):
        return "" if v is None else str(v)

    @field_validator("specs", "topic_tags", mode="before")
    @classmethod
    def coerce_str_list(cls, v):
        if v is None:
            return []
        if isinstance(v, str):
            v = [v]
        return [str(item).strip() for item in v if str(item).strip()]


class TrendItem(BaseModel):
    keyword: str
    frequency: int = 0
    change_rate: float = 0.0
    hypothesis: str = ""
    next_observation: str = ""


class TrendSummaryOutput(BaseModel):
    trends: List[TrendItem] = Field(default_factory=list)
    summary: str


class StrategyAction(BaseModel):
    action: str
    owner: str = ""
    deadline: str = ""
    reason: str = ""


class StrategyOutput(BaseModel):
    sales: List[StrategyAction] = Field(default_factory=list)
    design: List[StrategyAction] = Field(default_factory=list)
    marketing: List[StrategyAction] = Field(default_factory=list)
    product: List[StrategyAction] = Field(default_factory=list)


class ImageRef(BaseModel):
    url: str
    caption: str = ""


class ExtractionOutput(BaseModel):
    text: str
    tables: List[str] = Field(default_factory=list)
    images: List[ImageRef] = Field(default_factory=list)


ROLE_SCHEMAS: Dict[str, Type[BaseModel]] = {
    "classify": ClassificationOutput,
    "trend": TrendSummaryOutput,
    "strategy": StrategyOutput,
    "extract": ExtractionOutput,
}


# =============================================================================
# VALIDATION ENTRY POINTS
# =============================================================================

def quarantine(payload: Any, errors: List[str]) -> Dict[str, Any]:
    """Wrap a payload that failed validation so it is stored but never trusted"""
    return {"quarantined": True, "raw": sanitize_for_json(payload), "errors": errors}


def is_quarantined(payload: Any) -> bool:
    return isinstance(payload, dict) and payload.get("quarantined") is True


def validate_structured_output(role: str, payload: Any) -> ValidationResult:
    """
    Validate a parsed LLM payload against the schema registered for `role`.

    On success `result.data` is the normalized dict. On failure it is the
    quarantine envelope and `result.valid` is False.
    """
    result = ValidationResult(valid=True, role=role)
    schema = ROLE_SCHEMAS.get(role)

    if schema is None:
        result.add_issue("role", f"No schema registered for role '{role}'", ValidationSeverity.ERROR, role)
        result.data = quarantine(payload, result.error_messages)
        return result

    if not isinstance(payload, dict):
        result.add_issue("payload", "Response did not contain a JSON object", ValidationSeverity.ERROR, payload)
        result.data = quarantine(payload, result.error_messages)
        return result

    try:
        model = schema.model_validate(payload)
    except ValidationError as e:
        for err in e.errors():
            loc = ".".join(str(p) for p in err.get("loc", ())) or "payload"
            result.add_issue(loc, err.get("msg", "invalid"), ValidationSeverity.ERROR, err.get("input"))
        result.data = quarantine(payload, result.error_messages)
        return result

    result.data = sanitize_for_json(model.model_dump())
    return result


def parse_structured_output(role: str, text: str) -> ValidationResult:
    """Recover JSON from raw LLM text and validate it for `role`"""
    payload = extract_json_from_text(text)
    if payload is None:
        result = ValidationResult(valid=True, role=role)
        result.add_issue("payload", "No JSON object found in response", ValidationSeverity.ERROR, text[:100] if text else None)
        result.data = quarantine(text, result.error_messages)
        return result
    return validate_structured_output(role, payload)
