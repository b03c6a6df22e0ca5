"""
Record types that move through the pipeline.

Each record maps one-to-one onto a store table; `to_dict()` gives the row.
"""

import uuid
from datetime import datetime, timezone
from typing import List, Optional, Dict, Any
from dataclasses import dataclass, field, asdict


# =============================================================================
# ENUMERATIONS
# =============================================================================

SOURCE_TYPES = ("press_release", "media", "company_site", "social")

EXTRACTOR_RULE = "rule"
EXTRACTOR_LLM = "llm"
EXTRACTOR_NONE = "none"
EXTRACTORS = (EXTRACTOR_RULE, EXTRACTOR_LLM, EXTRACTOR_NONE)

ROLE_CLASSIFY = "classify"
ROLE_COMPARE = "compare"
ROLE_TREND = "trend"
ROLE_STRATEGY = "strategy"
ROLE_NEWSPAPER = "newspaper"
ROLES = (ROLE_CLASSIFY, ROLE_COMPARE, ROLE_TREND, ROLE_STRATEGY, ROLE_NEWSPAPER)

TREND_SOURCE_CATEGORIES = ("sns", "media", "company")

# anchor for aggregate outputs produced from an empty batch
SENTINEL_EXTRACT_ID = "00000000-0000-0000-0000-000000000000"

EXTRACTOR_VERSION = "v1"


def new_id() -> str:
    return str(uuid.uuid4())


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def trend_source_category(source_type: Optional[str], extractor_used: Optional[str] = None) -> str:
    """
    Map a content source onto the category trend counters are kept under.

    social → sns, company_site → company, everything else → media. Rows that
    predate the source_type column fall back on the extractor: llm → sns.
    """
    if source_type == "social":
        return "sns"
    if source_type == "company_site":
        return "company"
    if source_type in ("press_release", "media"):
        return "media"
    return "sns" if extractor_used == EXTRACTOR_LLM else "media"


# =============================================================================
# RECORDS
# =============================================================================

@dataclass
class FetchedItem:
    """One item returned by a fetcher, before fingerprinting"""
    source_type: str
    url: str
    content: str
    title: str = ""
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class RawContent:
    source_type: str
    url: str
    content: str
    content_hash: str
    metadata: Dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=new_id)
    fetched_at: str = field(default_factory=utc_now_iso)

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class ExtractedText:
    raw_content_id: str
    text: str
    tables: List[str] = field(default_factory=list)
    images: List[Dict[str, str]] = field(default_factory=list)
    extractor_used: str = EXTRACTOR_RULE
    extractor_version: str = EXTRACTOR_VERSION
    source_type: Optional[str] = None
    id: str = field(default_factory=new_id)
    created_at: str = field(default_factory=utc_now_iso)

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class AnalysisOutput:
    extracted_text_id: str
    role: str
    model_name: str
    output_markdown: Optional[str] = None
    output_structured: Optional[Dict[str, Any]] = None
    tokens_in: int = 0
    tokens_out: int = 0
    cost_usd: float = 0.0
    id: str = field(default_factory=new_id)
    created_at: str = field(default_factory=utc_now_iso)

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class UsageMetrics:
    today_cost: float = 0.0
    today_tokens_in: int = 0
    today_tokens_out: int = 0
    today_calls: int = 0
    avg_7d_cost: float = 0.0
    balance: float = 0.0
    remaining_reports: int = 0
    month_total: float = 0.0

    def to_dict(self) -> dict:
        return asdict(self)
