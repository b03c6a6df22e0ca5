"""
Pytest Configuration and Fixtures

Provides shared fixtures and configuration for all tests:
- In-memory Supabase client fake (unique constraints, upsert, range paging)
- Scripted LLM gateway that answers per analysis role
- Recording chat notifier
"""

import copy
import json
import os
import sys
import uuid
from typing import Any, Callable, Dict, List, Optional
from unittest.mock import Mock

import pytest
from postgrest.exceptions import APIError

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.dirname(__file__))))

from trendwire.llm import LLMGateway, LLMResponse, compute_cost


# =============================================================================
# MOCK SUPABASE CLIENT
# =============================================================================

UNIQUE_KEYS = {
    "sources_raw": [("url",), ("content_hash",)],
    "trend_counters": [("date", "keyword", "source_category")],
    "usage_counters": [("day", "model_name")],
}


class MockSupabaseQuery:
    """One query chain against a MockSupabaseTable"""

    def __init__(self, table: "MockSupabaseTable"):
        self.table = table
        self._filters = []
        self._limit = None
        self._range = None
        self._order = []
        self._write = None

    # -- writes --------------------------------------------------------------

    def insert(self, data) -> "MockSupabaseQuery":
        self._write = ("insert", data if isinstance(data, list) else [data], None)
        return self

    def upsert(self, data, on_conflict: str = "", **kwargs) -> "MockSupabaseQuery":
        self._write = ("upsert", data if isinstance(data, list) else [data], on_conflict)
        return self

    # -- reads ---------------------------------------------------------------

    def select(self, columns: str = "*") -> "MockSupabaseQuery":
        return self

    def eq(self, column: str, value: Any) -> "MockSupabaseQuery":
        self._filters.append(lambda r: r.get(column) == value)
        return self

    def gte(self, column: str, value: Any) -> "MockSupabaseQuery":
        self._filters.append(lambda r: r.get(column) is not None and r.get(column) >= value)
        return self

    def lte(self, column: str, value: Any) -> "MockSupabaseQuery":
        self._filters.append(lambda r: r.get(column) is not None and r.get(column) <= value)
        return self

    def order(self, column: str, desc: bool = False) -> "MockSupabaseQuery":
        self._order.append((column, desc))
        return self

    def limit(self, n: int) -> "MockSupabaseQuery":
        self._limit = n
        return self

    def range(self, start: int, end: int) -> "MockSupabaseQuery":
        self._range = (start, end)
        return self

    def execute(self) -> Mock:
        response = Mock()
        if self._write:
            response.data = self.table.write(*self._write)
            return response

        results = [copy.deepcopy(r) for r in self.table.rows if all(f(r) for f in self._filters)]
        for column, desc in reversed(self._order):
            results.sort(key=lambda r: r.get(column) or 0, reverse=desc)
        if self._range:
            results = results[self._range[0]:self._range[1] + 1]
        if self._limit is not None:
            results = results[:self._limit]
        response.data = results
        return response


class MockSupabaseTable:
    """Rows plus the unique constraints of the real schema"""

    def __init__(self, name: str):
        self.name = name
        self.rows: List[Dict[str, Any]] = []

    def _conflict(self, row: Dict[str, Any], keys) -> Optional[Dict[str, Any]]:
        for existing in self.rows:
            if all(existing.get(k) == row.get(k) for k in keys):
                return existing
        return None

    def write(self, mode: str, rows: List[Dict[str, Any]], on_conflict: Optional[str]):
        written = []
        for row in rows:
            row = copy.deepcopy(row)
            if mode == "upsert" and on_conflict:
                existing = self._conflict(row, tuple(on_conflict.split(",")))
                if existing is not None:
                    existing.update(row)
                    written.append(copy.deepcopy(existing))
                    continue
            for keys in UNIQUE_KEYS.get(self.name, []):
                if self._conflict(row, keys) is not None:
                    raise APIError({
                        "message": f'duplicate key value violates unique constraint on {",".join(keys)}',
                        "code": "23505",
                        "hint": None,
                        "details": None,
                    })
            row.setdefault("id", str(uuid.uuid4()))
            self.rows.append(row)
            written.append(copy.deepcopy(row))
        return written


class MockSupabaseClient:
    """Mock Supabase client for testing"""

    def __init__(self):
        self.tables: Dict[str, MockSupabaseTable] = {}

    def table(self, name: str) -> MockSupabaseQuery:
        if name not in self.tables:
            self.tables[name] = MockSupabaseTable(name)
        return MockSupabaseQuery(self.tables[name])

    def get_table_data(self, name: str) -> List[Dict]:
        return self.tables[name].rows if name in self.tables else []


# =============================================================================
# SCRIPTED LLM GATEWAY
# =============================================================================

PROMPT_ROLES = [
    ("Extract the readable article", "extract"),
    ("Classify the following content", "classify"),
    ("Compare the product", "compare"),
    ("Find the trends", "trend"),
    ("Propose concrete next actions", "strategy"),
    ("You are the editor", "newspaper"),
]

DEFAULT_RESPONSES = {
    "classify": json.dumps({
        "type": "product",
        "company": "Acme Homes",
        "product": "Smart Roof",
        "price_band": "20-30M JPY",
        "specs": ["solar", "battery"],
        "topic_tags": ["smart home", "solar"],
    }),
    "compare": "### Comparison\n| Item | Before | Now | Difference |\n\n1. **Sales**: ...",
    "trend": json.dumps({
        "trends": [{"keyword": "solar", "frequency": 3, "change_rate": 1.5,
                    "hypothesis": "rising", "next_observation": "watch"}],
        "summary": "Solar is rising",
    }),
    "strategy": json.dumps({
        "sales": [{"action": "Pitch solar", "owner": "sales", "deadline": "this week", "reason": "demand"}],
        "design": [], "marketing": [], "product": [],
    }),
    "newspaper": "# Trend Insight Daily\n\nSolar roofs lead today.\nAcme launched Smart Roof.\nBattery bundles are next.\nFourth line.",
    "extract": json.dumps({"text": "extracted by model", "tables": [], "images": []}),
}


def prompt_role(prompt: str) -> str:
    for marker, role in PROMPT_ROLES:
        if prompt.lstrip().startswith(marker):
            return role
    return "unknown"


class ScriptedGateway(LLMGateway):
    """
    Answers each prompt by role.

    `responses[role]` may be a string, or a callable taking the prompt and
    returning a string or raising.
    """
    name = "scripted"

    def __init__(self, responses: Optional[Dict[str, Any]] = None, model: str = "claude-3-5-sonnet-20241022",
                 tokens_in: int = 1000, tokens_out: int = 500):
        self.responses = {**DEFAULT_RESPONSES, **(responses or {})}
        self.model = model
        self.tokens_in = tokens_in
        self.tokens_out = tokens_out
        self.calls: List[Dict[str, Any]] = []

    def invoke(self, prompt, system=None, model=None, max_tokens=None) -> LLMResponse:
        role = prompt_role(prompt)
        self.calls.append({"role": role, "prompt": prompt, "system": system, "max_tokens": max_tokens})
        answer = self.responses.get(role, "")
        if callable(answer):
            answer = answer(prompt)
        return LLMResponse(
            text=answer,
            tokens_in=self.tokens_in,
            tokens_out=self.tokens_out,
            cost_usd=compute_cost(self.model, self.tokens_in, self.tokens_out),
            model=self.model,
        )

    def roles(self) -> List[str]:
        return [c["role"] for c in self.calls]


class RecordingNotifier:
    """Stands in for ChatNotifier; records every message"""

    def __init__(self, delivered: bool = True):
        self.delivered = delivered
        self.successes: List[Dict[str, Any]] = []
        self.errors: List[Dict[str, Any]] = []
        self.reports: List[Dict[str, Any]] = []

    def notify_success(self, job, summary, metrics=None):
        self.successes.append({"job": job, "summary": summary, "metrics": metrics})
        return self.delivered

    def notify_error(self, job, error, details=None):
        self.errors.append({"job": job, "error": error, "details": details})
        return self.delivered

    def send_daily_report(self, summary, web_url=None):
        self.reports.append({"summary": summary, "web_url": web_url})
        return self.delivered


# =============================================================================
# FIXTURES
# =============================================================================

ISOLATED_ENV = [
    "SUPABASE_URL", "SUPABASE_KEY", "SUPABASE_SERVICE_KEY", "ANTHROPIC_API_KEY",
    "GEMINI_API_KEY", "CHAT_WEBHOOK_URL", "LLM_PRICE_TABLE_JSON", "PUBLIC_BASE_URL",
    "TRENDWIRE_TIMEZONE", "TRENDWIRE_CONFIG_DIR", "DEFAULT_CREDIT_BALANCE", "CREDIT_PROVIDER",
]


@pytest.fixture(autouse=True)
def isolated_state(monkeypatch):
    """Clean environment and memoized clients around each test"""
    from trendwire.config import get_settings
    from trendwire.llm import reset_llm_clients
    from trendwire.shared.resilience import reset_all
    from trendwire.storage import reset_storage

    for name in ISOLATED_ENV:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("REQUEST_DELAY_SECONDS", "0")

    get_settings.cache_clear()
    reset_all()
    reset_storage()
    reset_llm_clients()
    yield
    get_settings.cache_clear()
    reset_all()
    reset_storage()
    reset_llm_clients()


@pytest.fixture
def sqlite_store():
    from trendwire.storage import SQLiteStorage
    return SQLiteStorage(":memory:")


@pytest.fixture
def supabase_client():
    return MockSupabaseClient()


@pytest.fixture
def supabase_store(supabase_client):
    from trendwire.storage import SupabaseStorage
    return SupabaseStorage(client=supabase_client)


@pytest.fixture(params=["sqlite", "supabase"])
def store(request):
    """Both storage backends"""
    from trendwire.storage import SQLiteStorage, SupabaseStorage
    if request.param == "sqlite":
        return SQLiteStorage(":memory:")
    return SupabaseStorage(client=MockSupabaseClient())


@pytest.fixture
def gateway():
    return ScriptedGateway()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def make_raw():
    """Factory for RawContent rows with a correct content hash"""
    from trendwire.dedup import fingerprint
    from trendwire.models import RawContent

    def _make(url: str, content: str, source_type: str = "media", **metadata):
        return RawContent(
            source_type=source_type,
            url=url,
            content=content,
            content_hash=fingerprint(content),
            metadata=metadata,
        )
    return _make


# =============================================================================
# MARKERS
# =============================================================================

def pytest_configure(config):
    config.addinivalue_line("markers", "integration: marks tests as integration tests")
    config.addinivalue_line("markers", "unit: marks tests as unit tests")


def pytest_collection_modifyitems(config, items):
    for item in items:
        if "integration" in item.nodeid or "e2e" in item.nodeid:
            item.add_marker(pytest.mark.integration)
        else:
            item.add_marker(pytest.mark.unit)


@pytest.fixture
def make_gateway():
    """ScriptedGateway factory for tests that need custom answers"""
    return ScriptedGateway


@pytest.fixture
def make_notifier():
    return RecordingNotifier
