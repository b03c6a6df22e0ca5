"""
TRENDWIRE STORAGE LAYER
Supabase/PostgreSQL storage with a local SQLite fallback

Tables:
- sources_raw: Crawled content, unique by url and by content_hash
- extracts: Flattened text/tables/images, at most one per raw row
- ai_outputs: Every LLM result, tagged by role
- trend_counters: Keyword counts per (date, keyword, source_category)
- usage_counters: Calls, tokens and spend per (day, model_name)
- credit_balance: Append-only provider balance snapshots
"""

import json
import math
import sqlite3
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from threading import Lock
from typing import List, Optional, Dict, Any, Iterable, Iterator, Callable

from postgrest.exceptions import APIError

from .config import get_settings, today_local, now_local
from .models import (
    RawContent,
    ExtractedText,
    AnalysisOutput,
    UsageMetrics,
    ROLE_CLASSIFY,
    new_id,
    utc_now_iso,
)
from .shared.resilience import ConfigurationError
from .shared.validation import sanitize_for_json

logger = logging.getLogger(__name__)

# Postgres unique_violation
UNIQUE_VIOLATION = "23505"

# floor for the per-report cost estimate when nothing has been spent yet
MIN_REPORT_COST = 0.01


# =============================================================================
# SQL SCHEMA DEFINITIONS
# =============================================================================

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS sources_raw (
    id UUID PRIMARY KEY,
    source_type VARCHAR(32) NOT NULL,
    url TEXT NOT NULL UNIQUE,
    content TEXT NOT NULL,
    content_hash CHAR(64) NOT NULL UNIQUE,
    metadata JSONB DEFAULT '{}'::jsonb,
    fetched_at TIMESTAMPTZ DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS extracts (
    id UUID PRIMARY KEY,
    raw_content_id UUID NOT NULL REFERENCES sources_raw(id),
    text TEXT NOT NULL,
    tables JSONB DEFAULT '[]'::jsonb,
    images JSONB DEFAULT '[]'::jsonb,
    extractor_used VARCHAR(16) NOT NULL,
    extractor_version VARCHAR(16),
    source_type VARCHAR(32),
    created_at TIMESTAMPTZ DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS ai_outputs (
    id UUID PRIMARY KEY,
    extracted_text_id UUID NOT NULL,
    role VARCHAR(16) NOT NULL,
    model_name VARCHAR(100) NOT NULL,
    output_markdown TEXT,
    output_structured JSONB,
    tokens_in INTEGER DEFAULT 0,
    tokens_out INTEGER DEFAULT 0,
    cost_usd NUMERIC(12, 6) DEFAULT 0,
    created_at TIMESTAMPTZ DEFAULT NOW(),
    CONSTRAINT valid_role CHECK (role IN ('classify', 'compare', 'trend', 'strategy', 'newspaper'))
);

CREATE TABLE IF NOT EXISTS trend_counters (
    date DATE NOT NULL,
    keyword TEXT NOT NULL,
    source_category VARCHAR(16) NOT NULL,
    count INTEGER NOT NULL DEFAULT 0,
    metadata JSONB,
    updated_at TIMESTAMPTZ DEFAULT NOW(),
    PRIMARY KEY (date, keyword, source_category)
);

CREATE TABLE IF NOT EXISTS usage_counters (
    day DATE NOT NULL,
    model_name VARCHAR(100) NOT NULL,
    calls INTEGER NOT NULL DEFAULT 0,
    tokens_in BIGINT NOT NULL DEFAULT 0,
    tokens_out BIGINT NOT NULL DEFAULT 0,
    cost_usd NUMERIC(12, 6) NOT NULL DEFAULT 0,
    PRIMARY KEY (day, model_name)
);

CREATE TABLE IF NOT EXISTS credit_balance (
    id UUID PRIMARY KEY,
    provider VARCHAR(32) NOT NULL,
    balance_usd NUMERIC(12, 4) NOT NULL,
    captured_at TIMESTAMPTZ DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS idx_sources_raw_fetched ON sources_raw(fetched_at DESC);
CREATE INDEX IF NOT EXISTS idx_extracts_raw ON extracts(raw_content_id);
CREATE INDEX IF NOT EXISTS idx_ai_outputs_role ON ai_outputs(role, created_at DESC);
CREATE INDEX IF NOT EXISTS idx_ai_outputs_extract ON ai_outputs(extracted_text_id);
CREATE INDEX IF NOT EXISTS idx_credit_balance_provider ON credit_balance(provider, captured_at DESC);
"""


# =============================================================================
# STORE INTERFACE
# =============================================================================

class ContentStore(ABC):
    """
    Persistence for every pipeline stage.

    Backends implement the row-level operations; usage metering and the
    usage metrics read model are shared.
    """

    # -------------------------------------------------------------------------
    # RAW CONTENT
    # -------------------------------------------------------------------------

    @abstractmethod
    def insert_raw(self, raw: RawContent) -> Optional[str]:
        """Insert a raw row; returns its id, or None if url or content_hash already exist"""

    @abstractmethod
    def list_existing_urls(self, source_type: Optional[str] = None) -> List[str]:
        ...

    @abstractmethod
    def list_existing_hashes(self) -> List[str]:
        ...

    @abstractmethod
    def list_unprocessed_raw(self, limit: int = 100) -> List[Dict[str, Any]]:
        """Raw rows with no extract yet, newest first"""

    # -------------------------------------------------------------------------
    # EXTRACTS
    # -------------------------------------------------------------------------

    @abstractmethod
    def insert_extract(self, extract: ExtractedText) -> str:
        ...

    @abstractmethod
    def list_unanalyzed_extracts(self, limit: int = 30, exclude: Iterable[str] = ()) -> List[Dict[str, Any]]:
        """Extracts with no classify output yet, newest first, skipping ids in exclude"""

    @abstractmethod
    def get_extract(self, extract_id: str) -> Optional[Dict[str, Any]]:
        ...

    # -------------------------------------------------------------------------
    # AI OUTPUTS
    # -------------------------------------------------------------------------

    @abstractmethod
    def _insert_output_row(self, row: Dict[str, Any]) -> str:
        ...

    def insert_analysis_output(self, output: AnalysisOutput) -> str:
        """Persist an LLM result and add it to today's usage counter"""
        row = output.to_dict()
        if row.get("output_structured") is not None:
            row["output_structured"] = sanitize_for_json(row["output_structured"])
        output_id = self._insert_output_row(row)
        self.increment_usage_counter(
            today_local(),
            output.model_name,
            calls=1,
            tokens_in=output.tokens_in,
            tokens_out=output.tokens_out,
            cost_usd=output.cost_usd,
        )
        return output_id

    @abstractmethod
    def list_outputs_by_role(self, role: str, limit: int = 50) -> List[Dict[str, Any]]:
        ...

    @abstractmethod
    def list_recent_outputs(self, since: datetime) -> List[Dict[str, Any]]:
        ...

    # -------------------------------------------------------------------------
    # TREND COUNTERS
    # -------------------------------------------------------------------------

    @abstractmethod
    def upsert_trend_counter(
        self,
        date: str,
        keyword: str,
        source_category: str,
        delta: int = 1,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> int:
        """Add `delta` to the counter for (date, keyword, source_category); returns the new count"""

    @abstractmethod
    def list_trend_counters(self, days: int = 7) -> List[Dict[str, Any]]:
        ...

    # -------------------------------------------------------------------------
    # USAGE COUNTERS
    # -------------------------------------------------------------------------

    @abstractmethod
    def increment_usage_counter(
        self,
        day: str,
        model_name: str,
        calls: int = 1,
        tokens_in: int = 0,
        tokens_out: int = 0,
        cost_usd: float = 0.0,
    ) -> Dict[str, Any]:
        ...

    @abstractmethod
    def get_usage_counter(self, day: str, model_name: str) -> Optional[Dict[str, Any]]:
        ...

    @abstractmethod
    def list_usage_counters(self, since_day: str) -> List[Dict[str, Any]]:
        ...

    # -------------------------------------------------------------------------
    # CREDIT BALANCE
    # -------------------------------------------------------------------------

    @abstractmethod
    def insert_credit_balance(self, provider: str, balance_usd: float) -> str:
        ...

    @abstractmethod
    def get_latest_credit_balance(self, provider: str) -> Optional[float]:
        ...

    @abstractmethod
    def ping(self) -> bool:
        """Cheap round-trip used by the health endpoint"""

    # -------------------------------------------------------------------------
    # USAGE METRICS
    # -------------------------------------------------------------------------

    def read_usage_metrics(self) -> UsageMetrics:
        settings = get_settings()
        now = now_local()
        today = now.strftime("%Y-%m-%d")
        week_start = (now - timedelta(days=7)).strftime("%Y-%m-%d")
        month_start = now.strftime("%Y-%m-01")

        rows = self.list_usage_counters(min(week_start, month_start))

        today_rows = [r for r in rows if str(r["day"]) == today]
        week_rows = [r for r in rows if str(r["day"]) >= week_start]
        month_rows = [r for r in rows if str(r["day"]) >= month_start]

        today_cost = sum(float(r.get("cost_usd") or 0) for r in today_rows)
        if week_rows:
            avg_7d = sum(float(r.get("cost_usd") or 0) for r in week_rows) / 7
        else:
            avg_7d = today_cost
        month_total = sum(float(r.get("cost_usd") or 0) for r in month_rows)

        balance = self.get_latest_credit_balance(settings.credit_provider)
        if balance is None:
            balance = settings.default_credit_balance

        unit_cost = max(avg_7d, today_cost, MIN_REPORT_COST)
        remaining = math.floor(balance / unit_cost)

        return UsageMetrics(
            today_cost=round(today_cost, 4),
            today_tokens_in=sum(int(r.get("tokens_in") or 0) for r in today_rows),
            today_tokens_out=sum(int(r.get("tokens_out") or 0) for r in today_rows),
            today_calls=sum(int(r.get("calls") or 0) for r in today_rows),
            avg_7d_cost=round(avg_7d, 4),
            balance=round(balance, 2),
            remaining_reports=max(remaining, 0),
            month_total=round(month_total, 4),
        )


def _trend_cutoff(days: int) -> str:
    return (now_local() - timedelta(days=days)).strftime("%Y-%m-%d")


# =============================================================================
# SUPABASE CLIENT
# =============================================================================

_supabase_client = None
_client_lock = Lock()


def get_supabase_client():
    """Process-wide Supabase client, created on first use"""
    global _supabase_client
    if _supabase_client is None:
        with _client_lock:
            if _supabase_client is None:
                settings = get_settings()
                if not settings.supabase_url:
                    raise ConfigurationError("SUPABASE_URL")
                if not settings.supabase_key:
                    raise ConfigurationError("SUPABASE_KEY")
                from supabase import create_client
                _supabase_client = create_client(settings.supabase_url, settings.supabase_key)
                logger.info("Supabase client initialized")
    return _supabase_client


class SupabaseStorage(ContentStore):
    """Storage operations using Supabase/PostgreSQL"""

    PAGE_SIZE = 1000

    def __init__(self, client=None):
        self.client = client if client is not None else get_supabase_client()

    def _iter_rows(self, build_query: Callable[[], Any]) -> Iterator[Dict[str, Any]]:
        """Page through a query with .range() past the server row cap"""
        offset = 0
        while True:
            result = build_query().range(offset, offset + self.PAGE_SIZE - 1).execute()
            batch = result.data or []
            yield from batch
            if len(batch) < self.PAGE_SIZE:
                return
            offset += self.PAGE_SIZE

    # -------------------------------------------------------------------------
    # RAW CONTENT
    # -------------------------------------------------------------------------

    def insert_raw(self, raw: RawContent) -> Optional[str]:
        try:
            result = self.client.table("sources_raw").insert(raw.to_dict()).execute()
        except APIError as e:
            if e.code == UNIQUE_VIOLATION:
                logger.debug(f"Duplicate raw content skipped: {raw.url}")
                return None
            raise
        return result.data[0]["id"] if result.data else raw.id

    def list_existing_urls(self, source_type: Optional[str] = None) -> List[str]:
        def query():
            q = self.client.table("sources_raw").select("url")
            if source_type:
                q = q.eq("source_type", source_type)
            return q
        return [row["url"] for row in self._iter_rows(query)]

    def list_existing_hashes(self) -> List[str]:
        return [
            row["content_hash"]
            for row in self._iter_rows(lambda: self.client.table("sources_raw").select("content_hash"))
        ]

    def list_unprocessed_raw(self, limit: int = 100) -> List[Dict[str, Any]]:
        processed = {
            row["raw_content_id"]
            for row in self._iter_rows(lambda: self.client.table("extracts").select("raw_content_id"))
        }
        pending = []
        rows = self._iter_rows(
            lambda: self.client.table("sources_raw").select("*").order("fetched_at", desc=True)
        )
        for row in rows:
            if row["id"] not in processed:
                pending.append(row)
                if len(pending) >= limit:
                    break
        return pending

    # -------------------------------------------------------------------------
    # EXTRACTS
    # -------------------------------------------------------------------------

    def insert_extract(self, extract: ExtractedText) -> str:
        result = self.client.table("extracts").insert(extract.to_dict()).execute()
        return result.data[0]["id"] if result.data else extract.id

    def list_unanalyzed_extracts(self, limit: int = 30, exclude: Iterable[str] = ()) -> List[Dict[str, Any]]:
        skip = set(exclude)
        skip |= {
            row["extracted_text_id"]
            for row in self._iter_rows(
                lambda: self.client.table("ai_outputs").select("extracted_text_id").eq("role", ROLE_CLASSIFY)
            )
        }
        pending = []
        rows = self._iter_rows(
            lambda: self.client.table("extracts").select("*").order("created_at", desc=True)
        )
        for row in rows:
            if row["id"] not in skip:
                pending.append(row)
                if len(pending) >= limit:
                    break
        return pending

    def get_extract(self, extract_id: str) -> Optional[Dict[str, Any]]:
        result = self.client.table("extracts").select("*").eq("id", extract_id).limit(1).execute()
        return result.data[0] if result.data else None

    # -------------------------------------------------------------------------
    # AI OUTPUTS
    # -------------------------------------------------------------------------

    def _insert_output_row(self, row: Dict[str, Any]) -> str:
        result = self.client.table("ai_outputs").insert(row).execute()
        return result.data[0]["id"] if result.data else row["id"]

    def list_outputs_by_role(self, role: str, limit: int = 50) -> List[Dict[str, Any]]:
        result = (
            self.client.table("ai_outputs")
            .select("*")
            .eq("role", role)
            .order("created_at", desc=True)
            .limit(limit)
            .execute()
        )
        return result.data or []

    def list_recent_outputs(self, since: datetime) -> List[Dict[str, Any]]:
        result = (
            self.client.table("ai_outputs")
            .select("*")
            .gte("created_at", since.astimezone(timezone.utc).isoformat())
            .order("created_at", desc=True)
            .execute()
        )
        return result.data or []

    # -------------------------------------------------------------------------
    # TREND COUNTERS
    # -------------------------------------------------------------------------

    def upsert_trend_counter(
        self,
        date: str,
        keyword: str,
        source_category: str,
        delta: int = 1,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> int:
        existing = (
            self.client.table("trend_counters")
            .select("count, metadata")
            .eq("date", date)
            .eq("keyword", keyword)
            .eq("source_category", source_category)
            .limit(1)
            .execute()
        )
        current = existing.data[0] if existing.data else {}
        count = int(current.get("count") or 0) + delta

        self.client.table("trend_counters").upsert(
            {
                "date": date,
                "keyword": keyword,
                "source_category": source_category,
                "count": count,
                "metadata": metadata if metadata is not None else current.get("metadata"),
                "updated_at": utc_now_iso(),
            },
            on_conflict="date,keyword,source_category",
        ).execute()
        return count

    def list_trend_counters(self, days: int = 7) -> List[Dict[str, Any]]:
        result = (
            self.client.table("trend_counters")
            .select("*")
            .gte("date", _trend_cutoff(days))
            .order("count", desc=True)
            .execute()
        )
        return result.data or []

    # -------------------------------------------------------------------------
    # USAGE COUNTERS
    # -------------------------------------------------------------------------

    def get_usage_counter(self, day: str, model_name: str) -> Optional[Dict[str, Any]]:
        result = (
            self.client.table("usage_counters")
            .select("*")
            .eq("day", day)
            .eq("model_name", model_name)
            .limit(1)
            .execute()
        )
        return result.data[0] if result.data else None

    def increment_usage_counter(
        self,
        day: str,
        model_name: str,
        calls: int = 1,
        tokens_in: int = 0,
        tokens_out: int = 0,
        cost_usd: float = 0.0,
    ) -> Dict[str, Any]:
        current = self.get_usage_counter(day, model_name) or {}
        row = {
            "day": day,
            "model_name": model_name,
            "calls": int(current.get("calls") or 0) + calls,
            "tokens_in": int(current.get("tokens_in") or 0) + tokens_in,
            "tokens_out": int(current.get("tokens_out") or 0) + tokens_out,
            "cost_usd": round(float(current.get("cost_usd") or 0) + cost_usd, 6),
        }
        self.client.table("usage_counters").upsert(row, on_conflict="day,model_name").execute()
        return row

    def list_usage_counters(self, since_day: str) -> List[Dict[str, Any]]:
        result = self.client.table("usage_counters").select("*").gte("day", since_day).execute()
        return result.data or []

    # -------------------------------------------------------------------------
    # CREDIT BALANCE
    # -------------------------------------------------------------------------

    def insert_credit_balance(self, provider: str, balance_usd: float) -> str:
        row = {"id": new_id(), "provider": provider, "balance_usd": balance_usd, "captured_at": utc_now_iso()}
        self.client.table("credit_balance").insert(row).execute()
        return row["id"]

    def get_latest_credit_balance(self, provider: str) -> Optional[float]:
        result = (
            self.client.table("credit_balance")
            .select("balance_usd")
            .eq("provider", provider)
            .order("captured_at", desc=True)
            .limit(1)
            .execute()
        )
        return float(result.data[0]["balance_usd"]) if result.data else None

    def ping(self) -> bool:
        self.client.table("credit_balance").select("id").limit(1).execute()
        return True


# =============================================================================
# LOCAL SQLITE FALLBACK (for development/testing)
# =============================================================================

_JSON_COLUMNS = ("metadata", "tables", "images", "output_structured")


class SQLiteStorage(ContentStore):
    """SQLite fallback for local development"""

    def __init__(self, db_path: str = "trendwire_local.db"):
        self.db_path = db_path
        self.conn = sqlite3.connect(db_path, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self._lock = Lock()
        self._init_tables()

    def _init_tables(self):
        with self._lock:
            self.conn.executescript("""
                CREATE TABLE IF NOT EXISTS sources_raw (
                    id TEXT PRIMARY KEY,
                    source_type TEXT NOT NULL,
                    url TEXT NOT NULL UNIQUE,
                    content TEXT NOT NULL,
                    content_hash TEXT NOT NULL UNIQUE,
                    metadata TEXT,
                    fetched_at TEXT
                );

                CREATE TABLE IF NOT EXISTS extracts (
                    id TEXT PRIMARY KEY,
                    raw_content_id TEXT NOT NULL,
                    text TEXT NOT NULL,
                    tables TEXT,
                    images TEXT,
                    extractor_used TEXT NOT NULL,
                    extractor_version TEXT,
                    source_type TEXT,
                    created_at TEXT
                );

                CREATE TABLE IF NOT EXISTS ai_outputs (
                    id TEXT PRIMARY KEY,
                    extracted_text_id TEXT NOT NULL,
                    role TEXT NOT NULL,
                    model_name TEXT NOT NULL,
                    output_markdown TEXT,
                    output_structured TEXT,
                    tokens_in INTEGER DEFAULT 0,
                    tokens_out INTEGER DEFAULT 0,
                    cost_usd REAL DEFAULT 0,
                    created_at TEXT
                );

                CREATE TABLE IF NOT EXISTS trend_counters (
                    date TEXT NOT NULL,
                    keyword TEXT NOT NULL,
                    source_category TEXT NOT NULL,
                    count INTEGER NOT NULL DEFAULT 0,
                    metadata TEXT,
                    updated_at TEXT,
                    PRIMARY KEY (date, keyword, source_category)
                );

                CREATE TABLE IF NOT EXISTS usage_counters (
                    day TEXT NOT NULL,
                    model_name TEXT NOT NULL,
                    calls INTEGER NOT NULL DEFAULT 0,
                    tokens_in INTEGER NOT NULL DEFAULT 0,
                    tokens_out INTEGER NOT NULL DEFAULT 0,
                    cost_usd REAL NOT NULL DEFAULT 0,
                    PRIMARY KEY (day, model_name)
                );

                CREATE TABLE IF NOT EXISTS credit_balance (
                    id TEXT PRIMARY KEY,
                    provider TEXT NOT NULL,
                    balance_usd REAL NOT NULL,
                    captured_at TEXT
                );
            """)
            self.conn.commit()

    @staticmethod
    def _encode(row: Dict[str, Any]) -> Dict[str, Any]:
        encoded = dict(row)
        for col in _JSON_COLUMNS:
            if col in encoded and encoded[col] is not None:
                encoded[col] = json.dumps(encoded[col], ensure_ascii=False)
        return encoded

    @staticmethod
    def _decode(row: sqlite3.Row) -> Dict[str, Any]:
        decoded = dict(row)
        for col in _JSON_COLUMNS:
            if isinstance(decoded.get(col), str):
                decoded[col] = json.loads(decoded[col])
        return decoded

    def _insert(self, table: str, row: Dict[str, Any]):
        encoded = self._encode(row)
        columns = ", ".join(encoded)
        placeholders = ", ".join("?" for _ in encoded)
        with self._lock:
            self.conn.execute(
                f"INSERT INTO {table} ({columns}) VALUES ({placeholders})",
                tuple(encoded.values()),
            )
            self.conn.commit()

    def _query(self, sql: str, params: tuple = ()) -> List[Dict[str, Any]]:
        with self._lock:
            cursor = self.conn.execute(sql, params)
            return [self._decode(row) for row in cursor.fetchall()]

    # -------------------------------------------------------------------------
    # RAW CONTENT
    # -------------------------------------------------------------------------

    def insert_raw(self, raw: RawContent) -> Optional[str]:
        try:
            self._insert("sources_raw", raw.to_dict())
        except sqlite3.IntegrityError:
            logger.debug(f"Duplicate raw content skipped: {raw.url}")
            return None
        return raw.id

    def list_existing_urls(self, source_type: Optional[str] = None) -> List[str]:
        if source_type:
            rows = self._query("SELECT url FROM sources_raw WHERE source_type = ?", (source_type,))
        else:
            rows = self._query("SELECT url FROM sources_raw")
        return [row["url"] for row in rows]

    def list_existing_hashes(self) -> List[str]:
        return [row["content_hash"] for row in self._query("SELECT content_hash FROM sources_raw")]

    def list_unprocessed_raw(self, limit: int = 100) -> List[Dict[str, Any]]:
        return self._query("""
            SELECT * FROM sources_raw
            WHERE id NOT IN (SELECT raw_content_id FROM extracts)
            ORDER BY fetched_at DESC
            LIMIT ?
        """, (limit,))

    # -------------------------------------------------------------------------
    # EXTRACTS
    # -------------------------------------------------------------------------

    def insert_extract(self, extract: ExtractedText) -> str:
        self._insert("extracts", extract.to_dict())
        return extract.id

    def list_unanalyzed_extracts(self, limit: int = 30, exclude: Iterable[str] = ()) -> List[Dict[str, Any]]:
        skip = list(exclude)
        skip_clause = f"AND id NOT IN ({', '.join('?' * len(skip))})" if skip else ""
        return self._query(f"""
            SELECT * FROM extracts
            WHERE id NOT IN (SELECT extracted_text_id FROM ai_outputs WHERE role = ?)
            {skip_clause}
            ORDER BY created_at DESC
            LIMIT ?
        """, (ROLE_CLASSIFY, *skip, limit))

    def get_extract(self, extract_id: str) -> Optional[Dict[str, Any]]:
        rows = self._query("SELECT * FROM extracts WHERE id = ?", (extract_id,))
        return rows[0] if rows else None

    # -------------------------------------------------------------------------
    # AI OUTPUTS
    # -------------------------------------------------------------------------

    def _insert_output_row(self, row: Dict[str, Any]) -> str:
        self._insert("ai_outputs", row)
        return row["id"]

    def list_outputs_by_role(self, role: str, limit: int = 50) -> List[Dict[str, Any]]:
        return self._query(
            "SELECT * FROM ai_outputs WHERE role = ? ORDER BY created_at DESC LIMIT ?",
            (role, limit),
        )

    def list_recent_outputs(self, since: datetime) -> List[Dict[str, Any]]:
        return self._query(
            "SELECT * FROM ai_outputs WHERE created_at >= ? ORDER BY created_at DESC",
            (since.astimezone(timezone.utc).isoformat(),),
        )

    # -------------------------------------------------------------------------
    # TREND COUNTERS
    # -------------------------------------------------------------------------

    def upsert_trend_counter(
        self,
        date: str,
        keyword: str,
        source_category: str,
        delta: int = 1,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> int:
        meta = json.dumps(metadata, ensure_ascii=False) if metadata is not None else None
        with self._lock:
            self.conn.execute("""
                INSERT INTO trend_counters (date, keyword, source_category, count, metadata, updated_at)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT (date, keyword, source_category) DO UPDATE SET
                    count = trend_counters.count + excluded.count,
                    metadata = COALESCE(excluded.metadata, trend_counters.metadata),
                    updated_at = excluded.updated_at
            """, (date, keyword, source_category, delta, meta, utc_now_iso()))
            self.conn.commit()
            row = self.conn.execute(
                "SELECT count FROM trend_counters WHERE date = ? AND keyword = ? AND source_category = ?",
                (date, keyword, source_category),
            ).fetchone()
        return int(row["count"])

    def list_trend_counters(self, days: int = 7) -> List[Dict[str, Any]]:
        return self._query(
            "SELECT * FROM trend_counters WHERE date >= ? ORDER BY count DESC",
            (_trend_cutoff(days),),
        )

    # -------------------------------------------------------------------------
    # USAGE COUNTERS
    # -------------------------------------------------------------------------

    def increment_usage_counter(
        self,
        day: str,
        model_name: str,
        calls: int = 1,
        tokens_in: int = 0,
        tokens_out: int = 0,
        cost_usd: float = 0.0,
    ) -> Dict[str, Any]:
        with self._lock:
            self.conn.execute("""
                INSERT INTO usage_counters (day, model_name, calls, tokens_in, tokens_out, cost_usd)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT (day, model_name) DO UPDATE SET
                    calls = usage_counters.calls + excluded.calls,
                    tokens_in = usage_counters.tokens_in + excluded.tokens_in,
                    tokens_out = usage_counters.tokens_out + excluded.tokens_out,
                    cost_usd = usage_counters.cost_usd + excluded.cost_usd
            """, (day, model_name, calls, tokens_in, tokens_out, cost_usd))
            self.conn.commit()
        return self.get_usage_counter(day, model_name)

    def get_usage_counter(self, day: str, model_name: str) -> Optional[Dict[str, Any]]:
        rows = self._query(
            "SELECT * FROM usage_counters WHERE day = ? AND model_name = ?",
            (day, model_name),
        )
        return rows[0] if rows else None

    def list_usage_counters(self, since_day: str) -> List[Dict[str, Any]]:
        return self._query("SELECT * FROM usage_counters WHERE day >= ?", (since_day,))

    # -------------------------------------------------------------------------
    # CREDIT BALANCE
    # -------------------------------------------------------------------------

    def insert_credit_balance(self, provider: str, balance_usd: float) -> str:
        row = {"id": new_id(), "provider": provider, "balance_usd": balance_usd, "captured_at": utc_now_iso()}
        self._insert("credit_balance", row)
        return row["id"]

    def get_latest_credit_balance(self, provider: str) -> Optional[float]:
        rows = self._query(
            "SELECT balance_usd FROM credit_balance WHERE provider = ? ORDER BY captured_at DESC LIMIT 1",
            (provider,),
        )
        return float(rows[0]["balance_usd"]) if rows else None

    def ping(self) -> bool:
        self._query("SELECT 1 AS ok")
        return True


# =============================================================================
# STORAGE FACTORY
# =============================================================================

_storage: Optional[ContentStore] = None
_storage_lock = Lock()


def get_storage() -> ContentStore:
    """Supabase when configured, otherwise the local SQLite file"""
    global _storage
    if _storage is None:
        with _storage_lock:
            if _storage is None:
                settings = get_settings()
                if settings.supabase_configured:
                    _storage = SupabaseStorage()
                else:
                    logger.info(f"Using SQLite fallback storage at {settings.sqlite_path}")
                    _storage = SQLiteStorage(settings.sqlite_path)
    return _storage


def reset_storage():
    """Drop the memoized store and Supabase client (for testing)"""
    global _storage, _supabase_client
    with _storage_lock:
        _storage = None
    with _client_lock:
        _supabase_client = None
