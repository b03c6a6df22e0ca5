"""
Trendwire configuration

Environment settings come from the process environment (and a local .env via
python-dotenv). Crawl targets come from two JSON files in the config directory
(the bundled trendwire/targets/ unless TRENDWIRE_CONFIG_DIR is set):

    companies.json   [{"name": ..., "domain": ..., "paths": ["/news", ...]}]
    sources.json     {"press_release_queries": [...],
                      "media_rss": [{"name": ..., "url": ...}],
                      "social_rss": {"tags": [...], "provider": ..., "urls": [...]}}
"""

import os
import json
import logging
from dataclasses import dataclass
from datetime import datetime
from functools import lru_cache
from pathlib import Path
from typing import List, Optional
from zoneinfo import ZoneInfo

from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError

from .shared.resilience import ConfigurationError

load_dotenv()
logger = logging.getLogger(__name__)

DEFAULT_CONFIG_DIR = Path(__file__).resolve().parent / "targets"


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw in (None, ""):
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigurationError(name, f"{name} must be a number, got {raw!r}")


def _int_env(name: str, default: int) -> int:
    return int(_float_env(name, default))


# =============================================================================
# ENVIRONMENT SETTINGS
# =============================================================================

@dataclass
class Settings:
    supabase_url: Optional[str]
    supabase_key: Optional[str]
    sqlite_path: str
    anthropic_api_key: Optional[str]
    gemini_api_key: Optional[str]
    chat_webhook_url: Optional[str]
    timezone: str
    claude_model: str
    gemini_model: str
    request_delay_seconds: float
    default_credit_balance: float
    credit_provider: str
    public_base_url: Optional[str]
    config_dir: Path
    price_table_json: Optional[str]
    daily_run_hour: int

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            supabase_url=os.getenv("SUPABASE_URL"),
            supabase_key=os.getenv("SUPABASE_KEY") or os.getenv("SUPABASE_SERVICE_KEY"),
            sqlite_path=os.getenv("TRENDWIRE_SQLITE_PATH", "trendwire_local.db"),
            anthropic_api_key=os.getenv("ANTHROPIC_API_KEY"),
            gemini_api_key=os.getenv("GEMINI_API_KEY"),
            chat_webhook_url=os.getenv("CHAT_WEBHOOK_URL"),
            timezone=os.getenv("TRENDWIRE_TIMEZONE", "Asia/Tokyo"),
            claude_model=os.getenv("CLAUDE_MODEL", "claude-3-5-sonnet-20241022"),
            gemini_model=os.getenv("GEMINI_MODEL", "gemini-1.5-flash"),
            request_delay_seconds=_float_env("REQUEST_DELAY_SECONDS", 1.0),
            default_credit_balance=_float_env("DEFAULT_CREDIT_BALANCE", 5.0),
            credit_provider=os.getenv("CREDIT_PROVIDER", "anthropic"),
            public_base_url=os.getenv("PUBLIC_BASE_URL"),
            config_dir=Path(os.getenv("TRENDWIRE_CONFIG_DIR") or DEFAULT_CONFIG_DIR),
            price_table_json=os.getenv("LLM_PRICE_TABLE_JSON"),
            daily_run_hour=_int_env("DAILY_RUN_HOUR", 6),
        )

    @property
    def supabase_configured(self) -> bool:
        return bool(self.supabase_url and self.supabase_key)


@lru_cache
def get_settings() -> Settings:
    return Settings.from_env()


def get_timezone() -> ZoneInfo:
    return ZoneInfo(get_settings().timezone)


def now_local() -> datetime:
    return datetime.now(get_timezone())


def today_local() -> str:
    """Current calendar day (YYYY-MM-DD) in the reporting timezone"""
    return now_local().strftime("%Y-%m-%d")


# =============================================================================
# CRAWL TARGETS
# =============================================================================

class Company(BaseModel):
    name: str
    domain: str
    paths: List[str] = Field(default_factory=lambda: ["/"])


class MediaFeed(BaseModel):
    name: str
    url: str


class SocialFeeds(BaseModel):
    tags: List[str] = Field(default_factory=list)
    provider: str = "rss"
    urls: List[str] = Field(default_factory=list)


class SourcesConfig(BaseModel):
    press_release_queries: List[str] = Field(default_factory=list)
    media_rss: List[MediaFeed] = Field(default_factory=list)
    social_rss: SocialFeeds = Field(default_factory=SocialFeeds)


def _read_json(filename: str, config_dir: Optional[Path] = None):
    path = Path(config_dir or get_settings().config_dir) / filename
    if not path.exists():
        raise ConfigurationError(str(path), f"Config file not found: {path}")
    try:
        with open(path, encoding="utf-8") as f:
            return json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigurationError(str(path), f"Invalid JSON in {path}: {e}")


def load_companies(config_dir: Optional[Path] = None) -> List[Company]:
    data = _read_json("companies.json", config_dir)
    try:
        return [Company.model_validate(item) for item in data]
    except (ValidationError, TypeError) as e:
        raise ConfigurationError("companies.json", f"Invalid companies.json: {e}")


def load_sources(config_dir: Optional[Path] = None) -> SourcesConfig:
    data = _read_json("sources.json", config_dir)
    try:
        return SourcesConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigurationError("sources.json", f"Invalid sources.json: {e}")
