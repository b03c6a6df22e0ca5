"""
Trendwire: industry trend monitoring pipeline

Modules:
- aggregator: Press release, media RSS, company site and social RSS fetchers
- dedup: Content fingerprints and duplicate checks
- extractor: Rule-based and LLM-assisted text/table/image extraction
- llm: Claude and Gemini gateways with cost accounting
- processor: Classification, comparison, trend counters and summaries
- newspaper: Daily edition assembly and chat summary
- notifier: Chat webhook notifications
- storage: Supabase storage with a local SQLite fallback
- scheduler: Pipeline orchestration, APScheduler job and CLI
- api: FastAPI triggers and dashboard reads

Quick Start:
    from trendwire import PipelineOrchestrator

    orchestrator = PipelineOrchestrator()
    orchestrator.run_daily()

Environment Variables:
    ANTHROPIC_API_KEY   - Claude API key (required for analysis)
    GEMINI_API_KEY      - Gemini API key (optional, enables LLM extraction)
    SUPABASE_URL        - Supabase project URL
    SUPABASE_KEY        - Supabase service key (SUPABASE_SERVICE_KEY also accepted)
    CHAT_WEBHOOK_URL    - Google Chat incoming webhook
    TRENDWIRE_TIMEZONE  - Reporting timezone (default Asia/Tokyo)
"""

__version__ = "1.0.0"

from .dedup import Deduplicator, fingerprint
from .llm import ClaudeGateway, GeminiGateway, LLMGateway, LLMResponse, compute_cost
from .extractor import ExtractedContent, extract_content
from .processor import ContentAnalyzer
from .storage import ContentStore, SupabaseStorage, SQLiteStorage, get_storage
from .scheduler import PipelineOrchestrator

__all__ = [
    "Deduplicator",
    "fingerprint",
    "ClaudeGateway",
    "GeminiGateway",
    "LLMGateway",
    "LLMResponse",
    "compute_cost",
    "ExtractedContent",
    "extract_content",
    "ContentAnalyzer",
    "ContentStore",
    "SupabaseStorage",
    "SQLiteStorage",
    "get_storage",
    "PipelineOrchestrator",
]
