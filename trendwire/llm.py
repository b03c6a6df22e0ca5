"""
TRENDWIRE LLM GATEWAY
Provider-agnostic text generation with token accounting and cost

Providers:
- Claude via the anthropic SDK (classification, comparison, summaries, newspaper)
- Gemini via the REST generateContent endpoint (optional extraction path)

Each invoke() makes exactly one outbound call. Nothing is retried here; the
caller decides what a failure means for its batch.
"""

import json
import math
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from threading import Lock
from typing import Dict, Optional

import anthropic
import requests

from .config import get_settings
from .shared.resilience import (
    ConfigurationError,
    UpstreamError,
    get_http_session,
    tracked_call,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_TOKENS = 4096
GEMINI_API_BASE = "https://generativelanguage.googleapis.com/v1beta"


# =============================================================================
# PRICING
# =============================================================================

@dataclass(frozen=True)
class ModelRate:
    input_per_mtok: float
    output_per_mtok: float


# USD per 1M tokens
PRICE_TABLE: Dict[str, ModelRate] = {
    "claude-3-5-sonnet": ModelRate(3.0, 15.0),
    "claude-3-7-sonnet": ModelRate(3.0, 15.0),
    "claude-sonnet-4": ModelRate(3.0, 15.0),
    "claude-3-5-haiku": ModelRate(0.8, 4.0),
    "claude-3-haiku": ModelRate(0.25, 1.25),
    "claude-opus-4": ModelRate(15.0, 75.0),
    "gemini-1.5-flash": ModelRate(0.075, 0.30),
    "gemini-1.5-pro": ModelRate(1.25, 5.0),
    "gemini-2.0-flash": ModelRate(0.10, 0.40),
}

DEFAULT_RATE = PRICE_TABLE["claude-3-5-sonnet"]


def _load_price_table() -> Dict[str, ModelRate]:
    """Built-in rates, overlaid with LLM_PRICE_TABLE_JSON when it parses"""
    table = dict(PRICE_TABLE)
    override_raw = get_settings().price_table_json
    if not override_raw:
        return table

    try:
        override = json.loads(override_raw)
    except json.JSONDecodeError:
        logger.warning("LLM_PRICE_TABLE_JSON is not valid JSON; using built-in rates")
        return table

    if not isinstance(override, dict):
        return table

    for key, value in override.items():
        if not isinstance(value, dict):
            continue
        try:
            table[key.strip().lower()] = ModelRate(
                input_per_mtok=float(value["input_per_mtok"]),
                output_per_mtok=float(value["output_per_mtok"]),
            )
        except (KeyError, ValueError, TypeError):
            continue
    return table


def rate_for_model(model: Optional[str]) -> ModelRate:
    """Exact match first, then the longest table key the model name starts with"""
    table = _load_price_table()
    name = (model or "").strip().lower()
    if name in table:
        return table[name]
    matches = [key for key in table if name.startswith(key)]
    if matches:
        return table[max(matches, key=len)]
    return DEFAULT_RATE


def compute_cost(model: Optional[str], tokens_in: int, tokens_out: int) -> float:
    rate = rate_for_model(model)
    cost = (max(0, tokens_in) / 1_000_000) * rate.input_per_mtok
    cost += (max(0, tokens_out) / 1_000_000) * rate.output_per_mtok
    return round(cost, 4)


def estimate_tokens(text: str) -> int:
    return math.ceil(len(text or "") / 4)


# =============================================================================
# GATEWAY INTERFACE
# =============================================================================

@dataclass
class LLMResponse:
    text: str
    tokens_in: int
    tokens_out: int
    cost_usd: float
    model: str


class LLMGateway(ABC):
    name: str = "llm"

    @abstractmethod
    def invoke(
        self,
        prompt: str,
        system: Optional[str] = None,
        model: Optional[str] = None,
        max_tokens: Optional[int] = None,
    ) -> LLMResponse:
        """Single blocking completion call"""


# =============================================================================
# CLAUDE
# =============================================================================

_claude_client: Optional[anthropic.Anthropic] = None
_client_lock = Lock()


def get_claude_client() -> anthropic.Anthropic:
    global _claude_client
    if _claude_client is None:
        with _client_lock:
            if _claude_client is None:
                api_key = get_settings().anthropic_api_key
                if not api_key:
                    raise ConfigurationError("ANTHROPIC_API_KEY")
                _claude_client = anthropic.Anthropic(api_key=api_key, max_retries=0)
    return _claude_client


def reset_llm_clients():
    global _claude_client
    with _client_lock:
        _claude_client = None


class ClaudeGateway(LLMGateway):
    name = "claude"

    def __init__(self, default_model: Optional[str] = None, client: Optional[anthropic.Anthropic] = None):
        self.default_model = default_model or get_settings().claude_model
        self._client = client

    @property
    def client(self) -> anthropic.Anthropic:
        return self._client if self._client is not None else get_claude_client()

    @tracked_call("claude")
    def invoke(
        self,
        prompt: str,
        system: Optional[str] = None,
        model: Optional[str] = None,
        max_tokens: Optional[int] = None,
    ) -> LLMResponse:
        params = {
            "model": model or self.default_model,
            "max_tokens": max_tokens or DEFAULT_MAX_TOKENS,
            "messages": [{"role": "user", "content": prompt}],
        }
        if system:
            params["system"] = system

        try:
            response = self.client.messages.create(**params)
        except anthropic.APIStatusError as e:
            raise UpstreamError("claude", e.status_code, e.response.text if e.response is not None else str(e))
        except anthropic.APIConnectionError as e:
            raise UpstreamError("claude", None, str(e))

        text = "\n".join(block.text for block in response.content if block.type == "text")
        tokens_in = response.usage.input_tokens
        tokens_out = response.usage.output_tokens
        model_name = response.model or params["model"]

        return LLMResponse(
            text=text,
            tokens_in=tokens_in,
            tokens_out=tokens_out,
            cost_usd=compute_cost(model_name, tokens_in, tokens_out),
            model=model_name,
        )


# =============================================================================
# GEMINI
# =============================================================================

class GeminiGateway(LLMGateway):
    name = "gemini"

    def __init__(self, default_model: Optional[str] = None, session: Optional[requests.Session] = None):
        self.default_model = default_model or get_settings().gemini_model
        self._session = session

    @property
    def session(self) -> requests.Session:
        return self._session if self._session is not None else get_http_session()

    @tracked_call("gemini")
    def invoke(
        self,
        prompt: str,
        system: Optional[str] = None,
        model: Optional[str] = None,
        max_tokens: Optional[int] = None,
    ) -> LLMResponse:
        api_key = get_settings().gemini_api_key
        if not api_key:
            raise ConfigurationError("GEMINI_API_KEY")

        model_name = model or self.default_model
        payload = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": {"maxOutputTokens": max_tokens or DEFAULT_MAX_TOKENS},
        }
        if system:
            payload["systemInstruction"] = {"parts": [{"text": system}]}

        url = f"{GEMINI_API_BASE}/models/{model_name}:generateContent"
        try:
            response = self.session.post(url, params={"key": api_key}, json=payload)
        except requests.exceptions.RequestException as e:
            raise UpstreamError("gemini", None, str(e))

        if response.status_code != 200:
            raise UpstreamError("gemini", response.status_code, response.text)

        data = response.json()
        candidates = data.get("candidates") or []
        text = ""
        if candidates:
            for part in candidates[0].get("content", {}).get("parts", []):
                text += part.get("text", "")

        usage = data.get("usageMetadata") or {}
        tokens_in = usage.get("promptTokenCount") or estimate_tokens((system or "") + prompt)
        tokens_out = usage.get("candidatesTokenCount") or estimate_tokens(text)

        return LLMResponse(
            text=text,
            tokens_in=tokens_in,
            tokens_out=tokens_out,
            cost_usd=compute_cost(model_name, tokens_in, tokens_out),
            model=model_name,
        )


def get_gateway(provider: str = "claude") -> LLMGateway:
    if provider == "claude":
        return ClaudeGateway()
    if provider == "gemini":
        return GeminiGateway()
    raise ConfigurationError("provider", f"Unknown LLM provider: {provider}")
