"""
Daily newspaper assembly.

Gathers the last 24 hours of analysis outputs, has the model write the
edition, stores it under role=newspaper and posts a short summary with the
current spend to the chat webhook.
"""

import json
import logging
from dataclasses import dataclass, asdict
from datetime import timedelta
from typing import Any, Dict, List, Optional

from .config import get_settings, now_local
from .llm import LLMGateway
from .models import (
    AnalysisOutput,
    UsageMetrics,
    ROLE_CLASSIFY,
    ROLE_COMPARE,
    ROLE_TREND,
    ROLE_STRATEGY,
    ROLE_NEWSPAPER,
    SENTINEL_EXTRACT_ID,
)
from .notifier import ChatNotifier
from .prompts import newspaper_prompt
from .shared.validation import is_quarantined
from .storage import ContentStore

logger = logging.getLogger(__name__)

NEWSPAPER_MAX_TOKENS = 8000
NEWSPAPER_SYSTEM_PROMPT = "You are the editor-in-chief of an industry trade paper."
TOP_STORY_COUNT = 5
SUMMARY_LINES = 3
SUMMARY_CHARS = 600


@dataclass
class NewspaperResult:
    output_id: str
    markdown: str
    metrics: Dict[str, Any]
    delivered: bool

    def to_dict(self) -> dict:
        return asdict(self)


def _usable(outputs: List[Dict[str, Any]], role: str) -> List[Dict[str, Any]]:
    return [
        o for o in outputs
        if o.get("role") == role and not is_quarantined(o.get("output_structured"))
    ]


def build_sections(outputs: List[Dict[str, Any]]) -> Dict[str, str]:
    """Prompt sections from recent outputs (newest first)"""
    classifications = [o for o in _usable(outputs, ROLE_CLASSIFY) if o.get("output_structured")]
    comparisons = _usable(outputs, ROLE_COMPARE)
    trends = [o for o in _usable(outputs, ROLE_TREND) if o.get("output_structured")]
    strategies = [o for o in _usable(outputs, ROLE_STRATEGY) if o.get("output_structured")]

    stories = []
    for i, output in enumerate(classifications[:TOP_STORY_COUNT], start=1):
        data = output["output_structured"]
        stories.append(
            f"### {i}. {data.get('company') or 'Unknown company'}\n"
            f"Product: {data.get('product') or '-'}\n"
            f"Type: {data.get('type')}\n"
            f"Price band: {data.get('price_band') or '-'}\n"
            f"Specs: {', '.join(data.get('specs', [])) or '-'}\n"
            f"Tags: {', '.join(data.get('topic_tags', [])) or '-'}"
        )

    return {
        "TOP_STORIES": "\n\n".join(stories) or "No new stories.",
        "TRENDS": json.dumps(trends[0]["output_structured"], ensure_ascii=False, indent=2) if trends else "No trend data.",
        "COMPARISONS": "\n\n---\n\n".join(o["output_markdown"] for o in comparisons if o.get("output_markdown")) or "No comparisons.",
        "STRATEGIES": json.dumps(strategies[0]["output_structured"], ensure_ascii=False, indent=2) if strategies else "No strategy data.",
    }


def build_chat_summary(markdown: str, metrics: UsageMetrics) -> str:
    lines = [line for line in markdown.split("\n") if line.strip() and not line.lstrip().startswith("#")]
    summary = "\n".join(lines[:SUMMARY_LINES])[:SUMMARY_CHARS]
    cost_line = (
        f"[Cost: today ${metrics.today_cost:.4f} | balance ${metrics.balance:.2f} | "
        f"{metrics.remaining_reports} reports left]"
    )
    return f"{summary}\n\n{cost_line}"


class NewspaperBuilder:

    def __init__(self, store: ContentStore, gateway: LLMGateway, notifier: Optional[ChatNotifier] = None):
        self.store = store
        self.gateway = gateway
        self.notifier = notifier or ChatNotifier()

    def generate(self, hours: int = 24) -> NewspaperResult:
        now = now_local()
        outputs = self.store.list_recent_outputs(now - timedelta(hours=hours))
        logger.info(f"Building newspaper from {len(outputs)} outputs of the last {hours}h")

        sections = build_sections(outputs)
        sections["DATE"] = now.strftime("%Y-%m-%d")
        sections["DAY"] = now.strftime("%A")

        response = self.gateway.invoke(
            newspaper_prompt(sections),
            system=NEWSPAPER_SYSTEM_PROMPT,
            max_tokens=NEWSPAPER_MAX_TOKENS,
        )

        classifications = [o for o in outputs if o.get("role") == ROLE_CLASSIFY]
        anchor = classifications[0]["extracted_text_id"] if classifications else SENTINEL_EXTRACT_ID
        output_id = self.store.insert_analysis_output(AnalysisOutput(
            extracted_text_id=anchor,
            role=ROLE_NEWSPAPER,
            model_name=response.model,
            output_markdown=response.text,
            tokens_in=response.tokens_in,
            tokens_out=response.tokens_out,
            cost_usd=response.cost_usd,
        ))

        metrics = self.store.read_usage_metrics()
        base_url = get_settings().public_base_url
        web_url = f"{base_url.rstrip('/')}/newspaper" if base_url else None
        delivered = self.notifier.send_daily_report(build_chat_summary(response.text, metrics), web_url)

        return NewspaperResult(
            output_id=output_id,
            markdown=response.text,
            metrics=metrics.to_dict(),
            delivered=delivered,
        )
