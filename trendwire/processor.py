"""
TRENDWIRE ANALYZER
Claude classification, competitor comparison, trend accumulation and summaries

Per extract:
    classify → persist → compare (product/spec only) → trend counters per topic tag
Per batch:
    one trend summary and one strategy summary, always persisted
"""

import json
import logging
from dataclasses import dataclass, field, asdict
from typing import List, Dict, Any, Iterable, Optional

from .config import today_local
from .llm import LLMGateway, LLMResponse
from .models import (
    AnalysisOutput,
    ROLE_CLASSIFY,
    ROLE_COMPARE,
    ROLE_TREND,
    ROLE_STRATEGY,
    SENTINEL_EXTRACT_ID,
    trend_source_category,
)
from .prompts import (
    ANALYST_SYSTEM_PROMPT,
    classify_prompt,
    compare_prompt,
    trend_prompt,
    strategy_prompt,
)
from .shared.validation import COMPARABLE_TYPES, ValidationResult, parse_structured_output
from .storage import ContentStore

logger = logging.getLogger(__name__)

CLASSIFY_INPUT_LIMIT = 8000
COMPARE_INPUT_LIMIT = 4000
MAX_COUNTERS_IN_PROMPT = 50


@dataclass
class BatchResult:
    """Bookkeeping for one analyze pass"""
    requested: int = 0
    analyzed: int = 0
    failed: int = 0
    compared: int = 0
    compare_failed: int = 0
    trend_tags: int = 0
    first_extract_id: Optional[str] = None
    extract_ids: List[str] = field(default_factory=list)
    classifications: List[Dict[str, Any]] = field(default_factory=list)
    errors: List[Dict[str, str]] = field(default_factory=list)
    trend_output_id: Optional[str] = None
    strategy_output_id: Optional[str] = None

    def merge(self, other: "BatchResult"):
        self.requested += other.requested
        self.analyzed += other.analyzed
        self.failed += other.failed
        self.compared += other.compared
        self.compare_failed += other.compare_failed
        self.trend_tags += other.trend_tags
        self.first_extract_id = self.first_extract_id or other.first_extract_id
        self.extract_ids.extend(other.extract_ids)
        self.classifications.extend(other.classifications)
        self.errors.extend(other.errors)

    def counts(self) -> Dict[str, Any]:
        data = asdict(self)
        data.pop("classifications")
        data.pop("extract_ids")
        data["errors"] = len(self.errors)
        return data


class ContentAnalyzer:
    """Runs every LLM analysis role over unanalyzed extracts"""

    def __init__(self, store: ContentStore, gateway: LLMGateway):
        self.store = store
        self.gateway = gateway

    def _persist(
        self,
        extract_id: str,
        role: str,
        response: LLMResponse,
        structured: Optional[Dict[str, Any]] = None,
        markdown: Optional[str] = None,
    ) -> str:
        return self.store.insert_analysis_output(AnalysisOutput(
            extracted_text_id=extract_id,
            role=role,
            model_name=response.model,
            output_markdown=markdown,
            output_structured=structured,
            tokens_in=response.tokens_in,
            tokens_out=response.tokens_out,
            cost_usd=response.cost_usd,
        ))

    # -------------------------------------------------------------------------
    # PER-ITEM ROLES
    # -------------------------------------------------------------------------

    def classify(self, extract: Dict[str, Any]) -> ValidationResult:
        response = self.gateway.invoke(
            classify_prompt(extract["text"][:CLASSIFY_INPUT_LIMIT]),
            system=ANALYST_SYSTEM_PROMPT,
        )
        result = parse_structured_output(ROLE_CLASSIFY, response.text)
        if not result.valid:
            result.log_issues(prefix=f"Classification quarantined for {extract['id']} ")
        self._persist(extract["id"], ROLE_CLASSIFY, response, structured=result.data)
        return result

    def compare(self, extract: Dict[str, Any], classification: Dict[str, Any]) -> str:
        response = self.gateway.invoke(
            compare_prompt(
                extract["text"][:COMPARE_INPUT_LIMIT],
                json.dumps(classification, ensure_ascii=False),
            ),
            system=ANALYST_SYSTEM_PROMPT,
        )
        return self._persist(extract["id"], ROLE_COMPARE, response, markdown=response.text)

    def record_trends(self, extract: Dict[str, Any], classification: Dict[str, Any]) -> int:
        category = trend_source_category(extract.get("source_type"), extract.get("extractor_used"))
        day = today_local()
        meta = {"company": classification.get("company", "")}
        for tag in classification.get("topic_tags", []):
            self.store.upsert_trend_counter(day, tag, category, 1, meta)
        return len(classification.get("topic_tags", []))

    def analyze_item(self, extract: Dict[str, Any], batch: BatchResult):
        """
        Classify one extract, then compare and count its tags.

        An item is counted as analyzed only once every step that can fail it
        has finished, so analyzed + failed never exceeds requested.
        """
        result = self.classify(extract)
        if not result.valid:
            batch.analyzed += 1
            return

        classification = result.data
        batch.classifications.append(classification)

        if classification["type"] in COMPARABLE_TYPES:
            try:
                self.compare(extract, classification)
                batch.compared += 1
            except Exception as e:
                batch.compare_failed += 1
                batch.errors.append({"extract_id": extract["id"], "role": ROLE_COMPARE, "error": str(e)})
                logger.error(f"Compare failed for {extract['id']}: {e}")

        batch.trend_tags += self.record_trends(extract, classification)
        batch.analyzed += 1

    # -------------------------------------------------------------------------
    # AGGREGATE ROLES
    # -------------------------------------------------------------------------

    def _summary_context(self, classifications: List[Dict[str, Any]]) -> tuple:
        items = "\n".join(
            f"- [{c.get('type')}] {c.get('company') or '-'} / {c.get('product') or '-'}: "
            f"{', '.join(c.get('topic_tags', []))}"
            for c in classifications
        ) or "(no new items)"

        counters = self.store.list_trend_counters(days=7)[:MAX_COUNTERS_IN_PROMPT]
        counter_lines = "\n".join(
            f"- {row['keyword']} / {row['source_category']} / {row['count']}" for row in counters
        ) or "(no counters)"
        return items, counter_lines

    def summarize(self, classifications: List[Dict[str, Any]], anchor_id: Optional[str]) -> Dict[str, str]:
        """One trend and one strategy call; both are persisted whatever they return"""
        anchor = anchor_id or SENTINEL_EXTRACT_ID
        items, counters = self._summary_context(classifications)

        response = self.gateway.invoke(trend_prompt(items, counters), system=ANALYST_SYSTEM_PROMPT)
        trend = parse_structured_output(ROLE_TREND, response.text)
        if not trend.valid:
            trend.log_issues(prefix="Trend summary quarantined ")
        trend_id = self._persist(
            anchor, ROLE_TREND, response,
            structured=trend.data,
            markdown=trend.data.get("summary") if trend.valid else None,
        )

        response = self.gateway.invoke(strategy_prompt(items, counters), system=ANALYST_SYSTEM_PROMPT)
        strategy = parse_structured_output(ROLE_STRATEGY, response.text)
        if not strategy.valid:
            strategy.log_issues(prefix="Strategy summary quarantined ")
        strategy_id = self._persist(anchor, ROLE_STRATEGY, response, structured=strategy.data)

        return {"trend_output_id": trend_id, "strategy_output_id": strategy_id}

    # -------------------------------------------------------------------------
    # BATCH
    # -------------------------------------------------------------------------

    def analyze_batch(self, limit: int = 30, summarize: bool = True, exclude: Iterable[str] = ()) -> BatchResult:
        """Analyze up to limit pending extracts; ids in exclude are not picked up"""
        extracts = self.store.list_unanalyzed_extracts(limit, exclude=exclude)
        batch = BatchResult(requested=len(extracts))
        batch.extract_ids = [extract["id"] for extract in extracts]
        batch.first_extract_id = extracts[0]["id"] if extracts else None

        for i, extract in enumerate(extracts):
            logger.info(f"Analyzing {i + 1}/{len(extracts)}: {extract['id']}")
            try:
                self.analyze_item(extract, batch)
            except Exception as e:
                batch.failed += 1
                batch.errors.append({"extract_id": extract["id"], "role": ROLE_CLASSIFY, "error": str(e)})
                logger.error(f"Analysis failed for {extract['id']}: {e}")

        logger.info(
            f"Analyzed {batch.analyzed}/{len(extracts)} extracts "
            f"({batch.compared} compared, {batch.failed} failed, {batch.trend_tags} trend tags)"
        )

        if summarize:
            ids = self.summarize(batch.classifications, batch.first_extract_id)
            batch.trend_output_id = ids["trend_output_id"]
            batch.strategy_output_id = ids["strategy_output_id"]

        return batch
