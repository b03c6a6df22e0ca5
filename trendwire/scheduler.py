"""
TRENDWIRE SCHEDULER
Pipeline orchestration: crawl → extract → analyze → report

Can be run as:
- Standalone daemon with APScheduler (`trendwire serve`)
- Cron job, one stage or the whole day (`trendwire daily`)
- HTTP trigger through the API (see api.py)

Every stage reports to the chat webhook. A stage that raises sends an error
notification and is re-raised to the caller as StageFailure.
"""

import sys
import json
import time
import logging
from typing import Any, Callable, Dict, List, Optional

from .aggregator import NewsAggregator
from .config import get_settings
from .dedup import Deduplicator, fingerprint
from .extractor import extract_content
from .llm import ClaudeGateway, GeminiGateway, LLMGateway
from .models import RawContent, ExtractedText, EXTRACTOR_NONE
from .newspaper import NewspaperBuilder
from .notifier import ChatNotifier
from .processor import BatchResult, ContentAnalyzer
from .shared.resilience import StageFailure
from .storage import ContentStore, get_storage

logger = logging.getLogger(__name__)

STAGES = ("crawl", "extract", "analyze", "report")

# sources whose raw content goes through the LLM extraction path
LLM_EXTRACT_SOURCES = ("social", "press_release")

DEFAULT_EXTRACT_LIMIT = 50
DEFAULT_ANALYZE_LIMIT = 30
DEFAULT_BATCH_SIZE = 10
DEFAULT_MAX_BATCHES = 5


class PipelineOrchestrator:

    def __init__(
        self,
        store: Optional[ContentStore] = None,
        gateway: Optional[LLMGateway] = None,
        extraction_gateway: Optional[LLMGateway] = None,
        notifier: Optional[ChatNotifier] = None,
        aggregator_factory: Optional[Callable[[], NewsAggregator]] = None,
    ):
        self._store = store
        self.gateway = gateway or ClaudeGateway()
        self.extraction_gateway = extraction_gateway
        self.notifier = notifier or ChatNotifier()
        self.aggregator_factory = aggregator_factory or NewsAggregator.from_config

    @property
    def store(self) -> ContentStore:
        if self._store is None:
            self._store = get_storage()
        return self._store

    def _llm_extraction_gateway(self) -> Optional[LLMGateway]:
        if self.extraction_gateway is not None:
            return self.extraction_gateway
        if get_settings().gemini_api_key:
            return GeminiGateway()
        return None

    # -------------------------------------------------------------------------
    # STAGE BODIES (fill `counts` as they go so failures report partial progress)
    # -------------------------------------------------------------------------

    def _crawl(self, counts: Dict[str, Any]) -> Dict[str, Any]:
        counts.update({"fetched": 0, "saved": 0, "skipped": 0, "duplicate": 0})

        aggregator = self.aggregator_factory()
        items = aggregator.collect_all()
        counts["source_errors"] = len(aggregator.errors)

        dedup = Deduplicator(self.store).preload()
        for item in items:
            counts["fetched"] += 1

            if not item.content or not dedup.is_new_url(item.url):
                counts["skipped"] += 1
                continue

            content_hash = fingerprint(item.content)
            if not dedup.is_new_content(content_hash):
                counts["duplicate"] += 1
                continue

            metadata = dict(item.metadata)
            if item.title:
                metadata.setdefault("title", item.title)
            raw_id = self.store.insert_raw(RawContent(
                source_type=item.source_type,
                url=item.url,
                content=item.content,
                content_hash=content_hash,
                metadata=metadata,
            ))
            if raw_id is None:
                counts["duplicate"] += 1
            else:
                counts["saved"] += 1
            dedup.remember(item.url, content_hash)

        logger.info(
            f"Crawl: {counts['fetched']} fetched, {counts['saved']} saved, "
            f"{counts['skipped']} skipped, {counts['duplicate']} duplicate"
        )
        return counts

    def _extract(self, counts: Dict[str, Any], limit: int = DEFAULT_EXTRACT_LIMIT) -> Dict[str, Any]:
        raws = self.store.list_unprocessed_raw(limit)
        counts.update({"requested": len(raws), "extracted": 0, "llm": 0, "rule": 0, "failed": 0})
        llm_gateway = self._llm_extraction_gateway()

        for raw in raws:
            try:
                use_llm = llm_gateway is not None and raw["source_type"] in LLM_EXTRACT_SOURCES
                result = extract_content(raw["content"], use_llm=use_llm, gateway=llm_gateway)
                self.store.insert_extract(ExtractedText(
                    raw_content_id=raw["id"],
                    text=result.text,
                    tables=result.tables,
                    images=result.images,
                    extractor_used=result.extractor if result.text else EXTRACTOR_NONE,
                    source_type=raw["source_type"],
                ))
                counts["extracted"] += 1
                counts[result.extractor] = counts.get(result.extractor, 0) + 1
            except Exception as e:
                counts["failed"] += 1
                logger.error(f"Extraction failed for raw {raw['id']} ({raw.get('url')}): {e}")

        logger.info(f"Extract: {counts['extracted']}/{counts['requested']} extracted, {counts['failed']} failed")
        return counts

    def _analyze(self, counts: Dict[str, Any], limit: int = DEFAULT_ANALYZE_LIMIT) -> Dict[str, Any]:
        analyzer = ContentAnalyzer(self.store, self.gateway)
        batch = analyzer.analyze_batch(limit=limit, summarize=True)
        counts.update(batch.counts())
        return counts

    def _analyze_batched(
        self,
        counts: Dict[str, Any],
        batch_size: int = DEFAULT_BATCH_SIZE,
        max_batches: int = DEFAULT_MAX_BATCHES,
    ) -> Dict[str, Any]:
        analyzer = ContentAnalyzer(self.store, self.gateway)
        total = BatchResult()
        batches = 0

        # items that fail stay unanalyzed; they wait for the next run
        while batches < max_batches:
            batch = analyzer.analyze_batch(limit=batch_size, summarize=False, exclude=total.extract_ids)
            batches += 1
            total.merge(batch)
            counts.update(total.counts())
            counts["batches"] = batches

            if batch.requested < batch_size:
                break
            if batch.analyzed == 0:
                logger.warning("Analyze batch made no progress, stopping")
                break
        else:
            logger.info(f"Analyze batch cap of {max_batches} reached")

        ids = analyzer.summarize(total.classifications, total.first_extract_id)
        total.trend_output_id = ids["trend_output_id"]
        total.strategy_output_id = ids["strategy_output_id"]
        counts.update(total.counts())
        counts["batches"] = batches
        return counts

    def _report(self, counts: Dict[str, Any]) -> Dict[str, Any]:
        builder = NewspaperBuilder(self.store, self.gateway, self.notifier)
        result = builder.generate()
        counts.update({
            "newspaper_id": result.output_id,
            "delivered": result.delivered,
            "preview": result.markdown[:500],
            "metrics": result.metrics,
        })
        return counts

    # -------------------------------------------------------------------------
    # STAGE RUNNER
    # -------------------------------------------------------------------------

    def _run_stage(self, stage: str, body: Callable[..., Dict[str, Any]], notify: bool = True, **kwargs) -> Dict[str, Any]:
        counts: Dict[str, Any] = {}
        started = time.time()
        logger.info(f"Stage {stage} started")
        try:
            body(counts, **kwargs)
        except Exception as e:
            logger.exception(f"Stage {stage} failed: {e}")
            if notify:
                self.notifier.notify_error(stage, e, details={"stage": stage, **counts})
            raise StageFailure(stage, e, counts) from e

        counts["duration_seconds"] = round(time.time() - started, 2)
        logger.info(f"Stage {stage} completed in {counts['duration_seconds']}s")
        # the report stage's own chat message is its success notification
        if notify and stage != "report":
            metrics = {k: v for k, v in counts.items() if isinstance(v, (int, float)) and not isinstance(v, bool)}
            self.notifier.notify_success(stage, f"{stage} stage completed", metrics)
        return counts

    def run_crawl(self) -> Dict[str, Any]:
        return self._run_stage("crawl", self._crawl)

    def run_extract(self, limit: int = DEFAULT_EXTRACT_LIMIT) -> Dict[str, Any]:
        return self._run_stage("extract", self._extract, limit=limit)

    def run_analyze(self, limit: int = DEFAULT_ANALYZE_LIMIT) -> Dict[str, Any]:
        return self._run_stage("analyze", self._analyze, limit=limit)

    def run_analyze_batched(
        self,
        batch_size: int = DEFAULT_BATCH_SIZE,
        max_batches: int = DEFAULT_MAX_BATCHES,
    ) -> Dict[str, Any]:
        return self._run_stage("analyze", self._analyze_batched, batch_size=batch_size, max_batches=max_batches)

    def run_report(self) -> Dict[str, Any]:
        return self._run_stage("report", self._report)

    def run_daily(
        self,
        extract_limit: int = DEFAULT_EXTRACT_LIMIT,
        analyze_limit: int = DEFAULT_ANALYZE_LIMIT,
    ) -> Dict[str, Any]:
        """All four stages in order with one notification for the whole run"""
        plan = [
            ("crawl", self._crawl, {}),
            ("extract", self._extract, {"limit": extract_limit}),
            ("analyze", self._analyze, {"limit": analyze_limit}),
            ("report", self._report, {}),
        ]
        results: Dict[str, Any] = {}
        started = time.time()

        for stage, body, kwargs in plan:
            try:
                results[stage] = self._run_stage(stage, body, notify=False, **kwargs)
            except StageFailure as failure:
                self.notifier.notify_error(
                    f"daily run ({stage})",
                    failure.cause,
                    details={"stage": stage, "counts": failure.counts, "completed": list(results)},
                )
                raise

        results["duration_seconds"] = round(time.time() - started, 2)
        metrics = {
            "fetched": results["crawl"].get("fetched", 0),
            "saved": results["crawl"].get("saved", 0),
            "extracted": results["extract"].get("extracted", 0),
            "analyzed": results["analyze"].get("analyzed", 0),
            "analyze_failed": results["analyze"].get("failed", 0),
        }
        self.notifier.notify_success("daily run", "Crawl, extract, analyze and report completed", metrics)
        return results

    def run(self, stage: str, **kwargs) -> Dict[str, Any]:
        if stage == "crawl":
            return self.run_crawl()
        if stage == "extract":
            return self.run_extract(limit=kwargs.get("limit") or DEFAULT_EXTRACT_LIMIT)
        if stage == "analyze":
            if kwargs.get("batch_size"):
                return self.run_analyze_batched(
                    batch_size=kwargs["batch_size"],
                    max_batches=kwargs.get("max_batches") or DEFAULT_MAX_BATCHES,
                )
            return self.run_analyze(limit=kwargs.get("limit") or DEFAULT_ANALYZE_LIMIT)
        if stage == "report":
            return self.run_report()
        if stage == "daily":
            return self.run_daily()
        raise ValueError(f"Unknown stage: {stage}")


# =============================================================================
# APSCHEDULER IMPLEMENTATION
# =============================================================================

def scheduled_daily_run(orchestrator: Optional[PipelineOrchestrator] = None) -> Optional[Dict[str, Any]]:
    """Job body: failures were already notified, so they are only logged here"""
    orchestrator = orchestrator or PipelineOrchestrator()
    try:
        return orchestrator.run_daily()
    except StageFailure as e:
        logger.error(f"Scheduled daily run failed at {e.stage}: {e.cause}")
        return None


def start_scheduler(orchestrator: Optional[PipelineOrchestrator] = None):
    """
    Start the background scheduler.

    Schedule: one daily run at DAILY_RUN_HOUR in the reporting timezone.
    """
    from apscheduler.schedulers.background import BackgroundScheduler
    from apscheduler.triggers.cron import CronTrigger

    settings = get_settings()
    scheduler = BackgroundScheduler(timezone=settings.timezone)
    scheduler.add_job(
        scheduled_daily_run,
        CronTrigger(hour=settings.daily_run_hour, minute=0, timezone=settings.timezone),
        kwargs={"orchestrator": orchestrator},
        id="daily_run",
        name=f"Daily run at {settings.daily_run_hour}:00",
        max_instances=1,
        coalesce=True,
    )

    scheduler.start()
    logger.info("Scheduler started")
    logger.info(f"Jobs: {[job.name for job in scheduler.get_jobs()]}")

    return scheduler


# =============================================================================
# CRON-COMPATIBLE RUNNER
# =============================================================================

def cron_entry(argv: Optional[List[str]] = None) -> int:
    """
    Entry point for cron jobs and the `trendwire` console script.

    Add to crontab:
    0 6 * * * cd /path/to/trendwire && trendwire daily
    """
    import argparse

    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    parser = argparse.ArgumentParser(prog="trendwire", description="Trend monitoring pipeline")
    parser.add_argument("stage", choices=list(STAGES) + ["daily", "serve"], help="Stage to run")
    parser.add_argument("--limit", type=int, default=None, help="Max items for extract/analyze")
    parser.add_argument("--batch-size", type=int, default=None, help="Analyze in batches of this size")
    parser.add_argument("--max-batches", type=int, default=None, help="Cap on analyze batches")

    args = parser.parse_args(argv)

    if args.stage == "serve":
        scheduler = start_scheduler()
        try:
            while True:
                time.sleep(60)
        except KeyboardInterrupt:
            scheduler.shutdown()
            print("Scheduler stopped")
        return 0

    orchestrator = PipelineOrchestrator()
    try:
        result = orchestrator.run(
            args.stage,
            limit=args.limit,
            batch_size=args.batch_size,
            max_batches=args.max_batches,
        )
    except StageFailure as e:
        print(f"Stage {e.stage} failed: {e.cause}", file=sys.stderr)
        return 1

    print(json.dumps(result, ensure_ascii=False, indent=2, default=str))
    return 0


if __name__ == "__main__":
    sys.exit(cron_entry())
