"""
Pipeline orchestrator.

Wires the ledger watcher, gateway fetcher, claim structurer and evidence planner
together and owns the result store.

Per content id:  pending -> processed | failed
- Processing is idempotent: a processed id returns its stored result without refetching
- A concurrent second request for a pending id is refused
- A failed fetch is not stored; the watcher forgets the id so a later discovery retries it

Discoveries are processed on a worker pool so one id's gateway cascade never
blocks another's or the polling loop.
"""

import logging
import threading
import time
from collections import Counter
from concurrent.futures import Future, ThreadPoolExecutor
from functools import partial
from typing import Any, Dict, List, Optional

from .config.settings import PipelineSettings
from .errors import AllGatewaysFailedError, ConfigError
from .ingest.content_store import ContentStore
from .ingest.events import EventLog, EventSeverity, EventType
from .ingest.gateway_fetcher import GatewayFetcher
from .ingest.health import HealthTracker, load_health_tracker, save_health_tracker
from .ingest.ledger_watcher import LedgerWatcher, MirrorNodeClient
from .pipeline.models import ClaimStatus, ContentRecord, ProcessedClaim
from .pipeline.plan_evidence import MAX_PRIORITY, MIN_PRIORITY, EvidencePlanner
from .pipeline.result_store import InMemoryResultStore, ResultStore
from .pipeline.semantic import HuggingFaceOracle
from .pipeline.structure_claims import ClaimStructurer

logger = logging.getLogger(__name__)

DEFAULT_MAX_WORKERS = 4


class Orchestrator:
    """Runs discovered content ids through fetch -> structure -> plan."""

    def __init__(
        self,
        fetcher: GatewayFetcher,
        structurer: ClaimStructurer,
        planner: EvidencePlanner,
        watcher: Optional[LedgerWatcher] = None,
        store: Optional[ResultStore] = None,
        events: Optional[EventLog] = None,
        max_workers: int = DEFAULT_MAX_WORKERS,
        health_path: Optional[str] = None,
    ):
        self.fetcher = fetcher
        self.structurer = structurer
        self.planner = planner
        self.watcher = watcher
        self.store = store if store is not None else InMemoryResultStore()
        self.events = events if events is not None else EventLog()
        self.max_workers = max_workers
        self.health_path = health_path

        self._lock = threading.Lock()
        self._status: Dict[str, ClaimStatus] = {}
        self._errors: Dict[str, str] = {}
        self._executor: Optional[ThreadPoolExecutor] = None
        self._running = False
        self._handler_registered = False
        self._started_at: Optional[float] = None

        if self.watcher is not None and self.watcher.is_known is None:
            self.watcher.is_known = self.is_known

    @property
    def running(self) -> bool:
        return self._running

    def is_known(self, content_id: str) -> bool:
        """True if the id is processed or currently being processed."""
        with self._lock:
            return content_id in self.store or self._status.get(content_id) == ClaimStatus.PENDING

    # ------------------------------------------------------------------
    # Processing
    # ------------------------------------------------------------------

    def process_claim(self, record: ContentRecord) -> Optional[ProcessedClaim]:
        """
        Fetch, structure and plan one content id.

        Returns:
            The ProcessedClaim (the stored one if already processed), or None if
            the same id is already being processed

        Raises:
            AllGatewaysFailedError: When every gateway failed (strict mode)
        """
        content_id = record.content_id

        with self._lock:
            existing = self.store.get(content_id)
            if existing is not None:
                logger.debug(f"Claim {content_id} already processed, returning stored result")
                return existing
            if self._status.get(content_id) == ClaimStatus.PENDING:
                logger.info(f"Claim {content_id} is already being processed")
                return None
            self._status[content_id] = ClaimStatus.PENDING
            self._errors.pop(content_id, None)

        logger.info(f"Processing claim {content_id} (tx {record.source_transaction_id})")
        started = time.perf_counter()

        try:
            fetched = self.fetcher.fetch(content_id)
            claim = self.structurer.structure(fetched.raw_text or "")
            plan = self.planner.plan(claim, record, self.fetcher.gateway_urls(content_id))
        except AllGatewaysFailedError as e:
            self._mark_failed(content_id, str(e))
            raise
        except Exception as e:
            self._mark_failed(content_id, f"{type(e).__name__}: {e}")
            raise

        result = ProcessedClaim(
            content_id=content_id,
            raw_text=fetched.raw_text or "",
            claim=claim,
            record=record,
            plan=plan,
            processing_time_ms=(time.perf_counter() - started) * 1000,
            gateway_used=fetched.gateway_used,
            substituted=fetched.substituted,
        )

        with self._lock:
            self.store.put(result)
            self._status[content_id] = ClaimStatus.PROCESSED

        self.events.emit(
            EventType.CLAIM_PROCESSED,
            f"Claim {content_id} processed: {claim.claim_type.value} "
            f"(confidence {claim.confidence:.2f}, priority {plan.priority_level})",
            content_id=content_id,
            gateway=fetched.gateway_used,
            details={
                "claim_type": claim.claim_type.value,
                "confidence": round(claim.confidence, 3),
                "priority": plan.priority_level,
                "substituted": fetched.substituted,
                "processing_time_ms": round(result.processing_time_ms, 1),
            },
        )
        return result

    def process_content_id(
        self,
        content_id: str,
        topic_id: Optional[str] = None,
        transaction_id: Optional[str] = None,
    ) -> Optional[ProcessedClaim]:
        """Process a content id given by hand (no ledger transaction behind it)."""
        record = ContentRecord(
            content_id=content_id,
            source_transaction_id=transaction_id or "",
            ledger_topic_id=topic_id or "",
            consensus_timestamp=f"{time.time():.9f}",
            memo=f"CID:{content_id}",
            source="manual",
        )
        return self.process_claim(record)

    def _mark_failed(self, content_id: str, error: str) -> None:
        with self._lock:
            self._status[content_id] = ClaimStatus.FAILED
            self._errors[content_id] = error

        if self.watcher is not None:
            self.watcher.forget(content_id)

        logger.error(f"Failed to process claim {content_id}: {error}")
        self.events.emit(
            EventType.CLAIM_FAILED,
            f"Claim {content_id} failed: {error}",
            severity=EventSeverity.CRITICAL,
            content_id=content_id,
        )

    def handle_discovery(self, record: ContentRecord) -> Optional[Future]:
        """Queue a discovered record on the worker pool.

        Returns None, and the watcher forgets the id, when the orchestrator is
        not running.
        """
        with self._lock:
            executor = self._executor if self._running else None
        if executor is None:
            logger.warning(f"Not processing {record.content_id}: orchestrator is stopped")
            if self.watcher is not None:
                self.watcher.forget(record.content_id)
            return None

        try:
            future = executor.submit(self.process_claim, record)
        except RuntimeError as e:
            # Pool shut down between discovery and submit
            logger.warning(f"Not processing {record.content_id}: {e}")
            if self.watcher is not None:
                self.watcher.forget(record.content_id)
            return None

        future.add_done_callback(partial(self._on_processed, record.content_id))
        return future

    def _on_processed(self, content_id: str, future: Future) -> None:
        if future.cancelled():
            return
        error = future.exception()
        if error is not None and not isinstance(error, AllGatewaysFailedError):
            # Gateway exhaustion is already logged by _mark_failed
            logger.error(f"Background processing of {content_id} raised {type(error).__name__}: {error}")

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self, poll_interval_ms: Optional[int] = None) -> None:
        if self.watcher is None:
            raise ConfigError("No ledger watcher configured; cannot start monitoring")

        with self._lock:
            if self._running:
                logger.info("Orchestrator already running")
                return
            register = not self._handler_registered
            self._handler_registered = True
            self._running = True
            self._started_at = time.time()
            self._executor = ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="claim-worker")

        # Outside our lock: the watcher calls is_known() while holding its own
        if register:
            self.watcher.on_discovery(self.handle_discovery)

        self.watcher.start(poll_interval_ms)
        logger.info("Orchestrator started")

    def stop(self, wait: bool = False) -> None:
        """Stop polling; queued and in-flight claims still finish and are recorded."""
        if self.watcher is not None:
            self.watcher.stop()

        with self._lock:
            self._running = False
            executor, self._executor = self._executor, None

        if executor is not None:
            executor.shutdown(wait=wait)
        self.save_health()
        logger.info("Orchestrator stopped")

    def save_health(self) -> None:
        """Persist gateway health if a health file is configured."""
        if not self.health_path:
            return
        try:
            save_health_tracker(self.fetcher.health, self.health_path)
        except OSError as e:
            logger.warning(f"Could not save gateway health to {self.health_path}: {e}")

    # ------------------------------------------------------------------
    # Read accessors
    # ------------------------------------------------------------------

    def get_all_processed_claims(self) -> List[ProcessedClaim]:
        return self.store.list()

    def get_claim(self, content_id: str) -> Optional[ProcessedClaim]:
        return self.store.get(content_id)

    def get_status(self, content_id: str) -> Optional[ClaimStatus]:
        with self._lock:
            if content_id in self.store:
                return ClaimStatus.PROCESSED
            return self._status.get(content_id)

    def get_error(self, content_id: str) -> Optional[str]:
        with self._lock:
            return self._errors.get(content_id)

    def get_statistics(self) -> Dict[str, Any]:
        claims = self.store.list()

        claim_types = Counter(c.claim.claim_type.value for c in claims)
        priority_distribution = {level: 0 for level in range(MIN_PRIORITY, MAX_PRIORITY + 1)}
        for c in claims:
            priority_distribution[c.plan.priority_level] += 1

        average_confidence = sum(c.claim.confidence for c in claims) / len(claims) if claims else 0.0

        with self._lock:
            status_counts = Counter(s.value for s in self._status.values())
            failed = sorted(cid for cid, s in self._status.items() if s == ClaimStatus.FAILED)

        return {
            "total_processed": len(claims),
            "claim_types": dict(claim_types),
            "average_confidence": round(average_confidence, 3),
            "priority_distribution": priority_distribution,
            "status_counts": {s.value: status_counts.get(s.value, 0) for s in ClaimStatus},
            "failed_content_ids": failed,
            "substituted": sum(1 for c in claims if c.substituted),
            "watermark": self.watcher.watermark if self.watcher is not None else None,
            "running": self._running,
        }

    def get_api_status(self) -> Dict[str, Any]:
        structurer_status = self.structurer.status()
        return {
            "status": "running" if self._running else "stopped",
            "uptime_seconds": round(time.time() - self._started_at, 1) if self._running and self._started_at else 0,
            "fetch_mode": self.fetcher.mode.value,
            "oracle_available": structurer_status["oracle_available"],
            "oracle_model": structurer_status["oracle_model"],
            "processed_count": len(self.store),
            "watcher": self.watcher.status() if self.watcher is not None else None,
            "gateway_health": self.fetcher.health.get_summary(),
        }

    def recent_events(self, limit: int = 50) -> List[Dict[str, Any]]:
        return [event.to_dict() for event in self.events.recent(limit)]


def build_orchestrator(settings: PipelineSettings) -> Orchestrator:
    """Assemble every pipeline component from settings."""
    events = EventLog(history_size=settings.orchestrator.event_history)

    fetcher = GatewayFetcher(
        gateways=settings.gateway.gateways,
        timeout=settings.gateway.timeout_seconds,
        max_gateways=settings.gateway.max_gateways,
        mode=settings.gateway.fetch_mode,
        retry=settings.gateway.retry,
        substitutes=settings.gateway.substitutes,
        content_store=ContentStore(max_entries=settings.gateway.content_store_size),
        health=load_health_tracker(settings.gateway.health_path) if settings.gateway.health_path else HealthTracker(),
        events=events,
    )

    oracle = None
    if settings.oracle.usable:
        oracle = HuggingFaceOracle(
            api_key=settings.oracle.api_key,
            model=settings.oracle.model,
            endpoint=settings.oracle.endpoint,
            timeout=settings.oracle.timeout_seconds,
        )
    else:
        logger.info("Semantic oracle not configured; structuring uses patterns only")

    structurer = ClaimStructurer(oracle=oracle, events=events)
    planner = EvidencePlanner(
        fee_threshold=settings.ledger.fee_threshold,
        mirror_node_url=settings.ledger.mirror_node_url,
    )

    watcher = LedgerWatcher(
        client=MirrorNodeClient(settings.ledger.mirror_node_url),
        account_id=settings.ledger.account_id,
        poll_interval_ms=settings.ledger.poll_interval_ms,
        page_size=settings.ledger.page_size,
        max_pages=settings.ledger.max_pages,
        topic_id=settings.ledger.topic_id,
        events=events,
    )

    return Orchestrator(
        fetcher=fetcher,
        structurer=structurer,
        planner=planner,
        watcher=watcher,
        events=events,
        max_workers=settings.orchestrator.max_workers,
        health_path=settings.gateway.health_path,
    )
