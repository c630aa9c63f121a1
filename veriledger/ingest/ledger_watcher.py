"""Ledger watcher: polls the mirror node for newly anchored content ids.

Flow per poll cycle:
1. Ask the mirror node for the account's transactions newer than the watermark
   (most recent first, bounded page size, bounded number of pages)
2. Keep CONSENSUSSUBMITMESSAGE transactions whose base64 memo carries ``CID:<id>``
3. Skip ids already emitted or already known to the result store
4. Emit one discovery per new id
5. Advance the watermark to the newest consensus timestamp seen

A failed poll is logged and swallowed; the loop always waits for the next cycle.
Polls run on a single thread, so they never overlap.
"""

import base64
import binascii
import logging
import re
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Set, Tuple
from urllib.parse import urljoin

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..errors import DiscoveryError
from ..pipeline.models import ContentRecord
from .events import EventLog, EventSeverity, EventType

logger = logging.getLogger(__name__)

# Mirror node configuration
DEFAULT_MIRROR_NODE_URL = "https://testnet.mirrornode.hedera.com"
TRANSACTIONS_PATH = "/api/v1/transactions"
REQUEST_TIMEOUT = (10, 30)

RELEVANT_TRANSACTION_NAME = "CONSENSUSSUBMITMESSAGE"
CID_PATTERN = re.compile(r"CID:([A-Za-z0-9]+)")

DEFAULT_POLL_INTERVAL_MS = 10_000
DEFAULT_PAGE_SIZE = 50
DEFAULT_MAX_PAGES = 5


def _build_session() -> requests.Session:
    # Session-level retry for network transients
    retry = Retry(total=1, allowed_methods=["GET"], backoff_factor=1, status_forcelist=[502, 503, 504])
    session = requests.Session()
    session.mount("https://", HTTPAdapter(max_retries=retry))
    session.mount("http://", HTTPAdapter(max_retries=retry))
    return session


def format_consensus_timestamp(epoch_seconds: float) -> str:
    """Format epoch seconds the way the mirror node writes consensus timestamps."""
    return f"{epoch_seconds:.9f}"


def timestamp_key(consensus_timestamp: str) -> Tuple[int, int]:
    """Sortable (seconds, nanoseconds) key for a ``seconds.nanoseconds`` string."""
    seconds, _, fraction = str(consensus_timestamp).strip().partition(".")
    try:
        return int(seconds), int((fraction or "0").ljust(9, "0")[:9])
    except ValueError:
        return -1, 0


def _as_int(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def decode_memo(memo_base64: Optional[str]) -> Optional[str]:
    """Decode a base64 memo; None if it is not valid base64."""
    if not memo_base64:
        return ""
    try:
        return base64.b64decode(memo_base64, validate=True).decode("utf-8", errors="replace")
    except (binascii.Error, ValueError):
        return None


def parse_content_record(transaction: Dict[str, Any]) -> Optional[ContentRecord]:
    """Build a ContentRecord from a mirror node transaction, or None if irrelevant."""
    if transaction.get("name") != RELEVANT_TRANSACTION_NAME:
        return None

    memo = decode_memo(transaction.get("memo_base64"))
    if memo is None:
        logger.debug(f"Skipping transaction {transaction.get('transaction_id')}: memo is not valid base64")
        return None

    match = CID_PATTERN.search(memo)
    if not match:
        return None

    return ContentRecord(
        content_id=match.group(1),
        source_transaction_id=str(transaction.get("transaction_id") or ""),
        ledger_topic_id=str(transaction.get("entity_id") or ""),
        consensus_timestamp=str(transaction.get("consensus_timestamp") or ""),
        memo=memo,
        charged_tx_fee=_as_int(transaction.get("charged_tx_fee")),
        max_fee=_as_int(transaction.get("max_fee")),
        result=transaction.get("result"),
    )


@dataclass
class TransactionPage:
    transactions: List[Dict[str, Any]] = field(default_factory=list)
    next_link: Optional[str] = None


class MirrorNodeClient:
    """Read-only client for the mirror node transactions endpoint."""

    def __init__(
        self,
        base_url: str = DEFAULT_MIRROR_NODE_URL,
        session: Optional[requests.Session] = None,
        timeout: Any = REQUEST_TIMEOUT,
    ):
        self.base_url = base_url.rstrip("/")
        self.session = session or _build_session()
        self.timeout = timeout

    def transaction_url(self, transaction_id: str) -> str:
        return f"{self.base_url}{TRANSACTIONS_PATH}/{transaction_id}"

    def list_transactions(self, account_id: Optional[str], after: str, limit: int = DEFAULT_PAGE_SIZE) -> TransactionPage:
        """
        List transactions newer than ``after``, most recent first.

        Raises:
            DiscoveryError: If the mirror node is unreachable or the page is malformed
        """
        params = {
            "order": "desc",
            "limit": limit,
            "timestamp": f"gt:{after}",
        }
        if account_id:
            params["account.id"] = account_id
        return self._get_page(f"{self.base_url}{TRANSACTIONS_PATH}", params)

    def next_page(self, page: TransactionPage) -> Optional[TransactionPage]:
        if not page.next_link:
            return None
        return self._get_page(urljoin(self.base_url + "/", page.next_link), None)

    def _get_page(self, url: str, params: Optional[Dict[str, Any]]) -> TransactionPage:
        try:
            response = self.session.get(url, params=params, timeout=self.timeout)
            response.raise_for_status()
            data = response.json()
        except requests.RequestException as e:
            raise DiscoveryError(f"Mirror node request failed: {e}", e) from e
        except ValueError as e:
            raise DiscoveryError(f"Mirror node returned a non-JSON body: {e}", e) from e

        transactions = data.get("transactions") if isinstance(data, dict) else None
        if not isinstance(transactions, list):
            raise DiscoveryError("Mirror node response has no 'transactions' list")

        links = data.get("links") or {}
        return TransactionPage(transactions=transactions, next_link=links.get("next"))


class WatcherState(str, Enum):
    STOPPED = "stopped"
    POLLING = "polling"


class LedgerWatcher:
    """Polls the mirror node on a fixed interval and emits discovered content records."""

    def __init__(
        self,
        client: MirrorNodeClient,
        account_id: Optional[str],
        poll_interval_ms: int = DEFAULT_POLL_INTERVAL_MS,
        page_size: int = DEFAULT_PAGE_SIZE,
        max_pages: int = DEFAULT_MAX_PAGES,
        is_known: Optional[Callable[[str], bool]] = None,
        events: Optional[EventLog] = None,
        clock: Callable[[], float] = time.time,
        topic_id: Optional[str] = None,
    ):
        self.client = client
        self.account_id = account_id
        self.poll_interval_ms = poll_interval_ms
        self.page_size = page_size
        self.max_pages = max(1, max_pages)
        self.is_known = is_known
        self.events = events
        self._clock = clock
        # Only records submitted to this topic are emitted when set
        self.topic_id = topic_id or None

        self._handlers: List[Callable[[ContentRecord], None]] = []
        self._emitted: Set[str] = set()
        self._lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._state = WatcherState.STOPPED
        self._watermark: Optional[str] = None

        self.polls_completed = 0
        self.polls_failed = 0
        self.last_poll_at: Optional[str] = None
        self.last_error: Optional[str] = None

    @property
    def state(self) -> WatcherState:
        return self._state

    @property
    def watermark(self) -> Optional[str]:
        with self._lock:
            return self._watermark

    def on_discovery(self, handler: Callable[[ContentRecord], None]) -> None:
        """Register a handler called once per newly discovered content record."""
        with self._lock:
            self._handlers.append(handler)

    def start(self, poll_interval_ms: Optional[int] = None) -> None:
        """Set the watermark to now and start the polling thread."""
        with self._lock:
            if self._state == WatcherState.POLLING:
                logger.info("Ledger watcher already polling")
                return
            if poll_interval_ms is not None:
                self.poll_interval_ms = poll_interval_ms

            self._watermark = format_consensus_timestamp(self._clock())
            # Fresh cancellation token per run so an old thread can never resume
            self._stop_event = threading.Event()
            self._state = WatcherState.POLLING
            self._thread = threading.Thread(
                target=self._run,
                args=(self._stop_event,),
                name="ledger-watcher",
                daemon=True,
            )
            self._thread.start()
            watermark = self._watermark

        self._emit(
            EventType.WATCHER_STARTED,
            f"Polling mirror node every {self.poll_interval_ms / 1000:.1f}s from watermark {watermark}",
            details={"account_id": self.account_id, "watermark": watermark},
        )

    def stop(self, timeout: Optional[float] = None) -> None:
        """Stop polling. A poll already in flight finishes but never reschedules."""
        with self._lock:
            if self._state == WatcherState.STOPPED:
                return
            self._stop_event.set()
            self._state = WatcherState.STOPPED
            thread = self._thread

        self._emit(EventType.WATCHER_STOPPED, "Ledger watcher stopped")

        if timeout is not None and thread is not None and thread is not threading.current_thread():
            thread.join(timeout)

    def forget(self, content_id: str) -> None:
        """Allow a content id to be emitted again (e.g. after a failed fetch)."""
        with self._lock:
            self._emitted.discard(content_id)

    def _run(self, stop_event: threading.Event) -> None:
        while not stop_event.is_set():
            self.poll_once(cancel=stop_event)
            if stop_event.wait(self.poll_interval_ms / 1000):
                break
        logger.info("Ledger watcher loop exited")

    def poll_once(self, cancel: Optional[threading.Event] = None) -> List[ContentRecord]:
        """Run one poll cycle. Never raises; returns the records emitted."""
        with self._lock:
            if self._watermark is None:
                self._watermark = format_consensus_timestamp(self._clock())
            watermark = self._watermark

        try:
            transactions = self._fetch_new_transactions(watermark)
        except DiscoveryError as e:
            self._record_poll_failure(str(e))
            return []
        except Exception as e:
            # Any unexpected failure must not end the polling loop
            self._record_poll_failure(f"unexpected error: {e}")
            return []

        logger.info(f"Found {len(transactions)} new transactions after {watermark}")

        newest = watermark
        candidates: List[ContentRecord] = []
        for transaction in transactions:
            consensus_timestamp = str(transaction.get("consensus_timestamp") or "")
            if consensus_timestamp and timestamp_key(consensus_timestamp) > timestamp_key(newest):
                newest = consensus_timestamp

            record = parse_content_record(transaction)
            if record is None or not self._on_topic(record):
                continue
            if self._claim(record.content_id):
                candidates.append(record)

        emitted: List[ContentRecord] = []
        cancelled = False
        for record in candidates:
            if cancel is not None and cancel.is_set():
                cancelled = True
                logger.info(f"Watcher stopped mid-poll; {len(candidates) - len(emitted)} discoveries not emitted")
                break
            self._dispatch(record)
            emitted.append(record)

        with self._lock:
            if cancelled:
                for record in candidates[len(emitted):]:
                    self._emitted.discard(record.content_id)
            elif timestamp_key(newest) > timestamp_key(self._watermark):
                self._watermark = newest
            self.polls_completed += 1
            self.last_poll_at = datetime.now(timezone.utc).isoformat()

        return emitted

    def _fetch_new_transactions(self, watermark: str) -> List[Dict[str, Any]]:
        page = self.client.list_transactions(self.account_id, after=watermark, limit=self.page_size)
        transactions = list(page.transactions)
        pages = 1

        while page.next_link and pages < self.max_pages:
            page = self.client.next_page(page)
            if page is None:
                break
            transactions.extend(page.transactions)
            pages += 1

        if page is not None and page.next_link:
            logger.warning(
                f"More transactions remain after {pages} pages; older entries beyond "
                f"{len(transactions)} transactions are not examined this cycle"
            )

        return transactions

    def _on_topic(self, record: ContentRecord) -> bool:
        if self.topic_id is None or record.ledger_topic_id == self.topic_id:
            return True
        logger.debug(f"Skipping {record.content_id}: topic {record.ledger_topic_id} is not {self.topic_id}")
        return False

    def _claim(self, content_id: str) -> bool:
        """Reserve a content id for emission; False if it is a duplicate."""
        with self._lock:
            if content_id in self._emitted:
                return False
            if self.is_known is not None and self.is_known(content_id):
                return False
            self._emitted.add(content_id)
            return True

    def _dispatch(self, record: ContentRecord) -> None:
        self._emit(
            EventType.CLAIM_DISCOVERED,
            f"New claim detected: {record.content_id} (tx {record.source_transaction_id})",
            content_id=record.content_id,
            details={"topic_id": record.ledger_topic_id, "consensus_timestamp": record.consensus_timestamp},
        )

        with self._lock:
            handlers = list(self._handlers)

        for handler in handlers:
            try:
                handler(record)
            except Exception as e:
                logger.error(f"Discovery handler failed for {record.content_id}: {e}")

    def _record_poll_failure(self, error: str) -> None:
        with self._lock:
            self.polls_failed += 1
            self.last_error = error
            self.last_poll_at = datetime.now(timezone.utc).isoformat()
        self._emit(
            EventType.POLL_FAILED,
            f"Failed to check for new transactions: {error}",
            severity=EventSeverity.WARNING,
        )

    def status(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "state": self._state.value,
                "account_id": self.account_id,
                "topic_id": self.topic_id,
                "watermark": self._watermark,
                "poll_interval_ms": self.poll_interval_ms,
                "polls_completed": self.polls_completed,
                "polls_failed": self.polls_failed,
                "last_poll_at": self.last_poll_at,
                "last_error": self.last_error,
                "discovered": len(self._emitted),
            }

    def _emit(self, event_type: EventType, message: str, **kwargs) -> None:
        if self.events is not None:
            self.events.emit(event_type, message, **kwargs)
        else:
            level = logging.WARNING if kwargs.get("severity") == EventSeverity.WARNING else logging.INFO
            logger.log(level, message)
