"""Content gateway fetcher with ordered fallback and bounded retry.

Gateways are tried one after another in priority order; the first gateway that
answers 2xx with a non-blank body wins. What happens when every gateway fails
is decided by an explicit ``FetchMode``:

- STRICT: raise ``AllGatewaysFailedError`` listing every attempt
- BEST_EFFORT: return a locally sourced substitute text (demo/testing paths)
"""

import json
import logging
import random
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import requests
from requests.adapters import HTTPAdapter

from ..errors import AllGatewaysFailedError, FetchError
from ..pipeline.models import FetchMode, FetchResult, GatewayAttempt
from .content_store import ContentStore
from .events import EventLog, EventSeverity, EventType
from .health import HealthTracker

logger = logging.getLogger(__name__)

# Per-attempt timeout in seconds
DEFAULT_TIMEOUT_SECONDS = 15

DEFAULT_GATEWAYS = [
    "https://ipfs.filebase.io/ipfs/",
    "https://ipfs.io/ipfs/",
    "https://gateway.pinata.cloud/ipfs/",
    "https://cloudflare-ipfs.com/ipfs/",
    "https://dweb.link/ipfs/",
]

DEFAULT_HEADERS = {
    'Accept': 'text/plain, application/json, */*',
    'User-Agent': 'veriledger-ingest/0.3',
}

LOCAL_STORE_GATEWAY = "local-store"

# Used in BEST_EFFORT mode when no substitute is configured for the content id
DEFAULT_SUBSTITUTE_TEXT = (
    "The research team published findings showing that renewable energy adoption "
    "increased by 30% in developing countries during 2024."
)

# Default retry configuration (can be overridden by config/pipeline.yaml)
DEFAULT_MAX_RETRIES = 3
DEFAULT_INITIAL_BACKOFF_SECONDS = 2
DEFAULT_BACKOFF_MULTIPLIER = 2
DEFAULT_MAX_BACKOFF_SECONDS = 30
DEFAULT_JITTER_SECONDS = 0.5


@dataclass
class RetryPolicy:
    """Exponential backoff with jitter between full gateway cascades."""
    max_attempts: int = DEFAULT_MAX_RETRIES
    initial_backoff_seconds: float = DEFAULT_INITIAL_BACKOFF_SECONDS
    backoff_multiplier: float = DEFAULT_BACKOFF_MULTIPLIER
    max_backoff_seconds: float = DEFAULT_MAX_BACKOFF_SECONDS
    jitter_seconds: float = DEFAULT_JITTER_SECONDS

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

    def delay_for(self, attempt: int, rng: Optional[random.Random] = None) -> float:
        """Delay before cascade ``attempt + 1``; ``attempt`` counts from 1."""
        backoff = self.initial_backoff_seconds * (self.backoff_multiplier ** (attempt - 1))
        backoff = min(backoff, self.max_backoff_seconds)
        jitter = (rng or random).uniform(0, self.jitter_seconds) if self.jitter_seconds > 0 else 0.0
        return backoff + jitter

    @classmethod
    def from_dict(cls, data: Dict) -> "RetryPolicy":
        return cls(
            max_attempts=int(data.get('max_attempts', DEFAULT_MAX_RETRIES)),
            initial_backoff_seconds=float(data.get('initial_backoff_seconds', DEFAULT_INITIAL_BACKOFF_SECONDS)),
            backoff_multiplier=float(data.get('backoff_multiplier', DEFAULT_BACKOFF_MULTIPLIER)),
            max_backoff_seconds=float(data.get('max_backoff_seconds', DEFAULT_MAX_BACKOFF_SECONDS)),
            jitter_seconds=float(data.get('jitter_seconds', DEFAULT_JITTER_SECONDS)),
        )


def build_gateway_url(gateway: str, content_id: str) -> str:
    """Expand a gateway template: ``{cid}`` placeholder, or append to the base URL."""
    if "{cid}" in gateway:
        return gateway.format(cid=content_id)
    return f"{gateway}{content_id}"


def normalize_body(response: requests.Response) -> str:
    """Return the response body as text, pretty-printing JSON payloads."""
    text = response.text or ""
    content_type = (response.headers.get('Content-Type') or "").lower()
    stripped = text.lstrip()

    if "json" in content_type or stripped.startswith(("{", "[")):
        try:
            return json.dumps(json.loads(text), indent=2, ensure_ascii=False)
        except ValueError:
            # Not actually JSON; keep the raw text
            pass
    return text


def _build_session(pool_size: int = 10) -> requests.Session:
    # No adapter-level retries: one GET per gateway attempt
    session = requests.Session()
    adapter = HTTPAdapter(pool_connections=pool_size, pool_maxsize=pool_size, max_retries=0)
    session.mount("https://", adapter)
    session.mount("http://", adapter)
    return session


class GatewayFetcher:
    """Fetch raw content for a content id from an ordered list of gateways."""

    def __init__(
        self,
        gateways: Optional[Sequence[str]] = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        max_gateways: Optional[int] = None,
        mode: FetchMode = FetchMode.STRICT,
        retry: Optional[RetryPolicy] = None,
        substitutes: Optional[Dict[str, str]] = None,
        content_store: Optional[ContentStore] = None,
        health: Optional[HealthTracker] = None,
        events: Optional[EventLog] = None,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.gateways = list(gateways) if gateways is not None else list(DEFAULT_GATEWAYS)
        self.timeout = timeout
        self.max_gateways = max_gateways
        self.mode = FetchMode(mode)
        self.retry = retry
        self.substitutes = dict(substitutes or {})
        self.content_store = content_store
        self.health = health or HealthTracker()
        self.events = events
        self.session = session or _build_session()
        self._sleep = sleep

    def gateway_urls(self, content_id: str, gateways: Optional[Sequence[str]] = None) -> List[str]:
        """Full URL of the content on every configured gateway."""
        return [build_gateway_url(g, content_id) for g in (gateways if gateways is not None else self.gateways)]

    def fetch(
        self,
        content_id: str,
        gateways: Optional[Sequence[str]] = None,
        timeout: Optional[float] = None,
        max_gateways: Optional[int] = None,
    ) -> FetchResult:
        """
        Fetch content, first success wins.

        Args:
            content_id: Content identifier to fetch
            gateways: Ordered gateway templates (defaults to the configured list)
            timeout: Per-attempt timeout in seconds
            max_gateways: Only try the first N gateways

        Returns:
            FetchResult with the attempt log

        Raises:
            ValueError: On an empty content id or gateway list
            AllGatewaysFailedError: In STRICT mode when every attempt failed
        """
        if not content_id or not content_id.strip():
            raise ValueError("content_id must be a non-empty string")

        gateway_list = list(gateways if gateways is not None else self.gateways)
        if not gateway_list:
            raise ValueError("at least one gateway is required")

        limit = max_gateways if max_gateways is not None else self.max_gateways
        if limit is not None and limit > 0:
            gateway_list = gateway_list[:limit]

        timeout = timeout if timeout is not None else self.timeout
        result = FetchResult(content_id=content_id)

        stored = self.content_store.get(content_id) if self.content_store is not None else None
        if stored is not None:
            logger.info(f"Content for {content_id} found in local store")
            result.attempts_log.append(GatewayAttempt(gateway=LOCAL_STORE_GATEWAY, duration_ms=0.0, outcome="success"))
            result.gateway_used = LOCAL_STORE_GATEWAY
            result.raw_text = stored["content"]
            result.succeeded = True
            return result

        cascades = self.retry.max_attempts if self.retry else 1

        for cascade in range(1, cascades + 1):
            hit = self._run_cascade(content_id, gateway_list, timeout, result.attempts_log)
            if hit is not None:
                gateway, text = hit
                result.gateway_used = gateway
                result.raw_text = text
                result.succeeded = True
                self._emit(
                    EventType.CONTENT_FETCHED,
                    f"Fetched {len(text)} chars for {content_id} from {gateway}",
                    content_id=content_id,
                    gateway=gateway,
                    details={"attempts": len(result.attempts_log)},
                )
                return result

            if cascade < cascades:
                delay = self.retry.delay_for(cascade)
                logger.warning(
                    f"Retry {cascade}/{cascades} for {content_id} in {delay:.1f}s: "
                    f"all {len(gateway_list)} gateways failed"
                )
                self._sleep(delay)

        self._emit(
            EventType.FETCH_EXHAUSTED,
            f"All {len(gateway_list)} gateways failed for {content_id} ({len(result.attempts_log)} attempts)",
            severity=EventSeverity.CRITICAL if self.mode == FetchMode.STRICT else EventSeverity.WARNING,
            content_id=content_id,
            details={"failures": [a.to_dict() for a in result.attempts_log]},
        )

        if self.mode == FetchMode.BEST_EFFORT:
            result.raw_text = self._substitute(content_id)
            result.substituted = True
            self._emit(
                EventType.CONTENT_SUBSTITUTED,
                f"Using local substitute content for {content_id} (best_effort mode)",
                severity=EventSeverity.WARNING,
                content_id=content_id,
            )
            return result

        raise AllGatewaysFailedError(content_id, result.attempts_log)

    def _run_cascade(
        self,
        content_id: str,
        gateways: List[str],
        timeout: float,
        attempts: List[GatewayAttempt],
    ) -> Optional[Tuple[str, str]]:
        """One pass over the gateways. Returns (gateway, text) or None."""
        for index, gateway in enumerate(gateways, 1):
            logger.debug(f"Trying gateway {index}/{len(gateways)} for {content_id}: {gateway}")
            started = time.monotonic()

            try:
                text, status_code = self._try_gateway(gateway, content_id, timeout)
            except FetchError as e:
                duration_ms = (time.monotonic() - started) * 1000
                attempts.append(GatewayAttempt(
                    gateway=gateway,
                    duration_ms=duration_ms,
                    outcome=e.outcome,
                    error=e.message,
                    status_code=e.status_code,
                ))
                self.health.record_failure(gateway, e.message)
                logger.warning(f"Gateway {gateway} failed for {content_id} after {duration_ms:.0f}ms: {e.message}")
                self._emit(
                    EventType.GATEWAY_FAILED,
                    f"Gateway {gateway} failed for {content_id}: {e.message}",
                    severity=EventSeverity.INFO,
                    content_id=content_id,
                    gateway=gateway,
                    details={"outcome": e.outcome, "duration_ms": round(duration_ms, 1)},
                )
                continue

            duration_ms = (time.monotonic() - started) * 1000
            attempts.append(GatewayAttempt(
                gateway=gateway,
                duration_ms=duration_ms,
                outcome="success",
                status_code=status_code,
            ))
            self.health.record_success(gateway, duration_ms)
            logger.info(f"Fetched {content_id} from {gateway} in {duration_ms:.0f}ms ({len(text)} chars)")
            return gateway, text

        return None

    def _try_gateway(self, gateway: str, content_id: str, timeout: float) -> Tuple[str, int]:
        """Single GET against one gateway (internal implementation with no retry logic)."""
        url = build_gateway_url(gateway, content_id)

        try:
            response = self.session.get(url, timeout=timeout, headers=DEFAULT_HEADERS)
        except requests.Timeout as e:
            raise FetchError(gateway, content_id, f"timed out after {timeout}s", outcome="timeout", original_error=e) from e
        except requests.RequestException as e:
            raise FetchError(gateway, content_id, f"request failed: {e}", outcome="transport_error", original_error=e) from e

        if not 200 <= response.status_code < 300:
            raise FetchError(
                gateway, content_id, f"HTTP {response.status_code}",
                outcome="http_error", status_code=response.status_code,
            )

        text = normalize_body(response)
        if not text.strip():
            raise FetchError(
                gateway, content_id, "empty body",
                outcome="empty_body", status_code=response.status_code,
            )

        return text, response.status_code

    def _substitute(self, content_id: str) -> str:
        if content_id in self.substitutes:
            return self.substitutes[content_id]
        return self.substitutes.get("default", DEFAULT_SUBSTITUTE_TEXT)

    def _emit(self, event_type: EventType, message: str, **kwargs) -> None:
        if self.events is not None:
            self.events.emit(event_type, message, **kwargs)
