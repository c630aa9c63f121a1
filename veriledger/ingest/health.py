"""
Gateway health tracking for content fetch reliability monitoring.

Tracks per-gateway success/failure history and computes health status.
Health is diagnostic: the fetcher still tries gateways in configured order.
"""

import json
import logging
import os
import threading
from dataclasses import dataclass, field, fields, asdict
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


# Health status thresholds
CONSECUTIVE_FAILURES_DEGRADED = 3
CONSECUTIVE_FAILURES_DOWN = 7

# Rolling average window
ROLLING_AVERAGE_ATTEMPTS = 7


@dataclass
class GatewayHealth:
    """Health status for a single content gateway."""
    gateway: str
    last_success_at: Optional[str] = None
    last_failure_at: Optional[str] = None
    consecutive_failures: int = 0
    total_successes: int = 0
    total_failures: int = 0
    last_error: Optional[str] = None
    latency_history_ms: List[float] = field(default_factory=list)  # Last N successes
    avg_latency_ms: float = 0.0
    status: str = "OK"  # OK, DEGRADED, DOWN

    def update_status(self):
        """Update status based on consecutive failures."""
        if self.consecutive_failures >= CONSECUTIVE_FAILURES_DOWN:
            self.status = "DOWN"
        elif self.consecutive_failures >= CONSECUTIVE_FAILURES_DEGRADED:
            self.status = "DEGRADED"
        else:
            self.status = "OK"

    def record_success(self, duration_ms: float, timestamp: Optional[datetime] = None):
        """Record a successful fetch."""
        if timestamp is None:
            timestamp = datetime.now(timezone.utc)

        self.last_success_at = timestamp.isoformat()
        self.consecutive_failures = 0
        self.total_successes += 1
        self.last_error = None

        self.latency_history_ms.append(duration_ms)
        if len(self.latency_history_ms) > ROLLING_AVERAGE_ATTEMPTS:
            self.latency_history_ms = self.latency_history_ms[-ROLLING_AVERAGE_ATTEMPTS:]

        self.avg_latency_ms = sum(self.latency_history_ms) / len(self.latency_history_ms)

        self.update_status()

    def record_failure(self, error: str, timestamp: Optional[datetime] = None):
        """Record a failed fetch."""
        if timestamp is None:
            timestamp = datetime.now(timezone.utc)

        self.last_failure_at = timestamp.isoformat()
        self.consecutive_failures += 1
        self.total_failures += 1
        self.last_error = error

        self.update_status()


class HealthTracker:
    """Tracks health for all gateways. Safe to share between fetch threads."""

    def __init__(self, gateways: Optional[Dict[str, GatewayHealth]] = None):
        self.gateways: Dict[str, GatewayHealth] = gateways or {}
        self.last_updated_at: Optional[str] = None
        self._lock = threading.Lock()

    def get_or_create(self, gateway: str) -> GatewayHealth:
        """Get existing gateway health or create new one."""
        with self._lock:
            if gateway not in self.gateways:
                self.gateways[gateway] = GatewayHealth(gateway=gateway)
            return self.gateways[gateway]

    def record_success(self, gateway: str, duration_ms: float):
        health = self.get_or_create(gateway)
        previous = health.status
        with self._lock:
            health.record_success(duration_ms)
            self.last_updated_at = health.last_success_at
        if previous != "OK":
            logger.info(f"Gateway recovered: {gateway} ({previous} -> OK)")

    def record_failure(self, gateway: str, error: str):
        health = self.get_or_create(gateway)
        previous = health.status
        with self._lock:
            health.record_failure(error)
            self.last_updated_at = health.last_failure_at
        if health.status != previous:
            logger.warning(f"Gateway {gateway} is now {health.status} after {health.consecutive_failures} consecutive failures")

    def get_summary(self) -> Dict[str, Any]:
        """Get summary of health across all gateways."""
        with self._lock:
            gateways = list(self.gateways.values())

        statuses = {"OK": 0, "DEGRADED": 0, "DOWN": 0}
        for health in gateways:
            statuses[health.status] = statuses.get(health.status, 0) + 1

        degraded = [g.gateway for g in gateways if g.status == "DEGRADED"]
        down = [g.gateway for g in gateways if g.status == "DOWN"]

        return {
            "total_gateways": len(gateways),
            "status_counts": statuses,
            "degraded_gateways": degraded,
            "down_gateways": down,
            "overall_status": "DOWN" if down and len(down) == len(gateways) else ("DEGRADED" if degraded or down else "OK")
        }

    def to_dict(self) -> Dict:
        """Serialize to dict."""
        with self._lock:
            gateways = {k: asdict(v) for k, v in self.gateways.items()}
        return {
            "last_updated_at": self.last_updated_at,
            "gateways": gateways,
            "summary": self.get_summary()
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "HealthTracker":
        """Deserialize from dict."""
        tracker = cls()
        tracker.last_updated_at = data.get("last_updated_at")

        known = {f.name for f in fields(GatewayHealth)}
        for gateway, gateway_data in data.get("gateways", {}).items():
            values = {k: v for k, v in gateway_data.items() if k in known}
            values.setdefault("gateway", gateway)
            tracker.gateways[gateway] = GatewayHealth(**values)

        return tracker


def load_health_tracker(path: str) -> HealthTracker:
    """Load health tracker from disk, or create new one."""
    if os.path.exists(path):
        try:
            with open(path, 'r') as f:
                data = json.load(f)
            return HealthTracker.from_dict(data)
        except (json.JSONDecodeError, TypeError, AttributeError) as e:
            logger.warning(f"Could not load gateway health from {path}: {e}")
            return HealthTracker()

    return HealthTracker()


def save_health_tracker(tracker: HealthTracker, path: str):
    """Save health tracker to disk."""
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)

    with open(path, 'w') as f:
        json.dump(tracker.to_dict(), f, indent=2)
