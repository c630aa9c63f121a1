"""
Pipeline data models for ledger record -> content -> structured claim -> evidence plan.

These are intentionally lightweight (stdlib dataclasses) so they can be shared
by the ingest layer, the orchestrator and the thin API/CLI layers.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


ENTITY_CATEGORIES = (
    "organizations",
    "people",
    "numbers",
    "percentages",
    "measurements",
    "dates",
    "technologies",
    "medical_terms",
)

UNKNOWN = "unknown"


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def empty_entities() -> Dict[str, List[str]]:
    return {category: [] for category in ENTITY_CATEGORIES}


class ClaimType(str, Enum):
    QUANTIFIED = "quantified"
    COMPARATIVE = "comparative"
    SCIENTIFIC = "scientific"
    ORGANIZATIONAL = "organizational"
    GENERAL = "general"
    FRAGMENT = "fragment"
    FALLBACK = "fallback"


class FetchMode(str, Enum):
    """What the gateway fetcher does once every gateway has failed."""
    STRICT = "strict"
    BEST_EFFORT = "best_effort"


class ClaimStatus(str, Enum):
    PENDING = "pending"
    PROCESSED = "processed"
    FAILED = "failed"


# ---------------------------------------------------------------------------
# Ledger
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ContentRecord:
    """A content id anchored in a ledger transaction memo."""
    content_id: str
    source_transaction_id: str
    ledger_topic_id: str
    consensus_timestamp: str  # mirror node "seconds.nanoseconds"
    memo: str
    charged_tx_fee: int = 0
    max_fee: int = 0
    result: Optional[str] = None
    source: str = "ledger"

    @property
    def consensus_time(self) -> Optional[datetime]:
        try:
            return datetime.fromtimestamp(float(self.consensus_timestamp), tz=timezone.utc)
        except (TypeError, ValueError):
            return None

    def to_dict(self) -> Dict[str, Any]:
        consensus_time = self.consensus_time
        return {
            "content_id": self.content_id,
            "source_transaction_id": self.source_transaction_id,
            "ledger_topic_id": self.ledger_topic_id,
            "consensus_timestamp": self.consensus_timestamp,
            "consensus_time_utc": consensus_time.isoformat() if consensus_time else None,
            "memo": self.memo,
            "charged_tx_fee": self.charged_tx_fee,
            "max_fee": self.max_fee,
            "result": self.result,
            "source": self.source,
        }


# ---------------------------------------------------------------------------
# Content fetch
# ---------------------------------------------------------------------------

@dataclass
class GatewayAttempt:
    gateway: str
    duration_ms: float
    outcome: str  # success, timeout, http_error, empty_body, transport_error
    error: Optional[str] = None
    status_code: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "gateway": self.gateway,
            "duration_ms": round(self.duration_ms, 1),
            "outcome": self.outcome,
            "error": self.error,
            "status_code": self.status_code,
        }


@dataclass
class FetchResult:
    content_id: str
    gateway_used: Optional[str] = None
    raw_text: Optional[str] = None
    attempts_log: List[GatewayAttempt] = field(default_factory=list)
    succeeded: bool = False
    substituted: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "content_id": self.content_id,
            "gateway_used": self.gateway_used,
            "succeeded": self.succeeded,
            "substituted": self.substituted,
            "content_length": len(self.raw_text) if self.raw_text is not None else 0,
            "attempts_log": [a.to_dict() for a in self.attempts_log],
        }


# ---------------------------------------------------------------------------
# Structured claim
# ---------------------------------------------------------------------------

@dataclass
class QualityMetrics:
    completeness: float = 0.0
    specificity: float = 0.0
    reliability: float = 0.0

    @property
    def overall(self) -> float:
        return (self.completeness + self.specificity + self.reliability) / 3

    def to_dict(self) -> Dict[str, float]:
        return {
            "completeness": round(self.completeness, 3),
            "specificity": round(self.specificity, 3),
            "reliability": round(self.reliability, 3),
        }


@dataclass
class StructuredClaim:
    subject: str
    predicate: str
    object: str
    claim_type: ClaimType
    confidence: float
    extraction_method: str
    quantifier: Optional[str] = None
    entities: Dict[str, List[str]] = field(default_factory=empty_entities)
    semantic_coherence: Optional[float] = None
    pattern_confidence: float = 0.0
    comparison: Optional[str] = None
    methodology: Optional[str] = None
    validations: List[str] = field(default_factory=list)
    quality_metrics: QualityMetrics = field(default_factory=QualityMetrics)

    def has_entities(self, category: Optional[str] = None) -> bool:
        if category is not None:
            return bool(self.entities.get(category))
        return any(self.entities.get(c) for c in ENTITY_CATEGORIES)

    def entity_count(self) -> int:
        return sum(len(values) for values in self.entities.values())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "subject": self.subject,
            "predicate": self.predicate,
            "object": self.object,
            "quantifier": self.quantifier,
            "claim_type": self.claim_type.value,
            "confidence": round(self.confidence, 3),
            "pattern_confidence": self.pattern_confidence,
            "extraction_method": self.extraction_method,
            "semantic_coherence": (
                round(self.semantic_coherence, 4) if self.semantic_coherence is not None else None
            ),
            "comparison": self.comparison,
            "methodology": self.methodology,
            "entities": {k: list(v) for k, v in self.entities.items()},
            "validations": list(self.validations),
            "quality_metrics": self.quality_metrics.to_dict(),
        }


# ---------------------------------------------------------------------------
# Evidence plan
# ---------------------------------------------------------------------------

@dataclass
class LedgerProof:
    transaction_id: str
    consensus_timestamp: str
    topic_id: str
    mirror_node_url: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "transaction_id": self.transaction_id,
            "consensus_timestamp": self.consensus_timestamp,
            "topic_id": self.topic_id,
            "mirror_node_url": self.mirror_node_url,
        }


@dataclass
class ContentProof:
    content_id: str
    gateway_urls: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"content_id": self.content_id, "gateway_urls": list(self.gateway_urls)}


@dataclass
class EvidencePlan:
    content_id: str
    search_queries: List[str]
    priority_level: int
    evidence_types: List[str]
    ledger_proof: LedgerProof
    content_proof: ContentProof
    ready_for_evidence: bool = True
    prepared_at: str = field(default_factory=utc_now_iso)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "content_id": self.content_id,
            "search_queries": list(self.search_queries),
            "priority_level": self.priority_level,
            "evidence_types": list(self.evidence_types),
            "ledger_proof": self.ledger_proof.to_dict(),
            "content_proof": self.content_proof.to_dict(),
            "ready_for_evidence": self.ready_for_evidence,
            "prepared_at": self.prepared_at,
        }


# ---------------------------------------------------------------------------
# Processed claim
# ---------------------------------------------------------------------------

@dataclass
class ProcessedClaim:
    content_id: str
    raw_text: str
    claim: StructuredClaim
    record: ContentRecord
    plan: EvidencePlan
    processing_time_ms: float
    processed_at: str = field(default_factory=utc_now_iso)
    gateway_used: Optional[str] = None
    substituted: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "content_id": self.content_id,
            "raw_text": self.raw_text,
            "structured_claim": self.claim.to_dict(),
            "ledger_metadata": self.record.to_dict(),
            "evidence_plan": self.plan.to_dict(),
            "processing_time_ms": round(self.processing_time_ms, 1),
            "processed_at": self.processed_at,
            "gateway_used": self.gateway_used,
            "substituted": self.substituted,
        }
