"""
Evidence planning: structured claim + ledger record -> EvidencePlan.

The plan is the hand-off to the evidence retrieval phase. Besides queries,
priority and evidence types it embeds proofs (ledger transaction and gateway
URLs) so the content can be re-fetched and re-verified independently.
"""

import logging
from typing import List, Optional, Sequence

from .models import ClaimType, ContentProof, ContentRecord, EvidencePlan, LedgerProof, StructuredClaim, UNKNOWN

logger = logging.getLogger(__name__)

DEFAULT_MAX_QUERIES = 8
DEFAULT_FEE_THRESHOLD = 1_000_000  # tinybars
MIN_PRIORITY = 1
MAX_PRIORITY = 5
HIGH_CONFIDENCE = 0.8

BASE_EVIDENCE_TYPES = ("web_search", "news_verification")
QUANTIFIED_EVIDENCE_TYPES = ("statistical_verification", "data_validation")
ORGANIZATION_EVIDENCE_TYPES = ("official_sources", "corporate_announcements")
MEDICAL_EVIDENCE_TYPES = ("medical_journals", "clinical_trials", "fda_database")
TECHNOLOGY_EVIDENCE_TYPES = ("technical_documentation", "patents", "research_papers")


def _dedupe(values: Sequence[str]) -> List[str]:
    seen = set()
    result = []
    for value in values:
        if value not in seen:
            seen.add(value)
            result.append(value)
    return result


def generate_search_queries(claim: StructuredClaim, max_queries: int = DEFAULT_MAX_QUERIES) -> List[str]:
    """Search queries in priority order, deduplicated, capped at ``max_queries``."""
    subject, predicate, obj = claim.subject, claim.predicate, claim.object
    queries = []

    if subject and obj and UNKNOWN not in (subject, obj):
        queries.append(f'"{subject}" "{predicate}" "{obj}"')

    if claim.quantifier:
        queries.append(f'"{subject}" {claim.quantifier} {predicate} verification')

    for org in claim.entities.get("organizations", []):
        queries.append(f'"{org}" official announcement "{obj}"')

    for tech in claim.entities.get("technologies", []):
        queries.append(f'{tech} "{subject}" research study')

    for term in claim.entities.get("medical_terms", []):
        queries.append(f"{term} clinical trial results")

    return _dedupe(queries)[:max_queries]


def calculate_priority(
    claim: StructuredClaim,
    record: Optional[ContentRecord] = None,
    fee_threshold: int = DEFAULT_FEE_THRESHOLD,
) -> int:
    """Priority 1-5: quantified, scientific and medical claims rank highest."""
    priority = 1

    if claim.quantifier:
        priority += 2
    if claim.claim_type == ClaimType.SCIENTIFIC:
        priority += 2
    elif claim.claim_type == ClaimType.ORGANIZATIONAL:
        priority += 1
    if claim.has_entities("medical_terms"):
        priority += 3
    if record is not None and record.charged_tx_fee > fee_threshold:
        priority += 1
    if claim.confidence > HIGH_CONFIDENCE:
        priority += 1

    return max(MIN_PRIORITY, min(priority, MAX_PRIORITY))


def identify_evidence_types(claim: StructuredClaim) -> List[str]:
    evidence_types = list(BASE_EVIDENCE_TYPES)

    if claim.quantifier:
        evidence_types.extend(QUANTIFIED_EVIDENCE_TYPES)
    if claim.has_entities("organizations"):
        evidence_types.extend(ORGANIZATION_EVIDENCE_TYPES)
    if claim.has_entities("medical_terms"):
        evidence_types.extend(MEDICAL_EVIDENCE_TYPES)
    if claim.has_entities("technologies"):
        evidence_types.extend(TECHNOLOGY_EVIDENCE_TYPES)

    return _dedupe(evidence_types)


class EvidencePlanner:
    """Builds evidence plans. Stateless; safe to share between threads."""

    def __init__(
        self,
        fee_threshold: int = DEFAULT_FEE_THRESHOLD,
        max_queries: int = DEFAULT_MAX_QUERIES,
        mirror_node_url: Optional[str] = None,
    ):
        self.fee_threshold = fee_threshold
        self.max_queries = max_queries
        self.mirror_node_url = mirror_node_url.rstrip("/") if mirror_node_url else None

    def plan(self, claim: StructuredClaim, record: ContentRecord, gateway_urls: Sequence[str]) -> EvidencePlan:
        proof_url = None
        if self.mirror_node_url and record.source_transaction_id:
            proof_url = f"{self.mirror_node_url}/api/v1/transactions/{record.source_transaction_id}"

        plan = EvidencePlan(
            content_id=record.content_id,
            search_queries=generate_search_queries(claim, self.max_queries),
            priority_level=calculate_priority(claim, record, self.fee_threshold),
            evidence_types=identify_evidence_types(claim),
            ledger_proof=LedgerProof(
                transaction_id=record.source_transaction_id,
                consensus_timestamp=record.consensus_timestamp,
                topic_id=record.ledger_topic_id,
                mirror_node_url=proof_url,
            ),
            content_proof=ContentProof(content_id=record.content_id, gateway_urls=list(gateway_urls)),
        )

        logger.info(
            f"Evidence plan for {record.content_id}: {len(plan.search_queries)} queries, "
            f"priority {plan.priority_level}, {len(plan.evidence_types)} evidence types"
        )
        return plan
