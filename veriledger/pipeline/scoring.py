"""
Validation pass and quality metrics for structured claims.

Confidence adjustments (applied in order, then clamped to [0.1, 0.95]):
    complete subject/predicate/object     +0.10
    numeric quantifier present            +0.15
    any entity extracted                  +0.05
    subject shorter than 3 characters     -0.10
    object shorter than 3 characters      -0.10
    semantic coherence above 0.7          +0.10

Quality metrics are diagnostic only and never feed back into confidence.
"""

from typing import Optional

from .models import ClaimType, QualityMetrics, StructuredClaim, UNKNOWN

MIN_CONFIDENCE = 0.1
MAX_CONFIDENCE = 0.95
COHERENCE_THRESHOLD = 0.7
MIN_COMPONENT_LENGTH = 3

SCIENTIFIC_TERMS = ("study", "research", "analysis", "data", "evidence", "results")
HEDGING_TERMS = ("maybe", "possibly", "might", "could be", "seems")
SPECIFIC_CLAIM_TYPES = (ClaimType.QUANTIFIED, ClaimType.SCIENTIFIC, ClaimType.COMPARATIVE)


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(value, high))


def _populated(value: Optional[str]) -> bool:
    return bool(value and value.strip() and value != UNKNOWN)


def is_complete(claim: StructuredClaim) -> bool:
    return all(_populated(v) for v in (claim.subject, claim.predicate, claim.object))


def validate_and_score(claim: StructuredClaim, text: str) -> StructuredClaim:
    """Apply confidence adjustments and attach validations and quality metrics.

    Mutates and returns ``claim``.
    """
    score = claim.confidence
    validations = []

    if is_complete(claim):
        score += 0.1
        validations.append("Complete S-P-O structure")

    if claim.quantifier:
        score += 0.15
        validations.append("Quantified claim detected")

    if claim.has_entities():
        score += 0.05
        validations.append("Rich entity extraction")

    if claim.subject and len(claim.subject) < MIN_COMPONENT_LENGTH:
        score -= 0.1
        validations.append("Short subject penalty")

    if claim.object and len(claim.object) < MIN_COMPONENT_LENGTH:
        score -= 0.1
        validations.append("Short object penalty")

    if claim.semantic_coherence is not None and claim.semantic_coherence > COHERENCE_THRESHOLD:
        score += 0.1
        validations.append("High semantic coherence")

    claim.confidence = clamp(score, MIN_CONFIDENCE, MAX_CONFIDENCE)
    claim.validations = validations
    claim.quality_metrics = compute_quality_metrics(claim, text)
    return claim


def compute_quality_metrics(claim: StructuredClaim, text: str) -> QualityMetrics:
    lowered = (text or "").lower()

    populated = sum(1 for v in (claim.subject, claim.predicate, claim.object) if _populated(v))
    completeness = populated / 3

    specificity = 0.5
    if claim.quantifier:
        specificity += 0.2
    specificity += min(claim.entity_count() * 0.05, 0.3)
    if claim.claim_type in SPECIFIC_CLAIM_TYPES:
        specificity += 0.1
    specificity = min(specificity, 1.0)

    reliability = 0.5
    if any(term in lowered for term in SCIENTIFIC_TERMS):
        reliability += 0.2
    if claim.quantifier:
        reliability += 0.2
    if any(term in lowered for term in HEDGING_TERMS):
        reliability -= 0.2
    reliability = clamp(reliability, 0.1, 1.0)

    return QualityMetrics(completeness=completeness, specificity=specificity, reliability=reliability)
