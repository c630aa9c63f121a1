"""
Claim structuring: raw text -> subject/predicate/object claim with confidence.

Extraction is an ordered cascade of rules, first match wins:
    quantified (0.90) > comparative (0.85) > scientific (0.80)
    > organizational (0.75) > general (0.60)
If no rule matches, fallback_structure() always produces a claim, so any str
input yields a valid StructuredClaim.

Only a leading window of the text is structured (see _structuring_window), so
long documents cost the same as their opening sentences. After extraction:
entity extraction when a rule matched, optional semantic enrichment (skipped
on any oracle failure), then the validation pass.
"""

import copy
import hashlib
import logging
import re
import threading
import time
from collections import Counter, OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Pattern, Sequence, Tuple

from ..errors import StructuringError
from ..ingest.events import EventSeverity, EventType
from .entities import extract_entities
from .models import ClaimType, StructuredClaim, UNKNOWN
from .scoring import MAX_CONFIDENCE, validate_and_score
from .semantic import COHERENCE_THRESHOLD, SemanticOracle, semantic_coherence

logger = logging.getLogger(__name__)

DEFAULT_CACHE_SIZE = 100
MAX_STRUCTURE_CHARS = 1000
ENRICHMENT_BOOST = 0.1

FRAGMENT_CONFIDENCE = 0.3
FALLBACK_CONFIDENCE = 0.4
FALLBACK_VERBS = {
    "is", "are", "was", "were", "has", "have", "will", "can",
    "could", "should", "would", "did", "does", "do",
}

_TRAILING_PUNCTUATION = " \t\r\n.!?;,:"
_SENTENCE_END = re.compile(r"[.!?\n]")


def _clean(value: Optional[str]) -> str:
    if value is None:
        return ""
    return value.strip().rstrip(_TRAILING_PUNCTUATION).strip()


def _structuring_window(text: str, limit: int = MAX_STRUCTURE_CHARS) -> str:
    """Leading part of text to structure, cut at the last sentence end inside the limit."""
    if len(text) <= limit:
        return text
    window = text[:limit]
    ends = [m.end() for m in _SENTENCE_END.finditer(window)]
    return window[:ends[-1]] if ends else window


@dataclass(frozen=True)
class ExtractionRule:
    """One cascade step: a pattern plus a builder that maps a match to claim fields."""
    name: str
    claim_type: ClaimType
    base_confidence: float
    pattern: Pattern
    build: Callable[["re.Match"], Dict[str, Any]]

    def apply(self, text: str) -> Optional[StructuredClaim]:
        match = self.pattern.search(text)
        if not match:
            return None

        fields = self.build(match)
        if not all(fields.get(k) for k in ("subject", "predicate", "object")):
            return None

        return StructuredClaim(
            claim_type=self.claim_type,
            confidence=self.base_confidence,
            pattern_confidence=self.base_confidence,
            extraction_method=self.name,
            **fields,
        )


def _build_quantified(m) -> Dict[str, Any]:
    return {
        "subject": _clean(m.group(1)),
        "predicate": _clean(m.group(2)),
        "object": _clean(m.group(3)),
        "quantifier": m.group(4).strip(),
    }


def _build_comparative(m) -> Dict[str, Any]:
    comparison = _clean(m.group(5))
    return {
        "subject": _clean(m.group(1)),
        "predicate": f"{m.group(2)} {m.group(3)}".strip(),
        # "X is faster than Y" has no separate object; the target is the object
        "object": _clean(m.group(4)) or comparison,
        "comparison": comparison,
    }


def _build_scientific(m) -> Dict[str, Any]:
    return {
        "subject": _clean(m.group(1)),
        "predicate": _clean(m.group(3)),
        "object": _clean(m.group(4)),
        "methodology": _clean(m.group(2)) or None,
    }


def _build_organizational(m) -> Dict[str, Any]:
    return {
        "subject": f"{m.group(1)} {m.group(2)}".strip(),
        "predicate": _clean(m.group(3)),
        "object": _clean(m.group(4)),
    }


def _build_general(m) -> Dict[str, Any]:
    return {
        "subject": _clean(m.group(1)),
        "predicate": _clean(m.group(2)),
        "object": _clean(m.group(3)),
    }


EXTRACTION_RULES: Sequence[ExtractionRule] = (
    ExtractionRule(
        name="quantified",
        claim_type=ClaimType.QUANTIFIED,
        base_confidence=0.9,
        pattern=re.compile(
            r"\b([^.!?\n]+?)\s+(discovered|announced|showed|found|developed|created|increased|decreased"
            r"|reduced|improved|reported|demonstrated)\s+([^.!?\n]+?)\s+(?:by|to|of|at)\s+"
            r"(\d+(?:\.\d+)?\s*-?(?:%|percent|times?|x|fold))(?!\w)",
            re.IGNORECASE,
        ),
        build=_build_quantified,
    ),
    ExtractionRule(
        name="comparative",
        claim_type=ClaimType.COMPARATIVE,
        base_confidence=0.85,
        pattern=re.compile(
            r"\b([^.!?\n]+?)\s+(is|are|was|were)\s+(more|less|better|worse|faster|slower|higher|lower"
            r"|greater|smaller)(?:\s+([^.!?\n]+?))?\s+(?:than|compared to)\s+([^.!?\n]+)",
            re.IGNORECASE,
        ),
        build=_build_comparative,
    ),
    ExtractionRule(
        name="scientific",
        claim_type=ClaimType.SCIENTIFIC,
        base_confidence=0.8,
        pattern=re.compile(
            r"\b(researchers?|scientists?|study|research|clinical trial|experiment)"
            r"(?:\s+([^.!?\n]+?))?\s+(found|discovered|showed|revealed|demonstrated|concluded)\s+([^.!?\n]+)",
            re.IGNORECASE,
        ),
        build=_build_scientific,
    ),
    ExtractionRule(
        name="organizational",
        claim_type=ClaimType.ORGANIZATIONAL,
        base_confidence=0.75,
        pattern=re.compile(
            r"\b((?i:company|corporation|organization|team|university|institute))\s+"
            r"([A-Z][A-Za-z&]*(?:\s+[A-Z][A-Za-z&]*)*)\s+"
            r"((?i:announced|launched|developed|created|released))\s+([^.!?\n]+)"
        ),
        build=_build_organizational,
    ),
    ExtractionRule(
        name="general",
        claim_type=ClaimType.GENERAL,
        base_confidence=0.6,
        pattern=re.compile(
            r"\b([^.!?\n]+?)\s+(is|are|was|were|will be|has|have|had|does|do|did)\s+([^.!?\n]+)",
            re.IGNORECASE,
        ),
        build=_build_general,
    ),
)


def fallback_structure(text: str) -> StructuredClaim:
    """Structure text that no rule matched. Never fails."""
    sentences = [s for s in re.split(r"[.!?]+", text) if s.strip()]
    main_sentence = sentences[0] if sentences else text
    words = main_sentence.split()

    if len(words) < 3:
        return StructuredClaim(
            subject=text.strip() or UNKNOWN,
            predicate="mentions",
            object="topic",
            claim_type=ClaimType.FRAGMENT,
            confidence=FRAGMENT_CONFIDENCE,
            pattern_confidence=FRAGMENT_CONFIDENCE,
            extraction_method="fallback",
        )

    verb_index = next(
        (i for i, word in enumerate(words) if word.lower() in FALLBACK_VERBS),
        len(words) // 2,
    )

    return StructuredClaim(
        subject=" ".join(words[:verb_index]) or UNKNOWN,
        predicate=words[verb_index],
        object=" ".join(words[verb_index + 1:]) or UNKNOWN,
        claim_type=ClaimType.FALLBACK,
        confidence=FALLBACK_CONFIDENCE,
        pattern_confidence=FALLBACK_CONFIDENCE,
        extraction_method="fallback",
    )


class ClaimStructurer:
    """Turns claim text into a scored StructuredClaim. Safe to share between threads."""

    def __init__(
        self,
        oracle: Optional[SemanticOracle] = None,
        rules: Sequence[ExtractionRule] = EXTRACTION_RULES,
        cache_size: int = DEFAULT_CACHE_SIZE,
        events=None,
    ):
        self.oracle = oracle
        self.rules = tuple(rules)
        self.cache_size = cache_size
        self.events = events

        self._cache: "OrderedDict[str, StructuredClaim]" = OrderedDict()
        self._lock = threading.Lock()
        self._total = 0
        self._cache_hits = 0
        self._by_method: Counter = Counter()
        self._by_type: Counter = Counter()
        self._enrichment_applied = 0
        self._enrichment_skipped = 0
        self._total_ms = 0.0

    def structure(self, raw_text: str) -> StructuredClaim:
        """
        Structure raw claim text.

        Args:
            raw_text: Claim text (may be empty)

        Returns:
            An independent StructuredClaim; callers may mutate it freely

        Raises:
            StructuringError: If raw_text is not a str
        """
        if not isinstance(raw_text, str):
            raise StructuringError(f"Claim text must be str, got {type(raw_text).__name__}")

        started = time.perf_counter()
        key = hashlib.sha256(raw_text.encode("utf-8")).hexdigest()

        with self._lock:
            self._total += 1
            cached = self._cache.get(key)
            if cached is not None:
                self._cache_hits += 1
                return copy.deepcopy(cached)

        text = _structuring_window(raw_text)
        claim, matched = self._extract(text)
        if matched:
            claim.entities = extract_entities(text)
        enriched = self._enrich(claim, text)
        validate_and_score(claim, text)

        elapsed_ms = (time.perf_counter() - started) * 1000
        logger.debug(
            f"Structured claim via {claim.extraction_method}: "
            f"{claim.subject!r} / {claim.predicate!r} / {claim.object!r} ({claim.confidence:.2f})"
        )

        with self._lock:
            self._by_method[claim.extraction_method] += 1
            self._by_type[claim.claim_type.value] += 1
            if enriched:
                self._enrichment_applied += 1
            else:
                self._enrichment_skipped += 1
            self._total_ms += elapsed_ms

            self._cache[key] = copy.deepcopy(claim)
            while len(self._cache) > self.cache_size:
                self._cache.popitem(last=False)

        return claim

    def _extract(self, text: str) -> Tuple[StructuredClaim, bool]:
        for rule in self.rules:
            claim = rule.apply(text)
            if claim is not None:
                return claim, True
        return fallback_structure(text), False

    def _enrich(self, claim: StructuredClaim, text: str) -> bool:
        """Apply semantic coherence when an oracle is usable. Returns True if applied."""
        if self.oracle is None or not self.oracle.is_available():
            return False

        try:
            coherence = semantic_coherence(self.oracle, text, claim.subject, claim.object)
        except Exception as e:
            # Enrichment is optional; any oracle failure falls back to the pattern result
            logger.warning(f"Semantic enrichment skipped: {e}")
            if self.events is not None:
                self.events.emit(
                    EventType.ORACLE_SKIPPED,
                    f"Semantic enrichment skipped: {e}",
                    severity=EventSeverity.WARNING,
                )
            return False

        claim.semantic_coherence = coherence
        if coherence > COHERENCE_THRESHOLD:
            claim.confidence = min(claim.confidence + ENRICHMENT_BOOST, MAX_CONFIDENCE)
        return True

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            computed = self._total - self._cache_hits
            return {
                "total_structured": self._total,
                "cache_hits": self._cache_hits,
                "cache_hit_rate": round(self._cache_hits / self._total, 3) if self._total else 0.0,
                "cache_size": len(self._cache),
                "by_method": dict(self._by_method),
                "by_claim_type": dict(self._by_type),
                "enrichment_applied": self._enrichment_applied,
                "enrichment_skipped": self._enrichment_skipped,
                "avg_processing_ms": round(self._total_ms / computed, 2) if computed else 0.0,
            }

    def status(self) -> Dict[str, Any]:
        return {
            "rules": [rule.name for rule in self.rules],
            "oracle_configured": self.oracle is not None,
            "oracle_available": bool(self.oracle is not None and self.oracle.is_available()),
            "oracle_model": getattr(self.oracle, "model", None),
            "stats": self.stats(),
        }
