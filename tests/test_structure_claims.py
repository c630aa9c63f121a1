"""
Tests for claim structuring.

Covers the extraction cascade (precedence and per-rule fields), the fallback
branch for text no rule matches, semantic enrichment and the result cache.
"""

import time

import pytest

from veriledger.errors import OracleError, StructuringError
from veriledger.ingest.events import EventLog, EventType
from veriledger.pipeline.models import ClaimType, UNKNOWN
from veriledger.pipeline.semantic import SemanticOracle
from veriledger.pipeline.structure_claims import (
    EXTRACTION_RULES,
    MAX_STRUCTURE_CHARS,
    ClaimStructurer,
    _structuring_window,
    fallback_structure,
)


class FixedOracle(SemanticOracle):
    """Returns the same unit vector for every text (coherence 1.0)."""

    def __init__(self):
        self.calls = []

    def embed(self, text):
        self.calls.append(text)
        return [1.0, 0.0]


class FailingOracle(SemanticOracle):
    def embed(self, text):
        raise OracleError("model loading")


class NanOracle(SemanticOracle):
    def embed(self, text):
        return [float("nan"), 1.0]


class UnavailableOracle(SemanticOracle):
    def embed(self, text):
        raise AssertionError("should not be called")

    def is_available(self):
        return False


@pytest.fixture
def structurer():
    return ClaimStructurer()


class TestCascadeOrder:
    """Rule order is fixed: quantified, comparative, scientific, organizational, general."""

    def test_rule_order(self):
        assert [r.name for r in EXTRACTION_RULES] == [
            "quantified", "comparative", "scientific", "organizational", "general",
        ]

    def test_base_confidences(self):
        assert [r.base_confidence for r in EXTRACTION_RULES] == [0.9, 0.85, 0.8, 0.75, 0.6]

    def test_quantified_beats_general(self, structurer):
        """Text matching both quantified and general patterns is quantified."""
        claim = structurer.structure("The new model is great and improved accuracy by 12%")
        assert claim.claim_type == ClaimType.QUANTIFIED


class TestQuantified:
    """Tests for the quantified rule."""

    def test_company_output_example(self, structurer):
        claim = structurer.structure("Company X increased output by 40%")

        assert claim.claim_type == ClaimType.QUANTIFIED
        assert claim.subject == "Company X"
        assert claim.predicate == "increased"
        assert claim.object == "output"
        assert "40%" in claim.quantifier
        assert claim.pattern_confidence >= 0.9
        assert claim.extraction_method == "quantified"

    @pytest.mark.parametrize("text,quantifier", [
        ("The drug reduced symptoms by 3 times", "3 times"),
        ("Engineers improved throughput by 10-fold", "10-fold"),
        ("The update improved speed by 2.5x", "2.5x"),
        ("The campaign increased turnout to 15 percent", "15 percent"),
    ])
    def test_quantifier_forms(self, structurer, text, quantifier):
        claim = structurer.structure(text)
        assert claim.claim_type == ClaimType.QUANTIFIED
        assert claim.quantifier == quantifier


class TestComparative:
    """Tests for the comparative rule."""

    def test_with_object(self, structurer):
        claim = structurer.structure("Solar panels are more efficient than coal plants")

        assert claim.claim_type == ClaimType.COMPARATIVE
        assert claim.subject == "Solar panels"
        assert claim.predicate == "are more"
        assert claim.object == "efficient"
        assert claim.comparison == "coal plants"

    def test_without_object_uses_target(self, structurer):
        claim = structurer.structure("Product A is faster than Product B.")

        assert claim.claim_type == ClaimType.COMPARATIVE
        assert claim.object == "Product B"
        assert claim.comparison == "Product B"

    def test_compared_to(self, structurer):
        claim = structurer.structure("Rail travel is better compared to flying")

        assert claim.claim_type == ClaimType.COMPARATIVE
        assert claim.comparison == "flying"

    def test_unlisted_comparator_is_general(self, structurer):
        claim = structurer.structure("Electric cars are cheaper compared to gas cars")
        assert claim.claim_type == ClaimType.GENERAL


class TestScientific:
    """Tests for the scientific rule."""

    def test_researchers_with_methodology(self, structurer):
        claim = structurer.structure("Researchers at MIT found that sleep improves memory")

        assert claim.claim_type == ClaimType.SCIENTIFIC
        assert claim.subject == "Researchers"
        assert claim.predicate == "found"
        assert claim.object == "that sleep improves memory"
        assert claim.methodology == "at MIT"

    def test_study_without_clause(self, structurer):
        claim = structurer.structure("A recent study concluded that coffee is harmless")

        assert claim.claim_type == ClaimType.SCIENTIFIC
        assert claim.subject == "study"
        assert claim.methodology is None


class TestOrganizational:
    """Tests for the organizational rule."""

    def test_company_announcement(self, structurer):
        claim = structurer.structure("Company Acme Robotics announced a new warehouse robot")

        assert claim.claim_type == ClaimType.ORGANIZATIONAL
        assert claim.subject == "Company Acme Robotics"
        assert claim.predicate == "announced"
        assert claim.object == "a new warehouse robot"


class TestGeneral:
    """Tests for the general rule."""

    def test_copula(self, structurer):
        claim = structurer.structure("The sky is blue")

        assert claim.claim_type == ClaimType.GENERAL
        assert (claim.subject, claim.predicate, claim.object) == ("The sky", "is", "blue")
        assert claim.pattern_confidence == 0.6


class TestFallback:
    """Text that matches no rule still yields a valid claim."""

    def test_short_text_is_fragment(self):
        claim = fallback_structure("Hello world")

        assert claim.claim_type == ClaimType.FRAGMENT
        assert claim.subject == "Hello world"
        assert claim.predicate == "mentions"
        assert claim.object == "topic"
        assert claim.confidence == 0.3

    def test_split_at_midpoint(self):
        claim = fallback_structure("Water boils quickly at sea level")

        assert claim.claim_type == ClaimType.FALLBACK
        assert claim.subject == "Water boils quickly"
        assert claim.predicate == "at"
        assert claim.object == "sea level"
        assert claim.confidence == 0.4

    def test_split_at_modal_verb(self):
        claim = fallback_structure("Prices could rise sharply next year")

        assert claim.subject == "Prices"
        assert claim.predicate == "could"
        assert claim.object == "rise sharply next year"

    def test_leading_verb_gives_unknown_subject(self):
        claim = fallback_structure("Can anyone verify this")
        assert claim.subject == UNKNOWN
        assert claim.predicate == "Can"

    @pytest.mark.parametrize("text", ["", "   ", "@#$%^&*", "!!!", "数据显示增长", "🚀🚀🚀 🌕"])
    def test_any_text_yields_valid_claim(self, structurer, text):
        claim = structurer.structure(text)

        assert claim.subject and claim.predicate and claim.object
        assert 0.1 <= claim.confidence <= 0.95

    def test_empty_text_subject_unknown(self, structurer):
        claim = structurer.structure("")
        assert claim.claim_type == ClaimType.FRAGMENT
        assert claim.subject == UNKNOWN

    def test_non_text_rejected(self, structurer):
        with pytest.raises(StructuringError):
            structurer.structure(None)

    def test_fallback_claim_has_no_entities(self, structurer):
        claim = structurer.structure("Quantum blockchain platform rollout tomorrow")

        assert claim.extraction_method == "fallback"
        assert claim.has_entities() is False
        assert claim.validations == ["Complete S-P-O structure"]
        assert claim.confidence == pytest.approx(0.5)


class TestLongText:
    """Only a leading window of long documents is structured."""

    def test_long_unmatched_text_is_fast(self, structurer):
        text = (
            "Officials reported progress and engineers improved roads near the river "
            "while crews developed plans for bridges "
        ) * 200
        assert len(text) > 20000

        started = time.perf_counter()
        claim = structurer.structure(text)
        elapsed = time.perf_counter() - started

        assert claim.claim_type == ClaimType.FALLBACK
        assert elapsed < 2.0

    def test_long_article_uses_leading_sentence(self, structurer):
        text = "Company X increased output by 40%. " + "The committee met again on Tuesday morning. " * 600

        started = time.perf_counter()
        claim = structurer.structure(text)
        elapsed = time.perf_counter() - started

        assert claim.claim_type == ClaimType.QUANTIFIED
        assert claim.subject == "Company X"
        assert claim.quantifier == "40%"
        assert elapsed < 2.0

    def test_window_cut_at_sentence_end(self):
        text = "The sky is blue. " * 100

        window = _structuring_window(text)

        assert len(window) <= MAX_STRUCTURE_CHARS
        assert window.endswith(".")

    def test_window_without_sentence_end(self):
        assert _structuring_window("word " * 500) == ("word " * 500)[:MAX_STRUCTURE_CHARS]

    def test_short_text_untouched(self):
        assert _structuring_window("The sky is blue") == "The sky is blue"

    def test_rules_stop_at_sentence_end(self, structurer):
        claim = structurer.structure("Growth stalled. Company X increased output by 40%")

        assert claim.claim_type == ClaimType.QUANTIFIED
        assert claim.subject == "Company X"


class TestSemanticEnrichment:
    """Oracle enrichment is optional and never fails the parse."""

    def test_coherent_claim_boosted(self):
        oracle = FixedOracle()
        claim = ClaimStructurer(oracle=oracle).structure("The sky is blue")

        assert claim.semantic_coherence == pytest.approx(1.0)
        # 0.6 base + 0.1 enrichment + 0.1 complete + 0.1 coherence
        assert claim.confidence == pytest.approx(0.9)
        assert "High semantic coherence" in claim.validations
        assert oracle.calls == ["The sky is blue", "The sky", "blue"]

    def test_without_oracle(self, structurer):
        claim = structurer.structure("The sky is blue")

        assert claim.semantic_coherence is None
        assert claim.confidence == pytest.approx(0.7)

    def test_oracle_error_skips_enrichment(self):
        events = EventLog()
        structurer = ClaimStructurer(oracle=FailingOracle(), events=events)

        claim = structurer.structure("The sky is blue")

        assert claim.semantic_coherence is None
        assert claim.confidence == pytest.approx(0.7)
        assert len(events.recent(event_type=EventType.ORACLE_SKIPPED)) == 1
        assert structurer.stats()["enrichment_skipped"] == 1

    def test_unavailable_oracle_not_called(self):
        claim = ClaimStructurer(oracle=UnavailableOracle()).structure("The sky is blue")
        assert claim.semantic_coherence is None

    def test_non_finite_coherence_skips_enrichment(self):
        events = EventLog()
        structurer = ClaimStructurer(oracle=NanOracle(), events=events)

        claim = structurer.structure("The sky is blue")

        assert claim.semantic_coherence is None
        assert claim.confidence == pytest.approx(0.7)
        assert len(events.recent(event_type=EventType.ORACLE_SKIPPED)) == 1


class TestCacheAndStats:
    """Tests for the result cache and statistics."""

    def test_cache_hit_returns_independent_copy(self, structurer):
        first = structurer.structure("The sky is blue")
        first.subject = "mutated"

        second = structurer.structure("The sky is blue")

        assert second.subject == "The sky"
        assert structurer.stats()["cache_hits"] == 1

    def test_cache_bounded(self):
        structurer = ClaimStructurer(cache_size=2)
        for text in ("A is B", "C is D", "E is F"):
            structurer.structure(text)

        assert structurer.stats()["cache_size"] == 2

    def test_stats_by_method(self, structurer):
        structurer.structure("The sky is blue")
        structurer.structure("Hello")

        stats = structurer.stats()
        assert stats["total_structured"] == 2
        assert stats["by_method"] == {"general": 1, "fallback": 1}
        assert stats["by_claim_type"] == {"general": 1, "fragment": 1}

    def test_status(self, structurer):
        status = structurer.status()
        assert status["oracle_configured"] is False
        assert status["rules"][0] == "quantified"
