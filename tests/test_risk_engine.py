"""
Test risk scoring, decisions and the end-to-end risk engine.
"""

import pytest

from checkout_integrity.exceptions import ComputationError, StorageError, ValidationError
from checkout_integrity.fraud.models import (
    RiskDecision,
    RiskSignal,
    RiskThresholds,
    create_risk_signal,
)
from checkout_integrity.fraud.services import risk_engine as risk_engine_module
from checkout_integrity.fraud.services.risk_engine import RiskEngine, create_risk_engine
from checkout_integrity.fraud.services.risk_scorer import RiskScorer, compute_weighted_score, decide


def custom_signal(score, weight=1.0, name="custom"):
    return RiskSignal(signal=name, score=score, reason="test signal", weight=weight)


class FailingVelocityStore:
    async def record(self, key, key_type, session_id):
        raise StorageError("redis down", operation="velocity.record")

    async def get(self, key, key_type):
        return None

    async def prune(self):
        return 0


class TestScorer:
    def test_no_signals_scores_zero(self):
        assert compute_weighted_score([]) == 0

    def test_zero_total_weight_scores_zero(self):
        assert compute_weighted_score([custom_signal(90, weight=0)]) == 0

    def test_weighted_mean_rounds_half_up(self):
        signals = [custom_signal(80, weight=1.5), custom_signal(40, weight=1.0)]
        # (120 + 40) / 2.5 = 64
        assert compute_weighted_score(signals) == 64
        assert compute_weighted_score([custom_signal(20), custom_signal(21)]) == 21

    def test_thresholds_are_inclusive(self):
        assert decide(30, 30, 70) == RiskDecision.ALLOW
        assert decide(31, 30, 70) == RiskDecision.REVIEW
        assert decide(69, 30, 70) == RiskDecision.REVIEW
        assert decide(70, 30, 70) == RiskDecision.BLOCK

    def test_per_call_thresholds_override(self):
        scorer = RiskScorer(RiskThresholds(allow_threshold=30, block_threshold=70))

        assert scorer.score([custom_signal(50)]) == (50, RiskDecision.REVIEW)
        assert scorer.score([custom_signal(50)], block_threshold=50) == (50, RiskDecision.BLOCK)

    def test_thresholds_must_be_ordered(self):
        with pytest.raises(ValueError):
            RiskThresholds(allow_threshold=70, block_threshold=30)

    def test_signal_validation(self):
        with pytest.raises(ValidationError):
            create_risk_signal("custom", score=101, reason="too high")
        with pytest.raises(ValidationError):
            create_risk_signal("custom", score=10, reason="too heavy", weight=6)

    def test_signal_accepts_alternate_field_names(self):
        signal = RiskSignal.model_validate({"name": "custom", "score": 10, "description": "why"})

        assert signal.signal == "custom"
        assert signal.reason == "why"


class TestRiskEngine:
    @pytest.mark.asyncio
    async def test_custom_signals_decide_allow_then_review(self, velocity_store):
        """Five signals of 20 allow at 30/70, review with allow_threshold=10."""
        engine = RiskEngine(velocity_store)
        data = {
            "session_id": "chk_001",
            "custom_signals": [custom_signal(20, name=f"custom_{i}") for i in range(5)],
        }

        default = await engine.assess(data)
        stricter = await engine.assess(data, allow_threshold=10)

        assert default.total_score == 20
        assert default.decision == RiskDecision.ALLOW
        assert stricter.total_score == 20
        assert stricter.decision == RiskDecision.REVIEW

    @pytest.mark.asyncio
    async def test_clean_session_is_allowed(self, velocity_store, make_event):
        engine = RiskEngine(velocity_store)
        events = [
            make_event("buyer_validated", offset_ms=0),
            make_event("checkout_completed", offset_ms=45_000),
        ]

        assessment = await engine.assess({
            "session_id": "chk_001",
            "events": events,
            "email": "buyer@example.com",
            "billing_country": "US",
            "ip_country": "US",
        })

        assert assessment.signals == ()
        assert assessment.total_score == 0
        assert assessment.decision == RiskDecision.ALLOW
        assert assessment.model_dump(mode="json")["assessed_at"].endswith("Z")

    @pytest.mark.asyncio
    async def test_multiple_signals_combine(self, velocity_store, make_event):
        engine = RiskEngine(velocity_store)

        assessment = await engine.assess({
            "session_id": "chk_001",
            "events": [
                make_event("buyer_validated", offset_ms=0),
                make_event("checkout_completed", offset_ms=1000),
            ],
            "billing_country": "US",
            "ip_country": "NG",
            "previous_chain_hash": "abc",
            "current_chain_hash": "def",
        })

        names = {s.signal for s in assessment.signals}
        assert names == {"timing_too_fast", "geo_mismatch", "chain_hash_mutation"}
        # (87*1.2 + 40*1.0 + 80*1.5) / 3.7 = 71.46
        assert assessment.total_score == 71
        assert assessment.decision == RiskDecision.BLOCK
        assert assessment.chain_hash == "def"
        assert 0 <= assessment.total_score <= 100

    @pytest.mark.asyncio
    async def test_velocity_storage_failure_propagates(self):
        engine = RiskEngine(FailingVelocityStore())

        with pytest.raises(StorageError) as exc_info:
            await engine.assess({"session_id": "chk_001", "email": "buyer@example.com"})

        assert exc_info.value.retryable is True

    @pytest.mark.asyncio
    async def test_failing_collector_aborts_with_computation_error(self, velocity_store, monkeypatch):
        def broken(**kwargs):
            raise RuntimeError("boom")

        monkeypatch.setattr(risk_engine_module, "collect_geo_mismatch_signals", broken)
        engine = RiskEngine(velocity_store)

        with pytest.raises(ComputationError) as exc_info:
            await engine.assess({"session_id": "chk_001"})

        assert exc_info.value.metadata["collector"] == "geo_mismatch"

    @pytest.mark.asyncio
    async def test_malformed_input_is_rejected(self, velocity_store):
        engine = RiskEngine(velocity_store)

        with pytest.raises(ValidationError):
            await engine.assess({"session_id": ""})

    @pytest.mark.asyncio
    async def test_record_velocity(self, velocity_store):
        engine = RiskEngine(velocity_store)

        await engine.record_velocity("10.0.0.1", "ip", "chk_001")

        assert (await velocity_store.get("10.0.0.1", "ip")).count == 1


def test_create_risk_engine_from_settings(test_settings, velocity_store):
    engine = create_risk_engine(test_settings, velocity_store)

    assert engine.velocity_store is velocity_store
    assert engine.thresholds.allow_threshold == test_settings.allow_threshold
    assert engine.timing.too_fast_ms == test_settings.checkout_too_fast_ms
    assert engine.velocity_limits.window_ms == test_settings.velocity_window_ms
