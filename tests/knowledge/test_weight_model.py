"""
Unit tests for AdaptiveWeightModel.
"""

import pytest

from selector_brain.brain.events import EventEmitter, EventType
from selector_brain.config import WeightModelConfig
from selector_brain.knowledge.selector_kinds import BASELINE_WEIGHTS, MAX_WEIGHT, MIN_WEIGHT, SelectorKind
from selector_brain.knowledge.weight_model import AdaptiveWeightModel, DomainWeights

DOMAIN = "shop.example"


def feed(model, kind, success, count, domain=DOMAIN):
    results = []
    for _ in range(count):
        results.append(model.record_outcome(domain, kind, success))
    return results


class TestBaseline:
    """Test an unseen domain."""

    def test_unseen_domain_uses_baseline(self, weight_model):
        """Test that a new domain starts from the baseline table."""
        weights = weight_model.weights_for(DOMAIN)
        assert weights.weights == BASELINE_WEIGHTS
        assert weights.training_sample_count == 0

    def test_baseline_order(self):
        """Test the relative order of baseline weights."""
        order = sorted(BASELINE_WEIGHTS, key=BASELINE_WEIGHTS.get, reverse=True)
        assert order[0] == SelectorKind.ID
        assert order[-1] == SelectorKind.TEXT

    def test_score_uses_default_success_rate(self, weight_model):
        """Test the adaptive score before any calibration."""
        score = weight_model.score(DOMAIN, SelectorKind.ID, base_score=1.0, confidence=1.0)
        assert score == pytest.approx(0.95 * 0.5)

    def test_weights_for_returns_copy(self, weight_model):
        """Test that callers cannot mutate the model through a snapshot."""
        snapshot = weight_model.weights_for(DOMAIN)
        snapshot.weights[SelectorKind.ID] = 0.1
        assert weight_model.weight(DOMAIN, SelectorKind.ID) == 0.95


class TestRecalibration:
    """Test window-based recalibration."""

    def test_no_recalibration_below_min_samples(self, weight_model):
        """Test that fewer than the minimum samples never recalibrate."""
        results = feed(weight_model, SelectorKind.ID, False, 19)

        assert not any(results)
        assert weight_model.weight(DOMAIN, SelectorKind.ID) == 0.95

    def test_recalibrates_on_interval(self, weight_model):
        """Test that the 20th outcome triggers an EMA update."""
        results = feed(weight_model, SelectorKind.ID, False, 20)

        assert results[-1] is True
        assert weight_model.weight(DOMAIN, SelectorKind.ID) == pytest.approx(0.95 - 0.95 * 0.15)
        assert weight_model.success_rate(DOMAIN, SelectorKind.ID) == 0.0

    def test_unobserved_kinds_decay(self, weight_model):
        """Test that kinds absent from the window decay."""
        feed(weight_model, SelectorKind.ID, True, 20)
        assert weight_model.weight(DOMAIN, SelectorKind.CLASS) == pytest.approx(0.75 * 0.995)

    def test_successes_raise_weight(self, weight_model):
        """Test that a perfect window moves the weight up."""
        feed(weight_model, SelectorKind.CLASS, True, 20)
        assert weight_model.weight(DOMAIN, SelectorKind.CLASS) > 0.75

    def test_failures_lower_weight(self, weight_model):
        """Test that a failing window moves the weight down."""
        feed(weight_model, SelectorKind.CLASS, False, 20)
        assert weight_model.weight(DOMAIN, SelectorKind.CLASS) < 0.75

    def test_weights_stay_bounded(self):
        """Test that long runs never leave [MIN_WEIGHT, MAX_WEIGHT]."""
        model = AdaptiveWeightModel(WeightModelConfig(learning_rate=0.9, decay_factor=0.5))
        feed(model, SelectorKind.ID, False, 500)
        feed(model, SelectorKind.TEXT, True, 500)

        for value in model.weights_for(DOMAIN).weights.values():
            assert MIN_WEIGHT <= value <= MAX_WEIGHT
        assert model.weight(DOMAIN, SelectorKind.ID) == MIN_WEIGHT

    def test_domains_are_independent(self, weight_model):
        """Test that outcomes on one domain leave another untouched."""
        feed(weight_model, SelectorKind.ID, False, 20)
        assert weight_model.weight("other.example", SelectorKind.ID) == 0.95

    def test_significant_change_emits_event(self):
        """Test that a large weight change is announced."""
        events = EventEmitter()
        model = AdaptiveWeightModel(WeightModelConfig(), events=events)
        feed(model, SelectorKind.ID, False, 20)

        recalibrated = events.recent(EventType.WEIGHTS_RECALIBRATED)
        assert len(recalibrated) == 1
        assert "id" in recalibrated[0].data["changes"]


class TestState:
    """Test reset, export and import."""

    def test_reset_domain(self, weight_model):
        """Test that reset returns the domain to the baseline."""
        feed(weight_model, SelectorKind.ID, False, 20)
        weight_model.reset_domain(DOMAIN)

        assert weight_model.weight(DOMAIN, SelectorKind.ID) == 0.95
        assert not weight_model.has_domain(DOMAIN)

    def test_export_import(self, weight_model):
        """Test that exported weights restore into a fresh model."""
        feed(weight_model, SelectorKind.ID, False, 20)
        state = weight_model.export_state()

        fresh = AdaptiveWeightModel()
        assert fresh.import_state(state) == 1
        assert fresh.weight(DOMAIN, SelectorKind.ID) == pytest.approx(weight_model.weight(DOMAIN, SelectorKind.ID))

    def test_from_dict_clamps_and_ignores_unknown(self):
        """Test that persisted values are sanitized."""
        weights = DomainWeights.from_dict({
            "domain": DOMAIN,
            "weights": {"id": 5.0, "class": -1, "telepathy": 0.5},
        })
        assert weights.weights[SelectorKind.ID] == MAX_WEIGHT
        assert weights.weights[SelectorKind.CLASS] == MIN_WEIGHT
        assert len(weights.weights) == len(SelectorKind)

    def test_domain_stats(self, weight_model):
        """Test best and worst kind reporting."""
        stats = weight_model.domain_stats(DOMAIN)
        assert stats["best_kind"] == "id"
        assert stats["worst_kind"] == "text"
