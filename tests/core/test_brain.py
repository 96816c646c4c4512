"""
Integration tests for SelectorBrain.

Exercises the full resolve -> learn -> rank loop against a scripted driver.
"""

import pytest

from selector_brain.config import BrainConfig
from selector_brain.core.brain import SelectorBrain
from selector_brain.core.orchestrator import OrchestratorState
from selector_brain.core.tasks import LoginTask
from selector_brain.errors import ErrorKind
from selector_brain.knowledge.persistence import JsonFileBackend, PersistenceBackend
from selector_brain.knowledge.selector_kinds import SelectorKind
from selector_brain.knowledge.weight_model import DomainWeights


class UnavailableBackend(PersistenceBackend):

    async def load_experiences(self, flt=None, limit=None):
        raise ConnectionError("database unreachable")

    async def save_experience(self, exp):
        raise ConnectionError("database unreachable")

    async def load_weights(self, domain):
        raise ConnectionError("database unreachable")

    async def save_weights(self, weights):
        raise ConnectionError("database unreachable")


class TestResolve:
    """Test resolution through the service object."""

    @pytest.mark.asyncio
    async def test_resolve_success(self, brain, scripted_driver):
        brain.set_driver(scripted_driver(visible={"#checkout"}))
        result = await brain.resolve("shop.example", "checkout", "button", "Checkout")

        assert result.success
        assert result.selector_used == "#checkout"
        assert result.selector_kind == SelectorKind.ID
        assert len(brain.store) == 1

    @pytest.mark.asyncio
    async def test_missing_domain(self, brain):
        """Test that invalid input returns a failed result instead of raising."""
        result = await brain.resolve("", "checkout", "button", "Checkout")

        assert not result.success
        assert result.error_kind == ErrorKind.UNEXPECTED_ERROR
        assert result.state == OrchestratorState.EXHAUSTED
        assert result.learnings

    @pytest.mark.asyncio
    async def test_no_driver(self, fast_config):
        brain = SelectorBrain(config=fast_config)
        result = await brain.resolve("shop.example", "checkout", "button", "Checkout")

        assert not result.success
        assert "set_driver" in result.learnings[0]

    @pytest.mark.asyncio
    async def test_unexpected_error_contained(self, brain, monkeypatch):
        """Test that an internal error becomes a failed result."""
        async def explode(request):
            raise RuntimeError("selector table corrupted")

        monkeypatch.setattr(brain.orchestrator, "execute", explode)
        result = await brain.resolve("shop.example", "checkout", "button", "Checkout")

        assert not result.success
        assert result.error_kind == ErrorKind.UNEXPECTED_ERROR
        assert "RuntimeError" in result.learnings[0]

    @pytest.mark.asyncio
    async def test_resolve_task(self, brain, scripted_driver):
        brain.set_driver(scripted_driver(visible={"#login-btn"}))
        result = await brain.resolve_task("shop.example", LoginTask(field="submit"))

        assert result.success
        assert result.selector_used == "#login-btn"
        assert brain.store.all()[-1].task_type == "login_submit"

    @pytest.mark.asyncio
    async def test_resolve_task_unsupported(self, brain):
        result = await brain.resolve_task("shop.example", "click the button")

        assert not result.success
        assert "Unsupported task type" in result.learnings[0]

    @pytest.mark.asyncio
    async def test_failed_selector_drops_in_ranking(self, brain, scripted_driver):
        """Test that a failing selector is ranked lower on the next resolution."""
        brain.set_driver(scripted_driver(visible={"#checkout-btn"}))
        first = await brain.resolve("shop.example", "checkout", "button", "Checkout")
        selection = brain.select_candidates("shop.example", "checkout", "button", "Checkout")
        ranked = [c.selector for c in selection.candidates]

        assert first.plan[0].selector == "#checkout"
        assert ranked[0] != "#checkout"
        assert ranked[-1] == "#checkout"
        assert ranked.index("#checkout-btn") < ranked.index("#checkout")


class TestPersistence:
    """Test loading and degrading persistence."""

    @pytest.mark.asyncio
    async def test_initialize_loads_history(self, brain, backend, experience_factory):
        backend.experiences.extend(experience_factory(timestamp_ms=i + 1) for i in range(3))

        assert await brain.initialize() == 3
        assert len(brain.store) == 3

    @pytest.mark.asyncio
    async def test_weights_loaded_lazily(self, brain, backend, scripted_driver):
        """Test that persisted weights are installed on first use of a domain."""
        weights = DomainWeights(domain="shop.example")
        weights.weights[SelectorKind.ID] = 0.3
        backend.weights["shop.example"] = weights

        brain.set_driver(scripted_driver(visible={'[data-test="checkout"]'}))
        await brain.resolve("shop.example", "checkout", "button", "Checkout")
        assert brain.weight_model.weight("shop.example", SelectorKind.ID) == pytest.approx(0.3)

    @pytest.mark.asyncio
    async def test_reset_domain_not_reloaded(self, brain, backend, scripted_driver):
        weights = DomainWeights(domain="shop.example")
        weights.weights[SelectorKind.ID] = 0.3
        backend.weights["shop.example"] = weights

        brain.reset_domain("shop.example")
        brain.set_driver(scripted_driver(visible={'[data-test="checkout"]'}))
        await brain.resolve("shop.example", "checkout", "button", "Checkout")
        assert brain.weight_model.weight("shop.example", SelectorKind.ID) == 0.95

    @pytest.mark.asyncio
    async def test_degraded_backend(self, fast_config, scripted_driver):
        """Test that resolution keeps working when storage is down."""
        brain = SelectorBrain(driver=scripted_driver(visible={"#checkout"}), config=fast_config,
                              backend=UnavailableBackend())

        assert await brain.initialize() == 0
        result = await brain.resolve("shop.example", "checkout", "button", "Checkout")

        assert result.success
        assert brain.persistence_degraded
        assert len(brain.store) == 1

    def test_data_dir_uses_json_backend(self, tmp_path):
        brain = SelectorBrain(config=BrainConfig(data_dir=str(tmp_path)))
        assert isinstance(brain.persistence.backend, JsonFileBackend)


class TestMonitoring:
    """Test reports, clusters and state transfer."""

    @pytest.mark.asyncio
    async def test_reports(self, brain, scripted_driver):
        brain.set_driver(scripted_driver(visible={"#checkout-btn"}))
        await brain.resolve("shop.example", "checkout", "button", "Checkout")

        metrics = brain.get_performance_report("shop.example")
        assert metrics.total_experiences == 2
        assert metrics.overall_success_rate == pytest.approx(0.5)
        assert len(brain.tracker.get_trends()) == 1

        report = brain.generate_report()
        assert "2 experiences" in report.summary
        assert brain.get_learning_summary("shop.example")["total_experiences"] == 2
        assert brain.analyze_failures("shop.example")["common_errors"]

    @pytest.mark.asyncio
    async def test_clusters(self, brain, scripted_driver):
        brain.set_driver(scripted_driver(visible={"#checkout-btn"}))
        await brain.resolve("shop.example", "checkout", "button", "Checkout")

        result = brain.cluster_patterns()
        assert result.total_patterns == 2
        assert brain.recommended_clusters("shop.example")

    @pytest.mark.asyncio
    async def test_export_import_between_brains(self, brain, scripted_driver, fast_config):
        brain.set_driver(scripted_driver(visible={"#checkout-btn"}))
        await brain.resolve("shop.example", "checkout", "button", "Checkout")

        other = SelectorBrain(config=fast_config)
        stats = other.import_learned_state(brain.export_learned_state())

        assert stats["experiences_imported"] == 2
        ranked = [c.selector for c in other.select_candidates(
            "shop.example", "checkout", "button", "Checkout").candidates]
        original = [c.selector for c in brain.select_candidates(
            "shop.example", "checkout", "button", "Checkout").candidates]
        assert ranked == original

    @pytest.mark.asyncio
    async def test_reimport_into_same_brain(self, brain, scripted_driver):
        """Test that merging a brain's own export back in leaves its history unchanged."""
        brain.set_driver(scripted_driver(visible={"#checkout-btn"}))
        for _ in range(5):
            await brain.resolve("shop.example", "checkout", "button", "Checkout")
        before = len(brain.store)
        pattern = brain.store.get_pattern("checkout:#checkout-btn").occurrence_count
        ranking = [c.selector for c in brain.select_candidates(
            "shop.example", "checkout", "button", "Checkout").candidates]

        stats = brain.import_learned_state(brain.export_learned_state())

        assert stats["experiences_imported"] == 0
        assert stats["experiences_skipped"] == before
        assert len(brain.store) == before
        assert brain.store.get_pattern("checkout:#checkout-btn").occurrence_count == pattern
        assert [c.selector for c in brain.select_candidates(
            "shop.example", "checkout", "button", "Checkout").candidates] == ranking
