"""
Unit tests for configuration loading.
"""

import os
import pytest

from selector_brain.config import BrainConfig, ExecutionMode


@pytest.fixture(autouse=True)
def isolated_environ(monkeypatch):
    """Keep variables loaded from .env files out of the real environment"""
    monkeypatch.setattr(os, "environ", dict(os.environ))
    for name in list(os.environ):
        if name.startswith("SELECTOR_BRAIN_"):
            del os.environ[name]


class TestDefaults:

    def test_defaults(self):
        config = BrainConfig()

        assert config.data_dir is None
        assert config.weights.learning_rate == 0.15
        assert config.weights.min_training_samples == 20
        assert config.store.max_experiences == 10000
        assert config.orchestrator.max_retries == 5
        assert config.orchestrator.max_total_timeout_ms == 60000
        assert config.orchestrator.execution_mode == ExecutionMode.PARALLEL


class TestFromEnv:
    """Test SELECTOR_BRAIN_* environment loading."""

    def test_reads_environment(self, monkeypatch, tmp_path):
        monkeypatch.setenv("SELECTOR_BRAIN_DATA_DIR", str(tmp_path))
        monkeypatch.setenv("SELECTOR_BRAIN_MAX_RETRIES", "3")
        monkeypatch.setenv("SELECTOR_BRAIN_LEARNING_RATE", "0.3")
        monkeypatch.setenv("SELECTOR_BRAIN_EXECUTION_MODE", "Sequential")
        monkeypatch.setenv("SELECTOR_BRAIN_LOG_LEVEL", "debug")

        config = BrainConfig.from_env(env_file=str(tmp_path / "missing.env"))

        assert config.data_dir == str(tmp_path)
        assert config.orchestrator.max_retries == 3
        assert config.weights.learning_rate == 0.3
        assert config.orchestrator.execution_mode == ExecutionMode.SEQUENTIAL
        assert config.log_level == "DEBUG"

    def test_invalid_values_fall_back(self, monkeypatch, tmp_path):
        monkeypatch.setenv("SELECTOR_BRAIN_MAX_RETRIES", "many")
        monkeypatch.setenv("SELECTOR_BRAIN_DECAY_FACTOR", "slow")
        monkeypatch.setenv("SELECTOR_BRAIN_EXECUTION_MODE", "sideways")

        config = BrainConfig.from_env(env_file=str(tmp_path / "missing.env"))

        assert config.orchestrator.max_retries == 5
        assert config.weights.decay_factor == 0.995
        assert config.orchestrator.execution_mode == ExecutionMode.PARALLEL

    def test_env_file(self, tmp_path):
        env_file = tmp_path / ".env"
        env_file.write_text("SELECTOR_BRAIN_MAX_EXPERIENCES=500\nSELECTOR_BRAIN_MAX_TOTAL_TIMEOUT_MS=9000\n")

        config = BrainConfig.from_env(env_file=str(env_file))

        assert config.store.max_experiences == 500
        assert config.orchestrator.max_total_timeout_ms == 9000
