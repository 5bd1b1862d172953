"""Tests for RuntimeConfig."""

import pytest

from skillstack.config import MIB, LayerDefaults, RuntimeConfig, TieBreakPolicy


class TestRuntimeConfig:
    def test_tier_defaults(self):
        config = RuntimeConfig()
        assert config.defaults_for(1) == LayerDefaults(10_000, 256 * MIB, 5_000)
        assert config.defaults_for(2).timeout_ms == 30_000
        assert config.defaults_for(3).max_memory == 1024 * MIB
        assert config.defaults_for(3).max_cpu_ms == 10_000

    def test_unknown_layer(self):
        with pytest.raises(ValueError):
            RuntimeConfig().defaults_for(9)

    def test_default_allow_list(self):
        assert "echo" in RuntimeConfig().allowed_commands
        assert "rm" not in RuntimeConfig().allowed_commands

    def test_from_dict(self):
        config = RuntimeConfig.from_dict(
            {
                "tie_break": "earliest",
                "layer_defaults": {"2": {"timeout_ms": 1000, "max_memory": 1, "max_cpu_ms": 2}},
                "default_allowed_commands": ["echo"],
            }
        )
        assert config.tie_break == TieBreakPolicy.EARLIEST
        assert config.defaults_for(2).timeout_ms == 1000
        # untouched tiers keep their defaults
        assert config.defaults_for(1).timeout_ms == 10_000
        assert config.allowed_commands == ("echo",)

    def test_from_dict_rejects_unknown_keys(self):
        with pytest.raises(ValueError, match="Unknown config keys"):
            RuntimeConfig.from_dict({"nope": 1})
