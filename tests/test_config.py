"""
tests/test_config.py - ChainConfig presets and config_schema loading

Every test has assert statements.
"""

import json
import warnings

import pytest

from markov import config_schema
from markov.errors import ConfigError
from markov.types_config import (
    CONFIG_DEFAULT,
    CONFIG_PARALLEL,
    CONFIG_PRUNED,
    CONFIG_STRICT,
    PRESETS,
    ChainConfig,
)


class TestChainConfig:
    """Dataclass defaults and validation."""

    def test_defaults(self):
        config = ChainConfig()
        assert config.probability_tolerance == 1e-9
        assert config.convergence_tolerance == 1e-9
        assert config.prune_threshold == 0.0
        assert config.hash_bytes == 8
        assert config.iteration_limit is None
        assert config.max_workers == 1
        assert config.receipt_buffer == 1000
        assert config.receipt_path is None

    def test_frozen(self):
        with pytest.raises(AttributeError):
            CONFIG_DEFAULT.max_workers = 8

    @pytest.mark.parametrize("kwargs", [
        {"probability_tolerance": 0.0},
        {"prune_threshold": -1e-3},
        {"convergence_iteration_limit": -1},
        {"iteration_limit": -5},
        {"max_workers": 0},
        {"hash_bytes": 2},
        {"hash_bytes": 64},
        {"receipt_buffer": -1},
    ])
    def test_invalid_values(self, kwargs):
        with pytest.raises(ConfigError):
            ChainConfig(**kwargs)

    def test_presets(self):
        assert PRESETS["PRUNED"] is CONFIG_PRUNED and CONFIG_PRUNED.prune_threshold > 0
        assert CONFIG_PARALLEL.max_workers > 1
        assert CONFIG_STRICT.hash_bytes == 16 and not CONFIG_STRICT.emit_receipts


class TestLoad:
    """config_schema.load from mappings and files."""

    def test_none_is_default(self):
        assert config_schema.load() == ChainConfig()

    def test_mapping(self):
        config = config_schema.load({"max_workers": 3, "tenant_id": "lab"})
        assert config.max_workers == 3
        assert config.tenant_id == "lab"

    def test_base_config(self):
        config = config_schema.load({"max_workers": 2}, base=CONFIG_STRICT)
        assert config.hash_bytes == 16
        assert config.max_workers == 2

    def test_unknown_keys_dropped_with_warning(self):
        with pytest.warns(UserWarning, match="unknown config keys"):
            config = config_schema.load({"max_workers": 2, "colour": "blue"})
        assert config.max_workers == 2

    @pytest.mark.parametrize("data", [
        {"max_workers": "four"},
        {"hash_bytes": 3},
        {"probability_tolerance": 1.5},
        {"emit_receipts": "yes"},
        {"receipt_buffer": "many"},
        {"receipt_path": 7},
    ])
    def test_schema_violation(self, data):
        with pytest.raises(ConfigError):
            config_schema.load(data)

    def test_yaml_file(self, tmp_path):
        path = tmp_path / "chain.yaml"
        path.write_text("prune_threshold: 1.0e-12\niteration_limit: 500\n", encoding="utf-8")
        config = config_schema.load(path)
        assert config.prune_threshold == 1e-12
        assert config.iteration_limit == 500

    def test_json_file(self, tmp_path):
        path = tmp_path / "chain.json"
        path.write_text(json.dumps({"convergence_iteration_limit": 10}), encoding="utf-8")
        assert config_schema.load(path).convergence_iteration_limit == 10

    def test_empty_yaml(self, tmp_path):
        path = tmp_path / "empty.yml"
        path.write_text("", encoding="utf-8")
        assert config_schema.load(path) == ChainConfig()

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError):
            config_schema.load(tmp_path / "nope.yaml")

    def test_bad_json(self, tmp_path):
        path = tmp_path / "bad.json"
        path.write_text("{not json", encoding="utf-8")
        with pytest.raises(ConfigError):
            config_schema.load(path)


class TestHelpers:
    """preset, to_dict and config_hash."""

    def test_preset_lookup(self):
        assert config_schema.preset("parallel") is CONFIG_PARALLEL
        with pytest.raises(ConfigError):
            config_schema.preset("turbo")

    def test_to_dict_round_trip(self):
        assert config_schema.load(config_schema.to_dict(CONFIG_PRUNED)) == CONFIG_PRUNED

    def test_config_hash(self):
        assert config_schema.config_hash(ChainConfig()) == config_schema.config_hash(ChainConfig())
        assert config_schema.config_hash(ChainConfig()) != config_schema.config_hash(CONFIG_STRICT)
        assert len(config_schema.config_hash(ChainConfig())) == 16

    def test_default_no_warning(self):
        with warnings.catch_warnings():
            warnings.simplefilter("error")
            assert config_schema.default() == CONFIG_DEFAULT

    def test_receipt_settings_load(self, tmp_path):
        path = tmp_path / "chain.yaml"
        path.write_text("receipt_buffer: null\nreceipt_path: out/receipts.jsonl\n", encoding="utf-8")
        config = config_schema.load(path)
        assert config.receipt_buffer is None
        assert config.receipt_path == "out/receipts.jsonl"
