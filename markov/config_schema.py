"""
markov/config_schema.py - Self-Validating Config Loading

Loads ChainConfig from a dict, JSON file or YAML file.

Design:
- Self-validating: values are checked against a compiled JSON schema
- Self-healing: unknown keys are dropped with a warning
- Auditable: config_hash() gives a short content hash for receipts and snapshots
"""

from __future__ import annotations

import hashlib
import json
import logging
import warnings
from dataclasses import asdict, fields
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union

import yaml
from jsonschema import Draft202012Validator

from .errors import ConfigError
from .types_config import ChainConfig, PRESETS


__all__ = [
    'load',
    'default',
    'preset',
    'to_dict',
    'config_hash',
]

logger = logging.getLogger(__name__)


# =============================================================================
# JSON Schema Definition (Draft 2020-12)
# =============================================================================

_JSON_SCHEMA: Dict[str, Any] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "title": "ChainConfig",
    "description": "Markov chain engine configuration",
    "type": "object",
    "properties": {
        "probability_tolerance": {
            "type": "number",
            "description": "Allowed |sum(weights) - 1| per state",
            "exclusiveMinimum": 0.0,
            "exclusiveMaximum": 1.0,
        },
        "prune_threshold": {
            "type": "number",
            "description": "Masses below this may be dropped (0 disables)",
            "minimum": 0.0,
            "exclusiveMaximum": 1.0,
        },
        "convergence_tolerance": {
            "type": "number",
            "exclusiveMinimum": 0.0,
            "exclusiveMaximum": 1.0,
        },
        "convergence_iteration_limit": {
            "type": "integer",
            "minimum": 0,
        },
        "iteration_limit": {
            "type": ["integer", "null"],
            "description": "Exploration budget in expanded states",
            "minimum": 0,
        },
        "max_workers": {
            "type": "integer",
            "minimum": 1,
        },
        "hash_bytes": {
            "type": "integer",
            "minimum": 4,
            "maximum": 32,
        },
        "emit_receipts": {"type": "boolean"},
        "receipt_buffer": {
            "type": ["integer", "null"],
            "description": "Receipts kept in memory per ledger",
            "minimum": 0,
        },
        "receipt_path": {
            "type": ["string", "null"],
            "description": "JSONL file receipts are appended to",
        },
        "tenant_id": {"type": "string", "minLength": 1},
        "scenario_name": {"type": "string"},
    },
    "additionalProperties": False,
}

# Compiled once at import
Draft202012Validator.check_schema(_JSON_SCHEMA)
_COMPILED_VALIDATOR = Draft202012Validator(_JSON_SCHEMA)

_FIELD_NAMES = frozenset(f.name for f in fields(ChainConfig))


# =============================================================================
# Loading
# =============================================================================

def _read_source(source: Union[str, Path]) -> Dict[str, Any]:
    path = Path(source)
    if not path.exists():
        raise ConfigError(f"Config file not found: {path}")
    text = path.read_text(encoding="utf-8")
    if path.suffix.lower() in (".yaml", ".yml"):
        data = yaml.safe_load(text)
    else:
        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            raise ConfigError(f"Config file {path} is not valid JSON: {exc}") from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must hold a mapping, got {type(data).__name__}")
    return data


def load(source: Union[str, Path, Mapping[str, Any], None] = None,
         base: Optional[ChainConfig] = None) -> ChainConfig:
    """
    Build a ChainConfig from a mapping or a .json/.yaml/.yml file.

    Args:
        source: Mapping of overrides, path to a config file, or None
        base: Config supplying values for keys absent from source

    Returns:
        Validated ChainConfig

    Raises:
        ConfigError: schema violation or unreadable file
    """
    if source is None:
        data: Dict[str, Any] = {}
    elif isinstance(source, Mapping):
        data = dict(source)
    else:
        data = _read_source(source)

    unknown = sorted(set(data) - _FIELD_NAMES)
    if unknown:
        warnings.warn(f"Ignoring unknown config keys: {unknown}", UserWarning, stacklevel=2)
        logger.warning("ignoring unknown config keys %s", unknown)
        data = {k: v for k, v in data.items() if k in _FIELD_NAMES}

    errors = sorted(_COMPILED_VALIDATOR.iter_errors(data), key=lambda e: list(e.path))
    if errors:
        details = "; ".join(
            f"{'.'.join(str(p) for p in e.path) or '<root>'}: {e.message}" for e in errors
        )
        raise ConfigError(f"Invalid config: {details}")

    merged = to_dict(base or ChainConfig())
    merged.update(data)
    return ChainConfig(**merged)


def default() -> ChainConfig:
    """Default configuration."""
    return ChainConfig()


def preset(name: str) -> ChainConfig:
    """Named preset (DEFAULT, PRUNED, PARALLEL, STRICT)."""
    try:
        return PRESETS[name.upper()]
    except KeyError:
        raise ConfigError(f"Unknown preset {name!r}, expected one of {sorted(PRESETS)}") from None


def to_dict(config: ChainConfig) -> Dict[str, Any]:
    """Export as dictionary."""
    return asdict(config)


def config_hash(config: ChainConfig) -> str:
    """SHA3-256 of the canonical config content, first 16 hex chars."""
    canonical = json.dumps(to_dict(config), sort_keys=True, separators=(',', ':'))
    return hashlib.sha3_256(canonical.encode()).hexdigest()[:16]
