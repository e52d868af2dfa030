"""
Configuration Loader (``hoa_config.loader``).

Responsibility
--------------
Loads YAML configuration files and parses them into the typed
``hoa_config.schema`` dataclasses.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Invalid values  -> ``ValueError`` from the schema ``__post_init__``.
* A section that is not a mapping  -> ``ValueError``.

Missing keys fall back to the schema defaults.  Unknown keys are ignored
with a warning so a typo is visible in the logs.
"""

from __future__ import annotations

import hashlib
import json
from decimal import Decimal
from pathlib import Path
from typing import Any

import yaml

from hoa_config.schema import LedgerConfig, MeterConfig, PenaltyConfig
from hoa_kernel.logging_config import get_logger

logger = get_logger("config.loader")

_PENALTY_KEYS = ("penalty_rate", "penalty_days")
_METER_KEYS = ("meter_max", "consumption_ceiling", "warning_threshold", "rate_per_unit")
_LEDGER_KEYS = (
    "fiscal_year_start_month",
    "integrity_tolerance",
    "partial_payment_policy",
    "default_billing_module",
    "timezone",
)


def load_yaml_file(path: Path | str) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Postconditions:
        - Returns a ``dict`` (empty if the YAML document is empty).
    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def _section(data: dict[str, Any], key: str) -> dict[str, Any]:
    value = data.get(key) or {}
    if not isinstance(value, dict):
        raise ValueError(f"Config section '{key}' must be a mapping, got {type(value).__name__}")
    return value


def _pick(data: dict[str, Any], keys: tuple[str, ...], section: str) -> dict[str, Any]:
    unknown = sorted(set(data) - set(keys) - {"penalty", "meter"})
    if unknown:
        logger.warning("config_unknown_keys", extra={"section": section, "keys": unknown})
    return {k: data[k] for k in keys if k in data}


def parse_penalty_config(data: dict[str, Any]) -> PenaltyConfig:
    values = _pick(data, _PENALTY_KEYS, "penalty")
    if "penalty_rate" in values:
        values["penalty_rate"] = Decimal(str(values["penalty_rate"]))
    return PenaltyConfig(**values)


def parse_meter_config(data: dict[str, Any]) -> MeterConfig:
    values = _pick(data, _METER_KEYS, "meter")
    if "rate_per_unit" in values:
        values["rate_per_unit"] = Decimal(str(values["rate_per_unit"]))
    return MeterConfig(**values)


def parse_ledger_config(data: dict[str, Any]) -> LedgerConfig:
    """Parse a LedgerConfig from a dict; missing keys take defaults."""
    if not isinstance(data, dict):
        raise ValueError(f"Ledger config must be a mapping, got {type(data).__name__}")
    return LedgerConfig(
        penalty=parse_penalty_config(_section(data, "penalty")),
        meter=parse_meter_config(_section(data, "meter")),
        **_pick(data, _LEDGER_KEYS, "ledger"),
    )


def load_ledger_config(path: Path | str) -> LedgerConfig:
    data = load_yaml_file(path)
    config = parse_ledger_config(data)
    logger.info(
        "ledger_config_loaded",
        extra={"path": str(path), "checksum": compute_checksum(data)},
    )
    return config


def compute_checksum(data: dict[str, Any]) -> str:
    """Deterministic SHA-256 of a parsed config document."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
