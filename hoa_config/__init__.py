"""
hoa_config -- ledger configuration.

Responsibility:
    Provides the typed ``LedgerConfig`` consumed by hoa_services, either
    with defaults or loaded from a YAML file.

Architecture position:
    Configuration sits above ``hoa_kernel`` and below ``hoa_services``.
    The kernel and engines never import from ``hoa_config``; services
    translate config values into engine constructor arguments.
"""

from __future__ import annotations

from pathlib import Path

from hoa_config.loader import load_ledger_config, load_yaml_file, parse_ledger_config
from hoa_config.schema import LedgerConfig, MeterConfig, PenaltyConfig


def get_active_config(path: Path | str | None = None) -> LedgerConfig:
    """The config at ``path``, or the defaults when no path is given."""
    if path is None:
        return LedgerConfig()
    return load_ledger_config(path)


__all__ = [
    "LedgerConfig",
    "MeterConfig",
    "PenaltyConfig",
    "get_active_config",
    "load_ledger_config",
    "load_yaml_file",
    "parse_ledger_config",
]
