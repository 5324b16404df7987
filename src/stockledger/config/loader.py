"""
Configuration loader for stockledger.

What it does:
- Reads static settings from `config/config.yaml` (a missing file means defaults).
- Applies environment overrides named `STOCKLEDGER_<FIELD>` (for example
  `STOCKLEDGER_COST_BASIS_METHOD=fifo`, `STOCKLEDGER_MINIMUM_FEE=1`).
- Validates the result with Pydantic; bad values fail at load time.

Where it is used:
- `stockledger.main` builds a `Settings` object and hands it to `LedgerEngine`.

Key outputs:
- `Settings`: cost basis method, oversell policy, fee source, commission
  schedule, storage location, audit log path.
"""

from __future__ import annotations

import os
from typing import Any, Dict, Optional

import yaml
from pydantic import BaseModel, Field, field_validator

from ..ledger.model import CommissionSchedule, CostBasisMethod, FeeSource, OversellPolicy

ENV_PREFIX = "STOCKLEDGER_"

# env var suffix -> (section, key); section None means top level
ENV_FIELDS = {
    "COST_BASIS_METHOD": (None, "cost_basis_method"),
    "OVERSELL_POLICY": (None, "oversell_policy"),
    "FEE_SOURCE": (None, "fee_source"),
    "STORE_PATH": (None, "store_path"),
    "AUDIT_LOG_PATH": (None, "audit_log_path"),
    "DEFAULT_EXCHANGE_RATE": (None, "default_exchange_rate"),
    "ENFORCE_BUYING_POWER": (None, "enforce_buying_power"),
    "MIGRATE_LEGACY": (None, "migrate_legacy"),
    "CURRENCY": (None, "currency"),
    "MINIMUM_FEE": ("commission", "minimum_fee"),
    "PER_UNIT_RATE": ("commission", "per_unit_rate"),
}


class Settings(BaseModel):
    """Runtime settings assembled from YAML + environment variables."""
    cost_basis_method: CostBasisMethod = "weighted_average"
    oversell_policy: OversellPolicy = "reject"
    fee_source: FeeSource = "commission"
    commission: CommissionSchedule = Field(default_factory=CommissionSchedule)
    currency: str = "USD"
    default_exchange_rate: float = Field(default=7.2, gt=0)
    store_path: str = "data/ledger.sqlite"
    audit_log_path: Optional[str] = None
    enforce_buying_power: bool = False
    migrate_legacy: bool = True

    @field_validator("cost_basis_method", "oversell_policy", "fee_source", mode="before")
    @classmethod
    def lower(cls, v):
        return v.strip().lower().replace("-", "_") if isinstance(v, str) else v

    @field_validator("audit_log_path", mode="before")
    @classmethod
    def empty_is_none(cls, v):
        return v or None


def _env_overrides(environ) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    for suffix, (section, key) in ENV_FIELDS.items():
        value = environ.get(ENV_PREFIX + suffix)
        if value is None:
            continue
        if section is None:
            out[key] = value
        else:
            out.setdefault(section, {})[key] = value
    return out


def load_settings(path: str = "config/config.yaml", environ=None) -> Settings:
    """Load YAML config, apply `STOCKLEDGER_*` env overrides, and return Settings."""
    environ = os.environ if environ is None else environ
    config: Dict[str, Any] = {}
    if path and os.path.exists(path):
        with open(path, "r") as f:
            config = yaml.safe_load(f) or {}
    if not isinstance(config, dict):
        raise ValueError(f"{path}: top-level YAML must be a mapping")

    merged = dict(config)
    for key, value in _env_overrides(environ).items():
        if isinstance(value, dict):
            section = dict(merged.get(key) or {})
            section.update(value)
            merged[key] = section
        else:
            merged[key] = value
    return Settings(**merged)
