"""
TOML-based configuration for the FarmFlow staking ledger.

Loads settings from a TOML file and/or environment variables.
Environment variables take precedence over file values.

Usage:
    from farmflow_core.config import load_config
    cfg = load_config("farmflow.toml")
"""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

if sys.version_info >= (3, 11):
    import tomllib
else:
    try:
        import tomllib  # type: ignore[import]
    except ModuleNotFoundError:
        import tomli as tomllib  # type: ignore[import,no-redef]


@dataclass
class EmissionConfig:
    """Initial emission schedule (owner-adjustable afterwards)."""
    reward_per_block: int = 40 * 10 ** 18
    launch_block: int = 0
    decay_epoch_blocks: int = 0       # 0 = no decay
    decay_rate_percent: int = 100     # 100 = no decay
    lock_period_seconds: int = 0      # 0 = locked half released on the next harvest
    dev_address: str = ""
    community_address: str = ""


@dataclass
class LedgerConfig:
    """Ledger identity and precision."""
    owner: str = ""
    reward_asset: str = "FARM"
    custody_label: str = "farmflow/custody"
    reward_scale: int = 10 ** 12
    check_invariants: bool = False


@dataclass
class PoolConfig:
    """A pool registered at bootstrap."""
    stake_asset: str = ""
    weight: int = 0


@dataclass
class APIConfig:
    """Read-only REST API settings."""
    enabled: bool = False
    host: str = "127.0.0.1"
    port: int = 8080
    rate_limit_rpm: int = 120          # max requests per minute per IP (0 = unlimited)
    cors_origins: list[str] = field(default_factory=list)  # allowed CORS origins (empty = no CORS)


@dataclass
class StorageConfig:
    """Persistence settings."""
    enabled: bool = False
    path: str = "data/farmflow.db"


@dataclass
class LoggingConfig:
    """Logging settings."""
    level: str = "INFO"
    format: str = "human"   # "human" or "json"
    file: str | None = None


@dataclass
class FarmFlowConfig:
    """Top-level configuration container."""
    emission: EmissionConfig = field(default_factory=EmissionConfig)
    ledger: LedgerConfig = field(default_factory=LedgerConfig)
    pools: list[PoolConfig] = field(default_factory=list)
    api: APIConfig = field(default_factory=APIConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def _merge(dc: Any, raw: dict[str, Any]) -> None:
    """Merge a raw dict into a dataclass instance (in-place)."""
    for key, value in raw.items():
        key_under = key.replace("-", "_")
        if hasattr(dc, key_under):
            setattr(dc, key_under, value)


def _env_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


def load_config(path: str | None = None) -> FarmFlowConfig:
    """
    Load configuration from a TOML file, then overlay environment variables.

    Env-var mapping:
        FARMFLOW_OWNER             -> ledger.owner
        FARMFLOW_CHECK_INVARIANTS  -> ledger.check_invariants
        FARMFLOW_REWARD_PER_BLOCK  -> emission.reward_per_block
        FARMFLOW_LAUNCH_BLOCK      -> emission.launch_block
        FARMFLOW_LOCK_PERIOD       -> emission.lock_period_seconds
        FARMFLOW_DEV_ADDRESS       -> emission.dev_address
        FARMFLOW_COMMUNITY_ADDRESS -> emission.community_address
        FARMFLOW_API_HOST          -> api.host
        FARMFLOW_API_PORT          -> api.port   (also enables the API)
        FARMFLOW_CORS_ORIGINS      -> api.cors_origins  (comma-separated)
        FARMFLOW_DB_PATH           -> storage.path      (also enables storage)
        FARMFLOW_LOG_LEVEL         -> logging.level
        FARMFLOW_LOG_FMT           -> logging.format
        FARMFLOW_LOG_FILE          -> logging.file
    """
    cfg = FarmFlowConfig()

    # ── TOML file ────────────────────────────────────────────────
    if path is not None:
        p = Path(path)
        if p.exists():
            with open(p, "rb") as f:
                data = tomllib.load(f)
            for section_name, section_dc in [
                ("emission", cfg.emission),
                ("ledger", cfg.ledger),
                ("api", cfg.api),
                ("storage", cfg.storage),
                ("logging", cfg.logging),
            ]:
                if section_name in data:
                    _merge(section_dc, data[section_name])
            for raw_pool in data.get("pools", []):
                pool = PoolConfig()
                _merge(pool, raw_pool)
                cfg.pools.append(pool)

    # ── Environment variable overrides ───────────────────────────
    if v := os.environ.get("FARMFLOW_OWNER"):
        cfg.ledger.owner = v
    if v := os.environ.get("FARMFLOW_CHECK_INVARIANTS"):
        cfg.ledger.check_invariants = _env_bool(v)
    if v := os.environ.get("FARMFLOW_REWARD_PER_BLOCK"):
        cfg.emission.reward_per_block = int(v)
    if v := os.environ.get("FARMFLOW_LAUNCH_BLOCK"):
        cfg.emission.launch_block = int(v)
    if v := os.environ.get("FARMFLOW_LOCK_PERIOD"):
        cfg.emission.lock_period_seconds = int(v)
    if v := os.environ.get("FARMFLOW_DEV_ADDRESS"):
        cfg.emission.dev_address = v
    if v := os.environ.get("FARMFLOW_COMMUNITY_ADDRESS"):
        cfg.emission.community_address = v
    if v := os.environ.get("FARMFLOW_API_HOST"):
        cfg.api.host = v
    if v := os.environ.get("FARMFLOW_API_PORT"):
        cfg.api.port = int(v)
        cfg.api.enabled = True
    if v := os.environ.get("FARMFLOW_CORS_ORIGINS"):
        cfg.api.cors_origins = [o.strip() for o in v.split(",") if o.strip()]
    if v := os.environ.get("FARMFLOW_DB_PATH"):
        cfg.storage.path = v
        cfg.storage.enabled = True
    if v := os.environ.get("FARMFLOW_LOG_LEVEL"):
        cfg.logging.level = v.upper()
    if v := os.environ.get("FARMFLOW_LOG_FMT"):
        cfg.logging.format = v
    if v := os.environ.get("FARMFLOW_LOG_FILE"):
        cfg.logging.file = v

    return cfg
