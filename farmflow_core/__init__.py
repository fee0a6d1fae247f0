"""
FarmFlow - a multi-pool staking and reward-distribution ledger.

Key features:
- Lazy per-pool reward accumulator with reward-debt bookkeeping
- Block-based emission with a stepped decay schedule
- Two-tier harvest lock (half of each harvest vests for a period)
- Checked u256 arithmetic, reentrancy guard and atomic rollback
- SQLite snapshots and a read-only aiohttp API
"""

__version__ = "0.1.0"
__all__ = [
    "errors",
    "safe_math",
    "crypto_utils",
    "emission",
    "pools",
    "accumulator",
    "positions",
    "assets",
    "events",
    "staking_ledger",
    "invariants",
    "config",
    "logging_config",
    "storage",
    "api",
]
