"""
Pool registry for FarmFlow.

A pool is created once per stake asset and never deleted; setting its
weight to zero stops future emission while keeping its history and
positions intact.  ``weight_sum`` is adjusted by the exact delta on every
weight change so it always equals the sum of registered weights.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterator

from farmflow_core.errors import DuplicateRegistrationError, UnknownPoolError
from farmflow_core.safe_math import checked_add, checked_sub, require_uint

logger = logging.getLogger("farmflow_pools")


@dataclass
class Pool:
    """A staking bucket for one stake asset."""
    stake_asset: str                      # asset id of the stake token
    weight: int
    last_settled_block: int
    cumulative_reward_per_stake: int = 0  # scaled by REWARD_SCALE
    total_staked: int = 0

    def to_dict(self) -> dict:
        return {
            "stake_asset": self.stake_asset,
            "weight": self.weight,
            "last_settled_block": self.last_settled_block,
            "cumulative_reward_per_stake": self.cumulative_reward_per_stake,
            "total_staked": self.total_staked,
        }


class PoolRegistry:
    """Ordered pools plus an asset → index lookup."""

    def __init__(self) -> None:
        self.pools: list[Pool] = []
        self.weight_sum: int = 0
        self._index: dict[str, int] = {}

    def __len__(self) -> int:
        return len(self.pools)

    def __iter__(self) -> Iterator[Pool]:
        return iter(self.pools)

    def get(self, pid: int) -> Pool:
        if isinstance(pid, bool) or not isinstance(pid, int) or not 0 <= pid < len(self.pools):
            raise UnknownPoolError(f"Pool {pid} not found")
        return self.pools[pid]

    def index_of(self, stake_asset: str) -> int | None:
        return self._index.get(stake_asset)

    def register(
        self,
        stake_asset: str,
        weight: int,
        current_block: int,
        launch_block: int = 0,
    ) -> int:
        """
        Add a pool and return its index.

        Accrual starts at ``max(current_block, launch_block)`` so nothing is
        earned for blocks before launch or before the pool existed.
        """
        require_uint(weight, "weight")
        require_uint(current_block, "block")
        if stake_asset in self._index:
            raise DuplicateRegistrationError(
                f"Stake asset {stake_asset} already has pool {self._index[stake_asset]}"
            )
        new_sum = checked_add(self.weight_sum, weight)
        pool = Pool(
            stake_asset=stake_asset,
            weight=weight,
            last_settled_block=max(current_block, launch_block),
        )
        self.pools.append(pool)
        self.weight_sum = new_sum
        pid = len(self.pools) - 1
        self._index[stake_asset] = pid
        logger.info(f"Registered pool {pid} for {stake_asset} (weight {weight})")
        return pid

    def set_weight(self, pid: int, new_weight: int) -> int:
        """Update a pool's weight; returns the previous weight."""
        require_uint(new_weight, "weight")
        pool = self.get(pid)
        old = pool.weight
        self.weight_sum = checked_add(checked_sub(self.weight_sum, old), new_weight)
        pool.weight = new_weight
        logger.info(f"Pool {pid} weight {old} -> {new_weight} (sum {self.weight_sum})")
        return old

    def recompute_weight_sum(self) -> int:
        return sum(p.weight for p in self.pools)

    def truncate(self, count: int) -> list[Pool]:
        """Drop pools registered after the first *count*; returns the dropped pools."""
        dropped = self.pools[count:]
        del self.pools[count:]
        for pool in dropped:
            self._index.pop(pool.stake_asset, None)
        return dropped

    def restore(self, pools: list[Pool]) -> None:
        """Replace all pools (used when loading a stored snapshot)."""
        self.pools = list(pools)
        self._index = {p.stake_asset: i for i, p in enumerate(self.pools)}
        self.weight_sum = self.recompute_weight_sum()
