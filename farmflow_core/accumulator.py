"""
Lazy per-pool reward settlement.

Nothing accrues in the background.  Whenever an operation touches a pool
it first calls ``settle()``, which converts the blocks elapsed since the
pool's ``last_settled_block`` into reward:

    gross  = elapsed × reward_per_block × pool.weight // weight_sum

and splits it with ``split_emission()``:

    dev        = gross × 10 % (rounded down)
    community  = gross × 10 % (rounded down)
    stakers    = gross − dev − community        (≈ 80 %, absorbs dust)

The stakers' share raises the pool's cumulative reward per unit stake:

    cumulative_reward_per_stake += stakers × REWARD_SCALE // total_staked

If the pool holds no stake the interval's emission is forfeited.  The
read-only preview goes through the very same ``accrue()`` function, so the
pending amount shown to an account is exactly what a settlement at that
block would credit.

Note: an older revision of this split minted dev + community + 90 % (110 %
of gross) while its preview assumed 80 %.  The 80 % formula is the one
implemented here, for both paths.
"""

from __future__ import annotations

from dataclasses import dataclass

from farmflow_core.emission import EmissionScheduler
from farmflow_core.pools import Pool, PoolRegistry
from farmflow_core.safe_math import checked_add, checked_mul, checked_sub, mul_div

REWARD_SCALE: int = 10 ** 12
DEV_SHARE_PERCENT: int = 10
COMMUNITY_SHARE_PERCENT: int = 10


@dataclass(frozen=True)
class EmissionSplit:
    gross: int
    dev: int
    community: int
    stakers: int


def split_emission(gross: int) -> EmissionSplit:
    dev = mul_div(gross, DEV_SHARE_PERCENT, 100)
    community = mul_div(gross, COMMUNITY_SHARE_PERCENT, 100)
    stakers = checked_sub(checked_sub(gross, dev), community)
    return EmissionSplit(gross=gross, dev=dev, community=community, stakers=stakers)


NO_EMISSION = EmissionSplit(0, 0, 0, 0)


@dataclass(frozen=True)
class Settlement:
    """Outcome of settling one pool over ``(from_block, to_block]``."""
    pid: int
    from_block: int
    to_block: int
    reward_per_block: int
    split: EmissionSplit
    forfeited: int
    cumulative_reward_per_stake: int

    @property
    def minted(self) -> int:
        return self.split.gross

    def to_dict(self) -> dict:
        return {
            "pid": self.pid,
            "from_block": self.from_block,
            "to_block": self.to_block,
            "reward_per_block": self.reward_per_block,
            "gross": self.split.gross,
            "dev": self.split.dev,
            "community": self.split.community,
            "stakers": self.split.stakers,
            "forfeited": self.forfeited,
            "cumulative_reward_per_stake": self.cumulative_reward_per_stake,
        }


def accrue(
    pool: Pool,
    current_block: int,
    reward_per_block: int,
    weight_sum: int,
    reward_scale: int = REWARD_SCALE,
) -> tuple[EmissionSplit, int, int]:
    """
    Pure accrual step shared by settlement and preview.

    Returns ``(split, forfeited, new_cumulative_reward_per_stake)``.  The
    split is all-zero when the pool is empty (the gross is then reported as
    forfeited) or when nothing elapsed.  Raises ``DivisionByZeroError`` if
    blocks elapsed while ``weight_sum`` is zero.
    """
    acc = pool.cumulative_reward_per_stake
    if current_block <= pool.last_settled_block:
        return NO_EMISSION, 0, acc
    elapsed = current_block - pool.last_settled_block
    gross = mul_div(checked_mul(elapsed, reward_per_block), pool.weight, weight_sum)
    if gross == 0:
        return NO_EMISSION, 0, acc
    if pool.total_staked == 0:
        return NO_EMISSION, gross, acc
    split = split_emission(gross)
    acc = checked_add(acc, mul_div(split.stakers, reward_scale, pool.total_staked))
    return split, 0, acc


class PoolAccumulator:
    """Settles pools against the registry and the emission scheduler."""

    def __init__(
        self,
        registry: PoolRegistry,
        scheduler: EmissionScheduler,
        reward_scale: int = REWARD_SCALE,
    ) -> None:
        self.registry = registry
        self.scheduler = scheduler
        self.reward_scale = reward_scale

    def settle(self, pid: int, current_block: int) -> Settlement | None:
        """
        Bring *pid* up to *current_block*.

        Returns ``None`` when the pool is already settled at or beyond that
        block (never settles backward, never counts a block twice).
        """
        self.scheduler.advance(current_block)
        pool = self.registry.get(pid)
        if current_block <= pool.last_settled_block:
            return None
        rate = self.scheduler.reward_per_block
        split, forfeited, acc = accrue(
            pool, current_block, rate, self.registry.weight_sum, self.reward_scale,
        )
        settlement = Settlement(
            pid=pid,
            from_block=pool.last_settled_block,
            to_block=current_block,
            reward_per_block=rate,
            split=split,
            forfeited=forfeited,
            cumulative_reward_per_stake=acc,
        )
        pool.cumulative_reward_per_stake = acc
        pool.last_settled_block = current_block
        return settlement

    def settle_all(self, current_block: int) -> list[Settlement]:
        settled = []
        for pid in range(len(self.registry)):
            result = self.settle(pid, current_block)
            if result is not None:
                settled.append(result)
        return settled

    def projected_accumulator(self, pid: int, current_block: int) -> int:
        """Cumulative reward per stake a settlement at *current_block* would produce."""
        pool = self.registry.get(pid)
        rate = self.scheduler.projected_rate(current_block)
        _split, _forfeited, acc = accrue(
            pool, current_block, rate, self.registry.weight_sum, self.reward_scale,
        )
        return acc
