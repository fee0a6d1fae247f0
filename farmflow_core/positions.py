"""
Per-account positions, reward debt and the two-tier harvest lock.

Reward debt
───────────
Each position stores ``reward_debt``, the share of the pool accumulator it
has already been credited with.  Right after any operation touching the
position:

    reward_debt == staked_amount × cumulative_reward_per_stake // REWARD_SCALE

so the reward earned since then is a plain difference:

    pending = staked_amount × acc // REWARD_SCALE − reward_debt

Harvest lock
────────────
Half of every fresh ``pending`` (rounded down) goes into the account's lock
bucket; the rest is payable at once.  Before that, if the lock period is
zero or has elapsed since ``last_unlock_time``, the whole bucket is
released into the payable amount and the unlock clock restarts.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Iterator

from farmflow_core.safe_math import checked_add, checked_sub, mul_div


@dataclass
class AccountPosition:
    staked_amount: int = 0
    reward_debt: int = 0

    @property
    def is_staked(self) -> bool:
        return self.staked_amount > 0

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class RewardLock:
    locked_amount: int = 0
    last_unlock_time: int = 0

    def unlock_at(self, lock_period_seconds: int) -> int:
        """First timestamp at which the bucket is releasable (strictly after the period)."""
        return self.last_unlock_time + lock_period_seconds + 1

    def is_releasable(self, now: int, lock_period_seconds: int) -> bool:
        return lock_period_seconds == 0 or now > self.last_unlock_time + lock_period_seconds

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class HarvestResult:
    pending: int     # freshly accrued since the last snapshot
    released: int    # previously locked amount unlocked by this harvest
    locked: int      # portion of ``pending`` moved into the lock bucket
    payable: int     # released + (pending - locked)

    def to_dict(self) -> dict:
        return asdict(self)


NOTHING_HARVESTED = HarvestResult(0, 0, 0, 0)


def accrued_reward(staked_amount: int, acc: int, reward_scale: int) -> int:
    return mul_div(staked_amount, acc, reward_scale)


def pending_reward(position: AccountPosition, acc: int, reward_scale: int) -> int:
    """Reward earned since the last debt snapshot.

    Raises ``ArithmeticUnderflowError`` if the debt is ahead of the
    accumulator, which only happens if settlement was skipped.
    """
    return checked_sub(accrued_reward(position.staked_amount, acc, reward_scale), position.reward_debt)


def harvest(
    position: AccountPosition,
    lock: RewardLock,
    acc: int,
    reward_scale: int,
    now: int,
    lock_period_seconds: int,
) -> HarvestResult:
    """
    Apply the lock rules to the position's pending reward.

    Mutates only *lock*; the caller re-snapshots ``reward_debt`` once the
    stake delta of the surrounding operation has been applied.
    """
    pending = pending_reward(position, acc, reward_scale)
    released = 0
    if lock.is_releasable(now, lock_period_seconds):
        released = lock.locked_amount
        lock.locked_amount = 0
        lock.last_unlock_time = now
    locked = pending // 2
    lock.locked_amount = checked_add(lock.locked_amount, locked)
    payable = checked_add(released, pending - locked)
    return HarvestResult(pending=pending, released=released, locked=locked, payable=payable)


def snapshot_debt(position: AccountPosition, acc: int, reward_scale: int) -> None:
    position.reward_debt = accrued_reward(position.staked_amount, acc, reward_scale)


class PositionBook:
    """Positions and lock buckets keyed by ``(pid, account)``.

    Entries are created lazily on first deposit and kept (possibly at zero)
    afterwards.
    """

    def __init__(self) -> None:
        self.positions: dict[tuple[int, str], AccountPosition] = {}
        self.locks: dict[tuple[int, str], RewardLock] = {}

    def get(self, pid: int, account: str) -> AccountPosition | None:
        return self.positions.get((pid, account))

    def get_lock(self, pid: int, account: str) -> RewardLock | None:
        return self.locks.get((pid, account))

    def ensure(self, pid: int, account: str, now: int) -> tuple[AccountPosition, RewardLock]:
        key = (pid, account)
        position = self.positions.get(key)
        if position is None:
            position = self.positions[key] = AccountPosition()
        lock = self.locks.get(key)
        if lock is None:
            lock = self.locks[key] = RewardLock(last_unlock_time=now)
        return position, lock

    def accounts_in(self, pid: int) -> Iterator[tuple[str, AccountPosition]]:
        for (p, account), position in self.positions.items():
            if p == pid:
                yield account, position

    def staked_in(self, pid: int) -> int:
        return sum(pos.staked_amount for _, pos in self.accounts_in(pid))
