"""
Post-operation invariant checks for the FarmFlow staking ledger.

When enabled, every state-changing operation is bracketed by
``capture()`` / ``verify()``:
  - weight_sum equals the sum of pool weights
  - pools are never removed
  - cumulative reward per stake never decreases
  - last settled block never decreases
  - each pool's total_staked equals the sum of its positions
  - touched positions carry a fresh reward-debt snapshot
  - custody holds at least total_staked of every stake asset
  - reward supply grows by exactly what settlements minted

If any invariant fails the operation is rolled back and
``InvariantViolationError`` is raised.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from farmflow_core.positions import accrued_reward


@dataclass
class LedgerSnapshot:
    """Snapshot of key ledger fields before an operation."""
    pool_count: int = 0
    accumulators: list[int] = field(default_factory=list)
    settled_blocks: list[int] = field(default_factory=list)
    total_minted: int = 0
    reward_supply: int | None = None


class InvariantChecker:
    """
    Captures a pre-operation snapshot of the ledger and validates
    invariants after the operation is applied.
    """

    def __init__(self):
        self._snapshot: LedgerSnapshot | None = None
        self.violations: list[str] = []

    def capture(self, ledger) -> None:
        """Take a snapshot of the ledger state before an operation."""
        pools = list(ledger.registry)
        self._snapshot = LedgerSnapshot(
            pool_count=len(pools),
            accumulators=[p.cumulative_reward_per_stake for p in pools],
            settled_blocks=[p.last_settled_block for p in pools],
            total_minted=ledger.totals.minted,
            reward_supply=getattr(ledger.reward_token, "total_supply", None),
        )

    def verify(self, ledger, touched=()) -> tuple[bool, str]:
        """
        Verify all invariants against the current ledger state.
        *touched* lists the ``(pid, account)`` keys the operation changed.
        Returns (passed, error_message).
        """
        self.violations = []
        if self._snapshot is None:
            return True, ""

        checks = (
            self._check_weight_sum(ledger),
            self._check_pools_kept(ledger),
            self._check_accumulator_monotonic(ledger),
            self._check_settled_block_monotonic(ledger),
            self._check_total_staked(ledger),
            self._check_reward_debt(ledger, touched),
            self._check_custody_backing(ledger),
            self._check_reward_supply(ledger),
        )
        self.violations = [msg for ok, msg in checks if not ok]

        self._snapshot = None
        if self.violations:
            return False, "; ".join(self.violations)
        return True, ""

    def _check_weight_sum(self, ledger) -> tuple[bool, str]:
        expected = sum(p.weight for p in ledger.registry)
        if ledger.registry.weight_sum != expected:
            return (False,
                    f"weight_sum {ledger.registry.weight_sum} != sum of weights {expected}")
        return True, ""

    def _check_pools_kept(self, ledger) -> tuple[bool, str]:
        if len(ledger.registry) < self._snapshot.pool_count:
            return (False,
                    f"Pool count shrank: {self._snapshot.pool_count} -> {len(ledger.registry)}")
        return True, ""

    def _check_accumulator_monotonic(self, ledger) -> tuple[bool, str]:
        for pid, (before, pool) in enumerate(zip(self._snapshot.accumulators, ledger.registry)):
            now = pool.cumulative_reward_per_stake
            if now < before:
                return False, f"Pool {pid} accumulator decreased: {before} -> {now}"
        return True, ""

    def _check_settled_block_monotonic(self, ledger) -> tuple[bool, str]:
        for pid, (before, pool) in enumerate(zip(self._snapshot.settled_blocks, ledger.registry)):
            now = pool.last_settled_block
            if now < before:
                return False, f"Pool {pid} settled block moved back: {before} -> {now}"
        return True, ""

    def _check_total_staked(self, ledger) -> tuple[bool, str]:
        for pid, pool in enumerate(ledger.registry):
            staked = ledger.book.staked_in(pid)
            if pool.total_staked != staked:
                return (False,
                        f"Pool {pid} total_staked={pool.total_staked} "
                        f"but position sum={staked}")
        return True, ""

    def _check_reward_debt(self, ledger, touched) -> tuple[bool, str]:
        """Reward debt of every touched position matches its stake at the current accumulator."""
        for pid, account in touched:
            position = ledger.book.get(pid, account)
            if position is None or not position.is_staked:
                continue
            acc = ledger.registry.pools[pid].cumulative_reward_per_stake
            expected = accrued_reward(position.staked_amount, acc, ledger.reward_scale)
            if position.reward_debt != expected:
                return (False,
                        f"Stale reward debt for {account} in pool {pid}: "
                        f"{position.reward_debt} != {expected}")
        return True, ""

    def _check_custody_backing(self, ledger) -> tuple[bool, str]:
        for pid, pool in enumerate(ledger.registry):
            token = ledger.stake_tokens.get(pool.stake_asset)
            if token is None:
                continue
            held = token.balance_of(ledger.custody)
            if held < pool.total_staked:
                return (False,
                        f"Custody holds {held} {pool.stake_asset} "
                        f"but pool {pid} owes {pool.total_staked}")
        return True, ""

    def _check_reward_supply(self, ledger) -> tuple[bool, str]:
        """Reward supply only moves by settlement mints."""
        before = self._snapshot.reward_supply
        after = getattr(ledger.reward_token, "total_supply", None)
        if before is None or after is None:
            return True, ""
        minted = ledger.totals.minted - self._snapshot.total_minted
        if after - before != minted:
            return (False,
                    f"Reward supply changed by {after - before} "
                    f"but settlements minted {minted}")
        return True, ""
