"""Tests for the invariant checker module."""

import pytest

from farmflow_core.invariants import InvariantChecker, LedgerSnapshot


@pytest.fixture
def checker():
    return InvariantChecker()


@pytest.fixture
def staked_farm(farm, alice):
    farm.deposit(0, alice, 1000, block=10, now=0)
    farm.harvest(0, alice, block=20, now=0)
    return farm


class TestLedgerSnapshot:
    def test_capture(self, checker, staked_farm):
        assert checker.capture(staked_farm) is None  # capture stores internally
        snap = checker._snapshot
        assert isinstance(snap, LedgerSnapshot)
        assert snap.pool_count == 1
        assert snap.settled_blocks == [20]
        assert snap.total_minted == staked_farm.totals.minted
        assert snap.reward_supply == staked_farm.reward_token.total_supply

    def test_verify_without_capture_passes(self, checker, staked_farm):
        assert checker.verify(staked_farm) == (True, "")


class TestChecks:
    def test_untouched_ledger_passes(self, checker, staked_farm, alice):
        checker.capture(staked_farm)
        ok, msg = checker.verify(staked_farm, touched=[(0, alice)])
        assert ok, msg
        assert checker.violations == []

    def test_snapshot_consumed_by_verify(self, checker, staked_farm):
        checker.capture(staked_farm)
        checker.verify(staked_farm)
        assert checker._snapshot is None

    def test_weight_sum_mismatch(self, checker, staked_farm):
        checker.capture(staked_farm)
        staked_farm.registry.weight_sum += 1
        ok, msg = checker.verify(staked_farm)
        assert not ok
        assert "weight_sum" in msg

    def test_accumulator_decrease(self, checker, staked_farm):
        checker.capture(staked_farm)
        staked_farm.registry.pools[0].cumulative_reward_per_stake -= 1
        ok, msg = checker.verify(staked_farm)
        assert not ok
        assert "accumulator decreased" in msg

    def test_settled_block_moved_back(self, checker, staked_farm):
        checker.capture(staked_farm)
        staked_farm.registry.pools[0].last_settled_block = 5
        ok, msg = checker.verify(staked_farm)
        assert not ok
        assert "settled block moved back" in msg

    def test_pool_removed(self, checker, staked_farm):
        checker.capture(staked_farm)
        staked_farm.registry.pools.pop()
        staked_farm.registry.weight_sum = 0
        staked_farm.book.positions.clear()
        ok, msg = checker.verify(staked_farm)
        assert not ok
        assert "Pool count shrank" in msg

    def test_total_staked_mismatch(self, checker, staked_farm):
        checker.capture(staked_farm)
        staked_farm.registry.pools[0].total_staked += 7
        ok, msg = checker.verify(staked_farm)
        assert not ok
        assert "position sum" in msg

    def test_stale_reward_debt(self, checker, staked_farm, alice):
        checker.capture(staked_farm)
        staked_farm.book.get(0, alice).reward_debt -= 1
        ok, msg = checker.verify(staked_farm, touched=[(0, alice)])
        assert not ok
        assert "Stale reward debt" in msg

    def test_reward_debt_only_checked_when_touched(self, checker, staked_farm, alice):
        checker.capture(staked_farm)
        staked_farm.book.get(0, alice).reward_debt -= 1
        ok, _ = checker.verify(staked_farm, touched=[])
        assert ok

    def test_custody_backing(self, checker, staked_farm, stake_token, alice):
        checker.capture(staked_farm)
        stake_token.balances[staked_farm.custody] -= 1
        ok, msg = checker.verify(staked_farm)
        assert not ok
        assert "Custody holds 999" in msg

    def test_unaccounted_mint(self, checker, staked_farm, reward_token, alice):
        checker.capture(staked_farm)
        reward_token.credit(alice, 5)
        ok, msg = checker.verify(staked_farm)
        assert not ok
        assert "Reward supply changed by 5" in msg

    def test_multiple_violations_reported(self, checker, staked_farm):
        checker.capture(staked_farm)
        staked_farm.registry.weight_sum += 1
        staked_farm.registry.pools[0].cumulative_reward_per_stake -= 1
        ok, msg = checker.verify(staked_farm)
        assert not ok
        assert len(checker.violations) == 2
        assert "; " in msg
