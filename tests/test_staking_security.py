"""
Tests for the staking ledger's safety guards.

Covers:
  - Reentrancy from stake-token and reward-token callbacks
  - Callbacks observe finished accounting (effects before interactions)
  - Whole-operation rollback on failed transfers and missing allowance
  - Owner-only administrative operations
  - Reward payment capped at the custody balance (shortfall forfeited)
  - Invariant violations roll the operation back
"""

import logging

import pytest

from farmflow_core.assets import TokenLedger
from farmflow_core.errors import (
    InsufficientBalanceError,
    InvariantViolationError,
    ReentrancyError,
    TransferFailedError,
    UnauthorizedError,
)
from farmflow_core.events import EventKind
from farmflow_core.staking_ledger import CUSTODY_ADDRESS, _Journal

R = 1_000_000


class _FrozenToken(TokenLedger):
    """Token whose outgoing transfers can be switched off."""

    frozen = False

    def transfer(self, sender, to, amount):
        if self.frozen:
            return False
        return super().transfer(sender, to, amount)


class _SilentNoopToken(TokenLedger):
    """Non-standard token that reports success without moving anything."""

    def transfer_from(self, spender, owner, to, amount):
        return None


def _state(ledger, pid, account):
    position = ledger.position(pid, account)
    return (
        position.staked_amount,
        position.reward_debt,
        ledger.pool_info(pid),
        ledger.lock_info(pid, account),
        ledger.totals.to_dict(),
        len(ledger.events),
    )


class TestReentrancy:
    def test_stake_token_callback_cannot_reenter(self, farm, stake_token, reward_token, alice, bob):
        calls = []

        def hook(sender, to, amount):
            calls.append(amount)
            farm.deposit(0, bob, 1, block=10, now=0)

        stake_token.on_transfer = hook
        before = _state(farm, 0, alice)
        with pytest.raises(ReentrancyError):
            farm.deposit(0, alice, 1000, block=10, now=0)
        assert calls == [1000]
        assert _state(farm, 0, alice) == before
        assert farm.position(0, bob).staked_amount == 0
        assert stake_token.balance_of(CUSTODY_ADDRESS) == 0
        assert not farm.in_operation

    def test_reward_callback_cannot_reenter(self, farm, reward_token, alice):
        farm.deposit(0, alice, 1000, block=10, now=0)
        reward_token.on_transfer = lambda s, to, amt: farm.withdraw(0, alice, 1000, block=20, now=0)
        before = _state(farm, 0, alice)
        with pytest.raises(ReentrancyError):
            farm.harvest(0, alice, block=20, now=0)
        assert _state(farm, 0, alice) == before
        assert reward_token.total_supply == 0

    def test_guard_released_after_failure(self, farm, stake_token, alice):
        stake_token.on_transfer = lambda s, to, amt: farm.settle_all(block=10)
        with pytest.raises(ReentrancyError):
            farm.deposit(0, alice, 1000, block=10, now=0)
        stake_token.on_transfer = None
        farm.deposit(0, alice, 1000, block=10, now=0)
        assert farm.position(0, alice).staked_amount == 1000

    def test_callback_sees_finished_accounting(self, farm, stake_token, alice):
        seen = {}

        def hook(sender, to, amount):
            seen["staked"] = farm.position(0, alice).staked_amount
            seen["total"] = farm.pool_info(0)["total_staked"]
            seen["busy"] = farm.in_operation

        stake_token.on_transfer = hook
        farm.deposit(0, alice, 1000, block=10, now=0)
        assert seen == {"staked": 1000, "total": 1000, "busy": True}


class TestRollback:
    def test_missing_allowance_rolls_back_everything(self, farm, stake_token, reward_token, alice):
        farm.deposit(0, alice, 1000, block=10, now=0)
        stake_token.approve(alice, CUSTODY_ADDRESS, 0)
        before = _state(farm, 0, alice)
        with pytest.raises(InsufficientBalanceError):
            farm.deposit(0, alice, 5, block=20, now=0)
        assert _state(farm, 0, alice) == before
        assert reward_token.total_supply == 0
        assert reward_token.balance_of(alice) == 0

    def test_failed_push_rolls_back(self, ledger, owner, reward_token, alice):
        token = _FrozenToken("LP-F")
        token.credit(alice, 1000)
        token.approve(alice, CUSTODY_ADDRESS, 1000)
        ledger.add_pool(owner, token, 1, block=0)
        ledger.deposit(0, alice, 1000, block=0, now=0)
        token.frozen = True
        before = _state(ledger, 0, alice)
        with pytest.raises(TransferFailedError):
            ledger.withdraw(0, alice, 1000, block=10, now=0)
        assert _state(ledger, 0, alice) == before
        assert token.balance_of(CUSTODY_ADDRESS) == 1000
        assert reward_token.total_supply == 0

    def test_failed_emergency_withdraw_keeps_lock(self, ledger, owner, alice):
        token = _FrozenToken("LP-F")
        token.credit(alice, 1000)
        token.approve(alice, CUSTODY_ADDRESS, 1000)
        ledger.add_pool(owner, token, 1, block=0)
        ledger.set_lock_period(owner, 10 ** 6)
        ledger.deposit(0, alice, 1000, block=0, now=0)
        ledger.harvest(0, alice, block=10, now=1)
        token.frozen = True
        before = _state(ledger, 0, alice)
        with pytest.raises(TransferFailedError):
            ledger.emergency_withdraw(0, alice)
        assert _state(ledger, 0, alice) == before
        assert ledger.lock_info(0, alice)["locked_amount"] == 4 * R


class TestAccessControl:
    def test_admin_operations_are_owner_only(self, farm, bob, second_stake_token):
        events = len(farm.events)
        attempts = [
            lambda: farm.add_pool(bob, second_stake_token, 1, block=0),
            lambda: farm.set_pool_weight(bob, 0, 1, block=0),
            lambda: farm.set_reward_per_block(bob, 1, block=0),
            lambda: farm.set_decay_schedule(bob, 10, 50, block=0),
            lambda: farm.set_lock_period(bob, 1),
            lambda: farm.set_dev_address(bob, bob),
            lambda: farm.set_community_address(bob, bob),
            lambda: farm.transfer_ownership(bob, bob),
        ]
        for attempt in attempts:
            with pytest.raises(UnauthorizedError):
                attempt()
        assert len(farm.events) == events
        assert farm.pool_count == 1

    def test_previous_owner_loses_rights(self, farm, owner, bob):
        farm.transfer_ownership(owner, bob)
        with pytest.raises(UnauthorizedError):
            farm.set_lock_period(owner, 1)
        kinds = [e.kind for e in farm.events.entries]
        assert kinds[-1] is EventKind.OWNERSHIP_TRANSFERRED


class TestShortfall:
    def _with_drained_custody(self, farm, reward_token, alice, dev, drain):
        farm.deposit(0, alice, 1000, block=10, now=0)
        farm.harvest(0, alice, block=20, now=0)
        # custody now holds the 4R locked half; move part of it away
        reward_token.transfer(CUSTODY_ADDRESS, dev, drain)

    def test_payment_capped_at_custody_balance(self, farm, reward_token, alice, dev, caplog):
        self._with_drained_custody(farm, reward_token, alice, dev, 3 * R)
        with caplog.at_level(logging.WARNING, logger="farmflow_ledger"):
            receipt = farm.harvest(0, alice, block=20, now=1)
        assert receipt.harvest.payable == 4 * R
        assert receipt.paid == R
        assert receipt.shortfall == 3 * R
        assert reward_token.balance_of(alice) == 5 * R
        assert farm.totals.shortfall_forfeited == 3 * R
        assert farm.lock_info(0, alice)["locked_amount"] == 0
        shortfalls = farm.events.select(kind=EventKind.REWARD_SHORTFALL)
        assert [e.amount for e in shortfalls] == [3 * R]
        assert "Reward shortfall" in caplog.text

    def test_empty_custody_pays_nothing_without_raising(self, farm, reward_token, alice, dev):
        self._with_drained_custody(farm, reward_token, alice, dev, 4 * R)
        receipt = farm.harvest(0, alice, block=20, now=1)
        assert receipt.paid == 0
        assert receipt.shortfall == 4 * R
        assert reward_token.balance_of(alice) == 4 * R

    def test_fresh_mints_count_towards_availability(self, farm, reward_token, alice, dev):
        self._with_drained_custody(farm, reward_token, alice, dev, 4 * R)
        receipt = farm.harvest(0, alice, block=30, now=1)
        # 8R minted to custody; owed is the 4R bucket plus the unlocked half of 8R
        assert receipt.harvest.payable == 8 * R
        assert receipt.paid == 8 * R
        assert receipt.shortfall == 0


class TestInvariantGuard:
    def test_violation_rolls_back(self, ledger, owner, alice):
        token = _SilentNoopToken("LP-X")
        token.credit(alice, 1000)
        token.approve(alice, CUSTODY_ADDRESS, 1000)
        ledger.add_pool(owner, token, 1, block=0)
        with pytest.raises(InvariantViolationError) as info:
            ledger.deposit(0, alice, 1000, block=0, now=0)
        assert "Custody holds 0 LP-X" in str(info.value)
        assert ledger.position(0, alice).staked_amount == 0
        assert ledger.pool_info(0)["total_staked"] == 0
        assert len(ledger.events) == 1


class _BrokenCheckpointToken(TokenLedger):
    def checkpoint(self):
        raise RuntimeError("checkpoint unavailable")


class TestJournal:
    def _capture_journal(self, farm, token):
        journals = []
        token.on_transfer = lambda s, to, amt: journals.append(farm._journal)
        return journals

    def test_deposit_ignores_unrelated_holders(self, farm, owner, stake_token, alice):
        crowded = TokenLedger("LP-CROWDED")
        for i in range(20_000):
            crowded.credit(f"holder{i}", 1)
        farm.add_pool(owner, crowded, 100, block=0)
        journals = self._capture_journal(farm, stake_token)

        farm.deposit(0, alice, 1000, block=10, now=0)

        journal = journals[0]
        assert [asset for asset, _ in journal.assets] == [stake_token]
        assert list(journal.pools) == [0]
        cp = journal.assets[0][1]
        assert set(cp.balances) == {alice, CUSTODY_ADDRESS}
        assert list(cp.allowances) == [(alice, CUSTODY_ADDRESS)]
        assert cp.size == 3

    def test_harvest_records_only_moved_reward_holders(self, farm, reward_token, alice, dev, community):
        farm.deposit(0, alice, 1000, block=10, now=0)
        journals = self._capture_journal(farm, reward_token)

        farm.harvest(0, alice, block=20, now=0)

        journal = journals[0]
        assert [asset for asset, _ in journal.assets] == [reward_token]
        cp = journal.assets[0][1]
        assert set(cp.balances) == {dev, community, CUSTODY_ADDRESS, alice}
        assert cp.allowances == {}

    def test_checkpoints_closed_after_success(self, farm, stake_token, alice):
        farm.deposit(0, alice, 1000, block=10, now=0)
        assert stake_token._open == []

    def test_failed_bulk_settlement_restores_every_pool(
        self, farm, owner, second_stake_token, reward_token, alice, bob,
    ):
        farm.add_pool(owner, second_stake_token, 100, block=0)
        farm.deposit(0, alice, 1000, block=0, now=0)
        farm.deposit(1, bob, 1000, block=0, now=0)
        before = [farm.pool_info(0), farm.pool_info(1)]

        def reject(sender, to, amount):
            raise RuntimeError("mint rejected")

        reward_token.on_transfer = reject
        with pytest.raises(RuntimeError):
            farm.set_pool_weight(owner, 1, 300, block=10, with_update=True)
        assert [farm.pool_info(0), farm.pool_info(1)] == before
        assert reward_token.total_supply == 0
        assert reward_token._open == []

    def test_rollback_drops_pools_added_during_the_operation(self, farm, second_stake_token):
        journal = _Journal(farm)
        farm.registry.register("LP-B", 50, 0)
        farm.stake_tokens["LP-B"] = second_stake_token
        journal.rollback(farm)
        assert farm.pool_count == 1
        assert farm.registry.weight_sum == 100
        assert farm.registry.index_of("LP-B") is None
        assert "LP-B" not in farm.stake_tokens


class TestGuardSetup:
    def test_failed_capture_releases_guard(self, farm, alice, monkeypatch):
        def broken(ledger):
            raise RuntimeError("capture failed")

        monkeypatch.setattr(farm._checker, "capture", broken)
        with pytest.raises(RuntimeError):
            farm.deposit(0, alice, 1000, block=10, now=0)
        assert not farm.in_operation
        monkeypatch.undo()
        farm.deposit(0, alice, 1000, block=10, now=0)
        assert farm.position(0, alice).staked_amount == 1000

    def test_failed_checkpoint_rolls_back_and_releases_guard(self, ledger, owner, alice):
        token = _BrokenCheckpointToken("LP-C")
        token.credit(alice, 1000)
        token.approve(alice, CUSTODY_ADDRESS, 1000)
        ledger.add_pool(owner, token, 1, block=0)
        with pytest.raises(RuntimeError):
            ledger.deposit(0, alice, 1000, block=5, now=0)
        assert not ledger.in_operation
        assert ledger.position(0, alice).staked_amount == 0
        assert ledger.pool_info(0)["last_settled_block"] == 0
        assert token.balance_of(alice) == 1000
