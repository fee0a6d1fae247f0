"""
Tests for farmflow_core.assets — token collaborators and access control.

Covers:
  - TokenLedger balances, allowances, minter set, checkpoint / revert
  - safe_* wrappers: zero amounts, None returns, explicit False
  - Allowance / balance pre-checks on pulls
  - OwnerGate ownership checks and transfer
  - Protocol conformance
"""

import pytest

from farmflow_core.assets import (
    AssetLedger,
    MintableAsset,
    OwnerGate,
    TokenLedger,
    release_assets,
    require_address,
    revert_assets,
    safe_mint,
    safe_transfer,
    safe_transfer_from,
    snapshot_assets,
)
from farmflow_core.crypto_utils import ZERO_ADDRESS, address_from_label
from farmflow_core.errors import (
    InsufficientBalanceError,
    InvalidAddressError,
    TransferFailedError,
    UnauthorizedError,
)

A = address_from_label("assets/a")
B = address_from_label("assets/b")
MINTER = address_from_label("assets/minter")


class _NoneReturningToken:
    """Non-standard token that returns nothing from transfer."""

    asset_id = "ODD"

    def __init__(self):
        self.calls = []

    def balance_of(self, holder):
        return 10 ** 9

    def transfer(self, sender, to, amount):
        self.calls.append((sender, to, amount))

    def transfer_from(self, spender, owner, to, amount):
        self.calls.append((owner, to, amount))


class _RefusingToken(_NoneReturningToken):
    def transfer(self, sender, to, amount):
        return False

    def transfer_from(self, spender, owner, to, amount):
        return False


class TestTokenLedger:
    def test_transfer(self):
        t = TokenLedger("T")
        t.credit(A, 100)
        assert t.transfer(A, B, 30) is True
        assert (t.balance_of(A), t.balance_of(B)) == (70, 30)
        assert t.total_supply == 100

    def test_transfer_insufficient_returns_false(self):
        t = TokenLedger("T")
        assert t.transfer(A, B, 1) is False

    def test_transfer_from_spends_allowance(self):
        t = TokenLedger("T")
        t.credit(A, 100)
        t.approve(A, B, 60)
        assert t.transfer_from(B, A, B, 50) is True
        assert t.allowance(A, B) == 10
        assert t.transfer_from(B, A, B, 20) is False

    def test_mint_requires_minter(self):
        t = TokenLedger("T", minters={MINTER})
        t.mint(A, 5, minter=MINTER)
        assert t.total_supply == 5
        with pytest.raises(UnauthorizedError):
            t.mint(A, 5, minter=B)

    def test_hook_sees_post_transfer_state(self):
        t = TokenLedger("T")
        t.credit(A, 10)
        seen = []
        t.on_transfer = lambda s, to, amt: seen.append(t.balance_of(to))
        t.transfer(A, B, 4)
        assert seen == [4]

    def test_checkpoint_revert(self):
        t = TokenLedger("T", minters={MINTER})
        t.credit(A, 10)
        cp = t.checkpoint()
        t.transfer(A, B, 10)
        t.mint(B, 5, minter=MINTER)
        t.revert(cp)
        assert (t.balance_of(A), t.balance_of(B), t.total_supply) == (10, 0, 10)

    def test_checkpoint_records_only_written_entries(self):
        t = TokenLedger("T")
        for i in range(1000):
            t.credit(f"r{i}", 1)
        t.credit(A, 10)
        cp = t.checkpoint()
        t.approve(A, B, 4)
        t.transfer_from(B, A, B, 4)
        assert set(cp.balances) == {A, B}
        assert cp.balances[B] is None
        assert cp.allowances == {(A, B): None}
        assert cp.size == 3
        t.revert(cp)
        assert t.allowance(A, B) == 0
        assert B not in t.balances
        assert t.balance_of(A) == 10

    def test_release_keeps_changes(self):
        t = TokenLedger("T")
        cp = t.checkpoint()
        t.credit(A, 5)
        t.release(cp)
        assert t.balance_of(A) == 5
        with pytest.raises(ValueError):
            t.revert(cp)

    def test_nested_checkpoints(self):
        t = TokenLedger("T")
        t.credit(A, 10)
        outer = t.checkpoint()
        t.transfer(A, B, 3)
        inner = t.checkpoint()
        t.transfer(A, B, 3)
        t.revert(inner)
        assert (t.balance_of(A), t.balance_of(B)) == (7, 3)
        t.revert(outer)
        assert (t.balance_of(A), t.balance_of(B)) == (10, 0)

    def test_revert_closes_later_checkpoints(self):
        t = TokenLedger("T")
        outer = t.checkpoint()
        t.credit(A, 1)
        t.checkpoint()
        t.credit(A, 1)
        t.revert(outer)
        assert t.balance_of(A) == 0
        assert t.total_supply == 0

    def test_protocols(self):
        t = TokenLedger("T")
        assert isinstance(t, AssetLedger)
        assert isinstance(t, MintableAsset)


class TestSafeWrappers:
    def test_none_return_is_success(self):
        token = _NoneReturningToken()
        safe_transfer(token, A, B, 5)
        assert token.calls == [(A, B, 5)]

    def test_explicit_false_raises(self):
        with pytest.raises(TransferFailedError):
            safe_transfer(_RefusingToken(), A, B, 5)
        with pytest.raises(TransferFailedError):
            safe_transfer_from(_RefusingToken(), B, A, B, 5)

    def test_zero_amount_skips_call(self):
        token = _RefusingToken()
        safe_transfer(token, A, B, 0)
        safe_transfer_from(token, B, A, B, 0)

    def test_pull_checks_allowance(self):
        t = TokenLedger("T")
        t.credit(A, 100)
        with pytest.raises(InsufficientBalanceError):
            safe_transfer_from(t, B, A, B, 10)

    def test_pull_checks_balance(self):
        t = TokenLedger("T")
        t.approve(A, B, 100)
        with pytest.raises(InsufficientBalanceError):
            safe_transfer_from(t, B, A, B, 10)

    def test_safe_mint(self):
        t = TokenLedger("T", minters={MINTER})
        safe_mint(t, A, 7, MINTER)
        safe_mint(t, A, 0, B)
        assert t.balance_of(A) == 7

    def test_snapshot_skips_assets_without_checkpoint(self):
        t = TokenLedger("T")
        t.credit(A, 1)
        checkpoints = snapshot_assets([t, _NoneReturningToken()])
        assert len(checkpoints) == 1
        t.credit(A, 1)
        revert_assets(checkpoints)
        assert t.balance_of(A) == 1

    def test_release_assets(self):
        t = TokenLedger("T")
        checkpoints = snapshot_assets([t])
        t.credit(A, 2)
        release_assets(checkpoints)
        assert t._open == []
        assert t.balance_of(A) == 2


class TestOwnerGate:
    def test_require_owner(self):
        gate = OwnerGate(A)
        gate.require_owner(A)
        with pytest.raises(UnauthorizedError):
            gate.require_owner(B)

    def test_transfer_ownership(self):
        gate = OwnerGate(A)
        assert gate.transfer_ownership(A, B) == A
        assert gate.owner == B
        with pytest.raises(UnauthorizedError):
            gate.transfer_ownership(A, A)

    def test_zero_owner_rejected(self):
        with pytest.raises(InvalidAddressError):
            OwnerGate(ZERO_ADDRESS)
        gate = OwnerGate(A)
        with pytest.raises(InvalidAddressError):
            gate.transfer_ownership(A, ZERO_ADDRESS)
        assert gate.owner == A

    def test_require_address(self):
        assert require_address(A) == A
        with pytest.raises(InvalidAddressError):
            require_address("not-an-address")
