"""
External collaborators consumed by the staking ledger.

The ledger never touches balances directly; it talks to asset ledgers
through the small ``AssetLedger`` protocol:

    balance_of(holder)                       -> int
    transfer(sender, to, amount)             -> bool | None
    transfer_from(spender, owner, to, amount)-> bool | None
    mint(to, amount, minter=...)             (reward asset only)

Calls go through the ``safe_*`` wrappers, which accept tokens that return
``None`` instead of ``True`` and turn an explicit ``False`` into
``TransferFailedError``.

``TokenLedger`` is an in-memory implementation with allowances, a minter
set, an optional ``on_transfer`` hook (fired after each balance change,
which is how re-entrant callbacks are exercised) and checkpoint / revert
support so a failed ledger operation can undo its token side effects.
A checkpoint records only the entries written while it is open, so its
cost follows the operation, not the number of holders.

``OwnerGate`` is the single-owner access-control check.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Protocol, runtime_checkable

from farmflow_core.crypto_utils import is_valid_address
from farmflow_core.errors import (
    InsufficientBalanceError,
    InvalidAddressError,
    TransferFailedError,
    UnauthorizedError,
)
from farmflow_core.safe_math import checked_add, checked_sub, require_uint

logger = logging.getLogger("farmflow_assets")


def require_address(address: object, name: str = "account") -> str:
    if not is_valid_address(address):
        raise InvalidAddressError(f"{name} is not a valid account address: {address!r}")
    return address  # type: ignore[return-value]


@runtime_checkable
class AssetLedger(Protocol):
    asset_id: str

    def balance_of(self, holder: str) -> int: ...

    def transfer(self, sender: str, to: str, amount: int) -> bool | None: ...

    def transfer_from(self, spender: str, owner: str, to: str, amount: int) -> bool | None: ...


@runtime_checkable
class MintableAsset(AssetLedger, Protocol):
    def mint(self, to: str, amount: int, *, minter: str | None = None) -> bool | None: ...


@dataclass(eq=False)
class TokenCheckpoint:
    """Prior values of the entries written since the checkpoint opened (None = absent)."""
    total_supply: int
    balances: dict[str, int | None] = field(default_factory=dict)
    allowances: dict[tuple[str, str], int | None] = field(default_factory=dict)

    @property
    def size(self) -> int:
        return len(self.balances) + len(self.allowances)


class TokenLedger:
    """In-memory fungible token."""

    def __init__(self, asset_id: str, *, minters: set[str] | None = None) -> None:
        self.asset_id = asset_id
        self.balances: dict[str, int] = {}
        self.allowances: dict[tuple[str, str], int] = {}
        self.minters: set[str] = set(minters or ())
        self.total_supply: int = 0
        self.on_transfer: Callable[[str, str, int], Any] | None = None
        self._open: list[TokenCheckpoint] = []

    def __repr__(self) -> str:
        return f"TokenLedger({self.asset_id})"

    # ── queries ─────────────────────────────────────────────────────

    def balance_of(self, holder: str) -> int:
        return self.balances.get(holder, 0)

    def allowance(self, owner: str, spender: str) -> int:
        return self.allowances.get((owner, spender), 0)

    # ── mutations ───────────────────────────────────────────────────

    def approve(self, owner: str, spender: str, amount: int) -> bool:
        self._set_allowance((owner, spender), require_uint(amount, "allowance"))
        return True

    def credit(self, holder: str, amount: int) -> None:
        """Genesis-style issuance outside the minter set (funding test accounts)."""
        require_uint(amount, "amount")
        self._set_balance(holder, checked_add(self.balance_of(holder), amount))
        self.total_supply = checked_add(self.total_supply, amount)

    def mint(self, to: str, amount: int, *, minter: str | None = None) -> None:
        require_uint(amount, "amount")
        if minter is not None and minter not in self.minters:
            raise UnauthorizedError(f"{minter} may not mint {self.asset_id}")
        self.credit(to, amount)
        self._notify("", to, amount)

    def transfer(self, sender: str, to: str, amount: int) -> bool:
        require_uint(amount, "amount")
        if self.balance_of(sender) < amount:
            return False
        self._move(sender, to, amount)
        return True

    def transfer_from(self, spender: str, owner: str, to: str, amount: int) -> bool:
        require_uint(amount, "amount")
        if self.allowance(owner, spender) < amount or self.balance_of(owner) < amount:
            return False
        self._set_allowance((owner, spender), self.allowance(owner, spender) - amount)
        self._move(owner, to, amount)
        return True

    def _move(self, sender: str, to: str, amount: int) -> None:
        self._set_balance(sender, checked_sub(self.balance_of(sender), amount))
        self._set_balance(to, checked_add(self.balance_of(to), amount))
        self._notify(sender, to, amount)

    def _notify(self, sender: str, to: str, amount: int) -> None:
        if self.on_transfer is not None:
            self.on_transfer(sender, to, amount)

    # ── rollback support ────────────────────────────────────────────

    def checkpoint(self) -> TokenCheckpoint:
        cp = TokenCheckpoint(total_supply=self.total_supply)
        self._open.append(cp)
        return cp

    def release(self, cp: TokenCheckpoint) -> None:
        """Keep the changes made since *cp*."""
        if cp in self._open:
            self._open.remove(cp)

    def revert(self, cp: TokenCheckpoint) -> None:
        """Undo every change made since *cp*, closing it and any checkpoint opened after it."""
        if cp not in self._open:
            raise ValueError(f"Checkpoint is not open on {self.asset_id}")
        while self._open:
            top = self._open.pop()
            _restore(self.balances, top.balances)
            _restore(self.allowances, top.allowances)
            self.total_supply = top.total_supply
            if top is cp:
                break

    def _set_balance(self, holder: str, value: int) -> None:
        for cp in self._open:
            cp.balances.setdefault(holder, self.balances.get(holder))
        self.balances[holder] = value

    def _set_allowance(self, key: tuple[str, str], value: int) -> None:
        for cp in self._open:
            cp.allowances.setdefault(key, self.allowances.get(key))
        self.allowances[key] = value


def _restore(book: dict, prior: dict) -> None:
    for key, value in prior.items():
        if value is None:
            book.pop(key, None)
        else:
            book[key] = value


# ── safe-call wrappers ──────────────────────────────────────────────────

def _check_result(result: object, action: str, asset: Any) -> None:
    # Non-standard tokens return nothing on success; only an explicit False fails
    if result is False:
        raise TransferFailedError(f"{action} of {getattr(asset, 'asset_id', asset)} failed")


def safe_transfer(asset: AssetLedger, sender: str, to: str, amount: int) -> None:
    if amount == 0:
        return
    _check_result(asset.transfer(sender, to, amount), "transfer", asset)


def safe_transfer_from(
    asset: AssetLedger, spender: str, owner: str, to: str, amount: int,
) -> None:
    if amount == 0:
        return
    allowance = getattr(asset, "allowance", None)
    if allowance is not None and allowance(owner, spender) < amount:
        raise InsufficientBalanceError(
            f"Allowance for {getattr(asset, 'asset_id', asset)} below {amount}"
        )
    if asset.balance_of(owner) < amount:
        raise InsufficientBalanceError(
            f"Balance of {getattr(asset, 'asset_id', asset)} below {amount}"
        )
    _check_result(asset.transfer_from(spender, owner, to, amount), "transfer_from", asset)


def safe_mint(asset: MintableAsset, to: str, amount: int, minter: str) -> None:
    if amount == 0:
        return
    _check_result(asset.mint(to, amount, minter=minter), "mint", asset)


def snapshot_assets(assets: list[Any]) -> list[tuple[Any, Any]]:
    """Open a checkpoint on every collaborator that supports it."""
    return [(a, a.checkpoint()) for a in assets if hasattr(a, "checkpoint")]


def revert_assets(checkpoints: list[tuple[Any, Any]]) -> None:
    for asset, cp in reversed(checkpoints):
        asset.revert(cp)


def release_assets(checkpoints: list[tuple[Any, Any]]) -> None:
    for asset, cp in checkpoints:
        release = getattr(asset, "release", None)
        if release is not None:
            release(cp)


# ── access control ──────────────────────────────────────────────────────

class OwnerGate:
    """Single-owner gate for administrative operations."""

    def __init__(self, owner: str) -> None:
        self.owner = require_address(owner, "owner")

    def require_owner(self, caller: str) -> None:
        if caller != self.owner:
            raise UnauthorizedError(f"{caller} is not the ledger owner")

    def transfer_ownership(self, caller: str, new_owner: str) -> str:
        self.require_owner(caller)
        previous = self.owner
        self.owner = require_address(new_owner, "new_owner")
        logger.info(f"Ownership transferred {previous} -> {self.owner}")
        return previous
