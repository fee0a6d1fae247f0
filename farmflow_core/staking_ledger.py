"""
Multi-pool staking ledger for FarmFlow.

Accounts stake a pool's stake asset and accrue the mintable reward asset
in proportion to the pool's weight and their share of the pool.

Every state-changing public operation follows the same order:

  1. catch the emission scheduler up and settle the affected pool(s)
  2. harvest the account's pending reward if it already holds stake
  3. apply the requested stake delta
  4. re-snapshot the account's reward debt

and is executed under three guards:

  • **Reentrancy** — a second state-changing call arriving while one is in
    progress (e.g. from a token callback) raises ``ReentrancyError``.
  • **Checks-effects-interactions** — internal accounting is finished
    before any external call.  External calls are queued in an
    interaction plan and run last, in the order: stake pull → reward
    mints → reward payment → stake push.
  • **Atomicity** — state is journaled as the operation first touches it;
    on any exception it is restored (token collaborators exposing
    ``checkpoint()`` / ``revert()`` are rolled back too) and pending
    events are dropped.

Reward payment is capped at the reward balance held in custody; any
shortfall is forfeited, logged and recorded as a ``RewardShortfall`` event
rather than raised.
"""

from __future__ import annotations

import copy
import functools
import logging
from dataclasses import dataclass
from typing import Any, Callable

from farmflow_core.accumulator import REWARD_SCALE, PoolAccumulator, Settlement
from farmflow_core.assets import (
    AssetLedger,
    MintableAsset,
    OwnerGate,
    release_assets,
    require_address,
    revert_assets,
    safe_mint,
    safe_transfer,
    safe_transfer_from,
    snapshot_assets,
)
from farmflow_core.crypto_utils import address_from_label
from farmflow_core.emission import EmissionScheduler, EmissionState
from farmflow_core.errors import (
    DuplicateRegistrationError,
    InsufficientBalanceError,
    InvariantViolationError,
    ReentrancyError,
)
from farmflow_core.events import EventKind, EventLog, LedgerEvent
from farmflow_core.invariants import InvariantChecker
from farmflow_core.pools import Pool, PoolRegistry
from farmflow_core.positions import (
    NOTHING_HARVESTED,
    AccountPosition,
    HarvestResult,
    PositionBook,
    RewardLock,
    harvest,
    pending_reward,
    snapshot_debt,
)
from farmflow_core.safe_math import checked_add, checked_sub, require_uint

logger = logging.getLogger("farmflow_ledger")

CUSTODY_LABEL = "farmflow/custody"
CUSTODY_ADDRESS: str = address_from_label(CUSTODY_LABEL)


@dataclass(frozen=True)
class OperationReceipt:
    """What a deposit / withdraw / harvest / emergency withdrawal did."""
    pid: int
    account: str
    amount: int
    harvest: HarvestResult = NOTHING_HARVESTED
    paid: int = 0
    shortfall: int = 0
    settlement: Settlement | None = None

    def to_dict(self) -> dict:
        return {
            "pid": self.pid,
            "account": self.account,
            "amount": self.amount,
            "harvest": self.harvest.to_dict(),
            "paid": self.paid,
            "shortfall": self.shortfall,
            "settlement": self.settlement.to_dict() if self.settlement else None,
        }


@dataclass
class LedgerTotals:
    minted: int = 0                 # reward minted by settlements (all recipients)
    paid: int = 0                   # reward transferred to stakers
    empty_pool_forfeited: int = 0   # emission while a pool held no stake
    shortfall_forfeited: int = 0    # payable reward custody could not cover
    emergency_forfeited: int = 0    # locked reward dropped by emergency withdrawals

    def to_dict(self) -> dict:
        return dict(self.__dict__)


# ── interaction plan ────────────────────────────────────────────────────

class _InteractionPlan:
    """External calls collected during the effects phase."""

    def __init__(self, reward_token: MintableAsset, custody: str, journal: _Journal) -> None:
        self.reward_token = reward_token
        self.custody = custody
        self.journal = journal
        self._pulls: list[Callable[[], None]] = []
        self._mints: list[Callable[[], None]] = []
        self._payments: list[Callable[[], None]] = []
        self._pushes: list[Callable[[], None]] = []
        self._custody_minted = 0
        self._reward_out = 0

    def pull_stake(self, token: AssetLedger, account: str, amount: int) -> None:
        self.journal.remember_asset(token)
        self._pulls.append(
            lambda: safe_transfer_from(token, self.custody, account, self.custody, amount)
        )

    def push_stake(self, token: AssetLedger, account: str, amount: int) -> None:
        self.journal.remember_asset(token)
        self._pushes.append(lambda: safe_transfer(token, self.custody, account, amount))

    def mint(self, to: str, amount: int) -> None:
        if amount == 0:
            return
        self.journal.remember_asset(self.reward_token)
        if to == self.custody:
            self._custody_minted += amount
        self._mints.append(lambda: safe_mint(self.reward_token, to, amount, self.custody))

    def pay_reward(self, account: str, amount: int) -> None:
        self.journal.remember_asset(self.reward_token)
        self._reward_out += amount
        self._payments.append(
            lambda: safe_transfer(self.reward_token, self.custody, account, amount)
        )

    def reward_available(self) -> int:
        """Custody reward balance once queued mints and payments have run."""
        on_hand = self.reward_token.balance_of(self.custody)
        return max(0, on_hand + self._custody_minted - self._reward_out)

    def execute(self) -> None:
        for call in (*self._pulls, *self._mints, *self._payments, *self._pushes):
            call()


# ── rollback journal ────────────────────────────────────────────────────

class _Journal:
    """
    Undo record for one operation.

    Scalars are copied on entry.  Pools, positions and asset collaborators
    are recorded the first time the operation touches them, so the cost
    follows what the operation does rather than the size of the ledger.
    """

    def __init__(self, ledger: StakingLedger) -> None:
        self.pool_count = len(ledger.registry)
        self.weight_sum = ledger.registry.weight_sum
        self.emission = copy.copy(ledger.scheduler.state)
        self.owner = ledger.gate.owner
        self.totals = copy.copy(ledger.totals)
        self.pools: dict[int, Pool] = {}
        self.entries: dict[tuple[int, str], tuple[AccountPosition | None, RewardLock | None]] = {}
        self.assets: list[tuple[Any, Any]] = []
        self._asset_ids: set[int] = set()

    def remember_pool(self, pid: int, pool: Pool) -> None:
        if pid < self.pool_count and pid not in self.pools:
            self.pools[pid] = copy.copy(pool)

    def remember_asset(self, asset: Any) -> None:
        if id(asset) not in self._asset_ids:
            self._asset_ids.add(id(asset))
            self.assets.extend(snapshot_assets([asset]))

    def remember(self, book: PositionBook, pid: int, account: str) -> None:
        key = (pid, account)
        if key not in self.entries:
            self.entries[key] = (
                copy.copy(book.positions.get(key)),
                copy.copy(book.locks.get(key)),
            )

    def release(self) -> None:
        release_assets(self.assets)

    def rollback(self, ledger: StakingLedger) -> None:
        registry = ledger.registry
        for pool in registry.truncate(self.pool_count):
            ledger.stake_tokens.pop(pool.stake_asset, None)
        for pid, pool in self.pools.items():
            registry.pools[pid] = pool
        registry.weight_sum = self.weight_sum
        ledger.scheduler.state = self.emission
        ledger.gate.owner = self.owner
        ledger.totals = self.totals
        book = ledger.book
        for key, (position, lock) in self.entries.items():
            if position is None:
                book.positions.pop(key, None)
            else:
                book.positions[key] = position
            if lock is None:
                book.locks.pop(key, None)
            else:
                book.locks[key] = lock
        revert_assets(self.assets)


def _operation(fn):
    """Run a state-changing method under the reentrancy guard and rollback journal."""

    @functools.wraps(fn)
    def wrapper(self: StakingLedger, *args, **kwargs):
        if self._entered:
            raise ReentrancyError(f"{fn.__name__} called while another operation is running")
        self._entered = True
        try:
            journal = self._journal = _Journal(self)
            self._pending_events = []
            if self._checker is not None:
                self._checker.capture(self)
            try:
                result = fn(self, *args, **kwargs)
                if self._checker is not None:
                    passed, _msg = self._checker.verify(self, touched=list(journal.entries))
                    if not passed:
                        raise InvariantViolationError(self._checker.violations)
            except Exception:
                journal.rollback(self)
                raise
            journal.release()
            self.events.commit(self._pending_events)
            return result
        finally:
            self._journal = None
            self._pending_events = []
            self._entered = False

    return wrapper


# ── ledger ──────────────────────────────────────────────────────────────

class StakingLedger:
    """
    Orchestrates pools, positions, emission and the asset collaborators.

    ``block`` (emission clock) and ``now`` (lock clock, seconds) are
    supplied by the caller on every operation; the ledger never reads a
    clock of its own.
    """

    def __init__(
        self,
        reward_token: MintableAsset,
        owner: str,
        emission: EmissionState,
        *,
        custody: str = CUSTODY_ADDRESS,
        reward_scale: int = REWARD_SCALE,
        check_invariants: bool = False,
    ) -> None:
        require_address(emission.dev_address, "dev_address")
        require_address(emission.community_address, "community_address")
        require_uint(reward_scale, "reward_scale")
        if emission.last_decay_block < emission.launch_block:
            emission.last_decay_block = emission.launch_block
        self.reward_token = reward_token
        self.gate = OwnerGate(owner)
        self.custody = require_address(custody, "custody")
        self.reward_scale = reward_scale
        self.scheduler = EmissionScheduler(emission)
        self.registry = PoolRegistry()
        self.accumulator = PoolAccumulator(self.registry, self.scheduler, reward_scale)
        self.book = PositionBook()
        self.events = EventLog()
        self.stake_tokens: dict[str, AssetLedger] = {}
        self.totals = LedgerTotals()
        self._checker: InvariantChecker | None = InvariantChecker() if check_invariants else None
        self._entered = False
        self._journal: _Journal | None = None
        self._pending_events: list[LedgerEvent] = []
        self.restored = False

    @property
    def emission(self) -> EmissionState:
        return self.scheduler.state

    @property
    def owner(self) -> str:
        return self.gate.owner

    @property
    def in_operation(self) -> bool:
        return self._entered

    # ── internal helpers ────────────────────────────────────────────

    def _emit(self, kind: EventKind, **fields: Any) -> None:
        self._pending_events.append(LedgerEvent(kind=kind, **fields))

    def _plan(self) -> _InteractionPlan:
        return _InteractionPlan(self.reward_token, self.custody, self._journal)

    def _pool(self, pid: int) -> Pool:
        """Look up a pool the running operation is about to change."""
        pool = self.registry.get(pid)
        self._journal.remember_pool(pid, pool)
        return pool

    def _touch(self, pid: int, account: str, now: int) -> tuple[AccountPosition, RewardLock]:
        self._journal.remember(self.book, pid, account)
        return self.book.ensure(pid, account, now)

    def _settle(self, pid: int, block: int, plan: _InteractionPlan) -> Settlement | None:
        self._pool(pid)
        settlement = self.accumulator.settle(pid, block)
        if settlement is not None:
            self._book_settlement(settlement, plan)
        return settlement

    def _settle_all(self, block: int) -> list[Settlement]:
        for pid in range(len(self.registry)):
            self._pool(pid)
        plan = self._plan()
        settled = self.accumulator.settle_all(block)
        for settlement in settled:
            self._book_settlement(settlement, plan)
        plan.execute()
        return settled

    def _book_settlement(self, settlement: Settlement, plan: _InteractionPlan) -> None:
        """Queue the mints for a settlement and update the running totals."""
        pid = settlement.pid
        split = settlement.split
        if split.gross:
            plan.mint(self.emission.dev_address, split.dev)
            plan.mint(self.emission.community_address, split.community)
            plan.mint(self.custody, split.stakers)
            self.totals.minted = checked_add(self.totals.minted, split.gross)
        if settlement.forfeited:
            self.totals.empty_pool_forfeited = checked_add(
                self.totals.empty_pool_forfeited, settlement.forfeited,
            )
            logger.warning(
                f"Pool {pid} empty for blocks {settlement.from_block}-{settlement.to_block}: "
                f"{settlement.forfeited} reward forfeited",
                extra={"pid": pid, "block": settlement.to_block},
            )
        logger.debug(
            f"Settled pool {pid} to block {settlement.to_block} at {settlement.reward_per_block}/block, "
            f"minted {settlement.minted}"
        )

    def _harvest(
        self,
        pid: int,
        account: str,
        position: AccountPosition,
        lock: RewardLock,
        block: int,
        now: int,
        plan: _InteractionPlan,
    ) -> tuple[HarvestResult, int, int]:
        pool = self.registry.get(pid)
        result = harvest(
            position, lock, pool.cumulative_reward_per_stake, self.reward_scale,
            now, self.emission.lock_period_seconds,
        )
        paid = min(result.payable, plan.reward_available())
        shortfall = result.payable - paid
        if paid:
            plan.pay_reward(account, paid)
            self.totals.paid = checked_add(self.totals.paid, paid)
        if shortfall:
            self.totals.shortfall_forfeited = checked_add(self.totals.shortfall_forfeited, shortfall)
            logger.warning(
                f"Reward shortfall for {account} in pool {pid}: owed {result.payable}, "
                f"paid {paid}, forfeited {shortfall}",
                extra={"pid": pid, "account": account, "block": block},
            )
            self._emit(EventKind.REWARD_SHORTFALL, pid=pid, account=account,
                       amount=shortfall, block=block, timestamp=now)
        if result.payable or result.locked:
            self._emit(EventKind.HARVEST, pid=pid, account=account, amount=paid,
                       block=block, timestamp=now, details=result.to_dict())
        logger.debug(
            f"Harvest {account} pool {pid}: pending {result.pending}, "
            f"locked {result.locked}, released {result.released}, paid {paid}"
        )
        return result, paid, shortfall

    def _stake_token(self, pool: Pool) -> AssetLedger:
        return self.stake_tokens[pool.stake_asset]

    # ── staking operations ──────────────────────────────────────────

    @_operation
    def deposit(self, pid: int, account: str, amount: int, *, block: int, now: int) -> OperationReceipt:
        """Stake *amount* (may be 0 to just harvest) into pool *pid*."""
        require_address(account)
        require_uint(amount, "amount")
        require_uint(block, "block")
        require_uint(now, "now")
        pool = self._pool(pid)
        plan = self._plan()

        settlement = self._settle(pid, block, plan)
        position, lock = self._touch(pid, account, now)
        result, paid, shortfall = NOTHING_HARVESTED, 0, 0
        if position.is_staked:
            result, paid, shortfall = self._harvest(pid, account, position, lock, block, now, plan)
        if amount > 0:
            plan.pull_stake(self._stake_token(pool), account, amount)
            position.staked_amount = checked_add(position.staked_amount, amount)
            pool.total_staked = checked_add(pool.total_staked, amount)
        snapshot_debt(position, pool.cumulative_reward_per_stake, self.reward_scale)
        self._emit(EventKind.DEPOSIT, pid=pid, account=account, amount=amount,
                   block=block, timestamp=now)

        plan.execute()
        logger.debug(f"Deposit {amount} by {account} into pool {pid} at block {block}")
        return OperationReceipt(pid, account, amount, result, paid, shortfall, settlement)

    @_operation
    def withdraw(self, pid: int, account: str, amount: int, *, block: int, now: int) -> OperationReceipt:
        """Unstake *amount* from pool *pid*, harvesting pending reward first."""
        require_address(account)
        require_uint(amount, "amount")
        require_uint(block, "block")
        require_uint(now, "now")
        pool = self._pool(pid)
        existing = self.book.get(pid, account)
        staked = existing.staked_amount if existing else 0
        if amount > staked:
            raise InsufficientBalanceError(
                f"Withdraw {amount} exceeds stake {staked} of {account} in pool {pid}"
            )
        plan = self._plan()

        settlement = self._settle(pid, block, plan)
        position, lock = self._touch(pid, account, now)
        result, paid, shortfall = NOTHING_HARVESTED, 0, 0
        if position.is_staked:
            result, paid, shortfall = self._harvest(pid, account, position, lock, block, now, plan)
        if amount > 0:
            position.staked_amount = checked_sub(position.staked_amount, amount)
            pool.total_staked = checked_sub(pool.total_staked, amount)
            plan.push_stake(self._stake_token(pool), account, amount)
        snapshot_debt(position, pool.cumulative_reward_per_stake, self.reward_scale)
        self._emit(EventKind.WITHDRAW, pid=pid, account=account, amount=amount,
                   block=block, timestamp=now)

        plan.execute()
        logger.debug(f"Withdraw {amount} by {account} from pool {pid} at block {block}")
        return OperationReceipt(pid, account, amount, result, paid, shortfall, settlement)

    def harvest(self, pid: int, account: str, *, block: int, now: int) -> OperationReceipt:
        """Collect pending reward without changing the stake."""
        return self.deposit(pid, account, 0, block=block, now=now)

    @_operation
    def emergency_withdraw(self, pid: int, account: str) -> OperationReceipt:
        """
        Return the full stake without settling or harvesting.

        Pending reward and the locked bucket are forfeited.
        """
        require_address(account)
        pool = self._pool(pid)
        plan = self._plan()
        self._journal.remember(self.book, pid, account)
        position = self.book.get(pid, account)
        lock = self.book.get_lock(pid, account)
        amount = position.staked_amount if position else 0
        forfeited_lock = lock.locked_amount if lock else 0

        if position is not None:
            position.staked_amount = 0
            position.reward_debt = 0
        if lock is not None:
            lock.locked_amount = 0
        pool.total_staked = checked_sub(pool.total_staked, amount)
        self.totals.emergency_forfeited = checked_add(self.totals.emergency_forfeited, forfeited_lock)
        if amount:
            plan.push_stake(self._stake_token(pool), account, amount)
        self._emit(EventKind.EMERGENCY_WITHDRAW, pid=pid, account=account, amount=amount,
                   details={"forfeited_locked": forfeited_lock})

        plan.execute()
        logger.warning(
            f"Emergency withdraw {amount} by {account} from pool {pid}, "
            f"{forfeited_lock} locked reward forfeited",
            extra={"pid": pid, "account": account},
        )
        return OperationReceipt(pid, account, amount)

    @_operation
    def settle_pool(self, pid: int, *, block: int) -> Settlement | None:
        require_uint(block, "block")
        self.registry.get(pid)
        plan = self._plan()
        settlement = self._settle(pid, block, plan)
        plan.execute()
        return settlement

    @_operation
    def settle_all(self, *, block: int) -> list[Settlement]:
        """Settle every pool; required before weight or rate changes."""
        require_uint(block, "block")
        return self._settle_all(block)

    # ── administrative operations ───────────────────────────────────

    @_operation
    def add_pool(
        self,
        caller: str,
        stake_token: AssetLedger,
        weight: int,
        *,
        block: int,
        with_update: bool = False,
    ) -> int:
        self.gate.require_owner(caller)
        require_uint(block, "block")
        asset_id = stake_token.asset_id
        if asset_id == self.reward_token.asset_id:
            raise DuplicateRegistrationError(f"Reward asset {asset_id} cannot be staked")
        existing = self.registry.index_of(asset_id)
        if existing is not None:
            raise DuplicateRegistrationError(f"Stake asset {asset_id} already has pool {existing}")
        if with_update:
            self._settle_all(block)
        pid = self.registry.register(asset_id, weight, block, self.emission.launch_block)
        self.stake_tokens[asset_id] = stake_token
        logger.info(f"Pool {pid} added for {asset_id} with weight {weight} at block {block}")
        self._emit(EventKind.POOL_ADDED, pid=pid, amount=weight, block=block,
                   details={"stake_asset": asset_id})
        return pid

    @_operation
    def set_pool_weight(
        self, caller: str, pid: int, weight: int, *, block: int, with_update: bool = False,
    ) -> int:
        """Change a pool's weight; returns the previous weight.

        Pools are not settled automatically; pass ``with_update=True`` or
        call ``settle_all`` first so past blocks keep the old split.
        """
        self.gate.require_owner(caller)
        require_uint(block, "block")
        if with_update:
            self._settle_all(block)
        self._pool(pid)
        old = self.registry.set_weight(pid, weight)
        logger.info(f"Pool {pid} weight {old} -> {weight} at block {block}")
        self._emit(EventKind.POOL_WEIGHT_SET, pid=pid, amount=weight, block=block,
                   details={"previous": old})
        return old

    @_operation
    def set_reward_per_block(
        self, caller: str, amount: int, *, block: int, with_update: bool = True,
    ) -> None:
        self.gate.require_owner(caller)
        require_uint(block, "block")
        if with_update:
            self._settle_all(block)
        self.scheduler.advance(block)
        previous = self.scheduler.reward_per_block
        self.scheduler.set_reward_per_block(amount)
        logger.info(f"Reward per block {previous} -> {amount} at block {block}")
        self._emit(EventKind.EMISSION_RATE_SET, amount=amount, block=block,
                   details={"previous": previous})

    @_operation
    def set_decay_schedule(
        self, caller: str, epoch_blocks: int, rate_percent: int, *, block: int,
    ) -> None:
        """Replace the decay schedule.

        Elapsed epochs of the old schedule are applied first.  Enabling
        decay from an inactive schedule starts the first epoch at *block*.
        """
        self.gate.require_owner(caller)
        require_uint(block, "block")
        self.scheduler.advance(block)
        was_active = self.scheduler.decay_active
        self.scheduler.set_decay(epoch_blocks, rate_percent)
        if not was_active and self.scheduler.decay_active:
            self.emission.last_decay_block = max(block, self.emission.launch_block)
        logger.info(f"Decay schedule set: {rate_percent}% every {epoch_blocks} blocks")
        self._emit(EventKind.DECAY_SCHEDULE_SET, amount=rate_percent, block=block,
                   details={"epoch_blocks": epoch_blocks})

    @_operation
    def set_lock_period(self, caller: str, seconds: int) -> None:
        self.gate.require_owner(caller)
        self.scheduler.set_lock_period(seconds)
        logger.info(f"Lock period set to {seconds}s")
        self._emit(EventKind.LOCK_PERIOD_SET, amount=seconds)

    @_operation
    def set_dev_address(self, caller: str, address: str) -> None:
        self.gate.require_owner(caller)
        self.emission.dev_address = require_address(address, "dev_address")
        logger.info(f"Dev address set to {address}")
        self._emit(EventKind.DEV_ADDRESS_SET, account=address)

    @_operation
    def set_community_address(self, caller: str, address: str) -> None:
        self.gate.require_owner(caller)
        self.emission.community_address = require_address(address, "community_address")
        logger.info(f"Community address set to {address}")
        self._emit(EventKind.COMMUNITY_ADDRESS_SET, account=address)

    @_operation
    def transfer_ownership(self, caller: str, new_owner: str) -> None:
        previous = self.gate.transfer_ownership(caller, new_owner)
        self._emit(EventKind.OWNERSHIP_TRANSFERRED, account=new_owner,
                   details={"previous": previous})

    # ── queries ─────────────────────────────────────────────────────

    @property
    def pool_count(self) -> int:
        return len(self.registry)

    def pool_info(self, pid: int) -> dict:
        pool = self.registry.get(pid)
        info = pool.to_dict()
        info["pid"] = pid
        info["weight_sum"] = self.registry.weight_sum
        return info

    def position(self, pid: int, account: str) -> AccountPosition:
        self.registry.get(pid)
        return copy.copy(self.book.get(pid, account) or AccountPosition())

    def lock_info(self, pid: int, account: str) -> dict:
        self.registry.get(pid)
        lock = self.book.get_lock(pid, account) or RewardLock()
        period = self.emission.lock_period_seconds
        return {
            "locked_amount": lock.locked_amount,
            "last_unlock_time": lock.last_unlock_time,
            "lock_period_seconds": period,
            "unlock_at": lock.unlock_at(period),
        }

    def pending_reward(self, pid: int, account: str, *, block: int) -> int:
        """Reward a harvest at *block* would credit, before the lock split."""
        require_uint(block, "block")
        acc = self.accumulator.projected_accumulator(pid, block)
        position = self.book.get(pid, account)
        if position is None:
            return 0
        return pending_reward(position, acc, self.reward_scale)

    def reward_preview(self, pid: int, account: str, *, block: int, now: int) -> dict:
        """Breakdown of what ``harvest(pid, account, block=block, now=now)`` would do."""
        pending = self.pending_reward(pid, account, block=block)
        lock = copy.copy(self.book.get_lock(pid, account) or RewardLock(last_unlock_time=now))
        releasable = lock.is_releasable(now, self.emission.lock_period_seconds)
        released = lock.locked_amount if releasable else 0
        locked = pending // 2
        return {
            "pending": pending,
            "locked_balance": lock.locked_amount,
            "releasable_now": releasable,
            "would_lock": locked,
            "would_pay": released + pending - locked,
        }

    def emission_info(self) -> dict:
        info = self.emission.to_dict()
        info["decay_active"] = self.scheduler.decay_active
        info["next_decay_block"] = self.scheduler.next_decay_block()
        return info

    def status(self) -> dict:
        info = {
            "owner": self.owner,
            "custody": self.custody,
            "reward_asset": self.reward_token.asset_id,
            "reward_scale": self.reward_scale,
            "pool_count": self.pool_count,
            "weight_sum": self.registry.weight_sum,
            "reward_per_block": self.scheduler.reward_per_block,
            "positions": len(self.book.positions),
            "events": len(self.events),
            "totals": self.totals.to_dict(),
            "restored": self.restored,
        }
        # Token balances are not part of a snapshot
        if not self.restored:
            info["custody_reward_balance"] = self.reward_token.balance_of(self.custody)
        return info

    # ── snapshots ───────────────────────────────────────────────────

    def snapshot(self) -> dict:
        """Plain-data copy of the ledger state (accepted by ``restore_state``)."""
        return {
            "owner": self.owner,
            "custody": self.custody,
            "reward_scale": self.reward_scale,
            "emission": self.emission.to_dict(),
            "pools": [p.to_dict() for p in self.registry],
            "positions": [
                {"pid": pid, "account": account, **pos.to_dict()}
                for (pid, account), pos in self.book.positions.items()
            ],
            "locks": [
                {"pid": pid, "account": account, **lock.to_dict()}
                for (pid, account), lock in self.book.locks.items()
            ],
            "totals": self.totals.to_dict(),
            "events": [e.to_dict() for e in self.events.entries],
        }

    @classmethod
    def from_snapshot(
        cls,
        snapshot: dict,
        reward_token: MintableAsset,
        stake_tokens: dict[str, AssetLedger],
        *,
        check_invariants: bool = False,
    ) -> StakingLedger:
        ledger = cls(
            reward_token,
            snapshot["owner"],
            EmissionState(**snapshot["emission"]),
            custody=snapshot["custody"],
            reward_scale=snapshot["reward_scale"],
            check_invariants=check_invariants,
        )
        ledger.restore_state(snapshot, stake_tokens)
        return ledger

    def restore_state(self, snapshot: dict, stake_tokens: dict[str, AssetLedger]) -> None:
        pools = [Pool(**p) for p in snapshot["pools"]]
        missing = [p.stake_asset for p in pools if p.stake_asset not in stake_tokens]
        if missing:
            raise KeyError(f"No stake token supplied for {', '.join(missing)}")
        self.registry.restore(pools)
        self.stake_tokens = {p.stake_asset: stake_tokens[p.stake_asset] for p in pools}
        self.book = PositionBook()
        for row in snapshot["positions"]:
            self.book.positions[(row["pid"], row["account"])] = AccountPosition(
                staked_amount=row["staked_amount"], reward_debt=row["reward_debt"],
            )
        for row in snapshot["locks"]:
            self.book.locks[(row["pid"], row["account"])] = RewardLock(
                locked_amount=row["locked_amount"], last_unlock_time=row["last_unlock_time"],
            )
        self.totals = LedgerTotals(**snapshot.get("totals", {}))
        self.events = EventLog()
        self.events.entries = [LedgerEvent.from_dict(e) for e in snapshot.get("events", [])]
        self.restored = True
        logger.info(
            f"Restored ledger: {len(pools)} pools, {len(self.book.positions)} positions"
        )
