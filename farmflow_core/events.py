"""
Event records emitted by the staking ledger.

Every successful state-changing operation appends one or more
``LedgerEvent`` entries to the ledger's ``EventLog``.  Events produced by
an operation that later fails are discarded with the rest of its effects,
so the log only ever describes committed state.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class EventKind(Enum):
    POOL_ADDED = "PoolAdded"
    POOL_WEIGHT_SET = "PoolWeightSet"
    DEPOSIT = "Deposit"
    WITHDRAW = "Withdraw"
    EMERGENCY_WITHDRAW = "EmergencyWithdraw"
    HARVEST = "Harvest"
    REWARD_SHORTFALL = "RewardShortfall"
    EMISSION_RATE_SET = "EmissionRateSet"
    DECAY_SCHEDULE_SET = "DecayScheduleSet"
    LOCK_PERIOD_SET = "LockPeriodSet"
    DEV_ADDRESS_SET = "DevAddressSet"
    COMMUNITY_ADDRESS_SET = "CommunityAddressSet"
    OWNERSHIP_TRANSFERRED = "OwnershipTransferred"


@dataclass
class LedgerEvent:
    kind: EventKind
    seq: int = 0
    pid: int | None = None
    account: str = ""
    amount: int = 0
    block: int | None = None
    timestamp: int | None = None
    details: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        d = {
            "seq": self.seq,
            "kind": self.kind.value,
            "amount": self.amount,
        }
        if self.pid is not None:
            d["pid"] = self.pid
        if self.account:
            d["account"] = self.account
        if self.block is not None:
            d["block"] = self.block
        if self.timestamp is not None:
            d["timestamp"] = self.timestamp
        if self.details:
            d["details"] = self.details
        return d

    @classmethod
    def from_dict(cls, d: dict) -> LedgerEvent:
        return cls(
            kind=EventKind(d["kind"]),
            seq=d.get("seq", 0),
            pid=d.get("pid"),
            account=d.get("account", ""),
            amount=d.get("amount", 0),
            block=d.get("block"),
            timestamp=d.get("timestamp"),
            details=d.get("details", {}),
        )


class EventLog:
    """Append-only, sequence-numbered event history."""

    def __init__(self) -> None:
        self.entries: list[LedgerEvent] = []

    def __len__(self) -> int:
        return len(self.entries)

    @property
    def next_seq(self) -> int:
        return self.entries[-1].seq + 1 if self.entries else 1

    def commit(self, pending: list[LedgerEvent]) -> None:
        seq = self.next_seq
        for event in pending:
            event.seq = seq
            seq += 1
            self.entries.append(event)

    def select(
        self,
        since: int = 0,
        *,
        pid: int | None = None,
        account: str | None = None,
        kind: EventKind | None = None,
    ) -> list[LedgerEvent]:
        """Committed events after *since*, narrowed by any filter given."""
        return [
            e for e in self.entries
            if e.seq > since
            and (pid is None or e.pid == pid)
            and (account is None or e.account == account)
            and (kind is None or e.kind is kind)
        ]
