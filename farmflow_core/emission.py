"""
Block-based reward emission with a stepped decay schedule.

The global emission rate ``reward_per_block`` is multiplied by
``decay_rate_percent / 100`` once every ``decay_epoch_blocks`` blocks,
counted from ``last_decay_block``:

    while current_block >= last_decay_block + decay_epoch_blocks:
        last_decay_block += decay_epoch_blocks
        reward_per_block  = reward_per_block * decay_rate_percent // 100

Decay is lazy: nothing happens until ``advance()`` is called, and a single
call processes every epoch that has elapsed since the previous one, so an
epoch is never skipped, only deferred.  ``decay_epoch_blocks == 0`` or
``decay_rate_percent == 100`` disables decay.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass

from farmflow_core.errors import InvalidAmountError
from farmflow_core.safe_math import checked_add, checked_mul, require_uint

logger = logging.getLogger("farmflow_emission")

PERCENT = 100


@dataclass
class EmissionState:
    """Global emission parameters (one per ledger)."""
    reward_per_block: int
    launch_block: int = 0
    decay_epoch_blocks: int = 0
    decay_rate_percent: int = PERCENT
    last_decay_block: int = 0
    lock_period_seconds: int = 0
    dev_address: str = ""
    community_address: str = ""

    def to_dict(self) -> dict:
        return asdict(self)


def _step(rate: int, last: int, epoch: int, percent: int, current_block: int) -> tuple[int, int, int]:
    """Apply every elapsed epoch; returns ``(rate, last_decay_block, epochs)``."""
    epochs = 0
    while current_block >= checked_add(last, epoch):
        if rate == 0:
            # Nothing left to decay: jump straight to the last boundary
            remaining = (current_block - last) // epoch
            last = checked_add(last, checked_mul(remaining, epoch))
            epochs += remaining
            break
        last += epoch
        rate = rate * percent // PERCENT
        epochs += 1
    return rate, last, epochs


class EmissionScheduler:
    """Owns an EmissionState and applies its decay schedule on demand."""

    def __init__(self, state: EmissionState) -> None:
        require_uint(state.reward_per_block, "reward_per_block")
        require_uint(state.launch_block, "launch_block")
        require_uint(state.decay_epoch_blocks, "decay_epoch_blocks")
        require_uint(state.last_decay_block, "last_decay_block")
        require_uint(state.lock_period_seconds, "lock_period_seconds")
        _check_percent(state.decay_rate_percent)
        self.state = state

    @property
    def reward_per_block(self) -> int:
        return self.state.reward_per_block

    @property
    def decay_active(self) -> bool:
        s = self.state
        return s.decay_epoch_blocks > 0 and s.decay_rate_percent != PERCENT

    def advance(self, current_block: int) -> int:
        """Catch the rate up to *current_block*.  Returns the number of epochs applied."""
        if not self.decay_active:
            return 0
        s = self.state
        rate, last, epochs = _step(
            s.reward_per_block, s.last_decay_block,
            s.decay_epoch_blocks, s.decay_rate_percent, current_block,
        )
        if epochs:
            logger.debug(
                f"Emission decayed {epochs} epoch(s): "
                f"{s.reward_per_block} -> {rate} per block at block {last}"
            )
            s.reward_per_block = rate
            s.last_decay_block = last
        return epochs

    def projected_rate(self, current_block: int) -> int:
        """Rate ``advance(current_block)`` would produce, without mutating state."""
        if not self.decay_active:
            return self.state.reward_per_block
        s = self.state
        rate, _last, _epochs = _step(
            s.reward_per_block, s.last_decay_block,
            s.decay_epoch_blocks, s.decay_rate_percent, current_block,
        )
        return rate

    def next_decay_block(self) -> int | None:
        if not self.decay_active:
            return None
        return self.state.last_decay_block + self.state.decay_epoch_blocks

    # ── administrative updates (callers gate and catch up first) ───

    def set_reward_per_block(self, amount: int) -> None:
        self.state.reward_per_block = require_uint(amount, "reward_per_block")

    def set_decay(self, epoch_blocks: int, rate_percent: int) -> None:
        require_uint(epoch_blocks, "decay_epoch_blocks")
        _check_percent(rate_percent)
        self.state.decay_epoch_blocks = epoch_blocks
        self.state.decay_rate_percent = rate_percent

    def set_lock_period(self, seconds: int) -> None:
        self.state.lock_period_seconds = require_uint(seconds, "lock_period_seconds")


def _check_percent(value: int) -> None:
    require_uint(value, "decay_rate_percent")
    if value > PERCENT:
        raise InvalidAmountError(f"decay_rate_percent must be 0-{PERCENT}, got {value}")
