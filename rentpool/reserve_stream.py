"""
reserve_stream.py - Gradual recognition of earned interest

Interest realised from loans is not added to the withdrawable reserve at
once. It is queued in a streaming target and vests over time, so the value
of a pool share can only rise at a bounded rate and a deposit placed just
before a large payment cannot capture a disproportionate part of it.

State (ReserveState):
    fixed_reserve            settled, immediately withdrawable
    streaming_reserve        vested part of the target as of streaming_updated_at
    streaming_reserve_target total queued interest (vested + pending)
    streaming_updated_at     last checkpoint of the stream
    used_reserve             reserve currently lent out
    total_shares             outstanding pool shares

Key Formulas:
    vested(now)  = streaming + floor((target - streaming) * vest_fraction(now - updated_at))
    reserve(now) = fixed_reserve + vested(now)
    available    = max(0, reserve(now) - used_reserve)

Schedules:
    linear     vest_fraction(dt) = min(1, dt / period)
    half_life  vest_fraction(dt) = 1 - 2 ** (-dt / period)

All functions are pure: they take a ReserveState and return a new one.
"""

from __future__ import annotations
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_DOWN
from typing import Tuple

from .core import ValidationError, ErrorCode


STREAMING_LINEAR = "linear"
STREAMING_HALF_LIFE = "half_life"
STREAMING_SCHEDULES = (STREAMING_LINEAR, STREAMING_HALF_LIFE)


@dataclass(frozen=True, slots=True)
class StreamingSchedule:
    """How fast queued interest vests."""
    period: timedelta
    kind: str = STREAMING_LINEAR

    def __post_init__(self):
        if self.kind not in STREAMING_SCHEDULES:
            raise ValidationError(ErrorCode.INVALID_CONFIG,
                                  f"unknown streaming schedule {self.kind!r}")
        if self.period <= timedelta(0):
            raise ValidationError(ErrorCode.INVALID_CONFIG,
                                  f"streaming period must be positive, got {self.period}")

    def vest_fraction(self, elapsed: timedelta) -> Decimal:
        """Fraction (0..1) of the pending amount vested after `elapsed`."""
        if elapsed <= timedelta(0):
            return Decimal(0)
        ratio = Decimal(str(elapsed.total_seconds())) / Decimal(str(self.period.total_seconds()))
        if self.kind == STREAMING_LINEAR:
            return min(Decimal(1), ratio)
        return Decimal(1) - Decimal(2) ** (-ratio)


@dataclass(frozen=True, slots=True)
class ReserveState:
    """Immutable snapshot of the pool's reserve figures."""
    fixed_reserve: int
    streaming_reserve: int
    streaming_reserve_target: int
    streaming_updated_at: datetime
    used_reserve: int
    total_shares: int


def calculate_streaming_reserve(state: ReserveState, now: datetime, schedule: StreamingSchedule) -> int:
    """Vested part of the streaming target at `now`."""
    pending = state.streaming_reserve_target - state.streaming_reserve
    if pending <= 0:
        return state.streaming_reserve
    vested = (Decimal(pending) * schedule.vest_fraction(now - state.streaming_updated_at))
    return state.streaming_reserve + min(pending, int(vested.to_integral_value(rounding=ROUND_DOWN)))


def calculate_reserve(state: ReserveState, now: datetime, schedule: StreamingSchedule) -> int:
    """Total reserve: settled plus vested streaming interest."""
    return state.fixed_reserve + calculate_streaming_reserve(state, now, schedule)


def calculate_available_reserve(state: ReserveState, now: datetime, schedule: StreamingSchedule) -> int:
    """Reserve not currently lent out (never negative)."""
    return max(0, calculate_reserve(state, now, schedule) - state.used_reserve)


def increase_streaming_target(
    state: ReserveState,
    amount: int,
    now: datetime,
    schedule: StreamingSchedule,
) -> ReserveState:
    """
    Queue newly earned interest.

    The vested amount is checkpointed first so the new interest starts
    vesting from `now` and never retroactively.
    """
    if amount < 0:
        raise ValueError(f"streaming increase cannot be negative, got {amount}")
    return replace(
        state,
        streaming_reserve=calculate_streaming_reserve(state, now, schedule),
        streaming_reserve_target=state.streaming_reserve_target + amount,
        streaming_updated_at=now,
    )


def flush_streaming_reserve(
    state: ReserveState,
    now: datetime,
    schedule: StreamingSchedule,
) -> Tuple[ReserveState, int]:
    """
    Fold the vested streaming amount into the fixed reserve.

    Returns:
        (new_state, flushed_amount)
    """
    vested = calculate_streaming_reserve(state, now, schedule)
    new_state = replace(
        state,
        fixed_reserve=state.fixed_reserve + vested,
        streaming_reserve=0,
        streaming_reserve_target=state.streaming_reserve_target - vested,
        streaming_updated_at=now,
    )
    return new_state, vested


def vest_all(state: ReserveState, now: datetime) -> ReserveState:
    """Settle the whole streaming target immediately (used on shutdown and final exit)."""
    return replace(
        state,
        fixed_reserve=state.fixed_reserve + state.streaming_reserve_target,
        streaming_reserve=0,
        streaming_reserve_target=0,
        streaming_updated_at=now,
    )


def withdraw_from_reserve(
    state: ReserveState,
    amount: int,
    now: datetime,
    schedule: StreamingSchedule,
) -> ReserveState:
    """
    Take `amount` out of the settled reserve, flushing the stream if the
    fixed reserve alone cannot cover it.

    Callers check `amount` against the available reserve beforehand.
    """
    if amount > state.fixed_reserve:
        state, _ = flush_streaming_reserve(state, now, schedule)
    if amount > state.fixed_reserve:
        raise ValueError(f"withdrawal {amount} exceeds settled reserve {state.fixed_reserve}")
    return replace(state, fixed_reserve=state.fixed_reserve - amount)
