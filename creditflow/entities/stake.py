"""
stake.py - Staking positions, collateral tiers, APY and points.

ARCHITECTURE (Pure Function Pattern):
=====================================

1. FROZEN DATACLASSES:
   - Stake: one lock of stake tokens (an account may hold several)
   - StakeUsage: total / used-for-borrowing / free stake amounts

2. PURE CALCULATION FUNCTIONS (calculate_*):
   - calculate_tier: staked total -> CollateralTier via the threshold table
   - calculate_apy_bps: lock duration -> APY from the duration table
   - calculate_points_multiplier / calculate_points
   - calculate_remaining_lock: time left until a stake matures

3. ADAPTER FUNCTIONS (decode_*):
   - Turn raw ledger structs into the dataclasses above.
   - Only the reader calls these, right next to the gateway.

Key Rules:
    maturity = start_time + duration
    points = amount * (bonus multiplier if duration >= bonus days else 1)
    apy = entry with the longest minimum duration not exceeding the lock
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Optional, Sequence, Tuple

from ..core import (
    CollateralTier, ZERO, from_base_units, from_seconds, from_timestamp, raw_field,
)


# ============================================================================
# FROZEN DATACLASSES
# ============================================================================

@dataclass(frozen=True, slots=True)
class Stake:
    """
    A single staking lock owned by an account.

    Attributes:
        index: Position in the account's active-stake list on the ledger.
        amount: Staked amount in stake-token units.
        start_time: When the lock began.
        duration: Lock length; the stake cannot be unwound before start + duration.
        apy_bps: Derived APY in basis points.
        points_multiplier: Derived points multiplier (1 or the bonus).
        points: Derived points (amount * multiplier).
    """
    index: int
    amount: Decimal
    start_time: datetime
    duration: timedelta
    apy_bps: int
    points_multiplier: int
    points: Decimal

    def __post_init__(self):
        if not isinstance(self.amount, Decimal):
            object.__setattr__(self, 'amount', Decimal(str(self.amount)))
        if not isinstance(self.points, Decimal):
            object.__setattr__(self, 'points', Decimal(str(self.points)))
        if self.index < 0:
            raise ValueError(f"Stake index cannot be negative: {self.index}")
        if self.amount < 0:
            raise ValueError(f"Stake amount cannot be negative: {self.amount}")

    @property
    def maturity(self) -> datetime:
        return self.start_time + self.duration

    def is_matured(self, as_of: datetime) -> bool:
        return as_of >= self.maturity

    def remaining(self, as_of: datetime) -> timedelta:
        return calculate_remaining_lock(self.start_time, self.duration, as_of)


@dataclass(frozen=True, slots=True)
class StakeUsage:
    """Stake amounts in total, reserved against open borrowing, and free."""
    total: Decimal
    used: Decimal
    free: Decimal


# ============================================================================
# PURE CALCULATION FUNCTIONS
# ============================================================================

def calculate_tier(
    total_staked: Decimal,
    thresholds: Sequence[Tuple[CollateralTier, Decimal]],
) -> CollateralTier:
    """
    Map a staked total onto the highest tier whose threshold it meets.

    Args:
        total_staked: Sum of the account's active stakes.
        thresholds: (tier, minimum) pairs in ascending order.

    Returns:
        The qualifying tier, or CollateralTier.NONE below the first threshold.
    """
    tier = CollateralTier.NONE
    for candidate, minimum in thresholds:
        if total_staked >= minimum:
            tier = candidate
    return tier


def calculate_apy_bps(duration: timedelta, apy_table: Sequence[Tuple[int, int]]) -> int:
    """
    APY for a lock duration.

    Locks shorter than the shortest table entry earn nothing.

    >>> calculate_apy_bps(timedelta(days=100), ((45, 100), (90, 300)))
    300
    """
    apy = 0
    for min_days, bps in apy_table:
        if duration >= timedelta(days=min_days):
            apy = bps
    return apy


def calculate_points_multiplier(duration: timedelta, bonus_min_days: int, bonus_multiplier: int) -> int:
    if duration >= timedelta(days=bonus_min_days):
        return bonus_multiplier
    return 1


def calculate_points(amount: Decimal, multiplier: int) -> Decimal:
    return amount * multiplier


def calculate_remaining_lock(start_time: datetime, duration: timedelta, as_of: datetime) -> timedelta:
    """Time left until maturity, never negative."""
    remaining = start_time + duration - as_of
    if remaining < timedelta(0):
        return timedelta(0)
    return remaining


def calculate_total_staked(stakes: Sequence[Stake]) -> Decimal:
    return sum((s.amount for s in stakes), ZERO)


def find_stake(stakes: Sequence[Stake], index: int) -> Optional[Stake]:
    for stake in stakes:
        if stake.index == index:
            return stake
    return None


# ============================================================================
# ADAPTER FUNCTIONS
# ============================================================================

# Active stake struct: (amount, points, startTime, lastUpdateTime, duration)
_STAKE_AMOUNT = ("amount", 0)
_STAKE_START = ("startTime", 2)
_STAKE_DURATION = ("duration", 4)


def decode_stake(
    index: int,
    raw: Any,
    decimals: int,
    apy_table: Sequence[Tuple[int, int]],
    bonus_min_days: int,
    bonus_multiplier: int,
) -> Stake:
    """Decode one entry of getActiveStakes into a Stake with derived fields."""
    amount = from_base_units(raw_field(raw, *_STAKE_AMOUNT), decimals)
    start_time = from_timestamp(raw_field(raw, *_STAKE_START))
    duration = from_seconds(raw_field(raw, *_STAKE_DURATION))
    multiplier = calculate_points_multiplier(duration, bonus_min_days, bonus_multiplier)
    return Stake(
        index=index,
        amount=amount,
        start_time=start_time,
        duration=duration,
        apy_bps=calculate_apy_bps(duration, apy_table),
        points_multiplier=multiplier,
        points=calculate_points(amount, multiplier),
    )


def decode_stake_usage(raw: Any, decimals: int) -> StakeUsage:
    """Decode getStakeUsage: (total, used, free)."""
    return StakeUsage(
        total=from_base_units(raw_field(raw, "total", 0), decimals),
        used=from_base_units(raw_field(raw, "used", 1), decimals),
        free=from_base_units(raw_field(raw, "free", 2), decimals),
    )
