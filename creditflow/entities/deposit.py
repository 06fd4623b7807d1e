"""
deposit.py - Liquidity provider deposits and tranche accounting.

Junior deposits are withdrawable at any time. Senior deposits are locked
until deposit_time + lockup; while locked their principal counts toward the
locked balance and their interest is not yet claimable.

Key Formulas:
    remaining(d)          = principal - withdrawn
    breakdown[tranche]    = sum(remaining(d) for d in tranche)
    available(JUNIOR)     = breakdown[JUNIOR]
    available(SENIOR)     = sum(remaining(d) for unlocked senior d)
    senior_locked         = sum(remaining(d) for locked senior d)
    pending_interest(t)   = sum(interest(d) for d in t if not locked)
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Optional, Sequence

from ..core import (
    Tranche, ZERO, from_base_units, from_seconds, from_timestamp, raw_field,
)


@dataclass(frozen=True, slots=True)
class LPDeposit:
    """
    One liquidity deposit.

    Invariant: withdrawn <= principal.
    """
    index: int
    principal: Decimal
    deposit_time: datetime
    tranche: Tranche
    lockup: timedelta = timedelta(0)
    withdrawn: Decimal = ZERO
    interest_accrued: Decimal = ZERO
    is_active: bool = True

    def __post_init__(self):
        for name in ('principal', 'withdrawn', 'interest_accrued'):
            value = getattr(self, name)
            if not isinstance(value, Decimal):
                object.__setattr__(self, name, Decimal(str(value)))
        if self.withdrawn > self.principal:
            raise ValueError(
                f"Deposit {self.index} withdrew {self.withdrawn} of principal {self.principal}"
            )

    @property
    def remaining(self) -> Decimal:
        return self.principal - self.withdrawn

    @property
    def unlock_time(self) -> datetime:
        return self.deposit_time + self.lockup

    def is_locked(self, as_of: datetime) -> bool:
        """Only senior deposits lock; junior deposits never do."""
        return self.tranche is Tranche.SENIOR and as_of < self.unlock_time


@dataclass(frozen=True, slots=True)
class TrancheBreakdown:
    junior: Decimal
    senior: Decimal

    @property
    def total(self) -> Decimal:
        return self.junior + self.senior


def _in_tranche(deposits: Sequence[LPDeposit], tranche: Tranche):
    return (d for d in deposits if d.is_active and d.tranche is tranche)


def calculate_tranche_breakdown(deposits: Sequence[LPDeposit]) -> TrancheBreakdown:
    return TrancheBreakdown(
        junior=sum((d.remaining for d in _in_tranche(deposits, Tranche.JUNIOR)), ZERO),
        senior=sum((d.remaining for d in _in_tranche(deposits, Tranche.SENIOR)), ZERO),
    )


def calculate_available_balance(
    deposits: Sequence[LPDeposit],
    tranche: Tranche,
    as_of: datetime,
) -> Decimal:
    """Withdrawable principal in a tranche at as_of."""
    return sum(
        (d.remaining for d in _in_tranche(deposits, tranche) if not d.is_locked(as_of)),
        ZERO,
    )


def calculate_locked_balance(deposits: Sequence[LPDeposit], as_of: datetime) -> Decimal:
    """Senior principal still inside its lockup at as_of."""
    return sum(
        (d.remaining for d in _in_tranche(deposits, Tranche.SENIOR) if d.is_locked(as_of)),
        ZERO,
    )


def calculate_pending_interest(
    deposits: Sequence[LPDeposit],
    tranche: Tranche,
    as_of: datetime,
) -> Decimal:
    """Claimable interest in a tranche; locked senior interest reports zero."""
    return sum(
        (d.interest_accrued for d in _in_tranche(deposits, tranche) if not d.is_locked(as_of)),
        ZERO,
    )


def calculate_next_unlock(deposits: Sequence[LPDeposit], as_of: datetime) -> Optional[datetime]:
    """Earliest unlock time among still-locked senior deposits, if any."""
    pending = [
        d.unlock_time for d in _in_tranche(deposits, Tranche.SENIOR)
        if d.is_locked(as_of) and d.remaining > 0
    ]
    return min(pending) if pending else None


# getLPActiveDeposits entry:
# (amount, depositTime, withdrawnAmount, interestAccrued, isActive, tranche, lockupDuration)
def decode_deposit(index: int, raw: Any, decimals: int) -> LPDeposit:
    tranche_raw = int(raw_field(raw, "tranche", 5))
    try:
        tranche = Tranche(tranche_raw)
    except ValueError:
        raise ValueError(f"Unknown tranche value {tranche_raw} in deposit {index}")
    return LPDeposit(
        index=index,
        principal=from_base_units(raw_field(raw, "amount", 0), decimals),
        deposit_time=from_timestamp(raw_field(raw, "depositTime", 1)),
        withdrawn=from_base_units(raw_field(raw, "withdrawnAmount", 2), decimals),
        interest_accrued=from_base_units(raw_field(raw, "interestAccrued", 3), decimals),
        is_active=bool(raw_field(raw, "isActive", 4)),
        tranche=tranche,
        lockup=from_seconds(raw_field(raw, "lockupDuration", 6)),
    )
