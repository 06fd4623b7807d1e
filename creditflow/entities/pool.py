"""
pool.py - Lending pool aggregates.

All values here are read fresh for every snapshot. Utilization and
available liquidity are recomputed from those reads and never cached.
"""

from __future__ import annotations
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from ..core import ZERO


@dataclass(frozen=True, slots=True)
class PoolState:
    """
    Attributes:
        total_deposits: Sum of all LP deposits.
        total_borrowed: Sum of all outstanding principal.
        contract_balance: Stable tokens held by the pool contract.
        safe_lending_ceiling: Advisory system-wide lending limit, None when
            the ledger could not supply it.
    """
    total_deposits: Decimal
    total_borrowed: Decimal
    contract_balance: Decimal = ZERO
    safe_lending_ceiling: Optional[Decimal] = None

    @property
    def available_liquidity(self) -> Decimal:
        return calculate_available_liquidity(self.total_deposits, self.total_borrowed)

    @property
    def utilization(self) -> Decimal:
        return calculate_utilization(self.total_deposits, self.total_borrowed)


def calculate_available_liquidity(total_deposits: Decimal, total_borrowed: Decimal) -> Decimal:
    return max(total_deposits - total_borrowed, ZERO)


def calculate_utilization(total_deposits: Decimal, total_borrowed: Decimal) -> Decimal:
    """Borrowed over deposited, 0 for an empty pool."""
    if total_deposits <= 0:
        return ZERO
    return total_borrowed / total_deposits
