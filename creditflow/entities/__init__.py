"""
Domain entities read from the ledger.

Each module follows the same layout: frozen dataclasses, pure calculate_*
functions, and decode_* adapters that turn raw ledger structs into the
dataclasses.
"""

from .stake import (
    Stake, StakeUsage,
    calculate_tier, calculate_apy_bps, calculate_points_multiplier,
    calculate_points, calculate_remaining_lock, calculate_total_staked,
    find_stake, decode_stake, decode_stake_usage,
)
from .invoice import Invoice, NULL_ADDRESS, decode_invoice
from .loan import (
    Loan, LOAN_STATUS_ACTIVE, LOAN_STATUS_REPAID, LOAN_STATUS_LIQUIDATED,
    calculate_borrowing_capacity, calculate_amount_due, calculate_repay_allowance,
    decode_loan,
)
from .deposit import (
    LPDeposit, TrancheBreakdown,
    calculate_tranche_breakdown, calculate_available_balance,
    calculate_locked_balance, calculate_pending_interest, calculate_next_unlock,
    decode_deposit,
)
from .pool import PoolState, calculate_available_liquidity, calculate_utilization
from .snapshot import DomainSnapshot

__all__ = [
    'Stake', 'StakeUsage',
    'calculate_tier', 'calculate_apy_bps', 'calculate_points_multiplier',
    'calculate_points', 'calculate_remaining_lock', 'calculate_total_staked',
    'find_stake', 'decode_stake', 'decode_stake_usage',
    'Invoice', 'NULL_ADDRESS', 'decode_invoice',
    'Loan', 'LOAN_STATUS_ACTIVE', 'LOAN_STATUS_REPAID', 'LOAN_STATUS_LIQUIDATED',
    'calculate_borrowing_capacity', 'calculate_amount_due', 'calculate_repay_allowance',
    'decode_loan',
    'LPDeposit', 'TrancheBreakdown',
    'calculate_tranche_breakdown', 'calculate_available_balance',
    'calculate_locked_balance', 'calculate_pending_interest', 'calculate_next_unlock',
    'decode_deposit',
    'PoolState', 'calculate_available_liquidity', 'calculate_utilization',
    'DomainSnapshot',
]
