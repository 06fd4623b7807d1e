"""
snapshot.py - Everything read about one account at one instant.

A DomainSnapshot is produced by the reader and consumed by the validator and
planner. It is a value: derived figures (capacity, utilization, tranche
balances) are computed from its fields on demand and never stored back.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Dict, Mapping, Optional, Tuple

from ..core import CollateralTier, Tranche, ZERO, same_account
from .deposit import (
    LPDeposit, TrancheBreakdown,
    calculate_available_balance, calculate_locked_balance,
    calculate_next_unlock, calculate_pending_interest, calculate_tranche_breakdown,
)
from .invoice import Invoice
from .loan import Loan, calculate_borrowing_capacity
from .pool import PoolState
from .stake import Stake, StakeUsage, calculate_total_staked, find_stake


@dataclass(frozen=True, slots=True)
class DomainSnapshot:
    """
    Attributes:
        account: Account the snapshot was taken for.
        as_of: Wall-clock instant of the reads (UTC).
        taken_at: Monotonic clock reading, used to age plans.
        tier: Collateral tier.
        ltv_bps: LTV that applies to the tier.
        stable_decimals: Precision used when rounding capacities.
        lending_pool: Lending pool address (the custodian of pledged invoices).
        stakes: Active stakes.
        stake_usage: Stake usage figures, None if unreadable.
        stake_token_balance / stable_balance: Wallet balances.
        stake_allowance: Stake tokens the staking contract may pull.
        stable_allowance: Stable tokens the lending pool may pull.
        pool_operator_approved: Lending pool is an approved operator for
            all of the account's invoices.
        invoices: Invoices by token id (owned, plus any explicitly requested).
        loans: Loans by backing token id.
        deposits: The account's LP deposits.
        pool: Lending pool aggregates.
        is_verifier: Account holds the invoice verifier role.
        lp_interest: Total claimable LP interest.
        platform_fees: Protocol fees the pool owner can withdraw.
        staker_stakes: Active stakes of other accounts, keyed by lowercased
            address (only those explicitly requested, e.g. a slash target).
    """
    account: str
    as_of: datetime
    taken_at: float
    tier: CollateralTier
    ltv_bps: int
    stable_decimals: int
    lending_pool: str
    pool: PoolState
    stakes: Tuple[Stake, ...] = ()
    stake_usage: Optional[StakeUsage] = None
    stake_token_balance: Decimal = ZERO
    stable_balance: Decimal = ZERO
    stake_allowance: Decimal = ZERO
    stable_allowance: Decimal = ZERO
    pool_operator_approved: bool = False
    invoices: Mapping[int, Invoice] = field(default_factory=dict)
    loans: Mapping[int, Loan] = field(default_factory=dict)
    deposits: Tuple[LPDeposit, ...] = ()
    is_verifier: bool = False
    lp_interest: Decimal = ZERO
    platform_fees: Decimal = ZERO
    staker_stakes: Mapping[str, Tuple[Stake, ...]] = field(default_factory=dict)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def invoice(self, token_id: int) -> Optional[Invoice]:
        return self.invoices.get(token_id)

    def loan(self, token_id: int) -> Optional[Loan]:
        return self.loans.get(token_id)

    def stake(self, index: int) -> Optional[Stake]:
        return find_stake(self.stakes, index)

    def active_loan_for(self, token_id: int) -> Optional[Loan]:
        """The active loan backed by token_id, whoever the borrower is."""
        loan = self.loans.get(token_id)
        if loan is not None and loan.is_active:
            return loan
        return None

    def own_loans(self) -> Tuple[Loan, ...]:
        return tuple(
            loan for loan in self.loans.values() if same_account(loan.borrower, self.account)
        )

    def stakes_of(self, staker: str) -> Tuple[Stake, ...]:
        """Active stakes of any account in the snapshot."""
        if same_account(staker, self.account):
            return self.stakes
        return tuple(self.staker_stakes.get(staker.lower(), ()))

    def owns_invoice(self, invoice: Invoice) -> bool:
        if not invoice.is_owned_by(self.account, custodian=self.lending_pool):
            return False
        # after a liquidation the pool keeps the invoice for itself
        loan = self.loans.get(invoice.token_id)
        return not (
            loan is not None
            and loan.is_liquidated
            and same_account(invoice.owner, self.lending_pool)
        )

    # ------------------------------------------------------------------
    # Derived figures
    # ------------------------------------------------------------------

    def capacity_for(self, invoice: Invoice) -> Decimal:
        return calculate_borrowing_capacity(invoice.face_amount, self.ltv_bps, self.stable_decimals)

    @property
    def capacities(self) -> Dict[int, Decimal]:
        """Borrowing capacity of every invoice the account owns."""
        return {
            token_id: self.capacity_for(invoice)
            for token_id, invoice in self.invoices.items()
            if self.owns_invoice(invoice)
        }

    @property
    def total_staked(self) -> Decimal:
        return calculate_total_staked(self.stakes)

    @property
    def total_borrowed(self) -> Decimal:
        return sum((loan.principal for loan in self.own_loans() if loan.is_active), ZERO)

    @property
    def utilization(self) -> Decimal:
        return self.pool.utilization

    @property
    def tranche_breakdown(self) -> TrancheBreakdown:
        return calculate_tranche_breakdown(self.deposits)

    def available_balance(self, tranche: Tranche) -> Decimal:
        return calculate_available_balance(self.deposits, tranche, self.as_of)

    @property
    def senior_locked_balance(self) -> Decimal:
        return calculate_locked_balance(self.deposits, self.as_of)

    def pending_interest(self, tranche: Tranche) -> Decimal:
        return calculate_pending_interest(self.deposits, tranche, self.as_of)

    @property
    def next_senior_unlock(self) -> Optional[datetime]:
        return calculate_next_unlock(self.deposits, self.as_of)
