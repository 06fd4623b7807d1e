"""
loan.py - Invoice-backed loans and borrowing capacity.

ARCHITECTURE (Pure Function Pattern):
=====================================

1. FROZEN DATACLASSES:
   - Loan: one borrow against one invoice

2. PURE CALCULATION FUNCTIONS (calculate_*):
   - calculate_borrowing_capacity: face amount * tier LTV
   - calculate_amount_due: principal + accrued interest
   - calculate_repay_allowance: amount due + buffer

3. ADAPTER FUNCTIONS (decode_*):
   - decode_loan: getUserLoanDetails struct -> Loan

Key Formulas:
    capacity = face_amount * ltv_bps / 10000   (rounded down, 0 for tier NONE)
    amount_due = principal + interest_accrued
    overdue = as_of > due_date and the loan is still active
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any

from ..core import (
    BPS_DENOMINATOR, ZERO, from_base_units, from_timestamp, quantize_amount, raw_field,
)


# Loan status constants
LOAN_STATUS_ACTIVE = "ACTIVE"
LOAN_STATUS_REPAID = "REPAID"
LOAN_STATUS_LIQUIDATED = "LIQUIDATED"


@dataclass(frozen=True, slots=True)
class Loan:
    """
    A borrow collateralized by a single invoice.

    Terminal states are repaid and liquidated; either one frees the invoice.

    Attributes:
        token_id: Backing invoice's token id (also the loan's key).
        borrower: Account that borrowed.
        principal: Borrowed amount in stable-token units.
        due_date: When repayment is due.
        interest_accrued: Interest owed so far.
        is_repaid: Repaid flag from the ledger.
        is_liquidated: Liquidated flag from the ledger.
    """
    token_id: int
    borrower: str
    principal: Decimal
    due_date: datetime
    interest_accrued: Decimal = ZERO
    is_repaid: bool = False
    is_liquidated: bool = False

    def __post_init__(self):
        if not isinstance(self.principal, Decimal):
            object.__setattr__(self, 'principal', Decimal(str(self.principal)))
        if not isinstance(self.interest_accrued, Decimal):
            object.__setattr__(self, 'interest_accrued', Decimal(str(self.interest_accrued)))
        if self.principal < 0:
            raise ValueError(f"Loan principal cannot be negative: {self.principal}")
        if self.is_repaid and self.is_liquidated:
            raise ValueError(f"Loan {self.token_id} cannot be both repaid and liquidated")

    @property
    def is_active(self) -> bool:
        return not self.is_repaid and not self.is_liquidated

    @property
    def status(self) -> str:
        if self.is_repaid:
            return LOAN_STATUS_REPAID
        if self.is_liquidated:
            return LOAN_STATUS_LIQUIDATED
        return LOAN_STATUS_ACTIVE

    @property
    def amount_due(self) -> Decimal:
        return calculate_amount_due(self.principal, self.interest_accrued)

    def is_overdue(self, as_of: datetime) -> bool:
        return self.is_active and as_of > self.due_date


def calculate_borrowing_capacity(face_amount: Decimal, ltv_bps: int, decimals: int) -> Decimal:
    """
    Maximum borrow against an invoice for a given LTV.

    Args:
        face_amount: Invoice face amount.
        ltv_bps: LTV for the borrower's tier (0 for NONE).
        decimals: Precision of the lending currency.

    Returns:
        Capacity rounded down to the currency's precision, never negative.
    """
    if ltv_bps <= 0 or face_amount <= 0:
        return quantize_amount(ZERO, decimals)
    capacity = face_amount * Decimal(ltv_bps) / Decimal(BPS_DENOMINATOR)
    return quantize_amount(capacity, decimals)


def calculate_amount_due(principal: Decimal, interest_accrued: Decimal) -> Decimal:
    return principal + interest_accrued


def calculate_repay_allowance(amount_due: Decimal, buffer: Decimal) -> Decimal:
    """Allowance to grant before repaying so late-accruing interest is covered."""
    return amount_due + buffer


# getUserLoanDetails struct: (amount, dueDate, isRepaid, isLiquidated, interestAccrued)
def decode_loan(token_id: int, borrower: str, raw: Any, decimals: int) -> Loan:
    return Loan(
        token_id=int(token_id),
        borrower=borrower,
        principal=from_base_units(raw_field(raw, "amount", 0), decimals),
        due_date=from_timestamp(raw_field(raw, "dueDate", 1)),
        is_repaid=bool(raw_field(raw, "isRepaid", 2)),
        is_liquidated=bool(raw_field(raw, "isLiquidated", 3)),
        interest_accrued=from_base_units(raw_field(raw, "interestAccrued", 4), decimals),
    )
