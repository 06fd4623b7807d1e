"""
actions.py - User actions that can be validated, planned and executed.

An action is a request, not a command: it says what the caller wants and
carries only the parameters the caller chooses. Everything else (allowances,
ownership, liquidity) comes from a fresh DomainSnapshot.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Iterable, Tuple, Union

from .core import Tranche


def _as_decimal(obj, name: str) -> None:
    value = getattr(obj, name)
    if not isinstance(value, Decimal):
        object.__setattr__(obj, name, Decimal(str(value)))


@dataclass(frozen=True, slots=True)
class StakeAction:
    """Lock stake tokens for a duration."""
    amount: Decimal
    duration: timedelta

    def __post_init__(self):
        _as_decimal(self, 'amount')


@dataclass(frozen=True, slots=True)
class UnstakeAction:
    """Unwind a matured stake by its index."""
    stake_index: int


@dataclass(frozen=True, slots=True)
class BorrowAction:
    """Pledge an invoice and borrow against it."""
    token_id: int
    amount: Decimal

    def __post_init__(self):
        _as_decimal(self, 'amount')


@dataclass(frozen=True, slots=True)
class RepayAction:
    """Repay the loan backed by an invoice in full."""
    token_id: int


@dataclass(frozen=True, slots=True)
class TrancheDepositAction:
    """Provide liquidity to a tranche. Senior deposits need a lockup."""
    amount: Decimal
    tranche: Tranche
    lockup: timedelta = timedelta(0)

    def __post_init__(self):
        _as_decimal(self, 'amount')


@dataclass(frozen=True, slots=True)
class TrancheWithdrawAction:
    amount: Decimal
    tranche: Tranche

    def __post_init__(self):
        _as_decimal(self, 'amount')


@dataclass(frozen=True, slots=True)
class WithdrawInterestAction:
    """Claim accrued LP interest."""
    pass


@dataclass(frozen=True, slots=True)
class ClaimRewardsAction:
    """Claim staking rewards accrued on the account's stakes."""
    pass


@dataclass(frozen=True, slots=True)
class SlashStakeAction:
    """Slash the stake of a defaulted borrower (protocol operator only)."""
    staker: str


@dataclass(frozen=True, slots=True)
class WithdrawPlatformFeesAction:
    """Sweep accumulated protocol fees to the pool owner."""
    pass


@dataclass(frozen=True, slots=True)
class MintInvoiceAction:
    """
    Tokenize a receivable.

    Attributes:
        supplier: Account the invoice is minted to.
        invoice_id: Supplier's unique business id.
        face_amount: Credit amount in stable-token units.
        due_date: Payment due date (aware datetime).
        document_ref: Off-ledger document reference.
    """
    supplier: str
    invoice_id: str
    face_amount: Decimal
    due_date: datetime
    document_ref: str = ""

    def __post_init__(self):
        _as_decimal(self, 'face_amount')


@dataclass(frozen=True, slots=True)
class VerifyInvoiceAction:
    token_id: int


@dataclass(frozen=True, slots=True)
class LiquidateAction:
    """Liquidate an overdue loan held by another borrower."""
    token_id: int
    borrower: str


Action = Union[
    StakeAction, UnstakeAction, ClaimRewardsAction, SlashStakeAction,
    BorrowAction, RepayAction, LiquidateAction, WithdrawPlatformFeesAction,
    TrancheDepositAction, TrancheWithdrawAction, WithdrawInterestAction,
    MintInvoiceAction, VerifyInvoiceAction,
]


def referenced_invoices(action: Action) -> Tuple[int, ...]:
    """Invoices a snapshot must include to validate this action."""
    if isinstance(action, (BorrowAction, VerifyInvoiceAction)):
        return (action.token_id,)
    return ()


def referenced_loans(action: Action, account: str) -> Tuple[Tuple[str, int], ...]:
    """(borrower, token_id) loans a snapshot must include for this action."""
    if isinstance(action, RepayAction):
        return ((account, action.token_id),)
    if isinstance(action, LiquidateAction):
        return ((action.borrower, action.token_id),)
    return ()


def referenced_stakers(action: Action) -> Tuple[str, ...]:
    """Other accounts whose stakes a snapshot must include for this action."""
    if isinstance(action, SlashStakeAction) and action.staker:
        return (action.staker,)
    return ()


def describe(action: Action) -> str:
    return f"{type(action).__name__}({_fields(action)})"


def _fields(action: Action) -> str:
    names: Iterable[str] = getattr(action, '__slots__', ())
    return ", ".join(f"{n}={getattr(action, n)}" for n in names)
