"""
validator.py - Precondition Validator.

Checks a requested action against a DomainSnapshot before anything is
submitted, so that operations that would revert are turned away without
spending gas. Validation is pure: it reads only the snapshot and the config.

Each validate_* function returns None when the action is expected to
succeed, or a Rejection naming the first failed check together with the
numbers involved. Checks run in a fixed order and the first failure wins.

Borrow check order:
    1. invoice exists, caller owns it (pool custody counts for the supplier)
    2. invoice verified, not past due
    3. invoice not already backing an active loan, nor held by the pool
    4. amount within capacity (tier LTV of the face amount)
    5. pool liquidity covers the amount
    (collateral transfer permission is the planner's job, never a rejection)
"""

from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Mapping, Optional

from .actions import (
    Action, BorrowAction, ClaimRewardsAction, LiquidateAction, MintInvoiceAction,
    RepayAction, SlashStakeAction, StakeAction, TrancheDepositAction,
    TrancheWithdrawAction, UnstakeAction, VerifyInvoiceAction, WithdrawInterestAction,
    WithdrawPlatformFeesAction,
)
from .classifier import ErrorKind
from .config import DEFAULT_CONFIG, ProtocolConfig
from .core import Tranche, UnsupportedAction, format_amount, same_account
from .entities import DomainSnapshot


class RejectionReason(str, Enum):
    INVOICE_NOT_FOUND = "invoice not found"
    NOT_OWNER = "not owner"
    NOT_VERIFIED = "not verified"
    EXPIRED = "expired"
    ALREADY_COLLATERALIZED = "already collateralized"
    INVALID_AMOUNT = "invalid amount"
    EXCEEDS_CAPACITY = "exceeds capacity"
    INSUFFICIENT_LIQUIDITY = "insufficient liquidity"
    STAKE_NOT_FOUND = "stake not found"
    NOT_MATURED = "not matured"
    INSUFFICIENT_BALANCE = "insufficient balance"
    INVALID_DURATION = "invalid duration"
    LOAN_NOT_FOUND = "loan not found"
    LOAN_NOT_ACTIVE = "loan not active"
    TRANCHE_LOCKED = "tranche locked"
    EXCEEDS_AVAILABLE = "exceeds available"
    NOTHING_TO_WITHDRAW = "nothing to withdraw"
    INVALID_INVOICE_ID = "invalid invoice id"
    ALREADY_EXISTS = "already exists"
    NOT_VERIFIER = "not verifier"
    ALREADY_VERIFIED = "already verified"
    NOT_OVERDUE = "not overdue"
    STALE_SNAPSHOT = "stale snapshot"
    INVALID_ACCOUNT = "invalid account"


@dataclass(frozen=True, slots=True)
class Rejection:
    """
    A failed precondition.

    Attributes:
        reason: Which check failed.
        message: Human-readable explanation including the values compared.
        details: The values themselves (amounts, timedeltas, datetimes).
    """
    reason: RejectionReason
    message: str
    details: Mapping[str, Any] = field(default_factory=dict)

    @property
    def kind(self) -> ErrorKind:
        return ErrorKind.VALIDATION_REJECTED

    def __str__(self) -> str:
        return f"{self.reason.value}: {self.message}"


def _reject(reason: RejectionReason, message: str, **details: Any) -> Rejection:
    return Rejection(reason, message, details)


# ============================================================================
# BORROW / REPAY / LIQUIDATE
# ============================================================================

def validate_borrow(action: BorrowAction, snapshot: DomainSnapshot,
                    config: ProtocolConfig = DEFAULT_CONFIG) -> Optional[Rejection]:
    token_id = action.token_id
    invoice = snapshot.invoice(token_id)

    # 1. existence and ownership
    if invoice is None or invoice.is_burned:
        return _reject(RejectionReason.INVOICE_NOT_FOUND, f"Invoice {token_id} does not exist",
                       token_id=token_id)
    if not snapshot.owns_invoice(invoice):
        loan = snapshot.loan(token_id)
        if loan is not None and loan.is_liquidated:
            return _reject(
                RejectionReason.NOT_OWNER,
                f"Invoice {token_id} was seized by the lending pool when its loan was liquidated",
                token_id=token_id, owner=invoice.owner, status=loan.status,
            )
        return _reject(
            RejectionReason.NOT_OWNER,
            f"Invoice {token_id} is owned by {invoice.owner}, not {snapshot.account}",
            token_id=token_id, owner=invoice.owner,
        )

    # 2. verified and current
    if not invoice.is_verified:
        return _reject(RejectionReason.NOT_VERIFIED, f"Invoice {token_id} has not been verified",
                       token_id=token_id)
    if invoice.is_expired(snapshot.as_of):
        return _reject(
            RejectionReason.EXPIRED,
            f"Invoice {token_id} was due {invoice.due_date.isoformat()}",
            token_id=token_id, due_date=invoice.due_date,
        )

    # 3. one loan per invoice
    existing = snapshot.active_loan_for(token_id)
    if existing is not None:
        return _reject(
            RejectionReason.ALREADY_COLLATERALIZED,
            f"Invoice {token_id} already backs an active loan of {format_amount(existing.principal)}",
            token_id=token_id, principal=existing.principal,
        )
    # pool custody alone marks the invoice as pledged
    if same_account(invoice.owner, snapshot.lending_pool):
        return _reject(
            RejectionReason.ALREADY_COLLATERALIZED,
            f"Invoice {token_id} is held by the lending pool as collateral",
            token_id=token_id, owner=invoice.owner,
        )

    # 4. capacity
    if action.amount <= 0:
        return _reject(RejectionReason.INVALID_AMOUNT,
                       f"Borrow amount must be positive, got {format_amount(action.amount)}",
                       requested=action.amount)
    capacity = snapshot.capacity_for(invoice)
    if action.amount > capacity:
        return _reject(
            RejectionReason.EXCEEDS_CAPACITY,
            f"Requested {format_amount(action.amount)} exceeds capacity {format_amount(capacity)} "
            f"(tier {snapshot.tier.name}, LTV {snapshot.ltv_bps} bps of "
            f"{format_amount(invoice.face_amount)})",
            requested=action.amount, capacity=capacity,
            tier=snapshot.tier, ltv_bps=snapshot.ltv_bps,
        )

    # 5. pool liquidity
    liquidity = snapshot.pool.available_liquidity
    if action.amount > liquidity:
        return _reject(
            RejectionReason.INSUFFICIENT_LIQUIDITY,
            f"Requested {format_amount(action.amount)} but the pool has "
            f"{format_amount(liquidity)} available",
            requested=action.amount, available=liquidity,
        )
    return None


def validate_repay(action: RepayAction, snapshot: DomainSnapshot,
                   config: ProtocolConfig = DEFAULT_CONFIG) -> Optional[Rejection]:
    loan = snapshot.loan(action.token_id)
    if loan is None or not same_account(loan.borrower, snapshot.account):
        return _reject(RejectionReason.LOAN_NOT_FOUND,
                       f"No loan backed by invoice {action.token_id} for {snapshot.account}",
                       token_id=action.token_id)
    if not loan.is_active:
        return _reject(RejectionReason.LOAN_NOT_ACTIVE,
                       f"Loan {action.token_id} is already {loan.status.lower()}",
                       token_id=action.token_id, status=loan.status)
    due = loan.amount_due
    if snapshot.stable_balance < due:
        return _reject(
            RejectionReason.INSUFFICIENT_BALANCE,
            f"Repaying {format_amount(due)} needs more than the balance "
            f"{format_amount(snapshot.stable_balance)}",
            required=due, balance=snapshot.stable_balance,
        )
    return None


def validate_liquidate(action: LiquidateAction, snapshot: DomainSnapshot,
                       config: ProtocolConfig = DEFAULT_CONFIG) -> Optional[Rejection]:
    loan = snapshot.loan(action.token_id)
    if loan is None or not same_account(loan.borrower, action.borrower):
        return _reject(RejectionReason.LOAN_NOT_FOUND,
                       f"No loan backed by invoice {action.token_id} for {action.borrower}",
                       token_id=action.token_id)
    if not loan.is_active:
        return _reject(RejectionReason.LOAN_NOT_ACTIVE,
                       f"Loan {action.token_id} is already {loan.status.lower()}",
                       token_id=action.token_id, status=loan.status)
    if not loan.is_overdue(snapshot.as_of):
        return _reject(
            RejectionReason.NOT_OVERDUE,
            f"Loan {action.token_id} is not due until {loan.due_date.isoformat()}",
            token_id=action.token_id, due_date=loan.due_date,
            remaining=loan.due_date - snapshot.as_of,
        )
    return None


def validate_withdraw_platform_fees(action: WithdrawPlatformFeesAction, snapshot: DomainSnapshot,
                                    config: ProtocolConfig = DEFAULT_CONFIG) -> Optional[Rejection]:
    if snapshot.platform_fees <= 0:
        return _reject(RejectionReason.NOTHING_TO_WITHDRAW,
                       "The lending pool holds no platform fees", pending=snapshot.platform_fees)
    return None


# ============================================================================
# STAKING
# ============================================================================

def validate_stake(action: StakeAction, snapshot: DomainSnapshot,
                   config: ProtocolConfig = DEFAULT_CONFIG) -> Optional[Rejection]:
    if action.amount <= 0:
        return _reject(RejectionReason.INVALID_AMOUNT,
                       f"Stake amount must be positive, got {format_amount(action.amount)}",
                       requested=action.amount)
    if not config.min_stake_duration <= action.duration <= config.max_stake_duration:
        return _reject(
            RejectionReason.INVALID_DURATION,
            f"Stake duration {action.duration} outside "
            f"[{config.min_stake_duration}, {config.max_stake_duration}]",
            duration=action.duration,
            minimum=config.min_stake_duration, maximum=config.max_stake_duration,
        )
    if snapshot.stake_token_balance < action.amount:
        return _reject(
            RejectionReason.INSUFFICIENT_BALANCE,
            f"Staking {format_amount(action.amount)} exceeds balance "
            f"{format_amount(snapshot.stake_token_balance)}",
            required=action.amount, balance=snapshot.stake_token_balance,
        )
    return None


def validate_unstake(action: UnstakeAction, snapshot: DomainSnapshot,
                     config: ProtocolConfig = DEFAULT_CONFIG) -> Optional[Rejection]:
    stake = snapshot.stake(action.stake_index)
    if stake is None:
        return _reject(RejectionReason.STAKE_NOT_FOUND,
                       f"{snapshot.account} has no active stake #{action.stake_index}",
                       stake_index=action.stake_index)
    if not stake.is_matured(snapshot.as_of):
        remaining = stake.remaining(snapshot.as_of)
        return _reject(
            RejectionReason.NOT_MATURED,
            f"Stake #{stake.index} matures {stake.maturity.isoformat()} ({remaining} remaining)",
            stake_index=stake.index, maturity=stake.maturity, remaining=remaining,
        )
    return None


def validate_claim_rewards(action: ClaimRewardsAction, snapshot: DomainSnapshot,
                           config: ProtocolConfig = DEFAULT_CONFIG) -> Optional[Rejection]:
    if not snapshot.stakes:
        return _reject(RejectionReason.NOTHING_TO_WITHDRAW,
                       f"{snapshot.account} has no active stakes earning rewards")
    return None


def validate_slash_stake(action: SlashStakeAction, snapshot: DomainSnapshot,
                         config: ProtocolConfig = DEFAULT_CONFIG) -> Optional[Rejection]:
    staker = (action.staker or "").strip()
    if not staker:
        return _reject(RejectionReason.INVALID_ACCOUNT, "Staker address cannot be empty")
    stakes = snapshot.stakes_of(staker)
    if not stakes:
        return _reject(RejectionReason.STAKE_NOT_FOUND,
                       f"{staker} has no active stakes to slash", staker=staker)
    return None


# ============================================================================
# LIQUIDITY PROVISION
# ============================================================================

def validate_tranche_deposit(action: TrancheDepositAction, snapshot: DomainSnapshot,
                             config: ProtocolConfig = DEFAULT_CONFIG) -> Optional[Rejection]:
    if action.amount <= 0:
        return _reject(RejectionReason.INVALID_AMOUNT,
                       f"Deposit amount must be positive, got {format_amount(action.amount)}",
                       requested=action.amount)
    if action.tranche is Tranche.SENIOR and action.lockup.total_seconds() <= 0:
        return _reject(RejectionReason.INVALID_DURATION,
                       "Senior deposits require a positive lockup", lockup=action.lockup)
    if action.tranche is Tranche.JUNIOR and action.lockup.total_seconds() != 0:
        return _reject(RejectionReason.INVALID_DURATION,
                       f"Junior deposits cannot be locked (lockup {action.lockup})",
                       lockup=action.lockup)
    if snapshot.stable_balance < action.amount:
        return _reject(
            RejectionReason.INSUFFICIENT_BALANCE,
            f"Depositing {format_amount(action.amount)} exceeds balance "
            f"{format_amount(snapshot.stable_balance)}",
            required=action.amount, balance=snapshot.stable_balance,
        )
    return None


def validate_tranche_withdraw(action: TrancheWithdrawAction, snapshot: DomainSnapshot,
                              config: ProtocolConfig = DEFAULT_CONFIG) -> Optional[Rejection]:
    if action.amount <= 0:
        return _reject(RejectionReason.INVALID_AMOUNT,
                       f"Withdraw amount must be positive, got {format_amount(action.amount)}",
                       requested=action.amount)
    available = snapshot.available_balance(action.tranche)
    if action.amount <= available:
        return None

    locked = snapshot.senior_locked_balance if action.tranche is Tranche.SENIOR else None
    if locked:
        unlock = snapshot.next_senior_unlock
        remaining = unlock - snapshot.as_of if unlock is not None else None
        return _reject(
            RejectionReason.TRANCHE_LOCKED,
            f"Requested {format_amount(action.amount)} but only {format_amount(available)} "
            f"of the senior tranche is unlocked ({format_amount(locked)} locked"
            + (f", next unlock {unlock.isoformat()})" if unlock is not None else ")"),
            requested=action.amount, available=available, locked=locked,
            next_unlock=unlock, remaining=remaining,
        )
    return _reject(
        RejectionReason.EXCEEDS_AVAILABLE,
        f"Requested {format_amount(action.amount)} but the {action.tranche.name.lower()} "
        f"tranche holds {format_amount(available)}",
        requested=action.amount, available=available,
    )


def validate_withdraw_interest(action: WithdrawInterestAction, snapshot: DomainSnapshot,
                               config: ProtocolConfig = DEFAULT_CONFIG) -> Optional[Rejection]:
    if snapshot.lp_interest <= 0:
        return _reject(RejectionReason.NOTHING_TO_WITHDRAW,
                       f"{snapshot.account} has no accrued interest", pending=snapshot.lp_interest)
    return None


# ============================================================================
# INVOICES
# ============================================================================

def validate_mint_invoice(action: MintInvoiceAction, snapshot: DomainSnapshot,
                          config: ProtocolConfig = DEFAULT_CONFIG) -> Optional[Rejection]:
    if not action.invoice_id or not action.invoice_id.strip():
        return _reject(RejectionReason.INVALID_INVOICE_ID, "Invoice id cannot be empty")
    if action.face_amount <= 0:
        return _reject(RejectionReason.INVALID_AMOUNT,
                       f"Invoice amount must be positive, got {format_amount(action.face_amount)}",
                       requested=action.face_amount)
    if action.due_date <= snapshot.as_of:
        return _reject(RejectionReason.EXPIRED,
                       f"Due date {action.due_date.isoformat()} is not in the future",
                       due_date=action.due_date)
    for invoice in snapshot.invoices.values():
        if invoice.invoice_id == action.invoice_id and same_account(invoice.supplier, action.supplier):
            return _reject(RejectionReason.ALREADY_EXISTS,
                           f"Invoice {action.invoice_id!r} already minted as token {invoice.token_id}",
                           token_id=invoice.token_id)
    return None


def validate_verify_invoice(action: VerifyInvoiceAction, snapshot: DomainSnapshot,
                            config: ProtocolConfig = DEFAULT_CONFIG) -> Optional[Rejection]:
    if not snapshot.is_verifier:
        return _reject(RejectionReason.NOT_VERIFIER,
                       f"{snapshot.account} does not hold the verifier role")
    invoice = snapshot.invoice(action.token_id)
    if invoice is None or invoice.is_burned:
        return _reject(RejectionReason.INVOICE_NOT_FOUND,
                       f"Invoice {action.token_id} does not exist", token_id=action.token_id)
    if invoice.is_verified:
        return _reject(RejectionReason.ALREADY_VERIFIED,
                       f"Invoice {action.token_id} is already verified", token_id=action.token_id)
    return None


# ============================================================================
# DISPATCH
# ============================================================================

_VALIDATORS: Dict[type, Callable[..., Optional[Rejection]]] = {
    StakeAction: validate_stake,
    UnstakeAction: validate_unstake,
    ClaimRewardsAction: validate_claim_rewards,
    SlashStakeAction: validate_slash_stake,
    BorrowAction: validate_borrow,
    RepayAction: validate_repay,
    TrancheDepositAction: validate_tranche_deposit,
    TrancheWithdrawAction: validate_tranche_withdraw,
    WithdrawInterestAction: validate_withdraw_interest,
    MintInvoiceAction: validate_mint_invoice,
    VerifyInvoiceAction: validate_verify_invoice,
    LiquidateAction: validate_liquidate,
    WithdrawPlatformFeesAction: validate_withdraw_platform_fees,
}


def validate(action: Action, snapshot: DomainSnapshot,
             config: ProtocolConfig = DEFAULT_CONFIG) -> Optional[Rejection]:
    """
    Validate any supported action.

    Returns:
        None if the action should succeed, else the first Rejection.

    Raises:
        UnsupportedAction: No validator exists for the action's type.
    """
    validator = _VALIDATORS.get(type(action))
    if validator is None:
        raise UnsupportedAction(f"No validator for {type(action).__name__}")
    return validator(action, snapshot, config)
