"""
classifier.py - Normalize raw failures into a closed error taxonomy.

Every failure a caller can see is one of six ErrorKinds. Reverts that carry a
recognizable protocol reason additionally carry a ProtocolReason so callers
can explain the specific unmet condition.

Matching order (first match wins):
    1. Already-classified values (ClassifiedError, Rejection)
    2. Transport failures (ReadUnavailable)
    3. Timeouts (ConfirmationTimeout, TimeoutError, "timed out")
    4. User declined (code 4001, "user rejected", "user denied")
    5. Provider refusals for fee funds ("insufficient funds", no revert)
       -> OPERATION_FAILED
    6. Known protocol reasons (custom error names, selectors, reason strings)
    7. Generic reverts ("execution reverted", "reverted with reason string")
    8. Anything else -> OPERATION_FAILED with the raw message verbatim

classify() never raises.
"""

from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
import logging
import re
from typing import Any, Optional, Pattern, Tuple

from .core import (
    Confirmation, ConfirmationTimeout, ReadUnavailable, USER_DECLINED_CODE,
)

logger = logging.getLogger(__name__)


class ErrorKind(str, Enum):
    READ_UNAVAILABLE = "read_unavailable"
    VALIDATION_REJECTED = "validation_rejected"
    USER_DECLINED = "user_declined"
    TIMEOUT = "timeout"
    OPERATION_REVERTED = "operation_reverted"
    OPERATION_FAILED = "operation_failed"


class ProtocolReason(str, Enum):
    """Revert reasons the protocol is known to produce, by on-chain error name."""
    INSUFFICIENT_LIQUIDITY = "InsufficientLiquidity"
    INVALID_BORROW_AMOUNT = "InvalidBorrowAmount"
    NOT_INVOICE_SUPPLIER = "NotInvoiceSupplier"
    LOAN_ALREADY_EXISTS = "LoanAlreadyExists"
    INVOICE_EXPIRED = "InvoiceExpired"
    INVOICE_NOT_VERIFIED = "InvoiceNotVerified"
    NO_STAKED_TOKENS = "NoStakedTokensFound"
    SENIOR_TRANCHE_LOCKED = "SeniorTrancheLocked"
    DEPRECATED_WITHDRAW = "DeprecatedWithdrawPath"
    INVOICE_ALREADY_VERIFIED = "InvoiceAlreadyVerified"
    INSUFFICIENT_ALLOWANCE = "InsufficientAllowance"
    INSUFFICIENT_BALANCE = "InsufficientBalance"
    STAKE_LOCKED = "StakeLocked"
    LOAN_NOT_FOUND = "LoanNotFound"
    GENERIC = "Generic"


# Human-readable description of each reason, used as the message prefix.
REASON_DESCRIPTIONS = {
    ProtocolReason.INSUFFICIENT_LIQUIDITY: "Insufficient liquidity in the lending pool",
    ProtocolReason.INVALID_BORROW_AMOUNT: "Borrow amount exceeds the invoice's maximum",
    ProtocolReason.NOT_INVOICE_SUPPLIER: "Only the invoice supplier can borrow against it",
    ProtocolReason.LOAN_ALREADY_EXISTS: "A loan already exists for this invoice",
    ProtocolReason.INVOICE_EXPIRED: "The invoice is past its due date",
    ProtocolReason.INVOICE_NOT_VERIFIED: "The invoice has not been verified",
    ProtocolReason.NO_STAKED_TOKENS: "No staked tokens found for this account",
    ProtocolReason.SENIOR_TRANCHE_LOCKED: "Insufficient unlocked balance in the senior tranche",
    ProtocolReason.DEPRECATED_WITHDRAW: "Generic withdraw is disabled; use a tranche withdrawal",
    ProtocolReason.INVOICE_ALREADY_VERIFIED: "The invoice is already verified",
    ProtocolReason.INSUFFICIENT_ALLOWANCE: "Token allowance is too low",
    ProtocolReason.INSUFFICIENT_BALANCE: "Token balance is too low",
    ProtocolReason.STAKE_LOCKED: "The stake has not matured",
    ProtocolReason.LOAN_NOT_FOUND: "Loan not found or not active",
    ProtocolReason.GENERIC: "The operation was reverted",
}


# Ordered signature table. Patterns are matched case-insensitively against
# the full raw message; selectors come first because they are exact.
_REASON_SIGNATURES: Tuple[Tuple[ProtocolReason, Tuple[str, ...]], ...] = (
    (ProtocolReason.INVALID_BORROW_AMOUNT, (r"0x177e802f", r"\bInvalidBorrowAmount\b")),
    (ProtocolReason.INSUFFICIENT_LIQUIDITY, (r"\bInsufficientLiquidity\b", r"insufficient liquidity")),
    (ProtocolReason.NOT_INVOICE_SUPPLIER, (r"\bNotInvoiceSupplier\b", r"not (the )?invoice supplier")),
    (ProtocolReason.LOAN_ALREADY_EXISTS, (r"\bLoanAlreadyExists\b", r"loan already exists")),
    (ProtocolReason.INVOICE_EXPIRED, (r"\bInvoiceExpired\b", r"invoice (has )?expired")),
    (ProtocolReason.INVOICE_NOT_VERIFIED, (r"\bInvoiceNotVerified\b", r"invoice not verified")),
    (ProtocolReason.NO_STAKED_TOKENS, (r"\bNoStakedTokensFound\b", r"no staked tokens")),
    (ProtocolReason.SENIOR_TRANCHE_LOCKED, (r"insufficient unlocked balance in senior tranche",)),
    (ProtocolReason.DEPRECATED_WITHDRAW, (r"use withdrawjunior\(\) or withdrawsenior\(\)",)),
    (ProtocolReason.INVOICE_ALREADY_VERIFIED, (r"invoice already verified",)),
    (ProtocolReason.INSUFFICIENT_ALLOWANCE, (r"insufficient allowance", r"\bERC20InsufficientAllowance\b")),
    (ProtocolReason.INSUFFICIENT_BALANCE, (r"transfer amount exceeds balance",
                                           r"\bERC20InsufficientBalance\b")),
    (ProtocolReason.STAKE_LOCKED, (r"stake (is )?(still )?locked", r"stake not matured",
                                   r"lock period not (yet )?(ended|over)")),
    (ProtocolReason.LOAN_NOT_FOUND, (r"loan not found or not active",)),
)

# Each reason also matches its own on-chain error name.
_COMPILED_SIGNATURES: Tuple[Tuple[ProtocolReason, Tuple[Pattern[str], ...]], ...] = tuple(
    (reason, tuple(re.compile(p, re.IGNORECASE) for p in (rf"\b{reason.value}\b",) + patterns))
    for reason, patterns in _REASON_SIGNATURES
)

_DECLINED = re.compile(r"user (rejected|denied)|rejected the request|request rejected", re.IGNORECASE)
_TIMEOUT = re.compile(r"timed? ?out|timeout", re.IGNORECASE)
_REVERTED = re.compile(r"revert", re.IGNORECASE)
# provider refusal before submission: the sender cannot cover gas plus value
_NO_FEE_FUNDS = re.compile(r"insufficient funds", re.IGNORECASE)
_REASON_STRING = re.compile(
    r"reverted with reason string:?\s*['\"]?(?P<reason>[^'\"]+?)['\"]?\s*$",
    re.IGNORECASE | re.MULTILINE,
)


@dataclass(frozen=True, slots=True)
class ClassifiedError:
    """
    A failure in the closed taxonomy.

    Attributes:
        kind: Which of the six kinds this is.
        message: Explanation naming the unmet condition where known.
        step_index: Plan step that failed, when the failure came from a plan.
        reason: Protocol reason for OPERATION_REVERTED, else None.
        raw_message: Raw text the classification was made from.
    """
    kind: ErrorKind
    message: str
    step_index: Optional[int] = None
    reason: Optional[ProtocolReason] = None
    raw_message: str = ""

    def at_step(self, step_index: int) -> 'ClassifiedError':
        return ClassifiedError(self.kind, self.message, step_index, self.reason, self.raw_message)

    def __str__(self) -> str:
        where = f" at step {self.step_index}" if self.step_index is not None else ""
        return f"{self.kind.value}{where}: {self.message}"


# ============================================================================
# CLASSIFICATION
# ============================================================================

def classify(raw: Any, step_index: Optional[int] = None) -> ClassifiedError:
    """
    Classify a raw failure.

    Args:
        raw: An exception, a Confirmation that reverted, a Rejection, a
            ClassifiedError, or plain text.
        step_index: Plan step the failure belongs to, if any.

    Returns:
        A ClassifiedError. This function does not raise.
    """
    try:
        return _classify(raw, step_index)
    except Exception as exc:
        logger.warning("classifier fell back on %r: %s", type(raw).__name__, exc)
        return ClassifiedError(
            ErrorKind.OPERATION_FAILED,
            f"Unclassifiable failure of type {type(raw).__name__}",
            step_index,
        )


def _classify(raw: Any, step_index: Optional[int]) -> ClassifiedError:
    if isinstance(raw, ClassifiedError):
        return raw if step_index is None else raw.at_step(step_index)

    # validator.Rejection reports its own kind
    if getattr(raw, "kind", None) is ErrorKind.VALIDATION_REJECTED:
        return ClassifiedError(
            ErrorKind.VALIDATION_REJECTED, str(raw.message), step_index,
            raw_message=str(raw.reason.value),
        )

    if isinstance(raw, Confirmation):
        if raw.succeeded:
            return ClassifiedError(ErrorKind.OPERATION_FAILED,
                                   "Confirmation reported success", step_index)
        text = raw.revert_reason or "execution reverted"
        return _classify_revert(text, step_index, force=True)

    text = _message_of(raw)

    if isinstance(raw, ReadUnavailable):
        return ClassifiedError(ErrorKind.READ_UNAVAILABLE, text or "Ledger read unavailable",
                               step_index, raw_message=text)

    if isinstance(raw, (ConfirmationTimeout, TimeoutError)):
        return ClassifiedError(ErrorKind.TIMEOUT, text or "Confirmation timed out",
                               step_index, raw_message=text)

    if getattr(raw, "code", None) == USER_DECLINED_CODE or _DECLINED.search(text):
        return ClassifiedError(ErrorKind.USER_DECLINED, "The request was declined by the signer",
                               step_index, raw_message=text)

    if _TIMEOUT.search(text) and not _REVERTED.search(text):
        return ClassifiedError(ErrorKind.TIMEOUT, text, step_index, raw_message=text)

    if _NO_FEE_FUNDS.search(text) and not _REVERTED.search(text):
        return ClassifiedError(ErrorKind.OPERATION_FAILED,
                               f"The sender cannot pay the network fee: {text}",
                               step_index, raw_message=text)

    return _classify_revert(text, step_index, force=False)


def _classify_revert(text: str, step_index: Optional[int], force: bool) -> ClassifiedError:
    reason = match_reason(text)
    if reason is not None:
        return ClassifiedError(
            ErrorKind.OPERATION_REVERTED,
            f"{REASON_DESCRIPTIONS[reason]}: {text}" if text else REASON_DESCRIPTIONS[reason],
            step_index, reason, text,
        )
    if force or _REVERTED.search(text):
        extracted = extract_reason_string(text)
        detail = extracted or text or "no reason given"
        return ClassifiedError(
            ErrorKind.OPERATION_REVERTED,
            f"{REASON_DESCRIPTIONS[ProtocolReason.GENERIC]}: {detail}",
            step_index, ProtocolReason.GENERIC, text,
        )
    return ClassifiedError(ErrorKind.OPERATION_FAILED, text or "Unknown failure",
                           step_index, raw_message=text)


def match_reason(text: str) -> Optional[ProtocolReason]:
    """Return the first known protocol reason whose signature appears in text."""
    for reason, patterns in _COMPILED_SIGNATURES:
        if any(p.search(text) for p in patterns):
            return reason
    return None


def extract_reason_string(text: str) -> Optional[str]:
    match = _REASON_STRING.search(text)
    if match:
        return match.group("reason").strip()
    return None


def _message_of(raw: Any) -> str:
    if raw is None:
        return ""
    if isinstance(raw, str):
        return raw
    if isinstance(raw, BaseException):
        message = str(raw)
        return message if message else type(raw).__name__
    return str(raw)
