"""
Core types and pure functions for the credit protocol client.

This module provides the foundational data structures and protocols:
1. Protocols: LedgerGateway for reading from and submitting to the ledger
2. Immutable data structures: SubmissionHandle, Confirmation
3. Exceptions: CreditFlowError and the gateway failure types
4. Enums: CollateralTier, Tranche, ContractRole
5. Unit scaling: conversion between Decimal token amounts and integer base units
6. Canonical hashing used for plan identity

The ledger itself lives behind the gateway. Nothing in this module performs I/O.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal, ROUND_HALF_EVEN, ROUND_DOWN, getcontext
from enum import Enum
import hashlib
from typing import Any, Mapping, Optional, Protocol, Sequence, runtime_checkable


# ============================================================================
# DECIMAL CONTEXT CONFIGURATION
# ============================================================================
#
# Amounts are carried as Decimal and only become integers at the gateway
# boundary. The global context is configured once at import time.
#
# PRECONDITION: No other code should modify the global Decimal context.
# If thread-local contexts are needed, use decimal.localcontext().
#
_CREDITFLOW_DECIMAL_CONTEXT = getcontext()
_CREDITFLOW_DECIMAL_CONTEXT.prec = 50
_CREDITFLOW_DECIMAL_CONTEXT.rounding = ROUND_HALF_EVEN


# ============================================================================
# CONSTANTS
# ============================================================================

# Basis points denominator for LTV and APY tables.
BPS_DENOMINATOR = 10000

# Plan step kinds.
STEP_KIND_APPROVAL = "APPROVAL"
STEP_KIND_ACTION = "ACTION"

# EIP-1193 code a wallet uses when the signer declines a request.
USER_DECLINED_CODE = 4001

ZERO = Decimal("0")


# ============================================================================
# ENUMS
# ============================================================================

class CollateralTier(Enum):
    """
    Staking tier of an account, ordered by the ledger's integer encoding.

    NONE means no qualifying stake; its borrowing capacity is always zero.
    """
    NONE = 0
    BRONZE = 1
    SILVER = 2
    GOLD = 3
    DIAMOND = 4

    @classmethod
    def from_ledger(cls, raw: Any) -> 'CollateralTier':
        try:
            return cls(int(raw))
        except (TypeError, ValueError):
            raise ValueError(f"Unknown collateral tier value: {raw!r}")


class Tranche(Enum):
    """Risk tranche of a liquidity deposit (ledger encoding 0/1)."""
    JUNIOR = 0
    SENIOR = 1


class ContractRole(str, Enum):
    """Logical name of each ledger contract the client talks to."""
    STAKING = "staking"
    LENDING_POOL = "lending_pool"
    INVOICE_NFT = "invoice_nft"
    STAKE_TOKEN = "stake_token"
    STABLE_TOKEN = "stable_token"


# ============================================================================
# EXCEPTIONS
# ============================================================================

class CreditFlowError(Exception):
    """Base exception for all credit client errors."""
    pass


class ConfigurationError(CreditFlowError):
    """Raised when a ProtocolConfig is built from invalid values."""
    pass


class ReadUnavailable(CreditFlowError):
    """Raised by a gateway when a read cannot be served (transport, timeout)."""
    pass


class ReadReverted(CreditFlowError):
    """
    Raised by a gateway when a read call reached the ledger and reverted.

    For single-entity lookups this means the entity does not exist.
    """
    pass


class SubmissionRejected(CreditFlowError):
    """
    Raised by a gateway when a write could not be submitted.

    Attributes:
        code: Wallet/provider error code when one was reported (e.g. 4001).
    """

    def __init__(self, message: str, code: Optional[int] = None):
        super().__init__(message)
        self.code = code


class ConfirmationTimeout(CreditFlowError):
    """Raised when a submitted operation is not confirmed before the deadline."""
    pass


class UnsupportedAction(CreditFlowError):
    """Raised when an action type has no validator or planner."""
    pass


class PlanAlreadyExecuted(CreditFlowError):
    """Raised when a Plan is handed to an executor a second time."""
    pass


# ============================================================================
# GATEWAY DATA STRUCTURES
# ============================================================================

@dataclass(frozen=True, slots=True)
class SubmissionHandle:
    """
    Opaque reference to a submitted operation.

    Attributes:
        reference: Gateway-specific id (a transaction hash on a real chain).
        contract: Address the operation was sent to.
        method: Method name that was invoked.
    """
    reference: str
    contract: str
    method: str

    def __post_init__(self):
        if not self.reference or not self.reference.strip():
            raise ValueError("SubmissionHandle reference cannot be empty")


@dataclass(frozen=True, slots=True)
class Confirmation:
    """
    Durable outcome of a submitted operation.

    A confirmation is final either way: succeeded=False means the ledger
    included the operation and reverted it.
    """
    handle: SubmissionHandle
    succeeded: bool
    revert_reason: Optional[str] = None
    block_number: Optional[int] = None

    def __repr__(self) -> str:
        status = "ok" if self.succeeded else f"reverted({self.revert_reason})"
        return f"Confirmation({self.handle.method} {status})"


# ============================================================================
# PROTOCOLS
# ============================================================================

@runtime_checkable
class LedgerGateway(Protocol):
    """
    Interface to the ledger: reads, submissions, and confirmation waits.

    Implementations own transport, signing and chain selection. The
    client only ever names a contract address, a method, and arguments.

    Error surface:
        read: ReadUnavailable (transport), ReadReverted (call reverted)
        submit: SubmissionRejected (declined, simulation revert)
        await_confirmation: ConfirmationTimeout
    """

    def read(self, contract: str, method: str, args: Sequence[Any] = ()) -> Any:
        """Call a read-only method and return its decoded result."""
        ...

    def submit(
        self,
        contract: str,
        method: str,
        args: Sequence[Any] = (),
        value: int = 0,
    ) -> SubmissionHandle:
        """Submit a write. Returning a handle is the only synchronous guarantee."""
        ...

    def await_confirmation(self, handle: SubmissionHandle, timeout: float) -> Confirmation:
        """Block until the operation is durably confirmed or the timeout elapses."""
        ...


# ============================================================================
# UNIT SCALING AND DECODING HELPERS
# ============================================================================

def from_base_units(raw: Any, decimals: int) -> Decimal:
    """
    Convert an integer base-unit amount from the ledger into token units.

    >>> from_base_units(1500000, 6)
    Decimal('1.500000')
    """
    if isinstance(raw, bool):
        raise ValueError(f"Expected an integer amount, got bool {raw!r}")
    return Decimal(int(raw)).scaleb(-decimals)


def to_base_units(amount: Decimal, decimals: int, rounding: str = ROUND_DOWN) -> int:
    """
    Convert a token amount into integer base units.

    Amounts round down so a submitted amount never exceeds what was
    validated; approvals pass ROUND_UP so they never fall short.
    """
    if not isinstance(amount, Decimal):
        amount = Decimal(str(amount))
    if amount.is_nan() or amount.is_infinite():
        raise ValueError(f"Amount must be finite, got {amount}")
    return int(amount.scaleb(decimals).to_integral_value(rounding=rounding))


def quantize_amount(amount: Decimal, decimals: int) -> Decimal:
    """Round an amount down to the precision a token can represent."""
    return amount.quantize(Decimal(1).scaleb(-decimals), rounding=ROUND_DOWN)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def from_timestamp(raw: Any) -> datetime:
    """Decode a ledger unix timestamp (seconds) as an aware UTC datetime."""
    return datetime.fromtimestamp(int(raw), tz=timezone.utc)


def to_timestamp(when: datetime) -> int:
    """Encode an aware datetime as ledger unix seconds."""
    if when.tzinfo is None:
        raise ValueError("Ledger timestamps require a timezone-aware datetime")
    return int(when.timestamp())


def from_seconds(raw: Any) -> timedelta:
    return timedelta(seconds=int(raw))


def raw_field(raw: Any, name: str, position: int) -> Any:
    """
    Pull one field out of a raw ledger struct.

    Gateways return structs either as mappings (named outputs) or as
    positional sequences; both shapes are accepted here and nowhere else.
    """
    if isinstance(raw, Mapping):
        if name not in raw:
            raise ValueError(f"Ledger struct missing field {name!r}")
        return raw[name]
    if isinstance(raw, (list, tuple)):
        if position >= len(raw):
            raise ValueError(f"Ledger struct too short for field {name!r} at {position}")
        return raw[position]
    raise ValueError(f"Unexpected ledger struct {type(raw).__name__}")


def same_account(a: Optional[str], b: Optional[str]) -> bool:
    """Account identifiers compare case-insensitively."""
    if a is None or b is None:
        return False
    return a.lower() == b.lower()


# ============================================================================
# CANONICAL HASHING
# ============================================================================

def format_amount(d: Decimal) -> str:
    """Render an amount for messages without trailing zeros or exponents."""
    return _normalize_decimal(d)


def _normalize_decimal(d: Decimal) -> str:
    """
    Normalize a Decimal to a canonical string representation.

    Decimal("1.0") and Decimal("1.00") both become "1".
    """
    normalized = d.normalize()
    if normalized == normalized.to_integral_value():
        return str(int(normalized))
    return format(normalized, 'f')


def _canonicalize(value: Any) -> str:
    """
    Produce a canonical string representation of a value for hashing.

    Deterministic regardless of dict insertion order or Decimal scale.
    """
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, Enum):
        return f"E:{type(value).__name__}.{value.name}"
    if isinstance(value, Decimal):
        return f"D:{_normalize_decimal(value)}"
    if isinstance(value, (int, float)):
        return f"N:{value}"
    if isinstance(value, str):
        return f"S:{value}"
    if isinstance(value, datetime):
        return f"T:{value.isoformat()}"
    if isinstance(value, timedelta):
        return f"P:{value.total_seconds()}"
    if isinstance(value, dict):
        items = sorted(value.items(), key=lambda kv: str(kv[0]))
        serialized = ",".join(f"{_canonicalize(k)}:{_canonicalize(v)}" for k, v in items)
        return f"{{{serialized}}}"
    if isinstance(value, (list, tuple)):
        serialized = ",".join(_canonicalize(item) for item in value)
        return f"[{serialized}]"
    return f"R:{repr(value)}"


def content_hash(*parts: Any) -> str:
    """Short sha256 digest of the canonical form of the given values."""
    content = "|".join(_canonicalize(part) for part in parts)
    return hashlib.sha256(content.encode()).hexdigest()[:16]
