"""
invoice.py - Tokenized receivables.

An Invoice is minted by a supplier, verified by an account holding the
verifier role, optionally pledged as collateral for exactly one Loan, and
burned once that Loan is repaid. Ownership is tracked by the NFT contract;
while pledged, the lending pool holds the token on the supplier's behalf.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from ..core import from_base_units, from_timestamp, raw_field, same_account


# The zero address means "no approval" in getApproved results.
NULL_ADDRESS = "0x0000000000000000000000000000000000000000"


@dataclass(frozen=True, slots=True)
class Invoice:
    """
    Attributes:
        token_id: NFT id on the ledger.
        invoice_id: Supplier's business identifier (unique per supplier).
        supplier: Account that minted the invoice.
        buyer: Account that owes the invoice.
        face_amount: Credit amount in stable-token units.
        due_date: Payment due date; the invoice is expired after it.
        is_verified: Set once by a verifier.
        document_ref: Off-ledger document reference (e.g. an IPFS hash).
        owner: Current NFT holder, None when the token is burned.
        approved_to: Account approved to transfer this token, if any.
        is_burned: True once the token no longer exists on the ledger.
    """
    token_id: int
    invoice_id: str
    supplier: str
    buyer: str
    face_amount: Decimal
    due_date: datetime
    is_verified: bool
    document_ref: str = ""
    owner: Optional[str] = None
    approved_to: Optional[str] = None
    is_burned: bool = False

    def __post_init__(self):
        if not isinstance(self.face_amount, Decimal):
            object.__setattr__(self, 'face_amount', Decimal(str(self.face_amount)))
        if self.face_amount < 0:
            raise ValueError(f"Invoice face amount cannot be negative: {self.face_amount}")

    def is_expired(self, as_of: datetime) -> bool:
        return as_of > self.due_date

    def is_owned_by(self, account: str, custodian: Optional[str] = None) -> bool:
        """
        True when account holds the token, or when custodian (the lending
        pool) holds it on behalf of account as supplier.
        """
        if same_account(self.owner, account):
            return True
        return (
            custodian is not None
            and same_account(self.owner, custodian)
            and same_account(self.supplier, account)
        )

    def is_approved_for(self, spender: str) -> bool:
        return same_account(self.approved_to, spender)


# getInvoiceDetails struct: (invoiceId, supplier, buyer, creditAmount, dueDate, ipfsHash, isVerified)
def decode_invoice(
    token_id: int,
    raw: Any,
    decimals: int,
    owner: Optional[str] = None,
    approved_to: Optional[str] = None,
    is_burned: bool = False,
) -> Invoice:
    if approved_to is not None and same_account(approved_to, NULL_ADDRESS):
        approved_to = None
    return Invoice(
        token_id=int(token_id),
        invoice_id=str(raw_field(raw, "invoiceId", 0)),
        supplier=str(raw_field(raw, "supplier", 1)),
        buyer=str(raw_field(raw, "buyer", 2)),
        face_amount=from_base_units(raw_field(raw, "creditAmount", 3), decimals),
        due_date=from_timestamp(raw_field(raw, "dueDate", 4)),
        document_ref=str(raw_field(raw, "ipfsHash", 5)),
        is_verified=bool(raw_field(raw, "isVerified", 6)),
        owner=owner,
        approved_to=approved_to,
        is_burned=is_burned,
    )
