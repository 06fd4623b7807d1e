"""
test_invoices_and_loans.py - Unit tests for invoices, loans and capacity

Tests:
- Invoice expiry, ownership (including pool custody) and approval
- Decoding getInvoiceDetails (null approval, burned tokens)
- Borrowing capacity per tier, rounding, NONE tier
- Loan status, amount due, overdue
- Decoding getUserLoanDetails
"""

import pytest
from datetime import timedelta
from decimal import Decimal

from creditflow.core import to_timestamp
from creditflow.entities import (
    Invoice,
    Loan,
    LOAN_STATUS_ACTIVE,
    LOAN_STATUS_LIQUIDATED,
    LOAN_STATUS_REPAID,
    NULL_ADDRESS,
    calculate_amount_due,
    calculate_borrowing_capacity,
    calculate_repay_allowance,
    decode_invoice,
    decode_loan,
)
from tests.fake_gateway import ALICE, BOB, NOW, POOL


def make_invoice(**overrides):
    fields = dict(
        token_id=1,
        invoice_id="INV-1",
        supplier=ALICE,
        buyer=BOB,
        face_amount=Decimal("50000"),
        due_date=NOW + timedelta(days=30),
        is_verified=True,
        owner=ALICE,
    )
    fields.update(overrides)
    return Invoice(**fields)


# ============================================================================
# INVOICE TESTS
# ============================================================================

class TestInvoice:
    """Tests for Invoice predicates."""

    def test_expired_only_after_due_date(self):
        invoice = make_invoice(due_date=NOW)
        assert not invoice.is_expired(NOW)
        assert invoice.is_expired(NOW + timedelta(seconds=1))

    def test_owner_match_is_case_insensitive(self):
        assert make_invoice(owner=ALICE.upper().replace("0X", "0x")).is_owned_by(ALICE)

    def test_pool_custody_counts_for_supplier(self):
        invoice = make_invoice(owner=POOL)
        assert invoice.is_owned_by(ALICE, custodian=POOL)
        assert not invoice.is_owned_by(ALICE)
        assert not invoice.is_owned_by(BOB, custodian=POOL)

    def test_burned_token_has_no_owner(self):
        invoice = make_invoice(owner=None, is_burned=True)
        assert not invoice.is_owned_by(ALICE, custodian=POOL)

    def test_approval(self):
        assert make_invoice(approved_to=POOL).is_approved_for(POOL)
        assert not make_invoice().is_approved_for(POOL)

    def test_float_face_amount_coerced(self):
        assert make_invoice(face_amount=100.5).face_amount == Decimal("100.5")

    def test_negative_face_amount_rejected(self):
        with pytest.raises(ValueError):
            make_invoice(face_amount=Decimal("-1"))


class TestDecodeInvoice:
    """Tests for decoding invoice detail structs."""

    RAW = ("INV-7", ALICE, BOB, 50000 * 10**6, to_timestamp(NOW), "ipfs://doc", True)

    def test_tuple_struct(self):
        invoice = decode_invoice(7, self.RAW, 6, owner=ALICE, approved_to=POOL)
        assert invoice.token_id == 7
        assert invoice.invoice_id == "INV-7"
        assert invoice.face_amount == Decimal("50000")
        assert invoice.due_date == NOW
        assert invoice.document_ref == "ipfs://doc"
        assert invoice.is_verified
        assert invoice.approved_to == POOL

    def test_null_approval_becomes_none(self):
        invoice = decode_invoice(7, self.RAW, 6, owner=ALICE, approved_to=NULL_ADDRESS)
        assert invoice.approved_to is None

    def test_burned(self):
        invoice = decode_invoice(7, self.RAW, 6, is_burned=True)
        assert invoice.is_burned
        assert invoice.owner is None

    def test_missing_named_field(self):
        with pytest.raises(ValueError):
            decode_invoice(7, {"invoiceId": "x"}, 6)


# ============================================================================
# CAPACITY TESTS
# ============================================================================

class TestBorrowingCapacity:
    """Tests for face amount * LTV."""

    def test_bronze(self):
        assert calculate_borrowing_capacity(Decimal("50000"), 6000, 6) == Decimal("30000")

    @pytest.mark.parametrize("ltv_bps,expected", [
        (6500, Decimal("32500")),
        (7000, Decimal("35000")),
        (7500, Decimal("37500")),
    ])
    def test_higher_tiers(self, ltv_bps, expected):
        assert calculate_borrowing_capacity(Decimal("50000"), ltv_bps, 6) == expected

    def test_none_tier_is_zero(self):
        assert calculate_borrowing_capacity(Decimal("50000"), 0, 6) == Decimal("0")

    def test_rounds_down_to_token_precision(self):
        capacity = calculate_borrowing_capacity(Decimal("0.000003"), 6000, 6)
        assert capacity == Decimal("0.000001")

    def test_zero_face(self):
        assert calculate_borrowing_capacity(Decimal("0"), 7500, 6) == Decimal("0")


# ============================================================================
# LOAN TESTS
# ============================================================================

class TestLoan:
    """Tests for loan status and amounts."""

    def test_active_loan(self):
        loan = Loan(1, ALICE, Decimal("30000"), NOW + timedelta(days=30), Decimal("12.5"))
        assert loan.is_active
        assert loan.status == LOAN_STATUS_ACTIVE
        assert loan.amount_due == Decimal("30012.5")
        assert not loan.is_overdue(NOW)
        assert loan.is_overdue(NOW + timedelta(days=31))

    def test_terminal_states(self):
        repaid = Loan(1, ALICE, Decimal("1"), NOW, is_repaid=True)
        liquidated = Loan(2, ALICE, Decimal("1"), NOW, is_liquidated=True)
        assert repaid.status == LOAN_STATUS_REPAID
        assert liquidated.status == LOAN_STATUS_LIQUIDATED
        assert not repaid.is_overdue(NOW + timedelta(days=1))

    def test_cannot_be_repaid_and_liquidated(self):
        with pytest.raises(ValueError):
            Loan(1, ALICE, Decimal("1"), NOW, is_repaid=True, is_liquidated=True)

    def test_amount_helpers(self):
        assert calculate_amount_due(Decimal("100"), Decimal("2")) == Decimal("102")
        assert calculate_repay_allowance(Decimal("102"), Decimal("1")) == Decimal("103")

    def test_decode(self):
        raw = (30000 * 10**6, to_timestamp(NOW), False, False, 1_500_000)
        loan = decode_loan(4, ALICE, raw, 6)
        assert loan.token_id == 4
        assert loan.borrower == ALICE
        assert loan.principal == Decimal("30000")
        assert loan.interest_accrued == Decimal("1.5")
        assert loan.due_date == NOW
        assert loan.is_active
