"""
test_credit_scenarios.py - End-to-end credit scenarios through CreditClient

Tests complete flows against the in-memory ledger:
- Capacity limit on a Bronze borrower
- Unstaking before maturity
- Senior tranche lockup
- Borrow reverting after its approval confirmed, then re-planning
- Confirmation timeout whose approval landed anyway
- Full borrow and repay lifecycle
- Pledged and seized collateral cannot back a second loan
- Reward claims, slashing and platform fee sweeps
"""

import pytest
from datetime import timedelta
from decimal import Decimal

from creditflow import (
    BorrowAction, ClaimRewardsAction, CollateralTier, ErrorKind, Plan, PlanState,
    ProtocolReason, ReadUnavailable, Rejection, RejectionReason, RepayAction,
    SlashStakeAction, Tranche, TrancheWithdrawAction, UnstakeAction,
    WithdrawPlatformFeesAction,
)
from tests.fake_gateway import ALICE, BOB, NOW, POOL, REVERT, TIMEOUT


class TestCapacityLimit:
    """Bronze borrower with a 50000 invoice."""

    def test_capacity_and_over_limit_request(self, client, borrower_chain):
        snapshot = client.compute_domain_snapshot(ALICE)
        assert snapshot.tier is CollateralTier.BRONZE
        assert snapshot.capacities[1] == Decimal("30000")

        result = client.validate_and_plan(BorrowAction(1, Decimal("30001")), ALICE)
        assert isinstance(result, Rejection)
        assert result.reason is RejectionReason.EXCEEDS_CAPACITY
        assert result.details["capacity"] == Decimal("30000")

    def test_request_at_capacity_is_planned(self, client, borrower_chain):
        result = client.validate_and_plan(BorrowAction(1, Decimal("30000")), ALICE)
        assert isinstance(result, Plan)
        assert [step.method for step in result.steps] == ["approve", "depositInvoiceAndBorrow"]


class TestUnstakeBeforeMaturity:
    """180-day stake, unstake attempted on day 10."""

    def test_not_matured(self, client, chain):
        chain.set_tier(ALICE, CollateralTier.BRONZE)
        chain.add_stake(ALICE, Decimal("1500"), NOW - timedelta(days=10), timedelta(days=180))

        result = client.validate_and_plan(UnstakeAction(0), ALICE)
        assert isinstance(result, Rejection)
        assert result.reason is RejectionReason.NOT_MATURED
        assert result.details["remaining"] == timedelta(days=170)

    def test_matured_stake_is_planned(self, client, chain, clock):
        chain.set_tier(ALICE, CollateralTier.BRONZE)
        chain.add_stake(ALICE, Decimal("1500"), NOW - timedelta(days=10), timedelta(days=180))
        clock.advance(timedelta(days=170).total_seconds())

        result = client.validate_and_plan(UnstakeAction(0), ALICE)
        assert isinstance(result, Plan)
        assert result.steps[0].args == (0,)


class TestSeniorLockup:
    """Senior deposit of 2000 with a 365-day lockup, queried on day 1."""

    def test_locked_balance(self, client, chain):
        chain.add_deposit(ALICE, Decimal("2000"), NOW - timedelta(days=1), Tranche.SENIOR,
                          lockup=timedelta(days=365))
        snapshot = client.compute_domain_snapshot(ALICE)
        assert snapshot.available_balance(Tranche.SENIOR) == Decimal("0")
        assert snapshot.senior_locked_balance == Decimal("2000")

    def test_withdraw_rejected_as_locked(self, client, chain):
        chain.add_deposit(ALICE, Decimal("2000"), NOW - timedelta(days=1), Tranche.SENIOR,
                          lockup=timedelta(days=365))
        result = client.validate_and_plan(TrancheWithdrawAction(Decimal("500"), Tranche.SENIOR), ALICE)
        assert isinstance(result, Rejection)
        assert result.reason is RejectionReason.TRANCHE_LOCKED
        assert result.details["remaining"] == timedelta(days=364)


class TestRevertAfterApproval:
    """Approval confirms, the borrow itself reverts."""

    def test_failed_at_borrow_then_replanned_without_approval(self, client, borrower_chain,
                                                              gateway, clock):
        gateway.script("depositInvoiceAndBorrow", REVERT("InsufficientLiquidity"))
        first = client.validate_and_plan(BorrowAction(1, Decimal("30000")), ALICE)
        outcome = client.run(first)

        assert outcome.state is PlanState.FAILED
        assert outcome.failed_step == 1
        assert outcome.error.kind is ErrorKind.OPERATION_REVERTED
        assert outcome.error.reason is ProtocolReason.INSUFFICIENT_LIQUIDITY

        clock.advance(1)
        second = client.validate_and_plan(BorrowAction(1, Decimal("30000")), ALICE)
        assert isinstance(second, Plan)
        assert [step.method for step in second.steps] == ["depositInvoiceAndBorrow"]
        assert client.run(second).succeeded


class TestTimeoutThatLanded:
    """The approval times out but lands on the ledger."""

    def test_timeout_then_action_only_plan(self, client, borrower_chain, gateway, clock):
        gateway.script("approve", TIMEOUT(applies=True))
        first = client.validate_and_plan(BorrowAction(1, Decimal("20000")), ALICE)
        events = list(client.execute(first))

        assert events[-1].state is PlanState.FAILED
        assert events[-1].step_index == 0
        assert events[-1].error.kind is ErrorKind.TIMEOUT
        assert gateway.submitted_methods() == ["approve"]

        clock.advance(5)
        snapshot = client.compute_domain_snapshot(ALICE)
        assert snapshot.invoice(1).is_approved_for(POOL)

        second = client.validate_and_plan(BorrowAction(1, Decimal("20000")), ALICE)
        assert len(second) == 1
        assert second.action_step.method == "depositInvoiceAndBorrow"


class TestBorrowRepayLifecycle:
    """Borrow against an invoice, repay, and the invoice is burned."""

    def test_lifecycle(self, client, borrower_chain, gateway, clock):
        borrow = client.validate_and_plan(BorrowAction(1, Decimal("30000")), ALICE)
        assert client.run(borrow).succeeded
        assert borrower_chain.owners[1] == POOL

        clock.advance(60)
        snapshot = client.compute_domain_snapshot(ALICE)
        assert snapshot.total_borrowed == Decimal("30000")
        assert snapshot.pool.available_liquidity == Decimal("70000")

        again = client.validate_and_plan(BorrowAction(1, Decimal("100")), ALICE)
        assert isinstance(again, Rejection)
        assert again.reason is RejectionReason.ALREADY_COLLATERALIZED

        short = client.validate_and_plan(RepayAction(1), ALICE)
        assert isinstance(short, Rejection)
        assert short.reason is RejectionReason.INSUFFICIENT_BALANCE

        borrower_chain.fund(ALICE, stable=Decimal("40000"), stake=Decimal("500"))
        repay = client.validate_and_plan(RepayAction(1), ALICE)
        assert [step.method for step in repay.steps] == ["approve", "repay"]
        assert client.run(repay).succeeded

        clock.advance(60)
        after = client.validate_and_plan(BorrowAction(1, Decimal("100")), ALICE)
        assert isinstance(after, Rejection)
        assert after.reason is RejectionReason.INVOICE_NOT_FOUND
        assert client.compute_domain_snapshot(ALICE).loans == {}

    def test_rejection_never_touches_the_ledger(self, client, borrower_chain, gateway):
        client.validate_and_plan(BorrowAction(1, Decimal("99999")), ALICE)
        assert gateway.writes() == []


class TestPledgedCollateral:
    """A pledged invoice cannot back a second loan, whatever the loan reads return."""

    def test_loan_details_unreadable_after_borrow(self, client, borrower_chain, gateway, clock):
        assert client.run(client.validate_and_plan(BorrowAction(1, Decimal("30000")), ALICE)).succeeded
        submitted = gateway.submitted_methods()

        clock.advance(60)
        borrower_chain.fail("getUserLoanDetails", ALICE, ReadUnavailable("rpc timeout"))
        again = client.validate_and_plan(BorrowAction(1, Decimal("100")), ALICE)

        assert isinstance(again, Rejection)
        assert again.reason is RejectionReason.ALREADY_COLLATERALIZED
        assert gateway.submitted_methods() == submitted

    def test_liquidated_invoice_cannot_be_reborrowed(self, client, borrower_chain, gateway, clock):
        assert client.run(client.validate_and_plan(BorrowAction(1, Decimal("30000")), ALICE)).succeeded
        clock.advance(timedelta(days=31).total_seconds())
        borrower_chain.apply(BOB, POOL, "liquidate", (1, ALICE))

        snapshot = client.compute_domain_snapshot(ALICE)
        assert snapshot.loans == {}
        assert snapshot.capacities == {}

        again = client.validate_and_plan(BorrowAction(1, Decimal("100")), ALICE)
        assert isinstance(again, Rejection)
        assert again.reason is RejectionReason.NOT_OWNER
        assert "seized" in again.message


class TestProtocolOperations:
    """Reward claims, slashing and platform fee sweeps."""

    def test_claim_rewards(self, client, chain):
        chain.add_stake(ALICE, Decimal("1500"), NOW - timedelta(days=10), timedelta(days=90))
        result = client.validate_and_plan(ClaimRewardsAction(), ALICE)
        assert isinstance(result, Plan)
        assert client.run(result).succeeded

    def test_slash_defaulted_borrower(self, client, chain, gateway):
        chain.add_stake(BOB, Decimal("700"), NOW - timedelta(days=10), timedelta(days=90))
        result = client.validate_and_plan(SlashStakeAction(BOB), ALICE)
        assert [step.method for step in result.steps] == ["slashStakedTokens"]
        assert client.run(result).succeeded
        assert BOB.lower() not in chain.stakes

    def test_slash_without_stake_is_rejected(self, client, chain, gateway):
        result = client.validate_and_plan(SlashStakeAction(BOB), ALICE)
        assert result.reason is RejectionReason.STAKE_NOT_FOUND
        assert gateway.writes() == []

    def test_platform_fee_sweep(self, client, chain, clock):
        chain.platform_fees = 1_500_000
        result = client.validate_and_plan(WithdrawPlatformFeesAction(), ALICE)
        assert "1.5" in result.action_step.description
        assert client.run(result).succeeded

        clock.advance(5)
        empty = client.validate_and_plan(WithdrawPlatformFeesAction(), ALICE)
        assert empty.reason is RejectionReason.NOTHING_TO_WITHDRAW


@pytest.mark.parametrize("tier,capacity", [
    (CollateralTier.NONE, Decimal("0")),
    (CollateralTier.BRONZE, Decimal("30000")),
    (CollateralTier.SILVER, Decimal("32500")),
    (CollateralTier.GOLD, Decimal("35000")),
    (CollateralTier.DIAMOND, Decimal("37500")),
])
def test_capacity_by_tier(client, borrower_chain, tier, capacity):
    borrower_chain.set_tier(ALICE, tier)
    assert client.compute_domain_snapshot(ALICE).capacities[1] == capacity
