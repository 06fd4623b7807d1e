"""
planner.py - Operation Planner.

Turns a validated action plus the snapshot it was validated against into a
Plan: the minimal ordered list of ledger writes that carries the action out.

Rules:
    - An approval step is prepended only when the snapshot shows the current
      allowance or NFT approval is insufficient. Nothing is assumed.
    - Every step must be confirmed before the next one is submitted.
    - Plans are single-use values. To retry, take a new snapshot and plan
      again; an approval that already landed will not be planned twice.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, ROUND_UP
from typing import Any, Callable, Dict, List, Optional, Tuple

from .actions import (
    Action, BorrowAction, ClaimRewardsAction, LiquidateAction, MintInvoiceAction,
    RepayAction, SlashStakeAction, StakeAction, TrancheDepositAction,
    TrancheWithdrawAction, UnstakeAction, VerifyInvoiceAction, WithdrawInterestAction,
    WithdrawPlatformFeesAction,
)
from .config import DEFAULT_CONFIG, ProtocolConfig
from .core import (
    ContractRole, STEP_KIND_ACTION, STEP_KIND_APPROVAL, Tranche, UnsupportedAction,
    content_hash, format_amount, to_base_units, to_timestamp,
)
from .entities import DomainSnapshot, calculate_repay_allowance


# ============================================================================
# PLAN STRUCTURES
# ============================================================================

@dataclass(frozen=True, slots=True)
class Step:
    """
    One ledger write.

    Attributes:
        index: Position in the plan, starting at 0.
        kind: STEP_KIND_APPROVAL or STEP_KIND_ACTION.
        role: Which contract is called.
        contract: Its address.
        method: Method to invoke.
        args: Encoded call arguments (integers in base units, addresses, ids).
        description: What the step does, for display and logs.
        value: Native currency attached to the call.
        confirm_before_next: The next step waits for this one's confirmation.
    """
    index: int
    kind: str
    role: ContractRole
    contract: str
    method: str
    args: Tuple[Any, ...]
    description: str
    value: int = 0
    confirm_before_next: bool = True

    def __post_init__(self):
        if self.kind not in (STEP_KIND_APPROVAL, STEP_KIND_ACTION):
            raise ValueError(f"Unknown step kind: {self.kind}")
        if not self.method:
            raise ValueError("Step method cannot be empty")
        if self.value < 0:
            raise ValueError(f"Step value cannot be negative: {self.value}")

    @property
    def is_approval(self) -> bool:
        return self.kind == STEP_KIND_APPROVAL

    def __repr__(self) -> str:
        return f"Step({self.index} {self.role.value}.{self.method}{self.args})"


@dataclass(frozen=True, slots=True)
class Plan:
    """
    An ordered, single-use list of steps for one action.

    Attributes:
        account: Account that will sign every step.
        action: The action being carried out.
        steps: Steps in submission order.
        as_of: Wall-clock time of the snapshot the plan was built from.
        snapshot_taken_at: Monotonic time of that snapshot (for ageing).
        advisories: Non-blocking notes (e.g. a borrow above the safe ceiling).
        plan_id: Content hash, computed when not given.
    """
    account: str
    action: Action
    steps: Tuple[Step, ...]
    as_of: datetime
    snapshot_taken_at: float
    advisories: Tuple[str, ...] = ()
    plan_id: str = field(default="")

    def __post_init__(self):
        if not self.steps:
            raise ValueError("A plan needs at least one step")
        for position, step in enumerate(self.steps):
            if step.index != position:
                raise ValueError(f"Step {step.index} found at position {position}")
        if not self.plan_id:
            computed = content_hash(
                self.account,
                repr(self.action),
                [(s.contract, s.method, s.args, s.value) for s in self.steps],
                self.as_of,
            )
            object.__setattr__(self, 'plan_id', computed)

    def __len__(self) -> int:
        return len(self.steps)

    @property
    def approval_steps(self) -> Tuple[Step, ...]:
        return tuple(s for s in self.steps if s.is_approval)

    @property
    def action_step(self) -> Step:
        return self.steps[-1]

    def __repr__(self) -> str:
        return f"Plan({self.plan_id}: {len(self.steps)} steps for {self.account})"


class _StepList:
    """Accumulates steps with sequential indices."""

    def __init__(self, config: ProtocolConfig):
        self.config = config
        self.steps: List[Step] = []

    def add(self, kind: str, role: ContractRole, method: str, args: Tuple[Any, ...],
            description: str) -> None:
        self.steps.append(Step(
            index=len(self.steps),
            kind=kind,
            role=role,
            contract=self.config.address_of(role),
            method=method,
            args=args,
            description=description,
        ))

    def approve_tokens(self, token: ContractRole, spender: ContractRole,
                       amount: Decimal, decimals: int) -> None:
        self.add(
            STEP_KIND_APPROVAL, token, "approve",
            (self.config.address_of(spender), to_base_units(amount, decimals, ROUND_UP)),
            f"Approve {spender.value} to spend {format_amount(amount)} {token.value}",
        )

    def action(self, role: ContractRole, method: str, args: Tuple[Any, ...], description: str) -> None:
        self.add(STEP_KIND_ACTION, role, method, args, description)


# ============================================================================
# PER-ACTION PLANNING
# ============================================================================

def _plan_stake(action: StakeAction, snapshot: DomainSnapshot, steps: _StepList) -> None:
    decimals = steps.config.stake_token_decimals
    if snapshot.stake_allowance < action.amount:
        steps.approve_tokens(ContractRole.STAKE_TOKEN, ContractRole.STAKING, action.amount, decimals)
    steps.action(
        ContractRole.STAKING, "stake",
        (to_base_units(action.amount, decimals), int(action.duration.total_seconds())),
        f"Stake {format_amount(action.amount)} for {action.duration.days} days",
    )


def _plan_unstake(action: UnstakeAction, snapshot: DomainSnapshot, steps: _StepList) -> None:
    steps.action(ContractRole.STAKING, "unstake", (action.stake_index,),
                 f"Unstake stake #{action.stake_index}")


def _plan_claim_rewards(action: ClaimRewardsAction, snapshot: DomainSnapshot, steps: _StepList) -> None:
    steps.action(ContractRole.STAKING, "claimRewards", (), "Claim staking rewards")


def _plan_slash_stake(action: SlashStakeAction, snapshot: DomainSnapshot, steps: _StepList) -> None:
    staker = action.staker.strip()
    steps.action(ContractRole.STAKING, "slashStakedTokens", (staker,),
                 f"Slash the stake of {staker}")


def _plan_borrow(action: BorrowAction, snapshot: DomainSnapshot, steps: _StepList) -> None:
    pool = steps.config.address_of(ContractRole.LENDING_POOL)
    invoice = snapshot.invoice(action.token_id)
    approved = snapshot.pool_operator_approved or (
        invoice is not None and invoice.is_approved_for(pool)
    )
    if not approved:
        steps.add(
            STEP_KIND_APPROVAL, ContractRole.INVOICE_NFT, "approve", (pool, action.token_id),
            f"Approve the lending pool to take invoice {action.token_id} as collateral",
        )
    steps.action(
        ContractRole.LENDING_POOL, "depositInvoiceAndBorrow",
        (action.token_id, to_base_units(action.amount, steps.config.stable_token_decimals)),
        f"Borrow {format_amount(action.amount)} against invoice {action.token_id}",
    )


def _plan_repay(action: RepayAction, snapshot: DomainSnapshot, steps: _StepList) -> None:
    loan = snapshot.loan(action.token_id)
    if loan is None:
        raise ValueError(f"Cannot plan a repayment for unknown loan {action.token_id}")
    due = loan.amount_due
    if snapshot.stable_allowance < due:
        steps.approve_tokens(
            ContractRole.STABLE_TOKEN, ContractRole.LENDING_POOL,
            calculate_repay_allowance(due, steps.config.repay_buffer),
            steps.config.stable_token_decimals,
        )
    steps.action(ContractRole.LENDING_POOL, "repay", (action.token_id,),
                 f"Repay {format_amount(due)} on the loan backed by invoice {action.token_id}")


def _plan_tranche_deposit(action: TrancheDepositAction, snapshot: DomainSnapshot,
                          steps: _StepList) -> None:
    decimals = steps.config.stable_token_decimals
    if snapshot.stable_allowance < action.amount:
        steps.approve_tokens(ContractRole.STABLE_TOKEN, ContractRole.LENDING_POOL,
                             action.amount, decimals)
    steps.action(
        ContractRole.LENDING_POOL, "depositWithTranche",
        (to_base_units(action.amount, decimals), action.tranche.value,
         int(action.lockup.total_seconds())),
        f"Deposit {format_amount(action.amount)} into the {action.tranche.name.lower()} tranche",
    )


def _plan_tranche_withdraw(action: TrancheWithdrawAction, snapshot: DomainSnapshot,
                           steps: _StepList) -> None:
    method = "withdrawSenior" if action.tranche is Tranche.SENIOR else "withdrawJunior"
    steps.action(
        ContractRole.LENDING_POOL, method,
        (to_base_units(action.amount, steps.config.stable_token_decimals),),
        f"Withdraw {format_amount(action.amount)} from the {action.tranche.name.lower()} tranche",
    )


def _plan_withdraw_interest(action: WithdrawInterestAction, snapshot: DomainSnapshot,
                            steps: _StepList) -> None:
    steps.action(ContractRole.LENDING_POOL, "withdrawInterest", (),
                 f"Withdraw {format_amount(snapshot.lp_interest)} accrued interest")


def _plan_mint_invoice(action: MintInvoiceAction, snapshot: DomainSnapshot, steps: _StepList) -> None:
    steps.action(
        ContractRole.INVOICE_NFT, "mintInvoiceNFT",
        (action.supplier, action.invoice_id,
         to_base_units(action.face_amount, steps.config.invoice_decimals),
         to_timestamp(action.due_date), action.document_ref),
        f"Mint invoice {action.invoice_id} for {format_amount(action.face_amount)}",
    )


def _plan_verify_invoice(action: VerifyInvoiceAction, snapshot: DomainSnapshot,
                         steps: _StepList) -> None:
    steps.action(ContractRole.INVOICE_NFT, "verifyInvoice", (action.token_id,),
                 f"Verify invoice {action.token_id}")


def _plan_liquidate(action: LiquidateAction, snapshot: DomainSnapshot, steps: _StepList) -> None:
    steps.action(ContractRole.LENDING_POOL, "liquidate", (action.token_id, action.borrower),
                 f"Liquidate the loan backed by invoice {action.token_id}")


def _plan_withdraw_platform_fees(action: WithdrawPlatformFeesAction, snapshot: DomainSnapshot,
                                 steps: _StepList) -> None:
    steps.action(ContractRole.LENDING_POOL, "withdrawPlatformFees", (),
                 f"Withdraw {format_amount(snapshot.platform_fees)} platform fees")


_PLANNERS: Dict[type, Callable[[Any, DomainSnapshot, _StepList], None]] = {
    StakeAction: _plan_stake,
    UnstakeAction: _plan_unstake,
    ClaimRewardsAction: _plan_claim_rewards,
    SlashStakeAction: _plan_slash_stake,
    BorrowAction: _plan_borrow,
    RepayAction: _plan_repay,
    TrancheDepositAction: _plan_tranche_deposit,
    TrancheWithdrawAction: _plan_tranche_withdraw,
    WithdrawInterestAction: _plan_withdraw_interest,
    MintInvoiceAction: _plan_mint_invoice,
    VerifyInvoiceAction: _plan_verify_invoice,
    LiquidateAction: _plan_liquidate,
    WithdrawPlatformFeesAction: _plan_withdraw_platform_fees,
}


def _advisories(action: Action, snapshot: DomainSnapshot) -> Tuple[str, ...]:
    notes: List[str] = []
    if isinstance(action, BorrowAction):
        ceiling: Optional[Decimal] = snapshot.pool.safe_lending_ceiling
        if ceiling is not None and action.amount > ceiling:
            notes.append(
                f"Borrow of {format_amount(action.amount)} is above the pool's safe lending "
                f"ceiling of {format_amount(ceiling)}"
            )
    return tuple(notes)


def plan(action: Action, snapshot: DomainSnapshot, config: ProtocolConfig = DEFAULT_CONFIG) -> Plan:
    """
    Build the plan for an action that has passed validation.

    Args:
        action: The validated action.
        snapshot: The snapshot it was validated against.
        config: Deployment configuration (addresses, precisions).

    Raises:
        UnsupportedAction: No planner exists for the action's type.
    """
    planner = _PLANNERS.get(type(action))
    if planner is None:
        raise UnsupportedAction(f"No planner for {type(action).__name__}")
    steps = _StepList(config)
    planner(action, snapshot, steps)
    return Plan(
        account=snapshot.account,
        action=action,
        steps=tuple(steps.steps),
        as_of=snapshot.as_of,
        snapshot_taken_at=snapshot.taken_at,
        advisories=_advisories(action, snapshot),
    )
