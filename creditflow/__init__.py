"""
creditflow - Client core for an on-chain invoice credit protocol

Reads ledger state into domain values (tiers, capacities, tranche balances),
validates actions before anything is spent, plans approve-then-act write
sequences, and executes them one confirmed step at a time.

Usage:
    from creditflow import CreditClient, BorrowAction, Rejection, ProtocolConfig

    client = CreditClient(gateway, ProtocolConfig(addresses=my_addresses))

    snapshot = client.compute_domain_snapshot(account)
    print(snapshot.tier, snapshot.capacities, snapshot.utilization)

    result = client.validate_and_plan(BorrowAction(token_id=7, amount=Decimal("30000")), account)
    if isinstance(result, Rejection):
        print("rejected:", result)
    else:
        for event in client.execute(result):
            print(event)
"""

# Core types
from .core import (
    LedgerGateway,
    SubmissionHandle,
    Confirmation,
    CollateralTier,
    Tranche,
    ContractRole,
    CreditFlowError,
    ConfigurationError,
    ReadUnavailable,
    ReadReverted,
    SubmissionRejected,
    ConfirmationTimeout,
    UnsupportedAction,
    PlanAlreadyExecuted,
    STEP_KIND_APPROVAL,
    STEP_KIND_ACTION,
    from_base_units,
    to_base_units,
)

# Configuration
from .config import (
    ContractAddresses,
    ProtocolConfig,
    DEFAULT_CONFIG,
    CITREA_TESTNET_ADDRESSES,
    load_config,
)

# Domain entities
from .entities import (
    Stake,
    StakeUsage,
    Invoice,
    Loan,
    LPDeposit,
    TrancheBreakdown,
    PoolState,
    DomainSnapshot,
    calculate_tier,
    calculate_apy_bps,
    calculate_borrowing_capacity,
    calculate_utilization,
    calculate_tranche_breakdown,
    calculate_available_balance,
    calculate_locked_balance,
    calculate_pending_interest,
)

# Actions
from .actions import (
    Action,
    StakeAction,
    UnstakeAction,
    BorrowAction,
    RepayAction,
    TrancheDepositAction,
    TrancheWithdrawAction,
    WithdrawInterestAction,
    MintInvoiceAction,
    VerifyInvoiceAction,
    LiquidateAction,
    ClaimRewardsAction,
    SlashStakeAction,
    WithdrawPlatformFeesAction,
)

# Engine
from .reader import DomainStateReader, compute_domain_snapshot
from .validator import Rejection, RejectionReason, validate
from .planner import Plan, Step, plan
from .executor import PlanExecutor, PlanOutcome, PlanState, StepEvent
from .classifier import ClassifiedError, ErrorKind, ProtocolReason, classify
from .gateway import PollingGateway, ReceiptSource, poll_for_confirmation
from .client import CreditClient

__all__ = [
    # Core
    'LedgerGateway', 'SubmissionHandle', 'Confirmation',
    'CollateralTier', 'Tranche', 'ContractRole',
    'CreditFlowError', 'ConfigurationError', 'ReadUnavailable', 'ReadReverted',
    'SubmissionRejected', 'ConfirmationTimeout', 'UnsupportedAction', 'PlanAlreadyExecuted',
    'STEP_KIND_APPROVAL', 'STEP_KIND_ACTION',
    'from_base_units', 'to_base_units',
    # Configuration
    'ContractAddresses', 'ProtocolConfig', 'DEFAULT_CONFIG', 'CITREA_TESTNET_ADDRESSES',
    'load_config',
    # Entities
    'Stake', 'StakeUsage', 'Invoice', 'Loan', 'LPDeposit', 'TrancheBreakdown',
    'PoolState', 'DomainSnapshot',
    'calculate_tier', 'calculate_apy_bps', 'calculate_borrowing_capacity',
    'calculate_utilization', 'calculate_tranche_breakdown', 'calculate_available_balance',
    'calculate_locked_balance', 'calculate_pending_interest',
    # Actions
    'Action', 'StakeAction', 'UnstakeAction', 'BorrowAction', 'RepayAction',
    'TrancheDepositAction', 'TrancheWithdrawAction', 'WithdrawInterestAction',
    'MintInvoiceAction', 'VerifyInvoiceAction', 'LiquidateAction',
    'ClaimRewardsAction', 'SlashStakeAction', 'WithdrawPlatformFeesAction',
    # Engine
    'DomainStateReader', 'compute_domain_snapshot',
    'Rejection', 'RejectionReason', 'validate',
    'Plan', 'Step', 'plan',
    'PlanExecutor', 'PlanOutcome', 'PlanState', 'StepEvent',
    'ClassifiedError', 'ErrorKind', 'ProtocolReason', 'classify',
    'PollingGateway', 'ReceiptSource', 'poll_for_confirmation',
    'CreditClient',
]

__version__ = '1.0.0'
