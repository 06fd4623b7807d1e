"""
client.py - Credit protocol client.

Combines the reader, validator, planner and executor behind the three
operations callers use:

    compute_domain_snapshot(account)      -> DomainSnapshot
    validate_and_plan(action, account)    -> Plan | Rejection
    execute(plan)                         -> iterator of StepEvent

Every validate_and_plan call takes a fresh snapshot. Nothing read from the
ledger is cached between calls.
"""

from __future__ import annotations
from datetime import datetime
import logging
import time
from typing import Callable, Iterator, Optional, Union

from .actions import Action, describe, referenced_invoices, referenced_loans, referenced_stakers
from .config import DEFAULT_CONFIG, ProtocolConfig
from .core import LedgerGateway, utc_now
from .entities import DomainSnapshot
from .executor import PlanExecutor, PlanOutcome, StepEvent
from .planner import Plan, plan as build_plan
from .reader import DomainStateReader
from .validator import Rejection, validate

logger = logging.getLogger(__name__)


class CreditClient:
    """
    Entry point for reading domain state and running actions.

    Example:
        client = CreditClient(gateway, config)
        result = client.validate_and_plan(BorrowAction(token_id=7, amount=Decimal("30000")), me)
        if isinstance(result, Rejection):
            print(result)
        else:
            outcome = client.run(result)
    """

    def __init__(
        self,
        gateway: LedgerGateway,
        config: ProtocolConfig = DEFAULT_CONFIG,
        clock: Callable[[], datetime] = utc_now,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            gateway: Ledger access.
            config: Deployment configuration.
            clock: Wall clock for snapshot timestamps.
            monotonic: Clock used to age snapshots and plans.
        """
        self.gateway = gateway
        self.config = config
        self.reader = DomainStateReader(gateway, config, clock=clock, monotonic=monotonic)
        self.executor = PlanExecutor(gateway, config, monotonic=monotonic)

    def compute_domain_snapshot(self, account: str) -> DomainSnapshot:
        """
        Read tier, capacities, utilization, deposits, loans and invoices.

        Raises:
            ReadUnavailable: The ledger could not be read.
        """
        return self.reader.snapshot(account)

    def validate_and_plan(self, action: Action, account: str) -> Union[Plan, Rejection]:
        """
        Validate action for account against fresh state and plan it.

        Returns:
            A Plan when every precondition holds, else the first Rejection.

        Raises:
            ReadUnavailable: The ledger could not be read.
            UnsupportedAction: The action type is not supported.
        """
        snapshot = self.reader.snapshot(
            account,
            invoice_ids=referenced_invoices(action),
            loan_refs=referenced_loans(action, account),
            stakers=referenced_stakers(action),
        )
        rejection = validate(action, snapshot, self.config)
        if rejection is not None:
            logger.info("%s for %s rejected: %s", describe(action), account, rejection)
            return rejection
        plan = build_plan(action, snapshot, self.config)
        for note in plan.advisories:
            logger.warning("plan %s: %s", plan.plan_id, note)
        logger.info("%s for %s planned as %s", describe(action), account, plan)
        return plan

    def execute(
        self,
        plan: Plan,
        should_abandon: Optional[Callable[[], bool]] = None,
    ) -> Iterator[StepEvent]:
        """Execute plan, yielding each state transition as it happens."""
        return self.executor.stream(plan, should_abandon)

    def run(
        self,
        plan: Plan,
        on_event: Optional[Callable[[StepEvent], None]] = None,
        should_abandon: Optional[Callable[[], bool]] = None,
    ) -> PlanOutcome:
        """Execute plan to completion and return its outcome."""
        return self.executor.execute(plan, on_event, should_abandon)
