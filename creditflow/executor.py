"""
executor.py - Plan Executor.

Runs a Plan one step at a time through the LedgerGateway, waiting for each
step's confirmation before submitting the next.

STATE MACHINE:
==============

    PENDING
      -> SUBMITTING(i)             payload handed to the gateway
      -> AWAITING_CONFIRMATION(i)  handle obtained, waiting with a deadline
      -> CONFIRMED(i)              success; continue with i+1
      -> ... -> COMPLETED

    Any step may end the plan in FAILED(i, ClassifiedError):
      - submit raised (declined, simulation revert, transport)
      - the wait hit its deadline (TIMEOUT; the operation may still land)
      - the confirmation reported a revert (OPERATION_REVERTED)

    Before a step is submitted the caller may abandon the plan: ABANDONED(i).
    Once a step is submitted it cannot be cancelled. Closing the event stream
    while a step is in flight abandons the wait, not the operation.

Confirmed steps are never resubmitted and nothing is compensated. Retrying
means taking a new snapshot and planning again.
"""

from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
import logging
import threading
import time
from typing import Callable, Dict, Iterator, List, Optional, Tuple

from .classifier import ClassifiedError, classify
from .config import DEFAULT_CONFIG, ProtocolConfig
from .core import (
    Confirmation, LedgerGateway, PlanAlreadyExecuted, SubmissionHandle,
)
from .planner import Plan
from .validator import Rejection, RejectionReason

logger = logging.getLogger(__name__)


class PlanState(str, Enum):
    PENDING = "pending"
    SUBMITTING = "submitting"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    FAILED = "failed"
    ABANDONED = "abandoned"


TERMINAL_STATES = frozenset({PlanState.COMPLETED, PlanState.FAILED, PlanState.ABANDONED})


@dataclass(frozen=True, slots=True)
class StepEvent:
    """
    One state transition of a running plan.

    handle is set from AWAITING_CONFIRMATION on, confirmation on CONFIRMED,
    error on FAILED.
    """
    plan_id: str
    state: PlanState
    step_index: Optional[int]
    handle: Optional[SubmissionHandle] = None
    confirmation: Optional[Confirmation] = None
    error: Optional[ClassifiedError] = None

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def __repr__(self) -> str:
        where = "" if self.step_index is None else f"({self.step_index})"
        suffix = f" {self.error}" if self.error is not None else ""
        return f"StepEvent({self.state.value}{where}{suffix})"


@dataclass(frozen=True, slots=True)
class PlanOutcome:
    """
    Final result of executing a plan.

    Attributes:
        plan_id: Plan that ran.
        state: COMPLETED, FAILED or ABANDONED.
        confirmed_steps: Indices of steps confirmed successfully, in order.
        handles: Handles of every submitted step, in order.
        failed_step: Index of the failing (or abandoned-before) step.
        error: Classified failure for FAILED outcomes.
        events: Every event emitted, in order.
    """
    plan_id: str
    state: PlanState
    confirmed_steps: Tuple[int, ...] = ()
    handles: Tuple[SubmissionHandle, ...] = ()
    failed_step: Optional[int] = None
    error: Optional[ClassifiedError] = None
    events: Tuple[StepEvent, ...] = ()

    @property
    def succeeded(self) -> bool:
        return self.state is PlanState.COMPLETED


class PlanExecutor:
    """
    Executes plans against a gateway.

    Each Plan may be executed once per executor. The registry of executed
    plans is guarded by a lock, so one executor can serve plans running on
    different threads; steps within a plan are always sequential.

    A plan is remembered only while it is young enough to submit. Once its
    snapshot is older than max_plan_age the stale-snapshot check refuses it
    anyway, so its id is dropped and the registry stays bounded by the plans
    issued within one max_plan_age window.
    """

    def __init__(
        self,
        gateway: LedgerGateway,
        config: ProtocolConfig = DEFAULT_CONFIG,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            gateway: Ledger access used for submission and confirmation.
            config: Supplies confirmation_timeout and max_plan_age.
            monotonic: Clock compared against Plan.snapshot_taken_at.
        """
        self.gateway = gateway
        self.config = config
        self.monotonic = monotonic
        self._executed: Dict[str, float] = {}
        self._lock = threading.Lock()

    def stream(
        self,
        plan: Plan,
        should_abandon: Optional[Callable[[], bool]] = None,
    ) -> Iterator[StepEvent]:
        """
        Start executing plan and return its event stream.

        Args:
            plan: The plan to run.
            should_abandon: Polled before each submission; returning True
                ends the plan as ABANDONED without submitting that step.

        Raises:
            PlanAlreadyExecuted: plan was already handed to this executor.
        """
        with self._lock:
            self._forget_expired()
            if plan.plan_id in self._executed:
                raise PlanAlreadyExecuted(f"Plan {plan.plan_id} has already been executed")
            self._executed[plan.plan_id] = plan.snapshot_taken_at
        return self._run(plan, should_abandon)

    @property
    def remembered_plans(self) -> int:
        """Number of plan ids currently guarded against re-execution."""
        with self._lock:
            return len(self._executed)

    def execute(
        self,
        plan: Plan,
        on_event: Optional[Callable[[StepEvent], None]] = None,
        should_abandon: Optional[Callable[[], bool]] = None,
    ) -> PlanOutcome:
        """Run plan to a terminal state and summarize it."""
        events: List[StepEvent] = []
        for event in self.stream(plan, should_abandon):
            events.append(event)
            if on_event is not None:
                on_event(event)
        return summarize(plan.plan_id, events)

    # ------------------------------------------------------------------

    def _forget_expired(self) -> None:
        # caller holds self._lock
        cutoff = self.monotonic() - self.config.max_plan_age
        expired = [plan_id for plan_id, taken_at in self._executed.items() if taken_at < cutoff]
        for plan_id in expired:
            del self._executed[plan_id]
        if expired:
            logger.debug("forgot %d expired plan ids", len(expired))

    def _run(self, plan: Plan, should_abandon: Optional[Callable[[], bool]]) -> Iterator[StepEvent]:
        plan_id = plan.plan_id
        age = self.monotonic() - plan.snapshot_taken_at
        if age > self.config.max_plan_age:
            logger.warning("plan %s is %.1fs old; refusing to submit", plan_id, age)
            stale = Rejection(
                RejectionReason.STALE_SNAPSHOT,
                f"Snapshot is {age:.1f}s old (limit {self.config.max_plan_age:.1f}s); plan again",
                {"age": age},
            )
            yield StepEvent(plan_id, PlanState.FAILED, 0, error=classify(stale, 0))
            return

        timeout = self.config.confirmation_timeout
        for step in plan.steps:
            i = step.index
            if should_abandon is not None and should_abandon():
                logger.info("plan %s abandoned before step %d", plan_id, i)
                yield StepEvent(plan_id, PlanState.ABANDONED, i)
                return

            yield StepEvent(plan_id, PlanState.SUBMITTING, i)
            try:
                handle = self.gateway.submit(step.contract, step.method, step.args, step.value)
            except Exception as exc:
                error = classify(exc, i)
                logger.warning("plan %s step %d (%s) not submitted: %s", plan_id, i, step.method, error)
                yield StepEvent(plan_id, PlanState.FAILED, i, error=error)
                return
            logger.info("plan %s step %d submitted: %s %s", plan_id, i, step.method, handle.reference)

            try:
                yield StepEvent(plan_id, PlanState.AWAITING_CONFIRMATION, i, handle=handle)
            except GeneratorExit:
                logger.warning(
                    "plan %s closed while step %d (%s) was in flight; its outcome is unknown",
                    plan_id, i, handle.reference,
                )
                raise

            try:
                confirmation = self.gateway.await_confirmation(handle, timeout)
            except Exception as exc:
                error = classify(exc, i)
                logger.warning("plan %s step %d unconfirmed: %s", plan_id, i, error)
                yield StepEvent(plan_id, PlanState.FAILED, i, handle=handle, error=error)
                return

            if not confirmation.succeeded:
                error = classify(confirmation, i)
                logger.warning("plan %s step %d reverted: %s", plan_id, i, error)
                yield StepEvent(plan_id, PlanState.FAILED, i, handle=handle,
                                confirmation=confirmation, error=error)
                return

            logger.debug("plan %s step %d confirmed", plan_id, i)
            yield StepEvent(plan_id, PlanState.CONFIRMED, i, handle=handle, confirmation=confirmation)

        logger.info("plan %s completed (%d steps)", plan_id, len(plan.steps))
        yield StepEvent(plan_id, PlanState.COMPLETED, len(plan.steps) - 1)


def summarize(plan_id: str, events: List[StepEvent]) -> PlanOutcome:
    """Fold an event list into a PlanOutcome."""
    confirmed = tuple(e.step_index for e in events if e.state is PlanState.CONFIRMED)
    handles = tuple(
        e.handle for e in events
        if e.state is PlanState.AWAITING_CONFIRMATION and e.handle is not None
    )
    final = events[-1] if events else None
    if final is None or not final.is_terminal:
        # stream was closed early by the caller
        return PlanOutcome(plan_id, PlanState.ABANDONED, confirmed, handles,
                           final.step_index if final else None, None, tuple(events))
    failed_step = None if final.state is PlanState.COMPLETED else final.step_index
    return PlanOutcome(plan_id, final.state, confirmed, handles, failed_step, final.error, tuple(events))
