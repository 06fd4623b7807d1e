"""
gateway.py - Confirmation polling for ledger gateways.

Many ledger clients can submit a write and look up its receipt, but cannot
block until the receipt exists. PollingGateway turns such a client (a
ReceiptSource) into a full LedgerGateway by polling the receipt lookup on a
fixed interval until a deadline.

Example:
    gateway = PollingGateway(my_rpc_client, poll_interval=2.0)
    confirmation = gateway.await_confirmation(handle, timeout=60.0)
"""

from __future__ import annotations
import logging
import time
from typing import Any, Callable, Optional, Protocol, Sequence, runtime_checkable

from .core import (
    Confirmation, ConfirmationTimeout, ReadUnavailable, SubmissionHandle,
)

logger = logging.getLogger(__name__)


@runtime_checkable
class ReceiptSource(Protocol):
    """
    A ledger client that can read, submit, and look up receipts.

    get_receipt returns None while the operation is still pending and may
    raise ReadUnavailable for a transient lookup failure.
    """

    def read(self, contract: str, method: str, args: Sequence[Any] = ()) -> Any:
        ...

    def submit(self, contract: str, method: str, args: Sequence[Any] = (), value: int = 0) -> SubmissionHandle:
        ...

    def get_receipt(self, handle: SubmissionHandle) -> Optional[Confirmation]:
        ...


def poll_for_confirmation(
    get_receipt: Callable[[SubmissionHandle], Optional[Confirmation]],
    handle: SubmissionHandle,
    timeout: float,
    poll_interval: float,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], None] = time.sleep,
) -> Confirmation:
    """
    Poll get_receipt until it returns a confirmation or timeout elapses.

    Transient lookup failures (ReadUnavailable) count as "not yet" and
    polling continues until the deadline.

    Raises:
        ConfirmationTimeout: No receipt before the deadline.
    """
    if timeout <= 0:
        raise ValueError(f"timeout must be positive, got {timeout}")
    if poll_interval <= 0:
        raise ValueError(f"poll_interval must be positive, got {poll_interval}")

    deadline = clock() + timeout
    attempts = 0
    while True:
        attempts += 1
        try:
            receipt = get_receipt(handle)
        except ReadUnavailable as exc:
            logger.debug("receipt lookup for %s failed (attempt %d): %s",
                         handle.reference, attempts, exc)
            receipt = None
        if receipt is not None:
            return receipt

        remaining = deadline - clock()
        if remaining <= 0:
            raise ConfirmationTimeout(
                f"{handle.method} ({handle.reference}) not confirmed within {timeout:g}s "
                f"after {attempts} polls"
            )
        sleep(min(poll_interval, remaining))


class PollingGateway:
    """
    LedgerGateway built from a ReceiptSource.

    Reads and submissions pass straight through; await_confirmation polls.
    """

    def __init__(
        self,
        source: ReceiptSource,
        poll_interval: float = 2.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.source = source
        self.poll_interval = poll_interval
        self.clock = clock
        self.sleep = sleep

    def read(self, contract: str, method: str, args: Sequence[Any] = ()) -> Any:
        return self.source.read(contract, method, args)

    def submit(self, contract: str, method: str, args: Sequence[Any] = (), value: int = 0) -> SubmissionHandle:
        return self.source.submit(contract, method, args, value)

    def await_confirmation(self, handle: SubmissionHandle, timeout: float) -> Confirmation:
        return poll_for_confirmation(
            self.source.get_receipt, handle, timeout, self.poll_interval,
            clock=self.clock, sleep=self.sleep,
        )
