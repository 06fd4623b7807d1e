"""
fake_gateway.py - Test Helper for LedgerGateway

Provides an in-memory ledger (FakeChain) that answers the reads the client
makes, and an instrumented FakeGateway that records every call in order and
lets tests script how each submitted write turns out.

Example:
    chain = FakeChain(config)
    chain.set_tier(ALICE, CollateralTier.BRONZE)
    chain.add_invoice(1, supplier=ALICE, face=Decimal("50000"), due=NOW + timedelta(days=30))
    gateway = FakeGateway(chain)
    gateway.script("depositInvoiceAndBorrow", REVERT("InsufficientLiquidity"))
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Sequence, Set, Tuple

from creditflow import (
    CollateralTier, Confirmation, ConfirmationTimeout, ContractAddresses, ContractRole,
    DomainSnapshot, PoolState, ProtocolConfig, ReadReverted, ReadUnavailable,
    SubmissionHandle, SubmissionRejected, Tranche, to_base_units,
)
from creditflow.core import to_timestamp


VERIFIER_ROLE = "0x" + "ab" * 32


# =============================================================================
# TEST DEPLOYMENT
# =============================================================================

NOW = datetime(2025, 1, 1, tzinfo=timezone.utc)

ALICE = "0x00000000000000000000000000000000000a11ce"
BOB = "0x0000000000000000000000000000000000000b0b"
CAROL = "0x00000000000000000000000000000000000ca201"

TEST_ADDRESSES = ContractAddresses(
    staking="0x5000000000000000000000000000000000000001",
    lending_pool="0x5000000000000000000000000000000000000002",
    invoice_nft="0x5000000000000000000000000000000000000003",
    stake_token="0x5000000000000000000000000000000000000004",
    stable_token="0x5000000000000000000000000000000000000005",
)

POOL = TEST_ADDRESSES.lending_pool


class FakeClock:
    """Wall clock and monotonic clock that only move when told to."""

    def __init__(self, start: datetime = NOW):
        self.now = start
        self.ticks = 1000.0

    def __call__(self) -> datetime:
        return self.now

    def monotonic(self) -> float:
        return self.ticks

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)
        self.ticks += seconds


def make_config(**overrides: Any) -> ProtocolConfig:
    """Test deployment config. Bronze LTV is 6000 bps."""
    return ProtocolConfig(addresses=TEST_ADDRESSES, **overrides)


def make_snapshot(**fields: Any) -> DomainSnapshot:
    """
    Build a DomainSnapshot directly, for validator and planner tests.

    Defaults: ALICE at NOW, tier BRONZE, a pool with 100000 deposited and
    nothing borrowed.
    """
    defaults: Dict[str, Any] = dict(
        account=ALICE,
        as_of=NOW,
        taken_at=1000.0,
        tier=CollateralTier.BRONZE,
        ltv_bps=6000,
        stable_decimals=6,
        lending_pool=POOL,
        pool=PoolState(total_deposits=Decimal("100000"), total_borrowed=Decimal("0")),
    )
    defaults.update(fields)
    return DomainSnapshot(**defaults)


# =============================================================================
# SCRIPTED OUTCOMES
# =============================================================================

@dataclass(frozen=True)
class Outcome:
    """How a submitted write turns out."""
    kind: str                  # ok | revert | timeout | reject
    reason: str = ""
    applies: bool = True       # whether the ledger effect lands
    code: Optional[int] = None


OK = Outcome("ok")


def REVERT(reason: str) -> Outcome:
    return Outcome("revert", reason, applies=False)


def TIMEOUT(applies: bool = False) -> Outcome:
    return Outcome("timeout", applies=applies)


def REJECT(message: str, code: Optional[int] = None) -> Outcome:
    return Outcome("reject", message, applies=False, code=code)


# =============================================================================
# FAKE CHAIN
# =============================================================================

class FakeChain:
    """
    In-memory stand-in for the protocol's contracts.

    Amounts are stored in base units, exactly as a real chain would return
    them. Helper setters take token units.
    """

    def __init__(self, config: ProtocolConfig):
        self.config = config
        self.roles = {config.address_of(role).lower(): role for role in ContractRole}
        self.pool = config.address_of(ContractRole.LENDING_POOL)

        self.tiers: Dict[str, int] = {}
        self.stakes: Dict[str, List[Tuple[int, int, int, int, int]]] = {}
        self.stake_usage: Dict[str, Tuple[int, int, int]] = {}
        self.balances: Dict[Tuple[ContractRole, str], int] = {}
        self.allowances: Dict[Tuple[ContractRole, str, str], int] = {}

        self.invoices: Dict[int, Dict[str, Any]] = {}
        self.owners: Dict[int, str] = {}
        self.approvals: Dict[int, str] = {}
        self.operators: Set[Tuple[str, str]] = set()
        self.verifiers: Set[str] = set()

        self.loans: Dict[Tuple[str, int], Tuple[int, int, bool, bool, int]] = {}
        self.deposits: Dict[str, List[Tuple[int, int, int, int, bool, int, int]]] = {}
        self.lp_interest: Dict[str, int] = {}
        self.platform_fees = 0

        self.total_deposits = 0
        self.total_borrowed = 0
        self.safe_lending: Optional[int] = None

        self.enumerable = True
        self.reverting: Set[str] = set()
        self.unavailable: Set[str] = set()
        self.failures: Dict[Tuple[str, Any], Exception] = {}
        self.now: Optional[datetime] = None

    # ------------------------------------------------------------------
    # Setup helpers (token units in, base units stored)
    # ------------------------------------------------------------------

    def _stable(self, amount: Decimal) -> int:
        return to_base_units(Decimal(str(amount)), self.config.stable_token_decimals)

    def _stake_units(self, amount: Decimal) -> int:
        return to_base_units(Decimal(str(amount)), self.config.stake_token_decimals)

    def set_tier(self, account: str, tier: CollateralTier) -> None:
        self.tiers[account.lower()] = tier.value

    def add_stake(self, account: str, amount: Decimal, start: datetime, duration: timedelta) -> None:
        raw = self._stake_units(amount)
        self.stakes.setdefault(account.lower(), []).append(
            (raw, raw, to_timestamp(start), to_timestamp(start), int(duration.total_seconds()))
        )

    def fund(self, account: str, stable: Decimal = Decimal("0"), stake: Decimal = Decimal("0")) -> None:
        self.balances[(ContractRole.STABLE_TOKEN, account.lower())] = self._stable(stable)
        self.balances[(ContractRole.STAKE_TOKEN, account.lower())] = self._stake_units(stake)

    def set_allowance(self, token: ContractRole, owner: str, spender: ContractRole, amount: Decimal) -> None:
        decimals = (self.config.stable_token_decimals if token is ContractRole.STABLE_TOKEN
                    else self.config.stake_token_decimals)
        key = (token, owner.lower(), self.config.address_of(spender).lower())
        self.allowances[key] = to_base_units(Decimal(str(amount)), decimals)

    def add_invoice(
        self,
        token_id: int,
        supplier: str,
        face: Decimal,
        due: datetime,
        verified: bool = True,
        invoice_id: Optional[str] = None,
        owner: Optional[str] = None,
    ) -> None:
        self.invoices[token_id] = {
            "invoiceId": invoice_id or f"INV-{token_id}",
            "supplier": supplier,
            "buyer": "0xbuyer",
            "creditAmount": to_base_units(Decimal(str(face)), self.config.invoice_decimals),
            "dueDate": to_timestamp(due),
            "ipfsHash": f"ipfs://invoice-{token_id}",
            "isVerified": verified,
        }
        self.owners[token_id] = owner or supplier

    def burn_invoice(self, token_id: int) -> None:
        self.owners.pop(token_id, None)
        self.approvals.pop(token_id, None)

    def add_loan(self, borrower: str, token_id: int, principal: Decimal, due: datetime,
                 interest: Decimal = Decimal("0"), repaid: bool = False, liquidated: bool = False) -> None:
        self.loans[(borrower.lower(), token_id)] = (
            self._stable(principal), to_timestamp(due), repaid, liquidated, self._stable(interest)
        )

    def add_deposit(self, account: str, amount: Decimal, when: datetime, tranche: Tranche,
                    lockup: timedelta = timedelta(0), withdrawn: Decimal = Decimal("0"),
                    interest: Decimal = Decimal("0")) -> None:
        self.deposits.setdefault(account.lower(), []).append((
            self._stable(amount), to_timestamp(when), self._stable(withdrawn),
            self._stable(interest), True, tranche.value, int(lockup.total_seconds()),
        ))

    def set_pool(self, total_deposits: Decimal, total_borrowed: Decimal,
                 safe_lending: Optional[Decimal] = None) -> None:
        self.total_deposits = self._stable(total_deposits)
        self.total_borrowed = self._stable(total_borrowed)
        self.safe_lending = None if safe_lending is None else self._stable(safe_lending)

    def fail(self, method: str, first_arg: Any, error: Exception) -> None:
        """Make one read (method called with first_arg) raise error."""
        self.failures[(method, first_arg)] = error

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def read(self, contract: str, method: str, args: Sequence[Any]) -> Any:
        key = (method, args[0] if args else None)
        if key in self.failures:
            raise self.failures[key]
        if method in self.unavailable:
            raise ReadUnavailable(f"rpc timeout calling {method}")
        if method in self.reverting:
            raise ReadReverted(f"execution reverted calling {method}")
        role = self.roles.get(contract.lower())
        if role is None:
            raise ReadReverted(f"no contract at {contract}")
        handler = getattr(self, f"_read_{method}", None)
        if handler is None:
            raise ReadReverted(f"{role.value} has no method {method}")
        return handler(role, *args)

    def _read_getTier(self, role, account):
        return self.tiers.get(account.lower(), 0)

    def _read_getActiveStakes(self, role, account):
        stakes = self.stakes.get(account.lower())
        if not stakes:
            raise ReadReverted("NoStakedTokensFound")
        return list(stakes)

    def _read_getStakeUsage(self, role, account):
        total = sum(s[0] for s in self.stakes.get(account.lower(), []))
        return self.stake_usage.get(account.lower(), (total, 0, total))

    def _read_balanceOf(self, role, account):
        if role is ContractRole.INVOICE_NFT:
            return sum(1 for owner in self.owners.values() if owner.lower() == account.lower())
        return self.balances.get((role, account.lower()), 0)

    def _read_allowance(self, role, owner, spender):
        return self.allowances.get((role, owner.lower(), spender.lower()), 0)

    def _read_tokenOfOwnerByIndex(self, role, account, index):
        if not self.enumerable:
            raise ReadReverted("function selector was not recognized")
        owned = sorted(t for t, o in self.owners.items() if o.lower() == account.lower())
        if index >= len(owned):
            raise ReadReverted("ERC721Enumerable: owner index out of bounds")
        return owned[index]

    def _read_ownerOf(self, role, token_id):
        if token_id not in self.owners:
            raise ReadReverted("ERC721: invalid token ID")
        return self.owners[token_id]

    def _read_getInvoiceDetails(self, role, token_id):
        if token_id not in self.invoices:
            raise ReadReverted("Invoice does not exist")
        return dict(self.invoices[token_id])

    def _read_getApproved(self, role, token_id):
        if token_id not in self.owners:
            raise ReadReverted("ERC721: invalid token ID")
        return self.approvals.get(token_id, "0x0000000000000000000000000000000000000000")

    def _read_isApprovedForAll(self, role, owner, operator):
        return (owner.lower(), operator.lower()) in self.operators

    def _read_VERIFIER_ROLE(self, role):
        return VERIFIER_ROLE

    def _read_hasRole(self, role, role_id, account):
        return role_id == VERIFIER_ROLE and account.lower() in self.verifiers

    def _read_getUserActiveLoans(self, role, account):
        return [
            token_id for (borrower, token_id), loan in self.loans.items()
            if borrower == account.lower() and not loan[2] and not loan[3]
        ]

    def _read_getUserLoanDetails(self, role, account, token_id):
        loan = self.loans.get((account.lower(), token_id))
        if loan is None:
            raise ReadReverted("Loan not found or not active")
        return loan

    def _read_getLPActiveDeposits(self, role, account):
        return list(self.deposits.get(account.lower(), []))

    def _read_getLPInterest(self, role, account):
        return self.lp_interest.get(account.lower(), 0)

    def _read_platformFees(self, role):
        return self.platform_fees

    def _read_totalDeposits(self, role):
        return self.total_deposits

    def _read_totalBorrowed(self, role):
        return self.total_borrowed

    def _read_getSafeLendingAmount(self, role):
        if self.safe_lending is None:
            raise ReadReverted("getSafeLendingAmount unavailable")
        return self.safe_lending

    # ------------------------------------------------------------------
    # Effects of confirmed writes
    # ------------------------------------------------------------------

    def apply(self, sender: str, contract: str, method: str, args: Sequence[Any]) -> None:
        role = self.roles[contract.lower()]
        sender = sender.lower()
        if method == "approve" and role is ContractRole.INVOICE_NFT:
            spender, token_id = args
            self.approvals[token_id] = spender
        elif method == "approve":
            spender, amount = args
            self.allowances[(role, sender, spender.lower())] = amount
        elif method == "depositInvoiceAndBorrow":
            token_id, amount = args
            self.owners[token_id] = self.pool
            self.approvals.pop(token_id, None)
            due = self.invoices[token_id]["dueDate"]
            self.loans[(sender, token_id)] = (amount, due, False, False, 0)
            self.total_borrowed += amount
        elif method == "stake":
            amount, duration = args
            start = to_timestamp(self.now) if self.now else 0
            self.stakes.setdefault(sender, []).append((amount, amount, start, start, duration))
            key = (ContractRole.STAKE_TOKEN, sender)
            self.balances[key] = self.balances.get(key, 0) - amount
        elif method == "verifyInvoice":
            (token_id,) = args
            self.invoices[token_id]["isVerified"] = True
        elif method == "repay":
            (token_id,) = args
            principal, due, _, liquidated, interest = self.loans[(sender, token_id)]
            self.loans[(sender, token_id)] = (principal, due, True, liquidated, interest)
            self.total_borrowed -= principal
            self.burn_invoice(token_id)
        elif method == "liquidate":
            token_id, borrower = args
            principal, due, repaid, _, interest = self.loans[(borrower.lower(), token_id)]
            self.loans[(borrower.lower(), token_id)] = (principal, due, repaid, True, interest)
            self.total_borrowed -= principal
        elif method == "withdrawPlatformFees":
            self.platform_fees = 0
        elif method == "slashStakedTokens":
            (staker,) = args
            self.stakes.pop(staker.lower(), None)


# =============================================================================
# FAKE GATEWAY
# =============================================================================

class FakeGateway:
    """
    Instrumented LedgerGateway over a FakeChain.

    Every call is appended to `log` as a tuple:
        ("read", method)
        ("submit", method, args)
        ("await", method)           entering the confirmation wait
        ("outcome", method, kind)   leaving it (ok / revert / timeout)

    Writes succeed by default; script() queues outcomes per method name.
    """

    def __init__(self, chain: FakeChain, sender: str = "0xsender"):
        self.chain = chain
        self.sender = sender
        self.log: List[Tuple[Any, ...]] = []
        self._scripts: Dict[str, List[Outcome]] = {}
        self._pending: Dict[str, Tuple[str, str, Tuple[Any, ...], Outcome]] = {}
        self._counter = 0
        self.on_submit: Optional[Callable[[str], None]] = None

    def script(self, method: str, *outcomes: Outcome) -> None:
        self._scripts.setdefault(method, []).extend(outcomes)

    # LedgerGateway -----------------------------------------------------

    def read(self, contract: str, method: str, args: Sequence[Any] = ()) -> Any:
        self.log.append(("read", method))
        return self.chain.read(contract, method, tuple(args))

    def submit(self, contract: str, method: str, args: Sequence[Any] = (), value: int = 0) -> SubmissionHandle:
        self.log.append(("submit", method, tuple(args)))
        if self.on_submit is not None:
            self.on_submit(method)
        queue = self._scripts.get(method)
        outcome = queue.pop(0) if queue else OK
        if outcome.kind == "reject":
            raise SubmissionRejected(outcome.reason, code=outcome.code)
        self._counter += 1
        reference = f"0x{self._counter:064x}"
        self._pending[reference] = (contract, method, tuple(args), outcome)
        return SubmissionHandle(reference, contract, method)

    def await_confirmation(self, handle: SubmissionHandle, timeout: float) -> Confirmation:
        self.log.append(("await", handle.method))
        contract, method, args, outcome = self._pending.pop(handle.reference)
        if outcome.applies:
            self.chain.apply(self.sender, contract, method, args)
        self.log.append(("outcome", method, outcome.kind))
        if outcome.kind == "timeout":
            raise ConfirmationTimeout(f"{method} not confirmed within {timeout}s")
        if outcome.kind == "revert":
            return Confirmation(handle, succeeded=False, revert_reason=outcome.reason, block_number=1)
        return Confirmation(handle, succeeded=True, block_number=1)

    # Inspection --------------------------------------------------------

    def submitted_methods(self) -> List[str]:
        return [entry[1] for entry in self.log if entry[0] == "submit"]

    def writes(self) -> List[Tuple[Any, ...]]:
        return [entry for entry in self.log if entry[0] != "read"]
