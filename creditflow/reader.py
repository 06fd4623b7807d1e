"""
reader.py - Domain State Reader.

Turns ledger reads into typed domain entities. This is the only module that
calls LedgerGateway.read; every raw struct is decoded here (via the
entities' decode_* adapters) before anything else sees it.

Failure semantics:
    - Absence is a value: a single-entity lookup that reverts returns None.
    - ReadUnavailable (transport) always propagates from primary reads, so an
      unreachable ledger is never mistaken for an empty account.
    - Fan-out reads (a list of ids, then one read per id) fail per item: a
      failed item is logged and omitted, the rest are returned.
    - Invoice discovery falls back to a bounded ownerOf scan only when the
      enumerable index itself reverts; a transport failure during the scan
      propagates like any primary read.
"""

from __future__ import annotations
from datetime import datetime
from decimal import Decimal
import logging
import time
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from .config import DEFAULT_CONFIG, ProtocolConfig
from .core import (
    CollateralTier, ContractRole, LedgerGateway, ReadReverted, ReadUnavailable,
    ZERO, from_base_units, same_account, utc_now,
)
from .entities import (
    DomainSnapshot, Invoice, LPDeposit, Loan, PoolState, Stake, StakeUsage,
    calculate_tier, calculate_total_staked,
    decode_deposit, decode_invoice, decode_loan, decode_stake, decode_stake_usage,
)

logger = logging.getLogger(__name__)


class DomainStateReader:
    """
    Reads and decodes ledger state for one deployment.

    The reader holds no state between calls; every call goes to the ledger.
    It is safe to share between threads if the gateway is.
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
            clock: Wall clock used for as_of (must return aware datetimes).
            monotonic: Clock used to stamp snapshots for plan ageing.
        """
        self.gateway = gateway
        self.config = config
        self.clock = clock
        self.monotonic = monotonic

    # ========================================================================
    # SNAPSHOT
    # ========================================================================

    def snapshot(
        self,
        account: str,
        invoice_ids: Iterable[int] = (),
        loan_refs: Iterable[Tuple[str, int]] = (),
        stakers: Iterable[str] = (),
    ) -> DomainSnapshot:
        """
        Read everything needed to validate and plan for an account.

        Args:
            account: Account to read.
            invoice_ids: Extra invoices to include even if the account does
                not own them (e.g. the target of a borrow).
            loan_refs: Extra (borrower, token_id) loans to include (e.g. the
                target of a liquidation).
            stakers: Other accounts whose active stakes to include (e.g. the
                target of a slash).

        Raises:
            ReadUnavailable: A primary read could not be served.
        """
        as_of = self.clock()
        taken_at = self.monotonic()
        cfg = self.config
        pool_address = cfg.address_of(ContractRole.LENDING_POOL)

        stakes = self.read_stakes(account)
        tier = self.read_tier(account, stakes)

        invoices: Dict[int, Invoice] = {}
        for token_id in self.read_owned_invoice_ids(account):
            try:
                invoice = self.read_invoice(token_id)
            except (ReadUnavailable, ValueError) as exc:
                logger.warning("omitting invoice %s for %s: %s", token_id, account, exc)
                continue
            if invoice is not None:
                invoices[token_id] = invoice
        for token_id in invoice_ids:
            if token_id not in invoices:
                invoice = self.read_invoice(token_id)
                if invoice is not None:
                    invoices[token_id] = invoice

        loans = self.read_loans(account)
        for borrower, token_id in loan_refs:
            if token_id not in loans:
                loan = self.read_loan(borrower, token_id)
                if loan is not None:
                    loans[token_id] = loan

        # Invoices the pool holds for this supplier: the loan may be closed
        # (liquidated) and so missing from the active list.
        for token_id, invoice in invoices.items():
            if token_id in loans:
                continue
            if not (same_account(invoice.owner, pool_address) and same_account(invoice.supplier, account)):
                continue
            try:
                loan = self.read_loan(account, token_id)
            except (ReadUnavailable, ValueError) as exc:
                logger.warning("omitting loan %s for %s: %s", token_id, account, exc)
                continue
            if loan is not None:
                loans[token_id] = loan

        staker_stakes = {
            staker.lower(): self.read_stakes(staker)
            for staker in stakers
            if staker and not same_account(staker, account)
        }

        snapshot = DomainSnapshot(
            account=account,
            as_of=as_of,
            taken_at=taken_at,
            tier=tier,
            ltv_bps=cfg.ltv_bps(tier),
            stable_decimals=cfg.stable_token_decimals,
            lending_pool=pool_address,
            pool=self.read_pool(),
            stakes=stakes,
            stake_usage=self.read_stake_usage(account),
            stake_token_balance=self.read_balance(ContractRole.STAKE_TOKEN, account),
            stable_balance=self.read_balance(ContractRole.STABLE_TOKEN, account),
            stake_allowance=self.read_allowance(
                ContractRole.STAKE_TOKEN, account, ContractRole.STAKING),
            stable_allowance=self.read_allowance(
                ContractRole.STABLE_TOKEN, account, ContractRole.LENDING_POOL),
            pool_operator_approved=self.read_operator_approval(account),
            invoices=invoices,
            loans=loans,
            deposits=self.read_deposits(account),
            is_verifier=self.read_is_verifier(account),
            lp_interest=self.read_lp_interest(account),
            platform_fees=self.read_platform_fees(),
            staker_stakes=staker_stakes,
        )
        logger.debug(
            "snapshot %s: tier=%s invoices=%d loans=%d deposits=%d",
            account, tier.name, len(invoices), len(loans), len(snapshot.deposits),
        )
        return snapshot

    # ========================================================================
    # STAKING
    # ========================================================================

    def read_stakes(self, account: str) -> Tuple[Stake, ...]:
        """Active stakes; an account with none (the call reverts) has an empty tuple."""
        cfg = self.config
        try:
            raw_stakes = self._read(ContractRole.STAKING, "getActiveStakes", account)
        except ReadReverted:
            return ()
        stakes = []
        for index, raw in enumerate(raw_stakes or ()):
            try:
                stakes.append(decode_stake(
                    index, raw, cfg.stake_token_decimals, cfg.stake_apy_bps,
                    cfg.points_bonus_min_days, cfg.points_bonus_multiplier,
                ))
            except ValueError as exc:
                logger.warning("omitting stake %d for %s: %s", index, account, exc)
        return tuple(stakes)

    def read_tier(self, account: str, stakes: Optional[Sequence[Stake]] = None) -> CollateralTier:
        """
        Tier as reported by the ledger, or derived from the threshold table
        when the ledger's tier call reverts.
        """
        try:
            return CollateralTier.from_ledger(self._read(ContractRole.STAKING, "getTier", account))
        except ReadReverted:
            if stakes is None:
                stakes = self.read_stakes(account)
            tier = calculate_tier(calculate_total_staked(stakes), self.config.tier_thresholds)
            logger.info("getTier reverted for %s; derived tier %s", account, tier.name)
            return tier

    def read_stake_usage(self, account: str) -> Optional[StakeUsage]:
        try:
            raw = self._read(ContractRole.STAKING, "getStakeUsage", account)
        except ReadReverted:
            return None
        return decode_stake_usage(raw, self.config.stake_token_decimals)

    # ========================================================================
    # INVOICES
    # ========================================================================

    def read_invoice(self, token_id: int) -> Optional[Invoice]:
        """
        One invoice with its current owner and approval.

        Returns None when the ledger has no such invoice. A token whose
        details exist but whose owner lookup reverts has been burned.
        """
        try:
            raw = self._read(ContractRole.INVOICE_NFT, "getInvoiceDetails", token_id)
        except ReadReverted:
            return None

        owner: Optional[str] = None
        approved_to: Optional[str] = None
        is_burned = False
        try:
            owner = str(self._read(ContractRole.INVOICE_NFT, "ownerOf", token_id))
        except ReadReverted:
            is_burned = True
        if not is_burned:
            try:
                approved_to = str(self._read(ContractRole.INVOICE_NFT, "getApproved", token_id))
            except ReadReverted:
                approved_to = None
        return decode_invoice(
            token_id, raw, self.config.invoice_decimals,
            owner=owner, approved_to=approved_to, is_burned=is_burned,
        )

    def read_owned_invoice_ids(self, account: str) -> List[int]:
        """
        Token ids held by account, via the enumerable index.

        Falls back to scanning ids 1..invoice_scan_window when the index
        call reverts. Transport failures propagate instead.
        """
        try:
            count = int(self._read(ContractRole.INVOICE_NFT, "balanceOf", account))
        except ReadReverted:
            return self.scan_invoice_ids(account)
        if count == 0:
            return []

        token_ids: List[int] = []
        for index in range(count):
            try:
                token_ids.append(int(self._read(
                    ContractRole.INVOICE_NFT, "tokenOfOwnerByIndex", account, index)))
            except ReadReverted:
                if index == 0:
                    logger.info("invoice index unavailable for %s; scanning ids", account)
                    return self.scan_invoice_ids(account, expected=count)
                logger.warning("omitting invoice index %d for %s: reverted", index, account)
            except ReadUnavailable as exc:
                if index == 0:
                    raise
                logger.warning("omitting invoice index %d for %s: %s", index, account, exc)
        return token_ids

    def scan_invoice_ids(self, account: str, expected: Optional[int] = None) -> List[int]:
        """
        Bounded walk of ownerOf over 1..invoice_scan_window.

        A reverting ownerOf means the token does not exist. ReadUnavailable
        propagates: a skipped token could be one the account holds.
        """
        found: List[int] = []
        for token_id in range(1, self.config.invoice_scan_window + 1):
            if expected is not None and len(found) >= expected:
                break
            try:
                owner = self._read(ContractRole.INVOICE_NFT, "ownerOf", token_id)
            except ReadReverted:
                continue
            if same_account(str(owner), account):
                found.append(token_id)
        return found

    def read_operator_approval(self, account: str) -> bool:
        pool = self.config.address_of(ContractRole.LENDING_POOL)
        try:
            return bool(self._read(ContractRole.INVOICE_NFT, "isApprovedForAll", account, pool))
        except ReadReverted:
            return False

    def read_is_verifier(self, account: str) -> bool:
        try:
            role = self._read(ContractRole.INVOICE_NFT, "VERIFIER_ROLE")
            return bool(self._read(ContractRole.INVOICE_NFT, "hasRole", role, account))
        except ReadReverted:
            return False

    # ========================================================================
    # LOANS
    # ========================================================================

    def read_loans(self, account: str) -> Dict[int, Loan]:
        """Active loans of account keyed by backing token id."""
        try:
            loan_ids = self._read(ContractRole.LENDING_POOL, "getUserActiveLoans", account)
        except ReadReverted:
            return {}
        loans: Dict[int, Loan] = {}
        for token_id in loan_ids or ():
            token_id = int(token_id)
            try:
                loan = self.read_loan(account, token_id)
            except (ReadUnavailable, ValueError) as exc:
                logger.warning("omitting loan %s for %s: %s", token_id, account, exc)
                continue
            if loan is not None:
                loans[token_id] = loan
        return loans

    def read_loan(self, borrower: str, token_id: int) -> Optional[Loan]:
        try:
            raw = self._read(ContractRole.LENDING_POOL, "getUserLoanDetails", borrower, token_id)
        except ReadReverted:
            logger.debug("no loan %s for %s", token_id, borrower)
            return None
        return decode_loan(token_id, borrower, raw, self.config.stable_token_decimals)

    # ========================================================================
    # LIQUIDITY
    # ========================================================================

    def read_deposits(self, account: str) -> Tuple[LPDeposit, ...]:
        try:
            raw_deposits = self._read(ContractRole.LENDING_POOL, "getLPActiveDeposits", account)
        except ReadReverted:
            return ()
        deposits = []
        for index, raw in enumerate(raw_deposits or ()):
            try:
                deposits.append(decode_deposit(index, raw, self.config.stable_token_decimals))
            except ValueError as exc:
                logger.warning("omitting deposit %d for %s: %s", index, account, exc)
        return tuple(deposits)

    def read_lp_interest(self, account: str) -> Decimal:
        try:
            raw = self._read(ContractRole.LENDING_POOL, "getLPInterest", account)
        except ReadReverted:
            return ZERO
        return from_base_units(raw, self.config.stable_token_decimals)

    def read_platform_fees(self) -> Decimal:
        """Protocol fees held by the pool; zero when the deployment has no fee ledger."""
        try:
            raw = self._read(ContractRole.LENDING_POOL, "platformFees")
        except ReadReverted:
            return ZERO
        return from_base_units(raw, self.config.stable_token_decimals)

    def read_pool(self) -> PoolState:
        """Pool aggregates. Totals are required; the ceiling is advisory."""
        decimals = self.config.stable_token_decimals
        pool = self.config.address_of(ContractRole.LENDING_POOL)
        total_deposits = from_base_units(
            self._read(ContractRole.LENDING_POOL, "totalDeposits"), decimals)
        total_borrowed = from_base_units(
            self._read(ContractRole.LENDING_POOL, "totalBorrowed"), decimals)
        contract_balance = self.read_balance(ContractRole.STABLE_TOKEN, pool)

        ceiling: Optional[Decimal] = None
        try:
            ceiling = from_base_units(
                self._read(ContractRole.LENDING_POOL, "getSafeLendingAmount"), decimals)
        except (ReadReverted, ReadUnavailable) as exc:
            logger.warning("safe lending ceiling unavailable: %s", exc)

        return PoolState(
            total_deposits=total_deposits,
            total_borrowed=total_borrowed,
            contract_balance=contract_balance,
            safe_lending_ceiling=ceiling,
        )

    # ========================================================================
    # TOKENS
    # ========================================================================

    def read_balance(self, token: ContractRole, account: str) -> Decimal:
        return from_base_units(self._read(token, "balanceOf", account), self._decimals(token))

    def read_allowance(self, token: ContractRole, owner: str, spender: ContractRole) -> Decimal:
        raw = self._read(token, "allowance", owner, self.config.address_of(spender))
        return from_base_units(raw, self._decimals(token))

    # ------------------------------------------------------------------

    def _decimals(self, token: ContractRole) -> int:
        if token is ContractRole.STAKE_TOKEN:
            return self.config.stake_token_decimals
        if token is ContractRole.STABLE_TOKEN:
            return self.config.stable_token_decimals
        raise ValueError(f"{token.value} is not a fungible token")

    def _read(self, role: ContractRole, method: str, *args: Any) -> Any:
        return self.gateway.read(self.config.address_of(role), method, args)


# ============================================================================
# CONVENIENCE FUNCTIONS
# ============================================================================

def compute_domain_snapshot(
    gateway: LedgerGateway,
    account: str,
    config: ProtocolConfig = DEFAULT_CONFIG,
) -> DomainSnapshot:
    """Take a fresh snapshot of account with a throwaway reader."""
    return DomainStateReader(gateway, config).snapshot(account)
