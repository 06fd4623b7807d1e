"""
config.py - Immutable protocol configuration.

Everything the client needs to know about a deployment lives in one frozen
ProtocolConfig: contract addresses, token precisions, the collateral tier
tables, staking APY table, timing bounds and scan limits. A config is built
once and handed to the reader, validator, planner and executor; there are no
module-level mutable settings.

Build one with:
    ProtocolConfig(addresses=ContractAddresses(...))     # defaults for the rest
    ProtocolConfig.from_dict({...})                      # e.g. parsed JSON
    load_config("deployment.json")
"""

from __future__ import annotations
from dataclasses import dataclass, field, replace
from datetime import timedelta
from decimal import Decimal, InvalidOperation
import json
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Tuple, Union

from .core import (
    BPS_DENOMINATOR, CollateralTier, ConfigurationError, ContractRole,
)


# ============================================================================
# DEFAULT TABLES
# ============================================================================

# Minimum total stake (stake-token units) for each tier, lowest first.
DEFAULT_TIER_THRESHOLDS: Tuple[Tuple[CollateralTier, Decimal], ...] = (
    (CollateralTier.BRONZE, Decimal("1000")),
    (CollateralTier.SILVER, Decimal("2500")),
    (CollateralTier.GOLD, Decimal("5000")),
    (CollateralTier.DIAMOND, Decimal("10000")),
)

# Loan-to-value per tier in basis points of an invoice's face amount.
DEFAULT_TIER_LTV_BPS: Mapping[CollateralTier, int] = MappingProxyType({
    CollateralTier.NONE: 0,
    CollateralTier.BRONZE: 6000,
    CollateralTier.SILVER: 6500,
    CollateralTier.GOLD: 7000,
    CollateralTier.DIAMOND: 7500,
})

# (minimum lock in days, APY in basis points), shortest first.
DEFAULT_STAKE_APY_BPS: Tuple[Tuple[int, int], ...] = (
    (45, 100),
    (90, 300),
    (180, 500),
    (365, 800),
)

# Citrea testnet deployment (chain id 5115).
CITREA_TESTNET_CHAIN_ID = 5115


# ============================================================================
# CONTRACT ADDRESSES
# ============================================================================

@dataclass(frozen=True, slots=True)
class ContractAddresses:
    """Deployed address of every contract the client calls."""
    staking: str
    lending_pool: str
    invoice_nft: str
    stake_token: str
    stable_token: str

    def __post_init__(self):
        for role in ContractRole:
            value = getattr(self, role.value)
            if not isinstance(value, str) or not value.strip():
                raise ConfigurationError(f"Missing contract address for {role.value}")

    def address_of(self, role: ContractRole) -> str:
        return getattr(self, role.value)


CITREA_TESTNET_ADDRESSES = ContractAddresses(
    staking="0x7B9F3f7e4DB63810122b81E4E721850eD1F06Fe1",
    lending_pool="0xA6A6360B686B9c82f6AdD080284A964B79bF66ba",
    invoice_nft="0x914dE02C017228f51eeaEa278a41536644FC0406",
    stake_token="0xc1655e1B6820d86e8c947E86e78a7D2ed47909C5",
    stable_token="0x008cD4B0AFF52E1f08D94dd7bdC3548e7c5b52ba",
)


# ============================================================================
# PROTOCOL CONFIG
# ============================================================================

@dataclass(frozen=True, slots=True)
class ProtocolConfig:
    """
    Immutable deployment and policy configuration.

    Attributes:
        addresses: Contract addresses.
        chain_id: Chain the addresses belong to.
        stake_token_decimals: Precision of the staking token.
        stable_token_decimals: Precision of the lending currency.
        invoice_decimals: Precision of invoice face amounts.
        tier_thresholds: (tier, minimum total stake) pairs, ascending.
        tier_ltv_bps: LTV in basis points per tier. NONE must map to 0. Read-only
            once the config is built.
        stake_apy_bps: (minimum days, APY bps) pairs, ascending.
        points_bonus_min_days: Stakes at least this long earn the bonus multiplier.
        points_bonus_multiplier: Points multiplier for long stakes.
        min_stake_duration / max_stake_duration: Accepted stake lock range.
        confirmation_timeout: Seconds to wait for each step's confirmation.
        poll_interval: Seconds between receipt polls in PollingGateway.
        invoice_scan_window: Highest token id scanned in degraded invoice discovery.
        repay_buffer: Extra stable-token allowance granted on repay approvals.
        max_plan_age: Seconds after which a Plan's snapshot is too old to execute.
    """
    addresses: ContractAddresses
    chain_id: int = CITREA_TESTNET_CHAIN_ID
    stake_token_decimals: int = 18
    stable_token_decimals: int = 6
    invoice_decimals: int = 6
    tier_thresholds: Tuple[Tuple[CollateralTier, Decimal], ...] = DEFAULT_TIER_THRESHOLDS
    tier_ltv_bps: Mapping[CollateralTier, int] = field(
        default_factory=lambda: DEFAULT_TIER_LTV_BPS
    )
    stake_apy_bps: Tuple[Tuple[int, int], ...] = DEFAULT_STAKE_APY_BPS
    points_bonus_min_days: int = 180
    points_bonus_multiplier: int = 2
    min_stake_duration: timedelta = timedelta(minutes=3)
    max_stake_duration: timedelta = timedelta(days=365)
    confirmation_timeout: float = 60.0
    poll_interval: float = 2.0
    invoice_scan_window: int = 50
    repay_buffer: Decimal = Decimal("1")
    max_plan_age: float = 30.0

    def __post_init__(self):
        """Coerce numeric inputs to Decimal and check the tables are coherent."""
        if not isinstance(self.repay_buffer, Decimal):
            object.__setattr__(self, 'repay_buffer', _to_decimal(self.repay_buffer, "repay_buffer"))

        thresholds = tuple(
            (tier, value if isinstance(value, Decimal) else _to_decimal(value, f"threshold {tier.name}"))
            for tier, value in self.tier_thresholds
        )
        object.__setattr__(self, 'tier_thresholds', thresholds)
        object.__setattr__(self, 'tier_ltv_bps', MappingProxyType(dict(self.tier_ltv_bps)))

        previous = Decimal("0")
        for tier, minimum in thresholds:
            if tier is CollateralTier.NONE:
                raise ConfigurationError("Tier NONE cannot have a stake threshold")
            if minimum <= previous:
                raise ConfigurationError(
                    f"Tier thresholds must be strictly increasing: {tier.name} at {minimum}"
                )
            previous = minimum

        for tier, bps in self.tier_ltv_bps.items():
            if not 0 <= bps <= BPS_DENOMINATOR:
                raise ConfigurationError(f"LTV for {tier.name} out of range: {bps} bps")
        if self.tier_ltv_bps.get(CollateralTier.NONE, 0) != 0:
            raise ConfigurationError("Tier NONE must have zero LTV")

        last_days = 0
        for days, bps in self.stake_apy_bps:
            if days <= last_days:
                raise ConfigurationError("APY table durations must be strictly increasing")
            if bps < 0:
                raise ConfigurationError(f"APY for {days} days cannot be negative")
            last_days = days

        if self.min_stake_duration <= timedelta(0):
            raise ConfigurationError("min_stake_duration must be positive")
        if self.max_stake_duration < self.min_stake_duration:
            raise ConfigurationError("max_stake_duration is shorter than min_stake_duration")
        if self.confirmation_timeout <= 0:
            raise ConfigurationError("confirmation_timeout must be positive")
        if self.poll_interval <= 0:
            raise ConfigurationError("poll_interval must be positive")
        if self.invoice_scan_window < 0:
            raise ConfigurationError("invoice_scan_window cannot be negative")
        if self.repay_buffer < 0:
            raise ConfigurationError("repay_buffer cannot be negative")
        if self.max_plan_age <= 0:
            raise ConfigurationError("max_plan_age must be positive")

    def address_of(self, role: ContractRole) -> str:
        return self.addresses.address_of(role)

    def ltv_bps(self, tier: CollateralTier) -> int:
        """LTV for a tier; tiers missing from the table lend nothing."""
        return self.tier_ltv_bps.get(tier, 0)

    def with_overrides(self, **changes: Any) -> 'ProtocolConfig':
        """Return a copy with some fields replaced (validated again)."""
        return replace(self, **changes)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> 'ProtocolConfig':
        """
        Build a config from plain data (e.g. parsed JSON).

        Durations are given in seconds, tiers by name, amounts as strings or
        numbers. Unknown keys are rejected so typos surface immediately.
        """
        known = set(cls.__dataclass_fields__)
        unknown = set(data) - known
        if unknown:
            raise ConfigurationError(f"Unknown config keys: {sorted(unknown)}")
        if "addresses" not in data:
            raise ConfigurationError("Config requires 'addresses'")

        kwargs: Dict[str, Any] = {}
        addresses = data["addresses"]
        if isinstance(addresses, ContractAddresses):
            kwargs["addresses"] = addresses
        else:
            try:
                kwargs["addresses"] = ContractAddresses(**addresses)
            except TypeError as exc:
                raise ConfigurationError(f"Invalid addresses: {exc}") from exc

        for key in ("chain_id", "stake_token_decimals", "stable_token_decimals",
                    "invoice_decimals", "points_bonus_min_days",
                    "points_bonus_multiplier", "invoice_scan_window"):
            if key in data:
                kwargs[key] = int(data[key])
        for key in ("confirmation_timeout", "poll_interval", "max_plan_age"):
            if key in data:
                kwargs[key] = float(data[key])
        for key in ("min_stake_duration", "max_stake_duration"):
            if key in data:
                kwargs[key] = timedelta(seconds=float(data[key]))
        if "repay_buffer" in data:
            kwargs["repay_buffer"] = _to_decimal(data["repay_buffer"], "repay_buffer")
        if "tier_thresholds" in data:
            kwargs["tier_thresholds"] = tuple(
                (_tier(name), _to_decimal(value, f"threshold {name}"))
                for name, value in data["tier_thresholds"].items()
            )
        if "tier_ltv_bps" in data:
            ltv = {CollateralTier.NONE: 0}
            ltv.update({_tier(name): int(bps) for name, bps in data["tier_ltv_bps"].items()})
            kwargs["tier_ltv_bps"] = ltv
        if "stake_apy_bps" in data:
            kwargs["stake_apy_bps"] = tuple(
                sorted((int(days), int(bps)) for days, bps in data["stake_apy_bps"].items())
            )
        return cls(**kwargs)


def _to_decimal(value: Any, what: str) -> Decimal:
    try:
        result = Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise ConfigurationError(f"Invalid number for {what}: {value!r}") from exc
    if not result.is_finite():
        raise ConfigurationError(f"Invalid number for {what}: {value!r}")
    return result


def _tier(name: str) -> CollateralTier:
    try:
        return CollateralTier[str(name).upper()]
    except KeyError:
        raise ConfigurationError(f"Unknown collateral tier: {name!r}")


def load_config(path: Union[str, Path], overrides: Optional[Mapping[str, Any]] = None) -> ProtocolConfig:
    """Load a ProtocolConfig from a JSON file, optionally overriding keys."""
    try:
        data = json.loads(Path(path).read_text())
    except (OSError, json.JSONDecodeError) as exc:
        raise ConfigurationError(f"Cannot read config {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigurationError(f"Config {path} must contain a JSON object")
    if overrides:
        data.update(overrides)
    return ProtocolConfig.from_dict(data)


DEFAULT_CONFIG = ProtocolConfig(addresses=CITREA_TESTNET_ADDRESSES)
