"""
conftest.py - Shared pytest fixtures for creditflow tests

Provides common fixtures used across unit, conformance and functional tests:
- A test deployment config with short, readable contract addresses
- A controllable clock (wall and monotonic time move together)
- A FakeChain / FakeGateway pair and a CreditClient wired to them
- A borrower ledger: Bronze tier, one verified invoice, a funded pool
"""

import pytest
from datetime import timedelta
from decimal import Decimal

from creditflow import CollateralTier, CreditClient

from tests.fake_gateway import (
    ALICE, NOW, FakeChain, FakeClock, FakeGateway, make_config,
)


# =============================================================================
# BASIC FIXTURES
# =============================================================================

@pytest.fixture
def config():
    return make_config()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def chain(config):
    """Empty ledger with a pool holding 100000 and nothing borrowed."""
    chain = FakeChain(config)
    chain.now = NOW
    chain.set_pool(Decimal("100000"), Decimal("0"))
    return chain


@pytest.fixture
def gateway(chain):
    """Gateway that signs as ALICE."""
    return FakeGateway(chain, sender=ALICE)


@pytest.fixture
def client(gateway, config, clock):
    return CreditClient(gateway, config, clock=clock, monotonic=clock.monotonic)


# =============================================================================
# SCENARIO FIXTURES
# =============================================================================

@pytest.fixture
def borrower_chain(chain):
    """
    ALICE is Bronze with a verified 50000 invoice (token 1) due in 30 days.
    No NFT approval has been granted to the pool.
    """
    chain.set_tier(ALICE, CollateralTier.BRONZE)
    chain.add_stake(ALICE, Decimal("1500"), NOW - timedelta(days=10), timedelta(days=90))
    chain.add_invoice(1, supplier=ALICE, face=Decimal("50000"), due=NOW + timedelta(days=30))
    chain.fund(ALICE, stable=Decimal("5000"), stake=Decimal("500"))
    return chain
