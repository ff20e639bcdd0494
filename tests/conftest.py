"""
conftest.py - Shared pytest fixtures for staking pool tests

Provides common fixtures used across unit, conformance and functional tests:
- Basic ledgers (empty, pool-ready)
- Pools with seasoned stakers (eligible to vote)
- Settlement gateways (recording, failing)
"""

import pytest

from stakepool import (
    Ledger, CreditVerification, InstantSettlement, PoolConfig,
)

from tests.fake_gateway import FailingSettlement
from tests.pool_helpers import T0, make_pool, seasoned


# =============================================================================
# BASIC FIXTURES
# =============================================================================

@pytest.fixture
def empty_ledger():
    """Fresh ledger with no registrations."""
    return Ledger("test", T0, verbose=False)


@pytest.fixture
def gateway():
    return InstantSettlement()


@pytest.fixture
def pool(gateway):
    """Empty pool with default terms at T0."""
    return make_pool(gateway=gateway)


@pytest.fixture
def seasoned_pool(pool):
    """
    Pool where alice (1000), bob (300) and carol (100) staked at T0 and
    the clock stands at T0 + 8 days, so all three may vote.
    """
    return seasoned(pool)


@pytest.fixture
def failing_gateway():
    """Gateway that refuses every batch until told otherwise."""
    return FailingSettlement()


@pytest.fixture
def verified_pool_and_oracle():
    """Pool that requires a risk note, with an oracle owned by 'acme'."""
    pool = make_pool(config=PoolConfig(require_verified_borrower=True))
    oracle = CreditVerification(pool.ledger, owner="acme")
    return pool, oracle
