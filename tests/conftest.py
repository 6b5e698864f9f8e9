"""
conftest.py - Shared pytest fixtures for settlement ledger tests

Provides common fixtures used across unit, conformance and functional tests:
- In-memory stores (plain and fault-injecting)
- Engines in compatibility, atomic and audit configurations
- The reference ledger address
"""

import pytest

from settlement_ledger import LedgerEngine

from tests.fake_store import FakeStore
from tests.ledger_helpers import ADDRESS


# =============================================================================
# STORE FIXTURES
# =============================================================================

@pytest.fixture
def store():
    """Empty in-memory store."""
    return FakeStore()


@pytest.fixture
def address():
    """Ledger address used throughout the suite."""
    return ADDRESS


# =============================================================================
# ENGINE FIXTURES
# =============================================================================

@pytest.fixture
def engine(store):
    """Engine issuing the unguarded call sequence."""
    return LedgerEngine(store)


@pytest.fixture
def atomic_engine(store):
    """Engine committing each transfer as one batch."""
    return LedgerEngine(store, atomic=True)


@pytest.fixture
def audit_engine(store):
    """Engine that appends each applied transfer to the audit log."""
    return LedgerEngine(store, audit=True)
