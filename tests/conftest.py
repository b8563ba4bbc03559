"""
Shared fixtures.

Every test gets a fresh InMemoryChain with the platform admin as the engine
signer, plus well-known accounts for a merchant, an NGO, a beneficiary and
a donor.
"""

import pytest

from dashboard.sheaid_engine.chain.memory import InMemoryChain
from dashboard.sheaid_engine.lifecycle.orchestrator import LifecycleOrchestrator
from dashboard.sheaid_engine.lifecycle.tracker import InFlightTracker
from dashboard.sheaid_engine.model import EntityKey, EntityKind
from dashboard.sheaid_engine.projection.projector import ReconciliationProjector
from dashboard.sheaid_engine.store.memory import InMemoryOffChainStore

from .helpers import BENEFICIARY, MERCHANT, NGO


@pytest.fixture
def chain():
    return InMemoryChain()


@pytest.fixture
def admin(chain):
    return chain.client_for(chain.admin)


@pytest.fixture
def merchant_client(chain):
    return chain.client_for(MERCHANT)


@pytest.fixture
def ngo_client(chain):
    return chain.client_for(NGO)


@pytest.fixture
def store():
    return InMemoryOffChainStore()


@pytest.fixture
def tracker():
    return InFlightTracker()


@pytest.fixture
def orchestrator(admin, store, tracker):
    return LifecycleOrchestrator(admin, store, tracker=tracker, confirmation_timeout=2.0)


@pytest.fixture
def projector(admin, store, tracker):
    return ReconciliationProjector(admin, store, tracker=tracker)


@pytest.fixture
def merchant_key():
    return EntityKey.of(EntityKind.MERCHANT, MERCHANT)


@pytest.fixture
def ngo_key():
    return EntityKey.of(EntityKind.NGO, NGO)


@pytest.fixture
def beneficiary_key():
    return EntityKey.of(EntityKind.BENEFICIARY, BENEFICIARY)
