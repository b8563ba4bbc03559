"""
Unit tests for ReconciliationProjector.

Tests cover:
- Self-healing of missing store records
- Store status convergence toward the chain
- Restoring off-chain role grants of approved accounts
- Stale views during chain outages
- Discarding reads older than our own confirmed writes
- Project financials
"""

import pytest

from dashboard.sheaid_engine.lifecycle import LifecycleAction
from dashboard.sheaid_engine.model import EntityKey, EntityKind
from dashboard.sheaid_engine.money import to_base_units
from dashboard.sheaid_engine.status import LifecycleStatus

from ..helpers import BENEFICIARY, DONOR, MERCHANT, NGO, active_project, approved, register

S = LifecycleStatus


class TestSelfHealing:
    """Tests for recreating and converging store records."""

    @pytest.mark.asyncio
    async def test_recreates_record_after_step_three_failure(self, orchestrator, projector, chain, store, merchant_key):
        store.fail_next("insert", "merchants")
        result = await register(
            orchestrator, chain, EntityKind.MERCHANT, MERCHANT, name="Shop", metadata="Groceries"
        )
        assert result.failed_step == 3

        view = await projector.project(merchant_key)

        assert view.repaired
        assert view.status is S.PENDING
        record = await store.find_by_chain_key("merchants", MERCHANT)
        assert record.status == "pending"
        assert record.data["name"] == "Shop"
        assert record.data["stake"] == "100"
        assert record.data["repaired"] is True
        assert view.off_chain_id == record.id
        assert projector.get_stats()["repairs"] == 1

    @pytest.mark.asyncio
    async def test_projection_is_idempotent(self, orchestrator, projector, chain, store, merchant_key):
        store.fail_next("insert", "merchants")
        await register(orchestrator, chain, EntityKind.MERCHANT, MERCHANT)

        first = await projector.project(merchant_key)
        second = await projector.project(merchant_key)

        assert first == second
        assert not second.repaired
        assert len(await store.query("merchants")) == 1
        assert projector.get_stats()["repairs"] == 1

    @pytest.mark.asyncio
    async def test_converges_status_after_failed_store_update(self, orchestrator, projector, chain, store, merchant_key):
        await register(orchestrator, chain, EntityKind.MERCHANT, MERCHANT)
        store.fail_next("update", "merchants")
        result = await orchestrator.transition(merchant_key, LifecycleAction.APPROVE)
        assert result.failed_step == 2
        assert result.status is S.APPROVED
        assert (await store.find_by_chain_key("merchants", MERCHANT)).status == "pending"

        view = await projector.project(merchant_key)

        assert view.status is S.APPROVED
        assert view.roles == ("merchant",)
        record = await store.find_by_chain_key("merchants", MERCHANT)
        assert record.status == "approved"
        assert record.reviewed_at is not None
        assert projector.get_stats()["convergence_writes"] == 1

    @pytest.mark.asyncio
    async def test_restores_role_grant_after_failed_grant_step(self, orchestrator, projector, chain, store, merchant_key):
        await register(orchestrator, chain, EntityKind.MERCHANT, MERCHANT)
        store.fail_next("grant_role")
        result = await orchestrator.transition(merchant_key, LifecycleAction.APPROVE)
        assert result.failed_step == 3
        assert await store.list_roles(MERCHANT) == []

        await projector.project(merchant_key)
        await projector.project(merchant_key)

        assert await store.list_roles(MERCHANT) == ["merchant"]
        assert projector.get_stats()["role_grants"] == 1

    @pytest.mark.asyncio
    async def test_role_grant_failure_retries_on_next_projection(self, orchestrator, projector, chain, store, ngo_key):
        await register(orchestrator, chain, EntityKind.NGO, NGO)
        store.fail_next("grant_role")
        await orchestrator.transition(ngo_key, LifecycleAction.APPROVE)

        store.fail_next("grant_role")
        view = await projector.project(ngo_key)
        assert view.status is S.APPROVED
        assert await store.list_roles(NGO) == []

        await projector.project(ngo_key)
        assert await store.list_roles(NGO) == ["ngo"]

    @pytest.mark.asyncio
    async def test_pending_account_gets_no_role(self, orchestrator, projector, chain, store, merchant_key):
        await register(orchestrator, chain, EntityKind.MERCHANT, MERCHANT)

        await projector.project(merchant_key)

        assert await store.list_roles(MERCHANT) == []
        assert projector.get_stats()["role_grants"] == 0

    @pytest.mark.asyncio
    async def test_rejection_is_kept(self, orchestrator, projector, chain, ngo_key):
        await register(orchestrator, chain, EntityKind.NGO, NGO)
        await orchestrator.transition(ngo_key, LifecycleAction.REJECT, {"reason": "incomplete"})

        view = await projector.project(ngo_key)

        assert view.status is S.REJECTED
        assert view.rejection_reason == "incomplete"
        assert view.roles == ()
        assert projector.get_stats()["convergence_writes"] == 0

    @pytest.mark.asyncio
    async def test_no_writes_while_in_flight(self, orchestrator, projector, chain, store, tracker, merchant_key):
        store.fail_next("insert", "merchants")
        await register(orchestrator, chain, EntityKind.MERCHANT, MERCHANT)

        tracker.begin(merchant_key, "resubmit")
        try:
            view = await projector.project(merchant_key)
        finally:
            tracker.finish(merchant_key)

        assert not view.repaired
        assert view.status is S.PENDING
        assert await store.find_by_chain_key("merchants", MERCHANT) is None

    @pytest.mark.asyncio
    async def test_closed_project_is_not_recreated(self, orchestrator, projector, chain, store):
        await approved(orchestrator, chain, EntityKind.NGO, NGO)
        key = await active_project(orchestrator, chain)
        chain.donate(key.numeric_id, DONOR, 10)
        chain.allocate(key.numeric_id, BENEFICIARY, 10)
        await orchestrator.transition(key, LifecycleAction.CLOSE_PROJECT, signer=chain.client_for(NGO))
        record = await store.find_by_chain_key("projects", key.chain_key)
        await store.delete("projects", record.id)

        view = await projector.project(key)

        assert view.status is S.CLOSED
        assert not view.repaired
        assert await store.find_by_chain_key("projects", key.chain_key) is None

    @pytest.mark.asyncio
    async def test_unregistered_entity(self, projector, store, merchant_key):
        view = await projector.project(merchant_key)

        assert view.status is S.UNREGISTERED
        assert view.off_chain_id is None
        assert await store.query("merchants") == []


class TestStaleness:
    """Tests for outages and read-your-writes."""

    @pytest.mark.asyncio
    async def test_outage_serves_last_known_view(self, orchestrator, projector, chain, merchant_key):
        await register(orchestrator, chain, EntityKind.MERCHANT, MERCHANT, name="Shop")
        fresh = await projector.project(merchant_key)

        chain.available = False
        view = await projector.project(merchant_key)

        assert view.stale
        assert view.status is fresh.status
        assert view.name == "Shop"
        assert projector.get_stats()["stale_served"] == 1

    @pytest.mark.asyncio
    async def test_outage_without_history_uses_store(self, orchestrator, projector, chain, ngo_key):
        await register(orchestrator, chain, EntityKind.NGO, NGO, name="Aid Org")
        chain.available = False

        view = await projector.project(ngo_key)

        assert view.stale
        assert view.status is S.PENDING
        assert view.name == "Aid Org"

    @pytest.mark.asyncio
    async def test_lagging_read_is_discarded(self, orchestrator, projector, chain, store, merchant_key):
        store.fail_next("insert", "merchants")
        await register(orchestrator, chain, EntityKind.MERCHANT, MERCHANT)
        chain.read_lag = 1

        view = await projector.project(merchant_key)

        assert view.stale
        assert not view.repaired
        assert await store.find_by_chain_key("merchants", MERCHANT) is None
        assert projector.get_stats()["discarded_reads"] == 1

        chain.read_lag = 0
        view = await projector.project(merchant_key)
        assert not view.stale
        assert view.repaired


class TestViews:
    """Tests for the merged fields of the view model."""

    @pytest.mark.asyncio
    async def test_store_fields_take_precedence_for_text(self, orchestrator, projector, chain, merchant_key):
        await register(
            orchestrator, chain, EntityKind.MERCHANT, MERCHANT,
            name="Shop", metadata="chain bio", description="Fresh produce",
            contact_email="shop@example.org",
        )

        view = await projector.project(merchant_key)

        assert view.name == "Shop"
        assert view.description == "Fresh produce"
        assert view.contact == {"contact_email": "shop@example.org"}
        assert view.details == {"stake": "100"}

    @pytest.mark.asyncio
    async def test_project_financials(self, orchestrator, projector, chain):
        await approved(orchestrator, chain, EntityKind.NGO, NGO)
        key = await active_project(orchestrator, chain, budget="1000")
        chain.donate(key.numeric_id, DONOR, to_base_units("300"))
        chain.allocate(key.numeric_id, BENEFICIARY, to_base_units("120"))

        view = await projector.project(key)

        assert view.status is S.ACTIVE
        assert view.name == "Clean Water"
        assert view.details["issuer"] == NGO
        assert view.financials.to_dict() == {
            "budget": "1000",
            "deposit": "1200",
            "donated_amount": "300",
            "remaining_funds": "180",
            "allocated_total": "120",
        }
        assert view.ledger_warnings == ()
        assert view.to_dict()["financials"]["remaining_funds"] == "180"

    @pytest.mark.asyncio
    async def test_product_view(self, orchestrator, projector, chain):
        merchant_key = await approved(orchestrator, chain, EntityKind.MERCHANT, MERCHANT)
        result = await orchestrator.transition(
            merchant_key, LifecycleAction.LIST_PRODUCT,
            {"category": "food", "price": "2.5", "metadata": "Rice 5kg"},
            signer=chain.client_for(MERCHANT),
        )

        view = await projector.project(result.key)

        assert view.status is S.ACTIVE
        assert view.name == "Rice 5kg"
        assert view.details["category"] == "food"
        assert view.details["price"] == "2.5"
        assert view.off_chain_id is None

    @pytest.mark.asyncio
    async def test_approved_beneficiary(self, orchestrator, projector, chain, beneficiary_key):
        await approved(orchestrator, chain, EntityKind.BENEFICIARY, BENEFICIARY, name="Amina")

        view = await projector.project(beneficiary_key)

        assert view.status is S.APPROVED
        assert view.roles == ("beneficiary",)
        assert view.name == "Amina"
        assert view.reviewed_at is not None

    @pytest.mark.asyncio
    async def test_to_dict(self, orchestrator, projector, chain, ngo_key):
        await register(orchestrator, chain, EntityKind.NGO, NGO, name="Aid Org")

        data = (await projector.project(ngo_key)).to_dict()

        assert data["key"] == str(ngo_key)
        assert data["kind"] == "ngo"
        assert data["status"] == "pending"
        assert data["stale"] is False
        assert data["financials"] is None
