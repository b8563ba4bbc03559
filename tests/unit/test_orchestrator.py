"""
Unit tests for LifecycleOrchestrator.

Tests cover:
- Stake-and-register sequencing and partial failures
- Approval and rejection
- Project creation and closure
- Product listing and price updates
- The per-entity concurrency guard, timeouts and abandonment, before and
  after a transaction is submitted
"""

import asyncio
import dataclasses

import pytest

from dashboard.sheaid_engine.errors import (
    InvalidAmount,
    InvalidParameters,
    InvalidTransition,
    ProjectResolutionAmbiguous,
    StoreError,
    TransactionFailed,
    TransactionTimeout,
    TransitionInProgress,
)
from dashboard.sheaid_engine.lifecycle import (
    LifecycleAction,
    LifecycleOrchestrator,
    StepKind,
)
from dashboard.sheaid_engine.model import EntityKey, EntityKind
from dashboard.sheaid_engine.money import to_base_units
from dashboard.sheaid_engine.status import LifecycleStatus

from ..helpers import BENEFICIARY, DONOR, MERCHANT, NGO, active_project, approved, register

A = LifecycleAction
S = LifecycleStatus


async def _until(predicate):
    for _ in range(1000):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition never became true")


class _GatedClient:
    """Holds every read until the gate opens."""

    def __init__(self, inner):
        self._inner = inner
        self.gate = asyncio.Event()
        self.waiting = False

    def __getattr__(self, name):
        return getattr(self._inner, name)

    async def call(self, contract, method, args=()):
        self.waiting = True
        await self.gate.wait()
        return await self._inner.call(contract, method, args)


class _EventlessHandle:
    def __init__(self, inner):
        self._inner = inner

    @property
    def tx_hash(self):
        return self._inner.tx_hash

    async def wait(self, timeout):
        receipt = await self._inner.wait(timeout)
        return dataclasses.replace(receipt, events=[])


class _EventlessSigner:
    """Signer whose receipts come back without decoded events."""

    def __init__(self, inner):
        self._inner = inner

    def __getattr__(self, name):
        return getattr(self._inner, name)

    async def send(self, contract, method, args=()):
        return _EventlessHandle(await self._inner.send(contract, method, args))


class TestRegister:
    """Tests for the stake-and-register sequence."""

    @pytest.mark.asyncio
    async def test_register_merchant(self, orchestrator, chain, store, merchant_key):
        result = await register(
            orchestrator, chain, EntityKind.MERCHANT, MERCHANT,
            name="Shop", metadata="bio", contact_email="shop@example.org",
        )

        assert result.success
        assert result.status is S.PENDING
        assert [s.name for s in result.steps] == [
            "MockToken.approve",
            "MerchantRegistry.registerMerchant",
            "merchants.insert",
        ]
        assert [s.kind for s in result.steps] == [StepKind.CHAIN, StepKind.CHAIN, StepKind.STORE]
        assert result.steps[0].block_number < result.steps[1].block_number

        record = await store.find_by_chain_key("merchants", MERCHANT)
        assert record.id == result.off_chain_id
        assert record.status == "pending"
        assert record.data["contact_email"] == "shop@example.org"
        assert record.data["stake"] == "100"

    @pytest.mark.asyncio
    async def test_approve_precedes_register_with_same_amount(self, orchestrator, chain):
        await register(orchestrator, chain, EntityKind.MERCHANT, MERCHANT, name="Shop", metadata="bio")

        stake = to_base_units("100")
        sender, contract, method, args = chain.sent[0]
        assert (sender, contract, method) == (MERCHANT, "MockToken", "approve")
        assert args == [chain.addresses["MerchantRegistry"], stake]
        assert chain.sent[1][2:] == ("registerMerchant", ["Shop", "bio", stake])

    @pytest.mark.asyncio
    async def test_step_one_failure_sends_nothing_further(self, orchestrator, chain, store, merchant_key):
        chain.fail_next("MockToken", "approve")

        result = await register(
            orchestrator, chain, EntityKind.MERCHANT, MERCHANT, name="Shop", metadata="bio"
        )

        assert not result.success
        assert result.failed_step == 1
        assert isinstance(result.error, TransactionFailed)
        assert result.status is S.UNREGISTERED
        assert result.steps == []
        assert chain.sends_of("registerMerchant") == []
        assert await store.find_by_chain_key("merchants", MERCHANT) is None
        assert await orchestrator.current_status(merchant_key) is S.UNREGISTERED

    @pytest.mark.asyncio
    async def test_step_two_failure_stops_before_store(self, orchestrator, chain, store, merchant_key):
        chain.fail_next("MerchantRegistry", "registerMerchant")

        result = await register(
            orchestrator, chain, EntityKind.MERCHANT, MERCHANT, name="Shop", metadata="bio"
        )

        assert not result.success
        assert result.failed_step == 2
        assert isinstance(result.error, TransactionFailed)
        assert result.status is S.UNREGISTERED
        assert [s.index for s in result.steps] == [1]
        assert await store.find_by_chain_key("merchants", MERCHANT) is None
        assert await orchestrator.current_status(merchant_key) is S.UNREGISTERED

    @pytest.mark.asyncio
    async def test_step_three_failure_keeps_chain_progress(self, orchestrator, chain, store, merchant_key):
        store.fail_next("insert", "merchants")

        result = await register(orchestrator, chain, EntityKind.MERCHANT, MERCHANT)

        assert not result.success
        assert result.failed_step == 3
        assert isinstance(result.error, StoreError)
        assert result.status is S.PENDING
        assert len(chain.sends_of("registerMerchant")) == 1
        assert await orchestrator.current_status(merchant_key) is S.PENDING

    @pytest.mark.asyncio
    async def test_must_be_signed_by_own_account(self, orchestrator, chain, merchant_key):
        with pytest.raises(InvalidParameters):
            await orchestrator.transition(
                merchant_key, A.REGISTER, {"name": "Shop", "stake": "100"}
            )
        assert chain.sent == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("stake", ["-1", "abc", "0"])
    async def test_bad_stake_sends_nothing(self, orchestrator, chain, stake):
        with pytest.raises(InvalidAmount):
            await register(orchestrator, chain, EntityKind.NGO, NGO, stake=stake)
        assert chain.sent == []

    @pytest.mark.asyncio
    async def test_missing_name(self, orchestrator, chain):
        with pytest.raises(InvalidParameters) as exc:
            await register(orchestrator, chain, EntityKind.NGO, NGO, name="  ")
        assert exc.value.details["field"] == "name"

    @pytest.mark.asyncio
    async def test_register_twice_is_invalid(self, orchestrator, chain):
        await register(orchestrator, chain, EntityKind.NGO, NGO)

        with pytest.raises(InvalidTransition):
            await register(orchestrator, chain, EntityKind.NGO, NGO)

    @pytest.mark.asyncio
    async def test_action_not_defined_for_kind(self, orchestrator):
        with pytest.raises(InvalidParameters):
            await orchestrator.transition(EntityKey.of(EntityKind.PROJECT, 1), A.APPROVE)

    @pytest.mark.asyncio
    async def test_beneficiary_application_is_store_only(self, orchestrator, chain, store, beneficiary_key):
        result = await register(
            orchestrator, chain, EntityKind.BENEFICIARY, BENEFICIARY,
            name="Amina", requested_amount="50",
        )

        assert result.success
        assert result.status is S.PENDING
        assert chain.sent == []
        record = await store.find_by_chain_key("applications", BENEFICIARY)
        assert record.data["name"] == "Amina"


class TestReview:
    """Tests for approval and rejection."""

    @pytest.mark.asyncio
    async def test_approve_merchant(self, orchestrator, chain, store, merchant_key):
        await register(orchestrator, chain, EntityKind.MERCHANT, MERCHANT)

        result = await orchestrator.transition(merchant_key, A.APPROVE)

        assert result.success
        assert result.status is S.APPROVED
        assert chain.sends_of("approveMerchant")[0][0] == chain.admin
        record = await store.find_by_chain_key("merchants", MERCHANT)
        assert record.status == "approved"
        assert record.reviewed_at is not None
        assert await store.list_roles(MERCHANT) == ["merchant"]

    @pytest.mark.asyncio
    async def test_approve_beneficiary_grants_role(self, orchestrator, chain, beneficiary_key):
        await register(orchestrator, chain, EntityKind.BENEFICIARY, BENEFICIARY)

        result = await orchestrator.transition(beneficiary_key, A.APPROVE)

        assert result.success
        assert chain.sends_of("grantBeneficiaryRole")[0][3] == [BENEFICIARY]
        assert await orchestrator.current_status(beneficiary_key) is S.APPROVED

    @pytest.mark.asyncio
    async def test_reject_records_reason(self, orchestrator, chain, store, ngo_key):
        await register(orchestrator, chain, EntityKind.NGO, NGO)
        sent = len(chain.sent)

        result = await orchestrator.transition(ngo_key, A.REJECT, {"reason": "license expired"})

        assert result.success
        assert result.status is S.REJECTED
        assert len(chain.sent) == sent
        record = await store.find_by_chain_key("organizers", NGO)
        assert record.rejection_reason == "license expired"
        assert await orchestrator.current_status(ngo_key) is S.REJECTED

    @pytest.mark.asyncio
    async def test_reject_requires_reason(self, orchestrator, chain, ngo_key):
        await register(orchestrator, chain, EntityKind.NGO, NGO)

        with pytest.raises(InvalidParameters):
            await orchestrator.transition(ngo_key, A.REJECT, {})

    @pytest.mark.asyncio
    async def test_reject_from_approved_or_rejected_is_invalid(self, orchestrator, chain, ngo_key, merchant_key):
        await approved(orchestrator, chain, EntityKind.MERCHANT, MERCHANT)
        await register(orchestrator, chain, EntityKind.NGO, NGO)
        await orchestrator.transition(ngo_key, A.REJECT, {"reason": "no"})
        sent = len(chain.sent)

        with pytest.raises(InvalidTransition):
            await orchestrator.transition(merchant_key, A.REJECT, {"reason": "again"})
        with pytest.raises(InvalidTransition):
            await orchestrator.transition(ngo_key, A.REJECT, {"reason": "again"})
        assert len(chain.sent) == sent

    @pytest.mark.asyncio
    async def test_resubmit_after_rejection(self, orchestrator, chain, store, ngo_key):
        await register(orchestrator, chain, EntityKind.NGO, NGO)
        await orchestrator.transition(ngo_key, A.REJECT, {"reason": "blurry"})

        result = await orchestrator.transition(
            ngo_key, A.RESUBMIT, {"name": "Aid", "stake": "50"}, signer=chain.client_for(NGO)
        )

        assert result.success
        assert result.status is S.PENDING
        record = await store.find_by_chain_key("organizers", NGO)
        assert record.status == "pending"
        assert record.rejection_reason is None
        assert record.reviewed_at is None

    @pytest.mark.asyncio
    async def test_resubmit_only_after_rejection(self, orchestrator, chain, ngo_key):
        await register(orchestrator, chain, EntityKind.NGO, NGO)

        with pytest.raises(InvalidTransition):
            await orchestrator.transition(
                ngo_key, A.RESUBMIT, {"name": "Aid", "stake": "50"}, signer=chain.client_for(NGO)
            )


class TestProjects:
    """Tests for project creation and closure."""

    @pytest.mark.asyncio
    async def test_create_project_deposits_120_percent(self, orchestrator, chain, store, admin):
        await approved(orchestrator, chain, EntityKind.NGO, NGO)

        key = await active_project(orchestrator, chain, budget="1000")

        assert key == EntityKey.of(EntityKind.PROJECT, 1)
        assert chain.sends_of("approve")[-1][3] == [
            chain.addresses["ProjectVaultManager"],
            to_base_units("1200"),
        ]
        project = (await admin.call("ProjectVaultManager", "projects", [1])).value
        assert project["deposit"] == to_base_units("1200")

        record = await store.find_by_chain_key("projects", "1")
        assert record.status == "active"
        assert record.data["target_amount"] == "1000"
        assert record.data["deposit"] == "1200"
        assert record.data["issuer"] == NGO

    @pytest.mark.asyncio
    async def test_project_id_resolved_by_title_without_receipt_events(self, orchestrator, chain, store):
        await approved(orchestrator, chain, EntityKind.NGO, NGO)

        result = await orchestrator.transition(
            EntityKey.of(EntityKind.PROJECT, 0),
            A.CREATE_PROJECT,
            {"title": "Solar Lamps", "budget": "500"},
            signer=_EventlessSigner(chain.client_for(NGO)),
        )

        assert result.success
        assert result.key == EntityKey.of(EntityKind.PROJECT, 1)
        assert (await store.find_by_chain_key("projects", "1")).data["title"] == "Solar Lamps"

    @pytest.mark.asyncio
    async def test_unresolvable_project_id_is_a_step_three_failure(self, orchestrator, chain, store, tracker):
        await approved(orchestrator, chain, EntityKind.NGO, NGO)
        await active_project(orchestrator, chain, title="Clean Water")

        result = await orchestrator.transition(
            EntityKey.of(EntityKind.PROJECT, 0),
            A.CREATE_PROJECT,
            {"title": "Clean Water", "budget": "500"},
            signer=_EventlessSigner(chain.client_for(NGO)),
        )

        assert not result.success
        assert result.failed_step == 3
        assert isinstance(result.error, ProjectResolutionAmbiguous)
        assert result.status is S.ACTIVE
        assert [s.name for s in result.steps] == [
            "MockToken.approve",
            "ProjectVaultManager.createProject",
        ]
        assert await store.find_by_chain_key("projects", "2") is None
        assert not tracker.is_in_flight(EntityKey.of(EntityKind.NGO, NGO))

    @pytest.mark.asyncio
    async def test_unapproved_ngo_cannot_create(self, orchestrator, chain):
        await register(orchestrator, chain, EntityKind.NGO, NGO)
        sent = len(chain.sent)

        with pytest.raises(InvalidTransition):
            await active_project(orchestrator, chain)
        assert len(chain.sent) == sent

    @pytest.mark.asyncio
    async def test_close_requires_full_allocation(self, orchestrator, chain, store):
        await approved(orchestrator, chain, EntityKind.NGO, NGO)
        key = await active_project(orchestrator, chain)
        ngo = chain.client_for(NGO)

        with pytest.raises(InvalidTransition):
            await orchestrator.transition(key, A.CLOSE_PROJECT, signer=ngo)

        chain.donate(key.numeric_id, DONOR, 100)
        chain.allocate(key.numeric_id, BENEFICIARY, 60)
        with pytest.raises(InvalidTransition):
            await orchestrator.transition(key, A.CLOSE_PROJECT, signer=ngo)

        chain.allocate(key.numeric_id, BENEFICIARY, 40)
        result = await orchestrator.transition(key, A.CLOSE_PROJECT, signer=ngo)

        assert result.success
        assert result.status is S.CLOSED
        assert (await store.find_by_chain_key("projects", key.chain_key)).status == "closed"

    @pytest.mark.asyncio
    async def test_closed_project_is_terminal(self, orchestrator, chain):
        await approved(orchestrator, chain, EntityKind.NGO, NGO)
        key = await active_project(orchestrator, chain)
        chain.donate(key.numeric_id, DONOR, 10)
        chain.allocate(key.numeric_id, BENEFICIARY, 10)
        await orchestrator.transition(key, A.CLOSE_PROJECT, signer=chain.client_for(NGO))

        with pytest.raises(InvalidTransition):
            await orchestrator.transition(key, A.CLOSE_PROJECT, signer=chain.client_for(NGO))


class TestProducts:
    """Tests for product listing."""

    @pytest.mark.asyncio
    async def test_list_and_delist(self, orchestrator, chain):
        merchant_key = await approved(orchestrator, chain, EntityKind.MERCHANT, MERCHANT)
        merchant = chain.client_for(MERCHANT)

        result = await orchestrator.transition(
            merchant_key, A.LIST_PRODUCT,
            {"category": "food", "price": "2.5", "metadata": "Rice 5kg"},
            signer=merchant,
        )

        assert result.success
        assert result.key == EntityKey.of(EntityKind.PRODUCT, 1)
        assert result.status is S.ACTIVE

        result = await orchestrator.transition(
            result.key, A.SET_PRODUCT_ACTIVE, {"active": False}, signer=merchant
        )
        assert result.status is S.FROZEN
        assert await orchestrator.current_status(result.key) is S.FROZEN

    @pytest.mark.asyncio
    async def test_category_must_fit_bytes32(self, orchestrator, chain):
        merchant_key = await approved(orchestrator, chain, EntityKind.MERCHANT, MERCHANT)

        with pytest.raises(InvalidParameters):
            await orchestrator.transition(
                merchant_key, A.LIST_PRODUCT, {"category": "x" * 40, "price": "1"},
                signer=chain.client_for(MERCHANT),
            )

    @pytest.mark.asyncio
    async def test_unapproved_merchant_cannot_list(self, orchestrator, chain, merchant_key):
        await register(orchestrator, chain, EntityKind.MERCHANT, MERCHANT)

        with pytest.raises(InvalidTransition):
            await orchestrator.transition(
                merchant_key, A.LIST_PRODUCT, {"category": "food", "price": "1"},
                signer=chain.client_for(MERCHANT),
            )

    @pytest.mark.asyncio
    async def test_update_price(self, orchestrator, chain, admin):
        merchant_key = await approved(orchestrator, chain, EntityKind.MERCHANT, MERCHANT)
        merchant = chain.client_for(MERCHANT)
        listed = await orchestrator.transition(
            merchant_key, A.LIST_PRODUCT, {"category": "food", "price": "2.5"}, signer=merchant
        )

        result = await orchestrator.transition(
            listed.key, A.UPDATE_PRODUCT_PRICE, {"price": "3"}, signer=merchant
        )

        assert result.success
        assert result.status is S.ACTIVE
        assert [s.name for s in result.steps] == ["Marketplace.updateProductPrice"]
        product = (await admin.call("Marketplace", "products", [1])).value
        assert product["price"] == to_base_units("3")

    @pytest.mark.asyncio
    async def test_update_price_by_other_account_reverts(self, orchestrator, chain):
        merchant_key = await approved(orchestrator, chain, EntityKind.MERCHANT, MERCHANT)
        listed = await orchestrator.transition(
            merchant_key, A.LIST_PRODUCT, {"category": "food", "price": "2.5"},
            signer=chain.client_for(MERCHANT),
        )

        result = await orchestrator.transition(
            listed.key, A.UPDATE_PRODUCT_PRICE, {"price": "1"}, signer=chain.client_for(NGO)
        )

        assert not result.success
        assert result.failed_step == 1
        assert isinstance(result.error, TransactionFailed)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("price", ["0", "-2", "cheap"])
    async def test_update_price_rejects_bad_amount(self, orchestrator, chain, price):
        merchant_key = await approved(orchestrator, chain, EntityKind.MERCHANT, MERCHANT)
        merchant = chain.client_for(MERCHANT)
        listed = await orchestrator.transition(
            merchant_key, A.LIST_PRODUCT, {"category": "food", "price": "1"}, signer=merchant
        )
        sent = len(chain.sent)

        with pytest.raises(InvalidAmount):
            await orchestrator.transition(
                listed.key, A.UPDATE_PRODUCT_PRICE, {"price": price}, signer=merchant
            )
        assert len(chain.sent) == sent

    @pytest.mark.asyncio
    async def test_unknown_product(self, orchestrator, chain):
        with pytest.raises(InvalidParameters):
            await orchestrator.transition(
                EntityKey.of(EntityKind.PRODUCT, 9), A.SET_PRODUCT_ACTIVE, {"active": True}
            )
        with pytest.raises(InvalidParameters):
            await orchestrator.transition(
                EntityKey.of(EntityKind.PRODUCT, 9), A.UPDATE_PRODUCT_PRICE, {"price": "1"}
            )


class TestConcurrency:
    """Tests for the in-flight guard, timeouts and abandonment."""

    @pytest.mark.asyncio
    async def test_second_transition_refused_without_chain_call(
        self, orchestrator, chain, tracker, merchant_key
    ):
        chain.hold_confirmations()
        first = asyncio.create_task(
            register(orchestrator, chain, EntityKind.MERCHANT, MERCHANT)
        )
        await _until(lambda: len(chain.sent) == 1)
        assert tracker.is_in_flight(merchant_key)

        with pytest.raises(TransitionInProgress):
            await register(orchestrator, chain, EntityKind.MERCHANT, MERCHANT)
        assert len(chain.sent) == 1

        chain.release_confirmations()
        result = await first
        assert result.success
        assert not tracker.is_in_flight(merchant_key)

    @pytest.mark.asyncio
    async def test_other_entities_proceed_concurrently(self, orchestrator, chain):
        results = await asyncio.gather(
            register(orchestrator, chain, EntityKind.MERCHANT, MERCHANT),
            register(orchestrator, chain, EntityKind.NGO, NGO),
        )
        assert all(r.success for r in results)

    @pytest.mark.asyncio
    async def test_confirmation_timeout(self, admin, store, chain):
        orchestrator = LifecycleOrchestrator(admin, store, confirmation_timeout=0.05)
        chain.hold_confirmations()

        result = await register(orchestrator, chain, EntityKind.MERCHANT, MERCHANT)

        assert not result.success
        assert result.failed_step == 1
        assert isinstance(result.error, TransactionTimeout)
        assert result.error.tx_hash is not None

    @pytest.mark.asyncio
    async def test_abandon_returns_pending_hash(self, orchestrator, chain, tracker, merchant_key):
        chain.hold_confirmations()
        task = asyncio.create_task(
            register(orchestrator, chain, EntityKind.MERCHANT, MERCHANT)
        )
        await _until(lambda: tracker.get(merchant_key) is not None and tracker.get(merchant_key).tx_hash)

        tx_hash = orchestrator.abandon(merchant_key)
        result = await task

        assert result.abandoned
        assert result.failed_step == 1
        assert result.error.details["tx_hash"] == tx_hash
        assert result.error.submitted is True
        assert not tracker.is_in_flight(merchant_key)
        assert orchestrator.abandon(merchant_key) is None

    @pytest.mark.asyncio
    async def test_abandon_before_first_send_submits_nothing(self, admin, store, chain, tracker, merchant_key):
        gated = _GatedClient(admin)
        orchestrator = LifecycleOrchestrator(gated, store, tracker=tracker, confirmation_timeout=2.0)
        task = asyncio.create_task(
            register(orchestrator, chain, EntityKind.MERCHANT, MERCHANT)
        )
        await _until(lambda: gated.waiting)

        assert orchestrator.abandon(merchant_key) is None
        gated.gate.set()
        result = await task

        assert chain.sent == []
        assert result.abandoned
        assert result.failed_step == 1
        assert result.error.submitted is False
        assert result.error.details["tx_hash"] is None
        assert result.status is S.UNREGISTERED
        assert await store.find_by_chain_key("merchants", MERCHANT) is None
        assert not tracker.is_in_flight(merchant_key)

    @pytest.mark.asyncio
    async def test_marker_released_after_precondition_failure(self, orchestrator, chain, tracker, ngo_key):
        with pytest.raises(InvalidTransition):
            await orchestrator.transition(ngo_key, A.APPROVE)
        assert not tracker.is_in_flight(ngo_key)
