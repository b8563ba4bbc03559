"""
Unit tests for lifecycle status mapping and merging.

Tests cover:
- Chain and store status tables
- Unmapped values failing loudly
- The role and project state machines
- Chain/store merge precedence
"""

import pytest

from dashboard.sheaid_engine.errors import InvalidTransition, UnknownStatus
from dashboard.sheaid_engine.model import EntityKind
from dashboard.sheaid_engine.status import (
    LifecycleStatus,
    allowed_targets,
    check_transition,
    from_project_chain,
    from_role_chain,
    from_store,
    merge_status,
)

S = LifecycleStatus


class TestStatusMapping:
    """Tests for the total mapping tables."""

    @pytest.mark.parametrize(
        "value,expected",
        [(0, S.UNREGISTERED), (1, S.PENDING), (2, S.APPROVED), (3, S.FROZEN), (4, S.BANNED)],
    )
    def test_role_chain_values(self, value, expected):
        assert from_role_chain(value) is expected

    def test_project_chain_values(self):
        assert from_project_chain(0) is S.UNREGISTERED
        assert from_project_chain(1) is S.ACTIVE
        assert from_project_chain(2) is S.CLOSED

    def test_unmapped_chain_value_raises(self):
        with pytest.raises(UnknownStatus) as exc:
            from_role_chain(9)
        assert exc.value.code == "UNKNOWN_STATUS"
        assert exc.value.details["source"] == "chain"

        with pytest.raises(UnknownStatus):
            from_project_chain(3)

    def test_store_values(self):
        assert from_store("pending") is S.PENDING
        assert from_store("approved") is S.APPROVED
        assert from_store("rejected") is S.REJECTED
        assert from_store(None) is None

    def test_unmapped_store_value_raises(self):
        with pytest.raises(UnknownStatus):
            from_store("archived")

    def test_store_value_round_trip_only_where_defined(self):
        assert S.PENDING.store_value == "pending"
        assert S.CLOSED.store_value == "closed"
        assert S.FROZEN.store_value is None
        assert S.UNREGISTERED.store_value is None

    def test_terminal_statuses(self):
        assert S.CLOSED.is_terminal
        assert S.BANNED.is_terminal
        assert not S.APPROVED.is_terminal


class TestStateMachine:
    """Tests for allowed transitions."""

    def test_role_edges(self):
        assert allowed_targets(EntityKind.MERCHANT, S.UNREGISTERED) == {S.PENDING}
        assert allowed_targets(EntityKind.NGO, S.PENDING) == {S.APPROVED, S.REJECTED}
        assert allowed_targets(EntityKind.BENEFICIARY, S.REJECTED) == {S.UNREGISTERED}
        assert allowed_targets(EntityKind.MERCHANT, S.APPROVED) == frozenset()

    def test_project_edges(self):
        assert allowed_targets(EntityKind.PROJECT, S.UNREGISTERED) == {S.ACTIVE}
        assert allowed_targets(EntityKind.PROJECT, S.ACTIVE) == {S.CLOSED}
        assert allowed_targets(EntityKind.PROJECT, S.CLOSED) == frozenset()

    @pytest.mark.parametrize("current", [S.APPROVED, S.REJECTED])
    def test_reject_only_from_pending(self, current):
        with pytest.raises(InvalidTransition) as exc:
            check_transition(EntityKind.MERCHANT, current, S.REJECTED)
        assert exc.value.details["current"] == current.value
        assert exc.value.details["target"] == "rejected"

    def test_closed_project_cannot_move(self):
        with pytest.raises(InvalidTransition):
            check_transition(EntityKind.PROJECT, S.CLOSED, S.ACTIVE)


class TestMergeStatus:
    """Tests for chain-over-store precedence."""

    def test_chain_wins_over_store(self):
        assert merge_status(EntityKind.MERCHANT, S.APPROVED, S.PENDING) is S.APPROVED
        assert merge_status(EntityKind.MERCHANT, S.FROZEN, S.APPROVED) is S.FROZEN

    def test_store_rejection_refines_chain_pending(self):
        assert merge_status(EntityKind.NGO, S.PENDING, S.REJECTED) is S.REJECTED

    def test_store_rejection_does_not_override_chain_approval(self):
        assert merge_status(EntityKind.NGO, S.APPROVED, S.REJECTED) is S.APPROVED

    def test_store_used_when_chain_has_no_record(self):
        assert merge_status(EntityKind.MERCHANT, None, S.REJECTED) is S.REJECTED
        assert merge_status(EntityKind.MERCHANT, None, None) is S.UNREGISTERED

    def test_beneficiary_pending_lives_in_store(self):
        assert merge_status(EntityKind.BENEFICIARY, S.UNREGISTERED, S.PENDING) is S.PENDING
        assert merge_status(EntityKind.BENEFICIARY, S.APPROVED, S.PENDING) is S.APPROVED
        assert merge_status(EntityKind.BENEFICIARY, S.UNREGISTERED, S.APPROVED) is S.UNREGISTERED
