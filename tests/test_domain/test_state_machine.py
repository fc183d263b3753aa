"""Tests for the service request lifecycle guard.

These tests verify that:
    1. The happy path pending -> completed is walkable on the state machine.
    2. Every edge in the table is accepted for its roles and rejected for others.
    3. Edges that are not in the table are blocked (including leaving terminals).
    4. Re-applying the current status is a no-op only for roles that may
       enter it.
    5. Actor identity checks reject foreign customers and providers.
"""

from __future__ import annotations

import uuid

import pytest
from statemachine.exceptions import TransitionNotAllowed

from roadside_escrow.domain.enums import ActorRole, RequestStatus
from roadside_escrow.domain.exceptions import AuthError, IllegalTransitionError
from roadside_escrow.domain.state_machine import (
    EDGES,
    Actor,
    RequestLifecycle,
    allowed_successors,
    check_actor_identity,
    check_transition,
)

S = RequestStatus


class TestHappyPath:
    """Test the full lifecycle on the raw state machine."""

    def test_full_lifecycle(self) -> None:
        sm = RequestLifecycle("pending")
        assert sm.status == "pending"

        sm.assign()
        assert sm.status == "assigned"

        sm.submit_quote()
        assert sm.status == "quoted"

        sm.accept_quote()
        assert sm.status == "accepted"

        sm.request_payment()
        assert sm.status == "awaiting_payment"

        sm.confirm_payment()
        assert sm.status == "paid"

        sm.depart()
        assert sm.status == "en_route"

        sm.arrive()
        assert sm.status == "in_progress"

        sm.complete_job()
        assert sm.status == "completed"

    def test_unknown_status_rejected(self) -> None:
        with pytest.raises(ValueError, match="Unknown status"):
            RequestLifecycle("teleported")


class TestInvalidTransitions:
    """Raw state machine blocks skipped steps."""

    def test_cannot_pay_from_pending(self) -> None:
        sm = RequestLifecycle("pending")
        with pytest.raises(TransitionNotAllowed):
            sm.confirm_payment()

    def test_cannot_depart_before_payment(self) -> None:
        sm = RequestLifecycle("accepted")
        with pytest.raises(TransitionNotAllowed):
            sm.depart()

    def test_completed_is_final(self) -> None:
        sm = RequestLifecycle("completed")
        with pytest.raises(TransitionNotAllowed):
            sm.cancel_request()

    def test_cancelled_is_final(self) -> None:
        sm = RequestLifecycle("cancelled")
        with pytest.raises(TransitionNotAllowed):
            sm.assign()


class TestEdgeTable:
    """check_transition over every (source, target, role) combination."""

    @pytest.mark.parametrize(("source", "target"), list(EDGES))
    def test_every_edge_allowed_for_its_roles(
        self, source: RequestStatus, target: RequestStatus
    ) -> None:
        edge = EDGES[(source, target)]
        for role in edge.roles:
            assert check_transition(source, target, role) is edge

    @pytest.mark.parametrize(("source", "target"), list(EDGES))
    def test_every_edge_rejected_for_other_roles(
        self, source: RequestStatus, target: RequestStatus
    ) -> None:
        edge = EDGES[(source, target)]
        for role in set(ActorRole) - edge.roles:
            with pytest.raises(IllegalTransitionError, match="may not drive"):
                check_transition(source, target, role)

    def test_edges_not_in_table_are_illegal(self) -> None:
        for source in RequestStatus:
            for target in RequestStatus:
                if source == target or (source, target) in EDGES:
                    continue
                with pytest.raises(IllegalTransitionError):
                    check_transition(source, target, ActorRole.ADMIN)

    def test_pending_to_paid_is_illegal_for_system(self) -> None:
        with pytest.raises(IllegalTransitionError) as exc_info:
            check_transition(S.PENDING, S.PAID, ActorRole.SYSTEM)
        assert exc_info.value.current_state == S.PENDING
        assert exc_info.value.attempted_state == S.PAID

    def test_payment_edges_are_system_only(self) -> None:
        assert EDGES[(S.ACCEPTED, S.AWAITING_PAYMENT)].roles == {ActorRole.SYSTEM}
        assert EDGES[(S.AWAITING_PAYMENT, S.PAID)].roles == {ActorRole.SYSTEM}

    def test_terminal_statuses_have_no_successors(self) -> None:
        assert allowed_successors(S.COMPLETED) == frozenset()
        assert allowed_successors(S.CANCELLED) == frozenset()

    def test_every_non_terminal_status_can_cancel(self) -> None:
        for status in RequestStatus:
            if not status.is_terminal:
                assert S.CANCELLED in allowed_successors(status)

    def test_table_agrees_with_state_machine(self) -> None:
        for (source, target), edge in EDGES.items():
            sm = RequestLifecycle(source.value)
            getattr(sm, edge.event)()
            assert sm.status == target.value


class TestIdempotence:
    @pytest.mark.parametrize(
        ("target", "role"),
        sorted({(target, role) for (_, target), edge in EDGES.items() for role in edge.roles}),
    )
    def test_same_status_is_noop_for_entry_roles(
        self, target: RequestStatus, role: ActorRole
    ) -> None:
        assert check_transition(target, target, role) is None

    @pytest.mark.parametrize(
        ("status", "role"),
        [
            (S.PAID, ActorRole.PROVIDER),
            (S.PAID, ActorRole.CUSTOMER),
            (S.QUOTED, ActorRole.CUSTOMER),
            (S.ACCEPTED, ActorRole.PROVIDER),
            (S.EN_ROUTE, ActorRole.CUSTOMER),
        ],
    )
    def test_same_status_rejected_for_other_roles(
        self, status: RequestStatus, role: ActorRole
    ) -> None:
        with pytest.raises(IllegalTransitionError, match="may not drive"):
            check_transition(status, status, role)

    def test_pending_cannot_be_reapplied(self) -> None:
        with pytest.raises(IllegalTransitionError):
            check_transition(S.PENDING, S.PENDING, ActorRole.CUSTOMER)


class TestActorIdentity:
    def setup_method(self) -> None:
        self.customer_id = uuid.uuid4()
        self.provider_id = uuid.uuid4()

    def test_own_customer_passes(self) -> None:
        check_actor_identity(
            Actor(ActorRole.CUSTOMER, self.customer_id), self.customer_id, self.provider_id
        )

    def test_foreign_customer_rejected(self) -> None:
        with pytest.raises(AuthError):
            check_actor_identity(
                Actor(ActorRole.CUSTOMER, uuid.uuid4()), self.customer_id, self.provider_id
            )

    def test_foreign_provider_rejected(self) -> None:
        with pytest.raises(AuthError):
            check_actor_identity(
                Actor(ActorRole.PROVIDER, uuid.uuid4()), self.customer_id, self.provider_id
            )

    def test_provider_rejected_before_assignment(self) -> None:
        with pytest.raises(AuthError):
            check_actor_identity(Actor(ActorRole.PROVIDER, self.provider_id), self.customer_id, None)

    def test_system_and_admin_pass(self) -> None:
        check_actor_identity(Actor.system(), self.customer_id, None)
        check_actor_identity(Actor(ActorRole.ADMIN), self.customer_id, self.provider_id)
