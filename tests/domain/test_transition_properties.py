"""
Property tests over the pure transition tables, driven by Hypothesis.

For any (from, to) pair and any role the state machine and the authorizer
must agree with the fixed total order of statuses.
"""

from uuid import uuid4

import pytest
from hypothesis import given
from hypothesis import strategies as st

from steeltrack_kernel.domain.authorization import Action, ResourceState, decide
from steeltrack_kernel.domain.identity import Actor
from steeltrack_kernel.domain.lifecycle import (
    location_after_status_change,
    validate_status_advance,
    validate_status_rollback,
)
from steeltrack_kernel.domain.values import (
    FieldLocation,
    PieceMarkStatus,
    Role,
    status_rank,
)
from steeltrack_kernel.exceptions import InvalidTransitionError

statuses = st.sampled_from(list(PieceMarkStatus))
locations = st.one_of(st.none(), st.sampled_from(list(FieldLocation)))
roles = st.sampled_from(list(Role))


def _accepted(validator, current, target) -> bool:
    try:
        validator(current, target)
    except InvalidTransitionError:
        return False
    return True


@given(current=statuses, target=statuses)
def test_advance_accepts_exactly_the_next_status(current, target):
    assert _accepted(validate_status_advance, current, target) == (
        status_rank(target) - status_rank(current) == 1
    )


@given(current=statuses, target=statuses)
def test_rollback_accepts_exactly_the_previous_status(current, target):
    assert _accepted(validate_status_rollback, current, target) == (
        status_rank(current) - status_rank(target) == 1
    )


@given(current=statuses, target=statuses)
def test_no_pair_is_both_advance_and_rollback(current, target):
    assert not (
        _accepted(validate_status_advance, current, target)
        and _accepted(validate_status_rollback, current, target)
    )


@given(location=locations, current=statuses, target=statuses)
def test_location_is_null_exactly_below_shipped(location, current, target):
    if not (
        _accepted(validate_status_advance, current, target)
        or _accepted(validate_status_rollback, current, target)
    ):
        return
    # a location can only exist once a piece mark has been shipped
    if status_rank(current) < status_rank(PieceMarkStatus.SHIPPED):
        location = None
    elif location is None:
        location = FieldLocation.UNKNOWN
    result = location_after_status_change(location, current, target)
    if status_rank(target) < status_rank(PieceMarkStatus.SHIPPED):
        assert result is None
    else:
        assert result is not None
    if target == PieceMarkStatus.INSTALLED:
        assert result == FieldLocation.INSTALLED


@given(role=roles, action=st.sampled_from(list(Action)), status=statuses)
def test_client_never_allowed_and_admin_always_allowed(role, action, status):
    actor = Actor(uuid4(), role)
    decision = decide(actor, action, ResourceState(status=status, crew_foreman_id=uuid4()))
    if role == Role.CLIENT:
        assert not decision.allowed
    if role in (Role.ADMIN, Role.PROJECT_MANAGER):
        assert decision.allowed
    assert decision.rule


@pytest.mark.parametrize("role", [Role.SHOP, Role.FIELD, Role.CLIENT])
@given(status=statuses)
def test_only_shop_or_full_access_may_advance(role, status):
    decision = decide(Actor(uuid4(), role), Action.ADVANCE_STATUS, ResourceState(status=status))
    if decision.allowed:
        assert role == Role.SHOP
        assert status_rank(status) <= status_rank(PieceMarkStatus.FABRICATING)
