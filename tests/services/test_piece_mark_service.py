"""
Tests for PieceMarkService: registry operations and the status/location
state machine.

Every successful call must leave exactly one new activity entry behind;
every rejected call none.
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from steeltrack_kernel.domain.values import (
    FieldLocation,
    PieceMarkStatus,
    TransitionKind,
)
from steeltrack_kernel.exceptions import (
    ConcurrentModificationError,
    DuplicatePieceMarkError,
    ForbiddenError,
    InvalidTransitionError,
    InvalidValueError,
    LocationLockedAfterInstallError,
    PieceMarkArchivedError,
    PieceMarkNotFoundError,
)
from steeltrack_kernel.selectors import ActivitySelector

S = PieceMarkStatus


class TestCreatePieceMark:
    def test_total_weight_is_quantity_times_unit_weight(self, services, pm_actor, project_id):
        info = services.piece_marks.create_piece_mark(
            pm_actor, project_id, "B-101", 10, Decimal("50"), material="W12x26"
        )
        assert info.total_weight == Decimal("500")
        assert info.status == S.NOT_STARTED
        assert info.location is None
        assert info.material == "W12x26"

        (entry,) = services.activity_log.recorded
        assert entry.transition_kind == TransitionKind.PIECE_MARK_CREATED
        assert entry.before_state is None
        assert entry.after_state["total_weight"] == "500"

    def test_weight_accepts_decimal_strings(self, services, pm_actor, project_id):
        info = services.piece_marks.create_piece_mark(pm_actor, project_id, "C-1", 3, "12.125")
        assert info.total_weight == Decimal("36.375")

    def test_duplicate_mark_in_project(self, build, services, pm_actor, project_id):
        build.piece_mark("B-101")
        with pytest.raises(DuplicatePieceMarkError):
            services.piece_marks.create_piece_mark(pm_actor, project_id, "B-101", 1, Decimal(1))
        # same mark in another project is fine
        services.piece_marks.create_piece_mark(pm_actor, uuid4(), "B-101", 1, Decimal(1))

    @pytest.mark.parametrize(
        "quantity, weight",
        [(0, Decimal(1)), (-2, Decimal(1)), (True, Decimal(1)), (1, Decimal("-0.5")), (1, 2.5)],
    )
    def test_rejects_bad_quantity_or_weight(self, services, pm_actor, project_id, quantity, weight):
        with pytest.raises(InvalidValueError):
            services.piece_marks.create_piece_mark(pm_actor, project_id, "X-1", quantity, weight)
        assert services.activity_log.recorded == []

    def test_only_admin_and_pm_create(self, services, shop, field, project_id):
        for actor in (shop, field):
            with pytest.raises(ForbiddenError):
                services.piece_marks.create_piece_mark(actor, project_id, "X-1", 1, Decimal(1))


class TestUpdateAndArchive:
    def test_update_recomputes_total_weight(self, build, services, pm_actor):
        pm = build.piece_mark(quantity=4, weight="10")
        info = services.piece_marks.update_piece_mark_details(
            pm_actor, pm.id, quantity=6, weight_per_unit="12.5"
        )
        assert info.total_weight == Decimal("75")
        entry = services.activity_log.recorded[-1]
        assert entry.transition_kind == TransitionKind.PIECE_MARK_UPDATED
        assert entry.before_state["quantity"] == 4
        assert entry.after_state["quantity"] == 6

    def test_unknown_field_rejected(self, build, services, pm_actor):
        pm = build.piece_mark()
        with pytest.raises(InvalidValueError):
            services.piece_marks.update_piece_mark_details(pm_actor, pm.id, status="shipped")

    def test_no_op_update_rejected(self, build, services, pm_actor):
        pm = build.piece_mark(quantity=4)
        with pytest.raises(InvalidValueError):
            services.piece_marks.update_piece_mark_details(pm_actor, pm.id, quantity=4)

    def test_archived_piece_mark_rejects_transitions(self, build, services, pm_actor):
        pm = build.piece_mark()
        archived = services.piece_marks.archive_piece_mark(pm_actor, pm.id, reason="drawing revised")
        assert archived.is_archived
        with pytest.raises(PieceMarkArchivedError):
            services.piece_marks.advance_status(pm_actor, pm.id, S.FABRICATING)

    def test_missing_piece_mark(self, services, pm_actor):
        with pytest.raises(PieceMarkNotFoundError):
            services.piece_marks.advance_status(pm_actor, uuid4(), S.FABRICATING)


class TestStatusMachine:
    def test_shop_advance_then_skip_rejected(self, build, services, shop):
        pm = build.piece_mark(quantity=10, weight="50")
        before = len(services.activity_log.recorded)

        info = services.piece_marks.advance_status(shop, pm.id, "fabricating", note="cut list released")
        assert info.status == S.FABRICATING
        assert info.total_weight == Decimal("500")
        assert len(services.activity_log.recorded) == before + 1
        entry = services.activity_log.recorded[-1]
        assert entry.transition_kind == TransitionKind.STATUS_ADVANCED
        assert entry.description == "cut list released"
        assert entry.actor_id == shop.actor_id

        with pytest.raises(InvalidTransitionError) as exc_info:
            services.piece_marks.advance_status(shop, pm.id, "installed")
        assert (exc_info.value.from_state, exc_info.value.to_state) == ("fabricating", "installed")
        assert len(services.activity_log.recorded) == before + 1

    def test_client_cannot_advance(self, build, services, client_actor):
        pm = build.piece_mark()
        with pytest.raises(ForbiddenError) as exc_info:
            services.piece_marks.advance_status(client_actor, pm.id, "fabricating")
        assert exc_info.value.rule == "client_is_read_only"

    def test_shop_stops_at_completed(self, build, services, shop):
        pm = build.piece_mark()
        build.advance_to(pm.id, S.COMPLETED)
        with pytest.raises(ForbiddenError):
            services.piece_marks.advance_status(shop, pm.id, "shipped")

    def test_shop_rolls_back_only_its_own_advance(self, build, services, shop, other_shop):
        pm = build.piece_mark()
        services.piece_marks.advance_status(shop, pm.id, "fabricating")
        with pytest.raises(ForbiddenError):
            services.piece_marks.rollback_status(other_shop, pm.id, "not_started")
        info = services.piece_marks.rollback_status(shop, pm.id, "not_started", note="wrong piece")
        assert info.status == S.NOT_STARTED
        assert services.activity_log.recorded[-1].transition_kind == TransitionKind.STATUS_ROLLED_BACK

    def test_shipping_sets_unknown_location_and_rollback_clears_it(self, build, services, pm_actor):
        pm = build.piece_mark()
        shipped = build.advance_to(pm.id, S.SHIPPED)
        assert shipped.location == FieldLocation.UNKNOWN
        info = services.piece_marks.rollback_status(pm_actor, pm.id, "completed")
        assert info.location is None

    def test_unknown_status_value(self, build, services, pm_actor):
        pm = build.piece_mark()
        with pytest.raises(InvalidValueError):
            services.piece_marks.advance_status(pm_actor, pm.id, "welded")

    def test_stale_expected_version(self, build, services, pm_actor):
        pm = build.piece_mark()
        services.piece_marks.advance_status(pm_actor, pm.id, "fabricating")
        with pytest.raises(ConcurrentModificationError) as exc_info:
            services.piece_marks.advance_status(
                pm_actor, pm.id, "completed", expected_version=pm.version
            )
        assert exc_info.value.expected_version == pm.version
        assert exc_info.value.actual_version == pm.version + 1


class TestLocation:
    def test_field_moves_shipped_piece_mark_until_installed(self, build, services, field, pm_actor):
        pm = build.piece_mark()
        build.advance_to(pm.id, S.SHIPPED)
        services.piece_marks.update_location(pm_actor, pm.id, "yard")

        info = services.piece_marks.update_location(field, pm.id, "installed")
        assert info.location == FieldLocation.INSTALLED
        assert info.status == S.SHIPPED
        info = services.piece_marks.update_location(field, pm.id, "staging")
        assert info.location == FieldLocation.STAGING
        assert services.activity_log.recorded[-1].transition_kind == TransitionKind.LOCATION_UPDATED

        installed = services.piece_marks.advance_status(pm_actor, pm.id, "installed")
        assert installed.location == FieldLocation.INSTALLED
        for actor in (field, pm_actor):
            with pytest.raises(LocationLockedAfterInstallError):
                services.piece_marks.update_location(actor, pm.id, "crane_zone")

    def test_lock_reported_before_authorization(self, build, services, shop):
        pm = build.piece_mark()
        build.advance_to(pm.id, S.INSTALLED)
        with pytest.raises(LocationLockedAfterInstallError):
            services.piece_marks.update_location(shop, pm.id, "yard")

    def test_rollback_from_installed_unlocks_location(self, build, services, pm_actor, field):
        pm = build.piece_mark()
        build.advance_to(pm.id, S.INSTALLED)
        info = services.piece_marks.rollback_status(pm_actor, pm.id, "shipped")
        assert info.location == FieldLocation.INSTALLED
        assert services.piece_marks.update_location(field, pm.id, "yard").location == FieldLocation.YARD

    def test_field_cannot_move_unshipped(self, build, services, field, pm_actor):
        pm = build.piece_mark()
        build.advance_to(pm.id, S.COMPLETED)
        with pytest.raises(ForbiddenError):
            services.piece_marks.update_location(field, pm.id, "yard")
        with pytest.raises(InvalidTransitionError):
            services.piece_marks.update_location(pm_actor, pm.id, "yard")

    def test_same_location_rejected(self, build, services, pm_actor):
        pm = build.piece_mark()
        build.advance_to(pm.id, S.SHIPPED)
        with pytest.raises(InvalidTransitionError):
            services.piece_marks.update_location(pm_actor, pm.id, "unknown")

    def test_history_is_ordered(self, build, services, session, pm_actor):
        pm = build.piece_mark()
        build.advance_to(pm.id, S.SHIPPED)
        services.piece_marks.update_location(pm_actor, pm.id, "crane_zone")

        history = ActivitySelector(session).by_piece_mark(pm.id)
        assert [e.transition_kind for e in history] == [
            TransitionKind.PIECE_MARK_CREATED,
            TransitionKind.STATUS_ADVANCED,
            TransitionKind.STATUS_ADVANCED,
            TransitionKind.STATUS_ADVANCED,
            TransitionKind.LOCATION_UPDATED,
        ]
        assert [e.seq for e in history] == sorted(e.seq for e in history)
