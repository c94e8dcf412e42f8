"""
Tests for DeliveryService: the delivery lifecycle and all-or-nothing
reconciliation, including split deliveries and over-receipt.
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from steeltrack_kernel.domain.values import (
    DeliveryStatus,
    FieldLocation,
    ItemCondition,
    PieceMarkStatus,
    SubjectType,
    TransitionKind,
)
from steeltrack_kernel.exceptions import (
    DeliveryItemsFrozenError,
    DeliveryNotFoundError,
    DuplicateDeliveryError,
    DuplicateDeliveryItemError,
    ForbiddenError,
    IncompleteReconciliationError,
    InvalidTransitionError,
    InvalidValueError,
    OverReceiptError,
    PieceMarkArchivedError,
)
from steeltrack_kernel.selectors import ActivitySelector, PieceMarkSelector

S = PieceMarkStatus


@pytest.fixture
def two_item_delivery(build):
    """Delivery with two items, expected 5 and 3, already delivered."""
    beam = build.piece_mark("B-1", quantity=5, weight="100")
    column = build.piece_mark("C-1", quantity=3, weight="80")
    delivery = build.delivery("D-100", items=[(beam.id, 5), (column.id, 3)])
    build.deliver(delivery.id)
    item_beam, item_column = delivery.items
    return delivery, beam, column, item_beam, item_column


class TestDeliveryLifecycle:
    def test_create_and_progress(self, build, services, field):
        pm = build.piece_mark()
        d = services.deliveries.create_delivery(
            field, build.project_id, "D-7", scheduled_date=date(2024, 3, 5), truck_number="T-14"
        )
        assert d.status == DeliveryStatus.PENDING
        item = services.deliveries.add_delivery_item(field, d.id, pm.id, 2)
        assert item.expected_quantity == 2
        assert not item.is_reconciled

        services.deliveries.update_delivery_status(field, d.id, "in_transit")
        delivered = services.deliveries.update_delivery_status(field, d.id, "delivered")
        assert delivered.status == DeliveryStatus.DELIVERED
        assert delivered.arrived_at is not None
        kinds = [e.transition_kind for e in services.activity_log.recorded if e.subject_id == d.id]
        assert kinds == [
            TransitionKind.DELIVERY_CREATED,
            TransitionKind.DELIVERY_ITEM_ADDED,
            TransitionKind.DELIVERY_STATUS_CHANGED,
            TransitionKind.DELIVERY_STATUS_CHANGED,
        ]

    def test_duplicate_delivery_number(self, build, services, pm_actor):
        build.delivery("D-1")
        with pytest.raises(DuplicateDeliveryError):
            services.deliveries.create_delivery(pm_actor, build.project_id, "D-1")

    def test_empty_delivery_cannot_leave_pending(self, build, services, pm_actor):
        d = build.delivery("D-1")
        with pytest.raises(InvalidTransitionError, match="no items"):
            services.deliveries.update_delivery_status(pm_actor, d.id, "in_transit")

    def test_cannot_skip_or_set_received(self, build, services, pm_actor):
        pm = build.piece_mark()
        d = build.delivery("D-1", items=[(pm.id, 1)])
        with pytest.raises(InvalidTransitionError):
            services.deliveries.update_delivery_status(pm_actor, d.id, "delivered")
        build.deliver(d.id)
        with pytest.raises(InvalidTransitionError, match="reconciliation"):
            services.deliveries.update_delivery_status(pm_actor, d.id, "received")

    def test_item_rules(self, build, services, pm_actor):
        pm = build.piece_mark(quantity=4)
        d = build.delivery("D-1", items=[(pm.id, 2)])
        with pytest.raises(DuplicateDeliveryItemError):
            services.deliveries.add_delivery_item(pm_actor, d.id, pm.id, 1)

        other = build.piece_mark("B-2", quantity=2)
        with pytest.raises(InvalidValueError):
            services.deliveries.add_delivery_item(pm_actor, d.id, other.id, 3)
        with pytest.raises(InvalidValueError):
            services.deliveries.add_delivery_item(pm_actor, d.id, other.id, 0)

        foreign = services.piece_marks.create_piece_mark(pm_actor, uuid4(), "F-1", 1, Decimal(1))
        with pytest.raises(InvalidValueError):
            services.deliveries.add_delivery_item(pm_actor, d.id, foreign.id, 1)

        services.piece_marks.archive_piece_mark(pm_actor, other.id)
        with pytest.raises(PieceMarkArchivedError):
            services.deliveries.add_delivery_item(pm_actor, d.id, other.id, 1)

        services.deliveries.update_delivery_status(pm_actor, d.id, "in_transit")
        third = build.piece_mark("B-3", quantity=1)
        with pytest.raises(DeliveryItemsFrozenError):
            services.deliveries.add_delivery_item(pm_actor, d.id, third.id, 1)

    def test_reject_requires_reason_and_is_terminal(self, build, services, field):
        pm = build.piece_mark()
        d = build.delivery("D-1", items=[(pm.id, 1)])
        with pytest.raises(InvalidValueError):
            services.deliveries.reject_delivery(field, d.id, "  ")
        rejected = services.deliveries.reject_delivery(field, d.id, "wrong sequence shipped")
        assert rejected.status == DeliveryStatus.REJECTED
        assert rejected.rejected_reason == "wrong sequence shipped"
        with pytest.raises(InvalidTransitionError):
            services.deliveries.reject_delivery(field, d.id, "again")

    def test_shop_and_client_cannot_manage_deliveries(self, build, services, shop, client_actor):
        for actor in (shop, client_actor):
            with pytest.raises(ForbiddenError):
                services.deliveries.create_delivery(actor, build.project_id, "D-9")

    def test_unknown_delivery(self, services, pm_actor):
        with pytest.raises(DeliveryNotFoundError):
            services.deliveries.update_delivery_status(pm_actor, uuid4(), "in_transit")


class TestReconciliation:
    def test_partial_submission_changes_nothing(self, two_item_delivery, services, session, field, receipt):
        delivery, beam, column, item_beam, item_column = two_item_delivery
        entries_before = len(services.activity_log.recorded)

        with pytest.raises(IncompleteReconciliationError) as exc_info:
            services.deliveries.reconcile_delivery(field, delivery.id, [receipt(item_beam.id, 5)])

        assert exc_info.value.unresolved_item_ids == [str(item_column.id)]
        assert delivery.status == DeliveryStatus.DELIVERED
        assert item_beam.received_quantity is None
        selector = PieceMarkSelector(session)
        assert selector.get(beam.id).status == S.NOT_STARTED
        assert selector.get(column.id).status == S.NOT_STARTED
        assert len(services.activity_log.recorded) == entries_before

    def test_complete_submission_with_shortfall(self, two_item_delivery, services, session, field, receipt):
        delivery, beam, column, item_beam, item_column = two_item_delivery
        entries_before = len(services.activity_log.recorded)

        result = services.deliveries.reconcile_delivery(
            field,
            delivery.id,
            [
                receipt(item_beam.id, 5, ItemCondition.GOOD, FieldLocation.YARD),
                receipt(item_column.id, 2, ItemCondition.DAMAGED, FieldLocation.YARD),
            ],
        )

        assert result.delivery.status == DeliveryStatus.RECEIVED
        assert result.delivery.received_by_id == field.actor_id
        assert all(i.is_reconciled for i in result.delivery.items)
        beam_after, column_after = result.piece_marks
        assert (beam_after.status, beam_after.location) == (S.SHIPPED, FieldLocation.YARD)
        assert (column_after.status, column_after.location) == (S.SHIPPED, FieldLocation.YARD)

        (discrepancy,) = result.discrepancies
        assert discrepancy.piece_mark_id == column.id
        assert discrepancy.shortfall == 1
        assert discrepancy.condition == ItemCondition.DAMAGED

        new_entries = services.activity_log.recorded[entries_before:]
        assert [e.transition_kind for e in new_entries] == [
            TransitionKind.PIECE_MARK_RECEIVED,
            TransitionKind.PIECE_MARK_RECEIVED,
            TransitionKind.DELIVERY_RECEIVED,
        ]
        beam_entry, column_entry, delivery_entry = new_entries
        assert beam_entry.discrepancy is None
        assert beam_entry.delivery_id == delivery.id
        assert column_entry.discrepancy["shortfall"] == 1
        assert column_entry.discrepancy["condition"] == "damaged"
        assert column_entry.after_state["cumulative_received"] == 2
        assert delivery_entry.subject_type == SubjectType.DELIVERY
        assert delivery_entry.discrepancy["count"] == 1
        assert delivery_entry.discrepancy["total_shortfall"] == 1
        assert delivery_entry.discrepancy["non_good_conditions"] == 1

        history = ActivitySelector(session).by_delivery(delivery.id)
        assert {TransitionKind.PIECE_MARK_RECEIVED, TransitionKind.DELIVERY_RECEIVED} <= {
            e.transition_kind for e in history
        }

    def test_received_delivery_cannot_be_reconciled_again(self, two_item_delivery, services, field, receipt):
        delivery, _, _, item_beam, item_column = two_item_delivery
        lines = [receipt(item_beam.id, 5), receipt(item_column.id, 3)]
        services.deliveries.reconcile_delivery(field, delivery.id, lines)
        with pytest.raises(InvalidTransitionError):
            services.deliveries.reconcile_delivery(field, delivery.id, lines)

    def test_not_yet_delivered(self, build, services, field, receipt):
        pm = build.piece_mark()
        d = build.delivery("D-1", items=[(pm.id, 1)])
        with pytest.raises(InvalidTransitionError):
            services.deliveries.reconcile_delivery(field, d.id, [receipt(d.items[0].id, 1)])

    def test_shop_cannot_receive(self, two_item_delivery, services, shop, receipt):
        delivery, _, _, item_beam, item_column = two_item_delivery
        with pytest.raises(ForbiddenError):
            services.deliveries.reconcile_delivery(
                shop, delivery.id, [receipt(item_beam.id, 5), receipt(item_column.id, 3)]
            )

    def test_line_over_expected_rejected(self, two_item_delivery, services, field, receipt):
        delivery, _, _, item_beam, item_column = two_item_delivery
        with pytest.raises(OverReceiptError) as exc_info:
            services.deliveries.reconcile_delivery(
                field, delivery.id, [receipt(item_beam.id, 6), receipt(item_column.id, 3)]
            )
        assert exc_info.value.scope == "delivery_item"
        assert delivery.status == DeliveryStatus.DELIVERED

    def test_installed_piece_mark_keeps_state(self, build, services, field, receipt):
        pm = build.piece_mark("B-9", quantity=2)
        first = build.delivery("D-1", items=[(pm.id, 1)])
        second = build.delivery("D-2", items=[(pm.id, 1)])
        build.deliver(first.id)
        services.deliveries.reconcile_delivery(field, first.id, [receipt(first.items[0].id, 1)])
        build.advance_to(pm.id, S.INSTALLED)

        build.deliver(second.id)
        result = services.deliveries.reconcile_delivery(
            field, second.id, [receipt(second.items[0].id, 1, location=FieldLocation.STAGING)]
        )
        (after,) = result.piece_marks
        assert after.status == S.INSTALLED
        assert after.location == FieldLocation.INSTALLED


class TestSplitDeliveries:
    def test_location_waits_for_the_last_delivery(self, build, services, field, receipt):
        pm = build.piece_mark("G-1", quantity=4)
        first = build.delivery("D-1", items=[(pm.id, 2)])
        second = build.delivery("D-2", items=[(pm.id, 2)])
        build.deliver(first.id)
        build.deliver(second.id)

        result = services.deliveries.reconcile_delivery(
            field, first.id, [receipt(first.items[0].id, 2, location=FieldLocation.YARD)]
        )
        (after_first,) = result.piece_marks
        assert after_first.status == S.SHIPPED
        assert after_first.location == FieldLocation.UNKNOWN

        result = services.deliveries.reconcile_delivery(
            field, second.id, [receipt(second.items[0].id, 2, location=FieldLocation.STAGING)]
        )
        (after_second,) = result.piece_marks
        assert after_second.location == FieldLocation.STAGING
        assert services.activity_log.recorded[-2].after_state["cumulative_received"] == 4

    def test_cumulative_over_receipt_rejected(self, build, services, field, receipt):
        pm = build.piece_mark("G-2", quantity=4)
        first = build.delivery("D-1", items=[(pm.id, 3)])
        second = build.delivery("D-2", items=[(pm.id, 3)])
        build.deliver(first.id)
        build.deliver(second.id)
        services.deliveries.reconcile_delivery(field, first.id, [receipt(first.items[0].id, 3)])

        with pytest.raises(OverReceiptError) as exc_info:
            services.deliveries.reconcile_delivery(field, second.id, [receipt(second.items[0].id, 2)])
        assert exc_info.value.scope == "piece_mark"
        assert exc_info.value.cumulative == 3
        assert second.status == DeliveryStatus.DELIVERED

        # a shortfall on the second delivery keeps the total within quantity
        services.deliveries.reconcile_delivery(field, second.id, [receipt(second.items[0].id, 1)])

    def test_rejected_delivery_no_longer_counts_as_open(self, build, services, field, receipt):
        pm = build.piece_mark("G-3", quantity=4)
        first = build.delivery("D-1", items=[(pm.id, 2)])
        second = build.delivery("D-2", items=[(pm.id, 2)])
        services.deliveries.reject_delivery(field, second.id, "truck cancelled")
        build.deliver(first.id)

        result = services.deliveries.reconcile_delivery(
            field, first.id, [receipt(first.items[0].id, 2, location=FieldLocation.CRANE_ZONE)]
        )
        assert result.piece_marks[0].location == FieldLocation.CRANE_ZONE

    def test_quantity_cannot_drop_below_received(self, build, services, field, pm_actor, receipt):
        pm = build.piece_mark("G-4", quantity=4)
        d = build.delivery("D-1", items=[(pm.id, 3)])
        build.deliver(d.id)
        services.deliveries.reconcile_delivery(field, d.id, [receipt(d.items[0].id, 3)])

        with pytest.raises(OverReceiptError):
            services.piece_marks.update_piece_mark_details(pm_actor, pm.id, quantity=2)
        assert services.piece_marks.update_piece_mark_details(pm_actor, pm.id, quantity=3).quantity == 3


class TestArchiveWhileExpected:
    def test_open_item_blocks_archive_until_received(self, build, services, pm_actor, field, receipt):
        pm = build.piece_mark("A-1", quantity=2)
        d = build.delivery("D-1", items=[(pm.id, 2)])
        build.deliver(d.id)

        with pytest.raises(InvalidTransitionError, match="open delivery item") as exc_info:
            services.piece_marks.archive_piece_mark(pm_actor, pm.id)
        assert exc_info.value.to_state == "archived"

        result = services.deliveries.reconcile_delivery(field, d.id, [receipt(d.items[0].id, 2)])
        assert result.delivery.status == DeliveryStatus.RECEIVED
        assert services.piece_marks.archive_piece_mark(pm_actor, pm.id).is_archived

    def test_rejected_delivery_releases_the_piece_mark(self, build, services, pm_actor, field):
        pm = build.piece_mark("A-2", quantity=1)
        d = build.delivery("D-2", items=[(pm.id, 1)])
        with pytest.raises(InvalidTransitionError):
            services.piece_marks.archive_piece_mark(pm_actor, pm.id)

        services.deliveries.reject_delivery(field, d.id, "wrong load")
        assert services.piece_marks.archive_piece_mark(pm_actor, pm.id).is_archived
