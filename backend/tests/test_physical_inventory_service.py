# Overview: Pytest coverage for the physical inventory workflow.

"""
Physical Inventory Tests

LIFECYCLE under test:
PENDING -> COUNTING -> COMPLETED -> APPROVED, with CANCELLED reachable
before approval. Approval posts one ADJUSTMENT per non-zero difference.
"""

from decimal import Decimal

import pytest
from sqlalchemy.exc import IntegrityError
from stockledger.errors import InvalidStateTransitionError, NotFoundError, PersistenceError, ValidationError
from stockledger.models import AuditEvent, StockMovement
from stockledger.services import audit_service, physical_inventory_service as pis, stock_service
from stockledger.services.stock_service import ItemIdentity


@pytest.fixture
def stocked(db_session, warehouse_a, product_a, product_b):
    """Product A: 100 on hand, product B: 5 on hand."""
    stock_service.receive_stock(warehouse_a.id, ItemIdentity(product_a.id), 100)
    stock_service.receive_stock(warehouse_a.id, ItemIdentity(product_b.id), 5)
    return product_a, product_b


def _item_for(inventory, product):
    return next(i for i in inventory.items if i.product_id == product.id)


class TestCreate:

    def test_snapshots_current_levels(self, db_session, warehouse_a, stocked):
        product_a, product_b = stocked
        inventory = pis.create_physical_inventory(warehouse_a.id, "alice", notes="Monthly")

        assert inventory.number == "INV-000001"
        assert inventory.status == pis.STATUS_PENDING
        assert inventory.created_by == "alice"
        assert len(inventory.items) == 2
        assert _item_for(inventory, product_a).system_quantity == Decimal("100")
        assert _item_for(inventory, product_b).counted_quantity is None

    def test_scope_filters(self, db_session, warehouse_a, zone_a1, stocked, make_product):
        product_a, product_b = stocked
        untracked = make_product("SVC-1", "Service", track_stock=False)
        stock_service.receive_stock(warehouse_a.id, ItemIdentity(untracked.id), 1)
        stock_service.issue_stock(warehouse_a.id, ItemIdentity(product_b.id), 5)
        stock_service.receive_stock(warehouse_a.id, ItemIdentity(product_a.id), 2, zone_id=zone_a1.id)

        full = pis.create_physical_inventory(warehouse_a.id, "alice")
        positive = pis.create_physical_inventory(warehouse_a.id, "alice", only_positive=True)
        zoned = pis.create_physical_inventory(warehouse_a.id, "alice", zone_id=zone_a1.id)

        assert untracked.id not in {i.product_id for i in full.items}
        assert len(full.items) == 3
        assert {i.product_id for i in positive.items} == {product_a.id}
        assert [(i.product_id, i.zone_id) for i in zoned.items] == [(product_a.id, zone_a1.id)]

    def test_requested_product_without_level(self, db_session, warehouse_a, make_product):
        fresh = make_product("NEW-1", "New arrival")
        inventory = pis.create_physical_inventory(warehouse_a.id, "alice", product_ids=[fresh.id])

        assert len(inventory.items) == 1
        assert inventory.items[0].system_quantity == Decimal("0")

    def test_actor_required(self, db_session, warehouse_a):
        with pytest.raises(ValidationError):
            pis.create_physical_inventory(warehouse_a.id, " ")

    def test_unknown_warehouse(self, db_session):
        with pytest.raises(NotFoundError):
            pis.create_physical_inventory(99999, "alice")


class TestCounting:

    def test_first_count_starts_counting(self, db_session, warehouse_a, stocked):
        product_a, _ = stocked
        inventory = pis.create_physical_inventory(warehouse_a.id, "alice")
        item = _item_for(inventory, product_a)

        counted = pis.set_counted(item.id, 92, "Shelf 3", actor="bob")

        assert counted.counted_quantity == Decimal("92")
        assert counted.difference == Decimal("-8")
        assert counted.counted_by == "bob"
        inventory = pis.get_physical_inventory(inventory.id)
        assert inventory.status == pis.STATUS_COUNTING
        assert inventory.started_at is not None

    def test_counting_is_idempotent(self, db_session, warehouse_a, stocked):
        product_a, _ = stocked
        inventory = pis.create_physical_inventory(warehouse_a.id, "alice")
        item = _item_for(inventory, product_a)

        pis.set_counted(item.id, 92)
        started_at = pis.get_physical_inventory(inventory.id).started_at
        again = pis.set_counted(item.id, 92)

        assert again.difference == Decimal("-8")
        inventory = pis.get_physical_inventory(inventory.id)
        assert inventory.status == pis.STATUS_COUNTING
        assert inventory.started_at == started_at

    def test_negative_count_rejected(self, db_session, warehouse_a, stocked):
        product_a, _ = stocked
        inventory = pis.create_physical_inventory(warehouse_a.id, "alice")
        with pytest.raises(ValidationError):
            pis.set_counted(_item_for(inventory, product_a).id, -1)

    def test_unknown_item(self, db_session):
        with pytest.raises(NotFoundError):
            pis.set_counted(99999, 1)

    def test_start_counting(self, db_session, warehouse_a, stocked):
        inventory = pis.create_physical_inventory(warehouse_a.id, "alice")

        started = pis.start_counting(inventory.id)
        assert started.status == pis.STATUS_COUNTING
        assert pis.start_counting(inventory.id).status == pis.STATUS_COUNTING

    @pytest.mark.parametrize("close", ["complete", "cancel"])
    def test_counting_rejected_once_closed(self, db_session, warehouse_a, stocked, close):
        product_a, _ = stocked
        inventory = pis.create_physical_inventory(warehouse_a.id, "alice")
        item_id = _item_for(inventory, product_a).id
        if close == "complete":
            pis.complete_physical_inventory(inventory.id, "alice")
        else:
            pis.cancel_physical_inventory(inventory.id, "alice", "Wrong date")

        with pytest.raises(InvalidStateTransitionError):
            pis.set_counted(item_id, 1)
        with pytest.raises(InvalidStateTransitionError):
            pis.start_counting(inventory.id)


class TestApproval:

    def test_reconciles_differences(self, db_session, warehouse_a, stocked):
        """100 on hand counted as 92 gives one -8 ADJUSTMENT and level 92."""
        product_a, product_b = stocked
        inventory = pis.create_physical_inventory(warehouse_a.id, "alice")
        pis.set_counted(_item_for(inventory, product_a).id, 92)
        pis.set_counted(_item_for(inventory, product_b).id, 5)
        pis.complete_physical_inventory(inventory.id, "alice")

        approved = pis.approve_physical_inventory(inventory.id, "manager")

        assert approved.status == pis.STATUS_APPROVED
        assert approved.approved_by == "manager"

        movements = db_session.query(StockMovement).filter_by(reference=approved.number).all()
        assert len(movements) == 1
        assert movements[0].type == "ADJUSTMENT"
        assert movements[0].reason_code == "PHYSICAL_INVENTORY"
        assert movements[0].signed_quantity == Decimal("-8")
        assert _item_for(approved, product_a).stock_movement_id == movements[0].id
        assert _item_for(approved, product_b).stock_movement_id is None

        assert stock_service.get_quantity_on_hand(warehouse_a.id, ItemIdentity(product_a.id)) == Decimal("92")
        assert stock_service.verify_ledger() == []

        events = audit_service.list_activity(event_type=audit_service.EVENT_PHYSICAL_INVENTORY_APPROVED)
        assert len(events) == 1
        assert events[0].payload["number"] == approved.number

    def test_failure_partway_leaves_inventory_completed(self, db_session, monkeypatch, warehouse_a, stocked):
        product_a, product_b = stocked
        inventory = pis.create_physical_inventory(warehouse_a.id, "alice")
        pis.set_counted(_item_for(inventory, product_a).id, 92)
        pis.set_counted(_item_for(inventory, product_b).id, 9)
        pis.complete_physical_inventory(inventory.id, "alice")

        real_adjust = pis._adjust_inner
        calls = {"n": 0}

        def adjust_then_fail(**kwargs):
            calls["n"] += 1
            if calls["n"] == 2:
                raise IntegrityError("INSERT INTO stock_movements", {}, Exception("constraint failed"))
            return real_adjust(**kwargs)

        monkeypatch.setattr(pis, "_adjust_inner", adjust_then_fail)

        with pytest.raises(PersistenceError):
            pis.approve_physical_inventory(inventory.id, "manager")

        monkeypatch.undo()

        assert pis.get_physical_inventory(inventory.id).status == pis.STATUS_COMPLETED
        assert db_session.query(StockMovement).filter_by(reference=inventory.number).count() == 0
        assert stock_service.get_quantity_on_hand(warehouse_a.id, ItemIdentity(product_a.id)) == Decimal("100")

    def test_adjustment_goes_to_item_zone(self, db_session, warehouse_a, zone_a1, product_a):
        stock_service.receive_stock(warehouse_a.id, ItemIdentity(product_a.id), 10, zone_id=zone_a1.id)
        inventory = pis.create_physical_inventory(warehouse_a.id, "alice")
        pis.set_counted(inventory.items[0].id, 12)
        pis.complete_physical_inventory(inventory.id, "alice")

        pis.approve_physical_inventory(inventory.id, "manager")

        assert stock_service.get_quantity_on_hand(
            warehouse_a.id, ItemIdentity(product_a.id), zone_a1.id
        ) == Decimal("12")

    def test_no_differences_is_a_valid_approval(self, db_session, warehouse_a, stocked):
        inventory = pis.create_physical_inventory(warehouse_a.id, "alice")
        pis.complete_physical_inventory(inventory.id, "alice")

        approved = pis.approve_physical_inventory(inventory.id, "manager")

        assert approved.status == pis.STATUS_APPROVED
        assert db_session.query(StockMovement).filter_by(reference=approved.number).count() == 0

    @pytest.mark.parametrize("advance", [0, 1])
    def test_approve_requires_completed(self, db_session, warehouse_a, stocked, advance):
        inventory = pis.create_physical_inventory(warehouse_a.id, "alice")
        if advance:
            pis.start_counting(inventory.id)

        with pytest.raises(InvalidStateTransitionError) as excinfo:
            pis.approve_physical_inventory(inventory.id, "manager")

        assert excinfo.value.current_status in (pis.STATUS_PENDING, pis.STATUS_COUNTING)
        assert db_session.query(AuditEvent).count() == 0

    def test_approved_cannot_be_approved_or_cancelled_again(self, db_session, warehouse_a, stocked):
        inventory = pis.create_physical_inventory(warehouse_a.id, "alice")
        pis.complete_physical_inventory(inventory.id, "alice")
        pis.approve_physical_inventory(inventory.id, "manager")

        with pytest.raises(InvalidStateTransitionError):
            pis.approve_physical_inventory(inventory.id, "manager")
        with pytest.raises(InvalidStateTransitionError):
            pis.cancel_physical_inventory(inventory.id, "manager", "Too late")
        with pytest.raises(InvalidStateTransitionError):
            pis.complete_physical_inventory(inventory.id, "manager")


class TestCancel:

    def test_cancel_has_no_ledger_effect(self, db_session, warehouse_a, stocked):
        product_a, _ = stocked
        inventory = pis.create_physical_inventory(warehouse_a.id, "alice")
        pis.set_counted(_item_for(inventory, product_a).id, 50)
        pis.complete_physical_inventory(inventory.id, "alice")

        cancelled = pis.cancel_physical_inventory(inventory.id, "alice", "Recount tomorrow")

        assert cancelled.status == pis.STATUS_CANCELLED
        assert cancelled.cancellation_reason == "Recount tomorrow"
        assert stock_service.get_quantity_on_hand(warehouse_a.id, ItemIdentity(product_a.id)) == Decimal("100")
        assert db_session.query(StockMovement).count() == 2


class TestReads:

    def test_summary(self, db_session, warehouse_a, stocked):
        product_a, product_b = stocked
        inventory = pis.create_physical_inventory(warehouse_a.id, "alice")
        pis.set_counted(_item_for(inventory, product_a).id, 92)

        summary = pis.get_physical_inventory_summary(inventory.id)

        assert summary["number"] == inventory.number
        assert summary["items_count"] == 2
        assert summary["counted_count"] == 1
        assert summary["uncounted_count"] == 1
        assert summary["total_difference"] == -8
        assert summary["has_negative_differences"] is True
        assert summary["has_positive_differences"] is False

    def test_list_with_difference_flags(self, db_session, warehouse_a, warehouse_b, stocked):
        product_a, product_b = stocked
        first = pis.create_physical_inventory(warehouse_a.id, "alice")
        pis.set_counted(_item_for(first, product_a).id, 101)
        pis.set_counted(_item_for(first, product_b).id, 4)
        second = pis.create_physical_inventory(warehouse_b.id, "alice", notes="Bar check")

        rows = pis.list_physical_inventories()
        assert [r["id"] for r in rows] == [second.id, first.id]

        flags = rows[1]
        assert flags["has_differences"] is True
        assert flags["differences_count"] == 2
        assert flags["has_positive_differences"] is True
        assert flags["has_negative_differences"] is True
        assert rows[0]["has_differences"] is False

        assert [r["id"] for r in pis.list_physical_inventories(warehouse_id=warehouse_a.id)] == [first.id]
        assert [r["id"] for r in pis.list_physical_inventories(status="COUNTING")] == [first.id]
        assert [r["id"] for r in pis.list_physical_inventories(q="bar")] == [second.id]

    def test_list_rejects_unknown_status(self, db_session):
        with pytest.raises(ValidationError):
            pis.list_physical_inventories(status="DONE")
