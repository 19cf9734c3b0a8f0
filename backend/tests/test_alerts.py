import pytest
from sqlalchemy import select

from app.core.errors import ConflictError, NotFoundError
from app.models.alert import StockAlert
from app.schemas.transaction import TransactionCreate
from app.services import alerts, ledger


def pending_types(db, inventory_id: int) -> list[str]:
    return sorted(
        db.scalars(
            select(StockAlert.alert_type)
            .where(StockAlert.inventory_id == inventory_id)
            .where(StockAlert.is_acknowledged.is_(False))
        ).all()
    )


def take(db, inventory_id: int, quantity: int, actor) -> None:
    ledger.record_transaction(
        db, TransactionCreate(inventory_id=inventory_id, type="OUT", quantity=quantity, reason="Sales order"), actor
    )


def test_low_stock_alert_is_raised_once(db_session, make_stock, manager):
    inventory = make_stock(quantity=10, min_threshold=5)

    take(db_session, inventory.id, 5, manager)
    take(db_session, inventory.id, 1, manager)

    assert pending_types(db_session, inventory.id) == ["low_stock"]
    alert = db_session.scalar(select(StockAlert).where(StockAlert.inventory_id == inventory.id))
    assert alert.severity == "warning"
    assert alert.current_quantity == 5
    assert alert.threshold == 5


def test_out_of_stock_alert(db_session, make_stock, manager):
    inventory = make_stock(quantity=3, min_threshold=1)

    take(db_session, inventory.id, 3, manager)

    assert pending_types(db_session, inventory.id) == ["out_of_stock"]
    alert = db_session.scalar(select(StockAlert).where(StockAlert.inventory_id == inventory.id))
    assert alert.severity == "critical"


def test_overstock_alert(db_session, make_stock, manager):
    inventory = make_stock(quantity=10, min_threshold=2, max_threshold=20)

    ledger.record_transaction(
        db_session, TransactionCreate(inventory_id=inventory.id, type="IN", quantity=15, reason="Received"), manager
    )

    assert pending_types(db_session, inventory.id) == ["overstock"]


def test_detect_conditions(make_stock):
    assert alerts.detect_conditions(make_stock(quantity=0, min_threshold=0)) == [("out_of_stock", 0)]
    assert alerts.detect_conditions(make_stock(quantity=4, min_threshold=4)) == [("low_stock", 4)]
    assert alerts.detect_conditions(make_stock(quantity=9, min_threshold=4, max_threshold=8)) == [("overstock", 8)]
    assert alerts.detect_conditions(make_stock(quantity=6, min_threshold=4, max_threshold=8)) == []


def test_acknowledge_then_new_alert(db_session, make_stock, manager):
    inventory = make_stock(quantity=10, min_threshold=5)
    take(db_session, inventory.id, 6, manager)
    alert = db_session.scalar(select(StockAlert).where(StockAlert.inventory_id == inventory.id))

    alerts.acknowledge(db_session, alert.id, manager, "Reordered")
    db_session.commit()
    assert alert.is_acknowledged is True
    assert alert.acknowledged_by == manager.id
    assert alert.notes == "Reordered"

    with pytest.raises(ConflictError):
        alerts.acknowledge(db_session, alert.id, manager)

    take(db_session, inventory.id, 1, manager)
    assert pending_types(db_session, inventory.id) == ["low_stock"]


def test_acknowledge_missing_alert(db_session, manager):
    with pytest.raises(NotFoundError):
        alerts.acknowledge(db_session, 404, manager)


def test_scan_all_only_raises_missing_alerts(db_session, make_stock):
    low = make_stock(quantity=2, min_threshold=5)
    make_stock(quantity=50, min_threshold=5)

    first = alerts.scan_all(db_session)
    db_session.commit()
    second = alerts.scan_all(db_session)

    assert [alert.inventory_id for alert in first] == [low.id]
    assert second == []


def test_reorder_suggestions(db_session, make_stock):
    empty = make_stock(quantity=0, min_threshold=10, max_threshold=40, cost=2.0)
    low = make_stock(quantity=4, min_threshold=10, cost=1.5)
    near = make_stock(quantity=8, min_threshold=10, cost=1.0)
    make_stock(quantity=30, min_threshold=10)

    suggestions = {item["inventory_id"]: item for item in alerts.reorder_suggestions(db_session)}

    assert set(suggestions) == {empty.id, low.id, near.id}
    assert suggestions[empty.id]["priority"] == "critical"
    assert suggestions[empty.id]["suggested_quantity"] == 40
    assert suggestions[empty.id]["estimated_cost"] == 80.0
    assert suggestions[low.id]["priority"] == "high"
    assert suggestions[low.id]["suggested_quantity"] == 16
    assert suggestions[near.id]["priority"] == "medium"
    assert suggestions[near.id]["suggested_quantity"] == 12
