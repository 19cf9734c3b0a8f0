import pytest
from sqlalchemy import func, select

from app.core.errors import ConflictError, InsufficientStockError, InvalidInputError, NotFoundError
from app.models.alert import StockAlert
from app.models.inventory import Inventory
from app.models.transaction import InventoryTransaction
from app.models.warehouse import Warehouse
from app.schemas.transaction import TransactionCreate
from app.services import ledger


def request(inventory_id: int, type: str, quantity: int, **extra) -> TransactionCreate:
    return TransactionCreate(inventory_id=inventory_id, type=type, quantity=quantity, reason="Test", **extra)


def ledger_count(db) -> int:
    return db.scalar(select(func.count(InventoryTransaction.id)))


def test_in_adds_quantity(db_session, make_stock, manager):
    inventory = make_stock(quantity=10)

    result = ledger.record_transaction(db_session, request(inventory.id, "IN", 4), manager)

    assert result.inventory.quantity == 14
    assert result.previous_quantity == 10
    [entry] = result.transactions
    assert (entry.transaction_type, entry.previous_quantity, entry.new_quantity) == ("IN", 10, 14)
    assert entry.created_by == manager.id


def test_type_is_case_insensitive(db_session, make_stock, manager):
    inventory = make_stock(quantity=10)

    result = ledger.record_transaction(db_session, request(inventory.id, "out", 2), manager)

    assert result.transactions[0].transaction_type == "OUT"
    assert result.inventory.quantity == 8


def test_out_then_rejected_out_leaves_quantity(db_session, make_stock, manager):
    inventory = make_stock(quantity=10, min_threshold=5)

    result = ledger.record_transaction(db_session, request(inventory.id, "OUT", 3), manager)
    assert result.inventory.quantity == 7
    assert db_session.scalar(select(func.count(StockAlert.id))) == 0

    with pytest.raises(InsufficientStockError):
        ledger.record_transaction(db_session, request(inventory.id, "OUT", 8), manager)

    db_session.expire_all()
    assert db_session.get(Inventory, inventory.id).quantity == 7
    assert ledger_count(db_session) == 1


def test_out_respects_reserved_quantity(db_session, make_stock, manager):
    inventory = make_stock(quantity=10)
    ledger.reserve_stock(db_session, inventory.id, 6)

    with pytest.raises(InsufficientStockError):
        ledger.record_transaction(db_session, request(inventory.id, "OUT", 5), manager)

    result = ledger.record_transaction(db_session, request(inventory.id, "OUT", 4), manager)
    assert result.inventory.quantity == 6
    assert result.inventory.available_quantity == 0


def test_adjustment_sets_absolute_quantity(db_session, make_stock, manager):
    inventory = make_stock(quantity=10)

    result = ledger.record_transaction(db_session, request(inventory.id, "ADJUSTMENT", 25), manager)

    assert result.inventory.quantity == 25
    assert result.transactions[0].quantity_change == 15


def test_adjustment_cannot_drop_below_reserved(db_session, make_stock, manager):
    inventory = make_stock(quantity=10)
    ledger.reserve_stock(db_session, inventory.id, 5)

    with pytest.raises(InvalidInputError):
        ledger.record_transaction(db_session, request(inventory.id, "ADJUSTMENT", 3), manager)


@pytest.mark.parametrize("quantity", [0, -5])
def test_non_positive_quantity_is_rejected(db_session, make_stock, manager, quantity):
    inventory = make_stock(quantity=10)

    with pytest.raises(InvalidInputError):
        ledger.record_transaction(db_session, request(inventory.id, "IN", quantity), manager)
    assert ledger_count(db_session) == 0


def test_unknown_type_is_rejected(db_session, make_stock, manager):
    inventory = make_stock(quantity=10)

    with pytest.raises(InvalidInputError):
        ledger.record_transaction(db_session, request(inventory.id, "SALE", 1), manager)


def test_missing_reason_is_rejected(db_session, make_stock, manager):
    inventory = make_stock(quantity=10)

    with pytest.raises(InvalidInputError):
        ledger.record_transaction(
            db_session, TransactionCreate(inventory_id=inventory.id, type="IN", quantity=1), manager
        )


def test_missing_inventory_raises_not_found(db_session, manager):
    with pytest.raises(NotFoundError):
        ledger.record_transaction(db_session, request(999, "IN", 1), manager)


def test_transfer_creates_destination_row(db_session, make_stock, manager):
    source = make_stock(quantity=10)
    target = Warehouse(name="Overflow", location="Annex")
    db_session.add(target)
    db_session.commit()

    result = ledger.record_transaction(
        db_session, request(source.id, "TRANSFER", 4, destination_warehouse_id=target.id), manager
    )

    assert result.inventory.quantity == 6
    assert result.destination is not None
    assert result.destination.warehouse_id == target.id
    assert result.destination.product_id == source.product_id
    assert result.destination.quantity == 4

    outgoing, incoming = result.transactions
    assert outgoing.reference == incoming.reference
    assert outgoing.reference.startswith("TRF-")
    assert outgoing.quantity_change == -4 and incoming.quantity_change == 4
    assert outgoing.source_warehouse_id == source.warehouse_id
    assert incoming.destination_warehouse_id == target.id


def test_transfer_into_existing_row(db_session, make_stock, manager):
    source = make_stock(quantity=10)
    source_product = source.product
    target = make_stock(quantity=3, product=source_product)

    result = ledger.record_transaction(
        db_session,
        request(source.id, "TRANSFER", 5, destination_warehouse_id=target.warehouse_id, reference="MOVE-1"),
        manager,
    )

    assert result.destination.id == target.id
    assert result.destination.quantity == 8
    assert {entry.reference for entry in result.transactions} == {"MOVE-1"}


def test_transfer_validation(db_session, make_stock, manager):
    source = make_stock(quantity=10)
    other = make_stock(quantity=1)
    inactive = Warehouse(name="Closed", location="", is_active=False)
    db_session.add(inactive)
    db_session.commit()

    with pytest.raises(InvalidInputError):
        ledger.record_transaction(db_session, request(source.id, "TRANSFER", 1), manager)
    with pytest.raises(InvalidInputError):
        ledger.record_transaction(
            db_session, request(source.id, "TRANSFER", 1, destination_warehouse_id=source.warehouse_id), manager
        )
    with pytest.raises(InvalidInputError):
        ledger.record_transaction(
            db_session,
            request(
                source.id,
                "TRANSFER",
                1,
                source_warehouse_id=other.warehouse_id,
                destination_warehouse_id=inactive.id,
            ),
            manager,
        )
    with pytest.raises(NotFoundError):
        ledger.record_transaction(
            db_session, request(source.id, "TRANSFER", 1, destination_warehouse_id=inactive.id), manager
        )
    with pytest.raises(InsufficientStockError):
        ledger.record_transaction(
            db_session, request(source.id, "TRANSFER", 11, destination_warehouse_id=other.warehouse_id), manager
        )

    db_session.expire_all()
    assert db_session.get(Inventory, source.id).quantity == 10
    assert db_session.get(Inventory, other.id).quantity == 1
    assert ledger_count(db_session) == 0


def test_ledger_reconstructs_quantity(db_session, make_stock, manager):
    inventory = make_stock(quantity=0, min_threshold=0)
    for kind, quantity in [("IN", 20), ("OUT", 5), ("ADJUSTMENT", 12), ("IN", 3)]:
        ledger.record_transaction(db_session, request(inventory.id, kind, quantity), manager)

    total_change = db_session.scalar(
        select(func.sum(InventoryTransaction.new_quantity - InventoryTransaction.previous_quantity)).where(
            InventoryTransaction.inventory_id == inventory.id
        )
    )
    db_session.expire_all()
    assert total_change == db_session.get(Inventory, inventory.id).quantity == 15


def test_reserve_and_release(db_session, make_stock):
    inventory = make_stock(quantity=10)

    reserved = ledger.reserve_stock(db_session, inventory.id, 4)
    assert (reserved.reserved_quantity, reserved.available_quantity) == (4, 6)

    with pytest.raises(InsufficientStockError):
        ledger.reserve_stock(db_session, inventory.id, 7)

    released = ledger.release_stock(db_session, inventory.id, 10)
    assert released.reserved_quantity == 0


def test_transfer_rolls_back_source_when_destination_fails(db_session, make_stock, manager, monkeypatch):
    source = make_stock(quantity=10)
    target = Warehouse(name="Overflow", location="Annex")
    db_session.add(target)
    db_session.commit()
    build_entry = ledger._ledger_entry

    def entry_with_clashing_row(inventory, *args, **kwargs):
        entry = build_entry(inventory, *args, **kwargs)
        if inventory.warehouse_id == target.id:
            # a second row for the same pair breaks the unique constraint on flush
            db_session.add(
                Inventory(
                    product_id=inventory.product_id,
                    warehouse_id=target.id,
                    quantity=0,
                    reserved_quantity=0,
                    min_threshold=0,
                )
            )
        return entry

    monkeypatch.setattr(ledger, "_ledger_entry", entry_with_clashing_row)

    with pytest.raises(ConflictError):
        ledger.record_transaction(
            db_session, request(source.id, "TRANSFER", 4, destination_warehouse_id=target.id), manager
        )

    db_session.expire_all()
    assert db_session.get(Inventory, source.id).quantity == 10
    assert db_session.scalar(select(func.count(Inventory.id)).where(Inventory.warehouse_id == target.id)) == 0
    assert ledger_count(db_session) == 0
