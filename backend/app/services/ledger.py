"""Inventory transaction ledger.

Every stock change goes through ``record_transaction``: the request is
validated, the affected inventory rows are locked, the new quantities are
written and one immutable ledger row per affected inventory row is appended,
all inside a single database transaction.

Transaction types:

* ``IN`` adds the requested quantity.
* ``OUT`` removes it; fails when it exceeds the available stock
  (quantity minus reserved quantity).
* ``ADJUSTMENT`` sets the quantity to the requested value (absolute count,
  e.g. after a physical stock take).
* ``TRANSFER`` moves stock to the same product's row in another warehouse,
  creating that row when it does not exist yet.
"""

import logging
import uuid
from dataclasses import dataclass, field

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.errors import ConflictError, InsufficientStockError, InvalidInputError, NotFoundError
from app.models.inventory import Inventory
from app.models.transaction import InventoryTransaction
from app.models.user import User
from app.models.warehouse import Warehouse
from app.schemas.transaction import TransactionCreate
from app.services import alerts


logger = logging.getLogger(__name__)

TRANSACTION_IN = "IN"
TRANSACTION_OUT = "OUT"
TRANSACTION_ADJUSTMENT = "ADJUSTMENT"
TRANSACTION_TRANSFER = "TRANSFER"

TRANSACTION_TYPES: tuple[str, ...] = (
    TRANSACTION_IN,
    TRANSACTION_OUT,
    TRANSACTION_ADJUSTMENT,
    TRANSACTION_TRANSFER,
)


@dataclass
class LedgerResult:
    inventory: Inventory
    previous_quantity: int
    transactions: list[InventoryTransaction] = field(default_factory=list)
    destination: Inventory | None = None


def normalize_type(raw_type: str) -> str:
    transaction_type = (raw_type or "").strip().upper()
    if transaction_type not in TRANSACTION_TYPES:
        raise InvalidInputError(f"Invalid transaction type. Must be one of: {', '.join(TRANSACTION_TYPES)}")
    return transaction_type


def record_transaction(db: Session, payload: TransactionCreate, actor: User) -> LedgerResult:
    transaction_type = normalize_type(payload.type)
    if payload.quantity <= 0:
        raise InvalidInputError("Quantity must be greater than 0")
    if not payload.reason.strip():
        raise InvalidInputError("Reason is required")

    try:
        if transaction_type == TRANSACTION_TRANSFER:
            result = _apply_transfer(db, payload, actor)
        else:
            result = _apply_single(db, transaction_type, payload, actor)

        db.flush()
        alerts.evaluate_inventory(db, result.inventory)
        if result.destination is not None:
            alerts.evaluate_inventory(db, result.destination)
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise ConflictError("Inventory changed concurrently, retry the transaction") from exc
    except Exception:
        db.rollback()
        raise

    for entry in result.transactions:
        db.refresh(entry)
    db.refresh(result.inventory)
    if result.destination is not None:
        db.refresh(result.destination)

    logger.info(
        "Transaction %s of %s units on inventory %s by user %s (%s -> %s)",
        transaction_type,
        payload.quantity,
        result.inventory.id,
        actor.id,
        result.previous_quantity,
        result.inventory.quantity,
    )
    return result


def _lock_inventory(db: Session, inventory_id: int) -> Inventory:
    inventory = db.scalar(
        select(Inventory)
        .where(Inventory.id == inventory_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    if not inventory:
        raise NotFoundError("Inventory record not found")
    return inventory


def _ledger_entry(
    inventory: Inventory,
    transaction_type: str,
    payload: TransactionCreate,
    actor: User,
    previous_quantity: int,
    reference: str | None = None,
) -> InventoryTransaction:
    return InventoryTransaction(
        inventory_id=inventory.id,
        product_id=inventory.product_id,
        warehouse_id=inventory.warehouse_id,
        transaction_type=transaction_type,
        quantity=payload.quantity,
        previous_quantity=previous_quantity,
        new_quantity=inventory.quantity,
        reason=payload.reason,
        reference=reference if reference is not None else payload.reference,
        notes=payload.notes,
        source_warehouse_id=payload.source_warehouse_id,
        destination_warehouse_id=payload.destination_warehouse_id,
        created_by=actor.id,
    )


def _check_available(inventory: Inventory, quantity: int) -> None:
    if quantity > inventory.available_quantity:
        raise InsufficientStockError(
            f"Insufficient stock: requested {quantity}, available {inventory.available_quantity}"
        )


def _apply_single(db: Session, transaction_type: str, payload: TransactionCreate, actor: User) -> LedgerResult:
    inventory = _lock_inventory(db, payload.inventory_id)
    previous_quantity = inventory.quantity

    if transaction_type == TRANSACTION_IN:
        inventory.quantity = previous_quantity + payload.quantity
    elif transaction_type == TRANSACTION_OUT:
        _check_available(inventory, payload.quantity)
        inventory.quantity = previous_quantity - payload.quantity
    else:
        if payload.quantity < inventory.reserved_quantity:
            raise InvalidInputError(
                f"Adjusted quantity cannot be below the reserved quantity ({inventory.reserved_quantity})"
            )
        inventory.quantity = payload.quantity

    entry = _ledger_entry(inventory, transaction_type, payload, actor, previous_quantity)
    db.add(entry)
    return LedgerResult(inventory=inventory, previous_quantity=previous_quantity, transactions=[entry])


def _apply_transfer(db: Session, payload: TransactionCreate, actor: User) -> LedgerResult:
    if not payload.destination_warehouse_id:
        raise InvalidInputError("Destination warehouse ID is required for transfers")

    source = db.get(Inventory, payload.inventory_id)
    if not source:
        raise NotFoundError("Inventory record not found")
    if payload.source_warehouse_id and payload.source_warehouse_id != source.warehouse_id:
        raise InvalidInputError("Source warehouse does not match the inventory record")
    if payload.destination_warehouse_id == source.warehouse_id:
        raise InvalidInputError("Source and destination warehouses must differ")

    destination_warehouse = db.get(Warehouse, payload.destination_warehouse_id)
    if not destination_warehouse or not destination_warehouse.is_active:
        raise NotFoundError("Destination warehouse not found")

    destination = db.scalar(
        select(Inventory)
        .where(Inventory.product_id == source.product_id)
        .where(Inventory.warehouse_id == destination_warehouse.id)
    )

    # lock in id order so opposite transfers between the same rows cannot deadlock
    lock_ids = sorted({source.id} | ({destination.id} if destination else set()))
    locked = {
        row.id: row
        for row in db.scalars(
            select(Inventory)
            .where(Inventory.id.in_(lock_ids))
            .order_by(Inventory.id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).all()
    }
    source = locked.get(source.id)
    if source is None:
        raise NotFoundError("Inventory record not found")

    _check_available(source, payload.quantity)

    if destination is None:
        destination = Inventory(
            product_id=source.product_id,
            warehouse_id=destination_warehouse.id,
            quantity=0,
            reserved_quantity=0,
            min_threshold=0,
        )
        db.add(destination)
        db.flush()
    else:
        destination = locked[destination.id]

    transfer_payload = payload.model_copy(update={"source_warehouse_id": source.warehouse_id})
    reference = payload.reference or f"TRF-{uuid.uuid4().hex[:12].upper()}"

    source_previous = source.quantity
    source.quantity = source_previous - payload.quantity
    destination_previous = destination.quantity
    destination.quantity = destination_previous + payload.quantity

    entries = [
        _ledger_entry(source, TRANSACTION_TRANSFER, transfer_payload, actor, source_previous, reference),
        _ledger_entry(destination, TRANSACTION_TRANSFER, transfer_payload, actor, destination_previous, reference),
    ]
    db.add_all(entries)
    return LedgerResult(
        inventory=source,
        previous_quantity=source_previous,
        transactions=entries,
        destination=destination,
    )


def reserve_stock(db: Session, inventory_id: int, quantity: int) -> Inventory:
    if quantity <= 0:
        raise InvalidInputError("Quantity must be greater than 0")
    try:
        inventory = _lock_inventory(db, inventory_id)
        _check_available(inventory, quantity)
        inventory.reserved_quantity += quantity
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(inventory)
    logger.info("Reserved %s units on inventory %s", quantity, inventory.id)
    return inventory


def release_stock(db: Session, inventory_id: int, quantity: int) -> Inventory:
    if quantity <= 0:
        raise InvalidInputError("Quantity must be greater than 0")
    try:
        inventory = _lock_inventory(db, inventory_id)
        inventory.reserved_quantity = max(inventory.reserved_quantity - quantity, 0)
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(inventory)
    logger.info("Released %s units on inventory %s", quantity, inventory.id)
    return inventory
