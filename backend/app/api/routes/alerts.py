from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.api.deps import log_action, require_permission
from app.api.pagination import PageParams, paginate
from app.db.session import get_db
from app.models.alert import StockAlert
from app.models.inventory import Inventory
from app.models.product import Product
from app.models.user import User
from app.models.warehouse import Warehouse
from app.schemas.alert import AlertAcknowledgeRequest, ThresholdRequest
from app.services import alerts


router = APIRouter()


def serialize_alert(alert: StockAlert, product_name: str | None = None, warehouse_name: str | None = None) -> dict:
    return {
        "id": alert.id,
        "inventory_id": alert.inventory_id,
        "product_id": alert.product_id,
        "product_name": product_name,
        "warehouse_id": alert.warehouse_id,
        "warehouse_name": warehouse_name,
        "type": alert.alert_type,
        "severity": alert.severity,
        "message": alert.message,
        "current_quantity": alert.current_quantity,
        "threshold": alert.threshold,
        "is_acknowledged": alert.is_acknowledged,
        "acknowledged_by": alert.acknowledged_by,
        "acknowledged_at": alert.acknowledged_at.isoformat() if alert.acknowledged_at else None,
        "notes": alert.notes,
        "created_at": alert.created_at.isoformat(),
    }


def serialize_thresholds(inventory: Inventory) -> dict:
    return {
        "inventory_id": inventory.id,
        "product_id": inventory.product_id,
        "warehouse_id": inventory.warehouse_id,
        "quantity": inventory.quantity,
        "min_threshold": inventory.min_threshold,
        "max_threshold": inventory.max_threshold,
    }


@router.get("")
def list_alerts(
    type: str | None = None,
    warehouse_id: int | None = None,
    acknowledged: bool | None = None,
    params: PageParams = Depends(),
    db: Session = Depends(get_db),
    _: User = Depends(require_permission("alerts", "read")),
) -> dict:
    statement = (
        select(StockAlert, Product.name, Warehouse.name)
        .join(Product, Product.id == StockAlert.product_id)
        .join(Warehouse, Warehouse.id == StockAlert.warehouse_id)
        .order_by(StockAlert.created_at.desc(), StockAlert.id.desc())
    )
    if type:
        if type not in alerts.ALERT_TYPES:
            raise HTTPException(status_code=400, detail=f"Invalid alert type. Must be one of: {', '.join(alerts.ALERT_TYPES)}")
        statement = statement.where(StockAlert.alert_type == type)
    if warehouse_id is not None:
        statement = statement.where(StockAlert.warehouse_id == warehouse_id)
    if acknowledged is not None:
        statement = statement.where(StockAlert.is_acknowledged.is_(acknowledged))

    rows, pagination = paginate(db, statement, params)
    severity_counts = dict(
        db.execute(
            select(StockAlert.severity, func.count(StockAlert.id))
            .where(StockAlert.is_acknowledged.is_(False))
            .group_by(StockAlert.severity)
        ).all()
    )
    return {
        "data": [serialize_alert(*row) for row in rows],
        "pagination": pagination,
        "summary": {
            "total": sum(severity_counts.values()),
            "critical": severity_counts.get("critical", 0),
            "warning": severity_counts.get("warning", 0),
            "info": severity_counts.get("info", 0),
        },
    }


@router.get("/stats")
def alert_stats(
    db: Session = Depends(get_db),
    _: User = Depends(require_permission("alerts", "read")),
) -> dict:
    total = db.scalar(select(func.count(StockAlert.id))) or 0
    pending = db.scalar(select(func.count(StockAlert.id)).where(StockAlert.is_acknowledged.is_(False))) or 0
    by_type = dict(
        db.execute(
            select(StockAlert.alert_type, func.count(StockAlert.id))
            .where(StockAlert.is_acknowledged.is_(False))
            .group_by(StockAlert.alert_type)
        ).all()
    )
    by_warehouse = db.execute(
        select(Warehouse.id, Warehouse.name, func.count(StockAlert.id))
        .join(StockAlert, StockAlert.warehouse_id == Warehouse.id)
        .where(StockAlert.is_acknowledged.is_(False))
        .group_by(Warehouse.id, Warehouse.name)
        .order_by(func.count(StockAlert.id).desc())
    ).all()
    return {
        "total_alerts": total,
        "pending_alerts": pending,
        "acknowledged_alerts": total - pending,
        "by_type": {alert_type: by_type.get(alert_type, 0) for alert_type in alerts.ALERT_TYPES},
        "by_warehouse": [
            {"warehouse_id": warehouse_id, "warehouse_name": name, "pending": count}
            for warehouse_id, name, count in by_warehouse
        ],
    }


@router.get("/reorder-suggestions")
def reorder_suggestions(
    db: Session = Depends(get_db),
    _: User = Depends(require_permission("alerts", "read")),
) -> dict:
    suggestions = alerts.reorder_suggestions(db)
    return {
        "data": suggestions,
        "total_estimated_cost": round(sum(item["estimated_cost"] for item in suggestions), 2),
    }


@router.post("/scan")
def scan_alerts(
    db: Session = Depends(get_db),
    current_user: User = Depends(require_permission("alerts", "update")),
) -> dict:
    created = alerts.scan_all(db)
    db.commit()
    log_action(db, current_user.id, "scan", "alerts", detail=f"{len(created)} alerts raised")
    return {"message": "Scan completed", "created": len(created)}


@router.post("/thresholds")
def set_thresholds(
    payload: ThresholdRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_permission("alerts", "update")),
) -> dict:
    if payload.min_threshold < 0:
        raise HTTPException(status_code=400, detail="Minimum threshold cannot be negative")
    if payload.max_threshold is not None and payload.max_threshold <= payload.min_threshold:
        raise HTTPException(status_code=400, detail="Maximum threshold must be greater than the minimum threshold")

    inventory = db.get(Inventory, payload.inventory_id)
    if not inventory:
        raise HTTPException(status_code=404, detail="Inventory record not found")

    inventory.min_threshold = payload.min_threshold
    inventory.max_threshold = payload.max_threshold
    db.flush()
    created = alerts.evaluate_inventory(db, inventory)
    db.commit()
    db.refresh(inventory)

    log_action(db, current_user.id, "update", "alerts", record_id=inventory.id, detail="Thresholds updated")
    return {**serialize_thresholds(inventory), "alerts_created": len(created)}


@router.get("/thresholds/{inventory_id}")
def get_thresholds(
    inventory_id: int,
    db: Session = Depends(get_db),
    _: User = Depends(require_permission("alerts", "read")),
) -> dict:
    inventory = db.get(Inventory, inventory_id)
    if not inventory:
        raise HTTPException(status_code=404, detail="Inventory record not found")
    return serialize_thresholds(inventory)


@router.post("/{alert_id}/acknowledge")
def acknowledge_alert(
    alert_id: int,
    payload: AlertAcknowledgeRequest | None = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_permission("alerts", "update")),
) -> dict:
    alert = alerts.acknowledge(db, alert_id, current_user, payload.notes if payload else "")
    db.commit()
    db.refresh(alert)

    log_action(db, current_user.id, "acknowledge", "alerts", record_id=alert.id)
    return serialize_alert(alert)
