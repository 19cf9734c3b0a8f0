import csv
from datetime import date, datetime, timedelta, timezone
from io import StringIO

from app.api.routes.dashboard import utc_day
from app.models.warehouse import Warehouse


def record(client, headers, inventory_id: int, kind: str, quantity: int, reason: str = "Sales order") -> None:
    response = client.post(
        "/api/v1/transactions",
        json={"inventory_id": inventory_id, "type": kind, "quantity": quantity, "reason": reason},
        headers=headers,
    )
    assert response.status_code == 201


def test_health_and_banner(client, db_session):
    health = client.get("/health").json()
    assert health["status"] == "ok"
    assert health["database"] == "connected"
    assert client.get("/").status_code == 200


def test_dashboard_overview(client, manager, staff, make_stock, headers_for):
    inventory = make_stock(quantity=10, min_threshold=5, cost=2.0)
    make_stock(quantity=0, min_threshold=1, cost=1.0)
    record(client, headers_for(manager), inventory.id, "OUT", 6)

    body = client.get("/api/v1/dashboard/overview", headers=headers_for(staff)).json()

    assert body["total_products"] == 2
    assert body["total_warehouses"] == 2
    assert body["total_inventory_units"] == 4
    assert body["total_inventory_value"] == 8.0
    assert body["low_stock_items"] == 1
    assert body["out_of_stock_items"] == 1
    assert body["total_transactions"] == 1
    assert body["pending_alerts"] == 1
    assert body["recent_activity"][0]["user"] == "morgan"
    assert body["recent_activity"][0]["quantity_change"] == -6


def test_transaction_analytics_buckets_by_day(client, manager, make_stock, headers_for):
    inventory = make_stock(quantity=10, min_threshold=0)
    headers = headers_for(manager)
    record(client, headers, inventory.id, "IN", 3, "Received")
    record(client, headers, inventory.id, "OUT", 2)

    body = client.get("/api/v1/dashboard/transaction-analytics", params={"period": "7d"}, headers=headers).json()

    assert body["total_transactions"] == 2
    assert body["by_type"]["IN"] == {"count": 1, "total_quantity": 3}
    assert len(body["daily"]) == 7
    assert body["daily"][-1]["IN"] == 1
    assert body["daily"][-1]["OUT"] == 1

    assert client.get("/api/v1/dashboard/transaction-analytics", params={"period": "1y"}, headers=headers).status_code == 400


def test_warehouse_analytics(client, admin, make_stock, headers_for):
    inventory = make_stock(quantity=4, min_threshold=5, cost=3.0)

    rows = client.get("/api/v1/dashboard/warehouse-analytics", headers=headers_for(admin)).json()

    assert rows[0]["warehouse_id"] == inventory.warehouse_id
    assert rows[0]["total_value"] == 12.0
    assert rows[0]["low_stock_items"] == 1
    assert rows[0]["utilization_percentage"] is None


def test_inventory_report_json_and_csv(client, manager, staff, make_stock, headers_for):
    make_stock(quantity=10, min_threshold=2, cost=1.5)
    make_stock(quantity=0, min_threshold=2, cost=1.0)

    body = client.get("/api/v1/reports/inventory", headers=headers_for(staff)).json()
    assert body["total_items"] == 10
    assert body["total_value"] == 15.0
    assert body["out_of_stock_count"] == 1
    assert [line["status"] for line in body["lines"]] == ["in_stock", "out_of_stock"]

    denied = client.get("/api/v1/reports/inventory", params={"format": "csv"}, headers=headers_for(staff))
    assert denied.status_code == 403

    exported = client.get("/api/v1/reports/inventory", params={"format": "csv"}, headers=headers_for(manager))
    assert exported.status_code == 200
    assert exported.headers["content-type"].startswith("text/csv")
    assert "attachment" in exported.headers["content-disposition"]
    rows = list(csv.reader(StringIO(exported.text)))
    assert rows[0][:3] == ["warehouse_id", "warehouse_name", "product_id"]
    assert len(rows) == 3


def test_turnover_report(client, manager, make_stock, headers_for):
    inventory = make_stock(quantity=10, min_threshold=0)
    record(client, headers_for(manager), inventory.id, "OUT", 4)

    body = client.get("/api/v1/reports/turnover", headers=headers_for(manager)).json()

    line = body["lines"][0]
    assert line["beginning_quantity"] == 10
    assert line["ending_quantity"] == 6
    assert line["total_out"] == 4
    assert line["average_quantity"] == 8.0
    assert line["turnover_rate"] == 0.5


def test_turnover_rejects_bad_ranges(client, manager, headers_for):
    headers = headers_for(manager)
    today = date.today()

    backwards = client.get(
        "/api/v1/reports/turnover",
        params={"from": today.isoformat(), "to": (today - timedelta(days=3)).isoformat()},
        headers=headers,
    )
    assert backwards.status_code == 400

    too_long = client.get(
        "/api/v1/reports/turnover",
        params={"from": (today - timedelta(days=400)).isoformat(), "to": today.isoformat()},
        headers=headers,
    )
    assert too_long.status_code == 400


def test_alert_routes(client, manager, staff, make_stock, headers_for):
    inventory = make_stock(quantity=2, min_threshold=5)
    headers = headers_for(manager)

    assert client.post("/api/v1/alerts/scan", headers=headers_for(staff)).status_code == 403
    assert client.post("/api/v1/alerts/scan", headers=headers).json()["created"] == 1

    listing = client.get("/api/v1/alerts", params={"acknowledged": False}, headers=headers).json()
    assert listing["summary"]["warning"] == 1
    alert_id = listing["data"][0]["id"]

    acknowledged = client.post(f"/api/v1/alerts/{alert_id}/acknowledge", json={"notes": "PO sent"}, headers=headers)
    assert acknowledged.status_code == 200
    assert acknowledged.json()["notes"] == "PO sent"
    assert client.post(f"/api/v1/alerts/{alert_id}/acknowledge", headers=headers).status_code == 409

    assert client.get("/api/v1/alerts", params={"type": "broken"}, headers=headers).status_code == 400

    thresholds = client.post(
        "/api/v1/alerts/thresholds",
        json={"inventory_id": inventory.id, "min_threshold": 0, "max_threshold": 1},
        headers=headers,
    ).json()
    assert thresholds["alerts_created"] == 1
    assert client.get("/api/v1/alerts/stats", headers=headers).json()["by_type"]["overstock"] == 1


def test_turnover_ignores_transfers(client, manager, make_stock, headers_for, db_session):
    inventory = make_stock(quantity=10, min_threshold=0)
    target = Warehouse(name="Overflow", location="Annex")
    db_session.add(target)
    db_session.commit()
    headers = headers_for(manager)
    response = client.post(
        "/api/v1/transactions",
        json={
            "inventory_id": inventory.id,
            "type": "TRANSFER",
            "quantity": 4,
            "reason": "Rebalance",
            "destination_warehouse_id": target.id,
        },
        headers=headers,
    )
    assert response.status_code == 201

    line = client.get("/api/v1/reports/turnover", headers=headers).json()["lines"][0]

    assert line["beginning_quantity"] == 10
    assert line["ending_quantity"] == 10
    assert line["total_in"] == 0
    assert line["total_out"] == 0
    assert line["turnover_rate"] == 0.0


def test_utc_day_normalizes_aware_timestamps():
    evening_in_lima = datetime(2026, 1, 1, 21, 30, tzinfo=timezone(timedelta(hours=-5)))

    assert utc_day(evening_in_lima) == "2026-01-02"
    assert utc_day(datetime(2026, 1, 1, 21, 30)) == "2026-01-01"
