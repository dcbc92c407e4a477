from __future__ import annotations

from collections.abc import Generator
from pathlib import Path

import fakeredis
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlmodel import Session, SQLModel, create_engine, select

from serialstock import main as app_main
from serialstock.domain.models import AuditLog, EventRecord, SerialMovement
from serialstock.infra import audit, db, events, redis_state
from serialstock.infra.auth import create_access_token
from serialstock.services.serial_query_service import SerialQueryService
from serialstock.services.transition_service import TransitionEngine


@pytest.fixture()
def stock_engine(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Engine:
    db_path = tmp_path / "serial_stock_test.db"
    test_engine = create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False},
    )

    @event.listens_for(test_engine, "connect")
    def _enable_foreign_keys(dbapi_connection: object, _connection_record: object) -> None:
        cursor = dbapi_connection.cursor()  # type: ignore[attr-defined]
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    SQLModel.metadata.create_all(test_engine)
    monkeypatch.setattr(db, "engine", test_engine)
    monkeypatch.setattr(audit, "engine", test_engine)
    monkeypatch.setattr(events, "engine", test_engine)
    return test_engine


@pytest.fixture()
def fake_redis(monkeypatch: pytest.MonkeyPatch) -> fakeredis.FakeRedis:
    fake = fakeredis.FakeRedis(decode_responses=True)
    monkeypatch.setattr(redis_state, "get_redis", lambda: fake)
    return fake


@pytest.fixture()
def stock_client(stock_engine: Engine, fake_redis: fakeredis.FakeRedis) -> Generator[TestClient, None, None]:
    client = TestClient(app_main.app)
    yield client
    client.close()


def _auth_header(employee_id: str = "tech-1", role_level: int = 1) -> dict[str, str]:
    token = create_access_token(employee_id=employee_id, role_level=role_level)
    return {"Authorization": f"Bearer {token}"}


ADMIN = _auth_header("admin-1", 3)
SUPERVISOR = _auth_header("lead-1", 2)
TECH = _auth_header("tech-1", 1)


def _create_model(client: TestClient, code: str, *, has_serial: bool = True) -> str:
    response = client.post(
        "/api/stock/models",
        json={"code": code, "name": f"Model {code}", "has_serial": has_serial},
        headers=ADMIN,
    )
    assert response.status_code == 201
    return response.json()["id"]


def _create_location(client: TestClient, code: str, *, is_active: bool = True) -> str:
    response = client.post(
        "/api/stock/locations",
        json={"code": code, "name": f"Location {code}", "location_type": "warehouse", "is_active": is_active},
        headers=ADMIN,
    )
    assert response.status_code == 201
    return response.json()["id"]


def _receive(client: TestClient, location_id: str, items: list[dict[str, str]]) -> dict:
    response = client.post(
        "/api/stock/serials/receive",
        json={"location_id": location_id, "items": items},
        headers=TECH,
    )
    assert response.status_code == 201
    return response.json()


def _receive_one(client: TestClient, model_id: str, location_id: str, serial_no: str) -> dict:
    body = _receive(client, location_id, [{"model_id": model_id, "serial_no": serial_no}])
    assert body["failed"] == []
    return body["received"][0]


def test_receive_deploy_return_then_stale_deploy(stock_client: TestClient) -> None:
    model_id = _create_model(stock_client, "ONT-100")
    warehouse_id = _create_location(stock_client, "WH-MAIN")

    item = _receive_one(stock_client, model_id, warehouse_id, " ont-0001 ")
    assert item["serial_no"] == "ONT-0001"
    assert item["status"] == "in_stock"
    assert item["location_id"] == warehouse_id
    assert item["model_code"] == "ONT-100"
    assert item["location_code"] == "WH-MAIN"
    assert item["version"] == 1

    deployed = stock_client.post(
        f"/api/stock/serials/{item['id']}/deploy",
        json={"ticket_id": "TCK-1", "site_id": "SITE-1"},
        headers=TECH,
    )
    assert deployed.status_code == 200
    deployed_body = deployed.json()
    assert deployed_body["status"] == "deployed"
    assert deployed_body["location_id"] is None
    assert deployed_body["ticket_id"] == "TCK-1"
    assert deployed_body["site_id"] == "SITE-1"

    returned = stock_client.post(
        f"/api/stock/serials/{item['id']}/return",
        json={"to_location_id": warehouse_id, "notes": "customer cancelled"},
        headers=TECH,
    )
    assert returned.status_code == 200
    returned_body = returned.json()
    assert returned_body["status"] == "returned"
    assert returned_body["location_id"] == warehouse_id
    assert returned_body["ticket_id"] is None
    assert returned_body["site_id"] is None

    stale = stock_client.post(
        f"/api/stock/serials/{item['id']}/deploy",
        json={"ticket_id": "TCK-2"},
        headers=TECH,
    )
    assert stale.status_code == 409
    detail = stale.json()["detail"]
    assert detail["code"] == "invalid_transition"
    assert detail["current_status"] == "returned"
    assert detail["operation"] == "deploy"

    movements = stock_client.get(f"/api/stock/serials/{item['id']}/movements", headers=TECH)
    assert movements.status_code == 200
    history = movements.json()
    assert [row["movement_type"] for row in history] == ["return", "deploy", "receive"]
    assert [row["sequence"] for row in history] == [3, 2, 1]
    assert history[0]["ticket_id"] == "TCK-1"
    assert history[0]["to_location_name"] == "Location WH-MAIN"
    assert history[1]["from_location_id"] == warehouse_id
    assert history[1]["to_location_id"] is None
    assert history[2]["from_status"] is None

    verify = stock_client.get(f"/api/stock/serials/{item['id']}/verify", headers=TECH)
    assert verify.status_code == 200
    assert verify.json()["consistent"] is True
    assert verify.json()["movement_count"] == 3

    current = stock_client.get(f"/api/stock/serials/{item['id']}", headers=TECH)
    assert current.json()["version"] == 3
    assert current.json()["notes"] == "customer cancelled"


def test_receive_reports_duplicates_without_aborting_batch(stock_client: TestClient) -> None:
    model_id = _create_model(stock_client, "RTR-1")
    other_model_id = _create_model(stock_client, "RTR-2")
    warehouse_id = _create_location(stock_client, "WH-1")
    _receive_one(stock_client, model_id, warehouse_id, "SN-EXISTING")

    body = _receive(
        stock_client,
        warehouse_id,
        [
            {"model_id": model_id, "serial_no": "SN-A"},
            {"model_id": model_id, "serial_no": "sn-a"},
            {"model_id": model_id, "serial_no": "SN-EXISTING"},
            {"model_id": other_model_id, "serial_no": "SN-A"},
        ],
    )
    assert [(row["model_id"], row["serial_no"]) for row in body["received"]] == [
        (model_id, "SN-A"),
        (other_model_id, "SN-A"),
    ]
    assert [row["serial_no"] for row in body["failed"]] == ["SN-A", "SN-EXISTING"]
    assert all("already exists" in row["error"] for row in body["failed"])

    listed = stock_client.get("/api/stock/serials", params={"model_id": model_id}, headers=TECH)
    assert listed.json()["total"] == 2


def test_receive_batch_precheck_aborts_whole_batch(stock_client: TestClient, stock_engine: Engine) -> None:
    serial_model = _create_model(stock_client, "CAM-1")
    bulk_model = _create_model(stock_client, "CABLE", has_serial=False)
    warehouse_id = _create_location(stock_client, "WH-1")
    closed_id = _create_location(stock_client, "WH-CLOSED", is_active=False)

    non_serial = stock_client.post(
        "/api/stock/serials/receive",
        json={
            "location_id": warehouse_id,
            "items": [
                {"model_id": serial_model, "serial_no": "CAM-0001"},
                {"model_id": bulk_model, "serial_no": "CABLE-0001"},
            ],
        },
        headers=TECH,
    )
    assert non_serial.status_code == 400
    assert non_serial.json()["detail"]["code"] == "validation_error"

    missing_model = stock_client.post(
        "/api/stock/serials/receive",
        json={"location_id": warehouse_id, "items": [{"model_id": "missing", "serial_no": "X-1"}]},
        headers=TECH,
    )
    assert missing_model.status_code == 404

    inactive = stock_client.post(
        "/api/stock/serials/receive",
        json={"location_id": closed_id, "items": [{"model_id": serial_model, "serial_no": "CAM-0002"}]},
        headers=TECH,
    )
    assert inactive.status_code == 400

    missing_location = stock_client.post(
        "/api/stock/serials/receive",
        json={"location_id": "nowhere", "items": [{"model_id": serial_model, "serial_no": "CAM-0003"}]},
        headers=TECH,
    )
    assert missing_location.status_code == 404

    blank_serial = stock_client.post(
        "/api/stock/serials/receive",
        json={"location_id": warehouse_id, "items": [{"model_id": serial_model, "serial_no": "   "}]},
        headers=TECH,
    )
    assert blank_serial.status_code == 422

    with Session(stock_engine) as session:
        assert session.exec(select(SerialMovement)).all() == []


def test_transfer_reserve_repair_scrap_flow(stock_client: TestClient) -> None:
    model_id = _create_model(stock_client, "MOD-1")
    main_id = _create_location(stock_client, "WH-MAIN")
    van_id = _create_location(stock_client, "VAN-7")
    closed_id = _create_location(stock_client, "WH-OLD", is_active=False)
    item = _receive_one(stock_client, model_id, main_id, "MOD-0001")
    path = f"/api/stock/serials/{item['id']}"

    to_closed = stock_client.post(f"{path}/transfer", json={"to_location_id": closed_id}, headers=TECH)
    assert to_closed.status_code == 400

    moved = stock_client.post(f"{path}/transfer", json={"to_location_id": van_id}, headers=TECH)
    assert moved.status_code == 200
    assert moved.json()["status"] == "in_stock"
    assert moved.json()["location_code"] == "VAN-7"

    reserved = stock_client.post(f"{path}/reserve", json={"ticket_id": "TCK-9"}, headers=TECH)
    assert reserved.json()["status"] == "reserved"
    assert reserved.json()["ticket_id"] == "TCK-9"

    by_ticket = stock_client.get("/api/stock/tickets/TCK-9/serials", headers=TECH)
    assert [row["id"] for row in by_ticket.json()["items"]] == [item["id"]]

    transfer_reserved = stock_client.post(f"{path}/transfer", json={"to_location_id": main_id}, headers=TECH)
    assert transfer_reserved.status_code == 409

    unreserved = stock_client.post(f"{path}/unreserve", json={}, headers=TECH)
    assert unreserved.json()["status"] == "in_stock"
    assert unreserved.json()["ticket_id"] is None

    defective = stock_client.post(f"{path}/defective", json={"notes": "no power"}, headers=TECH)
    assert defective.json()["status"] == "defective"

    repair_as_tech = stock_client.post(f"{path}/repair", json={}, headers=TECH)
    assert repair_as_tech.status_code == 403

    repaired = stock_client.post(f"{path}/repair", json={"to_location_id": main_id}, headers=SUPERVISOR)
    assert repaired.status_code == 200
    assert repaired.json()["status"] == "in_stock"
    assert repaired.json()["location_id"] == main_id

    scrapped = stock_client.post(f"{path}/scrap", json={"notes": "water damage"}, headers=SUPERVISOR)
    assert scrapped.json()["status"] == "scrapped"
    assert scrapped.json()["location_id"] is None

    after_scrap = stock_client.post(f"{path}/defective", json={}, headers=TECH)
    assert after_scrap.status_code == 409
    assert after_scrap.json()["detail"]["current_status"] == "scrapped"

    verify = stock_client.get(f"{path}/verify", headers=TECH)
    assert verify.json()["consistent"] is True
    assert verify.json()["movement_count"] == 7


def test_status_adjustment_respects_invariants(stock_client: TestClient) -> None:
    model_id = _create_model(stock_client, "ADJ-1")
    main_id = _create_location(stock_client, "WH-MAIN")
    item = _receive_one(stock_client, model_id, main_id, "ADJ-0001")
    path = f"/api/stock/serials/{item['id']}/status"

    as_tech = stock_client.post(path, json={"status": "deployed", "ticket_id": "TCK-1"}, headers=TECH)
    assert as_tech.status_code == 403

    no_ticket = stock_client.post(path, json={"status": "deployed"}, headers=SUPERVISOR)
    assert no_ticket.status_code == 400

    deployed = stock_client.post(path, json={"status": "deployed", "ticket_id": "TCK-1"}, headers=SUPERVISOR)
    assert deployed.status_code == 200
    assert deployed.json()["location_id"] is None

    restocked = stock_client.post(
        path,
        json={"status": "in_stock", "location_id": main_id, "notes": "found in warehouse"},
        headers=SUPERVISOR,
    )
    assert restocked.status_code == 200
    assert restocked.json()["ticket_id"] is None
    assert restocked.json()["location_id"] == main_id

    history = stock_client.get(f"/api/stock/serials/{item['id']}/movements", headers=TECH).json()
    assert [row["movement_type"] for row in history] == ["adjust", "adjust", "receive"]


def test_queries_lookup_and_filters(stock_client: TestClient) -> None:
    model_id = _create_model(stock_client, "Q-1")
    main_id = _create_location(stock_client, "WH-MAIN")
    side_id = _create_location(stock_client, "WH-SIDE")
    first = _receive_one(stock_client, model_id, main_id, "QX-100")
    _receive_one(stock_client, model_id, main_id, "QX-200")
    _receive_one(stock_client, model_id, side_id, "QY-300")

    by_serial = stock_client.get("/api/stock/serials/by-serial/qx-100", headers=TECH)
    assert by_serial.status_code == 200
    assert by_serial.json()["id"] == first["id"]

    unknown = stock_client.get("/api/stock/serials/by-serial/NOPE", headers=TECH)
    assert unknown.status_code == 404
    assert unknown.json()["detail"]["code"] == "not_found"

    search = stock_client.get("/api/stock/serials/search", params={"q": "qx"}, headers=TECH)
    assert sorted(row["serial_no"] for row in search.json()) == ["QX-100", "QX-200"]

    at_main = stock_client.get(f"/api/stock/locations/{main_id}/serials", headers=TECH)
    assert at_main.json()["total"] == 2
    assert stock_client.get("/api/stock/locations/missing/serials", headers=TECH).status_code == 404

    page = stock_client.get(
        "/api/stock/serials",
        params={"status": "in_stock", "limit": 2, "offset": 0, "order": "oldest"},
        headers=TECH,
    )
    body = page.json()
    assert body["total"] == 3
    assert body["limit"] == 2
    assert [row["serial_no"] for row in body["items"]] == ["QX-100", "QX-200"]

    assert stock_client.get("/api/stock/serials/does-not-exist", headers=TECH).status_code == 404


def test_access_levels(stock_client: TestClient) -> None:
    assert stock_client.get("/api/stock/serials").status_code == 401
    assert stock_client.get("/api/stock/serials", headers={"Authorization": "Bearer junk"}).status_code == 401
    assert stock_client.get("/api/stock/serials", headers=_auth_header("guest", 0)).status_code == 403
    assert stock_client.get("/api/stock/serials", headers=TECH).status_code == 200

    create_as_tech = stock_client.post(
        "/api/stock/models",
        json={"code": "M-1", "name": "Model", "has_serial": True},
        headers=TECH,
    )
    assert create_as_tech.status_code == 403

    _create_model(stock_client, "DUP")
    duplicate = stock_client.post(
        "/api/stock/models",
        json={"code": "DUP", "name": "Again", "has_serial": True},
        headers=ADMIN,
    )
    assert duplicate.status_code == 409


def test_transitions_emit_events_and_audit(stock_client: TestClient, stock_engine: Engine) -> None:
    model_id = _create_model(stock_client, "EV-1")
    main_id = _create_location(stock_client, "WH-MAIN")
    item = _receive_one(stock_client, model_id, main_id, "EV-0001")
    stock_client.post(f"/api/stock/serials/{item['id']}/deploy", json={"ticket_id": "TCK-5"}, headers=TECH)

    with Session(stock_engine) as session:
        recorded = session.exec(select(EventRecord).order_by(EventRecord.ts)).all()
        logs = session.exec(select(AuditLog).where(AuditLog.action == "serial.deploy")).all()

    assert [row.event_type for row in recorded] == ["serial.received", "serial.deployed"]
    deployed_event = recorded[1]
    assert deployed_event.actor_id == "tech-1"
    assert deployed_event.payload["serial_item_id"] == item["id"]
    assert deployed_event.payload["to_status"] == "deployed"
    assert deployed_event.payload["ticket_id"] == "TCK-5"

    assert len(logs) == 1
    assert logs[0].actor_id == "tech-1"
    assert logs[0].detail["result"]["outcome"] == "success"
    assert logs[0].detail["what"]["serial_no"] == "EV-0001"


def test_summary_is_cached_and_invalidated(stock_client: TestClient, fake_redis: fakeredis.FakeRedis) -> None:
    model_id = _create_model(stock_client, "SUM-1")
    main_id = _create_location(stock_client, "WH-MAIN")
    _create_location(stock_client, "WH-CLOSED", is_active=False)
    item = _receive_one(stock_client, model_id, main_id, "SUM-0001")
    _receive_one(stock_client, model_id, main_id, "SUM-0002")

    first = stock_client.get("/api/stock/serials/summary", headers=TECH)
    assert first.status_code == 200
    body = first.json()
    assert body["total_serials"] == 2
    assert body["by_status"]["in_stock"] == 2
    assert body["by_status"]["deployed"] == 0
    assert body["active_locations"] == 1
    assert len(body["recent_movements"]) == 2
    assert fake_redis.get(redis_state.SUMMARY_CACHE_KEY) is not None

    stock_client.post(f"/api/stock/serials/{item['id']}/deploy", json={"ticket_id": "TCK-1"}, headers=TECH)
    assert fake_redis.get(redis_state.SUMMARY_CACHE_KEY) is None

    second = stock_client.get("/api/stock/serials/summary", headers=TECH).json()
    assert second["by_status"]["in_stock"] == 1
    assert second["by_status"]["deployed"] == 1
    assert second["recent_movements"][0]["movement_type"] == "deploy"


def test_scrapped_unit_cannot_be_scrapped_again(stock_client: TestClient) -> None:
    model_id = _create_model(stock_client, "SCR-1")
    main_id = _create_location(stock_client, "WH-MAIN")
    item = _receive_one(stock_client, model_id, main_id, "SCR-0001")
    path = f"/api/stock/serials/{item['id']}"

    first = stock_client.post(f"{path}/scrap", json={}, headers=SUPERVISOR)
    assert first.status_code == 200
    assert first.json()["version"] == 2

    second = stock_client.post(f"{path}/scrap", json={"notes": "again"}, headers=SUPERVISOR)
    assert second.status_code == 409
    assert second.json()["detail"]["current_status"] == "scrapped"
    assert second.json()["detail"]["operation"] == "scrap"

    current = stock_client.get(path, headers=TECH).json()
    assert current["version"] == 2
    history = stock_client.get(f"{path}/movements", headers=TECH).json()
    assert [row["movement_type"] for row in history] == ["scrap", "receive"]


def test_search_treats_wildcards_literally(stock_client: TestClient) -> None:
    model_id = _create_model(stock_client, "WLD-1")
    main_id = _create_location(stock_client, "WH-MAIN")
    for serial_no in ("AB1", "A_1", "X9"):
        _receive_one(stock_client, model_id, main_id, serial_no)

    underscore = stock_client.get("/api/stock/serials/search", params={"q": "a_1"}, headers=TECH)
    assert [row["serial_no"] for row in underscore.json()] == ["A_1"]

    percent = stock_client.get("/api/stock/serials/search", params={"q": "%"}, headers=TECH)
    assert percent.json() == []

    listed = stock_client.get("/api/stock/serials", params={"search": "_"}, headers=TECH)
    assert [row["serial_no"] for row in listed.json()["items"]] == ["A_1"]


def test_summary_built_during_invalidation_is_not_cached(
    stock_client: TestClient,
    fake_redis: fakeredis.FakeRedis,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    model_id = _create_model(stock_client, "SUM-2")
    main_id = _create_location(stock_client, "WH-MAIN")
    item = _receive_one(stock_client, model_id, main_id, "SUM-1000")

    build_summary = SerialQueryService._build_summary

    def build_then_deploy(service: SerialQueryService):
        summary = build_summary(service)
        TransitionEngine().deploy(item["id"], ticket_id="TCK-1", performed_by="tech-2")
        return summary

    monkeypatch.setattr(SerialQueryService, "_build_summary", build_then_deploy)
    stale = stock_client.get("/api/stock/serials/summary", headers=TECH).json()
    assert stale["by_status"]["in_stock"] == 1
    assert fake_redis.get(redis_state.SUMMARY_CACHE_KEY) is None

    monkeypatch.setattr(SerialQueryService, "_build_summary", build_summary)
    fresh = stock_client.get("/api/stock/serials/summary", headers=TECH).json()
    assert fresh["by_status"]["deployed"] == 1
    assert fake_redis.get(redis_state.SUMMARY_CACHE_KEY) is not None
