# tests/test_api.py
import pytest
from fastapi.testclient import TestClient

from tablecraft.core import rate_limit
from tablecraft.core.db import get_db
from tablecraft.core.exceptions import DataSourceUnavailableError
from tablecraft.main import app
from tablecraft.parity import harness as harness_module
from tablecraft.registry import registry

GRID = "/api/v1/datatables"


@pytest.fixture
def client(session, orders_descriptor):
    def override_get_db():
        yield session

    app.dependency_overrides[get_db] = override_get_db
    registry.register(orders_descriptor)
    rate_limit.limiter.reset()
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
        registry.clear()
        rate_limit.limiter.reset()


def test_get_grid(client):
    response = client.get(f"{GRID}/orders", params={"draw": "1", "start": "0", "length": "2"})
    assert response.status_code == 200
    assert response.headers["content-type"] == "application/json"
    body = response.json()
    assert body["draw"] == 1
    assert body["recordsTotal"] == 3
    assert len(body["data"]) == 2
    assert body["data"][0]["users.name"] == "alice"


def test_post_form_with_difta_name(client):
    response = client.post(GRID, data={"difta[name]": "orders", "draw": "4", "search[value]": "bob"})
    assert response.status_code == 200
    body = response.json()
    assert body["draw"] == 4
    assert body["recordsFiltered"] == 1


def test_post_json_body(client):
    response = client.post(f"{GRID}/orders", json={"draw": 2, "length": 1})
    assert response.status_code == 200
    assert len(response.json()["data"]) == 1


def test_privilege_headers_limit_buttons(client):
    response = client.get(
        f"{GRID}/orders",
        headers={
            "X-Privileges": "admin.orders.index,admin.orders.edit",
            "X-Route-Name": "admin.orders.index",
            "X-Role-Group": "2",
        }
    )
    action = response.json()["data"][0]["action"]
    assert "/1/edit" in action
    assert "/1/view" in action
    assert "/1/delete" not in action


def test_unknown_table_is_404(client):
    assert client.get(f"{GRID}/nothing_here").status_code == 404
    assert client.post(GRID, data={"draw": "1"}).status_code == 404


def test_malicious_search_is_400(client):
    response = client.get(f"{GRID}/orders", params={"search[value]": "1' OR '1'='1"})
    assert response.status_code == 400


def test_invalid_table_identifier_is_400(client):
    assert client.get(f"{GRID}/orders;drop").status_code == 400


def test_rate_limit_is_429(client, monkeypatch):
    monkeypatch.setattr(rate_limit.limiter, "limit", 2)
    assert client.get(f"{GRID}/orders").status_code == 200
    assert client.get(f"{GRID}/orders").status_code == 200
    response = client.get(f"{GRID}/orders")
    assert response.status_code == 429
    assert response.headers["retry-after"] == str(rate_limit.limiter.window)


def test_data_source_unavailable_is_503(client, monkeypatch):
    def unavailable(*args, **kwargs):
        raise DataSourceUnavailableError("database down")

    monkeypatch.setattr(harness_module, "compile_legacy", unavailable)
    assert client.get(f"{GRID}/orders").status_code == 503


def test_inspector_summary(client):
    response = client.get(f"{GRID}/inspector/summary")
    assert response.status_code == 200
    body = response.json()
    assert "rows" in body
    assert body["status"]["version"]

    markdown = client.get(f"{GRID}/inspector/summary", params={"format": "markdown"})
    assert markdown.status_code == 200
    assert markdown.text.startswith("# Datatable Inspector Summary")


def test_health(client):
    body = client.get("/health").json()
    assert body["status"] == "ok"
    assert body["mode"] in ("legacy", "hybrid", "refactored")
