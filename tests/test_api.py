"""
HTTP surface: camelCase wire format, ETag revalidation, error mapping,
rate limiting and the meta routes. The app runs against an injected
service built from fakes.
"""

import pytest
from fastapi.testclient import TestClient

from woz_valuation.core import config
from woz_valuation.core.errors import SourceUnavailable
from woz_valuation.data.base import Source
from woz_valuation.main import create_app

from conftest import FakeTier, woz_record

BODY = {"address": "Kampweg 10", "postalCode": "3769 DG"}


@pytest.fixture
def client(make_service):
    svc = make_service(FakeTier(Source.BROWSER, record=woz_record()))
    with TestClient(create_app(svc)) as c:
        yield c


def test_property_wire_format(client):
    r = client.post("/v1/property", json=BODY)
    assert r.status_code == 200
    data = r.json()
    assert data["postalCode"] == "3769DG"
    assert data["assessedValue"] == 350_000
    assert data["dataSource"] == "browser"
    assert data["estimated"] is False
    assert data["estimatedFields"] == ["energy_label"]
    assert data["metadata"]["constructionYear"] == "1975"
    assert len(data["metadata"]["valueHistory"]) == 2
    assert "X-Request-Id" in r.headers


def test_valuation_and_etag_revalidation(client):
    r = client.post("/v1/valuation", json=BODY)
    assert r.status_code == 200
    data = r.json()
    assert data["estimatedValue"] > 0
    assert data["marketMultiplier"] == 1.18
    assert data["currency"] == "EUR"
    assert data["preset"] == "market"
    assert [f["factor"] for f in data["factors"]] == ["energy_label", "construction_age", "size", "location"]
    assert data["valueRange"]["low"] <= data["estimatedValue"] <= data["valueRange"]["high"]
    etag = r.headers["ETag"]
    assert etag.startswith('W/"')
    assert data["etag"] == etag

    again = client.post("/v1/valuation", json=BODY, headers={"if-none-match": etag})
    assert again.status_code == 304
    assert again.headers["ETag"] == etag


def test_bad_postal_code_is_a_client_error(client):
    r = client.post("/v1/property", json={"address": "Kampweg 10", "postalCode": "ABCDEF"})
    assert r.status_code == 400


def test_request_shape_is_validated(client):
    r = client.post("/v1/valuation", json={"address": "K", "postalCode": "3769DG"})
    assert r.status_code == 422


def test_total_failure_maps_to_503(make_service):
    svc = make_service(FakeTier(Source.BROWSER, error=SourceUnavailable("browser")))
    with TestClient(create_app(svc)) as c:
        r = c.post("/v1/valuation", json=BODY)
    assert r.status_code == 503


def test_meta_routes(client):
    assert client.get("/v1/health").json() == {"status": "ok"}
    assert client.get("/v1/ping").json() == {"pong": True}
    metrics = client.get("/v1/metrics")
    assert metrics.status_code == 200
    assert "http_requests_total" in metrics.text


def test_source_health(client):
    data = client.get("/v1/valuation/health").json()
    assert data["status"] == "operational"
    assert data["source"] == "browser"
    assert data["tiers"] == ["cache", "store", "browser"]


def test_rate_limit(client, monkeypatch):
    monkeypatch.setattr(config.settings, "RATE_LIMIT_RPM", 2)
    codes = [client.post("/v1/property", json=BODY).status_code for _ in range(3)]
    assert codes == [200, 200, 429]


def test_api_key_required_when_configured(client, monkeypatch):
    monkeypatch.setattr(config.settings, "API_KEY", "secret")
    assert client.post("/v1/property", json=BODY).status_code == 401
    ok = client.post("/v1/property", json=BODY, headers={"x-api-key": "secret"})
    assert ok.status_code == 200
