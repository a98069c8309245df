"""Tests for the HTTP API."""

import re
import time
from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from conftest import ACCESS_KEY
from romaneio import __version__
from romaneio.api.routes import invoices
from romaneio.config import ResolverConfig
from romaneio.domain.models import PartialRecord
from romaneio.main import create_app
from romaneio.services.resolver import ResolutionOrchestrator
from romaneio.services.sources import SourceAdapter


class CannedAdapter(SourceAdapter):
    def __init__(self, name: str, record: PartialRecord):
        super().__init__(ResolverConfig())
        self.name = name
        self.record = record

    def fetch(self, fields):
        return self.record


class ExplodingOrchestrator:
    def resolve_with_trace(self, access_key):
        raise RuntimeError("database on fire")


@pytest.fixture
def app():
    app = create_app()
    yield app
    app.dependency_overrides.clear()


@pytest.fixture
def client(app, offline_config) -> TestClient:
    app.dependency_overrides[invoices.get_orchestrator] = lambda: ResolutionOrchestrator(offline_config)
    return TestClient(app)


class TestHealth:
    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["version"] == __version__
        assert isinstance(data["enabled_sources"], list)
        assert data["sefaz_environment"] in (1, 2)


class TestResolveInvoice:
    def test_post_resolves(self, client):
        response = client.post("/api/v1/invoices/resolve", json={"access_key": ACCESS_KEY})

        assert response.status_code == 200
        data = response.json()
        assert data["state"] == "synthesized"
        assert data["attempts"] is None

        invoice = data["invoice"]
        assert invoice["access_key"] == ACCESS_KEY
        assert invoice["source_label"] == "fallback"
        assert invoice["is_synthetic"] is True
        assert invoice["document_number"] == "000000001"
        assert re.fullmatch(r"\d+\.\d{2}", invoice["total_value"])
        assert re.fullmatch(r"\d{2}/\d{2}/2024", invoice["issue_date"])
        assert invoice["recipient_name"]
        assert invoice["line_items"]
        assert invoice["document"] is None

    def test_get_matches_post(self, client):
        posted = client.post("/api/v1/invoices/resolve", json={"access_key": ACCESS_KEY}).json()
        fetched = client.get(f"/api/v1/invoices/{ACCESS_KEY}").json()

        assert posted == fetched

    def test_trace(self, client):
        response = client.get(f"/api/v1/invoices/{ACCESS_KEY}", params={"trace": "true"})

        attempts = response.json()["attempts"]
        assert [a["source"] for a in attempts] == [
            "qrcode", "pdf_conversion", "registry", "portal", "soap",
        ]
        assert {a["status"] for a in attempts} == {"disabled"}
        assert {a["failure"] for a in attempts} == {"disabled"}

    def test_resolved_by_source(self, app):
        record = PartialRecord(
            recipient_name="Cliente Real Comércio Ltda",
            total_value=Decimal("125.00"),
            document_blob="JVBERi0xLjQK",
        )
        orchestrator = ResolutionOrchestrator(adapters=[CannedAdapter("qrcode", record)])
        app.dependency_overrides[invoices.get_orchestrator] = lambda: orchestrator

        response = TestClient(app).post(
            "/api/v1/invoices/resolve",
            json={"access_key": ACCESS_KEY, "include_document": True, "trace": True},
        )

        data = response.json()
        assert data["state"] == "resolved"
        assert data["invoice"]["source_label"] == "qrcode"
        assert data["invoice"]["is_synthetic"] is False
        assert data["invoice"]["total_value"] == "125.00"
        assert data["invoice"]["has_document"] is True
        assert data["invoice"]["document"] == "JVBERi0xLjQK"
        assert data["attempts"][0]["status"] == "resolved"

    @pytest.mark.parametrize("key", ["123", ACCESS_KEY + "0", "A" * 44])
    def test_post_invalid_key(self, client, key):
        response = client.post("/api/v1/invoices/resolve", json={"access_key": key})
        assert response.status_code == 422

    def test_get_invalid_key(self, client):
        response = client.get("/api/v1/invoices/12345")

        assert response.status_code == 422
        assert "44 digits" in response.json()["detail"]

    def test_unhandled_error_hidden(self, app):
        app.dependency_overrides[invoices.get_orchestrator] = lambda: ExplodingOrchestrator()
        client = TestClient(app, raise_server_exceptions=False)

        response = client.get(f"/api/v1/invoices/{ACCESS_KEY}")

        assert response.status_code == 500
        assert response.json()["error"] == "Internal Server Error"


class TestDecodeAccessKey:
    def test_fields(self, client):
        response = client.get(f"/api/v1/invoices/{ACCESS_KEY}/fields")

        assert response.status_code == 200
        data = response.json()
        assert data["state"] == "SP"
        assert data["year"] == 2024
        assert data["month"] == 1
        assert data["issuer_tax_id"] == "14200166000187"
        assert data["model_name"] == "NF-e"
        assert data["number"] == "000000001"
        assert isinstance(data["check_digit_valid"], bool)

    def test_invalid(self, client):
        assert client.get("/api/v1/invoices/abc/fields").status_code == 422


class TestOrchestratorLifecycle:
    def test_one_orchestrator_for_concurrent_first_requests(self, monkeypatch):
        monkeypatch.setattr(invoices, "_orchestrator", None)
        built = []

        def slow_orchestrator(config):
            time.sleep(0.05)
            orchestrator = ResolutionOrchestrator(config.offline())
            built.append(orchestrator)
            return orchestrator

        monkeypatch.setattr(invoices, "ResolutionOrchestrator", slow_orchestrator)

        with ThreadPoolExecutor(max_workers=8) as pool:
            shared = list(pool.map(lambda _: invoices.get_orchestrator(), range(8)))

        assert len(built) == 1
        assert all(orchestrator is built[0] for orchestrator in shared)

        invoices.close_orchestrator()
        assert invoices._orchestrator is None

    def test_trace_matches_cli_serialization(self, client):
        data = client.get(f"/api/v1/invoices/{ACCESS_KEY}", params={"trace": "true"}).json()

        assert data["attempts"][0] == {
            "source": "qrcode",
            "status": "disabled",
            "failure": "disabled",
            "detail": "Disabled by configuration",
            "elapsed_ms": 0.0,
        }
