"""
Tests for the Flask HTTP API.
"""

from __future__ import annotations

import io

import pytest

from certanchor.engine import AnchorConfig, AnchorEngine
from certanchor.fingerprint import fingerprint
from certanchor.server import create_app

from conftest import CHAIN_ID, CONTRACT_ADDRESS

FP = fingerprint(b"%PDF-1.4 certificate served over http")

REGISTRATION = {
    "fingerprint": FP,
    "issuer": "Acme",
    "subject_name": "Jane Doe",
    "certification_label": "Security-101",
    "expiry_timestamp": 1999999999,
}


@pytest.fixture
def client(ledger):
    engine = AnchorEngine(
        AnchorConfig(contract_address=CONTRACT_ADDRESS, log_level="WARNING"),
        client=ledger,
    )
    app = create_app({"TESTING": True}, engine=engine)
    return app.test_client()


class TestHealth:

    def test_healthy(self, client, ledger):
        resp = client.get("/api/health")
        assert resp.status_code == 200
        assert resp.get_json()["ledger"]["head"] == ledger.height
        assert resp.get_json()["ledger"]["chain_id"] == CHAIN_ID

    def test_degraded(self, client, ledger):
        ledger.disconnected = True
        resp = client.get("/api/health")
        assert resp.status_code == 503
        assert resp.get_json()["ledger"]["reachable"] is False

    def test_info(self, client):
        data = client.get("/api/info").get_json()
        assert data["mode"] == "contract"
        assert data["window_size"] == 1000


class TestRegisterAndVerify:

    def test_register_then_verify(self, client):
        resp = client.post("/api/register", json=REGISTRATION)
        assert resp.status_code == 201
        assert resp.get_json()["transaction"]["status"] == "confirmed"

        resp = client.post("/api/verify", json={"fingerprint": FP})
        assert resp.status_code == 200
        data = resp.get_json()
        assert data["valid"] is True
        assert data["basis"] == "structured_record"
        assert data["record"]["subject_name"] == "Jane Doe"

    def test_duplicate_register(self, client):
        client.post("/api/register", json=REGISTRATION)
        resp = client.post("/api/register", json=REGISTRATION)
        assert resp.status_code == 400
        assert resp.get_json()["type"] == "InputError"

    def test_register_negative_expiry(self, client, ledger):
        resp = client.post("/api/register", json={**REGISTRATION, "expiry_timestamp": -1})
        assert resp.status_code == 400
        assert ledger.submitted == []

    def test_verify_not_found(self, client):
        resp = client.post("/api/verify", json={"fingerprint": FP, "window_size": 10})
        assert resp.status_code == 200
        assert resp.get_json()["valid"] is False
        assert resp.get_json()["basis"] == "not_found"

    def test_verify_ledger_outage_is_not_invalid(self, client, ledger):
        ledger.disconnected = True
        resp = client.post("/api/verify", json={"fingerprint": FP})
        assert resp.status_code == 502
        assert "valid" not in resp.get_json()

    def test_verify_malformed(self, client):
        resp = client.post("/api/verify", json={"fingerprint": "xyz"})
        assert resp.status_code == 400

    def test_verify_bad_window(self, client):
        resp = client.post("/api/verify", json={"fingerprint": FP, "window_size": "many"})
        assert resp.status_code == 400


class TestUploads:

    def test_fingerprint_upload(self, client, sample_pdf):
        data = sample_pdf.read_bytes()
        resp = client.post(
            "/api/fingerprint",
            data={"file": (io.BytesIO(data), "certificate.pdf")},
            content_type="multipart/form-data",
        )
        assert resp.status_code == 200
        assert resp.get_json()["fingerprint"] == fingerprint(data)

    def test_non_pdf_upload(self, client):
        resp = client.post(
            "/api/fingerprint",
            data={"file": (io.BytesIO(b"plain text"), "notes.pdf")},
            content_type="multipart/form-data",
        )
        assert resp.status_code == 400

    def test_verify_upload_scan_match(self, client, ledger, sample_pdf):
        data = sample_pdf.read_bytes()
        ledger.mine(["0x" + fingerprint(data)])
        resp = client.post(
            "/api/verify",
            data={"file": (io.BytesIO(data), "certificate.pdf"), "window_size": "5"},
            content_type="multipart/form-data",
        )
        assert resp.status_code == 200
        assert resp.get_json()["basis"] == "scan_match"
