"""
HTTP Microservice
=================
Flask-based HTTP API for registering and verifying certificates.

Uploaded documents are fingerprinted in memory and never written to disk.

Endpoints:
    GET    /api/health        → Health check (includes ledger head and chain id)
    GET    /api/info          → Engine version and configuration
    POST   /api/fingerprint   → Fingerprint an uploaded PDF
    POST   /api/register      → Anchor a PDF or fingerprint
    POST   /api/verify        → Verify a PDF or fingerprint

Documents are sent either as a multipart "file" upload or as JSON with a
"fingerprint" member.

Infrastructure failures are reported as 502/504, never as "invalid".
"""

from __future__ import annotations

import logging
from typing import Optional

from flask import Flask, jsonify, request
from flask_cors import CORS

from . import __version__
from .engine import AnchorConfig, AnchorEngine
from .errors import (
    ConfirmationTimeout,
    InputError,
    LedgerUnavailable,
    ScanIncomplete,
    SubmissionRejected,
)
from .fingerprint import fingerprint_pdf, normalize_fingerprint
from .models import CertificateMetadata, TransactionStatus

logger = logging.getLogger(__name__)

app = Flask(__name__)
CORS(app)


def create_app(config: dict = None, engine: Optional[AnchorEngine] = None) -> Flask:
    """Create and configure the Flask app."""
    if config:
        app.config.update(config)

    app.config.setdefault("MAX_CONTENT_LENGTH", 50 * 1024 * 1024)  # 50MB
    if engine is not None:
        app.config["ENGINE"] = engine
    return app


def get_engine() -> AnchorEngine:
    """Engine bound to the app, built from the environment on first use."""
    engine = app.config.get("ENGINE")
    if engine is None:
        engine = AnchorEngine(AnchorConfig.from_env())
        app.config["ENGINE"] = engine
    return engine


# ─── Error Handlers ───────────────────────────────────────────────────────────


@app.errorhandler(InputError)
def handle_input_error(e):
    return jsonify({"error": str(e), "type": "InputError"}), 400


@app.errorhandler(SubmissionRejected)
def handle_rejected(e):
    return jsonify({
        "error": str(e),
        "type": "SubmissionRejected",
        "transaction_hash": e.tx_hash,
        "transaction": e.transaction.model_dump(mode="json") if e.transaction else None,
    }), 422


@app.errorhandler(ConfirmationTimeout)
def handle_confirmation_timeout(e):
    return jsonify({
        "error": str(e),
        "type": "ConfirmationTimeout",
        "transaction": e.transaction.model_dump(mode="json"),
    }), 504


@app.errorhandler(ScanIncomplete)
def handle_scan_incomplete(e):
    return jsonify({
        "error": str(e),
        "type": "ScanIncomplete",
        "report": e.report.model_dump(mode="json"),
    }), 504


@app.errorhandler(LedgerUnavailable)
def handle_ledger_unavailable(e):
    logger.error(f"Ledger unavailable: {e}")
    return jsonify({"error": str(e), "type": "LedgerUnavailable"}), 502


# ─── Request Helpers ──────────────────────────────────────────────────────────


def _params() -> dict:
    if request.is_json:
        return request.get_json() or {}
    return request.form.to_dict()


def _document_fingerprint() -> str:
    """Fingerprint from an uploaded file or a JSON/form 'fingerprint' field."""
    if "file" in request.files:
        upload = request.files["file"]
        if not upload.filename:
            raise InputError("No file selected")
        return fingerprint_pdf(upload.read())

    value = _params().get("fingerprint")
    if not value:
        raise InputError("Provide a file upload or a fingerprint")
    return normalize_fingerprint(value)


def _optional_int(params: dict, key: str) -> Optional[int]:
    value = params.get(key)
    if value in (None, ""):
        return None
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise InputError(f"{key} must be an integer") from e


def _optional_float(params: dict, key: str) -> Optional[float]:
    value = params.get(key)
    if value in (None, ""):
        return None
    try:
        return float(value)
    except (TypeError, ValueError) as e:
        raise InputError(f"{key} must be a number") from e


# ─── Health / Info ────────────────────────────────────────────────────────────


@app.route("/api/health", methods=["GET"])
def health():
    """Health check endpoint."""
    engine = get_engine()
    try:
        head = engine.client.current_height()
        chain_id = engine.client.chain_id()
    except LedgerUnavailable as e:
        return jsonify({
            "status": "degraded",
            "service": "certanchor",
            "version": __version__,
            "ledger": {"reachable": False, "error": str(e)},
        }), 503
    return jsonify({
        "status": "healthy",
        "service": "certanchor",
        "version": __version__,
        "ledger": {"reachable": True, "head": head, "chain_id": chain_id},
    })


@app.route("/api/info", methods=["GET"])
def info():
    """Engine version and capability info."""
    config = get_engine().config
    return jsonify({
        "version": __version__,
        "mode": config.mode.value,
        "contract_address": config.contract_address,
        "window_size": config.window_size,
        "scan_concurrency": config.scan_concurrency,
        "confirmations": config.confirmations,
        "fingerprint": "sha256",
        "supported_formats": ["pdf"],
    })


# ─── Fingerprint / Register / Verify ─────────────────────────────────────────


@app.route("/api/fingerprint", methods=["POST"])
def fingerprint_upload():
    """Fingerprint an uploaded PDF without touching the ledger."""
    if "file" not in request.files:
        raise InputError("Provide a file upload")
    return jsonify({"fingerprint": _document_fingerprint()})


@app.route("/api/register", methods=["POST"])
def register():
    """
    Anchor a document on the ledger.

    Fields: issuer, subject_name, certification_label, expiry_timestamp,
    wait (optional, "true"/"false").
    """
    fp = _document_fingerprint()
    params = _params()

    try:
        metadata = CertificateMetadata(
            issuer=params.get("issuer", ""),
            subject_name=params.get("subject_name", ""),
            certification_label=params.get("certification_label", ""),
            expiry_timestamp=_optional_int(params, "expiry_timestamp") or 0,
        )
    except ValueError as e:
        raise InputError(f"Invalid certificate metadata: {e}") from e

    wait = params.get("wait")
    if isinstance(wait, str):
        wait = wait.lower() in ("1", "true", "yes")

    ref = get_engine().register_certificate(fp, metadata, wait=wait)
    status = 201 if ref.status == TransactionStatus.CONFIRMED else 202
    return jsonify({
        "fingerprint": fp,
        "transaction": ref.model_dump(mode="json"),
    }), status


@app.route("/api/verify", methods=["POST"])
def verify():
    """Verify a document; optional window_size and deadline."""
    fp = _document_fingerprint()
    params = _params()
    outcome = get_engine().verify_certificate(
        fp,
        window_size=_optional_int(params, "window_size"),
        deadline=_optional_float(params, "deadline"),
    )
    return jsonify(outcome.model_dump(mode="json"))


def run_server(host: str = "0.0.0.0", port: int = 5000, debug: bool = False):
    """Run the development server."""
    create_app()
    get_engine()
    logger.info(f"Starting server on {host}:{port}")
    app.run(host=host, port=port, debug=debug)
