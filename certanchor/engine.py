"""
Anchoring Engine
================
Caller-facing entry point that wires the ledger client, registrar,
structured lookup and scan verifier together from one configuration.

Usage:
    engine = AnchorEngine(AnchorConfig(rpc_url="http://127.0.0.1:8545"))
    ref = engine.register_certificate("certificate.pdf", metadata)
    outcome = engine.verify_certificate("certificate.pdf")

Architecture:
    document → Fingerprinter → Registrar                (write path)
    document → Fingerprinter → Orchestrator
                                 ├─ StructuredLookup    (keyed read)
                                 └─ ScanVerifier        (fallback scan)
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

from .errors import InputError
from .fingerprint import fingerprint, fingerprint_file, is_fingerprint, normalize_fingerprint
from .ledger import LedgerClient, NodeSigner, Signer
from .models import AnchorMode, CertificateMetadata, TransactionRef, VerificationOutcome
from .registry import Registrar, StructuredLookup
from .scanner import DEFAULT_CONCURRENCY, DEFAULT_WINDOW_SIZE, ScanVerifier
from .verifier import VerificationOrchestrator

logger = logging.getLogger(__name__)

DocumentOrFingerprint = Union[bytes, str, os.PathLike]

_LOG_FORMAT = "[%(asctime)s] %(levelname)-8s %(name)s: %(message)s"
_LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"


@dataclass
class AnchorConfig:
    """Configuration for the anchoring engine."""

    # Ledger endpoint
    rpc_url: str = "http://127.0.0.1:8545"
    request_timeout: float = 30.0
    max_retries: int = 3
    retry_backoff: float = 0.5

    # Record contract (None = payload-only anchoring)
    contract_address: Optional[str] = None

    # Identity
    signer_address: Optional[str] = None

    # Write path
    confirmations: int = 1
    confirmation_timeout: float = 120.0
    poll_interval: float = 2.0
    skip_if_registered: bool = True

    # Scan fallback
    window_size: int = DEFAULT_WINDOW_SIZE
    scan_concurrency: int = DEFAULT_CONCURRENCY
    scan_deadline: Optional[float] = None
    fallback_scan: bool = True

    # Logging
    log_level: str = "INFO"
    log_file: Optional[str] = None

    @property
    def mode(self) -> AnchorMode:
        return AnchorMode.CONTRACT if self.contract_address else AnchorMode.PAYLOAD

    @classmethod
    def from_env(cls, **overrides) -> "AnchorConfig":
        """
        Build a config from CERTANCHOR_* environment variables.

        Keyword overrides that are not None win over the environment.
        """
        env = os.environ
        config = cls()

        config.rpc_url = env.get("CERTANCHOR_RPC_URL", config.rpc_url)
        config.contract_address = env.get("CERTANCHOR_CONTRACT_ADDRESS") or None
        config.signer_address = env.get("CERTANCHOR_SIGNER_ADDRESS") or None
        config.log_level = env.get("CERTANCHOR_LOG_LEVEL", config.log_level)
        config.log_file = env.get("CERTANCHOR_LOG_FILE") or None

        int_fields = {
            "CERTANCHOR_WINDOW_SIZE": "window_size",
            "CERTANCHOR_SCAN_CONCURRENCY": "scan_concurrency",
            "CERTANCHOR_CONFIRMATIONS": "confirmations",
            "CERTANCHOR_MAX_RETRIES": "max_retries",
        }
        float_fields = {
            "CERTANCHOR_SCAN_DEADLINE": "scan_deadline",
            "CERTANCHOR_CONFIRMATION_TIMEOUT": "confirmation_timeout",
            "CERTANCHOR_REQUEST_TIMEOUT": "request_timeout",
        }
        for var, attr in int_fields.items():
            if env.get(var):
                setattr(config, attr, _parse_env(var, env[var], int))
        for var, attr in float_fields.items():
            if env.get(var):
                setattr(config, attr, _parse_env(var, env[var], float))

        for key, value in overrides.items():
            if value is None:
                continue
            if not hasattr(config, key):
                raise InputError(f"Unknown config option: {key}")
            setattr(config, key, value)
        return config


def _parse_env(var: str, raw: str, kind: type):
    try:
        return kind(raw)
    except ValueError as e:
        raise InputError(f"Invalid value for {var}: {raw!r}") from e


class AnchorEngine:
    """
    Register and verify document certificates on a ledger.

    One engine holds one ledger session (one signer). It keeps no mutable
    state between calls, so concurrent verifications do not interfere.
    """

    def __init__(
        self,
        config: Optional[AnchorConfig] = None,
        client: Optional[LedgerClient] = None,
        signer: Optional[Signer] = None,
    ):
        self.config = config or AnchorConfig()
        self._setup_logging()

        self.client = client or LedgerClient(
            self.config.rpc_url,
            signer=signer or NodeSigner(self.config.signer_address),
            request_timeout=self.config.request_timeout,
            max_retries=self.config.max_retries,
            retry_backoff=self.config.retry_backoff,
            poll_interval=self.config.poll_interval,
            confirmation_timeout=self.config.confirmation_timeout,
        )
        self.registrar = Registrar(
            self.client,
            contract_address=self.config.contract_address,
            confirmations=self.config.confirmations,
            confirmation_timeout=self.config.confirmation_timeout,
        )
        self.lookup = StructuredLookup(
            self.client,
            contract_address=self.config.contract_address,
        )
        self.scanner = ScanVerifier(
            self.client,
            window_size=self.config.window_size,
            concurrency=self.config.scan_concurrency,
            deadline=self.config.scan_deadline,
        )
        self.orchestrator = VerificationOrchestrator(
            self.lookup,
            self.scanner,
            fallback_scan=self.config.fallback_scan,
        )

    def _setup_logging(self):
        """Configure the certanchor package logger from config."""
        log_level = getattr(logging, self.config.log_level.upper(), logging.INFO)

        pkg_logger = logging.getLogger("certanchor")
        pkg_logger.setLevel(log_level)

        if not pkg_logger.handlers:
            console = logging.StreamHandler()
            console.setLevel(log_level)
            console.setFormatter(logging.Formatter(_LOG_FORMAT, datefmt=_LOG_DATEFMT))
            pkg_logger.addHandler(console)

        if self.config.log_file:
            log_path = Path(self.config.log_file).resolve()
            already = any(
                isinstance(h, logging.FileHandler)
                and Path(h.baseFilename) == log_path
                for h in pkg_logger.handlers
            )
            if not already:
                log_path.parent.mkdir(parents=True, exist_ok=True)
                file_handler = logging.FileHandler(log_path, encoding="utf-8")
                file_handler.setLevel(log_level)
                file_handler.setFormatter(
                    logging.Formatter(_LOG_FORMAT, datefmt=_LOG_DATEFMT)
                )
                pkg_logger.addHandler(file_handler)

    def close(self):
        self.client.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    # ─── Caller-facing API ────────────────────────────────────────────────

    @staticmethod
    def resolve_fingerprint(value: DocumentOrFingerprint) -> str:
        """
        Turn a document or fingerprint into a canonical fingerprint.

        bytes are hashed directly; a path to an existing file is hashed as a
        PDF; any other string must already be a fingerprint.
        """
        if isinstance(value, (bytes, bytearray, memoryview)):
            return fingerprint(value)
        if isinstance(value, os.PathLike):
            return fingerprint_file(value)
        if isinstance(value, str):
            if os.path.isfile(value):
                return fingerprint_file(value)
            if is_fingerprint(value):
                return normalize_fingerprint(value)
            raise InputError(f"Neither a document path nor a fingerprint: {value!r}")
        raise InputError(f"Unsupported document type: {type(value).__name__}")

    def register_certificate(
        self,
        document: DocumentOrFingerprint,
        metadata: CertificateMetadata,
        wait: Optional[bool] = None,
    ) -> TransactionRef:
        """
        Anchor a document with its certificate metadata.

        Raises:
            InputError: Bad document, or already registered while
                skip_if_registered is set.
            SubmissionRejected, ConfirmationTimeout, LedgerUnavailable:
                see Registrar.register.
        """
        fp = self.resolve_fingerprint(document)

        if self.config.skip_if_registered and self.lookup.enabled:
            existing = self.lookup.lookup(fp)
            if existing is not None:
                raise InputError(
                    f"Fingerprint {fp} is already registered by {existing.issuer!r}"
                )

        return self.registrar.register(
            fp,
            issuer=metadata.issuer,
            subject_name=metadata.subject_name,
            label=metadata.certification_label,
            expiry_timestamp=metadata.expiry_timestamp,
            wait=wait,
        )

    def verify_certificate(
        self,
        document: DocumentOrFingerprint,
        window_size: Optional[int] = None,
        deadline: Optional[float] = None,
    ) -> VerificationOutcome:
        """
        Verify a document or fingerprint against the ledger.

        Raises:
            InputError, LedgerUnavailable, ScanIncomplete.
        """
        fp = self.resolve_fingerprint(document)
        return self.orchestrator.verify(fp, window_size=window_size, deadline=deadline)
