"""
Data Models
===========
Pydantic models for certificates, ledger data and verification outcomes.
All models are serializable to JSON for the CLI and HTTP API.
"""

from __future__ import annotations

import time
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_serializer


# ─── Enums ────────────────────────────────────────────────────────────────────


class AnchorMode(str, Enum):
    """How fingerprints are written to and read from the ledger."""
    CONTRACT = "contract"
    PAYLOAD = "payload"


class VerificationBasis(str, Enum):
    """What a verification decision rests on."""
    STRUCTURED_RECORD = "structured_record"
    SCAN_MATCH = "scan_match"
    NOT_FOUND = "not_found"


class TransactionStatus(str, Enum):
    """Lifecycle of a submitted transaction as seen by the client."""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"


# ─── Certificate Models ──────────────────────────────────────────────────────


class CertificateMetadata(BaseModel):
    """Caller-supplied fields written alongside a fingerprint."""
    issuer: str
    subject_name: str
    certification_label: str
    expiry_timestamp: int = Field(
        default=0,
        ge=0,
        description="Unix seconds; 0 means no expiry",
    )


class CertificateRecord(BaseModel):
    """
    A certificate as stored in the record contract.
    Immutable once written; issue_timestamp is set by the ledger.
    """
    model_config = ConfigDict(frozen=True)

    issuer: str
    subject_name: str
    certification_label: str
    issue_timestamp: int = Field(ge=0)
    expiry_timestamp: int = Field(ge=0)

    def is_expired(self, now: Optional[float] = None) -> bool:
        if not self.expiry_timestamp:
            return False
        now = time.time() if now is None else now
        return self.expiry_timestamp <= now


# ─── Ledger Models ───────────────────────────────────────────────────────────


class TransactionRef(BaseModel):
    """Reference to a submitted or observed ledger transaction."""
    hash: str
    block_number: Optional[int] = None
    payload: bytes = b""
    status: TransactionStatus = TransactionStatus.PENDING
    confirmations: int = 0

    @field_serializer("payload")
    def _payload_hex(self, payload: bytes) -> str:
        return "0x" + payload.hex()


class LedgerTransaction(BaseModel):
    """A transaction as it appears inside a fetched block."""
    hash: str
    block_number: int
    sender: str = ""
    to: Optional[str] = None
    input: str = Field(
        default="0x",
        description="Transaction payload as 0x-prefixed hex",
    )


class Block(BaseModel):
    """A block with (optionally) its full transactions."""
    number: int
    hash: str = ""
    timestamp: int = 0
    transactions: list[LedgerTransaction] = Field(default_factory=list)


# ─── Scan / Verification Results ─────────────────────────────────────────────


class ScanReport(BaseModel):
    """Account of one scan over a window of recent blocks."""
    fingerprint: str
    window_size: int
    head: Optional[int] = None
    blocks_scanned: int = 0
    gaps: list[int] = Field(default_factory=list)
    matched: bool = False
    match_block: Optional[int] = None
    match_transaction: Optional[str] = None
    elapsed_seconds: float = 0.0

    @computed_field
    @property
    def lowest_height(self) -> Optional[int]:
        """Oldest block height covered by the window."""
        if self.head is None:
            return None
        depth = min(self.window_size, self.head)
        if depth <= 0:
            return None
        return self.head - depth + 1


class VerificationOutcome(BaseModel):
    """
    Result of one verification call.
    Created fresh per call and never mutated.
    """
    model_config = ConfigDict(frozen=True)

    fingerprint: str
    valid: bool
    basis: VerificationBasis
    record: Optional[CertificateRecord] = None
    transaction_hash: Optional[str] = None
    block_number: Optional[int] = None
