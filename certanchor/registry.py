"""
Certificate Registry
====================
Write and keyed-read paths for anchored certificates.

Both classes run in one of two modes, chosen by whether a record contract
address is configured:

    CONTRACT  storeCertificate/getCertificate on the record contract.
              Proves existence-at-time plus issuer/subject/label/expiry.
    PAYLOAD   the bare 0x-fingerprint is sent as transaction payload to the
              signer's own address. Proves existence-at-time only; there is
              no keyed read, verification has to scan.
"""

from __future__ import annotations

import logging
import time
from typing import Optional

from pydantic import ValidationError

from . import contract
from .errors import CallReverted, InputError, LedgerUnavailable
from .fingerprint import normalize_fingerprint, to_bytes32
from .ledger import LedgerClient
from .models import (
    AnchorMode,
    CertificateMetadata,
    CertificateRecord,
    TransactionRef,
)

logger = logging.getLogger(__name__)


def _mode_for(contract_address: Optional[str]) -> AnchorMode:
    return AnchorMode.CONTRACT if contract_address else AnchorMode.PAYLOAD


class Registrar:
    """
    Builds and submits registration transactions.

    Submission happens once per call. A caller that needs idempotence must
    deduplicate by fingerprint before registering.
    """

    def __init__(
        self,
        client: LedgerClient,
        contract_address: Optional[str] = None,
        confirmations: int = 1,
        confirmation_timeout: Optional[float] = None,
    ):
        self.client = client
        self.contract_address = contract_address
        self.mode = _mode_for(contract_address)
        self.confirmations = confirmations
        self.confirmation_timeout = confirmation_timeout

    def register(
        self,
        fingerprint: str,
        issuer: str = "",
        subject_name: str = "",
        label: str = "",
        expiry_timestamp: int = 0,
        wait: Optional[bool] = None,
    ) -> TransactionRef:
        """
        Anchor a fingerprint on the ledger.

        Args:
            fingerprint: Document fingerprint (bare or 0x-prefixed hex).
            issuer: Issuing identity.
            subject_name: Person the certificate was issued to.
            label: Certification name.
            expiry_timestamp: Unix seconds, 0 for no expiry.
            wait: Block for confirmation. Defaults to the configured policy
                (confirmations > 0).

        Returns:
            TransactionRef, confirmed if waited for, pending otherwise.

        Raises:
            InputError: Malformed fingerprint or metadata.
            SubmissionRejected: The ledger refused the write.
            ConfirmationTimeout: Submitted, but not confirmed in time.
            LedgerUnavailable: The node could not be reached.
        """
        fp = normalize_fingerprint(fingerprint)
        try:
            metadata = CertificateMetadata(
                issuer=issuer,
                subject_name=subject_name,
                certification_label=label,
                expiry_timestamp=expiry_timestamp,
            )
        except ValidationError as e:
            raise InputError(f"Invalid certificate metadata: {e}") from e

        if metadata.expiry_timestamp and metadata.expiry_timestamp <= time.time():
            logger.warning(
                f"Registering {fp[:16]}... with expiry {metadata.expiry_timestamp} "
                f"already in the past"
            )

        if self.mode == AnchorMode.CONTRACT:
            to = self.contract_address
            data = contract.encode_store_certificate(fp, metadata)
        else:
            if issuer or subject_name or label:
                logger.warning(
                    "No record contract configured: certificate metadata is "
                    "not stored, only the fingerprint is anchored"
                )
            to = self.client.sender_address()
            data = to_bytes32(fp)

        logger.info(f"Registering {fp} ({self.mode.value} mode)")
        ref = self.client.submit_transaction(to, data, value=0)

        should_wait = self.confirmations > 0 if wait is None else wait
        if not should_wait:
            return ref
        return self.client.wait_for_confirmation(
            ref,
            confirmations=max(1, self.confirmations),
            timeout=self.confirmation_timeout,
        )


class StructuredLookup:
    """Keyed read of certificate records from the record contract."""

    def __init__(self, client: LedgerClient, contract_address: Optional[str] = None):
        self.client = client
        self.contract_address = contract_address

    @property
    def enabled(self) -> bool:
        return _mode_for(self.contract_address) == AnchorMode.CONTRACT

    def lookup(self, fingerprint: str) -> Optional[CertificateRecord]:
        """
        Fetch the record stored for a fingerprint.

        Returns:
            The record, or None when no record exists (revert, or issuer
            and subject both empty).

        Raises:
            InputError: Malformed fingerprint.
            LedgerUnavailable: Any fault other than "no record".
        """
        fp = normalize_fingerprint(fingerprint)
        if not self.enabled:
            return None

        try:
            data = self.client.call_read_only(
                self.contract_address,
                contract.GET_SELECTOR,
                contract.encode_get_certificate_args(fp),
            )
        except CallReverted as e:
            logger.debug(f"getCertificate reverted for {fp}: {e}")
            return None

        try:
            record = contract.decode_certificate(data)
        except ValueError as e:
            raise LedgerUnavailable(
                f"Record contract at {self.contract_address} returned "
                f"undecodable data ({len(data)} bytes)"
            ) from e

        if not record.issuer and not record.subject_name:
            return None
        return record
