"""
Verification Orchestrator
=========================
Combines the structured record lookup and the scan fallback into one
verification decision.

Precedence:
    1. StructuredLookup hit  → valid,   STRUCTURED_RECORD, record attached
    2. ScanVerifier match    → valid,   SCAN_MATCH
    3. window exhausted      → invalid, NOT_FOUND

Infrastructure failures (LedgerUnavailable, ScanIncomplete) propagate.
They are never turned into an "invalid" outcome.

With fallback_scan=False the check is record-only: NOT_FOUND then means
"no record", and it is refused outright when no record contract is
configured.
"""

from __future__ import annotations

import logging
from typing import Optional

from .errors import InputError
from .fingerprint import normalize_fingerprint
from .models import VerificationBasis, VerificationOutcome
from .registry import StructuredLookup
from .scanner import ScanVerifier

logger = logging.getLogger(__name__)


class VerificationOrchestrator:

    def __init__(
        self,
        lookup: StructuredLookup,
        scanner: ScanVerifier,
        fallback_scan: bool = True,
    ):
        if not fallback_scan and not lookup.enabled:
            raise InputError(
                "Disabling the scan needs a record contract: without one "
                "there is nothing left to search"
            )
        self.lookup = lookup
        self.scanner = scanner
        self.fallback_scan = fallback_scan

    def verify(
        self,
        fingerprint: str,
        window_size: Optional[int] = None,
        deadline: Optional[float] = None,
    ) -> VerificationOutcome:
        """
        Decide whether a fingerprint is anchored on the ledger.

        Raises:
            InputError: Malformed fingerprint.
            LedgerUnavailable: Either stage could not reach the ledger.
            ScanIncomplete: The scan deadline expired.
        """
        fp = normalize_fingerprint(fingerprint)

        if self.lookup.enabled:
            record = self.lookup.lookup(fp)
            if record is not None:
                logger.info(f"{fp[:16]}... verified by record from {record.issuer!r}")
                return VerificationOutcome(
                    fingerprint=fp,
                    valid=True,
                    basis=VerificationBasis.STRUCTURED_RECORD,
                    record=record,
                )
            logger.info(f"No structured record for {fp[:16]}...")

        if self.fallback_scan:
            report = self.scanner.scan(fp, window_size=window_size, deadline=deadline)
            if report.matched:
                return VerificationOutcome(
                    fingerprint=fp,
                    valid=True,
                    basis=VerificationBasis.SCAN_MATCH,
                    transaction_hash=report.match_transaction,
                    block_number=report.match_block,
                )

        return VerificationOutcome(
            fingerprint=fp,
            valid=False,
            basis=VerificationBasis.NOT_FOUND,
        )
