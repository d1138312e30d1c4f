"""
Error Taxonomy
==============
Exceptions raised by the anchoring engine.

    InputError           malformed local input, never retried
    LedgerUnavailable    node unreachable or faulty, retryable by the caller
    SubmissionRejected   the ledger refused the write, terminal
    ConfirmationTimeout  write outcome unknown, distinct from rejection
    CallReverted         read-only call reverted ("no record")
    ScanIncomplete       deadline hit mid-scan, distinct from a negative result

None of the infrastructure errors may be reported to a user as
"certificate invalid".
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from .models import ScanReport, TransactionRef


class CertAnchorError(Exception):
    """Base class for all engine errors."""


class InputError(CertAnchorError, ValueError):
    """Malformed or unreadable caller input."""


class LedgerError(CertAnchorError):
    """Base class for failures reported by or about the ledger."""


class LedgerUnavailable(LedgerError):
    """The ledger node could not be reached or returned garbage."""


class SubmissionRejected(LedgerError):
    """The ledger refused a transaction (bad params, funds, gas, revert)."""

    def __init__(
        self,
        message: str,
        tx_hash: Optional[str] = None,
        transaction: Optional["TransactionRef"] = None,
    ):
        super().__init__(message)
        self.transaction = transaction
        self.tx_hash = tx_hash or (transaction.hash if transaction else None)


class ConfirmationTimeout(LedgerError):
    """Confirmation depth not reached in time. The write may still land."""

    def __init__(self, message: str, transaction: "TransactionRef"):
        super().__init__(message)
        self.transaction = transaction


class CallReverted(LedgerError):
    """A read-only contract call reverted."""

    def __init__(self, message: str, data: Optional[str] = None):
        super().__init__(message)
        self.data = data


class ScanIncomplete(CertAnchorError):
    """A scan stopped before exhausting its window."""

    def __init__(self, message: str, report: "ScanReport"):
        super().__init__(message)
        self.report = report

    @property
    def matched(self) -> bool:
        return self.report.matched
