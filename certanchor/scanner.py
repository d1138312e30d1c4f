"""
Scan Verifier
=============
Fallback verification for fingerprints anchored as raw transaction payload.

Walks a bounded window of the most recent blocks, newest first, and looks
for the fingerprint inside each transaction's input data.

    head H ── H-1 ── H-2 ── ... ── H-n+1      n = min(window_size, H)
      ▲ checked first                 ▲ checked last

Rules:
    - Block fetches run on a small worker pool, but results are consumed
      strictly in descending height, so the highest matching block wins.
    - First hit returns immediately; outstanding fetches are cancelled.
    - A missing block (pruned, not yet propagated) is recorded as a gap
      and skipped. A window made only of gaps is not a search, so it
      raises ScanIncomplete.
    - LedgerUnavailable aborts the scan.
    - A deadline raises ScanIncomplete carrying the partial report. It is
      checked once the head has been read, and fetches still queued when
      the scan ends are skipped.

A fingerprint anchored before the window is reported as not found, which
means "unverifiable within the horizon", not "forged".
"""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from typing import Iterator, Optional

from .errors import InputError, ScanIncomplete
from .fingerprint import normalize_fingerprint
from .ledger import LedgerClient
from .models import Block, LedgerTransaction, ScanReport

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_SIZE = 1000
DEFAULT_CONCURRENCY = 8


def payload_contains(tx: LedgerTransaction, fingerprint: str) -> bool:
    """Case-insensitive substring test of a bare hex fingerprint in tx input."""
    return fingerprint in (tx.input or "").lower()


class ScanVerifier:
    """
    Bounded, recency-first search of ledger history for a fingerprint.

    Each scan owns its own worker pool; nothing is shared between scans.
    """

    def __init__(
        self,
        client: LedgerClient,
        window_size: int = DEFAULT_WINDOW_SIZE,
        concurrency: int = DEFAULT_CONCURRENCY,
        deadline: Optional[float] = None,
    ):
        if concurrency < 1:
            raise InputError(f"Scan concurrency must be >= 1, got {concurrency}")
        self.client = client
        self.window_size = window_size
        self.concurrency = concurrency
        self.deadline = deadline

    def scan_for_fingerprint(
        self,
        fingerprint: str,
        window_size: Optional[int] = None,
        deadline: Optional[float] = None,
    ) -> bool:
        """Whether the fingerprint appears in the window. See scan()."""
        return self.scan(fingerprint, window_size, deadline).matched

    def scan(
        self,
        fingerprint: str,
        window_size: Optional[int] = None,
        deadline: Optional[float] = None,
    ) -> ScanReport:
        """
        Search the most recent blocks for the fingerprint.

        Args:
            fingerprint: Document fingerprint (bare or 0x-prefixed hex).
            window_size: Number of recent blocks to search. Defaults to the
                verifier's configured window.
            deadline: Seconds allowed for the whole scan, None for no limit.

        Returns:
            ScanReport; report.matched is the verdict.

        Raises:
            InputError: Malformed fingerprint or negative window.
            LedgerUnavailable: The node could not be reached.
            ScanIncomplete: The deadline expired before the window was
                exhausted, or no block in the window could be read.
        """
        fp = normalize_fingerprint(fingerprint)
        window = self.window_size if window_size is None else window_size
        if window < 0:
            raise InputError(f"Window size must be >= 0, got {window}")
        deadline = self.deadline if deadline is None else deadline

        report = ScanReport(fingerprint=fp, window_size=window)
        if window == 0:
            return report

        started = time.monotonic()
        expires_at = started + deadline if deadline is not None else None

        head = self.client.current_height()
        report.head = head
        if expires_at is not None and time.monotonic() >= expires_at:
            report.elapsed_seconds = time.monotonic() - started
            raise ScanIncomplete(
                f"Scan deadline of {deadline}s expired while reading the ledger head",
                report,
            )

        depth = min(window, head)
        logger.info(
            f"Scanning blocks {head}..{head - depth + 1} for {fp[:16]}... "
            f"(concurrency={self.concurrency})"
        )

        heights = iter(range(head, head - depth, -1))
        pending: deque[tuple[int, Future]] = deque()
        stop = threading.Event()
        executor = ThreadPoolExecutor(
            max_workers=self.concurrency,
            thread_name_prefix="block-scan",
        )
        try:
            self._fill(executor, pending, heights, stop)
            while pending:
                height, future = pending.popleft()
                try:
                    block = future.result(timeout=self._remaining(expires_at))
                except FutureTimeout:
                    report.elapsed_seconds = time.monotonic() - started
                    raise ScanIncomplete(
                        f"Scan deadline of {deadline}s expired at block {height} "
                        f"after {report.blocks_scanned} block(s)",
                        report,
                    ) from None

                if block is None:
                    logger.debug(f"Block {height} unavailable, skipping")
                    report.gaps.append(height)
                else:
                    report.blocks_scanned += 1
                    tx = self._find(block, fp)
                    if tx is not None:
                        report.matched = True
                        report.match_block = block.number
                        report.match_transaction = tx.hash
                        logger.info(
                            f"Fingerprint {fp[:16]}... found in tx {tx.hash} "
                            f"(block {block.number})"
                        )
                        return report

                self._fill(executor, pending, heights, stop)

            if depth and not report.blocks_scanned:
                report.elapsed_seconds = time.monotonic() - started
                raise ScanIncomplete(
                    f"None of the {depth} block(s) in the window could be read",
                    report,
                )

            logger.info(
                f"Fingerprint {fp[:16]}... not found in {report.blocks_scanned} "
                f"block(s), {len(report.gaps)} gap(s)"
            )
            return report
        finally:
            stop.set()
            executor.shutdown(wait=False, cancel_futures=True)
            report.elapsed_seconds = time.monotonic() - started

    def _fill(
        self,
        executor: ThreadPoolExecutor,
        pending: deque,
        heights: Iterator[int],
        stop: threading.Event,
    ):
        """Keep at most `concurrency` fetches in flight, newest first."""
        while len(pending) < self.concurrency:
            height = next(heights, None)
            if height is None:
                return
            pending.append((height, executor.submit(self._fetch, height, stop)))

    def _fetch(self, height: int, stop: threading.Event) -> Optional[Block]:
        # Fetches that start after the scan ended do no I/O
        if stop.is_set():
            return None
        return self.client.get_block(height, True)

    @staticmethod
    def _find(block: Block, fp: str) -> Optional[LedgerTransaction]:
        for tx in block.transactions:
            if payload_contains(tx, fp):
                return tx
        return None

    @staticmethod
    def _remaining(expires_at: Optional[float]) -> Optional[float]:
        if expires_at is None:
            return None
        return max(0.0, expires_at - time.monotonic())
