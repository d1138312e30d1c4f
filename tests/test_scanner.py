"""
Tests for the ScanVerifier: ordering, short-circuit, gaps and deadlines.
"""

from __future__ import annotations

import pytest

from certanchor.errors import InputError, LedgerUnavailable, ScanIncomplete
from certanchor.fingerprint import fingerprint
from certanchor.scanner import ScanVerifier

FP = fingerprint(b"%PDF-1.4 anchored document")
OTHER = fingerprint(b"%PDF-1.4 some other document")


def _anchor(chain, fp=FP, prefix="0x", suffix=""):
    """Mine a block carrying fp as payload, return its height."""
    return chain.mine([prefix + fp + suffix]).number


class TestScanBasics:
    """Test window handling and matching."""

    def test_zero_window_does_no_io(self, ledger):
        scanner = ScanVerifier(ledger)
        assert scanner.scan_for_fingerprint(FP, window_size=0) is False
        assert ledger.fetched == []
        assert ledger.height_reads == 0

    def test_finds_payload_anchor(self, ledger):
        height = _anchor(ledger)
        ledger.mine_empty(3)

        report = ScanVerifier(ledger, window_size=10).scan(FP)
        assert report.matched is True
        assert report.match_block == height
        assert report.match_transaction == ledger.blocks[height].transactions[0].hash

    def test_embedded_and_case_insensitive(self, ledger):
        _anchor(ledger, fp=FP.upper(), prefix="0xcafebabe", suffix="00ff")
        assert ScanVerifier(ledger, window_size=5).scan_for_fingerprint("0x" + FP) is True

    def test_outside_window_is_not_found(self, ledger):
        _anchor(ledger)
        ledger.mine_empty(10)

        report = ScanVerifier(ledger).scan(FP, window_size=10)
        assert report.matched is False
        assert report.blocks_scanned == 10
        assert sorted(ledger.fetched) == list(range(ledger.height - 9, ledger.height + 1))

    def test_window_larger_than_chain(self, ledger):
        report = ScanVerifier(ledger).scan(OTHER, window_size=10_000)
        assert report.matched is False
        assert report.blocks_scanned == ledger.height
        assert 0 not in ledger.fetched
        assert report.lowest_height == 1

    def test_negative_window(self, ledger):
        with pytest.raises(InputError):
            ScanVerifier(ledger).scan(FP, window_size=-1)

    def test_invalid_concurrency(self, ledger):
        with pytest.raises(InputError):
            ScanVerifier(ledger, concurrency=0)


class TestScanOrdering:
    """Test recency-first order and short-circuiting."""

    def test_short_circuit_fetch_count(self, ledger):
        height = _anchor(ledger)
        ledger.mine_empty(4)

        scanner = ScanVerifier(ledger, window_size=50, concurrency=1)
        assert scanner.scan_for_fingerprint(FP) is True
        # head, head-1, ..., matching block; nothing older
        assert ledger.fetched == list(range(ledger.height, height - 1, -1))

    def test_highest_match_wins_under_concurrency(self, ledger):
        older = _anchor(ledger)
        ledger.mine_empty(5)
        newer = _anchor(ledger)
        ledger.mine_empty(2)

        report = ScanVerifier(ledger, window_size=50, concurrency=8).scan(FP)
        assert report.match_block == newer
        assert report.match_block != older

    def test_bounded_in_flight_fetches(self, ledger):
        height = _anchor(ledger)
        scanner = ScanVerifier(ledger, window_size=20, concurrency=4)
        assert scanner.scan_for_fingerprint(FP) is True
        assert height in ledger.fetched
        assert len(ledger.fetched) <= 4
        assert min(ledger.fetched) >= height - 3


class TestScanFailures:
    """Test gaps, connectivity loss and deadlines."""

    def test_missing_blocks_are_skipped(self, ledger):
        height = _anchor(ledger)
        ledger.mine_empty(3)
        ledger.missing = {ledger.height, ledger.height - 1}

        report = ScanVerifier(ledger, window_size=10, concurrency=2).scan(FP)
        assert report.matched is True
        assert report.match_block == height
        assert report.gaps == [ledger.height, ledger.height - 1]

    def test_gap_does_not_hide_negative_result(self, ledger):
        ledger.missing = {ledger.height - 2}
        report = ScanVerifier(ledger, window_size=5).scan(OTHER)
        assert report.matched is False
        assert report.gaps == [ledger.height - 2]
        assert report.blocks_scanned == 4

    def test_disconnect_mid_scan_aborts(self, ledger):
        ledger.fail_after_fetches = 3
        with pytest.raises(LedgerUnavailable):
            ScanVerifier(ledger, window_size=15, concurrency=1).scan(OTHER)

    def test_head_unavailable(self, ledger):
        ledger.disconnected = True
        with pytest.raises(LedgerUnavailable):
            ScanVerifier(ledger).scan(FP, window_size=5)

    def test_deadline_gives_incomplete(self, ledger):
        ledger.fetch_delay = 0.2
        scanner = ScanVerifier(ledger, window_size=20, concurrency=2)

        with pytest.raises(ScanIncomplete) as exc_info:
            scanner.scan(OTHER, deadline=0.05)

        report = exc_info.value.report
        assert exc_info.value.matched is False
        assert report.blocks_scanned < 20
        assert report.head == ledger.height

    def test_window_of_only_gaps_is_incomplete(self, ledger):
        ledger.missing = set(range(ledger.height - 4, ledger.height + 1))
        with pytest.raises(ScanIncomplete) as exc_info:
            ScanVerifier(ledger, window_size=5).scan(OTHER)
        assert exc_info.value.report.gaps == list(range(ledger.height, ledger.height - 5, -1))
        assert exc_info.value.report.blocks_scanned == 0

    def test_deadline_spent_on_head_read(self, ledger):
        ledger.head_delay = 0.1
        with pytest.raises(ScanIncomplete) as exc_info:
            ScanVerifier(ledger, window_size=10).scan(OTHER, deadline=0.05)
        assert exc_info.value.report.head == ledger.height
        assert ledger.fetched == []
