"""
Shared fixtures: an in-memory ledger that speaks the LedgerClient surface.

The fake decodes real storeCertificate calldata and answers getCertificate
with real ABI-encoded results, so registrar and lookup are exercised
end to end without a node.
"""

from __future__ import annotations

import threading
import time

import pytest
from eth_abi import decode

from certanchor import contract
from certanchor.errors import CallReverted, LedgerUnavailable
from certanchor.models import (
    Block,
    CertificateRecord,
    LedgerTransaction,
    TransactionRef,
    TransactionStatus,
)

CONTRACT_ADDRESS = "0x4a159aca68cda67841b6882721d6789827bcba0b"
SENDER_ADDRESS = "0x00000000000000000000000000000000000000a1"
GENESIS_TIME = 1_700_000_000
CHAIN_ID = 1337


class FakeLedger:
    """In-memory chain with fault injection and fetch accounting."""

    def __init__(self, contract_address=CONTRACT_ADDRESS, revert_on_missing=False):
        self.contract_address = contract_address
        self.revert_on_missing = revert_on_missing
        self.blocks: dict[int, Block] = {0: Block(number=0, hash="0xblock0", timestamp=GENESIS_TIME)}
        self.height = 0
        self.records: dict[str, CertificateRecord] = {}
        self.submitted: list[tuple[str, bytes]] = []
        self.tx_blocks: dict[str, int] = {}

        # Fault injection
        self.missing: set[int] = set()
        self.disconnected = False
        self.fail_after_fetches = None
        self.fetch_delay = 0.0
        self.head_delay = 0.0
        self.raw_result = None

        # Accounting
        self.fetched: list[int] = []
        self.height_reads = 0
        self._lock = threading.Lock()

    # ─── Chain building ───────────────────────────────────────────────────

    def mine(self, inputs=()) -> Block:
        number = self.height + 1
        transactions = [
            LedgerTransaction(
                hash=f"0x{number:04x}{i:060x}",
                block_number=number,
                sender=SENDER_ADDRESS,
                to=SENDER_ADDRESS,
                input=data,
            )
            for i, data in enumerate(inputs)
        ]
        block = Block(
            number=number,
            hash=f"0xblock{number}",
            timestamp=GENESIS_TIME + number * 12,
            transactions=transactions,
        )
        self.blocks[number] = block
        self.height = number
        return block

    def mine_empty(self, count: int):
        for _ in range(count):
            self.mine(["0x"])

    # ─── LedgerClient surface ─────────────────────────────────────────────

    def current_height(self) -> int:
        self.height_reads += 1
        if self.head_delay:
            time.sleep(self.head_delay)
        if self.disconnected:
            raise LedgerUnavailable("connection refused")
        return self.height

    def get_block(self, number, include_transactions=True):
        with self._lock:
            self.fetched.append(number)
            count = len(self.fetched)
        if self.fetch_delay:
            time.sleep(self.fetch_delay)
        if self.disconnected or (
            self.fail_after_fetches is not None and count > self.fail_after_fetches
        ):
            raise LedgerUnavailable("connection reset by peer")
        if number in self.missing:
            return None
        return self.blocks.get(number)

    def chain_id(self) -> int:
        if self.disconnected:
            raise LedgerUnavailable("connection refused")
        return CHAIN_ID

    def sender_address(self) -> str:
        return SENDER_ADDRESS

    def submit_transaction(self, to, data=b"", value=0) -> TransactionRef:
        if self.disconnected:
            raise LedgerUnavailable("connection refused")
        self.submitted.append((to, data))
        block = self.mine(["0x" + data.hex()])
        tx_hash = block.transactions[0].hash
        self.tx_blocks[tx_hash] = block.number

        if to == self.contract_address and data[:4] == contract.STORE_SELECTOR:
            fp, metadata = contract.decode_store_certificate(data)
            self.records[fp] = CertificateRecord(
                issuer=metadata.issuer,
                subject_name=metadata.subject_name,
                certification_label=metadata.certification_label,
                issue_timestamp=block.timestamp,
                expiry_timestamp=metadata.expiry_timestamp,
            )
        return TransactionRef(hash=tx_hash, payload=data)

    def wait_for_confirmation(self, ref, confirmations=1, timeout=None):
        number = self.tx_blocks[ref.hash]
        return ref.model_copy(update={
            "block_number": number,
            "confirmations": self.height - number + 1,
            "status": TransactionStatus.CONFIRMED,
        })

    def call_read_only(self, contract_address, function_selector, args=b""):
        if self.disconnected:
            raise LedgerUnavailable("connection refused")
        if self.raw_result is not None:
            return self.raw_result
        if contract_address != self.contract_address or function_selector != contract.GET_SELECTOR:
            raise CallReverted("execution reverted")
        (fp,) = decode(["bytes32"], args)
        record = self.records.get(fp.hex())
        if record is None:
            if self.revert_on_missing:
                raise CallReverted("execution reverted: certificate not found")
            record = CertificateRecord(
                issuer="",
                subject_name="",
                certification_label="",
                issue_timestamp=0,
                expiry_timestamp=0,
            )
        return contract.encode_certificate_result(record)

    def close(self):
        pass


@pytest.fixture
def ledger():
    chain = FakeLedger()
    chain.mine_empty(20)
    return chain


@pytest.fixture
def payload_ledger():
    chain = FakeLedger(contract_address=None)
    chain.mine_empty(20)
    return chain


@pytest.fixture
def sample_pdf(tmp_path):
    """A one-page PDF on disk."""
    import fitz

    path = tmp_path / "certificate.pdf"
    doc = fitz.open()
    page = doc.new_page()
    page.insert_text((72, 72), "Certificate of Completion: Security-101")
    doc.set_metadata({"title": "Security-101", "author": "Acme"})
    doc.save(str(path))
    doc.close()
    return path
