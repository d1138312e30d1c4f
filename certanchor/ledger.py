"""
Ledger Client
=============
Thin JSON-RPC facade over a remote ledger node.

The client is the single point of contact with the ledger. It keeps no
state besides its HTTP session:

    - Reads (height, blocks, receipts, eth_call) are idempotent and retried
      on connection faults with linear backoff.
    - Writes are sent at most once per call. A failed submission is never
      resent, since a resend can produce a duplicate registration.

Transaction signing is delegated to a pluggable Signer supplied by the
identity layer; the client never handles credentials itself.
"""

from __future__ import annotations

import itertools
import logging
import time
from typing import Any, Optional, Union

import requests

from .errors import (
    CallReverted,
    ConfirmationTimeout,
    LedgerUnavailable,
    SubmissionRejected,
)
from .models import Block, LedgerTransaction, TransactionRef, TransactionStatus

logger = logging.getLogger(__name__)

# JSON-RPC error code used by geth-style nodes for reverted calls
REVERT_ERROR_CODE = 3

# Node error messages that mean "this block is not here", as opposed to a
# node fault (rate limit, internal error) that says nothing about the block
_ABSENT_BLOCK_MARKERS = (
    "header not found",
    "block not found",
    "unknown block",
    "pruned",
    "missing trie node",
)


class JsonRpcError(Exception):
    """An error object returned by the node for one request."""

    def __init__(self, code: int, message: str, data: Any = None):
        super().__init__(f"JSON-RPC error {code}: {message}")
        self.code = code
        self.message = message
        self.data = data

    @property
    def is_revert(self) -> bool:
        return (
            self.code == REVERT_ERROR_CODE
            or "revert" in (self.message or "").lower()
        )

    @property
    def is_absent_block(self) -> bool:
        message = (self.message or "").lower()
        return any(marker in message for marker in _ABSENT_BLOCK_MARKERS)


# ─── Signers ──────────────────────────────────────────────────────────────────


class Signer:
    """
    Capability that can submit transactions on behalf of an identity.

    Implementations decide how a transaction gets signed (node-managed
    account, hardware wallet, remote signer). They must not retry.
    """

    def address(self, client: "LedgerClient") -> str:
        raise NotImplementedError

    def send_transaction(self, client: "LedgerClient", tx: dict) -> str:
        """Submit tx and return its hash."""
        raise NotImplementedError


class NodeSigner(Signer):
    """Signs with an account unlocked on the node (eth_sendTransaction)."""

    def __init__(self, address: Optional[str] = None):
        self._address = address

    def address(self, client: "LedgerClient") -> str:
        if self._address is None:
            accounts = client.rpc("eth_accounts", [])
            if not accounts:
                raise SubmissionRejected("Ledger node exposes no unlocked account")
            self._address = accounts[0]
            logger.info(f"Using node account {self._address}")
        return self._address

    def send_transaction(self, client: "LedgerClient", tx: dict) -> str:
        tx = dict(tx)
        tx["from"] = self.address(client)
        return client.rpc("eth_sendTransaction", [tx], retry=False)


# ─── Client ───────────────────────────────────────────────────────────────────


def _to_int(value: Union[str, int, None]) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, int):
        return value
    return int(value, 16) if value.startswith("0x") else int(value)


def _to_hex_data(data: Union[bytes, str, None]) -> str:
    if not data:
        return "0x"
    if isinstance(data, str):
        return data if data.startswith("0x") else "0x" + data
    return "0x" + data.hex()


def _hex_to_bytes(data: str) -> bytes:
    return bytes.fromhex(data[2:] if data.startswith("0x") else data)


class LedgerClient:
    """
    Semantic operations over a ledger JSON-RPC endpoint.

    Safe to share between threads for reads; the scan verifier fetches
    blocks from a worker pool through one client.
    """

    def __init__(
        self,
        rpc_url: str,
        signer: Optional[Signer] = None,
        request_timeout: float = 30.0,
        max_retries: int = 3,
        retry_backoff: float = 0.5,
        poll_interval: float = 2.0,
        confirmation_timeout: float = 120.0,
        session: Optional[requests.Session] = None,
    ):
        self.rpc_url = rpc_url
        self.signer = signer or NodeSigner()
        self.request_timeout = request_timeout
        self.max_retries = max(0, max_retries)
        self.retry_backoff = retry_backoff
        self.poll_interval = poll_interval
        self.confirmation_timeout = confirmation_timeout
        self.session = session or requests.Session()
        self._ids = itertools.count(1)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    def close(self):
        self.session.close()

    # ─── Transport ────────────────────────────────────────────────────────

    def rpc(self, method: str, params: list, retry: bool = True) -> Any:
        """
        Perform one JSON-RPC request.

        Args:
            method: JSON-RPC method name.
            params: Positional parameters.
            retry: Retry connection faults (only for idempotent reads).

        Returns:
            The "result" member of the response.

        Raises:
            JsonRpcError: The node answered with an error object.
            LedgerUnavailable: The node could not be reached or answered
                with something that is not JSON-RPC.
        """
        payload = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": params,
        }
        attempts = 1 + (self.max_retries if retry else 0)
        last_error: Optional[Exception] = None

        for attempt in range(1, attempts + 1):
            try:
                resp = self.session.post(
                    self.rpc_url,
                    json=payload,
                    timeout=self.request_timeout,
                )
                if resp.status_code >= 500:
                    raise requests.exceptions.HTTPError(
                        f"HTTP {resp.status_code} from ledger node",
                        response=resp,
                    )
            except (
                requests.exceptions.ConnectionError,
                requests.exceptions.Timeout,
                requests.exceptions.HTTPError,
            ) as e:
                last_error = e
                if attempt < attempts:
                    delay = self.retry_backoff * attempt
                    logger.warning(
                        f"{method} failed (attempt {attempt}/{attempts}): {e}; "
                        f"retrying in {delay:.1f}s"
                    )
                    time.sleep(delay)
                continue
            except requests.exceptions.RequestException as e:
                raise LedgerUnavailable(f"{method} request failed: {e}") from e

            return self._unwrap(method, resp)

        raise LedgerUnavailable(
            f"Ledger node unreachable for {method} after {attempts} "
            f"attempt(s): {last_error}"
        ) from last_error

    def _unwrap(self, method: str, resp: requests.Response) -> Any:
        if resp.status_code >= 400:
            raise LedgerUnavailable(
                f"HTTP {resp.status_code} from ledger node for {method}"
            )
        try:
            body = resp.json()
        except ValueError as e:
            raise LedgerUnavailable(
                f"Non-JSON response from ledger node for {method}"
            ) from e

        if not isinstance(body, dict):
            raise LedgerUnavailable(f"Malformed JSON-RPC response for {method}")

        error = body.get("error")
        if error:
            raise JsonRpcError(
                error.get("code", 0),
                error.get("message", ""),
                error.get("data"),
            )
        if "result" not in body:
            raise LedgerUnavailable(f"JSON-RPC response without result for {method}")
        return body["result"]

    def _read(self, method: str, params: list) -> Any:
        """Idempotent read where any node-side error means unavailability."""
        try:
            return self.rpc(method, params)
        except JsonRpcError as e:
            raise LedgerUnavailable(f"{method} failed: {e}") from e

    # ─── Reads ────────────────────────────────────────────────────────────

    def chain_id(self) -> int:
        return _to_int(self._read("eth_chainId", []))

    def current_height(self) -> int:
        """Latest block number known to the node."""
        result = self._read("eth_blockNumber", [])
        try:
            return _to_int(result)
        except (TypeError, ValueError, AttributeError) as e:
            raise LedgerUnavailable(f"Malformed block number: {result!r}") from e

    def get_block(
        self,
        number: int,
        include_transactions: bool = True,
    ) -> Optional[Block]:
        """
        Fetch a block by height.

        Returns:
            The block, or None when it does not exist or has been pruned.

        Raises:
            LedgerUnavailable: The node could not be reached, or answered
                with an error that does not mean "no such block".
        """
        if number < 0:
            return None
        try:
            raw = self.rpc("eth_getBlockByNumber", [hex(number), include_transactions])
        except JsonRpcError as e:
            if not e.is_absent_block:
                raise LedgerUnavailable(f"Cannot fetch block {number}: {e}") from e
            logger.warning(f"Block {number} unavailable: {e.message}")
            return None
        if raw is None:
            return None
        return self._parse_block(raw, include_transactions)

    def _parse_block(self, raw: dict, include_transactions: bool) -> Block:
        try:
            number = _to_int(raw["number"])
            transactions = []
            for tx in raw.get("transactions") or []:
                if isinstance(tx, str):
                    transactions.append(
                        LedgerTransaction(hash=tx, block_number=number)
                    )
                    continue
                transactions.append(LedgerTransaction(
                    hash=tx.get("hash", ""),
                    block_number=number,
                    sender=tx.get("from") or "",
                    to=tx.get("to"),
                    input=tx.get("input") or tx.get("data") or "0x",
                ))
            return Block(
                number=number,
                hash=raw.get("hash") or "",
                timestamp=_to_int(raw.get("timestamp")) or 0,
                transactions=transactions,
            )
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise LedgerUnavailable(f"Malformed block from ledger node: {e}") from e

    def get_receipt(self, tx_hash: str) -> Optional[dict]:
        """Transaction receipt, or None while the transaction is pending."""
        return self._read("eth_getTransactionReceipt", [tx_hash])

    def call_read_only(
        self,
        contract_address: str,
        function_selector: bytes,
        args: bytes = b"",
    ) -> bytes:
        """
        Execute a read-only contract call against the latest state.

        Raises:
            CallReverted: The call reverted.
            LedgerUnavailable: Any other fault.
        """
        call = {
            "to": contract_address,
            "data": _to_hex_data(function_selector + args),
        }
        try:
            result = self.rpc("eth_call", [call, "latest"])
        except JsonRpcError as e:
            if e.is_revert:
                raise CallReverted(e.message, e.data) from e
            raise LedgerUnavailable(f"eth_call failed: {e}") from e

        if not isinstance(result, str):
            raise LedgerUnavailable(f"Malformed eth_call result: {result!r}")
        try:
            return _hex_to_bytes(result)
        except ValueError as e:
            raise LedgerUnavailable(f"Malformed eth_call result: {result!r}") from e

    # ─── Writes ───────────────────────────────────────────────────────────

    def sender_address(self) -> str:
        try:
            return self.signer.address(self)
        except JsonRpcError as e:
            raise LedgerUnavailable(f"Cannot resolve signer address: {e}") from e

    def submit_transaction(
        self,
        to: str,
        data: Union[bytes, str] = b"",
        value: int = 0,
    ) -> TransactionRef:
        """
        Submit one transaction through the signer. Never retried.

        Raises:
            SubmissionRejected: The ledger refused the transaction.
            LedgerUnavailable: The node could not be reached.
        """
        # Resolve the sender first so a failed account lookup is not a rejection
        self.sender_address()

        tx = {"to": to, "data": _to_hex_data(data), "value": hex(value)}
        try:
            tx_hash = self.signer.send_transaction(self, tx)
        except JsonRpcError as e:
            raise SubmissionRejected(f"Transaction rejected: {e.message}") from e

        if not isinstance(tx_hash, str) or not tx_hash:
            raise LedgerUnavailable(f"Malformed transaction hash: {tx_hash!r}")

        payload = data if isinstance(data, bytes) else _hex_to_bytes(_to_hex_data(data))
        logger.info(f"Submitted transaction {tx_hash} to {to}")
        return TransactionRef(hash=tx_hash, payload=payload)

    def wait_for_confirmation(
        self,
        ref: TransactionRef,
        confirmations: int = 1,
        timeout: Optional[float] = None,
    ) -> TransactionRef:
        """
        Block until the transaction is buried under `confirmations` blocks.

        Inclusion in the head block counts as one confirmation.

        Raises:
            SubmissionRejected: The transaction was included but reverted.
            ConfirmationTimeout: Depth not reached before the timeout.
            LedgerUnavailable: The node could not be reached.
        """
        confirmations = max(1, confirmations)
        timeout = self.confirmation_timeout if timeout is None else timeout
        deadline = time.monotonic() + timeout

        while True:
            receipt = self.get_receipt(ref.hash)
            if receipt is not None:
                block_number = _to_int(receipt.get("blockNumber"))
                status = _to_int(receipt.get("status"))
                if status == 0:
                    raise SubmissionRejected(
                        f"Transaction {ref.hash} reverted in block {block_number}",
                        transaction=ref.model_copy(update={
                            "block_number": block_number,
                            "status": TransactionStatus.FAILED,
                        }),
                    )
                if block_number is not None:
                    depth = self.current_height() - block_number + 1
                    ref = ref.model_copy(update={
                        "block_number": block_number,
                        "confirmations": max(depth, 0),
                    })
                    if depth >= confirmations:
                        logger.info(
                            f"Transaction {ref.hash} confirmed in block "
                            f"{block_number} ({depth} confirmation(s))"
                        )
                        return ref.model_copy(
                            update={"status": TransactionStatus.CONFIRMED}
                        )

            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise ConfirmationTimeout(
                    f"Transaction {ref.hash} not confirmed after {timeout:.0f}s "
                    f"({ref.confirmations}/{confirmations} confirmations)",
                    transaction=ref,
                )
            time.sleep(min(self.poll_interval, remaining))
