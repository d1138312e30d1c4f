"""
Certificate Anchoring Engine
============================
Proof-of-existence for PDF certificates on a public, append-only ledger.

Architecture:
    - Fingerprinter: Deterministic SHA-256 digest of the document bytes
    - Ledger Client: JSON-RPC facade over the remote ledger node
    - Registrar: Anchors a fingerprint (contract record or raw payload)
    - Structured Lookup: Keyed read of the certificate record contract
    - Scan Verifier: Bounded, recency-first search of recent blocks
    - Orchestrator: Combines lookup and scan into one verification outcome

Version: 1.0.0
"""

__version__ = "1.0.0"
