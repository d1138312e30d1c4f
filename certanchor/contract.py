"""
Record Contract ABI
===================
Calldata encoding and result decoding for the certificate record contract:

    function storeCertificate(bytes32,string,string,string,uint256)
    function getCertificate(bytes32) view returns (string,string,string,uint256,uint256)

The contract stamps issue_timestamp itself when storing.
"""

from __future__ import annotations

from eth_abi import decode, encode
from eth_abi.exceptions import DecodingError
from eth_utils import function_signature_to_4byte_selector

from .fingerprint import to_bytes32
from .models import CertificateMetadata, CertificateRecord

STORE_SIGNATURE = "storeCertificate(bytes32,string,string,string,uint256)"
GET_SIGNATURE = "getCertificate(bytes32)"

STORE_ARG_TYPES = ["bytes32", "string", "string", "string", "uint256"]
GET_RESULT_TYPES = ["string", "string", "string", "uint256", "uint256"]

STORE_SELECTOR = function_signature_to_4byte_selector(STORE_SIGNATURE)
GET_SELECTOR = function_signature_to_4byte_selector(GET_SIGNATURE)


def encode_store_certificate(fp: str, metadata: CertificateMetadata) -> bytes:
    """Full calldata (selector + arguments) for storeCertificate."""
    return STORE_SELECTOR + encode(
        STORE_ARG_TYPES,
        [
            to_bytes32(fp),
            metadata.issuer,
            metadata.subject_name,
            metadata.certification_label,
            metadata.expiry_timestamp,
        ],
    )


def decode_store_certificate(calldata: bytes) -> tuple[str, CertificateMetadata]:
    """Inverse of encode_store_certificate. Raises ValueError on foreign calldata."""
    if calldata[:4] != STORE_SELECTOR:
        raise ValueError("Calldata is not a storeCertificate call")
    fp, issuer, subject, label, expiry = decode(STORE_ARG_TYPES, calldata[4:])
    return fp.hex(), CertificateMetadata(
        issuer=issuer,
        subject_name=subject,
        certification_label=label,
        expiry_timestamp=expiry,
    )


def encode_get_certificate_args(fp: str) -> bytes:
    """ABI-encoded arguments (without selector) for getCertificate."""
    return encode(["bytes32"], [to_bytes32(fp)])


def encode_certificate_result(record: CertificateRecord) -> bytes:
    """ABI-encode a record the way getCertificate returns it."""
    return encode(
        GET_RESULT_TYPES,
        [
            record.issuer,
            record.subject_name,
            record.certification_label,
            record.issue_timestamp,
            record.expiry_timestamp,
        ],
    )


def decode_certificate(data: bytes) -> CertificateRecord:
    """
    Decode a getCertificate return value.

    Raises:
        ValueError: If the data is not a valid encoding of the result tuple.
    """
    try:
        issuer, subject, label, issued, expiry = decode(GET_RESULT_TYPES, data)
    except DecodingError as e:
        raise ValueError(f"Undecodable getCertificate result: {e}") from e
    return CertificateRecord(
        issuer=issuer,
        subject_name=subject,
        certification_label=label,
        issue_timestamp=issued,
        expiry_timestamp=expiry,
    )
