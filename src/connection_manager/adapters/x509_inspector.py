"""
X.509 inspector — certificate metadata and chain checks for the engine adapter.

Adapter layer — the parsing/validation half of the CertificateEngine port,
implemented with cryptography (PyCA). The Vault engine delegates to it.

Checks run by validate_server_certificate, in order:
  VALID_SERVER_CERTIFICATE        leaf PEM parses
  SERVER_CERTIFICATE_NOT_EXPIRED  now is inside the leaf's validity window
  VALID_INTERMEDIATE_CHAIN        every intermediate parses
  VALID_ROOT_CERTIFICATE          root parses and is self-signed
  VERIFY_CHAIN_CERTIFICATES       leaf ← intermediates ← root signatures verify

A check that cannot run (no chain, no root, leaf unparseable) is NOT_AVAILABLE.
Aggregate: FAILED if any check failed, WARNING if any was not available,
PASSED otherwise.
"""

from __future__ import annotations

from datetime import UTC, datetime

import structlog
from cryptography import x509
from cryptography.exceptions import InvalidSignature
from cryptography.x509.extensions import ExtensionNotFound

from connection_manager.domain.models import (
    CertificateInfo,
    CertificateValidation,
    ChainValidation,
    ValidationResult,
    ValidationState,
)
from connection_manager.domain.validation import validate_chain_bundle
from connection_manager.railway import ErrorCode, Result

log = structlog.get_logger()

VALID_SERVER_CERTIFICATE = "VALID_SERVER_CERTIFICATE"
SERVER_CERTIFICATE_NOT_EXPIRED = "SERVER_CERTIFICATE_NOT_EXPIRED"
VALID_INTERMEDIATE_CHAIN = "VALID_INTERMEDIATE_CHAIN"
VALID_ROOT_CERTIFICATE = "VALID_ROOT_CERTIFICATE"
VERIFY_CHAIN_CERTIFICATES = "VERIFY_CHAIN_CERTIFICATES"


# ─────────────────────── Metadata extraction ───────────────────────


def format_serial(serial_number: int) -> str:
    """Lowercase hex over whole bytes, so leading zero nibbles are kept."""
    length = max(1, (serial_number.bit_length() + 7) // 8)
    return serial_number.to_bytes(length, "big").hex()


def _extract_sans(cert: x509.Certificate) -> list[str]:
    """DNS names then IP addresses from subjectAltName, or [] if absent."""
    try:
        ext = cert.extensions.get_extension_for_class(x509.SubjectAlternativeName)
    except (ExtensionNotFound, ValueError):
        return []
    dns = ext.value.get_values_for_type(x509.DNSName)
    ips = [str(ip) for ip in ext.value.get_values_for_type(x509.IPAddress)]
    return [*dns, *ips]


def _load(pem: str) -> x509.Certificate:
    return x509.load_pem_x509_certificate(pem.encode())


def certificate_info(cert: x509.Certificate) -> CertificateInfo:
    signature_oid = cert.signature_algorithm_oid
    return CertificateInfo(
        serial_number=format_serial(cert.serial_number),
        not_before=cert.not_valid_before_utc,
        not_after=cert.not_valid_after_utc,
        subject=cert.subject.rfc4514_string(),
        issuer=cert.issuer.rfc4514_string(),
        subject_alternative_names=_extract_sans(cert),
        signature_algorithm=getattr(signature_oid, "_name", None) or signature_oid.dotted_string,
    )


# ─────────────────────── Chain checks ───────────────────────


def _check(name: str, result: ValidationResult, message: str = "") -> CertificateValidation:
    return CertificateValidation(name=name, result=result, message=message)


def _not_available(name: str, message: str) -> CertificateValidation:
    return _check(name, ValidationResult.NOT_AVAILABLE, message)


def _load_all(pems: list[str]) -> list[x509.Certificate] | None:
    try:
        return [_load(pem) for pem in pems]
    except ValueError:
        return None


def _check_expiry(leaf: x509.Certificate, now: datetime) -> CertificateValidation:
    if leaf.not_valid_before_utc <= now <= leaf.not_valid_after_utc:
        return _check(SERVER_CERTIFICATE_NOT_EXPIRED, ValidationResult.PASSED)
    return _check(
        SERVER_CERTIFICATE_NOT_EXPIRED,
        ValidationResult.FAILED,
        f"Certificate valid from {leaf.not_valid_before_utc.isoformat()} "
        f"to {leaf.not_valid_after_utc.isoformat()}",
    )


def _check_root(root: x509.Certificate | None, root_pem: str | None) -> CertificateValidation:
    if root_pem is None:
        return _not_available(VALID_ROOT_CERTIFICATE, "No root certificate supplied")
    if root is None:
        return _check(VALID_ROOT_CERTIFICATE, ValidationResult.FAILED, "Root certificate does not parse")
    try:
        root.verify_directly_issued_by(root)
    except (ValueError, TypeError, InvalidSignature):
        return _check(VALID_ROOT_CERTIFICATE, ValidationResult.FAILED, "Root certificate is not self-signed")
    return _check(VALID_ROOT_CERTIFICATE, ValidationResult.PASSED)


def _check_signatures(path: list[x509.Certificate]) -> CertificateValidation:
    """Each certificate of the path must be directly issued by the next one."""
    for position, (child, issuer) in enumerate(zip(path, path[1:], strict=False)):
        try:
            child.verify_directly_issued_by(issuer)
        except (ValueError, TypeError, InvalidSignature) as e:
            return _check(
                VERIFY_CHAIN_CERTIFICATES,
                ValidationResult.FAILED,
                f"Certificate {position} is not issued by certificate {position + 1}: {e}",
            )
    return _check(VERIFY_CHAIN_CERTIFICATES, ValidationResult.PASSED)


def aggregate_state(validations: list[CertificateValidation]) -> ValidationState:
    results = {v.result for v in validations}
    if ValidationResult.FAILED in results:
        return ValidationState.FAILED
    if ValidationResult.NOT_AVAILABLE in results:
        return ValidationState.WARNING
    return ValidationState.PASSED


def run_checks(
    server_certificate: str,
    intermediate_chain: str | None,
    root_certificate: str | None,
    now: datetime | None = None,
) -> ChainValidation:
    now = now or datetime.now(UTC)
    leaf_list = _load_all([server_certificate])
    leaf = leaf_list[0] if leaf_list else None

    bundle = validate_chain_bundle(intermediate_chain)
    chain_pems = bundle.get_or_else([])
    intermediates = _load_all(chain_pems)
    root_list = _load_all([root_certificate]) if root_certificate else None
    root = root_list[0] if root_list else None

    validations: list[CertificateValidation] = []
    if leaf is None:
        validations.append(_check(VALID_SERVER_CERTIFICATE, ValidationResult.FAILED, "Leaf does not parse"))
        validations.append(_not_available(SERVER_CERTIFICATE_NOT_EXPIRED, "Leaf does not parse"))
    else:
        validations.append(_check(VALID_SERVER_CERTIFICATE, ValidationResult.PASSED))
        validations.append(_check_expiry(leaf, now))

    chain_broken = bundle.is_failure() or (bool(chain_pems) and intermediates is None)
    if bundle.is_failure():
        validations.append(
            _check(VALID_INTERMEDIATE_CHAIN, ValidationResult.FAILED, "Intermediate chain is malformed")
        )
    elif not chain_pems:
        validations.append(_not_available(VALID_INTERMEDIATE_CHAIN, "No intermediate chain supplied"))
    elif intermediates is None:
        validations.append(
            _check(VALID_INTERMEDIATE_CHAIN, ValidationResult.FAILED, "Intermediate chain does not parse")
        )
    else:
        validations.append(_check(VALID_INTERMEDIATE_CHAIN, ValidationResult.PASSED))

    validations.append(_check_root(root, root_certificate))

    issuers = [*(intermediates or []), *([root] if root is not None else [])]
    if leaf is None or not issuers or chain_broken:
        validations.append(_not_available(VERIFY_CHAIN_CERTIFICATES, "No verifiable issuer path"))
    else:
        validations.append(_check_signatures([leaf, *issuers]))

    return ChainValidation(validations=validations, validation_state=aggregate_state(validations))


# ─────────────────────── Public inspector ───────────────────────


class X509CertificateInspector:
    """
    Parse PEM certificates and validate server certificate chains.

    All exceptions are caught at this adapter boundary via Result.from_computation().
    """

    def parse_certificate_info(self, pem: str) -> Result[CertificateInfo]:
        return Result.from_computation(
            lambda: certificate_info(_load(pem)),
            ErrorCode.TECHNICAL_ERROR,
            "Failed to parse PEM certificate",
        )

    def validate_server_certificate(
        self,
        server_certificate: str,
        intermediate_chain: str | None = None,
        root_certificate: str | None = None,
    ) -> Result[ChainValidation]:
        return Result.from_computation(
            lambda: run_checks(server_certificate, intermediate_chain, root_certificate),
            ErrorCode.TECHNICAL_ERROR,
            "Failed to validate server certificate chain",
        ).peek(
            lambda checked: log.info(
                "inspector.validated",
                validation_state=checked.validation_state.value,
                failed=[v.name for v in checked.validations if v.result is ValidationResult.FAILED],
            )
        )
