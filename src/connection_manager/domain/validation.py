"""
Input schemas — turn caller-supplied JSON shapes into typed domain values.

Every function here depends only on the body it is given, so the services
run them before any collaborator call. All failures are VALIDATION_ERROR
and name the offending field.

Syntax checks reuse pydantic's network types:
  - address: IPvAnyInterface (IPv4/IPv6, optional CIDR prefix)
  - url:     HttpUrl (http or https, host required)
  - port:    integer 1–65535, or a "start-end" range string

Certificate bundles are split textually on BEGIN/END boundaries. Anything
but whitespace outside complete blocks makes the bundle invalid.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Annotated, Any

from pydantic import Field, HttpUrl, IPvAnyInterface, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from connection_manager.domain.models import (
    CertificateSubject,
    CertificateSubmission,
    EndpointType,
    EndpointValue,
    HubCertificateRequest,
    IpValue,
    UrlValue,
)
from connection_manager.railway import Result, validation_error

_ADDRESS = TypeAdapter(IPvAnyInterface)
_URL = TypeAdapter(HttpUrl)
_PORT = TypeAdapter(Annotated[int, Field(strict=True, ge=1, le=65535)])
_PEM_BLOCK = re.compile(r"-----BEGIN CERTIFICATE-----[^-]+-----END CERTIFICATE-----")

_IP_FIELDS = frozenset({"address", "ports"})
_URL_FIELDS = frozenset({"url"})

# Descriptor key → CertificateSubject field
_SUBJECT_FIELDS = {
    "CN": "common_name",
    "O": "organization",
    "OU": "organizational_unit",
    "L": "locality",
    "ST": "state",
    "C": "country",
    "emailAddress": "email_address",
}


# ─────────────────────── Field checks ───────────────────────


def validate_address(address: Any) -> Result[str]:
    if not isinstance(address, str) or not address:
        return validation_error("No address received")
    try:
        _ADDRESS.validate_python(address)
    except PydanticValidationError:
        return validation_error(f"Invalid IP address: {address!r}")
    return Result.success(address)


def _valid_port(port: Any) -> bool:
    if isinstance(port, str):
        bounds = port.split("-")
        if len(bounds) > 2 or not all(b.isdigit() for b in bounds):
            return False
        numbers = [int(b) for b in bounds]
        return all(_valid_port(n) for n in numbers) and numbers == sorted(numbers)
    try:
        _PORT.validate_python(port)
    except PydanticValidationError:
        return False
    return True


def validate_ports(ports: Any) -> Result[list[int | str]]:
    if ports is None:
        return validation_error("No ports received")
    if not isinstance(ports, list):
        return validation_error("No ports array received")
    if not ports:
        return validation_error("Empty ports array received")
    invalid = [p for p in ports if not _valid_port(p)]
    if invalid:
        return validation_error(f"Invalid ports: {invalid!r}")
    return Result.success(list(ports))


def validate_url(url: Any) -> Result[str]:
    if not isinstance(url, str) or not url:
        return validation_error("No URL received")
    try:
        _URL.validate_python(url)
    except PydanticValidationError:
        return validation_error(f"Invalid URL: {url!r}")
    return Result.success(url)


# ─────────────────────── Endpoint values ───────────────────────


def parse_ip_value(value: Mapping[str, Any] | None) -> Result[IpValue]:
    if not isinstance(value, Mapping):
        return validation_error("No IP value received")
    return validate_address(value.get("address")).flat_map(
        lambda address: validate_ports(value.get("ports")).map(
            lambda ports: IpValue(address=address, ports=ports)
        )
    )


def parse_url_value(value: Mapping[str, Any] | None) -> Result[UrlValue]:
    if not isinstance(value, Mapping):
        return validation_error("No URL value received")
    return validate_url(value.get("url")).map(UrlValue)


def parse_endpoint_value(
    endpoint_type: EndpointType, value: Mapping[str, Any] | None
) -> Result[EndpointValue]:
    if endpoint_type is EndpointType.IP:
        return parse_ip_value(value)
    return parse_url_value(value)


def merge_endpoint_value(
    stored: EndpointValue, patch: Mapping[str, Any] | None
) -> Result[EndpointValue]:
    """
    Merge-patch a stored value: only the fields present in `patch` are
    validated and replaced, the others keep their stored values.
    """
    if not patch:
        return Result.success(stored)
    if not isinstance(patch, Mapping):
        return validation_error("Endpoint value must be an object")

    allowed = _IP_FIELDS if isinstance(stored, IpValue) else _URL_FIELDS
    unknown = sorted(set(patch) - allowed)
    if unknown:
        return validation_error(f"Fields {unknown} do not apply to this endpoint type")

    if isinstance(stored, UrlValue):
        return validate_url(patch["url"]).map(UrlValue)

    address: Result[str] = (
        validate_address(patch["address"]) if "address" in patch else Result.success(stored.address)
    )
    return address.flat_map(
        lambda addr: (
            validate_ports(patch["ports"]) if "ports" in patch else Result.success(stored.ports)
        ).map(lambda ports: IpValue(address=addr, ports=ports))
    )


# ─────────────────────── Certificate bodies ───────────────────────


def split_chain(bundle: str | None) -> list[str]:
    """Return each certificate block of the bundle, newline-terminated, in order."""
    if not bundle:
        return []
    return [block + "\n" for block in _PEM_BLOCK.findall(bundle)]


def validate_chain_bundle(
    bundle: str | None, field_name: str = "intermediateChain"
) -> Result[list[str]]:
    """
    Split a PEM bundle, rejecting text that is not part of a complete block.

    A missing or blank bundle is an empty chain; a truncated block or stray
    text is a VALIDATION_ERROR rather than a silently shorter chain.
    """
    if not bundle:
        return Result.success([])
    leftover = _PEM_BLOCK.sub("", bundle)
    if "-----BEGIN" in leftover or "-----END" in leftover:
        return validation_error(f"{field_name} contains an incomplete certificate block")
    if leftover.strip():
        return validation_error(f"{field_name} contains text outside certificate blocks")
    return Result.success(split_chain(bundle))


def _optional_pem(body: Mapping[str, Any], key: str) -> str | None:
    value = body.get(key)
    return value if isinstance(value, str) and value.strip() else None


def parse_certificate_submission(body: Mapping[str, Any] | None) -> Result[CertificateSubmission]:
    """Validate {serverCertificate, intermediateChain?, rootCertificate?}."""
    if body is None:
        return validation_error(f"Invalid body {body}")
    if not isinstance(body, Mapping):
        return validation_error("Certificate body must be an object")
    server_certificate = _optional_pem(body, "serverCertificate")
    if server_certificate is None:
        return validation_error("No serverCertificate received")
    intermediate_chain = _optional_pem(body, "intermediateChain")
    return validate_chain_bundle(intermediate_chain).replace(
        CertificateSubmission(
            server_certificate=server_certificate,
            intermediate_chain=intermediate_chain,
            root_certificate=_optional_pem(body, "rootCertificate"),
        )
    )


def _string_list(value: Any, field_name: str) -> Result[list[str]]:
    if value is None:
        return Result.success([])
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        return validation_error(f"{field_name} must be a list of strings")
    return Result.success(list(value))


def parse_hub_certificate_request(body: Mapping[str, Any] | None) -> Result[HubCertificateRequest]:
    """
    Validate the hub issuance descriptor:

        {"subject": {"CN": ..., "O": ..., ...},
         "extensions": {"subjectAltName": {"dns": [...], "ips": [...]}}}
    """
    if body is None:
        return validation_error(f"Invalid body {body}")
    subject = body.get("subject") if isinstance(body, Mapping) else None
    if not isinstance(subject, Mapping):
        return validation_error("No subject received")
    if not isinstance(subject.get("CN"), str) or not subject["CN"]:
        return validation_error("No subject.CN received")

    certificate_subject = CertificateSubject(
        **{attr: subject[key] for key, attr in _SUBJECT_FIELDS.items() if subject.get(key)}
    )
    extensions = body.get("extensions") or {}
    alt_names = extensions.get("subjectAltName") if isinstance(extensions, Mapping) else None
    if not isinstance(alt_names, Mapping):
        alt_names = {}

    return _string_list(alt_names.get("dns"), "subjectAltName.dns").flat_map(
        lambda dns: _string_list(alt_names.get("ips"), "subjectAltName.ips").flat_map(
            lambda ips: Result.all_of(validate_address(ip) for ip in ips).map(
                lambda checked_ips: HubCertificateRequest(
                    subject=certificate_subject,
                    dns_names=dns,
                    ip_addresses=checked_ips,
                )
            )
        )
    )
