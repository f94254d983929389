"""
Domain models — immutable value objects for endpoints, participants and certificates.

Pure data: no I/O and no behavior beyond small derived properties.
All models are frozen dataclasses; "changing" one means building a new one
with dataclasses.replace().

Endpoint values are a tagged union (IpValue | UrlValue). The JSON string form
the store keeps never leaves the persistence adapter.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum


class Direction(StrEnum):
    INGRESS = "INGRESS"
    EGRESS = "EGRESS"


class EndpointType(StrEnum):
    IP = "IP"
    URL = "URL"


class EndpointState(StrEnum):
    NEW = "NEW"
    CONFIRMED = "CONFIRMED"
    REVOKED = "REVOKED"


class CertificateScope(StrEnum):
    HUB = "HUB"
    DFSP = "DFSP"


class ValidationResult(StrEnum):
    """Outcome of a single named certificate check."""

    PASSED = "PASSED"
    FAILED = "FAILED"
    NOT_AVAILABLE = "NOT_AVAILABLE"


class ValidationState(StrEnum):
    """Aggregate outcome of all checks run on a certificate record."""

    PASSED = "PASSED"
    FAILED = "FAILED"
    WARNING = "WARNING"


# ─────────────────────── Endpoints ───────────────────────


@dataclass(frozen=True, slots=True)
class EndpointKind:
    """
    The (direction, type) pair an endpoint is created with.

    A kind never changes after creation; every kind-scoped operation
    checks the stored item against the kind of the sub-resource used.
    """

    direction: Direction
    type: EndpointType

    def __str__(self) -> str:
        return f"{self.direction.value}/{self.type.value}"


INGRESS_IP = EndpointKind(Direction.INGRESS, EndpointType.IP)
EGRESS_IP = EndpointKind(Direction.EGRESS, EndpointType.IP)
INGRESS_URL = EndpointKind(Direction.INGRESS, EndpointType.URL)


@dataclass(frozen=True, slots=True)
class IpValue:
    """An IP entry: one address (optionally CIDR) and its ordered ports."""

    address: str
    ports: list[int | str] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class UrlValue:
    url: str


type EndpointValue = IpValue | UrlValue


@dataclass(frozen=True, slots=True)
class EndpointItem:
    """
    A declared network endpoint.

    `participant_id` is the internal id of the owning DFSP; None marks a
    hub-level endpoint. `id` and `created_at` are assigned by the store.
    """

    direction: Direction
    type: EndpointType
    value: EndpointValue
    state: EndpointState = EndpointState.NEW
    participant_id: int | None = None
    id: int | None = None
    created_at: datetime | None = None

    @property
    def kind(self) -> EndpointKind:
        return EndpointKind(self.direction, self.type)


# ─────────────────────── Environments & participants ───────────────────────


@dataclass(frozen=True, slots=True)
class Environment:
    id: int
    name: str


@dataclass(frozen=True, slots=True)
class Participant:
    """
    A DFSP onboarded into an environment.

    `id` is the internal key (engine paths, endpoint ownership);
    `dfsp_id` is the business identity callers use.
    """

    id: int
    dfsp_id: str
    name: str
    env_id: int


# ─────────────────────── Certificates ───────────────────────


@dataclass(frozen=True, slots=True)
class CertificateInfo:
    """Parsed metadata of a single X.509 certificate."""

    serial_number: str
    not_before: datetime
    not_after: datetime
    subject: str
    issuer: str
    subject_alternative_names: list[str] = field(default_factory=list)
    signature_algorithm: str | None = None


@dataclass(frozen=True, slots=True)
class CertificateValidation:
    name: str
    result: ValidationResult
    message: str = ""

    @property
    def passed(self) -> bool:
        return self.result is ValidationResult.PASSED


@dataclass(frozen=True, slots=True)
class ChainValidation:
    """Ordered named checks plus their aggregate state."""

    validations: list[CertificateValidation] = field(default_factory=list)
    validation_state: ValidationState = ValidationState.PASSED


@dataclass(frozen=True, slots=True)
class CertificateRecord:
    """
    One server certificate record, hub-wide or per participant.

    `intermediate_chain_info` is always index-aligned with `intermediate_chain`.
    A record is written as a whole; there are no partial updates.
    """

    scope: CertificateScope
    server_certificate: str = field(repr=False)
    server_certificate_info: CertificateInfo | None = None
    root_certificate: str | None = field(default=None, repr=False)
    root_certificate_info: CertificateInfo | None = None
    intermediate_chain: list[str] = field(default_factory=list, repr=False)
    intermediate_chain_info: list[CertificateInfo] = field(default_factory=list)
    validations: list[CertificateValidation] = field(default_factory=list)
    validation_state: ValidationState = ValidationState.PASSED
    dfsp_id: str | None = None


@dataclass(frozen=True, slots=True)
class CertificateSubmission:
    """Caller-supplied DFSP server certificate material (PEM text)."""

    server_certificate: str = field(repr=False)
    intermediate_chain: str | None = field(default=None, repr=False)
    root_certificate: str | None = field(default=None, repr=False)


@dataclass(frozen=True, slots=True)
class CertificateSubject:
    common_name: str
    organization: str | None = None
    organizational_unit: str | None = None
    locality: str | None = None
    state: str | None = None
    country: str | None = None
    email_address: str | None = None


@dataclass(frozen=True, slots=True)
class HubCertificateRequest:
    """Issuance parameters for the hub server certificate minted by the engine."""

    subject: CertificateSubject
    dns_names: list[str] = field(default_factory=list)
    ip_addresses: list[str] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class MintedCertificate:
    """What the engine returns after signing a new hub leaf."""

    certificate: str = field(repr=False)
    serial_number: str
    ca_chain: list[str] = field(default_factory=list, repr=False)


type WhitelistBundle = dict[str, str]
