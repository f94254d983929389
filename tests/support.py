"""
Test support — generated PKI material and in-memory port implementations.

No certificate fixtures are checked in: every test builds its own
root → intermediate → leaf hierarchy with cryptography (EC P-256 keys,
so generation is fast).

The in-memory fakes implement the three ports with plain dicts and record
the engine calls they receive, so services can be tested end to end
without PostgreSQL or Vault.
"""

from __future__ import annotations

import ipaddress
import itertools
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime, timedelta

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

from connection_manager.adapters.x509_inspector import X509CertificateInspector, format_serial
from connection_manager.domain.models import (
    CertificateInfo,
    CertificateRecord,
    ChainValidation,
    EndpointItem,
    EndpointKind,
    EndpointState,
    EndpointValue,
    Environment,
    HubCertificateRequest,
    MintedCertificate,
    Participant,
    WhitelistBundle,
)
from connection_manager.railway import Result, not_found

# ─────────────────────── PKI generation ───────────────────────


def _name(common_name: str) -> x509.Name:
    return x509.Name(
        [
            x509.NameAttribute(NameOID.COMMON_NAME, common_name),
            x509.NameAttribute(NameOID.ORGANIZATION_NAME, "Test Hub"),
        ]
    )


def _pem(cert: x509.Certificate) -> str:
    return cert.public_bytes(serialization.Encoding.PEM).decode()


@dataclass
class Authority:
    """A root CA and one or more intermediates, able to sign leaves."""

    root_key: ec.EllipticCurvePrivateKey
    root: x509.Certificate
    intermediate_keys: list[ec.EllipticCurvePrivateKey]
    intermediates: list[x509.Certificate]

    @classmethod
    def create(cls, name: str = "Test", depth: int = 1) -> Authority:
        """Build a self-signed root and `depth` intermediates, each signed by the previous."""
        now = datetime.now(UTC)
        root_key = ec.generate_private_key(ec.SECP256R1())
        root = _ca_certificate(
            f"{name} Root CA", root_key.public_key(), _name(f"{name} Root CA"), root_key, now
        )
        keys: list[ec.EllipticCurvePrivateKey] = []
        certs: list[x509.Certificate] = []
        issuer_key, issuer = root_key, root
        for level in range(depth):
            key = ec.generate_private_key(ec.SECP256R1())
            cert = _ca_certificate(
                f"{name} Intermediate CA {level + 1}", key.public_key(), issuer.subject, issuer_key, now
            )
            keys.append(key)
            certs.append(cert)
            issuer_key, issuer = key, cert
        # Intermediates are kept leaf-side first, the order a chain bundle uses.
        return cls(root_key, root, list(reversed(keys)), list(reversed(certs)))

    @property
    def root_pem(self) -> str:
        return _pem(self.root)

    @property
    def intermediate_pems(self) -> list[str]:
        return [_pem(c) for c in self.intermediates]

    @property
    def intermediate_bundle(self) -> str:
        return "".join(self.intermediate_pems)

    def issue_leaf(
        self,
        common_name: str = "server.example.com",
        dns_names: list[str] | None = None,
        ip_addresses: list[str] | None = None,
        serial_number: int | None = None,
        not_before: datetime | None = None,
        not_after: datetime | None = None,
    ) -> str:
        now = datetime.now(UTC)
        key = ec.generate_private_key(ec.SECP256R1())
        builder = (
            x509.CertificateBuilder()
            .subject_name(_name(common_name))
            .issuer_name(self.intermediates[0].subject)
            .public_key(key.public_key())
            .serial_number(serial_number or x509.random_serial_number())
            .not_valid_before(not_before or now - timedelta(days=1))
            .not_valid_after(not_after or now + timedelta(days=365))
            .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
        )
        sans: list[x509.GeneralName] = [x509.DNSName(d) for d in dns_names or []]
        sans += [x509.IPAddress(ipaddress.ip_address(ip)) for ip in ip_addresses or []]
        if sans:
            builder = builder.add_extension(x509.SubjectAlternativeName(sans), critical=False)
        return _pem(builder.sign(self.intermediate_keys[0], hashes.SHA256()))


def _ca_certificate(
    common_name: str,
    public_key: ec.EllipticCurvePublicKey,
    issuer: x509.Name,
    issuer_key: ec.EllipticCurvePrivateKey,
    now: datetime,
) -> x509.Certificate:
    return (
        x509.CertificateBuilder()
        .subject_name(_name(common_name))
        .issuer_name(issuer)
        .public_key(public_key)
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(days=30))
        .not_valid_after(now + timedelta(days=3650))
        .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
        .sign(issuer_key, hashes.SHA256())
    )


# ─────────────────────── In-memory ports ───────────────────────


class InMemoryEndpointRepository:
    """EndpointRepository over a dict; ids double as creation order."""

    def __init__(self) -> None:
        self._items: dict[tuple[int, int], EndpointItem] = {}
        self._ids = itertools.count(1)

    def create(self, env_id: int, item: EndpointItem) -> Result[EndpointItem]:
        stored = replace(item, id=next(self._ids), created_at=datetime.now(UTC))
        self._items[(env_id, stored.id)] = stored  # type: ignore[index]
        return Result.success(stored)

    def find_by_id(self, env_id: int, endpoint_id: int) -> Result[EndpointItem]:
        item = self._items.get((env_id, endpoint_id))
        return Result.success(item) if item else not_found("Endpoint", endpoint_id)

    def _in_env(self, env_id: int) -> list[EndpointItem]:
        return [item for (env, _), item in sorted(self._items.items()) if env == env_id]

    def find_by_kind(
        self, env_id: int, kind: EndpointKind, participant_id: int | None = None
    ) -> Result[list[EndpointItem]]:
        return Result.success(
            [
                i
                for i in self._in_env(env_id)
                if i.kind == kind and i.participant_id == participant_id
            ]
        )

    def find_all(
        self, env_id: int, participant_id: int | None = None
    ) -> Result[list[EndpointItem]]:
        return Result.success(
            [i for i in self._in_env(env_id) if i.participant_id == participant_id]
        )

    def find_confirmed_participant_items(
        self, env_id: int, kind: EndpointKind
    ) -> Result[list[EndpointItem]]:
        return Result.success(
            [
                i
                for i in self._in_env(env_id)
                if i.kind == kind
                and i.state is EndpointState.CONFIRMED
                and i.participant_id is not None
            ]
        )

    def _replace(self, env_id: int, endpoint_id: int, **changes: object) -> Result[EndpointItem]:
        return self.find_by_id(env_id, endpoint_id).map(
            lambda item: self._store(env_id, replace(item, **changes))
        )

    def _store(self, env_id: int, item: EndpointItem) -> EndpointItem:
        self._items[(env_id, item.id)] = item  # type: ignore[index]
        return item

    def update_value(
        self, env_id: int, endpoint_id: int, value: EndpointValue
    ) -> Result[EndpointItem]:
        return self._replace(env_id, endpoint_id, value=value)

    def update_state(
        self, env_id: int, endpoint_id: int, state: EndpointState
    ) -> Result[EndpointItem]:
        return self._replace(env_id, endpoint_id, state=state)

    def delete(self, env_id: int, endpoint_id: int) -> Result[int]:
        return Result.success(1 if self._items.pop((env_id, endpoint_id), None) else 0)


class InMemoryParticipantDirectory:
    def __init__(
        self,
        environments: list[Environment] | None = None,
        participants: list[Participant] | None = None,
    ) -> None:
        self.environments = environments or [Environment(id=1, name="dev")]
        self.participants = participants or []

    def add_participant(self, dfsp_id: str, env_id: int = 1) -> Participant:
        participant = Participant(
            id=len(self.participants) + 100, dfsp_id=dfsp_id, name=dfsp_id.upper(), env_id=env_id
        )
        self.participants.append(participant)
        return participant

    def find_environment(self, env_id: int) -> Result[Environment]:
        found = next((e for e in self.environments if e.id == env_id), None)
        return Result.success(found) if found else not_found("Environment", env_id)

    def list_environments(self) -> Result[list[Environment]]:
        return Result.success(list(self.environments))

    def find_participant(self, env_id: int, dfsp_id: str) -> Result[Participant]:
        found = next(
            (p for p in self.participants if p.env_id == env_id and p.dfsp_id == dfsp_id), None
        )
        return Result.success(found) if found else not_found("DFSP", dfsp_id)

    def list_participants(self, env_id: int) -> Result[list[Participant]]:
        return Result.success([p for p in self.participants if p.env_id == env_id])


@dataclass
class InMemoryCertificateEngine:
    """
    CertificateEngine backed by a generated Authority and dict storage.

    Parsing and validation use the real X509CertificateInspector.
    Every state-changing call is appended to `events`.
    """

    authority: Authority = field(default_factory=Authority.create)
    hub_record: CertificateRecord | None = None
    dfsp_records: dict[int, CertificateRecord] = field(default_factory=dict)
    client_bundles: dict[str, int] = field(default_factory=dict)
    whitelist: WhitelistBundle | None = None
    revoked: list[str] = field(default_factory=list)
    events: list[str] = field(default_factory=list)
    inspector: X509CertificateInspector = field(default_factory=X509CertificateInspector)

    def parse_certificate_info(self, pem: str) -> Result[CertificateInfo]:
        return self.inspector.parse_certificate_info(pem)

    def validate_server_certificate(
        self,
        server_certificate: str,
        intermediate_chain: str | None = None,
        root_certificate: str | None = None,
    ) -> Result[ChainValidation]:
        return self.inspector.validate_server_certificate(
            server_certificate, intermediate_chain, root_certificate
        )

    def mint_hub_leaf(self, request: HubCertificateRequest) -> Result[MintedCertificate]:
        serial = x509.random_serial_number()
        pem = self.authority.issue_leaf(
            request.subject.common_name,
            dns_names=request.dns_names,
            ip_addresses=request.ip_addresses,
            serial_number=serial,
        )
        self.events.append("mint")
        return Result.success(
            MintedCertificate(
                certificate=pem,
                serial_number=format_serial(serial),
                ca_chain=[*self.authority.intermediate_pems, self.authority.root_pem],
            )
        )

    def get_root_certificate(self) -> Result[str]:
        return Result.success(self.authority.root_pem)

    def revoke_by_serial(self, serial_number: str) -> Result[None]:
        self.events.append("revoke")
        self.revoked.append(serial_number)
        return Result.success(None)

    def get_hub_certificate_record(self) -> Result[CertificateRecord | None]:
        return Result.success(self.hub_record)

    def set_hub_certificate_record(self, record: CertificateRecord) -> Result[CertificateRecord]:
        self.events.append("set_hub")
        self.hub_record = record
        return Result.success(record)

    def delete_hub_certificate_record(self) -> Result[None]:
        self.events.append("delete_hub")
        self.hub_record = None
        return Result.success(None)

    def get_dfsp_certificate_record(self, participant_id: int) -> Result[CertificateRecord]:
        record = self.dfsp_records.get(participant_id)
        return Result.success(record) if record else not_found("DFSP server certificate", participant_id)

    def set_dfsp_certificate_record(
        self, participant_id: int, record: CertificateRecord
    ) -> Result[CertificateRecord]:
        self.events.append("set_dfsp")
        self.dfsp_records[participant_id] = record
        return Result.success(record)

    def delete_dfsp_certificate_record(self, participant_id: int) -> Result[None]:
        self.events.append("delete_dfsp")
        self.dfsp_records.pop(participant_id, None)
        return Result.success(None)

    def refresh_client_cert_bundle(self, participant_id: int, dfsp_id: str) -> Result[None]:
        self.events.append("client_bundle")
        self.client_bundles[dfsp_id] = participant_id
        return Result.success(None)

    def materialize_internal_ip_allow_list(self, bundle: WhitelistBundle) -> Result[None]:
        self.events.append("whitelist")
        self.whitelist = dict(bundle)
        return Result.success(None)
