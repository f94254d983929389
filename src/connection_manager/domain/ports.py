"""
Ports — Protocol-based interfaces for the collaborators the services depend on.

Hexagonal layout:

  Services ← Ports (protocols) ← Adapters (implementations)

Services never hold a collaborator: each operation receives the ports it needs
as arguments, so a call is fully described by its parameters.

Three ports:
  1. EndpointRepository   → keyed CRUD over endpoint items
  2. ParticipantDirectory → environments and DFSPs (internal id ↔ business id)
  3. CertificateEngine    → the PKI authority: parse, validate, mint, revoke,
                            and the engine-side record/bundle storage

A CertificateEngine instance is scoped to one environment; the composition
root hands out one engine per environment.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

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
from connection_manager.railway import Result


@runtime_checkable
class EndpointRepository(Protocol):
    """
    Port: persistence of endpoint items, scoped per environment.

    Missing ids are reported as NOT_FOUND failures; store I/O failures
    as DATABASE_ERROR.
    """

    def create(self, env_id: int, item: EndpointItem) -> Result[EndpointItem]: ...

    def find_by_id(self, env_id: int, endpoint_id: int) -> Result[EndpointItem]: ...

    def find_by_kind(
        self, env_id: int, kind: EndpointKind, participant_id: int | None = None
    ) -> Result[list[EndpointItem]]: ...

    def find_all(
        self, env_id: int, participant_id: int | None = None
    ) -> Result[list[EndpointItem]]: ...

    def find_confirmed_participant_items(
        self, env_id: int, kind: EndpointKind
    ) -> Result[list[EndpointItem]]:
        """CONFIRMED items of the given kind owned by any participant, in creation order."""
        ...

    def update_value(
        self, env_id: int, endpoint_id: int, value: EndpointValue
    ) -> Result[EndpointItem]: ...

    def update_state(
        self, env_id: int, endpoint_id: int, state: EndpointState
    ) -> Result[EndpointItem]: ...

    def delete(self, env_id: int, endpoint_id: int) -> Result[int]: ...


@runtime_checkable
class ParticipantDirectory(Protocol):
    """Port: environment and DFSP lookup."""

    def find_environment(self, env_id: int) -> Result[Environment]: ...

    def list_environments(self) -> Result[list[Environment]]: ...

    def find_participant(self, env_id: int, dfsp_id: str) -> Result[Participant]:
        """Resolve a business dfsp_id to the participant; NOT_FOUND if unknown."""
        ...

    def list_participants(self, env_id: int) -> Result[list[Participant]]: ...


@runtime_checkable
class CertificateEngine(Protocol):
    """
    Port: the Authority & Validation Engine for one environment.

    Certificate parsing, chain validation, signing and revocation all live
    behind this port; the services only assemble and route.
    """

    def parse_certificate_info(self, pem: str) -> Result[CertificateInfo]: ...

    def validate_server_certificate(
        self,
        server_certificate: str,
        intermediate_chain: str | None = None,
        root_certificate: str | None = None,
    ) -> Result[ChainValidation]: ...

    def mint_hub_leaf(self, request: HubCertificateRequest) -> Result[MintedCertificate]: ...

    def get_root_certificate(self) -> Result[str]: ...

    def revoke_by_serial(self, serial_number: str) -> Result[None]: ...

    def get_hub_certificate_record(self) -> Result[CertificateRecord | None]:
        """The stored hub record, or Success(None) when there is none."""
        ...

    def set_hub_certificate_record(self, record: CertificateRecord) -> Result[CertificateRecord]: ...

    def delete_hub_certificate_record(self) -> Result[None]: ...

    def get_dfsp_certificate_record(self, participant_id: int) -> Result[CertificateRecord]:
        """The stored DFSP record; NOT_FOUND when the participant has none."""
        ...

    def set_dfsp_certificate_record(
        self, participant_id: int, record: CertificateRecord
    ) -> Result[CertificateRecord]: ...

    def delete_dfsp_certificate_record(self, participant_id: int) -> Result[None]: ...

    def refresh_client_cert_bundle(self, participant_id: int, dfsp_id: str) -> Result[None]: ...

    def materialize_internal_ip_allow_list(self, bundle: WhitelistBundle) -> Result[None]: ...
