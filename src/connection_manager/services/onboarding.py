"""
Onboarding Orchestrator — the participant onboarding use case.

  find participant
    → engine: rebuild the participant's client-certificate bundle
      → build the egress-IP whitelist bundle from CONFIRMED EGRESS IP items
        → engine: materialize the internal IP allow-list
          → external allow-list (deferred, no-op)

The whitelist bundle is recomputed from current state on every call, so
onboarding is idempotent and the scheduled refresh can reuse the same
builder. No lock is taken across participants: a confirmation that lands
during the scan may show up only in the next bundle.
"""

from __future__ import annotations

from collections.abc import Callable

import structlog

from connection_manager.domain.models import (
    EGRESS_IP,
    EndpointItem,
    Environment,
    Participant,
    WhitelistBundle,
)
from connection_manager.domain.ports import (
    CertificateEngine,
    EndpointRepository,
    ParticipantDirectory,
)
from connection_manager.railway import ErrorCode, Result

log = structlog.get_logger()


def group_addresses(
    items: list[EndpointItem], participants: list[Participant]
) -> Result[WhitelistBundle]:
    """
    Group addresses by owning participant, keyed by business dfsp_id.

    Each participant's addresses are comma-joined in encounter order into a
    single string.
    """
    dfsp_ids = {p.id: p.dfsp_id for p in participants}
    grouped: dict[str, list[str]] = {}
    for item in items:
        dfsp_id = dfsp_ids.get(item.participant_id)  # type: ignore[arg-type]
        if dfsp_id is None:
            return Result.failure(
                ErrorCode.NOT_FOUND,
                f"Endpoint {item.id} belongs to unknown participant {item.participant_id}",
            )
        grouped.setdefault(dfsp_id, []).append(item.value.address)  # type: ignore[union-attr]
    return Result.success({dfsp_id: ",".join(addresses) for dfsp_id, addresses in grouped.items()})


def build_whitelist_bundle(
    repository: EndpointRepository,
    directory: ParticipantDirectory,
    env_id: int,
) -> Result[WhitelistBundle]:
    """Participant dfsp_id → "addr1,addr2,..." over CONFIRMED EGRESS IP endpoints."""
    return repository.find_confirmed_participant_items(env_id, EGRESS_IP).flat_map(
        lambda items: directory.list_participants(env_id).flat_map(
            lambda participants: group_addresses(items, participants)
        )
    )


def _populate_external_ip_whitelist(env_id: int, bundle: WhitelistBundle) -> Result[None]:
    # TODO: materialize the external-facing allow-list once the engine exposes an
    # external whitelist bundle path; until then this call site is a no-op.
    log.debug("onboarding.external_whitelist_deferred", env_id=env_id, participants=len(bundle))
    return Result.success(None)


def refresh_internal_whitelist(
    engine: CertificateEngine,
    repository: EndpointRepository,
    directory: ParticipantDirectory,
    env_id: int,
) -> Result[WhitelistBundle]:
    """Recompute the whitelist bundle and hand it to the engine."""
    return (
        build_whitelist_bundle(repository, directory, env_id)
        .flat_map(
            lambda bundle: engine.materialize_internal_ip_allow_list(bundle).replace(bundle)
        )
        .peek(
            lambda bundle: log.info(
                "onboarding.whitelist_materialized", env_id=env_id, participants=len(bundle)
            )
        )
    )


def onboard_dfsp(
    engine: CertificateEngine,
    repository: EndpointRepository,
    directory: ParticipantDirectory,
    env_id: int,
    dfsp_id: str,
) -> Result[WhitelistBundle]:
    """Onboard one participant; returns the whitelist bundle that was materialized."""
    return (
        directory.find_participant(env_id, dfsp_id)
        .flat_map(
            lambda participant: engine.refresh_client_cert_bundle(
                participant.id, participant.dfsp_id
            )
        )
        .peek(lambda _: log.info("onboarding.client_bundle_refreshed", dfsp_id=dfsp_id))
        .flat_map(lambda _: refresh_internal_whitelist(engine, repository, directory, env_id))
        .flat_map(
            lambda bundle: _populate_external_ip_whitelist(env_id, bundle).replace(bundle)
        )
        .peek(lambda _: log.info("onboarding.completed", env_id=env_id, dfsp_id=dfsp_id))
    )


def refresh_all_whitelists(
    engine_for: Callable[[int], CertificateEngine],
    repository: EndpointRepository,
    directory: ParticipantDirectory,
) -> Result[int]:
    """
    Re-materialize the internal allow-list of every environment.

    Every environment is attempted even when an earlier one fails; the first
    failure is returned after the sweep, otherwise the number refreshed.
    """

    def sweep(environments: list[Environment]) -> Result[int]:
        failures = []
        for environment in environments:
            result = refresh_internal_whitelist(
                engine_for(environment.id), repository, directory, environment.id
            )
            if result.is_failure():
                log.error(
                    "onboarding.refresh_failed",
                    env_id=environment.id,
                    failure=str(result.error()),
                )
                failures.append(result.error())
        if failures:
            first = failures[0]
            return Result.failure(first.code, first.message, first.exception)
        return Result.success(len(environments))

    return directory.list_environments().flat_map(sweep)
