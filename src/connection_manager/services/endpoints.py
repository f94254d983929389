"""
Endpoint Configuration Service — typed, directional endpoint records.

Stateless: every operation receives the EndpointRepository it works on.
Endpoints live either at hub level (participant_id=None) or under a DFSP.
Creation resolves the owner through the ParticipantDirectory first, so an
item is only ever stored under a participant of its own environment.

Two layers of operations:

  Generic       create / get / list / update / delete by id
  Kind-scoped   the same, addressed through a fixed (direction, type) sub-resource
                such as "hub ingress URL" or "egress IP". These first run
                validate_kind(), so an id of another kind fails with
                VALIDATION_ERROR, and only a missing id fails with NOT_FOUND.

Updates are merge-patch: only the value fields present in the body are
validated and replaced. Direction and type are fixed at creation.

State machine: NEW → CONFIRMED → REVOKED. REVOKED is terminal.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

import structlog

from connection_manager.domain.models import (
    EndpointItem,
    EndpointKind,
    EndpointState,
)
from connection_manager.domain.ports import EndpointRepository, ParticipantDirectory
from connection_manager.domain.validation import merge_endpoint_value, parse_endpoint_value
from connection_manager.railway import ErrorCode, Result, not_found, validation_error

log = structlog.get_logger()

_TRANSITIONS = {
    EndpointState.NEW: frozenset({EndpointState.CONFIRMED}),
    EndpointState.CONFIRMED: frozenset({EndpointState.REVOKED}),
    EndpointState.REVOKED: frozenset(),
}


# ─────────────────────── Generic operations ───────────────────────


def resolve_owner(
    directory: ParticipantDirectory, env_id: int, dfsp_id: str | None = None
) -> Result[int | None]:
    """
    Internal participant id owning an endpoint, or None for a hub-level one.

    The environment must exist, and a DFSP must belong to it; both are NOT_FOUND otherwise.
    """
    environment = directory.find_environment(env_id)
    if dfsp_id is None:
        return environment.replace(None)
    return environment.flat_map(lambda _: directory.find_participant(env_id, dfsp_id)).map(
        lambda participant: participant.id
    )


def create_endpoint(
    repository: EndpointRepository,
    directory: ParticipantDirectory,
    env_id: int,
    kind: EndpointKind,
    value: Mapping[str, Any] | None,
    dfsp_id: str | None = None,
) -> Result[EndpointItem]:
    """
    Validate `value` against the schema of the kind's type and store it as NEW.

    IP values need a non-empty address and a non-empty ports array;
    URL values need a syntactically valid url. The value is checked before
    the owner is looked up; nothing is stored unless both succeed.
    """
    return (
        parse_endpoint_value(kind.type, value)
        .flat_map(
            lambda parsed: resolve_owner(directory, env_id, dfsp_id).map(
                lambda participant_id: EndpointItem(
                    direction=kind.direction,
                    type=kind.type,
                    value=parsed,
                    state=EndpointState.NEW,
                    participant_id=participant_id,
                )
            )
        )
        .flat_map(lambda item: repository.create(env_id, item))
        .peek(
            lambda item: log.info(
                "endpoint.created",
                env_id=env_id,
                endpoint_id=item.id,
                kind=str(kind),
                dfsp_id=dfsp_id,
            )
        )
    )


def get_endpoint(
    repository: EndpointRepository, env_id: int, endpoint_id: int
) -> Result[EndpointItem]:
    return repository.find_by_id(env_id, endpoint_id)


def list_endpoints_by_kind(
    repository: EndpointRepository,
    env_id: int,
    kind: EndpointKind,
    participant_id: int | None = None,
) -> Result[list[EndpointItem]]:
    return repository.find_by_kind(env_id, kind, participant_id)


def list_endpoints(
    repository: EndpointRepository, env_id: int, participant_id: int | None = None
) -> Result[list[EndpointItem]]:
    return repository.find_all(env_id, participant_id)


def update_endpoint(
    repository: EndpointRepository,
    env_id: int,
    endpoint_id: int,
    patch: Mapping[str, Any] | None,
) -> Result[EndpointItem]:
    """Re-read the item, merge the validated patch into its value, persist."""
    return (
        repository.find_by_id(env_id, endpoint_id)
        .flat_map(lambda item: merge_endpoint_value(item.value, patch))
        .flat_map(lambda merged: repository.update_value(env_id, endpoint_id, merged))
        .peek(lambda _: log.info("endpoint.updated", env_id=env_id, endpoint_id=endpoint_id))
    )


def delete_endpoint(
    repository: EndpointRepository, env_id: int, endpoint_id: int
) -> Result[int]:
    return (
        repository.find_by_id(env_id, endpoint_id)
        .flat_map(lambda _: repository.delete(env_id, endpoint_id))
        .peek(lambda _: log.info("endpoint.deleted", env_id=env_id, endpoint_id=endpoint_id))
    )


def transition_endpoint_state(
    repository: EndpointRepository,
    env_id: int,
    endpoint_id: int,
    new_state: EndpointState,
) -> Result[EndpointItem]:
    """Apply one state-machine step; anything not NEW→CONFIRMED→REVOKED is rejected."""
    return (
        repository.find_by_id(env_id, endpoint_id)
        .ensure(
            lambda item: new_state in _TRANSITIONS[item.state],
            ErrorCode.VALIDATION_ERROR,
            f"Endpoint {endpoint_id} cannot move to {new_state}",
        )
        .flat_map(lambda _: repository.update_state(env_id, endpoint_id, new_state))
        .peek(
            lambda item: log.info(
                "endpoint.state_changed",
                env_id=env_id,
                endpoint_id=endpoint_id,
                state=item.state.value,
            )
        )
    )


# ─────────────────────── Kind-scoped operations ───────────────────────


def validate_kind(
    repository: EndpointRepository,
    env_id: int,
    kind: EndpointKind,
    endpoint_id: int,
    participant_id: int | None = None,
) -> Result[EndpointItem]:
    """
    Check that the stored item has the expected direction and type.

    A kind mismatch is a VALIDATION_ERROR (right id, wrong sub-resource).
    An item owned by another scope (hub vs. participant) is NOT_FOUND.
    """

    def check(item: EndpointItem) -> Result[EndpointItem]:
        if item.participant_id != participant_id:
            return not_found("Endpoint", endpoint_id)
        if item.direction != kind.direction:
            return validation_error(
                f"Wrong direction {kind.direction}, endpoint has already {item.direction}"
            )
        if item.type != kind.type:
            return validation_error(f"Wrong type {kind.type}, endpoint has already {item.type}")
        return Result.success(item)

    return repository.find_by_id(env_id, endpoint_id).flat_map(check)


def get_endpoint_of_kind(
    repository: EndpointRepository,
    env_id: int,
    kind: EndpointKind,
    endpoint_id: int,
    participant_id: int | None = None,
) -> Result[EndpointItem]:
    return validate_kind(repository, env_id, kind, endpoint_id, participant_id)


def _check_body_kind(kind: EndpointKind, body: Mapping[str, Any]) -> Result[Mapping[str, Any]]:
    """Direction/type in the body must match the sub-resource; absent ones default to it."""
    direction = body.get("direction")
    if direction is not None and direction != kind.direction:
        return validation_error("Bad direction value")
    endpoint_type = body.get("type")
    if endpoint_type is not None and endpoint_type != kind.type:
        return validation_error("Bad type value")
    return Result.success({**body, "direction": kind.direction, "type": kind.type})


def update_endpoint_of_kind(
    repository: EndpointRepository,
    env_id: int,
    kind: EndpointKind,
    endpoint_id: int,
    body: Mapping[str, Any] | None,
    participant_id: int | None = None,
) -> Result[EndpointItem]:
    """
    Update through a kind-scoped sub-resource.

    Body: {"direction"?, "type"?, "value"?: partial value}.
    """
    if not isinstance(body, Mapping):
        return validation_error(f"Invalid body {body}")
    return (
        _check_body_kind(kind, body)
        .flat_map(
            lambda checked: validate_kind(
                repository, env_id, kind, endpoint_id, participant_id
            ).replace(checked)
        )
        .flat_map(
            lambda checked: update_endpoint(repository, env_id, endpoint_id, checked.get("value"))
        )
    )


def delete_endpoint_of_kind(
    repository: EndpointRepository,
    env_id: int,
    kind: EndpointKind,
    endpoint_id: int,
    participant_id: int | None = None,
) -> Result[int]:
    return validate_kind(repository, env_id, kind, endpoint_id, participant_id).flat_map(
        lambda _: delete_endpoint(repository, env_id, endpoint_id)
    )
