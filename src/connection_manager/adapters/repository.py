"""
PostgreSQL repository adapter — endpoint items, environments and DFSPs.

Adapter layer — implements the EndpointRepository and ParticipantDirectory
ports using psycopg (v3) for sync PostgreSQL access with parameterized queries.

Table mapping:
  Environment  → environments   (id, name)
  Participant  → dfsps          (id, env_id, dfsp_id, name)
  EndpointItem → endpoint_items (id, env_id, dfsp_id → dfsps.id, direction,
                                 type, value JSONB, state, created_at)

The endpoint value is stored as JSONB and converted to IpValue / UrlValue
only here. `dfsp_id IS NULL` marks a hub-level endpoint.

No ORM — raw parameterized SQL, one short transaction per call.
"""

from __future__ import annotations

from typing import Any

import psycopg
import structlog
from psycopg.rows import dict_row
from psycopg.types.json import Jsonb

from connection_manager.domain.models import (
    Direction,
    EndpointItem,
    EndpointKind,
    EndpointState,
    EndpointType,
    EndpointValue,
    Environment,
    IpValue,
    Participant,
    UrlValue,
)
from connection_manager.railway import ErrorCode, Result, not_found

log = structlog.get_logger()

_ITEM_COLUMNS = "id, env_id, dfsp_id, direction, type, value, state, created_at"

_INSERT_ITEM = f"""
INSERT INTO endpoint_items (env_id, dfsp_id, direction, type, value, state)
VALUES (%s, %s, %s, %s, %s, %s)
RETURNING {_ITEM_COLUMNS}
"""

_SELECT_ITEM = f"SELECT {_ITEM_COLUMNS} FROM endpoint_items WHERE env_id = %s AND id = %s"

_SELECT_BY_KIND = f"""
SELECT {_ITEM_COLUMNS} FROM endpoint_items
WHERE env_id = %s AND direction = %s AND type = %s AND dfsp_id IS NOT DISTINCT FROM %s
ORDER BY created_at, id
"""

_SELECT_ALL = f"""
SELECT {_ITEM_COLUMNS} FROM endpoint_items
WHERE env_id = %s AND dfsp_id IS NOT DISTINCT FROM %s
ORDER BY created_at, id
"""

_SELECT_CONFIRMED_PARTICIPANT_ITEMS = f"""
SELECT {_ITEM_COLUMNS} FROM endpoint_items
WHERE env_id = %s AND direction = %s AND type = %s AND state = %s AND dfsp_id IS NOT NULL
ORDER BY created_at, id
"""

_UPDATE_VALUE = f"""
UPDATE endpoint_items SET value = %s WHERE env_id = %s AND id = %s
RETURNING {_ITEM_COLUMNS}
"""

_UPDATE_STATE = f"""
UPDATE endpoint_items SET state = %s WHERE env_id = %s AND id = %s
RETURNING {_ITEM_COLUMNS}
"""

_DELETE_ITEM = "DELETE FROM endpoint_items WHERE env_id = %s AND id = %s"

_SELECT_ENVIRONMENT = "SELECT id, name FROM environments WHERE id = %s"
_SELECT_ENVIRONMENTS = "SELECT id, name FROM environments ORDER BY id"
_SELECT_PARTICIPANT = "SELECT id, env_id, dfsp_id, name FROM dfsps WHERE env_id = %s AND dfsp_id = %s"
_SELECT_PARTICIPANTS = "SELECT id, env_id, dfsp_id, name FROM dfsps WHERE env_id = %s ORDER BY id"


# ─────────────────────── Value codec ───────────────────────


def value_to_json(value: EndpointValue) -> dict[str, Any]:
    match value:
        case IpValue(address=address, ports=ports):
            return {"address": address, "ports": list(ports)}
        case UrlValue(url=url):
            return {"url": url}
    raise TypeError(f"Unsupported endpoint value: {value!r}")


def value_from_json(endpoint_type: EndpointType, data: dict[str, Any]) -> EndpointValue:
    if endpoint_type is EndpointType.IP:
        return IpValue(address=data["address"], ports=list(data.get("ports") or []))
    return UrlValue(url=data["url"])


def _row_to_item(row: dict[str, Any]) -> EndpointItem:
    endpoint_type = EndpointType(row["type"])
    return EndpointItem(
        id=row["id"],
        participant_id=row["dfsp_id"],
        direction=Direction(row["direction"]),
        type=endpoint_type,
        value=value_from_json(endpoint_type, row["value"]),
        state=EndpointState(row["state"]),
        created_at=row["created_at"],
    )


def _row_to_participant(row: dict[str, Any]) -> Participant:
    return Participant(id=row["id"], dfsp_id=row["dfsp_id"], name=row["name"], env_id=row["env_id"])


# ─────────────────────── Shared plumbing ───────────────────────


class _PsycopgAdapter:
    """Connection handling shared by both repository adapters."""

    def __init__(self, dsn: str) -> None:
        self._dsn = dsn

    def _fetch_all(self, query: str, params: tuple[Any, ...]) -> list[dict[str, Any]]:
        with (
            psycopg.connect(self._dsn, row_factory=dict_row) as conn,
            conn.transaction(),
            conn.cursor() as cur,
        ):
            cur.execute(query, params)
            return cur.fetchall()

    def _fetch_one(self, query: str, params: tuple[Any, ...]) -> dict[str, Any] | None:
        rows = self._fetch_all(query, params)
        return rows[0] if rows else None

    def _execute(self, query: str, params: tuple[Any, ...]) -> int:
        with psycopg.connect(self._dsn) as conn, conn.transaction(), conn.cursor() as cur:
            cur.execute(query, params)
            return cur.rowcount

    def _query(self, query: str, params: tuple[Any, ...], message: str) -> Result[list[dict[str, Any]]]:
        return Result.from_computation(
            lambda: self._fetch_all(query, params), ErrorCode.DATABASE_ERROR, message
        )

    def _query_one(
        self, query: str, params: tuple[Any, ...], message: str, resource: str, identifier: Any
    ) -> Result[dict[str, Any]]:
        return Result.from_computation(
            lambda: self._fetch_one(query, params), ErrorCode.DATABASE_ERROR, message
        ).flat_map(
            lambda row: not_found(resource, identifier) if row is None else Result.success(row)
        )


# ─────────────────────── Endpoint repository ───────────────────────


class PsycopgEndpointRepository(_PsycopgAdapter):
    """
    Persist endpoint items in PostgreSQL.

    Implements the EndpointRepository port.
    All exceptions are caught at this adapter boundary via Result.from_computation().
    """

    def create(self, env_id: int, item: EndpointItem) -> Result[EndpointItem]:
        params = (
            env_id,
            item.participant_id,
            item.direction.value,
            item.type.value,
            Jsonb(value_to_json(item.value)),
            item.state.value,
        )
        return (
            self._query_one(
                _INSERT_ITEM, params, "Failed to insert endpoint item", "Endpoint", None
            )
            .map(_row_to_item)
            .peek(lambda created: log.debug("repository.endpoint_inserted", endpoint_id=created.id))
        )

    def find_by_id(self, env_id: int, endpoint_id: int) -> Result[EndpointItem]:
        return self._query_one(
            _SELECT_ITEM, (env_id, endpoint_id), "Failed to read endpoint item", "Endpoint", endpoint_id
        ).map(_row_to_item)

    def find_by_kind(
        self, env_id: int, kind: EndpointKind, participant_id: int | None = None
    ) -> Result[list[EndpointItem]]:
        params = (env_id, kind.direction.value, kind.type.value, participant_id)
        return self._query(_SELECT_BY_KIND, params, "Failed to list endpoint items").map(
            lambda rows: [_row_to_item(row) for row in rows]
        )

    def find_all(
        self, env_id: int, participant_id: int | None = None
    ) -> Result[list[EndpointItem]]:
        return self._query(
            _SELECT_ALL, (env_id, participant_id), "Failed to list endpoint items"
        ).map(lambda rows: [_row_to_item(row) for row in rows])

    def find_confirmed_participant_items(
        self, env_id: int, kind: EndpointKind
    ) -> Result[list[EndpointItem]]:
        params = (env_id, kind.direction.value, kind.type.value, EndpointState.CONFIRMED.value)
        return self._query(
            _SELECT_CONFIRMED_PARTICIPANT_ITEMS, params, "Failed to list confirmed endpoint items"
        ).map(lambda rows: [_row_to_item(row) for row in rows])

    def update_value(
        self, env_id: int, endpoint_id: int, value: EndpointValue
    ) -> Result[EndpointItem]:
        return self._query_one(
            _UPDATE_VALUE,
            (Jsonb(value_to_json(value)), env_id, endpoint_id),
            "Failed to update endpoint value",
            "Endpoint",
            endpoint_id,
        ).map(_row_to_item)

    def update_state(
        self, env_id: int, endpoint_id: int, state: EndpointState
    ) -> Result[EndpointItem]:
        return self._query_one(
            _UPDATE_STATE,
            (state.value, env_id, endpoint_id),
            "Failed to update endpoint state",
            "Endpoint",
            endpoint_id,
        ).map(_row_to_item)

    def delete(self, env_id: int, endpoint_id: int) -> Result[int]:
        """Returns the number of rows removed (0 or 1)."""
        return Result.from_computation(
            lambda: self._execute(_DELETE_ITEM, (env_id, endpoint_id)),
            ErrorCode.DATABASE_ERROR,
            "Failed to delete endpoint item",
        )


# ─────────────────────── Participant directory ───────────────────────


class PsycopgParticipantDirectory(_PsycopgAdapter):
    """
    Read environments and DFSPs from PostgreSQL.

    Implements the ParticipantDirectory port.
    """

    def find_environment(self, env_id: int) -> Result[Environment]:
        return self._query_one(
            _SELECT_ENVIRONMENT, (env_id,), "Failed to read environment", "Environment", env_id
        ).map(lambda row: Environment(id=row["id"], name=row["name"]))

    def list_environments(self) -> Result[list[Environment]]:
        return self._query(_SELECT_ENVIRONMENTS, (), "Failed to list environments").map(
            lambda rows: [Environment(id=row["id"], name=row["name"]) for row in rows]
        )

    def find_participant(self, env_id: int, dfsp_id: str) -> Result[Participant]:
        return self._query_one(
            _SELECT_PARTICIPANT, (env_id, dfsp_id), "Failed to read DFSP", "DFSP", dfsp_id
        ).map(_row_to_participant)

    def list_participants(self, env_id: int) -> Result[list[Participant]]:
        return self._query(_SELECT_PARTICIPANTS, (env_id,), "Failed to list DFSPs").map(
            lambda rows: [_row_to_participant(row) for row in rows]
        )
