"""In-process authority implementing the sync exchange contract.

Stands in for the remote server in tests and offline development. Conflicts
are settled by ``incoming_wins``: a change is accepted only if its
(sync_version, last_modified) pair is strictly greater than the stored
version's; ties keep the stored version and reject the change.
"""

import logging
from typing import Any

from ..errors import NetworkError
from ..store import now_ms
from .protocol import (
    Authority,
    RejectedChange,
    ServerChange,
    SyncRequest,
    SyncResponse,
)

logger = logging.getLogger(__name__)


def version_key(record: dict[str, Any]) -> tuple[int, int]:
    """Ordering key for last-write-wins comparison."""
    return (int(record.get("sync_version") or 0), int(record.get("last_modified") or 0))


def incoming_wins(incoming: dict[str, Any], current: dict[str, Any] | None) -> bool:
    """Decide whether an incoming write replaces the stored version."""
    if current is None:
        return True
    return version_key(incoming) > version_key(current)


class LoopbackAuthority(Authority):
    """Authority holding its records in memory.

    Every accepted write is stamped with a server timestamp; a request
    receives every record stamped after its ``last_sync_timestamp``,
    including the ones it just sent (clients drop those by change_id).
    """

    def __init__(self) -> None:
        self.tables: dict[str, dict[str, dict[str, Any]]] = {}
        self._stamps: dict[tuple[str, str], int] = {}
        self._clock = 0
        self.online = True
        self.requests: list[SyncRequest] = []

    def _tick(self) -> int:
        self._clock = max(self._clock + 1, now_ms())
        return self._clock

    def put(self, table_name: str, record: dict[str, Any]) -> None:
        """Store a record as if another client had synced it."""
        self.tables.setdefault(table_name, {})[record["id"]] = dict(record)
        self._stamps[(table_name, record["id"])] = self._tick()

    def get(self, table_name: str, record_id: str) -> dict[str, Any] | None:
        return self.tables.get(table_name, {}).get(record_id)

    async def health_check(self) -> bool:
        return self.online

    async def exchange(self, request: SyncRequest) -> SyncResponse:
        if not self.online:
            raise NetworkError("Loopback authority is offline")

        self.requests.append(request)
        response = SyncResponse()

        for change in request.changes:
            table_name = change["table_name"]
            record_id = change["record_id"]
            data = change["data"]
            current = self.get(table_name, record_id)

            if incoming_wins(data, current):
                self.put(table_name, data)
                response.accepted.append((table_name, record_id))
            else:
                response.rejected.append(
                    RejectedChange(table_name, record_id, server_data=dict(current))
                )
                logger.debug(
                    f"Rejected {table_name}/{record_id}: "
                    f"v{version_key(data)} <= v{version_key(current)}"
                )

        since = request.last_sync_timestamp
        for (table_name, record_id), stamp in sorted(
            self._stamps.items(), key=lambda item: item[1]
        ):
            if stamp > since:
                response.server_changes.append(
                    ServerChange(table_name, dict(self.tables[table_name][record_id]))
                )

        response.sync_timestamp = self._clock
        return response
