"""Sync exchange messages and the authority interface."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any


@dataclass
class SyncRequest:
    """A batch of local changes sent to the authority."""

    client_type: str
    last_sync_timestamp: int
    changes: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "client_type": self.client_type,
            "last_sync_timestamp": self.last_sync_timestamp,
            "changes": self.changes,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SyncRequest":
        return cls(
            client_type=data.get("client_type", ""),
            last_sync_timestamp=int(data.get("last_sync_timestamp") or 0),
            changes=list(data.get("changes") or []),
        )


@dataclass
class RejectedChange:
    """A change the authority refused, with its current version if any."""

    table_name: str
    record_id: str
    server_data: dict[str, Any] | None = None


@dataclass
class ServerChange:
    """A record changed elsewhere, delivered to this client."""

    table_name: str
    data: dict[str, Any]


@dataclass
class SyncResponse:
    """The authority's verdict on a batch."""

    sync_timestamp: int = 0
    accepted: list[tuple[str, str]] = field(default_factory=list)  # (table, record_id)
    rejected: list[RejectedChange] = field(default_factory=list)
    server_changes: list[ServerChange] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "sync_timestamp": self.sync_timestamp,
            "accepted_changes": [
                {"table_name": table, "record_id": record_id}
                for table, record_id in self.accepted
            ],
            "rejected_changes": [
                {
                    "table_name": r.table_name,
                    "record_id": r.record_id,
                    "server_data": r.server_data,
                }
                for r in self.rejected
            ],
            "server_changes": [
                {"table_name": c.table_name, "data": c.data}
                for c in self.server_changes
            ],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SyncResponse":
        """Parse a response body. Missing lists are treated as empty."""
        return cls(
            sync_timestamp=int(data.get("sync_timestamp") or 0),
            accepted=[
                (c["table_name"], c["record_id"])
                for c in data.get("accepted_changes") or []
            ],
            rejected=[
                RejectedChange(
                    table_name=c["table_name"],
                    record_id=c["record_id"],
                    server_data=c.get("server_data"),
                )
                for c in data.get("rejected_changes") or []
            ],
            server_changes=[
                ServerChange(table_name=c["table_name"], data=c["data"])
                for c in data.get("server_changes") or []
            ],
        )


class Authority(ABC):
    """The system of record a client reconciles against."""

    @abstractmethod
    async def exchange(self, request: SyncRequest) -> SyncResponse:
        """Submit a batch and return the authority's response.

        Raises:
            SyncError: The exchange could not complete.
        """
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        """Return True if the authority is reachable."""
        pass

    async def close(self) -> None:
        """Release any held connections."""
