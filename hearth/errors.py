"""Exception hierarchy for Hearth.

Store errors propagate to whoever made the mutation. Sync errors are caught
at the round boundary by the SyncManager and turned into a retry; skips are
reported through events and never raised out of a round.
"""


class HearthError(Exception):
    """Base class for all Hearth errors."""


# ==================== Store ====================


class StoreError(HearthError):
    """A local store operation could not be completed."""


class UnknownCollectionError(StoreError):
    """The named collection is not registered."""

    def __init__(self, collection: str):
        super().__init__(f"Unknown collection: {collection}")
        self.collection = collection


class NotFoundError(StoreError):
    """The record is absent or soft-deleted."""

    def __init__(self, collection: str, record_id: str):
        super().__init__(f"Record {record_id} not found in {collection}")
        self.collection = collection
        self.record_id = record_id


class DuplicateKeyError(StoreError):
    """An insert collided with an existing id."""

    def __init__(self, collection: str, record_id: str):
        super().__init__(f"Record {record_id} already exists in {collection}")
        self.collection = collection
        self.record_id = record_id


class InvalidRecordError(StoreError):
    """The record is missing required sync metadata."""

    def __init__(self, collection: str, missing: list[str]):
        super().__init__(
            f"Record for {collection} is missing sync metadata: {', '.join(missing)}"
        )
        self.collection = collection
        self.missing = missing


# ==================== Sync ====================


class SyncError(HearthError):
    """The sync exchange with the authority failed."""


class NetworkError(SyncError):
    """The authority could not be reached."""


class SyncTimeoutError(NetworkError):
    """The authority did not answer within the request timeout."""


class RemoteError(SyncError):
    """The authority answered with an error or an unreadable body."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class AuthenticationError(RemoteError):
    """The authority refused the configured credentials."""


# ==================== Skips ====================


class SyncSkipped(HearthError):
    """A sync round was not started. Not a failure."""


class ConnectivityOfflineError(SyncSkipped):
    """Sync requested while offline."""

    def __init__(self):
        super().__init__("Offline, sync skipped")


class ConcurrentSyncSkipped(SyncSkipped):
    """Sync requested while another round was in flight."""

    def __init__(self):
        super().__init__("Sync already in progress, skipped")
