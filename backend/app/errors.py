class PersistenceError(Exception):
    """Base class for everything the local store can raise."""


class StoreInitError(PersistenceError):
    pass


class StoreNotInitializedError(PersistenceError):
    pass


class QueryError(PersistenceError):
    pass


class SnapshotWriteError(PersistenceError):
    """The database changed but its snapshot could not be written out."""


class DataCorruptionError(PersistenceError):
    """A stored value or row could not be decoded into its domain shape."""

    def __init__(self, column: str, raw: object, reason: str = "not a JSON array"):
        self.column = column
        self.raw = raw
        super().__init__(f"corrupted value in column {column!r}: {reason}")


class RecordNotFoundError(PersistenceError):
    pass


class ProfileNotFoundError(RecordNotFoundError):
    def __init__(self, profile_id: str):
        self.profile_id = profile_id
        super().__init__(f"Profile not found: {profile_id}")


class EmptyUpdateError(PersistenceError, ValueError):
    pass
