class IngestionError(Exception):
    """A message was rejected before it touched any buffer."""
    reason: str = "rejected"


class MalformedInput(IngestionError):
    reason = "malformed"


class OwnershipMismatch(IngestionError):
    reason = "ownership"


class StorageError(Exception):
    pass


class PersistenceFailure(StorageError):
    """The store refused a write. Computed data is still reported to the caller."""
