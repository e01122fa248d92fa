"""Exception classes for the LQS engine.

Row-level errors (data, storage) are caught at the row boundary by the
reconciliation pipeline and recorded in the run result. Context errors
and review-queue integrity errors propagate to the caller.
"""


class LqsError(Exception):
    """Base error with a stable machine-readable code."""

    error_code = "LQS_ERROR"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


# =========================
# Row-level errors
# =========================


class RowDataError(LqsError):
    """A normalized row is missing or has a malformed required field."""

    error_code = "ROW_DATA_ERROR"

    def __init__(self, field: str, message: str):
        self.field = field
        super().__init__(f"{field}: {message}")


class StorageError(LqsError):
    """A repository read or write failed."""

    error_code = "STORAGE_ERROR"


class DuplicateKeyError(StorageError):
    """A create collided with an existing natural key."""

    error_code = "DUPLICATE_KEY"

    def __init__(self, entity: str, key: str):
        self.entity = entity
        self.key = key
        super().__init__(f"{entity} already exists: {key}")


class NotFoundError(StorageError):
    """A referenced record does not exist."""

    error_code = "NOT_FOUND"

    def __init__(self, resource: str, identifier: str):
        self.resource = resource
        self.identifier = identifier
        super().__init__(f"{resource} not found: {identifier}")


# =========================
# Run-level errors
# =========================


class ReconciliationContextError(LqsError):
    """The run cannot start: agency or team directory unavailable."""

    error_code = "CONTEXT_ERROR"


# =========================
# Review queue errors
# =========================


class ReviewQueueError(LqsError):
    """An invalid operation on the review queue."""

    error_code = "REVIEW_QUEUE_ERROR"


class ReviewIncompleteError(ReviewQueueError):
    """complete() was called while some items are still undecided."""

    error_code = "REVIEW_INCOMPLETE"

    def __init__(self, undecided_indices: list[int]):
        self.undecided_indices = list(undecided_indices)
        super().__init__(
            f"Review incomplete: items {self.undecided_indices} have no decision"
        )
