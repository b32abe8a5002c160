"""Exception hierarchy for collection workflows.

Validation errors subclass ``ValueError`` and lookups subclass ``LookupError``
so callers that only know the builtin types keep working.
"""

from __future__ import annotations


class CollectionError(Exception):
    """Base class for every error raised by the collection core."""


class ValidationError(CollectionError, ValueError):
    """The caller asked for something the domain does not allow."""


class InvalidAmountError(ValidationError):
    def __init__(self, amount: float, outstanding: float) -> None:
        super().__init__(f"invalid amount: {amount} (outstanding {outstanding})")
        self.amount = amount
        self.outstanding = outstanding


class TaskFinalizedError(ValidationError):
    def __init__(self, task_id: str, status: str) -> None:
        super().__init__(f"task already finalized: {task_id} is {status}")
        self.task_id = task_id
        self.status = status


class RouteStateError(ValidationError):
    """A route lifecycle call was made from a state that does not allow it."""


class DuplicateRouteError(ValidationError):
    """A collector already has a route for the requested day."""


class NotFoundError(CollectionError, LookupError):
    def __init__(self, kind: str, entity_id: str) -> None:
        super().__init__(f"{kind} not found: {entity_id}")
        self.kind = kind
        self.entity_id = entity_id


class ConcurrencyError(CollectionError):
    """Raised when a write is based on a stale version of an entity."""

    def __init__(self, kind: str, entity_id: str, expected: int, actual: int) -> None:
        super().__init__(
            f"{kind} {entity_id} was modified concurrently (expected version {expected}, found {actual})"
        )
        self.kind = kind
        self.entity_id = entity_id
