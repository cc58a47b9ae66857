"""Error taxonomy for the tracking engine.

Each error carries a stable ``kind`` string so callers (the presentation
layer, the CLI) can render distinct messages without matching on class names.
"""

from typing import Optional


class TherapyProgressError(Exception):
    """Base exception for tracking engine errors."""

    kind = "error"


class NotFoundError(TherapyProgressError):
    """An entity id did not resolve."""

    kind = "not_found"

    def __init__(self, entity: str, entity_id: str):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} not found: {entity_id}")


class ValidationError(TherapyProgressError):
    """Numeric input out of range, or a patch touching a protected field."""

    kind = "validation"

    def __init__(self, message: str, field: Optional[str] = None):
        self.field = field
        super().__init__(message)


class InvalidStateError(TherapyProgressError):
    """A state transition was attempted from a non-eligible state."""

    kind = "invalid_state"

    def __init__(self, entity: str, entity_id: str, current: str, attempted: str):
        self.entity = entity
        self.entity_id = entity_id
        self.current = current
        self.attempted = attempted
        super().__init__(
            f"Cannot move {entity} {entity_id} from {current!r} to {attempted!r}"
        )


class InvalidRangeError(TherapyProgressError):
    """A report date range is malformed."""

    kind = "invalid_range"


class DependencyFailureError(TherapyProgressError):
    """The persistence collaborator failed."""

    kind = "dependency_failure"
