"""Document status transition table."""

from backend.app.errors import InvalidTransitionError
from backend.app.models.documents import DocumentStatus

ALLOWED_TRANSITIONS: dict[DocumentStatus, frozenset[DocumentStatus]] = {
    DocumentStatus.PENDING: frozenset({DocumentStatus.PROCESSING}),
    DocumentStatus.PROCESSING: frozenset({DocumentStatus.COMPLETED, DocumentStatus.FAILED}),
    DocumentStatus.FAILED: frozenset({DocumentStatus.PROCESSING}),
    DocumentStatus.COMPLETED: frozenset(),
}


def can_transition(current: DocumentStatus, target: DocumentStatus) -> bool:
    """Return True if ``current -> target`` is in the transition table."""
    return target in ALLOWED_TRANSITIONS[current]


def ensure_transition(current: DocumentStatus, target: DocumentStatus) -> None:
    """Raise InvalidTransitionError unless ``current -> target`` is allowed."""
    if not can_transition(current, target):
        raise InvalidTransitionError(current.value, target.value)


def sources_for(target: DocumentStatus) -> list[DocumentStatus]:
    """Statuses from which ``target`` may be entered.

    Used as the precondition of conditional status updates.
    """
    return [status for status, targets in ALLOWED_TRANSITIONS.items() if target in targets]
