"""
Invoice Status State Machine

Governs which lifecycle changes are legal and who may trigger them.

Statuses: draft, created, sent, reminded, paid, cancelled (terminal).

Triggers:
- FINALIZE: document finalization, the only way out of draft
- MANUAL: caller-initiated direct status change (organization members)
- DISPATCH: successful email dispatch moving an invoice to sent
"""

from enum import Enum
from typing import Dict, FrozenSet, List, Optional
import logging

from database.invoice_models import InvoiceStatus
from services.errors import InvalidTransitionError

logger = logging.getLogger(__name__)


class TransitionTrigger(str, Enum):
    FINALIZE = "finalize"
    MANUAL = "manual"
    DISPATCH = "dispatch"


# current -> statuses reachable by a manual change
MANUAL_TRANSITIONS: Dict[InvoiceStatus, FrozenSet[InvoiceStatus]] = {
    InvoiceStatus.DRAFT: frozenset(),
    InvoiceStatus.CREATED: frozenset({InvoiceStatus.SENT, InvoiceStatus.PAID, InvoiceStatus.CANCELLED}),
    InvoiceStatus.SENT: frozenset({InvoiceStatus.REMINDED, InvoiceStatus.PAID, InvoiceStatus.CANCELLED}),
    InvoiceStatus.REMINDED: frozenset({InvoiceStatus.PAID, InvoiceStatus.CANCELLED}),
    InvoiceStatus.PAID: frozenset({InvoiceStatus.SENT, InvoiceStatus.CANCELLED}),
    InvoiceStatus.CANCELLED: frozenset(),
}

FINALIZE_TRANSITIONS: Dict[InvoiceStatus, FrozenSet[InvoiceStatus]] = {
    InvoiceStatus.DRAFT: frozenset({InvoiceStatus.CREATED}),
}

# Re-sending an already sent invoice keeps it at sent
DISPATCH_SOURCES: FrozenSet[InvoiceStatus] = frozenset({
    InvoiceStatus.CREATED,
    InvoiceStatus.SENT,
    InvoiceStatus.REMINDED,
    InvoiceStatus.PAID,
})


def _coerce(status) -> InvoiceStatus:
    return status if isinstance(status, InvoiceStatus) else InvoiceStatus(status)


def allowed_transitions(
    current,
    trigger: TransitionTrigger = TransitionTrigger.MANUAL
) -> List[InvoiceStatus]:
    """List the statuses reachable from current with the given trigger."""
    current = _coerce(current)

    if trigger == TransitionTrigger.FINALIZE:
        targets = FINALIZE_TRANSITIONS.get(current, frozenset())
    elif trigger == TransitionTrigger.DISPATCH:
        targets = frozenset({InvoiceStatus.SENT}) if current in DISPATCH_SOURCES else frozenset()
    else:
        targets = MANUAL_TRANSITIONS[current]

    return sorted(targets, key=lambda s: list(InvoiceStatus).index(s))


def can_transition(
    current,
    target,
    trigger: TransitionTrigger = TransitionTrigger.MANUAL
) -> bool:
    return _coerce(target) in allowed_transitions(current, trigger)


def assert_transition(
    current,
    target,
    trigger: TransitionTrigger = TransitionTrigger.MANUAL
) -> InvoiceStatus:
    """
    Validate a status change.

    Returns the target status, raises InvalidTransitionError otherwise.
    """
    current = _coerce(current)
    target = _coerce(target)

    if current == InvoiceStatus.CANCELLED:
        raise InvalidTransitionError(
            current.value, target.value,
            "Cancelled invoices cannot change status"
        )

    if current == InvoiceStatus.DRAFT and trigger != TransitionTrigger.FINALIZE:
        raise InvalidTransitionError(
            current.value, target.value,
            "Draft invoices must be finalized first"
        )

    if not can_transition(current, target, trigger):
        raise InvalidTransitionError(current.value, target.value)

    return target


def log_status_change(
    invoice_id: str,
    previous,
    new,
    trigger: TransitionTrigger,
    actor_id: Optional[str] = None
) -> None:
    """
    Emit the audit event for a status change.

    Reopening a paid invoice is logged separately so it can be traced.
    """
    previous = _coerce(previous)
    new = _coerce(new)
    log_entry = {
        "event": "invoice.status_changed",
        "invoice_id": invoice_id,
        "from_status": previous.value,
        "to_status": new.value,
        "trigger": trigger.value,
        "actor_id": actor_id,
    }
    logger.info(f"Invoice {invoice_id}: {previous.value} -> {new.value} ({trigger.value})", extra=log_entry)

    if previous == InvoiceStatus.PAID and new == InvoiceStatus.SENT:
        logger.warning(
            f"Invoice {invoice_id} reopened from paid by {actor_id}",
            extra={**log_entry, "event": "invoice.reopened"}
        )
