from __future__ import annotations

from .errors import InvalidTransitionError

# Static transition tables. Statuses missing as keys are terminal.
VALID_TRANSITIONS: dict[str, dict[str, frozenset[str]]] = {
    "SALES_ORDER": {
        "DRAFT": frozenset({"APPROVED", "CANCELLED"}),
        "APPROVED": frozenset({"SHIPPED", "CLOSED"}),
        "SHIPPED": frozenset({"CLOSED"}),
    },
    "PURCHASE_ORDER": {
        # Receipt may be posted straight against a draft PO.
        "DRAFT": frozenset({"APPROVED", "RECEIVED", "CANCELLED"}),
        "APPROVED": frozenset({"RECEIVED", "CANCELLED"}),
    },
    "CUSTOMER_INVOICE": {
        "POSTED": frozenset({"PARTIALLY_PAID", "PAID"}),
        "PARTIALLY_PAID": frozenset({"PARTIALLY_PAID", "PAID"}),
    },
}


def allowed_transitions(entity_type: str, current_status: str) -> frozenset[str]:
    table = VALID_TRANSITIONS.get(entity_type)
    if table is None:
        raise InvalidTransitionError(
            entity_type,
            current_status,
            "?",
            detail=f"entity {entity_type} does not exist in state machine",
        )
    return table.get(current_status, frozenset())


def is_terminal(entity_type: str, status: str) -> bool:
    return not allowed_transitions(entity_type, status)


def validate_transition(entity_type: str, current_status: str, next_status: str) -> None:
    """
    Pure check against VALID_TRANSITIONS. Callers persist the new status only
    after this returns.
    """
    if entity_type not in VALID_TRANSITIONS:
        raise InvalidTransitionError(
            entity_type,
            current_status,
            next_status,
            detail=f"entity {entity_type} does not exist in state machine",
        )
    if next_status not in allowed_transitions(entity_type, current_status):
        raise InvalidTransitionError(entity_type, current_status, next_status)
