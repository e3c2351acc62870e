from __future__ import annotations

from cfdi.exceptions import ConflictError
from cfdi.models import DocumentStatus

# draft -> stamped -> canceled; canceled is terminal. Drafts are never canceled.
ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
    DocumentStatus.DRAFT: frozenset({DocumentStatus.STAMPED}),
    DocumentStatus.STAMPED: frozenset({DocumentStatus.CANCELED}),
    DocumentStatus.CANCELED: frozenset(),
}


def can_transition(current: str, target: str) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


def ensure_transition(current: str, target: str, *, document: str = "document") -> None:
    if can_transition(current, target):
        return
    if target == DocumentStatus.STAMPED and current == DocumentStatus.STAMPED:
        message = f"{document} is already stamped"
    elif current == DocumentStatus.CANCELED:
        message = f"{document} is canceled and cannot change"
    elif target == DocumentStatus.CANCELED and current == DocumentStatus.DRAFT:
        message = f"{document} is a draft; only stamped documents can be canceled"
    else:
        message = f"{document} cannot move from {current} to {target}"
    raise ConflictError(message, context={"current": str(current), "target": str(target)})
