from __future__ import annotations

from .schema import (
    FORM_STATUSES,
    SUBMISSION_STATUSES,
    FormDefinition,
    StatusTransition,
    SubmissionRecord,
    now_iso,
)


class TransitionError(ValueError):
    pass


# draft -> published -> archived ; published -> draft (dépublication manuelle).
# archived est terminal.
FORM_TRANSITIONS: dict[str, set[str]] = {
    "draft": {"published", "archived"},
    "published": {"draft", "archived"},
    "archived": set(),
}

# L'administration peut passer librement d'un statut à l'autre.
SUBMISSION_TRANSITIONS: dict[str, set[str]] = {
    s: {t for t in SUBMISSION_STATUSES if t != s} for s in SUBMISSION_STATUSES
}

STATUS_LABELS = {
    "pending": "En attente",
    "approved": "Approuvé",
    "rejected": "Rejeté",
}


def can_change_form_status(current: str, new: str) -> bool:
    return new in FORM_TRANSITIONS.get(current, set())


def change_form_status(form: FormDefinition, new: str) -> FormDefinition:
    if new not in FORM_STATUSES:
        raise TransitionError(f"Statut inconnu : {new}")
    if new == form.status:
        return form
    if not can_change_form_status(form.status, new):
        raise TransitionError(f"Transition interdite : {form.status} -> {new}")
    form.status = new
    form.updated_at = now_iso()
    return form


def transition_submission(record: SubmissionRecord, new: str, by: str | None = None) -> StatusTransition:
    """Applique un changement de statut et l'ajoute à l'historique (append-only)."""
    if new not in SUBMISSION_STATUSES:
        raise TransitionError(f"Statut inconnu : {new}")
    if new not in SUBMISSION_TRANSITIONS.get(record.status, set()):
        raise TransitionError(f"Transition interdite : {record.status} -> {new}")
    entry = StatusTransition(from_status=record.status, to_status=new, by=by, at=now_iso())
    record.status_history.append(entry)
    record.status = new
    record.updated_at = entry.at
    return entry
