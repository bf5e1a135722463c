from __future__ import annotations

import logging
import math
import random
from collections import Counter
from dataclasses import dataclass, replace
from datetime import date
from typing import Any, Iterable

from portail.formulaires.doublons import identity_key
from portail.formulaires.lifecycle import STATUS_LABELS
from portail.formulaires.matricule import generate_matricule
from portail.formulaires.schema import SUBMISSION_STATUSES, FormDefinition, SubmissionRecord, from_iso, now_iso
from portail.formulaires.validation import (
    FILIERE_2_KEY,
    FILIERE_KEY,
    MENTION_2_KEY,
    MENTION_KEY,
    validate_submission,
)
from portail.stores.base import RegistrationStore, StoreResult
from . import champs

log = logging.getLogger(__name__)

MATRICULE_ATTEMPTS = 5


def _file_name(value: Any) -> str:
    if isinstance(value, dict):
        return str(value.get("name") or value.get("filename") or "")
    name = getattr(value, "filename", None)
    if name is not None:
        return str(name)
    return str(value or "")


def build_submission(
    form: FormDefinition,
    answers: dict,
    choices: dict | None,
    matricule: str,
) -> SubmissionRecord:
    """Enregistrement « en attente » indexé par id de champ.

    Seuls les champs du formulaire sont conservés ; un fichier n'est
    représenté que par son nom.
    """
    choices = choices or {}
    data: dict[str, Any] = {}
    for f in form.ordered_fields():
        if f.id not in answers:
            continue
        value = answers[f.id]
        data[f.id] = _file_name(value) if f.type == "file" else value

    first = form.find_filiere(choices.get(FILIERE_KEY))
    second = form.find_filiere(choices.get(FILIERE_2_KEY))
    now = now_iso()
    return SubmissionRecord(
        id=None,
        form_id=form.id,
        matricule=matricule,
        submission_data=data,
        filiere_id=first.id if first else None,
        filiere_name=first.name if first else None,
        mention=(choices.get(MENTION_KEY) or None) if first else None,
        filiere_id_2=second.id if second else None,
        filiere_name_2=second.name if second else None,
        mention_2=(choices.get(MENTION_2_KEY) or None) if second else None,
        status="pending",
        identity_key=identity_key(data, form),
        submitted_at=now,
        created_at=now,
        updated_at=now,
    )


def register_submission(
    store: RegistrationStore,
    form_id: str,
    answers: dict,
    choices: dict | None = None,
    *,
    prefix: str = "ISTM",
    today: date | None = None,
    rng: random.Random | None = None,
) -> StoreResult[SubmissionRecord]:
    """Valide puis enregistre une inscription ; réessaie en cas de collision de matricule."""
    res = store.get_form(form_id)
    if not res.ok:
        return res
    form = res.value
    if not form.is_published:
        return StoreResult.failure("Ce formulaire n'accepte pas d'inscriptions", "conflict")

    errors = validate_submission(form, answers, choices, today=today)
    if errors:
        return StoreResult.failure("Le formulaire contient des erreurs", "validation", details=errors)

    for attempt in range(1, MATRICULE_ATTEMPTS + 1):
        record = build_submission(form, answers, choices, generate_matricule(prefix, rng=rng))
        res = store.create_submission(record)
        if res.ok:
            log.info("Inscription %s enregistrée (formulaire %s)", res.value.matricule, form_id)
            return res
        if res.code != "conflict":
            return res
        log.warning("Collision de matricule %s (essai %d/%d)", record.matricule, attempt, MATRICULE_ATTEMPTS)
    return res


def recount_submissions(forms: Iterable[FormDefinition], submissions: Iterable[SubmissionRecord]) -> list[FormDefinition]:
    """Compteurs recalculés à partir des inscriptions réellement présentes."""
    counts = Counter(s.form_id for s in submissions)
    return [replace(f, submissions_count=counts.get(f.id, 0)) for f in forms]


# ----------------------------------------------------------------------
# Affichage / recherche
# ----------------------------------------------------------------------
def full_name(record: SubmissionRecord, form: FormDefinition | None) -> str:
    parts = [
        record.answer_for(form, *champs.NOM),
        record.answer_for(form, *champs.POSTNOM),
        record.answer_for(form, *champs.PRENOM),
    ]
    return " ".join(p for p in parts if p).strip()


def display_filiere(name: str | None, mention: str | None) -> str:
    text = name or "Non spécifiée"
    if mention:
        text += f" - {mention}"
    return text


def summarize(record: SubmissionRecord, form: FormDefinition | None) -> dict:
    return {
        "id": record.id,
        "form_id": record.form_id,
        "matricule": record.matricule,
        "full_name": full_name(record, form),
        "email": record.answer_for(form, *champs.EMAIL),
        "phone": record.answer_for(form, *champs.TELEPHONE),
        "form_title": form.title if form else "Formulaire inconnu",
        "filiere": display_filiere(record.filiere_name, record.mention),
        "filiere_2": display_filiere(record.filiere_name_2, record.mention_2) if record.filiere_name_2 else None,
        "status": record.status,
        "status_label": STATUS_LABELS.get(record.status, record.status),
        "submitted_at": record.submitted_at,
    }


def search_text(record: SubmissionRecord, form: FormDefinition | None) -> str:
    parts = [
        record.matricule,
        record.answer_for(form, *champs.NOM),
        record.answer_for(form, *champs.POSTNOM),
        record.answer_for(form, *champs.PRENOM),
        record.answer_for(form, *champs.EMAIL),
        record.answer_for(form, *champs.TELEPHONE),
        record.filiere_name or "",
        record.mention or "",
        form.title if form else "Formulaire inconnu",
    ]
    return " ".join(parts).lower()


def _parse_day(value: Any) -> date | None:
    if not value:
        return None
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        return None


@dataclass
class SubmissionFilter:
    status: str = "all"
    search: str = ""
    start_date: date | None = None
    end_date: date | None = None
    filiere: str = "all"
    form_id: str = "all"

    @classmethod
    def from_args(cls, args) -> "SubmissionFilter":
        status = (args.get("status") or "all").strip()
        if status not in SUBMISSION_STATUSES:
            status = "all"
        return cls(
            status=status,
            search=(args.get("q") or args.get("search") or "").strip(),
            start_date=_parse_day(args.get("start_date")),
            end_date=_parse_day(args.get("end_date")),
            filiere=(args.get("filiere") or "all").strip() or "all",
            form_id=(args.get("form_id") or "all").strip() or "all",
        )

    def matches(self, record: SubmissionRecord, form: FormDefinition | None) -> bool:
        if self.status != "all" and record.status != self.status:
            return False
        if self.search and self.search.lower() not in search_text(record, form):
            return False
        if self.start_date or self.end_date:
            submitted = from_iso(record.submitted_at)
            day = submitted.date() if submitted else None
            if day is None:
                return False
            if self.start_date and day < self.start_date:
                return False
            if self.end_date and day > self.end_date:
                return False
        if self.filiere != "all" and record.filiere_name != self.filiere:
            return False
        if self.form_id != "all" and record.form_id != self.form_id:
            return False
        return True


def filter_submissions(
    submissions: Iterable[SubmissionRecord],
    forms: Iterable[FormDefinition],
    flt: SubmissionFilter,
) -> list[SubmissionRecord]:
    by_id = {f.id: f for f in forms}
    return [s for s in submissions if flt.matches(s, by_id.get(s.form_id))]


def available_filieres(submissions: Iterable[SubmissionRecord]) -> list[str]:
    return sorted({s.filiere_name for s in submissions if s.filiere_name and s.filiere_name.strip()})


@dataclass
class Page:
    items: list
    page: int
    per_page: int
    total: int

    @property
    def pages(self) -> int:
        return max(1, math.ceil(self.total / self.per_page))


def paginate(items: list, page: int = 1, per_page: int = 20) -> Page:
    per_page = max(1, int(per_page))
    total = len(items)
    pages = max(1, math.ceil(total / per_page))
    page = min(max(1, int(page)), pages)
    start = (page - 1) * per_page
    return Page(items=items[start:start + per_page], page=page, per_page=per_page, total=total)
