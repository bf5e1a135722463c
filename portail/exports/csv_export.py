from __future__ import annotations

import csv
import json
import re
from datetime import date
from io import StringIO
from typing import Any, Iterable

from portail.formulaires.lifecycle import STATUS_LABELS
from portail.formulaires.schema import FormDefinition, SubmissionRecord, from_iso
from portail.inscriptions import champs
from portail.inscriptions.services import full_name

DELIMITER = ";"
BOM = "\ufeff"
# Premiers caractères qu'un tableur interprète comme une formule
FORMULA_CHARS = ("=", "+", "-", "@", "\t", "\r")

BACKOFFICE_HEADERS = [
    "Matricule",
    "Nom Complet",
    "Email",
    "Téléphone",
    "Date de Naissance",
    "Sexe",
    "Lieu de Naissance",
    "Adresse",
    "École",
    "Province École",
    "Section Humanités",
    "Année Obtention",
    "Pourcentage",
    "Filière 1",
    "Mention 1",
    "Filière 2",
    "Mention 2",
    "Statut",
    "Date Inscription",
    "Formulaire",
]


def fr_date(value: Any) -> str:
    dt = from_iso(value)
    return dt.strftime("%d/%m/%Y") if dt else ""


def _cell(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (list, tuple)):
        return json.dumps([str(v) for v in value], ensure_ascii=False)
    if isinstance(value, dict):
        return str(value.get("name") or "")
    return str(value)


def neutralize(text: str) -> str:
    """Préfixe `'` devant une valeur qui démarrerait une formule.

    Une valeur commençant déjà par `'` est préfixée aussi, pour que
    `restore` reste l'inverse exact.
    """
    if text and (text.startswith(FORMULA_CHARS) or text.startswith("'")):
        return "'" + text
    return text


def restore(text: str) -> str:
    if len(text) > 1 and text[0] == "'" and (text[1] in FORMULA_CHARS or text[1] == "'"):
        return text[1:]
    return text


def _write(header: list[str], rows: Iterable[list[str]]) -> str:
    output = StringIO()
    writer = csv.writer(output, delimiter=DELIMITER, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow([neutralize(h) for h in header])
    for row in rows:
        writer.writerow([neutralize(v) for v in row])
    return BOM + output.getvalue()


# ----------------------------------------------------------------------
# Export par formulaire (colonnes = ordre des champs du formulaire)
# ----------------------------------------------------------------------
def form_header(form: FormDefinition) -> list[str]:
    header = ["Date d'inscription"]
    header += [f.label for f in form.ordered_fields()]
    if form.filieres:
        header += ["Filière", "Mention", "Filière 2", "Mention 2"]
    header += ["Matricule", "Statut"]
    return header


def submission_row(record: SubmissionRecord, form: FormDefinition) -> list[str]:
    row = [fr_date(record.submitted_at)]
    for f in form.ordered_fields():
        row.append(_cell(record.submission_data.get(f.id)))
    if form.filieres:
        row += [
            record.filiere_name or "",
            record.mention or "",
            record.filiere_name_2 or "",
            record.mention_2 or "",
        ]
    row += [record.matricule, STATUS_LABELS.get(record.status, record.status)]
    return row


def export_form_csv(form: FormDefinition, submissions: Iterable[SubmissionRecord]) -> str:
    return _write(form_header(form), (submission_row(s, form) for s in submissions))


def read_csv(text: str) -> tuple[list[str], list[list[str]]]:
    """Relit un export (BOM, séparateur ';') : (en-tête, lignes)."""
    if text.startswith(BOM):
        text = text[len(BOM):]
    rows = [[restore(v) for v in row] for row in csv.reader(StringIO(text), delimiter=DELIMITER)]
    if not rows:
        return [], []
    return rows[0], rows[1:]


def _answer(field, text: str) -> Any:
    if field.type == "checkbox" and text.startswith("["):
        try:
            return json.loads(text)
        except ValueError:
            return text
    return text


def read_form_csv(form: FormDefinition, text: str) -> list[dict[str, Any]]:
    """Relit un export par formulaire : réponses indexées par id de champ."""
    _, rows = read_csv(text)
    fields = form.ordered_fields()
    out = []
    for row in rows:
        values = row[1:1 + len(fields)]
        out.append({f.id: _answer(f, v) for f, v in zip(fields, values)})
    return out


# ----------------------------------------------------------------------
# Export back-office (liste filtrée, toutes formations confondues)
# ----------------------------------------------------------------------
def backoffice_row(record: SubmissionRecord, form: FormDefinition | None) -> list[str]:
    def a(labels):
        return record.answer_for(form, *labels)

    return [
        record.matricule,
        full_name(record, form),
        a(champs.EMAIL),
        a(champs.TELEPHONE),
        a(champs.DATE_NAISSANCE),
        a(champs.SEXE),
        a(champs.LIEU_NAISSANCE),
        a(champs.ADRESSE),
        a(champs.ECOLE),
        a(champs.PROVINCE_ECOLE),
        a(champs.SECTION),
        a(champs.ANNEE_OBTENTION),
        a(champs.POURCENTAGE),
        record.filiere_name or "",
        record.mention or "",
        record.filiere_name_2 or "",
        record.mention_2 or "",
        record.status,
        fr_date(record.submitted_at),
        form.title if form else "Formulaire inconnu",
    ]


def export_all_csv(submissions: Iterable[SubmissionRecord], forms: Iterable[FormDefinition]) -> str:
    by_id = {f.id: f for f in forms}
    return _write(BACKOFFICE_HEADERS, (backoffice_row(s, by_id.get(s.form_id)) for s in submissions))


def form_csv_filename(form: FormDefinition, today: date | None = None) -> str:
    today = today or date.today()
    title = re.sub(r"\s+", "_", form.title.strip())
    return f"inscription_{title}_{today.isoformat()}.csv"


def all_csv_filename(today: date | None = None) -> str:
    today = today or date.today()
    return f"inscriptions_istm_{today.isoformat()}.csv"
