from __future__ import annotations

import math
import re
from datetime import date, datetime
from typing import Any
from urllib.parse import urlparse

from .schema import FieldSchema, FormDefinition


EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
PHONE_RE = re.compile(r"^[\+]?[0-9\s\-\(\)]{8,}$")

REQUIRED_MSG = "Ce champ est obligatoire"
FILIERE_KEY = "selectedFiliere"
FILIERE_2_KEY = "selectedFiliere2"
MENTION_KEY = "selectedMention"
MENTION_2_KEY = "selectedMention2"


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    if isinstance(value, (list, tuple, set, dict)):
        return len(value) == 0
    return False


def _fmt_num(n: float) -> str:
    return str(int(n)) if float(n).is_integer() else str(n)


def _parse_date(value: str) -> date | None:
    try:
        return date.fromisoformat(value)
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00")).date()
    except ValueError:
        return None


def validate_field_value(field: FieldSchema, value: Any, *, today: date | None = None) -> str | None:
    """Retourne le message d'erreur d'un champ, ou None si la valeur est valide.

    Ne lève jamais d'exception : un motif regex invalide saisi dans le
    constructeur de formulaires est ignoré plutôt que de bloquer l'inscription.
    """
    if _is_blank(value):
        return REQUIRED_MSG if field.required else None

    # Fichiers : présence uniquement
    if field.type == "file":
        return None

    if isinstance(value, (list, tuple)):
        # Cases à cocher multiples : pas de règle de format
        return None

    text = str(value).strip()
    rules = field.validation

    if field.type == "email":
        if not EMAIL_RE.match(text):
            return "Veuillez saisir une adresse email valide (ex: nom@exemple.com)"

    elif field.type == "tel":
        if not PHONE_RE.match(text):
            return "Veuillez saisir un numéro de téléphone valide (ex: +243123456789)"

    elif field.type == "number":
        try:
            num = float(text.replace(",", "."))
        except ValueError:
            return "Veuillez saisir un nombre valide"
        if math.isnan(num):
            return "Veuillez saisir un nombre valide"
        if rules.min is not None and num < rules.min:
            return f"La valeur doit être supérieure ou égale à {_fmt_num(rules.min)}"
        if rules.max is not None and num > rules.max:
            return f"La valeur doit être inférieure ou égale à {_fmt_num(rules.max)}"

    elif field.type == "date":
        parsed = _parse_date(text)
        if parsed is None:
            return "Veuillez saisir une date valide"
        today = today or date.today()
        if "naissance" in field.label.lower() and parsed > today:
            return "La date de naissance ne peut pas être dans le futur"

    elif field.type == "url":
        parts = urlparse(text)
        if not parts.scheme or not parts.netloc:
            return "Veuillez saisir une URL valide (ex: https://exemple.com)"

    elif field.type == "text":
        if rules.min_length and len(text) < rules.min_length:
            return f"Ce champ doit contenir au moins {rules.min_length} caractères"
        if rules.max_length and len(text) > rules.max_length:
            return f"Ce champ ne peut pas dépasser {rules.max_length} caractères"
        if rules.pattern:
            try:
                if not re.search(rules.pattern, text):
                    return "Le format saisi n'est pas valide"
            except re.error:
                return None

    return None


class WizardPlan:
    """Découpage d'un formulaire en étapes (assistant d'inscription).

    Étapes 1..n : champs par paquets de `fields_per_step` (ordre du formulaire),
    puis une étape filières si le formulaire en propose, puis la confirmation.
    """

    def __init__(self, form: FormDefinition, fields_per_step: int = 6):
        self.form = form
        self.fields_per_step = max(1, int(fields_per_step))
        self.fields = form.ordered_fields()
        self.field_steps = math.ceil(len(self.fields) / self.fields_per_step)
        self.has_filieres = bool(form.filieres)
        self.total_steps = self.field_steps + (1 if self.has_filieres else 0) + 1

    def kind(self, step: int) -> str:
        if step < 1 or step > self.total_steps:
            raise ValueError(f"Étape hors limites : {step}")
        if step == self.total_steps:
            return "confirmation"
        if self.has_filieres and step == self.field_steps + 1:
            return "filieres"
        return "fields"

    def fields_for(self, step: int) -> list[FieldSchema]:
        if self.kind(step) != "fields":
            return []
        start = (step - 1) * self.fields_per_step
        return self.fields[start:start + self.fields_per_step]

    def to_dict(self) -> dict:
        steps = []
        for n in range(1, self.total_steps + 1):
            steps.append({
                "step": n,
                "kind": self.kind(n),
                "fields": [f.id for f in self.fields_for(n)],
            })
        return {"total_steps": self.total_steps, "steps": steps}


def _validate_fields(fields: list[FieldSchema], answers: dict, today: date | None) -> dict[str, str]:
    errors: dict[str, str] = {}
    for f in fields:
        error = validate_field_value(f, answers.get(f.id), today=today)
        if error:
            errors[f.id] = error
    return errors


def _validate_choices(form: FormDefinition, choices: dict, final: bool) -> dict[str, str]:
    errors: dict[str, str] = {}
    if not form.filieres:
        return errors
    suffix = "" if final else "."

    first = form.find_filiere(choices.get(FILIERE_KEY))
    second = form.find_filiere(choices.get(FILIERE_2_KEY))
    if first is None:
        errors[FILIERE_KEY] = "Veuillez sélectionner votre premier choix de filière" + suffix
    if second is None:
        errors[FILIERE_2_KEY] = "Veuillez sélectionner votre deuxième choix de filière" + suffix

    mention = (choices.get(MENTION_KEY) or "").strip()
    if first is not None and mention and first.mentions and mention not in first.mentions:
        errors[MENTION_KEY] = "Cette mention n'appartient pas à la filière choisie"
    mention_2 = (choices.get(MENTION_2_KEY) or "").strip()
    if second is not None and mention_2 and second.mentions and mention_2 not in second.mentions:
        errors[MENTION_2_KEY] = "Cette mention n'appartient pas à la filière choisie"
    return errors


def validate_step(
    form: FormDefinition,
    answers: dict,
    choices: dict | None,
    step: int,
    *,
    fields_per_step: int = 6,
    today: date | None = None,
) -> dict[str, str]:
    """Valide une étape de l'assistant : seulement les champs visibles."""
    plan = WizardPlan(form, fields_per_step)
    kind = plan.kind(step)
    if kind == "filieres":
        return _validate_choices(form, choices or {}, final=False)
    if kind == "confirmation":
        return validate_submission(form, answers, choices, today=today)
    return _validate_fields(plan.fields_for(step), answers, today)


def validate_submission(
    form: FormDefinition,
    answers: dict,
    choices: dict | None,
    *,
    today: date | None = None,
) -> dict[str, str]:
    """Validation exhaustive avant acceptation (étape de confirmation)."""
    errors = _validate_fields(form.ordered_fields(), answers, today)
    errors.update(_validate_choices(form, choices or {}, final=True))
    return errors
