from __future__ import annotations

import hashlib
import unicodedata
from typing import Any

from .schema import FormDefinition


EMAIL_LABELS = ("E-mail", "Email", "Adresse email", "email")
NOM_LABELS = ("Nom", "nom")
PRENOM_LABELS = ("Prénom", "Prenom", "prenom")


def _normalize(s: Any) -> str:
    s = str(s or "").strip()
    s = unicodedata.normalize("NFKD", s)
    s = "".join(ch for ch in s if not unicodedata.combining(ch))
    return " ".join(s.lower().split())


def _lookup(answers: dict, form: FormDefinition | None, labels: tuple[str, ...]) -> str:
    wanted = {_normalize(label) for label in labels}
    if form is not None:
        for f in form.fields:
            if _normalize(f.label) in wanted:
                value = answers.get(f.id)
                if value not in (None, ""):
                    return str(value)
    # Réponses indexées par libellé (anciennes données)
    for key, value in answers.items():
        if _normalize(key) in wanted and value not in (None, ""):
            return str(value)
    return ""


def identity_parts(answers: dict, form: FormDefinition | None = None) -> tuple[str, str, str]:
    return (
        _normalize(_lookup(answers, form, EMAIL_LABELS)),
        _normalize(_lookup(answers, form, NOM_LABELS)),
        _normalize(_lookup(answers, form, PRENOM_LABELS)),
    )


def identity_key(answers: dict, form: FormDefinition | None = None) -> str | None:
    """Empreinte (email, nom, prénom) servant à la contrainte d'unicité du stockage.

    None si aucune des trois informations n'est renseignée : pas de contrainte
    possible sur une inscription anonyme.
    """
    parts = identity_parts(answers, form)
    if not any(parts):
        return None
    raw = "|".join(parts).encode("utf-8")
    return hashlib.sha256(raw).hexdigest()
