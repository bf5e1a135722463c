from __future__ import annotations

import copy
import uuid

from .schema import (
    CHOICE_TYPES,
    FIELD_TYPES,
    FieldSchema,
    Filiere,
    FormDefinition,
    SchemaError,
    now_iso,
)


DEFAULT_OPTIONS = ["Option 1", "Option 2"]


def _new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


def new_form(created_by: str | None = None) -> FormDefinition:
    now = now_iso()
    return FormDefinition(
        id=None,
        title="Nouveau formulaire",
        description="",
        status="draft",
        created_by=created_by,
        created_at=now,
        updated_at=now,
    )


def new_field(form: FormDefinition, ftype: str = "text", label: str | None = None) -> FieldSchema:
    """Ajoute un champ en fin de formulaire et le retourne."""
    if ftype not in FIELD_TYPES:
        raise SchemaError(f"Type de champ inconnu : {ftype}")
    f = FieldSchema(
        id=_new_id("field"),
        type=ftype,
        label=label or "Nouveau champ",
        required=False,
        order=len(form.fields) + 1,
        options=list(DEFAULT_OPTIONS) if ftype in CHOICE_TYPES else [],
    )
    form.fields.append(f)
    return f


def new_filiere(form: FormDefinition, name: str | None = None, mentions: list[str] | None = None) -> Filiere:
    fil = Filiere(id=_new_id("filiere"), name=name or "Nouvelle filière", mentions=list(mentions or []))
    form.filieres.append(fil)
    return fil


def remove_field(form: FormDefinition, field_id: str) -> bool:
    field = form.find_field(field_id)
    if field is None:
        return False
    form.fields.remove(field)
    reorder_fields(form, [f.id for f in form.ordered_fields()])
    return True


def reorder_fields(form: FormDefinition, ids: list[str]) -> FormDefinition:
    """Réattribue des `order` contigus (1..n) selon la liste d'ids.

    Les champs absents de la liste gardent leur ordre relatif, en fin de formulaire.
    """
    by_id = {f.id: f for f in form.fields}
    unknown = [i for i in ids if i not in by_id]
    if unknown:
        raise SchemaError(f"Champs inconnus : {', '.join(unknown)}")
    ordered = [by_id[i] for i in dict.fromkeys(ids)]
    rest = [f for f in form.ordered_fields() if f.id not in set(ids)]
    for n, f in enumerate(ordered + rest, start=1):
        f.order = n
    form.fields = ordered + rest
    form.updated_at = now_iso()
    return form


def duplicate_form(form: FormDefinition, created_by: str | None = None) -> FormDefinition:
    """Copie brouillon : nouveaux ids pour champs et filières, compteur remis à zéro."""
    now = now_iso()
    clone = FormDefinition(
        id=None,
        title=f"{form.title} (Copie)",
        description=form.description,
        fields=[copy.deepcopy(f) for f in form.fields],
        filieres=[copy.deepcopy(f) for f in form.filieres],
        status="draft",
        submissions_count=0,
        created_by=created_by or form.created_by,
        created_at=now,
        updated_at=now,
    )
    for f in clone.fields:
        f.id = _new_id("field")
    for fil in clone.filieres:
        fil.id = _new_id("filiere")
    return clone
