from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any


FIELD_TYPES = (
    "text",
    "email",
    "tel",
    "number",
    "date",
    "textarea",
    "select",
    "radio",
    "checkbox",
    "file",
    "url",
)
CHOICE_TYPES = ("select", "radio", "checkbox")

FORM_STATUSES = ("draft", "published", "archived")
SUBMISSION_STATUSES = ("pending", "approved", "rejected")


class SchemaError(ValueError):
    """Définition de formulaire incohérente (ids en double, type inconnu...)."""


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def to_iso(value: Any) -> str | None:
    """Normalise un horodatage (datetime, str ISO, None) en chaîne ISO-8601."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.isoformat()
    return str(value)


def from_iso(value: Any) -> datetime | None:
    """Inverse de to_iso : chaîne ISO (suffixe Z toléré) -> datetime UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def _opt_float(value: Any) -> float | None:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _opt_int(value: Any) -> int | None:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


@dataclass
class FieldValidation:
    min: float | None = None
    max: float | None = None
    min_length: int | None = None
    max_length: int | None = None
    pattern: str | None = None

    @classmethod
    def from_dict(cls, data: dict | None) -> "FieldValidation":
        data = data or {}
        return cls(
            min=_opt_float(data.get("min")),
            max=_opt_float(data.get("max")),
            # Anciens documents : clés camelCase
            min_length=_opt_int(data.get("min_length", data.get("minLength"))),
            max_length=_opt_int(data.get("max_length", data.get("maxLength"))),
            pattern=(data.get("pattern") or None),
        )

    def to_dict(self) -> dict:
        return {k: v for k, v in self.__dict__.items() if v is not None}


@dataclass
class FieldSchema:
    id: str
    type: str = "text"
    label: str = ""
    placeholder: str | None = None
    required: bool = False
    options: list[str] = field(default_factory=list)
    order: int = 0
    validation: FieldValidation = field(default_factory=FieldValidation)
    description: str | None = None

    @property
    def is_choice(self) -> bool:
        return self.type in CHOICE_TYPES

    @classmethod
    def from_dict(cls, data: dict) -> "FieldSchema":
        ftype = (data.get("type") or "text").strip()
        if ftype not in FIELD_TYPES:
            raise SchemaError(f"Type de champ inconnu : {ftype}")
        fid = str(data.get("id") or "").strip()
        if not fid:
            raise SchemaError("Champ sans identifiant")
        options = [str(o) for o in (data.get("options") or []) if str(o).strip()]
        return cls(
            id=fid,
            type=ftype,
            label=(data.get("label") or "").strip(),
            placeholder=data.get("placeholder") or None,
            required=bool(data.get("required", False)),
            options=options if ftype in CHOICE_TYPES else [],
            order=_opt_int(data.get("order")) or 0,
            validation=FieldValidation.from_dict(data.get("validation")),
            description=data.get("description") or None,
        )

    def to_dict(self) -> dict:
        out: dict[str, Any] = {
            "id": self.id,
            "type": self.type,
            "label": self.label,
            "required": self.required,
            "order": self.order,
        }
        if self.placeholder:
            out["placeholder"] = self.placeholder
        if self.is_choice:
            out["options"] = list(self.options)
        validation = self.validation.to_dict()
        if validation:
            out["validation"] = validation
        if self.description:
            out["description"] = self.description
        return out


@dataclass
class Filiere:
    id: str
    name: str
    mentions: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict) -> "Filiere":
        return cls(
            id=str(data.get("id") or "").strip(),
            name=(data.get("name") or "").strip(),
            mentions=[str(m).strip() for m in (data.get("mentions") or []) if str(m).strip()],
        )

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name, "mentions": list(self.mentions)}


@dataclass
class FormDefinition:
    id: str | None
    title: str
    description: str = ""
    fields: list[FieldSchema] = field(default_factory=list)
    filieres: list[Filiere] = field(default_factory=list)
    status: str = "draft"
    submissions_count: int = 0
    created_by: str | None = None
    created_at: str | None = None
    updated_at: str | None = None

    @property
    def is_published(self) -> bool:
        return self.status == "published"

    def ordered_fields(self) -> list[FieldSchema]:
        indexed = list(enumerate(self.fields))
        indexed.sort(key=lambda pair: (pair[1].order, pair[0]))
        return [f for _, f in indexed]

    def field_labels(self) -> dict[str, str]:
        return {f.id: f.label for f in self.fields}

    def find_field(self, field_id: str) -> FieldSchema | None:
        return next((f for f in self.fields if f.id == field_id), None)

    def find_filiere(self, filiere_id: str | None) -> Filiere | None:
        if not filiere_id:
            return None
        return next((f for f in self.filieres if f.id == filiere_id), None)

    def check(self) -> None:
        seen: set[str] = set()
        for f in self.fields:
            if f.id in seen:
                raise SchemaError(f"Identifiant de champ en double : {f.id}")
            seen.add(f.id)
        seen_filieres: set[str] = set()
        for fil in self.filieres:
            if not fil.id:
                raise SchemaError("Filière sans identifiant")
            if fil.id in seen_filieres:
                raise SchemaError(f"Identifiant de filière en double : {fil.id}")
            seen_filieres.add(fil.id)
        if self.status not in FORM_STATUSES:
            raise SchemaError(f"Statut de formulaire inconnu : {self.status}")

    @classmethod
    def from_dict(cls, data: dict) -> "FormDefinition":
        return cls(
            id=(str(data["id"]) if data.get("id") else None),
            title=(data.get("title") or "").strip(),
            description=data.get("description") or "",
            fields=[FieldSchema.from_dict(f) for f in (data.get("fields") or [])],
            filieres=[Filiere.from_dict(f) for f in (data.get("filieres") or [])],
            status=data.get("status") or "draft",
            submissions_count=_opt_int(data.get("submissions_count")) or 0,
            created_by=data.get("created_by") or None,
            created_at=to_iso(data.get("created_at")),
            updated_at=to_iso(data.get("updated_at")),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "fields": [f.to_dict() for f in self.fields],
            "filieres": [f.to_dict() for f in self.filieres],
            "status": self.status,
            "submissions_count": self.submissions_count,
            "created_by": self.created_by,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass
class StatusTransition:
    from_status: str
    to_status: str
    by: str | None
    at: str

    @classmethod
    def from_dict(cls, data: dict) -> "StatusTransition":
        return cls(
            from_status=data.get("from_status") or "",
            to_status=data.get("to_status") or "",
            by=data.get("by") or None,
            at=to_iso(data.get("at")) or "",
        )

    def to_dict(self) -> dict:
        return {"from_status": self.from_status, "to_status": self.to_status, "by": self.by, "at": self.at}


@dataclass
class SubmissionRecord:
    id: str | None
    form_id: str | None
    matricule: str
    submission_data: dict[str, Any] = field(default_factory=dict)
    filiere_id: str | None = None
    filiere_name: str | None = None
    mention: str | None = None
    filiere_id_2: str | None = None
    filiere_name_2: str | None = None
    mention_2: str | None = None
    status: str = "pending"
    identity_key: str | None = None
    status_history: list[StatusTransition] = field(default_factory=list)
    submitted_at: str | None = None
    created_at: str | None = None
    updated_at: str | None = None

    def answer_for(self, form: FormDefinition | None, *labels: str) -> str:
        """Première réponse non vide parmi des libellés candidats.

        Les réponses sont indexées par id de champ ; on passe par le libellé du
        formulaire, puis on tolère les anciennes données indexées par libellé.
        """
        by_label: dict[str, str] = {}
        if form is not None:
            for f in form.fields:
                by_label.setdefault(f.label.strip().lower(), f.id)
        for label in labels:
            key = label.strip().lower()
            fid = by_label.get(key)
            candidates = [fid, label] if fid else [label]
            for c in candidates:
                value = self.submission_data.get(c)
                if value not in (None, "", []):
                    return _as_text(value)
        return ""

    def normalized(self, form: FormDefinition) -> "SubmissionRecord":
        """Réindexe les anciennes réponses (clé = libellé) par id de champ."""
        ids = {f.id for f in form.fields}
        by_label = {f.label: f.id for f in form.fields}
        data: dict[str, Any] = {}
        for key, value in self.submission_data.items():
            if key in ids:
                data[key] = value
            elif key in by_label and by_label[key] not in self.submission_data:
                data[by_label[key]] = value
            else:
                data[key] = value
        self.submission_data = data
        return self

    @classmethod
    def from_dict(cls, data: dict) -> "SubmissionRecord":
        return cls(
            id=(str(data["id"]) if data.get("id") else None),
            form_id=(str(data["form_id"]) if data.get("form_id") else None),
            matricule=data.get("matricule") or "",
            submission_data=dict(data.get("submission_data") or {}),
            filiere_id=data.get("filiere_id") or None,
            filiere_name=data.get("filiere_name") or None,
            mention=data.get("mention") or None,
            filiere_id_2=data.get("filiere_id_2") or None,
            filiere_name_2=data.get("filiere_name_2") or None,
            mention_2=data.get("mention_2") or None,
            status=data.get("status") or "pending",
            identity_key=data.get("identity_key") or None,
            status_history=[StatusTransition.from_dict(t) for t in (data.get("status_history") or [])],
            submitted_at=to_iso(data.get("submitted_at")),
            created_at=to_iso(data.get("created_at")),
            updated_at=to_iso(data.get("updated_at")),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "form_id": self.form_id,
            "matricule": self.matricule,
            "submission_data": dict(self.submission_data),
            "filiere_id": self.filiere_id,
            "filiere_name": self.filiere_name,
            "mention": self.mention,
            "filiere_id_2": self.filiere_id_2,
            "filiere_name_2": self.filiere_name_2,
            "mention_2": self.mention_2,
            "status": self.status,
            "identity_key": self.identity_key,
            "status_history": [t.to_dict() for t in self.status_history],
            "submitted_at": self.submitted_at,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


def _as_text(value: Any) -> str:
    if isinstance(value, (list, tuple)):
        return ", ".join(str(v) for v in value)
    return str(value)
