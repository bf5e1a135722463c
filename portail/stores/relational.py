from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError

from portail.extensions import db
from portail.formulaires.lifecycle import transition_submission
from portail.formulaires.schema import FormDefinition, SubmissionRecord, from_iso, to_iso
from portail.models import CMS_MODELS, FormRow, StatusLogRow, SubmissionRow
from .base import (
    ConflictError,
    DuplicateError,
    NotFoundError,
    RegistrationStore,
    check_collection,
    merge_form,
    new_id,
    store_operation,
)

log = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.utcnow()


def _naive(value) -> datetime | None:
    """ISO / datetime -> datetime UTC naïf (colonnes DateTime sans fuseau)."""
    dt = from_iso(value)
    if dt is None:
        return None
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def _form_out(row: FormRow) -> FormDefinition:
    return FormDefinition.from_dict({
        "id": row.id,
        "title": row.title,
        "description": row.description,
        "fields": row.fields or [],
        "filieres": row.filieres or [],
        "status": row.status,
        "submissions_count": row.submissions_count,
        "created_by": row.created_by,
        "created_at": row.created_at,
        "updated_at": row.updated_at,
    })


def _submission_out(row: SubmissionRow) -> SubmissionRecord:
    return SubmissionRecord.from_dict({
        "id": row.id,
        "form_id": row.form_id,
        "matricule": row.matricule,
        "submission_data": row.submission_data or {},
        "filiere_id": row.filiere_id,
        "filiere_name": row.filiere_name,
        "mention": row.mention,
        "filiere_id_2": row.filiere_id_2,
        "filiere_name_2": row.filiere_name_2,
        "mention_2": row.mention_2,
        "status": row.status,
        "identity_key": row.identity_key,
        "status_history": [
            {"from_status": h.from_status, "to_status": h.to_status, "by": h.changed_by, "at": h.changed_at}
            for h in row.history
        ],
        "submitted_at": row.submitted_at,
        "created_at": row.created_at,
        "updated_at": row.updated_at,
    })


def _item_out(row) -> dict:
    data = {}
    for col in row.__table__.columns:
        value = getattr(row, col.name)
        data[col.name] = to_iso(value) if isinstance(value, datetime) else value
    return data


class SqlStore(RegistrationStore):
    """Adaptateur relationnel (SQLAlchemy / Flask-SQLAlchemy).

    Nécessite un contexte d'application Flask : la session est celle de `db`.
    """

    name = "relationnel"

    def recover(self) -> None:
        db.session.rollback()

    @store_operation
    def ping(self) -> bool:
        db.session.execute(text("SELECT 1"))
        return True

    # ------------------------------------------------------------------
    # Formulaires
    # ------------------------------------------------------------------
    def _form_row(self, form_id: str) -> FormRow:
        row = db.session.get(FormRow, form_id)
        if row is None:
            raise NotFoundError(f"Formulaire introuvable : {form_id}")
        return row

    @store_operation
    def get_forms(self) -> list[FormDefinition]:
        rows = FormRow.query.order_by(FormRow.created_at.desc()).all()
        return [_form_out(r) for r in rows]

    @store_operation
    def get_form(self, form_id: str) -> FormDefinition:
        return _form_out(self._form_row(form_id))

    @store_operation
    def create_form(self, form: FormDefinition) -> FormDefinition:
        form.check()
        now = _utcnow()
        payload = form.to_dict()
        row = FormRow(
            id=form.id or new_id(),
            title=payload["title"] or "Sans titre",
            description=payload["description"],
            fields=payload["fields"],
            filieres=payload["filieres"],
            status=payload["status"],
            submissions_count=0,
            created_by=payload["created_by"],
            created_at=now,
            updated_at=now,
        )
        db.session.add(row)
        db.session.commit()
        return _form_out(row)

    @store_operation
    def update_form(self, form_id: str, updates: dict) -> FormDefinition:
        row = self._form_row(form_id)
        merged = merge_form(_form_out(row), updates)
        payload = merged.to_dict()
        row.title = payload["title"]
        row.description = payload["description"]
        row.fields = payload["fields"]
        row.filieres = payload["filieres"]
        row.status = payload["status"]
        row.updated_at = _utcnow()
        db.session.commit()
        return _form_out(row)

    @store_operation
    def delete_form(self, form_id: str) -> None:
        row = self._form_row(form_id)
        db.session.delete(row)
        db.session.commit()
        return None

    # ------------------------------------------------------------------
    # Inscriptions
    # ------------------------------------------------------------------
    def _submission_row(self, submission_id: str) -> SubmissionRow:
        row = db.session.get(SubmissionRow, submission_id)
        if row is None:
            raise NotFoundError(f"Inscription introuvable : {submission_id}")
        return row

    @store_operation
    def get_submissions(self, form_id: str | None = None) -> list[SubmissionRecord]:
        q = SubmissionRow.query
        if form_id:
            q = q.filter(SubmissionRow.form_id == form_id)
        rows = q.order_by(SubmissionRow.submitted_at.desc()).all()
        return [_submission_out(r) for r in rows]

    @store_operation
    def get_submission(self, submission_id: str) -> SubmissionRecord:
        return _submission_out(self._submission_row(submission_id))

    @store_operation
    def find_submission_by_matricule(self, matricule: str) -> SubmissionRecord:
        row = SubmissionRow.query.filter_by(matricule=matricule).first()
        if row is None:
            raise NotFoundError(f"Matricule inconnu : {matricule}")
        return _submission_out(row)

    @store_operation
    def create_submission(self, record: SubmissionRecord) -> SubmissionRecord:
        form_row = self._form_row(record.form_id or "")
        if SubmissionRow.query.filter_by(matricule=record.matricule).first() is not None:
            raise ConflictError(f"Matricule déjà attribué : {record.matricule}")
        if record.identity_key and SubmissionRow.query.filter_by(
            form_id=form_row.id, identity_key=record.identity_key
        ).first() is not None:
            raise DuplicateError("Une inscription existe déjà pour cette personne sur ce formulaire")

        now = _utcnow()
        row = SubmissionRow(
            id=record.id or new_id(),
            form_id=form_row.id,
            matricule=record.matricule,
            submission_data=dict(record.submission_data),
            filiere_id=record.filiere_id,
            filiere_name=record.filiere_name,
            mention=record.mention,
            filiere_id_2=record.filiere_id_2,
            filiere_name_2=record.filiere_name_2,
            mention_2=record.mention_2,
            status=record.status,
            identity_key=record.identity_key,
            submitted_at=_naive(record.submitted_at) or now,
            created_at=now,
            updated_at=now,
        )
        db.session.add(row)
        form_row.submissions_count = (form_row.submissions_count or 0) + 1
        try:
            db.session.commit()
        except IntegrityError as e:
            db.session.rollback()
            if "matricule" in str(e.orig):
                raise ConflictError(f"Matricule déjà attribué : {record.matricule}") from e
            raise DuplicateError("Une inscription existe déjà pour cette personne sur ce formulaire") from e
        return _submission_out(row)

    @store_operation
    def update_submission_status(self, submission_id: str, status: str, by: str | None = None) -> SubmissionRecord:
        row = self._submission_row(submission_id)
        record = _submission_out(row)
        entry = transition_submission(record, status, by)
        row.status = record.status
        row.updated_at = _naive(entry.at)
        row.history.append(StatusLogRow(
            from_status=entry.from_status,
            to_status=entry.to_status,
            changed_by=entry.by,
            changed_at=_naive(entry.at),
        ))
        db.session.commit()
        return _submission_out(row)

    @store_operation
    def delete_submission(self, submission_id: str) -> None:
        row = self._submission_row(submission_id)
        form_row = db.session.get(FormRow, row.form_id)
        db.session.delete(row)
        if form_row is not None and (form_row.submissions_count or 0) > 0:
            form_row.submissions_count -= 1
        db.session.commit()
        return None

    # ------------------------------------------------------------------
    # Contenus
    # ------------------------------------------------------------------
    @staticmethod
    def _model(collection: str):
        check_collection(collection)
        return CMS_MODELS[collection]

    @staticmethod
    def _assign(row, data: dict) -> None:
        columns = {c.name: c for c in row.__table__.columns}
        for key, value in data.items():
            if key in ("id", "created_at", "updated_at") or key not in columns:
                continue
            if isinstance(columns[key].type, db.DateTime):
                value = _naive(value)
            setattr(row, key, value)

    @store_operation
    def list_items(self, collection: str) -> list[dict]:
        model = self._model(collection)
        rows = model.query.order_by(model.created_at.desc()).all()
        return [_item_out(r) for r in rows]

    @store_operation
    def get_item(self, collection: str, item_id: str) -> dict:
        model = self._model(collection)
        row = db.session.get(model, item_id)
        if row is None:
            raise NotFoundError(f"Élément introuvable : {collection}/{item_id}")
        return _item_out(row)

    @store_operation
    def create_item(self, collection: str, data: dict) -> dict:
        model = self._model(collection)
        now = _utcnow()
        row = model(id=data.get("id") or new_id(), created_at=now, updated_at=now)
        self._assign(row, data)
        db.session.add(row)
        db.session.commit()
        return _item_out(row)

    @store_operation
    def update_item(self, collection: str, item_id: str, updates: dict) -> dict:
        model = self._model(collection)
        row = db.session.get(model, item_id)
        if row is None:
            raise NotFoundError(f"Élément introuvable : {collection}/{item_id}")
        self._assign(row, updates)
        row.updated_at = _utcnow()
        db.session.commit()
        return _item_out(row)

    @store_operation
    def delete_item(self, collection: str, item_id: str) -> None:
        model = self._model(collection)
        row = db.session.get(model, item_id)
        if row is None:
            raise NotFoundError(f"Élément introuvable : {collection}/{item_id}")
        db.session.delete(row)
        db.session.commit()
        return None
