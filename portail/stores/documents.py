from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from bson.objectid import ObjectId
from pymongo import DESCENDING, MongoClient, ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError

from portail.formulaires.lifecycle import transition_submission
from portail.formulaires.schema import FormDefinition, SubmissionRecord, from_iso, to_iso
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

DATE_KEYS = ("created_at", "updated_at", "submitted_at", "at")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _id_filter(item_id: str) -> dict:
    # Documents importés : _id peut être un ObjectId
    ids: list[Any] = [item_id]
    if ObjectId.is_valid(item_id):
        ids.append(ObjectId(item_id))
    return {"_id": {"$in": ids}}


def _out(doc: dict | None) -> dict | None:
    """Document Mongo -> dict applicatif (id texte, dates ISO-8601)."""
    if doc is None:
        return None
    data = dict(doc)
    data["id"] = str(data.pop("_id"))
    data.pop("identity_guard", None)
    for key in DATE_KEYS:
        if key in data:
            data[key] = to_iso(data[key])
    if isinstance(data.get("status_history"), list):
        data["status_history"] = [
            {**t, "at": to_iso(t.get("at"))} for t in data["status_history"] if isinstance(t, dict)
        ]
    return data


def _dates_in(data: dict) -> dict:
    out = dict(data)
    for key in DATE_KEYS:
        if key in out and out[key] is not None:
            out[key] = from_iso(out[key])
    return out


class DocumentStore(RegistrationStore):
    """Adaptateur base documentaire (MongoDB via pymongo)."""

    name = "documents"

    def __init__(self, database, client=None):
        self.db = database
        # Client ouvert par `from_uri` ; une base fournie par l'appelant reste à lui
        self.client = client
        self.forms = database["forms"]
        self.submissions = database["form_submissions"]
        self.ensure_indexes()

    @classmethod
    def from_uri(cls, uri: str, db_name: str, timeout_ms: int = 3000) -> "DocumentStore":
        client = MongoClient(uri, serverSelectionTimeoutMS=timeout_ms, tz_aware=True)
        return cls(client[db_name], client=client)

    def close(self) -> None:
        if self.client is not None:
            self.client.close()
            log.info("[documents] connexion %s fermée", self.db.name)

    def ensure_indexes(self) -> None:
        try:
            self.submissions.create_index("matricule", unique=True)
            # identity_guard = "<form_id>:<identity_key>", absent si pas d'identité
            self.submissions.create_index("identity_guard", unique=True, sparse=True)
            self.submissions.create_index([("form_id", 1), ("created_at", DESCENDING)])
        except PyMongoError:
            log.warning("[documents] création des index impossible (base injoignable ?)", exc_info=True)

    @store_operation
    def ping(self) -> bool:
        self.db.command("ping")
        return True

    # ------------------------------------------------------------------
    # Formulaires
    # ------------------------------------------------------------------
    def _load_form(self, form_id: str) -> FormDefinition:
        doc = self.forms.find_one(_id_filter(form_id))
        if doc is None:
            raise NotFoundError(f"Formulaire introuvable : {form_id}")
        return FormDefinition.from_dict(_out(doc))

    @store_operation
    def get_forms(self) -> list[FormDefinition]:
        cursor = self.forms.find().sort("created_at", DESCENDING)
        return [FormDefinition.from_dict(_out(d)) for d in cursor]

    @store_operation
    def get_form(self, form_id: str) -> FormDefinition:
        return self._load_form(form_id)

    @store_operation
    def create_form(self, form: FormDefinition) -> FormDefinition:
        form.check()
        now = _utcnow()
        doc = form.to_dict()
        doc.pop("id", None)
        doc.update({"_id": form.id or new_id(), "submissions_count": 0, "created_at": now, "updated_at": now})
        self.forms.insert_one(doc)
        return FormDefinition.from_dict(_out(doc))

    @store_operation
    def update_form(self, form_id: str, updates: dict) -> FormDefinition:
        current = self._load_form(form_id)
        merged = merge_form(current, updates)
        payload = merged.to_dict()
        changes = {k: payload[k] for k in ("title", "description", "fields", "filieres", "status")}
        changes["updated_at"] = _utcnow()
        doc = self.forms.find_one_and_update(
            _id_filter(form_id), {"$set": changes}, return_document=ReturnDocument.AFTER
        )
        if doc is None:
            raise NotFoundError(f"Formulaire introuvable : {form_id}")
        return FormDefinition.from_dict(_out(doc))

    @store_operation
    def delete_form(self, form_id: str) -> None:
        form = self._load_form(form_id)
        self.submissions.delete_many({"form_id": form.id})
        self.forms.delete_one(_id_filter(form_id))
        return None

    # ------------------------------------------------------------------
    # Inscriptions
    # ------------------------------------------------------------------
    def _load_submission(self, submission_id: str) -> SubmissionRecord:
        doc = self.submissions.find_one(_id_filter(submission_id))
        if doc is None:
            raise NotFoundError(f"Inscription introuvable : {submission_id}")
        return SubmissionRecord.from_dict(_out(doc))

    @store_operation
    def get_submissions(self, form_id: str | None = None) -> list[SubmissionRecord]:
        query = {"form_id": form_id} if form_id else {}
        cursor = self.submissions.find(query).sort("created_at", DESCENDING)
        return [SubmissionRecord.from_dict(_out(d)) for d in cursor]

    @store_operation
    def get_submission(self, submission_id: str) -> SubmissionRecord:
        return self._load_submission(submission_id)

    @store_operation
    def find_submission_by_matricule(self, matricule: str) -> SubmissionRecord:
        doc = self.submissions.find_one({"matricule": matricule})
        if doc is None:
            raise NotFoundError(f"Matricule inconnu : {matricule}")
        return SubmissionRecord.from_dict(_out(doc))

    @store_operation
    def create_submission(self, record: SubmissionRecord) -> SubmissionRecord:
        form = self._load_form(record.form_id or "")
        if self.submissions.find_one({"matricule": record.matricule}, {"_id": 1}):
            raise ConflictError(f"Matricule déjà attribué : {record.matricule}")
        guard = f"{form.id}:{record.identity_key}" if record.identity_key else None
        if guard and self.submissions.find_one({"identity_guard": guard}, {"_id": 1}):
            raise DuplicateError("Une inscription existe déjà pour cette personne sur ce formulaire")

        now = _utcnow()
        doc = _dates_in(record.to_dict())
        doc.pop("id", None)
        doc.update({
            "_id": record.id or new_id(),
            "form_id": form.id,
            "submitted_at": doc.get("submitted_at") or now,
            "created_at": now,
            "updated_at": now,
            "status_history": [],
        })
        if guard:
            doc["identity_guard"] = guard
        try:
            self.submissions.insert_one(doc)
        except DuplicateKeyError as e:
            if "matricule" in str(e):
                raise ConflictError(f"Matricule déjà attribué : {record.matricule}") from e
            raise DuplicateError("Une inscription existe déjà pour cette personne sur ce formulaire") from e

        self.forms.update_one(_id_filter(form.id), {"$inc": {"submissions_count": 1}})
        return SubmissionRecord.from_dict(_out(doc))

    @store_operation
    def update_submission_status(self, submission_id: str, status: str, by: str | None = None) -> SubmissionRecord:
        record = self._load_submission(submission_id)
        entry = transition_submission(record, status, by)
        entry_doc = {**entry.to_dict(), "at": from_iso(entry.at)}
        doc = self.submissions.find_one_and_update(
            _id_filter(submission_id),
            {"$set": {"status": record.status, "updated_at": from_iso(record.updated_at)},
             "$push": {"status_history": entry_doc}},
            return_document=ReturnDocument.AFTER,
        )
        if doc is None:
            raise NotFoundError(f"Inscription introuvable : {submission_id}")
        return SubmissionRecord.from_dict(_out(doc))

    @store_operation
    def delete_submission(self, submission_id: str) -> None:
        doc = self.submissions.find_one_and_delete(_id_filter(submission_id))
        if doc is None:
            raise NotFoundError(f"Inscription introuvable : {submission_id}")
        self.forms.update_one(
            {**_id_filter(str(doc.get("form_id"))), "submissions_count": {"$gt": 0}},
            {"$inc": {"submissions_count": -1}},
        )
        return None

    # ------------------------------------------------------------------
    # Contenus (événements, médias, forum, notifications)
    # ------------------------------------------------------------------
    @store_operation
    def list_items(self, collection: str) -> list[dict]:
        check_collection(collection)
        cursor = self.db[collection].find().sort("created_at", DESCENDING)
        return [_out(d) for d in cursor]

    @store_operation
    def get_item(self, collection: str, item_id: str) -> dict:
        check_collection(collection)
        doc = self.db[collection].find_one(_id_filter(item_id))
        if doc is None:
            raise NotFoundError(f"Élément introuvable : {collection}/{item_id}")
        return _out(doc)

    @store_operation
    def create_item(self, collection: str, data: dict) -> dict:
        check_collection(collection)
        now = _utcnow()
        doc = _dates_in(data)
        doc.pop("id", None)
        doc.update({"_id": data.get("id") or new_id(), "created_at": now, "updated_at": now})
        self.db[collection].insert_one(doc)
        return _out(doc)

    @store_operation
    def update_item(self, collection: str, item_id: str, updates: dict) -> dict:
        check_collection(collection)
        changes = _dates_in({k: v for k, v in updates.items() if k not in ("id", "_id", "created_at")})
        changes["updated_at"] = _utcnow()
        doc = self.db[collection].find_one_and_update(
            _id_filter(item_id), {"$set": changes}, return_document=ReturnDocument.AFTER
        )
        if doc is None:
            raise NotFoundError(f"Élément introuvable : {collection}/{item_id}")
        return _out(doc)

    @store_operation
    def delete_item(self, collection: str, item_id: str) -> None:
        check_collection(collection)
        res = self.db[collection].delete_one(_id_filter(item_id))
        if res.deleted_count == 0:
            raise NotFoundError(f"Élément introuvable : {collection}/{item_id}")
        return None
