from __future__ import annotations

import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from functools import wraps
from typing import Any, Generic, TypeVar

from portail.formulaires.lifecycle import TransitionError, change_form_status
from portail.formulaires.schema import FormDefinition, SchemaError, SubmissionRecord

log = logging.getLogger(__name__)

T = TypeVar("T")

CMS_COLLECTIONS = ("events", "content_items", "forum_posts", "notifications")

# Champs qu'un appel update_form peut modifier
FORM_EDITABLE = ("title", "description", "fields", "filieres", "status")

FAILURE_CODES = ("backend", "not_found", "duplicate", "validation", "conflict")


@dataclass
class StoreResult(Generic[T]):
    """Résultat d'une opération de stockage : succès porteur d'une valeur ou échec motivé.

    Permet à l'appelant de distinguer « aucune donnée » (ok=True, value=[])
    de « stockage injoignable » (ok=False, code="backend").
    """

    ok: bool
    value: T | None = None
    error: str | None = None
    code: str | None = None
    details: dict | None = None

    @classmethod
    def success(cls, value: T = None) -> "StoreResult[T]":
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, reason: str, code: str = "backend", details: dict | None = None) -> "StoreResult[T]":
        if code not in FAILURE_CODES:
            code = "backend"
        return cls(ok=False, error=reason, code=code, details=details)

    def unwrap(self) -> T:
        if not self.ok:
            raise StoreError(self.error or "Erreur de stockage", code=self.code or "backend")
        return self.value  # type: ignore[return-value]


class StoreError(Exception):
    code = "backend"

    def __init__(self, message: str, code: str | None = None):
        super().__init__(message)
        if code:
            self.code = code


class NotFoundError(StoreError):
    code = "not_found"


class DuplicateError(StoreError):
    code = "duplicate"


class ConflictError(StoreError):
    code = "conflict"


def new_id() -> str:
    return str(uuid.uuid4())


def store_operation(fn):
    """Enveloppe une opération d'adaptateur : jamais d'exception, toujours un StoreResult."""

    @wraps(fn)
    def wrapper(self, *args, **kwargs):
        try:
            return StoreResult.success(fn(self, *args, **kwargs))
        except StoreError as e:
            log.warning("[%s] %s : %s (%s)", self.name, fn.__name__, e, e.code)
            self.recover()
            return StoreResult.failure(str(e), e.code)
        except SchemaError as e:
            self.recover()
            return StoreResult.failure(str(e), "validation")
        except TransitionError as e:
            self.recover()
            return StoreResult.failure(str(e), "conflict")
        except Exception as e:
            log.exception("[%s] %s a échoué", self.name, fn.__name__)
            self.recover()
            return StoreResult.failure(f"Stockage indisponible ({self.name}) : {e}", "backend")

    return wrapper


def merge_form(current: FormDefinition, updates: dict) -> FormDefinition:
    """Applique des modifications partielles à un formulaire.

    Le statut passe par la machine à états ; id, compteur et dates de création
    ne sont jamais modifiables ici.
    """
    data = current.to_dict()
    for key in FORM_EDITABLE:
        if key in updates and key != "status":
            data[key] = updates[key]
    merged = FormDefinition.from_dict(data)
    if "status" in updates and updates["status"] != current.status:
        change_form_status(merged, updates["status"])
    merged.check()
    return merged


def check_collection(collection: str) -> None:
    if collection not in CMS_COLLECTIONS:
        raise StoreError(f"Collection inconnue : {collection}", code="validation")


class RegistrationStore(ABC):
    """Contrat commun des adaptateurs de stockage (documents / relationnel)."""

    name = "abstract"

    def recover(self) -> None:
        """Remet l'adaptateur dans un état sain après une erreur (rollback...)."""

    def close(self) -> None:
        """Libère les connexions propres à l'adaptateur ; appelé quand il est remplacé."""

    # --- formulaires ---
    @abstractmethod
    def get_forms(self) -> StoreResult[list[FormDefinition]]: ...

    @abstractmethod
    def get_form(self, form_id: str) -> StoreResult[FormDefinition]: ...

    @abstractmethod
    def create_form(self, form: FormDefinition) -> StoreResult[FormDefinition]: ...

    @abstractmethod
    def update_form(self, form_id: str, updates: dict) -> StoreResult[FormDefinition]: ...

    @abstractmethod
    def delete_form(self, form_id: str) -> StoreResult[None]: ...

    # --- inscriptions ---
    @abstractmethod
    def get_submissions(self, form_id: str | None = None) -> StoreResult[list[SubmissionRecord]]: ...

    @abstractmethod
    def get_submission(self, submission_id: str) -> StoreResult[SubmissionRecord]: ...

    @abstractmethod
    def find_submission_by_matricule(self, matricule: str) -> StoreResult[SubmissionRecord]: ...

    @abstractmethod
    def create_submission(self, record: SubmissionRecord) -> StoreResult[SubmissionRecord]: ...

    @abstractmethod
    def update_submission_status(
        self, submission_id: str, status: str, by: str | None = None
    ) -> StoreResult[SubmissionRecord]: ...

    @abstractmethod
    def delete_submission(self, submission_id: str) -> StoreResult[None]: ...

    # --- contenus ---
    @abstractmethod
    def list_items(self, collection: str) -> StoreResult[list[dict[str, Any]]]: ...

    @abstractmethod
    def get_item(self, collection: str, item_id: str) -> StoreResult[dict[str, Any]]: ...

    @abstractmethod
    def create_item(self, collection: str, data: dict) -> StoreResult[dict[str, Any]]: ...

    @abstractmethod
    def update_item(self, collection: str, item_id: str, updates: dict) -> StoreResult[dict[str, Any]]: ...

    @abstractmethod
    def delete_item(self, collection: str, item_id: str) -> StoreResult[None]: ...

    @abstractmethod
    def ping(self) -> StoreResult[bool]: ...
