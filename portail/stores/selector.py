from __future__ import annotations

import logging
import threading
from typing import Callable

from flask import current_app, g

from .base import RegistrationStore

log = logging.getLogger(__name__)

BACKENDS = ("documents", "relationnel")

BACKEND_LABELS = {
    "documents": "Base documentaire (MongoDB)",
    "relationnel": "Base relationnelle (PostgreSQL / SQLite)",
}


class StoreSelector:
    """Source de données active, choisie à l'exécution.

    Le basculement construit un nouvel adaptateur puis remplace l'instance sous
    verrou. Une requête capture l'adaptateur une seule fois (voir `current_store`) :
    elle termine sur la source avec laquelle elle a commencé.
    L'adaptateur remplacé est fermé (connexions libérées) après la bascule.
    Basculer ne migre ni ne fusionne aucune donnée.
    """

    def __init__(self, factories: dict[str, Callable[[], RegistrationStore]], initial: str):
        unknown = set(factories) - set(BACKENDS)
        if unknown:
            raise ValueError(f"Sources inconnues : {', '.join(sorted(unknown))}")
        self._factories = dict(factories)
        self._lock = threading.Lock()
        self._name = initial
        self._store: RegistrationStore | None = None

    @property
    def name(self) -> str:
        return self._name

    def available(self) -> list[str]:
        return [b for b in BACKENDS if b in self._factories]

    def active(self) -> RegistrationStore:
        with self._lock:
            if self._store is None:
                self._store = self._build(self._name)
            return self._store

    def switch(self, name: str) -> RegistrationStore:
        if name not in self._factories:
            raise ValueError(f"Source de données inconnue : {name}")
        # Construction hors verrou : une connexion lente ne bloque pas les lectures
        store = self._build(name)
        with self._lock:
            previous, replaced = self._name, self._store
            self._name = name
            self._store = store
        log.info("Source de données : %s -> %s", previous, name)
        if replaced is not None and replaced is not store:
            replaced.close()
        return store

    def _build(self, name: str) -> RegistrationStore:
        return self._factories[name]()


def current_store() -> RegistrationStore:
    """Adaptateur de la requête courante (capturé au premier accès)."""
    if "store" not in g:
        g.store = current_app.extensions["portail.stores"].active()
    return g.store


def init_stores(app) -> StoreSelector:
    from .relational import SqlStore

    def _documents():
        from .documents import DocumentStore

        return DocumentStore.from_uri(app.config["MONGO_URI"], app.config["MONGO_DB_NAME"])

    factories: dict[str, Callable[[], RegistrationStore]] = {"relationnel": SqlStore}
    if app.config.get("MONGO_URI"):
        factories["documents"] = _documents

    initial = app.config.get("DATA_BACKEND") or "relationnel"
    if initial not in factories:
        app.logger.warning("DATA_BACKEND=%s indisponible, repli sur la base relationnelle", initial)
        initial = "relationnel"

    selector = StoreSelector(factories, initial)
    app.extensions["portail.stores"] = selector
    return selector
