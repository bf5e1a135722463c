"""Migration ponctuelle base documentaire (MongoDB) -> base relationnelle (PostgreSQL).

Chaque collection est remise à plat (dates ISO-8601, valeurs absentes -> défaut
explicite, objets imbriqués conservés en JSON) puis insérée par lots. Un lot en
erreur est journalisé et n'empêche pas les suivants.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Callable, Iterable

from sqlalchemy import DateTime, func, select

from portail.formulaires.doublons import identity_key
from portail.formulaires.schema import FormDefinition, SchemaError, SubmissionRecord, from_iso, now_iso, to_iso

log = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 100
TABLES = (
    "forms",
    "form_submissions",
    "submission_status_log",
    "events",
    "content_items",
    "forum_posts",
    "notifications",
)


def _iso(value: Any) -> str:
    return to_iso(value) or now_iso()


def _today() -> str:
    return date.today().isoformat()


def shape_form(doc: dict) -> dict:
    return {
        "id": str(doc.get("_id") or doc.get("id")),
        "title": doc.get("title") or "",
        "description": doc.get("description") or "",
        "fields": doc.get("fields") or [],
        "filieres": doc.get("filieres") or [],
        "status": doc.get("status") or "draft",
        "submissions_count": doc.get("submissions_count") or 0,
        "created_by": doc.get("created_by") or None,
        "created_at": _iso(doc.get("created_at")),
        "updated_at": _iso(doc.get("updated_at")),
    }


def shape_submission(doc: dict, form: FormDefinition | None = None) -> dict:
    data = dict(doc.get("submission_data") or {})
    if form is not None:
        # Anciennes inscriptions indexées par libellé -> id de champ
        data = SubmissionRecord(id=None, form_id=form.id, matricule="", submission_data=data).normalized(form).submission_data
    return {
        "id": str(doc.get("_id") or doc.get("id")),
        "form_id": doc.get("form_id") or None,
        "matricule": doc.get("matricule") or "",
        "submission_data": data,
        "filiere_id": doc.get("filiere_id") or None,
        "filiere_name": doc.get("filiere_name") or None,
        "mention": doc.get("mention") or None,
        "filiere_id_2": doc.get("filiere_id_2") or None,
        "filiere_name_2": doc.get("filiere_name_2") or None,
        "mention_2": doc.get("mention_2") or None,
        "status": doc.get("status") or "pending",
        "identity_key": doc.get("identity_key") or identity_key(data, form),
        "submitted_at": _iso(doc.get("submitted_at")),
        "created_at": _iso(doc.get("created_at")),
        "updated_at": _iso(doc.get("updated_at")),
    }


def shape_status_log(doc: dict) -> list[dict]:
    sid = str(doc.get("_id") or doc.get("id"))
    rows = []
    for t in doc.get("status_history") or []:
        rows.append({
            "submission_id": sid,
            "from_status": t.get("from_status") or "",
            "to_status": t.get("to_status") or "",
            "changed_by": t.get("by") or None,
            "changed_at": _iso(t.get("at")),
        })
    return rows


def shape_event(doc: dict) -> dict:
    return {
        "id": str(doc.get("_id") or doc.get("id")),
        "type": doc.get("type") or "event",
        "title": doc.get("title") or "",
        "description": doc.get("description") or "",
        "date": doc.get("date") or _today(),
        "time": doc.get("time") or "00:00",
        "location": doc.get("location") or "",
        "instructor": doc.get("instructor") or None,
        "participants": doc.get("participants") or 0,
        "max_participants": doc.get("max_participants") or None,
        "status": doc.get("status") or "draft",
        "created_by": doc.get("created_by") or None,
        "created_at": _iso(doc.get("created_at")),
        "updated_at": _iso(doc.get("updated_at")),
    }


def shape_content_item(doc: dict) -> dict:
    return {
        "id": str(doc.get("_id") or doc.get("id")),
        "type": doc.get("type") or "article",
        "title": doc.get("title") or "",
        "description": doc.get("description") or "",
        "url": doc.get("url") or "",
        "thumbnail": doc.get("thumbnail") or None,
        "author": doc.get("author") or "Anonyme",
        "date": doc.get("date") or _today(),
        "likes": doc.get("likes") or 0,
        "views": doc.get("views") or 0,
        "comments": doc.get("comments") or [],
        "created_at": _iso(doc.get("created_at")),
        "updated_at": _iso(doc.get("updated_at")),
    }


def shape_forum_post(doc: dict) -> dict:
    return {
        "id": str(doc.get("_id") or doc.get("id")),
        "title": doc.get("title") or "",
        "content": doc.get("content") or "",
        "author": doc.get("author") or "Anonyme",
        "date": doc.get("date") or _today(),
        "category": doc.get("category") or "Général",
        "replies": doc.get("replies") or [],
        "likes": doc.get("likes") or 0,
        "views": doc.get("views") or 0,
        "is_answered": bool(doc.get("is_answered", doc.get("isAnswered", False))),
        "created_at": _iso(doc.get("created_at")),
        "updated_at": _iso(doc.get("updated_at")),
    }


def shape_notification(doc: dict) -> dict:
    return {
        "id": str(doc.get("_id") or doc.get("id")),
        "type": doc.get("type") or "news",
        "title": doc.get("title") or "",
        "message": doc.get("message") or "",
        "priority": doc.get("priority") or "medium",
        "is_active": bool(doc.get("is_active", doc.get("isActive", True))),
        "created_by": doc.get("created_by") or None,
        "created_at": _iso(doc.get("created_at")),
        "updated_at": _iso(doc.get("updated_at")),
    }


@dataclass
class BatchReport:
    table: str
    total: int = 0
    migrated: int = 0
    batches: int = 0
    failed_batches: list[tuple[int, int, str]] = field(default_factory=list)

    @property
    def partial(self) -> bool:
        return bool(self.failed_batches)


def migrate_collection(
    rows: Iterable[dict],
    insert: Callable[[list[dict]], Any],
    batch_size: int = DEFAULT_BATCH_SIZE,
    table: str = "",
) -> BatchReport:
    """Insère `rows` par lots via `insert(batch)` ; un lot en échec n'arrête pas les suivants."""
    rows = list(rows)
    batch_size = max(1, int(batch_size))
    report = BatchReport(table=table, total=len(rows))
    if not rows:
        log.info("[%s] rien à migrer", table)
        return report

    for start in range(0, len(rows), batch_size):
        batch = rows[start:start + batch_size]
        end = start + len(batch)
        report.batches += 1
        try:
            insert(batch)
        except Exception as e:
            log.error("[%s] erreur lot %d-%d : %s", table, start, end, e)
            report.failed_batches.append((start, end, str(e)))
            continue
        report.migrated += len(batch)
        log.info("[%s] %d/%d ligne(s) migrée(s)", table, report.migrated, report.total)

    return report


def dedupe_identities(rows: list[dict]) -> int:
    """Neutralise les doublons (formulaire, identité) : seule la première inscription garde sa clé."""
    seen: set[tuple] = set()
    cleared = 0
    for row in rows:
        key = row.get("identity_key")
        if not key:
            continue
        pair = (row.get("form_id"), key)
        if pair in seen:
            row["identity_key"] = None
            cleared += 1
        else:
            seen.add(pair)
    return cleared


@dataclass
class MigrationSummary:
    reports: dict[str, BatchReport] = field(default_factory=dict)
    counts: dict[str, int | None] = field(default_factory=dict)

    @property
    def partial(self) -> bool:
        return any(r.partial for r in self.reports.values())

    @property
    def exit_code(self) -> int:
        return 2 if self.partial else 0


def _coerce(table, row: dict) -> dict:
    out = {}
    for col in table.columns:
        if col.name not in row:
            continue
        value = row[col.name]
        if isinstance(col.type, DateTime):
            dt = from_iso(value)
            value = dt.replace(tzinfo=None) if dt is not None else None
        out[col.name] = value
    return out


def table_inserter(engine, table) -> Callable[[list[dict]], None]:
    """Un lot = une transaction : un lot en échec est annulé sans toucher aux autres."""

    def insert(batch: list[dict]) -> None:
        with engine.begin() as conn:
            conn.execute(table.insert(), [_coerce(table, r) for r in batch])

    return insert


def run_migration(source_db, engine, batch_size: int = DEFAULT_BATCH_SIZE) -> MigrationSummary:
    """Migre toutes les collections de `source_db` (pymongo) vers `engine` (SQLAlchemy)."""
    from portail.models import db

    metadata = db.metadata
    tables = {name: metadata.tables[name] for name in TABLES}
    metadata.create_all(engine, tables=list(tables.values()), checkfirst=True)

    summary = MigrationSummary()

    form_docs = list(source_db["forms"].find())
    forms: dict[str, FormDefinition] = {}
    for d in form_docs:
        try:
            f = FormDefinition.from_dict({**d, "id": str(d.get("_id"))})
        except SchemaError as e:
            log.warning("[forms] formulaire %s non interprétable (%s) : réponses migrées telles quelles", d.get("_id"), e)
            continue
        forms[f.id] = f

    plan: list[tuple[str, list[dict]]] = [("forms", [shape_form(d) for d in form_docs])]

    sub_docs = list(source_db["form_submissions"].find())
    submissions = [shape_submission(d, forms.get(d.get("form_id"))) for d in sub_docs]
    cleared = dedupe_identities(submissions)
    if cleared:
        log.warning("[form_submissions] %d doublon(s) d'identité conservé(s) sans contrainte", cleared)
    plan.append(("form_submissions", submissions))
    plan.append(("submission_status_log", [row for d in sub_docs for row in shape_status_log(d)]))

    plan.append(("events", [shape_event(d) for d in source_db["events"].find()]))
    plan.append(("content_items", [shape_content_item(d) for d in source_db["content_items"].find()]))
    plan.append(("forum_posts", [shape_forum_post(d) for d in source_db["forum_posts"].find()]))
    plan.append(("notifications", [shape_notification(d) for d in source_db["notifications"].find()]))

    for name, rows in plan:
        log.info("Migration %s : %d ligne(s)", name, len(rows))
        summary.reports[name] = migrate_collection(
            rows, table_inserter(engine, tables[name]), batch_size=batch_size, table=name
        )

    summary.counts = verify_migration(engine, tables)
    return summary


def verify_migration(engine, tables: dict) -> dict[str, int | None]:
    counts: dict[str, int | None] = {}
    with engine.connect() as conn:
        for name, table in tables.items():
            try:
                counts[name] = conn.execute(select(func.count()).select_from(table)).scalar_one()
                log.info("%s : %d ligne(s)", name, counts[name])
            except Exception:
                log.exception("%s : vérification impossible", name)
                counts[name] = None
    return counts
