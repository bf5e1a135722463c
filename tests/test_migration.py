from datetime import datetime, timezone

import mongomock
import pytest
from sqlalchemy import create_engine, text

from portail import migration


def test_failed_batch_does_not_stop_the_others(caplog):
    rows = [{"n": i} for i in range(120)]
    seen = []

    def insert(batch):
        if batch[0]["n"] == 50:
            raise RuntimeError("violation de contrainte")
        seen.extend(r["n"] for r in batch)

    report = migration.migrate_collection(rows, insert, batch_size=50, table="forms")
    assert report.batches == 3
    assert report.migrated == 70
    assert report.total == 120
    assert report.partial
    assert report.failed_batches[0][:2] == (50, 100)
    assert seen == list(range(50)) + list(range(100, 120))
    assert "erreur lot 50-100" in caplog.text


def test_empty_collection():
    report = migration.migrate_collection([], lambda batch: None, table="events")
    assert (report.batches, report.migrated, report.partial) == (0, 0, False)


def test_shape_defaults():
    event = migration.shape_event({"_id": "e1"})
    assert (event["title"], event["time"], event["status"], event["participants"]) == ("", "00:00", "draft", 0)
    post = migration.shape_forum_post({"_id": "p1", "isAnswered": True})
    assert (post["author"], post["category"], post["is_answered"]) == ("Anonyme", "Général", True)
    item = migration.shape_content_item({"_id": "c1", "created_at": datetime(2024, 1, 2, tzinfo=timezone.utc)})
    assert item["created_at"].startswith("2024-01-02T00:00:00")
    assert item["comments"] == []
    form = migration.shape_form({"_id": "f1"})
    assert (form["title"], form["fields"], form["status"]) == ("", [], "draft")
    notif = migration.shape_notification({"_id": "n1", "title": "Clôture", "isActive": False})
    assert (notif["type"], notif["priority"], notif["is_active"], notif["message"]) == ("news", "medium", False, "")
    assert migration.shape_notification({"_id": "n2"})["is_active"] is True


def test_dedupe_identities_keeps_first():
    rows = [
        {"form_id": "f1", "identity_key": "k"},
        {"form_id": "f1", "identity_key": "k"},
        {"form_id": "f2", "identity_key": "k"},
        {"form_id": "f1", "identity_key": None},
    ]
    assert migration.dedupe_identities(rows) == 1
    assert [r["identity_key"] for r in rows] == ["k", None, "k", None]


@pytest.fixture
def source():
    db = mongomock.MongoClient()["istm"]
    db["forms"].insert_one({
        "_id": "form-1",
        "title": "Inscription",
        "status": "published",
        "fields": [
            {"id": "f_nom", "type": "text", "label": "Nom"},
            {"id": "f_email", "type": "email", "label": "E-mail"},
        ],
        "created_at": datetime(2025, 8, 1, tzinfo=timezone.utc),
    })
    db["form_submissions"].insert_many([
        {
            "_id": "s1",
            "form_id": "form-1",
            "matricule": "ISTM20250001",
            # ancienne inscription indexée par libellé
            "submission_data": {"Nom": "Mbala", "E-mail": "grace@example.com"},
            "status": "approved",
            "status_history": [
                {"from_status": "pending", "to_status": "approved", "by": "secretariat@istm.cd",
                 "at": datetime(2025, 8, 3, tzinfo=timezone.utc)},
            ],
            "submitted_at": datetime(2025, 8, 2, tzinfo=timezone.utc),
        },
        {
            "_id": "s2",
            "form_id": "form-1",
            "matricule": "ISTM20250002",
            "submission_data": {"f_nom": "MBALA", "f_email": "Grace@example.com"},
            "submitted_at": "2025-08-04T10:00:00Z",
        },
    ])
    db["events"].insert_one({"_id": "e1", "title": "Portes ouvertes", "date": "2025-10-04"})
    db["forum_posts"].insert_one({"_id": "p1", "title": "Dates ?", "content": "Quand ?", "isAnswered": True})
    db["notifications"].insert_one({
        "_id": "n1",
        "title": "Clôture des inscriptions",
        "message": "Dernier délai le 30 septembre.",
        "priority": "high",
        "created_at": datetime(2025, 9, 1, tzinfo=timezone.utc),
    })
    return db


def test_run_migration(source, tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'cible.db'}")
    summary = migration.run_migration(source, engine, batch_size=1)

    assert summary.exit_code == 0
    assert summary.counts["forms"] == 1
    assert summary.counts["form_submissions"] == 2
    assert summary.counts["submission_status_log"] == 1
    assert summary.counts["events"] == 1
    assert summary.counts["content_items"] == 0
    assert summary.counts["forum_posts"] == 1
    assert summary.counts["notifications"] == 1
    assert summary.reports["form_submissions"].batches == 2

    with engine.connect() as conn:
        keys = conn.execute(text("SELECT id, identity_key FROM form_submissions ORDER BY id")).all()
        event = conn.execute(text("SELECT time, status FROM events")).one()
        answered = conn.execute(text("SELECT is_answered FROM forum_posts")).scalar_one()
        notif = conn.execute(text("SELECT title, priority, is_active FROM notifications")).one()
    # même personne deux fois : seule la première garde sa clé d'identité
    assert keys[0].identity_key is not None
    assert keys[1].identity_key is None
    assert tuple(event) == ("00:00", "draft")
    assert answered in (True, 1)
    assert (notif.title, notif.priority, notif.is_active in (True, 1)) == ("Clôture des inscriptions", "high", True)


def test_rerun_reports_partial(source, tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'cible.db'}")
    assert migration.run_migration(source, engine).exit_code == 0
    again = migration.run_migration(source, engine)
    assert again.partial
    assert again.exit_code == 2
    assert again.counts["forms"] == 1
