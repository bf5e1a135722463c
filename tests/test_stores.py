import mongomock
import pytest
from pymongo.errors import ServerSelectionTimeoutError

from portail.formulaires.schema import FormDefinition
from portail.inscriptions.services import build_submission
from portail.stores.documents import DocumentStore
from portail.stores.relational import SqlStore

from conftest import sample_answers, sample_choices, sample_form_dict


@pytest.fixture(params=["relationnel", "documents"])
def store(request, app):
    if request.param == "documents":
        yield DocumentStore(mongomock.MongoClient()["istm"])
    else:
        with app.app_context():
            yield SqlStore()


@pytest.fixture
def form(store):
    return store.create_form(FormDefinition.from_dict(sample_form_dict())).unwrap()


def _record(form, matricule="ISTM20250001", **answers):
    return build_submission(form, sample_answers(**answers), sample_choices(), matricule)


def test_empty_store_is_not_a_failure(store):
    res = store.get_forms()
    assert res.ok
    assert res.value == []
    assert store.get_submissions().value == []


def test_form_roundtrip_keeps_schema(store, form):
    loaded = store.get_form(form.id).unwrap()
    assert [f.id for f in loaded.ordered_fields()] == [f.id for f in form.ordered_fields()]
    assert loaded.fields[-1].validation.max == 100
    assert loaded.filieres[0].mentions == ["Hospitalier", "Santé communautaire"]
    assert loaded.created_at is not None


def test_missing_form(store):
    res = store.get_form("nope")
    assert (res.ok, res.code) == (False, "not_found")


def test_update_form_goes_through_state_machine(store, form):
    archived = store.update_form(form.id, {"status": "archived", "title": "Session close"}).unwrap()
    assert (archived.status, archived.title) == ("archived", "Session close")
    res = store.update_form(form.id, {"status": "published"})
    assert (res.ok, res.code) == (False, "conflict")


def test_update_form_rejects_duplicate_field_ids(store, form):
    fields = [f.to_dict() for f in form.fields] + [{"id": "f_nom", "type": "text", "label": "Bis"}]
    res = store.update_form(form.id, {"fields": fields})
    assert (res.ok, res.code) == (False, "validation")


def test_create_submission_and_count(store, form):
    created = store.create_submission(_record(form)).unwrap()
    assert created.id
    assert created.submitted_at
    assert store.get_form(form.id).value.submissions_count == 1
    assert store.find_submission_by_matricule("ISTM20250001").value.id == created.id
    assert [s.id for s in store.get_submissions(form.id).value] == [created.id]


def test_same_identity_same_form_is_duplicate(store, form):
    store.create_submission(_record(form)).unwrap()
    res = store.create_submission(_record(form, "ISTM20250002", f_email="GRACE.MBALA@example.com"))
    assert (res.ok, res.code) == (False, "duplicate")
    assert store.get_form(form.id).value.submissions_count == 1


def test_same_identity_other_form_is_accepted(store, form):
    other = store.create_form(FormDefinition.from_dict(sample_form_dict(form_id="form-2"))).unwrap()
    store.create_submission(_record(form)).unwrap()
    assert store.create_submission(_record(other, "ISTM20250002")).ok


def test_matricule_collision_is_conflict(store, form):
    store.create_submission(_record(form)).unwrap()
    res = store.create_submission(_record(form, "ISTM20250001", f_email="esther@example.com", f_prenom="Esther"))
    assert (res.ok, res.code) == (False, "conflict")


def test_submission_for_unknown_form(store, form):
    record = _record(form)
    record.form_id = "ghost"
    res = store.create_submission(record)
    assert (res.ok, res.code) == (False, "not_found")


def test_status_history_is_kept(store, form):
    created = store.create_submission(_record(form)).unwrap()
    store.update_submission_status(created.id, "approved", by="secretariat@istm.cd").unwrap()
    updated = store.update_submission_status(created.id, "rejected", by="direction@istm.cd").unwrap()
    assert updated.status == "rejected"
    assert [(t.from_status, t.to_status, t.by) for t in updated.status_history] == [
        ("pending", "approved", "secretariat@istm.cd"),
        ("approved", "rejected", "direction@istm.cd"),
    ]
    res = store.update_submission_status(created.id, "rejected")
    assert (res.ok, res.code) == (False, "conflict")


def test_delete_submission_decrements_count(store, form):
    created = store.create_submission(_record(form)).unwrap()
    assert store.delete_submission(created.id).ok
    assert store.get_form(form.id).value.submissions_count == 0
    assert store.delete_submission(created.id).code == "not_found"


def test_delete_form_removes_its_submissions(store, form):
    store.create_submission(_record(form)).unwrap()
    assert store.delete_form(form.id).ok
    assert store.get_submissions().value == []
    assert store.get_form(form.id).code == "not_found"


def test_cms_items(store):
    created = store.create_item("events", {
        "title": "Journée portes ouvertes", "date": "2025-10-04", "time": "09:00", "status": "published",
    }).unwrap()
    assert created["title"] == "Journée portes ouvertes"
    updated = store.update_item("events", created["id"], {"participants": 12}).unwrap()
    assert updated["participants"] == 12
    assert [i["id"] for i in store.list_items("events").value] == [created["id"]]
    assert store.delete_item("events", created["id"]).ok
    assert store.get_item("events", created["id"]).code == "not_found"


def test_unknown_collection(store):
    res = store.list_items("users")
    assert (res.ok, res.code) == (False, "validation")


def test_ping(store):
    assert store.ping().ok


def test_unreachable_document_backend_is_a_backend_failure():
    class Down:
        def __getitem__(self, name):
            return self

        def create_index(self, *args, **kwargs):
            raise ServerSelectionTimeoutError("injoignable")

        def find(self, *args, **kwargs):
            raise ServerSelectionTimeoutError("injoignable")

    store = DocumentStore(Down())
    res = store.get_forms()
    assert (res.ok, res.code) == (False, "backend")
    assert "documents" in res.error
