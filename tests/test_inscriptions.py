import random
from datetime import date

import pytest

from portail.formulaires.schema import FormDefinition, SubmissionRecord
from portail.inscriptions import services
from portail.stores.base import StoreResult
from portail.stores.relational import SqlStore

from conftest import sample_answers, sample_choices, sample_form_dict


@pytest.fixture
def store(app):
    with app.app_context():
        s = SqlStore()
        s.create_form(FormDefinition.from_dict(sample_form_dict())).unwrap()
        yield s


def test_register_submission(store):
    res = services.register_submission(store, "form-1", sample_answers(), sample_choices(), prefix="ISTM")
    assert res.ok, res.error
    record = res.value
    assert record.status == "pending"
    assert record.matricule.startswith("ISTM")
    assert record.filiere_name == "Soins Infirmiers"
    assert record.mention == "Hospitalier"
    assert record.filiere_name_2 == "Biologie Médicale"
    assert record.mention_2 is None
    assert record.submission_data["f_nom"] == "Mbala"
    assert store.get_form("form-1").value.submissions_count == 1


def test_register_rejects_invalid_answers(store):
    res = services.register_submission(store, "form-1", sample_answers(f_email="a@b"), sample_choices())
    assert not res.ok
    assert res.code == "validation"
    assert set(res.details) == {"f_email"}
    assert store.get_submissions().value == []


def test_register_refuses_unpublished_form(store):
    store.update_form("form-1", {"status": "draft"}).unwrap()
    res = services.register_submission(store, "form-1", sample_answers(), sample_choices())
    assert (res.ok, res.code) == (False, "conflict")


def test_register_same_person_twice_is_duplicate(store):
    assert services.register_submission(store, "form-1", sample_answers(), sample_choices()).ok
    again = services.register_submission(
        store, "form-1", sample_answers(f_prenom="GRACE"), sample_choices()
    )
    assert (again.ok, again.code) == (False, "duplicate")
    assert len(store.get_submissions().value) == 1


def test_register_retries_on_matricule_collision(store, monkeypatch):
    taken = services.register_submission(store, "form-1", sample_answers(), sample_choices()).value
    matricules = iter([taken.matricule, taken.matricule, "ISTM20259999"])
    monkeypatch.setattr(services, "generate_matricule", lambda prefix, rng=None: next(matricules))

    res = services.register_submission(
        store, "form-1", sample_answers(f_email="esther@example.com", f_prenom="Esther"), sample_choices()
    )
    assert res.ok, res.error
    assert res.value.matricule == "ISTM20259999"


def test_register_gives_up_after_max_attempts(store, monkeypatch):
    taken = services.register_submission(store, "form-1", sample_answers(), sample_choices()).value
    monkeypatch.setattr(services, "generate_matricule", lambda prefix, rng=None: taken.matricule)
    res = services.register_submission(
        store, "form-1", sample_answers(f_email="esther@example.com", f_prenom="Esther"), sample_choices()
    )
    assert (res.ok, res.code) == (False, "conflict")


def test_file_answers_keep_only_the_name(form):
    form.fields.append(form.fields[0].__class__.from_dict(
        {"id": "f_diplome", "type": "file", "label": "Diplôme", "order": 9}
    ))
    answers = sample_answers(f_diplome={"name": "diplome.pdf", "size": 1234}, extra="ignored")
    record = services.build_submission(form, answers, sample_choices(), "ISTM20250001")
    assert record.submission_data["f_diplome"] == "diplome.pdf"
    assert "extra" not in record.submission_data


def test_recount_submissions(form):
    other = FormDefinition.from_dict(sample_form_dict(form_id="form-2"))
    form.submissions_count = 40
    subs = [SubmissionRecord(id=str(i), form_id="form-1", matricule=f"M{i}") for i in range(3)]
    recounted = services.recount_submissions([form, other], subs)
    assert [f.submissions_count for f in recounted] == [3, 0]
    assert form.submissions_count == 40


def _record(n, **kw):
    base = dict(
        id=str(n),
        form_id="form-1",
        matricule=f"ISTM2025{n:04d}",
        submission_data=sample_answers(f_nom=f"Nom{n}"),
        filiere_name="Soins Infirmiers",
        submitted_at=f"2025-09-{n:02d}T10:00:00+00:00",
    )
    base.update(kw)
    return SubmissionRecord(**base)


def test_filter_by_status_search_dates_and_filiere(form):
    subs = [
        _record(1),
        _record(2, status="approved", filiere_name="Biologie Médicale"),
        _record(3, status="approved"),
    ]
    flt = services.SubmissionFilter.from_args({"status": "approved"})
    assert [s.id for s in services.filter_submissions(subs, [form], flt)] == ["2", "3"]

    flt = services.SubmissionFilter.from_args({"q": "nom3"})
    assert [s.id for s in services.filter_submissions(subs, [form], flt)] == ["3"]

    flt = services.SubmissionFilter(start_date=date(2025, 9, 2), end_date=date(2025, 9, 2))
    assert [s.id for s in services.filter_submissions(subs, [form], flt)] == ["2"]

    flt = services.SubmissionFilter.from_args({"filiere": "Biologie Médicale", "status": "bogus"})
    assert flt.status == "all"
    assert [s.id for s in services.filter_submissions(subs, [form], flt)] == ["2"]

    assert services.available_filieres(subs) == ["Biologie Médicale", "Soins Infirmiers"]


def test_paginate_clamps_page():
    page = services.paginate(list(range(45)), page=9, per_page=20)
    assert (page.page, page.pages, page.total) == (3, 3, 45)
    assert page.items == list(range(40, 45))
    empty = services.paginate([], page=2)
    assert (empty.page, empty.pages, empty.items) == (1, 1, [])


def test_summarize(form):
    record = _record(1, mention="Hospitalier", status="approved")
    summary = services.summarize(record, form)
    assert summary["full_name"] == "Nom1 Kasongo Grâce"
    assert summary["filiere"] == "Soins Infirmiers - Hospitalier"
    assert summary["status_label"] == "Approuvé"
    assert services.summarize(record, None)["form_title"] == "Formulaire inconnu"


def test_register_propagates_backend_failure():
    class DownStore:
        def get_form(self, form_id):
            return StoreResult.failure("injoignable", "backend")

    res = services.register_submission(DownStore(), "form-1", sample_answers(), sample_choices(),
                                       rng=random.Random(0))
    assert (res.ok, res.code) == (False, "backend")
