import random
import re
from datetime import datetime

import pytest

from portail.formulaires import builder
from portail.formulaires.doublons import identity_key
from portail.formulaires.lifecycle import TransitionError, change_form_status, transition_submission
from portail.formulaires.matricule import generate_matricule
from portail.formulaires.schema import FormDefinition, SchemaError, SubmissionRecord

from conftest import sample_answers, sample_form_dict


# ---------------------------------------------------------------------------
# Cycle de vie
# ---------------------------------------------------------------------------
def test_form_publish_unpublish_archive():
    form = FormDefinition.from_dict(sample_form_dict(status="draft"))
    change_form_status(form, "published")
    assert form.is_published
    change_form_status(form, "draft")
    change_form_status(form, "archived")
    with pytest.raises(TransitionError):
        change_form_status(form, "published")


def test_unknown_form_status():
    form = FormDefinition.from_dict(sample_form_dict(status="draft"))
    with pytest.raises(TransitionError):
        change_form_status(form, "deleted")


def test_submission_history_is_appended():
    record = SubmissionRecord(id="s1", form_id="form-1", matricule="ISTM20250001")
    transition_submission(record, "approved", by="secretariat@istm.cd")
    transition_submission(record, "rejected", by="direction@istm.cd")
    assert record.status == "rejected"
    assert [(t.from_status, t.to_status) for t in record.status_history] == [
        ("pending", "approved"),
        ("approved", "rejected"),
    ]
    assert record.status_history[0].by == "secretariat@istm.cd"


def test_submission_same_status_is_refused():
    record = SubmissionRecord(id="s1", form_id="form-1", matricule="ISTM20250001")
    with pytest.raises(TransitionError):
        transition_submission(record, "pending")
    assert record.status_history == []


# ---------------------------------------------------------------------------
# Matricule
# ---------------------------------------------------------------------------
def test_matricule_format():
    m = generate_matricule("ISTM", now=datetime(2025, 9, 1, 10, 0, 0), rng=random.Random(1))
    assert re.fullmatch(r"ISTM2025\d{4}", m)
    other = generate_matricule("ABC", now=datetime(2026, 1, 5, 8, 0, 0), rng=random.Random(2))
    assert re.fullmatch(r"ABC2026\d{4}", other)


# ---------------------------------------------------------------------------
# Doublons
# ---------------------------------------------------------------------------
def test_identity_key_ignores_case_accents_and_spaces(form):
    a = identity_key(sample_answers(), form)
    b = identity_key(sample_answers(f_prenom="  GRACE ", f_email="Grace.Mbala@Example.com"), form)
    assert a == b
    assert identity_key(sample_answers(f_prenom="Esther"), form) != a


def test_identity_key_from_label_keyed_answers(form):
    legacy = {"Nom": "Mbala", "Prénom": "Grâce", "E-mail": "grace.mbala@example.com"}
    assert identity_key(legacy) == identity_key(sample_answers(), form)


def test_identity_key_none_when_anonymous(form):
    assert identity_key({"f_tel": "+243 812 345 678"}, form) is None


# ---------------------------------------------------------------------------
# Constructeur
# ---------------------------------------------------------------------------
def test_new_field_defaults():
    form = builder.new_form(created_by="admin@istm.cd")
    assert form.title == "Nouveau formulaire"
    assert form.status == "draft"
    f1 = builder.new_field(form)
    f2 = builder.new_field(form, "select", "Sexe")
    assert (f1.order, f2.order) == (1, 2)
    assert f1.options == []
    assert f2.options == ["Option 1", "Option 2"]
    with pytest.raises(SchemaError):
        builder.new_field(form, "signature")


def test_reorder_and_remove(form):
    builder.reorder_fields(form, ["f_pct", "f_nom"])
    ordered = [f.id for f in form.ordered_fields()]
    assert ordered[:3] == ["f_pct", "f_nom", "f_postnom"]
    assert [f.order for f in form.ordered_fields()] == list(range(1, 9))

    assert builder.remove_field(form, "f_nom")
    assert not builder.remove_field(form, "f_nom")
    assert [f.order for f in form.ordered_fields()] == list(range(1, 8))

    with pytest.raises(SchemaError):
        builder.reorder_fields(form, ["nope"])


def test_duplicate_form(form):
    form.submissions_count = 12
    copy = builder.duplicate_form(form, created_by="direction@istm.cd")
    assert copy.id is None
    assert copy.title == "Inscription 2025-2026 (Copie)"
    assert copy.status == "draft"
    assert copy.submissions_count == 0
    assert [f.label for f in copy.fields] == [f.label for f in form.fields]
    assert not {f.id for f in copy.fields} & {f.id for f in form.fields}
    assert not {f.id for f in copy.filieres} & {f.id for f in form.filieres}
    copy.check()


def test_duplicate_field_ids_rejected():
    data = sample_form_dict()
    data["fields"].append({"id": "f_nom", "type": "text", "label": "Autre"})
    with pytest.raises(SchemaError):
        FormDefinition.from_dict(data).check()


def test_normalized_rekeys_label_answers(form):
    record = SubmissionRecord(id="s1", form_id=form.id, matricule="ISTM20250001",
                              submission_data={"Nom": "Mbala", "Ville": "Kinshasa"})
    record.normalized(form)
    assert record.submission_data == {"f_nom": "Mbala", "Ville": "Kinshasa"}
    assert record.answer_for(form, "Nom") == "Mbala"
