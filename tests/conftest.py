import pytest

from config import TestConfig
from portail import create_app
from portail.extensions import db
from portail.formulaires.schema import FormDefinition
from portail.models import Role, User


def sample_form_dict(status="published", form_id="form-1"):
    return {
        "id": form_id,
        "title": "Inscription 2025-2026",
        "description": "Formulaire de candidature",
        "status": status,
        "fields": [
            {"id": "f_nom", "type": "text", "label": "Nom", "required": True, "order": 1},
            {"id": "f_postnom", "type": "text", "label": "Post-Nom", "order": 2},
            {"id": "f_prenom", "type": "text", "label": "Prénom", "required": True, "order": 3},
            {"id": "f_email", "type": "email", "label": "E-mail", "required": True, "order": 4},
            {"id": "f_tel", "type": "tel", "label": "Téléphone", "order": 5},
            {"id": "f_sexe", "type": "select", "label": "Sexe", "options": ["Masculin", "Féminin"], "order": 6},
            {"id": "f_naissance", "type": "date", "label": "Date de naissance", "order": 7},
            {
                "id": "f_pct",
                "type": "number",
                "label": "Pourcentage",
                "order": 8,
                "validation": {"min": 0, "max": 100},
            },
        ],
        "filieres": [
            {"id": "fil_si", "name": "Soins Infirmiers", "mentions": ["Hospitalier", "Santé communautaire"]},
            {"id": "fil_bm", "name": "Biologie Médicale", "mentions": []},
        ],
    }


def sample_answers(**overrides):
    answers = {
        "f_nom": "Mbala",
        "f_postnom": "Kasongo",
        "f_prenom": "Grâce",
        "f_email": "grace.mbala@example.com",
        "f_tel": "+243 812 345 678",
        "f_sexe": "Féminin",
        "f_naissance": "2004-05-12",
        "f_pct": "68",
    }
    answers.update(overrides)
    return answers


def sample_choices():
    return {
        "selectedFiliere": "fil_si",
        "selectedMention": "Hospitalier",
        "selectedFiliere2": "fil_bm",
    }


@pytest.fixture
def form():
    return FormDefinition.from_dict(sample_form_dict())


@pytest.fixture
def app():
    app = create_app(TestConfig)
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


def make_user(app, email, role_code, password="secret-123"):
    with app.app_context():
        role = Role.query.filter_by(code=role_code).first()
        u = User(email=email, nom="Test", role=role_code)
        u.set_password(password)
        u.roles.append(role)
        db.session.add(u)
        db.session.commit()
        return u.id


def login(client, email, password="secret-123"):
    return client.post("/auth/login", json={"email": email, "password": password})


@pytest.fixture
def admin_client(app, client):
    make_user(app, "admin@istm.cd", "admin_tech")
    resp = login(client, "admin@istm.cd")
    assert resp.status_code == 200
    return client
