from io import BytesIO

import pytest
from openpyxl import load_workbook

from conftest import login, make_user, sample_answers, sample_choices, sample_form_dict


def _create_published_form(client):
    data = sample_form_dict()
    resp = client.post("/admin/formulaires", json={k: data[k] for k in ("title", "description", "fields", "filieres")})
    assert resp.status_code == 201
    form = resp.get_json()["form"]
    assert form["status"] == "draft"
    resp = client.post(f"/admin/formulaires/{form['id']}/statut", json={"status": "published"})
    assert resp.status_code == 200
    return resp.get_json()["form"]


def _submit(client, form_id, **answers):
    return client.post(
        f"/inscription/formulaires/{form_id}",
        json={"answers": sample_answers(**answers), "choices": sample_choices()},
    )


@pytest.fixture
def published(admin_client):
    return _create_published_form(admin_client)


# ---------------------------------------------------------------------------
# Authentification / RBAC
# ---------------------------------------------------------------------------
def test_login_and_me(app, client):
    make_user(app, "secretariat@istm.cd", "secretariat")
    assert login(client, "secretariat@istm.cd", "mauvais").status_code == 401
    resp = login(client, "Secretariat@istm.cd")
    assert resp.status_code == 200
    me = client.get("/auth/me").get_json()
    assert me["user"]["email"] == "secretariat@istm.cd"
    assert "inscriptions:export" in me["permissions"]
    assert "inscriptions:delete" not in me["permissions"]

    assert client.post("/auth/logout").status_code == 200
    assert client.get("/auth/me").status_code == 401


def test_disabled_account_cannot_log_in(app, admin_client):
    user_id = make_user(app, "ancien@istm.cd", "secretariat")
    assert admin_client.patch(f"/admin/users/{user_id}", json={"actif": False}).status_code == 200
    other = app.test_client()
    assert login(other, "ancien@istm.cd").status_code == 403


def test_anonymous_gets_401_and_wrong_role_403(app, client):
    assert client.get("/admin/inscriptions").status_code == 401
    make_user(app, "editeur@istm.cd", "editeur")
    login(client, "editeur@istm.cd")
    assert client.get("/admin/inscriptions").status_code == 403
    assert client.get("/admin/source-donnees").status_code == 403
    assert client.get("/contenus/admin/evenements").status_code == 200


def test_secretariat_cannot_delete(app, client, published):
    created = _submit(client, published["id"]).get_json()
    make_user(app, "secretariat@istm.cd", "secretariat")
    login(client, "secretariat@istm.cd")
    assert client.delete(f"/admin/inscriptions/{created['id']}").status_code == 403
    assert client.get(f"/admin/inscriptions/{created['id']}").status_code == 200


def test_user_management(admin_client):
    resp = admin_client.post("/admin/users", json={"email": "Direction@istm.cd", "password": "x1", "role": "direction"})
    assert resp.status_code == 201
    user = resp.get_json()["user"]
    assert user["email"] == "direction@istm.cd"
    assert user["roles"] == ["direction"]

    again = admin_client.post("/admin/users", json={"email": "direction@istm.cd", "password": "x1", "role": "direction"})
    assert again.status_code == 409
    bad = admin_client.post("/admin/users", json={"email": "x@istm.cd", "role": "inconnu"})
    assert bad.status_code == 400
    assert set(bad.get_json()["errors"]) == {"password", "role"}

    me = admin_client.get("/auth/me").get_json()["user"]
    assert admin_client.delete(f"/admin/users/{me['id']}").status_code == 409
    assert admin_client.delete(f"/admin/users/{user['id']}").status_code == 200


def test_role_permissions_editing(app, admin_client):
    data = admin_client.get("/admin/droits").get_json()
    assert "admin:rbac" in {p["code"] for p in data["permissions"]}
    editeur = next(r for r in data["roles"] if r["code"] == "editeur")
    assert editeur["perms"] == ["contenus:delete", "contenus:edit", "contenus:view"]

    resp = admin_client.post("/admin/roles/editeur/permissions", json={"perms": ["dashboard:view", "contenus:view"]})
    assert resp.status_code == 200
    assert resp.get_json()["role"]["perms"] == ["contenus:view", "dashboard:view"]
    assert admin_client.get("/admin/roles/editeur/permissions").get_json()["role"]["perms"] == [
        "contenus:view",
        "dashboard:view",
    ]

    # les nouveaux droits s'appliquent aux comptes du rôle
    make_user(app, "editeur@istm.cd", "editeur")
    other = app.test_client()
    login(other, "editeur@istm.cd")
    assert other.get("/admin/inscriptions/tableau-de-bord").status_code == 200
    assert other.post("/contenus/admin/evenements", json={"title": "Réunion", "date": "2025-10-01"}).status_code == 403
    assert other.get("/admin/droits").status_code == 403


def test_role_permissions_rejects_bad_input(admin_client):
    unknown = admin_client.post("/admin/roles/editeur/permissions", json={"perms": ["contenus:view", "tout:faire"]})
    assert unknown.status_code == 400
    assert "tout:faire" in unknown.get_json()["errors"]["perms"]
    assert admin_client.post("/admin/roles/editeur/permissions", json={"perms": "contenus:view"}).status_code == 400
    assert admin_client.post("/admin/roles/inconnu/permissions", json={"perms": []}).status_code == 404
    assert admin_client.get("/admin/roles/inconnu/permissions").status_code == 404

    # l'administrateur ne peut pas se couper l'accès à la gestion des droits
    resp = admin_client.post("/admin/roles/admin_tech/permissions", json={"perms": ["admin:users"]})
    assert resp.status_code == 409
    assert "admin:rbac" in admin_client.get("/admin/roles/admin_tech/permissions").get_json()["role"]["perms"]


# ---------------------------------------------------------------------------
# Parcours public d'inscription
# ---------------------------------------------------------------------------
def test_draft_form_is_not_public(admin_client):
    form = admin_client.post("/admin/formulaires", json={"title": "Brouillon"}).get_json()["form"]
    assert admin_client.get(f"/inscription/formulaires/{form['id']}").status_code == 404
    assert admin_client.get("/inscription/formulaires").get_json()["forms"] == []


def test_public_form_and_plan(client, published):
    listing = client.get("/inscription/formulaires").get_json()["forms"]
    assert [f["id"] for f in listing] == [published["id"]]
    assert "submissions_count" not in listing[0]

    data = client.get(f"/inscription/formulaires/{published['id']}").get_json()
    assert data["plan"]["total_steps"] == 4
    assert [s["kind"] for s in data["plan"]["steps"]] == ["fields", "fields", "filieres", "confirmation"]


def test_step_validation(client, published):
    url = f"/inscription/formulaires/{published['id']}/etapes"
    resp = client.post(f"{url}/1", json={"answers": {"f_email": "pas-un-email"}})
    assert resp.status_code == 400
    body = resp.get_json()
    assert body["code"] == "validation"
    assert {"f_nom", "f_prenom", "f_email"} <= set(body["errors"])

    resp = client.post(f"{url}/1", json={"answers": sample_answers()})
    assert resp.get_json() == {"ok": True, "next_step": 2}
    resp = client.post(f"{url}/3", json={"answers": {}, "choices": {}})
    assert resp.status_code == 400
    resp = client.post(f"{url}/4", json={"answers": sample_answers(), "choices": sample_choices()})
    assert resp.get_json() == {"ok": True, "next_step": None}
    assert client.post(f"{url}/9", json={}).status_code == 404


def test_submit_duplicate_and_fiche(client, published):
    resp = _submit(client, published["id"])
    assert resp.status_code == 201
    created = resp.get_json()
    assert created["status"] == "pending"
    assert created["matricule"].startswith("ISTM")

    dup = _submit(client, published["id"], f_email="GRACE.MBALA@example.com")
    assert dup.status_code == 409
    assert dup.get_json()["code"] == "duplicate"

    invalid = _submit(client, published["id"], f_email="esther@example", f_prenom="Esther")
    assert invalid.status_code == 400
    assert "f_email" in invalid.get_json()["errors"]

    assert created["fiche_url"] == f"/inscription/fiche/{created['fiche_token']}"
    fiche = client.get(created["fiche_url"])
    assert fiche.status_code == 200
    assert fiche.mimetype == "application/pdf"
    assert fiche.data.startswith(b"%PDF")
    assert "attachment" in fiche.headers["Content-Disposition"]


def test_fiche_requires_signed_token(app, client, published):
    created = _submit(client, published["id"]).get_json()
    anonymous = app.test_client()

    # Le matricule seul ne donne accès à aucune donnée personnelle
    assert anonymous.get(f"/inscription/{created['matricule']}/pdf").status_code == 404
    assert anonymous.get(f"/inscription/fiche/{created['matricule']}").status_code == 404

    token = created["fiche_token"]
    altered = ("f" if token[0] != "f" else "e") + token[1:]
    assert anonymous.get(f"/inscription/fiche/{altered}").status_code == 404
    assert anonymous.get(f"/inscription/fiche/{token}").status_code == 200

    app.config["FICHE_TOKEN_MAX_AGE"] = -1
    assert anonymous.get(f"/inscription/fiche/{token}").status_code == 404


def test_fiche_token_follows_deleted_submission(app, client, admin_client, published):
    created = _submit(client, published["id"]).get_json()
    assert admin_client.delete(f"/admin/inscriptions/{created['id']}").status_code == 200
    assert app.test_client().get(created["fiche_url"]).status_code == 404


def test_submit_multipart(client, published):
    data = dict(sample_answers(), **sample_choices())
    data["f_diplome"] = (BytesIO(b"%PDF-1.4"), "diplome.pdf")
    resp = client.post(
        f"/inscription/formulaires/{published['id']}", data=data, content_type="multipart/form-data"
    )
    assert resp.status_code == 201


def test_submit_multipart_keeps_every_checked_box(client, admin_client, published):
    form_id = published["id"]
    resp = admin_client.post(
        f"/admin/formulaires/{form_id}/champs",
        json={"type": "checkbox", "label": "Langues parlées"},
    )
    assert resp.status_code == 201
    field_id = resp.get_json()["field"]["id"]

    data = dict(sample_answers(), **sample_choices())
    data[field_id] = ["Option 1", "Option 2"]
    resp = client.post(f"/inscription/formulaires/{form_id}", data=data, content_type="multipart/form-data")
    assert resp.status_code == 201

    detail = admin_client.get(f"/admin/inscriptions/{resp.get_json()['id']}").get_json()
    assert detail["submission"]["submission_data"][field_id] == ["Option 1", "Option 2"]


# ---------------------------------------------------------------------------
# Back-office des formulaires
# ---------------------------------------------------------------------------
def test_form_builder_routes(admin_client, published):
    form_id = published["id"]
    resp = admin_client.post(f"/admin/formulaires/{form_id}/champs", json={"type": "textarea", "label": "Motivation"})
    assert resp.status_code == 201
    field_id = resp.get_json()["field"]["id"]

    ids = [f["id"] for f in resp.get_json()["form"]["fields"]]
    reordered = admin_client.post(f"/admin/formulaires/{form_id}/champs/ordre", json={"ids": [field_id] + ids[:-1]})
    first = min(reordered.get_json()["form"]["fields"], key=lambda f: f["order"])
    assert first["id"] == field_id

    assert admin_client.delete(f"/admin/formulaires/{form_id}/champs/{field_id}").status_code == 200
    assert admin_client.delete(f"/admin/formulaires/{form_id}/champs/{field_id}").status_code == 404

    fil = admin_client.post(f"/admin/formulaires/{form_id}/filieres", json={"name": "Pharmacie"})
    assert fil.get_json()["filiere"]["name"] == "Pharmacie"

    copy = admin_client.post(f"/admin/formulaires/{form_id}/dupliquer").get_json()["form"]
    assert copy["status"] == "draft"
    assert copy["title"].endswith("(Copie)")


def test_form_status_lifecycle(admin_client, published):
    url = f"/admin/formulaires/{published['id']}/statut"
    assert admin_client.post(url, json={"status": "archived"}).status_code == 200
    resp = admin_client.post(url, json={"status": "published"})
    assert resp.status_code == 409
    assert resp.get_json()["code"] == "conflict"


def test_form_list_recounts_and_csv(admin_client, published):
    _submit(admin_client, published["id"])
    forms = admin_client.get("/admin/formulaires").get_json()["forms"]
    assert forms[0]["submissions_count"] == 1

    resp = admin_client.get(f"/admin/formulaires/{published['id']}/export.csv")
    assert resp.status_code == 200
    assert resp.mimetype == "text/csv"
    text = resp.data.decode("utf-8")
    assert text.startswith("\ufeff")
    assert "Mbala" in text


def test_delete_form(admin_client, published):
    assert admin_client.delete(f"/admin/formulaires/{published['id']}").status_code == 200
    assert admin_client.get(f"/admin/formulaires/{published['id']}").status_code == 404


# ---------------------------------------------------------------------------
# Back-office des inscriptions
# ---------------------------------------------------------------------------
def _three_submissions(client, form_id):
    people = [("Grace", "grace@example.com"), ("Esther", "esther@example.com"), ("Papy", "papy@example.com")]
    return [_submit(client, form_id, f_prenom=p, f_email=e).get_json() for p, e in people]


def test_list_filter_and_paginate(admin_client, published):
    created = _three_submissions(admin_client, published["id"])
    data = admin_client.get("/admin/inscriptions?per_page=2").get_json()
    assert (data["total"], data["pages"], len(data["items"])) == (3, 2, 2)
    assert data["filieres"] == ["Soins Infirmiers"]
    assert data["forms"] == [{"id": published["id"], "title": published["title"]}]

    admin_client.post(f"/admin/inscriptions/{created[1]['id']}/statut", json={"status": "approved"})
    approved = admin_client.get("/admin/inscriptions?status=approved").get_json()
    assert [i["id"] for i in approved["items"]] == [created[1]["id"]]

    found = admin_client.get("/admin/inscriptions?q=papy").get_json()
    assert found["total"] == 1
    assert found["items"][0]["full_name"] == "Mbala Kasongo Papy"


def test_status_change_and_history(admin_client, published):
    created = _submit(admin_client, published["id"]).get_json()
    url = f"/admin/inscriptions/{created['id']}"
    resp = admin_client.post(f"{url}/statut", json={"status": "approved"})
    assert resp.get_json()["submission"]["status"] == "approved"
    assert admin_client.post(f"{url}/statut", json={"status": "approved"}).status_code == 409
    assert admin_client.post(f"{url}/statut", json={"status": "bogus"}).status_code in (400, 409)

    history = admin_client.get(f"{url}/historique").get_json()["history"]
    assert [(h["from_status"], h["to_status"], h["by"]) for h in history] == [
        ("pending", "approved", "admin@istm.cd"),
    ]

    detail = admin_client.get(url).get_json()
    assert detail["labels"]["f_nom"] == "Nom"
    assert detail["summary"]["status_label"] == "Approuvé"

    assert admin_client.get(f"{url}/pdf").data.startswith(b"%PDF")
    assert admin_client.delete(url).status_code == 200
    assert admin_client.get(url).status_code == 404


def test_exports_and_dashboard(admin_client, published):
    _three_submissions(admin_client, published["id"])

    csv_resp = admin_client.get("/admin/inscriptions/export.csv")
    assert csv_resp.status_code == 200
    assert csv_resp.data.decode("utf-8").count("ISTM") >= 3

    xlsx = admin_client.get("/admin/inscriptions/export.xlsx")
    assert xlsx.status_code == 200
    wb = load_workbook(BytesIO(xlsx.data))
    assert wb["Inscriptions"].max_row == 4

    stats = admin_client.get("/admin/inscriptions/tableau-de-bord").get_json()
    assert stats["total"] == 3
    assert stats["pending"] == 3

    pdf = admin_client.get("/admin/inscriptions/tableau-de-bord.pdf")
    assert pdf.status_code == 200
    assert pdf.data.startswith(b"%PDF")


# ---------------------------------------------------------------------------
# Contenus
# ---------------------------------------------------------------------------
def test_events_public_and_admin(admin_client, client):
    draft = admin_client.post("/contenus/admin/evenements", json={"title": "Réunion", "date": "2025-10-01"})
    assert draft.status_code == 201
    pub = admin_client.post(
        "/contenus/admin/evenements",
        json={"title": "Portes ouvertes", "date": "2025-10-04", "time": "09:00", "status": "published"},
    ).get_json()["item"]

    items = client.get("/contenus/evenements").get_json()["items"]
    assert [e["title"] for e in items] == ["Portes ouvertes"]
    assert client.get(f"/contenus/evenements/{draft.get_json()['item']['id']}").status_code == 404

    assert admin_client.patch(f"/contenus/admin/evenements/{pub['id']}", json={"location": "Auditoire A"}).status_code == 200
    assert admin_client.get("/contenus/admin/evenements").get_json()["items"][0]["id"]
    assert admin_client.delete(f"/contenus/admin/evenements/{pub['id']}").status_code == 200

    bad = admin_client.post("/contenus/admin/evenements", json={"title": "Sans date"})
    assert bad.status_code == 400
    bad = admin_client.post(
        "/contenus/admin/evenements", json={"title": "Atelier", "date": "2025-10-04", "max_participants": "trente"}
    )
    assert bad.status_code == 400
    assert "participants" in bad.get_json()["error"]
    assert client.get("/contenus/inconnu").status_code == 404


def test_publications_views_likes_comments(admin_client, client):
    item = admin_client.post("/contenus/admin/publications", json={"title": "Rentrée"}).get_json()["item"]
    url = f"/contenus/publications/{item['id']}"
    assert client.get(url).get_json()["item"]["views"] == 1
    assert client.post(f"{url}/like").get_json() == {"likes": 1}
    resp = client.post(f"{url}/commentaires", json={"author": "Parent", "content": "Merci"})
    assert resp.status_code == 201
    assert [c["content"] for c in resp.get_json()["item"]["comments"]] == ["Merci"]
    assert client.post(f"{url}/commentaires", json={"content": " "}).status_code == 400


def test_forum_flow(admin_client, client):
    post = client.post("/contenus/forum", json={"title": "Frais", "content": "Combien ?"}).get_json()["item"]
    replied = client.post(f"/contenus/forum/{post['id']}/reponses", json={"content": "Voir le secrétariat"})
    reply_id = replied.get_json()["item"]["replies"][0]["id"]

    resp = admin_client.post(f"/contenus/admin/forum/{post['id']}/reponses/{reply_id}/solution")
    assert resp.get_json()["item"]["is_answered"] is True
    assert admin_client.post(f"/contenus/admin/forum/{post['id']}/reponses/autre/solution").status_code == 400


def test_notifications_only_active(admin_client, client):
    admin_client.post("/contenus/admin/notifications", json={"title": "A", "message": "a", "priority": "low"})
    admin_client.post("/contenus/admin/notifications", json={"title": "B", "message": "b", "priority": "high"})
    admin_client.post("/contenus/admin/notifications", json={"title": "C", "message": "c", "is_active": False})
    assert [n["title"] for n in client.get("/contenus/notifications").get_json()["items"]] == ["B", "A"]


# ---------------------------------------------------------------------------
# Source de données
# ---------------------------------------------------------------------------
def test_data_source_routes(admin_client):
    data = admin_client.get("/admin/source-donnees").get_json()
    assert data["active"] == "relationnel"
    assert [b["code"] for b in data["available"]] == ["relationnel"]

    resp = admin_client.post("/admin/source-donnees", json={"backend": "documents"})
    assert resp.status_code == 400
    resp = admin_client.post("/admin/source-donnees", json={"backend": "relationnel"})
    assert resp.get_json() == {"active": "relationnel", "reachable": True, "error": None}
