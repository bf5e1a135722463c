from flask import Blueprint, abort, current_app, jsonify, request, url_for
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from portail.formulaires.validation import (
    FILIERE_2_KEY,
    FILIERE_KEY,
    MENTION_2_KEY,
    MENTION_KEY,
    WizardPlan,
    validate_step,
)
from portail.http import expect, fiche_response, json_body, validation_error
from portail.inscriptions.services import register_submission
from portail.stores import current_store

bp = Blueprint("inscription", __name__, url_prefix="/inscription")

CHOICE_KEYS = (FILIERE_KEY, MENTION_KEY, FILIERE_2_KEY, MENTION_2_KEY)
FICHE_SALT = "portail.fiche-inscription"


def _published_form(form_id: str):
    form = expect(current_store().get_form(form_id))
    if not form.is_published:
        abort(404, description="Formulaire introuvable")
    return form


def _payload(form) -> tuple[dict, dict]:
    """(réponses, choix de filières) depuis un corps JSON ou un envoi multipart."""
    if request.is_json:
        data = json_body()
        return dict(data.get("answers") or {}), dict(data.get("choices") or {})
    # Cases à cocher : une valeur par case cochée
    multiple = {f.id for f in form.fields if f.type == "checkbox"}
    answers = {
        key: values if key in multiple else values[0]
        for key, values in request.form.to_dict(flat=False).items()
    }
    answers.update(request.files.to_dict())
    choices = {k: answers.pop(k) for k in CHOICE_KEYS if k in answers}
    return answers, choices


def _public_form(form) -> dict:
    data = form.to_dict()
    data.pop("created_by", None)
    data.pop("submissions_count", None)
    return data


@bp.route("/formulaires")
def forms():
    items = expect(current_store().get_forms())
    return jsonify({"forms": [_public_form(f) for f in items if f.is_published]})


@bp.route("/formulaires/<form_id>")
def form_detail(form_id):
    form = _published_form(form_id)
    plan = WizardPlan(form, current_app.config.get("FIELDS_PER_STEP", 6))
    return jsonify({"form": _public_form(form), "plan": plan.to_dict()})


@bp.route("/formulaires/<form_id>/etapes/<int:step>", methods=["POST"])
def check_step(form_id, step):
    form = _published_form(form_id)
    fields_per_step = current_app.config.get("FIELDS_PER_STEP", 6)
    plan = WizardPlan(form, fields_per_step)
    if step < 1 or step > plan.total_steps:
        abort(404, description=f"Étape hors limites : {step}")

    answers, choices = _payload(form)
    errors = validate_step(form, answers, choices, step, fields_per_step=fields_per_step)
    if errors:
        return validation_error(errors)
    next_step = step + 1 if step < plan.total_steps else None
    return jsonify({"ok": True, "next_step": next_step})


@bp.route("/formulaires/<form_id>", methods=["POST"])
def submit(form_id):
    form = _published_form(form_id)
    answers, choices = _payload(form)
    record = expect(register_submission(
        current_store(),
        form_id,
        answers,
        choices,
        prefix=current_app.config.get("MATRICULE_PREFIX", "ISTM"),
    ))
    token = fiche_token(record)
    return jsonify({
        "id": record.id,
        "matricule": record.matricule,
        "status": record.status,
        "submitted_at": record.submitted_at,
        "fiche_token": token,
        "fiche_url": url_for("inscription.fiche", token=token),
    }), 201


def _fiche_serializer() -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(current_app.secret_key, salt=FICHE_SALT)


def fiche_token(record) -> str:
    """Jeton signé remis au candidat à la soumission ; seul accès public à sa fiche."""
    return _fiche_serializer().dumps({"id": record.id, "matricule": record.matricule})


@bp.route("/fiche/<token>")
def fiche(token):
    max_age = current_app.config.get("FICHE_TOKEN_MAX_AGE", 86400)
    try:
        data = _fiche_serializer().loads(token, max_age=max_age)
    except SignatureExpired:
        abort(404, description="Lien de téléchargement expiré")
    except BadSignature:
        abort(404, description="Fiche introuvable")

    record = expect(current_store().find_submission_by_matricule(str(data.get("matricule") or "")))
    if record.id != data.get("id"):
        abort(404, description="Fiche introuvable")
    form = current_store().get_form(record.form_id).value if record.form_id else None
    return fiche_response(record, form)
