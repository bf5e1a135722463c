from flask import Blueprint, jsonify, request
from flask_login import current_user, login_required

from portail.exports.csv_export import export_form_csv, form_csv_filename
from portail.formulaires import builder
from portail.formulaires.schema import FormDefinition
from portail.http import download, expect, json_body
from portail.inscriptions.services import recount_submissions
from portail.rbac import require_perm
from portail.stores import current_store

bp = Blueprint("formulaires", __name__, url_prefix="/admin/formulaires")


def _save_fields(form: FormDefinition):
    return expect(current_store().update_form(form.id, {
        "fields": [f.to_dict() for f in form.fields],
        "filieres": [f.to_dict() for f in form.filieres],
    }))


@bp.route("", methods=["GET"])
@login_required
@require_perm("formulaires:view")
def list_forms():
    store = current_store()
    forms = expect(store.get_forms())
    # Compteurs recalculés : la valeur stockée peut avoir dérivé
    submissions = expect(store.get_submissions())
    forms = recount_submissions(forms, submissions)
    return jsonify({"forms": [f.to_dict() for f in forms]})


@bp.route("", methods=["POST"])
@login_required
@require_perm("formulaires:edit")
def create_form():
    data = json_body()
    form = builder.new_form(created_by=current_user.email)
    if data:
        payload = form.to_dict()
        for key in ("title", "description", "fields", "filieres"):
            if key in data:
                payload[key] = data[key]
        form = FormDefinition.from_dict(payload)
        form.check()
    created = expect(current_store().create_form(form))
    return jsonify({"form": created.to_dict()}), 201


@bp.route("/<form_id>", methods=["GET"])
@login_required
@require_perm("formulaires:view")
def get_form(form_id):
    form = expect(current_store().get_form(form_id))
    return jsonify({"form": form.to_dict()})


@bp.route("/<form_id>", methods=["PUT", "PATCH"])
@login_required
@require_perm("formulaires:edit")
def update_form(form_id):
    form = expect(current_store().update_form(form_id, json_body()))
    return jsonify({"form": form.to_dict()})


@bp.route("/<form_id>", methods=["DELETE"])
@login_required
@require_perm("formulaires:delete")
def delete_form(form_id):
    expect(current_store().delete_form(form_id))
    return jsonify({"ok": True})


@bp.route("/<form_id>/statut", methods=["POST"])
@login_required
@require_perm("formulaires:edit")
def change_status(form_id):
    status = (json_body().get("status") or "").strip()
    form = expect(current_store().update_form(form_id, {"status": status}))
    return jsonify({"form": form.to_dict()})


@bp.route("/<form_id>/dupliquer", methods=["POST"])
@login_required
@require_perm("formulaires:edit")
def duplicate(form_id):
    store = current_store()
    source = expect(store.get_form(form_id))
    copy = expect(store.create_form(builder.duplicate_form(source, created_by=current_user.email)))
    return jsonify({"form": copy.to_dict()}), 201


@bp.route("/<form_id>/champs", methods=["POST"])
@login_required
@require_perm("formulaires:edit")
def add_field(form_id):
    data = json_body()
    form = expect(current_store().get_form(form_id))
    field = builder.new_field(form, data.get("type") or "text", data.get("label"))
    form = _save_fields(form)
    return jsonify({"form": form.to_dict(), "field": field.to_dict()}), 201


@bp.route("/<form_id>/champs/<field_id>", methods=["DELETE"])
@login_required
@require_perm("formulaires:edit")
def remove_field(form_id, field_id):
    form = expect(current_store().get_form(form_id))
    if not builder.remove_field(form, field_id):
        return jsonify({"error": "Champ introuvable", "code": "not_found"}), 404
    form = _save_fields(form)
    return jsonify({"form": form.to_dict()})


@bp.route("/<form_id>/champs/ordre", methods=["POST"])
@login_required
@require_perm("formulaires:edit")
def reorder(form_id):
    form = expect(current_store().get_form(form_id))
    builder.reorder_fields(form, list(json_body().get("ids") or []))
    form = _save_fields(form)
    return jsonify({"form": form.to_dict()})


@bp.route("/<form_id>/filieres", methods=["POST"])
@login_required
@require_perm("formulaires:edit")
def add_filiere(form_id):
    data = json_body()
    form = expect(current_store().get_form(form_id))
    fil = builder.new_filiere(form, data.get("name"), data.get("mentions"))
    form = _save_fields(form)
    return jsonify({"form": form.to_dict(), "filiere": fil.to_dict()}), 201


@bp.route("/<form_id>/export.csv")
@login_required
@require_perm("formulaires:export")
def export_csv(form_id):
    store = current_store()
    form = expect(store.get_form(form_id))
    submissions = expect(store.get_submissions(form_id))
    if request.args.get("status"):
        submissions = [s for s in submissions if s.status == request.args["status"]]
    return download(export_form_csv(form, submissions), form_csv_filename(form), "text/csv; charset=utf-8")
