from flask import Blueprint, current_app, jsonify, request
from flask_login import current_user, login_required

from portail.exports.csv_export import all_csv_filename, export_all_csv
from portail.exports.dashboard import compute_stats, dashboard_filename, render_dashboard_pdf
from portail.exports.xlsx_export import export_submissions_xlsx, xlsx_filename
from portail.http import download, expect, fiche_response, json_body
from portail.rbac import require_perm
from portail.stores import current_store

from .services import SubmissionFilter, available_filieres, filter_submissions, paginate, summarize

bp = Blueprint("inscriptions", __name__, url_prefix="/admin/inscriptions")


def _load():
    """(formulaires, inscriptions) de la source active, lus dans la même requête."""
    store = current_store()
    forms = expect(store.get_forms())
    submissions = expect(store.get_submissions())
    return forms, submissions


def _filtered():
    forms, submissions = _load()
    flt = SubmissionFilter.from_args(request.args)
    return forms, submissions, filter_submissions(submissions, forms, flt)


@bp.route("", methods=["GET"])
@login_required
@require_perm("inscriptions:view")
def list_submissions():
    forms, submissions, filtered = _filtered()
    by_id = {f.id: f for f in forms}
    page = paginate(
        filtered,
        request.args.get("page", 1, type=int) or 1,
        request.args.get("per_page", current_app.config.get("SUBMISSIONS_PER_PAGE", 20), type=int) or 20,
    )
    return jsonify({
        "items": [summarize(s, by_id.get(s.form_id)) for s in page.items],
        "page": page.page,
        "per_page": page.per_page,
        "pages": page.pages,
        "total": page.total,
        "filieres": available_filieres(submissions),
        "forms": [{"id": f.id, "title": f.title} for f in forms],
    })


@bp.route("/<submission_id>", methods=["GET"])
@login_required
@require_perm("inscriptions:view")
def get_submission(submission_id):
    store = current_store()
    record = expect(store.get_submission(submission_id))
    form = store.get_form(record.form_id).value if record.form_id else None
    return jsonify({
        "submission": record.to_dict(),
        "summary": summarize(record, form),
        "labels": form.field_labels() if form else {},
    })


@bp.route("/<submission_id>/statut", methods=["POST"])
@login_required
@require_perm("inscriptions:edit")
def change_status(submission_id):
    status = (json_body().get("status") or "").strip()
    record = expect(current_store().update_submission_status(submission_id, status, by=current_user.email))
    current_app.logger.info("Inscription %s : statut %s par %s", record.matricule, status, current_user.email)
    return jsonify({"submission": record.to_dict()})


@bp.route("/<submission_id>/historique")
@login_required
@require_perm("inscriptions:view")
def history(submission_id):
    record = expect(current_store().get_submission(submission_id))
    return jsonify({"history": [t.to_dict() for t in record.status_history]})


@bp.route("/<submission_id>", methods=["DELETE"])
@login_required
@require_perm("inscriptions:delete")
def delete_submission(submission_id):
    expect(current_store().delete_submission(submission_id))
    return jsonify({"ok": True})


@bp.route("/<submission_id>/pdf")
@login_required
@require_perm("inscriptions:export")
def fiche(submission_id):
    store = current_store()
    record = expect(store.get_submission(submission_id))
    form = store.get_form(record.form_id).value if record.form_id else None
    return fiche_response(record, form)


@bp.route("/export.csv")
@login_required
@require_perm("inscriptions:export")
def export_csv():
    forms, _, filtered = _filtered()
    return download(export_all_csv(filtered, forms), all_csv_filename(), "text/csv; charset=utf-8")


@bp.route("/export.xlsx")
@login_required
@require_perm("inscriptions:export")
def export_xlsx():
    forms, _, filtered = _filtered()
    return download(
        export_submissions_xlsx(filtered, forms),
        xlsx_filename(),
        "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    )


@bp.route("/tableau-de-bord")
@login_required
@require_perm("dashboard:view")
def dashboard():
    forms, submissions = _load()
    return jsonify(compute_stats(submissions, forms).to_dict())


@bp.route("/tableau-de-bord.pdf")
@login_required
@require_perm("dashboard:view")
def dashboard_pdf():
    forms, submissions = _load()
    pdf = render_dashboard_pdf(
        compute_stats(submissions, forms),
        institution=current_app.config.get("INSTITUTION_NOM"),
    )
    return download(pdf, dashboard_filename(), "application/pdf")
