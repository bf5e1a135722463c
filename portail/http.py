from __future__ import annotations

from io import BytesIO

from flask import current_app, jsonify, request, send_file

from portail.stores.base import StoreResult

# Code d'échec du stockage -> statut HTTP
HTTP_STATUS = {
    "validation": 400,
    "not_found": 404,
    "duplicate": 409,
    "conflict": 409,
    "backend": 503,
}


class StoreFailure(Exception):
    """Levée par `expect` ; convertie en réponse JSON par le gestionnaire de l'application."""

    def __init__(self, result: StoreResult):
        super().__init__(result.error)
        self.result = result

    @property
    def status(self) -> int:
        return HTTP_STATUS.get(self.result.code or "backend", 503)


def expect(result: StoreResult):
    if not result.ok:
        raise StoreFailure(result)
    return result.value


def failure_response(result: StoreResult):
    status = HTTP_STATUS.get(result.code or "backend", 503)
    body = {"error": result.error, "code": result.code}
    if result.details:
        body["errors"] = result.details
    if status == 503:
        current_app.logger.error("Stockage indisponible (%s %s) : %s", request.method, request.path, result.error)
    return jsonify(body), status


def validation_error(errors: dict, message: str = "Le formulaire contient des erreurs"):
    return jsonify({"error": message, "code": "validation", "errors": errors}), 400


def json_body() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def download(data, filename: str, mimetype: str):
    if isinstance(data, str):
        data = data.encode("utf-8")
    return send_file(BytesIO(data), mimetype=mimetype, as_attachment=True, download_name=filename)


def fiche_response(record, form):
    """Fiche PDF d'une inscription, avec les réglages d'établissement de l'application."""
    from portail.exports.pdf import render_submission_pdf, submission_pdf_filename

    cfg = current_app.config
    pdf = render_submission_pdf(
        record,
        form,
        logo_path=cfg.get("PORTAIL_LOGO_PATH") or None,
        institution=cfg.get("INSTITUTION_NOM"),
        address=cfg.get("INSTITUTION_ADRESSE"),
        prefix=cfg.get("MATRICULE_PREFIX", "ISTM"),
    )
    return download(pdf, submission_pdf_filename(record, form), "application/pdf")
