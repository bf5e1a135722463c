from flask import Blueprint, current_app, jsonify, request
from flask_login import current_user, login_required, login_user, logout_user
from flask_wtf.csrf import generate_csrf

from portail.http import json_body
from portail.models import User

bp = Blueprint("auth", __name__, url_prefix="/auth")


@bp.route("/login", methods=["POST"])
def login():
    data = json_body() or request.form
    email = (data.get("email") or "").strip().lower()
    password = (data.get("password") or "").strip()

    u = User.query.filter_by(email=email).first()
    if not u or not u.check_password(password):
        current_app.logger.info("Connexion refusée pour %s", email or "<vide>")
        return jsonify({"error": "Identifiants invalides.", "code": "unauthorized"}), 401
    if not u.is_active:
        return jsonify({"error": "Compte désactivé.", "code": "forbidden"}), 403

    login_user(u)
    return jsonify({"user": u.to_dict()})


@bp.route("/logout", methods=["POST"])
@login_required
def logout():
    logout_user()
    return jsonify({"ok": True})


@bp.route("/me")
@login_required
def me():
    perms = sorted({p.code for r in current_user.roles for p in r.permissions})
    return jsonify({"user": current_user.to_dict(), "permissions": perms})


@bp.route("/csrf")
def csrf_token():
    return jsonify({"csrf_token": generate_csrf()})
