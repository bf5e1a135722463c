from flask import Blueprint, current_app, jsonify
from flask_login import current_user, login_required

from portail.extensions import db
from portail.http import json_body, validation_error
from portail.models import Permission, Role, User
from portail.rbac import require_perm
from portail.stores.selector import BACKEND_LABELS

bp = Blueprint("admin", __name__, url_prefix="/admin")


def _selector():
    return current_app.extensions["portail.stores"]


@bp.route("/users", methods=["GET"])
@login_required
@require_perm("admin:users")
def users():
    users = User.query.order_by(User.nom).all()
    roles = Role.query.order_by(Role.code).all()
    return jsonify({
        "users": [u.to_dict() for u in users],
        "roles": [{"code": r.code, "label": r.label} for r in roles],
    })


@bp.route("/users", methods=["POST"])
@login_required
@require_perm("admin:users")
def create_user():
    data = json_body()
    email = (data.get("email") or "").strip().lower()
    nom = (data.get("nom") or "").strip()
    password = data.get("password") or ""
    role_code = (data.get("role") or "").strip()

    errors = {}
    if not email:
        errors["email"] = "Champ obligatoire"
    if not password:
        errors["password"] = "Champ obligatoire"
    role = Role.query.filter_by(code=role_code).first() if role_code else None
    if role is None:
        errors["role"] = "Rôle inconnu"
    if errors:
        return validation_error(errors, "Champs obligatoires manquants.")

    if User.query.filter_by(email=email).first():
        return jsonify({"error": "Un utilisateur avec cet email existe déjà.", "code": "duplicate"}), 409

    u = User(email=email, nom=nom or "Utilisateur", role=role.code)
    u.set_password(password)
    u.roles.append(role)
    db.session.add(u)
    db.session.commit()
    current_app.logger.info("Utilisateur %s créé par %s", email, current_user.email)
    return jsonify({"user": u.to_dict()}), 201


@bp.route("/users/<int:user_id>", methods=["PATCH"])
@login_required
@require_perm("admin:users")
def update_user(user_id):
    u = db.session.get(User, user_id)
    if u is None:
        return jsonify({"error": "Utilisateur introuvable", "code": "not_found"}), 404
    data = json_body()

    if "nom" in data:
        u.nom = (data.get("nom") or "").strip() or u.nom
    if "actif" in data:
        if u.id == current_user.id and not data["actif"]:
            return jsonify({"error": "Impossible de désactiver son propre compte.", "code": "conflict"}), 409
        u.is_enabled = bool(data["actif"])
    if data.get("password"):
        u.set_password(data["password"])
    if "role" in data:
        role = Role.query.filter_by(code=(data.get("role") or "").strip()).first()
        if role is None:
            return validation_error({"role": "Rôle inconnu"})
        u.role = role.code
        u.roles = [role]

    db.session.commit()
    return jsonify({"user": u.to_dict()})


@bp.route("/users/<int:user_id>", methods=["DELETE"])
@login_required
@require_perm("admin:users")
def delete_user(user_id):
    u = db.session.get(User, user_id)
    if u is None:
        return jsonify({"error": "Utilisateur introuvable", "code": "not_found"}), 404
    if u.id == current_user.id:
        return jsonify({"error": "Impossible de supprimer son propre compte.", "code": "conflict"}), 409
    db.session.delete(u)
    db.session.commit()
    return jsonify({"ok": True})


# ------------------------------------------------------------------
# Droits (RBAC) : permissions par rôle
# ------------------------------------------------------------------
def _role_dict(role: Role) -> dict:
    return {"code": role.code, "label": role.label, "perms": sorted(p.code for p in role.permissions)}


@bp.route("/droits", methods=["GET"])
@login_required
@require_perm("admin:rbac")
def droits():
    roles = Role.query.order_by(Role.code).all()
    perms = Permission.query.order_by(Permission.category, Permission.code).all()
    return jsonify({
        "roles": [_role_dict(r) for r in roles],
        "permissions": [{"code": p.code, "label": p.label, "category": p.category} for p in perms],
    })


@bp.route("/roles/<role_code>/permissions", methods=["GET"])
@login_required
@require_perm("admin:rbac")
def get_role_perms(role_code):
    role = Role.query.filter_by(code=role_code).first()
    if role is None:
        return jsonify({"error": "Rôle introuvable", "code": "not_found"}), 404
    return jsonify({"role": _role_dict(role)})


@bp.route("/roles/<role_code>/permissions", methods=["POST"])
@login_required
@require_perm("admin:rbac")
def save_role_perms(role_code):
    role = Role.query.filter_by(code=role_code).first()
    if role is None:
        return jsonify({"error": "Rôle introuvable", "code": "not_found"}), 404

    codes = json_body().get("perms")
    if not isinstance(codes, list):
        return validation_error({"perms": "Liste de permissions attendue"})
    codes = {str(c).strip() for c in codes}
    known = {p.code: p for p in Permission.query.filter(Permission.code.in_(sorted(codes))).all()}
    unknown = sorted(codes - set(known))
    if unknown:
        return validation_error({"perms": f"Permissions inconnues : {', '.join(unknown)}"})

    # Le rôle porteur de la gestion des droits ne peut pas se la retirer
    if role in current_user.roles and "admin:rbac" not in codes:
        return jsonify({"error": "Impossible de retirer la gestion des droits à son propre rôle.", "code": "conflict"}), 409

    role.permissions = [known[c] for c in sorted(known)]
    db.session.commit()
    current_app.logger.info("Permissions du rôle %s mises à jour par %s", role.code, current_user.email)
    return jsonify({"role": _role_dict(role)})


@bp.route("/source-donnees", methods=["GET"])
@login_required
@require_perm("admin:source_donnees")
def data_source():
    selector = _selector()
    return jsonify({
        "active": selector.name,
        "available": [{"code": b, "label": BACKEND_LABELS[b]} for b in selector.available()],
    })


@bp.route("/source-donnees", methods=["POST"])
@login_required
@require_perm("admin:source_donnees")
def switch_data_source():
    name = (json_body().get("backend") or "").strip()
    selector = _selector()
    if name not in selector.available():
        return validation_error({"backend": f"Source de données indisponible : {name or '<vide>'}"})

    try:
        store = selector.switch(name)
    except Exception as e:
        current_app.logger.exception("Bascule vers %s impossible", name)
        return jsonify({"error": f"Bascule impossible : {e}", "code": "backend", "active": selector.name}), 503

    current_app.logger.info("Source de données basculée sur %s par %s", name, current_user.email)
    ping = store.ping()
    return jsonify({"active": selector.name, "reachable": ping.ok, "error": ping.error})
