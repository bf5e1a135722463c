from __future__ import annotations

import os
from functools import wraps
from typing import Iterable

from flask import abort, current_app
from flask_login import current_user

from portail.extensions import db
from portail.models import Permission, Role, User


# Liste canonique des permissions du portail (codes stables) + libellés humains.
DEFAULT_PERMS: list[tuple[str, str]] = [
    # Tableau de bord
    ("dashboard:view", "Accéder au tableau de bord des inscriptions"),

    # Formulaires
    ("formulaires:view", "Voir les formulaires"),
    ("formulaires:edit", "Créer / modifier / publier un formulaire"),
    ("formulaires:delete", "Supprimer un formulaire"),
    ("formulaires:export", "Exporter les réponses d'un formulaire (CSV)"),

    # Inscriptions
    ("inscriptions:view", "Voir les inscriptions"),
    ("inscriptions:edit", "Approuver / rejeter une inscription"),
    ("inscriptions:delete", "Supprimer une inscription"),
    ("inscriptions:export", "Exporter les inscriptions (CSV / Excel / PDF)"),

    # Contenus (actualités, événements, forum, notifications)
    ("contenus:view", "Voir les contenus (y compris brouillons)"),
    ("contenus:edit", "Créer / modifier les contenus"),
    ("contenus:delete", "Supprimer les contenus"),

    # Administration
    ("admin:users", "Gérer les utilisateurs"),
    ("admin:rbac", "Gérer les droits (RBAC)"),
    ("admin:source_donnees", "Changer la source de données active"),
]


ROLE_TEMPLATES: dict[str, dict[str, Iterable[str]]] = {
    # Administrateur technique : tout
    "admin_tech": {
        "label": "Administrateur technique",
        "perms": [p for (p, _) in DEFAULT_PERMS],
    },

    # Direction : pilotage complet sauf la technique
    "direction": {
        "label": "Direction",
        "perms": [
            p for (p, _) in DEFAULT_PERMS
            if p not in ("admin:rbac", "admin:source_donnees")
        ],
    },

    # Secrétariat : traitement des dossiers
    "secretariat": {
        "label": "Secrétariat",
        "perms": [
            "dashboard:view",
            "formulaires:view", "formulaires:export",
            "inscriptions:view", "inscriptions:edit", "inscriptions:export",
        ],
    },

    # Éditeur : site public uniquement
    "editeur": {
        "label": "Éditeur de contenus",
        "perms": ["contenus:view", "contenus:edit", "contenus:delete"],
    },
}


def _category_from_code(code: str) -> str:
    """Retourne une catégorie lisible depuis un code 'module:action'."""
    module = (code.split(":", 1)[0] if ":" in code else code).strip()
    mapping = {
        "dashboard": "Tableau de bord",
        "formulaires": "Formulaires",
        "inscriptions": "Inscriptions",
        "contenus": "Contenus",
        "admin": "Admin",
    }
    return mapping.get(module, module.capitalize())


def bootstrap_rbac() -> None:
    """Initialise RBAC (permissions + rôles) de manière idempotente."""

    # --- Permissions ---
    existing = {p.code: p for p in Permission.query.all()}
    changed = False

    for code, label in DEFAULT_PERMS:
        if code not in existing:
            db.session.add(Permission(code=code, label=label, category=_category_from_code(code)))
            changed = True
        else:
            p = existing[code]
            new_cat = _category_from_code(code)
            if p.label != label:
                p.label = label
                changed = True
            if p.category != new_cat:
                p.category = new_cat
                changed = True

    if changed:
        db.session.commit()

    perms_by_code = {p.code: p for p in Permission.query.all()}

    # --- Rôles ---
    # Template appliqué à la création, ou forcé avec RBAC_APPLY_TEMPLATES=1.
    # Sinon les permissions modifiées depuis l'admin sont conservées.
    apply_templates = os.getenv("RBAC_APPLY_TEMPLATES", "").lower() in ("1", "true", "yes")

    for role_code, cfg in ROLE_TEMPLATES.items():
        role = Role.query.filter_by(code=role_code).first()
        created = False
        if not role:
            role = Role(code=role_code, label=cfg.get("label") or role_code)
            db.session.add(role)
            db.session.flush()
            created = True

        if created or apply_templates:
            desired = set(cfg.get("perms", []))
            role.permissions = [perms_by_code[c] for c in sorted(desired) if c in perms_by_code]

    db.session.commit()

    # Rattrapage : un utilisateur sans rôle RBAC est aligné sur User.role
    for u in User.query.all():
        if not u.roles:
            role = Role.query.filter_by(code=(u.role or "secretariat").strip()).first()
            if role:
                u.roles.append(role)
                current_app.logger.info("RBAC: rôle %s attribué à %s", role.code, u.email)

    db.session.commit()


def require_perm(code: str):
    """Décorateur: exige une permission RBAC (401 si anonyme, 403 sinon)."""

    def decorator(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            if not current_user.is_authenticated:
                abort(401)
            if not current_user.has_perm(code):
                abort(403)
            return fn(*args, **kwargs)

        return wrapper

    return decorator
