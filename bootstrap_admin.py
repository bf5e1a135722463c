import argparse
import sys

from sqlalchemy import inspect

from portail import create_app
from portail.extensions import db
from portail.logging_config import mask_url
from portail.models import Role, User
from portail.rbac import ROLE_TEMPLATES


def missing_tables() -> list[str]:
    """Tables déclarées par le portail mais absentes de la base cible."""
    present = set(inspect(db.engine).get_table_names())
    return sorted(set(db.metadata.tables) - present)


def ensure_account(email: str, password: str, role_code: str, nom: str) -> tuple[User, bool]:
    """Crée ou répare un compte du back-office.

    Un compte existant est réactivé, reçoit le nouveau mot de passe et le rôle
    demandé devient son rôle principal.
    """
    email = (email or "").strip().lower()
    if "@" not in email:
        raise ValueError(f"Adresse email invalide : {email or '<vide>'}")
    if len(password or "") < 8:
        raise ValueError("Mot de passe trop court (8 caractères minimum)")

    role = Role.query.filter_by(code=role_code).one_or_none()
    if role is None:
        raise ValueError(f"Rôle inconnu : {role_code}")

    account = User.query.filter_by(email=email).one_or_none()
    is_new = account is None
    if is_new:
        account = User(email=email, nom=nom or "Administrateur")
        db.session.add(account)

    account.set_password(password)
    account.is_enabled = True
    account.role = role.code
    if role not in account.roles:
        account.roles.append(role)
    db.session.commit()
    return account, is_new


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Crée ou répare un compte du back-office du portail.")
    parser.add_argument("--email", default="admin@istm.cd")
    parser.add_argument("--password", required=True)
    parser.add_argument("--role", default="admin_tech", choices=sorted(ROLE_TEMPLATES))
    parser.add_argument("--nom", default="Administrateur")
    args = parser.parse_args(argv)

    app = create_app()
    with app.app_context():
        print(f"Base : {mask_url(str(db.engine.url))} ({db.engine.dialect.name})")
        absent = missing_tables()
        if absent:
            print("Base incomplète, tables manquantes : " + ", ".join(absent), file=sys.stderr)
            return 1
        try:
            account, is_new = ensure_account(args.email, args.password, args.role, args.nom)
        except ValueError as e:
            print(f"Refusé : {e}", file=sys.stderr)
            return 1

        print("Compte créé" if is_new else "Compte réparé", ":", account.email)
        print("Rôles :", ", ".join(account.role_codes))
    return 0


if __name__ == "__main__":
    sys.exit(main())
