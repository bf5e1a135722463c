from datetime import datetime

from werkzeug.security import check_password_hash, generate_password_hash

from portail.extensions import db


# ---------- UTILISATEURS (back-office) ----------
class User(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(180), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(255), nullable=False)
    nom = db.Column(db.String(120), nullable=False, default="Utilisateur")
    role = db.Column(db.String(40), nullable=False, default="secretariat")
    is_enabled = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    # Flask-Login
    @property
    def is_authenticated(self):
        return True

    @property
    def is_active(self):
        return bool(self.is_enabled)

    @property
    def is_anonymous(self):
        return False

    def get_id(self):
        return str(self.id)

    def set_password(self, password: str):
        self.password_hash = generate_password_hash(password)

    def check_password(self, password: str) -> bool:
        return check_password_hash(self.password_hash, password)

    def has_perm(self, code: str) -> bool:
        codes: set[str] = set()
        for role in self.roles or []:
            for p in role.permissions or []:
                codes.add(p.code)
        return code in codes

    @property
    def role_codes(self) -> list[str]:
        return sorted(r.code for r in self.roles or [])

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "email": self.email,
            "nom": self.nom,
            "roles": self.role_codes,
            "actif": bool(self.is_enabled),
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


# =========================================================
# RBAC (Rôles & Permissions)
# ---------------------------------------------------------
# User.role reste le rôle "par défaut" utilisé au bootstrap ; les droits
# effectifs passent par User.roles -> Role.permissions.

user_roles = db.Table(
    "user_roles",
    db.Column("user_id", db.Integer, db.ForeignKey("user.id", ondelete="CASCADE"), primary_key=True),
    db.Column("role_id", db.Integer, db.ForeignKey("role.id", ondelete="CASCADE"), primary_key=True),
)

role_permissions = db.Table(
    "role_permissions",
    db.Column("role_id", db.Integer, db.ForeignKey("role.id", ondelete="CASCADE"), primary_key=True),
    db.Column("permission_id", db.Integer, db.ForeignKey("permission.id", ondelete="CASCADE"), primary_key=True),
)


class Role(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(60), unique=True, nullable=False, index=True)  # ex: "secretariat"
    label = db.Column(db.String(120), nullable=False, default="Rôle")

    permissions = db.relationship(
        "Permission",
        secondary=role_permissions,
        lazy="subquery",
        backref=db.backref("roles", lazy=True),
    )

    def __repr__(self) -> str:
        return f"<Role {self.code}>"


class Permission(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(120), unique=True, nullable=False, index=True)  # ex: "inscriptions:export"
    label = db.Column(db.String(200), nullable=False, default="Permission")
    category = db.Column(db.String(60), nullable=True, index=True)

    def __repr__(self) -> str:
        return f"<Perm {self.code}>"


User.roles = db.relationship(
    "Role",
    secondary=user_roles,
    lazy="subquery",
    backref=db.backref("users", lazy=True),
)


# ---------- FORMULAIRES / INSCRIPTIONS ----------
class FormRow(db.Model):
    __tablename__ = "forms"

    id = db.Column(db.String(64), primary_key=True)
    title = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=False, default="")
    fields = db.Column(db.JSON, nullable=False, default=list)
    filieres = db.Column(db.JSON, nullable=False, default=list)
    status = db.Column(db.String(20), nullable=False, default="draft", index=True)
    submissions_count = db.Column(db.Integer, nullable=False, default=0)
    created_by = db.Column(db.String(120), nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, index=True)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    submissions = db.relationship(
        "SubmissionRow",
        backref="form",
        lazy=True,
        cascade="all, delete-orphan",
    )


class SubmissionRow(db.Model):
    __tablename__ = "form_submissions"
    __table_args__ = (
        # NULL n'est jamais égal à NULL : les inscriptions sans identité échappent à la contrainte
        db.UniqueConstraint("form_id", "identity_key", name="uq_submission_identity"),
    )

    id = db.Column(db.String(64), primary_key=True)
    form_id = db.Column(db.String(64), db.ForeignKey("forms.id", ondelete="CASCADE"), nullable=False, index=True)
    matricule = db.Column(db.String(32), unique=True, nullable=False, index=True)
    submission_data = db.Column(db.JSON, nullable=False, default=dict)
    filiere_id = db.Column(db.String(64), nullable=True)
    filiere_name = db.Column(db.String(255), nullable=True)
    mention = db.Column(db.String(255), nullable=True)
    filiere_id_2 = db.Column(db.String(64), nullable=True)
    filiere_name_2 = db.Column(db.String(255), nullable=True)
    mention_2 = db.Column(db.String(255), nullable=True)
    status = db.Column(db.String(20), nullable=False, default="pending", index=True)
    identity_key = db.Column(db.String(64), nullable=True)
    submitted_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, index=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    history = db.relationship(
        "StatusLogRow",
        backref="submission",
        lazy=True,
        order_by="StatusLogRow.id",
        cascade="all, delete-orphan",
    )


class StatusLogRow(db.Model):
    __tablename__ = "submission_status_log"

    id = db.Column(db.Integer, primary_key=True)
    submission_id = db.Column(
        db.String(64), db.ForeignKey("form_submissions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    from_status = db.Column(db.String(20), nullable=False)
    to_status = db.Column(db.String(20), nullable=False)
    changed_by = db.Column(db.String(120), nullable=True)
    changed_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)


# ---------- CONTENUS (site public) ----------
class EventRow(db.Model):
    __tablename__ = "events"

    id = db.Column(db.String(64), primary_key=True)
    type = db.Column(db.String(20), nullable=False, default="event")
    title = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    date = db.Column(db.String(20), nullable=True)
    time = db.Column(db.String(20), nullable=True)
    location = db.Column(db.String(255), nullable=True)
    instructor = db.Column(db.String(255), nullable=True)
    participants = db.Column(db.Integer, nullable=False, default=0)
    max_participants = db.Column(db.Integer, nullable=True)
    status = db.Column(db.String(20), nullable=False, default="draft")
    created_by = db.Column(db.String(120), nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)


class ContentItemRow(db.Model):
    __tablename__ = "content_items"

    id = db.Column(db.String(64), primary_key=True)
    type = db.Column(db.String(20), nullable=False, default="article")
    title = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    url = db.Column(db.String(500), nullable=True)
    thumbnail = db.Column(db.String(500), nullable=True)
    author = db.Column(db.String(120), nullable=True)
    date = db.Column(db.String(40), nullable=True)
    likes = db.Column(db.Integer, nullable=False, default=0)
    views = db.Column(db.Integer, nullable=False, default=0)
    comments = db.Column(db.JSON, nullable=False, default=list)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)


class ForumPostRow(db.Model):
    __tablename__ = "forum_posts"

    id = db.Column(db.String(64), primary_key=True)
    title = db.Column(db.String(255), nullable=False)
    content = db.Column(db.Text, nullable=True)
    author = db.Column(db.String(120), nullable=True)
    date = db.Column(db.String(40), nullable=True)
    category = db.Column(db.String(80), nullable=True)
    replies = db.Column(db.JSON, nullable=False, default=list)
    likes = db.Column(db.Integer, nullable=False, default=0)
    views = db.Column(db.Integer, nullable=False, default=0)
    is_answered = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)


class NotificationRow(db.Model):
    __tablename__ = "notifications"

    id = db.Column(db.String(64), primary_key=True)
    type = db.Column(db.String(20), nullable=False, default="news")
    title = db.Column(db.String(255), nullable=False)
    message = db.Column(db.Text, nullable=True)
    priority = db.Column(db.String(10), nullable=False, default="medium")
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_by = db.Column(db.String(120), nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)


CMS_MODELS = {
    "events": EventRow,
    "content_items": ContentItemRow,
    "forum_posts": ForumPostRow,
    "notifications": NotificationRow,
}
