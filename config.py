import os

BASE_DIR = os.path.abspath(os.path.dirname(__file__))
DEFAULT_SECRET_KEY = "Portaildinscriptionsistmachangerabsolumentenproduction"

# Dossier "data" optionnel (logs, exports...). Surchargeable par APP_DATA_DIR.
DEFAULT_DATA_DIR = os.path.join(BASE_DIR, "data")
DATA_DIR = os.environ.get("APP_DATA_DIR", DEFAULT_DATA_DIR)


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.environ.get(name, str(default)))
    except ValueError:
        return default


class Config:
    SECRET_KEY = os.environ.get(
        "SECRET_KEY",
        DEFAULT_SECRET_KEY,
    )
    MAX_CONTENT_LENGTH = _env_int("MAX_CONTENT_LENGTH", 10 * 1024 * 1024)

    # --- DB relationnelle ----------------------------------------------------
    # - Priorité aux variables d'environnement (Postgres)
    # - Fallback SQLite local si rien n'est défini
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    INSTANCE_DIR = os.path.join(BASE_DIR, "instance")

    DB_PATH = os.path.join(INSTANCE_DIR, "portail.db")
    _default_sqlite_uri = "sqlite:///" + DB_PATH.replace("\\", "/")

    _db_url = (
        os.environ.get("SQLALCHEMY_DATABASE_URI")
        or os.environ.get("DATABASE_URL")
        or _default_sqlite_uri
    )

    # Compat anciens formats (Heroku-like / Supabase)
    if _db_url.startswith("postgres://"):
        _db_url = _db_url.replace("postgres://", "postgresql://", 1)

    SQLALCHEMY_DATABASE_URI = _db_url

    # --- DB documents (MongoDB) ------------------------------------------------
    MONGO_URI = os.environ.get("MONGO_URI", "mongodb://localhost:27017/")
    MONGO_DB_NAME = os.environ.get("MONGO_DB_NAME", "istm")

    # Source de données active au démarrage : "documents" ou "relationnel".
    # Basculable à chaud depuis /admin/source-donnees (sans migration des données).
    DATA_BACKEND = os.environ.get("DATA_BACKEND", "relationnel")

    # --- Inscriptions ------------------------------------------------------------
    MATRICULE_PREFIX = os.environ.get("MATRICULE_PREFIX", "ISTM")
    FIELDS_PER_STEP = _env_int("FIELDS_PER_STEP", 6)
    SUBMISSIONS_PER_PAGE = _env_int("SUBMISSIONS_PER_PAGE", 20)
    # Validité (secondes) du lien de téléchargement de fiche remis au candidat
    FICHE_TOKEN_MAX_AGE = _env_int("FICHE_TOKEN_MAX_AGE", 7 * 24 * 3600)

    # Logo des fiches PDF (fallback texte si absent)
    PORTAIL_LOGO_PATH = os.environ.get("PORTAIL_LOGO_PATH", os.path.join(BASE_DIR, "static", "basec.png"))

    INSTITUTION_NOM = "Institut Supérieur des Techniques Médicales de Kinshasa"
    INSTITUTION_ADRESSE = (
        "Route Kimwenza, Vallée de la FUNA, Mont-Ngafula. Réf : en face du CNPP. "
        "Kinshasa, RDC | Tél: +243 977 127 160"
    )

    # --- Migration documents -> relationnel --------------------------------------
    MIGRATION_BATCH_SIZE = _env_int("MIGRATION_BATCH_SIZE", 100)

    # --- Logs ----------------------------------------------------------------------
    LOG_DIR = os.environ.get("LOG_DIR", os.path.join(DATA_DIR, "logs"))
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")


class TestConfig(Config):
    TESTING = True
    SECRET_KEY = "tests"
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    WTF_CSRF_ENABLED = False
    DATA_BACKEND = "relationnel"
    MONGO_URI = ""
    LOG_DIR = None
    PORTAIL_LOGO_PATH = ""
