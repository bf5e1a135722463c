import os

from flask import Flask, jsonify
from werkzeug.exceptions import HTTPException

from config import Config, DEFAULT_SECRET_KEY
from portail.extensions import csrf, db, login_manager
from portail.logging_config import setup_logging
from portail.models import User


def create_app(config_object=Config):
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config_object)

    if not app.testing:
        setup_logging(app.config.get("LOG_DIR"), app.config.get("LOG_LEVEL", "INFO"))

    # Instance folder (sqlite db)
    os.makedirs(app.instance_path, exist_ok=True)

    if app.config.get("SECRET_KEY") == DEFAULT_SECRET_KEY and not app.debug:
        app.logger.warning(
            "SECRET_KEY par défaut détectée. Définis SECRET_KEY via variable d'environnement pour la prod."
        )

    # Extensions
    db.init_app(app)
    login_manager.init_app(app)
    csrf.init_app(app)

    @login_manager.user_loader
    def load_user(user_id):
        return db.session.get(User, int(user_id))

    @login_manager.unauthorized_handler
    def unauthorized():
        return jsonify({"error": "Authentification requise", "code": "unauthorized"}), 401

    # ------------------------------------------------------------------
    # Blueprints
    # ------------------------------------------------------------------
    from portail.auth.routes import bp as auth_bp
    from portail.public.routes import bp as public_bp
    from portail.formulaires.routes import bp as formulaires_bp
    from portail.inscriptions.routes import bp as inscriptions_bp
    from portail.contenus.routes import bp as contenus_bp
    from portail.admin.routes import bp as admin_bp

    app.register_blueprint(auth_bp)
    app.register_blueprint(public_bp)
    app.register_blueprint(formulaires_bp)
    app.register_blueprint(inscriptions_bp)
    app.register_blueprint(contenus_bp)
    app.register_blueprint(admin_bp)

    # ------------------------------------------------------------------
    # Erreurs JSON
    # ------------------------------------------------------------------
    from portail.http import StoreFailure, failure_response

    @app.errorhandler(StoreFailure)
    def _store_failure(e):
        return failure_response(e.result)

    from portail.contenus.services import ContentError
    from portail.formulaires.lifecycle import TransitionError
    from portail.formulaires.schema import SchemaError

    @app.errorhandler(SchemaError)
    @app.errorhandler(ContentError)
    def _invalid(e):
        return jsonify({"error": str(e), "code": "validation"}), 400

    @app.errorhandler(TransitionError)
    def _transition(e):
        return jsonify({"error": str(e), "code": "conflict"}), 409

    @app.errorhandler(HTTPException)
    def _http_error(e):
        return jsonify({"error": e.description, "code": e.name.lower().replace(" ", "_")}), e.code

    # ------------------------------------------------------------------
    # INIT DB + RBAC + sources de données
    # ------------------------------------------------------------------
    from portail.rbac import bootstrap_rbac
    from portail.stores import init_stores

    with app.app_context():
        db.create_all()
        bootstrap_rbac()
        app.logger.info("DB DIALECT = %s", db.engine.dialect.name)

    selector = init_stores(app)
    app.logger.info("Source de données active : %s", selector.name)

    return app
