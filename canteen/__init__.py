# canteen/__init__.py
from flask import Flask, jsonify
from flask_sqlalchemy import SQLAlchemy
from flask_login import LoginManager
from flask_bcrypt import Bcrypt
import os
from werkzeug.exceptions import HTTPException
from werkzeug.middleware.proxy_fix import ProxyFix

db = SQLAlchemy()
bcrypt = Bcrypt()
login_manager = LoginManager()


def _env_flag(name, default="0"):
    return os.environ.get(name, default).lower() in ("1", "true", "yes")


def _load_config(app, config_override=None):
    app.config["SECRET_KEY"] = os.environ.get(
        "SECRET_KEY", "canteen-secret-key"
    )
    app.config["ADMIN_PASSWORD"] = os.environ.get("ADMIN_PASSWORD", "admin123")
    app.config["HASH_PASSWORDS"] = _env_flag("HASH_PASSWORDS")

    # Database URI
    app.config["SQLALCHEMY_DATABASE_URI"] = os.environ.get(
        "DATABASE_URI", "sqlite:///canteen.db"
    )
    app.config["SQLALCHEMY_TRACK_MODIFICATIONS"] = False
    app.config["SESSION_COOKIE_SECURE"] = _env_flag("SESSION_COOKIE_SECURE")
    app.config["SESSION_COOKIE_HTTPONLY"] = True
    app.config["SESSION_COOKIE_SAMESITE"] = os.environ.get(
        "SESSION_COOKIE_SAMESITE",
        "Lax",
    )
    app.config["REMEMBER_COOKIE_SECURE"] = app.config["SESSION_COOKIE_SECURE"]
    app.config["MAX_CONTENT_LENGTH"] = int(
        os.environ.get("MAX_CONTENT_LENGTH", 1024 * 1024)
    )

    if config_override:
        app.config.update(config_override)

    db_uri = app.config["SQLALCHEMY_DATABASE_URI"]
    engine_opts = dict(app.config.get("SQLALCHEMY_ENGINE_OPTIONS", {}))
    connect_args = dict(engine_opts.get("connect_args", {}))
    if db_uri.startswith("postgresql"):
        # For Postgres (psycopg3), disable server-side prepares and pre-ping
        connect_args.setdefault("prepare_threshold", None)
        engine_opts.setdefault("pool_pre_ping", True)
    elif db_uri.startswith("sqlite"):
        # Concurrent writers wait for the lock instead of failing at once
        connect_args.setdefault("timeout", 30)
        connect_args.setdefault("check_same_thread", False)
    engine_opts["connect_args"] = connect_args
    app.config["SQLALCHEMY_ENGINE_OPTIONS"] = engine_opts


def create_app(config_override=None):
    """Создаёт приложение. config_override важнее переменных окружения."""
    app = Flask(
        __name__,
        static_folder=os.environ.get("STATIC_FOLDER", "static"),
        static_url_path="",
    )
    _load_config(app, config_override)
    app.logger.setLevel(os.environ.get("LOG_LEVEL", "INFO").upper())

    db.init_app(app)
    bcrypt.init_app(app)
    login_manager.init_app(app)

    from canteen.models import User
    from canteen.views import views

    app.register_blueprint(views)

    # Trust proxy headers (for correct scheme/host when behind reverse proxy)
    app.wsgi_app = ProxyFix(
        app.wsgi_app, x_for=1, x_proto=1, x_host=1, x_port=1
    )

    @login_manager.user_loader
    def load_user(user_id):
        try:
            return db.session.get(User, int(user_id))
        except (TypeError, ValueError):
            return None

    @login_manager.unauthorized_handler
    def unauthorized():
        return jsonify({"error": "login required"}), 401

    # Ensure DB session cleanup per request
    @app.teardown_request
    def _teardown_request(exception):  # noqa: ANN001
        """Rollback on exception and remove the session at request end."""
        try:
            if exception is not None:
                db.session.rollback()
        finally:
            db.session.remove()

    # Simple health endpoint
    @app.get("/health")
    def health():
        """Return health status for container orchestrator."""
        try:
            # simple DB check
            db.session.execute(db.select(1))
            return {"status": "ok"}, 200
        except Exception:  # noqa: BLE001
            app.logger.exception("Health check failed")
            return {"status": "degraded"}, 500

    # ----- Error handlers -----
    @app.errorhandler(HTTPException)
    def handle_http_error(error):
        if error.code is None or error.code < 400:
            # routing redirects
            return error
        return jsonify({"error": error.description}), error.code

    @app.errorhandler(500)
    def handle_500(error):  # noqa: ARG001
        return jsonify({"error": "server error"}), 500

    @app.cli.command("init-db")
    def init_db_command():
        """Создать все таблицы без миграций."""
        init_db(app)
        print("Database tables created")

    @app.cli.command("seed")
    def seed_command():
        """Заполнить пустые таблицы пользователями и меню по умолчанию."""
        from canteen.seed import seed_defaults

        users_added, items_added = seed_defaults()
        print(f"Seeded {users_added} users and {items_added} menu items")

    if not app.config["HASH_PASSWORDS"]:
        app.logger.warning(
            "Passwords are stored and compared in plain text; "
            "set HASH_PASSWORDS=1 to store bcrypt hashes"
        )

    return app


def init_db(app):
    with app.app_context():
        try:
            db.create_all()
        except Exception:  # noqa: BLE001
            app.logger.exception("Failed to create database tables")
            raise
