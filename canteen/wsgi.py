from pathlib import Path
import os
from alembic.config import Config
from alembic import command
from canteen import create_app, db

app = create_app()


def _enabled(name: str) -> bool:
    return os.environ.get(name, "false").lower() in ("1", "true", "yes")


def _upgrade_db() -> None:
    ini_path = Path(__file__).resolve().parents[1] / "alembic.ini"
    cfg = Config(str(ini_path))
    # Ensure script location is correct when running from packaged image
    cfg.set_main_option(
        "script_location",
        str(Path(__file__).resolve().parents[1] / "migrations"),
    )
    # Pass the engine URL resolved by Flask-SQLAlchemy (instance-relative sqlite)
    with app.app_context():
        url = db.engine.url.render_as_string(hide_password=False)
    cfg.set_main_option("sqlalchemy.url", url.replace("%", "%%"))
    command.upgrade(cfg, "head")
    app.logger.info("Database schema upgraded to head")


def _seed_db() -> None:
    from canteen.seed import seed_defaults

    with app.app_context():
        seed_defaults()


# Run migrations on startup only if INIT_DB=true
if _enabled("INIT_DB"):
    try:
        _upgrade_db()
    except Exception:  # noqa: BLE001
        # Avoid crashing Gunicorn workers on failed migration; log and continue
        app.logger.exception("Alembic upgrade failed during startup")

if _enabled("SEED_DB"):
    try:
        _seed_db()
    except Exception:  # noqa: BLE001
        app.logger.exception("Seeding failed during startup")

application = app
