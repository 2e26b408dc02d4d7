# /app/__init__.py
import os
import json
import logging
from flask import Flask
from dotenv import load_dotenv
from config import ProductionConfig
from services.database import init_db_command, create_db_manager, init_db
from services.config_service import ConfigManager
from services.job_service import abort_stale_jobs
from pathlib import Path
from app.routes import main_routes_bp, fabric_pool_bp, inventory_import_bp, pricing_grids_bp, client_import_bp


load_dotenv()


def init_sentry():
    """Initialize Sentry error tracking if SENTRY_DSN is configured."""
    sentry_dsn = os.getenv("SENTRY_DSN")
    if not sentry_dsn:
        return

    try:
        import sentry_sdk
        from sentry_sdk.integrations.flask import FlaskIntegration
        from sentry_sdk.integrations.logging import LoggingIntegration

        environment = os.getenv("FLASK_ENV") or os.getenv("ENV") or "development"

        sentry_sdk.init(
            dsn=sentry_dsn,
            environment=environment,
            integrations=[
                FlaskIntegration(),
                LoggingIntegration(
                    level=logging.INFO,        # breadcrumbs
                    event_level=logging.ERROR  # events
                ),
            ],
            traces_sample_rate=float(os.getenv("SENTRY_TRACES_SAMPLE_RATE", "0.1")),
            send_default_pii=False,
            attach_stacktrace=True,
            debug=os.getenv("SENTRY_DEBUG", "0") == "1",
        )
        logging.info(f"Sentry initialized for environment: {environment}")
    except ImportError:
        logging.warning("sentry-sdk not installed, error tracking disabled")


def create_app(config_name: str = ""):
    from flask import g

    init_sentry()

    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(ProductionConfig)

    app.secret_key = os.getenv("FLASK_SECRET", os.urandom(24))

    if config_name:
        app.config.from_object(f"config.{config_name}Config")

    # Merge JSON config
    app.config.update(ConfigManager().config)

    project_root = Path(__file__).resolve().parent.parent
    instance_root = Path(app.instance_path)
    instance_root.mkdir(parents=True, exist_ok=True)
    app.config["PROJECT_ROOT"] = str(project_root)
    app.config["INSTANCE_ROOT"] = str(instance_root)

    def _set_path(key: str, default_rel: str | Path, *, is_file: bool = False):
        """
        Resolve a config path under the instance folder and make sure its directory exists.
        Absolute paths and SQLite's ":memory:" are used as given.
        """
        val = app.config.get(key)
        if val == ":memory:":
            return val

        p = Path(val) if val else Path(default_rel)
        if not p.is_absolute():
            p = (instance_root / p).resolve()

        (p.parent if is_file else p).mkdir(parents=True, exist_ok=True)
        app.config[key] = str(p)
        return p

    _set_path("database", "curtain_data.db", is_file=True)
    _set_path("upload_folder", "uploads", is_file=False)

    logging.basicConfig(
        level=logging.DEBUG if app.config.get("DEBUG") else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        force=True,  # prevent duplicate handlers in some reload scenarios
    )
    logging.debug("upload_folder=%s  database=%s", app.config["upload_folder"], app.config["database"])

    # Users from env
    app.config["USERS"] = json.loads(os.getenv("USERS", "{}"))

    app.extensions["db_manager"] = create_db_manager(app.config["database"])

    @app.before_request
    def before_request():
        g.db = create_db_manager(app.config["database"])

    @app.teardown_request
    def teardown_request(_):
        db = getattr(g, "db", None)
        if db is not None:
            db.close()

    # Blueprints
    app.register_blueprint(main_routes_bp)
    app.register_blueprint(fabric_pool_bp)
    app.register_blueprint(inventory_import_bp)
    app.register_blueprint(pricing_grids_bp)
    app.register_blueprint(client_import_bp)

    # CLI
    app.cli.add_command(init_db_command)  # type: ignore

    init_db(app.extensions["db_manager"])
    abort_stale_jobs(app.extensions["db_manager"])

    return app
