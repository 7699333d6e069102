# backend/o2c/__init__.py
from flask import Flask

from .config import Config
from .extensions import db, migrate


def create_app(config_overrides: dict | None = None, authorization_gate=None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    # Overrides must land before db.init_app(); the engine is built from config there
    if config_overrides:
        app.config.update(config_overrides)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Authorization gate consulted by every mutating service
    from .services.permission_service import set_gate
    set_gate(app, authorization_gate)

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
