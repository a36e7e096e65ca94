# backend/receivables/__init__.py
import logging

from flask import Flask

from .config import Config
from .extensions import db, migrate


def create_app(config_overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    logging.basicConfig(
        level=app.config.get("LOG_LEVEL", "INFO"),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    app.logger.setLevel(app.config.get("LOG_LEVEL", "INFO"))

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # One stats cache per app; settlement writes invalidate through it
    from .services.cache_service import CacheCoordinator, StatsCache
    app.extensions["stats_cache"] = CacheCoordinator(StatsCache(
        default_ttl_seconds=app.config["STATS_CACHE_TTL_SECONDS"],
        max_entries=app.config["STATS_CACHE_MAX_ENTRIES"],
    ))

    # Register blueprints
    from .routes.receipts import receipts_bp
    from .routes.debts import debts_bp
    from .routes.cash import cash_bp

    app.register_blueprint(receipts_bp)
    app.register_blueprint(debts_bp)
    app.register_blueprint(cash_bp)

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
