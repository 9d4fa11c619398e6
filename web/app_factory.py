"""Flask application factory, logging setup and database wiring."""
from __future__ import annotations

import logging
import logging.config
import os
from pathlib import Path
from typing import Any, Callable, Mapping

from flask import Flask

from config import (
    APP_SECRET_KEY,
    DB_CONNECT_TIMEOUT_SECONDS,
    DB_DSN,
    LOG_FILE,
    PLATFORM_EXPORT_DIR,
)
from db import utils as db_utils
from db.store import ensure_schema
from platforms.exports import export_fetchers
from routes import duplicates as routes_duplicates

logger = logging.getLogger(__name__)

PlatformFetchersFactory = Callable[[str], Mapping[str, Callable[[], Any]]]


def _determine_log_level(flask_app: Flask) -> int:
    if flask_app.debug:
        return logging.DEBUG
    if os.environ.get('FLASK_DEBUG', '').lower() in {'1', 'true', 'yes', 'on'}:
        return logging.DEBUG
    return logging.INFO


def configure_logging(flask_app: Flask, log_file: str = LOG_FILE) -> None:
    log_level = _determine_log_level(flask_app)
    log_path = Path(log_file)
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
    except OSError:
        pass

    for handler in list(flask_app.logger.handlers):
        flask_app.logger.removeHandler(handler)

    logging.config.dictConfig(
        {
            'version': 1,
            'disable_existing_loggers': False,
            'formatters': {
                'standard': {
                    'format': '%(asctime)s %(levelname)s [%(name)s] %(message)s',
                    'datefmt': '%Y-%m-%d %H:%M:%S',
                }
            },
            'handlers': {
                'console': {
                    'class': 'logging.StreamHandler',
                    'formatter': 'standard',
                    'level': log_level,
                    'stream': 'ext://sys.stdout',
                },
                'file': {
                    'class': 'logging.handlers.RotatingFileHandler',
                    'formatter': 'standard',
                    'level': logging.DEBUG,
                    'filename': os.fspath(log_path),
                    'maxBytes': 5 * 1024 * 1024,
                    'backupCount': 5,
                    'encoding': 'utf-8',
                },
            },
            'root': {
                'level': log_level,
                'handlers': ['console', 'file'],
            },
        }
    )

    flask_app.logger = logging.getLogger(flask_app.import_name)
    flask_app.logger.setLevel(log_level)


def _default_engine() -> db_utils.DatabaseEngine:
    return db_utils.build_engine_from_dsn(DB_DSN, timeout=DB_CONNECT_TIMEOUT_SECONDS)


def _default_platform_fetchers(user_id: str) -> Mapping[str, Callable[[], Any]]:
    return export_fetchers(PLATFORM_EXPORT_DIR, user_id)


def create_app(
    flask_app: Flask | None = None,
    *,
    engine: db_utils.DatabaseEngine | None = None,
    platform_fetchers: PlatformFetchersFactory | None = None,
    achievement_lookups: Callable[[str], Mapping[str, Callable[[Any], tuple[int, int]]]] | None = None,
    setup_logging: bool = True,
) -> Flask:
    """Return a configured Flask application instance.

    ``engine`` defaults to one built from ``DB_DSN``; its tables are created
    when missing.  ``platform_fetchers`` maps a user id to that user's
    platform fetchers and defaults to the exported library files.
    """

    if flask_app is None:
        flask_app = Flask(__name__)
    flask_app.secret_key = APP_SECRET_KEY

    if setup_logging:
        configure_logging(flask_app)

    if engine is None:
        engine = _default_engine()
    ensure_schema(engine)
    db_utils.set_fallback_engine(engine)

    routes_duplicates.configure({
        'get_engine': lambda: db_utils.get_engine(lambda: engine),
        'get_platform_fetchers': platform_fetchers or _default_platform_fetchers,
        'get_achievement_lookups': achievement_lookups,
    })
    if 'duplicates' not in flask_app.blueprints:
        flask_app.register_blueprint(routes_duplicates.duplicates_blueprint)

    logger.info("Application configured with %s database", engine.dialect_name)
    return flask_app
