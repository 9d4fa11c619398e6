"""Pytest fixtures shared across the test suite."""

import pytest
from flask import Flask

from db import utils as db_utils
from db.store import LibraryStore, ensure_schema
from library.models import LibraryEntry
from routes import duplicates as routes_duplicates
from web.app_factory import create_app


@pytest.fixture(autouse=True)
def reset_shared_state():
    """Drop cached engines and review sessions between tests."""

    db_utils.set_fallback_engine(None)
    routes_duplicates.reset_workflows()
    yield
    db_utils.set_fallback_engine(None)
    routes_duplicates.reset_workflows()


@pytest.fixture
def make_entry():
    def _make(entry_id, title, platform="Steam", **fields):
        return LibraryEntry(id=entry_id, title=title, platform=platform, **fields)

    return _make


@pytest.fixture
def engine(tmp_path):
    engine = db_utils.build_engine_from_dsn(f"sqlite:///{tmp_path / 'library.db'}")
    ensure_schema(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def store(engine):
    return LibraryStore(engine, "user-1")


@pytest.fixture
def platform_libraries():
    """Platform rows served to the app, keyed by platform name."""

    return {}


@pytest.fixture
def app(engine, platform_libraries):
    def _fetchers(user_id):
        return {
            platform: (lambda rows=rows: list(rows))
            for platform, rows in platform_libraries.items()
        }

    flask_app = create_app(
        Flask("library_test"),
        engine=engine,
        platform_fetchers=_fetchers,
        setup_logging=False,
    )
    flask_app.config.update(TESTING=True)
    return flask_app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def logged_in_client(client):
    with client.session_transaction() as sess:
        sess["user_id"] = "user-1"
    return client
