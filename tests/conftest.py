# tests/conftest.py

from unittest.mock import patch

import pytest

from config import TestingConfig
from igcache import create_app, db
from igcache.context import get_context
from tests.packages import FakeRegistries


# --- Use 'function' scope for better isolation ---
@pytest.fixture(scope='function')
def app(tmp_path):
    """
    Function-scoped test application on a throwaway SQLite file.

    A file (not :memory:) so that worker threads get their own connections
    to the same database.
    """
    class _TestConfig(TestingConfig):
        SQLALCHEMY_DATABASE_URI = f"sqlite:///{tmp_path / 'test.db'}"

    app = create_app(_TestConfig)
    yield app

    get_context(app).shutdown()
    with app.app_context():
        db.session.remove()
        db.drop_all()
        db.engine.dispose()


@pytest.fixture(scope='function')
def client(app):
    return app.test_client()


@pytest.fixture(scope='function')
def ctx(app):
    """The IgCacheContext owned by the test app."""
    return get_context(app)


@pytest.fixture(scope='function')
def registries(app):
    """
    Stub registry network for the three registries of TestingConfig.

    Patches requests.get in the registry module for the duration of a test.
    """
    fake = FakeRegistries(*app.config['FHIR_PACKAGE_REGISTRIES'])
    with patch('igcache.registry.requests.get', side_effect=fake.get):
        yield fake
