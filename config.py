# config.py
# Configuration settings for the IG package cache service

import os

# Determine the base directory of the application (where config.py lives)
basedir = os.path.abspath(os.path.dirname(__file__))
instance_path = os.path.join(basedir, 'instance')


def _registries_from_env(default):
    value = os.environ.get('FHIR_PACKAGE_REGISTRIES')
    if not value:
        return list(default)
    return [url.strip() for url in value.split(',') if url.strip()]


class Config:
    """Base configuration class."""
    # Database configuration: PostgreSQL in production, SQLite file by default
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or \
        'sqlite:///' + os.path.join(instance_path, 'igcache.db')
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {'pool_pre_ping': True}

    # Registries tried (concurrently) when a package is not cached
    FHIR_PACKAGE_REGISTRIES = _registries_from_env(
        ['https://packages.fhir.org', 'https://packages2.fhir.org/packages'])
    REGISTRY_CONNECT_TIMEOUT = float(os.environ.get('REGISTRY_CONNECT_TIMEOUT', 5))
    REGISTRY_READ_TIMEOUT = float(os.environ.get('REGISTRY_READ_TIMEOUT', 60))

    # Worker pools
    ARCHIVE_PARSE_WORKERS = int(os.environ.get('ARCHIVE_PARSE_WORKERS', 2))
    DEPENDENCY_FETCH_WORKERS = int(os.environ.get('DEPENDENCY_FETCH_WORKERS', 8))

    # Uploaded archives up to 50 MB
    MAX_CONTENT_LENGTH = int(os.environ.get('MAX_CONTENT_LENGTH', 50 * 1024 * 1024))

    # Leave unset to disable API key checks
    API_KEY = os.environ.get('API_KEY')

    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')
    LOG_FILE = os.environ.get('LOG_FILE')

    SWAGGER = {
        'title': 'FHIR IG Package Cache API',
        'uiversion': 3,
        'version': '1.0.0',
        'description': 'Registration, loading and dependency inspection of FHIR Implementation Guide packages.',
        'securityDefinitions': {
            'ApiKeyAuth': {
                'type': 'apiKey',
                'name': 'X-API-Key',
                'in': 'header',
                'description': 'API Key for accessing protected endpoints.'
            }
        },
        'specs_route': '/apidocs/'
    }


class TestingConfig(Config):
    """Configuration specific to testing."""
    TESTING = True

    # Tests override this with a temporary file per test
    SQLALCHEMY_DATABASE_URI = 'sqlite:///' + os.path.join(instance_path, 'test.db')
    SQLALCHEMY_ENGINE_OPTIONS = {}

    # Registries are always stubbed in tests
    FHIR_PACKAGE_REGISTRIES = ['https://registry-a.test', 'https://registry-b.test', 'https://registry-c.test']
    REGISTRY_CONNECT_TIMEOUT = 1
    REGISTRY_READ_TIMEOUT = 2

    API_KEY = None
    LOG_LEVEL = 'DEBUG'
    LOG_FILE = None
