# igcache/context.py
# The object that owns every long-lived piece of the package cache.

import logging
from concurrent.futures import ThreadPoolExecutor

from igcache.cache_manager import PackageCacheManager
from igcache.registry import MultiRegistryFetcher, RegistryEndpoints
from igcache.service import IgPackageService
from igcache.store import CacheStore

logger = logging.getLogger(__name__)

EXTENSION_KEY = 'igcache'


class IgCacheContext:
    """
    Built once by create_app() and stored in app.extensions['igcache'].

    Nothing in the package keeps module-level state; components get what
    they need from this context.
    """

    def __init__(self, app):
        config = app.config
        timeout = (config.get('REGISTRY_CONNECT_TIMEOUT', 5), config.get('REGISTRY_READ_TIMEOUT', 60))
        self.endpoints = RegistryEndpoints(config.get('FHIR_PACKAGE_REGISTRIES', []))
        self.fetcher = MultiRegistryFetcher(self.endpoints, timeout=timeout)
        self.store = CacheStore(app)
        self.parse_executor = ThreadPoolExecutor(
            max_workers=config.get('ARCHIVE_PARSE_WORKERS', 2), thread_name_prefix='archive-parse')
        self.cache_manager = PackageCacheManager(
            self.store, self.fetcher,
            parse_executor=self.parse_executor,
            dependency_workers=config.get('DEPENDENCY_FETCH_WORKERS', 8))
        self.service = IgPackageService(self.cache_manager, download_timeout=timeout)
        logger.info(f"IG package cache initialized with registries: {self.endpoints.snapshot()}")

    def shutdown(self, wait=True):
        """Rejects new calls, then stops the parse pool."""
        self.service.close()
        self.parse_executor.shutdown(wait=wait)


def get_context(app=None):
    if app is None:
        from flask import current_app
        app = current_app
    return app.extensions[EXTENSION_KEY]


def get_ig_package_service(app=None):
    return get_context(app).service
