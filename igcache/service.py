# igcache/service.py
# Public entry point over the package cache used by the HTTP API and the validator.

import logging
import threading

import requests

from igcache.errors import PackageNotFoundError, PersistenceError, RegistryUnavailableError, ServiceClosedError
from igcache.reference import LATEST, PackageReference
from igcache.resolver import VisitedSet

logger = logging.getLogger(__name__)


def _require(name, version):
    if name is None or version is None:
        raise ValueError("IG name and version cannot be None")


class IgPackageService:
    """
    Entry point used by the HTTP API and the validation engine.

    After close() no new top-level call is accepted; calls already running
    finish (or fail) on their own.
    """

    def __init__(self, cache_manager, download_timeout=(5, 60)):
        self.cache_manager = cache_manager
        self.store = cache_manager.store
        self.fetcher = cache_manager.fetcher
        self.download_timeout = download_timeout
        self._closed = threading.Event()

    def close(self):
        self._closed.set()
        logger.info("IG package service closed; new requests are rejected")

    @property
    def closed(self):
        return self._closed.is_set()

    def _ensure_open(self):
        if self._closed.is_set():
            raise ServiceClosedError("IG package service has been closed")

    # --- Registration ---

    def register_ig(self, name, version=LATEST, load_dependencies=False):
        """Loads a package through the cache, downloading it (and optionally its dependencies) on a miss."""
        self._ensure_open()
        if not name:
            raise ValueError("IG name cannot be empty")
        reference = PackageReference(name, version or LATEST)
        try:
            archive = self.cache_manager.load_package(reference, cache_only=False, load_dependencies=load_dependencies)
        except Exception as e:
            logger.error(f"Failed to register IG: {reference} - {e}")
            raise
        if archive is None:
            logger.warning(f"IG {reference} could not be found in the cache or on any registry")
        else:
            logger.info(f"Successfully registered IG: {archive.id_and_version}")
        return archive

    def register_ig_archive(self, raw_bytes, load_dependencies=False):
        """
        Caches an uploaded package archive.

        With load_dependencies every declared non-core dependency missing from
        the cache is fetched, recursively. Dependency failures never fail the
        registration itself; database failures do.
        """
        self._ensure_open()
        archive = self.cache_manager.add_archive_to_cache(raw_bytes)
        logger.info(f"Registered IG: {archive.id_and_version}")
        if load_dependencies and archive.dependencies:
            try:
                report = self.cache_manager.resolver.resolve_dependencies(archive, VisitedSet([archive.name]))
                logger.info(f"Dependencies of {archive.id_and_version}: fetched={report.fetched} cached={report.cached} failed={report.failed}")
            except PersistenceError:
                raise
            except Exception as e:
                logger.error(f"Failed to fetch dependencies of {archive.id_and_version}: {e}", exc_info=True)
        return archive

    def register_ig_from_url(self, download_url, load_dependencies=False):
        """Downloads an archive from an arbitrary URL and registers it. None on a non-200 answer."""
        self._ensure_open()
        if not download_url:
            raise ValueError("Download URL cannot be empty")
        try:
            response = requests.get(download_url, timeout=self.download_timeout)
        except requests.exceptions.RequestException as e:
            logger.error(f"Failed to download IG from {download_url}: {e}")
            raise RegistryUnavailableError(download_url, str(e)) from e
        if response.status_code != 200:
            logger.error(f"Failed to download IG from {download_url}: HTTP {response.status_code}")
            return None
        return self.register_ig_archive(response.content, load_dependencies=load_dependencies)

    # --- Loading ---

    def load_ig_package(self, name, version):
        """Strict cache-only load. Never touches the registries."""
        self._ensure_open()
        _require(name, version)
        return self.cache_manager.load_package(PackageReference(name, version), cache_only=True)

    def load_ig_package_with_dependencies(self, name, version):
        self._ensure_open()
        _require(name, version)
        return self.cache_manager.load_package_with_dependencies(PackageReference(name, version))

    # --- Inspection ---

    def get_dependency_graph(self, name, version):
        """Direct dependencies as stored for the package. No recursive expansion."""
        self._ensure_open()
        _require(name, version)
        dependencies = self.store.get_dependencies(name, version)
        return {
            'name': name,
            'version': version,
            'dependencies': [dep for dep in dependencies or [] if isinstance(dep, str)],
        }

    def generate_conformance_report(self, name, version):
        self._ensure_open()
        archive = self.load_ig_package(name, version)
        if archive is None:
            raise PackageNotFoundError(name, version)
        return {
            'name': name,
            'version': version,
            'resources': [{'resource': filename} for filename in archive.list_resources()],
            'conformance': 'basic',
        }

    def is_ig_package_exist(self, name, version):
        """True if the package is cached. Version "latest" matches any cached version."""
        self._ensure_open()
        _require(name, version)
        if version == LATEST:
            return self.store.exists_any(name)
        return self.store.exists(name, version)

    def resolve_latest_ig_package_version(self, name):
        """Most recently cached version of the package (not the highest version number)."""
        self._ensure_open()
        return self.store.latest_version(name)

    # --- Administration ---

    def remove_ig_package(self, name, version):
        self._ensure_open()
        _require(name, version)
        return self.store.remove(name, version)

    def find_package_id(self, canonical_url):
        """Package id publishing a canonical URL, according to the first registry that knows it."""
        self._ensure_open()
        return self.fetcher.search_package_id(canonical_url)

    def find_package_url(self, id_and_version):
        self._ensure_open()
        return self.fetcher.verify_package_url(id_and_version)

    def add_registry(self, url):
        return self.fetcher.endpoints.add(url)
