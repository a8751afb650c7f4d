# igcache/cache_manager.py
# Cache hit / cache miss / fetch-on-miss logic for IG packages.

import logging

from igcache.archive import PackageArchive
from igcache.errors import ArchiveValidationError
from igcache.reference import PackageReference, ResolvedPackageName, is_core_package
from igcache.resolver import DependencyResolver
from igcache.store import CacheRecord

logger = logging.getLogger(__name__)


def _as_reference(reference):
    if isinstance(reference, (PackageReference, ResolvedPackageName)):
        return PackageReference(reference.name, reference.version)
    return PackageReference.parse(reference)


class PackageCacheManager:
    """
    Loads packages from the cache store, falling back to the registries.

    Archive parsing is handed to parse_executor (a bounded pool) when one is
    given, so callers on I/O threads never decompress archives themselves.
    """

    def __init__(self, store, fetcher, parse_executor=None, dependency_workers=8):
        self.store = store
        self.fetcher = fetcher
        self.parse_executor = parse_executor
        self.resolver = DependencyResolver(self, max_workers=dependency_workers)

    # --- Parsing ---

    def parse(self, raw_bytes):
        if self.parse_executor is None:
            return PackageArchive.from_bytes(raw_bytes)
        return self.parse_executor.submit(PackageArchive.from_bytes, raw_bytes).result()

    @staticmethod
    def _record_for(archive, raw_bytes):
        return CacheRecord(
            package_id=archive.name,
            package_version=archive.version,
            meta=archive.cache_meta(),
            content_raw=raw_bytes,
            dependencies=archive.dependencies,
        )

    # --- Resolution ---

    def resolve_package_name(self, reference, cache_only=True):
        """
        Turns "name", "name#latest" or "name#version" into a ResolvedPackageName.

        An explicit version is used as is. Otherwise the most recently cached
        version wins, then (unless cache_only) the registries' latest version.
        Returns None when nothing resolves.
        """
        reference = _as_reference(reference)
        if not reference.is_latest:
            logger.debug(f"Package {reference.name}#{reference.version} has been resolved directly")
            return ResolvedPackageName(reference.name, reference.version)

        cached_version = self.store.latest_version(reference.name)
        if cached_version:
            logger.debug(f"Package {reference.name}#{cached_version} has been resolved from cache")
            return ResolvedPackageName(reference.name, cached_version)

        if cache_only:
            logger.info(f"Package {reference.name} not found in cache and cache-only mode is enabled")
            return None

        registry_version = self.fetcher.latest_version(reference.name)
        if registry_version:
            logger.debug(f"Package {reference.name}#{registry_version} has been resolved from registry")
            return ResolvedPackageName(reference.name, registry_version)
        logger.warning(f"No version found for package {reference.name}")
        return None

    # --- Loading ---

    def load_package(self, reference, cache_only=True, load_dependencies=False):
        """
        Returns the PackageArchive for a reference, or None.

        With cache_only a cache miss returns None without any network I/O.
        Otherwise a miss is downloaded, cached and, if load_dependencies is
        set, its dependency graph is fetched too. A cache hit is returned as
        is regardless of load_dependencies.
        """
        resolved = self.resolve_package_name(reference, cache_only)
        if resolved is None:
            logger.debug(f"No package name resolved for {reference}")
            return None

        record = self.store.get(resolved.name, resolved.version)
        if record is not None:
            try:
                archive = self.parse(record.content_raw)
            except ArchiveValidationError as e:
                logger.error(f"Failed to parse cached package {resolved}: {e}")
                raise
            logger.debug(f"Package {resolved} has been loaded from cache")
            return archive

        if cache_only:
            logger.info(f"Package {resolved} not found in cache and cache-only mode is enabled")
            return None

        logger.debug(f"Package {resolved} not found in cache, fetching from registries")
        if load_dependencies:
            return self.resolver.fetch_with_dependencies(resolved)
        return self.fetch_package(resolved)

    def fetch_package(self, resolved):
        """Downloads one package from the registries, parses and caches it. None when no registry has it."""
        raw_bytes = self.fetcher.download(resolved.name, resolved.version)
        if raw_bytes is None:
            logger.warning(f"Failed to fetch package {resolved} from any registry")
            return None
        archive = self.parse(raw_bytes)
        if (archive.name, archive.version) != (resolved.name, resolved.version):
            logger.warning(f"Registry returned {archive.id_and_version} when asked for {resolved}; caching as {archive.id_and_version}")
        self.store.upsert(self._record_for(archive, raw_bytes))
        return archive

    def add_archive_to_cache(self, raw_bytes):
        """
        Parses uploaded package bytes and caches them.

        Raises ArchiveValidationError (nothing persisted) when the bytes are
        not a valid package.
        """
        if raw_bytes is None:
            raise ValueError("Package bytes cannot be None")
        try:
            archive = self.parse(raw_bytes)
        except ArchiveValidationError as e:
            logger.error(f"Invalid IG package: {e}")
            raise
        self.store.upsert(self._record_for(archive, raw_bytes))
        return archive

    def load_package_with_dependencies(self, reference):
        """
        Cache-only load of a package followed by its direct, non-core dependencies.

        Dependencies missing from the cache are skipped. Returns an empty list
        when the package itself is not cached.
        """
        root = self.load_package(reference, cache_only=True)
        if root is None:
            return []
        loaded = [root]
        for dependency in root.dependencies:
            try:
                dep_name = ResolvedPackageName.parse(dependency)
            except ValueError as e:
                logger.warning(f"Skipping dependency of {root.id_and_version}: {e}")
                continue
            if is_core_package(dep_name.name):
                continue
            archive = self.load_package(dep_name, cache_only=True)
            if archive is not None:
                loaded.append(archive)
            else:
                logger.debug(f"Dependency {dep_name} of {root.id_and_version} is not cached")
        return loaded
