# igcache/resolver.py
# Recursive resolution of a package's transitive dependencies.

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed

from igcache.errors import PersistenceError
from igcache.reference import ResolvedPackageName, is_core_package

logger = logging.getLogger(__name__)

# Terminal states of one dependency within a resolution pass
CACHED = 'cached'
FETCHED = 'fetched'
FAILED = 'failed'


class VisitedSet:
    """
    Package names already taken up by one resolution pass.

    Owned by a single top-level call and shared by the worker threads of
    that call only.
    """

    def __init__(self, names=None):
        self._lock = threading.Lock()
        self._names = set(names or [])

    def add(self, name):
        """Marks a name as visited. Returns False if it already was."""
        with self._lock:
            if name in self._names:
                return False
            self._names.add(name)
            return True

    def __contains__(self, name):
        with self._lock:
            return name in self._names

    def __len__(self):
        with self._lock:
            return len(self._names)


class ResolutionReport:
    """Outcome of every dependency touched during one resolution pass."""

    def __init__(self):
        self._lock = threading.Lock()
        self.outcomes = {}

    def record(self, resolved, outcome):
        with self._lock:
            self.outcomes[resolved.id_and_version] = outcome

    def names(self, outcome):
        with self._lock:
            return sorted(name for name, state in self.outcomes.items() if state == outcome)

    @property
    def cached(self):
        return self.names(CACHED)

    @property
    def fetched(self):
        return self.names(FETCHED)

    @property
    def failed(self):
        return self.names(FAILED)

    def __repr__(self):
        return f"<ResolutionReport cached={len(self.cached)} fetched={len(self.fetched)} failed={len(self.failed)}>"


class DependencyResolver:
    """
    Fetches a package and, recursively, every dependency missing from the cache.

    Core packages are never fetched. A name is processed at most once per
    pass (VisitedSet). Failures below the root are logged and ignored,
    except database failures, which always reach the caller.
    """

    def __init__(self, cache_manager, max_workers=8):
        self.cache_manager = cache_manager
        self.max_workers = max(1, max_workers)

    def fetch_with_dependencies(self, root, visited=None, report=None):
        """
        Fetches root from the registries, then its dependency graph.

        Returns the root archive, or None if the root itself could not be
        fetched. A fresh VisitedSet is created when none is passed.
        """
        top_level = visited is None
        if top_level:
            visited = VisitedSet()
        if report is None:
            report = ResolutionReport()
        visited.add(root.name)

        archive = self.cache_manager.fetch_package(root)
        if archive is None:
            return None

        self.resolve_dependencies(archive, visited, report)
        if top_level:
            logger.info(f"Resolved dependencies of {root}: fetched={report.fetched} cached={report.cached} failed={report.failed}")
        return archive

    def resolve_dependencies(self, archive, visited=None, report=None):
        """
        Resolves the dependencies of an archive that is already cached.

        Existence checks for all direct dependencies settle before any of the
        fetches they trigger is awaited.
        """
        if visited is None:
            visited = VisitedSet([archive.name])
        if report is None:
            report = ResolutionReport()

        pending = []
        for dependency in archive.dependencies:
            try:
                resolved = ResolvedPackageName.parse(dependency)
            except ValueError as e:
                logger.warning(f"Ignoring dependency of {archive.id_and_version}: {e}")
                continue
            if is_core_package(resolved.name):
                logger.debug(f"Skipping core package {resolved} required by {archive.id_and_version}")
                continue
            if not visited.add(resolved.name):
                logger.debug(f"Skipping already visited dependency {resolved}")
                continue
            pending.append(resolved)

        if not pending:
            return report

        with ThreadPoolExecutor(max_workers=min(len(pending), self.max_workers),
                                thread_name_prefix='dependency') as executor:
            # Phase 1: every existence check of this level
            checks = [(resolved, executor.submit(self.cache_manager.store.exists, resolved.name, resolved.version))
                      for resolved in pending]
            missing = []
            for resolved, future in checks:
                try:
                    if future.result():
                        report.record(resolved, CACHED)
                    else:
                        missing.append(resolved)
                except PersistenceError:
                    raise
                except Exception as e:
                    logger.error(f"Existence check for dependency {resolved} of {archive.id_and_version} failed: {e}")
                    report.record(resolved, FAILED)

            # Phase 2: recursive fetches of the missing ones
            fetches = {executor.submit(self._fetch_subtree, resolved, visited, report): resolved
                       for resolved in missing}
            for future in as_completed(fetches):
                future.result()
        return report

    def _fetch_subtree(self, resolved, visited, report):
        try:
            archive = self.fetch_with_dependencies(resolved, visited, report)
        except PersistenceError:
            raise
        except Exception as e:
            logger.error(f"Failed to fetch dependency {resolved}: {e}", exc_info=True)
            report.record(resolved, FAILED)
            return None
        if archive is None:
            logger.error(f"Failed to fetch dependency {resolved}: not available from any registry")
            report.record(resolved, FAILED)
        else:
            report.record(resolved, FETCHED)
        return archive
