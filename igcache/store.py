# igcache/store.py
# Relational cache of IG packages (table fhir_implementation_guides).

import logging
from collections import namedtuple
from contextlib import contextmanager

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError

from igcache import db
from igcache.errors import PersistenceError
from igcache.models import ImplementationGuide

logger = logging.getLogger(__name__)

CacheRecord = namedtuple(
    'CacheRecord',
    ['package_id', 'package_version', 'meta', 'content_raw', 'dependencies', 'created_at'])
CacheRecord.__new__.__defaults__ = (None,)  # created_at is assigned by the database on insert

_DIALECT_INSERTS = {
    'postgresql': postgresql.insert,
    'sqlite': sqlite.insert,
}


def _to_record(row):
    return CacheRecord(
        package_id=row.ig_package_id,
        package_version=row.ig_package_version,
        meta=row.ig_package_meta,
        content_raw=row.content_raw,
        dependencies=list(row.dependencies or []),
        created_at=row.created_at,
    )


class CacheStore:
    """
    Reads and writes cached packages.

    Every call runs in its own Flask app context and therefore its own
    SQLAlchemy session, so the store can be used from worker threads. Row
    level write safety comes from the ON CONFLICT clause of upsert(). Any
    database failure is rolled back and re-raised as PersistenceError.
    """

    def __init__(self, app):
        self.app = app

    @contextmanager
    def _session(self, action):
        with self.app.app_context():
            try:
                yield db.session
            except SQLAlchemyError as e:
                db.session.rollback()
                logger.error(f"Database error while {action}: {e}", exc_info=True)
                raise PersistenceError(f"Database error while {action}: {e}") from e

    def exists(self, package_id, version):
        with self._session(f"checking {package_id}#{version}") as session:
            query = session.query(ImplementationGuide).filter_by(
                ig_package_id=package_id, ig_package_version=version)
            return session.query(query.exists()).scalar()

    def exists_any(self, package_id):
        """True when any version of the package is cached."""
        with self._session(f"checking {package_id}") as session:
            query = session.query(ImplementationGuide).filter_by(ig_package_id=package_id)
            return session.query(query.exists()).scalar()

    def get(self, package_id, version):
        with self._session(f"loading {package_id}#{version}") as session:
            row = session.get(ImplementationGuide, (package_id, version))
            if row is None:
                logger.debug(f"Package {package_id}#{version} not found in database")
                return None
            return _to_record(row)

    def get_dependencies(self, package_id, version):
        """Stored dependency strings of one package, or None when it is not cached."""
        with self._session(f"loading dependencies of {package_id}#{version}") as session:
            row = session.query(ImplementationGuide.dependencies).filter_by(
                ig_package_id=package_id, ig_package_version=version).first()
            if row is None:
                return None
            return list(row.dependencies or [])

    def upsert(self, record):
        """
        Inserts a package or replaces its meta, content and dependencies.

        Runs as a single transaction. created_at is only written on insert.
        """
        with self._session(f"caching {record.package_id}#{record.package_version}") as session:
            insert = _DIALECT_INSERTS.get(db.engine.dialect.name)
            if insert is None:
                raise PersistenceError(f"Unsupported database dialect: {db.engine.dialect.name}")
            values = {
                'ig_package_id': record.package_id,
                'ig_package_version': record.package_version,
                'ig_package_meta': record.meta,
                'content_raw': record.content_raw,
                'dependencies': list(record.dependencies or []),
            }
            if record.created_at is not None:
                values['created_at'] = record.created_at
            stmt = insert(ImplementationGuide).values(**values)
            stmt = stmt.on_conflict_do_update(
                index_elements=[ImplementationGuide.ig_package_id, ImplementationGuide.ig_package_version],
                set_={
                    'ig_package_meta': stmt.excluded.ig_package_meta,
                    'content_raw': stmt.excluded.content_raw,
                    'dependencies': stmt.excluded.dependencies,
                })
            session.execute(stmt)
            session.commit()
            logger.info(f"Cached package {record.package_id}#{record.package_version}")

    def latest_version(self, package_id):
        """
        Version of the most recently inserted row for the package.

        This is "most recently cached", not the highest version number. Rows
        cached in the same instant are ordered by version string, descending.
        """
        if package_id is None:
            raise ValueError("Package id cannot be None")
        with self._session(f"resolving latest cached version of {package_id}") as session:
            row = session.query(ImplementationGuide.ig_package_version).filter_by(
                ig_package_id=package_id).order_by(
                ImplementationGuide.created_at.desc(), ImplementationGuide.ig_package_version.desc()).first()
            return row.ig_package_version if row else None

    def remove(self, package_id, version):
        """Deletes one package. Removing a package that is not cached is not an error."""
        with self._session(f"removing {package_id}#{version}") as session:
            deleted = session.query(ImplementationGuide).filter_by(
                ig_package_id=package_id, ig_package_version=version).delete()
            session.commit()
            if deleted:
                logger.info(f"Removed package {package_id}#{version} from cache")
            return deleted > 0

    def clear(self):
        with self._session("clearing the package cache") as session:
            deleted = session.query(ImplementationGuide).delete()
            session.commit()
            logger.info(f"Cleared {deleted} packages from cache")
            return deleted

    def list_packages(self):
        """(package_id, version) pairs, oldest first."""
        with self._session("listing cached packages") as session:
            rows = session.query(ImplementationGuide.ig_package_id, ImplementationGuide.ig_package_version).order_by(
                ImplementationGuide.created_at).all()
            return [(row.ig_package_id, row.ig_package_version) for row in rows]
