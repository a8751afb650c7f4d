from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from igcache.errors import PersistenceError
from igcache.store import CacheRecord
from tests.packages import build_package


def record(name, version, dependencies=None, created_at=None, content=b'raw'):
    return CacheRecord(
        package_id=name,
        package_version=version,
        meta={'name': name, 'version': version},
        content_raw=content,
        dependencies=dependencies or [],
        created_at=created_at,
    )


def test_upsert_then_get(ctx):
    ctx.store.upsert(record('acme.ig', '1.0.0', dependencies=['acme.lib#2.0.0']))

    stored = ctx.store.get('acme.ig', '1.0.0')
    assert stored.meta == {'name': 'acme.ig', 'version': '1.0.0'}
    assert stored.content_raw == b'raw'
    assert stored.dependencies == ['acme.lib#2.0.0']
    assert stored.created_at is not None
    assert ctx.store.exists('acme.ig', '1.0.0')
    assert not ctx.store.exists('acme.ig', '2.0.0')
    assert ctx.store.get('acme.ig', '2.0.0') is None


def test_upsert_replaces_content_but_keeps_created_at(ctx):
    ctx.store.upsert(record('acme.ig', '1.0.0', content=b'first'))
    first = ctx.store.get('acme.ig', '1.0.0')

    ctx.store.upsert(record('acme.ig', '1.0.0', dependencies=['acme.lib#2.0.0'], content=b'second'))
    second = ctx.store.get('acme.ig', '1.0.0')

    assert second.content_raw == b'second'
    assert second.dependencies == ['acme.lib#2.0.0']
    assert second.created_at == first.created_at
    assert ctx.store.list_packages() == [('acme.ig', '1.0.0')]


def test_latest_version_is_most_recently_inserted(ctx):
    start = datetime(2024, 1, 1, tzinfo=timezone.utc)
    for offset, version in enumerate(['1.0.0', '2.0.0', '1.5.0']):
        ctx.store.upsert(record('acme.ig', version, created_at=start + timedelta(minutes=offset)))

    assert ctx.store.latest_version('acme.ig') == '1.5.0'
    assert ctx.store.latest_version('unknown.ig') is None
    with pytest.raises(ValueError):
        ctx.store.latest_version(None)


def test_exists_any(ctx):
    assert not ctx.store.exists_any('acme.ig')
    ctx.store.upsert(record('acme.ig', '0.1.0'))
    assert ctx.store.exists_any('acme.ig')


def test_get_dependencies(ctx):
    ctx.store.upsert(record('acme.ig', '1.0.0', dependencies=['acme.lib#2.0.0', 'hl7.fhir.r4.core#4.0.1']))
    assert ctx.store.get_dependencies('acme.ig', '1.0.0') == ['acme.lib#2.0.0', 'hl7.fhir.r4.core#4.0.1']
    assert ctx.store.get_dependencies('acme.ig', '9.9.9') is None


def test_remove_is_idempotent(ctx):
    ctx.store.upsert(record('acme.ig', '1.0.0'))
    assert ctx.store.remove('acme.ig', '1.0.0') is True
    assert ctx.store.remove('acme.ig', '1.0.0') is False
    assert not ctx.store.exists('acme.ig', '1.0.0')


def test_clear(ctx):
    ctx.store.upsert(record('acme.ig', '1.0.0'))
    ctx.store.upsert(record('acme.lib', '2.0.0'))
    assert ctx.store.clear() == 2
    assert ctx.store.list_packages() == []


def test_database_error_rolls_back_and_raises(ctx):
    failure = OperationalError("INSERT INTO fhir_implementation_guides", {}, Exception("database is locked"))
    with patch.object(Session, 'execute', side_effect=failure), \
            patch.object(Session, 'rollback') as mock_rollback:
        with pytest.raises(PersistenceError) as excinfo:
            ctx.store.upsert(record('acme.ig', '1.0.0'))
    mock_rollback.assert_called_once()
    assert isinstance(excinfo.value.__cause__, OperationalError)
    assert ctx.store.list_packages() == []


def test_latest_version_follows_insert_order_by_default(ctx):
    for version in ['1.0.0', '2.0.0', '1.5.0']:
        ctx.cache_manager.add_archive_to_cache(build_package('acme.ig', version))
    assert ctx.store.latest_version('acme.ig') == '1.5.0'


def test_latest_version_tie_is_deterministic(ctx):
    same_instant = datetime(2024, 1, 1, tzinfo=timezone.utc)
    ctx.store.upsert(record('acme.ig', '1.5.0', created_at=same_instant))
    ctx.store.upsert(record('acme.ig', '1.0.0', created_at=same_instant))
    assert ctx.store.latest_version('acme.ig') == '1.5.0'
