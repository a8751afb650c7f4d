import pytest

from igcache.errors import ArchiveValidationError
from igcache.reference import ResolvedPackageName
from tests.packages import build_package

REGISTRY_A = 'https://registry-a.test'
REGISTRY_B = 'https://registry-b.test'


def test_add_archive_then_load_from_cache(ctx, registries):
    raw = build_package('acme.ig', '1.0.0', dependencies={'acme.lib': '2.0.0'})
    ctx.cache_manager.add_archive_to_cache(raw)

    archive = ctx.cache_manager.load_package('acme.ig#1.0.0')
    assert archive.id_and_version == 'acme.ig#1.0.0'
    assert archive.dependencies == ['acme.lib#2.0.0']
    assert ctx.store.get('acme.ig', '1.0.0').content_raw == raw
    assert registries.calls == []


def test_cache_only_miss_makes_no_requests(ctx, registries):
    registries.publish(REGISTRY_A, 'acme.ig', '1.0.0', build_package('acme.ig', '1.0.0'))

    assert ctx.cache_manager.load_package('acme.ig#1.0.0', cache_only=True) is None
    assert ctx.cache_manager.load_package('acme.ig', cache_only=True) is None
    assert registries.calls == []


def test_invalid_archive_is_not_persisted(ctx):
    with pytest.raises(ArchiveValidationError):
        ctx.cache_manager.add_archive_to_cache(b'not a package')
    assert ctx.store.list_packages() == []
    with pytest.raises(ValueError):
        ctx.cache_manager.add_archive_to_cache(None)


def test_fetch_on_miss_caches_package(ctx, registries):
    raw = build_package('acme.ig', '1.0.0')
    registries.publish(REGISTRY_B, 'acme.ig', '1.0.0', raw)

    archive = ctx.cache_manager.load_package('acme.ig#1.0.0', cache_only=False)
    assert archive.id_and_version == 'acme.ig#1.0.0'
    assert ctx.store.get('acme.ig', '1.0.0').content_raw == raw

    # Second load is served from the cache
    registries.calls.clear()
    assert ctx.cache_manager.load_package('acme.ig#1.0.0', cache_only=False) is not None
    assert registries.calls == []


def test_fetch_miss_everywhere_returns_none(ctx, registries):
    assert ctx.cache_manager.load_package('missing.ig#1.0.0', cache_only=False) is None
    assert ctx.store.list_packages() == []


def test_resolve_explicit_version_without_lookups(ctx, registries):
    resolved = ctx.cache_manager.resolve_package_name('acme.ig#3.0.0', cache_only=False)
    assert resolved == ResolvedPackageName('acme.ig', '3.0.0')
    assert registries.calls == []


def test_resolve_latest_prefers_cache(ctx, registries):
    ctx.cache_manager.add_archive_to_cache(build_package('acme.ig', '1.0.0'))
    registries.publish(REGISTRY_A, 'acme.ig', '2.0.0', build_package('acme.ig', '2.0.0'))

    assert ctx.cache_manager.resolve_package_name('acme.ig#latest', cache_only=False).version == '1.0.0'
    assert registries.calls == []


def test_resolve_latest_from_registry(ctx, registries):
    registries.publish(REGISTRY_A, 'acme.ig', '1.0.0', build_package('acme.ig', '1.0.0'))
    registries.publish(REGISTRY_A, 'acme.ig', '1.2.0', build_package('acme.ig', '1.2.0'))

    assert ctx.cache_manager.resolve_package_name('acme.ig', cache_only=True) is None
    assert ctx.cache_manager.resolve_package_name('acme.ig', cache_only=False).version == '1.2.0'

    archive = ctx.cache_manager.load_package('acme.ig', cache_only=False)
    assert archive.version == '1.2.0'


def test_registry_archive_with_other_identity_is_cached_as_itself(ctx, registries):
    registries.publish(REGISTRY_A, 'acme.ig', '1.0.0', build_package('acme.ig.renamed', '1.0.0'))

    archive = ctx.cache_manager.load_package('acme.ig#1.0.0', cache_only=False)
    assert archive.name == 'acme.ig.renamed'
    assert ctx.store.list_packages() == [('acme.ig.renamed', '1.0.0')]


def test_load_package_with_direct_dependencies(ctx):
    ctx.cache_manager.add_archive_to_cache(build_package(
        'acme.ig', '1.0.0',
        dependencies={'hl7.fhir.r4.core': '4.0.1', 'acme.lib': '2.0.0', 'acme.missing': '1.0.0'}))
    ctx.cache_manager.add_archive_to_cache(build_package('acme.lib', '2.0.0'))

    loaded = ctx.cache_manager.load_package_with_dependencies('acme.ig#1.0.0')
    assert [archive.id_and_version for archive in loaded] == ['acme.ig#1.0.0', 'acme.lib#2.0.0']
    assert ctx.cache_manager.load_package_with_dependencies('absent.ig#1.0.0') == []


def test_adding_same_archive_twice_keeps_one_row(ctx):
    raw = build_package('acme.ig', '1.0.0', dependencies={'acme.lib': '2.0.0'})
    ctx.cache_manager.add_archive_to_cache(raw)
    ctx.cache_manager.add_archive_to_cache(raw)
    assert ctx.store.list_packages() == [('acme.ig', '1.0.0')]
