import pytest

from igcache.archive import PackageArchive
from igcache.errors import ArchiveValidationError
from tests.packages import build_package, build_tgz


def test_parse_manifest_and_files():
    raw = build_package(
        'acme.ig', '1.0.0',
        dependencies={'hl7.fhir.r4.core': '4.0.1', 'acme.lib': '2.0.0'},
        resources={
            'StructureDefinition-acme-patient.json': {'resourceType': 'StructureDefinition', 'id': 'acme-patient'},
            '.index.json': {'index-version': 1, 'files': []},
            'example/Patient-example.json': {'resourceType': 'Patient', 'id': 'example'},
        },
        canonical='http://acme.org/fhir/ig', url='http://acme.org/fhir/ig/1.0.0', fhirVersions=['4.0.1'])

    archive = PackageArchive.from_bytes(raw)

    assert archive.name == 'acme.ig'
    assert archive.version == '1.0.0'
    assert archive.id_and_version == 'acme.ig#1.0.0'
    assert archive.dependencies == ['hl7.fhir.r4.core#4.0.1', 'acme.lib#2.0.0']
    assert archive.list_resources() == ['StructureDefinition-acme-patient.json']
    assert archive.list_files('package/example') == ['Patient-example.json']
    assert archive.load_resource('StructureDefinition-acme-patient.json')['id'] == 'acme-patient'
    assert archive.load_file('package', 'missing.json') is None


def test_cache_meta():
    raw = build_package('acme.ig', '1.0.0', canonical='http://acme.org/fhir/ig',
                        url='http://acme.org/fhir/ig/1.0.0', fhirVersions=['4.0.1'])
    meta = PackageArchive.from_bytes(raw).cache_meta()
    assert meta == {
        'version': '1.0.0',
        'canonical': 'http://acme.org/fhir/ig',
        'name': 'acme.ig',
        'url': 'http://acme.org/fhir/ig/1.0.0',
        'fhirVersion': '4.0.1',
        'fhirVersions': ['4.0.1'],
    }


def test_cache_meta_falls_back_to_fhir_version_list():
    raw = build_package('old.ig', '0.1.0', **{'fhir-version-list': ['3.0.1']})
    meta = PackageArchive.from_bytes(raw).cache_meta()
    assert meta['fhirVersions'] == ['3.0.1']
    assert meta['fhirVersion'] == '3.0.1'


def test_cache_meta_without_fhir_versions():
    meta = PackageArchive.from_bytes(build_package('plain.ig', '1.0.0')).cache_meta()
    assert 'fhirVersions' not in meta
    assert meta['fhirVersion'] is None


def test_no_dependencies():
    assert PackageArchive.from_bytes(build_package('plain.ig', '1.0.0')).dependencies == []


@pytest.mark.parametrize('raw', [
    b'definitely not a tarball',
    build_tgz({'package/StructureDefinition-x.json': {'resourceType': 'StructureDefinition'}}),
    build_tgz({'package/package.json': '{not json'}),
    build_tgz({'package/package.json': {'name': 'no.version'}}),
    build_tgz({'package/package.json': ['a', 'list']}),
    b'',
])
def test_invalid_archives(raw):
    with pytest.raises(ArchiveValidationError):
        PackageArchive.from_bytes(raw)


def test_none_bytes():
    with pytest.raises(ValueError):
        PackageArchive.from_bytes(None)
