# igcache/archive.py
# In-memory parsing of npm-style FHIR package archives (.tgz).

import io
import json
import logging
import posixpath
import tarfile
from collections import defaultdict

from igcache.errors import ArchiveValidationError

logger = logging.getLogger(__name__)

PACKAGE_FOLDER = "package"
MANIFEST_PATH = "package/package.json"
# Files inside package/ that are package metadata, not conformance resources
NON_RESOURCE_FILES = {'package.json', '.index.json', 'validation-summary.json', 'validation-oo.json'}


class PackageArchive:
    """
    A parsed FHIR IG package.

    Holds the manifest fields the cache needs plus every file of the archive,
    grouped by folder ("package", "package/example", ...). Built only through
    from_bytes().
    """

    def __init__(self, manifest, folders):
        self.manifest = manifest
        self.folders = folders

    @property
    def name(self):
        return self.manifest.get('name')

    @property
    def version(self):
        return self.manifest.get('version')

    @property
    def canonical(self):
        return self.manifest.get('canonical')

    @property
    def url(self):
        return self.manifest.get('url')

    @property
    def fhir_versions(self):
        """Declared FHIR versions, from 'fhirVersions' or the older 'fhir-version-list'."""
        versions = self.manifest.get('fhirVersions')
        if versions is None:
            versions = self.manifest.get('fhir-version-list')
        if versions is None:
            return None
        if isinstance(versions, str):
            return [versions]
        return list(versions)

    @property
    def fhir_version(self):
        version = self.manifest.get('fhirVersion')
        if version:
            return version
        versions = self.fhir_versions
        return versions[0] if versions else None

    @property
    def dependencies(self):
        """Declared dependencies as "name#version" strings, in manifest order."""
        deps = self.manifest.get('dependencies') or {}
        if isinstance(deps, dict):
            return [f"{name}#{version}" for name, version in deps.items()]
        # Some tools write the list form already
        return [str(dep) for dep in deps]

    @property
    def id_and_version(self):
        return f"{self.name}#{self.version}"

    def list_files(self, folder=PACKAGE_FOLDER):
        return sorted(self.folders.get(folder, {}))

    def list_resources(self):
        """File names of the conformance resources in the package/ folder."""
        return [f for f in self.list_files(PACKAGE_FOLDER)
                if f.lower().endswith('.json') and f.lower() not in NON_RESOURCE_FILES]

    def load_file(self, folder, filename):
        """Returns the raw bytes of one file, or None if the archive does not hold it."""
        return self.folders.get(folder, {}).get(filename)

    def load_resource(self, filename, folder=PACKAGE_FOLDER):
        """Returns one JSON resource as a dict, or None when missing or unreadable."""
        content = self.load_file(folder, filename)
        if content is None:
            return None
        try:
            return json.loads(content.decode('utf-8-sig'))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            logger.warning(f"Could not parse {folder}/{filename} in {self.id_and_version}: {e}")
            return None

    def cache_meta(self):
        """Metadata stored next to the raw bytes in the cache table."""
        meta = {
            'version': self.version,
            'canonical': self.canonical,
            'name': self.name,
            'url': self.url,
            'fhirVersion': self.fhir_version,
        }
        fhir_versions = self.fhir_versions
        if fhir_versions is not None:
            meta['fhirVersions'] = fhir_versions
        return meta

    def __repr__(self):
        return f"<PackageArchive {self.id_and_version}>"

    @classmethod
    def from_bytes(cls, raw_bytes):
        """
        Parses gzip-tar bytes into a PackageArchive.

        Raises ArchiveValidationError when the bytes are not a readable
        archive, or when package/package.json is missing, is not valid JSON,
        or lacks a name or version.
        """
        if raw_bytes is None:
            raise ValueError("Package bytes cannot be None")
        if not raw_bytes:
            raise ArchiveValidationError("Package archive is empty")

        folders = defaultdict(dict)
        try:
            with tarfile.open(fileobj=io.BytesIO(raw_bytes), mode="r:gz") as tar:
                for member in tar:
                    if not member.isfile():
                        continue
                    fileobj = tar.extractfile(member)
                    if fileobj is None:
                        continue
                    with fileobj:
                        content = fileobj.read()
                    path = member.name[2:] if member.name.startswith('./') else member.name
                    folder, filename = posixpath.split(path)
                    folders[folder][filename] = content
        except (tarfile.TarError, EOFError, OSError) as e:
            raise ArchiveValidationError(f"Error opening package archive: {e}") from e

        manifest_bytes = folders.get(PACKAGE_FOLDER, {}).get('package.json')
        if manifest_bytes is None:
            raise ArchiveValidationError("package.json not found in package archive")
        try:
            manifest = json.loads(manifest_bytes.decode('utf-8-sig'))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise ArchiveValidationError(f"Error reading package.json: {e}") from e
        if not isinstance(manifest, dict):
            raise ArchiveValidationError("package.json is not a JSON object")
        if not manifest.get('name') or not manifest.get('version'):
            raise ArchiveValidationError("package.json must declare both name and version")

        archive = cls(manifest, dict(folders))
        logger.debug(f"Parsed package {archive.id_and_version}: {sum(len(f) for f in folders.values())} files")
        return archive
