# igcache/reference.py
# Package references ("name#version"), resolved names and the bundled FHIR core packages.

import re
from collections import namedtuple
from enum import Enum

LATEST = "latest"


class PackageReference(namedtuple('PackageReference', ['name', 'version'])):
    """A loose package reference; version may be a concrete version, "latest" or None."""
    __slots__ = ()

    @classmethod
    def parse(cls, text):
        """
        Parses "name", "name#version" or "name#latest".

        Splits on the first '#'. A reference without a '#' has version None,
        which callers treat as "latest" wherever a concrete version is needed.
        """
        if not isinstance(text, str) or not text.strip():
            raise ValueError(f"Invalid package reference: {text!r}")
        name, sep, version = text.strip().partition('#')
        if not name:
            raise ValueError(f"Package reference has no name: {text!r}")
        return cls(name, version if sep and version else None)

    @property
    def is_latest(self):
        return self.version is None or self.version == LATEST

    def __str__(self):
        return f"{self.name}#{self.version}" if self.version else self.name


class ResolvedPackageName(namedtuple('ResolvedPackageName', ['name', 'version'])):
    """A package name with a concrete version. Never "latest"."""
    __slots__ = ()

    def __new__(cls, name, version):
        if not name or not version:
            raise ValueError(f"Resolved package needs both name and version (got {name!r}, {version!r})")
        if version == LATEST:
            raise ValueError(f"Version of {name} must be concrete, not '{LATEST}'")
        return super().__new__(cls, name, version)

    @classmethod
    def parse(cls, text):
        """Strict parse of a dependency string such as "hl7.fhir.us.core#6.1.0"."""
        reference = PackageReference.parse(text)
        if reference.version is None:
            raise ValueError(f"Dependency {text!r} has no version")
        return cls(reference.name, reference.version)

    @property
    def id_and_version(self):
        return f"{self.name}#{self.version}"

    def __str__(self):
        return self.id_and_version


class FhirCorePackage(Enum):
    """FHIR core packages. Always bundled with the validator, never fetched remotely."""
    STU3 = ("hl7.fhir.r3.core", "3.0.2")
    R4 = ("hl7.fhir.r4.core", "4.0.1")
    R4B = ("hl7.fhir.r4b.core", "4.3.0")
    R5 = ("hl7.fhir.r5.core", "5.0.0")

    def __init__(self, package_name, version):
        self.package_name = package_name
        self.version = version

    @property
    def filename(self):
        return f"{self.package_name}-{self.version}.tgz"

    @property
    def id_and_version(self):
        return f"{self.package_name}#{self.version}"

    @classmethod
    def names(cls):
        return [member.package_name for member in cls]

    @classmethod
    def from_fhir_version_name(cls, name):
        """Maps a release name ("R3", "R4", "R4B", "R5") to its core package."""
        mapping = {"R3": cls.STU3, "STU3": cls.STU3, "R4": cls.R4, "R4B": cls.R4B, "R5": cls.R5}
        try:
            return mapping[name.upper()]
        except (KeyError, AttributeError):
            raise ValueError(f"Unexpected FHIR release name: {name}")

    @classmethod
    def from_fhir_version(cls, version):
        """Maps a FHIR version number ("4.0.1") to its core package."""
        if version in ("3.0.0", "3.0.1", "3.0.2"):
            return cls.STU3
        if version in ("4.0.0", "4.0.1"):
            return cls.R4
        if version == "4.3.0":
            return cls.R4B
        if version == "5.0.0":
            return cls.R5
        raise ValueError(f"Unexpected FHIR version: {version}")


def is_core_package(name):
    """True when the package name is one of the bundled FHIR core packages."""
    return name in FhirCorePackage.names()


def _version_component(part):
    digits = re.sub(r'[^0-9]', '', part)
    return int(digits) if digits else 0


def is_later_version(v1, v2):
    """
    Compares two registry version strings.

    Components are split on '.', stripped of non-digit characters and
    compared as integers. The first differing component decides. When all
    shared components are equal, the version with more components wins.
    """
    parts1 = v1.split('.')
    parts2 = v2.split('.')
    for p1, p2 in zip(parts1, parts2):
        n1, n2 = _version_component(p1), _version_component(p2)
        if n1 != n2:
            return n1 > n2
    return len(parts1) > len(parts2)


def pick_latest_version(versions):
    """Returns the maximum of an iterable of version strings per is_later_version, or None."""
    latest = None
    for version in versions:
        if not isinstance(version, str) or not version:
            continue
        if latest is None or is_later_version(version, latest):
            latest = version
    return latest
