# igcache/errors.py
# Exceptions raised by the IG package cache.


class IgCacheError(Exception):
    """Base class for all IG package cache errors."""


class ArchiveValidationError(IgCacheError):
    """Raised when package bytes cannot be parsed as an npm-style FHIR package."""


class PackageNotFoundError(IgCacheError):
    """Raised where a caller needs a package that is neither cached nor reachable."""

    def __init__(self, name, version=None):
        self.name = name
        self.version = version
        label = f"{name}#{version}" if version else name
        super().__init__(f"Package {label} not found")


class RegistryUnavailableError(IgCacheError):
    """A single registry could not be reached (connection error, timeout)."""

    def __init__(self, registry_url, message):
        self.registry_url = registry_url
        super().__init__(f"{registry_url}: {message}")


class PersistenceError(IgCacheError):
    """The cache database failed a read or write."""


class ServiceClosedError(IgCacheError):
    """A top-level call was made after the service was closed."""
