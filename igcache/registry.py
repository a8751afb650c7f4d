# igcache/registry.py
# HTTP access to FHIR package registries: one client per registry plus a
# fetcher that races the same call against every configured registry.

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from urllib.parse import quote

import requests

from igcache.errors import RegistryUnavailableError
from igcache.reference import PackageReference, pick_latest_version

logger = logging.getLogger(__name__)

# --- Constants ---
DEFAULT_REGISTRIES = ["https://packages.fhir.org", "https://packages2.fhir.org/packages"]
DEFAULT_TIMEOUT = (5, 60)  # (connect, read) seconds
JSON_HEADERS = {'Accept': 'application/json'}


def _path_url(base_url, *parts):
    """Joins a base URL and path segments with exactly one '/' between them."""
    url = base_url.rstrip('/')
    for part in parts:
        url = f"{url}/{quote(str(part).strip('/'), safe='.-_~@')}"
    return url


class RegistryEndpoints:
    """
    The registries packages are fetched from.

    Append-only and deduplicated: registries can be added at runtime but
    never removed. Iteration works on a snapshot, so callers racing a
    concurrent add() see a consistent list.
    """

    def __init__(self, urls=None):
        self._lock = threading.Lock()
        self._urls = []
        for url in urls or []:
            self.add(url)

    def add(self, url):
        """Adds a registry base URL. Returns False if it was already configured."""
        if not url or not isinstance(url, str):
            raise ValueError("Registry URL must be a non-empty string")
        normalized = url.strip().rstrip('/')
        with self._lock:
            if normalized in self._urls:
                return False
            self._urls.append(normalized)
        logger.info(f"Added package registry {normalized}")
        return True

    def snapshot(self):
        with self._lock:
            return list(self._urls)

    def __iter__(self):
        return iter(self.snapshot())

    def __len__(self):
        with self._lock:
            return len(self._urls)

    def __contains__(self, url):
        return isinstance(url, str) and url.strip().rstrip('/') in self.snapshot()


class RegistryClient:
    """
    Talks to a single registry.

    Non-2xx answers and unusable bodies come back as None. Transport
    failures (refused connections, timeouts) raise RegistryUnavailableError
    so that callers decide how loudly to report them.
    """

    def __init__(self, base_url, timeout=DEFAULT_TIMEOUT):
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout

    def _get(self, url, headers=None):
        try:
            return requests.get(url, headers=headers, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            raise RegistryUnavailableError(self.base_url, f"GET {url} failed: {e}") from e

    @staticmethod
    def _log_miss(level, message, settled=None):
        # Misses after another registry has answered go out at DEBUG
        if settled is not None and settled.is_set():
            level = logging.DEBUG
        logger.log(level, message)

    def verify(self, package_id, version=None, settled=None):
        """Returns the package URL if the registry answers 2xx for it, else None."""
        url = _path_url(self.base_url, package_id, version) if version else _path_url(self.base_url, package_id)
        response = self._get(url, headers=JSON_HEADERS)
        if 200 <= response.status_code < 300:
            return url
        self._log_miss(logging.WARNING, f"Failed to verify package URL {url} on {self.base_url}: status code {response.status_code}", settled)
        return None

    def search_package_id(self, canonical_url, settled=None):
        """Looks up the package id publishing a canonical URL via the registry catalog."""
        url = f"{_path_url(self.base_url, 'catalog')}?pkgcanonical={quote(canonical_url, safe='')}"
        response = self._get(url, headers=JSON_HEADERS)
        if response.status_code != 200:
            self._log_miss(logging.INFO, f"Catalog search for {canonical_url} on {self.base_url}: HTTP {response.status_code}", settled)
            return None
        try:
            entries = response.json()
        except ValueError as e:
            self._log_miss(logging.INFO, f"Catalog search for {canonical_url} on {self.base_url} returned invalid JSON: {e}", settled)
            return None
        if not isinstance(entries, list):
            return None
        for entry in entries:
            if isinstance(entry, dict):
                package_id = entry.get('name', entry.get('Name'))
                if package_id:
                    return package_id
        return None

    def latest_version(self, package_id, settled=None):
        """Returns the highest version this registry lists for the package, or None."""
        url = _path_url(self.base_url, package_id)
        response = self._get(url, headers=JSON_HEADERS)
        if response.status_code != 200:
            self._log_miss(logging.INFO, f"Failed to fetch versions for {package_id} from {self.base_url}: HTTP {response.status_code}", settled)
            return None
        try:
            versions = response.json().get('versions')
        except (ValueError, AttributeError) as e:
            self._log_miss(logging.ERROR, f"Failed to parse versions for {package_id} from {self.base_url}: {e}", settled)
            return None
        if not isinstance(versions, dict):
            return None
        return pick_latest_version(versions.keys())

    def download(self, package_id, version, settled=None):
        """Returns the archive bytes for package_id@version, or None."""
        url = _path_url(self.base_url, package_id, version)
        response = self._get(url)
        if not 200 <= response.status_code < 300:
            self._log_miss(logging.INFO, f"Failed to fetch {package_id}#{version} from {self.base_url}: HTTP {response.status_code}", settled)
            return None
        content = response.content
        if not content:
            self._log_miss(logging.WARNING, f"Empty response body from {url}", settled)
            return None
        logger.debug(f"Fetched package from {url}: {len(content)} bytes")
        return content

    def __repr__(self):
        return f"<RegistryClient {self.base_url}>"


class MultiRegistryFetcher:
    """
    Runs one registry operation against every configured registry at once.

    The first non-None answer wins and is returned immediately. The other
    requests are left to finish on their own; their failures are logged at
    DEBUG once a winner exists. No answer from any registry gives None.
    """

    def __init__(self, endpoints, timeout=DEFAULT_TIMEOUT, client_factory=RegistryClient):
        self.endpoints = endpoints
        self.timeout = timeout
        self.client_factory = client_factory

    def clients(self):
        return [self.client_factory(url, timeout=self.timeout) for url in self.endpoints]

    def _first_success(self, description, call):
        clients = self.clients()
        if not clients:
            logger.warning(f"No package registries configured for {description}")
            return None

        winner_found = threading.Event()

        def attempt(client):
            try:
                result = call(client, winner_found)
            except RegistryUnavailableError as e:
                if winner_found.is_set():
                    logger.debug(f"Additional attempt for {description} failed (already succeeded elsewhere): {e}")
                else:
                    logger.warning(f"Registry request for {description} failed: {e}")
                return None
            if result is not None:
                winner_found.set()
            return result

        executor = ThreadPoolExecutor(max_workers=len(clients), thread_name_prefix='registry')
        futures = {executor.submit(attempt, client): client for client in clients}
        # Losers keep running after we return; nothing waits for them.
        executor.shutdown(wait=False)

        for future in as_completed(futures):
            client = futures[future]
            try:
                result = future.result()
            except Exception as e:
                level = logging.DEBUG if winner_found.is_set() else logging.ERROR
                logger.log(level, f"Unexpected error for {description} on {client.base_url}: {e}", exc_info=True)
                continue
            if result is not None:
                winner_found.set()
                logger.debug(f"{description} answered by {client.base_url}")
                return result

        logger.warning(f"{description} not available from any registry")
        return None

    def verify_package_url(self, id_and_version):
        """Returns the first registry URL that serves the package ("name" or "name#version")."""
        reference = PackageReference.parse(id_and_version)
        return self._first_success(
            f"verify {reference}",
            lambda client, settled: client.verify(reference.name, reference.version, settled))

    def search_package_id(self, canonical_url):
        if not canonical_url:
            raise ValueError("canonical_url must not be empty")
        return self._first_success(
            f"catalog search {canonical_url}",
            lambda client, settled: client.search_package_id(canonical_url, settled))

    def latest_version(self, package_id):
        """Latest version according to whichever registry answers first (no cross-registry merge)."""
        return self._first_success(
            f"latest version of {package_id}",
            lambda client, settled: client.latest_version(package_id, settled))

    def download(self, package_id, version):
        return self._first_success(
            f"download {package_id}#{version}",
            lambda client, settled: client.download(package_id, version, settled))
