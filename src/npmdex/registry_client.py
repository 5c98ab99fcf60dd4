"""
npm registry client.

Fetches available versions, license, declared dependencies and search results
over the registry's public HTTP/JSON API. All responses are validated field
by field before they are handed to the rest of the core.
"""

import asyncio
import re
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import httpx

from .config import get_config
from .error_handling import (
    MalformedResponse,
    PackageNotFound,
    RegistryTimeout,
    RegistryUnavailable,
    log_network_error,
)
from .models import PackageMetadata, SearchResult, VersionSet
from .structured_logging import get_registry_logger, log_registry_fetch
from .versioning import is_release_version, sort_versions

# Security constants for credential protection
CREDENTIAL_PATTERN = re.compile(r"^[a-zA-Z0-9_\-+=/.]+$")
MIN_CREDENTIAL_LENGTH = 8
MAX_CREDENTIAL_LENGTH = 500


def _validate_credential(credential: str) -> str:
    """
    Validate a registry token before it is put into a header.

    Raises:
        ValueError: If the token is empty, too short/long or has unsafe characters
    """
    if not credential or not isinstance(credential, str):
        raise ValueError("Invalid registry token: must be a non-empty string")

    credential = credential.strip()
    if len(credential) > MAX_CREDENTIAL_LENGTH:
        raise ValueError(f"Registry token too long (max: {MAX_CREDENTIAL_LENGTH})")
    if len(credential) < MIN_CREDENTIAL_LENGTH:
        raise ValueError(f"Registry token too short (minimum {MIN_CREDENTIAL_LENGTH} characters)")
    if not CREDENTIAL_PATTERN.match(credential):
        raise ValueError("Invalid registry token: contains unsafe characters")
    return credential


def encode_package_name(package_name: str) -> str:
    """URL-encode a package name; scoped names keep their leading @."""
    if not package_name or not isinstance(package_name, str) or not package_name.strip():
        raise ValueError("Package name must be a non-empty string")
    return quote(package_name.strip(), safe="@")


def extract_license(license_data: Any) -> Optional[str]:
    """Extract a license string from a package.json ``license``/``licenses`` value."""
    if not license_data:
        return None

    if isinstance(license_data, str):
        return license_data.strip() or None
    elif isinstance(license_data, dict):
        value = license_data.get("type")
        return value if isinstance(value, str) and value.strip() else None
    elif isinstance(license_data, list) and license_data:
        # Legacy "licenses" array, take the first one
        return extract_license(license_data[0])

    return None


def _string_mapping(data: Any) -> Dict[str, str]:
    if not isinstance(data, dict):
        return {}
    return {
        str(name): spec
        for name, spec in data.items()
        if isinstance(name, str) and isinstance(spec, str)
    }


@dataclass(frozen=True)
class RegistryConfig:
    """Connection settings for one registry."""

    base_url: str = "https://registry.npmjs.org"
    token: Optional[str] = None

    def __post_init__(self):
        if not self.base_url or not isinstance(self.base_url, str):
            raise ValueError("base_url must be a non-empty string")
        object.__setattr__(self, "base_url", self.base_url.rstrip("/"))
        if self.token:
            object.__setattr__(self, "token", _validate_credential(self.token))

    def get_auth_headers(self) -> Dict[str, str]:
        if self.token:
            return {"Authorization": f"Bearer {self.token}"}
        return {}


class RateLimiter:
    """Simple rate limiter to avoid hammering the registry."""

    def __init__(self, requests_per_second: float = 10.0):
        self.min_interval = 1.0 / requests_per_second
        self.last_request_time = 0.0
        self._lock = asyncio.Lock()

    async def acquire(self) -> None:
        """Wait if necessary to respect rate limits."""
        async with self._lock:
            time_since_last = time.monotonic() - self.last_request_time
            if time_since_last < self.min_interval:
                await asyncio.sleep(self.min_interval - time_since_last)
            self.last_request_time = time.monotonic()


class NpmRegistryClient:
    """
    Async client for the npm registry.

    Use as an async context manager; the httpx.AsyncClient is created on
    entry and closed on exit.
    """

    def __init__(
        self,
        registry_config: Optional[RegistryConfig] = None,
        rate_limit_rps: Optional[float] = None,
        timeout: Optional[httpx.Timeout] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        config = get_config()
        self.registry_config = registry_config or RegistryConfig(
            base_url=config.network.registry_url,
            token=config.network.registry_token,
        )
        self.base_url = self.registry_config.base_url
        self.rate_limiter = RateLimiter(rate_limit_rps or config.network.rate_limit)
        self.timeout = timeout or httpx.Timeout(
            config.network.read_timeout, connect=config.network.connect_timeout
        )
        self._transport = transport
        self.client: Optional[httpx.AsyncClient] = None

        self._headers = {
            "User-Agent": config.network.user_agent,
            "Accept": "application/json",
        }
        self._headers.update(self.registry_config.get_auth_headers())

    async def __aenter__(self) -> "NpmRegistryClient":
        self.client = httpx.AsyncClient(
            timeout=self.timeout, headers=self._headers, transport=self._transport
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if self.client:
            await self.client.aclose()
            self.client = None

    async def _get_json(
        self,
        path: str,
        package_name: str,
        operation: str,
        params: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """GET a registry document and map failures onto npmdex errors."""
        if self.client is None:
            raise RuntimeError("HTTP client not initialized - use within async context manager")

        url = f"{self.base_url}/{path}"
        start_time = time.monotonic()
        await self.rate_limiter.acquire()

        try:
            response = await self.client.get(url, params=params)
        except httpx.TimeoutException as e:
            log_registry_fetch(package_name, operation, False, error="timeout")
            log_network_error(
                "Registry request timed out", f"registry_client.{operation}", url=url, exception=e
            )
            raise RegistryTimeout(f"Registry request for {package_name} timed out") from e
        except httpx.RequestError as e:
            log_registry_fetch(package_name, operation, False, error=str(e))
            log_network_error(
                "Registry request failed", f"registry_client.{operation}", url=url, exception=e
            )
            raise RegistryUnavailable(f"Network error fetching {package_name}: {e}") from e

        duration_ms = round((time.monotonic() - start_time) * 1000, 1)

        if response.status_code == 404:
            log_registry_fetch(package_name, operation, False, duration_ms, error="not found")
            raise PackageNotFound(f"Package not found in registry: {package_name}")

        if not response.is_success:
            log_registry_fetch(
                package_name, operation, False, duration_ms, error=f"HTTP {response.status_code}"
            )
            log_network_error(
                "Registry returned an error status",
                f"registry_client.{operation}",
                url=url,
                status_code=response.status_code,
            )
            raise RegistryUnavailable(
                f"HTTP {response.status_code} fetching {package_name}: {response.text[:100]}"
            )

        try:
            data = response.json()
        except ValueError as e:
            raise MalformedResponse(f"Registry returned invalid JSON for {package_name}") from e

        if not isinstance(data, dict):
            raise MalformedResponse(f"Registry returned unexpected document for {package_name}")

        log_registry_fetch(package_name, operation, True, duration_ms)
        return data

    @staticmethod
    def _versions_from(package_name: str, data: Dict[str, Any]) -> VersionSet:
        versions = data.get("versions")
        if not isinstance(versions, dict):
            raise MalformedResponse(f"Registry document for {package_name} has no versions")

        releases = [v for v in versions if isinstance(v, str) and is_release_version(v)]
        skipped = len(versions) - len(releases)
        if skipped:
            get_registry_logger().debug(
                "prerelease_versions_skipped", package_name=package_name, skipped=skipped
            )

        return VersionSet(package_name=package_name, versions=tuple(sort_versions(releases)))

    @staticmethod
    def _license_from(package_name: str, data: Dict[str, Any]) -> Optional[str]:
        """License declared by the version tagged ``latest``."""
        dist_tags = data.get("dist-tags")
        latest = dist_tags.get("latest") if isinstance(dist_tags, dict) else None
        versions = data.get("versions")
        if not isinstance(latest, str) or not isinstance(versions, dict):
            raise MalformedResponse(f"Registry document for {package_name} has no latest version")

        version_data = versions.get(latest)
        if not isinstance(version_data, dict):
            return extract_license(data.get("license"))
        return extract_license(version_data.get("license") or version_data.get("licenses"))

    async def fetch_versions(self, package_name: str) -> VersionSet:
        """
        Fetch every published release version, newest first.

        Raises:
            PackageNotFound: The registry has no such package
            RegistryUnavailable: Network failure or non-2xx response
            MalformedResponse: The document has no ``versions`` object
        """
        data = await self._get_json(
            encode_package_name(package_name), package_name, "fetch_versions"
        )
        return self._versions_from(package_name, data)

    async def fetch_package(self, package_name: str) -> PackageMetadata:
        """
        Versions and latest license from a single packument download.

        A packument without a usable ``dist-tags.latest`` still yields its
        versions; the license problem is carried in ``license_error``.
        """
        data = await self._get_json(
            encode_package_name(package_name), package_name, "fetch_package"
        )
        version_set = self._versions_from(package_name, data)
        try:
            license_id = self._license_from(package_name, data)
        except MalformedResponse as e:
            return PackageMetadata(version_set, license_error=str(e))
        return PackageMetadata(version_set, license=license_id)

    async def fetch_declared_dependencies(self, package_name: str, version: str) -> Dict[str, str]:
        """Fetch the ``dependencies`` map of one published version."""
        path = f"{encode_package_name(package_name)}/{quote(version.strip(), safe='')}"
        data = await self._get_json(path, package_name, "fetch_declared_dependencies")
        if "version" not in data:
            raise MalformedResponse(f"Registry returned no manifest for {package_name}@{version}")
        return _string_mapping(data.get("dependencies"))

    async def search(self, query: str, limit: Optional[int] = None) -> List[SearchResult]:
        """Search the registry; results keep the registry's relevance order."""
        if not query or not query.strip():
            return []
        limit = limit or get_config().network.search_limit

        data = await self._get_json(
            "-/v1/search", query, "search", params={"text": query.strip(), "size": limit}
        )
        objects = data.get("objects")
        if not isinstance(objects, list):
            raise MalformedResponse("Search response has no objects list")

        results = []
        for item in objects:
            package = item.get("package") if isinstance(item, dict) else None
            if not isinstance(package, dict):
                continue
            name = package.get("name")
            version = package.get("version")
            if not isinstance(name, str) or not isinstance(version, str):
                continue
            description = package.get("description")
            results.append(
                SearchResult(
                    name=name,
                    version=version,
                    description=description if isinstance(description, str) else "",
                )
            )
        return results[:limit]
