"""
The refresh cycle: manifest -> registry + audit -> DependencyReport.

Lookups for different packages run concurrently and may finish in any
order; every result is joined back to its dependency by name. A failed
lookup marks only its own dependency.
"""

import asyncio
from typing import Dict, Iterable, Optional, Tuple

from .audit import VulnerabilityReporter
from .collaborators import ManifestSource
from .config import get_config
from .error_handling import ErrorCategory, PackageNotFound, get_error_handler
from .models import (
    AdvisoryRecord,
    Dependency,
    DependencyReport,
    EnrichedDependency,
    LicenseLookup,
    LookupStatus,
    VersionLookup,
    VersionSet,
)
from .registry_client import NpmRegistryClient
from .structured_logging import get_session_logger

VERSION_FETCH_ERROR = "error fetching available versions"
LICENSE_FETCH_ERROR = "error fetching license"


def _record_lookup_failure(package_name: str, function: str, error: Exception) -> None:
    get_error_handler().warning(
        ErrorCategory.REGISTRY,
        f"Lookup failed for {package_name}",
        f"enrichment.{function}",
        exception=error,
        package_name=package_name,
    )


async def lookup_versions(registry: NpmRegistryClient, package_name: str) -> VersionLookup:
    """Fetch versions for one package without raising."""
    try:
        version_set = await registry.fetch_versions(package_name)
    except PackageNotFound as e:
        return VersionLookup(LookupStatus.NONE_FOUND, error=str(e))
    except Exception as e:
        _record_lookup_failure(package_name, "lookup_versions", e)
        return VersionLookup(LookupStatus.ERROR, error=f"{VERSION_FETCH_ERROR}: {e}")
    return _version_lookup(version_set)


def _version_lookup(version_set: VersionSet) -> VersionLookup:
    if not version_set.versions:
        return VersionLookup(LookupStatus.NONE_FOUND, version_set=version_set)
    return VersionLookup(LookupStatus.OK, version_set=version_set)


async def lookup_package(
    registry: NpmRegistryClient, package_name: str
) -> Tuple[VersionLookup, LicenseLookup]:
    """Versions and license for one package from a single registry request, without raising."""
    try:
        metadata = await registry.fetch_package(package_name)
    except PackageNotFound as e:
        return (
            VersionLookup(LookupStatus.NONE_FOUND, error=str(e)),
            LicenseLookup(LookupStatus.NONE_FOUND, error=str(e)),
        )
    except Exception as e:
        _record_lookup_failure(package_name, "lookup_package", e)
        return (
            VersionLookup(LookupStatus.ERROR, error=f"{VERSION_FETCH_ERROR}: {e}"),
            LicenseLookup(LookupStatus.ERROR, error=f"{LICENSE_FETCH_ERROR}: {e}"),
        )

    if metadata.license_error:
        license_lookup = LicenseLookup(
            LookupStatus.ERROR, error=f"{LICENSE_FETCH_ERROR}: {metadata.license_error}"
        )
    elif metadata.license is None:
        license_lookup = LicenseLookup(LookupStatus.NONE_FOUND)
    else:
        license_lookup = LicenseLookup(LookupStatus.OK, license=metadata.license)
    return _version_lookup(metadata.version_set), license_lookup


class EnrichmentPipeline:
    """Builds a fresh DependencyReport on every refresh."""

    def __init__(
        self,
        manifest: ManifestSource,
        registry: NpmRegistryClient,
        reporter: VulnerabilityReporter,
        fetch_licenses: bool = True,
        max_concurrent: Optional[int] = None,
    ):
        self.manifest = manifest
        self.registry = registry
        self.reporter = reporter
        self.fetch_licenses = fetch_licenses
        self.max_concurrent = max_concurrent or get_config().network.max_concurrent

    async def _enrich_one(
        self, dependency: Dependency, semaphore: asyncio.Semaphore
    ) -> Tuple[str, VersionLookup, LicenseLookup]:
        async with semaphore:
            if self.fetch_licenses:
                versions, license_lookup = await lookup_package(self.registry, dependency.name)
            else:
                versions = await lookup_versions(self.registry, dependency.name)
                license_lookup = LicenseLookup(LookupStatus.NONE_FOUND)
        return dependency.name, versions, license_lookup

    async def _enrich_all(
        self, dependencies: Iterable[Dependency]
    ) -> Dict[str, Tuple[VersionLookup, LicenseLookup]]:
        semaphore = asyncio.Semaphore(self.max_concurrent)
        results = await asyncio.gather(*(self._enrich_one(dep, semaphore) for dep in dependencies))
        return {name: (versions, license_lookup) for name, versions, license_lookup in results}

    async def refresh(self) -> DependencyReport:
        """
        Re-read the manifest and rebuild every enrichment from scratch.

        Raises:
            ManifestNotFound: If there is no package.json to read
        """
        declared = await self.manifest.read_dependencies()
        dependencies = declared.to_dependencies()
        dev_dependencies = declared.to_dev_dependencies()
        every = dependencies + dev_dependencies

        (advisories, audit_error), lookups = await asyncio.gather(
            self.reporter.collect_advisories(),
            self._enrich_all({dep.name: dep for dep in every}.values()),
        )

        declared_names = {dep.name for dep in every}
        joined_advisories: Dict[str, AdvisoryRecord] = {
            name: record for name, record in advisories.items() if name in declared_names
        }

        def join(items: Tuple[Dependency, ...]) -> Tuple[EnrichedDependency, ...]:
            return tuple(
                EnrichedDependency(
                    dependency=dep,
                    versions=lookups[dep.name][0],
                    license=lookups[dep.name][1],
                    advisory=joined_advisories.get(dep.name),
                )
                for dep in items
            )

        report = DependencyReport(
            dependencies=join(dependencies),
            dev_dependencies=join(dev_dependencies),
            advisories=joined_advisories,
            audit_error=audit_error,
        )

        failed = sum(1 for item in report.all_dependencies() if item.versions.status is LookupStatus.ERROR)
        get_session_logger().info(
            "refresh_completed",
            dependency_count=len(dependencies),
            dev_dependency_count=len(dev_dependencies),
            advisory_count=len(joined_advisories),
            failed_lookups=failed,
            audit_available=audit_error is None,
        )
        return report
