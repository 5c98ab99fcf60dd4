"""
A working session on one npm project.

Owns the collaborators, the latest DependencyReport and the single
in-flight mutation flag. No error raised by one operation leaves the
session unusable.
"""

import dataclasses
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Dict, List, Optional

from .audit import VulnerabilityReporter
from .collaborators import DependencyIntrospector, ManifestSource, PackageMutator
from .enrichment import EnrichmentPipeline, lookup_versions
from .error_handling import ErrorCategory, MutationInProgress, NpmDexError, get_error_handler
from .graph import DependencyGraphAnalyzer
from .licenses import LicenseComplianceChecker
from .manifest import PackageJsonManifest
from .models import (
    AdvisoryRecord,
    ConflictPrediction,
    DependencyReport,
    ImpactResult,
    LicenseVerdict,
    MutationOutcome,
    SearchResult,
    VersionLookup,
)
from .npm_cli import NpmIntrospector, NpmPackageMutator
from .registry_client import NpmRegistryClient
from .structured_logging import clear_project_context, set_project_context


class MutationGuard:
    """Allows at most one mutating npm command at a time."""

    def __init__(self):
        self.active: Optional[str] = None

    @property
    def busy(self) -> bool:
        return self.active is not None

    @asynccontextmanager
    async def hold(self, action: str) -> AsyncIterator[None]:
        # No await between check and set
        if self.active is not None:
            raise MutationInProgress(f"Cannot {action} while {self.active} is running")
        self.active = action
        try:
            yield
        finally:
            self.active = None


class Session:
    """Entry point for every user-initiated operation."""

    def __init__(
        self,
        project_root: Path,
        manifest: ManifestSource,
        registry: NpmRegistryClient,
        reporter: VulnerabilityReporter,
        mutator: PackageMutator,
        introspector: DependencyIntrospector,
        license_checker: Optional[LicenseComplianceChecker] = None,
        fetch_licenses: bool = True,
    ):
        self.project_root = Path(project_root)
        self.registry = registry
        self.reporter = reporter
        self.mutator = mutator
        self.introspector = introspector
        self.pipeline = EnrichmentPipeline(manifest, registry, reporter, fetch_licenses)
        self.analyzer = DependencyGraphAnalyzer(introspector)
        self.license_checker = license_checker or LicenseComplianceChecker()
        self.guard = MutationGuard()
        self.last_report: Optional[DependencyReport] = None
        self.refresh_error: Optional[str] = None

    @classmethod
    def for_project(cls, project_root: Path, fetch_licenses: bool = True) -> "Session":
        """Session backed by npm and the configured registry."""
        project_root = Path(project_root).resolve()
        registry = NpmRegistryClient()
        return cls(
            project_root=project_root,
            manifest=PackageJsonManifest(project_root),
            registry=registry,
            reporter=VulnerabilityReporter(project_root),
            mutator=NpmPackageMutator(project_root),
            introspector=NpmIntrospector(project_root, registry),
            fetch_licenses=fetch_licenses,
        )

    async def __aenter__(self) -> "Session":
        set_project_context(str(self.project_root))
        await self.registry.__aenter__()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.registry.__aexit__(exc_type, exc_val, exc_tb)
        clear_project_context()

    async def refresh(self) -> DependencyReport:
        """Rebuild the dependency report; the previous one is replaced, never merged."""
        report = await self.pipeline.refresh()
        self.last_report = report
        self.refresh_error = None
        return report

    async def check_versions(self, package_name: str) -> VersionLookup:
        return await lookup_versions(self.registry, package_name)

    async def search(self, query: str, limit: Optional[int] = None) -> List[SearchResult]:
        return await self.registry.search(query, limit)

    async def run_audit(self) -> Dict[str, AdvisoryRecord]:
        return await self.reporter.run_audit()

    async def analyze_impact(self, package_name: str) -> ImpactResult:
        return await self.analyzer.analyze_impact(package_name)

    async def predict_conflicts(self, package_name: str, version: str) -> ConflictPrediction:
        return await self.analyzer.predict_conflicts(package_name, version)

    async def check_licenses(self) -> List[LicenseVerdict]:
        return await self.license_checker.run(self.introspector)

    async def _mutate(self, action: str, operation) -> MutationOutcome:
        async with self.guard.hold(action):
            outcome = await operation()

        if outcome.success:
            try:
                await self.refresh()
            except NpmDexError as e:
                self.refresh_error = str(e)
                get_error_handler().warning(
                    ErrorCategory.SESSION,
                    f"{action} succeeded but the dependency list could not be refreshed",
                    "session.Session._mutate",
                    exception=e,
                )
                return dataclasses.replace(outcome, refresh_error=str(e))
        return outcome

    async def install(self, package_name: str, version: Optional[str] = None) -> MutationOutcome:
        return await self._mutate("install", lambda: self.mutator.install(package_name, version))

    async def update(self, package_name: str, version: str) -> MutationOutcome:
        return await self._mutate("update", lambda: self.mutator.install(package_name, version))

    async def uninstall(self, package_name: str) -> MutationOutcome:
        return await self._mutate("uninstall", lambda: self.mutator.uninstall(package_name))

    async def audit_fix(self) -> MutationOutcome:
        return await self._mutate("audit-fix", self.mutator.audit_fix)
