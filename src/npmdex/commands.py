"""
The closed set of user-initiated commands and their single router.
"""

from dataclasses import dataclass
from typing import Optional, Union

from .session import Session


@dataclass(frozen=True)
class GetDependencies:
    pass


@dataclass(frozen=True)
class CheckVersions:
    name: str


@dataclass(frozen=True)
class UpdateDependency:
    name: str
    version: str


@dataclass(frozen=True)
class InstallPackage:
    name: str
    version: Optional[str] = None


@dataclass(frozen=True)
class UninstallPackage:
    name: str


@dataclass(frozen=True)
class AuditFix:
    pass


@dataclass(frozen=True)
class RunAudit:
    pass


@dataclass(frozen=True)
class SearchPackages:
    query: str
    limit: Optional[int] = None


@dataclass(frozen=True)
class AnalyzeImpact:
    name: str


@dataclass(frozen=True)
class PredictConflicts:
    name: str
    version: str


@dataclass(frozen=True)
class CheckLicenses:
    pass


Command = Union[
    GetDependencies,
    CheckVersions,
    UpdateDependency,
    InstallPackage,
    UninstallPackage,
    AuditFix,
    RunAudit,
    SearchPackages,
    AnalyzeImpact,
    PredictConflicts,
    CheckLicenses,
]


async def dispatch(session: Session, command: Command):
    """
    Route one command to the session operation that handles it.

    Raises:
        TypeError: If ``command`` is not one of the known command types
    """
    if isinstance(command, GetDependencies):
        return await session.refresh()
    if isinstance(command, CheckVersions):
        return await session.check_versions(command.name)
    if isinstance(command, UpdateDependency):
        return await session.update(command.name, command.version)
    if isinstance(command, InstallPackage):
        return await session.install(command.name, command.version)
    if isinstance(command, UninstallPackage):
        return await session.uninstall(command.name)
    if isinstance(command, AuditFix):
        return await session.audit_fix()
    if isinstance(command, RunAudit):
        return await session.run_audit()
    if isinstance(command, SearchPackages):
        return await session.search(command.query, command.limit)
    if isinstance(command, AnalyzeImpact):
        return await session.analyze_impact(command.name)
    if isinstance(command, PredictConflicts):
        return await session.predict_conflicts(command.name, command.version)
    if isinstance(command, CheckLicenses):
        return await session.check_licenses()
    raise TypeError(f"Unknown command: {type(command).__name__}")
