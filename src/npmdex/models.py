"""Data structures shared by the npmdex core."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, Mapping, Optional, Tuple

from .versioning import compare, is_release_version, is_upgrade, strip_range_operator


@dataclass(frozen=True)
class Dependency:
    """A dependency declared in package.json."""

    name: str
    declared_range: str
    resolved_version: str
    dev: bool = False

    @classmethod
    def from_manifest(cls, name: str, declared_range: str, dev: bool = False) -> "Dependency":
        return cls(
            name=name,
            declared_range=declared_range,
            resolved_version=strip_range_operator(declared_range),
            dev=dev,
        )


@dataclass(frozen=True)
class DeclaredDependencies:
    """dependencies and devDependencies as read from the manifest."""

    dependencies: Mapping[str, str] = field(default_factory=dict)
    dev_dependencies: Mapping[str, str] = field(default_factory=dict)

    def to_dependencies(self) -> Tuple[Dependency, ...]:
        return tuple(
            Dependency.from_manifest(name, spec) for name, spec in self.dependencies.items()
        )

    def to_dev_dependencies(self) -> Tuple[Dependency, ...]:
        return tuple(
            Dependency.from_manifest(name, spec, dev=True)
            for name, spec in self.dev_dependencies.items()
        )


@dataclass(frozen=True)
class VersionSet:
    """Release versions of one package, newest first."""

    package_name: str
    versions: Tuple[str, ...] = ()

    @property
    def latest(self) -> Optional[str]:
        return self.versions[0] if self.versions else None

    def upgrades_from(self, current: str) -> Tuple[str, ...]:
        """
        Versions newer than ``current``; a leading ^ or ~ is ignored.

        Declared specs that are not a plain version after that ("*",
        ">=1.0.0", "1.x", "latest", git and file specs) have no upgrades.
        """
        base = strip_range_operator(current)
        if not is_release_version(base):
            return ()
        return tuple(v for v in self.versions if is_release_version(v) and is_upgrade(v, base))

    def describe_change(self, candidate: str, current: str) -> str:
        """Label moving from ``current`` to ``candidate``, "unknown" when either is not a plain version."""
        base = strip_range_operator(current)
        if not (is_release_version(candidate) and is_release_version(base)):
            return "unknown"
        order = compare(candidate, base)
        if order > 0:
            return "upgrade"
        if order < 0:
            return "downgrade"
        return "current"


class Severity(Enum):
    """npm audit severities, lowest first."""

    INFO = "info"
    LOW = "low"
    MODERATE = "moderate"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_ORDER.index(self)

    @classmethod
    def parse(cls, value: object) -> "Severity":
        try:
            return cls(str(value).lower())
        except ValueError:
            return cls.MODERATE


_SEVERITY_ORDER = list(Severity)


@dataclass(frozen=True)
class AdvisoryRecord:
    """Summary of the advisories reported for one package."""

    package_name: str
    severity: Severity
    title: str
    vulnerability_count: int


class LicenseStatus(Enum):
    COMPLIANT = "compliant"
    UNKNOWN = "unknown"
    MISSING = "missing"


@dataclass(frozen=True)
class LicenseVerdict:
    package_name: str
    license: Optional[str]
    status: LicenseStatus


@dataclass(frozen=True)
class DependencyTreeNode:
    """One package in the installed tree reported by ``npm ls``."""

    name: str
    version: Optional[str] = None
    dependencies: Mapping[str, "DependencyTreeNode"] = field(default_factory=dict)


@dataclass(frozen=True)
class ImpactResult:
    package_name: str
    impacted_packages: FrozenSet[str] = frozenset()


@dataclass(frozen=True)
class Conflict:
    name: str
    current_version: str
    required_version: str


@dataclass(frozen=True)
class ConflictPrediction:
    package_name: str
    version: str
    conflicts: Tuple[Conflict, ...] = ()

    @property
    def has_conflicts(self) -> bool:
        return bool(self.conflicts)


@dataclass(frozen=True)
class PackageMetadata:
    """What one packument download yields for enrichment."""

    version_set: VersionSet
    license: Optional[str] = None
    license_error: Optional[str] = None


@dataclass(frozen=True)
class SearchResult:
    name: str
    version: str
    description: str = ""


@dataclass(frozen=True)
class MutationOutcome:
    """Result of install/update/uninstall/audit-fix, shown to the user as-is."""

    action: str
    package_name: Optional[str]
    success: bool
    message: str
    # Set when the mutation worked but the follow-up refresh did not
    refresh_error: Optional[str] = None


class LookupStatus(Enum):
    """Per-item enrichment status."""

    OK = "ok"
    NONE_FOUND = "none_found"
    ERROR = "error"


@dataclass(frozen=True)
class VersionLookup:
    status: LookupStatus
    version_set: Optional[VersionSet] = None
    error: Optional[str] = None


@dataclass(frozen=True)
class LicenseLookup:
    status: LookupStatus
    license: Optional[str] = None
    error: Optional[str] = None


@dataclass(frozen=True)
class EnrichedDependency:
    """A declared dependency joined with its registry and audit data."""

    dependency: Dependency
    versions: VersionLookup
    license: LicenseLookup
    advisory: Optional[AdvisoryRecord] = None

    @property
    def name(self) -> str:
        return self.dependency.name


@dataclass(frozen=True)
class DependencyReport:
    """Everything produced by one refresh cycle."""

    dependencies: Tuple[EnrichedDependency, ...] = ()
    dev_dependencies: Tuple[EnrichedDependency, ...] = ()
    advisories: Dict[str, AdvisoryRecord] = field(default_factory=dict)
    audit_error: Optional[str] = None

    def all_dependencies(self) -> Tuple[EnrichedDependency, ...]:
        return self.dependencies + self.dev_dependencies

    def find(self, name: str) -> Optional[EnrichedDependency]:
        for item in self.all_dependencies():
            if item.name == name:
                return item
        return None
