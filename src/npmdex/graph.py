"""
Dependency tree analysis.

Both analyses are deliberately shallow:

* Impact only reports packages that list the target in their *direct*
  dependencies. A package that reaches the target through an intermediate
  package is not reported unless it also depends on it directly.
* Conflict prediction only checks the candidate's direct requirements
  against top-level installed packages. Conflicts deeper in the tree, or
  between the candidate's transitive dependencies and existing transitive
  dependencies, are not detected.

Trees are fetched fresh for every call and never cached.
"""

from typing import List, Mapping, Optional, Tuple

from .collaborators import DependencyIntrospector
from .error_handling import DependencyTreeUnavailable, ErrorCategory, get_error_handler
from .models import Conflict, ConflictPrediction, DependencyTreeNode, ImpactResult
from .structured_logging import get_analysis_logger, log_analysis
from .versioning import UnsupportedVersionError, satisfies

# Guards against pathological or malformed trees
MAX_TRAVERSAL_DEPTH = 1000


def compute_impact(
    root: DependencyTreeNode, target_name: str, max_depth: int = MAX_TRAVERSAL_DEPTH
) -> ImpactResult:
    """
    Names of all packages in the tree that directly depend on ``target_name``.

    Every node is visited once; repeated node objects (cycles) are skipped.
    """
    impacted = set()
    visited = set()
    stack: List[Tuple[DependencyTreeNode, int]] = [(root, 0)]

    while stack:
        node, depth = stack.pop()
        if id(node) in visited:
            continue
        visited.add(id(node))

        if target_name in node.dependencies and node.name != target_name:
            impacted.add(node.name)

        if depth >= max_depth:
            get_analysis_logger().warning(
                "traversal_depth_exceeded", package_name=node.name, depth=depth
            )
            continue

        for child in node.dependencies.values():
            stack.append((child, depth + 1))

    return ImpactResult(package_name=target_name, impacted_packages=frozenset(impacted))


def find_conflicts(
    tree: DependencyTreeNode, requirements: Mapping[str, str]
) -> Tuple[Conflict, ...]:
    """Requirements that the installed top-level packages would not satisfy."""
    conflicts = []
    for dep_name, required_range in requirements.items():
        installed = tree.dependencies.get(dep_name)
        if installed is None or not installed.version:
            continue
        try:
            ok = satisfies(installed.version, required_range)
        except UnsupportedVersionError as e:
            get_analysis_logger().warning(
                "conflict_check_skipped",
                package_name=dep_name,
                installed_version=installed.version,
                required_range=required_range,
                reason=str(e),
            )
            continue
        if not ok:
            conflicts.append(
                Conflict(
                    name=dep_name,
                    current_version=installed.version,
                    required_version=required_range,
                )
            )
    return tuple(conflicts)


class DependencyGraphAnalyzer:
    """Runs impact and conflict analysis against a freshly fetched tree."""

    def __init__(self, introspector: DependencyIntrospector):
        self.introspector = introspector

    async def _fetch_tree(self, scope_package: Optional[str] = None) -> DependencyTreeNode:
        try:
            return await self.introspector.get_tree(scope_package)
        except DependencyTreeUnavailable as e:
            get_error_handler().warning(
                ErrorCategory.ANALYSIS,
                "Dependency tree unavailable",
                "graph.DependencyGraphAnalyzer._fetch_tree",
                exception=e,
            )
            raise

    async def analyze_impact(self, package_name: str) -> ImpactResult:
        """
        Which installed packages directly depend on ``package_name``.

        Raises:
            DependencyTreeUnavailable: If ``npm ls`` cannot produce a tree
        """
        tree = await self._fetch_tree()
        result = compute_impact(tree, package_name)
        log_analysis("impact", package_name, len(result.impacted_packages))
        return result

    async def predict_conflicts(self, package_name: str, version: str) -> ConflictPrediction:
        """
        Installed top-level packages the candidate's requirements would reject.

        Raises:
            DependencyTreeUnavailable: If ``npm ls`` cannot produce a tree
        """
        tree = await self._fetch_tree()
        requirements = await self.introspector.get_declared_dependencies(package_name, version)
        conflicts = find_conflicts(tree, requirements)
        log_analysis("conflicts", package_name, len(conflicts), version=version)
        return ConflictPrediction(package_name=package_name, version=version, conflicts=conflicts)
