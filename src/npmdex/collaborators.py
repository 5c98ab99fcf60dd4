"""
Interfaces the core calls into for side effects and introspection.

The reasoning core only depends on these; the npm-backed implementations
live in ``npm_cli`` and tests substitute fakes.
"""

from abc import ABC, abstractmethod
from typing import Dict, Optional

from .models import DeclaredDependencies, DependencyTreeNode, MutationOutcome


class ManifestSource(ABC):
    """Reads declared dependencies from the project manifest."""

    @abstractmethod
    async def read_dependencies(self) -> DeclaredDependencies:
        """
        Raises:
            ManifestNotFound: If no manifest exists at the project root
        """


class PackageMutator(ABC):
    """Performs install/uninstall/audit-fix side effects."""

    @abstractmethod
    async def install(self, name: str, version: Optional[str] = None) -> MutationOutcome:
        pass

    @abstractmethod
    async def uninstall(self, name: str) -> MutationOutcome:
        pass

    @abstractmethod
    async def audit_fix(self) -> MutationOutcome:
        pass


class DependencyIntrospector(ABC):
    """Reports installed state and candidate package requirements."""

    @abstractmethod
    async def get_tree(self, scope_package: Optional[str] = None) -> DependencyTreeNode:
        """
        Raises:
            DependencyTreeUnavailable: If the tree cannot be obtained
        """

    @abstractmethod
    async def get_declared_dependencies(self, name: str, version: str) -> Dict[str, str]:
        """Dependency ranges declared by a package version that may not be installed."""

    @abstractmethod
    async def list_installed_with_licenses(self) -> Dict[str, Optional[str]]:
        """Every installed package (all depths) mapped to its declared license."""
