"""
Shared fixtures for npmdex tests.

The fakes stand in for npm and the registry so that no test spawns a
process or touches the network.
"""

import asyncio
import json
from typing import Dict, List, Optional, Union

import pytest

from npmdex.collaborators import DependencyIntrospector, PackageMutator
from npmdex.config import reset_config
from npmdex.error_handling import PackageNotFound
from npmdex.models import DependencyTreeNode, MutationOutcome, PackageMetadata, SearchResult, VersionSet
from npmdex.process import CommandResult


@pytest.fixture(autouse=True)
def clean_config(monkeypatch):
    """Start every test from default configuration."""
    for key in (
        "NPMDEX_REGISTRY_URL",
        "NPMDEX_REGISTRY_TOKEN",
        "NPM_TOKEN",
        "NPMDEX_USER_AGENT",
        "NPMDEX_CONNECT_TIMEOUT",
        "NPMDEX_READ_TIMEOUT",
        "NPMDEX_RATE_LIMIT",
        "NPMDEX_MAX_CONCURRENT",
        "NPMDEX_NPM",
        "NPMDEX_COMMAND_TIMEOUT",
        "NPMDEX_EXTRA_LICENSES",
        "NPMDEX_LOG_LEVEL",
    ):
        monkeypatch.delenv(key, raising=False)
    reset_config()
    yield
    reset_config()


@pytest.fixture
def temp_dir(tmp_path):
    return tmp_path


@pytest.fixture
def sample_package_json(temp_dir):
    """A package.json with runtime and dev dependencies."""
    content = {
        "name": "sample-app",
        "version": "1.0.0",
        "dependencies": {
            "express": "^4.18.2",
            "lodash": "~4.17.20",
            "left-pad": "1.3.0",
        },
        "devDependencies": {
            "jest": "^29.0.0",
        },
    }
    path = temp_dir / "package.json"
    path.write_text(json.dumps(content, indent=2), encoding="utf-8")
    return path


class FakeRunner:
    """CommandRunner stand-in that replays canned results."""

    def __init__(self, results: Optional[List[Union[CommandResult, Exception]]] = None):
        self.results = list(results or [])
        self.commands: List[List[str]] = []

    async def run(self, command, timeout_seconds=None):
        self.commands.append(list(command))
        result = self.results.pop(0) if self.results else CommandResult(command, "", "", 0)
        if isinstance(result, Exception):
            raise result
        return result


def npm_result(stdout="", stderr="", returncode=0) -> CommandResult:
    return CommandResult(command=["npm"], stdout=stdout, stderr=stderr, returncode=returncode)


class FakeRegistry:
    """In-memory registry; a value that is an exception is raised on lookup."""

    def __init__(self):
        self.versions: Dict[str, Union[List[str], Exception]] = {}
        self.licenses: Dict[str, Union[Optional[str], Exception]] = {}
        self.declared: Dict[str, Dict[str, str]] = {}
        self.search_results: List[SearchResult] = []
        self.delays: Dict[str, float] = {}
        self.requests: List[tuple] = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        pass

    async def fetch_versions(self, package_name):
        self.requests.append(("versions", package_name))
        return await self._version_set(package_name)

    async def _version_set(self, package_name):
        if package_name in self.delays:
            await asyncio.sleep(self.delays[package_name])
        value = self.versions.get(package_name)
        if value is None:
            raise PackageNotFound(f"Package not found in registry: {package_name}")
        if isinstance(value, Exception):
            raise value
        return VersionSet(package_name, tuple(value))

    async def fetch_package(self, package_name):
        self.requests.append(("package", package_name))
        version_set = await self._version_set(package_name)
        value = self.licenses.get(package_name)
        if isinstance(value, Exception):
            return PackageMetadata(version_set, license_error=str(value))
        return PackageMetadata(version_set, license=value)

    async def fetch_declared_dependencies(self, package_name, version):
        key = f"{package_name}@{version}"
        if key not in self.declared:
            raise PackageNotFound(key)
        return self.declared[key]

    async def search(self, query, limit=None):
        return self.search_results[: limit or 20]


class FakeIntrospector(DependencyIntrospector):
    def __init__(self, tree=None, declared=None, licenses=None, tree_error=None):
        self.tree = tree or DependencyTreeNode("(root)")
        self.declared = declared or {}
        self.licenses = licenses or {}
        self.tree_error = tree_error
        self.tree_calls = 0

    async def get_tree(self, scope_package=None):
        self.tree_calls += 1
        if self.tree_error:
            raise self.tree_error
        return self.tree

    async def get_declared_dependencies(self, name, version):
        return self.declared.get(f"{name}@{version}", {})

    async def list_installed_with_licenses(self):
        return self.licenses


class FakeMutator(PackageMutator):
    """Records calls; ``gate`` can hold a mutation open until released."""

    def __init__(self, success=True, message="done"):
        self.success = success
        self.message = message
        self.calls: List[tuple] = []
        self.gate: Optional[asyncio.Event] = None

    async def _outcome(self, action, name):
        self.calls.append((action, name))
        if self.gate is not None:
            await self.gate.wait()
        return MutationOutcome(action, name, self.success, self.message)

    async def install(self, name, version=None):
        return await self._outcome("install", name if version is None else f"{name}@{version}")

    async def uninstall(self, name):
        return await self._outcome("uninstall", name)

    async def audit_fix(self):
        return await self._outcome("audit-fix", None)


def tree(name, version=None, **children) -> DependencyTreeNode:
    """Build a DependencyTreeNode; keyword arguments become children."""
    return DependencyTreeNode(name=name, version=version, dependencies=children)

