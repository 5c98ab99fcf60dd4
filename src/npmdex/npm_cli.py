"""
npm-backed collaborators.

Wraps ``npm install``, ``npm uninstall``, ``npm audit fix`` and ``npm ls``.
Nothing else in npmdex spawns processes.
"""

import json
import re
from pathlib import Path
from typing import Any, Dict, List, Optional

from .collaborators import DependencyIntrospector, PackageMutator
from .config import get_config
from .error_handling import (
    CommandFailed,
    CommandTimeout,
    DependencyTreeUnavailable,
    MutationFailed,
    log_parsing_error,
)
from .models import DependencyTreeNode, MutationOutcome
from .process import CommandResult, CommandRunner
from .registry_client import NpmRegistryClient, extract_license
from .structured_logging import get_analysis_logger, log_mutation

PACKAGE_NAME_PATTERN = re.compile(r"^(@[a-z0-9][a-z0-9._~-]*/)?[a-z0-9][a-z0-9._~-]*$", re.IGNORECASE)
VERSION_SPEC_PATTERN = re.compile(r"^[A-Za-z0-9^~<>=*.|+\s-]+$")

# Deeper subtrees are truncated when parsing ``npm ls`` output
MAX_TREE_DEPTH = 256


def validate_package_name(name: str) -> str:
    """Reject anything that is not a plain (optionally scoped) npm package name."""
    if not isinstance(name, str) or not PACKAGE_NAME_PATTERN.match(name.strip()):
        raise ValueError(f"Invalid package name: {name!r}")
    return name.strip()


def validate_version_spec(version: str) -> str:
    if (
        not isinstance(version, str)
        or not version.strip()
        or version.strip().startswith("-")
        or not VERSION_SPEC_PATTERN.match(version.strip())
    ):
        raise ValueError(f"Invalid version: {version!r}")
    return version.strip()


def parse_tree(data: Any, name: Optional[str] = None, depth: int = 0) -> DependencyTreeNode:
    """Build a DependencyTreeNode from one node of ``npm ls --json`` output."""
    if not isinstance(data, dict):
        raise ValueError("Tree node is not an object")

    node_name = name or data.get("name")
    if not isinstance(node_name, str) or not node_name:
        node_name = "(root)"

    version = data.get("version")
    children: Dict[str, DependencyTreeNode] = {}
    raw_children = data.get("dependencies")

    if isinstance(raw_children, dict):
        if depth >= MAX_TREE_DEPTH:
            get_analysis_logger().warning(
                "dependency_tree_truncated", package_name=node_name, depth=depth
            )
        else:
            for child_name, child in raw_children.items():
                if isinstance(child_name, str) and isinstance(child, dict):
                    children[child_name] = parse_tree(child, child_name, depth + 1)

    return DependencyTreeNode(
        name=node_name,
        version=version if isinstance(version, str) and version else None,
        dependencies=children,
    )


def collect_licenses(data: Any) -> Dict[str, Optional[str]]:
    """Flatten ``npm ls --all --json --long`` output into name -> license."""
    licenses: Dict[str, Optional[str]] = {}
    top = data.get("dependencies") if isinstance(data, dict) else None
    if not isinstance(top, dict):
        return licenses

    stack = list(top.items())
    seen = set()
    while stack:
        child_name, node = stack.pop()
        if not isinstance(node, dict) or id(node) in seen:
            continue
        seen.add(id(node))
        if node.get("missing"):
            continue
        if child_name not in licenses:
            licenses[child_name] = extract_license(node.get("license") or node.get("licenses"))
        children = node.get("dependencies")
        if isinstance(children, dict):
            stack.extend(children.items())

    return dict(sorted(licenses.items()))


class NpmPackageMutator(PackageMutator):
    """Performs mutations by invoking npm in the project directory."""

    def __init__(self, project_root: Path, runner: Optional[CommandRunner] = None):
        config = get_config()
        self.npm = config.process.npm_executable
        self.runner = runner or CommandRunner(
            cwd=project_root, timeout_seconds=config.process.command_timeout_seconds
        )

    async def _run_npm(self, args: List[str]) -> CommandResult:
        try:
            result = await self.runner.run([self.npm, *args])
        except (CommandFailed, CommandTimeout) as e:
            raise MutationFailed(str(e)) from e
        if not result.ok:
            raise MutationFailed(result.diagnostic())
        return result

    async def _mutate(
        self, action: str, package_name: Optional[str], args: List[str], success_message: str
    ) -> MutationOutcome:
        try:
            await self._run_npm(args)
        except MutationFailed as e:
            outcome = MutationOutcome(action, package_name, False, e.reason)
        else:
            outcome = MutationOutcome(action, package_name, True, success_message)

        log_mutation(action, package_name, outcome.success, detail=outcome.message[:500])
        return outcome

    async def install(self, name: str, version: Optional[str] = None) -> MutationOutcome:
        name = validate_package_name(name)
        target = f"{name}@{validate_version_spec(version)}" if version else name
        return await self._mutate("install", name, ["install", target], f"{target} installed successfully.")

    async def uninstall(self, name: str) -> MutationOutcome:
        name = validate_package_name(name)
        return await self._mutate("uninstall", name, ["uninstall", name], f"{name} uninstalled successfully.")

    async def audit_fix(self) -> MutationOutcome:
        return await self._mutate("audit-fix", None, ["audit", "fix"], "npm audit fix completed.")


class NpmIntrospector(DependencyIntrospector):
    """Reads installed state through ``npm ls`` and candidates through the registry."""

    def __init__(
        self,
        project_root: Path,
        registry: NpmRegistryClient,
        runner: Optional[CommandRunner] = None,
    ):
        config = get_config()
        self.npm = config.process.npm_executable
        self.registry = registry
        self.runner = runner or CommandRunner(
            cwd=project_root, timeout_seconds=config.process.tree_timeout_seconds
        )

    async def _ls(self, args: List[str]) -> Dict[str, Any]:
        try:
            result = await self.runner.run([self.npm, "ls", "--json", *args])
        except (CommandFailed, CommandTimeout) as e:
            raise DependencyTreeUnavailable(str(e)) from e
        return self._load_ls_output(result)

    @staticmethod
    def _load_ls_output(result: CommandResult) -> Dict[str, Any]:
        # npm ls exits non-zero for extraneous/missing packages but still prints the tree
        try:
            data = json.loads(result.stdout)
        except ValueError as e:
            log_parsing_error("npm ls produced invalid JSON", "npm_cli.NpmIntrospector._ls", exception=e)
            raise DependencyTreeUnavailable(
                f"npm ls failed: {result.diagnostic()[:300]}"
            ) from e
        if not isinstance(data, dict):
            raise DependencyTreeUnavailable("npm ls produced an unexpected document")
        if "error" in data and "dependencies" not in data:
            error = data["error"]
            summary = error.get("summary") if isinstance(error, dict) else str(error)
            raise DependencyTreeUnavailable(f"npm ls failed: {summary}")
        return data

    async def get_tree(self, scope_package: Optional[str] = None) -> DependencyTreeNode:
        args = ["--all"]
        if scope_package:
            args.append(validate_package_name(scope_package))
        data = await self._ls(args)
        try:
            return parse_tree(data)
        except ValueError as e:
            raise DependencyTreeUnavailable(str(e)) from e

    async def get_declared_dependencies(self, name: str, version: str) -> Dict[str, str]:
        return await self.registry.fetch_declared_dependencies(
            validate_package_name(name), validate_version_spec(version)
        )

    async def list_installed_with_licenses(self) -> Dict[str, Optional[str]]:
        return collect_licenses(await self._ls(["--all", "--long"]))
