"""
npm-backed collaborator tests. npm itself is never invoked; a FakeRunner
replays its output.
"""

import json

import pytest

from conftest import FakeRegistry, FakeRunner, npm_result
from npmdex.error_handling import CommandFailed, CommandTimeout, DependencyTreeUnavailable
from npmdex.npm_cli import (
    NpmIntrospector,
    NpmPackageMutator,
    collect_licenses,
    parse_tree,
    validate_package_name,
    validate_version_spec,
)
from npmdex.process import CommandRunner

LS_OUTPUT = {
    "name": "app",
    "version": "1.0.0",
    "dependencies": {
        "express": {
            "version": "4.18.2",
            "license": "MIT",
            "dependencies": {
                "debug": {"version": "2.6.9", "license": "MIT", "dependencies": {"ms": {"version": "2.0.0"}}},
            },
        },
        "left-pad": {"version": "1.3.0", "license": {"type": "WTFPL"}},
        "ghost": {"required": "^1.0.0", "missing": True},
    },
}


class TestValidation:
    """Arguments passed to npm."""

    @pytest.mark.parametrize("name", ["lodash", "@types/node", "left-pad", "socket.io"])
    def test_valid_names(self, name):
        assert validate_package_name(name) == name

    @pytest.mark.parametrize("name", ["", "--global", "a b", "../evil", "lodash;rm -rf /", "@scope/"])
    def test_invalid_names(self, name):
        with pytest.raises(ValueError):
            validate_package_name(name)

    @pytest.mark.parametrize("version", ["1.2.3", "^4.0.0", ">=1.0.0 <2.0.0", "latest"])
    def test_valid_versions(self, version):
        assert validate_version_spec(version) == version

    @pytest.mark.parametrize("version", ["", "--save", "1.0.0; echo", "$(whoami)"])
    def test_invalid_versions(self, version):
        with pytest.raises(ValueError):
            validate_version_spec(version)


class TestTreeParsing:
    """npm ls --json output."""

    def test_parse_tree(self):
        root = parse_tree(LS_OUTPUT)

        assert root.name == "app"
        assert root.dependencies["express"].version == "4.18.2"
        assert root.dependencies["express"].dependencies["debug"].dependencies["ms"].version == "2.0.0"
        assert root.dependencies["ghost"].version is None

    def test_unnamed_root(self):
        assert parse_tree({"dependencies": {}}).name == "(root)"

    def test_not_an_object(self):
        with pytest.raises(ValueError):
            parse_tree(["nope"])

    def test_collect_licenses(self):
        licenses = collect_licenses(LS_OUTPUT)

        assert licenses == {
            "debug": "MIT",
            "express": "MIT",
            "left-pad": "WTFPL",
            "ms": None,
        }
        assert "ghost" not in licenses

    @pytest.mark.parametrize("data", [None, [], {"dependencies": ["express"]}, {"dependencies": "express"}])
    def test_collect_licenses_odd_shapes(self, data):
        assert collect_licenses(data) == {}


class TestNpmPackageMutator:
    """install / uninstall / audit fix."""

    @pytest.mark.asyncio
    async def test_install_with_version(self, temp_dir):
        runner = FakeRunner([npm_result("added 1 package")])
        outcome = await NpmPackageMutator(temp_dir, runner=runner).install("lodash", "4.17.21")

        assert runner.commands == [["npm", "install", "lodash@4.17.21"]]
        assert outcome.success
        assert outcome.action == "install"
        assert "lodash@4.17.21" in outcome.message

    @pytest.mark.asyncio
    async def test_install_latest(self, temp_dir):
        runner = FakeRunner([npm_result()])
        await NpmPackageMutator(temp_dir, runner=runner).install("lodash")
        assert runner.commands == [["npm", "install", "lodash"]]

    @pytest.mark.asyncio
    async def test_failure_carries_npm_message(self, temp_dir):
        runner = FakeRunner([npm_result("", "npm ERR! code ETARGET\nnpm ERR! notarget No matching version", 1)])
        outcome = await NpmPackageMutator(temp_dir, runner=runner).install("lodash", "99.0.0")

        assert not outcome.success
        assert "ETARGET" in outcome.message

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", [CommandFailed("npm not found"), CommandTimeout("timed out")])
    async def test_process_errors_become_failed_outcomes(self, temp_dir, error):
        outcome = await NpmPackageMutator(temp_dir, runner=FakeRunner([error])).uninstall("lodash")
        assert not outcome.success
        assert outcome.message == str(error)

    @pytest.mark.asyncio
    async def test_rejects_unsafe_name(self, temp_dir):
        runner = FakeRunner()
        with pytest.raises(ValueError):
            await NpmPackageMutator(temp_dir, runner=runner).uninstall("--global")
        assert runner.commands == []

    @pytest.mark.asyncio
    async def test_audit_fix(self, temp_dir):
        runner = FakeRunner([npm_result("fixed 2 of 2 vulnerabilities")])
        outcome = await NpmPackageMutator(temp_dir, runner=runner).audit_fix()

        assert runner.commands == [["npm", "audit", "fix"]]
        assert outcome.success
        assert outcome.package_name is None


class TestNpmIntrospector:
    """npm ls and registry-backed introspection."""

    @pytest.mark.asyncio
    async def test_tree_from_nonzero_exit(self, temp_dir):
        runner = FakeRunner([npm_result(json.dumps(LS_OUTPUT), "npm ERR! missing: ghost", 1)])
        introspector = NpmIntrospector(temp_dir, FakeRegistry(), runner=runner)

        root = await introspector.get_tree()

        assert runner.commands == [["npm", "ls", "--json", "--all"]]
        assert "express" in root.dependencies

    @pytest.mark.asyncio
    async def test_invalid_output(self, temp_dir):
        runner = FakeRunner([npm_result("", "npm ERR! something", 1)])
        with pytest.raises(DependencyTreeUnavailable):
            await NpmIntrospector(temp_dir, FakeRegistry(), runner=runner).get_tree()

    @pytest.mark.asyncio
    async def test_error_document(self, temp_dir):
        body = json.dumps({"error": {"code": "ELSPROBLEMS", "summary": "invalid tree"}})
        runner = FakeRunner([npm_result(body, returncode=1)])
        with pytest.raises(DependencyTreeUnavailable, match="invalid tree"):
            await NpmIntrospector(temp_dir, FakeRegistry(), runner=runner).get_tree()

    @pytest.mark.asyncio
    async def test_command_error(self, temp_dir):
        runner = FakeRunner([CommandTimeout("npm ls timed out")])
        with pytest.raises(DependencyTreeUnavailable):
            await NpmIntrospector(temp_dir, FakeRegistry(), runner=runner).get_tree()

    @pytest.mark.asyncio
    async def test_licenses(self, temp_dir):
        runner = FakeRunner([npm_result(json.dumps(LS_OUTPUT))])
        licenses = await NpmIntrospector(temp_dir, FakeRegistry(), runner=runner).list_installed_with_licenses()

        assert runner.commands == [["npm", "ls", "--json", "--all", "--long"]]
        assert licenses["left-pad"] == "WTFPL"

    @pytest.mark.asyncio
    async def test_declared_dependencies_from_registry(self, temp_dir):
        registry = FakeRegistry()
        registry.declared["react-dom@18.2.0"] = {"react": "^18.2.0"}
        introspector = NpmIntrospector(temp_dir, registry, runner=FakeRunner())

        assert await introspector.get_declared_dependencies("react-dom", "18.2.0") == {"react": "^18.2.0"}


class TestCommandRunner:
    """Real process execution edge cases."""

    @pytest.mark.asyncio
    async def test_missing_executable(self, temp_dir):
        runner = CommandRunner(cwd=temp_dir)
        with pytest.raises(CommandFailed):
            await runner.run(["npmdex-definitely-not-installed-binary", "--version"])

    @pytest.mark.asyncio
    async def test_empty_command(self, temp_dir):
        with pytest.raises(ValueError):
            await CommandRunner(cwd=temp_dir).run([])
