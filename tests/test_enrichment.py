"""
Refresh cycle tests: manifest + registry + audit joined into one report.
"""

import json

import pytest

from conftest import FakeRegistry, FakeRunner, npm_result
from npmdex.audit import VulnerabilityReporter
from npmdex.enrichment import EnrichmentPipeline, lookup_package, lookup_versions
from npmdex.error_handling import ManifestNotFound, RegistryTimeout, RegistryUnavailable
from npmdex.manifest import PackageJsonManifest
from npmdex.models import LookupStatus, Severity

AUDIT_BODY = json.dumps(
    {
        "vulnerabilities": {
            "lodash": {
                "name": "lodash",
                "severity": "high",
                "via": [{"title": "Prototype Pollution", "severity": "high"}],
            },
            "minimist": {
                "name": "minimist",
                "severity": "critical",
                "via": [{"title": "Prototype Pollution", "severity": "critical"}],
            },
        }
    }
)


def populated_registry() -> FakeRegistry:
    registry = FakeRegistry()
    registry.versions.update(
        {
            "express": ["4.19.0", "4.18.2", "4.17.1"],
            "lodash": ["4.17.21", "4.17.20"],
            "left-pad": ["1.3.0"],
            "jest": ["29.7.0", "29.0.0"],
        }
    )
    registry.licenses.update({"express": "MIT", "lodash": "MIT", "left-pad": "WTFPL", "jest": "MIT"})
    return registry


def make_pipeline(project_root, registry, audit_results) -> EnrichmentPipeline:
    reporter = VulnerabilityReporter(project_root, runner=FakeRunner(audit_results))
    return EnrichmentPipeline(PackageJsonManifest(project_root), registry, reporter, max_concurrent=4)


class TestLookups:
    """Single-package lookups never raise."""

    @pytest.mark.asyncio
    async def test_versions_ok(self):
        lookup = await lookup_versions(populated_registry(), "lodash")
        assert lookup.status is LookupStatus.OK
        assert lookup.version_set.latest == "4.17.21"

    @pytest.mark.asyncio
    async def test_versions_not_found(self):
        lookup = await lookup_versions(FakeRegistry(), "private-internal-pkg")
        assert lookup.status is LookupStatus.NONE_FOUND

    @pytest.mark.asyncio
    async def test_versions_empty(self):
        registry = FakeRegistry()
        registry.versions["only-betas"] = []
        assert (await lookup_versions(registry, "only-betas")).status is LookupStatus.NONE_FOUND

    @pytest.mark.asyncio
    async def test_versions_error(self):
        registry = FakeRegistry()
        registry.versions["lodash"] = RegistryTimeout("timed out")
        lookup = await lookup_versions(registry, "lodash")

        assert lookup.status is LookupStatus.ERROR
        assert lookup.error.startswith("error fetching available versions")

    @pytest.mark.asyncio
    async def test_package_ok(self):
        versions, license_lookup = await lookup_package(populated_registry(), "lodash")

        assert versions.status is LookupStatus.OK
        assert versions.version_set.latest == "4.17.21"
        assert license_lookup.status is LookupStatus.OK
        assert license_lookup.license == "MIT"

    @pytest.mark.asyncio
    async def test_package_license_error_keeps_versions(self):
        registry = populated_registry()
        registry.licenses["lodash"] = RegistryUnavailable("HTTP 500")
        versions, license_lookup = await lookup_package(registry, "lodash")

        assert versions.status is LookupStatus.OK
        assert license_lookup.status is LookupStatus.ERROR
        assert license_lookup.license is None
        assert license_lookup.error.startswith("error fetching license")

    @pytest.mark.asyncio
    async def test_package_not_found(self):
        versions, license_lookup = await lookup_package(FakeRegistry(), "private-internal-pkg")

        assert versions.status is LookupStatus.NONE_FOUND
        assert license_lookup.status is LookupStatus.NONE_FOUND

    @pytest.mark.asyncio
    async def test_package_error(self):
        registry = FakeRegistry()
        registry.versions["lodash"] = RegistryTimeout("timed out")
        versions, license_lookup = await lookup_package(registry, "lodash")

        assert versions.status is LookupStatus.ERROR
        assert license_lookup.status is LookupStatus.ERROR
        assert versions.error.startswith("error fetching available versions")


class TestEnrichmentPipeline:
    """Full refresh."""

    @pytest.mark.asyncio
    async def test_refresh_builds_report(self, sample_package_json):
        pipeline = make_pipeline(
            sample_package_json.parent, populated_registry(), [npm_result(AUDIT_BODY, returncode=1)]
        )
        report = await pipeline.refresh()

        assert [d.name for d in report.dependencies] == ["express", "lodash", "left-pad"]
        assert [d.name for d in report.dev_dependencies] == ["jest"]

        express = report.find("express")
        assert express.versions.status is LookupStatus.OK
        assert express.versions.version_set.latest == "4.19.0"
        assert express.license.license == "MIT"
        assert express.advisory is None

        lodash = report.find("lodash")
        assert lodash.advisory.severity is Severity.HIGH
        assert report.audit_error is None

    @pytest.mark.asyncio
    async def test_undeclared_advisories_dropped(self, sample_package_json):
        pipeline = make_pipeline(
            sample_package_json.parent, populated_registry(), [npm_result(AUDIT_BODY, returncode=1)]
        )
        report = await pipeline.refresh()

        assert set(report.advisories) == {"lodash"}

    @pytest.mark.asyncio
    async def test_results_joined_by_name_not_completion_order(self, sample_package_json):
        registry = populated_registry()
        # express finishes last even though it is requested first
        registry.delays = {"express": 0.05, "lodash": 0.02}
        pipeline = make_pipeline(sample_package_json.parent, registry, [npm_result(AUDIT_BODY)])

        report = await pipeline.refresh()

        for item in report.all_dependencies():
            assert item.versions.version_set.package_name == item.name

    @pytest.mark.asyncio
    async def test_one_failure_does_not_block_others(self, sample_package_json):
        registry = populated_registry()
        registry.versions["lodash"] = RegistryUnavailable("HTTP 502")
        pipeline = make_pipeline(sample_package_json.parent, registry, [npm_result(AUDIT_BODY)])

        report = await pipeline.refresh()

        assert report.find("lodash").versions.status is LookupStatus.ERROR
        assert "error fetching available versions" in report.find("lodash").versions.error
        others = [d for d in report.all_dependencies() if d.name != "lodash"]
        assert all(d.versions.status is LookupStatus.OK for d in others)

    @pytest.mark.asyncio
    async def test_audit_unavailable_degrades(self, sample_package_json):
        pipeline = make_pipeline(
            sample_package_json.parent, populated_registry(), [npm_result("", "npm ERR! ENOLOCK", 1)]
        )
        report = await pipeline.refresh()

        assert report.audit_error
        assert report.advisories == {}
        assert len(report.all_dependencies()) == 4
        assert all(d.advisory is None for d in report.all_dependencies())

    @pytest.mark.asyncio
    async def test_refresh_is_idempotent(self, sample_package_json):
        pipeline = make_pipeline(
            sample_package_json.parent,
            populated_registry(),
            [npm_result(AUDIT_BODY), npm_result(AUDIT_BODY)],
        )
        first = await pipeline.refresh()
        second = await pipeline.refresh()

        assert first == second
        assert first is not second

    @pytest.mark.asyncio
    async def test_refresh_replaces_previous_state(self, sample_package_json):
        pipeline = make_pipeline(
            sample_package_json.parent,
            populated_registry(),
            [npm_result(AUDIT_BODY), npm_result(AUDIT_BODY)],
        )
        await pipeline.refresh()

        sample_package_json.write_text(json.dumps({"dependencies": {"express": "^4.18.2"}}))
        report = await pipeline.refresh()

        assert [d.name for d in report.all_dependencies()] == ["express"]
        assert report.find("lodash") is None
        assert report.advisories == {}

    @pytest.mark.asyncio
    async def test_missing_manifest(self, temp_dir):
        pipeline = make_pipeline(temp_dir, populated_registry(), [])
        with pytest.raises(ManifestNotFound):
            await pipeline.refresh()

    @pytest.mark.asyncio
    async def test_license_lookup_can_be_disabled(self, sample_package_json):
        reporter = VulnerabilityReporter(sample_package_json.parent, runner=FakeRunner([npm_result(AUDIT_BODY)]))
        registry = populated_registry()
        pipeline = EnrichmentPipeline(
            PackageJsonManifest(sample_package_json.parent), registry, reporter, fetch_licenses=False
        )
        report = await pipeline.refresh()

        assert all(d.license.license is None for d in report.all_dependencies())
        assert sorted(registry.requests) == sorted(
            ("versions", name) for name in ("express", "lodash", "left-pad", "jest")
        )

    @pytest.mark.asyncio
    async def test_one_registry_request_per_dependency(self, sample_package_json):
        registry = populated_registry()
        pipeline = make_pipeline(sample_package_json.parent, registry, [npm_result(AUDIT_BODY)])
        await pipeline.refresh()

        assert sorted(registry.requests) == sorted(
            ("package", name) for name in ("express", "lodash", "left-pad", "jest")
        )
