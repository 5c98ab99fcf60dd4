"""
License compliance tests.
"""

import pytest

from conftest import FakeIntrospector
from npmdex.licenses import LICENSE_TABLE, LicenseComplianceChecker
from npmdex.models import LicenseStatus


class TestClassification:
    """Verdicts for single packages."""

    def setup_method(self):
        self.checker = LicenseComplianceChecker(extra_allowed=[])

    def test_known_license_is_compliant(self):
        assert self.checker.classify("express", "MIT").status is LicenseStatus.COMPLIANT

    def test_spdx_expression_is_unknown(self):
        verdict = self.checker.classify("dual", "(MIT OR Apache-2.0)")
        assert verdict.status is LicenseStatus.UNKNOWN
        assert verdict.license == "(MIT OR Apache-2.0)"

    def test_unlisted_license_is_unknown(self):
        assert self.checker.classify("odd", "Foo-Bar-9000").status is LicenseStatus.UNKNOWN

    def test_missing_and_blank(self):
        assert self.checker.classify("a", None).status is LicenseStatus.MISSING
        assert self.checker.classify("b", "   ").status is LicenseStatus.MISSING

    def test_match_is_exact(self):
        assert self.checker.classify("c", "mit").status is LicenseStatus.UNKNOWN

    def test_extra_allowed(self):
        checker = LicenseComplianceChecker(extra_allowed=["SEE LICENSE IN LICENSE.md"])
        verdict = checker.classify("internal", "SEE LICENSE IN LICENSE.md")
        assert verdict.status is LicenseStatus.COMPLIANT

    def test_extra_allowed_from_config(self, monkeypatch):
        monkeypatch.setenv("NPMDEX_EXTRA_LICENSES", "Proprietary, Custom-1.0")
        checker = LicenseComplianceChecker()
        assert checker.classify("x", "Custom-1.0").status is LicenseStatus.COMPLIANT

    def test_table_contains_common_licenses(self):
        for license_id in ("MIT", "ISC", "Apache-2.0", "BSD-3-Clause", "MPL-2.0"):
            assert license_id in LICENSE_TABLE


class TestCheck:
    """Whole-tree checks."""

    def test_only_issues_returned_sorted(self):
        checker = LicenseComplianceChecker(extra_allowed=[])
        issues = checker.check({"zeta": None, "alpha": "WTFPL", "beta": "Weird-1.0", "gamma": "MIT"})

        assert [v.package_name for v in issues] == ["beta", "zeta"]
        assert issues[0].status is LicenseStatus.UNKNOWN
        assert issues[1].status is LicenseStatus.MISSING

    def test_empty_means_compliant(self):
        assert LicenseComplianceChecker(extra_allowed=[]).check({"a": "MIT", "b": "ISC"}) == []

    @pytest.mark.asyncio
    async def test_run_uses_introspector(self):
        introspector = FakeIntrospector(licenses={"a": "MIT", "b": None})
        issues = await LicenseComplianceChecker(extra_allowed=[]).run(introspector)
        assert [v.package_name for v in issues] == ["b"]
