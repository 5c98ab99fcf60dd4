"""
License compliance classification.

LICENSE_TABLE is a closed allow-list. A license string that is not one of
its keys is ``unknown`` even when it is a valid SPDX expression such as
"(MIT OR Apache-2.0)"; a missing or blank license field is ``missing``.
"""

from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Optional

from .collaborators import DependencyIntrospector
from .config import get_config
from .models import LicenseStatus, LicenseVerdict
from .structured_logging import get_analysis_logger


@dataclass(frozen=True)
class LicenseInfo:
    name: str
    category: str
    osi_approved: bool = True


LICENSE_TABLE: Dict[str, LicenseInfo] = {
    "0BSD": LicenseInfo("BSD Zero Clause License", "permissive"),
    "AFL-3.0": LicenseInfo("Academic Free License v3.0", "permissive"),
    "AGPL-3.0-only": LicenseInfo("GNU Affero General Public License v3.0 only", "copyleft"),
    "AGPL-3.0-or-later": LicenseInfo("GNU Affero General Public License v3.0 or later", "copyleft"),
    "Apache-2.0": LicenseInfo("Apache License 2.0", "permissive"),
    "Artistic-2.0": LicenseInfo("Artistic License 2.0", "permissive"),
    "BlueOak-1.0.0": LicenseInfo("Blue Oak Model License 1.0.0", "permissive"),
    "BSD-2-Clause": LicenseInfo('BSD 2-Clause "Simplified" License', "permissive"),
    "BSD-3-Clause": LicenseInfo('BSD 3-Clause "New" or "Revised" License', "permissive"),
    "BSL-1.0": LicenseInfo("Boost Software License 1.0", "permissive"),
    "CC-BY-3.0": LicenseInfo("Creative Commons Attribution 3.0", "permissive", False),
    "CC-BY-4.0": LicenseInfo("Creative Commons Attribution 4.0", "permissive", False),
    "CC0-1.0": LicenseInfo("Creative Commons Zero v1.0 Universal", "public-domain", False),
    "EPL-2.0": LicenseInfo("Eclipse Public License 2.0", "weak-copyleft"),
    "GPL-2.0-only": LicenseInfo("GNU General Public License v2.0 only", "copyleft"),
    "GPL-2.0-or-later": LicenseInfo("GNU General Public License v2.0 or later", "copyleft"),
    "GPL-3.0-only": LicenseInfo("GNU General Public License v3.0 only", "copyleft"),
    "GPL-3.0-or-later": LicenseInfo("GNU General Public License v3.0 or later", "copyleft"),
    "ISC": LicenseInfo("ISC License", "permissive"),
    "LGPL-2.1-only": LicenseInfo("GNU Lesser General Public License v2.1 only", "weak-copyleft"),
    "LGPL-2.1-or-later": LicenseInfo("GNU Lesser General Public License v2.1 or later", "weak-copyleft"),
    "LGPL-3.0-only": LicenseInfo("GNU Lesser General Public License v3.0 only", "weak-copyleft"),
    "LGPL-3.0-or-later": LicenseInfo("GNU Lesser General Public License v3.0 or later", "weak-copyleft"),
    "MIT": LicenseInfo("MIT License", "permissive"),
    "MIT-0": LicenseInfo("MIT No Attribution", "permissive"),
    "MPL-2.0": LicenseInfo("Mozilla Public License 2.0", "weak-copyleft"),
    "Python-2.0": LicenseInfo("Python License 2.0", "permissive"),
    "Unicode-DFS-2016": LicenseInfo("Unicode License Agreement - Data Files and Software (2016)", "permissive"),
    "Unlicense": LicenseInfo("The Unlicense", "public-domain"),
    "WTFPL": LicenseInfo("Do What The F*ck You Want To Public License", "permissive", False),
    "Zlib": LicenseInfo("zlib License", "permissive"),
}


class LicenseComplianceChecker:
    """Classifies installed packages against LICENSE_TABLE."""

    def __init__(self, extra_allowed: Optional[Iterable[str]] = None):
        if extra_allowed is None:
            extra_allowed = get_config().licenses.extra_allowed
        self.allowed = set(LICENSE_TABLE) | set(extra_allowed)

    def classify(self, package_name: str, license_id: Optional[str]) -> LicenseVerdict:
        if license_id is None or not license_id.strip():
            return LicenseVerdict(package_name, None, LicenseStatus.MISSING)
        if license_id in self.allowed:
            return LicenseVerdict(package_name, license_id, LicenseStatus.COMPLIANT)
        return LicenseVerdict(package_name, license_id, LicenseStatus.UNKNOWN)

    def check(self, installed: Mapping[str, Optional[str]]) -> List[LicenseVerdict]:
        """Non-compliant verdicts sorted by package name; empty means compliant."""
        verdicts = [self.classify(name, license_id) for name, license_id in installed.items()]
        return sorted(
            (v for v in verdicts if v.status is not LicenseStatus.COMPLIANT),
            key=lambda v: v.package_name,
        )

    async def run(self, introspector: DependencyIntrospector) -> List[LicenseVerdict]:
        """Check every installed package at every depth."""
        installed = await introspector.list_installed_with_licenses()
        issues = self.check(installed)
        get_analysis_logger().info(
            "license_check_completed", package_count=len(installed), issue_count=len(issues)
        )
        return issues
