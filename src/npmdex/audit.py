"""
Security advisories from ``npm audit``.

npm audit exits non-zero when it finds vulnerabilities, so the JSON body,
not the exit code, decides whether a run succeeded.
"""

import json
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from .config import get_config
from .error_handling import (
    AuditUnavailable,
    CommandFailed,
    CommandTimeout,
    ErrorCategory,
    get_error_handler,
)
from .models import AdvisoryRecord, Severity
from .process import CommandRunner
from .structured_logging import get_audit_logger, log_audit_complete


def _merge(records: Dict[str, AdvisoryRecord], record: AdvisoryRecord) -> None:
    existing = records.get(record.package_name)
    if existing is None:
        records[record.package_name] = record
        return
    severity = record.severity if record.severity.rank > existing.severity.rank else existing.severity
    records[record.package_name] = AdvisoryRecord(
        package_name=existing.package_name,
        severity=severity,
        title=existing.title,
        vulnerability_count=existing.vulnerability_count + record.vulnerability_count,
    )


def _parse_vulnerabilities(vulnerabilities: Dict[str, Any]) -> Dict[str, AdvisoryRecord]:
    """npm >= 7 layout: one entry per affected package."""
    records: Dict[str, AdvisoryRecord] = {}
    for key, entry in vulnerabilities.items():
        if not isinstance(entry, dict):
            continue
        name = entry.get("name") if isinstance(entry.get("name"), str) else key
        via = entry.get("via") if isinstance(entry.get("via"), list) else []
        advisories = [item for item in via if isinstance(item, dict)]
        through = [item for item in via if isinstance(item, str)]

        if advisories:
            title = str(advisories[0].get("title") or "Vulnerability")
        elif through:
            title = f"Depends on vulnerable {', '.join(sorted(set(through)))}"
        else:
            title = "Vulnerability"

        severity = Severity.parse(entry.get("severity"))
        for advisory in advisories:
            advisory_severity = Severity.parse(advisory.get("severity", severity.value))
            if advisory_severity.rank > severity.rank:
                severity = advisory_severity

        records[name] = AdvisoryRecord(
            package_name=name,
            severity=severity,
            title=title,
            vulnerability_count=max(1, len(advisories)),
        )
    return records


def _parse_legacy_advisories(advisories: Dict[str, Any]) -> Dict[str, AdvisoryRecord]:
    """npm 6 layout: one entry per advisory id."""
    records: Dict[str, AdvisoryRecord] = {}
    for advisory in advisories.values():
        if not isinstance(advisory, dict):
            continue
        name = advisory.get("module_name")
        if not isinstance(name, str) or not name:
            continue
        _merge(
            records,
            AdvisoryRecord(
                package_name=name,
                severity=Severity.parse(advisory.get("severity")),
                title=str(advisory.get("title") or "Vulnerability"),
                vulnerability_count=1,
            ),
        )
    return records


def parse_audit_report(body: str) -> Dict[str, AdvisoryRecord]:
    """
    Parse ``npm audit --json`` output into advisories keyed by package name.

    Raises:
        AuditUnavailable: If the body is not a recognizable audit report
    """
    if not body or not body.strip():
        raise AuditUnavailable("npm audit produced no output")

    try:
        data = json.loads(body)
    except json.JSONDecodeError as e:
        raise AuditUnavailable(f"npm audit produced invalid JSON: {e}") from e

    if not isinstance(data, dict):
        raise AuditUnavailable("npm audit produced an unexpected document")

    if isinstance(data.get("vulnerabilities"), dict):
        return _parse_vulnerabilities(data["vulnerabilities"])
    if isinstance(data.get("advisories"), dict):
        return _parse_legacy_advisories(data["advisories"])

    error = data.get("error")
    if isinstance(error, dict):
        raise AuditUnavailable(str(error.get("summary") or error.get("code") or "npm audit failed"))
    raise AuditUnavailable("npm audit report has no vulnerabilities section")


class VulnerabilityReporter:
    """Runs npm audit in a project and summarizes the advisories."""

    def __init__(self, project_root: Path, runner: Optional[CommandRunner] = None):
        config = get_config()
        self.npm = config.process.npm_executable
        self.runner = runner or CommandRunner(
            cwd=project_root, timeout_seconds=config.process.audit_timeout_seconds
        )

    async def run_audit(self) -> Dict[str, AdvisoryRecord]:
        """
        Raises:
            AuditUnavailable: If npm audit cannot run or its report is malformed
        """
        try:
            result = await self.runner.run([self.npm, "audit", "--json"])
        except (CommandFailed, CommandTimeout) as e:
            raise AuditUnavailable(str(e)) from e

        try:
            records = parse_audit_report(result.stdout)
        except AuditUnavailable as e:
            if not result.stdout.strip() and result.stderr.strip():
                raise AuditUnavailable(result.stderr.strip()[:300]) from e
            raise

        log_audit_complete(len(records), result.returncode)
        return records

    async def collect_advisories(self) -> Tuple[Dict[str, AdvisoryRecord], Optional[str]]:
        """Advisories plus an error message; failures yield an empty map."""
        try:
            return await self.run_audit(), None
        except AuditUnavailable as e:
            get_error_handler().warning(
                ErrorCategory.AUDIT,
                "Audit unavailable, continuing without advisories",
                "audit.collect_advisories",
                exception=e,
            )
            get_audit_logger().warning("audit_unavailable", error=str(e))
            return {}, str(e)


def summarize_by_severity(advisories: Dict[str, AdvisoryRecord]) -> List[Tuple[Severity, int]]:
    """Package counts per severity, most severe first; zero counts omitted."""
    counts: Dict[Severity, int] = {}
    for record in advisories.values():
        counts[record.severity] = counts.get(record.severity, 0) + 1
    return sorted(counts.items(), key=lambda item: item[0].rank, reverse=True)
