"""
package.json reading.

Only ``dependencies`` and ``devDependencies`` are read; entries whose range
is not a string are skipped and reported.
"""

import asyncio
import json
from pathlib import Path
from typing import Any, Dict

from .collaborators import ManifestSource
from .error_handling import ManifestInvalid, ManifestNotFound, log_parsing_error
from .models import DeclaredDependencies

MANIFEST_NAME = "package.json"
MAX_MANIFEST_BYTES = 10 * 1024 * 1024


def _read_section(data: Dict[str, Any], section: str, file_path: Path) -> Dict[str, str]:
    raw = data.get(section)
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        log_parsing_error(f"'{section}' is not an object", "manifest._read_section", file_path=str(file_path))
        return {}

    entries = {}
    for name, spec in raw.items():
        if isinstance(name, str) and name and isinstance(spec, str):
            entries[name] = spec.strip()
        else:
            log_parsing_error(
                f"Skipping malformed entry in '{section}': {name!r}",
                "manifest._read_section",
                file_path=str(file_path),
            )
    return entries


def parse_manifest(content: str, file_path: Path) -> DeclaredDependencies:
    """
    Parse package.json content.

    Raises:
        ManifestInvalid: If the content is not a JSON object
    """
    try:
        data = json.loads(content)
    except json.JSONDecodeError as e:
        log_parsing_error(
            f"Invalid JSON format in package.json: {e}",
            "manifest.parse_manifest",
            file_path=str(file_path),
            exception=e,
        )
        raise ManifestInvalid(f"Invalid JSON in {file_path}: {e}") from e

    if not isinstance(data, dict):
        raise ManifestInvalid(f"{file_path} does not contain a JSON object")

    return DeclaredDependencies(
        dependencies=_read_section(data, "dependencies", file_path),
        dev_dependencies=_read_section(data, "devDependencies", file_path),
    )


class PackageJsonManifest(ManifestSource):
    """Reads package.json from a project root."""

    def __init__(self, project_root: Path):
        self.project_root = Path(project_root)
        self.path = self.project_root / MANIFEST_NAME

    def _read(self) -> str:
        if not self.path.is_file():
            raise ManifestNotFound(f"No {MANIFEST_NAME} found in {self.project_root}")

        size = self.path.stat().st_size
        if size > MAX_MANIFEST_BYTES:
            raise ManifestInvalid(f"{self.path} is too large: {size} bytes")

        try:
            return self.path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise ManifestInvalid(f"Cannot read {self.path}: {e}") from e

    async def read_dependencies(self) -> DeclaredDependencies:
        content = await asyncio.to_thread(self._read)
        return parse_manifest(content, self.path)
