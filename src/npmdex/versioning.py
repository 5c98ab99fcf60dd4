"""
Version ordering and npm range matching.

Versions are dot-separated non-negative integers of any length; missing
trailing components count as 0, so "1.2" == "1.2.0". Pre-release and build
suffixes ("1.0.0-beta.1", "1.0.0+build") are not ordered: parsing them raises
UnsupportedVersionError instead of guessing a position.
"""

import re
from functools import cmp_to_key
from typing import Iterable, List, Sequence, Tuple

_RANGE_OPERATORS = ("^", "~")
_COMPARATOR_RE = re.compile(r"^(<=|>=|<|>|=|\^|~>|~)?\s*v?(.*)$")
_HYPHEN_RE = re.compile(r"^\s*(\S+)\s+-\s+(\S+)\s*$")
_WILDCARDS = {"x", "X", "*"}

Comparator = Tuple[str, Tuple[int, ...]]


class UnsupportedVersionError(ValueError):
    """The version or range uses syntax outside plain numeric versions."""


def parse_version(version: str) -> Tuple[int, ...]:
    """Parse "1.2.3" into (1, 2, 3)."""
    if not isinstance(version, str):
        raise UnsupportedVersionError(f"Version must be a string, got {type(version).__name__}")

    text = version.strip().lstrip("=v").strip()
    if not text:
        raise UnsupportedVersionError(f"Empty version: {version!r}")
    if "-" in text or "+" in text:
        raise UnsupportedVersionError(
            f"Pre-release and build versions are not supported: {version!r}"
        )

    parts = text.split(".")
    if not all(part.isdigit() for part in parts):
        raise UnsupportedVersionError(f"Not a numeric version: {version!r}")
    return tuple(int(part) for part in parts)


def is_release_version(version: str) -> bool:
    try:
        parse_version(version)
    except UnsupportedVersionError:
        return False
    return True


def _compare_parts(a: Sequence[int], b: Sequence[int]) -> int:
    length = max(len(a), len(b))
    for i in range(length):
        left = a[i] if i < len(a) else 0
        right = b[i] if i < len(b) else 0
        if left > right:
            return 1
        if left < right:
            return -1
    return 0


def compare(a: str, b: str) -> int:
    """Return 1 if a > b, -1 if a < b and 0 if they are equal."""
    return _compare_parts(parse_version(a), parse_version(b))


def sort_versions(versions: Iterable[str], descending: bool = True) -> List[str]:
    """Sort plain versions numerically, newest first by default."""
    return sorted(versions, key=cmp_to_key(compare), reverse=descending)


def strip_range_operator(version: str) -> str:
    """Drop a leading ^ or ~ from a declared version."""
    text = version.strip()
    if text[:1] in _RANGE_OPERATORS:
        text = text[1:].strip()
    return text


def is_upgrade(candidate: str, current: str) -> bool:
    """True if ``candidate`` is newer than ``current`` (which may carry ^ or ~)."""
    return compare(candidate, strip_range_operator(current)) > 0


def _parse_partial(text: str, original: str) -> List[int]:
    """Parse "1.2" / "1.x" / "*" into its concrete leading components."""
    if "-" in text or "+" in text:
        raise UnsupportedVersionError(
            f"Pre-release and build ranges are not supported: {original!r}"
        )
    parts = text.split(".") if text else ["*"]
    if len(parts) > 3:
        raise UnsupportedVersionError(f"Too many version components in range: {original!r}")

    concrete: List[int] = []
    for part in parts:
        if part in _WILDCARDS:
            break
        if not part.isdigit():
            raise UnsupportedVersionError(f"Unsupported range: {original!r}")
        concrete.append(int(part))
    return concrete


def _pad(parts: Sequence[int]) -> Tuple[int, ...]:
    return tuple(parts) + (0,) * (3 - len(parts))


def _bump(parts: Sequence[int], index: int) -> Tuple[int, ...]:
    return _pad(list(parts[:index]) + [parts[index] + 1])


def _desugar(operator: str, parts: List[int]) -> List[Comparator]:
    """Translate one range token into plain comparators."""
    if not parts:
        if operator in ("<", ">"):
            return [("<", (0, 0, 0))]
        return []

    exact = len(parts) == 3
    lower = _pad(parts)

    if operator in ("", "="):
        if exact:
            return [("==", lower)]
        return [(">=", lower), ("<", _bump(parts, len(parts) - 1))]

    if operator == "^":
        if parts[0] > 0 or len(parts) == 1:
            upper = _bump(parts, 0)
        elif len(parts) == 2 or parts[1] > 0:
            upper = _bump(parts, 1)
        else:
            upper = _bump(parts, 2)
        return [(">=", lower), ("<", upper)]

    if operator in ("~", "~>"):
        upper = _bump(parts, 0) if len(parts) == 1 else _bump(parts, 1)
        return [(">=", lower), ("<", upper)]

    if operator == ">":
        return [(">", lower)] if exact else [(">=", _bump(parts, len(parts) - 1))]

    if operator == ">=":
        return [(">=", lower)]

    if operator == "<":
        return [("<", lower)]

    if operator == "<=":
        return [("<=", lower)] if exact else [("<", _bump(parts, len(parts) - 1))]

    raise UnsupportedVersionError(f"Unknown range operator: {operator!r}")


def _parse_comparator_set(range_set: str) -> List[Comparator]:
    hyphen = _HYPHEN_RE.match(range_set)
    if hyphen:
        low = _parse_partial(hyphen.group(1).lstrip("v"), range_set)
        high = _parse_partial(hyphen.group(2).lstrip("v"), range_set)
        comparators: List[Comparator] = [(">=", _pad(low))] if low else []
        if len(high) == 3:
            comparators.append(("<=", _pad(high)))
        elif high:
            comparators.append(("<", _bump(high, len(high) - 1)))
        return comparators

    # Glue operators to their versions: ">= 1.2.3" -> ">=1.2.3"
    normalized = re.sub(r"(<=|>=|<|>|=|\^|~>|~)\s+", r"\1", range_set.strip())
    comparators = []
    for token in normalized.split():
        match = _COMPARATOR_RE.match(token)
        operator = match.group(1) or ""
        comparators.extend(_desugar(operator, _parse_partial(match.group(2), range_set)))
    return comparators


def _test(version: Tuple[int, ...], comparator: Comparator) -> bool:
    operator, bound = comparator
    order = _compare_parts(version, bound)
    if operator == "==":
        return order == 0
    if operator == ">":
        return order > 0
    if operator == ">=":
        return order >= 0
    if operator == "<":
        return order < 0
    return order <= 0


def parse_range(range_expr: str) -> List[List[Comparator]]:
    """Parse an npm range into OR-ed sets of AND-ed comparators."""
    if not isinstance(range_expr, str):
        raise UnsupportedVersionError(f"Range must be a string, got {type(range_expr).__name__}")
    return [_parse_comparator_set(part) for part in range_expr.split("||")]


def satisfies(installed_version: str, range_expr: str) -> bool:
    """
    Check an installed version against an npm semver range.

    Supports exact versions, comparators, caret, tilde, x-ranges, hyphen
    ranges, space-separated intersections and ``||`` unions.

    Raises:
        UnsupportedVersionError: for tags such as "latest", URLs, file: and
            git specs, and pre-release versions.
    """
    version = parse_version(installed_version)
    return any(
        all(_test(version, comparator) for comparator in comparator_set)
        for comparator_set in parse_range(range_expr)
    )
