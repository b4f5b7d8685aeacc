"""Requirement parsing and package-name normalization.

Only plain index requirements are accepted: ``name[extras]<constraints>[; marker]``.
Anything that could make pip fetch or execute code from somewhere other than
the configured indexes (URLs, VCS references, local paths, direct references,
pip options) is rejected before a subprocess runs.

Package identities are always compared in normalized form (lower-case, runs of
``-``/``_``/``.`` collapsed to ``-``); the raw requirement string is handed to
pip unchanged.
"""

from __future__ import annotations

import re
from collections.abc import Iterable

from skill_runtime.enums import ErrorCode
from skill_runtime.errors import RuntimeServiceError
from skill_runtime.models.domain import RequirementEntry

_NAME_SEPARATORS_RE = re.compile(r"[-_.]+")
_PACKAGE_NAME_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")
_REQUIREMENT_RE = re.compile(
    r"^(?P<name>[A-Za-z0-9][A-Za-z0-9._-]*)(?P<extras>\[[A-Za-z0-9,._-]+\])?(?P<rest>.*)$",
    flags=re.DOTALL,
)
# "<op><version>[, <op><version>]*" optionally followed by "; <marker>"
_CONSTRAINT_RE = re.compile(
    r"^(?:[!<>=~]{1,2}\s*[^,;\s]+(?:\s*,\s*[!<>=~]{1,2}\s*[^,;\s]+)*)?(?:\s*;\s*.+)?$",
    flags=re.DOTALL,
)

# C0 controls and DEL; pip arguments cannot carry them
_CONTROL_CHAR_RE = re.compile(r"[\x00-\x1f\x7f]")

_MISSING_MODULE_RE = re.compile(r"No module named ['\"]?([^'\"\r\n]+)['\"]?", flags=re.IGNORECASE)
_MODULE_TOKEN_RE = re.compile(r"^[A-Za-z0-9_.-]+$")

# Import names whose distribution name differs (keys are lower-case).
MISSING_MODULE_PACKAGE_MAP: dict[str, str] = {
    "cv2": "opencv-python",
    "pil": "Pillow",
    "yaml": "PyYAML",
    "bs4": "beautifulsoup4",
    "sklearn": "scikit-learn",
    "crypto": "pycryptodome",
    "dateutil": "python-dateutil",
    "dotenv": "python-dotenv",
    "docx": "python-docx",
    "pptx": "python-pptx",
    "xlsxwriter": "XlsxWriter",
    "pypdf2": "PyPDF2",
    "fitz": "PyMuPDF",
}

MAX_INDEX_LIST_ITEMS = 32
MAX_PACKAGE_LIST_ITEMS = 512


def normalize_package_name(value: str) -> str:
    """Normalize a distribution name for identity comparison."""
    return _NAME_SEPARATORS_RE.sub("-", (value or "").strip().lower())


def validate_package_name(value: str) -> str | None:
    """Return the normalized name, or None if *value* is not a bare package name."""
    name = (value or "").strip()
    if not name or not _PACKAGE_NAME_RE.match(name):
        return None
    return normalize_package_name(name)


def _invalid(message: str, raw: str) -> RuntimeServiceError:
    return RuntimeServiceError(
        message,
        400,
        ErrorCode.INVALID_REQUIREMENT,
        {"requirement": raw},
    )


def parse_requirement(value: str) -> RequirementEntry:
    """Validate a single requirement string.

    Raises:
        RuntimeServiceError: ``PYTHON_RUNTIME_INVALID_REQUIREMENT``.
    """
    raw = (value or "").strip()
    if not raw:
        raise _invalid("Requirement must not be empty", raw)

    if _CONTROL_CHAR_RE.search(raw):
        raise _invalid(f"Requirement contains control characters: {raw!r}", raw)

    if (
        raw.startswith("-")
        or "git+" in raw.lower()
        or "://" in raw
        or "/" in raw
        or "\\" in raw
    ):
        raise _invalid(f"Unsafe requirement: {raw}", raw)

    if "@" in raw:
        raise _invalid(f"Direct references are not supported: {raw}", raw)

    matched = _REQUIREMENT_RE.match(raw)
    if not matched:
        raise _invalid(f"Invalid requirement: {raw}", raw)

    rest = (matched.group("rest") or "").strip()
    if rest and not _CONSTRAINT_RE.match(rest):
        raise _invalid(f"Invalid version constraint: {raw}", raw)

    return RequirementEntry(raw=raw, package_name=normalize_package_name(matched.group("name")))


def parse_requirement_safe(value: str) -> RequirementEntry | None:
    """Like :func:`parse_requirement` but returns None for unusable input."""
    if not isinstance(value, str):
        return None
    try:
        return parse_requirement(value)
    except RuntimeServiceError:
        return None


def parse_requirements(requirements: Iterable[str] | None) -> list[RequirementEntry]:
    """Validate a batch, deduplicated by raw string (first occurrence wins).

    Raises:
        RuntimeServiceError: ``PYTHON_RUNTIME_EMPTY_REQUIREMENTS`` or
            ``PYTHON_RUNTIME_INVALID_REQUIREMENT`` for the first bad entry.
    """
    items = list(requirements or [])
    if not items:
        raise RuntimeServiceError(
            "At least one requirement is required",
            400,
            ErrorCode.EMPTY_REQUIREMENTS,
        )

    dedup: dict[str, RequirementEntry] = {}
    for item in items:
        entry = parse_requirement(item)
        dedup.setdefault(entry.raw, entry)
    return list(dedup.values())


def normalize_package_list(items: Iterable[str] | None, max_items: int = MAX_PACKAGE_LIST_ITEMS) -> list[str]:
    """Validate, normalize, dedupe and sort package names; invalid ones are dropped."""
    dedup: set[str] = set()
    for item in items or []:
        name = validate_package_name(item) if isinstance(item, str) else None
        if not name:
            continue
        dedup.add(name)
        if len(dedup) >= max_items:
            break
    return sorted(dedup)


def sanitize_list(items: Iterable[str] | None, max_items: int = MAX_INDEX_LIST_ITEMS) -> list[str]:
    """Trim, drop blanks and dedupe (order preserved), capped at *max_items*."""
    out: list[str] = []
    for item in items or []:
        trimmed = (item or "").strip() if isinstance(item, str) else ""
        if not trimmed or trimmed in out:
            continue
        out.append(trimmed)
        if len(out) >= max_items:
            break
    return out


def _package_for_missing_module(module_name: str) -> str | None:
    name = (module_name or "").strip().lower()
    if not name or not _MODULE_TOKEN_RE.match(name):
        return None
    base = name.split(".")[0]
    mapped = MISSING_MODULE_PACKAGE_MAP.get(base, base)
    if not _PACKAGE_NAME_RE.match(mapped):
        return None
    return mapped


def extract_missing_module_requirements(output: str) -> list[str]:
    """Find ``No module named 'x'`` errors and map them to installable requirements.

    URL- or path-like module names are ignored. Order of first appearance is
    kept and duplicates dropped.
    """
    found: list[str] = []
    for match in _MISSING_MODULE_RE.finditer(output or ""):
        requirement = _package_for_missing_module(match.group(1))
        if requirement and requirement not in found:
            found.append(requirement)
    return found
