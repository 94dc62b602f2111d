"""
Project Detector
================
Detects the project type and its dependency lockfile from marker files.

Detection is deterministic - same build context always yields the same result.
Only the build context root is inspected (no recursive search).

Lockfile policy:
    Installs must be reproducible, so every supported project type needs a
    lock: an npm/yarn/pnpm lockfile for node, a fully pinned
    requirements.txt for python. Missing or loose locks are reported, never
    papered over with a floating install. A python lock must also pin its
    transitive dependencies: it is installed with --no-deps and verified
    with pip check, so an incomplete lock fails the Install stage.
"""
import os
import re
import json
import logging
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Signal File → Project Type mapping (ordered by priority)
# ---------------------------------------------------------------------------
# Order matters: first match wins.
SIGNAL_MAP: list[tuple[str, str]] = [
    ("package.json",     "node"),
    ("requirements.txt", "python"),
    ("pyproject.toml",   "python"),
    ("setup.py",         "python"),
]

# Lockfile → install flavour, per project type (ordered by priority)
LOCKFILE_MAP: dict[str, list[tuple[str, str]]] = {
    "node": [
        ("package-lock.json",   "npm"),
        ("npm-shrinkwrap.json", "npm"),
        ("yarn.lock",           "yarn"),
        ("pnpm-lock.yaml",      "pnpm"),
    ],
    "python": [
        ("requirements.txt", "pip"),
    ],
}


def detect_project_type(context_path: str) -> Optional[str]:
    """
    Scan the build context for signal files and return the project type.

    Returns
    -------
    str | None
        "node" or "python", or None if no signal file is found.
    """
    if not os.path.isdir(context_path):
        return None

    for signal_file, project_type in SIGNAL_MAP:
        if os.path.isfile(os.path.join(context_path, signal_file)):
            return project_type

    return None


# ---------------------------------------------------------------------------
# Lockfile Detection
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class LockInfo:
    """
    The lockfile that pins a project's dependencies.

    Attributes
    ----------
    lockfile : str
        File name relative to the build context.
    flavour : str
        Package manager that owns it ("npm", "yarn", "pnpm", "pip").
    """
    lockfile: str
    flavour: str


def detect_lockfile(context_path: str, project_type: Optional[str]) -> Optional[LockInfo]:
    """Return the first lockfile present for ``project_type``, or None."""
    for lockfile, flavour in LOCKFILE_MAP.get(project_type or "", []):
        if os.path.isfile(os.path.join(context_path, lockfile)):
            return LockInfo(lockfile=lockfile, flavour=flavour)
    return None


# A requirement is pinned to one exact release: name[extras]==version or ===version.
# Wildcards (==1.*), ranges, URLs and VCS references never pin.
_PINNED = re.compile(r"^[A-Za-z0-9][\w.\-]*(\[[\w.,\s-]*\])?\s*(==\s*[\w.+!-]+|===\s*\S+)$")
_HASH_OPTION = re.compile(r"--hash[=\s]+\S+")
_INCLUDE_OPTIONS = ("-r", "--requirement")
_EDITABLE_OPTIONS = ("-e", "--editable")


def _option_value(entry: str, names: tuple[str, ...]) -> Optional[str]:
    """Value of a ``-r file`` / ``--requirement=file`` style option, None if ``entry`` is another option."""
    for name in names:
        if entry == name:
            return ""
        for sep in ("=", " ", "\t"):
            if entry.startswith(name + sep):
                return entry[len(name) + 1:].strip()
    return None


def find_unpinned_requirements(requirements_path: str, _seen: Optional[set] = None) -> list[str]:
    """
    List requirement lines of a requirements file that are not pinned.

    ``-r`` includes are followed (relative to the including file); ``-e``
    and a missing include are reported as unpinned. Other options
    (``--index-url`` ...), comments and blank lines are ignored.
    Continuation lines are joined before checking.
    """
    seen = _seen if _seen is not None else set()
    real_path = os.path.realpath(requirements_path)
    if real_path in seen:
        return []
    seen.add(real_path)

    with open(requirements_path, "r", encoding="utf-8") as f:
        raw = f.read()

    base_dir = os.path.dirname(requirements_path)
    logical_lines = raw.replace("\\\n", " ").splitlines()
    unpinned: list[str] = []
    for line in logical_lines:
        entry = line.split(" #", 1)[0].strip()
        if not entry or entry.startswith("#"):
            continue

        if entry.startswith("-"):
            include = _option_value(entry, _INCLUDE_OPTIONS)
            if include is not None:
                include_path = os.path.join(base_dir, include)
                if os.path.isfile(include_path):
                    unpinned.extend(find_unpinned_requirements(include_path, seen))
                else:
                    unpinned.append(entry)
            elif _option_value(entry, _EDITABLE_OPTIONS) is not None:
                unpinned.append(entry)
            continue

        requirement = _HASH_OPTION.sub("", entry).split(";", 1)[0].strip()
        if not _PINNED.match(requirement):
            unpinned.append(entry)
    return unpinned


def read_package_scripts(context_path: str) -> dict[str, str]:
    """Return the ``scripts`` table of package.json (empty if unreadable)."""
    path = os.path.join(context_path, "package.json")
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, ValueError) as e:
        logger.warning("Could not read %s: %s", path, e)
        return {}
    scripts = data.get("scripts") if isinstance(data, dict) else None
    return scripts if isinstance(scripts, dict) else {}


def has_python_tests(context_path: str) -> bool:
    """True when the project declares pytest tests (tests/ dir or pytest config)."""
    if os.path.isdir(os.path.join(context_path, "tests")):
        return True
    if os.path.isfile(os.path.join(context_path, "pytest.ini")):
        return True
    pyproject = os.path.join(context_path, "pyproject.toml")
    if os.path.isfile(pyproject):
        with open(pyproject, "r", encoding="utf-8") as f:
            return "[tool.pytest" in f.read()
    return False
