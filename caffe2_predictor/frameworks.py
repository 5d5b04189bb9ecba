"""
FRAMEWORK MANIFESTS

Identity of the deep-learning frameworks this plugin can serve, and the
constraint matching used to resolve a model manifest's framework entry.

VERSION CONSTRAINTS:
- "" or "*" matches any version
- "X.Y.Z" matches versions with the same major component that are >= X.Y.Z
- Framework names compare case-insensitively
"""

from dataclasses import dataclass
from typing import Dict, List, Tuple

from .errors import FrameworkNotFoundError


@dataclass(frozen=True)
class FrameworkManifest:
    """A framework the plugin serves (e.g. Caffe2 0.8.1)."""

    name: str
    version: str

    @property
    def key(self) -> Tuple[str, str]:
        return (self.name.lower(), self.version)

    def __str__(self) -> str:
        return f"{self.name}:{self.version}"


CAFFE2_FRAMEWORK = FrameworkManifest(name="Caffe2", version="0.8.1")


def parse_version(version: str) -> Tuple[int, ...]:
    parts = []
    for piece in str(version).strip().lstrip("vV").split("."):
        digits = ""
        for ch in piece:
            if not ch.isdigit():
                break
            digits += ch
        parts.append(int(digits) if digits else 0)
    while len(parts) < 3:
        parts.append(0)
    return tuple(parts)


def version_satisfies(version: str, constraint: str) -> bool:
    """
    Check whether ``version`` satisfies a manifest framework constraint.

    Args:
        version: Concrete framework version (e.g. "0.8.1")
        constraint: Constraint from a manifest (e.g. "0.8", "*", "")

    Returns:
        True if the version is acceptable
    """
    constraint = str(constraint or "").strip()
    if constraint in ("", "*"):
        return True

    have = parse_version(version)
    want = parse_version(constraint)
    return have[0] == want[0] and have >= want


_frameworks: Dict[Tuple[str, str], FrameworkManifest] = {}


def register_framework(framework: FrameworkManifest) -> None:
    _frameworks[framework.key] = framework


def registered_frameworks() -> List[FrameworkManifest]:
    return list(_frameworks.values())


def find_framework(name: str, constraint: str = "") -> FrameworkManifest:
    """
    Resolve a framework name and version constraint.

    When several versions match, the highest one wins.

    Raises:
        FrameworkNotFoundError: If nothing registered satisfies the request
    """
    candidates = [
        fw for fw in _frameworks.values()
        if fw.name.lower() == str(name).lower() and version_satisfies(fw.version, constraint)
    ]
    if not candidates:
        raise FrameworkNotFoundError(
            f"no registered framework matches {name}:{constraint or '*'}"
        )
    return max(candidates, key=lambda fw: parse_version(fw.version))


register_framework(CAFFE2_FRAMEWORK)
