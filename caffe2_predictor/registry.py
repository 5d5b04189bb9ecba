"""
PREDICTOR REGISTRY

The seam through which predictor plugins announce themselves to the
serving agent. The agent owns scheduling and model lifecycle; this module
only stores which predictor prototype serves which framework.

CARDINALITY: One predictor per framework (name + version is the key).

CONSTRAINTS:
- Pure state management (no model loading, no I/O)
- Thread-safe registration
"""

import threading
from typing import Dict, Optional, Tuple

from loguru import logger

from .errors import FrameworkNotFoundError
from .frameworks import FrameworkManifest, parse_version, version_satisfies


class PredictorRegistry:
    """Registry of predictor prototypes keyed by framework."""

    def __init__(self):
        # Dict[(framework name lower, framework version), (framework, predictor)]
        self._predictors: Dict[Tuple[str, str], Tuple[FrameworkManifest, object]] = {}
        self._lock = threading.Lock()

    def add_predictor(self, framework: FrameworkManifest, predictor: object) -> None:
        """
        Register ``predictor`` as the prototype for ``framework``.

        Re-registering a framework replaces the previous predictor.
        """
        with self._lock:
            if framework.key in self._predictors:
                logger.warning(f"Replacing predictor registered for {framework}")
            self._predictors[framework.key] = (framework, predictor)

        logger.info(f"Registered predictor {type(predictor).__name__} for {framework}")

    def get_predictor(self, name: str, constraint: str = "") -> object:
        """
        Find the predictor for a framework name and version constraint.

        The highest matching framework version wins.

        Raises:
            FrameworkNotFoundError: If no registered framework matches
        """
        with self._lock:
            matches = [
                (framework, predictor)
                for framework, predictor in self._predictors.values()
                if framework.name.lower() == name.lower()
                and version_satisfies(framework.version, constraint)
            ]
        if not matches:
            raise FrameworkNotFoundError(
                f"no predictor registered for {name}:{constraint or '*'}"
            )
        return max(matches, key=lambda item: parse_version(item[0].version))[1]

    def list_predictors(self) -> Dict[FrameworkManifest, object]:
        with self._lock:
            return {framework: predictor for framework, predictor in self._predictors.values()}

    def remove_predictor(self, framework: FrameworkManifest) -> bool:
        """
        Remove the predictor registered for ``framework``.

        Returns:
            True if a predictor was removed, False if none was registered
        """
        with self._lock:
            if framework.key not in self._predictors:
                return False
            del self._predictors[framework.key]

        logger.info(f"Removed predictor for {framework}")
        return True

    def count(self) -> int:
        return len(self._predictors)


_default_registry = PredictorRegistry()


def default_registry() -> PredictorRegistry:
    return _default_registry


def add_predictor(framework: FrameworkManifest, predictor: object) -> None:
    _default_registry.add_predictor(framework, predictor)


def get_predictor(name: str, constraint: str = "") -> Optional[object]:
    """Like PredictorRegistry.get_predictor but returns None when nothing matches."""
    try:
        return _default_registry.get_predictor(name, constraint)
    except FrameworkNotFoundError:
        return None
