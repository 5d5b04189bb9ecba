"""
BUILT-IN MODEL CATALOG

This module handles discovery of the model manifests shipped with the
plugin (or placed in an override directory).

DISCOVERY SEMANTICS:
- Scan the directory ONCE, in sorted order
- Each *.yml / *.yaml file is ONE manifest
- Invalid manifests are marked UNAVAILABLE (with a reason), never fatal
- Hidden manifests are loaded but not listed by default
"""

import os
from typing import Dict, List, Optional

from loguru import logger

from .errors import ManifestError
from .manifest import ModelManifest

BUILTIN_MODELS_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), "builtin_models")

_MANIFEST_SUFFIXES = (".yml", ".yaml")


class ModelCatalog:
    """
    Directory-backed collection of model manifests.

    Manifests are keyed by lower-cased model name; when two files declare
    the same model, the one discovered last answers lookups without a version.
    """

    def __init__(self, models_dir: Optional[str] = None):
        """
        Args:
            models_dir: Directory to scan (default: the packaged builtin_models/)
        """
        self.models_dir = str(models_dir or BUILTIN_MODELS_DIR)
        self._manifests: Dict[str, List[ModelManifest]] = {}
        self._unavailable: Dict[str, str] = {}
        self._discovered = False

    def discover(self) -> List[ModelManifest]:
        """
        Scan the models directory.

        Returns:
            All successfully parsed manifests (hidden ones included)

        FAILURE HANDLING:
        - Missing directory -> empty catalog
        - Invalid manifest -> recorded as "invalid_manifest"
        """
        if self._discovered:
            return self._all()
        self._discovered = True

        if not os.path.isdir(self.models_dir):
            logger.warning(f"Models directory does not exist: {self.models_dir}")
            return []

        for entry in sorted(os.listdir(self.models_dir)):
            stem, suffix = os.path.splitext(entry)
            if suffix.lower() not in _MANIFEST_SUFFIXES:
                continue

            path = os.path.join(self.models_dir, entry)
            try:
                manifest = ModelManifest.from_yaml_file(path)
            except ManifestError as e:
                logger.warning(f"Manifest {entry} marked UNAVAILABLE: {e}")
                self._unavailable[stem] = "invalid_manifest"
                continue

            self._manifests.setdefault(manifest.name.lower(), []).append(manifest)
            logger.debug(
                f"Discovered model {manifest.name} v{manifest.version} "
                f"({manifest.framework.name}{' hidden' if manifest.hidden else ''})"
            )

        logger.info(
            f"Model discovery complete: {len(self._all())} available, "
            f"{len(self._unavailable)} unavailable"
        )
        return self._all()

    def _all(self) -> List[ModelManifest]:
        return [m for versions in self._manifests.values() for m in versions]

    def get(self, name: str, version: Optional[str] = None) -> Optional[ModelManifest]:
        """
        Look up a manifest by model name (case-insensitive).

        Returns:
            The manifest, or None if unknown
        """
        self.discover()
        versions = self._manifests.get(name.lower(), [])
        if version is not None:
            for manifest in versions:
                if manifest.version == str(version):
                    return manifest
            return None
        return versions[-1] if versions else None

    def list_models(self, include_hidden: bool = False) -> List[ModelManifest]:
        self.discover()
        return [m for m in self._all() if include_hidden or not m.hidden]

    def get_unavailable_reason(self, stem: str) -> Optional[str]:
        self.discover()
        return self._unavailable.get(stem)
