"""
MODEL MANIFEST PARSER

This module handles model manifest (YAML) parsing and validation.

A manifest describes a trained model:
- Identity (name, version, framework constraint)
- Inputs (type + parameters such as dimensions, mean, scale)
- Output (type + parameters such as features_url)
- Artifacts (base_url, graph_path, weights_path, archive flag, checksums)

RULES:
- The manifest is the SINGLE SOURCE OF TRUTH for a model
- Parsing is strict: malformed manifests raise ManifestError
- Manifests are immutable after parsing

EXAMPLE manifest:

    name: BVLC-AlexNet
    framework:
      name: Caffe2
      version: 0.8.1
    version: 1.0
    inputs:
      - type: image
        parameters:
          dimensions: [3, 227, 227]
          mean: [123, 117, 104]
    output:
      type: feature
      parameters:
        features_url: http://data.dmlc.ml/mxnet/models/imagenet/synset.txt
    model:
      base_url: http://s3.amazonaws.com/store.carml.org/models/caffe2/bvlc_alexnet_1.0/
      graph_path: predict_net.pb
      weights_path: init_net.pb
      is_archive: false
"""

import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import yaml

from .errors import ManifestError
from .frameworks import FrameworkManifest, find_framework


def _as_str(value: Any) -> str:
    # YAML turns "version: 1.0" into a float
    if value is None:
        return ""
    return str(value)


def _require_mapping(value: Any, what: str, source: str) -> Dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ManifestError(f"{what} must be a mapping in {source}")
    return value


@dataclass(frozen=True)
class FrameworkConstraint:
    """Framework name and version constraint requested by a manifest."""

    name: str
    version: str = ""


@dataclass(frozen=True)
class TypeParameter:
    """An input or output entry: a type tag plus free-form parameters."""

    type: str
    description: str = ""
    parameters: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Any, what: str, source: str) -> "TypeParameter":
        data = _require_mapping(data, what, source)
        type_name = data.get("type")
        if not type_name or not isinstance(type_name, str):
            raise ManifestError(f"{what}.type missing or invalid in {source}")
        return cls(
            type=type_name,
            description=_as_str(data.get("description")).strip(),
            parameters=dict(_require_mapping(data.get("parameters"), f"{what}.parameters", source)),
        )


@dataclass(frozen=True)
class ModelAssets:
    """Where the graph and weights live and how to verify them."""

    base_url: str = ""
    graph_path: str = ""
    weights_path: str = ""
    is_archive: bool = False
    graph_checksum: str = ""
    weights_checksum: str = ""


@dataclass(frozen=True)
class ModelManifest:
    """
    Parsed and validated model manifest.

    IMMUTABLE after parsing.
    """

    name: str
    version: str
    framework: FrameworkConstraint
    model: ModelAssets
    inputs: List[TypeParameter] = field(default_factory=list)
    output: Optional[TypeParameter] = None
    container: Dict[str, Any] = field(default_factory=dict)
    description: str = ""
    references: List[str] = field(default_factory=list)
    license: str = ""
    attributes: Dict[str, Any] = field(default_factory=dict)
    hidden: bool = False

    @classmethod
    def from_dict(cls, data: Any, source: str = "<manifest>") -> "ModelManifest":
        """
        Build a manifest from an already-decoded YAML document.

        Args:
            data: Decoded YAML document
            source: Human-readable origin used in error messages

        Raises:
            ManifestError: If required fields are missing or mistyped
        """
        if not isinstance(data, dict):
            raise ManifestError(f"manifest is not a mapping: {source}")

        name = data.get("name")
        if not name or not isinstance(name, str):
            raise ManifestError(f"name missing or invalid in {source}")

        framework_data = _require_mapping(data.get("framework"), "framework", source)
        framework_name = framework_data.get("name")
        if not framework_name or not isinstance(framework_name, str):
            raise ManifestError(f"framework.name missing or invalid in {source}")
        framework = FrameworkConstraint(
            name=framework_name,
            version=_as_str(framework_data.get("version")),
        )

        if data.get("model") is None:
            raise ManifestError(f"model section missing in {source}")
        model_data = _require_mapping(data.get("model"), "model", source)
        is_archive = model_data.get("is_archive", False)
        if not isinstance(is_archive, bool):
            raise ManifestError(f"model.is_archive must be a boolean in {source}")
        model = ModelAssets(
            base_url=_as_str(model_data.get("base_url")),
            graph_path=_as_str(model_data.get("graph_path")),
            weights_path=_as_str(model_data.get("weights_path")),
            is_archive=is_archive,
            graph_checksum=_as_str(model_data.get("graph_checksum")),
            weights_checksum=_as_str(model_data.get("weights_checksum")),
        )

        raw_inputs = data.get("inputs") or []
        if not isinstance(raw_inputs, list):
            raise ManifestError(f"inputs must be a list in {source}")
        inputs = [
            TypeParameter.from_dict(item, f"inputs[{i}]", source)
            for i, item in enumerate(raw_inputs)
        ]

        output = None
        if data.get("output") is not None:
            output = TypeParameter.from_dict(data["output"], "output", source)

        hidden = data.get("hidden")
        if hidden is None:
            hidden = False
        if not isinstance(hidden, bool):
            raise ManifestError(f"hidden must be a boolean in {source}")

        references = data.get("references") or []
        if not isinstance(references, list):
            raise ManifestError(f"references must be a list in {source}")

        return cls(
            name=name,
            version=_as_str(data.get("version")),
            framework=framework,
            model=model,
            inputs=inputs,
            output=output,
            container=dict(_require_mapping(data.get("container"), "container", source)),
            description=_as_str(data.get("description")).strip(),
            references=[str(ref) for ref in references],
            license=_as_str(data.get("license")),
            attributes=dict(_require_mapping(data.get("attributes"), "attributes", source)),
            hidden=hidden,
        )

    @classmethod
    def from_yaml(cls, text: str, source: str = "<string>") -> "ModelManifest":
        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as e:
            raise ManifestError(f"invalid YAML in {source}: {e}") from e
        return cls.from_dict(data, source=source)

    @classmethod
    def from_yaml_file(cls, yaml_path: str) -> "ModelManifest":
        """
        Parse and validate a manifest file.

        Raises:
            ManifestError: If the file is missing, not YAML, or invalid
        """
        try:
            with open(yaml_path, "r") as f:
                text = f.read()
        except FileNotFoundError as e:
            raise ManifestError(f"manifest not found: {yaml_path}") from e
        except OSError as e:
            raise ManifestError(f"cannot read manifest {yaml_path}: {e}") from e
        return cls.from_yaml(text, source=str(yaml_path))

    def canonical_name(self) -> str:
        return f"{self.framework.name}_{self.name}_{self.version}".lower()

    def resolve_framework(self) -> FrameworkManifest:
        """Find the registered framework satisfying this manifest's constraint."""
        return find_framework(self.framework.name, self.framework.version)

    def work_dir(self, root: str) -> str:
        """
        Return (and create) the directory holding this model's artifacts.

        Layout: <root>/<framework>/<framework version>/<model>/<model version>
        """
        framework = self.resolve_framework()
        path = os.path.join(
            str(root),
            framework.name.lower(),
            framework.version,
            self.name,
            self.version or "latest",
        )
        os.makedirs(path, exist_ok=True)
        return path

    def input_parameter(self, key: str, default: Any = None, index: int = 0) -> Any:
        if index >= len(self.inputs):
            return default
        return self.inputs[index].parameters.get(key, default)

    def output_parameter(self, key: str, default: Any = None) -> Any:
        if self.output is None:
            return default
        return self.output.parameters.get(key, default)

    def features_url(self) -> str:
        return _as_str(self.output_parameter("features_url"))

    def features_checksum(self) -> str:
        return _as_str(self.output_parameter("features_checksum"))

    def __repr__(self) -> str:
        return (
            f"ModelManifest(name={self.name!r}, "
            f"version={self.version!r}, "
            f"framework={self.framework.name}:{self.framework.version})"
        )
