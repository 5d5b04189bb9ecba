"""
CAFFE2 IMAGE PREDICTOR PLUGIN

Image-classification predictor for a pluggable model-serving agent,
backed by the Caffe2 runtime.

WHAT THIS IS:
- Model manifest parser (manifest.py) and built-in catalog (builtin.py)
- Artifact download manager with on-disk cache (download.py)
- Image -> normalized BGR planar tensor conversion (preprocess.py)
- Native session wrapper (session.py)
- Predictor adapter implementing the agent lifecycle (predictor.py)
- Registration into the agent's predictor registry (registry.py, plugin.py)

WHAT THIS IS NOT:
- A neural network execution engine (delegated to the native runtime)
- The plugin host / serving agent
- Model training
"""

from .config import PredictorSettings, after_init, get_settings, init
from .errors import (
    ChecksumMismatchError,
    DownloadError,
    FrameworkNotFoundError,
    ManifestError,
    PredictionError,
    PredictorError,
    PreprocessError,
)
from .features import Feature, Prediction
from .frameworks import CAFFE2_FRAMEWORK, FrameworkManifest
from .manifest import ModelManifest
from .builtin import ModelCatalog
from .preprocess import ImagePreprocessor
from .session import InferenceSession
from .predictor import ImagePredictor
from .registry import PredictorRegistry, add_predictor, get_predictor
from . import plugin

__all__ = [
    "PredictorSettings",
    "after_init",
    "get_settings",
    "init",
    "PredictorError",
    "ManifestError",
    "FrameworkNotFoundError",
    "DownloadError",
    "ChecksumMismatchError",
    "PreprocessError",
    "PredictionError",
    "Feature",
    "Prediction",
    "CAFFE2_FRAMEWORK",
    "FrameworkManifest",
    "ModelManifest",
    "ModelCatalog",
    "ImagePreprocessor",
    "InferenceSession",
    "ImagePredictor",
    "PredictorRegistry",
    "add_predictor",
    "get_predictor",
]

__version__ = "0.1.0"
