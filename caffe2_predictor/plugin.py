"""
PLUGIN REGISTRATION

Registers the Caffe2 image predictor with the agent once the host has
initialized configuration.

Importing this module (done by the package __init__) queues the
registration through config.after_init(); the host's config.init() call
performs it.
"""

from typing import Optional

from . import config
from .frameworks import CAFFE2_FRAMEWORK
from .predictor import ImagePredictor
from .registry import PredictorRegistry, default_registry


def register(registry: Optional[PredictorRegistry] = None) -> ImagePredictor:
    """
    Register a prototype ImagePredictor for Caffe2.

    Idempotent: if ``registry`` already holds an ImagePredictor for Caffe2,
    that prototype is returned unchanged.
    """
    registry = registry or default_registry()

    existing = registry.list_predictors().get(CAFFE2_FRAMEWORK)
    if isinstance(existing, ImagePredictor):
        return existing

    prototype = ImagePredictor(framework=CAFFE2_FRAMEWORK)
    registry.add_predictor(CAFFE2_FRAMEWORK, prototype)
    return prototype


def _register_default() -> None:
    register()


config.after_init(_register_default)
