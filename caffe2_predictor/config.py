"""
PLUGIN CONFIGURATION

This module holds the process-wide predictor settings and the
"after init" hook list the agent host drives at start-up.

LIFECYCLE:
1. Modules queue callbacks with after_init() at import time
2. The host calls init() once configuration is available
3. Queued callbacks run once, in registration order
4. Callbacks queued after init() run immediately

Settings are read from the environment (prefix CAFFE2_PREDICTOR_) or an
optional .env file.
"""

import sys
import threading
from pathlib import Path
from typing import Callable, List, Optional

from loguru import logger
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _default_work_dir_root() -> Path:
    return Path.home() / ".cache" / "caffe2_predictor"


class PredictorSettings(BaseSettings):
    """
    Settings for the Caffe2 predictor plugin.

    Every field can be overridden with an environment variable, e.g.
    CAFFE2_PREDICTOR_DEVICE=cuda or CAFFE2_PREDICTOR_VERIFY_CHECKSUMS=true.
    """

    model_config = SettingsConfigDict(
        env_prefix="CAFFE2_PREDICTOR_",
        env_file=".env",
        extra="ignore",
    )

    work_dir_root: Path = Field(
        default_factory=_default_work_dir_root,
        description="Root directory for downloaded model artifacts",
    )
    device: Optional[str] = Field(
        default=None,
        description="Inference device: cpu, cuda, cuda:N (None = auto-detect)",
    )
    download_timeout_seconds: float = Field(
        default=300.0,
        gt=0,
        description="Total timeout for a single artifact download",
    )
    verify_checksums: bool = Field(
        default=False,
        description="MD5-verify downloaded artifacts against manifest checksums",
    )
    builtin_models_dir: Optional[Path] = Field(
        default=None,
        description="Override directory for built-in model manifests",
    )
    log_level: str = Field(default="INFO", description="Log level for the plugin")


_settings: Optional[PredictorSettings] = None
_hooks: List[Callable[[], None]] = []
_initialized = False
_log_handler_id: Optional[int] = None
_lock = threading.Lock()


def get_settings() -> PredictorSettings:
    """Return the process-wide settings, creating them on first use."""
    global _settings
    if _settings is None:
        _settings = PredictorSettings()
    return _settings


def reset_settings() -> None:
    """Drop cached settings and init state (used by tests)."""
    global _settings, _initialized
    with _lock:
        _settings = None
        _initialized = False
        _hooks.clear()


def configure_logging(level: str = "INFO") -> None:
    """
    Install (or replace) the plugin's stderr sink at ``level``.

    Only the sink added here is ever removed; sinks owned by the host
    process are left alone. The sink only carries this package's records.
    """
    global _log_handler_id
    if _log_handler_id is not None:
        logger.remove(_log_handler_id)
    _log_handler_id = logger.add(sys.stderr, level=level.upper(), filter=__package__)


def after_init(callback: Callable[[], None]) -> None:
    """
    Queue a callback to run once the host calls init().

    If init() already ran the callback is invoked right away.
    """
    with _lock:
        if not _initialized:
            _hooks.append(callback)
            return
    callback()


def init(settings: Optional[PredictorSettings] = None) -> PredictorSettings:
    """
    Initialize the plugin configuration and run queued hooks.

    Args:
        settings: Explicit settings (default: read from environment)

    Returns:
        The active settings

    Calling init() more than once replaces the settings but does not
    re-run hooks.
    """
    global _settings, _initialized

    with _lock:
        _settings = settings or PredictorSettings()
        first_init = not _initialized
        _initialized = True
        hooks = list(_hooks)
        _hooks.clear()

    configure_logging(_settings.log_level)

    if first_init:
        logger.debug(f"Running {len(hooks)} after-init hook(s)")
    for hook in hooks:
        hook()

    return _settings


def is_initialized() -> bool:
    return _initialized
