"""
costing_config -- single public entrypoint for runtime settings.

Responsibility:
    Provides the ONLY way to obtain settings at runtime through
    ``get_active_config()``.  No other component reads settings files or
    environment variables directly.

Architecture position:
    Configuration -- YAML-driven settings.  Sits above ``costing_kernel``
    and below ``costing_services`` / ``costing_batch``.  The kernel MUST
    NEVER import from ``costing_config``.

Failure modes:
    - ``FileNotFoundError`` -- the settings file does not exist.
    - ``ValueError`` -- unknown key or invalid value.

Audit relevance:
    Every call emits a ``CONFIG_TRACE`` log entry with the settings
    checksum so a calculation can be tied to the settings that governed it.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from costing_config.loader import load_settings
from costing_config.schema import EngineSettings

_logger = logging.getLogger("costing_kernel.config")

_DEFAULT_CONFIG_PATH = Path(__file__).parent / "sets" / "default.yaml"

CONFIG_ENV_VAR = "COSTING_CONFIG"


def get_active_config(config_path: Path | str | None = None) -> EngineSettings:
    """The ONLY public settings entrypoint.

    Resolution order: explicit ``config_path``, then the ``COSTING_CONFIG``
    environment variable, then ``costing_config/sets/default.yaml``.
    """
    if config_path is not None:
        path = Path(config_path)
    elif os.environ.get(CONFIG_ENV_VAR):
        path = Path(os.environ[CONFIG_ENV_VAR])
    else:
        path = _DEFAULT_CONFIG_PATH

    settings = load_settings(path)

    _logger.info(
        "CONFIG_TRACE",
        extra={
            "trace_type": "CONFIG_TRACE",
            "config_path": str(path),
            "checksum": settings.checksum,
            "worker_pool_size": settings.worker_pool_size,
            "queue_name": settings.queue_name,
        },
    )
    return settings


__all__ = ["CONFIG_ENV_VAR", "EngineSettings", "get_active_config"]
