"""
procurement_config -- single public entrypoint for back-office configuration.

Responsibility:
    ``get_active_config()`` is the only way services obtain configuration
    at runtime.  It reads the YAML file named by ``PROCUREMENT_CONFIG_PATH``
    or, when unset, the packaged ``defaults.yaml``, and returns a frozen
    ``BackOfficeConfig``.

Architecture position:
    Configuration sits above ``procurement_kernel`` and the module config
    dataclasses.  The kernel and the engines never import from here.

Audit relevance:
    Every call emits a ``PROCUREMENT_CONFIG_TRACE`` log entry with the
    config id, version and checksum of the file that was loaded.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from procurement_config.loader import compute_checksum, load_yaml_file, parse_back_office_config
from procurement_config.schema import BackOfficeConfig

_logger = logging.getLogger("procurement_kernel.config")

CONFIG_PATH_ENV = "PROCUREMENT_CONFIG_PATH"
DEFAULT_CONFIG_PATH = Path(__file__).parent / "defaults.yaml"


def get_active_config(path: Path | str | None = None) -> BackOfficeConfig:
    """Load and return the active configuration.

    Resolution order: explicit ``path``, then ``PROCUREMENT_CONFIG_PATH``,
    then the packaged defaults.

    Raises:
        FileNotFoundError: If the resolved file does not exist.
        ValueError: If a value fails validation.
    """
    resolved = Path(path or os.environ.get(CONFIG_PATH_ENV) or DEFAULT_CONFIG_PATH)
    data = load_yaml_file(resolved)
    config = parse_back_office_config(data, source_path=str(resolved))

    _logger.info(
        "PROCUREMENT_CONFIG_TRACE",
        extra={
            "trace_type": "PROCUREMENT_CONFIG_TRACE",
            "config_id": config.config_id,
            "config_version": config.version,
            "checksum": config.checksum,
            "source_path": config.source_path,
        },
    )
    return config


__all__ = [
    "BackOfficeConfig",
    "CONFIG_PATH_ENV",
    "DEFAULT_CONFIG_PATH",
    "compute_checksum",
    "get_active_config",
    "load_yaml_file",
]
