"""
crm_config -- single public entrypoint for lifecycle configuration.

Responsibility:
    ``get_active_config()`` is the ONLY way to obtain configuration at
    runtime.  No other component reads configuration files or
    environment variables.

Architecture position:
    Sits above ``crm_kernel`` and beside ``crm_modules``.  The kernel never
    imports from here; the API layer reads the config once and hands each
    section to the services it constructs.

Sources, in increasing precedence:
    1. packaged ``defaults.yaml``;
    2. the YAML file named by ``CRM_CONFIG_FILE`` (or ``config_file``);
    3. ``DATABASE_URL`` and ``CRM_LOG_LEVEL`` environment variables.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from pathlib import Path

from crm_config.loader import load_yaml_file, merge_dicts, parse_config
from crm_config.schema import (
    DocumentSettings,
    LifecycleConfig,
    NotificationSettings,
    SignatureSettings,
)

_logger = logging.getLogger("crm.config")

_DEFAULTS_FILE = Path(__file__).parent / "defaults.yaml"

__all__ = [
    "DocumentSettings",
    "LifecycleConfig",
    "NotificationSettings",
    "SignatureSettings",
    "get_active_config",
]


def get_active_config(
    config_file: Path | str | None = None,
    environ: Mapping[str, str] | None = None,
) -> LifecycleConfig:
    """The ONLY public configuration entrypoint.

    Args:
        config_file: Overlay YAML file.  Defaults to ``$CRM_CONFIG_FILE``.
        environ: Environment mapping, for tests.  Defaults to ``os.environ``.

    Raises:
        FileNotFoundError: If the overlay file does not exist.
        ValueError: If the merged configuration is invalid.
    """
    env = os.environ if environ is None else environ

    data = load_yaml_file(_DEFAULTS_FILE)

    overlay_path = config_file or env.get("CRM_CONFIG_FILE")
    if overlay_path:
        data = merge_dicts(data, load_yaml_file(Path(overlay_path)))

    if env.get("DATABASE_URL"):
        data["database_url"] = env["DATABASE_URL"]
    if env.get("CRM_LOG_LEVEL"):
        data["log_level"] = env["CRM_LOG_LEVEL"]

    config = parse_config(data)

    _logger.info(
        "CRM_CONFIG_LOADED",
        extra={
            "overlay_file": str(overlay_path) if overlay_path else None,
            "share_link_ttl_days": config.documents.share_link_ttl_days,
            "notification_timeout_seconds": config.notifications.timeout_seconds,
        },
    )
    return config
