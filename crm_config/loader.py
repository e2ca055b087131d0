"""
Configuration loader (``crm_config.loader``).

Loads YAML files and parses them into the frozen dataclasses of
``crm_config.schema``.  Internal tooling: the runtime entry point is
``crm_config.get_active_config()``.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Unknown keys or out-of-range values  -> ``ValueError``.
"""

from __future__ import annotations

from dataclasses import fields
from pathlib import Path
from typing import Any

import yaml

from crm_config.schema import (
    DocumentSettings,
    LifecycleConfig,
    NotificationSettings,
    SignatureSettings,
)


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load a single YAML file. An empty file yields an empty dict."""
    with open(path) as f:
        data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top-level YAML value must be a mapping")
    return data


def merge_dicts(base: dict[str, Any], overlay: dict[str, Any]) -> dict[str, Any]:
    """Recursive merge; overlay wins."""
    merged = dict(base)
    for key, value in overlay.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = merge_dicts(merged[key], value)
        else:
            merged[key] = value
    return merged


def _build(cls: type, section: str, data: dict[str, Any] | None):
    data = data or {}
    known = {f.name for f in fields(cls)}
    unknown = set(data) - known
    if unknown:
        raise ValueError(f"Unknown keys in '{section}': {sorted(unknown)}")
    return cls(**data)


def parse_config(data: dict[str, Any]) -> LifecycleConfig:
    """Turn a merged YAML mapping into a validated LifecycleConfig."""
    top_known = {"database_url", "log_level", "documents", "notifications", "signatures"}
    unknown = set(data) - top_known
    if unknown:
        raise ValueError(f"Unknown top-level configuration keys: {sorted(unknown)}")

    documents = _build(DocumentSettings, "documents", data.get("documents"))
    notifications = _build(NotificationSettings, "notifications", data.get("notifications"))
    sig_data = dict(data.get("signatures") or {})
    if "allowed_media_types" in sig_data:
        sig_data["allowed_media_types"] = tuple(sig_data["allowed_media_types"])
    signatures = _build(SignatureSettings, "signatures", sig_data)

    if documents.share_link_ttl_days <= 0:
        raise ValueError("documents.share_link_ttl_days must be positive")
    if not 1 <= documents.number_width <= 9:
        raise ValueError("documents.number_width must be between 1 and 9")
    if notifications.timeout_seconds <= 0:
        raise ValueError("notifications.timeout_seconds must be positive")
    if notifications.max_workers < 1:
        raise ValueError("notifications.max_workers must be at least 1")
    if signatures.max_image_bytes <= 0:
        raise ValueError("signatures.max_image_bytes must be positive")

    return LifecycleConfig(
        database_url=str(data.get("database_url", LifecycleConfig.database_url)),
        log_level=str(data.get("log_level", LifecycleConfig.log_level)).upper(),
        documents=documents,
        notifications=notifications,
        signatures=signatures,
    )
