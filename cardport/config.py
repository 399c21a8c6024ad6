"""
# Cardport
# Copyright (c) 2026 Dale Chapman
# Licensed under the MIT License. See LICENSE in the project root.

config.py

Import configuration for the APKG pipeline.

Defaults cover every option, so a config file is optional. When one is
given it is a flat YAML mapping, for example:

    media_format: markdown
    divider: "---div---"
    workers: 8
    max_media_size_mb: 100

Usage:
    from cardport.config import load_config

    config = load_config(Path("cardport.yaml"))
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from cardport.errors import CardportError
from cardport.icons import WARNING


MEDIA_FORMATS = ("wikilink", "markdown")
DEFAULT_CONFIG_NAME = "cardport.yaml"


class ConfigError(CardportError):
    """Configuration file cannot be read"""

    category = "config_error"


@dataclass
class ImportConfig:
    """Options shared by every stage of one import run."""

    media_format: str = "wikilink"
    cloze_mark: str = "=="
    convert_simple_tables: bool = True
    preserve_complex_tables: bool = True
    divider: str = "---div---"
    media_root: str = "media"
    workers: int = 4
    max_media_size_mb: int = 50
    verbose: bool = False

    @property
    def max_media_size(self) -> int:
        return self.max_media_size_mb * 1024 * 1024

    @classmethod
    def from_dict(cls, data: Dict[str, Any], warnings: Optional[List[str]] = None) -> "ImportConfig":
        """
        Build a config from a plain mapping.

        Unknown keys and values of the wrong type are reported and fall
        back to the defaults; they never abort an import.
        """
        if warnings is None:
            warnings = []

        config = cls()
        known = {f.name: f for f in fields(cls)}

        for key, value in (data or {}).items():
            if key not in known:
                warnings.append(f"Unknown config key ignored: {key}")
                continue

            default = getattr(config, key)
            # bool is an int subclass; keep them apart
            if isinstance(default, bool):
                ok = isinstance(value, bool)
            elif isinstance(default, int):
                ok = isinstance(value, int) and not isinstance(value, bool)
            else:
                ok = isinstance(value, type(default))

            if not ok:
                warnings.append(
                    f"Config key '{key}' expects {type(default).__name__}, "
                    f"got {type(value).__name__}; using default {default!r}"
                )
                continue

            setattr(config, key, value)

        if config.media_format not in MEDIA_FORMATS:
            warnings.append(
                f"Unknown media_format '{config.media_format}'; using 'wikilink'"
            )
            config.media_format = "wikilink"

        if config.workers < 1:
            warnings.append("workers must be at least 1; using 1")
            config.workers = 1

        if not config.divider.strip():
            warnings.append("divider must not be blank; using '---div---'")
            config.divider = "---div---"

        return config


def load_config(path: Optional[Path] = None) -> ImportConfig:
    """
    Load configuration from a YAML file.

    Args:
        path: Config file. When None, ./cardport.yaml is used if present.

    Returns:
        ImportConfig (defaults when no file exists)

    Raises:
        ConfigError: If the file exists but is not a YAML mapping
    """
    if path is None:
        path = Path.cwd() / DEFAULT_CONFIG_NAME
        if not path.is_file():
            return ImportConfig()
    elif not path.is_file():
        raise ConfigError(
            message=f"Config file not found: {path}",
            suggestion="Check the --config path",
        )

    try:
        with path.open(encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(
            message=f"Config file is not valid YAML: {path}",
            cause=e,
        )

    if not isinstance(data, dict):
        raise ConfigError(
            message=f"Config file must be a mapping at top level: {path}",
            context={"type": type(data).__name__},
        )

    warnings: List[str] = []
    config = ImportConfig.from_dict(data, warnings)
    for warning in warnings:
        print(f"[config:warn] {WARNING} {warning}")
    return config
