# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# volimporter/core/config.py
"""
Runtime configuration for workers and the controller.

Configuration comes from (later wins):
  1. dataclass defaults
  2. a YAML file with `importer:` and `controller:` sections
  3. VOLIMPORTER_<SECTION>_<FIELD> environment variables
"""

from __future__ import annotations

import dataclasses
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Type, TypeVar

import yaml

from .exceptions import ConfigError

ENV_PREFIX = "VOLIMPORTER_"

T = TypeVar("T")


@dataclass
class ImporterConfig:
    chunk_size: int = 1024 * 1024
    connect_timeout_s: float = 15.0
    read_timeout_s: float = 60.0
    registry_timeout_s: float = 60.0 * 30
    upload_wait_timeout_s: float = 60.0 * 10
    scratch_dir: Optional[str] = None  # spool for non-seekable qcow2; default: destination dir
    sparse: bool = True
    show_progress: bool = True
    log_every_bytes: int = 64 * 1024 * 1024
    termination_message_path: Optional[str] = "/dev/termination-log"
    archive_entry: Optional[str] = None  # tar member holding the disk image


@dataclass
class ControllerConfig:
    threads: int = 4
    destination_path: str = "/data/disk.img"
    worker_image: str = "volimporter:latest"
    retain_failed_workers: bool = False
    conflict_retries: int = 5
    resync_period_s: float = 300.0


@dataclass
class Config:
    importer: ImporterConfig = field(default_factory=ImporterConfig)
    controller: ControllerConfig = field(default_factory=ControllerConfig)


def _coerce(value: Any, target: Any, name: str) -> Any:
    # dataclass annotations are strings under `from __future__ import annotations`
    t = str(target)
    try:
        if value is None:
            if "Optional" in t:
                return None
            raise ConfigError(msg=f"{name} must not be null")
        if t == "bool":
            if isinstance(value, bool):
                return value
            s = str(value).strip().lower()
            if s in ("1", "true", "yes", "on"):
                return True
            if s in ("0", "false", "no", "off"):
                return False
            raise ConfigError(msg=f"{name} must be a boolean, got {value!r}")
        if "int" in t:
            return int(value)
        if "float" in t:
            return float(value)
        return str(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(msg=f"Invalid value for {name}: {value!r}", cause=e) from e


def _build_section(cls: Type[T], data: Mapping[str, Any], section: str) -> T:
    known = {f.name: f for f in dataclasses.fields(cls)}  # type: ignore[arg-type]
    unknown = sorted(set(data) - set(known))
    if unknown:
        raise ConfigError(msg=f"Unknown {section} config key(s): {', '.join(unknown)}")
    kwargs = {k: _coerce(v, known[k].type, f"{section}.{k}") for k, v in data.items()}
    return cls(**kwargs)  # type: ignore[call-arg]


def _env_overrides(env: Mapping[str, str]) -> Dict[str, Dict[str, str]]:
    out: Dict[str, Dict[str, str]] = {"importer": {}, "controller": {}}
    for key, value in env.items():
        if not key.startswith(ENV_PREFIX):
            continue
        rest = key[len(ENV_PREFIX):].lower()
        for section in out:
            if rest.startswith(section + "_"):
                out[section][rest[len(section) + 1:]] = value
    return out


def load_config(path: Optional[Path] = None, env: Optional[Mapping[str, str]] = None) -> Config:
    """Load configuration from an optional YAML file plus environment overrides."""
    raw: Dict[str, Any] = {}
    if path is not None:
        path = Path(path)
        try:
            text = path.read_text(encoding="utf-8")
        except OSError as e:
            raise ConfigError(msg=f"Cannot read config file {path}: {e}", cause=e) from e
        try:
            raw = yaml.safe_load(text) or {}
        except yaml.YAMLError as e:
            raise ConfigError(msg=f"Invalid YAML in {path}: {e}", cause=e) from e
        if not isinstance(raw, dict):
            raise ConfigError(msg=f"Config root must be a mapping: {path}")

    unknown = sorted(set(raw) - {"importer", "controller"})
    if unknown:
        raise ConfigError(msg=f"Unknown config section(s): {', '.join(unknown)}")

    overrides = _env_overrides(os.environ if env is None else env)
    sections: Dict[str, Dict[str, Any]] = {}
    for section in ("importer", "controller"):
        data = raw.get(section) or {}
        if not isinstance(data, dict):
            raise ConfigError(msg=f"Config section '{section}' must be a mapping")
        sections[section] = {**data, **overrides[section]}

    return Config(
        importer=_build_section(ImporterConfig, sections["importer"], "importer"),
        controller=_build_section(ControllerConfig, sections["controller"], "controller"),
    )
