"""Configuration loading for the apply workflow."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Mapping, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import ConfigError
from .tools.patch import ApplyStrategy

LOGGER = logging.getLogger(__name__)

DEFAULT_CONFIG_NAME = "clipapply.yaml"
FORCE_OVERWRITE_ENV = "CLIPAPPLY_FORCE_OVERWRITE"
SHELL_ENV = "CLIPAPPLY_SHELL"

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


class SettingsModel(BaseModel):
    """Base model rejecting unknown keys so typos surface early."""

    model_config = ConfigDict(extra="forbid")


class ApplySettings(SettingsModel):
    """Switches read once per apply invocation."""

    force_overwrite: bool = False
    auto_reset_on_apply: bool = False
    strategy: ApplyStrategy = ApplyStrategy.INDEX_ONLY


class ShellSettings(SettingsModel):
    """How the change-script is executed."""

    path: Optional[str] = None
    timeout: Optional[float] = Field(default=None, gt=0)


class ClipApplyConfig(SettingsModel):
    """Top-level configuration document."""

    apply: ApplySettings = Field(default_factory=ApplySettings)
    shell: ShellSettings = Field(default_factory=ShellSettings)


def _parse_bool(raw: str) -> bool | None:
    lowered = raw.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    return None


def apply_env_overrides(config: ClipApplyConfig, env: Mapping[str, str] | None = None) -> ClipApplyConfig:
    """Return ``config`` with environment overrides applied."""
    env_mapping = os.environ if env is None else env
    apply_settings = config.apply
    shell_settings = config.shell

    force_raw = env_mapping.get(FORCE_OVERWRITE_ENV)
    if force_raw is not None:
        parsed = _parse_bool(str(force_raw))
        if parsed is None:
            LOGGER.warning("Ignoring %s=%r; expected a boolean", FORCE_OVERWRITE_ENV, force_raw)
        else:
            apply_settings = apply_settings.model_copy(update={"force_overwrite": parsed})

    shell_raw = env_mapping.get(SHELL_ENV)
    if shell_raw is not None and str(shell_raw).strip():
        shell_settings = shell_settings.model_copy(update={"path": str(shell_raw).strip()})

    return config.model_copy(update={"apply": apply_settings, "shell": shell_settings})


def load_config(
    config_path: Path | str | None = None,
    *,
    root: Path | str = ".",
    env: Mapping[str, str] | None = None,
) -> ClipApplyConfig:
    """Load YAML configuration, falling back to defaults when no file exists.

    An explicitly supplied ``config_path`` must exist; the default
    ``clipapply.yaml`` under ``root`` is optional.
    """

    if config_path is None:
        candidate = Path(root) / DEFAULT_CONFIG_NAME
        if not candidate.exists():
            return apply_env_overrides(ClipApplyConfig(), env)
    else:
        candidate = Path(config_path)
        if not candidate.is_absolute():
            candidate = (Path(root) / candidate).resolve()
        if not candidate.exists():
            raise ConfigError(f"Config file not found: {candidate}")

    try:
        with candidate.open("r", encoding="utf-8") as handle:
            loaded: Any = yaml.safe_load(handle) or {}
    except yaml.YAMLError as error:
        raise ConfigError(f"Failed to parse config {candidate}: {error}") from error
    except OSError as error:
        raise ConfigError(f"Failed to read config {candidate}: {error}") from error

    if not isinstance(loaded, Mapping):
        raise ConfigError("Configuration must be a mapping at the top level.")

    try:
        config = ClipApplyConfig.model_validate(dict(loaded))
    except ValidationError as error:
        raise ConfigError(f"Invalid configuration in {candidate}: {error}") from error
    return apply_env_overrides(config, env)


__all__ = [
    "ApplySettings",
    "ClipApplyConfig",
    "DEFAULT_CONFIG_NAME",
    "ShellSettings",
    "apply_env_overrides",
    "load_config",
]
