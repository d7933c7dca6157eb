"""
Configuration management for hypotag.

The configuration is stored as a TOML file in the config directory
(~/.hypotag by default, or $HYPOTAG_CONFIG). It holds Hypothesis
credentials, the preview template, and where the tag index lives.
"""

import os
import tomllib
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

import tomli_w

from .errors import ConfigError
from .template import DEFAULT_TEMPLATE, validate_template


CONFIG_FILENAME = "hypotag.toml"
CONFIG_VERSION = 1


def get_config_dir() -> Path:
    """Directory holding hypotag.toml."""
    env = os.environ.get("HYPOTAG_CONFIG")
    if env:
        return Path(env).expanduser()
    return Path.home() / ".hypotag"


@dataclass
class HypotagConfig:
    """Complete hypotag configuration."""
    path: Path
    version: int = CONFIG_VERSION
    hypothesis_username: Optional[str] = None
    hypothesis_key: Optional[str] = None
    hypothesis_group: Optional[str] = None
    annotation_template: Optional[str] = None
    db_dir: Optional[Path] = None
    last_sync: Optional[str] = None

    @property
    def config_path(self) -> Path:
        """Path to the TOML config file."""
        return self.path / CONFIG_FILENAME

    @property
    def store_path(self) -> Path:
        """Directory holding the tag index and logs."""
        env = os.environ.get("HYPOTAG_STORE_PATH")
        if env:
            return Path(env).expanduser()
        if self.db_dir is not None:
            return self.db_dir
        return self.path

    def exists(self) -> bool:
        """Check if config file exists."""
        return self.config_path.exists()

    def has_template(self) -> bool:
        """Check if an annotation template is configured."""
        return bool(self.annotation_template)

    def set_annotation_template(self, template: Optional[str] = None) -> None:
        """Configure the annotation template (the default if none given) and save."""
        template = template if template is not None else DEFAULT_TEMPLATE
        validate_template(template)
        self.annotation_template = template
        save_config(self)

    def credentials(self) -> tuple[Optional[str], Optional[str]]:
        """Hypothesis username and API key, environment first."""
        return (
            os.environ.get("HYPOTHESIS_NAME") or self.hypothesis_username,
            os.environ.get("HYPOTHESIS_KEY") or self.hypothesis_key,
        )


def load_config(config_dir: Path) -> HypotagConfig:
    """
    Load configuration from a config directory.

    Raises:
        ConfigError: If config doesn't exist or is invalid
    """
    config_path = config_dir / CONFIG_FILENAME

    if not config_path.exists():
        raise ConfigError(f"Config not found: {config_path}")

    try:
        with open(config_path, "rb") as f:
            data = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Invalid TOML in {config_path}: {e}") from e
    except OSError as e:
        raise ConfigError(f"Cannot read {config_path}: {e}") from e

    section = data.get("hypotag", {})
    version = section.get("version", 1)
    if not isinstance(version, int) or version > CONFIG_VERSION:
        raise ConfigError(f"Config version {version} is newer than supported ({CONFIG_VERSION})")

    hypothesis = data.get("hypothesis", {})
    templates = data.get("templates", {})
    db_dir = section.get("db_dir")

    return HypotagConfig(
        path=config_dir,
        version=version,
        hypothesis_username=hypothesis.get("username"),
        hypothesis_key=hypothesis.get("key"),
        hypothesis_group=hypothesis.get("group"),
        annotation_template=templates.get("annotation"),
        db_dir=Path(db_dir).expanduser() if db_dir else None,
        last_sync=section.get("last_sync"),
    )


def save_config(config: HypotagConfig) -> None:
    """
    Save configuration to the config directory.

    Creates the directory if it doesn't exist. Unset values are omitted.
    """
    def without_none(d: dict[str, Any]) -> dict[str, Any]:
        return {k: v for k, v in d.items() if v is not None}

    data = {
        "hypotag": without_none({
            "version": config.version,
            "db_dir": str(config.db_dir) if config.db_dir else None,
            "last_sync": config.last_sync,
        }),
        "hypothesis": without_none({
            "username": config.hypothesis_username,
            "key": config.hypothesis_key,
            "group": config.hypothesis_group,
        }),
        "templates": without_none({
            "annotation": config.annotation_template,
        }),
    }

    try:
        config.path.mkdir(parents=True, exist_ok=True)
        # Holds the API key
        fd = os.open(config.config_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "wb") as f:
            tomli_w.dump(data, f)
    except OSError as e:
        raise ConfigError(f"Cannot write {config.config_path}: {e}") from e


def load_or_create_config(config_dir: Optional[Path] = None) -> HypotagConfig:
    """
    Load existing config or create a new one with defaults.

    This is the main entry point for config management.
    """
    config_dir = config_dir if config_dir is not None else get_config_dir()
    if (config_dir / CONFIG_FILENAME).exists():
        return load_config(config_dir)
    config = HypotagConfig(path=config_dir)
    save_config(config)
    return config
