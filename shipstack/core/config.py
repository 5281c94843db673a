"""Typed configuration loading and access.

This module provides dataclasses for the workspace ``config.toml`` with
defaults for every field, so a workspace without a config file still works.

Example:

    [app]
    name = "shop"

    [deploy]
    region = "us-west-2"
    artifact_bucket = "shop-artifacts"
    poll_interval_seconds = 3
    upload_concurrency = 4

    [[assets.rules]]
    type = "AWS::Serverless::Function"
    property = "CodeUri"
    bucket_property = "Bucket"
    key_property = "Key"
    force_zip = true
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

from .result import Err, Ok, Result
from .structured import (
    StrDict,
    as_str_dict,
    get_bool,
    get_float,
    get_int,
    get_list,
    get_str,
    get_table,
)

__all__ = [
    "Config",
    "AppConfig",
    "DeployConfig",
    "AssetsConfig",
    "UploadRuleConfig",
    "ConfigError",
    "load_config",
    "load_config_or_default",
    "DEFAULT_POLL_INTERVAL_SECONDS",
    "DEFAULT_TIMEOUT_SECONDS",
    "DEFAULT_UPLOAD_CONCURRENCY",
    "DEFAULT_ASSET_KEY_PREFIX",
]

# -----------------------------------------------------------------------------
# Defaults
# -----------------------------------------------------------------------------

# Stack status polling (attached deploys)
DEFAULT_POLL_INTERVAL_SECONDS = 3.0
DEFAULT_TIMEOUT_SECONDS = 90 * 60.0

# Asset uploads issued in parallel per deployment
DEFAULT_UPLOAD_CONCURRENCY = 4

DEFAULT_ASSET_KEY_PREFIX = "manual/assets"


@dataclass(frozen=True, slots=True)
class ConfigError:
    """Error when config cannot be loaded or parsed."""

    message: str
    path: Path | None = None


@dataclass(frozen=True, slots=True)
class AppConfig:
    name: str = "app"


@dataclass(frozen=True, slots=True)
class DeployConfig:
    """Control plane and object store settings."""

    region: str | None = None
    artifact_bucket: str | None = None
    poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    upload_concurrency: int = DEFAULT_UPLOAD_CONCURRENCY


@dataclass(frozen=True, slots=True)
class UploadRuleConfig:
    """One extra resource property eligible for asset publishing.

    ``property`` is dot-separated (``Command.ScriptLocation``).
    """

    resource_type: str
    property: str
    bucket_property: str | None = None
    key_property: str | None = None
    force_zip: bool = False


@dataclass(frozen=True, slots=True)
class AssetsConfig:
    key_prefix: str = DEFAULT_ASSET_KEY_PREFIX
    rules: tuple[UploadRuleConfig, ...] = ()


@dataclass(frozen=True, slots=True)
class Config:
    """Main configuration container."""

    app: AppConfig = field(default_factory=AppConfig)
    deploy: DeployConfig = field(default_factory=DeployConfig)
    assets: AssetsConfig = field(default_factory=AssetsConfig)

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> Config:
        """Create Config from a mapping (parsed TOML).

        Raises:
            ValueError: If an asset rule is missing its type or property.
        """
        app: StrDict = get_table(data, "app") or {}
        deploy: StrDict = get_table(data, "deploy") or {}
        assets: StrDict = get_table(data, "assets") or {}

        rules: list[UploadRuleConfig] = []
        for i, raw in enumerate(get_list(assets, "rules") or []):
            rule = as_str_dict(raw)
            if rule is None:
                raise ValueError(f"assets.rules[{i}] must be a table")
            resource_type = get_str(rule, "type")
            prop = get_str(rule, "property")
            if resource_type is None or prop is None:
                raise ValueError(f"assets.rules[{i}] needs both 'type' and 'property'")
            rules.append(
                UploadRuleConfig(
                    resource_type=resource_type,
                    property=prop,
                    bucket_property=get_str(rule, "bucket_property"),
                    key_property=get_str(rule, "key_property"),
                    force_zip=get_bool(rule, "force_zip") or False,
                )
            )

        concurrency = get_int(deploy, "upload_concurrency") or DEFAULT_UPLOAD_CONCURRENCY
        if concurrency < 1:
            raise ValueError("deploy.upload_concurrency must be at least 1")

        return cls(
            app=AppConfig(name=get_str(app, "name") or "app"),
            deploy=DeployConfig(
                region=get_str(deploy, "region"),
                artifact_bucket=get_str(deploy, "artifact_bucket"),
                poll_interval_seconds=get_float(deploy, "poll_interval_seconds")
                or DEFAULT_POLL_INTERVAL_SECONDS,
                timeout_seconds=get_float(deploy, "timeout_seconds") or DEFAULT_TIMEOUT_SECONDS,
                upload_concurrency=concurrency,
            ),
            assets=AssetsConfig(
                key_prefix=get_str(assets, "key_prefix") or DEFAULT_ASSET_KEY_PREFIX,
                rules=tuple(rules),
            ),
        )


def _parse_toml(path: Path) -> Result[StrDict, ConfigError]:
    """Parse a TOML file, handling import and parse errors."""
    import tomllib

    try:
        content = path.read_bytes()
        data_obj: object = tomllib.loads(content.decode("utf-8"))
        data = as_str_dict(data_obj)
        if data is None:
            return Err(ConfigError("Config root must be a TOML table", path=path))
        return Ok(data)
    except FileNotFoundError:
        return Err(ConfigError(f"Config file not found: {path}", path=path))
    except PermissionError:
        return Err(ConfigError(f"Permission denied reading: {path}", path=path))
    except tomllib.TOMLDecodeError as e:
        return Err(ConfigError(f"Invalid TOML syntax: {e}", path=path))
    except UnicodeDecodeError as e:
        return Err(ConfigError(f"Error reading config: {e}", path=path))


def load_config(path: Path) -> Result[Config, ConfigError]:
    """Load and parse configuration from a TOML file.

    Args:
        path: Path to config.toml file

    Returns:
        Ok(Config) on success, Err(ConfigError) on failure
    """
    result = _parse_toml(path)
    if isinstance(result, Err):
        return result

    try:
        config = Config.from_dict(result.value)
        return Ok(config)
    except (KeyError, TypeError, ValueError) as e:
        return Err(ConfigError(f"Invalid config structure: {e}", path=path))


def load_config_or_default(path: Path) -> Result[Config, ConfigError]:
    """Load config from file, or return the default config if it doesn't exist.

    A file that exists but is invalid is still an error.
    """
    if not path.exists():
        return Ok(Config())
    return load_config(path)
