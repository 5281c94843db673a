"""Typed workload configuration consumed by the template composer.

The manifest language is owned elsewhere; ``load_workload_config`` only reads
the handful of keys the composer renders from, applying the per-environment
overrides block on top of the top-level values:

    name: api
    image:
      location: 123456789012.dkr.ecr.us-west-2.amazonaws.com/api:latest
      port: 8080
    cpu: 256
    memory: 512
    count: 1                      # or {min: 1, max: 4, cpu_percentage: 70}
    healthcheck: /healthz
    variables:
      LOG_LEVEL: info
    secrets:
      DB_PASSWORD: /shop/test/db-password
    environments:
      prod:
        count: {min: 2, max: 10}
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

from .result import Err, Ok, Result
from .structured import StrDict, as_str_dict, get_int, get_str, get_table

__all__ = [
    "WorkloadConfig",
    "ScalingRange",
    "ManifestError",
    "load_workload_config",
]

DEFAULT_CPU = 256
DEFAULT_MEMORY = 512
DEFAULT_CPU_PERCENTAGE = 70


@dataclass(frozen=True, slots=True)
class ManifestError:
    message: str
    path: Path | None = None


@dataclass(frozen=True, slots=True)
class ScalingRange:
    min: int
    max: int
    cpu_percentage: int = DEFAULT_CPU_PERCENTAGE


@dataclass(frozen=True, slots=True)
class WorkloadConfig:
    """Everything the composer needs to render the base stack.

    ``app``/``env``/``name`` are also bound to the addons nested stack.
    """

    app: str
    env: str
    name: str
    image: str
    cpu: int = DEFAULT_CPU
    memory: int = DEFAULT_MEMORY
    count: int = 1
    count_range: ScalingRange | None = None
    port: int | None = None
    health_check_path: str | None = None
    variables: Mapping[str, str] = field(default_factory=dict)
    secrets: Mapping[str, str] = field(default_factory=dict)

    @property
    def stack_name(self) -> str:
        return f"{self.app}-{self.env}-{self.name}"

    @classmethod
    def from_dict(cls, data: Mapping[str, object], *, app: str, env: str) -> WorkloadConfig:
        """Build from a parsed manifest.

        Raises:
            ValueError: If a required key is missing or has the wrong shape.
        """
        merged = _apply_environment(dict(data), env)

        name = get_str(merged, "name")
        if name is None:
            raise ValueError("manifest is missing 'name'")

        image_table: StrDict = get_table(merged, "image") or {}
        image = get_str(image_table, "location")
        if image is None:
            raise ValueError("manifest is missing 'image.location'")

        count = 1
        count_range: ScalingRange | None = None
        raw_count = merged.get("count")
        count_table = as_str_dict(raw_count)
        if count_table is not None:
            lo = get_int(count_table, "min")
            hi = get_int(count_table, "max")
            if lo is None or hi is None or lo > hi:
                raise ValueError("'count' range needs integer 'min' <= 'max'")
            count = lo
            count_range = ScalingRange(
                min=lo,
                max=hi,
                cpu_percentage=get_int(count_table, "cpu_percentage") or DEFAULT_CPU_PERCENTAGE,
            )
        elif raw_count is not None:
            parsed = get_int(merged, "count")
            if parsed is None or parsed < 0:
                raise ValueError("'count' must be a non-negative integer or a range table")
            count = parsed

        return cls(
            app=app,
            env=env,
            name=name,
            image=image,
            cpu=get_int(merged, "cpu") or DEFAULT_CPU,
            memory=get_int(merged, "memory") or DEFAULT_MEMORY,
            count=count,
            count_range=count_range,
            port=get_int(image_table, "port"),
            health_check_path=get_str(merged, "healthcheck"),
            variables=_str_map(merged, "variables"),
            secrets=_str_map(merged, "secrets"),
        )


def _apply_environment(data: StrDict, env: str) -> StrDict:
    environments = get_table(data, "environments") or {}
    data.pop("environments", None)
    override = get_table(environments, env)
    if not override:
        return data

    for key, value in override.items():
        current = as_str_dict(data.get(key))
        incoming = as_str_dict(value)
        if current is not None and incoming is not None and key != "count":
            data[key] = {**current, **incoming}
        else:
            data[key] = value
    return data


def _str_map(table: Mapping[str, object], key: str) -> dict[str, str]:
    raw = get_table(table, key) or {}
    out: dict[str, str] = {}
    for k, v in raw.items():
        if isinstance(v, bool) or not isinstance(v, (str, int, float)):
            raise ValueError(f"'{key}.{k}' must be a scalar")
        out[k] = str(v)
    return out


def load_workload_config(path: Path, *, app: str, env: str) -> Result[WorkloadConfig, ManifestError]:
    """Load a workload manifest for one environment."""
    import yaml

    try:
        raw: object = yaml.safe_load(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return Err(ManifestError(f"Manifest not found: {path}", path=path))
    except OSError as e:
        return Err(ManifestError(f"Cannot read manifest: {e}", path=path))
    except yaml.YAMLError as e:
        return Err(ManifestError(f"Invalid YAML in manifest: {e}", path=path))

    data = as_str_dict(raw)
    if data is None:
        return Err(ManifestError("Manifest root must be a mapping", path=path))

    try:
        return Ok(WorkloadConfig.from_dict(data, app=app, env=env))
    except ValueError as e:
        return Err(ManifestError(f"Invalid manifest: {e}", path=path))
