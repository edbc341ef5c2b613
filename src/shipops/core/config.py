"""Static pipeline configuration.

The configuration file declares the units of the monorepo and the settings
of every pipeline stage. Selected settings can be overridden through
`SHIPOPS_*` environment variables so CI jobs can tune parallelism and
timeouts without editing the file.
"""

from __future__ import annotations

import os
import posixpath
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

import yaml

from shipops.core.errors import ConfigError
from shipops.core.units import Unit

CONFIG_ENV = "SHIPOPS_CONFIG"
DEFAULT_CONFIG_FILE = "shipops.yaml"

_PARALLEL_ENV = "SHIPOPS_BUILD_PARALLEL"
_TIMEOUT_ENV = "SHIPOPS_BUILD_TIMEOUT"
_ATTEMPTS_ENV = "SHIPOPS_RETRY_ATTEMPTS"
_BACKOFF_ENV = "SHIPOPS_RETRY_BACKOFF"
_REGION_ENVS = ("SHIPOPS_REGISTRY_REGION", "AWS_REGION", "AWS_DEFAULT_REGION")


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retry with exponential backoff (5s, 10s, ... by default)."""

    attempts: int = 3
    initial_backoff: float = 5.0
    max_backoff: float = 60.0


@dataclass(frozen=True)
class BuildSettings:
    parallel: int = 4
    timeout_seconds: float | None = 1800.0
    platform: str | None = None


@dataclass(frozen=True)
class RegistrySettings:
    region: str | None = None
    profile: str | None = None
    namespace_prefix: str = ""
    scan_on_push: bool = True


@dataclass(frozen=True)
class GitOpsSettings:
    remote: str = "origin"
    author_name: str = "shipops"
    author_email: str = "shipops@users.noreply.github.com"
    skip_marker: str = "[skip ci]"
    message_prefix: str = "ci(manifests)"


@dataclass(frozen=True)
class InfraSettings:
    directory: str = "terraform"
    var_file: str | None = None


@dataclass(frozen=True)
class PipelineConfig:
    """Fully parsed pipeline configuration."""

    units: tuple[Unit, ...]
    build: BuildSettings = field(default_factory=BuildSettings)
    registry: RegistrySettings = field(default_factory=RegistrySettings)
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    gitops: GitOpsSettings = field(default_factory=GitOpsSettings)
    infra: InfraSettings = field(default_factory=InfraSettings)


def resolve_config_path(path: str | Path | None, repo_dir: Path) -> Path:
    """Return the configuration path, honoring SHIPOPS_CONFIG when unset."""
    raw = path or os.getenv(CONFIG_ENV) or DEFAULT_CONFIG_FILE
    candidate = Path(raw)
    return candidate if candidate.is_absolute() else repo_dir / candidate


def load_config(path: str | Path, *, env: Mapping[str, str] | None = None) -> PipelineConfig:
    """
    Load and validate a pipeline configuration file.

    Args:
        path: Path of the YAML configuration file.
        env: Environment used for overrides (defaults to os.environ).

    Returns:
        A PipelineConfig instance.

    Raises:
        ConfigError: If the file is missing, not valid YAML or fails validation.
    """
    path = Path(path)
    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    except OSError as exc:
        raise ConfigError(f"Cannot read config file {path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigError(f"Config file {path} is not valid YAML: {exc}") from exc
    if not isinstance(raw, dict):
        raise ConfigError(f"Config file {path} must contain a mapping.")
    return parse_config(raw, env=os.environ if env is None else env)


def parse_config(raw: Mapping[str, Any], *, env: Mapping[str, str]) -> PipelineConfig:
    """Build a PipelineConfig from an already-parsed mapping."""
    try:
        registry = _parse_registry(_section(raw, "registry"), env)
        units = _parse_units(raw.get("units"), registry.namespace_prefix)
        return PipelineConfig(
            units=units,
            build=_parse_build(_section(raw, "build"), env),
            registry=registry,
            retry=_parse_retry(_section(raw, "retry"), env),
            gitops=_parse_gitops(_section(raw, "gitops")),
            infra=_parse_infra(_section(raw, "infra")),
        )
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid configuration value: {exc}") from exc


def _section(raw: Mapping[str, Any], key: str) -> Mapping[str, Any]:
    value = raw.get(key) or {}
    if not isinstance(value, dict):
        raise ConfigError(f"`{key}` must be a mapping.")
    return value


def _env_int(env: Mapping[str, str], name: str, default: int) -> int:
    """Return an integer override, falling back to the default when malformed."""
    raw = env.get(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(env: Mapping[str, str], name: str, default: float | None) -> float | None:
    raw = env.get(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _normalize_path(value: Any, *, key: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ConfigError(f"`{key}` must be a non-empty path.")
    normalized = posixpath.normpath(value.strip())
    if normalized.startswith("../") or posixpath.isabs(normalized):
        raise ConfigError(f"`{key}` must be relative to the repository root: {value}")
    return normalized


def _parse_units(raw: Any, namespace_prefix: str) -> tuple[Unit, ...]:
    if not isinstance(raw, list) or not raw:
        raise ConfigError("`units` must be a non-empty list.")

    units: list[Unit] = []
    seen_names: set[str] = set()
    seen_manifests: dict[str, str] = {}

    for index, item in enumerate(raw):
        if not isinstance(item, dict):
            raise ConfigError(f"`units[{index}]` must be a mapping.")
        name = item.get("name")
        if not isinstance(name, str) or not name.strip():
            raise ConfigError(f"`units[{index}].name` is required.")
        name = name.strip()
        if name in seen_names:
            raise ConfigError(f"Duplicate unit name: {name}")
        seen_names.add(name)

        prefix = f"units[{name}]"
        source = _normalize_path(item.get("source"), key=f"{prefix}.source")
        build_file = _normalize_path(
            item.get("build_file", posixpath.join(source, "Dockerfile")),
            key=f"{prefix}.build_file",
        )
        manifest = _normalize_path(item.get("manifest"), key=f"{prefix}.manifest")
        if manifest in seen_manifests:
            raise ConfigError(
                f"Units '{seen_manifests[manifest]}' and '{name}' share manifest {manifest}"
            )
        seen_manifests[manifest] = name

        context = item.get("context")
        units.append(
            Unit(
                name=name,
                source=source,
                build_file=build_file,
                manifest=manifest,
                repository=str(item.get("repository") or f"{namespace_prefix}{name}"),
                repository_field=str(item.get("repository_field", "image.repository")),
                tag_field=str(item.get("tag_field", "image.tag")),
                context=_normalize_path(context, key=f"{prefix}.context")
                if context
                else None,
            )
        )

    return tuple(units)


def _parse_build(raw: Mapping[str, Any], env: Mapping[str, str]) -> BuildSettings:
    parallel = _env_int(env, _PARALLEL_ENV, int(raw.get("parallel", 4)))
    if parallel < 1:
        raise ConfigError("`build.parallel` must be >= 1")
    timeout = raw.get("timeout_seconds", 1800.0)
    timeout = _env_float(env, _TIMEOUT_ENV, float(timeout) if timeout else None)
    if timeout is not None and timeout <= 0:
        timeout = None
    return BuildSettings(parallel=parallel, timeout_seconds=timeout, platform=raw.get("platform"))


def _parse_registry(raw: Mapping[str, Any], env: Mapping[str, str]) -> RegistrySettings:
    region = next((env[name] for name in _REGION_ENVS if env.get(name)), None)
    return RegistrySettings(
        region=region or raw.get("region"),
        profile=raw.get("profile"),
        namespace_prefix=str(raw.get("namespace_prefix", "")),
        scan_on_push=bool(raw.get("scan_on_push", True)),
    )


def _parse_retry(raw: Mapping[str, Any], env: Mapping[str, str]) -> RetryPolicy:
    attempts = _env_int(env, _ATTEMPTS_ENV, int(raw.get("attempts", 3)))
    if attempts < 1:
        raise ConfigError("`retry.attempts` must be >= 1")
    backoff = _env_float(env, _BACKOFF_ENV, float(raw.get("initial_backoff_seconds", 5.0)))
    if backoff is None or backoff < 0:
        raise ConfigError("`retry.initial_backoff_seconds` must be >= 0")
    return RetryPolicy(
        attempts=attempts,
        initial_backoff=backoff,
        max_backoff=float(raw.get("max_backoff_seconds", 60.0)),
    )


def _parse_gitops(raw: Mapping[str, Any]) -> GitOpsSettings:
    defaults = GitOpsSettings()
    marker = str(raw.get("skip_marker", defaults.skip_marker))
    if not marker.strip():
        raise ConfigError("`gitops.skip_marker` must not be empty.")
    return GitOpsSettings(
        remote=str(raw.get("remote", defaults.remote)),
        author_name=str(raw.get("author_name", defaults.author_name)),
        author_email=str(raw.get("author_email", defaults.author_email)),
        skip_marker=marker,
        message_prefix=str(raw.get("message_prefix", defaults.message_prefix)),
    )


def _parse_infra(raw: Mapping[str, Any]) -> InfraSettings:
    return InfraSettings(
        directory=str(raw.get("directory", "terraform")),
        var_file=raw.get("var_file"),
    )
