"""Application context management for the CLI."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path

from shipops.cli.common.exits import EXIT_USAGE, die
from shipops.core.adapters.docker import DockerAdapter
from shipops.core.adapters.ecr import EcrRegistryAdapter
from shipops.core.adapters.git import GitAdapter
from shipops.core.adapters.terraform import TerraformAdapter
from shipops.core.auth import AuthError, get_ecr_client
from shipops.core.config import PipelineConfig, load_config, resolve_config_path
from shipops.core.errors import ConfigError, DetectionError
from shipops.core.triggers import EventKind, Trigger


@dataclass
class PipelineAppContext:
    """Application context holding configuration and version-control adapter."""

    repo_dir: Path
    config: PipelineConfig
    vcs: GitAdapter


@dataclass
class InfraAppContext:
    """Application context for the manual infrastructure flow."""

    repo_dir: Path
    config: PipelineConfig
    adapter: TerraformAdapter


def _load(config_path: str | None, repo: str) -> tuple[Path, PipelineConfig]:
    repo_dir = Path(repo).resolve()
    try:
        config = load_config(resolve_config_path(config_path, repo_dir))
    except ConfigError as exc:
        die(str(exc), code=EXIT_USAGE)
    return repo_dir, config


def build_pipeline_context(config_path: str | None, repo: str) -> PipelineAppContext:
    """Build the context shared by the pipeline commands.

    Args:
        config_path: Optional path of the pipeline configuration file.
        repo: Repository checkout directory.

    Returns:
        PipelineAppContext: Context with parsed config and git adapter.
    """
    repo_dir, config = _load(config_path, repo)
    return PipelineAppContext(repo_dir=repo_dir, config=config, vcs=GitAdapter(repo_dir))


def build_infra_context(config_path: str | None, repo: str) -> InfraAppContext:
    """Build the context for infrastructure commands."""
    repo_dir, config = _load(config_path, repo)
    return InfraAppContext(repo_dir=repo_dir, config=config, adapter=TerraformAdapter(repo_dir))


def build_registry(appctx: PipelineAppContext) -> tuple[DockerAdapter, EcrRegistryAdapter]:
    """Create the build and registry adapters. Docker logs in on first upload."""
    settings = appctx.config.registry
    docker = DockerAdapter(appctx.repo_dir, platform=appctx.config.build.platform)
    try:
        client = get_ecr_client(settings.region, settings.profile)
        registry = EcrRegistryAdapter(client, docker, scan_on_push=settings.scan_on_push)
    except AuthError as exc:
        die(str(exc))
    return docker, registry


def _event_payload() -> dict:
    """Return the GitHub event payload, if the run has one."""
    event_path = os.getenv("GITHUB_EVENT_PATH")
    if not event_path or not Path(event_path).exists():
        return {}
    try:
        with open(event_path, "r", encoding="utf-8") as handle:
            return json.load(handle)
    except (OSError, json.JSONDecodeError):
        return {}


def _default_base(event: EventKind) -> str | None:
    """Derive the base revision from the CI environment."""
    if event == EventKind.PULL_REQUEST:
        base_ref = os.getenv("GITHUB_BASE_REF", "")
        if base_ref:
            return f"origin/{base_ref}"
        pull_request = _event_payload().get("pull_request") or {}
        return (pull_request.get("base") or {}).get("sha")
    return _event_payload().get("before")


def _default_head(event: EventKind) -> str | None:
    """Derive the head revision from the CI environment.

    Pull request runs build the request's head commit; GITHUB_SHA is the
    temporary merge commit there, which never lands on the head branch.
    """
    if event == EventKind.PULL_REQUEST:
        pull_request = _event_payload().get("pull_request") or {}
        sha = (pull_request.get("head") or {}).get("sha")
        if sha:
            return sha
    return os.getenv("GITHUB_SHA") or None


def build_trigger(
    appctx: PipelineAppContext,
    *,
    event: str,
    head: str | None,
    branch: str,
    base: str | None,
) -> Trigger:
    """Translate CLI/CI inputs into a Trigger with a resolved head revision."""
    try:
        kind = EventKind.parse(event)
    except ValueError as exc:
        die(str(exc), code=EXIT_USAGE)
    head = head or _default_head(kind)
    if not head:
        die("No head revision: pass --head or set SHIPOPS_HEAD.", code=EXIT_USAGE)
    try:
        resolved_head = appctx.vcs.resolve(head)
    except DetectionError as exc:
        die(str(exc))
    return Trigger(
        event=kind,
        head=resolved_head,
        branch=branch,
        base=base or _default_base(kind),
    )
