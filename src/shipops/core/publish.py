"""Core registry publishing logic.

This module pushes successfully built artifacts to the remote registry.
For every unit it makes sure the registry namespace exists, uploads the
artifact under the revision tag and the floating `latest` alias, and
confirms the revision tag resolves to the pushed digest before the unit
counts as published.

Transient registry errors are retried with exponential backoff; permission
and not-found errors are fatal for the affected unit only.
"""

from __future__ import annotations

import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Callable, Iterable, Protocol

import structlog

from shipops.core.builds import LATEST_TAG, BuildResult
from shipops.core.config import RetryPolicy
from shipops.core.errors import (
    RegistryError,
    RegistryNotFoundError,
    RegistryPermissionError,
    TransientRegistryError,
)
from shipops.core.retry import retrying
from shipops.core.units import Unit, UnitStatus

logger = structlog.get_logger(__name__)


class ArtifactRegistry(Protocol):
    """Interface for the remote artifact registry."""

    def repository_uri(self, namespace: str) -> str:
        """Return the fully qualified repository URI of a namespace."""
        ...

    def namespace_exists(self, namespace: str) -> bool:
        """Return True if the registry namespace exists."""
        ...

    def create_namespace(self, namespace: str) -> None:
        """Create a registry namespace. Creating an existing one is not an error."""
        ...

    def upload(self, image_ref: str) -> str:
        """Upload a locally built image reference and return its registry digest."""
        ...

    def resolve_tag(self, namespace: str, tag: str) -> str | None:
        """Return the digest a tag currently points at, or None."""
        ...


@dataclass(frozen=True)
class PublishResult:
    """
    Outcome of publishing one unit's artifact.

    Attributes:
        unit: The published unit.
        status: PUBLISHED or PUBLISH_FAILED.
        repository_uri: Registry repository the artifact was pushed to.
        tag: Revision tag the manifest should reference.
        digest: Registry digest confirmed for the revision tag.
        namespace_created: True if the namespace was created by this run.
        attempts: Upload attempts made for the revision tag.
        error: Failure message, if any.
    """

    unit: Unit
    status: UnitStatus
    repository_uri: str | None = None
    tag: str | None = None
    digest: str | None = None
    namespace_created: bool = False
    attempts: int = 0
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status == UnitStatus.PUBLISHED


def ensure_namespace(registry: ArtifactRegistry, namespace: str) -> bool:
    """
    Create the registry namespace if it does not exist yet.

    Returns:
        True if the namespace was created, False if it already existed.
    """
    if registry.namespace_exists(namespace):
        return False
    logger.info("namespace_creating", namespace=namespace)
    registry.create_namespace(namespace)
    return True


def publish_artifact(
    registry: ArtifactRegistry,
    build: BuildResult,
    revision: str,
    *,
    policy: RetryPolicy,
    sleep: Callable[[float], None] = time.sleep,
) -> PublishResult:
    """
    Publish one successfully built artifact.

    Args:
        registry: Registry adapter.
        build: A successful BuildResult.
        revision: Revision identifier used as the primary tag.
        policy: Retry policy for transient registry errors.
        sleep: Sleep function used between retries.

    Returns:
        A PublishResult; failures are reported, never raised.
    """
    if not build.ok:
        raise ValueError(f"Cannot publish failed build of unit '{build.unit.name}'")

    unit = build.unit
    namespace = unit.repository
    uri = registry.repository_uri(namespace)
    attempts = 0
    created = False

    def _retry():
        return retrying(
            policy,
            TransientRegistryError,
            operation="publish",
            sleep=sleep,
            unit=unit.name,
        )

    def _push_revision() -> str:
        nonlocal attempts
        attempts += 1
        digest = registry.upload(f"{uri}:{revision}")
        confirmed = registry.resolve_tag(namespace, revision)
        if confirmed != digest:
            raise TransientRegistryError(
                f"Tag {revision} resolves to {confirmed}, expected {digest}"
            )
        return digest

    try:
        created = _retry()(ensure_namespace, registry, namespace)
        digest = _retry()(_push_revision)
        _retry()(registry.upload, f"{uri}:{LATEST_TAG}")
    except (RegistryPermissionError, RegistryNotFoundError) as exc:
        logger.error("publish_rejected", unit=unit.name, error=str(exc))
        return _failed(unit, uri, revision, created, attempts, f"{unit.name}: {exc}")
    except TransientRegistryError as exc:
        logger.error("publish_exhausted", unit=unit.name, attempts=policy.attempts)
        return _failed(
            unit,
            uri,
            revision,
            created,
            attempts,
            f"{unit.name}: gave up after {policy.attempts} attempts: {exc}",
        )
    except RegistryError as exc:
        return _failed(unit, uri, revision, created, attempts, f"{unit.name}: {exc}")
    except Exception as exc:  # noqa: BLE001 - isolate unexpected failures per unit
        logger.exception("publish_crashed", unit=unit.name)
        return _failed(unit, uri, revision, created, attempts, f"{unit.name}: {exc}")

    logger.info("publish_succeeded", unit=unit.name, repository=uri, digest=digest)
    return PublishResult(
        unit=unit,
        status=UnitStatus.PUBLISHED,
        repository_uri=uri,
        tag=revision,
        digest=digest,
        namespace_created=created,
        attempts=attempts,
    )


def _failed(
    unit: Unit,
    uri: str,
    revision: str,
    created: bool,
    attempts: int,
    error: str,
) -> PublishResult:
    return PublishResult(
        unit=unit,
        status=UnitStatus.PUBLISH_FAILED,
        repository_uri=uri,
        tag=revision,
        namespace_created=created,
        attempts=attempts,
        error=error,
    )


def publish_artifacts(
    registry: ArtifactRegistry,
    builds: Iterable[BuildResult],
    revision: str,
    *,
    policy: RetryPolicy,
    max_parallel: int,
    sleep: Callable[[float], None] = time.sleep,
) -> dict[str, PublishResult]:
    """
    Publish every successful build in parallel.

    Failed builds are ignored; they never reach the registry.

    Returns:
        A mapping of unit name to PublishResult for the published candidates.
    """
    if max_parallel < 1:
        raise ValueError("max_parallel must be >= 1")
    candidates = [b for b in builds if b.ok]
    if not candidates:
        return {}

    results: dict[str, PublishResult] = {}

    with ThreadPoolExecutor(max_workers=max_parallel) as pool:
        futures = [
            pool.submit(
                publish_artifact,
                registry,
                build,
                revision,
                policy=policy,
                sleep=sleep,
            )
            for build in candidates
        ]

        for f in as_completed(futures):
            result = f.result()
            results[result.unit.name] = result

    return results
