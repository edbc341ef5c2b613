"""Core build orchestration logic.

This module builds the artifacts of every changed unit. Builds run in a
thread pool, each in its own isolated build environment invocation, with
no ordering guarantee and no shared mutable state. A failing build never
cancels its siblings: every unit ends with its own BuildResult and the
caller decides what proceeds to publishing.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Callable, Iterable, Protocol

import structlog

from shipops.core.errors import BuildError, BuildTimeoutError
from shipops.core.units import Unit, UnitStatus

logger = structlog.get_logger(__name__)

LATEST_TAG = "latest"


class BuildEnvironment(Protocol):
    """Interface for producing a content-addressed artifact from sources."""

    def build(
        self,
        *,
        build_file: str,
        context: str,
        tags: list[str],
        timeout: float | None,
    ) -> str:
        """Build an artifact, apply the tags and return its content digest."""
        ...


@dataclass(frozen=True)
class BuildResult:
    """
    Outcome of one unit's build.

    Attributes:
        unit: The unit that was built.
        status: BUILT or BUILD_FAILED.
        artifact_id: Content digest of the artifact on success.
        image_refs: Image references the artifact was tagged with.
        error: Short failure message.
        diagnostic: Tool output kept as the build log reference.
    """

    unit: Unit
    status: UnitStatus
    artifact_id: str | None = None
    image_refs: tuple[str, ...] = ()
    error: str | None = None
    diagnostic: str = ""

    @property
    def ok(self) -> bool:
        return self.status == UnitStatus.BUILT


def image_refs(repository_uri: str, revision: str) -> tuple[str, str]:
    """Return the revision-tagged and `latest` references of an image."""
    return f"{repository_uri}:{revision}", f"{repository_uri}:{LATEST_TAG}"


def build_unit(
    builder: BuildEnvironment,
    unit: Unit,
    revision: str,
    repository_uri: str,
    *,
    timeout: float | None = None,
) -> BuildResult:
    """
    Build a single unit and capture the outcome.

    Build errors (including timeouts) are converted into a failed
    BuildResult; they are never retried.
    """
    refs = image_refs(repository_uri, revision)
    logger.info("build_started", unit=unit.name, build_file=unit.build_file)
    try:
        digest = builder.build(
            build_file=unit.build_file,
            context=unit.build_context,
            tags=list(refs),
            timeout=timeout,
        )
    except BuildTimeoutError as exc:
        logger.error("build_timed_out", unit=unit.name, timeout=timeout)
        return BuildResult(
            unit=unit,
            status=UnitStatus.BUILD_FAILED,
            image_refs=refs,
            error=f"{unit.name}: {exc}",
            diagnostic=exc.diagnostic,
        )
    except BuildError as exc:
        logger.error("build_failed", unit=unit.name, error=str(exc))
        return BuildResult(
            unit=unit,
            status=UnitStatus.BUILD_FAILED,
            image_refs=refs,
            error=f"{unit.name}: {exc}",
            diagnostic=exc.diagnostic,
        )
    except Exception as exc:  # noqa: BLE001 - isolate unexpected failures per unit
        logger.exception("build_crashed", unit=unit.name)
        return BuildResult(
            unit=unit,
            status=UnitStatus.BUILD_FAILED,
            image_refs=refs,
            error=f"{unit.name}: {exc}",
        )

    logger.info("build_succeeded", unit=unit.name, artifact_id=digest)
    return BuildResult(
        unit=unit,
        status=UnitStatus.BUILT,
        artifact_id=digest,
        image_refs=refs,
    )


def build_units(
    builder: BuildEnvironment,
    units: Iterable[Unit],
    revision: str,
    repository_uri: Callable[[Unit], str],
    *,
    max_parallel: int,
    timeout: float | None = None,
) -> dict[str, BuildResult]:
    """
    Build multiple units in parallel.

    This function uses a thread pool to run builds concurrently, up to the
    specified maximum level of parallelism. Failures are isolated per unit.

    Args:
        builder: Build environment used to run each build.
        units: Units of the change set.
        revision: Revision identifier used as the image tag.
        repository_uri: Returns the registry repository URI of a unit.
        max_parallel: Maximum number of builds running concurrently.
        timeout: Wall-clock limit per build in seconds.

    Returns:
        A mapping of unit name to BuildResult. The completion order of the
        underlying builds is not guaranteed.
    """
    if max_parallel < 1:
        raise ValueError("max_parallel must be >= 1")
    units = list(units)
    if not units:
        return {}

    results: dict[str, BuildResult] = {}

    with ThreadPoolExecutor(max_workers=max_parallel) as pool:
        futures = {
            pool.submit(
                build_unit,
                builder,
                unit,
                revision,
                repository_uri(unit),
                timeout=timeout,
            ): unit
            for unit in units
        }

        for f in as_completed(futures):
            result = f.result()
            results[result.unit.name] = result

    return results
