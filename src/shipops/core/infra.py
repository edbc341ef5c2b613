"""Manual infrastructure flow.

Manual triggers carrying an operation selector (plan, apply or destroy)
run the infrastructure tool against the configured directory. This flow
is disjoint from the build pipeline: it shares no state with it and never
touches manifests.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

import structlog

from shipops.core.config import InfraSettings
from shipops.core.triggers import InfraOperation

logger = structlog.get_logger(__name__)


class InfraAdapter(Protocol):
    """Interface for the infrastructure-as-code tool."""

    def init(self, directory: str) -> str:
        """Prepare the working directory and return the tool output."""
        ...

    def run(self, directory: str, operation: InfraOperation, *, var_file: str | None) -> str:
        """Run an operation and return the tool output."""
        ...


class InfraError(RuntimeError):
    """Raised when the infrastructure tool fails."""

    def __init__(self, message: str, output: str = ""):
        super().__init__(message)
        self.output = output


@dataclass(frozen=True)
class InfraResult:
    """Result of one manual infrastructure operation."""

    operation: InfraOperation
    directory: str
    ok: bool
    output: str = ""
    error: str | None = None


def run_infra(
    adapter: InfraAdapter,
    settings: InfraSettings,
    operation: InfraOperation,
) -> InfraResult:
    """
    Initialize the infrastructure directory and run one operation.

    Failures are reported in the result with the tool output.
    """
    directory = settings.directory
    logger.info("infra_started", operation=operation.value, directory=directory)
    outputs: list[str] = []
    try:
        outputs.append(adapter.init(directory))
        outputs.append(adapter.run(directory, operation, var_file=settings.var_file))
    except InfraError as exc:
        logger.error("infra_failed", operation=operation.value, error=str(exc))
        return InfraResult(
            operation=operation,
            directory=directory,
            ok=False,
            output="\n".join([*outputs, exc.output]).strip(),
            error=str(exc),
        )

    logger.info("infra_finished", operation=operation.value)
    return InfraResult(
        operation=operation,
        directory=directory,
        ok=True,
        output="\n".join(outputs).strip(),
    )
