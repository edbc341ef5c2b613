from __future__ import annotations

import subprocess
from pathlib import Path

from shipops.core.infra import InfraError
from shipops.core.triggers import InfraOperation


class TerraformAdapter:
    """Adapter around the `terraform` CLI, run non-interactively."""

    def __init__(self, repo_dir: Path | str, terraform: str = "terraform") -> None:
        self.repo_dir = Path(repo_dir)
        self.terraform = terraform

    def _run(self, directory: str, *args: str) -> str:
        cmd = [self.terraform, f"-chdir={self.repo_dir / directory}", *args]
        try:
            proc = subprocess.run(cmd, capture_output=True, text=True)
        except FileNotFoundError as exc:
            raise InfraError(f"{self.terraform} executable not found") from exc
        output = f"{proc.stdout}\n{proc.stderr}".strip()
        if proc.returncode != 0:
            raise InfraError(f"terraform {args[0]} exited with {proc.returncode}", output)
        return output

    def init(self, directory: str) -> str:
        return self._run(directory, "init", "-input=false", "-no-color")

    def run(self, directory: str, operation: InfraOperation, *, var_file: str | None) -> str:
        args = ["-input=false", "-no-color"]
        if var_file:
            args.append(f"-var-file={var_file}")
        if operation == InfraOperation.PLAN:
            return self._run(directory, "plan", *args)
        return self._run(directory, operation.value, "-auto-approve", *args)
