from __future__ import annotations

import os
import re
import subprocess
import tempfile
from pathlib import Path

from shipops.core.errors import (
    BuildError,
    BuildTimeoutError,
    RegistryError,
    RegistryNotFoundError,
    RegistryPermissionError,
    TransientRegistryError,
)

_DIGEST_RE = re.compile(r"digest: (sha256:[0-9a-f]{64})")
_PERMISSION_MARKERS = ("denied", "unauthorized", "no basic auth credentials", "forbidden")
_NOT_FOUND_MARKERS = ("name unknown", "does not exist", "repository not found")
_DIAGNOSTIC_LINES = 40


def _tail(text: str, lines: int = _DIAGNOSTIC_LINES) -> str:
    """Return the last lines of tool output, which is where errors show up."""
    return "\n".join(text.strip().splitlines()[-lines:])


class DockerAdapter:
    """Adapter around the `docker` CLI: isolated builds, registry login and push."""

    _PUSH_TIMEOUT_ENV = "SHIPOPS_PUSH_TIMEOUT"
    _DEFAULT_PUSH_TIMEOUT_SECONDS = 900

    def __init__(
        self,
        repo_dir: Path | str,
        *,
        docker: str = "docker",
        platform: str | None = None,
    ) -> None:
        self.repo_dir = Path(repo_dir)
        self.docker = docker
        self.platform = platform

    def _push_timeout(self) -> float:
        raw = os.getenv(self._PUSH_TIMEOUT_ENV)
        if raw is None:
            return self._DEFAULT_PUSH_TIMEOUT_SECONDS
        try:
            return max(float(raw), 1.0)
        except ValueError:
            return self._DEFAULT_PUSH_TIMEOUT_SECONDS

    def build(
        self,
        *,
        build_file: str,
        context: str,
        tags: list[str],
        timeout: float | None,
    ) -> str:
        """Build an image from a Dockerfile and return its image id (sha256 digest)."""
        with tempfile.TemporaryDirectory(prefix="shipops-") as tmp:
            iidfile = Path(tmp) / "iid"
            cmd = [
                self.docker,
                "build",
                "--file",
                str(self.repo_dir / build_file),
                "--iidfile",
                str(iidfile),
            ]
            if self.platform:
                cmd += ["--platform", self.platform]
            for tag in tags:
                cmd += ["--tag", tag]
            cmd.append(str(self.repo_dir / context))

            try:
                proc = subprocess.run(cmd, capture_output=True, text=True, timeout=timeout)
            except subprocess.TimeoutExpired as exc:
                output = exc.stderr or ""
                if isinstance(output, bytes):
                    output = output.decode(errors="replace")
                raise BuildTimeoutError(
                    f"build exceeded {timeout:.0f}s", diagnostic=_tail(output)
                ) from exc
            except FileNotFoundError as exc:
                raise BuildError(f"{self.docker} executable not found") from exc

            if proc.returncode != 0:
                diagnostic = _tail(f"{proc.stdout}\n{proc.stderr}")
                raise BuildError(
                    f"docker build exited with {proc.returncode}", diagnostic=diagnostic
                )
            try:
                return iidfile.read_text().strip()
            except OSError as exc:
                raise BuildError("docker build produced no image id") from exc

    def login(self, registry: str, username: str, password: str) -> None:
        """Log in to a registry. The password is passed on stdin only."""
        try:
            proc = subprocess.run(
                [self.docker, "login", "--username", username, "--password-stdin", registry],
                input=password,
                capture_output=True,
                text=True,
                timeout=120,
            )
        except subprocess.TimeoutExpired as exc:
            raise TransientRegistryError(f"docker login to {registry} timed out") from exc
        except FileNotFoundError as exc:
            raise RegistryError(f"{self.docker} executable not found") from exc
        if proc.returncode != 0:
            raise RegistryPermissionError(
                f"docker login to {registry} failed: {_tail(proc.stderr, 1)}"
            )

    def push(self, image_ref: str) -> str:
        """Push an image reference and return the registry manifest digest."""
        try:
            proc = subprocess.run(
                [self.docker, "push", image_ref],
                capture_output=True,
                text=True,
                timeout=self._push_timeout(),
            )
        except subprocess.TimeoutExpired as exc:
            raise TransientRegistryError(f"push of {image_ref} timed out") from exc
        except FileNotFoundError as exc:
            raise RegistryError(f"{self.docker} executable not found") from exc

        output = f"{proc.stdout}\n{proc.stderr}"
        if proc.returncode != 0:
            lowered = output.lower()
            message = f"push of {image_ref} failed: {_tail(proc.stderr or proc.stdout, 1)}"
            if any(marker in lowered for marker in _NOT_FOUND_MARKERS):
                raise RegistryNotFoundError(message)
            if any(marker in lowered for marker in _PERMISSION_MARKERS):
                raise RegistryPermissionError(message)
            raise TransientRegistryError(message)

        match = _DIGEST_RE.search(output)
        if not match:
            raise RegistryError(f"push of {image_ref} reported no digest")
        return match.group(1)
