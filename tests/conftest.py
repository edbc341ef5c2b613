from __future__ import annotations

import shutil
import subprocess
import sys
from pathlib import Path

import pytest

# Ensure tests always import the local src tree, not an older installed wheel.
ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
sys.path.insert(0, str(SRC))

from shipops.core.units import Unit  # noqa: E402

MANIFEST = """\
# Helm values for {name}
replicaCount: 2
image:
  repository: "public.ecr.aws/sample/{name}"  # upstream image
  tag: "v1.0.0"
  pullPolicy: IfNotPresent
service:
  port: 8080
"""


def make_unit(name: str) -> Unit:
    return Unit(
        name=name,
        source=f"src/{name}",
        build_file=f"src/{name}/Dockerfile",
        manifest=f"deploy/{name}/values.yaml",
        repository=f"shop/{name}",
    )


@pytest.fixture
def units() -> tuple[Unit, ...]:
    return tuple(make_unit(name) for name in ("cart", "orders", "ui"))


@pytest.fixture
def repo_dir(tmp_path: Path, units) -> Path:
    """A working tree holding one manifest per unit."""
    for unit in units:
        path = tmp_path / unit.manifest
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(MANIFEST.format(name=unit.name))
    return tmp_path


def git(cwd, *args):
    return subprocess.run(
        ["git", *args], cwd=cwd, check=True, capture_output=True, text=True
    ).stdout.strip()


def commit_file(repo, path, text, message):
    target = repo / path
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(text)
    git(repo, "add", "--", path)
    git(repo, "commit", "-q", "-m", message)
    return git(repo, "rev-parse", "HEAD")


def clone(remote, path):
    git(remote.parent, "clone", "-q", "-b", "main", str(remote), str(path))
    return path


@pytest.fixture
def remote(tmp_path, monkeypatch):
    """A bare remote whose `main` holds three units and their manifests."""
    if shutil.which("git") is None:
        pytest.skip("git is not installed")
    monkeypatch.setenv("HOME", str(tmp_path))
    monkeypatch.setenv("GIT_CONFIG_NOSYSTEM", "1")
    monkeypatch.setenv("GIT_AUTHOR_NAME", "Dev")
    monkeypatch.setenv("GIT_AUTHOR_EMAIL", "dev@example.com")
    monkeypatch.setenv("GIT_COMMITTER_NAME", "Dev")
    monkeypatch.setenv("GIT_COMMITTER_EMAIL", "dev@example.com")

    bare = tmp_path / "remote.git"
    git(tmp_path, "init", "-q", "--bare", str(bare))
    git(bare, "symbolic-ref", "HEAD", "refs/heads/main")

    seed = tmp_path / "seed"
    seed.mkdir()
    git(seed, "init", "-q")
    for name in ("cart", "orders", "ui"):
        unit = make_unit(name)
        (seed / unit.source).mkdir(parents=True)
        (seed / unit.build_file).write_text("FROM scratch\n")
        (seed / unit.manifest).parent.mkdir(parents=True)
        (seed / unit.manifest).write_text(MANIFEST.format(name=name))
    git(seed, "add", "-A")
    git(seed, "commit", "-q", "-m", "initial")
    git(seed, "push", "-q", str(bare), "HEAD:refs/heads/main")
    return bare
