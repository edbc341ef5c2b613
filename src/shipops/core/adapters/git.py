from __future__ import annotations

import subprocess
from pathlib import Path

from shipops.core.errors import (
    CommitAuthError,
    CommitError,
    DetectionError,
    PushConflictError,
)
from shipops.core.triggers import CommitInfo

_CONFLICT_MARKERS = ("non-fast-forward", "fetch first", "[rejected]")
_AUTH_MARKERS = (
    "authentication failed",
    "permission denied",
    "could not read username",
    "returned error: 401",
    "returned error: 403",
    "protected branch",
)
_FIELD_SEP = "\x1f"


class GitAdapter:
    """Adapter around the `git` command line for one repository checkout."""

    def __init__(self, repo_dir: Path | str, git: str = "git") -> None:
        self.repo_dir = Path(repo_dir)
        self.git = git

    def _run(self, *args: str, check: bool = True) -> subprocess.CompletedProcess:
        """Run a git command in the checkout and capture its output."""
        proc = subprocess.run(
            [self.git, *args],
            cwd=self.repo_dir,
            capture_output=True,
            text=True,
        )
        if check and proc.returncode != 0:
            raise subprocess.CalledProcessError(
                proc.returncode, proc.args, output=proc.stdout, stderr=proc.stderr
            )
        return proc

    def _out(self, *args: str) -> str:
        return self._run(*args).stdout.strip()

    def _gitops(self, *args: str) -> str:
        """Run a command of the commit step, raising CommitError on failure."""
        try:
            return self._out(*args)
        except subprocess.CalledProcessError as exc:
            raise CommitError(f"git {args[0]} failed: {exc.stderr.strip() or exc.returncode}") from exc

    # read side

    def revision_exists(self, revision: str) -> bool:
        """Return True if the revision resolves to a commit."""
        return self._run("cat-file", "-e", f"{revision}^{{commit}}", check=False).returncode == 0

    def resolve(self, revision: str) -> str:
        """Return the full commit id of a revision."""
        try:
            return self._out("rev-parse", "--verify", f"{revision}^{{commit}}")
        except subprocess.CalledProcessError as exc:
            raise DetectionError(f"Unknown revision: {revision}") from exc

    def first_parent(self, revision: str) -> str | None:
        """Return the first parent of a commit, or None for a root commit."""
        proc = self._run("rev-parse", "--verify", "--quiet", f"{revision}^1", check=False)
        return proc.stdout.strip() or None

    def merge_base(self, left: str, right: str) -> str | None:
        """Return the best common ancestor of two revisions."""
        proc = self._run("merge-base", left, right, check=False)
        return proc.stdout.strip() or None

    def changed_paths(self, base: str, head: str) -> list[str]:
        """Return paths that differ between two revisions (renames count both sides)."""
        try:
            out = self._out("diff", "--name-only", "--no-renames", base, head)
        except subprocess.CalledProcessError as exc:
            raise DetectionError(f"Cannot diff {base}..{head}: {exc.stderr.strip()}") from exc
        return [line for line in out.splitlines() if line]

    def commit_info(self, revision: str) -> CommitInfo:
        """Return message and author of a commit."""
        out = self._run("log", "-1", "--format=%H%x1f%ae%x1f%B", revision).stdout
        sha, email, message = out.split(_FIELD_SEP, 2)
        return CommitInfo(sha=sha.strip(), message=message.strip(), author_email=email or None)

    def head(self) -> str:
        return self._gitops("rev-parse", "HEAD")

    def is_ancestor(self, ancestor: str, descendant: str) -> bool:
        proc = self._run("merge-base", "--is-ancestor", ancestor, descendant, check=False)
        return proc.returncode == 0

    def commits_between(self, old: str, new: str) -> list[CommitInfo]:
        """Return commits reachable from `new` but not from `old`, oldest first."""
        out = self._gitops("rev-list", "--reverse", f"{old}..{new}")
        return [self.commit_info(sha) for sha in out.splitlines() if sha]

    # write side

    def fetch_branch(self, remote: str, branch: str) -> str:
        """Fetch a remote branch and return its tip revision."""
        ref = f"refs/remotes/{remote}/{branch}"
        try:
            self._run("fetch", "--quiet", remote, f"+refs/heads/{branch}:{ref}")
        except subprocess.CalledProcessError as exc:
            raise CommitError(f"Cannot fetch {remote}/{branch}: {exc.stderr.strip()}") from exc
        return self._out("rev-parse", ref)

    def reset_to(self, revision: str) -> None:
        self._gitops("reset", "--quiet", "--hard", revision)

    def stage(self, paths: list[str]) -> None:
        if paths:
            self._gitops("add", "--", *paths)

    def has_staged_changes(self) -> bool:
        proc = self._run("diff", "--cached", "--quiet", check=False)
        if proc.returncode not in (0, 1):
            raise CommitError(f"git diff failed: {proc.stderr.strip() or proc.returncode}")
        return proc.returncode == 1

    def commit(self, message: str, *, author_name: str, author_email: str) -> str:
        """Create a commit from the index as the pipeline identity."""
        try:
            self._run(
                "-c",
                f"user.name={author_name}",
                "-c",
                f"user.email={author_email}",
                "commit",
                "--quiet",
                "--no-verify",
                "-m",
                message,
            )
        except subprocess.CalledProcessError as exc:
            raise CommitError(f"git commit failed: {exc.stderr.strip()}") from exc
        return self.head()

    def push(self, remote: str, branch: str) -> None:
        """Push HEAD to a remote branch, classifying rejections."""
        proc = self._run("push", "--porcelain", remote, f"HEAD:refs/heads/{branch}", check=False)
        if proc.returncode == 0:
            return
        diagnostic = f"{proc.stdout}\n{proc.stderr}".strip()
        lowered = diagnostic.lower()
        if any(marker in lowered for marker in _CONFLICT_MARKERS) and not any(
            marker in lowered for marker in _AUTH_MARKERS
        ):
            raise PushConflictError(f"Push to {remote}/{branch} rejected: non-fast-forward")
        if any(marker in lowered for marker in _AUTH_MARKERS):
            raise CommitAuthError(f"Push to {remote}/{branch} denied: {_last_line(diagnostic)}")
        raise CommitError(f"Push to {remote}/{branch} failed: {_last_line(diagnostic)}")


def _last_line(text: str) -> str:
    lines = [line for line in text.splitlines() if line.strip()]
    return lines[-1] if lines else "no output"
