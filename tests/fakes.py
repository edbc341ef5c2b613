"""In-memory stand-ins for the version control, build and registry adapters."""

from __future__ import annotations

import hashlib
import threading
from pathlib import Path

from shipops.core.triggers import CommitInfo

REGISTRY_HOST = "123456789012.dkr.ecr.us-east-1.amazonaws.com"


def digest_of(text: str) -> str:
    return "sha256:" + hashlib.sha256(text.encode()).hexdigest()


class FakeBuilder:
    def __init__(self, failures: dict[str, Exception] | None = None):
        self.failures = failures or {}
        self.calls: list[tuple[str, tuple[str, ...]]] = []
        self._lock = threading.Lock()

    def build(self, *, build_file: str, context: str, tags: list[str], timeout: float | None) -> str:
        with self._lock:
            self.calls.append((build_file, tuple(tags)))
        if build_file in self.failures:
            raise self.failures[build_file]
        return digest_of(f"image:{build_file}")


class FakeRegistry:
    def __init__(
        self,
        existing: tuple[str, ...] = (),
        upload_errors: dict[str, list[Exception]] | None = None,
        create_error: Exception | None = None,
    ):
        self.namespaces = set(existing)
        self.created: list[str] = []
        self.uploads: list[str] = []
        self.tags: dict[tuple[str, str], str] = {}
        self.upload_errors = upload_errors or {}
        self.create_error = create_error
        self._lock = threading.Lock()

    def repository_uri(self, namespace: str) -> str:
        return f"{REGISTRY_HOST}/{namespace}"

    def namespace_exists(self, namespace: str) -> bool:
        return namespace in self.namespaces

    def create_namespace(self, namespace: str) -> None:
        if self.create_error is not None:
            raise self.create_error
        with self._lock:
            self.created.append(namespace)
            self.namespaces.add(namespace)

    def upload(self, image_ref: str) -> str:
        repository, tag = image_ref.rsplit(":", 1)
        namespace = repository.split("/", 1)[1]
        with self._lock:
            errors = self.upload_errors.get(namespace)
            if errors:
                raise errors.pop(0)
            digest = digest_of(f"manifest:{namespace}")
            self.tags[(namespace, tag)] = digest
            self.uploads.append(image_ref)
        return digest

    def resolve_tag(self, namespace: str, tag: str) -> str | None:
        return self.tags.get((namespace, tag))


class FakeVcs:
    """
    Version control stub backed by the files of a working tree.

    `diffs` maps (base, head) to changed paths. Every revision keeps a snapshot
    of the tree; staged changes are staged files that differ from the
    snapshot of the checked-out revision.
    """

    def __init__(
        self,
        repo_dir: Path,
        *,
        head: str = "rev-2",
        parent: str | None = "rev-1",
        diffs: dict[tuple[str, str], list[str]] | None = None,
        message: str = "feat(cart): new checkout",
    ):
        self.repo_dir = Path(repo_dir)
        self.commits = {head: CommitInfo(sha=head, message=message, author_email="dev@example.com")}
        if parent:
            self.commits[parent] = CommitInfo(sha=parent, message="previous")
        self.parents = {head: parent}
        self.diffs = diffs or {}
        self.remote_tip = head
        self._head = head
        self.staged: list[str] = []
        self.committed: list[str] = []
        self.pushes: list[str] = []
        self.push_errors: list[Exception] = []
        self.between: list[CommitInfo] = []
        self.fetches = 0
        self._baseline = {
            str(p.relative_to(self.repo_dir)): p.read_text()
            for p in self.repo_dir.rglob("*")
            if p.is_file()
        }
        self._snapshots = {head: dict(self._baseline)}

    # DiffAdapter

    def revision_exists(self, revision: str) -> bool:
        return revision in self.commits

    def first_parent(self, revision: str) -> str | None:
        return self.parents.get(revision)

    def merge_base(self, left: str, right: str) -> str | None:
        return left if left in self.commits else None

    def changed_paths(self, base: str, head: str) -> list[str]:
        return list(self.diffs.get((base, head), []))

    def commit_info(self, revision: str) -> CommitInfo:
        return self.commits[revision]

    # GitOpsAdapter

    def fetch_branch(self, remote: str, branch: str) -> str:
        self.fetches += 1
        return self.remote_tip

    def head(self) -> str:
        return self._head

    def is_ancestor(self, ancestor: str, descendant: str) -> bool:
        return True

    def commits_between(self, old: str, new: str) -> list[CommitInfo]:
        return list(self.between)

    def reset_to(self, revision: str) -> None:
        snapshot = self._snapshots.get(revision, self._baseline)
        for path, text in snapshot.items():
            (self.repo_dir / path).write_text(text)
        self._baseline = dict(snapshot)
        self.staged = []
        self._head = revision

    def stage(self, paths: list[str]) -> None:
        self.staged.extend(paths)

    def has_staged_changes(self) -> bool:
        return any(
            (self.repo_dir / path).read_text() != self._baseline.get(path)
            for path in self.staged
        )

    def commit(self, message: str, *, author_name: str, author_email: str) -> str:
        self.committed.append(message)
        for path in self.staged:
            self._baseline[path] = (self.repo_dir / path).read_text()
        self.staged = []
        self._head = f"pipeline-{len(self.committed)}"
        self._snapshots[self._head] = dict(self._baseline)
        self.commits[self._head] = CommitInfo(
            sha=self._head, message=message, author_email=author_email
        )
        return self._head

    def push(self, remote: str, branch: str) -> None:
        self.pushes.append(branch)
        if self.push_errors:
            raise self.push_errors.pop(0)
        self.remote_tip = self._head
