"""Field-scoped deployment manifest updates.

Manifests are YAML documents consumed by the GitOps controller. Only the
image repository and image tag fields of a unit's manifest are rewritten.
The fields are located by key path on the composed YAML node tree and the
new scalars are spliced in at the node offsets, so every other byte of the
file (comments, ordering, quoting, line endings) is preserved.

A patched manifest is re-parsed and compared with the original document:
anything but the two target fields changing is an error.
"""

from __future__ import annotations

import copy
import json
import os
import re
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable, Mapping

import structlog
import yaml

from shipops.core.errors import ManifestError
from shipops.core.publish import PublishResult
from shipops.core.units import Unit, UnitStatus

logger = structlog.get_logger(__name__)

_PLAIN_SAFE_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._/@+-]*$")


@dataclass(frozen=True)
class ManifestPatch:
    """
    Field-level edit of one unit's manifest.

    Attributes:
        unit: Name of the unit the manifest belongs to.
        path: Repository-relative manifest path.
        fields: Mapping of dotted key path to new value.
        original: Manifest text before the patch.
        updated: Manifest text after the patch.
    """

    unit: str
    path: str
    fields: Mapping[str, str]
    original: str
    updated: str

    @property
    def changed(self) -> bool:
        return self.original != self.updated

    def reapply(self, repo_dir: Path) -> ManifestPatch:
        """Apply the same field edits to the manifest's current content."""
        return apply_fields(repo_dir, self.unit, self.path, self.fields)


@dataclass(frozen=True)
class ManifestResult:
    """Outcome of updating one unit's manifest."""

    unit: Unit
    status: UnitStatus
    patch: ManifestPatch | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status == UnitStatus.MANIFEST_UPDATED


def patch_manifest_text(
    text: str,
    fields: Mapping[str, str],
    *,
    unit: str,
    path: str,
) -> str:
    """
    Return `text` with the given scalar fields replaced.

    Args:
        text: Original YAML manifest text.
        fields: Mapping of dotted key path (e.g. `image.tag`) to new value.
        unit: Unit name, used in error messages.
        path: Manifest path, used in error messages.

    Raises:
        ManifestError: If the text is not a single valid YAML document, a
            field cannot be located or is not a scalar, or the result does
            not re-parse to the original document with only `fields` changed.
    """
    root = _compose(text, unit=unit, path=path)

    edits: list[tuple[int, int, str]] = []
    for key_path, value in fields.items():
        key_node, value_node = _locate(root, key_path)
        if value_node is None:
            raise ManifestError(unit, path, "field not found", field=key_path)
        if not isinstance(value_node, yaml.ScalarNode):
            raise ManifestError(unit, path, "field is not a scalar value", field=key_path)
        edits.append(_edit_for(text, key_node, value_node, value))

    updated = text
    for start, end, replacement in sorted(edits, reverse=True):
        updated = updated[:start] + replacement + updated[end:]

    _validate(text, updated, fields, unit=unit, path=path)
    return updated


def apply_fields(
    repo_dir: Path,
    unit: str,
    path: str,
    fields: Mapping[str, str],
) -> ManifestPatch:
    """
    Patch a manifest file in place and return the applied patch.

    The file is only rewritten when its content actually changes.
    """
    file_path = Path(repo_dir) / path
    try:
        with open(file_path, encoding="utf-8", newline="") as fh:
            original = fh.read()
    except FileNotFoundError as exc:
        raise ManifestError(unit, path, "manifest file not found") from exc
    except (OSError, UnicodeDecodeError) as exc:
        raise ManifestError(unit, path, f"cannot read manifest: {exc}") from exc

    updated = patch_manifest_text(original, fields, unit=unit, path=path)
    patch = ManifestPatch(
        unit=unit,
        path=path,
        fields=dict(fields),
        original=original,
        updated=updated,
    )
    if patch.changed:
        write_atomic(file_path, updated)
    return patch


def update_manifest(repo_dir: Path, published: PublishResult) -> ManifestPatch:
    """
    Point a unit's manifest at its freshly published artifact.

    Raises:
        ValueError: If the artifact was not confirmed as published.
        ManifestError: If the manifest cannot be patched.
    """
    if not published.ok or not published.repository_uri or not published.tag:
        raise ValueError(
            f"Unit '{published.unit.name}' has no confirmed published artifact"
        )
    unit = published.unit
    return apply_fields(
        repo_dir,
        unit.name,
        unit.manifest,
        {
            unit.repository_field: published.repository_uri,
            unit.tag_field: published.tag,
        },
    )


def update_manifests(
    repo_dir: Path,
    published: Iterable[PublishResult],
) -> dict[str, ManifestResult]:
    """
    Update the manifest of every published unit.

    Units are independent: a failing manifest does not stop the others.
    Unpublished units are ignored.

    Returns:
        A mapping of unit name to ManifestResult.
    """
    results: dict[str, ManifestResult] = {}
    for result in published:
        if not result.ok:
            continue
        unit = result.unit
        try:
            patch = update_manifest(repo_dir, result)
        except ManifestError as exc:
            logger.error("manifest_failed", unit=unit.name, path=unit.manifest, error=str(exc))
            results[unit.name] = ManifestResult(
                unit=unit, status=UnitStatus.MANIFEST_FAILED, error=str(exc)
            )
            continue

        logger.info(
            "manifest_updated",
            unit=unit.name,
            path=unit.manifest,
            changed=patch.changed,
        )
        results[unit.name] = ManifestResult(
            unit=unit, status=UnitStatus.MANIFEST_UPDATED, patch=patch
        )
    return results


def write_atomic(path: Path, text: str) -> None:
    """Replace a file's content atomically, keeping its permissions."""
    path = Path(path)
    mode = path.stat().st_mode if path.exists() else None
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="") as fh:
            fh.write(text)
        if mode is not None:
            os.chmod(tmp_name, mode)
        os.replace(tmp_name, path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise


def _compose(text: str, *, unit: str, path: str) -> yaml.Node:
    try:
        root = yaml.compose(text, Loader=yaml.SafeLoader)
    except yaml.YAMLError as exc:
        raise ManifestError(unit, path, f"not a single valid YAML document: {exc}") from exc
    if root is None:
        raise ManifestError(unit, path, "manifest is empty")
    return root


def _locate(root: yaml.Node, key_path: str) -> tuple[yaml.Node | None, yaml.Node | None]:
    """Return (key node, value node) for a dotted key path, or (None, None)."""
    node: yaml.Node = root
    key_node: yaml.Node | None = None
    for key in key_path.split("."):
        if not isinstance(node, yaml.MappingNode):
            return None, None
        match: tuple[yaml.Node, yaml.Node] | None = None
        for k, v in node.value:
            # later duplicates win, as they do when the document is loaded
            if isinstance(k, yaml.ScalarNode) and k.value == key:
                match = (k, v)
        if match is None:
            return None, None
        key_node, node = match
    return key_node, node


def _edit_for(
    text: str,
    key_node: yaml.Node | None,
    node: yaml.ScalarNode,
    value: str,
) -> tuple[int, int, str]:
    start, end = node.start_mark.index, node.end_mark.index
    if node.style is None and start == end:
        # `tag:` with no value; insert after the colon that follows the key
        colon = text.index(":", key_node.end_mark.index)
        return colon + 1, colon + 1, f" {_render(value, None)}"
    if node.style in ("|", ">"):
        # block scalars own their trailing line breaks
        segment = text[start:end]
        trailing = segment[len(segment.rstrip("\r\n")) :]
        return start, end, json.dumps(value) + trailing
    return start, end, _render(value, node.style)


def _render(value: str, style: str | None) -> str:
    """Render a string scalar, keeping the original quoting style when possible."""
    if style == "'":
        return "'" + value.replace("'", "''") + "'"
    if style is None and _PLAIN_SAFE_RE.match(value) and _loads_as_string(value):
        return value
    return json.dumps(value)


def _loads_as_string(value: str) -> bool:
    try:
        return yaml.safe_load(value) == value
    except yaml.YAMLError:
        return False


def _set_path(data: Any, key_path: str, value: str) -> None:
    keys = key_path.split(".")
    for key in keys[:-1]:
        data = data[key]
    data[keys[-1]] = value


def _validate(
    original: str,
    updated: str,
    fields: Mapping[str, str],
    *,
    unit: str,
    path: str,
) -> None:
    try:
        actual = yaml.safe_load(updated)
    except yaml.YAMLError as exc:
        raise ManifestError(unit, path, f"patched manifest is not valid YAML: {exc}") from exc

    expected = copy.deepcopy(yaml.safe_load(original))
    for key_path, value in fields.items():
        try:
            _set_path(expected, key_path, value)
        except (KeyError, TypeError) as exc:
            raise ManifestError(
                unit, path, "field cannot be resolved in the loaded document", field=key_path
            ) from exc

    if actual != expected:
        raise ManifestError(
            unit,
            path,
            "patched manifest differs from the original beyond the image fields",
        )
