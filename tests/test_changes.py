import pytest
from conftest import make_unit

from shipops.core.changes import detect_changes, is_filtered, resolve_base, units_for_paths
from shipops.core.errors import DetectionError
from shipops.core.triggers import ZERO_REVISION, CommitInfo, EventKind, Trigger, build_trigger_filter
from shipops.core.units import Unit


class _Adapter:
    def __init__(self, commits=None, parents=None, diffs=None, merge_bases=None):
        self.commits = commits or {"base": CommitInfo("base", "init"), "head": CommitInfo("head", "feat: x")}
        self.parents = parents or {"head": "base"}
        self.diffs = diffs or {}
        self.merge_bases = merge_bases or {}
        self.diff_calls = []

    def revision_exists(self, revision):
        return revision in self.commits

    def first_parent(self, revision):
        return self.parents.get(revision)

    def merge_base(self, left, right):
        return self.merge_bases.get((left, right))

    def changed_paths(self, base, head):
        self.diff_calls.append((base, head))
        return self.diffs.get((base, head), [])

    def commit_info(self, revision):
        return self.commits[revision]


def _push(base=None, head="head"):
    return Trigger(event=EventKind.PUSH, head=head, branch="main", base=base)


def test_unit_owns_only_paths_under_its_source():
    unit = make_unit("cart")

    assert unit.owns_path("src/cart/main.go")
    assert unit.owns_path("./src/cart/Dockerfile")
    assert unit.owns_path("src/cart")
    assert not unit.owns_path("src/cartography/main.go")
    assert not unit.owns_path("deploy/cart/values.yaml")


def test_unit_at_repository_root_owns_everything():
    unit = Unit(name="all", source=".", build_file="Dockerfile", manifest="m.yaml", repository="all")

    assert unit.owns_path("anything/at/all.txt")


def test_units_for_paths_keeps_configuration_order(units):
    changed = units_for_paths(units, ["src/ui/app.tsx", "src/cart/cart.go", "README.md"])

    assert [u.name for u in changed] == ["cart", "ui"]


def test_detect_changes_uses_first_parent_when_no_base(units):
    adapter = _Adapter(diffs={("base", "head"): ["src/orders/main.py", "docs/readme.md"]})

    changes = detect_changes(adapter, units, _push())

    assert changes.base == "base"
    assert changes.names == ["orders"]
    assert adapter.diff_calls == [("base", "head")]


def test_detect_changes_with_explicit_base(units):
    adapter = _Adapter(diffs={("base", "head"): ["src/ui/index.html"]})

    changes = detect_changes(adapter, units, _push(base="base"))

    assert changes.names == ["ui"]


def test_detect_changes_empty_when_only_unrelated_paths(units):
    adapter = _Adapter(diffs={("base", "head"): ["README.md", "deploy/cart/values.yaml"]})

    changes = detect_changes(adapter, units, _push(base="base"))

    assert not changes
    assert changes.names == []
    assert changes.paths == ("README.md", "deploy/cart/values.yaml")


def test_new_branch_selects_all_units(units):
    adapter = _Adapter()

    changes = detect_changes(adapter, units, _push(base=ZERO_REVISION))

    assert changes.base is None
    assert changes.names == ["cart", "orders", "ui"]
    assert adapter.diff_calls == []


def test_root_commit_selects_all_units(units):
    adapter = _Adapter(commits={"head": CommitInfo("head", "initial")}, parents={"head": None})

    changes = detect_changes(adapter, units, _push())

    assert changes.names == ["cart", "orders", "ui"]


def test_unknown_head_is_a_detection_error(units):
    with pytest.raises(DetectionError, match="Unknown head revision"):
        detect_changes(_Adapter(), units, _push(head="missing"))


def test_unknown_base_is_a_detection_error(units):
    with pytest.raises(DetectionError, match="Unknown base revision"):
        detect_changes(_Adapter(), units, _push(base="gone"))


def test_pull_request_diffs_against_merge_base():
    adapter = _Adapter(
        commits={
            "target": CommitInfo("target", "main tip"),
            "fork": CommitInfo("fork", "fork point"),
            "head": CommitInfo("head", "feat"),
        },
        merge_bases={("target", "head"): "fork"},
    )
    trigger = Trigger(event=EventKind.PULL_REQUEST, head="head", branch="feature", base="target")

    assert resolve_base(adapter, trigger) == "fork"


def test_pull_request_requires_base():
    trigger = Trigger(event=EventKind.PULL_REQUEST, head="head", branch="feature")

    with pytest.raises(DetectionError, match="require a base"):
        resolve_base(_Adapter(), trigger)


def test_pull_request_unrelated_histories():
    trigger = Trigger(event=EventKind.PULL_REQUEST, head="head", branch="feature", base="base")

    with pytest.raises(DetectionError, match="No common history"):
        resolve_base(_Adapter(), trigger)


def test_is_filtered_recognizes_pipeline_commits():
    adapter = _Adapter(
        commits={"head": CommitInfo("head", "ci(manifests): deploy abc [skip ci]")},
    )
    trigger_filter = build_trigger_filter(skip_marker="[skip ci]")

    assert is_filtered(adapter, _push(), trigger_filter) is True
    assert is_filtered(_Adapter(), _push(), trigger_filter) is False
