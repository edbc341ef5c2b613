import pytest

from shipops.core.config import load_config, parse_config, resolve_config_path
from shipops.core.errors import ConfigError

CONFIG = """
registry:
  region: eu-west-1
  namespace_prefix: shop/
build:
  parallel: 2
  timeout_seconds: 600
units:
  - name: cart
    source: ./src/cart/
    manifest: deploy/cart/values.yaml
  - name: ui
    source: src/ui
    build_file: docker/ui.Dockerfile
    context: .
    manifest: deploy/ui/values.yaml
    repository: frontend/ui
    tag_field: frontend.image.tag
"""


def _units(*items):
    return {"units": list(items)}


def test_load_config_parses_units_and_settings(tmp_path):
    path = tmp_path / "shipops.yaml"
    path.write_text(CONFIG)

    config = load_config(path, env={})

    units = {u.name: u for u in config.units}
    cart = units["cart"]
    assert cart.source == "src/cart"
    assert cart.build_file == "src/cart/Dockerfile"
    assert cart.repository == "shop/cart"
    assert cart.build_context == "src/cart"

    ui = units["ui"]
    assert ui.build_file == "docker/ui.Dockerfile"
    assert ui.build_context == "."
    assert ui.repository == "frontend/ui"
    assert ui.tag_field == "frontend.image.tag"
    assert ui.repository_field == "image.repository"

    assert config.build.parallel == 2
    assert config.build.timeout_seconds == 600.0
    assert config.registry.region == "eu-west-1"
    assert config.retry.attempts == 3
    assert config.retry.initial_backoff == 5.0
    assert config.gitops.skip_marker == "[skip ci]"


def test_environment_overrides_file_values(tmp_path):
    path = tmp_path / "shipops.yaml"
    path.write_text(CONFIG)

    config = load_config(
        path,
        env={
            "SHIPOPS_BUILD_PARALLEL": "8",
            "SHIPOPS_RETRY_ATTEMPTS": "5",
            "SHIPOPS_RETRY_BACKOFF": "0",
            "AWS_REGION": "us-east-1",
        },
    )

    assert config.build.parallel == 8
    assert config.retry.attempts == 5
    assert config.retry.initial_backoff == 0.0
    assert config.registry.region == "us-east-1"


def test_malformed_environment_override_falls_back_to_file(tmp_path):
    path = tmp_path / "shipops.yaml"
    path.write_text(CONFIG)

    config = load_config(path, env={"SHIPOPS_BUILD_PARALLEL": "many"})

    assert config.build.parallel == 2


def test_non_positive_timeout_disables_it():
    config = parse_config(
        {**_units({"name": "a", "source": "a", "manifest": "a.yaml"}), "build": {"timeout_seconds": 0}},
        env={},
    )

    assert config.build.timeout_seconds is None


@pytest.mark.parametrize(
    "raw, message",
    [
        ({}, "non-empty list"),
        ({"units": []}, "non-empty list"),
        (_units({"source": "a", "manifest": "a.yaml"}), "name"),
        (
            _units(
                {"name": "a", "source": "a", "manifest": "a.yaml"},
                {"name": "a", "source": "b", "manifest": "b.yaml"},
            ),
            "Duplicate unit name",
        ),
        (
            _units(
                {"name": "a", "source": "a", "manifest": "shared.yaml"},
                {"name": "b", "source": "b", "manifest": "shared.yaml"},
            ),
            "share manifest",
        ),
        (_units({"name": "a", "source": "../outside", "manifest": "a.yaml"}), "relative"),
        (_units({"name": "a", "source": "/abs", "manifest": "a.yaml"}), "relative"),
        (_units({"name": "a", "source": "a"}), "manifest"),
        (
            {**_units({"name": "a", "source": "a", "manifest": "a.yaml"}), "build": {"parallel": 0}},
            "parallel",
        ),
        (
            {**_units({"name": "a", "source": "a", "manifest": "a.yaml"}), "retry": {"attempts": 0}},
            "attempts",
        ),
        (
            {**_units({"name": "a", "source": "a", "manifest": "a.yaml"}), "gitops": {"skip_marker": ""}},
            "skip_marker",
        ),
        (
            {**_units({"name": "a", "source": "a", "manifest": "a.yaml"}), "build": {"parallel": "two"}},
            "Invalid configuration value",
        ),
        ({**_units({"name": "a", "source": "a", "manifest": "a.yaml"}), "build": ["x"]}, "mapping"),
    ],
)
def test_invalid_configuration_is_rejected(raw, message):
    with pytest.raises(ConfigError, match=message):
        parse_config(raw, env={})


def test_load_config_missing_file(tmp_path):
    with pytest.raises(ConfigError, match="Cannot read config file"):
        load_config(tmp_path / "missing.yaml", env={})


def test_load_config_invalid_yaml(tmp_path):
    path = tmp_path / "shipops.yaml"
    path.write_text("units: [\n")

    with pytest.raises(ConfigError, match="not valid YAML"):
        load_config(path, env={})


def test_resolve_config_path(tmp_path, monkeypatch):
    monkeypatch.delenv("SHIPOPS_CONFIG", raising=False)
    assert resolve_config_path(None, tmp_path) == tmp_path / "shipops.yaml"

    monkeypatch.setenv("SHIPOPS_CONFIG", "ci/pipeline.yaml")
    assert resolve_config_path(None, tmp_path) == tmp_path / "ci" / "pipeline.yaml"

    absolute = tmp_path / "elsewhere.yaml"
    assert resolve_config_path(str(absolute), tmp_path) == absolute
