import pytest
from conftest import make_unit
from fakes import REGISTRY_HOST, FakeBuilder, digest_of

from shipops.core.builds import build_unit, build_units, image_refs
from shipops.core.errors import BuildError, BuildTimeoutError
from shipops.core.units import UnitStatus


def _uri(unit):
    return f"{REGISTRY_HOST}/{unit.repository}"


def test_image_refs_carry_revision_and_latest():
    assert image_refs("host/shop/cart", "abc123") == ("host/shop/cart:abc123", "host/shop/cart:latest")


def test_build_units_rejects_non_positive_parallel(units):
    with pytest.raises(ValueError, match="max_parallel"):
        build_units(FakeBuilder(), units, "abc", _uri, max_parallel=0)


def test_build_units_returns_empty_on_empty_input():
    assert build_units(FakeBuilder(), [], "abc", _uri, max_parallel=2) == {}


def test_build_units_builds_every_unit(units):
    builder = FakeBuilder()

    results = build_units(builder, units, "abc", _uri, max_parallel=2)

    assert sorted(results) == ["cart", "orders", "ui"]
    assert all(r.status == UnitStatus.BUILT for r in results.values())
    assert results["cart"].artifact_id == digest_of("image:src/cart/Dockerfile")
    assert results["cart"].image_refs == (
        f"{REGISTRY_HOST}/shop/cart:abc",
        f"{REGISTRY_HOST}/shop/cart:latest",
    )
    assert sorted(call[0] for call in builder.calls) == [
        "src/cart/Dockerfile",
        "src/orders/Dockerfile",
        "src/ui/Dockerfile",
    ]


def test_failing_build_does_not_cancel_siblings(units):
    builder = FakeBuilder(
        failures={"src/ui/Dockerfile": BuildError("exit status 1", diagnostic="npm ERR! missing script")}
    )

    results = build_units(builder, units, "abc", _uri, max_parallel=3)

    assert results["ui"].status == UnitStatus.BUILD_FAILED
    assert results["ui"].error == "ui: exit status 1"
    assert results["ui"].diagnostic == "npm ERR! missing script"
    assert results["ui"].artifact_id is None
    assert results["cart"].ok and results["orders"].ok


def test_timeout_is_reported_as_build_failure():
    builder = FakeBuilder(failures={"src/cart/Dockerfile": BuildTimeoutError("timed out after 60s")})

    result = build_unit(builder, make_unit("cart"), "abc", "host/shop/cart", timeout=60)

    assert result.status == UnitStatus.BUILD_FAILED
    assert "timed out" in result.error


def test_unexpected_exception_is_isolated():
    builder = FakeBuilder(failures={"src/cart/Dockerfile": RuntimeError("daemon gone")})

    result = build_unit(builder, make_unit("cart"), "abc", "host/shop/cart")

    assert not result.ok
    assert result.error == "cart: daemon gone"
