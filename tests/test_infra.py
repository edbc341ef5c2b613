import subprocess

import pytest

from shipops.core.adapters.terraform import TerraformAdapter
from shipops.core.config import InfraSettings
from shipops.core.infra import InfraError, run_infra
from shipops.core.triggers import InfraOperation


class _Adapter:
    def __init__(self, fail_on=None):
        self.fail_on = fail_on
        self.calls = []

    def init(self, directory):
        self.calls.append(("init", directory))
        if self.fail_on == "init":
            raise InfraError("terraform init exited with 1", "Error: backend")
        return "Terraform has been successfully initialized!"

    def run(self, directory, operation, *, var_file):
        self.calls.append((operation.value, directory, var_file))
        if self.fail_on == operation.value:
            raise InfraError(f"terraform {operation.value} exited with 1", "Error: boom")
        return "Plan: 1 to add, 0 to change, 0 to destroy."


def test_run_infra_inits_then_runs_operation():
    adapter = _Adapter()
    settings = InfraSettings(directory="infra/prod", var_file="prod.tfvars")

    result = run_infra(adapter, settings, InfraOperation.PLAN)

    assert result.ok
    assert adapter.calls == [("init", "infra/prod"), ("plan", "infra/prod", "prod.tfvars")]
    assert "successfully initialized" in result.output
    assert "Plan: 1 to add" in result.output


def test_run_infra_reports_failure_with_output():
    result = run_infra(_Adapter(fail_on="apply"), InfraSettings(), InfraOperation.APPLY)

    assert not result.ok
    assert result.error == "terraform apply exited with 1"
    assert result.output.endswith("Error: boom")


def test_failed_init_skips_operation():
    adapter = _Adapter(fail_on="init")

    result = run_infra(adapter, InfraSettings(), InfraOperation.DESTROY)

    assert not result.ok
    assert adapter.calls == [("init", "terraform")]


class _Proc:
    def __init__(self, returncode=0, stdout="", stderr=""):
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr


@pytest.mark.parametrize(
    "operation, expected",
    [
        (InfraOperation.PLAN, ["plan", "-input=false", "-no-color", "-var-file=x.tfvars"]),
        (InfraOperation.APPLY, ["apply", "-auto-approve", "-input=false", "-no-color", "-var-file=x.tfvars"]),
        (InfraOperation.DESTROY, ["destroy", "-auto-approve", "-input=false", "-no-color", "-var-file=x.tfvars"]),
    ],
)
def test_terraform_adapter_commands(monkeypatch, tmp_path, operation, expected):
    seen = []
    monkeypatch.setattr(
        subprocess, "run", lambda cmd, **kwargs: seen.append(cmd) or _Proc(0, stdout="ok")
    )

    TerraformAdapter(tmp_path).run("terraform", operation, var_file="x.tfvars")

    assert seen == [["terraform", f"-chdir={tmp_path / 'terraform'}", *expected]]


def test_terraform_adapter_failure_keeps_output(monkeypatch, tmp_path):
    monkeypatch.setattr(
        subprocess, "run", lambda cmd, **kwargs: _Proc(1, stdout="", stderr="Error: Invalid provider")
    )

    with pytest.raises(InfraError, match="terraform init exited with 1") as info:
        TerraformAdapter(tmp_path).init("terraform")

    assert info.value.output == "Error: Invalid provider"
