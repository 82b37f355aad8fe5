"""CLI tests driven through click's test runner."""

import json

import pytest
import yaml
from click.testing import CliRunner

from stackforge.main import cli


@pytest.fixture
def runner(workspace, monkeypatch):
    monkeypatch.chdir(workspace)
    return CliRunner()


@pytest.fixture
def local_stacks(stack_writer):
    stack_writer(
        "network",
        provider="local",
        resources={"vpc": {"type": "network", "config": {"id": "vpc-123"}}},
    )
    stack_writer(
        "app",
        provider="local",
        resources={"vm": {"type": "instance", "config": {"vpc": "${stack:network.vpc.id}"}}},
    )


def test_version(runner):
    result = runner.invoke(cli, ["--version"])

    assert result.exit_code == 0
    assert "1.0.0" in result.output


def test_init_profile_then_encrypt(runner, workspace, secrets_writer):
    result = runner.invoke(cli, ["secrets", "init-profile", "ci", "--project", "demo"])
    assert result.exit_code == 0, result.output

    config = yaml.safe_load((workspace / ".sc" / "cfg.ci.yaml").read_text())
    assert config["projectName"] == "demo"
    assert config["publicKey"].startswith("ssh-rsa ")

    secrets_writer("app", values={"TOKEN": "t0k3n"})
    result = runner.invoke(cli, ["secrets", "encrypt", "--profile", "ci"])
    assert result.exit_code == 0, result.output
    assert (workspace / ".sc" / "stacks" / "app" / "secrets.encrypted.yaml").exists()


def test_init_profile_ed25519(runner, workspace):
    result = runner.invoke(cli, ["secrets", "init-profile", "ci", "--key-type", "ed25519"])
    assert result.exit_code == 0, result.output

    config = yaml.safe_load((workspace / ".sc" / "cfg.ci.yaml").read_text())
    assert config["publicKey"].startswith("ssh-ed25519 ")


def test_init_profile_refuses_overwrite(runner, profile):
    result = runner.invoke(cli, ["secrets", "init-profile", profile])

    assert result.exit_code == 2


def test_provision_with_yes(runner, profile, local_stacks, workspace):
    result = runner.invoke(cli, ["provision", "--yes"])

    assert result.exit_code == 0, result.output
    state = json.loads((workspace / ".sc" / "state" / "app.json").read_text())
    assert state["resources"]["vm"]["config"] == {"vpc": "vpc-123"}


def test_provision_declined(runner, profile, local_stacks, workspace):
    result = runner.invoke(cli, ["provision"], input="n\n")

    assert result.exit_code == 130
    assert not (workspace / ".sc" / "state" / "app.json").exists()


def test_provision_json_report(runner, profile, local_stacks):
    result = runner.invoke(cli, ["provision", "--json"])

    assert result.exit_code == 0, result.output
    report = json.loads(result.output)
    assert report["status"] == "completed"
    assert [stack["name"] for stack in report["stacks"]] == ["network", "app"]


def test_preview_json(runner, profile, local_stacks):
    result = runner.invoke(cli, ["preview", "--json"])

    assert result.exit_code == 0, result.output
    stacks = json.loads(result.output)["stacks"]
    assert [entry["stack"] for entry in stacks] == ["network", "app"]
    assert stacks[0]["counts"] == {"create": 1, "update": 0, "delete": 0, "no-op": 0}
    assert stacks[0]["summary"] == "1 to create"


def test_missing_profile(runner, local_stacks):
    result = runner.invoke(cli, ["provision", "--profile", "ghost", "--yes"])

    assert result.exit_code == 2


def test_dependency_cycle(runner, profile, stack_writer):
    stack_writer("a", depends_on=["b"])
    stack_writer("b", depends_on=["a"])

    result = runner.invoke(cli, ["preview"])

    assert result.exit_code == 2


def test_invalid_parallel(runner, profile, local_stacks):
    result = runner.invoke(cli, ["provision", "--parallel", "0"])

    assert result.exit_code == 2
