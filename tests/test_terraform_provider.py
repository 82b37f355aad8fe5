"""Tests for the Terraform provider with the terraform binary stubbed out."""

import json
import signal
import subprocess

import pytest

from stackforge.cancellation import CancelToken
from stackforge.core.stack_loader import StackLoader
from stackforge.exceptions import OperationCancelled, ProviderError, ProviderQueryError
from stackforge.models.stack import ResourceSpec
from stackforge.providers import ApplyContext, ObservedResource, TerraformProvider
from stackforge.providers import terraform as terraform_module

SHOW_DOCUMENT = {
    "values": {
        "outputs": {"url": {"value": "https://app.example.com", "sensitive": False}},
        "root_module": {
            "resources": [
                {
                    "address": "google_storage_bucket.assets",
                    "mode": "managed",
                    "type": "google_storage_bucket",
                    "name": "assets",
                    "values": {"location": "EU", "id": "assets-123"},
                },
                {
                    "address": "data.google_project.current",
                    "mode": "data",
                    "type": "google_project",
                    "name": "current",
                    "values": {},
                },
            ]
        },
    }
}


class FakeTerraform:
    """Scripted replacement for subprocess.run."""

    def __init__(self):
        self.commands = []
        self.envs = []
        self.responses = {}

    def respond(self, subcommand, stdout="", returncode=0, stderr=""):
        self.responses[subcommand] = (returncode, stdout, stderr)

    def __call__(self, cmd, cwd=None, capture_output=False, text=False, check=False, env=None):
        self.commands.append(cmd[1:])
        self.envs.append(env)
        returncode, stdout, stderr = self.responses.get(cmd[1], (0, "", ""))
        return subprocess.CompletedProcess(cmd, returncode, stdout=stdout, stderr=stderr)


@pytest.fixture
def fake_run(monkeypatch):
    fake = FakeTerraform()
    monkeypatch.setattr(terraform_module.subprocess, "run", fake)
    return fake


@pytest.fixture
def spec(stacks_dir, stack_writer):
    stack_dir = stack_writer(
        "app",
        provider="terraform",
        resources={"assets": {"type": "google_storage_bucket", "config": {"location": "EU"}}},
    )
    (stack_dir / "terraform" / ".terraform").mkdir(parents=True)
    return StackLoader(stacks_dir).load_stack("app")


def make_provider(spec, workspace, **options):
    return TerraformProvider(spec.provider, options, workspace)


class TestQueryState:
    def test_parses_managed_resources_and_outputs(self, fake_run, spec, workspace):
        fake_run.respond("show", json.dumps(SHOW_DOCUMENT))

        state = make_provider(spec, workspace).query_state(spec)

        assert list(state.resources) == ["assets"]
        assert state.resources["assets"].type == "google_storage_bucket"
        assert dict(state.outputs) == {"url": "https://app.example.com"}
        assert fake_run.commands == [["show", "-json", "-no-color"]]

    def test_empty_state(self, fake_run, spec, workspace):
        fake_run.respond("show", "")

        state = make_provider(spec, workspace).query_state(spec)

        assert dict(state.resources) == {}

    def test_initializes_fresh_directory(self, fake_run, spec, workspace):
        (spec.stack_dir / "terraform" / ".terraform").rmdir()

        make_provider(spec, workspace).query_state(spec)

        assert fake_run.commands[0] == ["init", "-input=false", "-no-color"]

    def test_command_failure(self, fake_run, spec, workspace):
        fake_run.respond("show", returncode=1, stderr="backend locked")

        with pytest.raises(ProviderQueryError) as exc:
            make_provider(spec, workspace).query_state(spec)

        assert exc.value.stack_name == "app"
        assert "backend locked" in str(exc.value.cause)

    def test_invalid_json(self, fake_run, spec, workspace):
        fake_run.respond("show", "{truncated")

        with pytest.raises(ProviderQueryError):
            make_provider(spec, workspace).query_state(spec)

    def test_refresh_runs_refresh_only_apply(self, fake_run, spec, workspace):
        fake_run.respond("show", json.dumps(SHOW_DOCUMENT))

        make_provider(spec, workspace).refresh(spec)

        assert fake_run.commands == [
            ["apply", "-refresh-only", "-auto-approve", "-input=false", "-no-color"],
            ["show", "-json", "-no-color"],
        ]

    def test_env_option_passed_to_terraform(self, fake_run, spec, workspace):
        make_provider(spec, workspace, env={"TF_VAR_region": "eu", "TF_LOG": 1}).query_state(spec)

        assert fake_run.envs[0]["TF_VAR_region"] == "eu"
        assert fake_run.envs[0]["TF_LOG"] == "1"

    def test_missing_binary(self, monkeypatch, spec, workspace):
        def missing(*args, **kwargs):
            raise FileNotFoundError("terraform")

        monkeypatch.setattr(terraform_module.subprocess, "run", missing)

        with pytest.raises(ProviderQueryError) as exc:
            make_provider(spec, workspace).query_state(spec)

        assert isinstance(exc.value.cause, ProviderError)


def test_differs_ignores_computed_attributes(spec, workspace):
    provider = make_provider(spec, workspace)
    desired = ResourceSpec(name="assets", type="google_storage_bucket", config={"location": "EU"})

    assert not provider.differs(desired, ObservedResource("google_storage_bucket", {"location": "EU", "id": "x"}))
    assert provider.differs(desired, ObservedResource("google_storage_bucket", {"location": "US"}))
    assert provider.differs(desired, ObservedResource("aws_s3_bucket", {"location": "EU"}))


class FakePopen:
    """Scripted replacement for subprocess.Popen."""

    instances = []

    def __init__(self, cmd, on_first_wait=None, returncode=0, **kwargs):
        self.cmd = cmd
        self.returncode = None
        self.signals = []
        self._final_returncode = returncode
        self._on_first_wait = on_first_wait
        self._waits = 0
        FakePopen.instances.append(self)

    def communicate(self, timeout=None):
        self._waits += 1
        if self._waits == 1 and self._on_first_wait is not None:
            self._on_first_wait()
            raise subprocess.TimeoutExpired(self.cmd, timeout)
        self.returncode = self._final_returncode
        return "Apply complete!", ""

    def send_signal(self, sig):
        self.signals.append(sig)
        self._final_returncode = 130

    def kill(self):
        self.signals.append(signal.SIGKILL)


@pytest.fixture
def popen(monkeypatch):
    FakePopen.instances = []
    settings = {}

    def factory(cmd, **kwargs):
        return FakePopen(cmd, **settings, **kwargs)

    monkeypatch.setattr(terraform_module.subprocess, "Popen", factory)
    return settings


class TestApply:
    def test_writes_tfvars_and_returns_outputs(self, fake_run, popen, spec, workspace):
        fake_run.respond("output", json.dumps({"url": {"value": "https://app.example.com"}}))
        token = CancelToken("app")
        context = ApplyContext(
            stack=spec,
            resources=spec.resources,
            credentials={},
            token=token,
            dependency_outputs={"network": {"vpc": "vpc-123"}},
        )

        result = make_provider(spec, workspace).apply(spec, context)

        assert result.outputs == {"url": "https://app.example.com"}
        assert FakePopen.instances[0].cmd[:2] == ["terraform", "apply"]
        tfvars = json.loads((spec.stack_dir / "terraform" / "stackforge.auto.tfvars.json").read_text())
        assert tfvars == {
            "stack_name": "app",
            "resources": {"assets": {"type": "google_storage_bucket", "config": {"location": "EU"}}},
            "dependency_outputs": {"network": {"vpc": "vpc-123"}},
        }

    def test_apply_failure(self, fake_run, popen, spec, workspace):
        popen["returncode"] = 1
        context = ApplyContext(stack=spec, resources=spec.resources, credentials={}, token=CancelToken("app"))

        with pytest.raises(ProviderError, match="Terraform command failed"):
            make_provider(spec, workspace).apply(spec, context)

    def test_cancel_interrupts_running_apply(self, fake_run, popen, spec, workspace):
        token = CancelToken("app")
        popen["on_first_wait"] = lambda: token.cancel("stop requested")
        context = ApplyContext(stack=spec, resources=spec.resources, credentials={}, token=token)

        with pytest.raises(OperationCancelled):
            make_provider(spec, workspace).apply(spec, context)

        assert FakePopen.instances[0].signals == [signal.SIGINT]
        assert not any(cmd[0] == "output" for cmd in fake_run.commands)
