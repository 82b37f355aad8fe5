"""Shared fixtures: workspace, profiles, stack writers and a scriptable provider."""

import functools
import threading
from collections import defaultdict

import pytest
import yaml

from stackforge.core import ciphers
from stackforge.core.cryptor import SecretStore
from stackforge.core.orchestrator import Orchestrator
from stackforge.exceptions import ProviderError
from stackforge.models.params import InitParams
from stackforge.providers import ApplyResult, ObservedResource, ObservedState, Provider, default_registry


def _key_pair(key_type="rsa"):
    key = ciphers.generate_private_key(key_type=key_type)
    return ciphers.private_key_to_pem(key), ciphers.public_key_to_ssh(key.public_key())


@pytest.fixture(scope="session")
def key_pair():
    return _key_pair()


@pytest.fixture(scope="session")
def other_key_pair():
    return _key_pair()


@pytest.fixture(scope="session")
def ed25519_key_pair():
    return _key_pair("ed25519")


@pytest.fixture
def workspace(tmp_path):
    (tmp_path / ".git").mkdir()
    (tmp_path / ".sc" / "stacks").mkdir(parents=True)
    return tmp_path


@pytest.fixture
def stacks_dir(workspace):
    return workspace / ".sc" / "stacks"


def write_profile(root, name, key_pair, **overrides):
    pem, pub = key_pair
    config = {"projectName": "demo", "privateKey": pem, "publicKey": pub}
    config.update(overrides)
    config = {key: value for key, value in config.items() if value is not None}
    path = root / ".sc" / f"cfg.{name}.yaml"
    path.write_text(yaml.safe_dump(config))
    return path


@pytest.fixture
def profile_writer(workspace):
    return functools.partial(write_profile, workspace)


@pytest.fixture
def profile(workspace, key_pair):
    write_profile(workspace, "default", key_pair, credentials={"gcloud": {"project": "demo-project"}})
    return "default"


@pytest.fixture
def store(workspace, profile):
    return SecretStore(workspace, profile)


def write_stack(stacks_root, name, depends_on=(), resources=None, provider="fake", provider_config=None):
    stack_dir = stacks_root / name
    stack_dir.mkdir(parents=True, exist_ok=True)
    document = {"schemaVersion": "1.0", "provider": {"type": provider}}
    if provider_config:
        document["provider"]["config"] = provider_config
    if depends_on:
        document["dependsOn"] = list(depends_on)
    if resources is None:
        resources = {"main": {"type": "thing", "config": {"size": 1}}}
    document["resources"] = resources
    (stack_dir / "server.yaml").write_text(yaml.safe_dump(document, sort_keys=False))
    return stack_dir


@pytest.fixture
def stack_writer(stacks_dir):
    return functools.partial(write_stack, stacks_dir)


def write_secrets(stacks_root, name, values=None, auth=None):
    stack_dir = stacks_root / name
    stack_dir.mkdir(parents=True, exist_ok=True)
    content = {"values": values or {}, "auth": auth or {}}
    path = stack_dir / "secrets.yaml"
    path.write_text(yaml.safe_dump(content))
    return path


@pytest.fixture
def secrets_writer(stacks_dir):
    return functools.partial(write_secrets, stacks_dir)


class FakeBackend:
    """In-memory provider backend whose behaviour tests can script."""

    def __init__(self):
        self.state = {}
        self.calls = []
        self.applied = {}
        self.fail_apply = set()
        self.fail_query = set()
        self.fail_refresh = set()
        self.ignore_cancel = set()
        self.blocked = {}
        self.started = defaultdict(threading.Event)
        self.barrier = None
        self._lock = threading.Lock()

    def record(self, operation, stack_name):
        with self._lock:
            self.calls.append((operation, stack_name))

    def calls_for(self, operation):
        with self._lock:
            return [name for op, name in self.calls if op == operation]

    def block(self, stack_name):
        release = threading.Event()
        self.blocked[stack_name] = release
        self.started[stack_name] = threading.Event()
        return release

    def seed(self, stack_name, resources, outputs=None):
        self.state[stack_name] = {
            "resources": {name: (body[0], body[1]) for name, body in resources.items()},
            "outputs": outputs or {},
        }

    def observed(self, stack_name):
        with self._lock:
            entry = self.state.get(stack_name)
        if entry is None:
            return ObservedState.empty()
        resources = {
            name: ObservedResource(type=rtype, config=config)
            for name, (rtype, config) in entry["resources"].items()
        }
        return ObservedState(resources=resources, outputs=entry["outputs"])


class FakeProvider(Provider):
    name = "fake"

    def __init__(self, backend, binding, credentials, workdir):
        super().__init__(binding, credentials, workdir)
        self.backend = backend

    def query_state(self, stack):
        self.backend.record("query", stack.name)
        if stack.name in self.backend.fail_query:
            raise RuntimeError("backend unavailable")
        return self.backend.observed(stack.name)

    def refresh(self, stack):
        self.backend.record("refresh", stack.name)
        if stack.name in self.backend.fail_refresh:
            raise RuntimeError("refresh failed")
        return self.backend.observed(stack.name)

    def apply(self, stack, context):
        backend = self.backend
        backend.record("apply", stack.name)
        backend.started[stack.name].set()
        if backend.barrier is not None:
            backend.barrier.wait()

        release = backend.blocked.get(stack.name)
        if release is not None:
            while not release.wait(0.01):
                if stack.name not in backend.ignore_cancel:
                    context.checkpoint()
        if stack.name not in backend.ignore_cancel:
            context.checkpoint()

        if stack.name in backend.fail_apply:
            raise ProviderError(f"apply failed for {stack.name}")

        resources = {r.name: (r.type, r.config) for r in context.resources}
        outputs = {r.name: r.config for r in context.resources}
        with backend._lock:
            backend.state[stack.name] = {"resources": resources, "outputs": outputs}
            backend.applied[stack.name] = context
        return ApplyResult(outputs=outputs)


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def registry(backend):
    providers = default_registry()
    providers.register("fake", lambda binding, credentials, workdir: FakeProvider(backend, binding, credentials, workdir))
    return providers


@pytest.fixture
def make_orchestrator(workspace, profile, registry):
    """Build an initialized orchestrator bound to the test workspace."""

    def build(**kwargs):
        kwargs.setdefault("providers", registry)
        orchestrator = Orchestrator(**kwargs)
        orchestrator.init(InitParams(profile=profile, project_root=workspace))
        return orchestrator

    return build
