"""Pytest configuration and shared fixtures."""

import shlex
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Set, Tuple

import httpx
import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID
from fastapi.testclient import TestClient

from trustsync.models.ca import CA_PORT, ContainerInfo
from trustsync.models.config import AppConfig, DiscoveryConfig, HostSettings, TrustSettings
from trustsync.services.status_service import StatusService

UBUNTU_RELEASE = 'NAME="Ubuntu"\nVERSION_ID="22.04"\nID=ubuntu\nID_LIKE=debian\n'
ALPINE_RELEASE = 'NAME="Alpine Linux"\nID=alpine\nVERSION_ID=3.19.0\n'
FEDORA_RELEASE = 'NAME="Fedora Linux"\nID=fedora\nVERSION_ID=39\n'


def make_certificate(common_name: str, is_ca: bool = True) -> str:
    """Create a self-signed PEM certificate."""
    key = ec.generate_private_key(ec.SECP256R1())
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
    now = datetime.now(timezone.utc)
    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(days=1))
        .not_valid_after(now + timedelta(days=365))
        .add_extension(x509.BasicConstraints(ca=is_ca, path_length=None), critical=True)
        .sign(key, hashes.SHA256())
    )
    return cert.public_bytes(serialization.Encoding.PEM).decode("ascii")


def sha256_fingerprint(pem: str) -> str:
    return x509.load_pem_x509_certificate(pem.encode("ascii")).fingerprint(hashes.SHA256()).hex()


class FakeMachine:
    """A container or host: files, installed executables and scripted command results."""

    def __init__(
        self,
        os_release: Optional[str] = UBUNTU_RELEASE,
        executables: Optional[Set[str]] = None,
        files: Optional[Dict[str, str]] = None,
        responses: Optional[Dict[str, Tuple[str, int]]] = None,
        responsive_after: int = 1,
    ):
        self.files: Dict[str, str] = dict(files or {})
        if os_release is not None:
            self.files["/etc/os-release"] = os_release
        default_tools = {"sh", "cat", "mkdir", "echo", "apt-get", "update-ca-certificates", "curl"}
        self.executables: Set[str] = default_tools if executables is None else set(executables)
        self.responses: Dict[str, Tuple[str, int]] = dict(responses or {})
        self.responsive_after = responsive_after
        self.echo_calls = 0
        self.scripts: List[str] = []
        self.privileged: List[str] = []

    def run_script(self, script: str, privileged: bool = False) -> Tuple[str, int]:
        self.scripts.append(script)
        if privileged:
            self.privileged.append(script)
        if script in self.responses:
            return self.responses[script]

        argv = shlex.split(script)
        program = argv[0]
        if script == "echo ready":
            self.echo_calls += 1
            return ("ready\n", 0) if self.echo_calls >= self.responsive_after else ("", 1)
        if program == "command" and argv[1] == "-v":
            return ("", 0) if argv[2] in self.executables else ("", 1)
        if program not in self.executables:
            return (f"sh: {program}: not found\n", 127)
        if program == "cat":
            path = argv[1]
            return (self.files[path], 0) if path in self.files else (f"cat: {path}: No such file or directory\n", 1)
        if program == "apt-get":
            self.executables.add("update-ca-certificates")
        return ("", 0)

    def mutations(self) -> List[str]:
        """Scripts that would change the machine."""
        readonly = ("echo ", "cat ", "command -v ", "curl ")
        return [s for s in self.scripts if not s.startswith(readonly)]


class FakeShell:
    """TargetShell over a FakeMachine, used for host targets."""

    def __init__(self, machine: FakeMachine, running: bool = True):
        self.machine = machine
        self.running = running

    def is_running(self) -> bool:
        return self.running

    def run(self, command: str, privileged: bool = False) -> Tuple[str, int]:
        return self.machine.run_script(command, privileged)

    def read_file(self, path: str) -> Optional[str]:
        return self.machine.files.get(path)

    def which(self, executable: str) -> bool:
        return executable in self.machine.executables

    def write_file(self, path: str, content: str) -> Tuple[bool, str]:
        self.machine.files[path] = content
        self.machine.scripts.append(f"write {path}")
        return True, path


class FakeContainer:
    def __init__(
        self,
        container_id: str,
        name: str,
        labels: Optional[Dict[str, str]] = None,
        env: Optional[Dict[str, str]] = None,
        ports: Optional[List[int]] = None,
        running: bool = True,
        machine: Optional[FakeMachine] = None,
    ):
        self.id = container_id
        self.name = name
        self.labels = labels or {}
        self.env = env or {}
        self.ports = ports or []
        self.running = running
        self.machine = machine or FakeMachine()

    def info(self) -> ContainerInfo:
        return ContainerInfo(
            id=self.id,
            name=self.name,
            labels=self.labels,
            env=[f"{k}={v}" for k, v in self.env.items()],
            ports=self.ports,
            status="running" if self.running else "exited",
        )


class FakeRuntime:
    """In-memory stand-in for RuntimeClient / RuntimeHandle."""

    def __init__(self, containers: Optional[List[FakeContainer]] = None):
        self.containers: Dict[str, FakeContainer] = {c.id: c for c in containers or []}
        self.exec_log: List[Tuple[str, List[str], str]] = []
        self.events: List = []
        self.list_calls = 0
        self.subscriptions = 0
        self.unavailable = False
        self.rebinds: List[Optional[str]] = []
        self.closed = False

    def add(self, container: FakeContainer) -> FakeContainer:
        self.containers[container.id] = container
        return container

    def _check(self) -> None:
        if self.unavailable:
            from trustsync.errors import RuntimeUnavailable

            raise RuntimeUnavailable("Cannot connect to the Docker daemon")

    def list_containers(self, filters: Optional[dict] = None) -> List[ContainerInfo]:
        self._check()
        self.list_calls += 1
        filters = filters or {}
        result = []
        for container in self.containers.values():
            if not container.running:
                continue
            if "label" in filters and filters["label"] not in container.labels:
                continue
            if "name" in filters and filters["name"] not in container.name:
                continue
            result.append(container.info())
        return result

    def inspect(self, container_id: str) -> Optional[ContainerInfo]:
        self._check()
        container = self.containers.get(container_id)
        return container.info() if container else None

    def is_running(self, container_id: str) -> bool:
        info = self.inspect(container_id)
        return info is not None and info.running

    def exec(self, container_id: str, command: List[str], user: str = "root") -> Tuple[str, int]:
        self._check()
        self.exec_log.append((container_id, command, user))
        container = self.containers.get(container_id)
        if container is None or not container.running:
            return "container not found", 125
        if command[:2] == ["sh", "-c"]:
            return container.machine.run_script(command[2], privileged=True)
        return container.machine.run_script(shlex.join(command))

    def copy_file_into(self, container_id: str, content: bytes, remote_path: str, mode: int = 0o644) -> bool:
        self._check()
        container = self.containers.get(container_id)
        if container is None:
            return False
        container.machine.files[remote_path] = content.decode("utf-8")
        container.machine.scripts.append(f"write {remote_path}")
        return True

    def stream_events(self, filters: Optional[dict] = None):
        self._check()
        events, self.events = self.events, []
        self.subscriptions += 1
        return FakeEventStream(events)

    def rebind(self, docker_host: Optional[str]) -> bool:
        self.rebinds.append(docker_host)
        return False

    def close(self) -> None:
        self.closed = True


class FakeEventStream:
    def __init__(self, events):
        self.events = events
        self.closed = False

    def __iter__(self):
        for event in self.events:
            if self.closed:
                return
            yield event

    def close(self) -> None:
        self.closed = True


class FakeCA:
    """Scriptable step-ca HTTP surface for httpx.MockTransport."""

    def __init__(self, root_pem: str):
        self.root_pem = root_pem
        self.roots: List[str] = [root_pem]
        # One (health_ok, acme_ok) pair per readiness attempt; the last one repeats.
        self.states: List[Tuple[bool, bool]] = [(True, True)]
        self.health_calls = 0
        self.acme_calls = 0
        self.roots_calls = 0
        self.roots_status = 200

    def _state(self) -> Tuple[bool, bool]:
        index = min(self.health_calls - 1, len(self.states) - 1)
        return self.states[index]

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path == "/health":
            self.health_calls += 1
            health_ok, _ = self._state()
            if not health_ok:
                raise httpx.ConnectError("connection refused", request=request)
            return httpx.Response(200, json={"status": "ok"})
        if path == "/acme/acme/directory":
            self.acme_calls += 1
            _, acme_ok = self._state()
            if not acme_ok:
                return httpx.Response(503, text="not ready")
            return httpx.Response(200, json={"newNonce": "https://ca/acme/acme/new-nonce", "newAccount": "x"})
        if path == "/roots":
            self.roots_calls += 1
            if self.roots_status != 200:
                return httpx.Response(self.roots_status, text="error")
            return httpx.Response(200, json={"crts": self.roots})
        return httpx.Response(404)

    def client(self) -> httpx.Client:
        return httpx.Client(transport=httpx.MockTransport(self.handler), verify=False, timeout=5)


def no_sleep(seconds: float) -> bool:
    return False


@pytest.fixture(scope="session")
def root_pem():
    """Root certificate served by the fake CA."""
    return make_certificate("Test Root CA")


@pytest.fixture(scope="session")
def intermediate_pem():
    """Intermediate certificate stored inside the fake CA container."""
    return make_certificate("Test Intermediate CA")


@pytest.fixture
def fake_ca(root_pem):
    """Fake CA HTTP surface."""
    return FakeCA(root_pem)


@pytest.fixture
def ca_http(fake_ca):
    """httpx client routed to the fake CA."""
    client = fake_ca.client()
    yield client
    client.close()


@pytest.fixture
def ca_container(root_pem, intermediate_pem):
    """A labelled step-ca container holding its certificates."""
    machine = FakeMachine(
        os_release=ALPINE_RELEASE,
        executables={"sh", "cat", "step", "curl"},
        files={
            "/home/step/certs/root_ca.crt": root_pem,
            "/home/step/certs/intermediate_ca.crt": intermediate_pem,
        },
        responses={
            "step certificate fingerprint /home/step/certs/root_ca.crt": (sha256_fingerprint(root_pem) + "\n", 0),
        },
    )
    return FakeContainer(
        "ca0000000000aaaa",
        "step-ca",
        labels={"com.smallstep.step-ca": "true"},
        ports=[CA_PORT],
        machine=machine,
    )


@pytest.fixture
def runtime(ca_container):
    """Runtime with the CA container and two opted-in application containers."""
    return FakeRuntime(
        [
            ca_container,
            FakeContainer("app1000000000bbbb", "web", env={"STEP_CA_TRUST": "true"}),
            FakeContainer(
                "app2000000000cccc",
                "worker",
                env={"STEP_CA_TRUST": "1"},
                machine=FakeMachine(os_release=FEDORA_RELEASE, executables={"sh", "cat", "mkdir", "dnf", "update-ca-trust"}),
            ),
            FakeContainer("app3000000000dddd", "db", env={"STEP_CA_TRUST": "false"}),
        ]
    )


@pytest.fixture
def fast_config():
    """Configuration with short intervals for tests."""
    return AppConfig(
        discovery=DiscoveryConfig(bootstrap_timeout_seconds=20, readiness_interval_seconds=5),
        trust=TrustSettings(responsiveness_attempts=3, responsiveness_interval_seconds=0.01),
        host=HostSettings(user="alice", context="default", use_sudo=False),
    )


@pytest.fixture
def status_service():
    """Fresh status registry."""
    return StatusService()


@pytest.fixture
def client(status_service):
    """Create FastAPI test client backed by an isolated status registry."""
    from trustsync.api.dependencies import get_status_service
    from main import app

    app.dependency_overrides[get_status_service] = lambda: status_service

    client = TestClient(app)
    yield client

    # Clean up
    app.dependency_overrides.clear()
