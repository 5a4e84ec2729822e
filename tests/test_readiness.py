"""Tests for the readiness gate."""

import pytest

from trustsync.errors import ReadinessTimeout
from trustsync.models.config import DiscoveryConfig
from trustsync.services.readiness import IN_CONTAINER_BASE_URL, ReadinessGate, exec_fetch
from tests.conftest import FakeContainer, FakeMachine, FakeRuntime

BASE_URL = "https://step-ca:9000"


class SleepRecorder:
    def __init__(self):
        self.calls = []

    def __call__(self, seconds):
        self.calls.append(seconds)
        return False


@pytest.fixture
def sleeps():
    return SleepRecorder()


def gate_for(fake_ca, sleeps, timeout=300):
    discovery = DiscoveryConfig(bootstrap_timeout_seconds=timeout, readiness_interval_seconds=5)
    return ReadinessGate(discovery, fake_ca.client(), sleep=sleeps)


@pytest.mark.unit
class TestReadinessGate:
    """Test readiness polling."""

    def test_ready_on_first_attempt(self, fake_ca, sleeps):
        assert gate_for(fake_ca, sleeps).wait_until_ready(BASE_URL) == 1
        assert sleeps.calls == []

    def test_ready_on_fourth_attempt(self, fake_ca, sleeps):
        """Test health fails twice, ACME fails once, then both succeed."""
        fake_ca.states = [(False, False), (False, False), (True, False), (True, True)]

        attempts = gate_for(fake_ca, sleeps).wait_until_ready(BASE_URL)

        assert attempts == 4
        assert sleeps.calls == [5, 5, 5]

    def test_health_ok_but_acme_failing_is_not_ready(self, fake_ca, sleeps):
        """Test health alone never satisfies the gate."""
        fake_ca.states = [(True, False)]

        with pytest.raises(ReadinessTimeout) as exc_info:
            gate_for(fake_ca, sleeps, timeout=20).wait_until_ready(BASE_URL)

        assert exc_info.value.attempts == 4
        assert fake_ca.acme_calls == 4

    def test_acme_not_probed_while_health_fails(self, fake_ca, sleeps):
        fake_ca.states = [(False, False), (True, True)]
        gate_for(fake_ca, sleeps).wait_until_ready(BASE_URL)
        assert fake_ca.acme_calls == 1

    def test_attempts_derived_from_budget(self, fake_ca, sleeps):
        """Test timeout / interval attempts are made before giving up."""
        fake_ca.states = [(False, False)]
        with pytest.raises(ReadinessTimeout) as exc_info:
            gate_for(fake_ca, sleeps, timeout=300).wait_until_ready(BASE_URL)
        assert exc_info.value.attempts == 60
        assert fake_ca.health_calls == 60

    def test_explicit_timeout_overrides_default(self, fake_ca, sleeps):
        fake_ca.states = [(False, False)]
        with pytest.raises(ReadinessTimeout):
            gate_for(fake_ca, sleeps).wait_until_ready(BASE_URL, timeout_seconds=10)
        assert fake_ca.health_calls == 2

    def test_shutdown_interrupts_wait(self, fake_ca):
        """Test a stop request ends polling early."""
        fake_ca.states = [(False, False)]
        gate = ReadinessGate(DiscoveryConfig(), fake_ca.client(), sleep=lambda seconds: True)
        with pytest.raises(ReadinessTimeout) as exc_info:
            gate.wait_until_ready(BASE_URL)
        assert exc_info.value.attempts == 1

    def test_check_once_reports_partial_state(self, fake_ca, sleeps):
        fake_ca.states = [(True, False)]
        probe = gate_for(fake_ca, sleeps).check_once(BASE_URL)
        assert probe.health_ok is True
        assert probe.acme_ok is False
        assert probe.ready is False


@pytest.mark.unit
class TestInContainerProbe:
    """Test readiness probing through exec inside the CA container."""

    def test_exec_fetch_probes_localhost(self, sleeps):
        """Test both endpoints are fetched with curl inside the CA."""
        health = f"curl -k -s -f --max-time 5 {IN_CONTAINER_BASE_URL}/health"
        directory = f"curl -k -s -f --max-time 5 {IN_CONTAINER_BASE_URL}/acme/acme/directory"
        machine = FakeMachine(
            executables={"curl"},
            responses={health: ('{"status":"ok"}', 0), directory: ('{"newNonce": "x"}', 0)},
        )
        runtime = FakeRuntime([FakeContainer("ca", "step-ca", machine=machine)])
        gate = ReadinessGate(DiscoveryConfig(), http_client=None, sleep=sleeps)

        attempts = gate.wait_until_ready(IN_CONTAINER_BASE_URL, fetch=exec_fetch(runtime, "ca", 5))

        assert attempts == 1
        assert machine.scripts == [health, directory]

    def test_exec_fetch_failure_is_not_ready(self, sleeps):
        runtime = FakeRuntime([FakeContainer("ca", "step-ca", machine=FakeMachine(executables=set()))])
        gate = ReadinessGate(DiscoveryConfig(), http_client=None, sleep=sleeps)
        probe = gate.check_once(IN_CONTAINER_BASE_URL, exec_fetch(runtime, "ca", 5))
        assert probe.ready is False
