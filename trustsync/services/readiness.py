"""Readiness gate: wait until step-ca serves both health and ACME directory."""

import json
import logging
from typing import Callable, List, NamedTuple, Optional, Protocol, Tuple

import httpx

from trustsync.errors import ReadinessTimeout, RuntimeUnavailable
from trustsync.models.ca import CA_PORT
from trustsync.models.config import DiscoveryConfig
from trustsync.utils.retry import RetryCancelled, RetryExhausted, retry

logger = logging.getLogger("trustsync")

HEALTH_PATH = "/health"
ACME_DIRECTORY_PATH = "/acme/acme/directory"
IN_CONTAINER_BASE_URL = f"https://localhost:{CA_PORT}"

# Returns (2xx received, response body)
Fetch = Callable[[str], Tuple[bool, str]]


class ReadinessProbe(NamedTuple):
    """Result of one readiness attempt."""

    health_ok: bool
    acme_ok: bool

    @property
    def ready(self) -> bool:
        return self.health_ok and self.acme_ok


class ContainerExecutor(Protocol):
    def exec(self, container_id: str, command: List[str], user: str = "root") -> Tuple[str, int]: ...


def build_ca_http_client(discovery: DiscoveryConfig) -> httpx.Client:
    """HTTP client for talking to a CA that is not trusted yet."""
    return httpx.Client(verify=False, timeout=discovery.request_timeout_seconds)


def http_fetch(client: httpx.Client) -> Fetch:
    """Fetch over the network from this process."""

    def fetch(url: str) -> Tuple[bool, str]:
        try:
            response = client.get(url)
        except httpx.HTTPError as e:
            logger.debug(f"GET {url} failed: {e}")
            return False, ""
        return response.is_success, response.text

    return fetch


def exec_fetch(runtime: ContainerExecutor, container_id: str, timeout_seconds: float) -> Fetch:
    """
    Fetch by running curl inside the CA container.

    Used by the host variant, where the CA's container name does not
    resolve from the host network. URLs should be built on
    :data:`IN_CONTAINER_BASE_URL`.
    """

    def fetch(url: str) -> Tuple[bool, str]:
        command = ["curl", "-k", "-s", "-f", "--max-time", str(int(timeout_seconds)), url]
        try:
            output, exit_code = runtime.exec(container_id, command, user="")
        except RuntimeUnavailable as e:
            logger.debug(f"In-container GET {url} failed: {e}")
            return False, ""
        return exit_code == 0, output

    return fetch


class ReadinessGate:
    """Bounded polling until the CA is cryptographically operational."""

    def __init__(
        self,
        discovery: DiscoveryConfig,
        http_client: Optional[httpx.Client] = None,
        sleep: Optional[Callable[[float], bool]] = None,
    ):
        """
        Initialize readiness gate.

        Args:
            discovery: Provides timeout budget, interval and per-call timeout
            http_client: Client used for probing; created on demand if None
            sleep: Interruptible wait, returns True when shutdown was requested
        """
        self.discovery = discovery
        self.http = http_client or build_ca_http_client(discovery)
        self._sleep = sleep

    def check_once(self, base_url: str, fetch: Optional[Fetch] = None) -> ReadinessProbe:
        """
        Probe health and ACME directory once.

        Args:
            base_url: CA base URL
            fetch: Alternative transport; defaults to this gate's HTTP client

        Returns:
            Probe result; ACME is only checked when health succeeded
        """
        fetch = fetch or http_fetch(self.http)

        health_ok, _ = fetch(f"{base_url}{HEALTH_PATH}")
        if not health_ok:
            return ReadinessProbe(False, False)

        directory_ok, body = fetch(f"{base_url}{ACME_DIRECTORY_PATH}")
        try:
            acme_ok = directory_ok and "newNonce" in json.loads(body)
        except (ValueError, TypeError) as e:
            logger.debug(f"ACME directory at {base_url} is not valid JSON: {e}")
            acme_ok = False

        return ReadinessProbe(True, acme_ok)

    def wait_until_ready(
        self, base_url: str, timeout_seconds: Optional[int] = None, fetch: Optional[Fetch] = None
    ) -> int:
        """
        Poll until a single attempt sees both health and ACME directory ready.

        Args:
            base_url: CA base URL
            timeout_seconds: Budget; defaults to the configured bootstrap timeout
            fetch: Alternative transport (see :func:`exec_fetch`)

        Returns:
            Number of attempts used

        Raises:
            ReadinessTimeout: If the budget was exhausted (or shutdown interrupted the wait)
        """
        budget = timeout_seconds or self.discovery.bootstrap_timeout_seconds
        interval = self.discovery.readiness_interval_seconds
        max_attempts = max(1, int(budget // interval))

        logger.info(f"Waiting for step-ca at {base_url} (timeout: {budget}s)...")

        def attempt(number: int) -> ReadinessProbe:
            probe = self.check_once(base_url, fetch)
            if probe.ready:
                return probe
            if probe.health_ok:
                logger.info(f"step-ca health OK, but ACME endpoint not ready yet (attempt {number}/{max_attempts})")
            else:
                logger.info(f"step-ca health endpoint not ready (attempt {number}/{max_attempts})")
            return probe

        kwargs = {"sleep": self._sleep} if self._sleep else {}
        try:
            _, attempts = retry(
                attempt, interval=interval, max_attempts=max_attempts, predicate=lambda p: p.ready, **kwargs
            )
        except RetryCancelled as e:
            logger.info(f"Stopped waiting for step-ca at {base_url} (shutdown requested)")
            raise ReadinessTimeout(base_url, e.attempts) from e
        except RetryExhausted as e:
            logger.error(f"step-ca is unavailable after {e.attempts} attempts")
            raise ReadinessTimeout(base_url, e.attempts) from e

        logger.info(f"step-ca is fully available (health + ACME endpoints ready) after {attempts} attempt(s)")
        return attempts
