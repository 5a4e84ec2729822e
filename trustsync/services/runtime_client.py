"""Container runtime access (list, inspect, exec, copy, events)."""

import io
import logging
import posixpath
import tarfile
import threading
import time
from datetime import datetime
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

import docker
from docker.errors import DockerException, NotFound

from trustsync.errors import RuntimeUnavailable
from trustsync.models.ca import ContainerEvent, ContainerInfo
from trustsync.models.config import RuntimeSettings

logger = logging.getLogger("trustsync")


def container_info_from_attrs(attrs: Dict[str, Any]) -> ContainerInfo:
    """
    Convert a runtime inspect payload into a ContainerInfo.

    Args:
        attrs: Output of ``GET /containers/{id}/json``

    Returns:
        Parsed container information
    """
    config = attrs.get("Config") or {}
    state = attrs.get("State") or {}
    network = attrs.get("NetworkSettings") or {}

    ports = []
    for key in (network.get("Ports") or {}).keys():
        number, _, _ = key.partition("/")
        if number.isdigit():
            ports.append(int(number))
    for key in (config.get("ExposedPorts") or {}).keys():
        number, _, _ = key.partition("/")
        if number.isdigit() and int(number) not in ports:
            ports.append(int(number))

    status = state.get("Status") or ("running" if state.get("Running") else "unknown")

    return ContainerInfo(
        id=attrs.get("Id", ""),
        name=(attrs.get("Name") or "").lstrip("/"),
        labels=config.get("Labels") or {},
        env=config.get("Env") or [],
        ports=sorted(ports),
        status=status,
    )


class EventStream:
    """Iterator over runtime events that can be closed from another thread."""

    def __init__(self, raw_stream):
        self._raw = raw_stream
        self._closed = False

    def __iter__(self) -> Iterator[ContainerEvent]:
        try:
            for raw in self._raw:
                event = self._parse(raw)
                if event is not None:
                    yield event
        except (DockerException, OSError) as e:
            if self._closed:
                return
            raise RuntimeUnavailable(f"Event stream interrupted: {e}") from e

    @staticmethod
    def _parse(raw: Dict[str, Any]) -> Optional[ContainerEvent]:
        actor = raw.get("Actor") or {}
        container_id = actor.get("ID") or raw.get("id")
        action = raw.get("Action") or raw.get("status")
        if not container_id or not action:
            return None
        timestamp = raw.get("time")
        return ContainerEvent(
            action=action,
            container_id=container_id,
            name=(actor.get("Attributes") or {}).get("name", ""),
            time=datetime.fromtimestamp(timestamp) if timestamp else None,
        )

    def close(self) -> None:
        self._closed = True
        try:
            self._raw.close()
        except (DockerException, OSError) as e:
            logger.debug(f"Error closing event stream: {e}")

    @property
    def closed(self) -> bool:
        return self._closed


class RuntimeClient:
    """Read/exec facade over the Docker Engine API.

    Every transport failure surfaces as :class:`RuntimeUnavailable`; retry
    policy belongs to the callers.
    """

    def __init__(self, client: "docker.DockerClient"):
        self._client = client

    @classmethod
    def connect(cls, settings: RuntimeSettings, base_url: Optional[str] = None) -> "RuntimeClient":
        """
        Connect to the runtime.

        Args:
            settings: Runtime settings
            base_url: Explicit daemon URL (e.g. taken from a docker context);
                falls back to ``settings.docker_host`` and then the environment

        Returns:
            Connected client

        Raises:
            RuntimeUnavailable: If the daemon cannot be reached
        """
        url = base_url or settings.docker_host
        try:
            if url:
                client = docker.DockerClient(base_url=url, timeout=settings.timeout_seconds)
            else:
                client = docker.from_env(timeout=settings.timeout_seconds)
        except (DockerException, OSError) as e:
            raise RuntimeUnavailable(f"Cannot connect to container runtime ({url or 'environment'}): {e}") from e
        logger.debug(f"Connected to container runtime at {url or 'environment default'}")
        return cls(client)

    def ping(self) -> None:
        try:
            self._client.ping()
        except (DockerException, OSError) as e:
            raise RuntimeUnavailable(f"Container runtime not responding: {e}") from e

    def list_containers(self, filters: Optional[Dict[str, Any]] = None) -> List[ContainerInfo]:
        """
        List running containers.

        Args:
            filters: Runtime filters, e.g. ``{"label": "com.smallstep.step-ca"}``

        Returns:
            Matching containers in runtime order
        """
        try:
            containers = self._client.containers.list(filters=filters or {}, ignore_removed=True)
        except (DockerException, OSError) as e:
            raise RuntimeUnavailable(f"Failed to list containers: {e}") from e
        return [container_info_from_attrs(c.attrs) for c in containers]

    def inspect(self, container_id: str) -> Optional[ContainerInfo]:
        """
        Inspect a container.

        Returns:
            Container details, or None if the container no longer exists
        """
        try:
            container = self._client.containers.get(container_id)
        except NotFound:
            return None
        except (DockerException, OSError) as e:
            raise RuntimeUnavailable(f"Failed to inspect container {container_id}: {e}") from e
        return container_info_from_attrs(container.attrs)

    def is_running(self, container_id: str) -> bool:
        info = self.inspect(container_id)
        return info is not None and info.running

    def stream_events(self, filters: Optional[Dict[str, Any]] = None) -> EventStream:
        """
        Subscribe to the live event stream.

        Args:
            filters: Runtime event filters, e.g. ``{"type": "container", "event": "start"}``

        Returns:
            Closeable, infinite iterator of container events
        """
        try:
            raw = self._client.events(decode=True, filters=filters or {})
        except (DockerException, OSError) as e:
            raise RuntimeUnavailable(f"Failed to subscribe to runtime events: {e}") from e
        return EventStream(raw)

    def exec(self, container_id: str, command: List[str], user: str = "root") -> Tuple[str, int]:
        """
        Run a command inside a container.

        Args:
            container_id: Target container
            command: Argument vector
            user: User to run as

        Returns:
            Tuple of (combined output, exit code). A vanished container is
            reported as exit code 125 with an explanatory message.
        """
        try:
            container = self._client.containers.get(container_id)
            result = container.exec_run(command, user=user)
        except NotFound as e:
            return f"container not found: {e}", 125
        except (DockerException, OSError) as e:
            raise RuntimeUnavailable(f"Failed to exec in container {container_id}: {e}") from e
        output = result.output.decode("utf-8", errors="replace") if result.output else ""
        return output, result.exit_code

    def copy_file_into(self, container_id: str, content: bytes, remote_path: str, mode: int = 0o644) -> bool:
        """
        Place a file inside a container.

        Args:
            container_id: Target container
            content: File content
            remote_path: Absolute destination path
            mode: File permission bits

        Returns:
            True if the runtime accepted the archive
        """
        directory, name = posixpath.split(remote_path)
        buffer = io.BytesIO()
        with tarfile.open(fileobj=buffer, mode="w") as tar:
            info = tarfile.TarInfo(name=name)
            info.size = len(content)
            info.mode = mode
            info.mtime = int(time.time())
            tar.addfile(info, io.BytesIO(content))
        buffer.seek(0)

        try:
            container = self._client.containers.get(container_id)
            return bool(container.put_archive(directory or "/", buffer.getvalue()))
        except NotFound:
            return False
        except (DockerException, OSError) as e:
            raise RuntimeUnavailable(f"Failed to copy {remote_path} into {container_id}: {e}") from e

    def close(self) -> None:
        try:
            self._client.close()
        except (DockerException, OSError) as e:
            logger.debug(f"Error closing runtime client: {e}")


class RuntimeHandle:
    """Lazily connected runtime that can be re-pointed at another daemon.

    The host variant follows the operator's active context, so the daemon
    URL may change between passes. Consumers hold the handle, never a
    concrete client.
    """

    def __init__(self, connect: Callable[[Optional[str]], RuntimeClient], docker_host: Optional[str] = None):
        """
        Initialize handle.

        Args:
            connect: Builds a client for a daemon URL (None = environment default)
            docker_host: Initial daemon URL
        """
        self._connect = connect
        self._docker_host = docker_host
        self._client: Optional[RuntimeClient] = None
        self._lock = threading.Lock()

    @property
    def docker_host(self) -> Optional[str]:
        return self._docker_host

    @property
    def client(self) -> RuntimeClient:
        """Connected client, connecting on first use."""
        with self._lock:
            if self._client is None:
                self._client = self._connect(self._docker_host)
            return self._client

    def rebind(self, docker_host: Optional[str]) -> bool:
        """
        Point the handle at another daemon.

        Returns:
            True if the daemon URL changed
        """
        with self._lock:
            if docker_host == self._docker_host and self._client is not None:
                return False
            changed = docker_host != self._docker_host
            if changed:
                logger.info(f"Switching container runtime to {docker_host or 'environment default'}")
            old, self._client = self._client, None
            self._docker_host = docker_host
        if old is not None and changed:
            old.close()
        return changed

    def list_containers(self, filters: Optional[Dict[str, Any]] = None) -> List[ContainerInfo]:
        return self.client.list_containers(filters)

    def inspect(self, container_id: str) -> Optional[ContainerInfo]:
        return self.client.inspect(container_id)

    def is_running(self, container_id: str) -> bool:
        return self.client.is_running(container_id)

    def stream_events(self, filters: Optional[Dict[str, Any]] = None) -> EventStream:
        return self.client.stream_events(filters)

    def exec(self, container_id: str, command: List[str], user: str = "root") -> Tuple[str, int]:
        return self.client.exec(container_id, command, user)

    def copy_file_into(self, container_id: str, content: bytes, remote_path: str, mode: int = 0o644) -> bool:
        return self.client.copy_file_into(container_id, content, remote_path, mode)

    def close(self) -> None:
        with self._lock:
            client, self._client = self._client, None
        if client is not None:
            client.close()
