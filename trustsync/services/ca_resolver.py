"""Tiered discovery of the step-ca container."""

import logging
from typing import Callable, List, Optional, Protocol, Tuple

from trustsync.models.ca import CA_PORT, ContainerInfo
from trustsync.models.config import DiscoveryConfig

logger = logging.getLogger("trustsync")

# Highest preference first.
CANONICAL_LABEL = "com.smallstep.step-ca"
GENERIC_LABEL = "com.github.step-ca.step-ca"
LEGACY_LABEL = "com.github.jrcs.letsencrypt_step_ca_companion.step_ca"
LABEL_PREFERENCE = (CANONICAL_LABEL, GENERIC_LABEL, LEGACY_LABEL)

NAME_SUFFIX = "step-ca"
ENV_PREFIX = "DOCKER_STEPCA_"


class ContainerLister(Protocol):
    def list_containers(self, filters: Optional[dict] = None) -> List[ContainerInfo]: ...


def has_ca_name(container: ContainerInfo) -> bool:
    return container.name.lower().endswith(NAME_SUFFIX)


Rule = Tuple[str, Callable[[ContainerInfo], bool]]

HEURISTIC_RULES: List[Rule] = [
    (
        f"name ends with '{NAME_SUFFIX}' and declares {ENV_PREFIX}* variables",
        lambda c: has_ca_name(c) and c.has_env_prefix(ENV_PREFIX),
    ),
    (
        f"name ends with '{NAME_SUFFIX}' and exposes port {CA_PORT}",
        lambda c: has_ca_name(c) and c.publishes_port(CA_PORT),
    ),
    (
        f"name ends with '{NAME_SUFFIX}'",
        has_ca_name,
    ),
]


def first_match(containers: List[ContainerInfo], rules: List[Rule]) -> Optional[Tuple[ContainerInfo, str]]:
    """
    Evaluate rules top-down; the first rule matching any container wins.

    Args:
        containers: Candidate containers, in runtime order
        rules: Ordered ``(description, predicate)`` pairs

    Returns:
        Tuple of the matched container and the rule description, or None
    """
    for description, predicate in rules:
        for container in containers:
            if predicate(container):
                return container, description
    return None


class CAResolver:
    """Resolve which running container is the certificate authority."""

    def __init__(self, runtime: ContainerLister, discovery: DiscoveryConfig):
        """
        Initialize resolver.

        Args:
            runtime: Runtime client used for container listing
            discovery: Discovery configuration (declared name)
        """
        self.runtime = runtime
        self.discovery = discovery

    def resolve(self) -> Optional[str]:
        """
        Return the CA container id, or None when no tier matches.

        Raises:
            RuntimeUnavailable: If the runtime cannot be queried
        """
        container = self.resolve_container()
        return container.id if container else None

    def resolve_container(self) -> Optional[ContainerInfo]:
        """
        Run the label, declared-name and heuristic tiers in order.

        Returns:
            The CA container, or None when nothing matches
        """
        container = self._by_label()
        if container is None:
            container = self._by_declared_name()
        if container is None:
            container = self._by_heuristics()

        if container is None:
            logger.info("No step-ca container found (tried labels, declared name, auto-detection)")
        return container

    def _by_label(self) -> Optional[ContainerInfo]:
        for label in LABEL_PREFERENCE:
            matches = [c for c in self.runtime.list_containers(filters={"label": label}) if c.running]
            if matches:
                logger.debug(f"step-ca found by label {label}: {matches[0].name}")
                return matches[0]
        return None

    def _by_declared_name(self) -> Optional[ContainerInfo]:
        name = self.discovery.container_name
        if not name:
            return None

        for container in self.runtime.list_containers(filters={"name": name}):
            if container.name == name and container.running:
                logger.debug(f"step-ca found by declared name: {name}")
                return container

        logger.warning(f"Container '{name}' not found, trying auto-detection")
        return None

    def _by_heuristics(self) -> Optional[ContainerInfo]:
        candidates = [c for c in self.runtime.list_containers() if c.running]
        match = first_match(candidates, HEURISTIC_RULES)
        if match is None:
            return None
        container, description = match
        logger.debug(f"step-ca auto-detected ({description}): {container.name}")
        return container
