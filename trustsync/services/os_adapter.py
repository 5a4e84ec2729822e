"""OS family detection and per-family trust-store layout."""

import logging
import re
from typing import Callable, Dict, List, Optional, Tuple

from trustsync.errors import ConfigurationError
from trustsync.models.os_profile import OSProfile

logger = logging.getLogger("trustsync")

UNKNOWN_OS = "unknown"
RELEASE_FILE = "/etc/os-release"

_DEBIAN_ANCHORS = "/usr/local/share/ca-certificates"
_PKI_ANCHORS = "/etc/pki/ca-trust/source/anchors"

OS_PROFILES: Dict[str, OSProfile] = {
    profile.os_family: profile
    for profile in (
        OSProfile(
            os_family="ubuntu",
            package_manager="apt-get",
            install_command="apt-get update && apt-get install -y {package}",
            trust_anchor_dir=_DEBIAN_ANCHORS,
            trust_update_command="update-ca-certificates",
        ),
        OSProfile(
            os_family="debian",
            package_manager="apt-get",
            install_command="apt-get update && apt-get install -y {package}",
            trust_anchor_dir=_DEBIAN_ANCHORS,
            trust_update_command="update-ca-certificates",
        ),
        OSProfile(
            os_family="alpine",
            package_manager="apk",
            install_command="apk add --no-cache {package}",
            trust_anchor_dir=_DEBIAN_ANCHORS,
            trust_update_command="update-ca-certificates",
        ),
        OSProfile(
            os_family="rhel",
            package_manager="yum",
            install_command="yum install -y {package}",
            trust_anchor_dir=_PKI_ANCHORS,
            trust_update_command="update-ca-trust",
        ),
        OSProfile(
            os_family="fedora",
            package_manager="dnf",
            install_command="dnf install -y {package}",
            trust_anchor_dir=_PKI_ANCHORS,
            trust_update_command="update-ca-trust",
        ),
        OSProfile(
            os_family="arch",
            package_manager="pacman",
            install_command="pacman -Sy --noconfirm {package}",
            trust_anchor_dir="/etc/ca-certificates/trust-source/anchors",
            trust_update_command="trust extract-compat",
        ),
        OSProfile(
            os_family="opensuse",
            package_manager="zypper",
            install_command="zypper --non-interactive install {package}",
            trust_anchor_dir="/etc/pki/trust/anchors",
            trust_update_command="update-ca-certificates",
        ),
    )
}

OS_ALIASES = {"centos": "rhel", "suse": "opensuse"}

# Ordered top-down; the first matching rule decides.
RELEASE_RULES: List[Tuple[re.Pattern, str]] = [
    (re.compile(r"ubuntu", re.IGNORECASE), "ubuntu"),
    (re.compile(r"debian", re.IGNORECASE), "debian"),
    (re.compile(r"alpine", re.IGNORECASE), "alpine"),
    (re.compile(r"centos|rhel|red hat", re.IGNORECASE), "rhel"),
    (re.compile(r"fedora", re.IGNORECASE), "fedora"),
    (re.compile(r"opensuse|suse", re.IGNORECASE), "opensuse"),
    (re.compile(r"arch", re.IGNORECASE), "arch"),
]

PACKAGE_MANAGER_RULES: List[Tuple[str, str]] = [
    ("apt-get", "debian"),
    ("apk", "alpine"),
    ("yum", "rhel"),
    ("dnf", "fedora"),
    ("pacman", "arch"),
    ("zypper", "opensuse"),
]


def get_profile(os_family: str) -> Optional[OSProfile]:
    """
    Look up the trust-store profile of an OS family.

    Args:
        os_family: Detected family name (aliases such as ``centos`` accepted)

    Returns:
        Profile, or None for unsupported families
    """
    family = os_family.lower()
    return OS_PROFILES.get(OS_ALIASES.get(family, family))


def detect_from_release(release_text: str) -> Optional[str]:
    """Match release-info content against the release rules."""
    if not release_text:
        return None
    for pattern, family in RELEASE_RULES:
        if pattern.search(release_text):
            return family
    return None


def detect_from_package_managers(has_executable: Callable[[str], bool]) -> Optional[str]:
    """Probe package managers in rule order; the first one present decides."""
    for executable, family in PACKAGE_MANAGER_RULES:
        if has_executable(executable):
            return family
    return None


def detect_os(read_release: Callable[[], Optional[str]], has_executable: Callable[[str], bool]) -> str:
    """
    Detect the OS family of a target.

    Args:
        read_release: Returns the release-info file content, or None if absent
        has_executable: Tells whether an executable exists on the target

    Returns:
        OS family name, or ``unknown``
    """
    family = detect_from_release(read_release() or "")
    if family is None:
        family = detect_from_package_managers(has_executable)
    return family or UNKNOWN_OS


def validate_os_table(profiles: Optional[Dict[str, OSProfile]] = None) -> None:
    """
    Check that the OS table can serve every detection rule.

    Raises:
        ConfigurationError: If the table is empty or a rule maps to a missing family
    """
    table = OS_PROFILES if profiles is None else profiles
    if not table:
        raise ConfigurationError("No supported OS family mapping is configured")

    families = {family for _, family in RELEASE_RULES} | {family for _, family in PACKAGE_MANAGER_RULES}
    missing = sorted(family for family in families if family not in table)
    if missing:
        raise ConfigurationError(f"OS detection rules reference unmapped families: {', '.join(missing)}")
    logger.debug(f"OS table covers: {', '.join(sorted(table))}")
