"""CA credential acquisition (fingerprint, root and intermediate certificates)."""

import logging
from typing import Callable, List, Optional, Protocol, Tuple

import httpx
from cryptography import x509
from cryptography.hazmat.primitives import hashes

from trustsync.errors import AcquisitionFailed, RuntimeUnavailable
from trustsync.models.ca import CAEndpoint
from trustsync.models.config import CertificateSource
from trustsync.utils.validators import looks_like_pem_certificate, normalize_fingerprint

logger = logging.getLogger("trustsync")

CA_ROOT_CERT_PATH = "/home/step/certs/root_ca.crt"
CA_INTERMEDIATE_CERT_PATH = "/home/step/certs/intermediate_ca.crt"
ROOTS_PATH = "/roots"


class ContainerExecutor(Protocol):
    def exec(self, container_id: str, command: List[str], user: str = "root") -> Tuple[str, int]: ...


def fingerprint_of(pem: str) -> str:
    """
    Compute the SHA-256 fingerprint of a PEM certificate.

    Args:
        pem: PEM-encoded certificate

    Returns:
        Lowercase hex digest of the DER encoding (same as ``step certificate fingerprint``)

    Raises:
        ValueError: If the PEM cannot be parsed
    """
    cert = x509.load_pem_x509_certificate(pem.encode("utf-8"))
    return cert.fingerprint(hashes.SHA256()).hex()


def validate_certificate(pem: str, source: str) -> str:
    """
    Ensure fetched material is a parseable PEM certificate.

    Raises:
        AcquisitionFailed: If the content is not a certificate
    """
    if not looks_like_pem_certificate(pem):
        raise AcquisitionFailed(f"{source} did not return a PEM certificate")
    try:
        x509.load_pem_x509_certificate(pem.encode("utf-8"))
    except ValueError as e:
        raise AcquisitionFailed(f"{source} returned a malformed certificate: {e}") from e
    return pem.strip() + "\n"


class CredentialAcquirer:
    """Fetch fingerprint and certificates with a primary + fallback strategy.

    Each method is tried at most once per call; retries belong to the
    enclosing reconciliation pass.
    """

    def __init__(self, runtime: ContainerExecutor, http_client: httpx.Client):
        """
        Initialize acquirer.

        Args:
            runtime: Used to exec inside the CA container
            http_client: Client for the CA API (TLS verification disabled)
        """
        self.runtime = runtime
        self.http = http_client

    def get_fingerprint(self, endpoint: CAEndpoint) -> str:
        """
        Get the root certificate fingerprint.

        Tries exec inside the CA container first, then the ``/roots`` API.

        Raises:
            AcquisitionFailed: If both methods failed
        """
        errors = []
        strategies: List[Tuple[str, Callable[[CAEndpoint], str]]] = [
            ("docker exec", self._fingerprint_via_exec),
            ("API", self._fingerprint_via_api),
        ]
        for name, strategy in strategies:
            logger.info(f"Getting fingerprint via {name}...")
            try:
                fingerprint = strategy(endpoint)
            except AcquisitionFailed as e:
                logger.warning(f"Failed to get fingerprint via {name}: {e}")
                errors.append(f"{name}: {e}")
                continue
            logger.info(f"Got fingerprint via {name}")
            return fingerprint

        raise AcquisitionFailed(f"Could not get step-ca fingerprint ({'; '.join(errors)})")

    def get_root_certificate(self, endpoint: CAEndpoint) -> str:
        """
        Download the current root certificate from the ``/roots`` API.

        Raises:
            AcquisitionFailed: If the API is unreachable or returns no certificate
        """
        if endpoint.root_certificate:
            return endpoint.root_certificate

        url = f"{endpoint.base_url}{ROOTS_PATH}"
        try:
            response = self.http.get(url)
            response.raise_for_status()
            crts = response.json().get("crts") or []
        except (httpx.HTTPError, ValueError, AttributeError) as e:
            raise AcquisitionFailed(f"Failed to download root certificate from {url}: {e}") from e

        if not crts:
            raise AcquisitionFailed(f"{url} returned no certificates")
        return validate_certificate(crts[0], url)

    def get_intermediate_certificate(self, endpoint: CAEndpoint) -> str:
        """
        Read the intermediate certificate from inside the CA container.

        Raises:
            AcquisitionFailed: If there is no CA container or the read failed
        """
        if not endpoint.container_id:
            raise AcquisitionFailed("No CA container known, cannot read intermediate certificate")
        output, exit_code = self._exec(endpoint, ["cat", CA_INTERMEDIATE_CERT_PATH])
        if exit_code != 0:
            raise AcquisitionFailed(f"Reading {CA_INTERMEDIATE_CERT_PATH} exited with {exit_code}: {output.strip()}")
        return validate_certificate(output, f"{endpoint.display_name}:{CA_INTERMEDIATE_CERT_PATH}")

    def get_trust_certificate(
        self, endpoint: CAEndpoint, source: CertificateSource = CertificateSource.INTERMEDIATE
    ) -> str:
        """
        Get the certificate material installed on targets.

        The intermediate certificate is preferred when requested; the API
        root certificate is the fallback.

        Raises:
            AcquisitionFailed: If no usable certificate could be obtained
        """
        if source == CertificateSource.INTERMEDIATE:
            try:
                return self.get_intermediate_certificate(endpoint)
            except AcquisitionFailed as e:
                logger.warning(f"Intermediate certificate unavailable ({e}), falling back to root via API")
        return self.get_root_certificate(endpoint)

    def _fingerprint_via_exec(self, endpoint: CAEndpoint) -> str:
        if not endpoint.container_id:
            raise AcquisitionFailed("no CA container id")
        output, exit_code = self._exec(endpoint, ["step", "certificate", "fingerprint", CA_ROOT_CERT_PATH])
        if exit_code != 0:
            raise AcquisitionFailed(f"exit code {exit_code}: {output.strip()[:200]}")
        try:
            return normalize_fingerprint(output)
        except ValueError as e:
            raise AcquisitionFailed(str(e)) from e

    def _fingerprint_via_api(self, endpoint: CAEndpoint) -> str:
        pem = self.get_root_certificate(endpoint)
        try:
            return fingerprint_of(pem)
        except ValueError as e:
            raise AcquisitionFailed(f"Cannot fingerprint root certificate: {e}") from e

    def _exec(self, endpoint: CAEndpoint, command: List[str]) -> Tuple[str, int]:
        try:
            return self.runtime.exec(endpoint.container_id, command, user="")
        except RuntimeUnavailable as e:
            raise AcquisitionFailed(f"exec in CA container failed: {e}") from e
