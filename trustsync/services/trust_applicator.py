"""Per-target trust convergence."""

import logging
import posixpath
import shlex
from typing import Callable, Optional

from trustsync.errors import AcquisitionFailed, ConvergenceFailed, RuntimeUnavailable, UnknownOS
from trustsync.models.ca import CAEndpoint
from trustsync.models.config import HostSettings, TrustSettings
from trustsync.models.os_profile import OSProfile
from trustsync.models.target import (
    ConvergenceOutcome,
    ConvergenceStatus,
    ConvergenceStep,
    TargetKind,
    TrustTarget,
)
from trustsync.services.credentials import CredentialAcquirer
from trustsync.services.os_adapter import RELEASE_FILE, UNKNOWN_OS, detect_os, get_profile
from trustsync.services.target_shell import TargetShell
from trustsync.utils.retry import RetryCancelled, RetryExhausted, retry
from trustsync.utils.validators import host_record_stem

logger = logging.getLogger("trustsync")

VERIFY_TIMEOUT_SECONDS = 5


class TrustApplicator:
    """Bring one target's trust store in line with the current CA.

    Convergence is idempotent: the certificate always lands under the same
    file name and the same update command is re-run.
    """

    def __init__(
        self,
        credentials: CredentialAcquirer,
        trust_settings: TrustSettings,
        host_settings: HostSettings,
        shell_factory: Callable[[TrustTarget], TargetShell],
        sleep: Optional[Callable[[float], bool]] = None,
    ):
        """
        Initialize trust applicator.

        Args:
            credentials: Source of CA certificate material
            trust_settings: Package, file name and liveness probe settings
            host_settings: Host record naming settings
            shell_factory: Builds the shell used to reach a target
            sleep: Interruptible wait used between liveness probes
        """
        self.credentials = credentials
        self.trust = trust_settings
        self.host = host_settings
        self.shell_factory = shell_factory
        self._sleep = sleep

    def certificate_file_name(self, target: TrustTarget) -> str:
        """
        File name of the trust anchor on a target.

        Containers use a fixed well-known name; hosts use a user and context
        qualified name so operators and contexts never overwrite each other.
        """
        if target.kind == TargetKind.HOST:
            return f"{host_record_stem(self.host.record_prefix, target.user, target.context)}.crt"
        return self.trust.container_file_name

    def converge(
        self,
        target: TrustTarget,
        endpoint: CAEndpoint,
        certificate: Optional[str] = None,
        file_name: Optional[str] = None,
        shell: Optional[TargetShell] = None,
    ) -> ConvergenceOutcome:
        """
        Converge one target.

        Args:
            target: Container or host to converge
            endpoint: CA resolved for the current pass
            certificate: PEM to install; fetched per the configured source if None
            file_name: Anchor file name; derived from the target kind if None
            shell: Shell to use; built by the shell factory if None

        Returns:
            Outcome; target-scoped failures are reported, never raised
        """
        logger.info(f"Installing trust certificate for {target}")
        shell = shell or self.shell_factory(target)
        state = {"step": ConvergenceStep.RUNNING_CHECK, "os_family": None}

        def outcome(status: ConvergenceStatus, reason: Optional[str] = None, **extra) -> ConvergenceOutcome:
            return ConvergenceOutcome(
                target_id=target.id,
                target_name=target.display_name,
                status=status,
                step=state["step"],
                reason=reason,
                os_family=state["os_family"],
                **extra,
            )

        try:
            if not shell.is_running():
                logger.warning(f"{target} is not running, skipping")
                return outcome(ConvergenceStatus.SKIPPED, "target not running")

            state["step"] = ConvergenceStep.RESPONSIVENESS
            self._wait_responsive(shell, target)

            state["step"] = ConvergenceStep.OS_DETECTION
            profile = self._detect_profile(shell, target)
            state["os_family"] = profile.os_family

            state["step"] = ConvergenceStep.CERTIFICATE
            if certificate is None:
                certificate = self.credentials.get_trust_certificate(endpoint, self.trust.certificate_source)

            state["step"] = ConvergenceStep.PACKAGE_INSTALL
            self._ensure_package(shell, target, profile)

            state["step"] = ConvergenceStep.PLACE_CERTIFICATE
            path = posixpath.join(profile.trust_anchor_dir, file_name or self.certificate_file_name(target))
            ok, detail = shell.write_file(path, certificate)
            if not ok:
                raise ConvergenceFailed(state["step"].value, detail, str(target))
            logger.info(f"Certificate copied to {path} on {target}")

            state["step"] = ConvergenceStep.TRUST_UPDATE
            self._update_trust(shell, target, profile)

            state["step"] = ConvergenceStep.VERIFY
            verified = self.verify(shell, target, endpoint) if self.trust.verify else None

            state["step"] = ConvergenceStep.DONE
            logger.info(f"Successfully installed trust certificate for {target}")
            return outcome(ConvergenceStatus.CONVERGED, certificate_path=path, verified=verified)

        except UnknownOS as e:
            logger.error(f"{e}, skipping trust installation")
            return outcome(ConvergenceStatus.UNKNOWN_OS, str(e))
        except (ConvergenceFailed, AcquisitionFailed, RuntimeUnavailable, ValueError) as e:
            if self._vanished(shell):
                logger.warning(f"{target} disappeared during {state['step'].value}, abandoning")
                return outcome(ConvergenceStatus.SKIPPED, "target disappeared")
            reason = e.reason if isinstance(e, ConvergenceFailed) else str(e)
            logger.error(f"Failed to install trust certificate for {target} at step {state['step'].value}: {reason}")
            return outcome(ConvergenceStatus.FAILED, reason)

    def verify(self, shell: TargetShell, target: TrustTarget, endpoint: CAEndpoint) -> Optional[bool]:
        """
        Check that the target can reach the CA over verified HTTPS.

        Returns:
            True/False for the check result, None when curl is unavailable.
            A failed check does not revert the installed certificate.
        """
        logger.info(f"Verifying trust installation for {target}")
        if not shell.which("curl"):
            logger.info(f"Cannot verify trust (curl not available on {target})")
            return None

        command = f"curl -s --max-time {VERIFY_TIMEOUT_SECONDS} {shlex.quote(endpoint.health_url)}"
        _, exit_code = shell.run(command)
        if exit_code == 0:
            logger.info(f"Trust verification successful for {target}")
            return True
        logger.warning(f"Trust verification failed for {target} (curl exit code {exit_code})")
        return False

    def _wait_responsive(self, shell: TargetShell, target: TrustTarget) -> None:
        attempts = self.trust.responsiveness_attempts

        def probe(number: int) -> bool:
            output, exit_code = shell.run("echo ready")
            if exit_code != 0:
                logger.debug(f"{target} not ready yet (attempt {number}/{attempts})")
            return exit_code == 0

        kwargs = {"sleep": self._sleep} if self._sleep else {}
        try:
            retry(probe, interval=self.trust.responsiveness_interval_seconds, max_attempts=attempts, **kwargs)
        except RetryCancelled:
            raise ConvergenceFailed(ConvergenceStep.RESPONSIVENESS.value, "shutdown requested", str(target))
        except RetryExhausted as e:
            raise ConvergenceFailed(
                ConvergenceStep.RESPONSIVENESS.value, f"not responsive after {e.attempts} attempts", str(target)
            )

    def _detect_profile(self, shell: TargetShell, target: TrustTarget) -> OSProfile:
        os_family = detect_os(lambda: shell.read_file(RELEASE_FILE), shell.which)
        profile = get_profile(os_family) if os_family != UNKNOWN_OS else None
        if profile is None:
            raise UnknownOS(str(target))
        logger.info(f"Detected OS: {os_family} for {target}")
        return profile

    def _ensure_package(self, shell: TargetShell, target: TrustTarget, profile: OSProfile) -> None:
        update_tool = profile.trust_update_command.split()[0]
        if shell.which(update_tool):
            logger.debug(f"{update_tool} already present on {target}")
            return

        command = profile.install_command_for(self.trust.package)
        logger.info(f"Installing {self.trust.package} on {target}: {command}")
        output, exit_code = shell.run(command, privileged=True)
        if exit_code != 0:
            logger.warning(
                f"Failed to install {self.trust.package} on {target} (exit code {exit_code}, "
                f"may already be installed), continuing anyway: {output.strip()[-200:]}"
            )

    def _update_trust(self, shell: TargetShell, target: TrustTarget, profile: OSProfile) -> None:
        command = profile.trust_update_command
        logger.info(f"Updating trust store on {target} with command: {command}")
        output, exit_code = shell.run(command, privileged=True)
        if exit_code != 0:
            raise ConvergenceFailed(
                ConvergenceStep.TRUST_UPDATE.value,
                f"'{command}' exited with {exit_code}: {output.strip()[-200:]}",
                str(target),
            )

    @staticmethod
    def _vanished(shell: TargetShell) -> bool:
        try:
            return not shell.is_running()
        except RuntimeUnavailable:
            return False
