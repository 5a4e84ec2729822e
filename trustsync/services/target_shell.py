"""Command and file access to a trust target (container or local host)."""

import logging
import os
import posixpath
import shlex
import shutil
import subprocess
import tempfile
from pathlib import Path
from typing import List, Optional, Protocol, Tuple

from trustsync.errors import RuntimeUnavailable

logger = logging.getLogger("trustsync")

COMMAND_TIMEOUT_SECONDS = 300
EXIT_TIMEOUT = 124


class TargetShell(Protocol):
    """Operations the trust applicator needs from a target."""

    def is_running(self) -> bool: ...

    def run(self, command: str, privileged: bool = False) -> Tuple[str, int]: ...

    def read_file(self, path: str) -> Optional[str]: ...

    def which(self, executable: str) -> bool: ...

    def write_file(self, path: str, content: str) -> Tuple[bool, str]: ...


class ContainerRuntime(Protocol):
    def is_running(self, container_id: str) -> bool: ...

    def exec(self, container_id: str, command: List[str], user: str = "root") -> Tuple[str, int]: ...

    def copy_file_into(self, container_id: str, content: bytes, remote_path: str, mode: int = 0o644) -> bool: ...


class ContainerShell:
    """Target shell backed by runtime exec/copy; every command runs as root."""

    def __init__(self, runtime: ContainerRuntime, container_id: str):
        self.runtime = runtime
        self.container_id = container_id

    def is_running(self) -> bool:
        return self.runtime.is_running(self.container_id)

    def run(self, command: str, privileged: bool = False) -> Tuple[str, int]:
        return self.runtime.exec(self.container_id, ["sh", "-c", command], user="root")

    def read_file(self, path: str) -> Optional[str]:
        output, exit_code = self.run(f"cat {shlex.quote(path)}")
        return output if exit_code == 0 else None

    def which(self, executable: str) -> bool:
        _, exit_code = self.run(f"command -v {shlex.quote(executable)} >/dev/null 2>&1")
        return exit_code == 0

    def write_file(self, path: str, content: str) -> Tuple[bool, str]:
        """
        Write a file into the container, creating its directory first.

        Returns:
            Tuple of (success, detail message)
        """
        directory = posixpath.dirname(path)
        output, exit_code = self.run(f"mkdir -p {shlex.quote(directory)}")
        if exit_code != 0:
            return False, f"Failed to create certificate directory {directory}: {output.strip()}"
        if not self.runtime.copy_file_into(self.container_id, content.encode("utf-8"), path):
            return False, f"Runtime rejected copy to {path}"
        return True, path


class LocalShell:
    """Target shell for the local host; privileged steps go through ``sudo -n`` unless root."""

    def __init__(self, use_sudo: bool = True):
        self.use_sudo = use_sudo and os.geteuid() != 0

    def is_running(self) -> bool:
        return True

    def _argv(self, command: str, privileged: bool) -> List[str]:
        argv = ["sh", "-c", command]
        if privileged and self.use_sudo:
            argv = ["sudo", "-n"] + argv
        return argv

    def run(self, command: str, privileged: bool = False) -> Tuple[str, int]:
        try:
            result = subprocess.run(
                self._argv(command, privileged),
                shell=False,
                capture_output=True,
                text=True,
                timeout=COMMAND_TIMEOUT_SECONDS,
            )
        except subprocess.TimeoutExpired:
            logger.error(f"Command timeout after {COMMAND_TIMEOUT_SECONDS} seconds: {command}")
            return f"timeout after {COMMAND_TIMEOUT_SECONDS}s", EXIT_TIMEOUT
        except OSError as e:
            raise RuntimeUnavailable(f"Cannot run local command '{command}': {e}") from e
        return (result.stdout + result.stderr), result.returncode

    def read_file(self, path: str) -> Optional[str]:
        try:
            return Path(path).read_text(encoding="utf-8")
        except OSError:
            return None

    def which(self, executable: str) -> bool:
        return shutil.which(executable) is not None

    def write_file(self, path: str, content: str) -> Tuple[bool, str]:
        """
        Write a file on the host with mode 0644.

        Without root, the content is staged in a temp file and installed via
        ``sudo mkdir -p`` / ``cp`` / ``chmod 644``.

        Returns:
            Tuple of (success, detail message)
        """
        destination = Path(path)
        if not self.use_sudo:
            try:
                destination.parent.mkdir(parents=True, exist_ok=True)
                destination.write_text(content, encoding="utf-8")
                destination.chmod(0o644)
            except OSError as e:
                return False, f"Failed to write {path}: {e}"
            return True, path

        with tempfile.NamedTemporaryFile("w", suffix=".crt", delete=False, encoding="utf-8") as handle:
            handle.write(content)
            staged = handle.name
        try:
            for command in (
                f"mkdir -p {shlex.quote(str(destination.parent))}",
                f"cp {shlex.quote(staged)} {shlex.quote(path)}",
                f"chmod 644 {shlex.quote(path)}",
            ):
                output, exit_code = self.run(command, privileged=True)
                if exit_code != 0:
                    return False, f"'{command}' exited with {exit_code}: {output.strip()}"
        finally:
            os.unlink(staged)
        return True, path
