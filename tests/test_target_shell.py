"""Tests for target shells."""

import stat

import pytest

from trustsync.services.target_shell import ContainerShell, LocalShell
from tests.conftest import FakeContainer, FakeMachine, FakeRuntime


@pytest.mark.unit
class TestLocalShell:
    """Test local command execution and file placement."""

    def test_run(self):
        output, exit_code = LocalShell(use_sudo=False).run("echo hello")
        assert (output, exit_code) == ("hello\n", 0)

    def test_exit_code_is_reported(self):
        _, exit_code = LocalShell(use_sudo=False).run("exit 3")
        assert exit_code == 3

    def test_privileged_commands_use_sudo(self):
        shell = LocalShell(use_sudo=False)
        shell.use_sudo = True
        assert shell._argv("update-ca-certificates", privileged=True)[:2] == ["sudo", "-n"]
        assert shell._argv("cat /etc/os-release", privileged=False)[0] == "sh"

    def test_write_file(self, tmp_path):
        path = tmp_path / "anchors" / "step-ca.crt"

        ok, detail = LocalShell(use_sudo=False).write_file(str(path), "PEM")

        assert ok
        assert detail == str(path)
        assert path.read_text() == "PEM"
        assert stat.S_IMODE(path.stat().st_mode) == 0o644

    def test_read_missing_file(self, tmp_path):
        assert LocalShell(use_sudo=False).read_file(str(tmp_path / "missing")) is None

    def test_which(self):
        shell = LocalShell(use_sudo=False)
        assert shell.which("sh")
        assert not shell.which("definitely-not-installed-tool")


@pytest.mark.unit
class TestContainerShell:
    """Test container command execution and file placement."""

    def test_commands_run_as_root(self):
        runtime = FakeRuntime([FakeContainer("c1", "web")])
        ContainerShell(runtime, "c1").run("echo ready")
        assert runtime.exec_log == [("c1", ["sh", "-c", "echo ready"], "root")]

    def test_write_file_creates_directory(self):
        container = FakeContainer("c1", "web")
        shell = ContainerShell(FakeRuntime([container]), "c1")

        ok, _ = shell.write_file("/usr/local/share/ca-certificates/x.crt", "PEM")

        assert ok
        assert "mkdir -p /usr/local/share/ca-certificates" in container.machine.scripts
        assert container.machine.files["/usr/local/share/ca-certificates/x.crt"] == "PEM"

    def test_write_file_without_mkdir(self):
        container = FakeContainer("c1", "web", machine=FakeMachine(executables={"sh", "cat"}))
        ok, detail = ContainerShell(FakeRuntime([container]), "c1").write_file("/etc/pki/x.crt", "PEM")
        assert not ok
        assert "Failed to create certificate directory" in detail

    def test_read_file(self):
        shell = ContainerShell(FakeRuntime([FakeContainer("c1", "web")]), "c1")
        assert "ID=ubuntu" in shell.read_file("/etc/os-release")
        assert shell.read_file("/nope") is None
