import pathlib as pl
import sys

import pytest

from ccm_bridge.utils import bridge_config
from ccm_bridge.utils import errors
from ccm_bridge.utils import execution
from ccm_bridge.utils import ssh_channel


class FakeSynchronizer:
    """Stand-in for `ssh_channel.ChannelSynchronizer` returning fixed result."""

    host = "192.168.33.11"
    port = 22

    def __init__(self, result: ssh_channel.CommandResult) -> None:
        self.result = result
        self.commands: list[str] = []
        self.closed = False

    def execute(self, command: str, *, stdin: bytes = b"") -> ssh_channel.CommandResult:
        self.commands.append(command)
        return self.result

    def close(self) -> None:
        self.closed = True


class TestLocalBackend:
    def test_merged_output(self):
        backend = execution.LocalBackend()
        out = backend.run(
            [
                sys.executable,
                "-c",
                "import sys; print('out', flush=True); print('err', file=sys.stderr)",
            ]
        )
        assert out.splitlines() == ["out", "err"]

    def test_failure(self):
        backend = execution.LocalBackend()
        with pytest.raises(errors.ExecutionFailedError) as excinfo:
            backend.run([sys.executable, "-c", "import sys; print('boom'); sys.exit(3)"])

        assert excinfo.value.exit_code == 3
        assert "boom" in excinfo.value.output
        assert "exit code 3" in str(excinfo.value)

    def test_workdir_and_env(self, tmp_path: pl.Path):
        backend = execution.LocalBackend(workdir=tmp_path, env={"CCM_TEST_VAR": "foo"})
        out = backend.run(
            [sys.executable, "-c", "import os; print(os.getcwd(), os.environ['CCM_TEST_VAR'])"]
        )
        cwd, value = out.split()
        assert pl.Path(cwd).resolve() == tmp_path.resolve()
        assert value == "foo"

    def test_mock_ccm(self, ccm_mock_dir: pl.Path):
        backend = execution.LocalBackend()
        backend.run(["ccm", "create", "foo", "-v", "3.4", "-n", "2"])
        out = backend.run(["ccm", "status"])

        assert "node1: DOWN (Not initialized)" in out
        assert (ccm_mock_dir / "calls.log").read_text().splitlines() == [
            "create foo -v 3.4 -n 2",
            "status",
        ]


class TestRemoteBackend:
    def test_command_line_quoted(self):
        synchronizer = FakeSynchronizer(ssh_channel.CommandResult(output="ok", exit_status=0))
        backend = execution.RemoteBackend(synchronizer)  # type: ignore[arg-type]

        out = backend.run(["ccm", "node1", "cqlsh", "-x", "SELECT * FROM system.local"])

        assert out == "ok"
        assert synchronizer.commands == ["ccm node1 cqlsh -x 'SELECT * FROM system.local'"]

    def test_failure(self):
        synchronizer = FakeSynchronizer(ssh_channel.CommandResult(output="no", exit_status=1))
        backend = execution.RemoteBackend(synchronizer)  # type: ignore[arg-type]

        with pytest.raises(errors.ExecutionFailedError) as excinfo:
            backend.run(["ccm", "status"])
        assert excinfo.value.exit_code == 1
        assert excinfo.value.output == "no"

    def test_close(self):
        synchronizer = FakeSynchronizer(ssh_channel.CommandResult(output="", exit_status=0))
        backend = execution.RemoteBackend(synchronizer)  # type: ignore[arg-type]
        backend.close()
        assert synchronizer.closed


class TestGetBackend:
    def test_local(self):
        config = bridge_config.BridgeConfig(deployment_type=bridge_config.DeploymentType.LOCAL)
        assert isinstance(execution.get_backend(config), execution.LocalBackend)

    def test_ssh(self):
        config = bridge_config.BridgeConfig(
            deployment_type=bridge_config.DeploymentType.SSH,
            authentication_type=bridge_config.AuthenticationType.USERNAME_PASSWORD,
            host="192.168.33.11",
            port=2222,
            username="vagrant",
            password="secret",
        )
        backend = execution.get_backend(config)

        assert isinstance(backend, execution.RemoteBackend)
        synchronizer = backend.synchronizer
        assert (synchronizer.host, synchronizer.port) == ("192.168.33.11", 2222)
        assert synchronizer.credentials == bridge_config.SSHCredentials(
            username="vagrant", password="secret"
        )
        # The session is opened lazily
        assert synchronizer.state == ssh_channel.SessionState.CLOSED
