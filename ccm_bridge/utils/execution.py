"""Backends running `ccm` commands on the local host or on a remote host over SSH."""

import logging
import os
import shlex
import subprocess

from ccm_bridge.utils import bridge_config
from ccm_bridge.utils import errors
from ccm_bridge.utils import ssh_channel
from ccm_bridge.utils import types as ttypes

LOGGER = logging.getLogger(__name__)


class ExecutionBackend:
    """Run a command and return its captured output as text."""

    def run(self, argv: ttypes.Argv) -> str:
        """Run the command and return merged standard output and standard error."""
        raise NotImplementedError

    def close(self) -> None:
        """Release resources held by the backend."""


class LocalBackend(ExecutionBackend):
    """Run commands as child processes of the current process."""

    def __init__(
        self, *, workdir: ttypes.FileType = "", env: dict[str, str] | None = None
    ) -> None:
        self.workdir = workdir
        self.env = env or {}

    def run(self, argv: ttypes.Argv) -> str:
        cmd_str = shlex.join(argv)
        LOGGER.debug(f"Running `{cmd_str}`")

        env = {**os.environ, **self.env} if self.env else None
        with subprocess.Popen(
            argv,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            cwd=self.workdir or None,
            env=env,
        ) as p:
            stdout, __ = p.communicate()
            retcode = p.returncode

        output = stdout.decode(errors="replace")
        if retcode != 0:
            msg = f"An error occurred while running `{cmd_str}`"
            raise errors.ExecutionFailedError(msg, exit_code=retcode, output=output)

        return output


class RemoteBackend(ExecutionBackend):
    """Run commands on a remote host through a single SSH session."""

    def __init__(self, synchronizer: ssh_channel.ChannelSynchronizer) -> None:
        self.synchronizer = synchronizer

    def run(self, argv: ttypes.Argv) -> str:
        cmd_str = shlex.join(argv)
        result = self.synchronizer.execute(cmd_str)
        if result.exit_status != 0:
            msg = (
                f"An error occurred while running `{cmd_str}` on "
                f"{self.synchronizer.host}:{self.synchronizer.port}"
            )
            raise errors.ExecutionFailedError(
                msg, exit_code=result.exit_status, output=result.output
            )
        return result.output

    def close(self) -> None:
        self.synchronizer.close()


def get_backend(config: bridge_config.BridgeConfig) -> ExecutionBackend:
    """Return backend selected by the deployment type."""
    if config.deployment_type == bridge_config.DeploymentType.SSH:
        synchronizer = ssh_channel.ChannelSynchronizer(
            host=config.host,
            port=config.port,
            credentials=config.ssh_credentials(),
            timeout=config.command_timeout,
        )
        return RemoteBackend(synchronizer)
    return LocalBackend(workdir=config.workdir)
