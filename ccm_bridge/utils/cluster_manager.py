"""Execution of `ccm` commands against the active cluster."""

import logging

from ccm_bridge.utils import ccm_commands
from ccm_bridge.utils import configuration
from ccm_bridge.utils import errors
from ccm_bridge.utils import execution
from ccm_bridge.utils import types as ttypes

LOGGER = logging.getLogger(__name__)


class ClusterManager:
    """Run `ccm` commands through an execution backend and parse their output.

    The name of the active cluster is remembered, so that switching to the cluster that is
    already active doesn't issue any command.
    """

    def __init__(
        self, backend: execution.ExecutionBackend, *, ccm_command: str = configuration.CCM_COMMAND
    ) -> None:
        self.backend = backend
        self.ccm_command = ccm_command
        # `None` means the active cluster is not known yet
        self._active_cluster: str | None = None

    @property
    def active_cluster(self) -> str | None:
        """Return the last known active cluster, without querying `ccm`."""
        return self._active_cluster

    def execute(self, args: ttypes.Argv) -> str:
        """Run `ccm` with the given arguments and return its output."""
        return self.backend.run([self.ccm_command, *args])

    def list_clusters(self) -> tuple[list[str], str]:
        """Return names of available clusters and name of the active cluster."""
        clusters, active = ccm_commands.parse_cluster_list(self.execute(ccm_commands.list_cmd()))
        self._active_cluster = active
        return clusters, active

    def get_available_clusters(self) -> list[str]:
        return self.list_clusters()[0]

    def get_active_cluster(self) -> str:
        return self.list_clusters()[1]

    def cluster_status(self, *, ip_prefix: str = "") -> ccm_commands.ClusterStatus:
        out = self.execute(ccm_commands.status_cmd())
        return ccm_commands.parse_cluster_status(out, ip_prefix=ip_prefix)

    def _stop_active(self, active: str) -> None:
        if not active:
            return
        LOGGER.info(f"Stopping active cluster '{active}'.")
        self.execute(ccm_commands.stop_cluster_cmd())

    def switch_cluster(self, name: str) -> bool:
        """Make the named cluster the active one.

        Any other active cluster is stopped first.
        """
        if not name:
            msg = "Cluster name is required for switching clusters."
            raise errors.ClusterNotFoundError(msg)
        if name == self._active_cluster:
            return True

        clusters, active = self.list_clusters()
        if name == active:
            return True
        if name not in clusters:
            msg = f"Cluster '{name}' doesn't exist."
            raise errors.ClusterNotFoundError(msg)

        self._stop_active(active)
        self.execute(ccm_commands.switch_cmd(name))

        __, active = self.list_clusters()
        if active != name:
            msg = f"Failed to switch to cluster '{name}', active cluster is '{active}'."
            raise errors.ClusterNotFoundError(msg)

        LOGGER.info(f"Switched to cluster '{name}'.")
        return True

    def create_cluster(self, *, name: str, create_args: ttypes.Argv, version: str) -> bool:
        """Create the named cluster, or switch to it when it already exists.

        Returns:
            bool: True if the cluster is now the active one.
        """
        if name == self._active_cluster:
            return True

        clusters, active = self.list_clusters()
        if name in clusters:
            return self.switch_cluster(name)

        self._stop_active(active)
        LOGGER.info(f"Creating cluster '{name}'.")
        self.execute(create_args)
        self.execute(ccm_commands.create_updateconf_cmd(version))

        __, active = self.list_clusters()
        return active == name

    def remove_cluster(self, name: str = "") -> None:
        """Remove the named cluster, or the active one when `name` is empty."""
        self.execute(ccm_commands.remove_cmd(name))
        LOGGER.info(f"Removed cluster '{name or self._active_cluster or '<active>'}'.")
        self._active_cluster = None

    def remove_all_clusters(self, *, prefix: str, is_all: bool = False) -> list[str]:
        """Remove all clusters whose name starts with `prefix`, or all clusters when `is_all`."""
        clusters, __ = self.list_clusters()
        removed = [c for c in clusters if is_all or c.startswith(prefix)]
        for cluster_name in removed:
            self.remove_cluster(cluster_name)
        return removed
