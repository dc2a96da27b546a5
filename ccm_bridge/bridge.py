"""Management of Cassandra/DSE test clusters driven by `ccm`.

The `Bridge` owns the execution backend (local or SSH), remembers the active cluster and
allocates node ids of nodes added to it.

Example:
    with bridge.Bridge() as ccm_bridge:
        ccm_bridge.create_cluster(3)
        ccm_bridge.start_cluster()
        contact_points = ccm_bridge.cluster_contact_points()
"""

import logging
import types
import typing as tp

from ccm_bridge.utils import bridge_config
from ccm_bridge.utils import ccm_commands
from ccm_bridge.utils import cluster_manager
from ccm_bridge.utils import errors
from ccm_bridge.utils import execution
from ccm_bridge.utils import helpers
from ccm_bridge.utils import node_allocator
from ccm_bridge.utils import status_poller

LOGGER = logging.getLogger(__name__)


class Bridge:
    """Lifecycle operations on the active `ccm` cluster and its nodes.

    Single-flight: one `Bridge` instance runs one command at a time and callers must serialize
    their own use of the instance.
    """

    def __init__(
        self,
        config: bridge_config.BridgeConfig | None = None,
        *,
        backend: execution.ExecutionBackend | None = None,
    ) -> None:
        self.config = config or bridge_config.BridgeConfig.from_env()
        self.backend = backend or execution.get_backend(self.config)
        self.manager = cluster_manager.ClusterManager(self.backend)
        self.allocator = node_allocator.NodeAllocator()
        self.poller = status_poller.StatusPoller(
            self.cluster_status,
            attempts=self.config.status_attempts,
            delay=self.config.status_delay,
        )
        self.ip_prefix = self.config.ip_prefix
        # Node ids in use are loaded from the cluster status on first use
        self._allocator_stale = True

    def __enter__(self) -> "Bridge":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: types.TracebackType | None,
    ) -> None:
        self.close()

    def close(self) -> None:
        """Tear down the execution backend (e.g. close the SSH session)."""
        self.backend.close()

    def _sync_allocator(self) -> None:
        if not self._allocator_stale:
            return

        status = self.manager.cluster_status()
        in_use_names = (*status.nodes_down, *status.nodes_uninitialized, *status.nodes_up)
        node_ids = [int(n.removeprefix("node")) for n in in_use_names]
        self.allocator.reset(n for n in node_ids if self.allocator.is_valid(n))
        self._allocator_stale = False
        LOGGER.debug(f"Node ids in use in the active cluster: {self.allocator.in_use}")

    def _on_cluster_change(self, previous: str | None) -> None:
        if self.manager.active_cluster != previous:
            self.allocator.reset()
            self._allocator_stale = True

    def _node_address(self, node: int) -> str:
        self.allocator.check_node(node)
        return ccm_commands.generate_node_address(node, ip_prefix=self.ip_prefix)

    def _execute_on_node(self, node: int, args: list[str]) -> str:
        self.allocator.check_node(node)
        return self.manager.execute(args)

    # Cluster operations

    def get_ip_prefix(self) -> str:
        return self.ip_prefix

    def get_active_cluster(self) -> str:
        return self.manager.get_active_cluster()

    def get_available_clusters(self) -> list[str]:
        return self.manager.get_available_clusters()

    def list_clusters(self) -> tuple[list[str], str]:
        """Return names of all clusters and name of the active one (empty when there's none)."""
        return self.manager.list_clusters()

    def cluster_status(self) -> ccm_commands.ClusterStatus:
        """Return status of nodes of the active cluster, nodes identified by IPv4 address."""
        return self.manager.cluster_status(ip_prefix=self.ip_prefix)

    def cluster_ip_addresses(self, *, is_all: bool = True) -> list[str]:
        """Return addresses of nodes that are up, and also of nodes down when `is_all` is set."""
        status = self.cluster_status()
        addresses = list(status.nodes_up)
        if is_all:
            addresses.extend([*status.nodes_down, *status.nodes_uninitialized])
        return sorted(addresses)

    def cluster_contact_points(self, *, is_all: bool = True) -> str:
        """Return comma separated node addresses usable as driver contact points."""
        return helpers.implode(self.cluster_ip_addresses(is_all=is_all), delimiter=",")

    def create_cluster(
        self,
        dc1_nodes: int = 1,
        dc2_nodes: int = 0,
        *,
        is_ssl: bool = False,
        is_client_authentication: bool = False,
    ) -> bool:
        """Create cluster with the given topology, or switch to it if it already exists.

        Returns:
            bool: True if the cluster is now the active one.
        """
        total_nodes = dc1_nodes + dc2_nodes
        if total_nodes > self.allocator.capacity:
            msg = (
                f"Requested {total_nodes} nodes exceed the limit of "
                f"{self.allocator.capacity} nodes per cluster."
            )
            raise errors.CapacityExhaustedError(msg)

        config = self.config
        version = config.server_version
        name = ccm_commands.generate_cluster_name(
            version=version,
            dc1_nodes=dc1_nodes,
            dc2_nodes=dc2_nodes,
            is_ssl=is_ssl,
            is_client_authentication=is_client_authentication,
            prefix=config.cluster_prefix,
            is_dse=config.use_dse,
        )

        use_dse_login = (
            config.use_dse
            and config.dse_credentials_type == bridge_config.DseCredentialsType.USERNAME_PASSWORD
        )
        create_args = ccm_commands.create_cmd(
            name=name,
            version=version,
            dc1_nodes=dc1_nodes,
            dc2_nodes=dc2_nodes,
            ip_prefix=self.ip_prefix,
            use_git=config.use_git,
            use_dse=config.use_dse,
            dse_username=config.dse_username if use_dse_login else "",
            dse_password=config.dse_password if use_dse_login else "",
            is_ssl=is_ssl,
            is_client_authentication=is_client_authentication,
            ssl_path=config.ssl_path,
        )

        previous = self.manager.active_cluster
        is_active = self.manager.create_cluster(
            name=name, create_args=create_args, version=version
        )
        self._on_cluster_change(previous)
        return is_active

    def switch_cluster(self, name: str) -> bool:
        previous = self.manager.active_cluster
        is_switched = self.manager.switch_cluster(name)
        self._on_cluster_change(previous)
        return is_switched

    def start_cluster(self, jvm_arguments: tp.Iterable[str] = ()) -> bool:
        """Start all nodes of the active cluster.

        Returns:
            bool: True if all nodes are up.
        """
        self.manager.execute(ccm_commands.start_cluster_cmd(jvm_arguments))
        is_up = self.is_cluster_up()
        if is_up:
            LOGGER.info("Cluster started.")
        return is_up

    def stop_cluster(self, *, is_kill: bool = False) -> bool:
        """Stop all nodes of the active cluster.

        Returns:
            bool: True if all nodes are down.
        """
        self.manager.execute(ccm_commands.stop_cluster_cmd(is_kill=is_kill))
        is_down = self.is_cluster_down()
        if is_down:
            LOGGER.info("Cluster stopped.")
        return is_down

    def kill_cluster(self) -> bool:
        return self.stop_cluster(is_kill=True)

    def is_cluster_up(self) -> bool:
        return self.poller.poll(status_poller.all_nodes_up, description="all nodes are up")

    def is_cluster_down(self) -> bool:
        return self.poller.poll(status_poller.all_nodes_down, description="all nodes are down")

    def clear_cluster_data(self) -> None:
        """Stop the nodes of the active cluster and remove their data."""
        self.manager.execute(ccm_commands.clear_cmd())

    def remove_cluster(self, name: str = "") -> None:
        """Remove the named cluster, or the active one when `name` is empty."""
        self.manager.remove_cluster(name)
        self.allocator.reset()
        self._allocator_stale = True

    def remove_all_clusters(self, *, is_all: bool = False) -> list[str]:
        """Remove clusters created with the configured prefix, or all clusters when `is_all`."""
        removed = self.manager.remove_all_clusters(
            prefix=self.config.cluster_prefix, is_all=is_all
        )
        self.allocator.reset()
        self._allocator_stale = True
        return removed

    def update_cluster_configuration(
        self,
        key_value_pairs: tp.Iterable[str] | tp.Mapping[str, tp.Any],
        *,
        is_dse: bool = False,
    ) -> None:
        """Update `cassandra.yaml` (or `dse.yaml` when `is_dse`) of all nodes.

        Pairs are either `key:value` strings or a mapping of keys to values.
        """
        if isinstance(key_value_pairs, tp.Mapping):
            pairs = [f"{k}:{v}" for k, v in key_value_pairs.items()]
        else:
            pairs = list(key_value_pairs)
        self.manager.execute(ccm_commands.updateconf_cmd(pairs, is_dse=is_dse))

    def get_cassandra_version(self) -> str:
        out = self.manager.execute(ccm_commands.cassandra_version_cmd())
        return ccm_commands.parse_release_version(out)

    def get_dse_version(self) -> str:
        out = self.manager.execute(ccm_commands.dse_version_cmd())
        return ccm_commands.parse_dse_version(out)

    # Node operations

    def add_node(self, data_center: str = "") -> int:
        """Add new node to the active cluster.

        Returns:
            int: Id of the added node.
        """
        self._sync_allocator()
        node = self.allocator.next_available()
        try:
            self.manager.execute(
                ccm_commands.add_node_cmd(
                    node,
                    ip_prefix=self.ip_prefix,
                    data_center=data_center,
                    is_dse=self.config.use_dse,
                )
            )
        except Exception:
            self.allocator.release(node)
            raise

        LOGGER.info(f"Added node {node} to the cluster.")
        return node

    def bootstrap_node(self, jvm_arguments: tp.Iterable[str] = (), data_center: str = "") -> int:
        """Add new node to the active cluster and start it.

        Returns:
            int: Id of the added node.
        """
        node = self.add_node(data_center)
        if not self.start_node(node, jvm_arguments=jvm_arguments):
            LOGGER.warning(f"Bootstrapped node {node} is not up.")
        return node

    def decommission_node(self, node: int) -> bool:
        """Decommission the node and release its id.

        Returns:
            bool: True if the node is reported as decommissioned.
        """
        self._execute_on_node(node, ccm_commands.decommission_node_cmd(node))
        self.allocator.release(node)
        LOGGER.info(f"Decommissioned node {node}.")
        return self.is_node_decommissioned(node)

    def start_node(self, node: int, *, jvm_arguments: tp.Iterable[str] = ()) -> bool:
        """Start the node.

        Returns:
            bool: True if the node is up.
        """
        self._execute_on_node(node, ccm_commands.start_node_cmd(node, jvm_arguments=jvm_arguments))
        return self.is_node_up(node)

    def stop_node(self, node: int, *, is_kill: bool = False) -> bool:
        """Stop the node.

        Returns:
            bool: True if the node is down.
        """
        self._execute_on_node(node, ccm_commands.stop_node_cmd(node, is_kill=is_kill))
        return self.is_node_down(node)

    def kill_node(self, node: int) -> bool:
        return self.stop_node(node, is_kill=True)

    def pause_node(self, node: int) -> None:
        self._execute_on_node(node, ccm_commands.pause_node_cmd(node))

    def resume_node(self, node: int) -> None:
        self._execute_on_node(node, ccm_commands.resume_node_cmd(node))

    def enable_node_binary_protocol(self, node: int) -> None:
        self._execute_on_node(node, ccm_commands.binary_protocol_cmd(node, enable=True))

    def disable_node_binary_protocol(self, node: int) -> None:
        self._execute_on_node(node, ccm_commands.binary_protocol_cmd(node, enable=False))

    def enable_node_gossip(self, node: int) -> None:
        self._execute_on_node(node, ccm_commands.gossip_cmd(node, enable=True))

    def disable_node_gossip(self, node: int) -> None:
        self._execute_on_node(node, ccm_commands.gossip_cmd(node, enable=False))

    def execute_cql_on_node(self, node: int, cql: str) -> str:
        """Run CQL statement on the node through `cqlsh` and return its output."""
        return self._execute_on_node(node, ccm_commands.cql_cmd(node, cql))

    def is_node_decommissioned(self, node: int) -> bool:
        node_address = self._node_address(node)
        return node_address in self.cluster_status().nodes_decommissioned

    def is_node_up(self, node: int) -> bool:
        node_address = self._node_address(node)
        return self.poller.poll(
            status_poller.node_up(node_address), description=f"node {node} is up"
        )

    def is_node_down(self, node: int) -> bool:
        node_address = self._node_address(node)
        return self.poller.poll(
            status_poller.node_down(node_address), description=f"node {node} is down"
        )
