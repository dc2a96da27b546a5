"""Builders of `ccm` command arguments and parsers of `ccm` output.

All the functions are pure: the builders return the list of arguments that follow the `ccm`
executable, the parsers convert the textual output of `ccm` into structured data.
"""

import dataclasses
import enum
import re
import typing as tp

from ccm_bridge.utils import errors
from ccm_bridge.utils import helpers
from ccm_bridge.utils import versions

# Base of the JMX port, every node gets `JMX_PORT_BASE + 100 * node`
JMX_PORT_BASE = 7000

WAIT_ARGS = ("--wait-other-notice", "--wait-for-binary-proto")

_NODE_LINE_RE = re.compile(r"^\s*(node(\d+))\s*:\s*(.*)$", flags=re.IGNORECASE)
_STATE_KEYWORD_RE = re.compile(r"\s*([A-Za-z]+)")


class NodeState(enum.StrEnum):
    UP = "UP"
    DOWN = "DOWN"
    DECOMMISSIONED = "DECOMMISSIONED"
    UNINITIALIZED = "UNINITIALIZED"


@dataclasses.dataclass(frozen=True, order=True)
class ClusterStatus:
    """Status of nodes in the active cluster.

    Every node appears in exactly one of the sequences. Nodes are identified by IPv4 address,
    or by node name when the status was parsed without IP prefix.
    """

    nodes_decommissioned: tuple[str, ...] = ()
    nodes_down: tuple[str, ...] = ()
    nodes_uninitialized: tuple[str, ...] = ()
    nodes_up: tuple[str, ...] = ()

    @property
    def node_count(self) -> int:
        return (
            len(self.nodes_decommissioned)
            + len(self.nodes_down)
            + len(self.nodes_uninitialized)
            + len(self.nodes_up)
        )

    @property
    def all_nodes(self) -> tuple[str, ...]:
        return (
            *self.nodes_decommissioned,
            *self.nodes_down,
            *self.nodes_uninitialized,
            *self.nodes_up,
        )


def generate_node_name(node: int) -> str:
    return f"node{node}"


def generate_node_address(node: int, *, ip_prefix: str) -> str:
    """Return IPv4 address of the node, or node name if `ip_prefix` is empty."""
    if not ip_prefix:
        return generate_node_name(node)
    return f"{ip_prefix}{node}"


def generate_cluster_nodes(dc1_nodes: int, dc2_nodes: int = 0, *, separator: str = ":") -> str:
    """Return the nodes specification (e.g. `3:2`) for number of nodes in each data center."""
    if dc1_nodes < 1 or dc2_nodes < 0:
        msg = f"Invalid number of nodes: {dc1_nodes}{separator}{dc2_nodes}"
        raise ValueError(msg)
    if dc2_nodes > 0:
        return f"{dc1_nodes}{separator}{dc2_nodes}"
    return str(dc1_nodes)


def generate_cluster_name(
    *,
    version: str,
    dc1_nodes: int,
    dc2_nodes: int = 0,
    is_ssl: bool = False,
    is_client_authentication: bool = False,
    prefix: str,
    is_dse: bool = False,
) -> str:
    """Return deterministic cluster name for the given cluster parameters.

    >>> generate_cluster_name(version="2.1.9", dc1_nodes=2, dc2_nodes=1, prefix="t")
    't_2-1-9_2-1'
    """
    dse_part = "dse-" if is_dse else ""
    nodes_part = generate_cluster_nodes(dc1_nodes, dc2_nodes, separator="-")
    cluster_name = f"{prefix}_{dse_part}{versions.name_component(version)}_{nodes_part}"
    if is_ssl:
        cluster_name = f"{cluster_name}-ssl"
        if is_client_authentication:
            cluster_name = f"{cluster_name}-client_authentication"
    return cluster_name


def create_cmd(
    *,
    name: str,
    version: str,
    dc1_nodes: int,
    dc2_nodes: int = 0,
    ip_prefix: str,
    use_git: bool = False,
    use_dse: bool = False,
    dse_username: str = "",
    dse_password: str = "",
    is_ssl: bool = False,
    is_client_authentication: bool = False,
    ssl_path: str = "",
) -> list[str]:
    """Return `create` command for a new populated cluster.

    DSE download credentials are passed only when `dse_username` is set, otherwise `ccm` uses
    credentials from its INI file.
    """
    if use_git:
        version_arg = f"git:{version}" if use_dse else f"git:cassandra-{version}"
    else:
        version_arg = version

    dse_args: list[str] = []
    if use_dse:
        dse_args.append("--dse")
        if dse_username:
            dse_args.extend([f"--dse-username={dse_username}", f"--dse-password={dse_password}"])

    ssl_args: list[str] = []
    if is_ssl:
        ssl_args.append(f"--ssl={ssl_path}")
        if is_client_authentication:
            ssl_args.append("--require_client_auth")

    return [
        "create",
        name,
        "-v",
        version_arg,
        *dse_args,
        "-b",
        "-n",
        generate_cluster_nodes(dc1_nodes, dc2_nodes),
        "-i",
        ip_prefix,
        *ssl_args,
    ]


def create_updateconf_cmd(version: str) -> list[str]:
    """Return `updateconf` command with the baseline settings for a newly created cluster."""
    settings = [
        "--rt=10000",
        "read_request_timeout_in_ms:10000",
        "write_request_timeout_in_ms:10000",
        "request_timeout_in_ms:10000",
        "phi_convict_threshold:16",
        "hinted_handoff_enabled:false",
        "dynamic_snitch_badness_threshold:0.0",
        "max_hints_delivery_threads:8",
    ]

    if versions.is_at_least(version, "2.0.0"):
        settings.extend(["cas_contention_timeout_in_ms:10000", "file_cache_size_in_mb:0"])
    else:
        settings.extend(
            [
                "reduce_cache_sizes_at:0",
                "reduce_cache_capacity_to:0",
                "flush_largest_memtables_at:0",
                "index_interval:512",
            ]
        )

    if versions.is_at_least(version, "2.1.0"):
        settings.extend(
            [
                "native_transport_max_threads:1",
                "rpc_min_threads:1",
                "rpc_max_threads:1",
                "concurrent_reads:2",
                "concurrent_writes:2",
                "concurrent_compactors:1",
                "compaction_throughput_mb_per_sec:0",
                "key_cache_size_in_mb:0",
                "key_cache_save_period:0",
                "memtable_flush_writers:1",
            ]
        )
    if versions.is_at_least(version, "2.2.0"):
        settings.append("enable_user_defined_functions:true")
    if versions.is_at_least(version, "3.0.0"):
        settings.append("enable_scripted_user_defined_functions:true")

    return ["updateconf", *settings]


def switch_cmd(name: str) -> list[str]:
    return ["switch", name]


def list_cmd() -> list[str]:
    return ["list"]


def remove_cmd(name: str = "") -> list[str]:
    """Return `remove` command; the active cluster is removed when `name` is empty."""
    return ["remove", name] if name else ["remove"]


def status_cmd() -> list[str]:
    return ["status"]


def clear_cmd() -> list[str]:
    return ["clear"]


def updateconf_cmd(key_value_pairs: tp.Iterable[str], *, is_dse: bool = False) -> list[str]:
    """Return command updating `cassandra.yaml` (or `dse.yaml`) of all nodes."""
    pairs = list(key_value_pairs)
    if not pairs:
        msg = "No configuration to update."
        raise ValueError(msg)
    return ["updatedseconf" if is_dse else "updateconf", *pairs]


def _jvm_args(jvm_arguments: tp.Iterable[str]) -> list[str]:
    return [f"--jvm_arg={a}" for a in jvm_arguments if a]


def start_cluster_cmd(jvm_arguments: tp.Iterable[str] = ()) -> list[str]:
    return ["start", *WAIT_ARGS, *_jvm_args(jvm_arguments)]


def stop_cluster_cmd(*, is_kill: bool = False) -> list[str]:
    return ["stop", "--not-gently"] if is_kill else ["stop"]


def add_node_cmd(
    node: int, *, ip_prefix: str, data_center: str = "", is_dse: bool = False
) -> list[str]:
    cmd = [
        "add",
        generate_node_name(node),
        "-b",
        "-i",
        f"{ip_prefix}{node}",
        "-j",
        str(JMX_PORT_BASE + 100 * node),
    ]
    if data_center:
        cmd.extend(["-d", data_center])
    if is_dse:
        cmd.append("--dse")
    return cmd


def start_node_cmd(node: int, *, jvm_arguments: tp.Iterable[str] = ()) -> list[str]:
    return [generate_node_name(node), "start", *WAIT_ARGS, *_jvm_args(jvm_arguments)]


def stop_node_cmd(node: int, *, is_kill: bool = False) -> list[str]:
    cmd = [generate_node_name(node), "stop"]
    if is_kill:
        cmd.append("--not-gently")
    return cmd


def decommission_node_cmd(node: int) -> list[str]:
    return [generate_node_name(node), "decommission"]


def pause_node_cmd(node: int) -> list[str]:
    return [generate_node_name(node), "pause"]


def resume_node_cmd(node: int) -> list[str]:
    return [generate_node_name(node), "resume"]


def binary_protocol_cmd(node: int, *, enable: bool) -> list[str]:
    action = "enablebinary" if enable else "disablebinary"
    return [generate_node_name(node), "nodetool", action]


def gossip_cmd(node: int, *, enable: bool) -> list[str]:
    action = "enablegossip" if enable else "disablegossip"
    return [generate_node_name(node), "nodetool", action]


def cql_cmd(node: int, cql: str) -> list[str]:
    return [generate_node_name(node), "cqlsh", "-x", cql]


def cassandra_version_cmd() -> list[str]:
    return [generate_node_name(1), "versionfrombuild"]


def dse_version_cmd() -> list[str]:
    return [generate_node_name(1), "dse", "-v"]


def _get_node_state(state_str: str) -> NodeState:
    """Map the freeform state text to node state; unknown states are "uninitialized"."""
    lowered = helpers.to_lower(state_str)
    if "not initialized" in lowered:
        return NodeState.UNINITIALIZED

    keyword = _STATE_KEYWORD_RE.match(state_str)
    if not keyword:
        return NodeState.UNINITIALIZED
    try:
        return NodeState(keyword.group(1).upper())
    except ValueError:
        return NodeState.UNINITIALIZED


def parse_cluster_status(output: str, *, ip_prefix: str = "") -> ClusterStatus:
    """Parse output of the `status` command.

    Every node line has the `<node-name>: <STATE>` format. Other lines (cluster name, separators,
    blank lines) are skipped. Nodes are reported by IPv4 address when `ip_prefix` is given.
    """
    nodes: dict[NodeState, list[str]] = {s: [] for s in NodeState}
    seen: set[str] = set()

    for line in output.splitlines():
        match = _NODE_LINE_RE.match(line)
        if not match:
            continue

        node_name, node_num, state_str = match.groups()
        node_id = f"{ip_prefix}{node_num}" if ip_prefix else node_name.lower()
        if node_id in seen:
            continue
        seen.add(node_id)
        nodes[_get_node_state(state_str)].append(node_id)

    if not seen:
        msg = f"No node found in cluster status output: {output.strip()!r}"
        raise errors.StatusParseError(msg)

    return ClusterStatus(
        nodes_decommissioned=tuple(nodes[NodeState.DECOMMISSIONED]),
        nodes_down=tuple(nodes[NodeState.DOWN]),
        nodes_uninitialized=tuple(nodes[NodeState.UNINITIALIZED]),
        nodes_up=tuple(nodes[NodeState.UP]),
    )


def parse_cluster_list(output: str) -> tuple[list[str], str]:
    """Parse output of the `list` command.

    Returns:
        tuple[list[str], str]: Names of available clusters and name of the active cluster
            (marked with `*`), empty if there's no active cluster.
    """
    clusters: list[str] = []
    active_cluster = ""
    for line in output.splitlines():
        name = helpers.trim(line)
        if not name:
            continue
        if name.startswith("*"):
            name = helpers.trim(name[1:])
            active_cluster = name
        clusters.append(name)
    return clusters, active_cluster


def parse_release_version(output: str) -> str:
    """Parse output of the `versionfrombuild` command."""
    marker = "ReleaseVersion:"
    index = output.find(marker)
    version_line = output[index + len(marker) :].splitlines()[:1] if index != -1 else []
    tokens = helpers.explode(version_line[0]) if version_line else []
    if not tokens:
        msg = f"Unable to determine version information from output: {output.strip()!r}"
        raise errors.BridgeError(msg)
    return tokens[0]


def parse_dse_version(output: str) -> str:
    """Parse output of the `dse -v` command, i.e. the last non-empty line."""
    lines = [t for line in output.splitlines() if (t := helpers.trim(line))]
    if not lines:
        msg = "Unable to determine DSE version from empty output."
        raise errors.BridgeError(msg)
    return lines[-1]
