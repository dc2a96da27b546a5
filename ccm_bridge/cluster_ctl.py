#!/usr/bin/env python3
"""Manage `ccm` test clusters from the command line.

For settings it uses the same env variables as the pytest plugin, or a `KEY=VALUE`
configuration file.
"""

import argparse
import logging
import sys

from ccm_bridge import bridge
from ccm_bridge.utils import bridge_config
from ccm_bridge.utils import errors
from ccm_bridge.utils import helpers

LOGGER = logging.getLogger(__name__)


def get_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Get command line arguments."""
    parser = argparse.ArgumentParser(description=(__doc__ or "").split("\n", maxsplit=1)[0])
    parser.add_argument(
        "-c",
        "--config-file",
        type=helpers.check_file_arg,
        help="Path to `KEY=VALUE` configuration file.",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Log commands that are being run.",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    parser_create = subparsers.add_parser(
        "create", help="Create cluster, or switch to it if it already exists."
    )
    parser_create.add_argument(
        "--dc1",
        type=int,
        default=1,
        help="Number of nodes in the first data center (default: 1)",
    )
    parser_create.add_argument(
        "--dc2",
        type=int,
        default=0,
        help="Number of nodes in the second data center (default: 0)",
    )
    parser_create.add_argument("--ssl", action="store_true", help="Enable SSL.")
    parser_create.add_argument(
        "--client-auth", action="store_true", help="Require client authentication (with SSL)."
    )
    parser_create.add_argument(
        "--start", action="store_true", help="Start the cluster once it's created."
    )

    subparsers.add_parser("status", help="Show status of nodes of the active cluster.")

    parser_start = subparsers.add_parser("start", help="Start the active cluster.")
    parser_start.add_argument(
        "--jvm-arg",
        action="append",
        default=[],
        help="JVM argument passed to all nodes, can be repeated.",
    )

    parser_stop = subparsers.add_parser("stop", help="Stop the active cluster.")
    parser_stop.add_argument("--kill", action="store_true", help="Kill the nodes.")

    parser_remove = subparsers.add_parser("remove", help="Remove cluster.")
    parser_remove.add_argument(
        "--name", default="", help="Name of the cluster (default: the active cluster)"
    )

    parser_remove_all = subparsers.add_parser(
        "remove-all", help="Remove clusters created with the configured prefix."
    )
    parser_remove_all.add_argument(
        "--all", action="store_true", dest="is_all", help="Remove all clusters."
    )

    subparsers.add_parser("list", help="List available clusters.")

    return parser.parse_args(argv)


def get_config(args: argparse.Namespace) -> bridge_config.BridgeConfig:
    if args.config_file:
        return bridge_config.BridgeConfig.from_file(args.config_file)
    return bridge_config.BridgeConfig.from_env()


def run_command(ccm_bridge: bridge.Bridge, args: argparse.Namespace) -> bool:
    """Run the subcommand, return False if the cluster didn't reach the expected state."""
    command = args.command

    if command == "create":
        is_active = ccm_bridge.create_cluster(
            args.dc1,
            args.dc2,
            is_ssl=args.ssl,
            is_client_authentication=args.client_auth,
        )
        if not is_active:
            LOGGER.error("The cluster is not active after creation.")
            return False
        LOGGER.info(f"Active cluster: {ccm_bridge.get_active_cluster()}")
        return ccm_bridge.start_cluster() if args.start else True

    if command == "status":
        status = ccm_bridge.cluster_status()
        LOGGER.info(f"Nodes up: {helpers.implode(status.nodes_up)}")
        LOGGER.info(f"Nodes down: {helpers.implode(status.nodes_down)}")
        LOGGER.info(f"Nodes uninitialized: {helpers.implode(status.nodes_uninitialized)}")
        LOGGER.info(f"Nodes decommissioned: {helpers.implode(status.nodes_decommissioned)}")
        return True

    if command == "start":
        return ccm_bridge.start_cluster(args.jvm_arg)

    if command == "stop":
        return ccm_bridge.stop_cluster(is_kill=args.kill)

    if command == "remove":
        ccm_bridge.remove_cluster(args.name)
        return True

    if command == "remove-all":
        removed = ccm_bridge.remove_all_clusters(is_all=args.is_all)
        LOGGER.info(f"Removed clusters: {helpers.implode(removed, delimiter=', ')}")
        return True

    if command == "list":
        clusters, active_cluster = ccm_bridge.list_clusters()
        clusters_str = "\n".join(f" {'*' if c == active_cluster else ' '} {c}" for c in clusters)
        LOGGER.info(f"Available clusters:\n{clusters_str}")
        return True

    msg = f"Unknown command: {command}"
    raise ValueError(msg)


def main(argv: list[str] | None = None) -> int:
    args = get_args(argv)
    logging.basicConfig(
        format="%(levelname)s:%(message)s",
        level=logging.DEBUG if args.verbose else logging.INFO,
    )

    try:
        config = get_config(args)
        with bridge.Bridge(config) as ccm_bridge:
            is_success = run_command(ccm_bridge, args)
    except (errors.BridgeError, ValueError):
        LOGGER.exception("Failure")
        return 1

    return 0 if is_success else 1


if __name__ == "__main__":
    sys.exit(main())
