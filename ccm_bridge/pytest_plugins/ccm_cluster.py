"""Pytest fixtures providing a running `ccm` cluster.

Enable the plugin in `conftest.py`:

    pytest_plugins = ("ccm_bridge.pytest_plugins.ccm_cluster",)

The cluster topology and the bridge settings are taken from the `CCM_*` env variables.
When running with multiple pytest-xdist workers, the cluster is shared by all the workers.
"""

import logging
import pathlib as pl
import typing as tp

import pytest
from _pytest.config import Config
from _pytest.fixtures import FixtureRequest
from _pytest.tmpdir import TempPathFactory

from ccm_bridge import bridge
from ccm_bridge.utils import bridge_config as bconfig
from ccm_bridge.utils import configuration
from ccm_bridge.utils import errors
from ccm_bridge.utils import locking
from ccm_bridge.utils import status_poller

LOGGER = logging.getLogger(__name__)

KEEP_CLUSTER_ARG = "--ccm-keep-cluster"
LOCK_FILE_NAME = "ccm_cluster.lock"


def pytest_addoption(parser: tp.Any) -> None:
    parser.addoption(
        KEEP_CLUSTER_ARG,
        action="store_true",
        default=configuration.KEEP_CLUSTER,
        help="Don't remove the `ccm` cluster at the end of session",
    )


def _get_lock_file(tmp_path_factory: TempPathFactory) -> pl.Path:
    worker_tmp = pl.Path(tmp_path_factory.getbasetemp())
    root_tmp = worker_tmp.parent if configuration.IS_XDIST else worker_tmp
    return root_tmp / LOCK_FILE_NAME


def _should_remove(config: Config) -> bool:
    # Other workers may still be using the shared cluster
    if configuration.IS_XDIST:
        return False
    return not config.getoption(KEEP_CLUSTER_ARG)


@pytest.fixture(scope="session")
def bridge_config() -> bconfig.BridgeConfig:
    """Return bridge configuration taken from env variables."""
    return bconfig.BridgeConfig.from_env()


@pytest.fixture(scope="session")
def ccm_bridge(bridge_config: bconfig.BridgeConfig) -> tp.Generator[bridge.Bridge, None, None]:
    """Return `bridge.Bridge` instance, closed at the end of session."""
    with bridge.Bridge(bridge_config) as ccm_bridge:
        yield ccm_bridge


@pytest.fixture(scope="session")
def ccm_cluster(
    ccm_bridge: bridge.Bridge,
    request: FixtureRequest,
    tmp_path_factory: TempPathFactory,
) -> tp.Generator[bridge.Bridge, None, None]:
    """Create and start the configured cluster, remove it at the end of session."""
    # Hide from traceback to make logs errors more readable
    __tracebackhide__ = True

    with locking.cluster_setup_lock(_get_lock_file(tmp_path_factory)):
        if not ccm_bridge.create_cluster(configuration.DC1_NODES, configuration.DC2_NODES):
            msg = "Failed to create the `ccm` cluster."
            raise errors.BridgeError(msg)

        is_up = status_poller.all_nodes_up(ccm_bridge.cluster_status())
        if not (is_up or ccm_bridge.start_cluster()):
            msg = "Failed to start the `ccm` cluster."
            raise errors.BridgeError(msg)

    LOGGER.info(f"Using cluster '{ccm_bridge.get_active_cluster()}'.")
    yield ccm_bridge

    if not _should_remove(request.config):
        return

    LOGGER.info("Removing the `ccm` cluster.")
    ccm_bridge.stop_cluster()
    ccm_bridge.remove_cluster()
