"""Lock guarding setup of the cluster shared by pytest-xdist workers."""

import contextlib
import logging
import typing as tp

import filelock

from ccm_bridge.utils import configuration
from ccm_bridge.utils import types as ttypes

LOGGER = logging.getLogger(__name__)

# Suppress messages from filelock
logging.getLogger("filelock").setLevel(logging.WARNING)


def cluster_setup_lock(lock_file: ttypes.FileType, *, timeout: float = -1) -> tp.ContextManager:
    """Return lock for creating or starting the shared cluster.

    A dummy lock is returned when not executing with multiple workers.
    """
    if not configuration.IS_XDIST:
        return contextlib.nullcontext()
    LOGGER.debug(f"Using cluster setup lock '{lock_file}'.")
    return filelock.FileLock(str(lock_file), timeout=timeout)
