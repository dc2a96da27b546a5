"""Bounded polling of cluster status."""

import logging
import time
import typing as tp

from ccm_bridge.utils import ccm_commands
from ccm_bridge.utils import configuration

LOGGER = logging.getLogger(__name__)

StatusPredicate = tp.Callable[[ccm_commands.ClusterStatus], bool]


def all_nodes_up(status: ccm_commands.ClusterStatus) -> bool:
    """Check that there's a node that is up and no node is down or uninitialized."""
    return bool(status.nodes_up) and not (status.nodes_down or status.nodes_uninitialized)


def all_nodes_down(status: ccm_commands.ClusterStatus) -> bool:
    return not status.nodes_up


def node_up(node_address: str) -> StatusPredicate:
    def _predicate(status: ccm_commands.ClusterStatus) -> bool:
        return node_address in status.nodes_up

    return _predicate


def node_down(node_address: str) -> StatusPredicate:
    def _predicate(status: ccm_commands.ClusterStatus) -> bool:
        return node_address in status.nodes_down

    return _predicate


class StatusPoller:
    """Query cluster status until a predicate holds or the number of attempts is exhausted.

    Only the "predicate not satisfied yet" condition is retried. Errors raised while querying
    the status propagate immediately.
    """

    def __init__(
        self,
        status_func: tp.Callable[[], ccm_commands.ClusterStatus],
        *,
        attempts: int = configuration.STATUS_ATTEMPTS,
        delay: float = configuration.STATUS_DELAY,
    ) -> None:
        if attempts < 1:
            msg = f"Invalid number of attempts '{attempts}': must be >= 1"
            raise ValueError(msg)
        self.status_func = status_func
        self.attempts = attempts
        self.delay = delay

    def poll(self, predicate: StatusPredicate, *, description: str = "condition") -> bool:
        """Return True on the first status that satisfies the predicate."""
        for attempt in range(1, self.attempts + 1):
            if attempt > 1 and self.delay > 0:
                time.sleep(self.delay)

            status = self.status_func()
            if predicate(status):
                LOGGER.debug(f"Cluster status satisfied '{description}' on attempt {attempt}.")
                return True
            LOGGER.debug(
                f"Cluster status doesn't satisfy '{description}' yet "
                f"(attempt {attempt}/{self.attempts}): {status}"
            )

        LOGGER.warning(
            f"Cluster status didn't satisfy '{description}' in {self.attempts} attempts."
        )
        return False
