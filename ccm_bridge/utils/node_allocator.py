"""Bookkeeping of node slots within a fixed-capacity cluster."""

import logging
import typing as tp

from ccm_bridge.utils import configuration
from ccm_bridge.utils import errors

LOGGER = logging.getLogger(__name__)


class NodeAllocator:
    """Track which of the node ids `1..capacity` are in use.

    Ids are handed out in ascending order, so node naming is reproducible for the same history of
    allocations and releases.
    """

    def __init__(self, capacity: int = configuration.CLUSTER_NODE_LIMIT) -> None:
        if capacity < 1:
            msg = f"Invalid capacity '{capacity}': must be >= 1"
            raise ValueError(msg)
        self.capacity = capacity
        self._in_use: set[int] = set()

    @property
    def in_use(self) -> tuple[int, ...]:
        return tuple(sorted(self._in_use))

    def is_valid(self, node: int) -> bool:
        return 1 <= node <= self.capacity

    def check_node(self, node: int) -> None:
        """Fail if the node id is outside of `1..capacity`."""
        if not self.is_valid(node):
            msg = f"Node {node} is out of the range 1..{self.capacity}."
            raise errors.NodeNotFoundError(msg)

    def is_in_use(self, node: int) -> bool:
        return node in self._in_use

    def next_available(self) -> int:
        """Return the lowest free node id and mark it as in use."""
        for node in range(1, self.capacity + 1):
            if node not in self._in_use:
                self._in_use.add(node)
                LOGGER.debug(f"Allocated node {node}.")
                return node

        msg = f"Maximum node limit of {self.capacity} nodes has been reached."
        raise errors.CapacityExhaustedError(msg)

    def reserve(self, node: int) -> None:
        """Mark the node id as in use."""
        self.check_node(node)
        self._in_use.add(node)

    def release(self, node: int) -> None:
        """Mark the node id as free; releasing a free id is a no-op."""
        if node in self._in_use:
            self._in_use.discard(node)
            LOGGER.debug(f"Released node {node}.")

    def reset(self, in_use: tp.Iterable[int] = ()) -> None:
        """Forget all allocations and mark the given ids as in use."""
        self._in_use.clear()
        for node in in_use:
            self.reserve(node)
