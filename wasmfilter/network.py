"""TCP stream emulation: upstream and downstream data buffers."""

from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional, Tuple

from .abi import BufferType
from .root import PLUGIN_CONTEXT_ID
from .types import Action, PeerType, StatusBadArgumentError, StatusNotFoundError
from .vmstate import InvalidContextError, VMState

logger = logging.getLogger(__name__)

_NETWORK_BUFFER_TYPES = (BufferType.DOWNSTREAM_DATA, BufferType.UPSTREAM_DATA)


@dataclass
class _Connection:
    buffers: Dict[BufferType, bytes] = field(
        default_factory=lambda: {buffer_type: b"" for buffer_type in _NETWORK_BUFFER_TYPES})


class NetworkHost:
    """Emulates the host side of TCP connections handled by a plugin."""

    def __init__(self, state: VMState,
                 next_context_id: Optional[Callable[[], int]] = None) -> None:
        self.state = state
        if next_context_id is None:
            next_context_id = itertools.count(PLUGIN_CONTEXT_ID + 1).__next__
        self._next_context_id = next_context_id
        self._connections: Dict[int, _Connection] = {}

    def _connection(self, context_id: int) -> _Connection:
        connection = self._connections.get(context_id)
        if connection is None:
            raise InvalidContextError(f"invalid context id: {context_id}")
        return connection

    # Host calls made by the plugin

    def get_network_buffer_bytes(self, buffer_type: BufferType, start: int,
                                 max_size: int) -> bytes:
        """Read at most max_size bytes of the active connection's data from start."""
        if buffer_type not in _NETWORK_BUFFER_TYPES:
            raise ValueError(f"unsupported buffer type: {buffer_type}")
        buf = self._connection(self.state.active_context_id).buffers[BufferType(buffer_type)]
        if not buf:
            raise StatusNotFoundError()
        if start >= len(buf):
            logger.info("start index out of range: %d (start) >= %d", start, len(buf))
            raise StatusBadArgumentError()
        return buf[start:start + max_size]

    # Driving the plugin

    def _feed(self, context_id: int, buffer_type: BufferType, data: bytes,
              deliver: Callable[[int, int, bool], Action]) -> Action:
        connection = self._connection(context_id)
        if data:
            connection.buffers[buffer_type] += bytes(data)
        action = deliver(context_id, len(connection.buffers[buffer_type]), False)
        if action == Action.CONTINUE:
            connection.buffers[buffer_type] = b""
        elif action != Action.PAUSE:
            raise ValueError(f"invalid action type: {int(action)}")
        return Action(action)

    def call_on_upstream_data(self, context_id: int, data: bytes) -> Action:
        """Deliver upstream data; it stays buffered while the plugin pauses."""
        return self._feed(context_id, BufferType.UPSTREAM_DATA, data,
                          self.state.on_upstream_data)

    def call_on_downstream_data(self, context_id: int, data: bytes) -> Action:
        """Deliver downstream data; it stays buffered while the plugin pauses."""
        return self._feed(context_id, BufferType.DOWNSTREAM_DATA, data,
                          self.state.on_downstream_data)

    def initialize_connection(self) -> Tuple[int, Action]:
        """Open a connection under the plugin context; return its id and action."""
        context_id = self._next_context_id()
        self.state.on_context_create(context_id, PLUGIN_CONTEXT_ID)
        action = self.state.on_new_connection(context_id)
        self._connections[context_id] = _Connection()
        return context_id, action

    def close_upstream_connection(self, context_id: int) -> None:
        self.state.on_upstream_connection_close(context_id, PeerType.LOCAL)

    def close_downstream_connection(self, context_id: int) -> None:
        self.state.on_downstream_connection_close(context_id, PeerType.LOCAL)

    def complete_connection(self, context_id: int) -> None:
        """Finish the connection's stream and drop its context."""
        self.state.on_log(context_id)
        self.state.on_delete(context_id)
        self._connections.pop(context_id, None)