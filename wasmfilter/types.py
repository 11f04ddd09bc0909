"""Public types for filter plugins: actions, peer types, host errors and contexts."""

from __future__ import annotations

import enum
from typing import Optional


class Action(enum.IntEnum):
    """What a context asks the host to do with the stream."""

    CONTINUE = 0
    PAUSE = 1


class PeerType(enum.IntEnum):
    """The kind of peer on the other end of a connection."""

    UNKNOWN = 0
    LOCAL = 1
    REMOTE = 2


class ProxyStatusError(Exception):
    """Raised when the host answers a call with a non-OK status."""

    default_message = "error status returned by host"

    def __init__(self, message: Optional[str] = None) -> None:
        super().__init__(message if message is not None else self.default_message)


class StatusNotFoundError(ProxyStatusError):
    """The requested item does not exist."""

    default_message = "error status returned by host: not found"


class StatusBadArgumentError(ProxyStatusError):
    """The arguments of a host call are invalid."""

    default_message = "error status returned by host: bad argument"


class StatusEmptyError(ProxyStatusError):
    """The shared queue being read is empty."""

    default_message = "error status returned by host: empty"


class StatusCasMismatchError(ProxyStatusError):
    """The CAS value given for shared data is stale; retrying is advised."""

    default_message = "error status returned by host: cas mismatch"


class InternalFailureError(ProxyStatusError):
    """The host failed internally."""

    default_message = "error status returned by host: internal failure"


class UnimplementedError(ProxyStatusError):
    """The host does not implement the call."""

    default_message = "error status returned by host: unimplemented"


class VMContext:
    """One per virtual machine; creates a plugin context per plugin configuration.

    The base class accepts every start and creates instances of
    ``plugin_context_class``; subclasses override what they need.
    """

    plugin_context_class: type = None  # type: ignore[assignment]
    vm_configuration_size: Optional[int] = None

    def on_vm_start(self, vm_configuration_size: int) -> bool:
        """Called once the VM is created; return False to fail the VM."""
        self.vm_configuration_size = vm_configuration_size
        return True

    def new_plugin_context(self, context_id: int) -> "PluginContext":
        """Create the plugin context for a plugin configuration."""
        factory = self.plugin_context_class or PluginContext
        return factory()


class PluginContext:
    """One per plugin configuration; creates stream contexts.

    Stream contexts are created from ``tcp_context_class`` and
    ``http_context_class``; left as None, the plugin does not handle
    that kind of stream.
    """

    tcp_context_class: Optional[type] = None
    http_context_class: Optional[type] = None
    plugin_configuration_size: Optional[int] = None
    last_ready_queue_id: Optional[int] = None
    tick_count: int = 0

    def on_plugin_start(self, plugin_configuration_size: int) -> bool:
        """Called when the plugin starts; return False to fail it."""
        self.plugin_configuration_size = plugin_configuration_size
        return True

    def on_plugin_done(self) -> bool:
        """Called before deletion; return False while work is still pending."""
        return True

    def on_queue_ready(self, queue_id: int) -> None:
        """Called when a registered shared queue has data."""
        self.last_ready_queue_id = queue_id

    def on_tick(self) -> None:
        """Called on every tick period set by the plugin."""
        self.tick_count += 1

    def new_tcp_context(self, context_id: int) -> Optional["TcpContext"]:
        """Create a context for a TCP stream, or None if not a TCP plugin."""
        if self.tcp_context_class is None:
            return None
        return self.tcp_context_class()

    def new_http_context(self, context_id: int) -> Optional["HttpContext"]:
        """Create a context for an HTTP stream, or None if not an HTTP plugin."""
        if self.http_context_class is None:
            return None
        return self.http_context_class()


class TcpContext:
    """Handles the events of one TCP stream."""

    downstream_closed_by: Optional[PeerType] = None
    upstream_closed_by: Optional[PeerType] = None

    def on_new_connection(self) -> Action:
        return Action.CONTINUE

    def on_downstream_data(self, data_size: int, end_of_stream: bool) -> Action:
        return Action.CONTINUE

    def on_downstream_close(self, peer_type: PeerType) -> None:
        """Record which peer closed the downstream connection."""
        self.downstream_closed_by = PeerType(peer_type)

    def on_upstream_data(self, data_size: int, end_of_stream: bool) -> Action:
        return Action.CONTINUE

    def on_upstream_close(self, peer_type: PeerType) -> None:
        """Record which peer closed the upstream connection."""
        self.upstream_closed_by = PeerType(peer_type)

    def on_stream_done(self) -> None:
        pass


class HttpContext:
    """Handles the events of one HTTP stream."""

    def on_http_request_headers(self, num_headers: int, end_of_stream: bool) -> Action:
        return Action.CONTINUE

    def on_http_request_body(self, body_size: int, end_of_stream: bool) -> Action:
        return Action.CONTINUE

    def on_http_request_trailers(self, num_trailers: int) -> Action:
        return Action.CONTINUE

    def on_http_response_headers(self, num_headers: int, end_of_stream: bool) -> Action:
        return Action.CONTINUE

    def on_http_response_body(self, body_size: int, end_of_stream: bool) -> Action:
        return Action.CONTINUE

    def on_http_response_trailers(self, num_trailers: int) -> Action:
        return Action.CONTINUE

    def on_http_stream_done(self) -> None:
        pass