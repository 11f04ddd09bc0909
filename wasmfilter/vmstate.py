"""Context bookkeeping for one virtual machine and dispatch of host callbacks."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Dict, Optional

from .types import (
    Action,
    HttpContext,
    PeerType,
    PluginContext,
    TcpContext,
    VMContext,
)

HttpCalloutCallback = Callable[[int, int, int], None]


class InvalidContextError(RuntimeError):
    """Raised when a callback names a context or callout that does not exist."""


@dataclass
class HttpCallback:
    """A pending HTTP callout and the context that dispatched it."""

    callback: HttpCalloutCallback
    caller_context_id: int = 0


@dataclass
class PluginContextState:
    """A plugin context together with its pending HTTP callouts."""

    context: Optional[PluginContext] = None
    http_callbacks: Dict[int, HttpCallback] = field(default_factory=dict)


class VMState:
    """Holds every live context of a VM and routes host events to them."""

    def __init__(self, vm_context: Optional[VMContext] = None) -> None:
        self.reset()
        self.vm_context = vm_context
        # Called with the caller's context id before an HTTP callout response
        # is delivered, so a host can switch its effective context.
        self.effective_context_hook: Optional[Callable[[int], None]] = None

    def reset(self) -> None:
        """Forget the VM context and every context created so far."""
        self.vm_context: Optional[VMContext] = None
        self.plugin_contexts: Dict[int, PluginContextState] = {}
        self.http_contexts: Dict[int, HttpContext] = {}
        self.tcp_contexts: Dict[int, TcpContext] = {}
        self.context_id_to_root_id: Dict[int, int] = {}
        self.active_context_id = 0

    # Context creation

    def create_plugin_context(self, context_id: int) -> None:
        """Create a plugin context through the VM context."""
        if self.vm_context is None:
            raise InvalidContextError("no VM context is set")
        context = self.vm_context.new_plugin_context(context_id)
        self.plugin_contexts[context_id] = PluginContextState(context=context)
        # A plugin context is its own root so that callouts made from it resolve.
        self.context_id_to_root_id[context_id] = context_id

    def _plugin_for_stream(self, context_id: int, plugin_context_id: int,
                           existing: dict) -> PluginContext:
        root = self.plugin_contexts.get(plugin_context_id)
        if root is None or root.context is None:
            raise InvalidContextError(f"invalid plugin context id: {plugin_context_id}")
        if context_id in existing:
            raise InvalidContextError(f"context id duplicated: {context_id}")
        return root.context

    def create_tcp_context(self, context_id: int, plugin_context_id: int) -> bool:
        """Create a TCP context; return False if the plugin does not make one."""
        plugin = self._plugin_for_stream(context_id, plugin_context_id, self.tcp_contexts)
        context = plugin.new_tcp_context(context_id)
        if context is None:
            return False
        self.context_id_to_root_id[context_id] = plugin_context_id
        self.tcp_contexts[context_id] = context
        return True

    def create_http_context(self, context_id: int, plugin_context_id: int) -> bool:
        """Create an HTTP context; return False if the plugin does not make one."""
        plugin = self._plugin_for_stream(context_id, plugin_context_id, self.http_contexts)
        context = plugin.new_http_context(context_id)
        if context is None:
            return False
        self.context_id_to_root_id[context_id] = plugin_context_id
        self.http_contexts[context_id] = context
        return True

    def register_http_callout(self, callout_id: int, callback: HttpCalloutCallback) -> None:
        """Remember a callout made by the active context under its plugin context."""
        root_id = self.context_id_to_root_id.get(self.active_context_id)
        root = self.plugin_contexts.get(root_id) if root_id is not None else None
        if root is None:
            raise InvalidContextError(
                f"no plugin context for active context {self.active_context_id}")
        root.http_callbacks[callout_id] = HttpCallback(
            callback=callback, caller_context_id=self.active_context_id)

    # Lookups

    def _plugin(self, context_id: int, message: str) -> PluginContext:
        state = self.plugin_contexts.get(context_id)
        if state is None or state.context is None:
            raise InvalidContextError(message)
        self.active_context_id = context_id
        return state.context

    def _tcp(self, context_id: int) -> TcpContext:
        context = self.tcp_contexts.get(context_id)
        if context is None:
            raise InvalidContextError(f"invalid context: {context_id}")
        self.active_context_id = context_id
        return context

    def _http(self, context_id: int, event: str) -> HttpContext:
        context = self.http_contexts.get(context_id)
        if context is None:
            raise InvalidContextError(f"invalid context {context_id} on {event}")
        self.active_context_id = context_id
        return context

    # VM and plugin configuration

    def on_vm_start(self, vm_configuration_size: int) -> bool:
        if self.vm_context is None:
            raise InvalidContextError("no VM context is set")
        return self.vm_context.on_vm_start(vm_configuration_size)

    def on_configure(self, plugin_context_id: int, plugin_configuration_size: int) -> bool:
        plugin = self._plugin(plugin_context_id, "invalid context on proxy_on_configure")
        return plugin.on_plugin_start(plugin_configuration_size)

    # TCP streams

    def on_new_connection(self, context_id: int) -> Action:
        return self._tcp(context_id).on_new_connection()

    def on_downstream_data(self, context_id: int, data_size: int, end_of_stream: bool) -> Action:
        return self._tcp(context_id).on_downstream_data(data_size, end_of_stream)

    def on_downstream_connection_close(self, context_id: int, peer_type: PeerType) -> None:
        self._tcp(context_id).on_downstream_close(peer_type)

    def on_upstream_data(self, context_id: int, data_size: int, end_of_stream: bool) -> Action:
        return self._tcp(context_id).on_upstream_data(data_size, end_of_stream)

    def on_upstream_connection_close(self, context_id: int, peer_type: PeerType) -> None:
        self._tcp(context_id).on_upstream_close(peer_type)

    # HTTP streams

    def on_request_headers(self, context_id: int, num_headers: int, end_of_stream: bool) -> Action:
        context = self._http(context_id, "proxy_on_request_headers")
        return context.on_http_request_headers(num_headers, end_of_stream)

    def on_request_body(self, context_id: int, body_size: int, end_of_stream: bool) -> Action:
        context = self._http(context_id, "proxy_on_request_body")
        return context.on_http_request_body(body_size, end_of_stream)

    def on_request_trailers(self, context_id: int, num_trailers: int) -> Action:
        context = self._http(context_id, "proxy_on_request_trailers")
        return context.on_http_request_trailers(num_trailers)

    def on_response_headers(self, context_id: int, num_headers: int, end_of_stream: bool) -> Action:
        context = self._http(context_id, "proxy_on_response_headers")
        return context.on_http_response_headers(num_headers, end_of_stream)

    def on_response_body(self, context_id: int, body_size: int, end_of_stream: bool) -> Action:
        context = self._http(context_id, "proxy_on_response_body")
        return context.on_http_response_body(body_size, end_of_stream)

    def on_response_trailers(self, context_id: int, num_trailers: int) -> Action:
        context = self._http(context_id, "proxy_on_response_trailers")
        return context.on_http_response_trailers(num_trailers)

    def on_http_call_response(self, plugin_context_id: int, callout_id: int,
                              num_headers: int, body_size: int, num_trailers: int) -> None:
        """Deliver a callout response to the context that dispatched the callout."""
        root = self.plugin_contexts.get(plugin_context_id)
        if root is None:
            raise InvalidContextError("http_call_response on invalid plugin context")
        pending = root.http_callbacks.get(callout_id)
        if pending is None:
            raise InvalidContextError(f"invalid callout id: {callout_id}")
        if self.effective_context_hook is not None:
            self.effective_context_hook(pending.caller_context_id)
        self.active_context_id = pending.caller_context_id
        del root.http_callbacks[callout_id]
        pending.callback(num_headers, body_size, num_trailers)

    # Lifecycle

    def on_context_create(self, context_id: int, plugin_context_id: int) -> None:
        """Create a plugin context (root id 0) or a stream context under a plugin."""
        if plugin_context_id == 0:
            self.create_plugin_context(context_id)
        elif self.create_http_context(context_id, plugin_context_id):
            pass
        elif self.create_tcp_context(context_id, plugin_context_id):
            pass
        else:
            raise InvalidContextError(
                f"invalid context id on proxy_on_context_create: {context_id}")

    def on_log(self, context_id: int) -> None:
        """Tell a stream context that its stream is done."""
        tcp = self.tcp_contexts.get(context_id)
        if tcp is not None:
            self.active_context_id = context_id
            tcp.on_stream_done()
            return
        http = self.http_contexts.get(context_id)
        if http is not None:
            self.active_context_id = context_id
            http.on_http_stream_done()

    def on_done(self, context_id: int) -> bool:
        """Ask a plugin context whether it may be deleted."""
        state = self.plugin_contexts.get(context_id)
        if state is None or state.context is None:
            return True
        self.active_context_id = context_id
        return state.context.on_plugin_done()

    def on_delete(self, context_id: int) -> None:
        """Drop a context of any kind."""
        self.context_id_to_root_id.pop(context_id, None)
        for contexts in (self.tcp_contexts, self.http_contexts, self.plugin_contexts):
            if context_id in contexts:
                del contexts[context_id]
                return
        raise InvalidContextError(f"invalid context on proxy_on_delete: {context_id}")

    # Queues and timers

    def on_queue_ready(self, context_id: int, queue_id: int) -> None:
        self._plugin(context_id, "invalid context").on_queue_ready(queue_id)

    def on_tick(self, plugin_context_id: int) -> None:
        self._plugin(plugin_context_id, "invalid root_context_id").on_tick()