"""A complete host emulator for exercising plugins without a proxy."""

from __future__ import annotations

import itertools
import logging
from typing import List, Optional, Sequence, Tuple

from .abi import BufferType, MapType, StreamType, serialize_property_path
from .http import HttpHost
from .network import NetworkHost
from .root import PLUGIN_CONTEXT_ID, EmulatorOption, RootHost
from .types import UnimplementedError
from .vmstate import VMState

logger = logging.getLogger(__name__)

_ROOT_BUFFERS = (
    BufferType.PLUGIN_CONFIGURATION,
    BufferType.VM_CONFIGURATION,
    BufferType.HTTP_CALL_RESPONSE_BODY,
)
_NETWORK_BUFFERS = (BufferType.DOWNSTREAM_DATA, BufferType.UPSTREAM_DATA)
_HTTP_BUFFERS = (BufferType.HTTP_REQUEST_BODY, BufferType.HTTP_RESPONSE_BODY)

_HTTP_MAPS = (
    MapType.HTTP_REQUEST_HEADERS,
    MapType.HTTP_RESPONSE_HEADERS,
    MapType.HTTP_REQUEST_TRAILERS,
    MapType.HTTP_RESPONSE_TRAILERS,
)
_CALLOUT_MAPS = (MapType.HTTP_CALL_RESPONSE_HEADERS, MapType.HTTP_CALL_RESPONSE_TRAILERS)


class HostEmulator(RootHost, NetworkHost, HttpHost):
    """Root, network and HTTP host emulation over one VM with one plugin context.

    Host calls the emulator does not support are logged and recorded in
    ``unsupported_calls`` as (call name, detail) pairs.
    """

    def __init__(self, option: Optional[EmulatorOption] = None) -> None:
        option = option if option is not None else EmulatorOption()
        state = VMState(option.vm_context)
        next_context_id = itertools.count(PLUGIN_CONTEXT_ID + 1).__next__
        RootHost.__init__(self, state, option.plugin_configuration, option.vm_configuration)
        NetworkHost.__init__(self, state, next_context_id)
        HttpHost.__init__(self, state, next_context_id)
        self.effective_context_id = 0
        self.unsupported_calls: List[Tuple[str, str]] = []
        state.effective_context_hook = self.set_effective_context
        state.on_context_create(PLUGIN_CONTEXT_ID, 0)

    def __enter__(self) -> "HostEmulator":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def _note_unsupported(self, call: str, detail: str = "") -> None:
        logger.info("%s is not supported by the host emulator %s", call, detail)
        self.unsupported_calls.append((call, detail))

    def get_buffer_bytes(self, buffer_type: BufferType, start: int, max_size: int) -> bytes:
        """Read from whichever buffer the type names."""
        if buffer_type in _ROOT_BUFFERS:
            return self.get_root_buffer_bytes(buffer_type, start, max_size)
        if buffer_type in _NETWORK_BUFFERS:
            return self.get_network_buffer_bytes(buffer_type, start, max_size)
        if buffer_type in _HTTP_BUFFERS:
            return self.get_http_buffer_bytes(buffer_type, start, max_size)
        raise ValueError(f"unsupported buffer type: {buffer_type}")

    def set_buffer_bytes(self, buffer_type: BufferType, start: int, max_size: int,
                         data: bytes) -> None:
        """Modify an HTTP body buffer; other buffers cannot be written."""
        if buffer_type in _HTTP_BUFFERS:
            self.set_http_buffer_bytes(buffer_type, start, max_size, data)
            return
        raise ValueError(
            f"buffer type {int(buffer_type)} is not supported by the host emulator")

    def get_header_map_value(self, map_type: MapType, key: str) -> str:
        if map_type in _HTTP_MAPS:
            return self.get_http_header_map_value(map_type, key)
        if map_type in _CALLOUT_MAPS:
            return self.get_callout_response_map_value(map_type, key)
        raise ValueError(f"unsupported map type: {map_type}")

    def get_header_map_pairs(self, map_type: MapType) -> bytes:
        """Return a serialized header or trailer map."""
        if map_type in _HTTP_MAPS:
            return self.get_http_header_map_pairs(map_type)
        if map_type in _CALLOUT_MAPS:
            return self.get_callout_response_map_pairs(map_type)
        raise ValueError(f"unsupported map type: {map_type}")

    def set_effective_context(self, context_id: int) -> None:
        """Make context_id the context that subsequent host calls act on."""
        self.effective_context_id = context_id
        self.state.active_context_id = context_id

    def set_property(self, path: Sequence[str], value: bytes) -> None:
        """Always fails: the emulator has no property store."""
        key = serialize_property_path(list(path))
        self._note_unsupported("set_property", repr(key))
        raise UnimplementedError(
            f"setting property {key!r} is not supported by the host emulator")

    def get_property(self, path: Sequence[str]) -> bytes:
        """Record the lookup and return no data."""
        key = serialize_property_path(list(path))
        self._note_unsupported("get_property", repr(key))
        return b""

    def resolve_shared_queue(self, vm_id: str, name: str) -> int:
        """Record the lookup and return queue id 0."""
        self._note_unsupported("resolve_shared_queue", f"{vm_id}/{name}")
        return 0

    def close_stream(self, stream_type: StreamType) -> None:
        """Record the request without closing anything."""
        self._note_unsupported("close_stream", StreamType(stream_type).name)

    def done(self) -> None:
        """Record the request without finishing the plugin."""
        self._note_unsupported("done")

    def close(self) -> None:
        """Drop every context of the emulated VM."""
        self.state.reset()


def new_host_emulator(option: Optional[EmulatorOption] = None) -> HostEmulator:
    """Build an emulator whose plugin context has already been created."""
    return HostEmulator(option)