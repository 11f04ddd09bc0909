"""HTTP stream emulation: headers, trailers, bodies and local responses."""

from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from .abi import BufferType, MapType, StreamType, serialize_map
from .root import PLUGIN_CONTEXT_ID
from .types import Action, StatusBadArgumentError, StatusNotFoundError
from .vmstate import InvalidContextError, VMState

logger = logging.getLogger(__name__)

Pairs = List[Tuple[str, str]]

_HTTP_MAP_TYPES = (
    MapType.HTTP_REQUEST_HEADERS,
    MapType.HTTP_RESPONSE_HEADERS,
    MapType.HTTP_REQUEST_TRAILERS,
    MapType.HTTP_RESPONSE_TRAILERS,
)

_HTTP_BUFFER_TYPES = (
    BufferType.HTTP_REQUEST_BODY,
    BufferType.HTTP_RESPONSE_BODY,
)


@dataclass
class LocalHttpResponse:
    """A response that a plugin sent back without reaching the upstream."""

    status_code: int
    status_code_detail: str
    data: bytes
    headers: Pairs
    grpc_status: int


def _as_pairs(pairs: Optional[Iterable[Sequence[str]]]) -> Pairs:
    return [(key, value) for key, value in (pairs or [])]


@dataclass
class _HttpStream:
    maps: Dict[MapType, Pairs] = field(
        default_factory=lambda: {map_type: [] for map_type in _HTTP_MAP_TYPES})
    bodies: Dict[BufferType, bytes] = field(
        default_factory=lambda: {buffer_type: b"" for buffer_type in _HTTP_BUFFER_TYPES})
    action: Action = Action.CONTINUE
    sent_local_response: Optional[LocalHttpResponse] = None


class HttpHost:
    """Emulates the host side of HTTP streams handled by a plugin."""

    def __init__(self, state: VMState,
                 next_context_id: Optional[Callable[[], int]] = None) -> None:
        self.state = state
        if next_context_id is None:
            next_context_id = itertools.count(PLUGIN_CONTEXT_ID + 1).__next__
        self._next_context_id = next_context_id
        self._streams: Dict[int, _HttpStream] = {}

    # Lookups

    def _stream(self, context_id: int) -> _HttpStream:
        stream = self._streams.get(context_id)
        if stream is None:
            raise InvalidContextError(f"invalid context id: {context_id}")
        return stream

    def _active_stream(self) -> _HttpStream:
        return self._stream(self.state.active_context_id)

    @staticmethod
    def _check_map_type(map_type: MapType) -> MapType:
        if map_type not in _HTTP_MAP_TYPES:
            raise ValueError(f"unsupported map type: {map_type}")
        return MapType(map_type)

    @staticmethod
    def _check_buffer_type(buffer_type: BufferType) -> BufferType:
        if buffer_type not in _HTTP_BUFFER_TYPES:
            raise ValueError(f"unsupported buffer type: {buffer_type}")
        return BufferType(buffer_type)

    # Host calls made by the plugin

    def get_http_buffer_bytes(self, buffer_type: BufferType, start: int, max_size: int) -> bytes:
        """Read at most max_size bytes of the active stream's body from start."""
        buf = self._active_stream().bodies[self._check_buffer_type(buffer_type)]
        if not buf:
            raise StatusNotFoundError()
        if start >= len(buf):
            logger.info("start index out of range: %d (start) >= %d", start, len(buf))
            raise StatusBadArgumentError()
        return buf[start:start + max_size]

    def set_http_buffer_bytes(self, buffer_type: BufferType, start: int, max_size: int,
                              data: bytes) -> None:
        """Prepend, replace or append to the active stream's body."""
        stream = self._active_stream()
        buffer_type = self._check_buffer_type(buffer_type)
        current = stream.bodies[buffer_type]
        data = bytes(data)
        if start == 0:
            if max_size == 0:
                stream.bodies[buffer_type] = data + current
            elif max_size >= len(current):
                stream.bodies[buffer_type] = data
            else:
                raise StatusBadArgumentError()
        elif start >= len(current):
            stream.bodies[buffer_type] = current + data
        else:
            raise StatusBadArgumentError()

    def get_http_header_map_value(self, map_type: MapType, key: str) -> str:
        """Return the trimmed value of the first header named key."""
        pairs = self._active_stream().maps[self._check_map_type(map_type)]
        for name, value in pairs:
            if name == key:
                value = value.strip()
                # An empty value counts as an absent header.
                if not value:
                    raise StatusNotFoundError()
                return value
        raise StatusNotFoundError()

    def add_header_map_value(self, map_type: MapType, key: str, value: str) -> None:
        """Append value to the first header named key, or add a new header."""
        pairs = self._active_stream().maps[self._check_map_type(map_type)]
        for index, (name, existing) in enumerate(pairs):
            if name == key:
                pairs[index] = (name, existing + value)
                return
        pairs.append((key, value))

    def replace_header_map_value(self, map_type: MapType, key: str, value: str) -> None:
        """Set the first header named key to value, or add a new header."""
        pairs = self._active_stream().maps[self._check_map_type(map_type)]
        for index, (name, _) in enumerate(pairs):
            if name == key:
                pairs[index] = (name, value)
                return
        pairs.append((key, value))

    def remove_header_map_value(self, map_type: MapType, key: str) -> None:
        """Remove the first header named key, if any."""
        pairs = self._active_stream().maps[self._check_map_type(map_type)]
        for index, (name, _) in enumerate(pairs):
            if name == key:
                del pairs[index]
                return

    def get_http_header_map_pairs(self, map_type: MapType) -> bytes:
        """Return the serialized headers or trailers of the active stream."""
        return serialize_map(self._active_stream().maps[self._check_map_type(map_type)])

    def set_header_map_pairs(self, map_type: MapType,
                             pairs: Iterable[Sequence[str]]) -> None:
        """Replace the headers or trailers of the active stream."""
        self._active_stream().maps[self._check_map_type(map_type)] = _as_pairs(pairs)

    def continue_stream(self, stream_type: StreamType) -> None:
        self._active_stream().action = Action.CONTINUE

    def send_local_response(self, status_code: int, status_code_detail: str, body: bytes,
                            headers: Iterable[Sequence[str]], grpc_status: int) -> None:
        self._active_stream().sent_local_response = LocalHttpResponse(
            status_code=status_code,
            status_code_detail=status_code_detail,
            data=bytes(body or b""),
            headers=_as_pairs(headers),
            grpc_status=grpc_status,
        )

    # Driving the plugin

    def initialize_http_context(self) -> int:
        """Create a new HTTP stream under the plugin context and return its id."""
        context_id = self._next_context_id()
        self.state.on_context_create(context_id, PLUGIN_CONTEXT_ID)
        self._streams[context_id] = _HttpStream()
        return context_id

    def call_on_request_headers(self, context_id: int, headers: Iterable[Sequence[str]],
                                end_of_stream: bool) -> Action:
        stream = self._stream(context_id)
        pairs = _as_pairs(headers)
        stream.maps[MapType.HTTP_REQUEST_HEADERS] = pairs
        stream.action = self.state.on_request_headers(context_id, len(pairs), end_of_stream)
        return stream.action

    def call_on_response_headers(self, context_id: int, headers: Iterable[Sequence[str]],
                                 end_of_stream: bool) -> Action:
        stream = self._stream(context_id)
        pairs = _as_pairs(headers)
        stream.maps[MapType.HTTP_RESPONSE_HEADERS] = pairs
        stream.action = self.state.on_response_headers(context_id, len(pairs), end_of_stream)
        return stream.action

    def call_on_request_trailers(self, context_id: int,
                                 trailers: Iterable[Sequence[str]]) -> Action:
        stream = self._stream(context_id)
        pairs = _as_pairs(trailers)
        stream.maps[MapType.HTTP_REQUEST_TRAILERS] = pairs
        stream.action = self.state.on_request_trailers(context_id, len(pairs))
        return stream.action

    def call_on_response_trailers(self, context_id: int,
                                  trailers: Iterable[Sequence[str]]) -> Action:
        stream = self._stream(context_id)
        pairs = _as_pairs(trailers)
        stream.maps[MapType.HTTP_RESPONSE_TRAILERS] = pairs
        stream.action = self.state.on_response_trailers(context_id, len(pairs))
        return stream.action

    def call_on_request_body(self, context_id: int, body: bytes, end_of_stream: bool) -> Action:
        """Deliver a request body frame; frames accumulate in the buffer."""
        stream = self._stream(context_id)
        body = bytes(body or b"")
        stream.bodies[BufferType.HTTP_REQUEST_BODY] += body
        stream.action = self.state.on_request_body(context_id, len(body), end_of_stream)
        return stream.action

    def call_on_response_body(self, context_id: int, body: bytes, end_of_stream: bool) -> Action:
        """Deliver a response body frame; it replaces the buffer."""
        stream = self._stream(context_id)
        body = bytes(body or b"")
        stream.bodies[BufferType.HTTP_RESPONSE_BODY] = body
        stream.action = self.state.on_response_body(context_id, len(body), end_of_stream)
        return stream.action

    def complete_http_context(self, context_id: int) -> None:
        self.state.on_log(context_id)
        self.state.on_delete(context_id)

    # Inspection

    def get_current_http_stream_action(self, context_id: int) -> Action:
        return self._stream(context_id).action

    def get_current_request_headers(self, context_id: int) -> Pairs:
        return list(self._stream(context_id).maps[MapType.HTTP_REQUEST_HEADERS])

    def get_current_request_body(self, context_id: int) -> bytes:
        return self._stream(context_id).bodies[BufferType.HTTP_REQUEST_BODY]

    def get_sent_local_response(self, context_id: int) -> Optional[LocalHttpResponse]:
        return self._stream(context_id).sent_local_response