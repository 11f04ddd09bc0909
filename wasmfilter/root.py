"""Root-level host emulation: logs, timers, shared queues and data, metrics, callouts."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from .abi import BufferType, LogLevel, MapType, MetricType, serialize_map
from .types import (
    StatusBadArgumentError,
    StatusCasMismatchError,
    StatusEmptyError,
    StatusNotFoundError,
    VMContext,
)
from .vmstate import VMState

logger = logging.getLogger(__name__)

PLUGIN_CONTEXT_ID = 1

_UINT64_MASK = (1 << 64) - 1

Pairs = List[Tuple[str, str]]
ForeignFunction = Callable[[bytes], bytes]


@dataclass
class EmulatorOption:
    """Settings for a host emulator: VM context and configurations."""

    plugin_configuration: bytes = b""
    vm_configuration: bytes = b""
    vm_context: Optional[VMContext] = None

    def with_vm_context(self, context: VMContext) -> "EmulatorOption":
        self.vm_context = context
        return self

    def with_plugin_configuration(self, data: bytes) -> "EmulatorOption":
        self.plugin_configuration = bytes(data)
        return self

    def with_vm_configuration(self, data: bytes) -> "EmulatorOption":
        self.vm_configuration = bytes(data)
        return self


@dataclass
class HttpCalloutAttribute:
    """What a plugin sent in one HTTP callout."""

    callout_id: int
    upstream: str
    headers: Pairs = field(default_factory=list)
    trailers: Pairs = field(default_factory=list)
    body: bytes = b""


class MetricLookupError(LookupError):
    """Raised when a metric is missing or has another type than asked for."""


@dataclass
class _SharedData:
    data: bytes
    cas: int


@dataclass
class _CalloutResponse:
    headers: Pairs
    trailers: Pairs
    body: bytes


def _slice_buffer(buf: bytes, start: int, max_size: int) -> bytes:
    if not buf:
        raise StatusNotFoundError()
    if start >= len(buf):
        logger.info("start index out of range: %d (start) >= %d", start, len(buf))
        raise StatusBadArgumentError()
    return bytes(buf[start:start + max_size])


class RootHost:
    """Emulates the host calls and events that concern the VM and plugin contexts."""

    def __init__(self, state: VMState, plugin_configuration: bytes = b"",
                 vm_configuration: bytes = b"") -> None:
        self.state = state
        self.plugin_configuration = bytes(plugin_configuration or b"")
        self.vm_configuration = bytes(vm_configuration or b"")
        self._active_callout_id = 0
        self._logs: Dict[LogLevel, List[str]] = {
            level: [] for level in LogLevel if level is not LogLevel.MAX
        }
        self._tick_period = 0
        self._foreign_functions: Dict[str, ForeignFunction] = {}
        self._queues: Dict[int, List[bytes]] = {}
        self._queue_name_to_id: Dict[str, int] = {}
        self._shared_data: Dict[str, _SharedData] = {}
        self._context_id_to_callouts: Dict[int, List[HttpCalloutAttribute]] = {}
        self._callout_id_to_context_id: Dict[int, int] = {}
        self._callout_responses: Dict[int, _CalloutResponse] = {}
        self._metric_types: Dict[int, MetricType] = {}
        self._metric_name_to_id: Dict[str, int] = {}
        self._metric_values: Dict[int, int] = {}

    # Logging and timers

    def log(self, level: LogLevel, message: str) -> None:
        level = LogLevel(level)
        logger.info("proxy_%s_log: %s", level, message)
        self._logs[level].append(message)

    def set_tick_period_milliseconds(self, period: int) -> None:
        self._tick_period = period

    # Shared queues

    def register_shared_queue(self, name: str) -> int:
        """Return the id of the named queue, creating it if needed."""
        if name in self._queue_name_to_id:
            return self._queue_name_to_id[name]
        queue_id = len(self._queues)
        self._queues[queue_id] = []
        self._queue_name_to_id[name] = queue_id
        return queue_id

    def dequeue_shared_queue(self, queue_id: int) -> bytes:
        queue = self._queues.get(queue_id)
        if queue is None:
            logger.info("queue %d is not found", queue_id)
            raise StatusNotFoundError()
        if not queue:
            logger.info("queue %d is empty", queue_id)
            raise StatusEmptyError()
        return queue.pop(0)

    def enqueue_shared_queue(self, queue_id: int, value: bytes) -> None:
        queue = self._queues.get(queue_id)
        if queue is None:
            logger.info("queue %d is not found", queue_id)
            raise StatusNotFoundError()
        queue.append(bytes(value))
        self.state.on_queue_ready(PLUGIN_CONTEXT_ID, queue_id)

    # Shared data

    def get_shared_data(self, key: str) -> Tuple[bytes, int]:
        """Return the value stored under key and its CAS."""
        entry = self._shared_data.get(key)
        if entry is None:
            raise StatusNotFoundError()
        return entry.data, entry.cas

    def set_shared_data(self, key: str, value: bytes, cas: int) -> None:
        entry = self._shared_data.get(key)
        if entry is None:
            self._shared_data[key] = _SharedData(data=bytes(value), cas=cas + 1)
            return
        if entry.cas != cas:
            raise StatusCasMismatchError()
        entry.cas = cas + 1
        entry.data = bytes(value)

    # Metrics

    def define_metric(self, metric_type: MetricType, name: str) -> int:
        metric_id = self._metric_name_to_id.get(name)
        if metric_id is None:
            metric_id = len(self._metric_name_to_id)
            self._metric_name_to_id[name] = metric_id
            self._metric_values[metric_id] = 0
            self._metric_types[metric_id] = MetricType(metric_type)
        return metric_id

    def increment_metric(self, metric_id: int, offset: int) -> None:
        if metric_id not in self._metric_values:
            raise StatusBadArgumentError()
        self._metric_values[metric_id] = (self._metric_values[metric_id] + offset) & _UINT64_MASK

    def record_metric(self, metric_id: int, value: int) -> None:
        if metric_id not in self._metric_values:
            raise StatusBadArgumentError()
        self._metric_values[metric_id] = value & _UINT64_MASK

    def get_metric(self, metric_id: int) -> int:
        if metric_id not in self._metric_values:
            raise StatusBadArgumentError()
        return self._metric_values[metric_id]

    def _get_typed_metric(self, name: str, expected: MetricType) -> int:
        metric_id = self._metric_name_to_id.get(name)
        if metric_id is None or metric_id not in self._metric_types:
            raise MetricLookupError(f"{name} not found")
        actual = self._metric_types[metric_id]
        if actual != expected:
            raise MetricLookupError(
                f"{name} is not {int(expected)} metric type but {int(actual)}")
        if metric_id not in self._metric_values:
            raise MetricLookupError(f"{name} not found")
        return self._metric_values[metric_id]

    def get_counter_metric(self, name: str) -> int:
        return self._get_typed_metric(name, MetricType.COUNTER)

    def get_gauge_metric(self, name: str) -> int:
        return self._get_typed_metric(name, MetricType.GAUGE)

    def get_histogram_metric(self, name: str) -> int:
        return self._get_typed_metric(name, MetricType.HISTOGRAM)

    # HTTP callouts

    def http_call(self, upstream: str, headers: Sequence[Tuple[str, str]], body: bytes,
                  trailers: Sequence[Tuple[str, str]], timeout: int) -> int:
        """Record a callout from the active context and return its id."""
        headers = [tuple(pair) for pair in headers]
        trailers = [tuple(pair) for pair in trailers]
        body = bytes(body or b"")
        logger.info("[http callout to %s] timeout: %d", upstream, timeout)
        logger.info("[http callout to %s] headers: %s", upstream, headers)
        logger.info("[http callout to %s] body: %r", upstream, body)
        logger.info("[http callout to %s] trailers: %s", upstream, trailers)

        callout_id = len(self._callout_id_to_context_id)
        context_id = self.state.active_context_id
        self._callout_id_to_context_id[callout_id] = context_id
        self._context_id_to_callouts.setdefault(context_id, []).append(
            HttpCalloutAttribute(callout_id=callout_id, upstream=upstream,
                                 headers=headers, trailers=trailers, body=body))
        return callout_id

    def _active_callout_response(self) -> _CalloutResponse:
        response = self._callout_responses.get(self._active_callout_id)
        if response is None:
            raise LookupError(f"callout response unregistered for {self._active_callout_id}")
        return response

    def get_callout_response_map_pairs(self, map_type: MapType) -> bytes:
        """Return the serialized headers or trailers of the active callout response."""
        response = self._active_callout_response()
        if map_type == MapType.HTTP_CALL_RESPONSE_HEADERS:
            return serialize_map(response.headers)
        if map_type == MapType.HTTP_CALL_RESPONSE_TRAILERS:
            return serialize_map(response.trailers)
        raise ValueError(f"unsupported map type: {map_type}")

    def get_callout_response_map_value(self, map_type: MapType, key: str) -> str:
        response = self._active_callout_response()
        if map_type == MapType.HTTP_CALL_RESPONSE_HEADERS:
            pairs = response.headers
        elif map_type == MapType.HTTP_CALL_RESPONSE_TRAILERS:
            pairs = response.trailers
        else:
            raise ValueError(f"unsupported map type: {map_type}")
        for name, value in pairs:
            if name == key:
                return value
        raise StatusNotFoundError()

    def get_root_buffer_bytes(self, buffer_type: BufferType, start: int, max_size: int) -> bytes:
        """Read configuration or the active callout body, at most max_size bytes."""
        if buffer_type == BufferType.PLUGIN_CONFIGURATION:
            buf = self.plugin_configuration
        elif buffer_type == BufferType.VM_CONFIGURATION:
            buf = self.vm_configuration
        elif buffer_type == BufferType.HTTP_CALL_RESPONSE_BODY:
            buf = self._active_callout_response().body
        else:
            raise ValueError(f"unsupported buffer type: {buffer_type}")
        return _slice_buffer(buf, start, max_size)

    def call_on_http_call_response(self, callout_id: int, headers: Sequence[Tuple[str, str]],
                                   trailers: Sequence[Tuple[str, str]], body: bytes) -> None:
        """Deliver a callout response to the plugin."""
        headers = [tuple(pair) for pair in headers or []]
        trailers = [tuple(pair) for pair in trailers or []]
        body = bytes(body or b"")
        self._callout_responses[callout_id] = _CalloutResponse(headers, trailers, body)
        self._active_callout_id = callout_id
        try:
            self.state.on_http_call_response(
                PLUGIN_CONTEXT_ID, callout_id, len(headers), len(body), len(trailers))
        finally:
            self._active_callout_id = 0
            self._callout_responses.pop(callout_id, None)
            self._callout_id_to_context_id.pop(callout_id, None)

    def get_callout_attributes_from_context(self, context_id: int) -> List[HttpCalloutAttribute]:
        return list(self._context_id_to_callouts.get(context_id, []))

    # Foreign functions

    def register_foreign_function(self, name: str, func: ForeignFunction) -> None:
        self._foreign_functions[name] = func

    def call_foreign_function(self, name: str, param: bytes) -> bytes:
        logger.info("[foreign call] funcname: %s", name)
        logger.info("[foreign call] param: %r", param)
        func = self._foreign_functions.get(name)
        if func is None:
            raise LookupError(f"{name} not registered as a foreign function")
        return func(bytes(param))

    # Inspection and driving

    def get_logs(self, level: LogLevel) -> List[str]:
        return list(self._logs[LogLevel(level)])

    def get_trace_logs(self) -> List[str]:
        return self.get_logs(LogLevel.TRACE)

    def get_debug_logs(self) -> List[str]:
        return self.get_logs(LogLevel.DEBUG)

    def get_info_logs(self) -> List[str]:
        return self.get_logs(LogLevel.INFO)

    def get_warn_logs(self) -> List[str]:
        return self.get_logs(LogLevel.WARN)

    def get_error_logs(self) -> List[str]:
        return self.get_logs(LogLevel.ERROR)

    def get_critical_logs(self) -> List[str]:
        return self.get_logs(LogLevel.CRITICAL)

    def get_tick_period(self) -> int:
        return self._tick_period

    def tick(self) -> None:
        self.state.on_tick(PLUGIN_CONTEXT_ID)

    def get_queue_size(self, queue_id: int) -> int:
        return len(self._queues.get(queue_id, []))

    def start_vm(self) -> bool:
        return self.state.on_vm_start(len(self.vm_configuration))

    def start_plugin(self) -> bool:
        return self.state.on_configure(PLUGIN_CONTEXT_ID, len(self.plugin_configuration))

    def finish_vm(self) -> bool:
        return self.state.on_done(PLUGIN_CONTEXT_ID)