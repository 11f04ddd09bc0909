"""Host interface enumerations, status handling and map/path wire formats."""

from __future__ import annotations

import enum
import struct
from typing import Iterable, List, Optional, Sequence, Tuple

from .types import (
    InternalFailureError,
    ProxyStatusError,
    StatusBadArgumentError,
    StatusCasMismatchError,
    StatusEmptyError,
    StatusNotFoundError,
    UnimplementedError,
)

_U32 = struct.Struct("<I")


class BufferType(enum.IntEnum):
    HTTP_REQUEST_BODY = 0
    HTTP_RESPONSE_BODY = 1
    DOWNSTREAM_DATA = 2
    UPSTREAM_DATA = 3
    HTTP_CALL_RESPONSE_BODY = 4
    GRPC_RECEIVE_BUFFER = 5
    VM_CONFIGURATION = 6
    PLUGIN_CONFIGURATION = 7
    CALL_DATA = 8


class LogLevel(enum.IntEnum):
    TRACE = 0
    DEBUG = 1
    INFO = 2
    WARN = 3
    ERROR = 4
    CRITICAL = 5
    MAX = 6

    def __str__(self) -> str:
        if self is LogLevel.MAX:
            raise ValueError("invalid log level")
        return self.name.lower()


class MapType(enum.IntEnum):
    HTTP_REQUEST_HEADERS = 0
    HTTP_REQUEST_TRAILERS = 1
    HTTP_RESPONSE_HEADERS = 2
    HTTP_RESPONSE_TRAILERS = 3
    HTTP_CALL_RESPONSE_HEADERS = 6
    HTTP_CALL_RESPONSE_TRAILERS = 7


class MetricType(enum.IntEnum):
    COUNTER = 0
    GAUGE = 1
    HISTOGRAM = 2


class StreamType(enum.IntEnum):
    REQUEST = 0
    RESPONSE = 1
    DOWNSTREAM = 2
    UPSTREAM = 3


class Status(enum.IntEnum):
    OK = 0
    NOT_FOUND = 1
    BAD_ARGUMENT = 2
    EMPTY = 7
    CAS_MISMATCH = 8
    INTERNAL_FAILURE = 10
    UNIMPLEMENTED = 12


_STATUS_ERRORS = {
    Status.NOT_FOUND: StatusNotFoundError,
    Status.BAD_ARGUMENT: StatusBadArgumentError,
    Status.EMPTY: StatusEmptyError,
    Status.CAS_MISMATCH: StatusCasMismatchError,
    Status.INTERNAL_FAILURE: InternalFailureError,
    Status.UNIMPLEMENTED: UnimplementedError,
}


def status_to_error(status: int) -> Optional[ProxyStatusError]:
    """Return the error matching a host status, or None for OK."""
    if status == Status.OK:
        return None
    error_class = _STATUS_ERRORS.get(status)
    if error_class is None:
        return ProxyStatusError(f"unknown status code: {int(status)}")
    return error_class()


def check_status(status: int) -> None:
    """Raise the error matching a host status unless it is OK."""
    error = status_to_error(status)
    if error is not None:
        raise error


def deserialize_map(data: bytes) -> List[Tuple[str, str]]:
    """Decode a serialized header map into (key, value) pairs."""
    if not data:
        return []
    try:
        (count,) = _U32.unpack_from(data, 0)
        sizes = struct.unpack_from(f"<{2 * count}I", data, 4)
    except struct.error as exc:
        raise ValueError("truncated map header") from exc
    view = memoryview(data)
    position = 4 + 8 * count
    pairs: List[Tuple[str, str]] = []
    for key_size, value_size in zip(sizes[0::2], sizes[1::2]):
        end = position + key_size + 1 + value_size + 1
        if end - 1 > len(data):
            raise ValueError("truncated map data")
        key = bytes(view[position:position + key_size]).decode("utf-8")
        position += key_size + 1
        value = bytes(view[position:position + value_size]).decode("utf-8")
        position += value_size + 1
        pairs.append((key, value))
    return pairs


def serialize_map(pairs: Iterable[Sequence[str]]) -> bytes:
    """Encode (key, value) pairs into the host's header map format."""
    encoded = [(key.encode("utf-8"), value.encode("utf-8")) for key, value in pairs]
    header = bytearray(_U32.pack(len(encoded)))
    body = bytearray()
    for key, value in encoded:
        header += _U32.pack(len(key))
        header += _U32.pack(len(value))
        body += key + b"\x00" + value + b"\x00"
    return bytes(header + body)


def serialize_property_path(path: Iterable[str]) -> bytes:
    """Join property path segments with NUL separators."""
    return b"\x00".join(segment.encode("utf-8") for segment in path)