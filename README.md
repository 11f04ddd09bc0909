# wasmfilter

`wasmfilter` lets you write proxy filter plugins as plain Python classes and
exercise them against an in-process host emulator. The emulator stands in for
the proxy. It drives HTTP streams and TCP connections through your contexts,
records logs, and keeps metrics, shared data and shared queues. It also
captures outgoing HTTP callouts and local responses, so you can assert on all
of it.

## Installation

```
pip install wasmfilter
pip install "wasmfilter[test]"   # adds pytest for running the tests
```

The package has no runtime dependencies beyond the standard library.

## The context model

A plugin is built from four kinds of context, all defined in `wasmfilter.types`:

- `VMContext` exists once per virtual machine. It has
  `on_vm_start(vm_configuration_size)` and `new_plugin_context(context_id)`.
  The default `on_vm_start` stores the size and returns `True`. The default
  `new_plugin_context` instantiates `plugin_context_class`, or `PluginContext`
  if that attribute is not set.
- `PluginContext` exists once per plugin configuration. It creates stream
  contexts through `new_http_context(context_id)` and
  `new_tcp_context(context_id)`. By default these instantiate
  `http_context_class` and `tcp_context_class`. If the attribute is `None`,
  they return `None`, which means the plugin does not handle that kind of
  stream. The context also receives `on_plugin_start`, `on_plugin_done`,
  `on_queue_ready` and `on_tick`. By default these record
  `plugin_configuration_size`, return `True`, record `last_ready_queue_id`,
  and count `tick_count`.
- `HttpContext` exists once per HTTP stream. It has hooks for request and
  response headers, body and trailers, plus `on_http_stream_done`.
- `TcpContext` exists once per TCP connection. It has hooks for a new
  connection and for upstream and downstream data, plus
  `on_downstream_close`, `on_upstream_close` and `on_stream_done`. The close
  hooks record the peer in `downstream_closed_by` and `upstream_closed_by`.

Every stream hook returns `Action.CONTINUE` by default. Override only what you
need. `Action` has `CONTINUE` and `PAUSE`. `PeerType` has `UNKNOWN`, `LOCAL`
and `REMOTE`.

## Testing a plugin with the emulator

```python
from wasmfilter.emulator import new_host_emulator
from wasmfilter.root import EmulatorOption
from wasmfilter.types import Action, HttpContext, PluginContext, VMContext


class Headers(HttpContext):
    def on_http_request_headers(self, num_headers, end_of_stream):
        return Action.PAUSE


class Plugin(PluginContext):
    http_context_class = Headers


class VM(VMContext):
    plugin_context_class = Plugin


with new_host_emulator(EmulatorOption(vm_context=VM())) as host:
    assert host.start_vm()
    assert host.start_plugin()
    context_id = host.initialize_http_context()
    action = host.call_on_request_headers(context_id, [("key", "value")], False)
    assert action is Action.PAUSE
    host.complete_http_context(context_id)
```

`new_host_emulator(option)` builds a `HostEmulator` and creates the single
plugin context, whose id is `1`. Stream context ids start at `2`. Closing the
emulator, or leaving the `with` block, drops every context.

`EmulatorOption` holds `vm_context`, `plugin_configuration` and
`vm_configuration`. The configurations are bytes. It also has the chainable
setters `with_vm_context`, `with_plugin_configuration` and
`with_vm_configuration`.

### Host calls a plugin can make

A plugin that holds a reference to the emulator can make these calls:

- Buffers: `get_buffer_bytes(buffer_type, start, max_size)` reads the plugin
  and VM configuration, the body of the callout response being delivered,
  TCP data and HTTP bodies. `set_buffer_bytes(buffer_type, start, max_size,
  data)` writes HTTP bodies only:
  - `start=0, max_size=0` prepends;
  - `start=0` with `max_size` at least the current length replaces;
  - `start` at or past the end appends.
- Headers: `get_header_map_value`, `get_header_map_pairs` (returns the
  serialized map), `add_header_map_value`, `replace_header_map_value`,
  `remove_header_map_value` and `set_header_map_pairs`.
- Streams: `continue_stream` and `send_local_response(status_code,
  status_code_detail, body, headers, grpc_status)`.
- Logging and timers: `log(level, message)` and
  `set_tick_period_milliseconds(period)`.
- Shared queues: `register_shared_queue`, `enqueue_shared_queue` and
  `dequeue_shared_queue`. Enqueueing calls the plugin's `on_queue_ready`.
- Shared data: `get_shared_data(key)` returns `(value, cas)`.
  `set_shared_data(key, value, cas)` stores the value and raises
  `StatusCasMismatchError` on a stale CAS.
- Metrics: `define_metric(metric_type, name)`, `increment_metric`,
  `record_metric` and `get_metric`. Values wrap as unsigned 64-bit.
- Callouts: `http_call(upstream, headers, body, trailers, timeout)` returns a
  callout id. `state.register_http_callout(callout_id, callback)` registers
  the function that receives the response.
- Foreign functions: `call_foreign_function(name, param)`.
- `set_effective_context(context_id)` switches the context that later calls
  act on.

All calls that take a buffer or map type use the enums in `wasmfilter.abi`:
`BufferType`, `MapType`, `MetricType`, `LogLevel` and `StreamType`.

### What you can inspect

- Logs: `get_trace_logs()`, `get_debug_logs()`, `get_info_logs()`,
  `get_warn_logs()`, `get_error_logs()`, `get_critical_logs()` and
  `get_logs(level)`.
- Metrics: `get_counter_metric(name)`, `get_gauge_metric(name)` and
  `get_histogram_metric(name)`. They raise `MetricLookupError` for an unknown
  name or a metric of another type.
- HTTP streams: `get_current_request_headers(context_id)`,
  `get_current_request_body(context_id)`,
  `get_current_http_stream_action(context_id)` and
  `get_sent_local_response(context_id)`. The last one returns a
  `LocalHttpResponse` or `None`.
- Callouts: `get_callout_attributes_from_context(context_id)` returns
  `HttpCalloutAttribute` records. Answer a callout with
  `call_on_http_call_response(callout_id, headers, trailers, body)`.
- Timers and queues: `tick()`, `get_tick_period()` and
  `get_queue_size(queue_id)`.
- Foreign functions: register them with `register_foreign_function(name,
  func)`. `func` takes bytes and returns bytes.
- TCP connections:
  - `initialize_connection()` returns `(context_id, action)`.
  - `call_on_downstream_data(context_id, data)` and
    `call_on_upstream_data(context_id, data)` deliver data. The data stays
    buffered while the plugin returns `PAUSE` and is cleared on `CONTINUE`.
  - Also available: `close_downstream_connection`,
    `close_upstream_connection` and `complete_connection`.
- HTTP streams are driven with `initialize_http_context()` and the
  `call_on_request_*` / `call_on_response_*` methods. Request body frames
  accumulate, and each response body frame replaces the previous one. Finish a
  stream with `complete_http_context(context_id)`.
- `start_vm()`, `start_plugin()` and `finish_vm()` run the VM and plugin
  lifecycle hooks.

## Errors

A failing host call raises a subclass of `wasmfilter.types.ProxyStatusError`:

- `StatusNotFoundError`
- `StatusBadArgumentError`
- `StatusEmptyError`
- `StatusCasMismatchError`
- `InternalFailureError`
- `UnimplementedError`

`wasmfilter.abi.status_to_error(status)` maps a `Status` code to such an error.
`check_status(status)` raises that error.

A callback or stream call addressed to a context that does not exist raises
`wasmfilter.vmstate.InvalidContextError`. Calling an unregistered foreign
function raises `LookupError`.

## Wire formats

`wasmfilter.abi` provides three encoders and decoders:

- `serialize_map` and `deserialize_map` implement the binary header-map
  encoding: a little-endian count, then key and value sizes, then
  NUL-terminated keys and values.
- `serialize_property_path` joins path segments with NUL bytes.

## Lower-level pieces

- `wasmfilter.vmstate.VMState` holds the live contexts and routes events
  (`on_context_create`, `on_request_headers`, `on_tick`, …) to them.
- The emulator is composed of `RootHost` (`wasmfilter.root`), `NetworkHost`
  (`wasmfilter.network`) and `HttpHost` (`wasmfilter.http`). Each of these
  can also be used on its own over a `VMState`.

## Limitations

- The emulator runs Python plugin classes in-process. It does not load or
  execute compiled plugin binaries, and it does not carry real network
  traffic.
- There is exactly one plugin context per emulator.
- Properties are not supported:
  - `set_property` raises `UnimplementedError`.
  - `get_property` returns empty bytes.
- `resolve_shared_queue` returns `0`.
- `close_stream` and `done` do nothing.

These unsupported calls are recorded in `unsupported_calls`. There is no
command-line interface.