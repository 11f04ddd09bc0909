import pytest

from wasmfilter.abi import BufferType, LogLevel, MapType, MetricType, deserialize_map
from wasmfilter.root import (
    PLUGIN_CONTEXT_ID,
    EmulatorOption,
    MetricLookupError,
    RootHost,
)
from wasmfilter.types import (
    PluginContext,
    StatusBadArgumentError,
    StatusCasMismatchError,
    StatusEmptyError,
    StatusNotFoundError,
    VMContext,
)
from wasmfilter.vmstate import VMState


class RecordingPlugin(PluginContext):
    def __init__(self):
        self.ready_queues = []
        self.ticks = 0
        self.start_size = None

    def on_queue_ready(self, queue_id):
        self.ready_queues.append(queue_id)

    def on_tick(self):
        self.ticks += 1

    def on_plugin_start(self, plugin_configuration_size):
        self.start_size = plugin_configuration_size
        return True

    def on_plugin_done(self):
        return False


class RecordingVM(VMContext):
    def __init__(self):
        self.plugin = RecordingPlugin()
        self.vm_size = None

    def on_vm_start(self, vm_configuration_size):
        self.vm_size = vm_configuration_size
        return True

    def new_plugin_context(self, context_id):
        return self.plugin


@pytest.fixture
def vm():
    return RecordingVM()


@pytest.fixture
def host(vm):
    state = VMState(vm)
    state.on_context_create(PLUGIN_CONTEXT_ID, 0)
    return RootHost(state, plugin_configuration=b"plugin-config",
                    vm_configuration=b"vm-config")


def test_emulator_option_builder_chains():
    vm = RecordingVM()
    option = (EmulatorOption()
              .with_vm_context(vm)
              .with_plugin_configuration(b"p")
              .with_vm_configuration(b"v"))
    assert option.vm_context is vm
    assert option.plugin_configuration == b"p"
    assert option.vm_configuration == b"v"


def test_logs_are_kept_per_level(host):
    host.log(LogLevel.INFO, "hello")
    host.log(LogLevel.ERROR, "boom")
    assert host.get_info_logs() == ["hello"]
    assert host.get_error_logs() == ["boom"]
    assert host.get_debug_logs() == []
    assert host.get_logs(LogLevel.INFO) == ["hello"]


def test_tick_period_and_tick(host, vm):
    host.set_tick_period_milliseconds(250)
    assert host.get_tick_period() == 250
    host.tick()
    host.tick()
    assert vm.plugin.ticks == 2


def test_register_shared_queue_reuses_ids(host):
    first = host.register_shared_queue("a")
    second = host.register_shared_queue("b")
    assert first == 0
    assert second != first
    assert host.register_shared_queue("a") == first


def test_queue_fifo_and_ready_notification(host, vm):
    queue_id = host.register_shared_queue("q")
    host.enqueue_shared_queue(queue_id, b"one")
    host.enqueue_shared_queue(queue_id, b"two")
    assert vm.plugin.ready_queues == [queue_id, queue_id]
    assert host.get_queue_size(queue_id) == 2
    assert host.dequeue_shared_queue(queue_id) == b"one"
    assert host.dequeue_shared_queue(queue_id) == b"two"
    with pytest.raises(StatusEmptyError):
        host.dequeue_shared_queue(queue_id)


def test_unknown_queue_raises_not_found(host):
    with pytest.raises(StatusNotFoundError):
        host.dequeue_shared_queue(42)
    with pytest.raises(StatusNotFoundError):
        host.enqueue_shared_queue(42, b"x")
    assert host.get_queue_size(42) == 0


def test_shared_data_cas(host):
    with pytest.raises(StatusNotFoundError):
        host.get_shared_data("key")
    host.set_shared_data("key", b"v1", 0)
    data, cas = host.get_shared_data("key")
    assert data == b"v1"
    assert cas == 1
    with pytest.raises(StatusCasMismatchError):
        host.set_shared_data("key", b"v2", cas + 5)
    host.set_shared_data("key", b"v2", cas)
    data, new_cas = host.get_shared_data("key")
    assert data == b"v2"
    assert new_cas == cas + 1


def test_metrics_define_increment_record(host):
    counter = host.define_metric(MetricType.COUNTER, "requests")
    assert host.define_metric(MetricType.COUNTER, "requests") == counter
    host.increment_metric(counter, 5)
    host.increment_metric(counter, -2)
    assert host.get_metric(counter) == 3
    assert host.get_counter_metric("requests") == 3

    gauge = host.define_metric(MetricType.GAUGE, "level")
    assert gauge != counter
    host.record_metric(gauge, 7)
    assert host.get_gauge_metric("level") == 7


def test_metric_errors(host):
    with pytest.raises(StatusBadArgumentError):
        host.increment_metric(99, 1)
    with pytest.raises(StatusBadArgumentError):
        host.record_metric(99, 1)
    with pytest.raises(StatusBadArgumentError):
        host.get_metric(99)
    host.define_metric(MetricType.HISTOGRAM, "latency")
    with pytest.raises(MetricLookupError):
        host.get_counter_metric("latency")
    with pytest.raises(MetricLookupError):
        host.get_gauge_metric("missing")
    assert host.get_histogram_metric("latency") == 0


def test_root_buffer_bytes(host):
    assert host.get_root_buffer_bytes(BufferType.PLUGIN_CONFIGURATION, 0, 100) == b"plugin-config"
    assert host.get_root_buffer_bytes(BufferType.VM_CONFIGURATION, 3, 3) == b"con"
    with pytest.raises(StatusBadArgumentError):
        host.get_root_buffer_bytes(BufferType.VM_CONFIGURATION, 100, 1)


def test_empty_configuration_is_not_found():
    state = VMState(RecordingVM())
    host = RootHost(state)
    with pytest.raises(StatusNotFoundError):
        host.get_root_buffer_bytes(BufferType.PLUGIN_CONFIGURATION, 0, 10)


def test_start_and_finish(host, vm):
    assert host.start_vm() is True
    assert vm.vm_size == len(b"vm-config")
    assert host.start_plugin() is True
    assert vm.plugin.start_size == len(b"plugin-config")
    assert host.finish_vm() is False


def test_foreign_function(host):
    host.register_foreign_function("reverse", lambda data: data[::-1])
    assert host.call_foreign_function("reverse", b"abc") == b"cba"
    with pytest.raises(LookupError):
        host.call_foreign_function("missing", b"")


def test_http_call_and_response(host):
    host.state.active_context_id = PLUGIN_CONTEXT_ID
    callout_id = host.http_call("cluster", [(":path", "/")], b"payload", [], 5000)
    attrs = host.get_callout_attributes_from_context(PLUGIN_CONTEXT_ID)
    assert len(attrs) == 1
    assert attrs[0].callout_id == callout_id
    assert attrs[0].upstream == "cluster"
    assert attrs[0].headers == [(":path", "/")]
    assert attrs[0].body == b"payload"

    seen = {}

    def callback(num_headers, body_size, num_trailers):
        seen["sizes"] = (num_headers, body_size, num_trailers)
        seen["value"] = host.get_callout_response_map_value(
            MapType.HTTP_CALL_RESPONSE_HEADERS, "a")
        seen["pairs"] = host.get_callout_response_map_pairs(MapType.HTTP_CALL_RESPONSE_HEADERS)
        seen["body"] = host.get_root_buffer_bytes(BufferType.HTTP_CALL_RESPONSE_BODY, 0, 100)
        with pytest.raises(StatusNotFoundError):
            host.get_callout_response_map_value(MapType.HTTP_CALL_RESPONSE_TRAILERS, "a")

    host.state.register_http_callout(callout_id, callback)
    host.call_on_http_call_response(callout_id, [("a", "A")], [], b"resp")

    assert seen["sizes"] == (1, len(b"resp"), 0)
    assert seen["value"] == "A"
    assert seen["pairs"] == bytes([1, 0, 0, 0, 1, 0, 0, 0, 1, 0, 0, 0, 97, 0, 65, 0])
    assert deserialize_map(seen["pairs"]) == [("a", "A")]
    assert seen["body"] == b"resp"

    with pytest.raises(LookupError):
        host.get_callout_response_map_value(MapType.HTTP_CALL_RESPONSE_HEADERS, "a")


def test_callout_ids_reuse_after_response(host):
    host.state.active_context_id = PLUGIN_CONTEXT_ID
    first = host.http_call("c", [], b"", [], 1)
    host.state.register_http_callout(first, lambda *sizes: None)
    host.call_on_http_call_response(first, [], [], b"")
    second = host.http_call("c", [], b"", [], 1)
    assert second == first
    assert len(host.get_callout_attributes_from_context(PLUGIN_CONTEXT_ID)) == 2