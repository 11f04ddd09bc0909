import pytest

from wasmfilter.abi import BufferType
from wasmfilter.network import NetworkHost
from wasmfilter.root import PLUGIN_CONTEXT_ID
from wasmfilter.types import (
    Action,
    PeerType,
    PluginContext,
    StatusBadArgumentError,
    StatusNotFoundError,
    TcpContext,
    VMContext,
)
from wasmfilter.vmstate import InvalidContextError, VMState


class _Tcp(TcpContext):
    def __init__(self, host):
        self.host = host
        self.action = Action.CONTINUE
        self.downstream = []
        self.upstream = []
        self.closed = []
        self.done = False

    def on_downstream_data(self, data_size, end_of_stream):
        data = self.host.get_network_buffer_bytes(BufferType.DOWNSTREAM_DATA, 0, data_size)
        self.downstream.append((data_size, data))
        return self.action

    def on_upstream_data(self, data_size, end_of_stream):
        data = self.host.get_network_buffer_bytes(BufferType.UPSTREAM_DATA, 0, data_size)
        self.upstream.append((data_size, data))
        return self.action

    def on_downstream_close(self, peer_type):
        self.closed.append(("downstream", peer_type))

    def on_upstream_close(self, peer_type):
        self.closed.append(("upstream", peer_type))

    def on_stream_done(self):
        self.done = True


class _Plugin(PluginContext):
    def __init__(self, vm):
        self.vm = vm
        self.streams = {}

    def new_tcp_context(self, context_id):
        ctx = _Tcp(self.vm.host)
        self.streams[context_id] = ctx
        return ctx


class _VM(VMContext):
    def __init__(self):
        self.host = None
        self.plugin = None

    def new_plugin_context(self, context_id):
        self.plugin = _Plugin(self)
        return self.plugin


@pytest.fixture
def setup():
    vm = _VM()
    state = VMState(vm)
    host = NetworkHost(state)
    vm.host = host
    state.on_context_create(PLUGIN_CONTEXT_ID, 0)
    return vm, state, host


def test_initialize_connection_assigns_ids(setup):
    vm, state, host = setup
    first, action = host.initialize_connection()
    second, _ = host.initialize_connection()
    assert first == PLUGIN_CONTEXT_ID + 1
    assert second == first + 1
    assert action == Action.CONTINUE
    assert first in state.tcp_contexts


def test_continue_clears_buffer(setup):
    vm, state, host = setup
    cid, _ = host.initialize_connection()
    assert host.call_on_downstream_data(cid, b"hello") == Action.CONTINUE
    host.call_on_downstream_data(cid, b"world")
    assert vm.plugin.streams[cid].downstream == [(5, b"hello"), (5, b"world")]


def test_pause_accumulates(setup):
    vm, state, host = setup
    cid, _ = host.initialize_connection()
    vm.plugin.streams[cid].action = Action.PAUSE
    host.call_on_upstream_data(cid, b"ab")
    assert host.call_on_upstream_data(cid, b"cd") == Action.PAUSE
    assert vm.plugin.streams[cid].upstream == [(2, b"ab"), (4, b"abcd")]
    assert host.get_network_buffer_bytes(BufferType.UPSTREAM_DATA, 1, 2) == b"bc"
    assert host.get_network_buffer_bytes(BufferType.UPSTREAM_DATA, 1, 100) == b"bcd"


def test_buffer_errors(setup):
    vm, state, host = setup
    cid, _ = host.initialize_connection()
    with pytest.raises(StatusNotFoundError):
        host.get_network_buffer_bytes(BufferType.DOWNSTREAM_DATA, 0, 1)
    vm.plugin.streams[cid].action = Action.PAUSE
    host.call_on_downstream_data(cid, b"abc")
    with pytest.raises(StatusBadArgumentError):
        host.get_network_buffer_bytes(BufferType.DOWNSTREAM_DATA, 3, 1)
    with pytest.raises(ValueError):
        host.get_network_buffer_bytes(BufferType.HTTP_REQUEST_BODY, 0, 1)


def test_invalid_action_raises(setup):
    vm, state, host = setup
    cid, _ = host.initialize_connection()
    vm.plugin.streams[cid].action = 5
    with pytest.raises(ValueError):
        host.call_on_downstream_data(cid, b"x")


def test_unknown_context_raises(setup):
    _, _, host = setup
    with pytest.raises(InvalidContextError):
        host.call_on_downstream_data(999, b"x")


def test_close_connections_use_local_peer(setup):
    vm, state, host = setup
    cid, _ = host.initialize_connection()
    host.close_downstream_connection(cid)
    host.close_upstream_connection(cid)
    assert vm.plugin.streams[cid].closed == [
        ("downstream", PeerType.LOCAL), ("upstream", PeerType.LOCAL)]


def test_complete_connection(setup):
    vm, state, host = setup
    cid, _ = host.initialize_connection()
    host.complete_connection(cid)
    assert vm.plugin.streams[cid].done is True
    assert cid not in state.tcp_contexts
    with pytest.raises(InvalidContextError):
        host.call_on_upstream_data(cid, b"x")