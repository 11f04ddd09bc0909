import pytest

from wasmfilter.types import (
    Action,
    HttpContext,
    InternalFailureError,
    PeerType,
    PluginContext,
    ProxyStatusError,
    StatusBadArgumentError,
    StatusCasMismatchError,
    StatusEmptyError,
    StatusNotFoundError,
    TcpContext,
    UnimplementedError,
    VMContext,
)


@pytest.mark.parametrize(
    "error_class, message",
    [
        (StatusNotFoundError, "error status returned by host: not found"),
        (StatusBadArgumentError, "error status returned by host: bad argument"),
        (StatusEmptyError, "error status returned by host: empty"),
        (StatusCasMismatchError, "error status returned by host: cas mismatch"),
        (InternalFailureError, "error status returned by host: internal failure"),
        (UnimplementedError, "error status returned by host: unimplemented"),
    ],
)
def test_status_errors_have_source_messages(error_class, message):
    error = error_class()
    assert str(error) == message
    assert isinstance(error, ProxyStatusError)


def test_status_error_custom_message():
    assert str(ProxyStatusError("boom")) == "boom"


def test_default_vm_context():
    vm = VMContext()
    assert vm.on_vm_start(0) is True
    plugin = vm.new_plugin_context(1)
    assert plugin.on_plugin_start(0) is True


def test_default_plugin_context():
    plugin = PluginContext()
    assert plugin.on_plugin_done() is True
    assert plugin.new_tcp_context(2) is None
    assert plugin.new_http_context(2) is None
    assert plugin.on_tick() is None
    assert plugin.on_queue_ready(3) is None


def test_default_tcp_context_continues():
    ctx = TcpContext()
    assert ctx.on_new_connection() == Action.CONTINUE
    assert ctx.on_downstream_data(10, False) == Action.CONTINUE
    assert ctx.on_upstream_data(10, True) == Action.CONTINUE
    assert ctx.on_downstream_close(PeerType.LOCAL) is None
    assert ctx.on_upstream_close(PeerType.REMOTE) is None
    assert ctx.on_stream_done() is None


def test_default_http_context_continues():
    ctx = HttpContext()
    results = [
        ctx.on_http_request_headers(1, False),
        ctx.on_http_request_body(5, True),
        ctx.on_http_request_trailers(0),
        ctx.on_http_response_headers(2, False),
        ctx.on_http_response_body(5, True),
        ctx.on_http_response_trailers(0),
    ]
    assert all(result == Action.CONTINUE for result in results)
    assert ctx.on_http_stream_done() is None


def test_subclass_overrides_context_creation():
    class Plugin(PluginContext):
        def new_http_context(self, context_id):
            return PausingHttp(context_id)

    class PausingHttp(HttpContext):
        def __init__(self, context_id):
            self.context_id = context_id

        def on_http_request_headers(self, num_headers, end_of_stream):
            return Action.PAUSE

    plugin = Plugin()
    assert PluginContext.new_tcp_context(plugin, 7) is None
    assert PluginContext.on_plugin_done(plugin) is True
    ctx = plugin.new_http_context(7)
    assert ctx.context_id == 7
    assert ctx.on_http_request_headers(1, False) == Action.PAUSE
    assert HttpContext.on_http_request_headers(ctx, 1, False) == Action.CONTINUE
    assert HttpContext.on_http_response_headers(ctx, 1, False) == Action.CONTINUE