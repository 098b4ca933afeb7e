"""
RequestClient 测试

测试请求管线的端到端行为:
- GET 参数拼接
- 结果缓存
- 诊断日志
- 业务错误和超时规范化
- error_handler / error_continue / callback
- 外部接口和 SSE
"""

import time
from unittest.mock import MagicMock

import pytest
import responses
from rest_framework import serializers

from httpbridge.client import RequestClient, get_default_client, request
from httpbridge.constants import STATUS_MESSAGES
from httpbridge.exceptions import (
    BusinessError,
    RequestTimeoutError,
    RequestValidationError,
    TransportError,
)
from httpbridge.log_queue import RequestLogQueue
from httpbridge.options import Capabilities, NoBody, RawBody, RequestOptions
from httpbridge.transport import RawResponse, TransportSelector


class TestBasicRequests:
    """测试基础请求流程"""

    @pytest.mark.unit
    def test_get_params_in_query(self, make_client, transport_factory, response_factory):
        """GET 请求过滤空参数后拼接到 url"""
        # Arrange
        transport = transport_factory(lambda config: response_factory({"code": 0, "result": [1, 2]}))
        client = make_client(transport)

        # Act
        result = client.request("/api/list", {"method": "get", "params": {"a": "", "b": 2}})

        # Assert
        assert result == [1, 2]
        config = transport.last_config
        assert config.url == "/api/list?b=2"
        assert config.method == "GET"
        assert config.body == NoBody()

    @pytest.mark.unit
    def test_post_form_by_default(self, client, fake_transport):
        client.request("/api/save", {"params": {"name": "x", "empty": None}})

        config = fake_transport.last_config
        assert config.method == "POST"
        assert config.body.text == "name=x"
        assert config.headers["Content-Type"] == "application/x-www-form-urlencoded"

    @pytest.mark.unit
    def test_accepts_request_options_instance(self, client, fake_transport):
        result = client.request("/api/save", RequestOptions(manner="json", params={"a": 1}))

        assert result is True
        assert fake_transport.last_config.body.text == '{"a": 1}'

    @pytest.mark.unit
    def test_empty_url_rejected(self, client, fake_transport):
        """空地址在分发前被拒绝"""
        with pytest.raises(RequestValidationError) as exc_info:
            client.request("", {})

        assert exc_info.value.msg == "无效的请求地址"
        assert fake_transport.calls == []

    @pytest.mark.unit
    def test_unknown_option_rejected(self, client):
        with pytest.raises(RequestValidationError):
            client.request("/api/x", {"bogus": True})

    @pytest.mark.unit
    def test_default_options_merged(self, make_client, fake_transport):
        client = make_client(fake_transport, default_options={"method": "get", "timeout": 1000})

        client.request("/api/x", {"params": {"a": 1}})

        assert fake_transport.last_config.method == "GET"
        assert fake_transport.last_config.timeout == 1000

    @pytest.mark.unit
    def test_default_options_merged_under_instance(self, make_client, fake_transport):
        """RequestOptions 实例同样合并在 default_options 之上"""
        client = make_client(fake_transport, default_options={"method": "get", "timeout": 1000})

        client.request("/api/x", RequestOptions(params={"a": 1}, timeout=2000))

        assert fake_transport.last_config.method == "GET"
        assert fake_transport.last_config.url == "/api/x?a=1"
        assert fake_transport.last_config.timeout == 2000

    @pytest.mark.unit
    def test_caller_options_not_mutated(self, client):
        options = {"method": "get", "params": {"a": "", "b": 2}, "headers": {"X": "1"}}

        client.request("/api/list", options)

        assert options == {"method": "get", "params": {"a": "", "b": 2}, "headers": {"X": "1"}}

    @pytest.mark.unit
    def test_authorization_injected(self, client, fake_transport, session_storage):
        session_storage.set("tokenUrl", "/api/")
        session_storage.set("jwtToken", "Bearer t")

        client.request("/api/x")

        assert fake_transport.last_config.headers["Authorization"] == "Bearer t"


class TestCaching:
    """测试请求结果缓存"""

    @pytest.mark.unit
    def test_cache_hit_skips_transport(self, client, fake_transport):
        """命中缓存时不调用传输层"""
        options = {"method": "get", "params": {"id": 1}, "cache_data": True}

        first = client.request("/api/x", options)
        second = client.request("/api/x", options)

        assert first == second is True
        assert len(fake_transport.calls) == 1

    @pytest.mark.unit
    def test_different_params_miss(self, client, fake_transport):
        client.request("/api/x", {"params": {"id": 1}, "cache_data": True})
        client.request("/api/x", {"params": {"id": 2}, "cache_data": True})

        assert len(fake_transport.calls) == 2

    @pytest.mark.unit
    def test_custom_cache_key(self, client, fake_transport):
        client.request("/api/x", {"params": {"id": 1}, "cache_data": True, "cache_key": "shared"})
        client.request("/api/y", {"params": {"id": 2}, "cache_data": True, "cache_key": "shared"})

        assert len(fake_transport.calls) == 1

    @pytest.mark.unit
    def test_expired_entry_refetched(self, client, fake_transport, mocker):
        mocker.patch("httpbridge.cache.now_ms", return_value=0)
        client.request("/api/x", {"cache_data": True, "cache_control": 100})

        mocker.patch("httpbridge.cache.now_ms", return_value=100)
        client.request("/api/x", {"cache_data": True, "cache_control": 100})

        assert len(fake_transport.calls) == 2

    @pytest.mark.unit
    def test_business_error_not_cached(self, make_client, transport_factory, response_factory):
        transport = transport_factory(lambda config: response_factory({"code": 1, "msg": "invalid"}))
        client = make_client(transport)

        for _ in range(2):
            with pytest.raises(BusinessError):
                client.request("/api/x", {"cache_data": True})

        assert len(transport.calls) == 2

    @pytest.mark.unit
    def test_cached_result_isolated_from_caller(self, make_client, transport_factory, response_factory):
        """调用方修改返回结果不会污染缓存"""
        # Arrange
        transport = transport_factory(lambda config: response_factory({"code": 0, "result": {"rows": [1]}}))
        client = make_client(transport)

        # Act
        first = client.request("/api/x", {"cache_data": True})
        first["rows"].append(99)
        second = client.request("/api/x", {"cache_data": True})

        # Assert
        assert second == {"rows": [1]}
        assert len(transport.calls) == 1

    @pytest.mark.unit
    def test_redis_backend(self, make_client, fake_transport, fake_redis):
        from httpbridge.cache import RedisCacheBackend

        fake_redis.flushall()
        client = make_client(fake_transport, cache_backend=RedisCacheBackend(client=fake_redis))

        client.request("/api/x", {"cache_data": True})
        client.request("/api/x", {"cache_data": True})

        assert len(fake_transport.calls) == 1


class TestDiagnosticLog:
    """测试诊断日志"""

    @pytest.mark.unit
    def test_no_queue_without_cache_log(self, client):
        """未开启 cache_log 时不创建日志队列"""
        client.request("/api/x")

        assert client.log_queue is None

    @pytest.mark.unit
    def test_queue_records_request_lifecycle(self, client, mocker):
        mocker.patch.object(client, "generate_request_id", return_value="A")

        client.request("/api/x", {"cache_log": True})

        timeline = list(client.log_queue.get("A").values())
        assert timeline[0] == "/api/x"
        assert timeline[1]["cache_log"] is True
        assert timeline[2]["status"] == 200
        assert timeline[3] == {"code": 0, "result": True}

    @pytest.mark.unit
    def test_fifo_eviction(self, client, mocker):
        """超过 max_cache_log 时淘汰最早的请求"""
        mocker.patch.object(client, "generate_request_id", side_effect=["A", "B", "C"])
        options = {"cache_log": True, "max_cache_log": 2}

        for _ in range(3):
            client.request("/api/x", options)

        assert client.log_queue.keys() == ["B", "C"]

    @pytest.mark.unit
    def test_cache_method_receives_snapshot(self, client):
        sink = MagicMock()

        client.request("/api/x", {"cache_log": True, "cache_method": sink})

        assert sink.call_count >= 1
        assert len(sink.call_args[0][0]) == 1

    @pytest.mark.unit
    def test_error_is_logged(self, make_client, transport_factory, response_factory, mocker):
        transport = transport_factory(lambda config: response_factory({"code": 1, "msg": "invalid"}))
        client = make_client(transport, log_queue=RequestLogQueue())
        mocker.patch.object(client, "generate_request_id", return_value="A")

        with pytest.raises(BusinessError):
            client.request("/api/x", {"cache_log": True})

        last = list(client.log_queue.get("A").values())[-1]
        assert last["code"] == 1
        assert last["msg"] == "invalid"


class TestErrors:
    """测试错误规范化"""

    @pytest.mark.unit
    def test_business_error(self, make_client, transport_factory, response_factory):
        transport = transport_factory(lambda config: response_factory({"code": 1, "msg": "invalid"}))
        client = make_client(transport)

        with pytest.raises(BusinessError) as exc_info:
            client.request("/api/x")

        assert exc_info.value.code == 1
        assert exc_info.value.msg == "invalid"

    @pytest.mark.unit
    def test_http_error_status(self, make_client, transport_factory, response_factory):
        transport = transport_factory(lambda config: response_factory({"msg": "boom"}, status=500))
        client = make_client(transport)

        with pytest.raises(TransportError) as exc_info:
            client.request("/api/x")

        assert exc_info.value.code == 500
        assert exc_info.value.msg == "boom"

    @pytest.mark.unit
    def test_network_error_normalized(self, make_client, transport_factory):
        """网络错误统一为 transitional"""

        def responder(config):
            raise TransportError("Connection refused", url=config.url, code="ERR_NETWORK")

        client = make_client(transport_factory(responder))

        with pytest.raises(TransportError) as exc_info:
            client.request("/api/x")

        assert exc_info.value.code == "transitional"
        assert exc_info.value.msg == STATUS_MESSAGES["transitional"]

    @pytest.mark.unit
    def test_timeout(self, make_client, transport_factory, response_factory):
        """超时后触发取消信号并以 code 20 拒绝"""
        seen_signals = []

        def responder(config):
            seen_signals.append(config.signal)
            config.signal.wait(5)
            return response_factory({"code": 0, "result": "late"})

        client = make_client(transport_factory(responder))

        started = time.monotonic()
        with pytest.raises(RequestTimeoutError) as exc_info:
            client.request("/api/slow", {"timeout": 50})
        elapsed = time.monotonic() - started

        assert exc_info.value.code == 20
        assert exc_info.value.msg == STATUS_MESSAGES[20]
        assert elapsed < 2
        assert seen_signals[0].is_set()

    @pytest.mark.unit
    def test_canceled_code_normalized(self, make_client, transport_factory):
        def responder(config):
            raise RequestTimeoutError(url=config.url, code="ERR_CANCELED")

        client = make_client(transport_factory(responder))

        with pytest.raises(RequestTimeoutError) as exc_info:
            client.request("/api/x")

        assert exc_info.value.code == 20

    @pytest.mark.unit
    def test_no_abort_for_rn(self, client, fake_transport):
        """rn 环境不安排超时取消"""
        client.request("/api/x", {"req_env": "rn"})

        assert fake_transport.last_config.signal is None

    @pytest.mark.unit
    def test_signal_attached_for_browser(self, client, fake_transport):
        client.request("/api/x", {"req_env": "browser"})

        assert fake_transport.last_config.signal is not None


class TestHandlers:
    """测试 error_handler / error_continue / callback"""

    @pytest.fixture
    def failing_client(self, make_client, transport_factory, response_factory):
        transport = transport_factory(lambda config: response_factory({"code": 2, "msg": "denied"}))
        return make_client(transport)

    @pytest.mark.unit
    def test_error_handler_then_raise(self, failing_client):
        handler = MagicMock()

        with pytest.raises(BusinessError):
            failing_client.request("/api/x", {}, error_handler=handler)

        error, config = handler.call_args[0]
        assert error.code == 2
        assert config.url == "/api/x"

    @pytest.mark.unit
    def test_error_continue(self, failing_client):
        """error_continue 开启时吞掉异常并返回 {"code": 0}"""
        handler = MagicMock()

        result = failing_client.request("/api/x", {"error_continue": True}, error_handler=handler)

        assert result == {"code": 0}
        handler.assert_called_once()

    @pytest.mark.unit
    def test_error_continue_requires_handler(self, failing_client):
        with pytest.raises(BusinessError):
            failing_client.request("/api/x", {"error_continue": True})

    @pytest.mark.unit
    def test_callback_receives_parsed_body(self, failing_client):
        """callback 跳过业务信封检查"""
        result = failing_client.request("/api/x", {}, callback=lambda data: data["msg"])

        assert result == "denied"

    @pytest.mark.unit
    def test_callback_exception_routed_to_handler(self, client):
        """callback 抛出的异常同样交给 error_handler"""
        handler = MagicMock()

        def broken_callback(data):
            raise KeyError("result")

        result = client.request("/api/x", {"error_continue": True}, error_handler=handler, callback=broken_callback)

        assert result == {"code": 0}
        error, config = handler.call_args[0]
        assert isinstance(error, TransportError)
        assert error.code == "transitional"
        assert config.url == "/api/x"

    @pytest.mark.unit
    def test_builtin_transport_exception_continue(self, make_client, transport_factory):
        """传输层抛出的内置异常归一为网络错误"""
        # Arrange
        def reset(config):
            raise ConnectionResetError("peer reset")

        client = make_client(transport_factory(reset))
        handler = MagicMock()

        # Act
        result = client.request("/api/x", {"error_continue": True}, error_handler=handler)

        # Assert
        assert result == {"code": 0}
        error = handler.call_args[0][0]
        assert error.code == "transitional"
        assert error.msg == STATUS_MESSAGES["transitional"]

    @pytest.mark.unit
    def test_builtin_transport_exception_raised_as_transport_error(self, make_client, transport_factory):
        def reset(config):
            raise ConnectionResetError("peer reset")

        client = make_client(transport_factory(reset))

        with pytest.raises(TransportError) as exc_info:
            client.request("/api/x")

        assert exc_info.value.code == "transitional"
        assert isinstance(exc_info.value.__cause__, ConnectionResetError)


class TestExternalAndStream:
    """测试外部接口和 SSE"""

    @pytest.mark.unit
    def test_external_passthrough(self, make_client, transport_factory):
        """外部接口返回原始响应"""
        raw = RawResponse(status=200, url="https://other.example.com/x", data={"anything": True})
        transport = transport_factory(lambda config: raw)
        client = make_client(transport)

        result = client.request(
            "https://other.example.com/x", {"is_external": True, "body": {"a": 1}, "params": {"q": ""}}
        )

        assert result is raw
        config = transport.last_config
        assert config.url == "https://other.example.com/x?q="
        assert config.body == RawBody({"a": 1})

    @pytest.mark.unit
    def test_external_with_callback(self, make_client, transport_factory):
        raw = RawResponse(status=200, url="https://other.example.com/x")
        client = make_client(transport_factory(lambda config: raw))

        result = client.request("https://other.example.com/x", {"is_external": True}, callback=lambda r: r.status)

        assert result == 200

    @pytest.mark.unit
    def test_sse_uses_stream_adapter(self, make_client, fake_transport):
        stream_adapter = MagicMock()
        client = make_client(fake_transport, stream_adapter=stream_adapter)

        result = client.request("/api/events", {"req_type": "sse", "manner": "json", "params": {"q": 1}})

        assert result is stream_adapter.open.return_value
        config = stream_adapter.open.call_args[0][0]
        assert config.body.text == '{"q": 1}'
        assert fake_transport.calls == []

    @pytest.mark.unit
    def test_sse_sends_json_body_by_default(self, make_client, fake_transport):
        """默认 form 编码的流式请求同样以 JSON 请求体发送"""
        stream_adapter = MagicMock()
        client = make_client(fake_transport, stream_adapter=stream_adapter)

        client.request("/api/events", {"req_type": "sse", "params": {"q": 1}})

        config = stream_adapter.open.call_args[0][0]
        assert config.body.text == '{"q": 1}'
        assert config.headers["Content-Type"] == "application/json;charset=utf-8"


class TestParamsSerializer:
    """测试参数序列化器集成"""

    class QuerySerializer(serializers.Serializer):
        page = serializers.IntegerField(min_value=1)

    @pytest.mark.unit
    def test_valid_params_converted(self, make_client, fake_transport):
        client = make_client(fake_transport, params_serializer=self.QuerySerializer)

        client.request("/api/list", {"method": "get", "params": {"page": "2"}})

        assert fake_transport.last_config.url == "/api/list?page=2"

    @pytest.mark.unit
    def test_invalid_params_rejected_before_dispatch(self, make_client, fake_transport):
        client = make_client(fake_transport, params_serializer=self.QuerySerializer)

        with pytest.raises(RequestValidationError) as exc_info:
            client.request("/api/list", {"method": "get", "params": {"page": 0}})

        assert "page" in exc_info.value.errors
        assert fake_transport.calls == []


class TestClientLifecycle:
    """测试客户端生命周期"""

    @pytest.mark.unit
    def test_context_manager_closes(self, fake_transport):
        selector = TransportSelector(http_client=fake_transport)
        selector.close = MagicMock()

        with RequestClient(selector=selector) as client:
            client.request("/api/x")

        selector.close.assert_called_once()

    @pytest.mark.unit
    def test_class_level_request(self, fake_transport):
        """类调用时自动创建临时客户端"""
        selector = TransportSelector(http_client=fake_transport)

        result = RequestClient.request("/api/x", {"method": "get"}, selector=selector)

        assert result is True
        assert len(fake_transport.calls) == 1

    @pytest.mark.unit
    def test_capabilities_override(self):
        client = RequestClient(capabilities=Capabilities(http_client=False))

        try:
            assert client.selector.probe().value == "fetch"
        finally:
            client.close()

    @pytest.mark.unit
    def test_default_client_is_shared(self):
        assert get_default_client() is get_default_client()


@pytest.mark.integration
class TestHTTPIntegration:
    """使用真实的会话型客户端（responses 拦截网络）"""

    @responses.activate
    def test_end_to_end(self):
        responses.add(
            responses.GET,
            "https://api.example.com/list?b=2",
            json={"code": 0, "msg": "ok", "result": {"rows": [{"name": None}]}},
        )

        result = request(
            "https://api.example.com/list",
            {"method": "get", "params": {"a": "", "b": 2}, "res_null_replace": "-"},
        )

        assert result == {"rows": [{"name": "-"}]}

    @responses.activate
    def test_http_error(self):
        responses.add(responses.POST, "https://api.example.com/save", json={"msg": "forbidden"}, status=403)

        with RequestClient() as client:
            with pytest.raises(TransportError) as exc_info:
                client.request("https://api.example.com/save", {"params": {"a": 1}})

        assert exc_info.value.code == 403
        assert exc_info.value.msg == "forbidden"

    def test_cookie_modes(self, requests_mock):
        """both 模式同时写入 cookie jar 和自定义请求头"""
        requests_mock.post("https://api.example.com/save", json={"code": 0, "result": "ok"})

        with RequestClient() as client:
            result = client.request(
                "https://api.example.com/save", {"params": {"a": 1}, "cookies": {"sid": "1"}, "cookie_mode": "both"}
            )

        sent = requests_mock.last_request
        assert result == "ok"
        assert sent.headers["X-Custom-Cookie"] == "sid=1"
        assert "sid=1" in sent.headers["Cookie"]
        assert sent.text == "a=1"
