"""
通用测试 Fixture 定义

提供测试所需的假传输层、Mock 对象和 Fixture
"""

import threading

import django
import fakeredis
import pytest
from django.conf import settings

# 配置 Django 设置（DRF Serializer 需要）
if not settings.configured:
    settings.configure(
        DEBUG=True,
        SECRET_KEY="test-secret-key",
        USE_I18N=True,
        USE_TZ=True,
    )
    django.setup()

from httpbridge.client import RequestClient
from httpbridge.providers import InMemoryStorage
from httpbridge.transport import BaseTransport, RawResponse, TransportSelector


def make_response(data=None, status=200, url="https://api.example.com/test", content=None):
    """构造传输层返回的原始响应"""
    return RawResponse(status=status, url=url, headers={"Content-Type": "application/json"}, data=data, content=content)


class FakeTransport(BaseTransport):
    """
    测试用的传输层

    记录每一次收到的 RequestConfig，并用 responder(config) 生成响应
    """

    name = "fake"

    def __init__(self, responder=None):
        self.calls = []
        self.responder = responder or (lambda config: make_response({"code": 0, "result": True}, url=config.url))
        self.lock = threading.Lock()

    def send(self, config):
        with self.lock:
            self.calls.append(config)
        return self.responder(config)

    @property
    def last_config(self):
        return self.calls[-1]


@pytest.fixture
def response_factory():
    """返回构造 RawResponse 的工厂函数"""
    return make_response


@pytest.fixture
def transport_factory():
    """返回 FakeTransport 类，便于自定义 responder"""
    return FakeTransport


@pytest.fixture
def fake_transport():
    """默认返回 {"code": 0, "result": True} 的假传输层"""
    return FakeTransport()


@pytest.fixture
def make_client(session_storage, local_storage):
    """按给定传输层构建客户端，测试结束后自动关闭"""
    created = []

    def _make(transport, **kwargs):
        selector = TransportSelector(http_client=transport, fetch=transport, mini_program=transport)
        kwargs.setdefault("session_storage", session_storage)
        kwargs.setdefault("local_storage", local_storage)
        instance = RequestClient(selector=selector, **kwargs)
        created.append(instance)
        return instance

    yield _make
    for instance in created:
        instance.close()


@pytest.fixture
def session_storage():
    return InMemoryStorage()


@pytest.fixture
def local_storage():
    return InMemoryStorage()


@pytest.fixture
def client(make_client, fake_transport):
    """所有环境都使用假传输层的客户端"""
    return make_client(fake_transport)


@pytest.fixture(scope="module")
def fake_redis():
    """FakeRedis 实例（模块级，提升性能）"""
    server = fakeredis.FakeServer()
    client = fakeredis.FakeStrictRedis(server=server, decode_responses=False)
    yield client
    client.flushall()
