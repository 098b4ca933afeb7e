"""
httpbridge 跨环境请求管线

无论运行在会话型客户端、原始 fetch 还是小程序请求原语之上，
都通过同一个入口发起请求，并得到一致的行为

主要组件:
    - RequestClient / request: 请求入口
    - RequestOptions: 请求配置
    - 异常类: RequestError 及其子类
    - 传输层: HTTPClientTransport, FetchTransport, MiniProgramTransport
    - 缓存: RequestCache, InMemoryCacheBackend, RedisCacheBackend
    - 诊断日志: RequestLogQueue

使用示例:
    >>> from httpbridge import RequestClient
    >>>
    >>> with RequestClient() as client:
    ...     result = client.request("https://api.example.com/list", {"method": "get", "params": {"page": 1}})
"""

# 核心客户端
from httpbridge.client import RequestClient, get_default_client, request

# 请求配置
from httpbridge.options import (
    Capabilities,
    CookieMode,
    Manner,
    ReqEnv,
    ReqType,
    RequestConfig,
    RequestOptions,
    ResponseType,
)

# 异常类
from httpbridge.exceptions import (
    BusinessError,
    RequestError,
    RequestTimeoutError,
    RequestValidationError,
    StreamError,
    TransportError,
)

# 传输层
from httpbridge.transport import (
    AbortController,
    BaseTransport,
    FetchTransport,
    HTTPClientTransport,
    MiniProgramTransport,
    RawResponse,
    TransportSelector,
)

# 流式请求
from httpbridge.stream import StreamAdapter, StreamResponse

# 缓存支持
from httpbridge.cache import (
    BaseCacheBackend,
    InMemoryCacheBackend,
    RedisCacheBackend,
    RequestCache,
)

# 诊断日志
from httpbridge.log_queue import RequestLogQueue

# 外部协作者
from httpbridge.providers import (
    BaseCookieProvider,
    BaseStorage,
    InMemoryStorage,
    SessionCookieProvider,
)

# 参数序列化器
from httpbridge.serializer import BaseParamsSerializer, DRFParamsSerializer

# 状态码验证器
from httpbridge.validator import StatusCodeValidator

# 工具函数
from httpbridge.utils import (
    build_query_params,
    replace_empty,
    replace_fields_empty,
    safe_format,
    sanitize_dict,
    sanitize_headers,
    sanitize_url,
)

__all__ = [
    # 核心客户端
    "RequestClient",
    "get_default_client",
    "request",
    # 请求配置
    "Capabilities",
    "CookieMode",
    "Manner",
    "ReqEnv",
    "ReqType",
    "RequestConfig",
    "RequestOptions",
    "ResponseType",
    # 异常类
    "BusinessError",
    "RequestError",
    "RequestTimeoutError",
    "RequestValidationError",
    "StreamError",
    "TransportError",
    # 传输层
    "AbortController",
    "BaseTransport",
    "FetchTransport",
    "HTTPClientTransport",
    "MiniProgramTransport",
    "RawResponse",
    "TransportSelector",
    # 流式请求
    "StreamAdapter",
    "StreamResponse",
    # 缓存
    "BaseCacheBackend",
    "InMemoryCacheBackend",
    "RedisCacheBackend",
    "RequestCache",
    # 诊断日志
    "RequestLogQueue",
    # 外部协作者
    "BaseCookieProvider",
    "BaseStorage",
    "InMemoryStorage",
    "SessionCookieProvider",
    # 参数序列化器
    "BaseParamsSerializer",
    "DRFParamsSerializer",
    # 验证器
    "StatusCodeValidator",
    # 工具函数
    "build_query_params",
    "replace_empty",
    "replace_fields_empty",
    "safe_format",
    "sanitize_dict",
    "sanitize_headers",
    "sanitize_url",
]

__version__ = "0.1.0"
