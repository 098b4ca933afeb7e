"""请求管线核心模块

提供统一的请求入口 request(url, options, error_handler, callback)，无论底层是
会话型客户端、原始 fetch 还是小程序请求原语，行为都保持一致:
- 参数过滤、请求体编码、cookie / CSRF / 认证请求头
- 请求结果缓存
- 有界诊断日志
- 超时取消
- 业务错误规范化
- SSE 流式请求
"""

from __future__ import annotations

import logging
import threading
import uuid
from collections.abc import Mapping
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError
from typing import Any, Callable, TypeAlias

import requests
from rest_framework import serializers

from httpbridge.cache import BaseCacheBackend, InMemoryCacheBackend, RequestCache
from httpbridge.constants import (
    CODE_ERR_CANCELED,
    CODE_ERR_NETWORK,
    CODE_NETWORK_ERROR,
    CODE_TIMEOUT,
    DEFAULT_MAX_WORKERS,
    EMPTY_URL_MESSAGE,
    get_status_message,
)
from httpbridge.exceptions import (
    RequestError,
    RequestTimeoutError,
    RequestValidationError,
    TransportError,
)
from httpbridge.log_queue import RequestLogQueue
from httpbridge.options import Capabilities, Manner, ReqType, RequestConfig, RequestOptions
from httpbridge.postprocessor import ResponsePostprocessor
from httpbridge.preprocessor import RequestPreprocessor
from httpbridge.providers import BaseCookieProvider, BaseStorage, SessionCookieProvider
from httpbridge.serializer import BaseParamsSerializer, DRFParamsSerializer
from httpbridge.stream import StreamAdapter
from httpbridge.transport import AbortController, BaseTransport, HTTPClientTransport, TransportSelector
from httpbridge.utils import sanitize_dict, sanitize_headers, sanitize_url

# 类型别名定义
OptionsLike: TypeAlias = RequestOptions | Mapping[str, Any] | None
ErrorHandler: TypeAlias = Callable[[RequestError, RequestConfig | None], Any]
Callback: TypeAlias = Callable[[Any], Any]

# 配置日志
logger = logging.getLogger(__name__)

# 归一为超时的错误码
_TIMEOUT_CODES = {CODE_TIMEOUT, "ECONNABORTED", CODE_ERR_CANCELED}
# 归一为网络错误的错误码
_NETWORK_CODES = {CODE_NETWORK_ERROR, CODE_ERR_NETWORK}


class _RequestMethodDescriptor:
    """
    自定义描述符：实现 request 方法的"重载"效果

    - 实例调用（client.request()）：执行实例方法逻辑
    - 类调用（RequestClient.request()）：自动创建临时实例并执行
    """

    def __init__(self, instance_method):
        self.instance_method = instance_method

    def __get__(self, instance, owner):
        if instance is not None:
            return self.instance_method.__get__(instance, owner)

        def class_method_wrapper(
            url: str,
            options: OptionsLike = None,
            error_handler: ErrorHandler | None = None,
            callback: Callback | None = None,
            **client_kwargs,
        ) -> Any:
            """使用 client_kwargs 创建临时客户端，执行请求后自动关闭"""
            with owner(**client_kwargs) as temp_instance:
                return temp_instance.request(url, options, error_handler, callback)

        return class_method_wrapper

    def __set_name__(self, owner, name):
        self.name = name


class RequestClient:
    """
    请求客户端（编排器）

    类属性:
        default_options: 默认请求配置，调用方的请求配置会合并在它之上
        capabilities: 运行环境能力描述
        max_workers: 分发线程池的最大工作线程数
        cache_backend_class: 缓存后端类或实例
        params_serializer_class: 参数序列化器类或实例（也可以是 DRF Serializer 类）
        sensitive_headers: 日志中需要脱敏的请求头
        sensitive_params: 日志中需要脱敏的 URL 参数
        enable_sanitization: 是否启用日志脱敏

    使用示例:
        >>> with RequestClient() as client:
        ...     users = client.request("https://api.example.com/users", {"method": "get", "params": {"page": 1}})
    """

    # ========== 基础配置 ==========
    default_options: dict[str, Any] = {}
    capabilities: Capabilities = Capabilities()
    max_workers: int = DEFAULT_MAX_WORKERS

    # ========== 可插拔组件配置 ==========
    cache_backend_class: type[BaseCacheBackend] | BaseCacheBackend = InMemoryCacheBackend
    params_serializer_class: type[BaseParamsSerializer] | BaseParamsSerializer | None = None

    # ========== 安全性配置 ==========
    sensitive_headers: set[str] = {
        "Authorization",
        "Cookie",
        "X-Custom-Cookie",
        "X-CSRFToken",
    }
    sensitive_params: set[str] = {
        "token",
        "password",
        "secret",
        "key",
        "api_key",
        "access_token",
    }
    enable_sanitization: bool = True

    def __init__(
        self,
        capabilities: Capabilities | None = None,
        default_options: Mapping[str, Any] | None = None,
        cache: RequestCache | None = None,
        cache_backend: BaseCacheBackend | type[BaseCacheBackend] | None = None,
        log_queue: RequestLogQueue | None = None,
        session: requests.Session | None = None,
        selector: TransportSelector | None = None,
        stream_adapter: StreamAdapter | None = None,
        cookie_provider: BaseCookieProvider | None = None,
        session_storage: BaseStorage | None = None,
        local_storage: BaseStorage | None = None,
        params_serializer: BaseParamsSerializer | type | None = None,
        max_workers: int | None = None,
    ):
        """
        初始化请求客户端

        参数:
            capabilities: 运行环境能力描述（覆盖类属性）
            default_options: 默认请求配置（与类属性合并）
            cache: 请求结果缓存，优先于 cache_backend
            cache_backend: 缓存后端类或实例
            log_queue: 诊断日志队列，不传时在第一次开启 cache_log 的请求中创建
            session: 会话型客户端使用的 requests.Session
            selector: 传输选择器，不传时按 capabilities 构建
            stream_adapter: 流式请求适配器
            cookie_provider: cookie 读写实现，默认使用会话的 cookie jar
            session_storage: 会话级存储（tokenUrl / jwtToken）
            local_storage: 持久化存储（jwtToken）
            params_serializer: 参数序列化器类或实例
            max_workers: 分发线程池的最大工作线程数
        """
        # ========== 步骤1: 合并配置 ==========
        self.capabilities = capabilities or self.capabilities
        self.default_options = {**self.default_options, **(default_options or {})}
        self.max_workers = max_workers if max_workers is not None else self.max_workers

        # ========== 步骤2: 解析各个组件 ==========
        backend = self._resolve_component(cache_backend, "cache_backend_class", BaseCacheBackend, InMemoryCacheBackend)
        self.cache = cache if cache is not None else RequestCache(backend)
        self.params_serializer = self._resolve_params_serializer(params_serializer)

        # ========== 步骤3: 传输层 ==========
        self.session = session or requests.Session()
        self.selector = selector or TransportSelector(self.capabilities, http_client=HTTPClientTransport(self.session))
        self.stream_adapter = stream_adapter or StreamAdapter()

        # ========== 步骤4: 预处理 / 后处理 ==========
        self.cookie_provider = cookie_provider or SessionCookieProvider(self.session.cookies)
        self.preprocessor = RequestPreprocessor(self.cookie_provider, session_storage, local_storage)
        self.log_queue = log_queue
        self.postprocessor = ResponsePostprocessor(self.cache, log_queue)

        # ========== 步骤5: 分发线程池（用于超时等待） ==========
        self._executor: ThreadPoolExecutor | None = None
        self._executor_lock = threading.Lock()
        self._log_queue_lock = threading.Lock()

    def _resolve_component(self, component, class_attr_name, base_class, fallback_class, **init_kwargs):
        """
        统一的组件解析方法

        参数:
            component: 传入的组件配置（类或实例）
            class_attr_name: 类属性名称
            base_class: 基类类型
            fallback_class: 未配置时使用的类

        返回:
            组件实例
        """
        source = component if component is not None else getattr(self, class_attr_name, fallback_class)

        if source is None:
            return None

        if isinstance(source, type) and issubclass(source, base_class):
            try:
                return source(**init_kwargs)
            except Exception as e:
                logger.error(f"Failed to instantiate {source.__name__}: {e}")
                raise RequestValidationError(f"{class_attr_name} instantiation failed: {e}") from e

        if isinstance(source, base_class):
            return source

        raise RequestValidationError(f"{class_attr_name} must be a {base_class.__name__} subclass or instance")

    def _resolve_params_serializer(self, params_serializer) -> BaseParamsSerializer | None:
        """解析参数序列化器，DRF Serializer 类会被包装为 DRFParamsSerializer"""
        source = params_serializer if params_serializer is not None else self.params_serializer_class
        if isinstance(source, type) and issubclass(source, serializers.Serializer):
            return DRFParamsSerializer(source)
        return self._resolve_component(source, "params_serializer_class", BaseParamsSerializer, None)

    def _resolve_options(self, options: OptionsLike) -> RequestOptions:
        """
        把调用方配置合并在 default_options 之上

        RequestOptions 实例只有与默认值不同的字段参与合并，
        显式设为默认值的字段无法覆盖 default_options
        """
        if isinstance(options, RequestOptions):
            if not self.default_options:
                return options
            options = options.changed_fields()
        return RequestOptions.from_mapping({**self.default_options, **(options or {})})

    def _obtain_log_queue(self, options: RequestOptions) -> RequestLogQueue:
        """获取诊断日志队列，第一次使用时按请求配置创建"""
        with self._log_queue_lock:
            if self.log_queue is None:
                self.log_queue = RequestLogQueue(options.max_cache_log, options.cache_method)
                self.postprocessor.log_queue = self.log_queue
            return self.log_queue

    @property
    def executor(self) -> ThreadPoolExecutor:
        with self._executor_lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="httpbridge")
            return self._executor

    def generate_request_id(self) -> str:
        """生成请求唯一标识（同时作为诊断日志的关联 ID）"""
        return str(uuid.uuid4())

    def _safe_url(self, url: str) -> str:
        return sanitize_url(url, self.sensitive_params) if self.enable_sanitization else url

    def _dispatch(
        self,
        request_id: str,
        transport: BaseTransport,
        config: RequestConfig,
        controller: AbortController | None,
    ):
        """
        分发请求到传输层

        有取消控制器时在线程池中执行，并最多等待 timeout 毫秒；
        超时后触发取消信号并抛出 RequestTimeoutError
        """
        logger.info(f"[{request_id}] Starting {config.method} request to {self._safe_url(config.url)} via {transport.name}")
        if logger.isEnabledFor(logging.DEBUG):
            headers = dict(config.headers)
            if self.enable_sanitization:
                headers = sanitize_headers(headers, self.sensitive_headers)
            logger.debug(f"[{request_id}] Request headers: {headers}, body: {type(config.body).__name__}")

        if controller is None:
            response = transport.send(config)
        else:
            future = self.executor.submit(transport.send, config)
            try:
                response = future.result(timeout=config.timeout_seconds)
            except FuturesTimeoutError as e:
                controller.abort()
                future.cancel()
                raise RequestTimeoutError(
                    f"Request to {config.url} timed out after {config.timeout}ms", url=config.url
                ) from e

        logger.info(f"[{request_id}] Received {response.status} response")
        return response

    def _normalize_error(self, error: RequestError) -> RequestError:
        """超时 / 取消归一为 code 20，网络失败归一为 transitional"""
        if isinstance(error, RequestTimeoutError) or error.code in _TIMEOUT_CODES:
            return RequestTimeoutError(
                get_status_message(CODE_TIMEOUT),
                url=error.url,
                status=error.status,
                code=CODE_TIMEOUT,
                response=error.response,
            )
        if error.code in _NETWORK_CODES:
            return TransportError(
                get_status_message(CODE_NETWORK_ERROR),
                url=error.url,
                status=error.status,
                code=CODE_NETWORK_ERROR,
                response=error.response,
            )
        return error

    @_RequestMethodDescriptor
    def request(
        self,
        url: str,
        options: OptionsLike = None,
        error_handler: ErrorHandler | None = None,
        callback: Callback | None = None,
    ) -> Any:
        """
        发起请求的统一入口

        参数:
            url: 请求地址
            options: 请求配置（RequestOptions 或 snake_case 字典），合并在 default_options 之上
            error_handler: 错误处理函数 (error, config)，error_continue 开启时吞掉异常并返回 {"code": 0}
            callback: 自定义回调，存在时直接以解析后的响应体调用并返回其结果

        返回:
            业务数据 result；文件下载时为字节；SSE 请求为 StreamResponse；外部接口为 RawResponse

        异常:
            RequestValidationError: 请求地址为空或配置非法
            TransportError / RequestTimeoutError / BusinessError: 请求失败

        执行步骤:
            1. 开启日志时生成关联 ID 并记录地址和配置
            2. 校验请求地址
            3. 命中未过期缓存时直接返回
            4. 选择传输实现
            5. 外部接口直接透传
            6. 预处理请求配置
            7. 安排超时取消
            8. SSE 请求交给流式适配器
            9. 分发请求，依次执行 StatusCheck、BusinessCheck，并规范化异常
        """
        options = self._resolve_options(options)
        request_id = self.generate_request_id()
        if logger.isEnabledFor(logging.DEBUG):
            options_dict = options.to_dict()
            if self.enable_sanitization:
                options_dict = sanitize_dict(options_dict, self.sensitive_headers | self.sensitive_params)
            logger.debug(f"[{request_id}] Request options: {options_dict}")

        # 步骤1: 诊断日志
        log_queue = None
        if options.cache_log:
            log_queue = self._obtain_log_queue(options)
            log_queue.add(url, request_id)
            log_queue.add(options.to_dict(), request_id)

        # 步骤2: 地址拦截
        if not url:
            raise RequestValidationError(EMPTY_URL_MESSAGE, url=url)

        # 步骤3: 缓存
        cache_key = None
        if options.cache_data:
            cache_key = options.cache_key or self.cache.make_key(url, options.params)
            entry = self.cache.lookup(cache_key)
            if entry is not None:
                logger.info(f"[{request_id}] Cache HIT for {self._safe_url(url)}")
                return entry.data
            logger.debug(f"[{request_id}] Cache MISS for {self._safe_url(url)}")

        # 步骤4: 选择传输
        transport = self.selector.select(options.req_env)

        # 步骤5: 外部接口
        if options.is_external:
            config = self.preprocessor.passthrough(url, options)
            response = self._dispatch(request_id, transport, config, None)
            return callback(response) if callback is not None else response

        # 步骤6: 预处理
        if self.params_serializer is not None:
            options = options.merged(params=self.params_serializer.validate(options.params))
        if options.req_type == ReqType.SSE and options.manner == Manner.FORM:
            # 流式请求的参数以 JSON 请求体发送
            options = options.merged(manner=Manner.JSON)
        config = self.preprocessor.resolve(url, options)

        # 步骤7: 超时取消
        controller = None
        if self.selector.supports_abort(options.req_env):
            controller = AbortController()
            config = config.with_signal(controller.signal)

        # 步骤8: SSE
        if options.req_type == ReqType.SSE:
            return self.stream_adapter.open(config)

        # 步骤9: 分发 + 后处理
        try:
            response = self._dispatch(request_id, transport, config, controller)
            data = self.postprocessor.status_check(response, config, options, request_id)
            return self.postprocessor.business_check(data, options, url, callback, cache_key, request_id)
        except Exception as e:
            if isinstance(e, RequestError):
                error = self._normalize_error(e)
            else:
                # 回调、传输层抛出的非 RequestError 统一按网络错误处理
                error = self._normalize_error(TransportError(str(e), url=config.url, code=CODE_NETWORK_ERROR))
            logger.error(f"[{request_id}] Request failed: {error!r}")
            if log_queue is not None:
                log_queue.add(error.to_dict(), request_id)
            if error_handler is not None:
                error_handler(error, config)
                if options.error_continue:
                    return {"code": 0}
            if error is e:
                raise
            raise error from e

    def close(self):
        """关闭线程池、会话和连接池，释放资源"""
        with self._executor_lock:
            if self._executor is not None:
                self._executor.shutdown(wait=False, cancel_futures=True)
                self._executor = None
        self.selector.close()
        self.stream_adapter.close()
        self.session.close()
        logger.info("RequestClient closed")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


_default_client: RequestClient | None = None
_default_client_lock = threading.Lock()


def get_default_client() -> RequestClient:
    """返回进程级的默认客户端（缓存在进程内共享）"""
    global _default_client
    with _default_client_lock:
        if _default_client is None:
            _default_client = RequestClient()
        return _default_client


def request(
    url: str,
    options: OptionsLike = None,
    error_handler: ErrorHandler | None = None,
    callback: Callback | None = None,
) -> Any:
    """使用默认客户端发起请求，参数含义同 RequestClient.request"""
    return get_default_client().request(url, options, error_handler, callback)
