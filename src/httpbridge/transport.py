"""传输层模块

所有传输实现都遵循同一个接口: send(config) -> RawResponse
    - HTTPClientTransport: 基于 requests.Session 的会话型客户端（browser）
    - FetchTransport: 基于 urllib3 的原始 fetch 传输（rn / fetch），返回未解码的字节
    - MiniProgramTransport: 把小程序风格的回调式请求原语适配为同样的接口（uni）

TransportSelector 根据请求环境标签或注入的 Capabilities 选择传输实现
"""

from __future__ import annotations

import json
import logging
import threading
from abc import ABC, abstractmethod
from collections.abc import Mapping
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FuturesTimeoutError
from dataclasses import dataclass, field
from typing import Any, Callable

import requests
import urllib3
from requests.sessions import merge_setting
from requests.structures import CaseInsensitiveDict

from httpbridge.constants import (
    CODE_ERR_BAD_RESPONSE,
    CODE_ERR_CANCELED,
    CODE_NETWORK_ERROR,
)
from httpbridge.exceptions import RequestTimeoutError, RequestValidationError, TransportError
from httpbridge.options import (
    Capabilities,
    FormBody,
    JsonBody,
    MultipartBody,
    NoBody,
    RawBody,
    ReqEnv,
    RequestConfig,
    ResponseType,
)
from httpbridge.validator import AcceptAllValidator, BaseStatusValidator, ensure_valid_status

logger = logging.getLogger(__name__)


@dataclass
class RawResponse:
    """
    传输层返回的原始响应

    属性:
        status: HTTP 状态码
        url: 请求地址
        headers: 响应头
        data: 传输层已经解析好的数据（会话型客户端、小程序原语），None 表示未解析
        content: 未解码的响应体字节
        status_text: 状态描述
        encoding: 响应体编码
        raw: 底层库的响应对象
    """

    status: int
    url: str
    headers: Mapping[str, str] = field(default_factory=dict)
    data: Any = None
    content: bytes | None = None
    status_text: str | None = None
    encoding: str | None = None
    raw: Any = field(default=None, repr=False)

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "url": self.url,
            "headers": dict(self.headers),
            "data": self.data,
            "statusText": self.status_text,
        }


class AbortController:
    """
    取消控制器

    signal 是一个 threading.Event，传输层在发送前后检查它；
    传输先完成时，之后的 abort() 不会产生任何影响
    """

    def __init__(self):
        self.signal = threading.Event()

    def abort(self) -> None:
        self.signal.set()

    @property
    def aborted(self) -> bool:
        return self.signal.is_set()


class BaseTransport(ABC):
    """
    传输层基类

    类属性:
        name: 传输名称，用于日志
        default_status_validator: config 中没有 validate_status 时使用的验证器
    """

    name: str = "base"
    default_status_validator: BaseStatusValidator = AcceptAllValidator()

    @abstractmethod
    def send(self, config: RequestConfig) -> RawResponse:
        """发送请求并返回原始响应"""

    def close(self) -> None:
        """释放底层资源"""

    def _validator(self, config: RequestConfig) -> Callable[[int], bool]:
        return config.validate_status or self.default_status_validator

    @staticmethod
    def _check_aborted(config: RequestConfig) -> None:
        signal = config.signal
        if signal is not None and signal.is_set():
            raise RequestTimeoutError(url=config.url, code=CODE_ERR_CANCELED)


class HTTPClientTransport(BaseTransport):
    """
    基于 requests.Session 的会话型客户端

    凭证模式下请求会携带会话 cookie jar 中的 cookie，非凭证模式不携带。
    JSON 响应会直接解析为 Python 对象

    参数:
        session: requests.Session 实例，默认新建
    """

    name = "http_client"

    def __init__(self, session: requests.Session | None = None):
        self.session = session or requests.Session()
        self._session_lock = threading.RLock()

    def _build_request(self, config: RequestConfig) -> requests.Request:
        request_kwargs: dict[str, Any] = {
            "method": config.method,
            "url": config.url,
            "headers": dict(config.headers),
        }
        body = config.body
        if isinstance(body, (FormBody, JsonBody)):
            request_kwargs["data"] = body.text.encode("utf-8")
        elif isinstance(body, RawBody):
            if isinstance(body.data, (Mapping, list)):
                request_kwargs["json"] = body.data
            else:
                request_kwargs["data"] = body.data
        elif isinstance(body, MultipartBody):
            request_kwargs["data"] = body.fields()
            request_kwargs["files"] = [
                (part.name, (part.filename, part.read(), part.content_type)) for part in body.files()
            ]
        return requests.Request(**request_kwargs)

    def _prepare(self, config: RequestConfig) -> requests.PreparedRequest:
        request = self._build_request(config)
        with self._session_lock:
            if config.with_credentials:
                return self.session.prepare_request(request)
            # 非凭证模式：合并会话默认请求头，但不带 cookie jar
            request.headers = merge_setting(request.headers, self.session.headers, dict_class=CaseInsensitiveDict)
            return request.prepare()

    def send(self, config: RequestConfig) -> RawResponse:
        self._check_aborted(config)
        prepared = self._prepare(config)

        try:
            response = self.session.send(prepared, timeout=config.timeout_seconds)
        except requests.exceptions.Timeout as e:
            raise RequestTimeoutError(
                f"Request to {config.url} timed out after {config.timeout}ms", url=config.url
            ) from e
        except requests.exceptions.RequestException as e:
            raise TransportError(f"Request to {config.url} failed: {e}", url=config.url) from e

        self._check_aborted(config)
        logger.debug(f"{self.name} received {response.status_code} from {config.url}")
        raw = self._to_raw_response(response, config)
        return ensure_valid_status(raw, self._validator(config))

    @staticmethod
    def _to_raw_response(response: requests.Response, config: RequestConfig) -> RawResponse:
        data = None
        if config.response_type == ResponseType.JSON and response.content:
            try:
                data = response.json()
            except ValueError:
                data = response.text
        return RawResponse(
            status=response.status_code,
            url=response.url or config.url,
            headers=dict(response.headers),
            data=data,
            content=response.content,
            status_text=response.reason,
            encoding=response.encoding,
            raw=response,
        )

    def close(self) -> None:
        self.session.close()
        logger.info("Session closed")


def encode_fetch_body(config: RequestConfig) -> tuple[bytes | None, dict[str, str]]:
    """把请求体编码为 urllib3 可以直接发送的字节，返回 (body, headers)"""
    headers = dict(config.headers)
    body = config.body
    if isinstance(body, NoBody):
        return None, headers
    if isinstance(body, (FormBody, JsonBody)):
        return body.text.encode("utf-8"), headers
    if isinstance(body, MultipartBody):
        fields: list[Any] = list(body.fields())
        fields.extend((part.name, (part.filename, part.read(), part.content_type)) for part in body.files())
        encoded, content_type = urllib3.encode_multipart_formdata(fields)
        headers["Content-Type"] = content_type
        return encoded, headers
    # RawBody
    data = body.data
    if isinstance(data, (Mapping, list)):
        headers.setdefault("Content-Type", "application/json")
        return json.dumps(data, ensure_ascii=False).encode("utf-8"), headers
    if isinstance(data, str):
        return data.encode("utf-8"), headers
    return data, headers


class FetchTransport(BaseTransport):
    """
    原始 fetch 传输

    基于 urllib3.PoolManager，不做重试，返回未解码的响应体，
    由响应后处理阶段按响应类型解析

    参数:
        pool_manager: urllib3.PoolManager 实例，默认新建
    """

    name = "fetch"

    def __init__(self, pool_manager: urllib3.PoolManager | None = None):
        self.pool_manager = pool_manager or urllib3.PoolManager()

    def send(self, config: RequestConfig) -> RawResponse:
        self._check_aborted(config)
        body, headers = encode_fetch_body(config)

        try:
            response = self.pool_manager.request(
                config.method,
                config.url,
                body=body,
                headers=headers,
                timeout=urllib3.Timeout(total=config.timeout_seconds),
                retries=False,
                preload_content=True,
            )
        except urllib3.exceptions.TimeoutError as e:
            raise RequestTimeoutError(
                f"Request to {config.url} timed out after {config.timeout}ms", url=config.url
            ) from e
        except urllib3.exceptions.MaxRetryError as e:
            if isinstance(e.reason, urllib3.exceptions.TimeoutError):
                raise RequestTimeoutError(
                    f"Request to {config.url} timed out after {config.timeout}ms", url=config.url
                ) from e
            raise TransportError(f"Request to {config.url} failed: {e.reason}", url=config.url) from e
        except urllib3.exceptions.HTTPError as e:
            raise TransportError(f"Request to {config.url} failed: {e}", url=config.url) from e

        self._check_aborted(config)
        logger.debug(f"{self.name} received {response.status} from {config.url}")
        raw = RawResponse(
            status=response.status,
            url=config.url,
            headers=dict(response.headers),
            content=response.data,
            status_text=response.reason,
            raw=response,
        )
        return ensure_valid_status(raw, self._validator(config))

    def close(self) -> None:
        self.pool_manager.clear()


class MiniProgramTransport(BaseTransport):
    """
    小程序请求适配器

    把回调式的请求原语 primitive({url, method, header, data, responseType,
    success, fail, complete}) 包装为 send(config) -> RawResponse。
    原语通过 complete 回调返回 {statusCode, data, header, errMsg}，
    非 2xx 状态码一律拒绝，2xx 状态码再交给 validate_status 校验

    参数:
        primitive: 回调式请求原语
    """

    name = "mini_program"

    def __init__(self, primitive: Callable[[dict], Any]):
        self.primitive = primitive

    @staticmethod
    def _payload(config: RequestConfig) -> Any:
        body = config.body
        if isinstance(body, NoBody):
            return None
        if isinstance(body, (FormBody, JsonBody)):
            return body.text
        if isinstance(body, RawBody):
            return body.data
        raise RequestValidationError("Multipart upload is not supported by the mini-program transport", url=config.url)

    def _settle(self, future: Future, config: RequestConfig, response: Mapping[str, Any] | None) -> None:
        if future.done():
            return
        response = response or {}
        status = response.get("statusCode")
        raw = RawResponse(
            status=status,
            url=config.url,
            headers=response.get("header") or {},
            data=response.get("data"),
            status_text=response.get("errMsg"),
            raw=response,
        )
        if status is None:
            future.set_exception(
                TransportError(raw.status_text, url=config.url, code=CODE_NETWORK_ERROR, response=raw)
            )
        elif 200 <= status < 300:
            try:
                future.set_result(ensure_valid_status(raw, self._validator(config)))
            except TransportError as e:
                future.set_exception(e)
        else:
            future.set_exception(
                TransportError(
                    raw.status_text or f"Request failed with status code {status}",
                    url=config.url,
                    status=status,
                    code=CODE_ERR_BAD_RESPONSE,
                    status_text=raw.status_text,
                    response=raw,
                )
            )

    def send(self, config: RequestConfig) -> RawResponse:
        self._check_aborted(config)
        future: Future = Future()
        self.primitive(
            {
                "method": config.method,
                "url": config.url,
                "header": dict(config.headers),
                "data": self._payload(config),
                "responseType": "arraybuffer" if config.response_type == ResponseType.BLOB else "text",
                "success": lambda res: logger.debug(f"{self.name} success callback for {config.url}"),
                "fail": lambda err: logger.debug(f"{self.name} fail callback for {config.url}: {err}"),
                "complete": lambda res: self._settle(future, config, res),
            }
        )
        try:
            return future.result(timeout=config.timeout_seconds)
        except FuturesTimeoutError as e:
            raise RequestTimeoutError(
                f"Request to {config.url} timed out after {config.timeout}ms", url=config.url
            ) from e


class TransportSelector:
    """
    传输选择器

    决策表:
        browser -> HTTPClientTransport
        rn      -> FetchTransport
        uni     -> MiniProgramTransport
        fetch   -> FetchTransport
        未指定  -> 按 Capabilities 探测（只探测一次）: http_client -> fetch -> mini_program -> HTTPClientTransport

    参数:
        capabilities: 运行环境能力描述
        http_client: 会话型客户端传输（可选）
        fetch: 原始 fetch 传输（可选）
        mini_program: 小程序适配器（可选，默认使用 capabilities.mini_program 构建）
    """

    def __init__(
        self,
        capabilities: Capabilities | None = None,
        http_client: BaseTransport | None = None,
        fetch: BaseTransport | None = None,
        mini_program: BaseTransport | None = None,
    ):
        self.capabilities = capabilities or Capabilities()
        self._http_client = http_client
        self._fetch = fetch
        self._mini_program = mini_program
        self._probed_env: ReqEnv | None = None
        self._lock = threading.Lock()

    @property
    def http_client(self) -> BaseTransport:
        if self._http_client is None:
            self._http_client = HTTPClientTransport()
        return self._http_client

    @property
    def fetch(self) -> BaseTransport:
        if self._fetch is None:
            self._fetch = FetchTransport()
        return self._fetch

    @property
    def mini_program(self) -> BaseTransport:
        if self._mini_program is None:
            if self.capabilities.mini_program is None:
                raise RequestValidationError("Mini-program request primitive is not available")
            self._mini_program = MiniProgramTransport(self.capabilities.mini_program)
        return self._mini_program

    def probe(self) -> ReqEnv:
        """按能力描述确定默认环境，结果会被缓存"""
        with self._lock:
            if self._probed_env is None:
                if self.capabilities.http_client:
                    self._probed_env = ReqEnv.BROWSER
                elif self.capabilities.fetch:
                    self._probed_env = ReqEnv.FETCH
                elif self.capabilities.mini_program is not None:
                    self._probed_env = ReqEnv.UNI
                else:
                    self._probed_env = ReqEnv.BROWSER
                logger.debug(f"Probed request environment: {self._probed_env.value}")
            return self._probed_env

    def resolve_env(self, req_env: ReqEnv | str | None) -> ReqEnv:
        if req_env is None:
            return self.probe()
        return ReqEnv(req_env)

    def select(self, req_env: ReqEnv | str | None = None) -> BaseTransport:
        env = self.resolve_env(req_env)
        if env == ReqEnv.BROWSER:
            return self.http_client
        if env == ReqEnv.UNI:
            return self.mini_program
        # rn 与 fetch 都使用原始 fetch
        return self.fetch

    def supports_abort(self, req_env: ReqEnv | str | None = None) -> bool:
        """rn 的取消模型不同，不安排超时取消"""
        return self.capabilities.abort and self.resolve_env(req_env) != ReqEnv.RN

    def close(self) -> None:
        for transport in (self._http_client, self._fetch, self._mini_program):
            if transport is not None:
                transport.close()
