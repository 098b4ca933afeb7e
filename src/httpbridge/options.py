"""
请求配置模型模块

定义调用方传入的 RequestOptions、预处理后交给传输层的不可变 RequestConfig、
请求体的几种形态以及运行环境能力描述 Capabilities
"""

from __future__ import annotations

import dataclasses
import enum
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Callable, Mapping, TypeAlias

from httpbridge.constants import (
    DEFAULT_COOKIE_HEADER_NAME,
    DEFAULT_CSRF_COOKIE_NAME,
    DEFAULT_CSRF_HEADER_NAME,
    DEFAULT_MAX_CACHE_LOG,
    DEFAULT_TIMEOUT,
    SUPPORTED_METHODS,
)
from httpbridge.exceptions import RequestValidationError

StatusValidator: TypeAlias = Callable[[int], bool]


class ReqEnv(str, enum.Enum):
    """请求环境，决定使用哪种传输实现"""

    BROWSER = "browser"
    RN = "rn"
    UNI = "uni"
    FETCH = "fetch"


class ReqType(str, enum.Enum):
    """请求类型：sse 为流式请求，xhr 为普通请求"""

    SSE = "sse"
    XHR = "xhr"


class Manner(str, enum.Enum):
    """请求体编码方式"""

    FORM = "form"
    JSON = "json"
    FILE = "file"


class CookieMode(str, enum.Enum):
    """
    Cookie 传递方式

    credentials: 通过凭证模式携带（需要服务端 CORS 支持）
    header: 通过自定义请求头传递，避免跨域限制
    both: 两种方式同时使用
    """

    CREDENTIALS = "credentials"
    HEADER = "header"
    BOTH = "both"


class ResponseType(str, enum.Enum):
    """响应数据类型"""

    JSON = "json"
    BLOB = "blob"
    STREAM = "stream"


_ENUM_FIELDS = {
    "req_env": ReqEnv,
    "req_type": ReqType,
    "manner": Manner,
    "cookie_mode": CookieMode,
}


@dataclass
class RequestOptions:
    """
    调用方传入的请求配置

    所有字段都有默认值，未指定的字段在预处理时使用默认配置。
    预处理不会修改调用方持有的实例，需要变更时使用 merged()/dataclasses.replace() 生成副本
    """

    req_env: ReqEnv | None = None
    req_type: ReqType = ReqType.XHR
    method: str = "post"
    manner: Manner = Manner.FORM
    params: Any = None
    body: Any = None
    headers: dict[str, str] = field(default_factory=dict)

    # 参数过滤
    is_filter: bool = True
    no_filter_field: tuple[str, ...] = ()
    delete_field: tuple[str, ...] = ()
    delete_time_field: bool = False

    is_file: bool = False
    mode: str = "cors"
    is_external: bool = False
    timeout: int = DEFAULT_TIMEOUT
    validate_status: StatusValidator | None = None

    # 缓存
    cache_data: bool = False
    cache_key: str | None = None
    cache_control: int | None = None

    # 诊断日志
    cache_log: bool = False
    max_cache_log: int = DEFAULT_MAX_CACHE_LOG
    cache_method: Callable[[dict], Any] | None = None
    show_log: bool = False

    # Cookie / CSRF
    with_credentials: bool = False
    cookies: dict[str, str] = field(default_factory=dict)
    cookie_mode: CookieMode = CookieMode.HEADER
    cookie_header_name: str = DEFAULT_COOKIE_HEADER_NAME
    auto_csrf: bool = False
    csrf_cookie_name: str = DEFAULT_CSRF_COOKIE_NAME
    csrf_header_name: str = DEFAULT_CSRF_HEADER_NAME

    # 响应后处理
    res_null_replace: str | None = None
    res_replace_field: tuple[str, ...] = ()
    error_continue: bool = False

    def __post_init__(self):
        for name, enum_cls in _ENUM_FIELDS.items():
            value = getattr(self, name)
            if value is None or isinstance(value, enum_cls):
                continue
            try:
                setattr(self, name, enum_cls(str(value).lower()))
            except ValueError:
                choices = [item.value for item in enum_cls]
                raise RequestValidationError(f"Invalid {name}: {value!r}, must be one of {choices}")

        if not isinstance(self.method, str) or self.method.upper() not in SUPPORTED_METHODS:
            raise RequestValidationError(f"Unsupported HTTP method: {self.method!r}")

        self.no_filter_field = tuple(self.no_filter_field or ())
        self.delete_field = tuple(self.delete_field or ())
        self.res_replace_field = tuple(self.res_replace_field or ())
        self.headers = dict(self.headers or {})
        self.cookies = dict(self.cookies or {})

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any] | None) -> RequestOptions:
        """
        从普通字典构建配置

        参数:
            data: snake_case 键名的配置字典

        异常:
            RequestValidationError: 出现未知的配置项时抛出
        """
        data = dict(data or {})
        known = {f.name for f in dataclasses.fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise RequestValidationError(f"Unknown request options: {sorted(unknown)}")
        return cls(**data)

    @classmethod
    def coerce(cls, options: RequestOptions | Mapping[str, Any] | None) -> RequestOptions:
        """接受 RequestOptions、字典或 None，统一返回 RequestOptions"""
        if isinstance(options, cls):
            return options
        return cls.from_mapping(options)

    def merged(self, **changes) -> RequestOptions:
        """返回应用了 changes 的新副本"""
        return dataclasses.replace(self, **changes)

    def changed_fields(self) -> dict[str, Any]:
        """返回与默认值不同的字段"""
        return {
            f.name: getattr(self, f.name)
            for f in dataclasses.fields(self)
            if getattr(self, f.name) != getattr(DEFAULT_OPTIONS, f.name)
        }

    def to_dict(self) -> dict[str, Any]:
        """转换为便于记录日志的字典（枚举转为取值，可调用对象转为名称）"""
        result = {}
        for f in dataclasses.fields(self):
            value = getattr(self, f.name)
            if isinstance(value, enum.Enum):
                value = value.value
            elif callable(value):
                value = getattr(value, "__name__", repr(value))
            result[f.name] = value
        return result


DEFAULT_OPTIONS = RequestOptions()


# ========== 请求体 ==========


@dataclass(frozen=True)
class NoBody:
    """没有请求体（GET 请求或空表单）"""


@dataclass(frozen=True)
class FormBody:
    """application/x-www-form-urlencoded 请求体"""

    text: str


@dataclass(frozen=True)
class JsonBody:
    """application/json 请求体"""

    text: str


@dataclass(frozen=True)
class RawBody:
    """外部接口直接透传的原始请求体"""

    data: Any


@dataclass(frozen=True)
class MultipartPart:
    """
    multipart 表单中的一个部件

    value 用于普通字段；文件部件使用 fileobj（浏览器形态，原始文件对象）
    或 uri（rn 形态，{uri, type, name}）
    """

    name: str
    value: str | None = None
    filename: str | None = None
    content_type: str | None = None
    fileobj: Any = None
    uri: str | None = None

    @property
    def is_file(self) -> bool:
        return self.fileobj is not None or self.uri is not None

    def read(self) -> bytes:
        """读取文件部件的内容"""
        if self.fileobj is not None:
            if hasattr(self.fileobj, "read"):
                content = self.fileobj.read()
            else:
                content = self.fileobj
            return content.encode("utf-8") if isinstance(content, str) else bytes(content)
        if self.uri is not None:
            path = self.uri[len("file://") :] if self.uri.startswith("file://") else self.uri
            with open(path, "rb") as f:
                return f.read()
        return (self.value or "").encode("utf-8")


@dataclass(frozen=True)
class MultipartBody:
    """multipart/form-data 请求体，Content-Type（含 boundary）由传输层生成"""

    parts: tuple[MultipartPart, ...]

    def fields(self) -> list[tuple[str, str]]:
        return [(part.name, part.value) for part in self.parts if not part.is_file]

    def files(self) -> list[MultipartPart]:
        return [part for part in self.parts if part.is_file]


RequestBody: TypeAlias = NoBody | FormBody | JsonBody | RawBody | MultipartBody


@dataclass(frozen=True)
class RequestConfig:
    """
    预处理完成、可直接交给传输层的请求描述

    不可变：headers 以只读映射保存，GET 参数只出现在 url 中
    """

    url: str
    method: str
    headers: Mapping[str, str] = field(default_factory=dict)
    body: RequestBody = NoBody()
    timeout: int = DEFAULT_TIMEOUT
    signal: Any = None
    with_credentials: bool = False
    response_type: ResponseType = ResponseType.JSON
    mode: str = "cors"
    req_env: ReqEnv | None = None
    validate_status: StatusValidator | None = None

    def __post_init__(self):
        object.__setattr__(self, "method", self.method.upper())
        object.__setattr__(self, "headers", MappingProxyType(dict(self.headers)))

    @property
    def timeout_seconds(self) -> float:
        return self.timeout / 1000

    def with_signal(self, signal) -> RequestConfig:
        return dataclasses.replace(self, signal=signal)

    def to_dict(self) -> dict[str, Any]:
        return {
            "url": self.url,
            "method": self.method,
            "headers": dict(self.headers),
            "body": self.body,
            "timeout": self.timeout,
            "with_credentials": self.with_credentials,
            "response_type": self.response_type.value,
            "mode": self.mode,
            "req_env": self.req_env.value if self.req_env else None,
        }


@dataclass(frozen=True)
class Capabilities:
    """
    运行环境能力描述

    由宿主应用在启动时提供，只解析一次，不在每次请求时重新探测

    属性:
        http_client: 是否可以使用会话型 HTTP 客户端
        fetch: 是否可以使用原始 fetch 传输
        mini_program: 小程序风格的回调式请求原语，None 表示不可用
        abort: 是否支持取消（超时定时器）
    """

    http_client: bool = True
    fetch: bool = True
    mini_program: Callable[[dict], Any] | None = None
    abort: bool = True
