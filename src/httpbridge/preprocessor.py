"""请求预处理模块

把调用方的 url + RequestOptions 解析为可以直接交给传输层的 RequestConfig:
    1. 合并默认配置
    2. 文件下载时切换响应类型
    3. 过滤参数
    4. 处理 cookie / CSRF
    5. 处理认证请求头
    6. 按请求方法和编码方式生成请求体

整个过程是纯函数，不会修改调用方传入的配置
"""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Mapping
from typing import Any, Callable

from httpbridge.constants import (
    CONTENT_TYPE_FORM,
    CONTENT_TYPE_JSON,
    CONTENT_TYPE_OCTET_STREAM,
    EMPTY_URL_MESSAGE,
    HTTP_METHOD_GET,
    JWT_TOKEN_STORAGE_KEY,
    TIME_FIELDS,
    TOKEN_URL_STORAGE_KEY,
)
from httpbridge.exceptions import RequestValidationError
from httpbridge.options import (
    CookieMode,
    FormBody,
    JsonBody,
    Manner,
    MultipartBody,
    MultipartPart,
    NoBody,
    RawBody,
    ReqEnv,
    RequestBody,
    RequestConfig,
    RequestOptions,
    ResponseType,
)
from httpbridge.providers import BaseCookieProvider, BaseStorage
from httpbridge.utils import append_query, build_query_params

logger = logging.getLogger(__name__)


def _is_empty(value: Any) -> bool:
    # 0 和 False 是有效值，需要保留
    return value is None or value == ""


def filter_params(
    params: Any,
    is_filter: bool = True,
    no_filter_field: tuple[str, ...] = (),
    delete_field: tuple[str, ...] = (),
    delete_time_field: bool = False,
) -> Any:
    """
    参数去空

    参数:
        params: 原始参数，非字典时原样返回
        is_filter: 是否去除 ''/None 参数
        no_filter_field: 始终保留的字段，过滤完成后原样合并回去
        delete_field: 无条件删除的字段
        delete_time_field: 是否同时删除 TIME_FIELDS 中的时间字段

    返回:
        过滤后的新字典

    示例:
        >>> filter_params({"a": "", "b": 0, "c": False, "d": None})
        {"b": 0, "c": False}
    """
    if not isinstance(params, Mapping):
        return params

    kept = {key: params[key] for key in no_filter_field if key in params}

    removed = set(delete_field)
    if delete_time_field:
        removed.update(TIME_FIELDS)

    filtered = {}
    for key, value in params.items():
        if key in removed:
            continue
        if is_filter and _is_empty(value):
            continue
        filtered[key] = value

    return {**kept, **filtered}


# ========== 请求体编码 ==========


def _encode_json(params: Any, env: ReqEnv | None) -> tuple[dict[str, str], RequestBody]:
    payload = params if params is not None else {}
    return {"Content-Type": CONTENT_TYPE_JSON}, JsonBody(json.dumps(payload, ensure_ascii=False, default=str))


def _query_string(params: Any) -> str:
    """字典和列表/元组参数拼接为查询串，None 视为空"""
    if params is None or isinstance(params, (Mapping, list, tuple)):
        return build_query_params(params)
    raise RequestValidationError(f"Params must be a mapping or a sequence, got {type(params).__name__}")


def _encode_form(params: Any, env: ReqEnv | None) -> tuple[dict[str, str], RequestBody]:
    query = _query_string(params)
    if query:
        return {"Content-Type": CONTENT_TYPE_FORM}, FormBody(query)
    return {}, NoBody()


def _item_value(item: Any, *names: str) -> Any:
    for name in names:
        if isinstance(item, Mapping):
            if item.get(name) is not None:
                return item[name]
        elif getattr(item, name, None) is not None:
            return getattr(item, name)
    return None


def _file_parts(item: Any, env: ReqEnv | None) -> list[MultipartPart]:
    """生成单个文件对应的 multipart 部件：file 部件 + fileId 字段"""
    if env == ReqEnv.RN:
        # rn 形态: {uri, type, name}
        part = MultipartPart(
            name="file",
            filename=_item_value(item, "name"),
            content_type=CONTENT_TYPE_OCTET_STREAM,
            uri=_item_value(item, "uri"),
        )
    else:
        # 浏览器形态: 原始文件对象
        fileobj = _item_value(item, "file", "content") if isinstance(item, Mapping) else item
        filename = _item_value(item, "name", "filename") or getattr(fileobj, "name", None) or "file"
        part = MultipartPart(
            name="file",
            filename=os.path.basename(str(filename)),
            content_type=_item_value(item, "type", "content_type") if isinstance(item, Mapping) else None,
            fileobj=fileobj,
        )

    parts = [part]
    file_id = _item_value(item, "fileId", "file_id")
    if file_id is not None:
        parts.append(MultipartPart(name="fileId", value=str(file_id)))
    return parts


def _encode_file(params: Any, env: ReqEnv | None) -> tuple[dict[str, str], RequestBody]:
    if params is None:
        raise RequestValidationError("File upload requires params with at least one file item")
    items = params if isinstance(params, (list, tuple)) else [params]
    parts: list[MultipartPart] = []
    for item in items:
        parts.extend(_file_parts(item, env))
    return {}, MultipartBody(tuple(parts))


_BODY_ENCODERS: dict[Manner, Callable[[Any, ReqEnv | None], tuple[dict[str, str], RequestBody]]] = {
    Manner.JSON: _encode_json,
    Manner.FORM: _encode_form,
    Manner.FILE: _encode_file,
}


def encode_body(
    url: str, method: str, manner: Manner, params: Any, env: ReqEnv | None = None
) -> tuple[str, dict[str, str], RequestBody]:
    """
    按请求方法和编码方式生成请求体

    GET 请求把参数拼接到 url 上，不生成请求体；其余方法按 manner 选择编码器

    返回:
        (最终 url, 需要合并的请求头, 请求体)
    """
    if method.upper() == HTTP_METHOD_GET and manner != Manner.FILE:
        return append_query(url, _query_string(params)), {}, NoBody()

    headers, body = _BODY_ENCODERS[manner](params, env)
    return url, headers, body


class RequestPreprocessor:
    """
    请求预处理器

    参数:
        cookie_provider: cookie 读写实现，None 时跳过 cookie 写入和 CSRF 读取
        session_storage: 会话级存储，保存 tokenUrl 和 jwtToken
        local_storage: 持久化存储，会话存储中没有 jwtToken 时从这里读取
    """

    def __init__(
        self,
        cookie_provider: BaseCookieProvider | None = None,
        session_storage: BaseStorage | None = None,
        local_storage: BaseStorage | None = None,
    ):
        self.cookie_provider = cookie_provider
        self.session_storage = session_storage
        self.local_storage = local_storage

    def resolve(self, url: str, options: RequestOptions | Mapping[str, Any] | None = None) -> RequestConfig:
        """
        解析请求配置

        参数:
            url: 请求地址
            options: 调用方传入的请求配置

        返回:
            不可变的 RequestConfig

        异常:
            RequestValidationError: 请求地址为空或配置非法时抛出
        """
        if not url:
            raise RequestValidationError(EMPTY_URL_MESSAGE, url=url)

        # 步骤1: 合并默认配置（RequestOptions 的默认值即默认配置）
        options = RequestOptions.coerce(options)

        # 步骤2: 文件下载时使用二进制响应
        response_type = ResponseType.BLOB if options.is_file else ResponseType.JSON

        # 步骤3: 非文件上传时过滤参数
        params = options.params
        if options.manner != Manner.FILE:
            params = filter_params(
                params,
                is_filter=options.is_filter,
                no_filter_field=options.no_filter_field,
                delete_field=options.delete_field,
                delete_time_field=options.delete_time_field,
            )

        # 步骤4: cookie / CSRF
        headers = dict(options.headers)
        with_credentials = self._resolve_cookies(options, headers)

        # 步骤5: 认证请求头
        self._resolve_authorization(url, headers)

        # 步骤6: 请求体
        final_url, body_headers, body = encode_body(url, options.method, options.manner, params, options.req_env)
        headers.update(body_headers)

        config = RequestConfig(
            url=final_url,
            method=options.method,
            headers=headers,
            body=body,
            timeout=options.timeout,
            with_credentials=with_credentials,
            response_type=response_type,
            mode=options.mode,
            req_env=options.req_env,
            validate_status=options.validate_status,
        )
        logger.debug(f"Resolved request config: {config.method} {config.url} body={type(body).__name__}")
        return config

    def passthrough(self, url: str, options: RequestOptions | Mapping[str, Any] | None = None) -> RequestConfig:
        """
        外部接口使用的透传配置

        不做参数过滤、cookie 和认证处理，params 拼接到 url 上，body 原样发送
        """
        if not url:
            raise RequestValidationError(EMPTY_URL_MESSAGE, url=url)
        options = RequestOptions.coerce(options)
        if isinstance(options.params, Mapping):
            url = append_query(url, build_query_params(options.params))
        body = RawBody(options.body) if options.body is not None else NoBody()
        return RequestConfig(
            url=url,
            method=options.method,
            headers=options.headers,
            body=body,
            timeout=options.timeout,
            with_credentials=options.with_credentials,
            response_type=ResponseType.BLOB if options.is_file else ResponseType.JSON,
            mode=options.mode,
            req_env=options.req_env,
            validate_status=options.validate_status,
        )

    def _resolve_cookies(self, options: RequestOptions, headers: dict[str, str]) -> bool:
        """处理 cookie 策略，返回是否使用凭证模式"""
        mode = options.cookie_mode
        use_credentials = mode in (CookieMode.CREDENTIALS, CookieMode.BOTH)
        with_credentials = use_credentials or options.with_credentials is True

        if options.cookies:
            if use_credentials and self.cookie_provider is not None:
                # 方式1: 写入 cookie jar，由凭证模式携带
                for name, value in options.cookies.items():
                    self.cookie_provider.set(name, value)
            if mode in (CookieMode.HEADER, CookieMode.BOTH):
                # 方式2: 通过自定义请求头传递，避免跨域限制
                headers[options.cookie_header_name] = "; ".join(
                    f"{name}={value}" for name, value in options.cookies.items()
                )

        if options.auto_csrf and self.cookie_provider is not None:
            csrf_token = self.cookie_provider.read(options.csrf_cookie_name)
            if csrf_token:
                headers[options.csrf_header_name] = csrf_token

        return with_credentials

    def _resolve_authorization(self, url: str, headers: dict[str, str]) -> None:
        """tokenUrl 匹配当前请求地址时，从存储中读取 jwtToken 注入 Authorization"""
        if self.session_storage is None:
            return

        token_url = self.session_storage.get(TOKEN_URL_STORAGE_KEY) or ""
        if not token_url or token_url not in url:
            headers.pop("usertoken", None)
            return

        if headers.get("Authorization"):
            return
        authorization = self.session_storage.get(JWT_TOKEN_STORAGE_KEY)
        if not authorization and self.local_storage is not None:
            authorization = self.local_storage.get(JWT_TOKEN_STORAGE_KEY)
        if authorization:
            headers["Authorization"] = authorization
        headers.pop("authorization", None)
