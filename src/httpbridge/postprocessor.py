"""响应后处理模块

两阶段处理传输层返回的响应:
    StatusCheck: 校验 HTTP 状态码并解析响应体
    BusinessCheck: 拆解业务信封 {code, msg, result}，code 为 0 视为成功

成功后可选地写入缓存，并按配置替换空值
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any, Callable

from httpbridge.cache import RequestCache
from httpbridge.constants import (
    BUSINESS_SUCCESS_CODE,
    CODE_NO_RESPONSE,
    UNKNOWN_ERROR_MESSAGE,
    get_status_message,
)
from httpbridge.exceptions import BusinessError, TransportError
from httpbridge.log_queue import RequestLogQueue
from httpbridge.options import RequestConfig, RequestOptions
from httpbridge.parser import get_parser
from httpbridge.transport import RawResponse
from httpbridge.utils import EMPTY_PLACEHOLDER, replace_empty, replace_fields_empty

logger = logging.getLogger(__name__)


def _is_success_code(code: Any) -> bool:
    try:
        return int(code) == BUSINESS_SUCCESS_CODE
    except (TypeError, ValueError):
        return False


class ResponsePostprocessor:
    """
    响应后处理器

    参数:
        cache: 请求结果缓存，None 时不写缓存
        log_queue: 诊断日志队列，None 时不记录
    """

    def __init__(self, cache: RequestCache | None = None, log_queue: RequestLogQueue | None = None):
        self.cache = cache
        self.log_queue = log_queue

    def _log(self, payload: Any, options: RequestOptions, correlation_id: str | None) -> None:
        if self.log_queue is not None and options.cache_log and not options.is_file:
            self.log_queue.add(payload, correlation_id)

    def status_check(
        self,
        response: RawResponse,
        config: RequestConfig,
        options: RequestOptions | None = None,
        correlation_id: str | None = None,
    ) -> Any:
        """
        校验 HTTP 状态码

        返回:
            2xx 时返回解析后的响应体（传输层已解析时直接使用）

        异常:
            TransportError: 状态码不在 [200, 300) 区间，或响应体无法解析时抛出
        """
        options = options or RequestOptions()
        self._log(response.to_dict(), options, correlation_id)

        status = response.status
        if status is not None and 200 <= status < 300:
            try:
                return get_parser(config.response_type).parse(response)
            except ValueError as e:
                logger.error(f"[{correlation_id}] Response parsing failed: {e}")
                raise TransportError(
                    f"Parsing failed: {e}", url=response.url, status=status, code=status, response=response
                ) from e

        body = response.data if isinstance(response.data, Mapping) else {}
        msg = body.get("msg") or get_status_message(status)
        raise TransportError(
            msg,
            url=response.url,
            status=status,
            code=status,
            status_text=get_status_message(status),
            response=response,
        )

    def business_check(
        self,
        data: Any,
        options: RequestOptions,
        url: str,
        callback: Callable[[Any], Any] | None = None,
        cache_key: str | None = None,
        correlation_id: str | None = None,
    ) -> Any:
        """
        校验业务信封

        参数:
            data: StatusCheck 阶段解析出的数据
            options: 请求配置
            url: 调用方传入的请求地址
            callback: 自定义回调，存在时直接返回 callback(data)
            cache_key: 缓存键，options.cache_data 开启时用于写缓存

        返回:
            业务数据 result（文件下载时为原始数据）

        异常:
            BusinessError: 业务码不为 0 时抛出
        """
        self._log(data, options, correlation_id)
        if options.show_log and not options.is_file:
            logger.info(f"[{correlation_id}] url={url} req={options.params!r} res={data!r}")

        if callback is not None:
            return callback(data)

        if data is None:
            # 没有返回数据
            data = {"code": CODE_NO_RESPONSE, "msg": get_status_message(CODE_NO_RESPONSE)}

        if options.is_file:
            return data

        envelope = data if isinstance(data, Mapping) else {"code": None, "result": data}
        if not _is_success_code(envelope.get("code")):
            raise self._business_error(envelope, url)

        result = envelope.get("result")
        if options.cache_data and cache_key and self.cache is not None:
            self.cache.set(cache_key, result, options.cache_control)
            logger.debug(f"[{correlation_id}] Cached response for key: {cache_key}")

        return self.scrub(result, options)

    @staticmethod
    def _business_error(envelope: Mapping[str, Any], url: str) -> BusinessError:
        code = envelope.get("code")
        status = code if code not in (None, "") else envelope.get("status")
        msg = envelope.get("msg") or envelope.get("errmsg") or get_status_message(status) or UNKNOWN_ERROR_MESSAGE
        normalized = {"msg": msg, "url": url, "status": status, "code": status, "statusText": envelope.get("msg")}
        return BusinessError(
            msg,
            envelope={**envelope, **normalized},
            url=url,
            status=status,
            code=status,
            status_text=envelope.get("msg"),
        )

    @staticmethod
    def scrub(result: Any, options: RequestOptions) -> Any:
        """按 res_null_replace / res_replace_field 替换空值"""
        if options.res_null_replace:
            result = replace_empty(result, options.res_null_replace)
        if options.res_replace_field:
            result = replace_fields_empty(result, options.res_replace_field, options.res_null_replace or EMPTY_PLACEHOLDER)
        return result
