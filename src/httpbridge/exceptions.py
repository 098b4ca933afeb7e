"""
请求管线异常模块

定义所有请求相关的异常类，所有失败都会以统一的结构对外暴露：
{msg, message, url, status, code, statusText}
"""

from __future__ import annotations

from typing import Any

from httpbridge.constants import (
    CODE_NETWORK_ERROR,
    CODE_TIMEOUT,
    UNKNOWN_ERROR_MESSAGE,
    get_status_message,
)


class RequestError(Exception):
    """
    请求异常基类

    所有自定义异常的基类，携带规范化后的错误信息

    参数:
        msg: 错误描述信息
        url: 请求地址
        status: HTTP 状态码或业务码
        code: 错误码（数字或字符串，如 20、"transitional"）
        status_text: 状态码对应的描述
        response: 原始响应对象（可选）

    属性:
        message: 与 msg 相同，兼容只读取 message 的调用方
    """

    default_code: Any = None

    def __init__(
        self,
        msg: str | None = None,
        url: str | None = None,
        status: Any = None,
        code: Any = None,
        status_text: str | None = None,
        response: Any = None,
    ):
        code = code if code is not None else self.default_code
        msg = msg or get_status_message(code) or UNKNOWN_ERROR_MESSAGE
        super().__init__(msg)
        self.msg = msg
        self.url = url
        self.status = status
        self.code = code
        self.status_text = status_text
        self.response = response

    @property
    def message(self) -> str:
        return self.msg

    def to_dict(self) -> dict[str, Any]:
        """返回规范化的错误结构"""
        return {
            "msg": self.msg,
            "message": self.msg,
            "url": self.url,
            "status": self.status,
            "code": self.code,
            "statusText": self.status_text,
        }

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(code={self.code!r}, msg={self.msg!r}, url={self.url!r})"


class RequestValidationError(RequestError):
    """
    输入验证异常

    请求地址为空、请求配置非法、参数序列化器校验失败时抛出，发生在任何网络分发之前

    属性:
        errors: 校验失败的详细信息，格式为 {field_name: [error_messages]}
    """

    def __init__(self, msg: str | None = None, errors: dict | None = None, **kwargs):
        super().__init__(msg, **kwargs)
        self.errors = errors or {}


class TransportError(RequestError):
    """
    传输层异常

    HTTP 状态码不合法，或者连接失败、DNS 解析失败等网络层面问题时抛出。
    网络层面的问题统一使用 "transitional" 错误码
    """

    default_code = CODE_NETWORK_ERROR


class RequestTimeoutError(RequestError):
    """
    请求超时异常

    超时定时器触发取消信号，或者底层客户端超时时抛出，错误码统一为 20
    """

    default_code = CODE_TIMEOUT


class BusinessError(RequestError):
    """
    业务异常

    业务信封中 code 不为 0 时抛出

    属性:
        envelope: 合并了规范化字段之后的完整业务信封
    """

    def __init__(self, msg: str | None = None, envelope: dict | None = None, **kwargs):
        super().__init__(msg, **kwargs)
        self.envelope = envelope or {}

    def to_dict(self) -> dict[str, Any]:
        return {**self.envelope, **super().to_dict()}


class StreamError(RequestError):
    """
    流式请求异常

    建立 SSE 连接时无法拿到响应体读取器时抛出
    """
