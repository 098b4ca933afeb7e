"""状态码验证器模块

传输层统一的状态码校验约定：validate_status(code) -> bool，
校验不通过的响应以分类后的 TransportError 拒绝
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Callable

from httpbridge.constants import CODE_ERR_BAD_REQUEST, CODE_ERR_BAD_RESPONSE
from httpbridge.exceptions import TransportError

if TYPE_CHECKING:
    from httpbridge.transport import RawResponse

logger = logging.getLogger(__name__)


class BaseStatusValidator(ABC):
    """
    状态码验证器基类

    实例可以直接作为 validate_status 可调用对象使用
    """

    @abstractmethod
    def is_valid(self, status: int) -> bool:
        """判断状态码是否可以交给后续流程处理"""

    def __call__(self, status: int) -> bool:
        return self.is_valid(status)


class AcceptAllValidator(BaseStatusValidator):
    """接受所有状态码，状态码的检查交给响应后处理的 StatusCheck 阶段"""

    def is_valid(self, status: int) -> bool:
        return True


class StatusCodeValidator(BaseStatusValidator):
    """
    状态码验证器

    参数:
        allowed_codes: 允许的状态码集合，None 表示允许 [200, 300) 区间

    使用示例:
        >>> validator = StatusCodeValidator(allowed_codes=[200, 201, 204])
        >>> validator(404)
        False
    """

    def __init__(self, allowed_codes: list[int] | set[int] | None = None):
        self.allowed_codes = set(allowed_codes) if allowed_codes else None

    def is_valid(self, status: int) -> bool:
        if self.allowed_codes is None:
            return 200 <= status < 300
        return status in self.allowed_codes


def categorize_status(status: int) -> str:
    """4xx 归类为 ERR_BAD_REQUEST，其余归类为 ERR_BAD_RESPONSE"""
    return CODE_ERR_BAD_REQUEST if 400 <= status < 500 else CODE_ERR_BAD_RESPONSE


def ensure_valid_status(response: RawResponse, validate_status: Callable[[int], bool] | None) -> RawResponse:
    """
    使用 validate_status 校验响应状态码

    异常:
        TransportError: 校验不通过时抛出，code 为分类后的错误码
    """
    status = response.status
    if not status or validate_status is None or validate_status(status):
        return response

    logger.debug(f"Status {status} rejected by validator for {response.url}")
    raise TransportError(
        f"Request failed with status code {status}",
        url=response.url,
        status=status,
        code=categorize_status(status),
        status_text=response.status_text,
        response=response,
    )
