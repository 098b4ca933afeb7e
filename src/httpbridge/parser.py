"""
响应解析器模块

传输层没有直接返回解析后的数据时，由解析器把原始响应体转换为 Python 对象
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

from httpbridge.options import ResponseType

if TYPE_CHECKING:
    from httpbridge.transport import RawResponse

logger = logging.getLogger(__name__)


class BaseResponseParser(ABC):
    """响应解析器基类，定义解析 RawResponse 的接口。"""

    @abstractmethod
    def parse(self, response: RawResponse) -> Any:
        """解析 RawResponse 对象并返回所需格式的数据。"""


class JSONResponseParser(BaseResponseParser):
    """解析响应为 JSON 数据，空响应体解析为 None"""

    def parse(self, response: RawResponse) -> Any:
        logger.debug("Parsing response as JSON")
        if response.data is not None:
            return response.data
        if not response.content:
            return None
        return json.loads(response.content.decode(response.encoding or "utf-8"))


class ContentResponseParser(BaseResponseParser):
    """解析响应为字节数据，用于文件下载"""

    def parse(self, response: RawResponse) -> bytes:
        logger.debug("Parsing response as content bytes")
        if response.content is not None:
            return response.content
        return response.data


PARSERS: dict[ResponseType, BaseResponseParser] = {
    ResponseType.JSON: JSONResponseParser(),
    ResponseType.BLOB: ContentResponseParser(),
}


def get_parser(response_type: ResponseType) -> BaseResponseParser:
    return PARSERS.get(response_type, PARSERS[ResponseType.JSON])
