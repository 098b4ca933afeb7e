"""
流式请求模块

SSE 风格的服务端推送请求绕过普通的传输 / 响应后处理流程，
直接返回一个按需拉取的字节流。这里只做透传：每个数据块先按 UTF-8 增量解码，
再重新编码交给调用方，消息分帧由调用方负责

使用示例:
    >>> with adapter.open(config) as stream:
    ...     for chunk in stream:
    ...         handle(chunk)
"""

from __future__ import annotations

import codecs
import logging
from typing import Any, Iterator

import urllib3

from httpbridge.constants import DEFAULT_CHUNK_SIZE, INVALID_READER_MESSAGE
from httpbridge.exceptions import RequestTimeoutError, StreamError, TransportError
from httpbridge.options import RequestConfig
from httpbridge.transport import encode_fetch_body

logger = logging.getLogger(__name__)


class StreamResponse:
    """
    流式响应

    属性:
        status: HTTP 状态码
        headers: 响应头
        url: 请求地址
    """

    def __init__(self, response: Any, url: str, chunk_size: int = DEFAULT_CHUNK_SIZE):
        self._response = response
        self.url = url
        self.status = response.status
        self.headers = dict(response.headers)
        self.chunk_size = chunk_size
        self._consumed = False

    def iter_chunks(self) -> Iterator[bytes]:
        """逐块拉取响应体，只能迭代一次"""
        if self._consumed:
            raise StreamError("Stream has already been consumed", url=self.url)
        self._consumed = True

        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        try:
            for raw_chunk in self._response.stream(self.chunk_size):
                text = decoder.decode(raw_chunk)
                if text:
                    yield text.encode("utf-8")
            tail = decoder.decode(b"", final=True)
            if tail:
                yield tail.encode("utf-8")
        finally:
            self.close()

    def __iter__(self) -> Iterator[bytes]:
        return self.iter_chunks()

    def close(self) -> None:
        self._response.release_conn()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


class StreamAdapter:
    """
    流式请求适配器

    参数:
        pool_manager: urllib3.PoolManager 实例，默认新建
        chunk_size: 每次拉取的字节数
    """

    def __init__(self, pool_manager: urllib3.PoolManager | None = None, chunk_size: int = DEFAULT_CHUNK_SIZE):
        self.pool_manager = pool_manager or urllib3.PoolManager()
        self.chunk_size = chunk_size

    def open(self, config: RequestConfig) -> StreamResponse:
        """
        发起流式请求

        异常:
            StreamError: 拿不到响应体读取器时抛出
            RequestTimeoutError: 连接超时
            TransportError: 连接失败
        """
        body, headers = encode_fetch_body(config)
        logger.info(f"Opening stream {config.method} {config.url}")
        try:
            response = self.pool_manager.request(
                config.method,
                config.url,
                body=body,
                headers=headers,
                timeout=urllib3.Timeout(connect=config.timeout_seconds),
                retries=False,
                preload_content=False,
            )
        except urllib3.exceptions.TimeoutError as e:
            raise RequestTimeoutError(url=config.url) from e
        except urllib3.exceptions.HTTPError as e:
            raise TransportError(f"Request to {config.url} failed: {e}", url=config.url) from e

        if response is None or not callable(getattr(response, "stream", None)):
            raise StreamError(INVALID_READER_MESSAGE, url=config.url)

        logger.debug(f"Stream opened with status {response.status} for {config.url}")
        return StreamResponse(response, config.url, self.chunk_size)

    def close(self) -> None:
        self.pool_manager.clear()
