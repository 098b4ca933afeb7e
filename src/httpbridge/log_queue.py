"""诊断日志队列模块

按关联 ID 记录请求 / 响应 / 异常的原始数据，用于排查问题。
队列有容量上限，超过上限时按插入顺序淘汰最早的关联 ID（FIFO，不是 LRU）
"""

from __future__ import annotations

import copy
import logging
import threading
import time
import uuid
from collections import OrderedDict
from typing import Any, Callable

from httpbridge.constants import DEFAULT_MAX_CACHE_LOG

logger = logging.getLogger(__name__)


class RequestLogQueue:
    """
    有界诊断日志队列

    每个关联 ID 对应一条时间线 {采集毫秒时间戳: 数据}，同一个 ID 多次写入会累积而不是覆盖。
    每次写入后都会把完整队列的快照交给 sink，调用方可以借此把日志持久化到外部

    参数:
        max_queue_length: 最多保留的关联 ID 数量
        sink: 每次写入后调用的回调，参数为队列快照

    使用示例:
        >>> queue = RequestLogQueue(max_queue_length=2)
        >>> request_id = queue.add("/api/list")
        >>> queue.add({"method": "get"}, request_id)
    """

    def __init__(self, max_queue_length: int | None = None, sink: Callable[[dict], Any] | None = None):
        self.max_queue_length = max_queue_length or DEFAULT_MAX_CACHE_LOG
        self.sink = sink
        self._queue: OrderedDict[str, dict[int, Any]] = OrderedDict()
        self.lock = threading.RLock()

    def add(self, payload: Any, correlation_id: str | None = None) -> str:
        """
        添加一条记录

        参数:
            payload: 需要记录的数据（请求配置、响应或异常）
            correlation_id: 关联 ID，不传时自动生成

        返回:
            本次记录使用的关联 ID
        """
        if not correlation_id:
            correlation_id = str(uuid.uuid4())

        with self.lock:
            if correlation_id not in self._queue:
                while len(self._queue) >= self.max_queue_length:
                    evicted, _ = self._queue.popitem(last=False)
                    logger.debug(f"RequestLogQueue evicted oldest entry: {evicted}")
                self._queue[correlation_id] = {}

            timeline = self._queue[correlation_id]
            captured_at = int(time.time() * 1000)
            # 同一毫秒内的多次写入顺延，保证时间线不被覆盖
            while captured_at in timeline:
                captured_at += 1
            timeline[captured_at] = payload
            snapshot = self._snapshot()

        if self.sink is not None:
            try:
                self.sink(snapshot)
            except Exception:
                logger.exception(f"[{correlation_id}] Log queue sink failed")
        return correlation_id

    def _snapshot(self) -> dict[str, dict[int, Any]]:
        return {key: dict(timeline) for key, timeline in self._queue.items()}

    def snapshot(self) -> dict[str, dict[int, Any]]:
        """返回队列快照（按插入顺序）"""
        with self.lock:
            return self._snapshot()

    def get(self, correlation_id: str) -> dict[int, Any] | None:
        """返回某个关联 ID 的时间线副本"""
        with self.lock:
            timeline = self._queue.get(correlation_id)
            return copy.copy(timeline) if timeline is not None else None

    def keys(self) -> list[str]:
        with self.lock:
            return list(self._queue.keys())

    def clear(self) -> None:
        with self.lock:
            self._queue.clear()

    def __len__(self) -> int:
        with self.lock:
            return len(self._queue)

    def __contains__(self, correlation_id: str) -> bool:
        with self.lock:
            return correlation_id in self._queue
