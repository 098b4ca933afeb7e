"""外部协作者接口模块

请求管线只消费这些接口，不关心具体实现:
    - Cookie 读写: BaseCookieProvider / SessionCookieProvider
    - 键值存储（会话级 / 持久化）: BaseStorage / InMemoryStorage
"""

from __future__ import annotations

import abc
import logging
import threading

import requests

logger = logging.getLogger(__name__)


class BaseCookieProvider(abc.ABC):
    """Cookie 读写基类"""

    @abc.abstractmethod
    def read(self, name: str) -> str | None:
        """按名称读取 cookie，不存在时返回 None"""

    @abc.abstractmethod
    def set(self, name: str, value: str) -> None:
        """写入 cookie"""


class SessionCookieProvider(BaseCookieProvider):
    """
    基于 requests 会话 cookie jar 的实现

    写入的 cookie 会在凭证模式的请求中由会话自动携带

    参数:
        cookie_jar: requests 的 cookie jar，通常取自 session.cookies
    """

    def __init__(self, cookie_jar: requests.cookies.RequestsCookieJar | None = None):
        self.cookie_jar = cookie_jar if cookie_jar is not None else requests.cookies.RequestsCookieJar()

    def read(self, name: str) -> str | None:
        try:
            return self.cookie_jar.get(name)
        except requests.cookies.CookieConflictError:
            logger.warning(f"Multiple cookies named '{name}' found, using the first one")
            for cookie in self.cookie_jar:
                if cookie.name == name:
                    return cookie.value
            return None

    def set(self, name: str, value: str) -> None:
        self.cookie_jar.set(name, str(value))
        logger.debug(f"Cookie set: {name}")


class BaseStorage(abc.ABC):
    """键值存储基类（对应会话存储 / 本地存储）"""

    @abc.abstractmethod
    def get(self, key: str) -> str | None:
        """读取值，不存在时返回 None"""

    @abc.abstractmethod
    def set(self, key: str, value: str) -> None:
        """写入值"""

    @abc.abstractmethod
    def delete(self, key: str) -> None:
        """删除值"""


class InMemoryStorage(BaseStorage):
    """基于字典的线程安全存储"""

    def __init__(self, initial: dict[str, str] | None = None):
        self._data = dict(initial or {})
        self.lock = threading.RLock()

    def get(self, key: str) -> str | None:
        with self.lock:
            return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        with self.lock:
            self._data[key] = value

    def delete(self, key: str) -> None:
        with self.lock:
            self._data.pop(key, None)

    def __len__(self) -> int:
        with self.lock:
            return len(self._data)
