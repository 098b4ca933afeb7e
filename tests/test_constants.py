"""
constants.py 模块的单元测试

测试常量定义和状态码提示表
"""

import pytest

from httpbridge.constants import (
    CODE_NETWORK_ERROR,
    CODE_TIMEOUT,
    DEFAULT_CACHE_CONTROL,
    DEFAULT_MAX_CACHE_LOG,
    DEFAULT_TIMEOUT,
    STATUS_MESSAGES,
    SUPPORTED_METHODS,
    get_status_message,
)


class TestDefaults:
    """测试默认配置"""

    @pytest.mark.unit
    def test_default_values(self):
        """验证默认超时、缓存有效期和日志队列长度"""
        assert DEFAULT_TIMEOUT == 6500
        assert DEFAULT_CACHE_CONTROL == 30000
        assert DEFAULT_MAX_CACHE_LOG == 30

    @pytest.mark.unit
    def test_supported_methods(self):
        """验证支持的请求方法"""
        assert {"GET", "POST", "PUT", "DELETE", "PATCH"} <= SUPPORTED_METHODS


class TestStatusMessages:
    """测试状态码提示表"""

    @pytest.mark.unit
    @pytest.mark.parametrize("code", [20, 400, 401, 403, 404, 500, 502, 503, 504, "transitional"])
    def test_known_codes(self, code):
        """验证常用状态码都有提示信息"""
        assert get_status_message(code) == STATUS_MESSAGES[code]

    @pytest.mark.unit
    def test_timeout_and_network_messages(self):
        """验证超时和网络错误提示"""
        assert get_status_message(CODE_TIMEOUT) == "请求超时，请检查网络。"
        assert get_status_message(CODE_NETWORK_ERROR) == "网络错误，请检查网络。"

    @pytest.mark.unit
    def test_numeric_string_lookup(self):
        """数字字符串按整数查找"""
        assert get_status_message("404") == STATUS_MESSAGES[404]

    @pytest.mark.unit
    @pytest.mark.parametrize("code", [None, 999, "unknown", 1])
    def test_unknown_codes(self, code):
        """查不到时返回 None"""
        assert get_status_message(code) is None
