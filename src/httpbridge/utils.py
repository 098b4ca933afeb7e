"""工具函数模块

提供查询串拼接、空值替换、时间格式化以及日志脱敏等实用功能
"""

from __future__ import annotations

import datetime
from typing import Any, Iterable
from urllib.parse import parse_qs, quote, urlencode, urlparse, urlunparse


# 默认敏感请求头名称集合
DEFAULT_SENSITIVE_HEADERS = {
    "Authorization",
    "Cookie",
    "X-API-Key",
    "X-Auth-Token",
    "X-Access-Token",
    "X-Custom-Cookie",
    "X-CSRFToken",
}

# 默认敏感URL参数名称集合
DEFAULT_SENSITIVE_PARAMS = {
    "token",
    "password",
    "secret",
    "key",
    "api_key",
    "apikey",
    "access_token",
    "auth_token",
    "session",
    "pwd",
}

# encodeURIComponent 不转义的字符
_URI_COMPONENT_SAFE = "-_.!~*'()"

# 日期 / 时间字段的输出格式
DATE_FORMAT = "%Y-%m-%d"
DATETIME_FORMAT = "%Y-%m-%d %H:%M:%S"
EMPTY_PLACEHOLDER = "-"


def encode_uri_component(value: Any) -> str:
    """按 encodeURIComponent 的规则编码单个值，布尔值输出为 true/false"""
    if isinstance(value, bool):
        value = "true" if value else "false"
    elif value is None:
        value = "null"
    return quote(str(value), safe=_URI_COMPONENT_SAFE)


def build_query_params(params: dict[str, Any] | list | tuple | None) -> str:
    """
    将参数字典拼接为查询串

    参数:
        params: 参数字典，列表/元组值会重复键名；
            参数本身是列表/元组时以下标作为键名

    返回:
        形如 "a=1&b=2&b=3" 的查询串

    示例:
        >>> build_query_params({"a": 1, "b": [2, 3]})
        "a=1&b=2&b=3"
    """
    items = enumerate(params) if isinstance(params, (list, tuple)) else (params or {}).items()
    pairs = []
    for key, value in items:
        if isinstance(value, (list, tuple)):
            pairs.extend(f"{encode_uri_component(key)}={encode_uri_component(v)}" for v in value)
        else:
            pairs.append(f"{encode_uri_component(key)}={encode_uri_component(value)}")
    return "&".join(pairs)


def append_query(url: str, query: str) -> str:
    """将查询串追加到 url 上，已有查询串时使用 & 连接"""
    if not query:
        return url
    separator = "&" if "?" in url else "?"
    return f"{url}{separator}{query}"


def _to_datetime(value: Any) -> datetime.datetime | None:
    if isinstance(value, datetime.datetime):
        return value
    if isinstance(value, datetime.date):
        return datetime.datetime(value.year, value.month, value.day)
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        # 数字按毫秒时间戳处理
        try:
            return datetime.datetime.fromtimestamp(value / 1000)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            return datetime.datetime.fromisoformat(text)
        except ValueError:
            return None
    return None


def safe_format(value: Any, fmt: str = DATE_FORMAT) -> str:
    """
    安全地格式化时间

    空值或无法解析的值返回 "-"

    示例:
        >>> safe_format("2025-09-20")
        "2025-09-20"
        >>> safe_format("2025-13-40")
        "-"
    """
    if value is None or value == "":
        return EMPTY_PLACEHOLDER
    parsed = _to_datetime(value)
    return parsed.strftime(fmt) if parsed else EMPTY_PLACEHOLDER


def _is_empty(value: Any) -> bool:
    return value is None or value == ""


def replace_empty(data: Any, replace_str: str = EMPTY_PLACEHOLDER) -> Any:
    """
    递归替换空值

    None 和空字符串替换为 replace_str；键名包含 date/Date 的字段格式化为日期，
    包含 time/Time 的字段格式化为日期时间。返回新的数据结构，不修改入参

    参数:
        data: 字典、列表或其他值
        replace_str: 替换字符串
    """
    if not data:
        return data
    if isinstance(data, list):
        return [replace_empty(item, replace_str) if isinstance(item, (dict, list)) else item for item in data]
    if not isinstance(data, dict):
        return data

    result = {}
    for key, value in data.items():
        name = str(key)
        if "date" in name or "Date" in name:
            result[key] = safe_format(value)
        elif "time" in name or "Time" in name:
            result[key] = safe_format(value, DATETIME_FORMAT)
        elif _is_empty(value):
            result[key] = replace_str
        elif isinstance(value, (dict, list)):
            result[key] = replace_empty(value, replace_str)
        else:
            result[key] = value
    return result


def replace_fields_empty(data: Any, fields: Iterable[str], replace_str: str = EMPTY_PLACEHOLDER) -> Any:
    """只替换顶层指定字段的空值，返回新字典"""
    if not isinstance(data, dict) or not fields:
        return data
    result = dict(data)
    for name in fields:
        if _is_empty(result.get(name)):
            result[name] = replace_str
    return result


def sanitize_headers(
    headers: dict[str, str],
    sensitive_keys: set[str] | None = None,
    mask: str = "***",
) -> dict[str, str]:
    """
    脱敏请求头中的敏感信息

    参数:
        headers: 原始请求头字典
        sensitive_keys: 敏感键名集合，不区分大小写。None 时使用默认集合
        mask: 脱敏后的替换字符串

    返回:
        脱敏后的请求头字典（新字典，不修改原字典）
    """
    if sensitive_keys is None:
        sensitive_keys = DEFAULT_SENSITIVE_HEADERS

    sensitive_keys_lower = {k.lower() for k in sensitive_keys}

    return {k: mask if k.lower() in sensitive_keys_lower else v for k, v in headers.items()}


def sanitize_url(
    url: str,
    sensitive_params: set[str] | None = None,
    mask: str = "***",
) -> str:
    """
    脱敏 URL 中的敏感参数

    示例:
        >>> sanitize_url("https://api.example.com/user?token=abc123&page=1")
        "https://api.example.com/user?token=***&page=1"
    """
    if sensitive_params is None:
        sensitive_params = DEFAULT_SENSITIVE_PARAMS

    sensitive_params_lower = {p.lower() for p in sensitive_params}

    parsed = urlparse(url)
    if not parsed.query:
        return url

    params = parse_qs(parsed.query, keep_blank_values=True)
    sanitized_params = {}
    for key, values in params.items():
        if key.lower() in sensitive_params_lower:
            sanitized_params[key] = [mask] * len(values)
        else:
            sanitized_params[key] = values

    return urlunparse(parsed._replace(query=urlencode(sanitized_params, doseq=True)))


def sanitize_dict(
    data: dict[str, Any],
    sensitive_keys: set[str] | None = None,
    mask: str = "***",
    recursive: bool = True,
) -> dict[str, Any]:
    """
    脱敏字典中的敏感字段

    参数:
        data: 原始数据字典
        sensitive_keys: 敏感键名集合，不区分大小写。None 时使用默认集合
        mask: 脱敏后的替换字符串
        recursive: 是否递归处理嵌套字典
    """
    if sensitive_keys is None:
        sensitive_keys = DEFAULT_SENSITIVE_HEADERS | DEFAULT_SENSITIVE_PARAMS

    sensitive_keys_lower = {k.lower() for k in sensitive_keys}

    result = {}
    for key, value in data.items():
        if str(key).lower() in sensitive_keys_lower:
            result[key] = mask
        elif recursive and isinstance(value, dict):
            result[key] = sanitize_dict(value, sensitive_keys, mask, recursive)
        else:
            result[key] = value

    return result
