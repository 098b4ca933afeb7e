"""
请求管线常量配置模块

定义请求管线使用的常量、默认配置和状态码提示表
"""

# HTTP 方法常量
HTTP_METHOD_GET = "GET"
HTTP_METHOD_POST = "POST"
HTTP_METHOD_PUT = "PUT"
HTTP_METHOD_DELETE = "DELETE"
HTTP_METHOD_PATCH = "PATCH"
HTTP_METHOD_HEAD = "HEAD"
HTTP_METHOD_OPTIONS = "OPTIONS"
HTTP_METHOD_TRACE = "TRACE"

# 支持的 HTTP 方法集合
SUPPORTED_METHODS = {
    HTTP_METHOD_GET,
    HTTP_METHOD_POST,
    HTTP_METHOD_PUT,
    HTTP_METHOD_DELETE,
    HTTP_METHOD_PATCH,
    HTTP_METHOD_HEAD,
    HTTP_METHOD_OPTIONS,
    HTTP_METHOD_TRACE,
}

# 默认配置
DEFAULT_TIMEOUT = 6500  # 默认超时时间（毫秒）
DEFAULT_MAX_WORKERS = 10  # 分发线程池最大工作线程数
DEFAULT_CACHE_CONTROL = 30000  # 默认缓存有效期（毫秒）
DEFAULT_MAX_CACHE_LOG = 30  # 诊断日志队列默认最多保留的请求数

# Cookie / CSRF 默认配置
DEFAULT_COOKIE_HEADER_NAME = "X-Custom-Cookie"
DEFAULT_CSRF_COOKIE_NAME = "csrftoken"
DEFAULT_CSRF_HEADER_NAME = "X-CSRFToken"

# 认证相关的存储键
TOKEN_URL_STORAGE_KEY = "tokenUrl"
JWT_TOKEN_STORAGE_KEY = "jwtToken"

# deleteTimeField 开启时需要删除的时间字段
TIME_FIELDS = ("createTime", "creTime", "updateTime", "createDate", "updateDate")

# 请求体 Content-Type
CONTENT_TYPE_JSON = "application/json;charset=utf-8"
CONTENT_TYPE_FORM = "application/x-www-form-urlencoded"
CONTENT_TYPE_OCTET_STREAM = "application/octet-stream"

# 流式读取配置
DEFAULT_CHUNK_SIZE = 8192  # 默认分块大小（字节）

# Redis 配置
REDIS_DEFAULT_HOST = "localhost"
REDIS_DEFAULT_PORT = 6379
REDIS_DEFAULT_DB = 0
REDIS_MAX_CONNECTIONS = 10

# 合成错误码
CODE_TIMEOUT = 20  # 客户端超时 / 主动取消
CODE_NETWORK_ERROR = "transitional"  # 通用网络错误
CODE_ERR_NETWORK = "ERR_NETWORK"
CODE_ERR_CANCELED = "ERR_CANCELED"
CODE_ERR_BAD_REQUEST = "ERR_BAD_REQUEST"
CODE_ERR_BAD_RESPONSE = "ERR_BAD_RESPONSE"
CODE_NO_RESPONSE = 504  # 没有返回数据时合成的业务码

# 业务成功码
BUSINESS_SUCCESS_CODE = 0

# 状态码提示表
STATUS_MESSAGES = {
    20: "请求超时，请检查网络。",
    200: "服务器成功返回请求的数据。",
    201: "新建或修改数据成功。",
    202: "一个请求已经进入后台排队（异步任务）。",
    204: "删除数据成功。",
    400: "发出的请求有错误，服务器无法响应操作。",
    401: "用户没有权限（令牌、用户名、密码错误）。",
    403: "用户得到授权，但是访问是被禁止的。",
    404: "请求的接口不存在。",
    406: "请求的格式不可得。",
    410: "请求的资源被永久删除，且不会再得到的。",
    415: "请求的方式错误",
    422: "当创建一个对象时，发生一个验证错误。",
    500: "服务器发生错误，请检查服务器。",
    502: "网关错误。",
    503: "服务不可用，服务器暂时过载或维护。",
    504: "服务响应超时，请稍后再试。",
    CODE_NETWORK_ERROR: "网络错误，请检查网络。",
    CODE_ERR_NETWORK: "网络错误，请检查网络。",
    CODE_ERR_CANCELED: "请求超时，请稍后再试。",
}

# 状态码表中查不到时的兜底提示
UNKNOWN_ERROR_MESSAGE = "请求失败，请稍后再试。"
EMPTY_URL_MESSAGE = "无效的请求地址"
INVALID_READER_MESSAGE = "无效的reader"


def get_status_message(code) -> str | None:
    """按状态码查找提示信息，数字字符串会按整数再查一次"""
    if code in STATUS_MESSAGES:
        return STATUS_MESSAGES[code]
    try:
        return STATUS_MESSAGES.get(int(code))
    except (TypeError, ValueError):
        return None
