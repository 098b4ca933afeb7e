"""
请求参数序列化器模块

在预处理之前校验请求参数，支持自定义校验和 DRF 的 Serializer

使用示例:
    # 方式1: 自定义序列化器
    class UserParamsSerializer(BaseParamsSerializer):
        def validate(self, params):
            if not params.get("username"):
                raise RequestValidationError("请求参数验证失败", errors={"username": ["用户名不能为空"]})
            return params

    # 方式2: 直接使用 DRF Serializer
    class UserSerializer(serializers.Serializer):
        username = serializers.CharField(max_length=100)

    client = RequestClient(params_serializer=DRFParamsSerializer(UserSerializer))
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from rest_framework import serializers

from httpbridge.exceptions import RequestValidationError


class BaseParamsSerializer(ABC):
    """
    请求参数序列化器基类

    子类需要实现 validate 方法来定义具体的校验逻辑
    """

    @abstractmethod
    def validate(self, params: Any) -> Any:
        """
        校验请求参数

        返回:
            校验通过后的参数（可以在此进行数据转换）

        异常:
            RequestValidationError: 校验失败时抛出
        """


class DRFParamsSerializer(BaseParamsSerializer):
    """
    基于 Django REST framework Serializer 的参数校验

    参数:
        serializer_class: DRF Serializer 类，参数为列表时使用 many=True 批量校验
    """

    def __init__(self, serializer_class: type[serializers.Serializer]):
        if not (isinstance(serializer_class, type) and issubclass(serializer_class, serializers.Serializer)):
            raise RequestValidationError(
                f"serializer_class must be a DRF Serializer class, got {type(serializer_class).__name__}"
            )
        self.serializer_class = serializer_class

    def validate(self, params: Any) -> Any:
        is_many = isinstance(params, list)
        serializer = self.serializer_class(data=params if params is not None else {}, many=is_many)
        if not serializer.is_valid():
            raise RequestValidationError("请求参数验证失败", errors=serializer.errors)
        return serializer.data
