"""
值解析器注册表

解析器是按名称注册的纯函数，在字段映射时依次作用于字段值。
"""
import math
import re
import threading
from abc import ABC, abstractmethod
from typing import Callable, Dict, List, Optional, Union

from loguru import logger

_DECIMAL = re.compile(r'[+-]?[0-9]+')

# 行中的值只可能是这几种标量
Value = Union[str, int, float, bool, None]
Row = Dict[str, Value]


class ValueResolver(ABC):
    """值解析器接口"""

    @abstractmethod
    def apply(self, value: Value, row: Row, *args: str) -> Value:
        """对值进行转换"""
        pass


class FunctionResolver(ValueResolver):
    """把普通函数包装为解析器"""

    def __init__(self, fn: Callable[..., Value]):
        self.fn = fn

    def apply(self, value: Value, row: Row, *args: str) -> Value:
        return self.fn(value, row, *args)


class TrimResolver(ValueResolver):
    """去除字符串首尾空白"""

    def apply(self, value, row, *args):
        if isinstance(value, str):
            return value.strip()
        return value


class IntResolver(ValueResolver):
    """转换为整数：字符串按十进制解析，失败返回 0；浮点数向下取整"""

    def apply(self, value, row, *args):
        if isinstance(value, bool):
            return value
        if isinstance(value, str):
            # int() 会接受空白和下划线，这里只认纯十进制
            if _DECIMAL.fullmatch(value):
                return int(value, 10)
            return 0
        if isinstance(value, float):
            return math.floor(value)
        return value


class FloatResolver(ValueResolver):
    """转换为浮点数，字符串解析失败返回 0.0"""

    def apply(self, value, row, *args):
        if isinstance(value, bool):
            return value
        if isinstance(value, str):
            try:
                return float(value)
            except ValueError:
                return 0.0
        if isinstance(value, int):
            return float(value)
        return value


class StringResolver(ValueResolver):
    def apply(self, value, row, *args):
        if value is None:
            return None
        return str(value)


class LowerResolver(ValueResolver):
    def apply(self, value, row, *args):
        if isinstance(value, str):
            return value.lower()
        return value


class UpperResolver(ValueResolver):
    def apply(self, value, row, *args):
        if isinstance(value, str):
            return value.upper()
        return value


class DefaultResolver(ValueResolver):
    """值为空时使用默认值，用法 default:xxx"""

    def apply(self, value, row, *args):
        if (value is None or value == "") and args:
            return ",".join(args)
        return value


class FieldResolver(ValueResolver):
    """取源记录中另一个字段的值，用法 field:name"""

    def apply(self, value, row, *args):
        if not args:
            return value
        return row.get(args[0])


class ResolverRegistry:
    """解析器注册表，读多写少"""

    def __init__(self):
        self._resolvers: Dict[str, ValueResolver] = {}
        self._lock = threading.RLock()

    def register(self, name: str, resolver: Union[ValueResolver, Callable[..., Value]]) -> None:
        """注册解析器，同名覆盖"""
        if not isinstance(resolver, ValueResolver):
            resolver = FunctionResolver(resolver)

        with self._lock:
            self._resolvers[name] = resolver

    def get(self, name: str) -> Optional[ValueResolver]:
        with self._lock:
            return self._resolvers.get(name)

    def has(self, name: str) -> bool:
        return self.get(name) is not None

    def names(self) -> List[str]:
        with self._lock:
            return sorted(self._resolvers)

    def resolve(self, value: Value, row: Row, name: str, *args: str) -> Value:
        """
        应用指定解析器

        未注册的名称直接返回原值；解析器抛出异常时记录警告并返回原值。
        """
        resolver = self.get(name)
        if resolver is None:
            return value

        try:
            return resolver.apply(value, row, *args)
        except Exception as e:
            logger.warning(f"Resolver '{name}' failed on value {value!r}: {e}")
            return value

    @classmethod
    def with_builtins(cls) -> "ResolverRegistry":
        """创建带内置解析器的注册表"""
        registry = cls()
        for name, resolver in BUILTIN_RESOLVERS.items():
            registry.register(name, resolver)
        return registry


BUILTIN_RESOLVERS: Dict[str, ValueResolver] = {
    "trim": TrimResolver(),
    "int": IntResolver(),
    "float": FloatResolver(),
    "string": StringResolver(),
    "lower": LowerResolver(),
    "upper": UpperResolver(),
    "default": DefaultResolver(),
    "field": FieldResolver(),
}


def default_resolvers() -> ResolverRegistry:
    return ResolverRegistry.with_builtins()
