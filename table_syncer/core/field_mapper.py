"""
字段映射器
"""
from dataclasses import dataclass, field
from typing import Dict, List, Tuple

from .resolver import ResolverRegistry, Row, Value

# (解析器名称, 参数列表)
ResolverStage = Tuple[str, Tuple[str, ...]]


@dataclass(frozen=True)
class MappingGroup:
    """一个映射分组：目标字段 + 解析器流水线"""
    destination: str
    pipeline: Tuple[ResolverStage, ...] = field(default_factory=tuple)


def parse_stage(token: str) -> ResolverStage:
    """解析 "name:arg1,arg2" 形式的解析器配置"""
    name, sep, params = token.partition(":")
    args: Tuple[str, ...] = ()
    if sep:
        args = tuple(arg.strip() for arg in params.split(","))
    return name.strip(), args


def parse_expression(expression: str, source_field: str = "") -> List[MappingGroup]:
    """
    解析映射表达式

    格式: "dest|resolver1:a,b|resolver2;dest2|resolver3"
    分号分隔多个分组，每个分组的第一段为目标字段名，为空时沿用源字段名。
    """
    groups = []
    for part in expression.split(";"):
        if not part.strip():
            continue

        tokens = part.split("|")
        destination = tokens[0].strip() or source_field
        pipeline = tuple(
            parse_stage(token) for token in tokens[1:] if token.strip()
        )
        groups.append(MappingGroup(destination=destination, pipeline=pipeline))

    return groups


class FieldMapper:
    """
    字段映射器，把源记录转换为写入目标的记录

    mapping 格式:
    {
        "源字段": "目标字段|解析器:参数;另一个目标字段|解析器",
        ...
    }
    """

    def __init__(self, mapping: Dict[str, str], resolvers: ResolverRegistry):
        self.mapping = mapping
        self.resolvers = resolvers
        # 每个任务只解析一次表达式
        self._groups: Dict[str, List[MappingGroup]] = {
            source: parse_expression(expression, source)
            for source, expression in mapping.items()
        }

    def resolve_group(self, group: MappingGroup, value: Value, row: Row) -> Value:
        for name, args in group.pipeline:
            value = self.resolvers.resolve(value, row, name, *args)
        return value

    def map_row(self, row: Row) -> Row:
        """转换单条记录，每个分组独立从源值开始计算"""
        item: Row = {}
        for source_field, groups in self._groups.items():
            source_value = row.get(source_field)
            for group in groups:
                item[group.destination] = self.resolve_group(group, source_value, row)
        return item

    def map_rows(self, rows: List[Row]) -> List[Row]:
        return [self.map_row(row) for row in rows]
