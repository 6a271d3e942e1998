"""
过滤条件编译

仓储对外使用文档风格的过滤条件，这里把它编译为 SQLAlchemy 表达式：

    {"email": "a@x.com"}                     → email = 'a@x.com'
    {"age": {"$gte": 18, "$lt": 65}}         → age >= 18 AND age < 65
    {"role": {"$in": ["ADMIN", "USER"]}}     → role IN (...)
    {"$or": [{"status": "ACTIVE"}, {...}]}   → (...) OR (...)
    {"avatar": None}                         → avatar IS NULL

未知字段或操作符抛出 ValidationError，不会静默忽略。
"""

import uuid
from collections.abc import Callable, Mapping
from datetime import datetime
from typing import Any

from sqlalchemy import and_, false, or_, true
from sqlalchemy.orm import InstrumentedAttribute
from sqlalchemy.sql.elements import ColumnElement

from app.exceptions import ValidationError

OPERATORS: dict[str, Callable[[Any, Any], ColumnElement]] = {
    "$eq": lambda col, v: col.is_(None) if v is None else col == v,
    "$ne": lambda col, v: col.is_not(None) if v is None else col != v,
    "$gt": lambda col, v: col > v,
    "$gte": lambda col, v: col >= v,
    "$lt": lambda col, v: col < v,
    "$lte": lambda col, v: col <= v,
    "$in": lambda col, v: col.in_(list(v)),
    "$nin": lambda col, v: col.not_in(list(v)),
    "$like": lambda col, v: col.like(v, escape="\\"),
    "$ilike": lambda col, v: col.ilike(v, escape="\\"),
    "$regex": lambda col, v: col.regexp_match(v),
    "$exists": lambda col, v: col.is_not(None) if v else col.is_(None),
}


def resolve_column(model: type, field: str) -> InstrumentedAttribute:
    """字段名 → 模型列属性"""
    mapper = model.__mapper__
    if field not in mapper.column_attrs:
        raise ValidationError(f"Unknown field '{field}'", details={"field": field})
    return getattr(model, field)


def escape_like(value: str) -> str:
    """转义 LIKE 通配符（$like / $ilike 使用反斜杠作为转义字符）"""
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _field_clause(column: InstrumentedAttribute, value: Any) -> ColumnElement:
    if isinstance(value, Mapping):
        clauses = []
        for op, operand in value.items():
            if op == "$options":
                continue
            if op == "$regex" and "i" in str(value.get("$options", "")):
                clauses.append(column.regexp_match(operand, flags="i"))
                continue
            handler = OPERATORS.get(op)
            if handler is None:
                raise ValidationError(f"Unsupported operator '{op}'", details={"operator": op})
            clauses.append(handler(column, operand))
        return and_(true(), *clauses)
    if value is None:
        return column.is_(None)
    if isinstance(value, (list, tuple, set)):
        return column.in_(list(value))
    return column == value


def compile_filter(model: type, query: Mapping[str, Any] | None) -> list[ColumnElement]:
    """把过滤条件编译为 where 子句列表（列表内各项为 AND 关系）"""
    clauses: list[ColumnElement] = []
    for key, value in (query or {}).items():
        if key == "$and":
            clauses.append(and_(true(), *[and_(true(), *compile_filter(model, q)) for q in value]))
        elif key == "$or":
            branches = [and_(true(), *compile_filter(model, q)) for q in value]
            clauses.append(or_(false(), *branches))
        elif key.startswith("$"):
            raise ValidationError(f"Unsupported operator '{key}'", details={"operator": key})
        else:
            clauses.append(_field_clause(resolve_column(model, key), value))
    return clauses


def text_search(model: type, term: str, fields: list[str]) -> dict[str, Any]:
    """多字段模糊搜索（不区分大小写的包含匹配）"""
    pattern = f"%{escape_like(term)}%"
    for field in fields:
        resolve_column(model, field)
    return {"$or": [{field: {"$ilike": pattern}} for field in fields]}


def coerce_value(column: InstrumentedAttribute, raw: str) -> Any:
    """
    把查询字符串里的值转换为列类型

    无法确定列类型时，数字字符串转为数字，其余保持原样。
    """
    try:
        python_type = column.type.python_type
    except NotImplementedError:
        python_type = None

    if python_type is bool:
        lowered = raw.strip().lower()
        if lowered in ("true", "1", "yes"):
            return True
        if lowered in ("false", "0", "no"):
            return False
        raise ValidationError(f"Invalid boolean value '{raw}'", details={"field": column.key})
    if python_type in (int, float):
        try:
            return python_type(raw)
        except ValueError:
            raise ValidationError(f"Invalid number '{raw}'", details={"field": column.key}) from None
    if python_type is str:
        return raw
    if python_type is datetime:
        try:
            return datetime.fromisoformat(raw.replace("Z", "+00:00"))
        except ValueError:
            raise ValidationError(f"Invalid date '{raw}'", details={"field": column.key}) from None
    if python_type is uuid.UUID:
        try:
            return uuid.UUID(raw)
        except ValueError:
            raise ValidationError(f"Invalid id '{raw}'", details={"field": column.key}) from None
    if python_type is None:
        try:
            return int(raw)
        except ValueError:
            try:
                return float(raw)
            except ValueError:
                return raw
    return raw
