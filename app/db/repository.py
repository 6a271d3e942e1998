"""
通用仓储 (BaseRepository)

为每个模型提供统一的 CRUD / 分页 / 批量操作，并透明地处理：
1. 租户隔离：tenant_specific=True 的模型，所有读写都自动加上 tenant_id 条件，
   写入时 tenant_id 由上下文决定，客户端传入的 tenant_id 一律丢弃
2. 软删除：soft_delete=True 的模型，删除变为标记 is_deleted，默认读取排除已删除记录
3. 自增序号：auto_increment=True 的模型，创建时通过 SequenceAllocator 分配 seq
4. 异常转换：驱动异常在这里转换为业务异常（见 app/db/errors.py）
5. 变更通知：每次写入提交后向 watch() 的订阅者发送 ChangeEvent

租户来源（优先级从高到低）：
    方法参数 tenant_id= > 构造参数 tenant_id= > 当前请求上下文（认证中间件写入）

使用示例：
    class InvoiceRepository(BaseRepository[Invoice]):
        model = Invoice
        tenant_specific = True
        auto_increment = True

    repo = InvoiceRepository(db)
    invoice = await repo.create({"amount": 100})
    page = await repo.paginate({"amount": {"$gte": 50}}, page=1, limit=10, sort="-created_at")
"""

import asyncio
from collections.abc import AsyncIterator, Callable, Iterable, Mapping, Sequence
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, ClassVar, Generic, TypeVar

from sqlalchemy import delete, func, inspect, literal, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import load_only, selectinload
from sqlalchemy.sql import Select, visitors
from sqlalchemy.sql.elements import ColumnClause, ColumnElement

from app.config import get_settings
from app.db.base import Base
from app.db.errors import storage_errors
from app.db.filters import coerce_value, compile_filter, escape_like, resolve_column, text_search
from app.db.pagination import Page, positive_int
from app.db.sequences import SequenceAllocator
from app.db.session import Database
from app.db.soft_delete import HardDelete, ReadMode, SoftDelete
from app.exceptions import NotFoundError, SoftDeleteSubstituted, ValidationError
from app.infra.logging import get_logger, get_tenant_id

logger = get_logger(__name__)

ModelT = TypeVar("ModelT", bound=Base)

Query = Mapping[str, Any]

# lookup() 中 field.op=value 的操作符映射
LOOKUP_OPERATORS = {
    "eq": "$eq",
    "ne": "$ne",
    "gt": "$gt",
    "gte": "$gte",
    "lt": "$lt",
    "lte": "$lte",
    "in": "$in",
    "nin": "$nin",
    "like": "$ilike",
}

LOOKUP_RESERVED = frozenset({"page", "limit", "sort", "fields", "q", "qMatchWith"})


# ==================== 结果类型 ====================

@dataclass
class WriteResult:
    """更新 / 删除的结果（软删除时 soft_deleted=True）"""
    matched_count: int = 0
    modified_count: int = 0
    deleted_count: int = 0
    soft_deleted: bool = False


@dataclass
class BulkWriteResult:
    inserted_count: int = 0
    matched_count: int = 0
    modified_count: int = 0
    deleted_count: int = 0
    inserted_ids: list[Any] = field(default_factory=list)


@dataclass(frozen=True)
class ChangeEvent:
    """写入提交后发送给订阅者的变更事件"""
    operation: str  # insert / update / delete / restore
    model: str
    ids: tuple[Any, ...]
    tenant_id: str | None = None


class BaseRepository(Generic[ModelT]):
    """
    通用仓储基类

    子类通过类属性静态声明行为：
    - model: ORM 模型（必需）
    - name: 注册名，默认为模型类名
    - tenant_specific: 是否按租户隔离
    - soft_delete: 是否软删除（模型需包含 is_deleted / deleted_at）
    - auto_increment: 是否分配自增序号（模型需包含 sequence_field 列）
    - search_fields: lookup 全文搜索默认匹配的字段
    """

    model: ClassVar[type[Base]]
    name: ClassVar[str | None] = None
    tenant_specific: ClassVar[bool] = False
    soft_delete: ClassVar[bool] = True
    auto_increment: ClassVar[bool] = False
    sequence_field: ClassVar[str] = "seq"
    search_fields: ClassVar[tuple[str, ...]] = ()
    default_sort: ClassVar[str] = "-created_at"

    # 客户端写入时一律丢弃的字段
    protected_fields: ClassVar[frozenset[str]] = frozenset(
        {"id", "tenant_id", "is_deleted", "deleted_at", "created_at", "updated_at"}
    )

    def __init__(self, database: Database | None, *, tenant_id: str | None = None) -> None:
        model = getattr(type(self), "model", None)
        if database is None:
            raise RuntimeError(f"{type(self).__name__} requires a Database binding")
        if model is None:
            raise RuntimeError(f"{type(self).__name__} does not declare a model")
        if self.tenant_specific and not hasattr(model, "tenant_id"):
            raise RuntimeError(f"{model.__name__} must define tenant_id to be tenant specific")
        if self.auto_increment and not hasattr(model, self.sequence_field):
            raise RuntimeError(f"{model.__name__} must define {self.sequence_field} to auto increment")

        self.database = database
        self.model_name = self.name or model.__name__
        database.register(self.model_name, model)

        self.deletion = SoftDelete(model) if self.soft_delete else HardDelete(model)
        self.sequences = SequenceAllocator(database) if self.auto_increment else None
        self.default_tenant_id = tenant_id
        self._pk = inspect(model).primary_key[0]

    # ==================== 内部工具 ====================

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[AsyncSession]:
        async with self.database.session() as session, storage_errors(session):
            yield session

    def _tenant(self, tenant_id: str | None) -> str | None:
        if not self.tenant_specific:
            return None
        if tenant_id is not None:
            return tenant_id
        if self.default_tenant_id is not None:
            return self.default_tenant_id
        return get_tenant_id()

    def _where(
        self,
        query: Query | None,
        tenant_id: str | None,
        mode: ReadMode = ReadMode.EXCLUDE,
    ) -> list[ColumnElement]:
        clauses = compile_filter(self.model, query)
        tenant = self._tenant(tenant_id)
        if tenant is not None:
            clauses.append(self.model.tenant_id == tenant)
        clauses.extend(self.deletion.criteria(mode))
        return clauses

    def _order_by(self, sort: Any) -> list[ColumnElement]:
        """
        排序参数：
            "-created_at,email"          字符串，"-" 表示降序
            {"created_at": -1}           字典，1 / -1
            [("created_at", -1)]         元组列表
        """
        if not sort:
            return []
        if isinstance(sort, str):
            pairs = []
            for part in sort.split(","):
                part = part.strip()
                if not part:
                    continue
                if part.startswith("-"):
                    pairs.append((part[1:], -1))
                else:
                    pairs.append((part.lstrip("+"), 1))
        elif isinstance(sort, Mapping):
            pairs = list(sort.items())
        else:
            pairs = list(sort)

        order = []
        for name, direction in pairs:
            column = resolve_column(self.model, name)
            descending = direction in (-1, "-1", "desc", "descending")
            order.append(column.desc() if descending else column.asc())
        return order

    def _options(self, fields: Iterable[str] | None, populate: Iterable[str] | None) -> list[Any]:
        options: list[Any] = []
        if fields:
            columns = [resolve_column(self.model, name) for name in fields]
            options.append(load_only(*columns))
        for relation in populate or ():
            relationships = inspect(self.model).relationships
            if relation not in relationships:
                raise ValidationError(f"Unknown relation '{relation}'", details={"relation": relation})
            options.append(selectinload(getattr(self.model, relation)))
        return options

    def _select(
        self,
        clauses: list[ColumnElement],
        *,
        sort: Any = None,
        fields: Iterable[str] | None = None,
        populate: Iterable[str] | None = None,
        limit: int | None = None,
        skip: int | None = None,
    ) -> Select:
        stmt = select(self.model).where(*clauses).options(*self._options(fields, populate))
        order = self._order_by(sort)
        if order:
            stmt = stmt.order_by(*order)
        if skip:
            stmt = stmt.offset(skip)
        if limit:
            stmt = stmt.limit(limit)
        return stmt

    def _check_fields(self, keys: Iterable[str]) -> None:
        columns = inspect(self.model).column_attrs
        for key in keys:
            if key not in columns:
                raise ValidationError(f"Unknown field '{key}'", details={"field": key})

    def _prepare_values(self, values: dict[str, Any]) -> dict[str, Any]:
        """写入前的值处理钩子（子类覆盖，如密码哈希）"""
        return values

    async def _before_save(self, instance: ModelT) -> None:
        """对象写入前的钩子（子类覆盖）"""

    def _insert_values(self, data: Mapping[str, Any]) -> dict[str, Any]:
        values = {k: v for k, v in dict(data).items() if k not in ("tenant_id", "is_deleted", "deleted_at")}
        if self.auto_increment:
            values.pop(self.sequence_field, None)
        self._check_fields(values)
        return values

    def _update_values(self, patch: Mapping[str, Any]) -> dict[str, Any]:
        """
        更新内容转换为列 → 值/表达式

        支持：
            {"name": "x"}                 直接赋值
            {"$set": {...}}               赋值
            {"$inc": {"count": 1}}        原子增减
            {"$unset": ["avatar"]}        置空
        受保护字段（id / tenant_id / 软删除字段 / 时间戳）会被丢弃。
        """
        patch = dict(patch)
        if any(key.startswith("$") for key in patch):
            unknown = [key for key in patch if key not in ("$set", "$inc", "$unset")]
            if unknown:
                raise ValidationError(f"Unsupported update operator '{unknown[0]}'")
            assignments = dict(patch.get("$set") or {})
            increments = dict(patch.get("$inc") or {})
            unset = patch.get("$unset") or ()
        else:
            assignments, increments, unset = patch, {}, ()

        protected = set(self.protected_fields)
        if self.auto_increment:
            protected.add(self.sequence_field)

        assignments = {k: v for k, v in assignments.items() if k not in protected}
        for key in unset:
            if key not in protected:
                assignments[key] = None
        self._check_fields(assignments)
        values = self._prepare_values(assignments)

        for key, amount in increments.items():
            if key in protected:
                continue
            column = resolve_column(self.model, key)
            values[key] = column + amount
        return values

    def _build(self, data: Mapping[str, Any], tenant: str | None) -> ModelT:
        values = self._prepare_values(self._insert_values(data))
        instance = self.model(**values)
        if self.tenant_specific:
            instance.tenant_id = tenant
        return instance

    async def _assign_sequences(self, instances: Sequence[ModelT]) -> None:
        if not self.sequences or not instances:
            return
        start = await self.sequences.reserve(self.model_name, self.model, self.sequence_field, len(instances))
        for offset, instance in enumerate(instances):
            setattr(instance, self.sequence_field, start + offset)

    async def _emit(self, operation: str, ids: Iterable[Any], tenant_id: str | None) -> None:
        ids = tuple(ids)
        if not ids:
            return
        await self.database.emit(
            self.model_name,
            ChangeEvent(operation=operation, model=self.model_name, ids=ids, tenant_id=tenant_id),
        )

    async def _matching_ids(
        self,
        session: AsyncSession,
        clauses: list[ColumnElement],
        *,
        one: bool = False,
        sort: Any = None,
    ) -> list[Any]:
        stmt = select(self._pk).where(*clauses)
        order = self._order_by(sort)
        if order:
            stmt = stmt.order_by(*order)
        if one:
            stmt = stmt.limit(1)
        return list((await session.scalars(stmt)).all())

    async def _update_ids(self, session: AsyncSession, ids: list[Any], values: dict[str, Any]) -> None:
        if not ids or not values:
            return
        await session.execute(
            update(self.model)
            .where(self._pk.in_(ids))
            .values(**values)
            .execution_options(synchronize_session=False)
        )

    async def _delete_ids(self, session: AsyncSession, ids: list[Any]) -> None:
        if not ids:
            return
        if self.deletion.enabled:
            await self._update_ids(session, ids, self.deletion.delete_values())
        else:
            await session.execute(
                delete(self.model).where(self._pk.in_(ids)).execution_options(synchronize_session=False)
            )

    async def _reload(self, session: AsyncSession, ident: Any) -> ModelT | None:
        stmt = select(self.model).where(self._pk == ident).execution_options(populate_existing=True)
        return (await session.scalars(stmt)).first()

    # ==================== 创建 ====================

    async def create(self, data: Mapping[str, Any], *, tenant_id: str | None = None) -> ModelT:
        """创建一条记录"""
        tenant = self._tenant(tenant_id)
        instance = self._build(data, tenant)
        await self._assign_sequences([instance])
        await self._before_save(instance)
        async with self._session() as session:
            session.add(instance)
            await session.commit()
        await self._emit("insert", [getattr(instance, self._pk.key)], tenant)
        return instance

    async def bulk_create(self, items: Sequence[Mapping[str, Any]], *, tenant_id: str | None = None) -> list[ModelT]:
        """批量创建（一个事务），自增序号一次性预留连续区间"""
        tenant = self._tenant(tenant_id)
        instances = [self._build(item, tenant) for item in items]
        if not instances:
            return []
        await self._assign_sequences(instances)
        for instance in instances:
            await self._before_save(instance)
        async with self._session() as session:
            session.add_all(instances)
            await session.commit()
        await self._emit("insert", [getattr(i, self._pk.key) for i in instances], tenant)
        return instances

    async def insert_many(self, items: Sequence[Mapping[str, Any]], *, tenant_id: str | None = None) -> list[ModelT]:
        return await self.bulk_create(items, tenant_id=tenant_id)

    async def save(self, instance: ModelT, *, tenant_id: str | None = None) -> ModelT:
        """
        保存一个对象（新建或修改后的已有对象）

        已有对象不能被移动到其他租户。
        """
        tenant = self._tenant(tenant_id)
        state = inspect(instance)
        is_new = state.key is None

        if self.tenant_specific:
            if is_new:
                instance.tenant_id = tenant
            elif state.attrs.tenant_id.history.has_changes():
                raise ValidationError("tenant_id cannot be changed")
            elif tenant is not None and instance.tenant_id != tenant:
                raise NotFoundError(f"{self.model_name} not found")

        if is_new:
            await self._assign_sequences([instance])
        await self._before_save(instance)
        async with self._session() as session:
            session.add(instance)
            await session.commit()
        await self._emit("insert" if is_new else "update", [getattr(instance, self._pk.key)], tenant)
        return instance

    # ==================== 查询 ====================

    async def find(
        self,
        query: Query | None = None,
        *,
        sort: Any = None,
        fields: Iterable[str] | None = None,
        populate: Iterable[str] | None = None,
        limit: int | None = None,
        skip: int | None = None,
        tenant_id: str | None = None,
        mode: ReadMode = ReadMode.EXCLUDE,
    ) -> list[ModelT]:
        stmt = self._select(
            self._where(query, tenant_id, mode),
            sort=sort, fields=fields, populate=populate, limit=limit, skip=skip,
        )
        async with self._session() as session:
            return list((await session.scalars(stmt)).all())

    async def find_one(
        self,
        query: Query | None = None,
        *,
        sort: Any = None,
        fields: Iterable[str] | None = None,
        populate: Iterable[str] | None = None,
        tenant_id: str | None = None,
        mode: ReadMode = ReadMode.EXCLUDE,
    ) -> ModelT | None:
        stmt = self._select(
            self._where(query, tenant_id, mode),
            sort=sort, fields=fields, populate=populate, limit=1,
        )
        async with self._session() as session:
            return (await session.scalars(stmt)).first()

    async def find_by_id(
        self,
        ident: Any,
        *,
        fields: Iterable[str] | None = None,
        populate: Iterable[str] | None = None,
        tenant_id: str | None = None,
        mode: ReadMode = ReadMode.EXCLUDE,
    ) -> ModelT | None:
        return await self.find_one(
            {self._pk.key: ident}, fields=fields, populate=populate, tenant_id=tenant_id, mode=mode,
        )

    async def find_with_deleted(self, query: Query | None = None, **kwargs: Any) -> list[ModelT]:
        return await self.find(query, mode=ReadMode.INCLUDE, **kwargs)

    async def find_deleted(self, query: Query | None = None, **kwargs: Any) -> list[ModelT]:
        return await self.find(query, mode=ReadMode.ONLY, **kwargs)

    async def count(
        self,
        query: Query | None = None,
        *,
        tenant_id: str | None = None,
        mode: ReadMode = ReadMode.EXCLUDE,
    ) -> int:
        stmt = select(func.count()).select_from(self.model).where(*self._where(query, tenant_id, mode))
        async with self._session() as session:
            return (await session.scalar(stmt)) or 0

    async def count_with_deleted(self, query: Query | None = None, *, tenant_id: str | None = None) -> int:
        return await self.count(query, tenant_id=tenant_id, mode=ReadMode.INCLUDE)

    async def count_deleted(self, query: Query | None = None, *, tenant_id: str | None = None) -> int:
        return await self.count(query, tenant_id=tenant_id, mode=ReadMode.ONLY)

    async def exists(self, query: Query | None = None, *, tenant_id: str | None = None) -> bool:
        stmt = select(literal(1)).select_from(self.model).where(*self._where(query, tenant_id)).limit(1)
        async with self._session() as session:
            return (await session.scalar(stmt)) is not None

    async def distinct(self, field_name: str, query: Query | None = None, *, tenant_id: str | None = None) -> list[Any]:
        column = resolve_column(self.model, field_name)
        stmt = select(column).where(*self._where(query, tenant_id)).distinct()
        async with self._session() as session:
            return list((await session.scalars(stmt)).all())

    # ==================== 更新 ====================

    async def update_one(
        self,
        query: Query,
        patch: Mapping[str, Any],
        *,
        tenant_id: str | None = None,
    ) -> WriteResult:
        return await self._update(query, patch, tenant_id=tenant_id, one=True)

    async def update_many(
        self,
        query: Query,
        patch: Mapping[str, Any],
        *,
        tenant_id: str | None = None,
    ) -> WriteResult:
        return await self._update(query, patch, tenant_id=tenant_id, one=False)

    async def _update(self, query: Query, patch: Mapping[str, Any], *, tenant_id: str | None, one: bool) -> WriteResult:
        values = self._update_values(patch)
        tenant = self._tenant(tenant_id)
        async with self._session() as session:
            ids = await self._matching_ids(session, self._where(query, tenant_id), one=one)
            await self._update_ids(session, ids, values)
            await session.commit()
        await self._emit("update", ids, tenant)
        modified = len(ids) if values else 0
        return WriteResult(matched_count=len(ids), modified_count=modified)

    async def find_one_and_update(
        self,
        query: Query,
        patch: Mapping[str, Any],
        *,
        new: bool = True,
        sort: Any = None,
        tenant_id: str | None = None,
    ) -> ModelT | None:
        """
        更新第一条匹配记录并返回

        new=True 返回更新后的记录，new=False 返回更新前的记录。
        """
        values = self._update_values(patch)
        tenant = self._tenant(tenant_id)
        async with self._session() as session:
            ids = await self._matching_ids(session, self._where(query, tenant_id), one=True, sort=sort)
            if not ids:
                return None
            before = None if new else await self._reload(session, ids[0])
            if before is not None:
                session.expunge(before)
            await self._update_ids(session, ids, values)
            await session.commit()
            result = await self._reload(session, ids[0]) if new else before
        await self._emit("update", ids, tenant)
        return result

    async def update_by_id(
        self,
        ident: Any,
        patch: Mapping[str, Any],
        *,
        tenant_id: str | None = None,
    ) -> ModelT | None:
        """按主键更新，返回更新后的记录；不存在（或已软删除）时返回 None"""
        return await self.find_one_and_update({self._pk.key: ident}, patch, tenant_id=tenant_id)

    async def bulk_update(
        self,
        items: Sequence[Mapping[str, Any]],
        *,
        tenant_id: str | None = None,
    ) -> BulkWriteResult:
        """
        批量更新

        items: [{"filter": {...}, "update": {...}}, ...]，每项只更新第一条匹配记录
        """
        operations = [
            {"update_one": {"filter": item["filter"], "update": item["update"]}}
            for item in items
        ]
        return await self.bulk_write(operations, tenant_id=tenant_id)

    # ==================== 删除 ====================

    async def delete_one(self, query: Query, *, tenant_id: str | None = None) -> WriteResult:
        return await self._delete(query, tenant_id=tenant_id, one=True)

    async def delete_by_id(self, ident: Any, *, tenant_id: str | None = None) -> WriteResult:
        return await self._delete({self._pk.key: ident}, tenant_id=tenant_id, one=True)

    async def delete_many(self, query: Query, *, tenant_id: str | None = None) -> WriteResult:
        return await self._delete(query, tenant_id=tenant_id, one=False)

    async def _delete(self, query: Query, *, tenant_id: str | None, one: bool) -> WriteResult:
        tenant = self._tenant(tenant_id)
        async with self._session() as session:
            ids = await self._matching_ids(session, self._where(query, tenant_id), one=one)
            await self._delete_ids(session, ids)
            await session.commit()
        await self._emit("delete", ids, tenant)
        return WriteResult(
            matched_count=len(ids),
            modified_count=len(ids) if self.deletion.enabled else 0,
            deleted_count=len(ids),
            soft_deleted=self.deletion.enabled,
        )

    async def destroy_by_id(self, ident: Any, *, tenant_id: str | None = None) -> WriteResult:
        """
        物理删除

        启用软删除的模型不能被物理删除：记录会被标记为已删除，
        然后抛出 SoftDeleteSubstituted 告知调用方发生了替换。
        """
        result = await self.delete_by_id(ident, tenant_id=tenant_id)
        if result.matched_count == 0:
            raise NotFoundError(f"{self.model_name} not found")
        if result.soft_deleted:
            raise SoftDeleteSubstituted(self.model_name, result.deleted_count)
        return result

    async def restore_by_id(self, ident: Any, *, tenant_id: str | None = None) -> ModelT | None:
        """恢复一条已软删除的记录，返回恢复后的记录"""
        self._require_soft_delete()
        tenant = self._tenant(tenant_id)
        async with self._session() as session:
            ids = await self._matching_ids(
                session, self._where({self._pk.key: ident}, tenant_id, ReadMode.ONLY), one=True,
            )
            if not ids:
                return None
            await self._update_ids(session, ids, self.deletion.restore_values())
            await session.commit()
            restored = await self._reload(session, ids[0])
        await self._emit("restore", ids, tenant)
        return restored

    async def restore_many(self, query: Query | None = None, *, tenant_id: str | None = None) -> WriteResult:
        self._require_soft_delete()
        tenant = self._tenant(tenant_id)
        async with self._session() as session:
            ids = await self._matching_ids(session, self._where(query, tenant_id, ReadMode.ONLY))
            await self._update_ids(session, ids, self.deletion.restore_values())
            await session.commit()
        await self._emit("restore", ids, tenant)
        return WriteResult(matched_count=len(ids), modified_count=len(ids))

    def _require_soft_delete(self) -> None:
        if not self.deletion.enabled:
            raise RuntimeError(f"{self.model_name} does not use soft delete")

    # ==================== 批量写入 ====================

    async def bulk_write(
        self,
        operations: Sequence[Mapping[str, Any]],
        *,
        tenant_id: str | None = None,
    ) -> BulkWriteResult:
        """
        在一个事务中执行多种写操作

        operations 每项只有一个键：
            {"insert_one": {"document": {...}}}
            {"update_one": {"filter": {...}, "update": {...}}}
            {"update_many": {"filter": {...}, "update": {...}}}
            {"replace_one": {"filter": {...}, "replacement": {...}}}
            {"delete_one": {"filter": {...}}}
            {"delete_many": {"filter": {...}}}

        任何一项失败，整个批次回滚。
        """
        tenant = self._tenant(tenant_id)
        result = BulkWriteResult()
        changes: dict[str, list[Any]] = {"insert": [], "update": [], "delete": []}

        # 先校验并构建所有操作，再开启事务
        inserts: list[ModelT] = []
        plan: list[tuple[str, Any, Any]] = []
        for operation in operations:
            if len(operation) != 1:
                raise ValidationError("Each bulk operation must have exactly one key")
            kind, args = next(iter(operation.items()))
            if kind == "insert_one":
                instance = self._build(args["document"], tenant)
                inserts.append(instance)
                plan.append((kind, instance, None))
            elif kind in ("update_one", "update_many"):
                plan.append((kind, self._where(args.get("filter"), tenant_id), self._update_values(args["update"])))
            elif kind == "replace_one":
                plan.append((kind, self._where(args.get("filter"), tenant_id), self._replacement_values(args["replacement"])))
            elif kind in ("delete_one", "delete_many"):
                plan.append((kind, self._where(args.get("filter"), tenant_id), None))
            else:
                raise ValidationError(f"Unsupported bulk operation '{kind}'")

        await self._assign_sequences(inserts)
        for instance in inserts:
            await self._before_save(instance)

        async with self._session() as session:
            for kind, target, values in plan:
                if kind == "insert_one":
                    session.add(target)
                    await session.flush()
                    ident = getattr(target, self._pk.key)
                    result.inserted_ids.append(ident)
                    result.inserted_count += 1
                    changes["insert"].append(ident)
                elif kind in ("update_one", "update_many", "replace_one"):
                    ids = await self._matching_ids(session, target, one=kind != "update_many")
                    await self._update_ids(session, ids, values)
                    result.matched_count += len(ids)
                    result.modified_count += len(ids) if values else 0
                    changes["update"].extend(ids)
                else:
                    ids = await self._matching_ids(session, target, one=kind == "delete_one")
                    await self._delete_ids(session, ids)
                    result.deleted_count += len(ids)
                    changes["delete"].extend(ids)
            await session.commit()

        for operation, ids in changes.items():
            await self._emit(operation, ids, tenant)
        return result

    def _replacement_values(self, replacement: Mapping[str, Any]) -> dict[str, Any]:
        """整条替换：未提供的可空字段置为 None，受保护字段保持不变"""
        values = self._update_values(replacement)
        protected = set(self.protected_fields) | {self._pk.key}
        if self.auto_increment:
            protected.add(self.sequence_field)
        for attr in inspect(self.model).column_attrs:
            column = attr.columns[0]
            if attr.key in protected or attr.key in values:
                continue
            if column.nullable:
                values[attr.key] = None
        return values

    # ==================== 聚合 ====================

    def _references(self, clause: ColumnElement | None, column_name: str) -> bool:
        """where 子句中是否已经引用了本表的某一列"""
        if clause is None:
            return False
        table = self.model.__table__
        for element in visitors.iterate(clause):
            if (
                isinstance(element, ColumnClause)
                and element.name == column_name
                and getattr(element.table, "name", None) == table.name
            ):
                return True
        return False

    async def aggregate(self, stmt: Select, *, tenant_id: str | None = None) -> list[dict[str, Any]]:
        """
        执行聚合查询

        自动补充租户条件和未删除条件，除非语句的 where 子句已经引用了对应列
        （调用方显式处理租户或删除状态时不覆盖）。

        使用示例：
            stmt = select(User.role, func.count().label("total")).group_by(User.role)
            rows = await repo.aggregate(stmt)
        """
        whereclause = stmt.whereclause
        tenant = self._tenant(tenant_id)
        if tenant is not None and not self._references(whereclause, "tenant_id"):
            stmt = stmt.where(self.model.tenant_id == tenant)
        if self.deletion.enabled and not self._references(whereclause, "is_deleted"):
            stmt = stmt.where(*self.deletion.criteria(ReadMode.EXCLUDE))
        async with self._session() as session:
            result = await session.execute(stmt)
            return [dict(row) for row in result.mappings().all()]

    # ==================== 分页 ====================

    async def paginate(
        self,
        query: Query | None = None,
        *,
        page: Any = 1,
        limit: Any = None,
        sort: Any = None,
        fields: Iterable[str] | None = None,
        populate: Iterable[str] | None = None,
        tenant_id: str | None = None,
        mode: ReadMode = ReadMode.EXCLUDE,
    ) -> Page[ModelT]:
        """
        分页查询

        总数和当前页数据在两个会话中并发查询。
        limit 超过 pagination_max_limit 时按上限截断。
        """
        settings = get_settings()
        page = positive_int(page, "page")
        limit = positive_int(limit if limit is not None else settings.pagination_default_limit, "limit")
        limit = min(limit, settings.pagination_max_limit)

        clauses = self._where(query, tenant_id, mode)
        if sort is None and hasattr(self.model, "created_at"):
            sort = self.default_sort
        stmt = self._select(
            clauses, sort=sort, fields=fields, populate=populate, limit=limit, skip=(page - 1) * limit,
        )
        count_stmt = select_count(self.model, clauses)

        async def fetch_total() -> int:
            async with self._session() as session:
                return (await session.scalar(count_stmt)) or 0

        async def fetch_items() -> list[ModelT]:
            async with self._session() as session:
                return list((await session.scalars(stmt)).all())

        total, items = await asyncio.gather(fetch_total(), fetch_items())
        return Page(items=items, total=total, page=page, limit=limit)

    def params_filter(self, params: Mapping[str, Any]) -> dict[str, Any]:
        """
        把扁平查询参数转换为过滤条件

        支持的参数：
            status=ACTIVE                等值匹配
            login_attempts.gte=3         field.op=value，op 见 LOOKUP_OPERATORS
            role.in=ADMIN,DEVELOPER      in / nin 按逗号拆分
            q=jo&qMatchWith=first_name,last_name
                                         多字段模糊搜索（不区分大小写）
        tenant_id 参数被忽略，租户只来自上下文；不对外输出的字段不能用于过滤。
        """
        hidden = set(getattr(self.model, "__serialize_exclude__", ()))
        query: dict[str, Any] = {}

        for key, raw in params.items():
            if key in LOOKUP_RESERVED:
                continue
            field_name, _, op = key.partition(".")
            if field_name == "tenant_id":
                continue
            if field_name in hidden:
                raise ValidationError(f"Unknown field '{field_name}'", details={"field": field_name})
            column = resolve_column(self.model, field_name)
            raw = str(raw)

            operator = LOOKUP_OPERATORS.get(op or "eq")
            if operator is None:
                raise ValidationError(f"Unsupported operator '{op}'", details={"operator": op})
            if operator in ("$in", "$nin"):
                value: Any = [coerce_value(column, part.strip()) for part in raw.split(",") if part.strip()]
            elif operator == "$ilike":
                value = f"%{escape_like(raw)}%"
            else:
                value = coerce_value(column, raw)
            query.setdefault(field_name, {})[operator] = value

        term = params.get("q")
        if term:
            match_with = params.get("qMatchWith")
            fields = [f.strip() for f in match_with.split(",") if f.strip()] if match_with else list(self.search_fields)
            if not fields:
                raise ValidationError("qMatchWith is required for search")
            if hidden.intersection(fields):
                raise ValidationError("Search field is not allowed", details={"fields": sorted(hidden.intersection(fields))})
            query = {"$and": [query, text_search(self.model, str(term), fields)]}
        return query

    def params_sort(self, params: Mapping[str, Any]) -> str | None:
        """sort 参数（如 -created_at,email），不对外输出的字段不能用于排序"""
        sort = params.get("sort") or None
        if sort is None:
            return None
        hidden = set(getattr(self.model, "__serialize_exclude__", ()))
        for part in str(sort).split(","):
            name = part.strip().lstrip("+-")
            if name in hidden:
                raise ValidationError(f"Unknown field '{name}'", details={"field": name})
        return str(sort)

    async def lookup(self, params: Mapping[str, Any], *, tenant_id: str | None = None) -> Page[ModelT]:
        """
        根据扁平查询参数过滤并分页（过滤参数见 params_filter）

        额外支持：
            page, limit                  分页
            sort=-created_at,email       排序，默认按创建时间倒序
            fields=email,role            只加载部分字段
        """
        hidden = set(getattr(self.model, "__serialize_exclude__", ()))
        query = self.params_filter(params)

        projection = None
        if params.get("fields"):
            projection = [f.strip() for f in str(params["fields"]).split(",") if f.strip() and f.strip() not in hidden]

        return await self.paginate(
            query,
            page=params.get("page", 1),
            limit=params.get("limit"),
            sort=self.params_sort(params),
            fields=projection,
            tenant_id=tenant_id,
        )

    # ==================== 变更订阅 ====================

    def watch(self, listener: Callable[[ChangeEvent], Any]) -> Callable[[], None]:
        """订阅本模型的写入事件，返回取消订阅函数"""
        return self.database.add_listener(self.model_name, listener)


def select_count(model: type[Base], clauses: list[ColumnElement]) -> Select:
    return select(func.count()).select_from(model).where(*clauses)
