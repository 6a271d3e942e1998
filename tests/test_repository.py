"""
通用仓储测试

使用测试模型覆盖仓储的核心机制：
- 租户隔离（读写都带 tenant_id，客户端传入的 tenant_id 被丢弃）
- 软删除 / 恢复 / 物理删除替换信号
- 自增序号（连续区间）
- 批量写入的事务性
- 聚合、分页、lookup 查询参数
- 变更订阅
"""

import pytest
from sqlalchemy import func, select

from app.config import get_settings
from app.db.repository import BaseRepository, ChangeEvent
from app.exceptions import ConflictError, NotFoundError, SoftDeleteSubstituted, ValidationError


# ==================== 构造 ====================

class TestConstruction:
    """测试仓储构造时的配置校验"""

    def test_requires_database(self, widgets):
        with pytest.raises(RuntimeError):
            type(widgets)(None)

    def test_requires_model(self, database):
        class Orphan(BaseRepository):
            pass

        with pytest.raises(RuntimeError):
            Orphan(database)

    def test_tenant_specific_requires_column(self, database, tags):
        tag_model = tags.model

        class TenantTags(BaseRepository):
            model = tag_model
            tenant_specific = True
            soft_delete = False

        with pytest.raises(RuntimeError):
            TenantTags(database)

    def test_soft_delete_requires_columns(self, database, tags):
        tag_model = tags.model

        class SoftTags(BaseRepository):
            model = tag_model

        with pytest.raises(RuntimeError):
            SoftTags(database)

    def test_auto_increment_requires_column(self, database, tags):
        tag_model = tags.model

        class CountedTags(BaseRepository):
            model = tag_model
            soft_delete = False
            auto_increment = True

        with pytest.raises(RuntimeError):
            CountedTags(database)

    def test_model_registry(self, database, widgets, tags):
        assert database.get_model("Widget") is widgets.model
        assert database.get_model("Tag") is tags.model
        with pytest.raises(KeyError):
            database.get_model("Invoice")
        with pytest.raises(RuntimeError):
            database.register("Widget", tags.model)


# ==================== 创建 / 租户 / 序号 ====================

class TestCreate:
    """测试创建、租户写入和自增序号"""

    @pytest.mark.asyncio
    async def test_create_stamps_tenant_and_sequence(self, widgets):
        widget = await widgets.create({"name": "a", "tenant_id": "evil", "seq": 99, "is_deleted": True})
        assert widget.tenant_id == "tenant_a"
        assert widget.seq == 1
        assert widget.is_deleted is False
        assert widget.created_at is not None

    @pytest.mark.asyncio
    async def test_bulk_create_reserves_contiguous_block(self, widgets):
        await widgets.create({"name": "first"})
        created = await widgets.bulk_create([{"name": "b"}, {"name": "c"}, {"name": "d"}])
        assert [w.seq for w in created] == [2, 3, 4]
        assert await widgets.sequences.current("Widget") == 4

    @pytest.mark.asyncio
    async def test_bulk_create_empty(self, widgets):
        assert await widgets.bulk_create([]) == []

    @pytest.mark.asyncio
    async def test_unknown_field_rejected(self, widgets):
        with pytest.raises(ValidationError):
            await widgets.create({"name": "a", "color": "red"})

    @pytest.mark.asyncio
    async def test_duplicate_is_conflict(self, tags):
        await tags.create({"label": "urgent"})
        with pytest.raises(ConflictError) as exc_info:
            await tags.create({"label": "urgent"})
        assert exc_info.value.details == {"keys": ["label"]}
        assert exc_info.value.message == "Duplicate value for label"

    @pytest.mark.asyncio
    async def test_save_new_and_existing(self, widgets):
        widget_model = widgets.model
        saved = await widgets.save(widget_model(name="manual"))
        assert saved.tenant_id == "tenant_a"
        assert saved.seq == 1

        saved.quantity = 7
        await widgets.save(saved)
        assert (await widgets.find_by_id(saved.id)).quantity == 7

        saved.tenant_id = "tenant_b"
        with pytest.raises(ValidationError):
            await widgets.save(saved)

    @pytest.mark.asyncio
    async def test_save_other_tenant_is_not_found(self, widgets):
        foreign = await widgets.create({"name": "theirs"}, tenant_id="tenant_b")
        foreign.name = "mine now"
        with pytest.raises(NotFoundError):
            await widgets.save(foreign)


class TestTenantIsolation:
    """测试租户隔离：一个租户看不到、改不了另一个租户的数据"""

    @pytest.mark.asyncio
    async def test_reads_are_scoped(self, widgets):
        own = await widgets.create({"name": "own"})
        other = await widgets.create({"name": "other"}, tenant_id="tenant_b")

        assert [w.id for w in await widgets.find()] == [own.id]
        assert await widgets.find_by_id(other.id) is None
        assert await widgets.count() == 1
        assert await widgets.count(tenant_id="tenant_b") == 1

    @pytest.mark.asyncio
    async def test_writes_are_scoped(self, widgets):
        other = await widgets.create({"name": "other", "quantity": 1}, tenant_id="tenant_b")

        assert await widgets.update_by_id(other.id, {"quantity": 5}) is None
        result = await widgets.delete_by_id(other.id)
        assert result.deleted_count == 0

        untouched = await widgets.find_by_id(other.id, tenant_id="tenant_b")
        assert untouched.quantity == 1
        assert untouched.is_deleted is False

    @pytest.mark.asyncio
    async def test_context_tenant(self, database, widgets):
        """未显式指定租户时使用请求上下文中的租户"""
        from app.infra.logging import set_tenant_id

        repo = type(widgets)(database)
        set_tenant_id("tenant_ctx")
        try:
            widget = await repo.create({"name": "ctx"})
        finally:
            set_tenant_id(None)
        assert widget.tenant_id == "tenant_ctx"


# ==================== 查询 ====================

class TestQueries:
    """测试查询辅助方法"""

    @pytest.mark.asyncio
    async def test_find_sort_limit_skip(self, widgets):
        await widgets.bulk_create([{"name": n, "quantity": q} for n, q in [("a", 3), ("b", 1), ("c", 2)]])

        names = [w.name for w in await widgets.find(sort="-quantity")]
        assert names == ["a", "c", "b"]
        names = [w.name for w in await widgets.find(sort={"quantity": 1}, limit=2, skip=1)]
        assert names == ["c", "a"]

    @pytest.mark.asyncio
    async def test_count_exists_distinct(self, widgets):
        await widgets.bulk_create([
            {"name": "a", "category": "x"},
            {"name": "b", "category": "x"},
            {"name": "c", "category": "y"},
        ])
        assert await widgets.count({"category": "x"}) == 2
        assert await widgets.exists({"category": "y"}) is True
        assert await widgets.exists({"category": "z"}) is False
        assert sorted(await widgets.distinct("category")) == ["x", "y"]

    @pytest.mark.asyncio
    async def test_find_one_with_operators(self, widgets):
        await widgets.bulk_create([{"name": "a", "quantity": 1}, {"name": "b", "quantity": 10}])
        found = await widgets.find_one({"quantity": {"$gt": 5}})
        assert found.name == "b"
        assert await widgets.find_one({"quantity": {"$gt": 50}}) is None


# ==================== 更新 ====================

class TestUpdates:
    """测试更新操作符和受保护字段"""

    @pytest.mark.asyncio
    async def test_update_operators(self, widgets):
        widget = await widgets.create({"name": "a", "quantity": 1, "category": "tools"})
        result = await widgets.update_one(
            {"id": widget.id},
            {"$inc": {"quantity": 4}, "$unset": ["category"], "$set": {"tenant_id": "tenant_b"}},
        )
        assert result.matched_count == 1

        updated = await widgets.find_by_id(widget.id)
        assert updated.quantity == 5
        assert updated.category is None
        assert updated.tenant_id == "tenant_a"

    @pytest.mark.asyncio
    async def test_update_many(self, widgets):
        await widgets.bulk_create([{"name": "a", "category": "x"}, {"name": "b", "category": "x"}])
        result = await widgets.update_many({"category": "x"}, {"category": "z"})
        assert result.matched_count == 2
        assert result.modified_count == 2
        assert await widgets.count({"category": "z"}) == 2

    @pytest.mark.asyncio
    async def test_invalid_patch(self, widgets):
        widget = await widgets.create({"name": "a"})
        with pytest.raises(ValidationError):
            await widgets.update_one({"id": widget.id}, {"color": "red"})
        with pytest.raises(ValidationError):
            await widgets.update_one({"id": widget.id}, {"$push": {"name": "b"}})

    @pytest.mark.asyncio
    async def test_find_one_and_update_returns_before_or_after(self, widgets):
        widget = await widgets.create({"name": "a", "quantity": 1})

        before = await widgets.find_one_and_update({"id": widget.id}, {"quantity": 2}, new=False)
        assert before.quantity == 1
        after = await widgets.find_one_and_update({"id": widget.id}, {"quantity": 3})
        assert after.quantity == 3

    @pytest.mark.asyncio
    async def test_bulk_update(self, widgets):
        await widgets.create({"name": "a"})
        result = await widgets.bulk_update([
            {"filter": {"name": "a"}, "update": {"quantity": 9}},
            {"filter": {"name": "missing"}, "update": {"quantity": 1}},
        ])
        assert result.matched_count == 1
        assert (await widgets.find_one({"name": "a"})).quantity == 9


# ==================== 删除 / 恢复 ====================

class TestSoftDelete:
    """测试软删除、恢复和物理删除替换"""

    @pytest.mark.asyncio
    async def test_delete_marks_and_hides(self, widgets):
        widget = await widgets.create({"name": "a"})
        result = await widgets.delete_by_id(widget.id)
        assert result.soft_deleted is True
        assert result.deleted_count == 1

        assert await widgets.find_by_id(widget.id) is None
        assert await widgets.count() == 0
        assert await widgets.count_with_deleted() == 1
        deleted = await widgets.find_deleted()
        assert [w.id for w in deleted] == [widget.id]
        assert deleted[0].deleted_at is not None
        assert [w.id for w in await widgets.find_with_deleted()] == [widget.id]

    @pytest.mark.asyncio
    async def test_restore(self, widgets):
        widget = await widgets.create({"name": "a"})
        assert await widgets.restore_by_id(widget.id) is None

        await widgets.delete_by_id(widget.id)
        restored = await widgets.restore_by_id(widget.id)
        assert restored.is_deleted is False
        assert restored.deleted_at is None
        assert await widgets.count_deleted() == 0

    @pytest.mark.asyncio
    async def test_delete_many_and_restore_many(self, widgets):
        await widgets.bulk_create([{"name": "a", "category": "x"}, {"name": "b", "category": "x"}])
        result = await widgets.delete_many({"category": "x"})
        assert result.deleted_count == 2
        assert (await widgets.restore_many({"category": "x"})).matched_count == 2
        assert await widgets.count() == 2

    @pytest.mark.asyncio
    async def test_destroy_is_substituted(self, widgets):
        widget = await widgets.create({"name": "a"})
        with pytest.raises(SoftDeleteSubstituted) as exc_info:
            await widgets.destroy_by_id(widget.id)
        assert exc_info.value.model == "Widget"
        assert exc_info.value.count == 1
        assert await widgets.count_deleted() == 1

    @pytest.mark.asyncio
    async def test_destroy_missing(self, widgets):
        with pytest.raises(NotFoundError):
            await widgets.destroy_by_id("00000000-0000-0000-0000-000000000000")

    @pytest.mark.asyncio
    async def test_hard_delete_model(self, tags):
        tag = await tags.create({"label": "temp"})
        result = await tags.destroy_by_id(tag.id)
        assert result.soft_deleted is False
        assert await tags.find_with_deleted() == []
        assert await tags.find_deleted() == []
        with pytest.raises(RuntimeError):
            await tags.restore_by_id(tag.id)


# ==================== 批量写入 ====================

class TestBulkWrite:
    """测试批量写入"""

    @pytest.mark.asyncio
    async def test_mixed_operations(self, widgets):
        a = await widgets.create({"name": "a", "quantity": 1})
        b = await widgets.create({"name": "b", "quantity": 2})

        result = await widgets.bulk_write([
            {"insert_one": {"document": {"name": "c"}}},
            {"update_one": {"filter": {"id": a.id}, "update": {"$inc": {"quantity": 10}}}},
            {"delete_one": {"filter": {"id": b.id}}},
        ])
        assert result.inserted_count == 1
        assert len(result.inserted_ids) == 1
        assert result.modified_count == 1
        assert result.deleted_count == 1

        remaining = await widgets.find(sort="seq")
        assert [(w.name, w.seq) for w in remaining] == [("a", 1), ("c", 3)]
        assert remaining[0].quantity == 11

    @pytest.mark.asyncio
    async def test_replace_one_clears_missing_nullable_fields(self, widgets):
        widget = await widgets.create({"name": "a", "category": "tools", "quantity": 3})
        await widgets.bulk_write([
            {"replace_one": {"filter": {"id": widget.id}, "replacement": {"name": "b", "quantity": 1}}},
        ])
        replaced = await widgets.find_by_id(widget.id)
        assert replaced.name == "b"
        assert replaced.category is None
        assert replaced.seq == widget.seq
        assert replaced.tenant_id == "tenant_a"

    @pytest.mark.asyncio
    async def test_failure_rolls_back_batch(self, tags):
        await tags.create({"label": "x"})
        with pytest.raises(ConflictError):
            await tags.bulk_write([
                {"insert_one": {"document": {"label": "y"}}},
                {"insert_one": {"document": {"label": "x"}}},
            ])
        assert await tags.count() == 1

    @pytest.mark.asyncio
    async def test_unknown_operation(self, widgets):
        with pytest.raises(ValidationError):
            await widgets.bulk_write([{"upsert": {"filter": {}}}])


# ==================== 聚合 ====================

class TestAggregate:
    """测试聚合自动补充租户和未删除条件"""

    @pytest.mark.asyncio
    async def test_scoped_aggregate(self, widgets):
        widget_model = widgets.model
        await widgets.create({"name": "a", "category": "tools", "quantity": 2})
        await widgets.create({"name": "b", "category": "tools", "quantity": 3})
        gone = await widgets.create({"name": "c", "category": "tools", "quantity": 100})
        await widgets.delete_by_id(gone.id)
        await widgets.create({"name": "d", "category": "toys", "quantity": 1}, tenant_id="tenant_b")

        stmt = (
            select(widget_model.category, func.sum(widget_model.quantity).label("total"))
            .group_by(widget_model.category)
        )
        assert await widgets.aggregate(stmt) == [{"category": "tools", "total": 5}]

        deleted_only = stmt.where(widget_model.is_deleted.is_(True))
        assert await widgets.aggregate(deleted_only) == [{"category": "tools", "total": 100}]


# ==================== 分页 / lookup ====================

class TestPagination:
    """测试分页"""

    @pytest.mark.asyncio
    async def test_paginate(self, widgets):
        await widgets.bulk_create([{"name": f"w{i:02d}", "quantity": i} for i in range(25)])

        page = await widgets.paginate({}, page=2, limit=10, sort="quantity")
        assert page.total == 25
        assert page.total_pages == 3
        assert [w.quantity for w in page.items] == list(range(10, 20))
        assert page.has_next is True
        assert page.has_prev is True

        last = await widgets.paginate({}, page=3, limit=10, sort="quantity")
        assert len(last.items) == 5
        assert last.next_page is None

    @pytest.mark.asyncio
    async def test_limit_is_capped(self, widgets):
        page = await widgets.paginate({}, limit=10_000)
        assert page.limit == get_settings().pagination_max_limit

    @pytest.mark.asyncio
    async def test_invalid_page_arguments(self, widgets):
        with pytest.raises(ValidationError):
            await widgets.paginate({}, page=0)
        with pytest.raises(ValidationError):
            await widgets.paginate({}, limit="abc")


class TestLookup:
    """测试扁平查询参数"""

    @pytest.fixture
    async def catalog(self, widgets):
        await widgets.bulk_create([
            {"name": "Red hammer", "category": "tools", "quantity": 5},
            {"name": "Blue hammer", "category": "tools", "quantity": 1},
            {"name": "Teddy", "category": "toys", "quantity": 7},
        ])
        return widgets

    @pytest.mark.asyncio
    async def test_field_operators(self, catalog):
        page = await catalog.lookup({"category": "tools", "quantity.gte": "2"})
        assert [w.name for w in page.items] == ["Red hammer"]

        page = await catalog.lookup({"category.in": "tools,toys", "limit": "2", "page": "2", "sort": "-quantity"})
        assert page.total == 3
        assert [w.name for w in page.items] == ["Blue hammer"]

        page = await catalog.lookup({"name.like": "ham"})
        assert page.total == 2

    @pytest.mark.asyncio
    async def test_text_search(self, catalog):
        page = await catalog.lookup({"q": "HAMMER", "sort": "quantity"})
        assert [w.name for w in page.items] == ["Blue hammer", "Red hammer"]

        page = await catalog.lookup({"q": "toy", "qMatchWith": "category"})
        assert [w.name for w in page.items] == ["Teddy"]

    @pytest.mark.asyncio
    async def test_tenant_param_is_ignored(self, catalog):
        page = await catalog.lookup({"tenant_id": "tenant_b"})
        assert page.total == 3

    @pytest.mark.asyncio
    async def test_projection(self, catalog):
        page = await catalog.lookup({"fields": "name", "sort": "quantity"})
        assert set(page.items[0].to_dict()) == {"id", "name"}

    @pytest.mark.asyncio
    async def test_invalid_params(self, catalog):
        with pytest.raises(ValidationError):
            await catalog.lookup({"quantity.between": "1"})
        with pytest.raises(ValidationError):
            await catalog.lookup({"color": "red"})


# ==================== 变更订阅 ====================

class TestWatch:
    """测试写入后的变更事件"""

    @pytest.mark.asyncio
    async def test_events(self, widgets):
        events: list[ChangeEvent] = []
        unsubscribe = widgets.watch(events.append)

        widget = await widgets.create({"name": "a"})
        await widgets.update_by_id(widget.id, {"quantity": 3})
        await widgets.delete_by_id(widget.id)

        assert [e.operation for e in events] == ["insert", "update", "delete"]
        assert events[0] == ChangeEvent(operation="insert", model="Widget", ids=(widget.id,), tenant_id="tenant_a")

        unsubscribe()
        await widgets.restore_by_id(widget.id)
        assert len(events) == 3

    @pytest.mark.asyncio
    async def test_async_and_failing_listeners(self, widgets):
        received = []

        async def on_change(event):
            received.append(event.operation)

        def broken(event):
            raise RuntimeError("listener failure")

        widgets.watch(broken)
        widgets.watch(on_change)

        widget = await widgets.create({"name": "a"})
        assert received == ["insert"]
        assert await widgets.find_by_id(widget.id) is not None
