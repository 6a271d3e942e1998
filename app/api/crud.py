"""
通用 CRUD 路由

为任意仓储生成一组标准接口：
    POST   /          创建（201）
    GET    /          分页列表（查询参数见 BaseRepository.lookup），附带 prev/next 链接
    GET    /all       不分页列表
    GET    /count     计数
    GET    /{id}      详情
    PATCH  /{id}      更新
    DELETE /{id}      删除（启用软删除的模型为软删除）

租户来自已认证用户（request.state.tenant_id），客户端传入的 tenant_id 被忽略。

使用示例：
    router = build_crud_router(
        UserRepository, UserCreate, UserUpdate,
        serialize=User.to_public,
        dependencies=[Depends(authorize_role(Role.ADMIN))],
    )
    app.include_router(router, prefix="/api/v1/users")
"""

from collections.abc import Callable, Sequence
from typing import Any

from fastapi import APIRouter, Depends, Request, status
from pydantic import BaseModel

from app.api.deps import get_db
from app.api.responses import send_response
from app.db.pagination import page_links
from app.db.repository import BaseRepository
from app.db.session import Database
from app.exceptions import NotFoundError


def _tenant(request: Request) -> str | None:
    return getattr(request.state, "tenant_id", None)


def build_crud_router(
    repository_factory: Callable[[Database], BaseRepository],
    create_schema: type[BaseModel],
    update_schema: type[BaseModel],
    *,
    serialize: Callable[[Any], Any] | None = None,
    dependencies: Sequence[Any] | None = None,
    tags: list[str] | None = None,
) -> APIRouter:
    router = APIRouter(dependencies=list(dependencies or ()), tags=tags)
    to_output = serialize or (lambda record: record.to_dict())

    def get_repository(db: Database = Depends(get_db)) -> BaseRepository:
        return repository_factory(db)

    @router.post("/", status_code=status.HTTP_201_CREATED)
    async def create_record(
        request: Request,
        payload: create_schema,  # type: ignore[valid-type]
        repo: BaseRepository = Depends(get_repository),
    ):
        record = await repo.create(payload.model_dump(), tenant_id=_tenant(request))
        return send_response(to_output(record), status.HTTP_201_CREATED)

    @router.get("/")
    async def list_records(request: Request, repo: BaseRepository = Depends(get_repository)):
        page = await repo.lookup(dict(request.query_params), tenant_id=_tenant(request))
        return send_response({**page.to_dict(to_output), "links": page_links(page)})

    @router.get("/all")
    async def list_every(request: Request, repo: BaseRepository = Depends(get_repository)):
        params = dict(request.query_params)
        records = await repo.find(
            repo.params_filter(params),
            sort=repo.params_sort(params),
            tenant_id=_tenant(request),
        )
        return send_response([to_output(record) for record in records])

    @router.get("/count")
    async def count_records(request: Request, repo: BaseRepository = Depends(get_repository)):
        total = await repo.count(repo.params_filter(dict(request.query_params)), tenant_id=_tenant(request))
        return send_response({"count": total})

    @router.get("/{record_id}")
    async def get_record(record_id: str, request: Request, repo: BaseRepository = Depends(get_repository)):
        record = await repo.find_by_id(record_id, tenant_id=_tenant(request))
        if record is None:
            raise NotFoundError("Record not found")
        return send_response(to_output(record))

    @router.patch("/{record_id}")
    async def update_record(
        record_id: str,
        request: Request,
        payload: update_schema,  # type: ignore[valid-type]
        repo: BaseRepository = Depends(get_repository),
    ):
        patch = payload.model_dump(exclude_unset=True)
        record = await repo.update_by_id(record_id, patch, tenant_id=_tenant(request))
        if record is None:
            raise NotFoundError("Record not found")
        return send_response(to_output(record))

    @router.delete("/{record_id}")
    async def delete_record(record_id: str, request: Request, repo: BaseRepository = Depends(get_repository)):
        result = await repo.delete_by_id(record_id, tenant_id=_tenant(request))
        if result.deleted_count == 0:
            raise NotFoundError("Record not found")
        return send_response({"id": record_id})

    return router
