"""
业务接口（/api/v1）

除 GET /api/v1/ 外都需要认证；/users 仅限 ADMIN / DEVELOPER。
"""

from fastapi import APIRouter, Depends
from fastapi.responses import PlainTextResponse

from app.api.crud import build_crud_router
from app.api.responses import send_response
from app.auth.session import authenticate, authorize_role
from app.models.user import Role, User
from app.repositories.user import UserRepository
from app.schemas.user import UserCreate, UserUpdate

router = APIRouter(prefix="/v1")


@router.get("/", response_class=PlainTextResponse)
async def hello() -> str:
    return "Hello World from v1"


@router.get("/me", tags=["users"])
async def me(user: User = Depends(authenticate)):
    return send_response(user.to_public())


router.include_router(
    build_crud_router(
        UserRepository,
        UserCreate,
        UserUpdate,
        serialize=User.to_public,
        dependencies=[Depends(authorize_role(Role.ADMIN, Role.DEVELOPER))],
        tags=["users"],
    ),
    prefix="/users",
)
