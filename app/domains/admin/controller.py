"""Admin controller endpoints: user management and system stats."""

import logging

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.dependencies import require_admin
from app.database import get_db
from app.domains.relay.services import RelayServices, get_relay_services
from app.domains.user.service import UserService
from app.schemas.base import ResponseSchema
from app.schemas.user import UserCreateRequest, UserSummary
from app.services.monitoring_service import SystemStatsService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["Admin"], dependencies=[Depends(require_admin)])


@router.post("/users", response_model=ResponseSchema, status_code=status.HTTP_201_CREATED)
async def create_user(user_data: UserCreateRequest, db: AsyncSession = Depends(get_db)):
    """Create a user with the given daily token cap and no usage today."""
    user = await UserService(db).create_user(
        username=user_data.username,
        password=user_data.password,
        max_tokens=(
            user_data.max_tokens
            if user_data.max_tokens is not None
            else settings.default_max_tokens
        ),
    )
    return ResponseSchema(
        status="success",
        message="User created successfully",
        data=UserSummary.model_validate(user).model_dump(mode="json"),
    )


@router.delete("/users/{username}", response_model=ResponseSchema)
async def delete_user(username: str, db: AsyncSession = Depends(get_db)):
    """Delete a user together with their conversations."""
    await UserService(db).delete_user(username)
    return ResponseSchema(status="success", message="User deleted successfully")


@router.get("/users", response_model=list[UserSummary])
async def list_users(db: AsyncSession = Depends(get_db)):
    """List every user with today's consumption."""
    users = await UserService(db).list_users()
    return [UserSummary.model_validate(user) for user in users]


@router.get("/system-stats")
async def get_system_stats(services: RelayServices = Depends(get_relay_services)):
    """Host load, process uptime and number of users currently connected."""
    return SystemStatsService(services.registry).get_stats()
