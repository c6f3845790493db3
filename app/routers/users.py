from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.dependencies import get_viewer, require_user
from app.errors import is_unique_violation
from app.models import User
from app.schemas import (
    ProfileEnvelope,
    UserCreateRequest,
    UserEnvelope,
    UserResponse,
    UserUpdateRequest,
)
from app.services import user_service

router = APIRouter(prefix="/api", tags=["users"])


@router.post("/users", status_code=201, response_model=UserEnvelope)
async def create_user(data: UserCreateRequest, db: AsyncSession = Depends(get_db)):
    try:
        user = await user_service.create_user(db, data.user)
    except IntegrityError:
        raise HTTPException(
            status_code=409,
            detail="A user with this username or email already exists",
        )
    return UserEnvelope(user=UserResponse.model_validate(user))


@router.get("/user", response_model=UserEnvelope)
async def current_user(user: User = Depends(require_user)):
    return UserEnvelope(user=UserResponse.model_validate(user))


@router.put("/user", response_model=UserEnvelope)
async def update_current_user(
    data: UserUpdateRequest,
    user: User = Depends(require_user),
    db: AsyncSession = Depends(get_db),
):
    try:
        user = await user_service.update_user(db, user, data.user)
    except IntegrityError as exc:
        if not is_unique_violation(exc):
            raise
        raise HTTPException(
            status_code=409,
            detail="A user with this username or email already exists",
        )
    return UserEnvelope(user=UserResponse.model_validate(user))


@router.get("/profiles/{username}", response_model=ProfileEnvelope)
async def get_profile(
    username: str,
    viewer: User | None = Depends(get_viewer),
    db: AsyncSession = Depends(get_db),
):
    return ProfileEnvelope(profile=await user_service.get_profile(db, username, viewer))


@router.post("/profiles/{username}/follow", response_model=ProfileEnvelope)
async def follow(
    username: str,
    user: User = Depends(require_user),
    db: AsyncSession = Depends(get_db),
):
    return ProfileEnvelope(profile=await user_service.follow(db, username, user))


@router.delete("/profiles/{username}/follow", response_model=ProfileEnvelope)
async def unfollow(
    username: str,
    user: User = Depends(require_user),
    db: AsyncSession = Depends(get_db),
):
    return ProfileEnvelope(profile=await user_service.unfollow(db, username, user))
