"""
User service: registration, profiles and follow edges.

Follow edges feed two article views: the ``following`` flag on authors and
the feed filter.  Following is idempotent in both directions; a racing
duplicate follow is caught by the unique constraint on the edge.
"""
import logging

from sqlalchemy import delete, exists, insert, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.errors import NotFoundError, ValidationFailure, is_unique_violation
from app.models import Follower, User, new_id
from app.schemas import ProfileResponse, UserFields, UserUpdateFields

logger = logging.getLogger(__name__)


async def get_user(db: AsyncSession, user_id: str) -> User | None:
    return await db.get(User, user_id)


async def get_user_by_username(db: AsyncSession, username: str) -> User:
    result = await db.execute(select(User).where(User.username == username))
    user = result.scalar_one_or_none()
    if user is None:
        raise NotFoundError("profile")
    return user


async def create_user(db: AsyncSession, data: UserFields) -> User:
    """
    Create a new user.

    Username and email uniqueness is enforced by the database; the router
    translates the resulting ``IntegrityError`` into a 409.
    """
    user = User(
        id=new_id(),
        username=data.username,
        email=data.email,
        bio=data.bio,
        image=data.image,
    )
    db.add(user)
    await db.flush()
    logger.info("User %s registered", user.username)
    return user


async def update_user(db: AsyncSession, user: User, data: UserUpdateFields) -> User:
    """
    Apply the supplied profile fields to *user*.

    ``bio`` and ``image`` may be cleared with an explicit null; a null
    ``username`` or ``email`` is ignored.  A taken username or email
    surfaces as ``IntegrityError`` from the flush, as in ``create_user``.
    """
    changes = data.model_dump(exclude_unset=True)
    for field in ("username", "email"):
        if changes.get(field, "") is None:
            del changes[field]

    for field, value in changes.items():
        setattr(user, field, value)
    await db.flush()
    logger.info("User %s updated %s", user.id, ", ".join(sorted(changes)) or "nothing")
    return user


async def _is_following(db: AsyncSession, followed_id: str, viewer_id: str | None) -> bool:
    if viewer_id is None:
        return False
    return bool(
        await db.scalar(
            select(
                exists().where(
                    Follower.followed_id == followed_id, Follower.follower_id == viewer_id
                )
            )
        )
    )


def _profile(user: User, following: bool) -> ProfileResponse:
    return ProfileResponse(username=user.username, bio=user.bio, image=user.image, following=following)


async def get_profile(db: AsyncSession, username: str, viewer: User | None = None) -> ProfileResponse:
    user = await get_user_by_username(db, username)
    return _profile(user, await _is_following(db, user.id, viewer.id if viewer else None))


async def follow(db: AsyncSession, username: str, viewer: User) -> ProfileResponse:
    user = await get_user_by_username(db, username)
    if user.id == viewer.id:
        raise ValidationFailure({"profile": ["cannot follow yourself"]})

    if not await _is_following(db, user.id, viewer.id):
        try:
            async with db.begin_nested():
                await db.execute(
                    insert(Follower).values(id=new_id(), followed_id=user.id, follower_id=viewer.id)
                )
        except IntegrityError as exc:
            if not is_unique_violation(exc):
                raise
    return _profile(user, True)


async def unfollow(db: AsyncSession, username: str, viewer: User) -> ProfileResponse:
    user = await get_user_by_username(db, username)
    await db.execute(
        delete(Follower).where(Follower.followed_id == user.id, Follower.follower_id == viewer.id)
    )
    return _profile(user, False)
