from datetime import datetime
from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field, StringConstraints
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Accepts and emits camelCase keys (``tagList``, ``favoritesCount``)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# --- Tag ---

TagName = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=100)]


class TagListResponse(BaseModel):
    tags: list[str]


# --- Article validation (applied by the coordinator, never by the router) ---

class ArticleSchema(BaseModel):
    """
    Full article as stored.  Validated on create and re-validated after an
    update merges new fields onto the stored ones; pydantic always reports
    every invalid field rather than stopping at the first.
    """

    id: str
    author_id: str
    title: Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=300)]
    description: Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=500)]
    body: Annotated[str, StringConstraints(min_length=1)]
    tag_list: list[TagName] = []


# --- Article requests ---

class ArticleFields(CamelModel):
    title: str | None = None
    description: str | None = None
    body: str | None = None
    tag_list: list[str] | None = None


class ArticleCreateRequest(BaseModel):
    article: ArticleFields


class ArticleUpdateRequest(BaseModel):
    article: ArticleFields = ArticleFields()


# --- Profile ---

class ProfileResponse(BaseModel):
    username: str
    bio: str | None = None
    image: str | None = None
    following: bool = False


class ProfileEnvelope(BaseModel):
    profile: ProfileResponse


# --- Article responses ---

class ArticleResponse(CamelModel):
    id: str
    slug: str
    title: str
    description: str
    body: str
    tag_list: list[str]
    created_at: datetime
    updated_at: datetime
    favorited: bool
    favorites_count: int
    author: ProfileResponse


class ArticleEnvelope(BaseModel):
    article: ArticleResponse


class ArticleListResponse(CamelModel):
    articles: list[ArticleResponse]
    articles_count: int


# --- User ---

class UserFields(BaseModel):
    username: str = Field(min_length=1, max_length=100)
    email: str = Field(min_length=3, max_length=255)
    bio: str | None = None
    image: str | None = None


class UserCreateRequest(BaseModel):
    user: UserFields


class UserUpdateFields(BaseModel):
    """Partial profile update; omitted fields keep their stored values."""

    username: str | None = Field(None, min_length=1, max_length=100)
    email: str | None = Field(None, min_length=3, max_length=255)
    bio: str | None = None
    image: str | None = None


class UserUpdateRequest(BaseModel):
    user: UserUpdateFields


class UserResponse(BaseModel):
    id: str
    username: str
    email: str
    bio: str | None
    image: str | None
    model_config = ConfigDict(from_attributes=True)


class UserEnvelope(BaseModel):
    user: UserResponse
