"""Pydantic request/response schemas used by the API.

Request schemas are the validation boundary: field lengths, enum
membership and URL shapes are checked here so services only deal with
business rules. Response schemas are the public projections of each
table; they are built field by field from a record, so columns such as
`password_hash` have no way into a response.

All schemas read and write camelCase keys on the wire.
"""

from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field
from pydantic.alias_generators import to_camel

from .models import Category, Course, CourseStatus, User, UserRole

URL_PATTERN = r"^https?://\S+$"


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# -- requests -----------------------------------------------------------------

class UserCreate(CamelModel):
    """Payload for creating a single user."""
    email: EmailStr
    password: str = Field(min_length=6, max_length=100)
    role: Optional[UserRole] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    avatar: Optional[str] = Field(default=None, pattern=URL_PATTERN)
    is_verified: Optional[bool] = None
    is_active: Optional[bool] = None


class UserUpdate(CamelModel):
    email: Optional[EmailStr] = None
    password: Optional[str] = Field(default=None, min_length=6, max_length=100)
    role: Optional[UserRole] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    avatar: Optional[str] = Field(default=None, pattern=URL_PATTERN)
    is_verified: Optional[bool] = None
    is_active: Optional[bool] = None


class BulkUserCreate(CamelModel):
    users: List[UserCreate] = Field(min_length=1)


class CategoryCreate(CamelModel):
    name: str = Field(min_length=2, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)


class CategoryUpdate(CamelModel):
    name: Optional[str] = Field(default=None, min_length=2, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)


class CourseCreate(CamelModel):
    """Payload for creating a course; the instructor is the calling user."""
    title: str = Field(min_length=3, max_length=255)
    description: Optional[str] = Field(default=None, max_length=2000)
    thumbnail: Optional[str] = Field(default=None, pattern=URL_PATTERN)
    price: Optional[float] = Field(default=None, ge=0)
    status: Optional[CourseStatus] = None
    category_id: Optional[str] = None


class CourseUpdate(CamelModel):
    title: Optional[str] = Field(default=None, min_length=3, max_length=255)
    description: Optional[str] = Field(default=None, max_length=2000)
    thumbnail: Optional[str] = Field(default=None, pattern=URL_PATTERN)
    price: Optional[float] = Field(default=None, ge=0)
    status: Optional[CourseStatus] = None
    category_id: Optional[str] = None


# -- public projections ---------------------------------------------------------

class UserOut(CamelModel):
    id: str
    email: str
    role: UserRole
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    avatar: Optional[str] = None
    is_verified: bool
    is_active: bool
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_record(cls, user: User) -> "UserOut":
        return cls(
            id=user.id,
            email=user.email,
            role=user.role,
            first_name=user.first_name,
            last_name=user.last_name,
            avatar=user.avatar,
            is_verified=user.is_verified,
            is_active=user.is_active,
            created_at=user.created_at,
            updated_at=user.updated_at,
        )


class InstructorSummary(CamelModel):
    id: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: str
    avatar: Optional[str] = None

    @classmethod
    def from_record(cls, user: User) -> "InstructorSummary":
        return cls(
            id=user.id,
            first_name=user.first_name,
            last_name=user.last_name,
            email=user.email,
            avatar=user.avatar,
        )


class CourseRef(CamelModel):
    id: str


class CourseSummary(CamelModel):
    id: str
    title: str
    thumbnail: Optional[str] = None
    price: float
    status: CourseStatus

    @classmethod
    def from_record(cls, course: Course) -> "CourseSummary":
        return cls(
            id=course.id,
            title=course.title,
            thumbnail=course.thumbnail,
            price=course.price,
            status=course.status,
        )


class CategoryOut(CamelModel):
    id: str
    name: str
    description: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def _fields_of(cls, category: Category) -> dict:
        return {
            "id": category.id,
            "name": category.name,
            "description": category.description,
            "created_at": category.created_at,
            "updated_at": category.updated_at,
        }

    @classmethod
    def from_record(cls, category: Category) -> "CategoryOut":
        return cls(**cls._fields_of(category))


class CategoryListItem(CategoryOut):
    """List entry: the category plus the ids of its courses."""
    courses: List[CourseRef] = []

    @classmethod
    def from_record(cls, category: Category) -> "CategoryListItem":
        return cls(**cls._fields_of(category), courses=[CourseRef(id=c.id) for c in category.courses])


class CategoryDetail(CategoryOut):
    courses: List[CourseSummary] = []

    @classmethod
    def from_record(cls, category: Category) -> "CategoryDetail":
        return cls(
            **cls._fields_of(category),
            courses=[CourseSummary.from_record(c) for c in category.courses],
        )


class CourseOut(CamelModel):
    """A course with its instructor summary and category."""
    id: str
    title: str
    description: Optional[str] = None
    thumbnail: Optional[str] = None
    price: float
    status: CourseStatus
    instructor_id: str
    category_id: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    instructor: Optional[InstructorSummary] = None
    category: Optional[CategoryOut] = None

    @classmethod
    def from_record(cls, course: Course) -> "CourseOut":
        return cls(
            id=course.id,
            title=course.title,
            description=course.description,
            thumbnail=course.thumbnail,
            price=course.price,
            status=course.status,
            instructor_id=course.instructor_id,
            category_id=course.category_id,
            created_at=course.created_at,
            updated_at=course.updated_at,
            instructor=InstructorSummary.from_record(course.instructor) if course.instructor else None,
            category=CategoryOut.from_record(course.category) if course.category else None,
        )


class BulkFailedUser(CamelModel):
    """The submitted user of a failed bulk item, without its password."""
    email: str
    role: Optional[UserRole] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: UserCreate) -> "BulkFailedUser":
        return cls(
            email=payload.email,
            role=payload.role,
            first_name=payload.first_name,
            last_name=payload.last_name,
        )


class BulkFailure(CamelModel):
    user: BulkFailedUser
    error: str


class BulkCreateResult(CamelModel):
    successful: List[UserOut] = []
    failed: List[BulkFailure] = []
    total_success: int = 0
    total_failed: int = 0


# -- envelope -------------------------------------------------------------------

class PageMeta(CamelModel):
    page: int
    limit: int
    total: int


class ApiResponse(CamelModel):
    """Uniform JSON envelope returned by every endpoint."""
    success: bool
    message: str
    data: Optional[Any] = None
    meta: Optional[PageMeta] = None
