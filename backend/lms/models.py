"""SQLModel data models.

This module defines the application's database tables using SQLModel.
Each class maps to a table and uses relationships where appropriate.
Uniqueness (user email, category name) and referential rules (a course
points at an existing instructor; a category with courses cannot be
removed) are declared here so the database enforces them even when two
requests race past the service-level checks.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from sqlmodel import Field, Relationship, SQLModel


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


class UserRole(str, Enum):
    STUDENT = "STUDENT"
    INSTRUCTOR = "INSTRUCTOR"
    ADMIN = "ADMIN"
    SUPER_ADMIN = "SUPER_ADMIN"


class CourseStatus(str, Enum):
    DRAFT = "DRAFT"
    PUBLISHED = "PUBLISHED"
    ARCHIVED = "ARCHIVED"


class User(SQLModel, table=True):
    """A registered user.

    Fields:
    - `email`: unique login address
    - `password_hash`: hashed password string (never store plaintext)
    - `avatar`: URL of the avatar image on the media host
    """
    __tablename__ = "users"

    id: str = Field(default_factory=_new_id, primary_key=True)
    email: str = Field(index=True, nullable=False, unique=True)
    password_hash: str
    role: UserRole = Field(default=UserRole.STUDENT, index=True)
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    avatar: Optional[str] = None
    is_verified: bool = False
    is_active: bool = True
    created_at: datetime = Field(default_factory=_utcnow, index=True)
    updated_at: datetime = Field(default_factory=_utcnow)
    # passive_deletes leaves child rows alone so the RESTRICT foreign key decides
    courses: List["Course"] = Relationship(
        back_populates="instructor", sa_relationship_kwargs={"passive_deletes": "all"}
    )


class Category(SQLModel, table=True):
    """A course category; `name` is unique."""
    __tablename__ = "categories"

    id: str = Field(default_factory=_new_id, primary_key=True)
    name: str = Field(index=True, nullable=False, unique=True)
    description: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow, index=True)
    updated_at: datetime = Field(default_factory=_utcnow)
    courses: List["Course"] = Relationship(
        back_populates="category", sa_relationship_kwargs={"passive_deletes": "all"}
    )


class Course(SQLModel, table=True):
    """A course taught by an instructor, optionally filed under a category.

    `thumbnail` holds the media-host URL of the cover image; replacing or
    deleting the course schedules removal of the previous image.
    """
    __tablename__ = "courses"

    id: str = Field(default_factory=_new_id, primary_key=True)
    title: str = Field(index=True)
    description: Optional[str] = None
    thumbnail: Optional[str] = None
    price: float = Field(default=0.0, index=True)
    status: CourseStatus = Field(default=CourseStatus.DRAFT, index=True)
    instructor_id: str = Field(foreign_key="users.id", index=True, ondelete="RESTRICT")
    category_id: Optional[str] = Field(default=None, foreign_key="categories.id", index=True, ondelete="RESTRICT")
    created_at: datetime = Field(default_factory=_utcnow, index=True)
    updated_at: datetime = Field(default_factory=_utcnow)
    instructor: Optional[User] = Relationship(back_populates="courses")
    category: Optional[Category] = Relationship(back_populates="courses")
