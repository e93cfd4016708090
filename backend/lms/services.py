"""Business logic services used by HTTP controllers.

This module holds one service class per entity (users, categories,
courses). Services coordinate repositories and perform the business
checks the request schemas cannot express, always in the same order:
existence, uniqueness, authorization, dependencies. Only then is the
mutating repository call issued. The database constraints remain the
final word: an `IntegrityError` from the mutating call is reported as a
conflict even when the pre-checks passed.

Media references (course thumbnails, user avatars) that stop being used
are handed to the cleanup queue after the record change has been
persisted; their deletion never affects the outcome of the request.
"""

import json
import logging
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional, Protocol

from passlib.context import CryptContext
from sqlalchemy.exc import IntegrityError

from . import models, repositories
from .database import Database
from .errors import AppError, BadRequestError, ConflictError, ForbiddenError, NotFoundError
from .media import AVATAR_FOLDER, THUMBNAIL_FOLDER, public_id_from_url
from .querying import PaginationSpec, QueryResult, build_where_conditions, execute_query
from .schemas import (
    BulkCreateResult,
    BulkFailedUser,
    BulkFailure,
    CategoryCreate,
    CategoryDetail,
    CategoryListItem,
    CategoryOut,
    CategoryUpdate,
    CourseCreate,
    CourseOut,
    CourseUpdate,
    UserCreate,
    UserOut,
    UserUpdate,
)

PWD_CTX = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")

INSTRUCTOR_ROLES = {models.UserRole.INSTRUCTOR, models.UserRole.ADMIN, models.UserRole.SUPER_ADMIN}
ADMIN_ROLES = {models.UserRole.ADMIN, models.UserRole.SUPER_ADMIN}

logger = logging.getLogger("lms.services")


class MediaCleanup(Protocol):
    def submit(self, public_id: str, reason: str = "") -> None:
        ...


def hash_password(password: str) -> str:
    return PWD_CTX.hash(password)


def _log_event(event: str, **fields: Any) -> None:
    logger.info("%s %s", event, json.dumps(fields, ensure_ascii=True, default=str))


def _run_list(repo: repositories.BaseRepository, where, pagination: Optional[PaginationSpec]) -> QueryResult:
    try:
        return execute_query(repo.find_many, repo.count, where, pagination)
    except ValueError as e:
        raise BadRequestError(str(e))


@dataclass
class UserFilters:
    search_term: Optional[str] = None
    role: Optional[models.UserRole] = None
    is_verified: Optional[bool] = None
    is_active: Optional[bool] = None


@dataclass
class CategoryFilters:
    search_term: Optional[str] = None


@dataclass
class CourseFilters:
    search_term: Optional[str] = None
    instructor_id: Optional[str] = None
    category_id: Optional[str] = None
    status: Optional[models.CourseStatus] = None
    min_price: Optional[float] = None
    max_price: Optional[float] = None


@dataclass
class UserQueryResult(QueryResult[UserOut]):
    @property
    def users(self) -> List[UserOut]:
        return self.data


@dataclass
class CategoryQueryResult(QueryResult[CategoryListItem]):
    @property
    def categories(self) -> List[CategoryListItem]:
        return self.data


@dataclass
class CourseQueryResult(QueryResult[CourseOut]):
    @property
    def courses(self) -> List[CourseOut]:
        return self.data


class _MediaMixin:
    """Schedules best-effort removal of media that a record stopped using."""
    cleanup: Optional[MediaCleanup] = None

    def _discard_media(self, url: Optional[str], folder: str, reason: str) -> None:
        if not url or self.cleanup is None:
            return
        public_id = public_id_from_url(url, folder)
        try:
            self.cleanup.submit(public_id, reason=reason)
        except Exception:
            # the record change is already committed; an orphaned image is acceptable
            logger.warning("media_cleanup_submit_failed %s", json.dumps({"public_id": public_id}), exc_info=True)


class UserService(_MediaMixin):
    """Create, list, read, update and delete users."""

    SEARCH_FIELDS = ("email", "first_name", "last_name")
    EXACT_MATCH_FIELDS = {"role": "role", "is_verified": "is_verified", "is_active": "is_active"}

    def __init__(self, db: Database, cleanup: Optional[MediaCleanup] = None):
        self.users = repositories.UserRepository(db)
        self.cleanup = cleanup

    def create(self, payload: UserCreate) -> UserOut:
        """Create a user with a hashed password.

        Raises `ConflictError` when the email is already registered.
        """
        if self.users.get_by_email(payload.email):
            raise ConflictError("User with this email already exists")
        user = self._persist_new(payload)
        _log_event("user_created", id=user.id)
        return UserOut.from_record(user)

    def create_bulk(self, payloads: List[UserCreate]) -> BulkCreateResult:
        """Create many users, reporting failures per item.

        Duplicate emails inside the batch reject the whole request before
        anything is written. Emails that are already registered, and any
        item the database refuses, are listed under `failed`.
        """
        emails = [p.email for p in payloads]
        duplicates = sorted({e for e in emails if emails.count(e) > 1})
        if duplicates:
            raise BadRequestError(f"Duplicate emails found in input data: {', '.join(duplicates)}")
        taken = self.users.existing_emails(emails)
        result = BulkCreateResult()
        for payload in payloads:
            if payload.email in taken:
                error = f"User with email {payload.email} already exists"
            else:
                try:
                    user = self._persist_new(payload)
                except Exception as exc:
                    logger.warning("bulk_user_failed %s", json.dumps({"email": payload.email}), exc_info=True)
                    error = exc.message if isinstance(exc, AppError) else str(exc)
                else:
                    result.successful.append(UserOut.from_record(user))
                    continue
            result.failed.append(BulkFailure(user=BulkFailedUser.from_payload(payload), error=error))
        result.total_success = len(result.successful)
        result.total_failed = len(result.failed)
        _log_event("users_bulk_created", success=result.total_success, failed=result.total_failed)
        return result

    def list(self, filters: UserFilters, pagination: Optional[PaginationSpec] = None) -> UserQueryResult:
        where = build_where_conditions(
            search_term=filters.search_term,
            search_fields=self.SEARCH_FIELDS,
            exact_match_fields=self.EXACT_MATCH_FIELDS,
            filters=asdict(filters),
        )
        page = _run_list(self.users, where, pagination)
        return UserQueryResult(
            data=[UserOut.from_record(u) for u in page.data], total=page.total, page=page.page, limit=page.limit
        )

    def get(self, user_id: str) -> UserOut:
        return UserOut.from_record(self._require(user_id))

    def update(self, user_id: str, payload: UserUpdate) -> UserOut:
        return self._apply_update(user_id, payload.model_dump(exclude_none=True))

    def set_avatar(self, user_id: str, url: str) -> UserOut:
        """Point the user at a freshly uploaded avatar."""
        return self._apply_update(user_id, {"avatar": url})

    def delete(self, user_id: str) -> UserOut:
        existing = self._require(user_id)
        try:
            self.users.delete(user_id)
        except IntegrityError:
            raise ConflictError("Cannot delete user that is still referenced by courses")
        self._discard_media(existing.avatar, AVATAR_FOLDER, reason="user_deleted")
        _log_event("user_deleted", id=user_id)
        return UserOut.from_record(existing)

    def _require(self, user_id: str) -> models.User:
        user = self.users.get(user_id)
        if not user:
            raise NotFoundError("User not found")
        return user

    def _persist_new(self, payload: UserCreate) -> models.User:
        data = payload.model_dump(exclude_none=True, exclude={"password"})
        user = models.User(**data, password_hash=hash_password(payload.password))
        try:
            return self.users.create(user)
        except IntegrityError:
            raise ConflictError("User with this email already exists")

    def _apply_update(self, user_id: str, changes: Dict[str, Any]) -> UserOut:
        existing = self._require(user_id)
        if changes.get("email") and changes["email"] != existing.email:
            if self.users.get_by_email(changes["email"]):
                raise ConflictError("Email is already in use")
        if "password" in changes:
            changes["password_hash"] = hash_password(changes.pop("password"))
        try:
            updated = self.users.update(user_id, changes)
        except IntegrityError:
            raise ConflictError("Email is already in use")
        if updated is None:
            raise NotFoundError("User not found")
        if changes.get("avatar") and existing.avatar and changes["avatar"] != existing.avatar:
            self._discard_media(existing.avatar, AVATAR_FOLDER, reason="avatar_replaced")
        _log_event("user_updated", id=user_id, fields=sorted(changes))
        return UserOut.from_record(updated)


class CategoryService:
    """Create, list, read, update and delete categories."""

    SEARCH_FIELDS = ("name", "description")

    def __init__(self, db: Database):
        self.categories = repositories.CategoryRepository(db)

    def create(self, payload: CategoryCreate) -> CategoryOut:
        if self.categories.get_by_name(payload.name):
            raise ConflictError("Category with this name already exists")
        try:
            category = self.categories.create(models.Category(**payload.model_dump(exclude_none=True)))
        except IntegrityError:
            raise ConflictError("Category with this name already exists")
        _log_event("category_created", id=category.id)
        return CategoryOut.from_record(category)

    def list(self, filters: CategoryFilters, pagination: Optional[PaginationSpec] = None) -> CategoryQueryResult:
        where = build_where_conditions(
            search_term=filters.search_term,
            search_fields=self.SEARCH_FIELDS,
            filters=asdict(filters),
        )
        page = _run_list(self.categories, where, pagination)
        return CategoryQueryResult(
            data=[CategoryListItem.from_record(c) for c in page.data],
            total=page.total,
            page=page.page,
            limit=page.limit,
        )

    def get(self, category_id: str) -> CategoryDetail:
        return CategoryDetail.from_record(self._require(category_id))

    def update(self, category_id: str, payload: CategoryUpdate) -> CategoryOut:
        existing = self._require(category_id)
        changes = payload.model_dump(exclude_none=True)
        if changes.get("name") and changes["name"] != existing.name:
            if self.categories.get_by_name(changes["name"]):
                raise ConflictError("Category name is already in use")
        try:
            updated = self.categories.update(category_id, changes)
        except IntegrityError:
            raise ConflictError("Category name is already in use")
        if updated is None:
            raise NotFoundError("Category not found")
        _log_event("category_updated", id=category_id, fields=sorted(changes))
        return CategoryOut.from_record(updated)

    def delete(self, category_id: str) -> CategoryOut:
        """Delete a category that has no courses filed under it."""
        existing = self._require(category_id)
        if self.categories.count_courses(category_id) > 0:
            raise ConflictError("Cannot delete category that has courses")
        try:
            self.categories.delete(category_id)
        except IntegrityError:
            # a course was attached after the check above
            raise ConflictError("Cannot delete category that has courses")
        _log_event("category_deleted", id=category_id)
        return CategoryOut.from_record(existing)

    def _require(self, category_id: str) -> models.Category:
        category = self.categories.get(category_id)
        if not category:
            raise NotFoundError("Category not found")
        return category


class CourseService(_MediaMixin):
    """Course CRUD with instructor/admin authorization on mutations."""

    SEARCH_FIELDS = ("title", "description")
    EXACT_MATCH_FIELDS = {"instructor_id": "instructor_id", "category_id": "category_id", "status": "status"}

    def __init__(self, db: Database, cleanup: Optional[MediaCleanup] = None):
        self.courses = repositories.CourseRepository(db)
        self.users = repositories.UserRepository(db)
        self.categories = repositories.CategoryRepository(db)
        self.cleanup = cleanup

    def create(self, payload: CourseCreate, instructor_id: str) -> CourseOut:
        """Create a course taught by `instructor_id`.

        The instructor must exist and hold the instructor, admin or super
        admin role; a given category must exist.
        """
        instructor = self.users.get(instructor_id)
        if not instructor:
            raise NotFoundError("Instructor not found")
        if instructor.role not in INSTRUCTOR_ROLES:
            raise ForbiddenError("User must be an instructor, admin, or super admin to create courses")
        self._require_category(payload.category_id)
        course = models.Course(**payload.model_dump(exclude_none=True), instructor_id=instructor_id)
        try:
            created = self.courses.create(course)
        except IntegrityError:
            raise ConflictError("Course references a missing instructor or category")
        _log_event("course_created", id=created.id, instructor_id=instructor_id)
        return CourseOut.from_record(created)

    def list(self, filters: CourseFilters, pagination: Optional[PaginationSpec] = None) -> CourseQueryResult:
        where = build_where_conditions(
            search_term=filters.search_term,
            search_fields=self.SEARCH_FIELDS,
            exact_match_fields=self.EXACT_MATCH_FIELDS,
            range_fields={"price": (filters.min_price, filters.max_price)},
            filters=asdict(filters),
        )
        page = _run_list(self.courses, where, pagination)
        return CourseQueryResult(
            data=[CourseOut.from_record(c) for c in page.data], total=page.total, page=page.page, limit=page.limit
        )

    def get(self, course_id: str) -> CourseOut:
        return CourseOut.from_record(self._require(course_id))

    def update(self, course_id: str, payload: CourseUpdate, actor_id: str) -> CourseOut:
        return self._apply_update(course_id, payload.model_dump(exclude_none=True), actor_id)

    def set_thumbnail(self, course_id: str, url: str, actor_id: str) -> CourseOut:
        """Point the course at a freshly uploaded thumbnail."""
        return self._apply_update(course_id, {"thumbnail": url}, actor_id)

    def delete(self, course_id: str, actor_id: str) -> CourseOut:
        existing = self._require(course_id)
        self._authorize(existing, actor_id, "delete")
        self.courses.delete(course_id)
        self._discard_media(existing.thumbnail, THUMBNAIL_FOLDER, reason="course_deleted")
        _log_event("course_deleted", id=course_id, actor_id=actor_id)
        return CourseOut.from_record(existing)

    def _require(self, course_id: str) -> models.Course:
        course = self.courses.get(course_id)
        if not course:
            raise NotFoundError("Course not found")
        return course

    def _require_category(self, category_id: Optional[str]) -> None:
        if category_id and not self.categories.get(category_id):
            raise NotFoundError("Category not found")

    def _authorize(self, course: models.Course, actor_id: str, action: str) -> None:
        """Only the course instructor or an admin may change a course."""
        actor = self.users.get(actor_id)
        if not actor:
            raise NotFoundError("User not found")
        if course.instructor_id != actor_id and actor.role not in ADMIN_ROLES:
            raise ForbiddenError(f"You are not authorized to {action} this course")

    def _apply_update(self, course_id: str, changes: Dict[str, Any], actor_id: str) -> CourseOut:
        existing = self._require(course_id)
        self._authorize(existing, actor_id, "update")
        self._require_category(changes.get("category_id"))
        try:
            updated = self.courses.update(course_id, changes)
        except IntegrityError:
            raise ConflictError("Course references a missing category")
        if updated is None:
            raise NotFoundError("Course not found")
        if changes.get("thumbnail") and existing.thumbnail and changes["thumbnail"] != existing.thumbnail:
            self._discard_media(existing.thumbnail, THUMBNAIL_FOLDER, reason="thumbnail_replaced")
        _log_event("course_updated", id=course_id, actor_id=actor_id, fields=sorted(changes))
        return CourseOut.from_record(updated)
