"""HTTP controllers for users, categories and courses.

Controllers are intentionally thin: they read query parameters and
bodies, delegate to the services kept on `app.state`, and wrap results
in the response envelope. Errors raised by services propagate to the
handlers registered in `lms.main`.

Endpoints implemented (all under /api/v1):
- POST/GET /users, POST /users/bulk, GET/PATCH/DELETE /users/{id},
  POST /users/{id}/avatar
- POST/GET /categories, GET/PATCH/DELETE /categories/{id}
- POST/GET /courses, GET/PATCH/DELETE /courses/{id},
  POST /courses/{id}/thumbnail
"""

from typing import Literal, Optional

from fastapi import APIRouter, Depends, File, Header, Query, Request, UploadFile

from .errors import AppError, BadRequestError, BulkOperationError, UnauthorizedError
from .media import AVATAR_FOLDER, THUMBNAIL_FOLDER, public_id_from_url, validate_image_upload
from .models import CourseStatus, UserRole
from .querying import PaginationSpec
from .responses import send_page, send_response
from .schemas import BulkUserCreate, CategoryCreate, CategoryUpdate, CourseCreate, CourseUpdate, UserCreate, UserUpdate
from .services import CategoryFilters, CategoryService, CourseFilters, CourseService, UserFilters, UserService


users_router = APIRouter(prefix="/api/v1/users", tags=["users"])
categories_router = APIRouter(prefix="/api/v1/categories", tags=["categories"])
courses_router = APIRouter(prefix="/api/v1/courses", tags=["courses"])


def get_user_service(request: Request) -> UserService:
    return request.app.state.user_service


def get_category_service(request: Request) -> CategoryService:
    return request.app.state.category_service


def get_course_service(request: Request) -> CourseService:
    return request.app.state.course_service


def get_actor_id(x_user_id: Optional[str] = Header(default=None)) -> str:
    """Identity of the calling user, asserted by the upstream gateway."""
    if not x_user_id:
        raise UnauthorizedError("User ID not found in request")
    return x_user_id


def pagination_params(
    request: Request,
    page: Optional[int] = Query(default=None, ge=1),
    limit: Optional[int] = Query(default=None, ge=1),
    sort_by: Optional[str] = Query(default=None, alias="sortBy"),
    sort_order: Optional[Literal["asc", "desc"]] = Query(default=None, alias="sortOrder"),
) -> PaginationSpec:
    max_limit = request.app.state.settings.MAX_PAGE_LIMIT
    if limit is not None and limit > max_limit:
        raise BadRequestError(f"limit cannot exceed {max_limit}")
    return PaginationSpec(page=page, limit=limit, sort_by=sort_by, sort_order=sort_order)


def _read_image(file: UploadFile, max_bytes: int) -> bytes:
    payload = file.file.read(max_bytes + 1)
    validate_image_upload(payload, file.filename or "", file.content_type, max_bytes)
    return payload


def _upload_then(request: Request, file: UploadFile, payload: bytes, folder: str, apply):
    """Upload an image and hand its URL to `apply`.

    If `apply` rejects the change, the fresh upload is queued for removal.
    """
    url = request.app.state.media_host.upload(payload, file.filename, folder, file.content_type)
    try:
        return apply(url)
    except AppError:
        request.app.state.media_cleanup.submit(public_id_from_url(url, folder), reason="upload_rejected")
        raise


# -- users ----------------------------------------------------------------------

@users_router.post("", status_code=201)
def create_user(payload: UserCreate, svc: UserService = Depends(get_user_service)):
    """Create a user; the password is hashed and never returned."""
    return send_response(201, "User created successfully", data=svc.create(payload))


@users_router.post("/bulk", status_code=201)
def create_users_bulk(payload: BulkUserCreate, svc: UserService = Depends(get_user_service)):
    """Create many users at once.

    Returns 201 when every user was created and 207 with per-item results
    when some failed.
    """
    result = svc.create_bulk(payload.users)
    if result.total_failed:
        raise BulkOperationError(
            f"{result.total_success} users created, {result.total_failed} failed", results=result
        )
    return send_response(201, "Users created successfully", data=result)


@users_router.get("")
def list_users(
    search_term: Optional[str] = Query(default=None, alias="searchTerm"),
    role: Optional[UserRole] = None,
    is_verified: Optional[bool] = Query(default=None, alias="isVerified"),
    is_active: Optional[bool] = Query(default=None, alias="isActive"),
    pagination: PaginationSpec = Depends(pagination_params),
    svc: UserService = Depends(get_user_service),
):
    filters = UserFilters(search_term=search_term, role=role, is_verified=is_verified, is_active=is_active)
    result = svc.list(filters, pagination)
    return send_page("Users retrieved successfully", result)


@users_router.get("/{user_id}")
def get_user(user_id: str, svc: UserService = Depends(get_user_service)):
    return send_response(200, "User retrieved successfully", data=svc.get(user_id))


@users_router.patch("/{user_id}")
def update_user(user_id: str, payload: UserUpdate, svc: UserService = Depends(get_user_service)):
    return send_response(200, "User updated successfully", data=svc.update(user_id, payload))


@users_router.delete("/{user_id}")
def delete_user(user_id: str, svc: UserService = Depends(get_user_service)):
    return send_response(200, "User deleted successfully", data=svc.delete(user_id))


@users_router.post("/{user_id}/avatar")
def upload_avatar(
    user_id: str,
    request: Request,
    file: UploadFile = File(...),
    svc: UserService = Depends(get_user_service),
):
    """Upload a JPG/PNG/WEBP avatar (max 2 MB by default) and attach it."""
    payload = _read_image(file, request.app.state.settings.AVATAR_MAX_BYTES)
    svc.get(user_id)
    result = _upload_then(request, file, payload, AVATAR_FOLDER, lambda url: svc.set_avatar(user_id, url))
    return send_response(200, "Avatar updated successfully", data=result)


# -- categories -------------------------------------------------------------------

@categories_router.post("", status_code=201)
def create_category(payload: CategoryCreate, svc: CategoryService = Depends(get_category_service)):
    return send_response(201, "Category created successfully", data=svc.create(payload))


@categories_router.get("")
def list_categories(
    search_term: Optional[str] = Query(default=None, alias="searchTerm"),
    pagination: PaginationSpec = Depends(pagination_params),
    svc: CategoryService = Depends(get_category_service),
):
    result = svc.list(CategoryFilters(search_term=search_term), pagination)
    return send_page("Categories retrieved successfully", result)


@categories_router.get("/{category_id}")
def get_category(category_id: str, svc: CategoryService = Depends(get_category_service)):
    return send_response(200, "Category retrieved successfully", data=svc.get(category_id))


@categories_router.patch("/{category_id}")
def update_category(category_id: str, payload: CategoryUpdate, svc: CategoryService = Depends(get_category_service)):
    return send_response(200, "Category updated successfully", data=svc.update(category_id, payload))


@categories_router.delete("/{category_id}")
def delete_category(category_id: str, svc: CategoryService = Depends(get_category_service)):
    """Delete a category; refused while courses are filed under it."""
    return send_response(200, "Category deleted successfully", data=svc.delete(category_id))


# -- courses ----------------------------------------------------------------------

@courses_router.post("", status_code=201)
def create_course(
    payload: CourseCreate,
    actor_id: str = Depends(get_actor_id),
    svc: CourseService = Depends(get_course_service),
):
    """Create a course taught by the calling user."""
    return send_response(201, "Course created successfully", data=svc.create(payload, actor_id))


@courses_router.get("")
def list_courses(
    search_term: Optional[str] = Query(default=None, alias="searchTerm"),
    instructor_id: Optional[str] = Query(default=None, alias="instructorId"),
    category_id: Optional[str] = Query(default=None, alias="categoryId"),
    status: Optional[CourseStatus] = None,
    min_price: Optional[float] = Query(default=None, alias="minPrice"),
    max_price: Optional[float] = Query(default=None, alias="maxPrice"),
    pagination: PaginationSpec = Depends(pagination_params),
    svc: CourseService = Depends(get_course_service),
):
    filters = CourseFilters(
        search_term=search_term,
        instructor_id=instructor_id,
        category_id=category_id,
        status=status,
        min_price=min_price,
        max_price=max_price,
    )
    result = svc.list(filters, pagination)
    return send_page("Courses retrieved successfully", result)


@courses_router.get("/{course_id}")
def get_course(course_id: str, svc: CourseService = Depends(get_course_service)):
    return send_response(200, "Course retrieved successfully", data=svc.get(course_id))


@courses_router.patch("/{course_id}")
def update_course(
    course_id: str,
    payload: CourseUpdate,
    actor_id: str = Depends(get_actor_id),
    svc: CourseService = Depends(get_course_service),
):
    return send_response(200, "Course updated successfully", data=svc.update(course_id, payload, actor_id))


@courses_router.delete("/{course_id}")
def delete_course(
    course_id: str,
    actor_id: str = Depends(get_actor_id),
    svc: CourseService = Depends(get_course_service),
):
    return send_response(200, "Course deleted successfully", data=svc.delete(course_id, actor_id))


@courses_router.post("/{course_id}/thumbnail")
def upload_thumbnail(
    course_id: str,
    request: Request,
    file: UploadFile = File(...),
    actor_id: str = Depends(get_actor_id),
    svc: CourseService = Depends(get_course_service),
):
    """Upload a JPG/PNG/WEBP thumbnail (max 5 MB by default) for a course."""
    payload = _read_image(file, request.app.state.settings.THUMBNAIL_MAX_BYTES)
    svc.get(course_id)
    result = _upload_then(
        request, file, payload, THUMBNAIL_FOLDER, lambda url: svc.set_thumbnail(course_id, url, actor_id)
    )
    return send_response(200, "Thumbnail updated successfully", data=result)
