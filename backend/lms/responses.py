"""Helpers that wrap handler results in the JSON response envelope."""

from typing import Any, Optional

from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from .querying import QueryResult
from .schemas import ApiResponse, PageMeta


def send_response(status_code: int, message: str, data: Any = None, meta: Optional[PageMeta] = None, success: bool = True) -> JSONResponse:
    """Return `{success, message, data?, meta?}` with `status_code`.

    `data` and `meta` are omitted from the body when not given.
    """
    body = ApiResponse(success=success, message=message, data=data, meta=meta)
    content = jsonable_encoder(body, by_alias=True, exclude_none=True)
    if data is not None:
        # keep explicit nulls inside the payload itself
        content["data"] = jsonable_encoder(data, by_alias=True)
    return JSONResponse(status_code=status_code, content=content)


def send_page(message: str, result: QueryResult) -> JSONResponse:
    return send_response(
        200,
        message,
        data=result.data,
        meta=PageMeta(page=result.page, limit=result.limit, total=result.total),
    )


def send_error(status_code: int, message: str, **extra: Any) -> JSONResponse:
    content = {"success": False, "message": message}
    content.update(jsonable_encoder(extra, by_alias=True))
    return JSONResponse(status_code=status_code, content=content)
