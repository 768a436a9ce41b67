from typing import Any, Generic, Optional, TypeVar

from fastapi import status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from pydantic import BaseModel

T = TypeVar("T")


class APIResponse(BaseModel, Generic[T]):
    status_code: int = 200
    status: str = "success"
    message: str
    data: T


def api_response(
    *,
    data: Optional[Any] = None,
    message: str = "Operation successful",
    status_code: int = status.HTTP_200_OK,
    error_kind: Optional[str] = None,
) -> JSONResponse:
    """
    Single envelope for every response of the service.

    ``status`` is "success" below 400 and "error" otherwise. Domain failures
    also carry ``error_kind`` so clients can branch on it without parsing
    the message.
    """
    status_str = "success" if status_code < 400 else "error"
    content = {
        "status_code": status_code,
        "status": status_str,
        "message": message,
        "data": jsonable_encoder(data) if data is not None else {},
    }
    if error_kind is not None:
        content["error_kind"] = error_kind

    return JSONResponse(status_code=status_code, content=content)
