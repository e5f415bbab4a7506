# app/schemas/common/common.py
from pydantic import BaseModel
from typing import Any, Optional


class ErrorResponse(BaseModel):
    success: bool = False
    data: Optional[Any] = None
    error: str
    code: Optional[str] = None


# OpenAPI documentation for the error envelope rendered by http_exception_handler
ERROR_RESPONSES = {
    status: {"model": ErrorResponse}
    for status in (400, 402, 404, 408, 409, 422, 429, 503)
}
