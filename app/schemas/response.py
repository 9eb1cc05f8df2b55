from pydantic import BaseModel, Field
from typing import Any, Optional
import uuid

def _rid():
    """Generates a unique request ID for tracing."""
    return uuid.uuid4().hex

class SuccessResponse(BaseModel):
    """Success wrapper with data, success flag, and request_id"""
    success: bool = Field(default=True)
    request_id: str = Field(default_factory=_rid)
    data: Optional[Any] = None

class ErrorDetail(BaseModel):
    code: str
    message: Any
    details: Optional[Any] = None

class ErrorResponse(BaseModel):
    """Failure wrapper returned by every exception handler."""
    success: bool = Field(default=False)
    request_id: str = Field(default_factory=_rid)
    error: ErrorDetail
