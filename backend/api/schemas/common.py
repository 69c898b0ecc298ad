"""Common schemas used across the API."""

from typing import Optional

from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """Standard error response."""

    message: str = Field(description="Human-readable error message")
    detail: str = Field(description="Same as message")
    request_id: Optional[str] = Field(default=None, description="X-Request-ID of the failed request")
