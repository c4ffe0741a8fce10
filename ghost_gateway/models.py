"""Request and response models for the completion gateway."""

from typing import Optional
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, field_validator


class CompletionRequest(BaseModel):
    """Incoming completion request from the extension's content script."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    text: str = Field(..., min_length=1, description="Text before the cursor")
    url: str = Field(..., min_length=1, description="URL of the page being typed on")
    screenshot: Optional[str] = Field(
        default=None, description="Data URL of the visible tab"
    )
    previousScreenshot: Optional[str] = Field(
        default=None, description="Data URL of the previously active tab"
    )
    previousTabUrl: Optional[str] = Field(
        default=None, description="URL of the previously active tab"
    )
    userCountry: Optional[str] = Field(default=None, description="User's country")
    userCity: Optional[str] = Field(default=None, description="User's city")

    @field_validator("url")
    @classmethod
    def check_url(cls, value: str) -> str:
        """Require an absolute URL with a scheme."""
        if not urlparse(value).scheme:
            raise ValueError("url must be an absolute URL")
        return value


class CompletionResponse(BaseModel):
    """Successful completion. An empty string means no suggestion."""

    text: str


class ErrorResponse(BaseModel):
    """Error response envelope."""

    error: str


class HealthResponse(BaseModel):
    """Liveness probe payload."""

    status: str = "ok"
    cache_size: int = 0
    error_cache_size: int = 0
    in_flight: int = 0
