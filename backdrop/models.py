"""
Pydantic models for request/response validation.

These models define the API contract for the portrait backdrop service.
"""

from pydantic import BaseModel, Field
from typing import Any, Dict, Optional


class LoginRequest(BaseModel):
    """Password login."""
    password: Optional[str] = Field(default=None, description="Upload password")


class CompositionRequest(BaseModel):
    """
    Request body for /preview and /save.

    blur and scale are accepted as anything and clamped server-side;
    values that are not numbers fall back to the configured defaults.
    """
    temp_id: Optional[str] = Field(default=None, description="Identifier returned by /upload")
    blur: Any = Field(default=None, description="Background blur radius")
    scale: Any = Field(default=None, description="Foreground size as a percentage of the canvas")


class AppliedSettings(BaseModel):
    """Composition settings after clamping."""
    blur: int
    scale: int


class ImageMetadataModel(BaseModel):
    """Facts about a validated upload."""
    original_name: str
    width: int
    height: int
    format: str


class UploadResponse(BaseModel):
    """Response returned after a successful upload."""
    success: bool = True
    temp_id: str = Field(..., description="Identifier of the staged upload")
    metadata: ImageMetadataModel
    preview: str = Field(..., description="Preview as a data:image/jpeg;base64 URL")
    defaults: AppliedSettings


class PreviewResponse(BaseModel):
    """Response returned by /preview."""
    success: bool = True
    preview: str = Field(..., description="Preview as a data:image/jpeg;base64 URL")
    settings: AppliedSettings


class SaveResponse(BaseModel):
    """Response returned by /save."""
    success: bool = True
    filename: str = Field(..., description="Name of the file written to the output directory")
    settings: AppliedSettings


class CacheStatsModel(BaseModel):
    count: int
    used_bytes: int
    max_bytes: int
    used_percent: int


class HealthResponse(BaseModel):
    """Health check response."""
    status: str = Field(..., description="Service status: ok or error")
    service: str = Field(..., description="Service name")
    version: str = Field(..., description="Service version")
    preview_debounce_ms: int = Field(..., description="Suggested client debounce between previews")
    limits: Dict[str, Dict[str, int]] = Field(..., description="Accepted blur and scale ranges")
    staging: CacheStatsModel


class ErrorResponse(BaseModel):
    """Standard error response."""
    detail: str = Field(..., description="Error message")
    error_code: Optional[str] = Field(None, description="Machine-readable error code")
