"""Conversion API models."""

from pydantic import BaseModel, Field


class UploadResponse(BaseModel):
    """Response model for a converted image stored in a sink."""

    url: str = Field(..., description="Public URL of the stored image")
    size: int = Field(..., description="Stored size in bytes")
    format: str = Field(..., description="Resolved output format token")
    id: str = Field(..., description="Opaque identifier of the stored object")


class ErrorResponse(BaseModel):
    """Body of every error response."""

    error: str
