# src/livepreview/api/models.py
"""
Pydantic request and response models for the live preview HTTP API.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class CreatePreviewRequest(BaseModel):
    """Body of ``POST /previews/{project_id}``."""

    model_config = ConfigDict(extra="forbid")

    user_id: str | None = Field(default=None, description="User requesting the preview.")
    auto_cleanup: bool = Field(default=True, description="Allow the idle sweep to stop it.")
    timeout_minutes: float | None = Field(
        default=None, gt=0, description="Idle threshold override in minutes."
    )


class ExecRequest(BaseModel):
    """Body of ``POST /previews/containers/{handle}/exec``."""

    model_config = ConfigDict(extra="forbid")

    command: str = Field(min_length=1, description="Shell command run with sh -c.")


class PreviewResponse(BaseModel):
    success: bool = True
    preview: dict[str, Any]


class PreviewListResponse(BaseModel):
    success: bool = True
    previews: list[dict[str, Any]]
    count: int


class MessageResponse(BaseModel):
    success: bool = True
    message: str


class LogsResponse(BaseModel):
    success: bool = True
    runtime_handle: str
    logs: str


class ExecResponse(BaseModel):
    success: bool = True
    runtime_handle: str
    command: str
    output: str


class ContainerInfoResponse(BaseModel):
    success: bool = True
    container: dict[str, Any]


class ErrorAnalysisResponse(BaseModel):
    success: bool = True
    runtime_handle: str
    analysis: dict[str, Any]
